import logging
from datetime import date, timedelta
from typing import Dict, List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..core.clock import Clock, clinic_now
from ..core.config import settings
from ..core.database import store_errors
from ..core.exceptions import ConflictError, NotFoundError, PolicyError, ValidationError
from ..core.security import Actor
from ..models.schedule import ScheduleSlot
from ..schemas.schedule import ScheduleCreateRequest
from .profiles import WorkingHours, ensure_can_manage_doctor, get_active_doctor, working_hours
from .timeslots import TimeSlot, is_aligned, parse_clock, parse_time_slot, slice_range

logger = logging.getLogger(__name__)

def expand_dates(request: ScheduleCreateRequest, today: date) -> List[date]:
    """Explicit dates plus weekly recurrences, sorted and de-duplicated."""
    weeks = request.weeks or settings.RECURRENCE_WEEKS
    dates = set()

    for explicit in request.dates:
        if request.repeat_weekly:
            dates.update(explicit + timedelta(weeks=i) for i in range(weeks))
        else:
            dates.add(explicit)

    if request.days_of_week:
        start = request.start_date or today
        for offset in range(weeks * 7):
            candidate = start + timedelta(days=offset)
            if candidate.weekday() in request.days_of_week:
                dates.add(candidate)

    return sorted(dates)

def requested_slots(request: ScheduleCreateRequest, hours: WorkingHours) -> List[TimeSlot]:
    if request.time_slots:
        return sorted({parse_time_slot(label) for label in request.time_slots})
    if request.start_time is not None:
        return slice_range(
            parse_clock(request.start_time),
            parse_clock(request.end_time),
            hours.slot_minutes,
        )
    return slice_range(hours.start, hours.end, hours.slot_minutes)

def ensure_aligned(slots: List[TimeSlot], hours: WorkingHours) -> None:
    """Every slot must sit on the doctor's grid inside working hours."""
    outside = [
        slot.label for slot in slots
        if not is_aligned(slot, hours.start, hours.end, hours.slot_minutes)
    ]
    if outside:
        raise ValidationError(
            f"Time slots must fall within working hours "
            f"{hours.start:%H:%M}-{hours.end:%H:%M} in {hours.slot_minutes}-minute steps",
            details={"time_slots": outside},
        )

class ScheduleGenerator:
    """Turns a doctor's chosen dates and hours into open ScheduleSlot rows.

    The whole batch is written in one transaction: either every
    (date, time slot) pair is created or none is.
    """

    def __init__(self, db: Session, clock: Clock = clinic_now):
        self.db = db
        self.clock = clock

    def generate(self, request: ScheduleCreateRequest, actor: Actor) -> List[ScheduleSlot]:
        ensure_can_manage_doctor(actor, request.doctor_id)
        doctor = get_active_doctor(self.db, request.doctor_id)
        hours = working_hours(doctor)
        today = self.clock().date()

        dates = expand_dates(request, today)
        past = [d for d in dates if d < today]
        if past:
            raise ValidationError(
                "Cannot create schedules for past dates",
                details={"dates": [d.isoformat() for d in past]},
            )

        slots = requested_slots(request, hours)
        ensure_aligned(slots, hours)

        if not dates or not slots:
            raise ValidationError("No schedule slots to create")

        labels = [slot.label for slot in slots]
        existing = self._existing(doctor.id, dates, labels)
        if existing:
            raise ConflictError(
                "Schedule conflicts with existing time slots",
                details={
                    "duplicates": [
                        {"date": row.date.isoformat(), "time_slot": row.time_slot}
                        for row in existing
                    ]
                },
            )

        rows = [
            ScheduleSlot(
                doctor_id=doctor.id,
                date=day,
                time_slot=label,
                is_available=True,
                day_of_week=day.weekday(),
                notes=request.notes,
            )
            for day in dates
            for label in labels
        ]

        with store_errors(self.db, "schedule creation"):
            self.db.add_all(rows)
            try:
                self.db.commit()
            except IntegrityError as exc:
                self.db.rollback()
                raise ConflictError(
                    "Schedule conflicts with time slots created concurrently",
                    details={"doctor_id": doctor.id},
                ) from exc

        logger.info(f"Created {len(rows)} schedule slots for doctor {doctor.id}")
        return rows

    def _existing(self, doctor_id: int, dates: List[date], labels: List[str]):
        return self.db.query(ScheduleSlot.date, ScheduleSlot.time_slot).filter(
            ScheduleSlot.doctor_id == doctor_id,
            ScheduleSlot.date.in_(dates),
            ScheduleSlot.time_slot.in_(labels),
        ).all()

class ScheduleService:
    """Doctor-facing schedule queries and block/unblock/delete operations."""

    def __init__(self, db: Session, clock: Clock = clinic_now):
        self.db = db
        self.clock = clock

    def list_slots(
        self,
        doctor_id: int,
        on: Optional[date] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        is_available: Optional[bool] = None,
        include_past: bool = False,
    ) -> List[ScheduleSlot]:
        """Doctor's slots within working hours, today onward unless dates are given."""
        doctor = get_active_doctor(self.db, doctor_id)
        hours = working_hours(doctor)

        query = self.db.query(ScheduleSlot).filter(ScheduleSlot.doctor_id == doctor_id)
        if on is not None:
            query = query.filter(ScheduleSlot.date == on)
        if start_date is not None:
            query = query.filter(ScheduleSlot.date >= start_date)
        if end_date is not None:
            query = query.filter(ScheduleSlot.date <= end_date)
        if on is None and start_date is None and end_date is None and not include_past:
            query = query.filter(ScheduleSlot.date >= self.clock().date())
        if is_available is not None:
            query = query.filter(ScheduleSlot.is_available == is_available)

        slots = query.order_by(ScheduleSlot.date.asc(), ScheduleSlot.time_slot.asc()).all()
        return [
            slot for slot in slots
            if hours.start <= parse_time_slot(slot.time_slot).start < hours.end
        ]

    def daily(self, doctor_id: int, on: date) -> List[ScheduleSlot]:
        get_active_doctor(self.db, doctor_id)
        return self.db.query(ScheduleSlot).filter(
            ScheduleSlot.doctor_id == doctor_id,
            ScheduleSlot.date == on,
        ).order_by(ScheduleSlot.time_slot.asc()).all()

    def weekly(self, doctor_id: int, on: date) -> Dict:
        """Monday-to-Sunday week containing ``on``, grouped by ISO date."""
        get_active_doctor(self.db, doctor_id)
        week_start = on - timedelta(days=on.weekday())
        week_end = week_start + timedelta(days=7)

        slots = self.db.query(ScheduleSlot).filter(
            ScheduleSlot.doctor_id == doctor_id,
            ScheduleSlot.date >= week_start,
            ScheduleSlot.date < week_end,
        ).order_by(ScheduleSlot.date.asc(), ScheduleSlot.time_slot.asc()).all()

        schedule = {
            (week_start + timedelta(days=i)).isoformat(): [] for i in range(7)
        }
        for slot in slots:
            schedule[slot.date.isoformat()].append(slot)

        return {"week_start": week_start, "schedule": schedule}

    def set_availability(
        self,
        slot_id: int,
        is_available: bool,
        actor: Actor,
        notes: Optional[str] = None,
    ) -> ScheduleSlot:
        """Doctor block/unblock toggle. Existing appointments are unaffected."""
        return self.update_slot(slot_id, actor, is_available=is_available, notes=notes)

    def update_slot(
        self,
        slot_id: int,
        actor: Actor,
        is_available: Optional[bool] = None,
        time_slot: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> ScheduleSlot:
        """Block/unblock a slot and/or move it to another time on the same date.

        The new time must sit on the doctor's grid and must not already be
        declared for that date. Moving an open slot closes its old time, so
        it needs the same notice as blocking. Appointments are untouched.
        """
        slot = self._get(slot_id)
        ensure_can_manage_doctor(actor, slot.doctor_id)

        label = slot.time_slot
        if time_slot is not None:
            moved = parse_time_slot(time_slot)
            if moved.label != slot.time_slot:
                doctor = get_active_doctor(self.db, slot.doctor_id)
                ensure_aligned([moved], working_hours(doctor))
                self._ensure_free(slot, moved.label)
                label = moved.label

        closing = slot.is_available and (is_available is False or label != slot.time_slot)
        if closing:
            self._check_block_notice(slot.date, slot.time_slot)

        if is_available is not None:
            slot.is_available = is_available
        slot.time_slot = label
        if notes:
            slot.notes = notes

        with store_errors(self.db, "schedule update"):
            try:
                self.db.commit()
            except IntegrityError as exc:
                self.db.rollback()
                raise ConflictError(
                    f"Time slot {label} already exists on {slot.date}",
                    details={"schedule_id": slot_id, "time_slot": label},
                ) from exc
            self.db.refresh(slot)

        logger.info(
            f"Schedule slot {slot_id} updated: time_slot={slot.time_slot} "
            f"is_available={slot.is_available}"
        )
        return slot

    def block_time(
        self,
        doctor_id: int,
        on: date,
        time_slot: str,
        actor: Actor,
        reason: Optional[str] = None,
    ) -> ScheduleSlot:
        """Block an exact slot, creating a blocked record if none exists."""
        ensure_can_manage_doctor(actor, doctor_id)
        doctor = get_active_doctor(self.db, doctor_id)
        requested = parse_time_slot(time_slot)
        ensure_aligned([requested], working_hours(doctor))
        label = requested.label
        self._check_block_notice(on, label)

        slot = self.db.query(ScheduleSlot).filter(
            ScheduleSlot.doctor_id == doctor_id,
            ScheduleSlot.date == on,
            ScheduleSlot.time_slot == label,
        ).first()

        if slot is not None and not slot.is_available:
            raise ConflictError(
                f"Time slot {label} is already blocked",
                details={"schedule_id": slot.id},
            )

        if slot is None:
            slot = ScheduleSlot(
                doctor_id=doctor_id,
                date=on,
                time_slot=label,
                is_available=False,
                day_of_week=on.weekday(),
                notes=reason,
            )
            self.db.add(slot)
        else:
            slot.is_available = False
            slot.notes = reason or slot.notes

        with store_errors(self.db, "blocking time"):
            try:
                self.db.commit()
            except IntegrityError as exc:
                self.db.rollback()
                raise ConflictError(
                    f"Time slot {label} was changed concurrently",
                    details={"doctor_id": doctor_id, "date": on.isoformat()},
                ) from exc
            self.db.refresh(slot)

        logger.info(f"Blocked {label} on {on} for doctor {doctor_id}")
        return slot

    def delete(self, slot_id: int, actor: Actor) -> None:
        slot = self._get(slot_id)
        ensure_can_manage_doctor(actor, slot.doctor_id)

        with store_errors(self.db, "schedule deletion"):
            self.db.delete(slot)
            self.db.commit()

        logger.info(f"Schedule slot {slot_id} deleted")

    def _ensure_free(self, slot: ScheduleSlot, label: str) -> None:
        clash = self.db.query(ScheduleSlot.id).filter(
            ScheduleSlot.doctor_id == slot.doctor_id,
            ScheduleSlot.date == slot.date,
            ScheduleSlot.time_slot == label,
            ScheduleSlot.id != slot.id,
        ).first()
        if clash:
            raise ConflictError(
                f"Time slot {label} already exists on {slot.date}",
                details={"schedule_id": clash.id, "time_slot": label},
            )

    def _get(self, slot_id: int) -> ScheduleSlot:
        slot = self.db.query(ScheduleSlot).filter(ScheduleSlot.id == slot_id).first()
        if not slot:
            raise NotFoundError("Schedule not found", details={"schedule_id": slot_id})
        return slot

    def _check_block_notice(self, on: date, label: str) -> None:
        starts_at = parse_time_slot(label).starts_at(on)
        if starts_at - self.clock() < timedelta(hours=settings.BLOCK_NOTICE_HOURS):
            raise PolicyError(
                f"Cannot block a time slot less than {settings.BLOCK_NOTICE_HOURS} hours "
                f"before its scheduled time",
                details={"date": on.isoformat(), "time_slot": label},
            )
