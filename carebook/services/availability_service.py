import logging
import time
from datetime import date
from typing import List, Optional

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from ..core.clock import Clock, clinic_now
from ..core.config import settings
from ..core.exceptions import TransientStoreError
from ..models.appointment import ACTIVE_STATUSES, Appointment
from ..models.schedule import ScheduleSlot
from .profiles import get_active_doctor
from .timeslots import parse_time_slot, sort_labels

logger = logging.getLogger(__name__)

class AvailabilityResolver:
    """Live bookable slots for a doctor on a date.

    Available = declared-open slots - slots held by pending/confirmed
    appointments - slots whose start has already passed. Nothing is cached;
    every call reads the store.
    """

    def __init__(
        self,
        db: Session,
        clock: Clock = clinic_now,
        retries: Optional[int] = None,
        backoff_seconds: Optional[float] = None,
    ):
        self.db = db
        self.clock = clock
        self.retries = settings.STORE_READ_RETRIES if retries is None else retries
        self.backoff_seconds = (
            settings.STORE_RETRY_BACKOFF_SECONDS if backoff_seconds is None else backoff_seconds
        )

    def resolve(self, doctor_id: int, on: date) -> List[str]:
        """Open time slots, ordered by start time.

        Transient store failures are retried; this is a read with no side
        effects so repeating it is safe.
        """
        attempt = 0
        while True:
            try:
                return self.open_slots(doctor_id, on)
            except OperationalError as exc:
                self.db.rollback()
                if attempt >= self.retries:
                    raise TransientStoreError(
                        "Storage unavailable while loading availability. Please retry.",
                        details={"doctor_id": doctor_id, "date": on.isoformat()},
                    ) from exc
                attempt += 1
                logger.warning(
                    f"Availability read failed for doctor {doctor_id} on {on}, "
                    f"retry {attempt}/{self.retries}"
                )
                time.sleep(self.backoff_seconds * attempt)

    def is_open(self, doctor_id: int, on: date, time_slot: str) -> bool:
        return parse_time_slot(time_slot).label in self.open_slots(doctor_id, on)

    def open_slots(self, doctor_id: int, on: date) -> List[str]:
        """Single pass over the store, without retries."""
        get_active_doctor(self.db, doctor_id)

        now = self.clock()
        if on < now.date():
            return []

        declared = {
            row.time_slot
            for row in self.db.query(ScheduleSlot.time_slot).filter(
                ScheduleSlot.doctor_id == doctor_id,
                ScheduleSlot.date == on,
                ScheduleSlot.is_available.is_(True),
            )
        }
        occupied = {
            row.time_slot
            for row in self.db.query(Appointment.time_slot).filter(
                Appointment.doctor_id == doctor_id,
                Appointment.date == on,
                Appointment.status.in_(ACTIVE_STATUSES),
            )
        }

        available = declared - occupied
        if on == now.date():
            available = {
                label for label in available
                if parse_time_slot(label).starts_at(on) > now
            }

        return sort_labels(available)
