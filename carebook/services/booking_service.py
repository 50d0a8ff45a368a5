import logging

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..core.clock import Clock, clinic_now
from ..core.config import settings
from ..core.database import apply_statement_timeout, store_errors
from ..core.exceptions import ConflictError, PermissionDeniedError, ValidationError
from ..core.security import Actor
from ..models.appointment import Appointment, AppointmentStatus
from ..schemas.appointment import BookRequest
from .availability_service import AvailabilityResolver
from .profiles import get_active_doctor, get_active_patient
from .timeslots import parse_time_slot

logger = logging.getLogger(__name__)

SLOT_TAKEN_MESSAGE = "This time slot just became unavailable. Please choose another time slot."

class BookingCoordinator:
    """Commits bookings so that a slot is held by at most one active appointment.

    Availability is re-checked against the store right before the insert to
    fail fast, but the partial unique index on active appointments is what
    decides a race: the losing INSERT violates it and surfaces as
    ConflictError. Commits are never retried here.
    """

    def __init__(self, db: Session, clock: Clock = clinic_now):
        self.db = db
        self.clock = clock
        self.resolver = AvailabilityResolver(db, clock=clock)

    def book(self, request: BookRequest, actor: Actor) -> Appointment:
        self._authorize(request, actor)

        slot = parse_time_slot(request.time_slot)
        now = self.clock()
        if request.date < now.date():
            raise ValidationError(
                "Appointment date must be in the future",
                details={"date": request.date.isoformat()},
            )
        if slot.starts_at(request.date) <= now:
            raise ValidationError(
                "Appointment time must be in the future",
                details={"date": request.date.isoformat(), "time_slot": slot.label},
            )

        get_active_doctor(self.db, request.doctor_id)
        get_active_patient(self.db, request.patient_id)

        with store_errors(self.db, "booking"):
            apply_statement_timeout(self.db, settings.BOOKING_TIMEOUT_SECONDS)

            if slot.label not in self.resolver.open_slots(request.doctor_id, request.date):
                self.db.rollback()
                logger.info(
                    f"Booking rejected, slot unavailable: doctor {request.doctor_id} "
                    f"{request.date} {slot.label}"
                )
                raise ConflictError(SLOT_TAKEN_MESSAGE, details=self._slot_details(request, slot.label))

            appointment = Appointment(
                doctor_id=request.doctor_id,
                patient_id=request.patient_id,
                date=request.date,
                time_slot=slot.label,
                status=AppointmentStatus.PENDING,
                notes=request.notes,
            )
            self.db.add(appointment)
            try:
                self.db.commit()
            except IntegrityError as exc:
                self.db.rollback()
                logger.info(
                    f"Booking lost race for doctor {request.doctor_id} "
                    f"{request.date} {slot.label}"
                )
                raise ConflictError(
                    SLOT_TAKEN_MESSAGE, details=self._slot_details(request, slot.label)
                ) from exc

            self.db.refresh(appointment)

        logger.info(
            f"Appointment booked: id={appointment.id} patient={appointment.patient_id} "
            f"doctor={appointment.doctor_id} {appointment.date} {appointment.time_slot}"
        )
        return appointment

    def _authorize(self, request: BookRequest, actor: Actor) -> None:
        if actor.is_admin or actor.is_patient(request.patient_id):
            return
        raise PermissionDeniedError(
            "Patients can only book appointments for themselves",
            details={"patient_id": request.patient_id},
        )

    @staticmethod
    def _slot_details(request: BookRequest, label: str) -> dict:
        return {
            "doctor_id": request.doctor_id,
            "date": request.date.isoformat(),
            "time_slot": label,
        }
