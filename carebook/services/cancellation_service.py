"""Appointment lifecycle: cancellation, confirmation and completion.

States are pending -> confirmed -> completed, with pending and confirmed
both able to move to cancelled while the slot is still in the future.
Completed and cancelled are terminal. Every transition is written as a
conditional UPDATE on the status it was validated against, so two callers
racing on the same appointment cannot both apply a transition.
"""

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from ..core.clock import Clock, clinic_now
from ..core.config import settings
from ..core.database import apply_statement_timeout, store_errors
from ..core.exceptions import NotFoundError, PermissionDeniedError, PolicyError
from ..core.security import Actor
from ..models.appointment import Appointment, AppointmentStatus, TERMINAL_STATUSES
from .timeslots import parse_time_slot

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS = {
    AppointmentStatus.PENDING: {AppointmentStatus.CONFIRMED, AppointmentStatus.CANCELLED},
    AppointmentStatus.CONFIRMED: {AppointmentStatus.COMPLETED, AppointmentStatus.CANCELLED},
    AppointmentStatus.COMPLETED: set(),
    AppointmentStatus.CANCELLED: set(),
}

def can_transition(current: AppointmentStatus, target: AppointmentStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[current]

def slot_start(appointment: Appointment) -> datetime:
    return parse_time_slot(appointment.time_slot).starts_at(appointment.date)

def slot_end(appointment: Appointment) -> datetime:
    return parse_time_slot(appointment.time_slot).ends_at(appointment.date)

class CancellationPolicy:
    def __init__(self, db: Session, clock: Clock = clinic_now):
        self.db = db
        self.clock = clock

    def cancel(self, appointment_id: int, actor: Actor, reason: Optional[str] = None) -> Appointment:
        """Cancel a pending or confirmed appointment that has not started yet."""
        appointment = self._get(appointment_id)

        if not (
            actor.is_admin
            or actor.is_patient(appointment.patient_id)
            or actor.is_doctor(appointment.doctor_id)
        ):
            raise PermissionDeniedError(
                "Only the patient, the doctor or an admin can cancel this appointment",
                details={"appointment_id": appointment_id},
            )

        if appointment.status in TERMINAL_STATUSES:
            raise PolicyError(
                f"Cannot cancel an appointment that is already {appointment.status.value}",
                details={"appointment_id": appointment_id, "status": appointment.status.value},
            )

        if slot_start(appointment) <= self.clock():
            raise PolicyError(
                "Cannot cancel an appointment whose scheduled time has already passed",
                details={"appointment_id": appointment_id},
            )

        self._transition(
            appointment,
            AppointmentStatus.CANCELLED,
            cancelled_reason=reason,
            cancelled_by=actor.role.value,
        )
        logger.info(f"Appointment cancelled: id={appointment_id} by={actor.role.value} reason={reason}")
        return appointment

    def confirm(self, appointment_id: int, actor: Actor) -> Appointment:
        """Doctor (or admin) confirmation of a pending appointment."""
        appointment = self._get(appointment_id)

        if not (actor.is_admin or actor.is_doctor(appointment.doctor_id)):
            raise PermissionDeniedError(
                "Only the doctor or an admin can confirm this appointment",
                details={"appointment_id": appointment_id},
            )

        if not can_transition(appointment.status, AppointmentStatus.CONFIRMED):
            raise PolicyError(
                f"Cannot confirm an appointment that is {appointment.status.value}",
                details={"appointment_id": appointment_id, "status": appointment.status.value},
            )

        if slot_start(appointment) <= self.clock():
            raise PolicyError(
                "Cannot confirm an appointment whose scheduled time has already passed",
                details={"appointment_id": appointment_id},
            )

        self._transition(appointment, AppointmentStatus.CONFIRMED)
        logger.info(f"Appointment confirmed: id={appointment_id}")
        return appointment

    def complete(self, appointment_id: int, actor: Optional[Actor] = None) -> Appointment:
        """Mark a confirmed appointment completed once its slot has ended."""
        appointment = self._get(appointment_id)

        if actor is not None and not (actor.is_admin or actor.is_doctor(appointment.doctor_id)):
            raise PermissionDeniedError(
                "Only the doctor or an admin can complete this appointment",
                details={"appointment_id": appointment_id},
            )

        if not can_transition(appointment.status, AppointmentStatus.COMPLETED):
            raise PolicyError(
                f"Cannot complete an appointment that is {appointment.status.value}",
                details={"appointment_id": appointment_id, "status": appointment.status.value},
            )

        if slot_end(appointment) > self.clock():
            raise PolicyError(
                "Cannot complete an appointment before its time slot has ended",
                details={"appointment_id": appointment_id},
            )

        self._transition(appointment, AppointmentStatus.COMPLETED)
        logger.info(f"Appointment completed: id={appointment_id}")
        return appointment

    def complete_elapsed(self) -> int:
        """Sweep: complete every confirmed appointment whose slot has ended."""
        now = self.clock()
        candidates = self.db.query(Appointment).filter(
            Appointment.status == AppointmentStatus.CONFIRMED,
            Appointment.date <= now.date(),
        ).all()

        completed = 0
        with store_errors(self.db, "completion sweep"):
            for appointment in candidates:
                if slot_end(appointment) > now:
                    continue
                updated = self.db.query(Appointment).filter(
                    Appointment.id == appointment.id,
                    Appointment.status == AppointmentStatus.CONFIRMED,
                ).update({"status": AppointmentStatus.COMPLETED}, synchronize_session=False)
                completed += updated
            self.db.commit()

        if completed:
            logger.info(f"Completion sweep marked {completed} appointments completed")
        return completed

    def _get(self, appointment_id: int) -> Appointment:
        appointment = self.db.query(Appointment).filter(Appointment.id == appointment_id).first()
        if not appointment:
            raise NotFoundError("Appointment not found", details={"appointment_id": appointment_id})
        return appointment

    def _transition(self, appointment: Appointment, target: AppointmentStatus, **values) -> None:
        expected = appointment.status
        with store_errors(self.db, f"status change to {target.value}"):
            apply_statement_timeout(self.db, settings.BOOKING_TIMEOUT_SECONDS)
            updated = self.db.query(Appointment).filter(
                Appointment.id == appointment.id,
                Appointment.status == expected,
            ).update({"status": target, **values}, synchronize_session=False)

            if updated != 1:
                self.db.rollback()
                raise PolicyError(
                    "Appointment status changed while processing the request",
                    details={"appointment_id": appointment.id},
                )

            self.db.commit()
            self.db.refresh(appointment)
