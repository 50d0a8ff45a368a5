from typing import List, Optional

from sqlalchemy.orm import Session

from ..core.clock import Clock, clinic_now
from ..core.exceptions import NotFoundError, PermissionDeniedError, ValidationError
from ..core.security import Actor, UserRole
from ..models.appointment import Appointment, AppointmentStatus, parse_status
from .cancellation_service import slot_start

class AppointmentService:
    """Read access to appointments for their patient, doctor or an admin."""

    def __init__(self, db: Session, clock: Clock = clinic_now):
        self.db = db
        self.clock = clock

    def get(self, appointment_id: int, actor: Actor) -> Appointment:
        appointment = self.db.query(Appointment).filter(Appointment.id == appointment_id).first()
        if not appointment:
            raise NotFoundError("Appointment not found", details={"appointment_id": appointment_id})

        if not (
            actor.is_admin
            or actor.is_patient(appointment.patient_id)
            or actor.is_doctor(appointment.doctor_id)
        ):
            raise PermissionDeniedError(
                "Not allowed to view this appointment",
                details={"appointment_id": appointment_id},
            )
        return appointment

    def list_for_actor(
        self,
        actor: Actor,
        status_label: Optional[str] = None,
        doctor_id: Optional[int] = None,
        patient_id: Optional[int] = None,
    ) -> dict:
        """Split the caller's appointments into upcoming and past.

        Patients and doctors see their own appointments; admins pick a
        doctor and/or patient.
        """
        query = self.db.query(Appointment)
        if actor.role == UserRole.PATIENT:
            query = query.filter(Appointment.patient_id == actor.id)
        elif actor.role == UserRole.DOCTOR:
            query = query.filter(Appointment.doctor_id == actor.id)
        else:
            if doctor_id is None and patient_id is None:
                raise ValidationError("Admins must list appointments by doctor_id or patient_id")
            if doctor_id is not None:
                query = query.filter(Appointment.doctor_id == doctor_id)
            if patient_id is not None:
                query = query.filter(Appointment.patient_id == patient_id)

        if status_label:
            query = query.filter(Appointment.status == self._status(status_label))

        appointments: List[Appointment] = query.order_by(
            Appointment.date.asc(), Appointment.time_slot.asc()
        ).all()

        now = self.clock()
        past = [a for a in appointments if slot_start(a) < now]
        upcoming = [
            a for a in appointments
            if slot_start(a) >= now
            and a.status in (AppointmentStatus.PENDING, AppointmentStatus.CONFIRMED)
        ]

        return {
            "upcoming": upcoming,
            "past": past,
            "total_count": len(appointments),
        }

    @staticmethod
    def _status(label: str) -> AppointmentStatus:
        try:
            return parse_status(label)
        except ValueError as exc:
            raise ValidationError(
                f"Unknown appointment status '{label}'",
                details={"status": label},
            ) from exc
