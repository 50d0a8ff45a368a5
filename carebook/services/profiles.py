"""Doctor and patient lookups shared by the scheduling services."""

from datetime import time
from typing import NamedTuple

from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.exceptions import NotFoundError, PermissionDeniedError, ValidationError
from ..core.security import Actor
from ..models.doctor import Doctor
from ..models.patient import Patient
from .timeslots import parse_clock


class WorkingHours(NamedTuple):
    start: time
    end: time
    slot_minutes: int


def get_active_doctor(db: Session, doctor_id: int) -> Doctor:
    doctor = db.query(Doctor).filter(Doctor.id == doctor_id).first()
    if not doctor or doctor.is_active is False:
        raise NotFoundError("Doctor not found", details={"doctor_id": doctor_id})
    return doctor


def get_active_patient(db: Session, patient_id: int) -> Patient:
    patient = db.query(Patient).filter(Patient.id == patient_id).first()
    if not patient or patient.is_active is False:
        raise NotFoundError("Patient not found", details={"patient_id": patient_id})
    return patient


def working_hours(doctor: Doctor) -> WorkingHours:
    """Doctor's working day and slot granularity, with clinic defaults."""
    start = doctor.working_hours_start or parse_clock(settings.DEFAULT_WORKING_HOURS_START)
    end = doctor.working_hours_end or parse_clock(settings.DEFAULT_WORKING_HOURS_END)
    minutes = doctor.slot_duration_minutes or settings.DEFAULT_SLOT_DURATION_MINUTES
    if start >= end:
        raise ValidationError(
            "Doctor working hours are misconfigured",
            details={"doctor_id": doctor.id},
        )
    return WorkingHours(start, end, minutes)


def ensure_can_manage_doctor(actor: Actor, doctor_id: int) -> None:
    """Doctors manage only their own schedule; admins manage any."""
    if actor.is_admin or actor.is_doctor(doctor_id):
        return
    raise PermissionDeniedError(
        "Only the doctor or an admin can manage this schedule",
        details={"doctor_id": doctor_id},
    )
