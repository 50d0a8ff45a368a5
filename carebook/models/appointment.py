from sqlalchemy import Column, Integer, String, ForeignKey, DateTime, Date, Text, Index, Enum as SQLEnum, text
from sqlalchemy.sql import func
import enum

from ..core.database import Base

class AppointmentStatus(str, enum.Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

ACTIVE_STATUSES = (AppointmentStatus.PENDING, AppointmentStatus.CONFIRMED)
TERMINAL_STATUSES = (AppointmentStatus.COMPLETED, AppointmentStatus.CANCELLED)

# Older clients used several labels for the initial state
LEGACY_STATUS_ALIASES = {
    "scheduled": AppointmentStatus.PENDING,
    "booked": AppointmentStatus.PENDING,
}

def parse_status(label: str) -> AppointmentStatus:
    """Map a status label, including legacy aliases, to its canonical status."""
    normalized = label.strip().lower()
    if normalized in LEGACY_STATUS_ALIASES:
        return LEGACY_STATUS_ALIASES[normalized]
    return AppointmentStatus(normalized)

# Only one appointment that is not cancelled may hold a doctor's slot.
_ACTIVE_ONLY = text("status != 'cancelled'")

class Appointment(Base):
    __tablename__ = "appointments"
    __table_args__ = (
        Index(
            "uq_active_appointment_slot",
            "doctor_id", "date", "time_slot",
            unique=True,
            postgresql_where=_ACTIVE_ONLY,
            sqlite_where=_ACTIVE_ONLY,
        ),
    )

    id = Column(Integer, primary_key=True, index=True)

    # Relationships
    patient_id = Column(Integer, ForeignKey("patients.id"), nullable=False, index=True)
    doctor_id = Column(Integer, ForeignKey("doctors.id"), nullable=False, index=True)

    # Appointment details
    date = Column(Date, nullable=False, index=True)
    time_slot = Column(String(11), nullable=False)  # "HH:MM-HH:MM"
    status = Column(
        SQLEnum(
            AppointmentStatus,
            name="appointment_status",
            native_enum=False,
            length=16,
            values_callable=lambda statuses: [s.value for s in statuses],
        ),
        nullable=False,
        default=AppointmentStatus.PENDING,
    )
    notes = Column(Text, nullable=True)

    # Tracking
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())
    cancelled_reason = Column(String(255), nullable=True)
    cancelled_by = Column(String(20), nullable=True)  # role of the cancelling actor

    def __repr__(self):
        return f"<Appointment(id={self.id}, patient_id={self.patient_id}, doctor_id={self.doctor_id}, date='{self.date}', time_slot='{self.time_slot}')>"
