from sqlalchemy import Column, Integer, String, ForeignKey, DateTime, Date, Boolean, Text, UniqueConstraint
from sqlalchemy.sql import func

from ..core.database import Base

class ScheduleSlot(Base):
    """A doctor's declaration that a date and time slot is open or blocked."""
    __tablename__ = "schedule_slots"
    __table_args__ = (
        UniqueConstraint("doctor_id", "date", "time_slot", name="uq_schedule_slot"),
    )

    id = Column(Integer, primary_key=True, index=True)
    doctor_id = Column(Integer, ForeignKey("doctors.id"), nullable=False, index=True)

    date = Column(Date, nullable=False, index=True)
    time_slot = Column(String(11), nullable=False)  # "HH:MM-HH:MM"
    is_available = Column(Boolean, nullable=False, default=True)
    day_of_week = Column(Integer, nullable=False)  # 0 = Monday
    notes = Column(Text, nullable=True)

    # Timestamps
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    def __repr__(self):
        return f"<ScheduleSlot(id={self.id}, doctor_id={self.doctor_id}, date='{self.date}', time_slot='{self.time_slot}')>"
