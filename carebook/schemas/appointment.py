from datetime import date, datetime
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

from ..core.config import settings
from ..models.appointment import AppointmentStatus
from .fields import normalize_time_slot


class BookRequest(BaseModel):
    doctor_id: int = Field(gt=0)
    patient_id: int = Field(gt=0)
    date: date
    time_slot: str
    notes: Optional[str] = None

    @field_validator("time_slot")
    @classmethod
    def validate_time_slot(cls, value: str) -> str:
        return normalize_time_slot(value)

    @field_validator("notes")
    @classmethod
    def validate_notes(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None

        normalized = value.strip()
        if not normalized:
            return None

        if len(normalized) > settings.MAX_APPOINTMENT_NOTES_LENGTH:
            raise ValueError(
                f"Notes must be {settings.MAX_APPOINTMENT_NOTES_LENGTH} characters or fewer."
            )

        return normalized


class CancelRequest(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=255)

    @field_validator("reason")
    @classmethod
    def strip_reason(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        return value.strip() or None


class AppointmentResponse(BaseModel):
    id: int
    doctor_id: int
    patient_id: int
    date: date
    time_slot: str
    status: AppointmentStatus
    notes: Optional[str] = None
    cancelled_reason: Optional[str] = None
    cancelled_by: Optional[str] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class AppointmentListResponse(BaseModel):
    upcoming: List[AppointmentResponse]
    past: List[AppointmentResponse]
    total_count: int


class CompletionSweepResponse(BaseModel):
    completed: int
