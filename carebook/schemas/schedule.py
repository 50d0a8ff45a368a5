from datetime import date, datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from .fields import normalize_clock, normalize_optional_time_slot, normalize_time_slot


class ScheduleCreateRequest(BaseModel):
    """Dates and time slots a doctor opens for booking.

    Dates come from ``dates`` and/or a weekly ``days_of_week`` pattern
    (0 = Monday) starting at ``start_date``. Time slots come from
    ``time_slots``, or from slicing ``start_time``-``end_time``, or from the
    doctor's whole working day when neither is given.
    """
    doctor_id: int = Field(gt=0)
    dates: List[date] = Field(default_factory=list)
    repeat_weekly: bool = False
    days_of_week: List[int] = Field(default_factory=list)
    start_date: Optional[date] = None
    weeks: Optional[int] = Field(default=None, ge=1, le=52)
    time_slots: List[str] = Field(default_factory=list)
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    notes: Optional[str] = None

    @field_validator("days_of_week")
    @classmethod
    def validate_days_of_week(cls, value: List[int]) -> List[int]:
        for day in value:
            if day < 0 or day > 6:
                raise ValueError("days_of_week entries must be between 0 (Monday) and 6 (Sunday)")
        return sorted(set(value))

    @field_validator("time_slots")
    @classmethod
    def validate_time_slots(cls, value: List[str]) -> List[str]:
        return [normalize_time_slot(slot) for slot in value]

    @field_validator("start_time", "end_time")
    @classmethod
    def validate_clock(cls, value: Optional[str]) -> Optional[str]:
        return normalize_clock(value)

    @model_validator(mode="after")
    def check_sources(self):
        if not self.dates and not self.days_of_week:
            raise ValueError("Provide dates or days_of_week")
        if (self.start_time is None) != (self.end_time is None):
            raise ValueError("start_time and end_time must be given together")
        if self.time_slots and self.start_time is not None:
            raise ValueError("Use either time_slots or a start_time/end_time range, not both")
        return self


class ScheduleSlotResponse(BaseModel):
    id: int
    doctor_id: int
    date: date
    time_slot: str
    is_available: bool
    day_of_week: int
    notes: Optional[str] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class ScheduleCreateResponse(BaseModel):
    created: int
    slots: List[ScheduleSlotResponse]


class ScheduleUpdateRequest(BaseModel):
    """Block/unblock a slot and/or move it to another time slot on the same date."""
    is_available: Optional[bool] = None
    time_slot: Optional[str] = None
    notes: Optional[str] = None

    @field_validator("time_slot")
    @classmethod
    def validate_time_slot(cls, value: Optional[str]) -> Optional[str]:
        return normalize_optional_time_slot(value)

    @model_validator(mode="after")
    def check_changes(self):
        if self.is_available is None and self.time_slot is None and self.notes is None:
            raise ValueError("Provide is_available, time_slot or notes")
        return self


class BlockTimeRequest(BaseModel):
    doctor_id: Optional[int] = Field(default=None, gt=0)
    date: date
    time_slot: str
    reason: Optional[str] = None

    @field_validator("time_slot")
    @classmethod
    def validate_time_slot(cls, value: str) -> str:
        return normalize_time_slot(value)


class AvailableSlotsResponse(BaseModel):
    doctor_id: int
    date: date
    available_slots: List[str] = Field(serialization_alias="availableSlots")


class WeeklyScheduleResponse(BaseModel):
    week_start: date
    schedule: Dict[str, List[ScheduleSlotResponse]]
