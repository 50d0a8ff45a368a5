"""Time slot parsing and slicing.

A time slot is a contiguous interval within one calendar date written as
``"HH:MM-HH:MM"`` on a 24-hour clock.
"""

import re
from dataclasses import dataclass
from datetime import date, datetime, time
from typing import List

from ..core.exceptions import ValidationError

TIME_SLOT_PATTERN = re.compile(
    r"^([01][0-9]|2[0-3]):([0-5][0-9])-([01][0-9]|2[0-3]):([0-5][0-9])$"
)
CLOCK_PATTERN = re.compile(r"^([01][0-9]|2[0-3]):([0-5][0-9])(?::[0-5][0-9])?$")


@dataclass(frozen=True, order=True)
class TimeSlot:
    start: time
    end: time

    @property
    def label(self) -> str:
        return f"{self.start:%H:%M}-{self.end:%H:%M}"

    @property
    def duration_minutes(self) -> int:
        return minutes_of(self.end) - minutes_of(self.start)

    def starts_at(self, on: date) -> datetime:
        return datetime.combine(on, self.start)

    def ends_at(self, on: date) -> datetime:
        return datetime.combine(on, self.end)

    def __str__(self) -> str:
        return self.label


def minutes_of(value: time) -> int:
    return value.hour * 60 + value.minute


def from_minutes(total: int) -> time:
    return time(total // 60, total % 60)


def parse_clock(value: str) -> time:
    """Parse ``"HH:MM"`` (a trailing ``":SS"`` is tolerated and dropped)."""
    match = CLOCK_PATTERN.match(value.strip())
    if not match:
        raise ValidationError(f"Invalid time '{value}'. Use HH:MM")
    return time(int(match.group(1)), int(match.group(2)))


def parse_time_slot(value: str) -> TimeSlot:
    if not isinstance(value, str):
        raise ValidationError("Time slot must be a string in HH:MM-HH:MM format")

    match = TIME_SLOT_PATTERN.match(value.strip())
    if not match:
        raise ValidationError(
            f"Invalid time slot format '{value}'. Use HH:MM-HH:MM",
            details={"time_slot": value},
        )

    start = time(int(match.group(1)), int(match.group(2)))
    end = time(int(match.group(3)), int(match.group(4)))
    if start >= end:
        raise ValidationError(
            f"Time slot '{value}' must end after it starts",
            details={"time_slot": value},
        )
    return TimeSlot(start, end)


def slice_range(start: time, end: time, minutes: int) -> List[TimeSlot]:
    """Cut ``[start, end)`` into contiguous slots of ``minutes`` each.

    A trailing remainder shorter than one slot is dropped.
    """
    if minutes <= 0:
        raise ValidationError("Slot duration must be a positive number of minutes")
    if start >= end:
        raise ValidationError("Range end must be after range start")

    slots = []
    cursor = minutes_of(start)
    stop = minutes_of(end)
    while cursor + minutes <= stop:
        slots.append(TimeSlot(from_minutes(cursor), from_minutes(cursor + minutes)))
        cursor += minutes
    return slots


def is_aligned(slot: TimeSlot, working_start: time, working_end: time, minutes: int) -> bool:
    """True if the slot lies inside working hours on the doctor's slot grid."""
    if slot.start < working_start or slot.end > working_end:
        return False
    if slot.duration_minutes != minutes:
        return False
    return (minutes_of(slot.start) - minutes_of(working_start)) % minutes == 0


def sort_labels(labels) -> List[str]:
    """Order slot labels chronologically by start time."""
    return sorted(labels, key=lambda label: parse_time_slot(label))
