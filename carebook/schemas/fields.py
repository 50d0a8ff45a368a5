"""Field normalizers shared by the request schemas.

Pydantic validators must raise ValueError, so the domain ValidationError
raised by the time slot helpers is converted here.
"""

from typing import Optional

from ..core.exceptions import ValidationError
from ..services.timeslots import parse_clock, parse_time_slot


def normalize_time_slot(value: str) -> str:
    try:
        return parse_time_slot(value).label
    except ValidationError as exc:
        raise ValueError(exc.message) from exc


def normalize_optional_time_slot(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    return normalize_time_slot(value)


def normalize_clock(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    try:
        return f"{parse_clock(value):%H:%M}"
    except ValidationError as exc:
        raise ValueError(exc.message) from exc
