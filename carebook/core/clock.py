from datetime import datetime
from typing import Callable
from zoneinfo import ZoneInfo

from .config import settings

Clock = Callable[[], datetime]

def clinic_now() -> datetime:
    """Current wall-clock time as a naive datetime in the clinic's local zone.

    Schedule dates and time slots are stored as doctor-local values, so all
    comparisons against "now" use the same naive local representation.
    """
    if settings.CLINIC_TIMEZONE:
        return datetime.now(ZoneInfo(settings.CLINIC_TIMEZONE)).replace(tzinfo=None)
    return datetime.now()
