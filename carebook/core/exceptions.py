"""Domain errors raised by the scheduling services.

Each error carries a stable machine-readable ``code`` and the HTTP status the
API layer renders it with.
"""

from typing import Any, Dict, Optional

from fastapi import status


class SchedulingError(Exception):
    code = "scheduling_error"
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": self.code,
            "message": self.message,
            "details": self.details,
        }


class ValidationError(SchedulingError):
    """Malformed or missing input."""
    code = "validation_error"
    status_code = status.HTTP_400_BAD_REQUEST


class PermissionDeniedError(SchedulingError):
    """The caller may not act on this doctor, patient or appointment."""
    code = "forbidden"
    status_code = status.HTTP_403_FORBIDDEN


class NotFoundError(SchedulingError):
    """Unknown doctor, patient, appointment or schedule slot."""
    code = "not_found"
    status_code = status.HTTP_404_NOT_FOUND


class ConflictError(SchedulingError):
    """The slot is not available at commit time."""
    code = "slot_conflict"
    status_code = status.HTTP_409_CONFLICT


class PolicyError(SchedulingError):
    """Illegal appointment or schedule state transition."""
    code = "policy_violation"
    status_code = status.HTTP_400_BAD_REQUEST


class TransientStoreError(SchedulingError):
    """The store timed out or is unreachable."""
    code = "store_unavailable"
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
