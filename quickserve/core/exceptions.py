"""
Error Taxonomy

Typed failures raised by the order pipeline. Each error carries the HTTP
status the API layer answers with and a machine-readable code, so the
boundary never has to guess how to present a failure.

    ValidationError         400  malformed creation input (empty cart, no name)
    InvalidTransitionError  400  requested status is not the legal successor
    NotFoundError           404  unknown order / profile id
    ConflictError           409  concurrent transition or duplicate key
    StoreError              503  persistence or connectivity failure
"""

from typing import Optional


class QuickServeError(Exception):
    """Base class for all domain errors."""

    status_code: int = 500
    error_code: str = "internal_error"

    def __init__(self, message: str, *, error_code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if error_code:
            self.error_code = error_code

    def to_dict(self) -> dict:
        """Convert to the JSON error envelope."""
        return {
            "success": False,
            "error": self.error_code,
            "message": self.message,
        }


class ValidationError(QuickServeError):
    status_code = 400
    error_code = "validation_error"


class InvalidTransitionError(QuickServeError):
    status_code = 400
    error_code = "invalid_transition"


class NotFoundError(QuickServeError):
    status_code = 404
    error_code = "not_found"


class ConflictError(QuickServeError):
    status_code = 409
    error_code = "conflict"


class StoreError(QuickServeError):
    status_code = 503
    error_code = "store_unavailable"


ERRORS_BY_CODE = {
    cls.error_code: cls
    for cls in (
        ValidationError,
        InvalidTransitionError,
        NotFoundError,
        ConflictError,
        StoreError,
    )
}
