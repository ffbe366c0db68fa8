"""
Translate domain errors into HTTP responses.
"""
from fastapi import HTTPException

from slot_booking.services.errors import (
    ConflictError,
    NotFoundError,
    PermissionDeniedError,
    SchedulingError,
    TransientIOError,
    ValidationError,
)

STATUS_BY_ERROR = (
    (ValidationError, 422),
    (PermissionDeniedError, 403),
    (NotFoundError, 404),
    (ConflictError, 409),
    (TransientIOError, 503),
)


def to_http_exception(exc: SchedulingError) -> HTTPException:
    for error_type, status_code in STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return HTTPException(status_code=status_code, detail=str(exc))
    return HTTPException(status_code=400, detail=str(exc))
