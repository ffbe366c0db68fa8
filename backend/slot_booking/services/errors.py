"""
Domain errors for scheduling operations.

Every operation validates before writing, so any of these means nothing was
persisted. Routes translate them to HTTP responses (see utils/http_errors.py).
"""


class SchedulingError(Exception):
    """Base exception for scheduling errors"""
    pass


class ValidationError(SchedulingError):
    """Malformed input: missing slot, bad scores, interest on an unavailable date"""
    pass


class ConflictError(SchedulingError):
    """The slot is already held by another match"""
    pass


class NotFoundError(SchedulingError):
    """Referenced slot, match, player or group no longer exists"""
    pass


class PermissionDeniedError(SchedulingError):
    """Caller is neither a participant of the match nor an organizer"""
    pass


class TransientIOError(SchedulingError):
    """The backing store is unreachable or timed out; caller should retry"""
    pass
