"""Exception hierarchy for scheduling operations.

Every error carries a stable machine-readable ``kind``, the HTTP status the
Lambda handler answers with, and whether the caller may retry.
"""
from typing import List


class SchedulingError(Exception):
    """Base class for all scheduling failures."""

    kind = 'scheduling_error'
    status_code = 500
    retryable = False

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class ValidationError(SchedulingError):
    """Missing or malformed required field."""

    kind = 'validation_error'
    status_code = 400


class UnknownProfileError(SchedulingError):
    """One or more referenced profiles do not exist."""

    kind = 'unknown_profile'
    status_code = 400

    def __init__(self, profile_ids: List[str]):
        self.profile_ids = [str(pid) for pid in profile_ids]
        super().__init__(
            f"Unknown profile ID(s): {', '.join(self.profile_ids)}"
        )


class InvalidTimestampError(SchedulingError):
    """Date, time or timezone could not be parsed or resolved."""

    kind = 'invalid_timestamp'
    status_code = 400


class InvalidIntervalError(SchedulingError):
    """End instant is not strictly after start instant."""

    kind = 'invalid_interval'
    status_code = 400


class AdminExistsError(SchedulingError):
    kind = 'admin_exists'
    status_code = 400


class NotAuthenticatedError(SchedulingError):
    kind = 'not_authenticated'
    status_code = 401


class NotFoundError(SchedulingError):
    kind = 'not_found'
    status_code = 404


class ConflictError(SchedulingError):
    """Event was modified concurrently; re-fetch and reapply the patch."""

    kind = 'conflict'
    status_code = 409
    retryable = True


class ThrottledError(SchedulingError):
    """Storage kept deferring work; safe to retry later."""

    kind = 'throttled'
    status_code = 503
    retryable = True
