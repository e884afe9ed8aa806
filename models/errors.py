# errors.py
"""
Error taxonomy shared by the sync engine and the request pipeline.
"""

from typing import Optional


class SyncError(Exception):
    """Base class for every error raised by the sync client."""


class ValidationFailure(SyncError):
    """A local edit violates the exercise invariants and was rejected before queuing."""


class PipelineError(SyncError):
    """Failure of an outbound request after the pipeline gave up on it."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class Unauthorized(PipelineError):
    """Credentials are invalid; when session_invalidated is set the user must log in again."""

    def __init__(self, message: str, status_code: Optional[int] = 401, session_invalidated: bool = False):
        super().__init__(message, status_code)
        self.session_invalidated = session_invalidated


class Forbidden(PipelineError):
    """Authenticated but not allowed (403)."""


class Transient(PipelineError):
    """Timeout, network error or 5xx that survived the pipeline's own retries."""


class Permanent(PipelineError):
    """Non-retryable rejection (4xx other than 401/403) or a malformed response body."""


class QueueOverflow(SyncError):
    """A pending update exceeded its retry ceiling and is no longer retried automatically."""

    def __init__(self, exercise_id: str, attempts: int, reason: Optional[str] = None):
        message = f"Sync for exercise {exercise_id} stuck after {attempts} attempts"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)
        self.exercise_id = exercise_id
        self.attempts = attempts
        self.reason = reason
