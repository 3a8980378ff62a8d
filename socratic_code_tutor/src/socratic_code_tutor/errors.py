"""
Error taxonomy for the tutoring engine.

Only InputError and PermanentProviderError (raised while classifying) are meant
to reach the caller. Everything else is absorbed by a retry or a safe fallback.
"""

from typing import Optional


class TutorError(Exception):
    """Base class for all tutoring engine errors."""


class InputError(TutorError):
    """Missing or malformed request fields. Nothing is mutated."""

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field


class SessionNotFoundError(InputError):
    """Lifecycle call for a session id the store does not know."""

    def __init__(self, session_id: str):
        super().__init__(f"Unknown session: {session_id}", field="session_id")
        self.session_id = session_id


class ProviderError(TutorError):
    """Failure reported by the external generation/classification service."""

    def __init__(self, message: str, operation: Optional[str] = None, status_code: Optional[int] = None):
        super().__init__(message)
        self.operation = operation
        self.status_code = status_code


class TransientProviderError(ProviderError):
    """The service is overloaded; the call may succeed if retried later."""


class PermanentProviderError(ProviderError):
    """Any other provider failure; retrying the same call will not help."""


class PersistenceError(TutorError):
    """A best-effort mirror write failed. Never fatal for a turn."""
