"""Sync error taxonomy.

Per-item problems (NotFoundError, InvalidTransitionError, TransientAdapterError)
are converted to item outcomes by the orchestrator. ConfigurationError and
AuthError abort a run. SyncCancelledError ends a run early when its
cancel signal fires during a retry wait.
"""

from typing import Optional

INVALID_TRANSITION_MARKER = "not in the list of supported values"


class SyncError(Exception):
    """Base class for all sync failures."""


class ConfigurationError(SyncError):
    """Missing or incomplete tenant configuration."""


class AuthError(SyncError):
    """Expired or rejected credentials."""


class NotFoundError(SyncError):
    """A referenced record no longer exists."""


class InvalidTransitionError(SyncError):
    """The target system rejected a state change."""

    def __init__(
        self, message: str, from_state: Optional[str] = None, to_state: Optional[str] = None
    ):
        super().__init__(message)
        self.from_state = from_state
        self.to_state = to_state


class TransientAdapterError(SyncError):
    """Any other adapter-level failure."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class SyncAlreadyRunningError(SyncError):
    """A run for the same tenant is still in progress."""


class SyncCancelledError(SyncError):
    """The run was cancelled while waiting on an external system."""


def is_invalid_transition(exc: BaseException) -> bool:
    """True if `exc` is (or reads like) a rejected state transition."""
    if isinstance(exc, InvalidTransitionError):
        return True
    return INVALID_TRANSITION_MARKER in str(exc)
