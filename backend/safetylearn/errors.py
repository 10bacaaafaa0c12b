"""Error taxonomy shared by the session manager, synchronizer and stores."""

from __future__ import annotations

from typing import Optional

NOT_AUTHENTICATED_MESSAGE = "Not authenticated"
PROGRESS_MISSING_MESSAGE = "Failed to fetch progress"
TRANSIENT_FAILURE_MESSAGE = "A temporary problem occurred. Please try again."
UNEXPECTED_FAILURE_MESSAGE = "An unexpected error occurred"

# Substrings the identity provider uses for credentials it no longer accepts.
STALE_SESSION_MARKERS = (
    "Auth session missing!",
    "Invalid JWT",
    "session_not_found",
    "JWT expired",
)

# Looser markers for errors raised from arbitrary call sites.
_AUTH_ERROR_MARKERS = ("JWT", "session", "401", "403")


class SafetyLearnError(Exception):
    """Base class for errors raised inside the account core."""


class NotAuthenticated(SafetyLearnError):
    def __init__(self, message: str = NOT_AUTHENTICATED_MESSAGE) -> None:
        super().__init__(message)


class AggregateMissing(SafetyLearnError):
    """A profile or progress row is absent and could not be created."""

    def __init__(self, aggregate: str, detail: Optional[str] = None) -> None:
        self.aggregate = aggregate
        message = f"{aggregate} is missing"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


class StaleSession(SafetyLearnError):
    """The identity provider rejected the stored credential."""


class TransientProviderError(SafetyLearnError):
    """Network or 5xx failure talking to a store or the identity provider."""


class StoreError(SafetyLearnError):
    def __init__(self, message: str, *, code: Optional[str] = None) -> None:
        self.code = code
        super().__init__(message)


def is_stale_session_message(message: Optional[str]) -> bool:
    if not message:
        return False
    lowered = message.lower()
    return any(marker.lower() in lowered for marker in STALE_SESSION_MARKERS)


def is_auth_store_error(exc: BaseException) -> bool:
    """True when a store failure was caused by a rejected credential."""
    if isinstance(exc, StaleSession):
        return True
    if isinstance(exc, StoreError):
        return exc.code == "401" or "JWT" in str(exc)
    return False


def is_session_failure(exc: BaseException) -> bool:
    """True when ``exc`` means the current credential should be purged."""
    if isinstance(exc, (StoreError, StaleSession)):
        return is_auth_store_error(exc)
    if isinstance(exc, SafetyLearnError):
        return False
    message = str(exc)
    return any(marker in message for marker in _AUTH_ERROR_MARKERS)


def describe_failure(exc: BaseException) -> str:
    """Map an exception to the message shown inline next to a failed action."""
    if isinstance(exc, (NotAuthenticated, StaleSession)):
        return NOT_AUTHENTICATED_MESSAGE
    if isinstance(exc, AggregateMissing):
        return PROGRESS_MISSING_MESSAGE if exc.aggregate == "progress" else str(exc)
    if isinstance(exc, TransientProviderError):
        return TRANSIENT_FAILURE_MESSAGE
    if isinstance(exc, StoreError):
        return str(exc)
    return UNEXPECTED_FAILURE_MESSAGE


__all__ = [
    "AggregateMissing",
    "NOT_AUTHENTICATED_MESSAGE",
    "NotAuthenticated",
    "PROGRESS_MISSING_MESSAGE",
    "STALE_SESSION_MARKERS",
    "SafetyLearnError",
    "StaleSession",
    "StoreError",
    "TRANSIENT_FAILURE_MESSAGE",
    "TransientProviderError",
    "UNEXPECTED_FAILURE_MESSAGE",
    "describe_failure",
    "is_auth_store_error",
    "is_session_failure",
    "is_stale_session_message",
]
