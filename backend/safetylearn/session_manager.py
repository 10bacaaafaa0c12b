"""Process-wide view of the signed-in user."""

from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Sequence, Tuple, Union

from .errors import UNEXPECTED_FAILURE_MESSAGE, is_session_failure
from .identity import AuthSession, IdentityEvent, IdentityProvider, purge_stale_session
from .profile_sync import ProfileSynchronizer
from .user_profile import AgeGroup, Profile, User

logger = logging.getLogger(__name__)

CONFIRM_EMAIL_MESSAGE = "Please check your email and click the confirmation link to complete your account setup."
SIGN_UP_FAILED_MESSAGE = "Failed to create account. Please try again."
SIGN_IN_FAILED_MESSAGE = "Sign in failed. Please try again."
PROFILE_LOAD_FAILED_MESSAGE = "Failed to load user profile. Please try again."
UNEXPECTED_AUTH_MESSAGE = "An unexpected error occurred. Please try again."

SIGN_IN_ERROR_MESSAGES: Sequence[Tuple[str, str]] = (
    ("Invalid login credentials", "Invalid email or password. Please check your credentials and try again."),
    ("Email not confirmed", "Please check your email and click the confirmation link before signing in."),
    ("Too many requests", "Too many sign-in attempts. Please wait a moment and try again."),
    (
        "User not found",
        "No account found with this email address. Please check your email or create a new account.",
    ),
    ("Invalid password", "Incorrect password. Please try again."),
)

SIGN_UP_ERROR_MESSAGES: Sequence[Tuple[str, str]] = (
    ("User already registered", "An account with this email already exists. Please try signing in instead."),
    ("Invalid email", "Please enter a valid email address."),
    ("Password should be at least", "Password must be at least 6 characters long."),
    ("Signup is disabled", "Account creation is currently disabled. Please contact support."),
)

UserCallback = Callable[[Optional[User]], Union[None, Awaitable[None]]]


def friendly_error(message: str, table: Sequence[Tuple[str, str]]) -> str:
    for marker, friendly in table:
        if marker in message:
            return friendly
    return message


def normalize_email(email: str) -> str:
    return email.strip().lower()


@dataclass(frozen=True)
class AuthOutcome:
    user: Optional[User] = None
    error: Optional[str] = None


class SessionManager:
    """Single authoritative answer to "who is the current user".

    Concurrent ``get_current_user`` calls share one in-flight fetch. The shared
    future is dropped as soon as it settles, and whenever the synchronizer
    reports a mutation, so the next call always reads fresh state.
    """

    def __init__(
        self,
        identity_provider: IdentityProvider,
        synchronizer: ProfileSynchronizer,
        *,
        propagation_delay: float = 0.1,
    ) -> None:
        self._provider = identity_provider
        self._synchronizer = synchronizer
        self._propagation_delay = propagation_delay
        self._pending: Optional[asyncio.Future[Optional[User]]] = None
        self._listener_registered = False
        synchronizer.on_mutation(self.invalidate)

    @property
    def synchronizer(self) -> ProfileSynchronizer:
        return self._synchronizer

    async def get_current_user(self) -> Optional[User]:
        pending = self._pending
        if pending is None:
            logger.debug("Starting fresh current-user fetch")
            pending = asyncio.ensure_future(self._fetch_current_user())
            self._pending = pending
            pending.add_done_callback(self._release)
        else:
            logger.debug("Joining in-flight current-user fetch")
        return await asyncio.shield(pending)

    def _release(self, settled: "asyncio.Future[Optional[User]]") -> None:
        if self._pending is settled:
            self._pending = None

    def invalidate(self) -> None:
        self._pending = None

    async def _fetch_current_user(self) -> Optional[User]:
        try:
            result = await self._provider.get_current_identity()
        except Exception as exc:  # noqa: BLE001
            logger.exception("Identity lookup failed")
            if is_session_failure(exc):
                await purge_stale_session(self._provider, reason=str(exc))
            return None

        if result.error is not None:
            logger.warning("Identity provider session issue: %s", result.error.message)
            if result.error.is_stale_session:
                await purge_stale_session(self._provider, reason=result.error.message)
            return None
        if result.identity is None:
            logger.info("No authenticated identity")
            return None

        return await self._synchronizer.assemble(result.identity)

    def on_identity_change(self, callback: UserCallback) -> Callable[[], None]:
        """Relay identity transitions to ``callback`` as assembled users.

        Only one listener is supported; later registrations get a handle that
        does nothing.
        """
        if self._listener_registered:
            logger.warning("Identity change listener already registered, skipping")
            return lambda: None
        self._listener_registered = True

        async def _relay(event: IdentityEvent) -> None:
            logger.info("Identity changed: %s", event.kind)
            self.invalidate()
            user: Optional[User] = None
            if event.identity is not None:
                await asyncio.sleep(self._propagation_delay)
                user = await self.get_current_user()
            outcome = callback(user)
            if inspect.isawaitable(outcome):
                await outcome

        remove = self._provider.on_identity_change(_relay)

        def _unsubscribe() -> None:
            remove()
            self._listener_registered = False

        return _unsubscribe

    async def sign_up(
        self,
        email: str,
        password: str,
        *,
        name: str,
        age: int,
        age_group: AgeGroup,
    ) -> AuthOutcome:
        self.invalidate()
        metadata = {"name": name, "age": age, "age_group": age_group, "avatar": ""}
        try:
            result = await self._provider.sign_up(normalize_email(email), password, metadata)
        except Exception:  # noqa: BLE001
            logger.exception("Unexpected sign-up error")
            return AuthOutcome(error=UNEXPECTED_AUTH_MESSAGE)

        if result.error is not None:
            logger.warning("Sign-up rejected: %s", result.error.message)
            return AuthOutcome(error=friendly_error(result.error.message, SIGN_UP_ERROR_MESSAGES))
        if result.identity is None:
            return AuthOutcome(error=SIGN_UP_FAILED_MESSAGE)
        if result.session is None:
            logger.info("Sign-up for %s awaits email confirmation", result.identity.id)
            return AuthOutcome(error=CONFIRM_EMAIL_MESSAGE)

        identity = result.identity
        profile = Profile.from_identity_defaults(identity.id, identity.email, metadata)
        await self._synchronizer.seed_records(identity, profile)
        self.invalidate()
        return AuthOutcome(user=await self.get_current_user())

    async def sign_in(self, email: str, password: str) -> AuthOutcome:
        self.invalidate()
        try:
            result = await self._provider.sign_in(normalize_email(email), password)
        except Exception:  # noqa: BLE001
            logger.exception("Unexpected sign-in error")
            return AuthOutcome(error=UNEXPECTED_AUTH_MESSAGE)

        if result.error is not None:
            logger.warning("Sign-in rejected: %s", result.error.message)
            return AuthOutcome(error=friendly_error(result.error.message, SIGN_IN_ERROR_MESSAGES))
        if result.identity is None or result.session is None:
            return AuthOutcome(error=SIGN_IN_FAILED_MESSAGE)

        await asyncio.sleep(self._propagation_delay)
        self.invalidate()
        user = await self.get_current_user()
        if user is None:
            logger.error("Signed in as %s but the profile could not be loaded", result.identity.id)
            return AuthOutcome(error=PROFILE_LOAD_FAILED_MESSAGE)
        return AuthOutcome(user=user)

    async def sign_out(self) -> AuthOutcome:
        self.invalidate()
        try:
            error = await self._provider.sign_out()
        except Exception:  # noqa: BLE001
            logger.exception("Unexpected sign-out error")
            return AuthOutcome(error=UNEXPECTED_FAILURE_MESSAGE)
        if error is not None:
            logger.warning("Sign-out error: %s", error.message)
            return AuthOutcome(error=error.message)
        return AuthOutcome()

    async def is_authenticated(self) -> bool:
        try:
            result = await self._provider.get_current_identity()
        except Exception:  # noqa: BLE001
            return False
        return result.error is None and result.identity is not None

    async def get_session(self) -> Optional[AuthSession]:
        try:
            return await self._provider.get_session()
        except Exception:  # noqa: BLE001
            logger.exception("Session lookup failed")
            return None


__all__ = [
    "AuthOutcome",
    "CONFIRM_EMAIL_MESSAGE",
    "PROFILE_LOAD_FAILED_MESSAGE",
    "SIGN_IN_ERROR_MESSAGES",
    "SIGN_UP_ERROR_MESSAGES",
    "SessionManager",
    "friendly_error",
    "normalize_email",
]
