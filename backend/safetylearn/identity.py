"""Identity provider contract and the hosted auth REST client."""

from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Dict, List, Literal, Optional, Protocol, Set, Union

import httpx

from .config import Settings
from .errors import is_stale_session_message
from .telemetry import emit_event

logger = logging.getLogger(__name__)

IdentityEventKind = Literal["SIGNED_IN", "SIGNED_OUT", "TOKEN_REFRESHED"]

SESSION_MISSING_MESSAGE = "Auth session missing!"
REFRESH_MARGIN = timedelta(seconds=30)


@dataclass(frozen=True)
class Identity:
    id: str
    email: str = ""
    email_confirmed_at: Optional[datetime] = None
    user_metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_confirmed(self) -> bool:
        return self.email_confirmed_at is not None


@dataclass(frozen=True)
class AuthSession:
    access_token: str
    refresh_token: Optional[str]
    expires_at: Optional[datetime]
    identity: Identity

    def expires_soon(self, now: Optional[datetime] = None) -> bool:
        if self.expires_at is None:
            return False
        now = now or datetime.now(timezone.utc)
        return self.expires_at - REFRESH_MARGIN <= now


@dataclass(frozen=True)
class ProviderError:
    """Raw error reported by the identity provider."""

    message: str
    status: Optional[int] = None

    @property
    def is_stale_session(self) -> bool:
        return is_stale_session_message(self.message)

    @property
    def is_transient(self) -> bool:
        return self.status is None or self.status >= 500


@dataclass(frozen=True)
class SignUpResult:
    identity: Optional[Identity] = None
    session: Optional[AuthSession] = None
    error: Optional[ProviderError] = None


@dataclass(frozen=True)
class SignInResult:
    identity: Optional[Identity] = None
    session: Optional[AuthSession] = None
    error: Optional[ProviderError] = None


@dataclass(frozen=True)
class IdentityResult:
    identity: Optional[Identity] = None
    error: Optional[ProviderError] = None


@dataclass(frozen=True)
class IdentityEvent:
    kind: IdentityEventKind
    session: Optional[AuthSession] = None

    @property
    def identity(self) -> Optional[Identity]:
        return self.session.identity if self.session else None


IdentityListener = Callable[[IdentityEvent], Union[None, Awaitable[None]]]


class IdentityProvider(Protocol):
    async def sign_up(self, email: str, password: str, metadata: Dict[str, Any]) -> SignUpResult: ...

    async def sign_in(self, email: str, password: str) -> SignInResult: ...

    async def sign_out(self) -> Optional[ProviderError]: ...

    async def get_current_identity(self) -> IdentityResult: ...

    async def get_session(self) -> Optional[AuthSession]: ...

    def on_identity_change(self, listener: IdentityListener) -> Callable[[], None]: ...


def _parse_timestamp(value: Any) -> Optional[datetime]:
    if not isinstance(value, str) or not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


def parse_identity(data: Dict[str, Any]) -> Identity:
    metadata = data.get("user_metadata")
    return Identity(
        id=str(data["id"]),
        email=data.get("email") or "",
        email_confirmed_at=_parse_timestamp(data.get("email_confirmed_at")),
        user_metadata=dict(metadata) if isinstance(metadata, dict) else {},
    )


def parse_session(data: Dict[str, Any]) -> AuthSession:
    expires_at: Optional[datetime] = None
    if isinstance(data.get("expires_at"), (int, float)):
        expires_at = datetime.fromtimestamp(data["expires_at"], tz=timezone.utc)
    elif isinstance(data.get("expires_in"), (int, float)):
        expires_at = datetime.now(timezone.utc) + timedelta(seconds=data["expires_in"])
    return AuthSession(
        access_token=data["access_token"],
        refresh_token=data.get("refresh_token"),
        expires_at=expires_at,
        identity=parse_identity(data["user"]),
    )


def _error_from_response(response: httpx.Response) -> ProviderError:
    message = response.text or response.reason_phrase
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        for key in ("msg", "error_description", "message", "error"):
            value = body.get(key)
            if isinstance(value, str) and value:
                message = value
                break
    return ProviderError(message=message, status=response.status_code)


class SupabaseIdentityProvider:
    """Identity provider backed by the hosted auth REST API.

    The session lives in memory for the lifetime of the process; expired
    access tokens are refreshed transparently before identity lookups.
    """

    def __init__(
        self,
        base_url: str,
        anon_key: str,
        *,
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self._base_url = base_url.rstrip("/") + "/auth/v1"
        self._anon_key = anon_key
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._owns_client = client is None
        self._session: Optional[AuthSession] = None
        self._listeners: List[IdentityListener] = []
        self._pending: Set[asyncio.Task[None]] = set()

    @classmethod
    def from_settings(cls, settings: Settings) -> "SupabaseIdentityProvider":
        if not settings.supabase_anon_key:
            raise RuntimeError("SAFETYLEARN_SUPABASE_ANON_KEY must be configured before using the auth provider.")
        return cls(
            settings.supabase_url,
            settings.supabase_anon_key,
            timeout=settings.auth_timeout_seconds,
        )

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    def _headers(self, access_token: Optional[str] = None) -> Dict[str, str]:
        headers = {"apikey": self._anon_key, "Content-Type": "application/json"}
        headers["Authorization"] = f"Bearer {access_token or self._anon_key}"
        return headers

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, str]] = None,
        access_token: Optional[str] = None,
    ) -> tuple[Optional[Dict[str, Any]], Optional[ProviderError]]:
        try:
            response = await self._client.request(
                method,
                f"{self._base_url}{path}",
                json=json,
                params=params,
                headers=self._headers(access_token),
            )
        except httpx.HTTPError as exc:
            logger.warning("Auth provider request %s %s failed: %s", method, path, exc)
            return None, ProviderError(message=f"Auth provider unreachable: {exc}")
        if response.status_code >= 400:
            return None, _error_from_response(response)
        if not response.content:
            return {}, None
        try:
            return response.json(), None
        except ValueError:
            return None, ProviderError(message="Auth provider returned invalid JSON", status=response.status_code)

    async def sign_up(self, email: str, password: str, metadata: Dict[str, Any]) -> SignUpResult:
        body, error = await self._request(
            "POST",
            "/signup",
            json={"email": email, "password": password, "data": metadata},
        )
        if error is not None or body is None:
            return SignUpResult(error=error)
        if "access_token" in body:
            session = parse_session(body)
            self._set_session(session, "SIGNED_IN")
            return SignUpResult(identity=session.identity, session=session)
        user_payload = body.get("user") if isinstance(body.get("user"), dict) else body
        if not user_payload.get("id"):
            return SignUpResult()
        return SignUpResult(identity=parse_identity(user_payload))

    async def sign_in(self, email: str, password: str) -> SignInResult:
        body, error = await self._request(
            "POST",
            "/token",
            params={"grant_type": "password"},
            json={"email": email, "password": password},
        )
        if error is not None or body is None:
            return SignInResult(error=error)
        session = parse_session(body)
        self._set_session(session, "SIGNED_IN")
        return SignInResult(identity=session.identity, session=session)

    async def sign_out(self) -> Optional[ProviderError]:
        session = self._session
        if session is None:
            return None
        _, error = await self._request("POST", "/logout", access_token=session.access_token)
        # The local session is dropped even when the remote revoke fails.
        self._set_session(None, "SIGNED_OUT")
        if error is not None and error.status in (401, 403, 404):
            return None
        return error

    async def get_session(self) -> Optional[AuthSession]:
        session = self._session
        if session is not None and session.expires_soon():
            session = await self._refresh(session)
        return session

    async def get_current_identity(self) -> IdentityResult:
        session = await self.get_session()
        if session is None:
            return IdentityResult(error=ProviderError(message=SESSION_MISSING_MESSAGE))
        body, error = await self._request("GET", "/user", access_token=session.access_token)
        if error is not None or body is None:
            return IdentityResult(error=error)
        return IdentityResult(identity=parse_identity(body))

    async def _refresh(self, session: AuthSession) -> Optional[AuthSession]:
        if not session.refresh_token:
            self._set_session(None, "SIGNED_OUT")
            return None
        body, error = await self._request(
            "POST",
            "/token",
            params={"grant_type": "refresh_token"},
            json={"refresh_token": session.refresh_token},
        )
        if error is not None or body is None:
            logger.warning("Token refresh failed: %s", error.message if error else "empty response")
            if error is not None and error.is_transient:
                return session
            self._set_session(None, "SIGNED_OUT")
            return None
        refreshed = parse_session(body)
        self._set_session(refreshed, "TOKEN_REFRESHED")
        return refreshed

    def on_identity_change(self, listener: IdentityListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def _set_session(self, session: Optional[AuthSession], kind: IdentityEventKind) -> None:
        self._session = session
        event = IdentityEvent(kind=kind, session=session)
        for listener in list(self._listeners):
            try:
                outcome = listener(event)
            except Exception:  # noqa: BLE001
                logger.exception("Identity listener failed for %s", kind)
                continue
            if inspect.isawaitable(outcome):
                task = asyncio.ensure_future(outcome)
                self._pending.add(task)
                task.add_done_callback(self._listener_done)

    def _listener_done(self, task: "asyncio.Task[None]") -> None:
        self._pending.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error("Identity listener failed", exc_info=error)


async def purge_stale_session(provider: IdentityProvider, *, reason: str) -> None:
    """Best-effort sign-out so a rejected credential is not retried."""
    logger.info("Detected stale session (%s), signing out", reason)
    try:
        error = await provider.sign_out()
    except Exception:  # noqa: BLE001
        logger.exception("Stale session cleanup failed")
        return
    if error is not None:
        logger.warning("Stale session cleanup reported: %s", error.message)
    emit_event("stale_session_purged", reason=reason, clean=error is None)


__all__ = [
    "AuthSession",
    "Identity",
    "IdentityEvent",
    "IdentityListener",
    "IdentityProvider",
    "IdentityResult",
    "ProviderError",
    "SESSION_MISSING_MESSAGE",
    "SignInResult",
    "SignUpResult",
    "SupabaseIdentityProvider",
    "parse_identity",
    "parse_session",
    "purge_stale_session",
]
