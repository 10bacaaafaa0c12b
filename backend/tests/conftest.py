from __future__ import annotations

import inspect
import os
import uuid
from datetime import date, datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

import pytest

from safetylearn.identity import (
    SESSION_MISSING_MESSAGE,
    AuthSession,
    Identity,
    IdentityEvent,
    IdentityListener,
    IdentityResult,
    ProviderError,
    SignInResult,
    SignUpResult,
)
from safetylearn.profile_sync import ProfileSynchronizer
from safetylearn.session_manager import SessionManager
from safetylearn.stores import Stores, memory_stores
from safetylearn.telemetry import TelemetryEvent, register_listener

os.environ.setdefault("SAFETYLEARN_DATABASE_URL", "sqlite://")

TODAY = date(2026, 3, 10)


class FakeIdentityProvider:
    """In-memory identity provider with a single process-wide session."""

    def __init__(self) -> None:
        self.accounts: Dict[str, Tuple[str, Identity]] = {}
        self.session: Optional[AuthSession] = None
        self.require_confirmation = False
        self.identity_error: Optional[ProviderError] = None
        self.sign_out_error: Optional[ProviderError] = None
        self.identity_calls = 0
        self.sign_out_calls = 0
        self.listeners: List[IdentityListener] = []

    def add_account(self, email: str, password: str, metadata: Optional[Dict[str, Any]] = None) -> Identity:
        identity = Identity(id=str(uuid.uuid4()), email=email, user_metadata=dict(metadata or {}))
        self.accounts[email] = (password, identity)
        return identity

    def login(self, identity: Identity) -> AuthSession:
        self.session = AuthSession(
            access_token=f"token-{identity.id}",
            refresh_token="refresh",
            expires_at=datetime.now(timezone.utc) + timedelta(hours=1),
            identity=identity,
        )
        return self.session

    async def sign_up(self, email: str, password: str, metadata: Dict[str, Any]) -> SignUpResult:
        if email in self.accounts:
            return SignUpResult(error=ProviderError("User already registered", status=422))
        identity = self.add_account(email, password, metadata)
        if self.require_confirmation:
            return SignUpResult(identity=identity)
        session = self.login(identity)
        await self._notify(IdentityEvent(kind="SIGNED_IN", session=session))
        return SignUpResult(identity=identity, session=session)

    async def sign_in(self, email: str, password: str) -> SignInResult:
        account = self.accounts.get(email)
        if account is None or account[0] != password:
            return SignInResult(error=ProviderError("Invalid login credentials", status=400))
        session = self.login(account[1])
        await self._notify(IdentityEvent(kind="SIGNED_IN", session=session))
        return SignInResult(identity=account[1], session=session)

    async def sign_out(self) -> Optional[ProviderError]:
        self.sign_out_calls += 1
        self.session = None
        self.identity_error = None
        await self._notify(IdentityEvent(kind="SIGNED_OUT"))
        return self.sign_out_error

    async def get_current_identity(self) -> IdentityResult:
        self.identity_calls += 1
        if self.identity_error is not None:
            return IdentityResult(error=self.identity_error)
        if self.session is None:
            return IdentityResult(error=ProviderError(SESSION_MISSING_MESSAGE))
        return IdentityResult(identity=self.session.identity)

    async def get_session(self) -> Optional[AuthSession]:
        return self.session

    def on_identity_change(self, listener: IdentityListener) -> Callable[[], None]:
        self.listeners.append(listener)

        def _remove() -> None:
            if listener in self.listeners:
                self.listeners.remove(listener)

        return _remove

    async def _notify(self, event: IdentityEvent) -> None:
        for listener in list(self.listeners):
            outcome = listener(event)
            if inspect.isawaitable(outcome):
                await outcome


@pytest.fixture
def provider() -> FakeIdentityProvider:
    return FakeIdentityProvider()


@pytest.fixture
def stores() -> Stores:
    return memory_stores()


@pytest.fixture
def synchronizer(provider: FakeIdentityProvider, stores: Stores) -> ProfileSynchronizer:
    return ProfileSynchronizer(provider, stores, today=lambda: TODAY)


@pytest.fixture
def manager(provider: FakeIdentityProvider, synchronizer: ProfileSynchronizer) -> SessionManager:
    return SessionManager(provider, synchronizer, propagation_delay=0)


@pytest.fixture
def telemetry_events():
    events: List[TelemetryEvent] = []
    remove = register_listener(events.append)
    yield events
    remove()


@pytest.fixture
def signed_in(provider: FakeIdentityProvider) -> Identity:
    identity = provider.add_account(
        "kid@example.com",
        "secret1",
        {"name": "Kid", "age": 10, "age_group": "10-14"},
    )
    provider.login(identity)
    return identity
