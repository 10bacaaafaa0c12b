"""Construction of the per-process account services."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from .config import Settings, get_settings
from .identity import IdentityProvider, SupabaseIdentityProvider
from .profile_sync import ProfileSynchronizer
from .session_manager import SessionManager
from .stores import Stores, build_stores

logger = logging.getLogger(__name__)


@dataclass
class Services:
    identity_provider: IdentityProvider
    stores: Stores
    synchronizer: ProfileSynchronizer
    session_manager: SessionManager


def build_services(
    settings: Settings,
    *,
    identity_provider: Optional[IdentityProvider] = None,
    stores: Optional[Stores] = None,
) -> Services:
    provider = identity_provider or SupabaseIdentityProvider.from_settings(settings)
    resolved_stores = stores or build_stores(settings)
    synchronizer = ProfileSynchronizer(
        provider,
        resolved_stores,
        lesson_points=settings.lesson_points,
    )
    manager = SessionManager(provider, synchronizer, propagation_delay=settings.auth_propagation_delay)
    logger.info("Account services ready (persistence=%s)", settings.persistence_mode)
    return Services(
        identity_provider=provider,
        stores=resolved_stores,
        synchronizer=synchronizer,
        session_manager=manager,
    )


_services: Optional[Services] = None


def get_services() -> Services:
    global _services
    if _services is None:
        _services = build_services(get_settings())
    return _services


def set_services(services: Optional[Services]) -> None:
    """Replace the process services (``None`` forces a rebuild on next use)."""
    global _services
    _services = services


def get_session_manager() -> SessionManager:
    return get_services().session_manager


__all__ = [
    "Services",
    "build_services",
    "get_services",
    "get_session_manager",
    "set_services",
]
