"""Async store contracts plus database and in-memory implementations."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Protocol, Tuple, TypeVar

from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from starlette.concurrency import run_in_threadpool

from .config import Settings
from .db.monitoring import tag_operation
from .db.session import create_schema, get_session_factory, session_scope
from .errors import StoreError, TransientProviderError
from .repositories.user_records import (
    UserAchievementRepository,
    UserProfileRepository,
    UserProgressRepository,
    user_achievements,
    user_profiles,
    user_progress,
)
from .user_profile import Profile, Progress

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ProfileStore(Protocol):
    async def get(self, user_id: str) -> Optional[Profile]: ...

    async def insert_if_absent(self, profile: Profile) -> Tuple[Profile, bool]: ...

    async def update(self, user_id: str, changes: Dict[str, Any]) -> Optional[Profile]: ...


class ProgressStore(Protocol):
    async def get(self, user_id: str) -> Optional[Progress]: ...

    async def insert_if_absent(self, progress: Progress) -> Tuple[Progress, bool]: ...

    async def compare_and_set(self, progress: Progress, *, expected_completed: int) -> bool: ...


class AchievementStore(Protocol):
    async def list_for_user(self, user_id: str) -> List[Tuple[str, datetime]]: ...

    async def insert_ignore_conflict(self, user_id: str, achievement_id: str) -> bool: ...


@dataclass
class Stores:
    profiles: ProfileStore
    progress: ProgressStore
    achievements: AchievementStore


class _DatabaseStore:
    """Runs repository calls in the threadpool and translates driver errors."""

    def __init__(self, factory: Optional[sessionmaker[Session]] = None) -> None:
        self._factory = factory

    async def _run(self, operation: str, work: Callable[[Session], T]) -> T:
        def _call() -> T:
            with tag_operation(operation):
                with session_scope(factory=self._factory or get_session_factory()) as session:
                    return work(session)

        try:
            return await run_in_threadpool(_call)
        except OperationalError as exc:
            logger.warning("Database unavailable during %s: %s", operation, exc)
            raise TransientProviderError(f"Database unavailable during {operation}") from exc
        except SQLAlchemyError as exc:
            logger.error("Database error during %s: %s", operation, exc)
            raise StoreError(f"Database error during {operation}: {exc.__class__.__name__}") from exc


class DatabaseProfileStore(_DatabaseStore):
    def __init__(
        self,
        factory: Optional[sessionmaker[Session]] = None,
        repository: UserProfileRepository = user_profiles,
    ) -> None:
        super().__init__(factory)
        self._repo = repository

    async def get(self, user_id: str) -> Optional[Profile]:
        return await self._run("profile fetch", lambda session: self._repo.get(session, user_id))

    async def insert_if_absent(self, profile: Profile) -> Tuple[Profile, bool]:
        return await self._run("profile insert", lambda session: self._repo.insert_if_absent(session, profile))

    async def update(self, user_id: str, changes: Dict[str, Any]) -> Optional[Profile]:
        return await self._run("profile update", lambda session: self._repo.update(session, user_id, changes))


class DatabaseProgressStore(_DatabaseStore):
    def __init__(
        self,
        factory: Optional[sessionmaker[Session]] = None,
        repository: UserProgressRepository = user_progress,
    ) -> None:
        super().__init__(factory)
        self._repo = repository

    async def get(self, user_id: str) -> Optional[Progress]:
        return await self._run("progress fetch", lambda session: self._repo.get(session, user_id))

    async def insert_if_absent(self, progress: Progress) -> Tuple[Progress, bool]:
        return await self._run("progress insert", lambda session: self._repo.insert_if_absent(session, progress))

    async def compare_and_set(self, progress: Progress, *, expected_completed: int) -> bool:
        return await self._run(
            "progress update",
            lambda session: self._repo.compare_and_set(session, progress, expected_completed=expected_completed),
        )


class DatabaseAchievementStore(_DatabaseStore):
    def __init__(
        self,
        factory: Optional[sessionmaker[Session]] = None,
        repository: UserAchievementRepository = user_achievements,
    ) -> None:
        super().__init__(factory)
        self._repo = repository

    async def list_for_user(self, user_id: str) -> List[Tuple[str, datetime]]:
        return await self._run("achievement fetch", lambda session: self._repo.list_for_user(session, user_id))

    async def insert_ignore_conflict(self, user_id: str, achievement_id: str) -> bool:
        return await self._run(
            "achievement insert",
            lambda session: self._repo.insert_ignore_conflict(session, user_id, achievement_id),
        )


# The memory stores never await between reading and writing a row, so each
# call is atomic on the event loop.
class MemoryProfileStore:
    def __init__(self) -> None:
        self.rows: Dict[str, Profile] = {}

    async def get(self, user_id: str) -> Optional[Profile]:
        row = self.rows.get(user_id)
        return row.model_copy(deep=True) if row else None

    async def insert_if_absent(self, profile: Profile) -> Tuple[Profile, bool]:
        existing = self.rows.get(profile.id)
        if existing is not None:
            return existing.model_copy(deep=True), False
        self.rows[profile.id] = profile.model_copy(deep=True)
        return profile.model_copy(deep=True), True

    async def update(self, user_id: str, changes: Dict[str, Any]) -> Optional[Profile]:
        existing = self.rows.get(user_id)
        if existing is None:
            return None
        allowed = {key: value for key, value in changes.items() if key in ("name", "age", "age_group", "avatar")}
        allowed["updated_at"] = datetime.now(timezone.utc)
        updated = existing.model_copy(update=allowed, deep=True)
        self.rows[user_id] = updated
        return updated.model_copy(deep=True)


class MemoryProgressStore:
    def __init__(self) -> None:
        self.rows: Dict[str, Progress] = {}

    async def get(self, user_id: str) -> Optional[Progress]:
        row = self.rows.get(user_id)
        return row.model_copy(deep=True) if row else None

    async def insert_if_absent(self, progress: Progress) -> Tuple[Progress, bool]:
        existing = self.rows.get(progress.user_id)
        if existing is not None:
            return existing.model_copy(deep=True), False
        self.rows[progress.user_id] = progress.model_copy(deep=True)
        return progress.model_copy(deep=True), True

    async def compare_and_set(self, progress: Progress, *, expected_completed: int) -> bool:
        existing = self.rows.get(progress.user_id)
        if existing is None or existing.total_lessons_completed != expected_completed:
            return False
        self.rows[progress.user_id] = progress.model_copy(deep=True)
        return True


class MemoryAchievementStore:
    def __init__(self) -> None:
        self.rows: Dict[Tuple[str, str], datetime] = {}

    async def list_for_user(self, user_id: str) -> List[Tuple[str, datetime]]:
        unlocked = [(achievement_id, at) for (owner, achievement_id), at in self.rows.items() if owner == user_id]
        return sorted(unlocked, key=lambda entry: entry[1])

    async def insert_ignore_conflict(self, user_id: str, achievement_id: str) -> bool:
        key = (user_id, achievement_id)
        if key in self.rows:
            return False
        self.rows[key] = datetime.now(timezone.utc)
        return True


def memory_stores() -> Stores:
    return Stores(
        profiles=MemoryProfileStore(),
        progress=MemoryProgressStore(),
        achievements=MemoryAchievementStore(),
    )


def database_stores(factory: Optional[sessionmaker[Session]] = None) -> Stores:
    return Stores(
        profiles=DatabaseProfileStore(factory),
        progress=DatabaseProgressStore(factory),
        achievements=DatabaseAchievementStore(factory),
    )


def build_stores(settings: Settings) -> Stores:
    if settings.persistence_mode == "memory":
        logger.info("Using in-memory persistence; data is lost on restart.")
        return memory_stores()
    if settings.database_url and settings.database_url.startswith("sqlite"):
        create_schema()
    return database_stores()


__all__ = [
    "AchievementStore",
    "DatabaseAchievementStore",
    "DatabaseProfileStore",
    "DatabaseProgressStore",
    "MemoryAchievementStore",
    "MemoryProfileStore",
    "MemoryProgressStore",
    "ProfileStore",
    "ProgressStore",
    "Stores",
    "build_stores",
    "database_stores",
    "memory_stores",
]
