"""Assembles users from their stored aggregates and applies progress mutations."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Union

from pydantic import ValidationError

from .achievements import join_catalog, qualifying_achievements
from .errors import (
    AggregateMissing,
    NotAuthenticated,
    SafetyLearnError,
    StaleSession,
    StoreError,
    TransientProviderError,
    describe_failure,
    is_auth_store_error,
    is_session_failure,
)
from .identity import Identity, IdentityProvider, purge_stale_session
from .stores import Stores
from .telemetry import emit_event
from .user_profile import (
    Profile,
    ProfileUpdate,
    Progress,
    ProgressSummary,
    User,
    apply_lesson_completion,
)

logger = logging.getLogger(__name__)

MAX_COMPLETION_ATTEMPTS = 3
CONCURRENT_UPDATE_MESSAGE = "Progress changed while saving. Please try again."


@dataclass(frozen=True)
class MutationResult:
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def _utc_today() -> date:
    return datetime.now(timezone.utc).date()


class ProfileSynchronizer:
    """Turns an identity into a complete ``User`` and applies user mutations.

    Profile and progress rows are created lazily on first read. Mutations
    notify registered listeners (the session manager) so cached reads are
    dropped after every successful write.
    """

    def __init__(
        self,
        identity_provider: IdentityProvider,
        stores: Stores,
        *,
        lesson_points: int = 100,
        today: Callable[[], date] = _utc_today,
    ) -> None:
        self._provider = identity_provider
        self._stores = stores
        self._lesson_points = lesson_points
        self._today = today
        self._mutation_listeners: List[Callable[[], None]] = []

    def on_mutation(self, listener: Callable[[], None]) -> Callable[[], None]:
        self._mutation_listeners.append(listener)

        def _remove() -> None:
            if listener in self._mutation_listeners:
                self._mutation_listeners.remove(listener)

        return _remove

    def _notify_mutation(self) -> None:
        for listener in list(self._mutation_listeners):
            listener()

    async def assemble(self, identity: Identity) -> Optional[User]:
        """Build the user for ``identity``; any failure resolves to ``None``."""
        try:
            profile = await self._load_profile(identity)
            progress = await self._load_progress(identity.id)
            unlocks = await self._load_unlocks(identity.id)
        except Exception as exc:  # noqa: BLE001
            if is_session_failure(exc):
                await purge_stale_session(self._provider, reason=f"assembly: {exc}")
            elif isinstance(exc, SafetyLearnError):
                logger.error("Could not assemble user %s: %s", identity.id, exc)
            else:
                logger.exception("Unexpected error assembling user %s", identity.id)
            return None

        return User(
            id=profile.id,
            email=identity.email,
            name=profile.name,
            age=profile.age,
            age_group=profile.age_group,
            avatar=profile.avatar,
            progress=ProgressSummary.from_progress(progress),
            achievements=join_catalog(unlocks),
            created_at=profile.created_at,
        )

    async def _load_profile(self, identity: Identity) -> Profile:
        profile = await self._stores.profiles.get(identity.id)
        if profile is not None:
            return profile
        logger.info("Profile for %s not found, creating from identity metadata", identity.id)
        seed = Profile.from_identity_defaults(identity.id, identity.email, identity.user_metadata)
        try:
            stored, created = await self._stores.profiles.insert_if_absent(seed)
        except StoreError as exc:
            if is_auth_store_error(exc):
                raise
            raise AggregateMissing("profile", str(exc)) from exc
        if created:
            emit_event("user_profile_created", user_id=identity.id, age_group=stored.age_group)
        return stored

    async def _load_progress(self, user_id: str) -> Progress:
        progress = await self._stores.progress.get(user_id)
        if progress is not None:
            return progress
        logger.info("Progress for %s not found, creating defaults", user_id)
        try:
            stored, created = await self._stores.progress.insert_if_absent(Progress.initial(user_id, self._today()))
        except StoreError as exc:
            if is_auth_store_error(exc):
                raise
            raise AggregateMissing("progress", str(exc)) from exc
        if created:
            emit_event("user_progress_created", user_id=user_id)
        return stored

    async def _load_unlocks(self, user_id: str) -> List[tuple[str, datetime]]:
        try:
            return await self._stores.achievements.list_for_user(user_id)
        except SafetyLearnError as exc:
            if is_session_failure(exc):
                raise
            logger.warning("Achievements unavailable for %s: %s", user_id, exc)
            return []

    async def seed_records(self, identity: Identity, profile: Profile) -> None:
        """Create the profile and progress rows right after sign-up.

        Failures are logged and tolerated; assembly creates missing rows later.
        """
        try:
            _, created = await self._stores.profiles.insert_if_absent(profile)
            if created:
                emit_event("user_profile_created", user_id=identity.id, age_group=profile.age_group)
        except SafetyLearnError as exc:
            logger.warning("Profile creation after sign-up failed for %s: %s", identity.id, exc)
        try:
            _, created = await self._stores.progress.insert_if_absent(Progress.initial(identity.id, self._today()))
            if created:
                emit_event("user_progress_created", user_id=identity.id)
        except SafetyLearnError as exc:
            logger.warning("Progress creation after sign-up failed for %s: %s", identity.id, exc)

    async def _require_identity(self) -> Identity:
        result = await self._provider.get_current_identity()
        if result.error is not None:
            if result.error.is_stale_session:
                raise StaleSession(result.error.message)
            if result.error.is_transient:
                raise TransientProviderError(result.error.message)
            raise NotAuthenticated()
        if result.identity is None:
            raise NotAuthenticated()
        return result.identity

    async def update_profile(self, updates: Union[ProfileUpdate, Dict[str, Any]]) -> MutationResult:
        """Write only the supplied profile fields for the current identity."""
        try:
            update = updates if isinstance(updates, ProfileUpdate) else ProfileUpdate.model_validate(updates)
        except ValidationError as exc:
            first = exc.errors()[0]
            field = ".".join(str(part) for part in first.get("loc", ())) or "profile"
            return MutationResult(error=f"Invalid {field}: {first.get('msg', 'invalid value')}")

        try:
            identity = await self._require_identity()
            changes = update.changes()
            if not changes:
                return MutationResult()
            stored = await self._stores.profiles.update(identity.id, changes)
            if stored is None:
                raise AggregateMissing("profile")
        except Exception as exc:  # noqa: BLE001
            return await self._mutation_failure("update_profile", exc)

        logger.info("Profile updated for %s (%s)", identity.id, ", ".join(sorted(changes)))
        self._notify_mutation()
        return MutationResult()

    async def complete_lesson(self, lesson_id: str) -> MutationResult:
        """Record a lesson completion once; repeats are successful no-ops."""
        lesson_id = lesson_id.strip()
        if not lesson_id:
            return MutationResult(error="Lesson id is required")

        try:
            identity = await self._require_identity()
            updated: Optional[Progress] = None
            for attempt in range(1, MAX_COMPLETION_ATTEMPTS + 1):
                current = await self._fetch_progress_for_update(identity.id)
                updated = apply_lesson_completion(
                    current,
                    lesson_id,
                    today=self._today(),
                    points=self._lesson_points,
                )
                if updated is None:
                    logger.info("Lesson %s already completed for %s", lesson_id, identity.id)
                    return MutationResult()
                saved = await self._stores.progress.compare_and_set(
                    updated, expected_completed=current.total_lessons_completed
                )
                if saved:
                    break
                logger.info("Progress for %s changed concurrently (attempt %s)", identity.id, attempt)
                updated = None
            if updated is None:
                return MutationResult(error=CONCURRENT_UPDATE_MESSAGE)
        except Exception as exc:  # noqa: BLE001
            return await self._mutation_failure("complete_lesson", exc)

        emit_event(
            "lesson_completed",
            user_id=identity.id,
            lesson_id=lesson_id,
            total_lessons_completed=updated.total_lessons_completed,
            current_level=updated.current_level,
            total_points=updated.total_points,
        )
        await self._unlock_achievements(identity.id, updated)
        self._notify_mutation()
        return MutationResult()

    async def _fetch_progress_for_update(self, user_id: str) -> Progress:
        try:
            progress = await self._stores.progress.get(user_id)
        except StoreError as exc:
            if is_auth_store_error(exc):
                raise
            raise AggregateMissing("progress", str(exc)) from exc
        if progress is None:
            raise AggregateMissing("progress")
        return progress

    async def _unlock_achievements(self, user_id: str, progress: Progress) -> List[str]:
        unlocked: List[str] = []
        for achievement_id in qualifying_achievements(progress.total_lessons_completed, progress.total_points):
            try:
                inserted = await self._stores.achievements.insert_ignore_conflict(user_id, achievement_id)
            except SafetyLearnError as exc:
                logger.error("Failed to unlock %s for %s: %s", achievement_id, user_id, exc)
                continue
            if inserted:
                unlocked.append(achievement_id)
                emit_event("achievement_unlocked", user_id=user_id, achievement_id=achievement_id)
        return unlocked

    async def _mutation_failure(self, operation: str, exc: Exception) -> MutationResult:
        if is_session_failure(exc):
            await purge_stale_session(self._provider, reason=f"{operation}: {exc}")
            return MutationResult(error=describe_failure(NotAuthenticated()))
        if isinstance(exc, SafetyLearnError):
            logger.warning("%s failed: %s", operation, exc)
        else:
            logger.exception("Unexpected error in %s", operation)
        return MutationResult(error=describe_failure(exc))


__all__ = [
    "CONCURRENT_UPDATE_MESSAGE",
    "MutationResult",
    "ProfileSynchronizer",
]
