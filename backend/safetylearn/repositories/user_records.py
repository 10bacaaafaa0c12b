"""Database-backed repositories for the three per-user aggregates."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..db.models import UserAchievementModel, UserProfileModel, UserProgressModel
from ..user_profile import Profile, Progress

_MUTABLE_PROFILE_FIELDS = ("name", "age", "age_group", "avatar")


class UserProfileRepository:
    def get(self, session: Session, user_id: str) -> Optional[Profile]:
        model = session.get(UserProfileModel, user_id)
        if model is None:
            return None
        return self._to_domain(model)

    def insert_if_absent(self, session: Session, profile: Profile) -> Tuple[Profile, bool]:
        """Insert ``profile`` unless a row already exists; return the stored row."""
        existing = session.get(UserProfileModel, profile.id)
        if existing is not None:
            return self._to_domain(existing), False
        model = UserProfileModel(
            id=profile.id,
            name=profile.name,
            age=profile.age,
            age_group=profile.age_group,
            avatar=profile.avatar,
            created_at=profile.created_at,
            updated_at=profile.updated_at,
        )
        try:
            with session.begin_nested():
                session.add(model)
        except IntegrityError:
            existing = session.get(UserProfileModel, profile.id, populate_existing=True)
            if existing is None:
                raise
            return self._to_domain(existing), False
        return self._to_domain(model), True

    def update(self, session: Session, user_id: str, changes: Dict[str, Any]) -> Optional[Profile]:
        model = session.get(UserProfileModel, user_id)
        if model is None:
            return None
        for field in _MUTABLE_PROFILE_FIELDS:
            if field in changes:
                setattr(model, field, changes[field])
        session.flush()
        return self._to_domain(model)

    @staticmethod
    def _to_domain(model: UserProfileModel) -> Profile:
        return Profile(
            id=model.id,
            name=model.name,
            age=model.age,
            age_group=model.age_group,  # type: ignore[arg-type]
            avatar=model.avatar or "",
            created_at=model.created_at,
            updated_at=model.updated_at,
        )


class UserProgressRepository:
    def get(self, session: Session, user_id: str) -> Optional[Progress]:
        model = session.get(UserProgressModel, user_id)
        if model is None:
            return None
        return self._to_domain(model)

    def insert_if_absent(self, session: Session, progress: Progress) -> Tuple[Progress, bool]:
        existing = session.get(UserProgressModel, progress.user_id)
        if existing is not None:
            return self._to_domain(existing), False
        model = UserProgressModel(
            user_id=progress.user_id,
            current_level=progress.current_level,
            total_lessons_completed=progress.total_lessons_completed,
            streak_days=progress.streak_days,
            total_points=progress.total_points,
            completed_lesson_ids=list(progress.completed_lesson_ids),
            last_activity_date=progress.last_activity_date,
        )
        try:
            with session.begin_nested():
                session.add(model)
        except IntegrityError:
            existing = session.get(UserProgressModel, progress.user_id, populate_existing=True)
            if existing is None:
                raise
            return self._to_domain(existing), False
        return self._to_domain(model), True

    def compare_and_set(self, session: Session, progress: Progress, *, expected_completed: int) -> bool:
        """Write ``progress`` only if the stored lesson count still matches."""
        stmt = (
            update(UserProgressModel)
            .where(
                UserProgressModel.user_id == progress.user_id,
                UserProgressModel.total_lessons_completed == expected_completed,
            )
            .values(
                current_level=progress.current_level,
                total_lessons_completed=progress.total_lessons_completed,
                streak_days=progress.streak_days,
                total_points=progress.total_points,
                completed_lesson_ids=list(progress.completed_lesson_ids),
                last_activity_date=progress.last_activity_date,
            )
            .execution_options(synchronize_session=False)
        )
        result = session.execute(stmt)
        return result.rowcount == 1

    @staticmethod
    def _to_domain(model: UserProgressModel) -> Progress:
        completed = list(model.completed_lesson_ids or [])
        payload: Dict[str, Any] = {
            "user_id": model.user_id,
            "current_level": model.current_level or 1,
            "total_lessons_completed": model.total_lessons_completed or 0,
            "streak_days": model.streak_days or 1,
            "total_points": model.total_points or 0,
            "completed_lesson_ids": completed,
        }
        if model.last_activity_date is not None:
            payload["last_activity_date"] = model.last_activity_date
        return Progress(**payload)


class UserAchievementRepository:
    def list_for_user(self, session: Session, user_id: str) -> List[Tuple[str, datetime]]:
        stmt = (
            select(UserAchievementModel)
            .where(UserAchievementModel.user_id == user_id)
            .order_by(UserAchievementModel.unlocked_at.asc())
        )
        return [(row.achievement_id, row.unlocked_at) for row in session.execute(stmt).scalars()]

    def insert_ignore_conflict(self, session: Session, user_id: str, achievement_id: str) -> bool:
        """Record an unlock; a duplicate (user, achievement) pair is a no-op."""
        if session.get(UserAchievementModel, (user_id, achievement_id)) is not None:
            return False
        try:
            with session.begin_nested():
                session.add(UserAchievementModel(user_id=user_id, achievement_id=achievement_id))
        except IntegrityError:
            return False
        return True


user_profiles = UserProfileRepository()
user_progress = UserProgressRepository()
user_achievements = UserAchievementRepository()

__all__ = [
    "UserAchievementRepository",
    "UserProfileRepository",
    "UserProgressRepository",
    "user_achievements",
    "user_profiles",
    "user_progress",
]
