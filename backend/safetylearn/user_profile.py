"""User profile, progress and assembled-user models."""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

AgeGroup = Literal["5-9", "10-14", "15-19"]

MIN_AGE = 5
MAX_AGE = 19
DEFAULT_AGE = 12
DEFAULT_AGE_GROUP: AgeGroup = "10-14"
DEFAULT_DISPLAY_NAME = "User"
LESSONS_PER_LEVEL = 3

_AGE_BUCKETS: List[tuple[int, int, AgeGroup]] = [
    (5, 9, "5-9"),
    (10, 14, "10-14"),
    (15, 19, "15-19"),
]


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _today() -> date:
    return _now().date()


def age_group_for(age: int) -> AgeGroup:
    for lower, upper, group in _AGE_BUCKETS:
        if lower <= age <= upper:
            return group
    return DEFAULT_AGE_GROUP


def _coerce_age(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        age = int(value)
    elif isinstance(value, str) and value.strip().isdigit():
        age = int(value.strip())
    else:
        return None
    if MIN_AGE <= age <= MAX_AGE:
        return age
    return None


class Profile(BaseModel):
    id: str
    name: str
    age: int = Field(default=DEFAULT_AGE, ge=MIN_AGE, le=MAX_AGE)
    age_group: AgeGroup = DEFAULT_AGE_GROUP
    avatar: str = ""
    created_at: datetime = Field(default_factory=_now)
    updated_at: datetime = Field(default_factory=_now)

    @classmethod
    def from_identity_defaults(
        cls,
        user_id: str,
        email: Optional[str],
        metadata: Optional[Dict[str, Any]] = None,
    ) -> "Profile":
        """Seed a profile from sign-up metadata, falling back field by field."""
        metadata = metadata or {}
        name = metadata.get("name")
        if not isinstance(name, str) or not name.strip():
            local_part = (email or "").split("@", 1)[0].strip()
            name = local_part or DEFAULT_DISPLAY_NAME
        age = _coerce_age(metadata.get("age"))
        group = metadata.get("age_group")
        if group not in ("5-9", "10-14", "15-19"):
            group = age_group_for(age) if age is not None else DEFAULT_AGE_GROUP
        avatar = metadata.get("avatar")
        return cls(
            id=user_id,
            name=name.strip(),
            age=age if age is not None else DEFAULT_AGE,
            age_group=group,
            avatar=avatar if isinstance(avatar, str) else "",
        )


class ProfileUpdate(BaseModel):
    """Partial profile edit. Fields left unset are not written."""

    model_config = ConfigDict(extra="forbid", populate_by_name=True, alias_generator=to_camel)

    name: Optional[str] = Field(default=None, min_length=1, max_length=80)
    age: Optional[int] = Field(default=None, ge=MIN_AGE, le=MAX_AGE)
    age_group: Optional[AgeGroup] = None
    avatar: Optional[str] = None

    @field_validator("name")
    @classmethod
    def _strip_name(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        stripped = value.strip()
        if not stripped:
            raise ValueError("name cannot be blank")
        return stripped

    def changes(self) -> Dict[str, Any]:
        updates = self.model_dump(exclude_unset=True, exclude_none=True)
        if "age" in updates and "age_group" not in updates:
            updates["age_group"] = age_group_for(updates["age"])
        return updates


class Progress(BaseModel):
    user_id: str
    current_level: int = 1
    total_lessons_completed: int = 0
    streak_days: int = 1
    total_points: int = 0
    completed_lesson_ids: List[str] = Field(default_factory=list)
    last_activity_date: date = Field(default_factory=_today)

    @classmethod
    def initial(cls, user_id: str, today: Optional[date] = None) -> "Progress":
        return cls(user_id=user_id, last_activity_date=today or _today())

    def has_completed(self, lesson_id: str) -> bool:
        return lesson_id in self.completed_lesson_ids


def level_for(lessons_completed: int) -> int:
    return lessons_completed // LESSONS_PER_LEVEL + 1


def next_streak(previous_activity: Optional[date], today: date, streak_days: int) -> int:
    if previous_activity is None:
        return 1
    if previous_activity == today:
        return max(streak_days, 1)
    if previous_activity + timedelta(days=1) == today:
        return max(streak_days, 1) + 1
    return 1


def apply_lesson_completion(
    progress: Progress,
    lesson_id: str,
    *,
    today: date,
    points: int = 100,
) -> Optional[Progress]:
    """Return the progress after completing ``lesson_id``.

    Returns ``None`` when the lesson was already completed so callers can skip
    the write entirely.
    """
    if progress.has_completed(lesson_id):
        return None
    completed = [*progress.completed_lesson_ids, lesson_id]
    total = len(completed)
    return progress.model_copy(
        update={
            "completed_lesson_ids": completed,
            "total_lessons_completed": total,
            "current_level": level_for(total),
            "total_points": progress.total_points + points,
            "streak_days": next_streak(progress.last_activity_date, today, progress.streak_days),
            "last_activity_date": today,
        }
    )


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class UnlockedAchievement(_CamelModel):
    id: str
    title: str
    description: str
    icon: str = "Award"
    category: Literal["progress", "streak", "completion", "mastery"]
    unlocked_at: datetime


class ProgressSummary(_CamelModel):
    current_level: int
    total_lessons_completed: int
    streak_days: int
    total_points: int
    completed_lesson_ids: List[str] = Field(default_factory=list)
    last_activity_date: Optional[date] = None

    @classmethod
    def from_progress(cls, progress: Progress) -> "ProgressSummary":
        return cls(
            current_level=progress.current_level,
            total_lessons_completed=progress.total_lessons_completed,
            streak_days=progress.streak_days,
            total_points=progress.total_points,
            completed_lesson_ids=list(progress.completed_lesson_ids),
            last_activity_date=progress.last_activity_date,
        )


class User(_CamelModel):
    """The assembled user. Recomputed on every read, never stored."""

    id: str
    email: str
    name: str
    age: int
    age_group: AgeGroup
    avatar: str = ""
    progress: ProgressSummary
    achievements: List[UnlockedAchievement] = Field(default_factory=list)
    created_at: datetime

    @property
    def achievement_ids(self) -> List[str]:
        return [achievement.id for achievement in self.achievements]


__all__ = [
    "AgeGroup",
    "DEFAULT_AGE",
    "DEFAULT_AGE_GROUP",
    "Profile",
    "ProfileUpdate",
    "Progress",
    "ProgressSummary",
    "UnlockedAchievement",
    "User",
    "age_group_for",
    "apply_lesson_completion",
    "level_for",
    "next_streak",
]
