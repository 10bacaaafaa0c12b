"""SQLAlchemy repositories for per-user records."""

from .user_records import (
    UserAchievementRepository,
    UserProfileRepository,
    UserProgressRepository,
    user_achievements,
    user_profiles,
    user_progress,
)

__all__ = [
    "UserAchievementRepository",
    "UserProfileRepository",
    "UserProgressRepository",
    "user_achievements",
    "user_profiles",
    "user_progress",
]
