"""ORM models for user profiles, progress counters and achievement unlocks."""

from __future__ import annotations

from datetime import date, datetime, timezone

from sqlalchemy import Date, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.types import JSON

from .base import Base, TimestampMixin

JSONType = JSON


class UserProfileModel(TimestampMixin, Base):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    age: Mapped[int] = mapped_column(Integer, nullable=False)
    age_group: Mapped[str] = mapped_column(String(8), nullable=False)
    avatar: Mapped[str | None] = mapped_column(Text, default="", nullable=True)

    progress: Mapped["UserProgressModel"] = relationship(
        back_populates="user", cascade="all, delete-orphan", uselist=False
    )
    achievements: Mapped[list["UserAchievementModel"]] = relationship(
        back_populates="user", cascade="all, delete-orphan"
    )


class UserProgressModel(TimestampMixin, Base):
    __tablename__ = "user_progress"

    user_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
    )
    current_level: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    total_lessons_completed: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    streak_days: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    total_points: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    completed_lesson_ids: Mapped[list[str]] = mapped_column(JSONType, default=list, nullable=False)
    last_activity_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    user: Mapped[UserProfileModel] = relationship(back_populates="progress")


class UserAchievementModel(Base):
    __tablename__ = "user_achievements"
    __table_args__ = (Index("ix_user_achievements_user", "user_id"),)

    user_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
    )
    achievement_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    unlocked_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False
    )

    user: Mapped[UserProfileModel] = relationship(back_populates="achievements")


__all__ = [
    "UserAchievementModel",
    "UserProfileModel",
    "UserProgressModel",
]
