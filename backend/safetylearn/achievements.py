"""Static achievement catalog and unlock thresholds."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Iterable, List, Literal, Tuple

from .user_profile import UnlockedAchievement

logger = logging.getLogger(__name__)

AchievementCategory = Literal["progress", "streak", "completion", "mastery"]

FIRST_LESSON = "first-lesson"
QUIZ_MASTER = "quiz-master"
SAFETY_SCHOLAR = "safety-scholar"
POINT_COLLECTOR = "point-collector"

QUIZ_MASTER_LESSONS = 5
SAFETY_SCHOLAR_LESSONS = 25
POINT_COLLECTOR_POINTS = 1000


@dataclass(frozen=True)
class AchievementDefinition:
    id: str
    title: str
    description: str
    icon: str
    category: AchievementCategory


ACHIEVEMENT_CATALOG: Dict[str, AchievementDefinition] = {
    definition.id: definition
    for definition in (
        AchievementDefinition(
            id=FIRST_LESSON,
            title="First Steps",
            description="Completed your very first safety lesson.",
            icon="Star",
            category="progress",
        ),
        AchievementDefinition(
            id=QUIZ_MASTER,
            title="Quiz Master",
            description="Completed 5 safety lessons.",
            icon="Brain",
            category="mastery",
        ),
        AchievementDefinition(
            id=SAFETY_SCHOLAR,
            title="Safety Scholar",
            description="Completed 25 safety lessons.",
            icon="GraduationCap",
            category="completion",
        ),
        AchievementDefinition(
            id=POINT_COLLECTOR,
            title="Point Collector",
            description="Earned 1,000 points.",
            icon="Trophy",
            category="progress",
        ),
    )
}


def qualifying_achievements(lessons_completed: int, total_points: int) -> List[str]:
    """Achievement ids whose thresholds the given counters satisfy.

    The first-lesson badge matches exactly one completed lesson; the others are
    "at least" thresholds and keep qualifying once crossed.
    """
    earned: List[str] = []
    if lessons_completed == 1:
        earned.append(FIRST_LESSON)
    if lessons_completed >= QUIZ_MASTER_LESSONS:
        earned.append(QUIZ_MASTER)
    if lessons_completed >= SAFETY_SCHOLAR_LESSONS:
        earned.append(SAFETY_SCHOLAR)
    if total_points >= POINT_COLLECTOR_POINTS:
        earned.append(POINT_COLLECTOR)
    return earned


def join_catalog(unlocks: Iterable[Tuple[str, datetime]]) -> List[UnlockedAchievement]:
    joined: List[UnlockedAchievement] = []
    for achievement_id, unlocked_at in unlocks:
        definition = ACHIEVEMENT_CATALOG.get(achievement_id)
        if definition is None:
            logger.warning("Skipping unlock for unknown achievement %s", achievement_id)
            continue
        joined.append(
            UnlockedAchievement(
                id=definition.id,
                title=definition.title,
                description=definition.description,
                icon=definition.icon or "Award",
                category=definition.category,
                unlocked_at=unlocked_at,
            )
        )
    return joined


__all__ = [
    "ACHIEVEMENT_CATALOG",
    "AchievementDefinition",
    "FIRST_LESSON",
    "POINT_COLLECTOR",
    "QUIZ_MASTER",
    "SAFETY_SCHOLAR",
    "join_catalog",
    "qualifying_achievements",
]
