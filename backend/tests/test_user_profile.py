from __future__ import annotations

from datetime import date, datetime, timezone

import pytest
from pydantic import ValidationError

from safetylearn.achievements import join_catalog, qualifying_achievements
from safetylearn.config import Settings
from safetylearn.user_profile import (
    Profile,
    ProfileUpdate,
    Progress,
    age_group_for,
    apply_lesson_completion,
    level_for,
    next_streak,
)


@pytest.mark.parametrize(
    ("age", "group"),
    [(5, "5-9"), (9, "5-9"), (10, "10-14"), (14, "10-14"), (15, "15-19"), (19, "15-19"), (42, "10-14")],
)
def test_age_group_for(age: int, group: str) -> None:
    assert age_group_for(age) == group


def test_profile_defaults_ignore_bad_metadata() -> None:
    profile = Profile.from_identity_defaults(
        "u1",
        "",
        {"name": "   ", "age": "old", "age_group": "20-24", "avatar": 7},
    )
    assert profile.name == "User"
    assert profile.age == 12
    assert profile.age_group == "10-14"
    assert profile.avatar == ""


def test_profile_defaults_derive_group_from_age() -> None:
    profile = Profile.from_identity_defaults("u1", "kid@example.com", {"name": "Kid", "age": 6})
    assert (profile.age, profile.age_group) == (6, "5-9")

    profile = Profile.from_identity_defaults("u2", "teen@example.com", {"age": 17, "age_group": "bogus"})
    assert (profile.age, profile.age_group) == (17, "15-19")

    profile = Profile.from_identity_defaults("u3", "new@example.com", {})
    assert (profile.age, profile.age_group) == (12, "10-14")


def test_profile_defaults_accept_numeric_strings() -> None:
    profile = Profile.from_identity_defaults("u1", "a@b.c", {"name": "Ana", "age": "7", "age_group": "5-9"})
    assert (profile.name, profile.age, profile.age_group) == ("Ana", 7, "5-9")


def test_profile_update_accepts_camel_case_and_drops_unset() -> None:
    update = ProfileUpdate.model_validate({"ageGroup": "15-19", "avatar": "owl"})
    assert update.changes() == {"age_group": "15-19", "avatar": "owl"}


def test_profile_update_rejects_unknown_fields() -> None:
    with pytest.raises(ValidationError):
        ProfileUpdate.model_validate({"points": 100})


def test_level_for() -> None:
    assert [level_for(count) for count in (0, 2, 3, 5, 6, 9)] == [1, 1, 2, 2, 3, 4]


def test_next_streak() -> None:
    today = date(2026, 3, 10)
    assert next_streak(None, today, 5) == 1
    assert next_streak(date(2026, 3, 10), today, 4) == 4
    assert next_streak(date(2026, 3, 9), today, 4) == 5
    assert next_streak(date(2026, 3, 7), today, 4) == 1


def test_apply_lesson_completion_returns_none_for_repeat() -> None:
    progress = Progress(user_id="u1", completed_lesson_ids=["a"], total_lessons_completed=1, total_points=100)
    assert apply_lesson_completion(progress, "a", today=date(2026, 3, 10)) is None


def test_apply_lesson_completion_keeps_counts_consistent() -> None:
    progress = Progress.initial("u1", date(2026, 3, 9))
    for lesson in ("a", "b", "c"):
        progress = apply_lesson_completion(progress, lesson, today=date(2026, 3, 10), points=50)
    assert progress.total_lessons_completed == len(progress.completed_lesson_ids) == 3
    assert progress.current_level == 2
    assert progress.total_points == 150
    assert progress.streak_days == 2


def test_qualifying_achievements_thresholds() -> None:
    assert qualifying_achievements(1, 100) == ["first-lesson"]
    assert qualifying_achievements(2, 200) == []
    assert qualifying_achievements(5, 500) == ["quiz-master"]
    assert set(qualifying_achievements(25, 2500)) == {"quiz-master", "safety-scholar", "point-collector"}


def test_join_catalog_skips_unknown_ids() -> None:
    unlocked_at = datetime(2026, 3, 10, tzinfo=timezone.utc)
    joined = join_catalog([("first-lesson", unlocked_at), ("retired-badge", unlocked_at)])
    assert [achievement.id for achievement in joined] == ["first-lesson"]
    assert joined[0].icon == "Star"
    assert joined[0].unlocked_at == unlocked_at


def test_lessons_per_level_is_not_configurable() -> None:
    assert "lessons_per_level" not in Settings.model_fields
    assert [level_for(count) for count in range(0, 10)] == [count // 3 + 1 for count in range(0, 10)]
