"""Tests for user assembly and progress mutations."""

from __future__ import annotations

import asyncio
from datetime import date, timedelta

import pytest

from safetylearn.errors import NOT_AUTHENTICATED_MESSAGE, PROGRESS_MISSING_MESSAGE, StoreError
from safetylearn.profile_sync import CONCURRENT_UPDATE_MESSAGE, ProfileSynchronizer
from safetylearn.stores import MemoryAchievementStore, MemoryProfileStore, MemoryProgressStore, Stores

from conftest import TODAY


@pytest.mark.asyncio
async def test_first_read_creates_profile_and_progress(provider, stores, synchronizer, signed_in, telemetry_events) -> None:
    user = await synchronizer.assemble(signed_in)

    assert user is not None
    assert user.id == signed_in.id
    assert user.email == "kid@example.com"
    assert (user.name, user.age, user.age_group) == ("Kid", 10, "10-14")
    assert user.progress.current_level == 1
    assert user.progress.total_lessons_completed == 0
    assert user.progress.streak_days == 1
    assert user.progress.total_points == 0
    assert user.progress.last_activity_date == TODAY
    assert user.achievements == []
    assert signed_in.id in stores.profiles.rows
    assert signed_in.id in stores.progress.rows
    names = [event.name for event in telemetry_events]
    assert names.count("user_profile_created") == 1
    assert names.count("user_progress_created") == 1


@pytest.mark.asyncio
async def test_defaults_when_signup_metadata_is_missing(provider, synchronizer) -> None:
    identity = provider.add_account("sam.lee@example.com", "pw")
    provider.login(identity)

    user = await synchronizer.assemble(identity)

    assert user is not None
    assert user.name == "sam.lee"
    assert user.age == 12
    assert user.age_group == "10-14"
    assert user.avatar == ""


@pytest.mark.asyncio
async def test_complete_lesson_updates_progress_and_unlocks_first_lesson(synchronizer, signed_in, telemetry_events) -> None:
    await synchronizer.assemble(signed_in)

    result = await synchronizer.complete_lesson("lesson-1")
    assert result.ok

    user = await synchronizer.assemble(signed_in)
    assert user is not None
    assert user.progress.total_lessons_completed == 1
    assert user.progress.total_points == 100
    assert user.progress.current_level == 1
    assert user.progress.completed_lesson_ids == ["lesson-1"]
    assert user.achievement_ids == ["first-lesson"]
    assert user.achievements[0].title == "First Steps"
    names = [event.name for event in telemetry_events]
    assert "lesson_completed" in names
    assert "achievement_unlocked" in names


@pytest.mark.asyncio
async def test_completing_same_lesson_twice_is_a_noop(stores, synchronizer, signed_in) -> None:
    await synchronizer.assemble(signed_in)
    await synchronizer.complete_lesson("lesson-1")
    before = stores.progress.rows[signed_in.id].model_copy(deep=True)

    result = await synchronizer.complete_lesson("lesson-1")

    assert result.ok
    assert stores.progress.rows[signed_in.id] == before
    assert len(stores.achievements.rows) == 1


@pytest.mark.asyncio
async def test_level_tracks_lesson_count_and_thresholds_unlock_once(synchronizer, signed_in) -> None:
    await synchronizer.assemble(signed_in)
    for index in range(1, 8):
        assert (await synchronizer.complete_lesson(f"lesson-{index}")).ok
        user = await synchronizer.assemble(signed_in)
        assert user is not None
        assert user.progress.current_level == index // 3 + 1
        assert user.progress.total_points == index * 100

    assert user.progress.current_level == 3
    assert sorted(user.achievement_ids) == ["first-lesson", "quiz-master"]
    assert len(user.achievement_ids) == len(set(user.achievement_ids))


@pytest.mark.asyncio
async def test_point_collector_unlocks_at_one_thousand_points(provider, stores, signed_in) -> None:
    synchronizer = ProfileSynchronizer(provider, stores, lesson_points=250, today=lambda: TODAY)
    await synchronizer.assemble(signed_in)
    for index in range(4):
        await synchronizer.complete_lesson(f"lesson-{index}")

    user = await synchronizer.assemble(signed_in)
    assert user is not None
    assert user.progress.total_points == 1000
    assert "point-collector" in user.achievement_ids


@pytest.mark.asyncio
async def test_streak_grows_on_consecutive_days_and_resets_after_gap(provider, stores, signed_in) -> None:
    current = {"day": TODAY}
    synchronizer = ProfileSynchronizer(provider, stores, today=lambda: current["day"])
    await synchronizer.assemble(signed_in)

    await synchronizer.complete_lesson("a")
    assert stores.progress.rows[signed_in.id].streak_days == 1

    current["day"] = TODAY + timedelta(days=1)
    await synchronizer.complete_lesson("b")
    assert stores.progress.rows[signed_in.id].streak_days == 2

    current["day"] = TODAY + timedelta(days=4)
    await synchronizer.complete_lesson("c")
    progress = stores.progress.rows[signed_in.id]
    assert progress.streak_days == 1
    assert progress.last_activity_date == date(2026, 3, 14)


@pytest.mark.asyncio
async def test_blank_lesson_id_is_rejected(synchronizer, signed_in) -> None:
    result = await synchronizer.complete_lesson("   ")
    assert result.error == "Lesson id is required"


@pytest.mark.asyncio
async def test_complete_lesson_without_progress_row_fails(synchronizer, signed_in) -> None:
    result = await synchronizer.complete_lesson("lesson-1")
    assert result.error == PROGRESS_MISSING_MESSAGE


@pytest.mark.asyncio
async def test_complete_lesson_retries_after_concurrent_write(provider, signed_in) -> None:
    class RacingProgressStore(MemoryProgressStore):
        raced = False

        async def compare_and_set(self, progress, *, expected_completed: int) -> bool:
            if not self.raced:
                self.raced = True
                row = self.rows[progress.user_id]
                self.rows[progress.user_id] = row.model_copy(
                    update={"completed_lesson_ids": ["other"], "total_lessons_completed": 1, "total_points": 100}
                )
            return await super().compare_and_set(progress, expected_completed=expected_completed)

    stores = Stores(MemoryProfileStore(), RacingProgressStore(), MemoryAchievementStore())
    synchronizer = ProfileSynchronizer(provider, stores, today=lambda: TODAY)
    await synchronizer.assemble(signed_in)

    assert (await synchronizer.complete_lesson("mine")).ok

    progress = stores.progress.rows[signed_in.id]
    assert progress.completed_lesson_ids == ["other", "mine"]
    assert progress.total_lessons_completed == 2
    assert progress.total_points == 200


@pytest.mark.asyncio
async def test_complete_lesson_gives_up_after_repeated_conflicts(provider, signed_in) -> None:
    class AlwaysStaleProgressStore(MemoryProgressStore):
        attempts = 0

        async def compare_and_set(self, progress, *, expected_completed: int) -> bool:
            self.attempts += 1
            return False

    progress_store = AlwaysStaleProgressStore()
    stores = Stores(MemoryProfileStore(), progress_store, MemoryAchievementStore())
    synchronizer = ProfileSynchronizer(provider, stores, today=lambda: TODAY)
    await synchronizer.assemble(signed_in)

    result = await synchronizer.complete_lesson("lesson-1")

    assert result.error == CONCURRENT_UPDATE_MESSAGE
    assert progress_store.attempts == 3


@pytest.mark.asyncio
async def test_update_profile_writes_only_supplied_fields(stores, synchronizer, signed_in) -> None:
    await synchronizer.assemble(signed_in)

    assert (await synchronizer.update_profile({"name": "  Riley  "})).ok
    profile = stores.profiles.rows[signed_in.id]
    assert profile.name == "Riley"
    assert profile.age == 10
    assert profile.age_group == "10-14"

    assert (await synchronizer.update_profile({"age": 16})).ok
    profile = stores.profiles.rows[signed_in.id]
    assert profile.age == 16
    assert profile.age_group == "15-19"
    assert profile.name == "Riley"


@pytest.mark.asyncio
async def test_update_profile_rejects_invalid_values(stores, synchronizer, signed_in) -> None:
    await synchronizer.assemble(signed_in)

    result = await synchronizer.update_profile({"age": 30})

    assert result.error is not None
    assert result.error.startswith("Invalid age")
    assert stores.profiles.rows[signed_in.id].age == 10


@pytest.mark.asyncio
async def test_empty_update_notifies_nobody(synchronizer, signed_in) -> None:
    calls: list[str] = []
    synchronizer.on_mutation(lambda: calls.append("mutated"))
    await synchronizer.assemble(signed_in)

    assert (await synchronizer.update_profile({})).ok
    assert calls == []

    assert (await synchronizer.update_profile({"avatar": "owl"})).ok
    assert calls == ["mutated"]


@pytest.mark.asyncio
async def test_mutations_without_identity_report_not_authenticated(provider, synchronizer) -> None:
    result = await synchronizer.update_profile({"name": "Nobody"})
    assert result.error == NOT_AUTHENTICATED_MESSAGE

    result = await synchronizer.complete_lesson("lesson-1")
    assert result.error == NOT_AUTHENTICATED_MESSAGE


@pytest.mark.asyncio
async def test_rejected_credential_during_assembly_purges_session(provider, signed_in, telemetry_events) -> None:
    class ExpiredTokenProfileStore(MemoryProfileStore):
        async def get(self, user_id: str):
            raise StoreError("JWT expired", code="401")

    stores = Stores(ExpiredTokenProfileStore(), MemoryProgressStore(), MemoryAchievementStore())
    synchronizer = ProfileSynchronizer(provider, stores, today=lambda: TODAY)

    assert await synchronizer.assemble(signed_in) is None
    assert provider.sign_out_calls == 1
    assert provider.session is None
    assert any(event.name == "stale_session_purged" for event in telemetry_events)


@pytest.mark.asyncio
async def test_progress_creation_failure_keeps_session(provider, signed_in) -> None:
    class BrokenProgressStore(MemoryProgressStore):
        async def insert_if_absent(self, progress):
            raise StoreError("permission denied for table user_progress", code="42501")

    stores = Stores(MemoryProfileStore(), BrokenProgressStore(), MemoryAchievementStore())
    synchronizer = ProfileSynchronizer(provider, stores, today=lambda: TODAY)

    assert await synchronizer.assemble(signed_in) is None
    assert provider.sign_out_calls == 0
    assert provider.session is not None


@pytest.mark.asyncio
async def test_achievement_read_failure_yields_empty_list(provider, signed_in) -> None:
    class FlakyAchievementStore(MemoryAchievementStore):
        async def list_for_user(self, user_id: str):
            raise StoreError("relation does not exist")

    stores = Stores(MemoryProfileStore(), MemoryProgressStore(), FlakyAchievementStore())
    synchronizer = ProfileSynchronizer(provider, stores, today=lambda: TODAY)

    user = await synchronizer.assemble(signed_in)
    assert user is not None
    assert user.achievements == []


@pytest.mark.asyncio
async def test_three_lesson_walkthrough(synchronizer, signed_in) -> None:
    await synchronizer.assemble(signed_in)

    await synchronizer.complete_lesson("L1")
    user = await synchronizer.assemble(signed_in)
    assert user.progress.total_points == 100
    assert user.achievement_ids == ["first-lesson"]

    await synchronizer.complete_lesson("L1")
    await synchronizer.complete_lesson("L2")
    await synchronizer.complete_lesson("L3")
    user = await synchronizer.assemble(signed_in)
    assert user.progress.completed_lesson_ids == ["L1", "L2", "L3"]
    assert user.progress.total_lessons_completed == 3
    assert user.progress.current_level == 2
    assert user.progress.total_points == 300
    assert user.achievement_ids == ["first-lesson"]


@pytest.mark.asyncio
async def test_retry_finds_lesson_already_completed_by_racing_writer(provider, signed_in) -> None:
    class SameLessonRaceStore(MemoryProgressStore):
        raced = False
        attempts = 0

        async def compare_and_set(self, progress, *, expected_completed: int) -> bool:
            self.attempts += 1
            if not self.raced:
                self.raced = True
                row = self.rows[progress.user_id]
                self.rows[progress.user_id] = row.model_copy(
                    update={"completed_lesson_ids": ["L1"], "total_lessons_completed": 1, "total_points": 100}
                )
            return await super().compare_and_set(progress, expected_completed=expected_completed)

    progress_store = SameLessonRaceStore()
    stores = Stores(MemoryProfileStore(), progress_store, MemoryAchievementStore())
    synchronizer = ProfileSynchronizer(provider, stores, today=lambda: TODAY)
    await synchronizer.assemble(signed_in)

    result = await synchronizer.complete_lesson("L1")

    assert result.ok
    assert progress_store.attempts == 1
    progress = progress_store.rows[signed_in.id]
    assert progress.completed_lesson_ids == ["L1"]
    assert progress.total_lessons_completed == 1
    assert progress.total_points == 100


@pytest.mark.asyncio
async def test_concurrent_duplicate_completions_and_profile_edit(provider, signed_in) -> None:
    class YieldingProfileStore(MemoryProfileStore):
        async def get(self, user_id: str):
            await asyncio.sleep(0)
            return await super().get(user_id)

        async def update(self, user_id, changes):
            await asyncio.sleep(0)
            return await super().update(user_id, changes)

    class YieldingProgressStore(MemoryProgressStore):
        def __init__(self) -> None:
            super().__init__()
            self.lost_races = 0

        async def get(self, user_id: str):
            row = await super().get(user_id)
            await asyncio.sleep(0)
            return row

        async def compare_and_set(self, progress, *, expected_completed: int) -> bool:
            await asyncio.sleep(0)
            saved = await super().compare_and_set(progress, expected_completed=expected_completed)
            if not saved:
                self.lost_races += 1
            return saved

    progress_store = YieldingProgressStore()
    stores = Stores(YieldingProfileStore(), progress_store, MemoryAchievementStore())
    synchronizer = ProfileSynchronizer(provider, stores, today=lambda: TODAY)
    await synchronizer.assemble(signed_in)

    results = await asyncio.gather(
        synchronizer.complete_lesson("L1"),
        synchronizer.complete_lesson("L1"),
        synchronizer.complete_lesson("L1"),
        synchronizer.update_profile({"name": "Zoe"}),
    )

    assert all(result.ok for result in results)
    assert progress_store.lost_races >= 1
    progress = progress_store.rows[signed_in.id]
    assert progress.completed_lesson_ids == ["L1"]
    assert progress.total_points == 100
    profile = stores.profiles.rows[signed_in.id]
    assert profile.name == "Zoe"
    assert profile.age == 10
    assert list(stores.achievements.rows) == [(signed_in.id, "first-lesson")]
