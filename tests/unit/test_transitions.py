"""Membership transition tests: idempotence under concurrent requests."""

from __future__ import annotations

import asyncio

import pytest

from eduverse.errors import CapacityExceeded, DuplicateFact, NotFound
from eduverse.learning.course_service import complete_lesson, enroll_in_course
from eduverse.models import COURSES, LESSONS, PLAYERS
from eduverse.progression.xp_service import get_player
from eduverse.schemas import TransitionResult
from eduverse.social.activity_service import list_player_activities
from eduverse.store.base import SetUpdate
from eduverse.store.memory import MemoryDocumentStore
from eduverse.transitions import add_membership, remove_membership


class RacingStore(MemoryDocumentStore):
    """Lets a phantom concurrent request win the add right before ours."""

    async def add_to_set(self, collection, entity_id, path, value, max_size=None) -> SetUpdate:
        await super().add_to_set(collection, entity_id, path, value, max_size=max_size)
        return await super().add_to_set(collection, entity_id, path, value, max_size=max_size)


class TestCompleteLesson:
    @pytest.mark.asyncio
    async def test_concurrent_completions_award_once(self, store, aggregates, cache, make_player, lesson):
        player = await make_player()
        cache.reset_mock()

        results = await asyncio.gather(
            *(complete_lesson(store, aggregates, player.id, lesson.id) for _ in range(10)),
            return_exceptions=True,
        )

        successes = [r for r in results if isinstance(r, TransitionResult)]
        duplicates = [r for r in results if isinstance(r, DuplicateFact)]
        assert len(successes) == 1
        assert len(duplicates) == 9
        assert successes[0].actual_xp_awarded == 100

        assert (await get_player(store, player.id)).xp == 100
        assert len(await list_player_activities(store, player.id, kind="lesson_completed")) == 1
        snapshot = await store.get(LESSONS, lesson.id)
        assert snapshot["completed_by"] == [player.id]
        cache.invalidate_prefix.assert_awaited_once_with("leaderboard:")

    @pytest.mark.asyncio
    async def test_repeat_completion_has_no_side_effects(self, store, aggregates, cache, make_player, lesson):
        player = await make_player()
        await complete_lesson(store, aggregates, player.id, lesson.id)
        cache.reset_mock()

        with pytest.raises(DuplicateFact) as exc_info:
            await complete_lesson(store, aggregates, player.id, lesson.id)

        assert exc_info.value.to_result() == {
            "success": False,
            "error": "duplicate",
            "message": "Already completed this lesson",
        }
        assert (await get_player(store, player.id)).xp == 100
        assert len(await list_player_activities(store, player.id, kind="lesson_completed")) == 1
        cache.invalidate.assert_not_awaited()
        cache.invalidate_prefix.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_different_players_all_succeed(self, store, aggregates, lesson, make_player):
        players = [await make_player(f"player{i}") for i in range(5)]

        results = await asyncio.gather(*(complete_lesson(store, aggregates, p.id, lesson.id) for p in players))

        assert all(r.success for r in results)
        snapshot = await store.get(LESSONS, lesson.id)
        assert sorted(snapshot["completed_by"]) == sorted(p.id for p in players)

    @pytest.mark.asyncio
    async def test_unknown_lesson(self, store, aggregates, make_player):
        player = await make_player()
        with pytest.raises(NotFound):
            await complete_lesson(store, aggregates, player.id, "missing")


class TestEnroll:
    @pytest.mark.asyncio
    async def test_enroll_once(self, store, aggregates, make_player, course):
        player = await make_player()

        results = await asyncio.gather(
            *(enroll_in_course(store, aggregates, player.id, course.id) for _ in range(4)),
            return_exceptions=True,
        )

        assert sum(isinstance(r, TransitionResult) for r in results) == 1
        snapshot = await store.get(COURSES, course.id)
        assert snapshot["enrolled_students"] == [player.id]
        assert len(await list_player_activities(store, player.id, kind="course_enrolled")) == 1


class TestAddMembership:
    @pytest.mark.asyncio
    async def test_concurrent_unrelated_adds_all_count(self, store, make_player):
        """Growth caused by other members never masks or fakes our own add."""
        player = await make_player()

        updates = await asyncio.gather(
            *(
                add_membership(store, PLAYERS, player.id, "badges", f"badge{i}", what="holding this badge")
                for i in range(8)
            )
        )

        assert all(u.after_size == u.before_size + 1 for u in updates)
        assert len((await get_player(store, player.id)).badges) == 8

    @pytest.mark.asyncio
    async def test_presence_after_add_is_not_proof(self):
        """The value being present afterwards does not mean this call added it."""
        racing = RacingStore()
        await racing.insert(PLAYERS, {"id": "p1", "username": "alice", "badges": []})

        with pytest.raises(DuplicateFact):
            await add_membership(racing, PLAYERS, "p1", "badges", "gold", what="holding this badge")

    @pytest.mark.asyncio
    async def test_capacity_pre_check(self, store):
        await store.insert(PLAYERS, {"id": "p1", "username": "alice", "badges": ["a", "b"]})

        with pytest.raises(CapacityExceeded):
            await add_membership(store, PLAYERS, "p1", "badges", "c", what="holding this badge", max_size=2)

    @pytest.mark.asyncio
    async def test_missing_entity(self, store):
        with pytest.raises(NotFound):
            await add_membership(store, PLAYERS, "ghost", "badges", "a", what="holding this badge")

    @pytest.mark.asyncio
    async def test_remove_membership(self, store):
        await store.insert(PLAYERS, {"id": "p1", "username": "alice", "badges": ["a"]})

        assert await remove_membership(store, PLAYERS, "p1", "badges", "a") is True
        assert await remove_membership(store, PLAYERS, "p1", "badges", "a") is False
