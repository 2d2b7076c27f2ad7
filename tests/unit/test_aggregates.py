"""Derived-aggregate invalidation and read-through caching."""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest
from structlog.testing import capture_logs

from eduverse.aggregates import DerivedAggregates, RedisAggregateCache
from eduverse.learning.course_service import complete_lesson
from eduverse.progression.xp_service import get_player


class FakeRedis:
    """Just enough of redis.asyncio.Redis for prefix invalidation."""

    def __init__(self, keys: list[str]) -> None:
        self.keys = keys
        self.delete = AsyncMock()

    async def scan_iter(self, match: str, count: int):
        prefix = match.rstrip("*")
        for key in self.keys:
            if key.startswith(prefix):
                yield key


class TestInvalidation:
    @pytest.mark.asyncio
    async def test_player_progressed_keys(self, aggregates, cache):
        await aggregates.player_progressed("p1")

        cache.invalidate_prefix.assert_awaited_once_with("leaderboard:")
        cache.invalidate.assert_awaited_once_with("player:p1")

    @pytest.mark.asyncio
    async def test_team_changed_keys(self, aggregates, cache):
        await aggregates.team_changed("t1", "p1")

        cache.invalidate.assert_any_await("team:t1")
        cache.invalidate.assert_any_await("player:p1")

    @pytest.mark.asyncio
    async def test_failure_is_logged_not_raised(self, aggregates, cache):
        cache.invalidate_prefix.side_effect = ConnectionError("redis down")

        with capture_logs() as logs:
            await aggregates.player_progressed("p1")

        [entry] = [log for log in logs if log["event"] == "cache_invalidation_failed"]
        assert entry["log_level"] == "warning"
        assert entry["reason"] == "player_progressed"

    @pytest.mark.asyncio
    async def test_transition_survives_cache_outage(self, store, aggregates, cache, make_player, lesson):
        cache.invalidate_prefix.side_effect = ConnectionError("redis down")
        cache.invalidate.side_effect = ConnectionError("redis down")
        player = await make_player()

        result = await complete_lesson(store, aggregates, player.id, lesson.id)

        assert result.success
        assert (await get_player(store, player.id)).xp == 100

    @pytest.mark.asyncio
    async def test_without_cache_is_noop(self):
        await DerivedAggregates(None).player_progressed("p1")


class TestReadThrough:
    @pytest.mark.asyncio
    async def test_hit_skips_loader(self, aggregates, cache):
        cache.get_json.return_value = {"cached": True}
        loader = AsyncMock()

        assert await aggregates.read_through("k", 60, loader) == {"cached": True}
        loader.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_miss_loads_and_stores(self, aggregates, cache):
        loader = AsyncMock(return_value=[1, 2])

        assert await aggregates.read_through("k", 60, loader) == [1, 2]
        cache.set_json.assert_awaited_once_with("k", [1, 2], 60)

    @pytest.mark.asyncio
    async def test_read_error_degrades_to_load(self, aggregates, cache):
        cache.get_json.side_effect = ConnectionError("redis down")
        cache.set_json.side_effect = ConnectionError("redis down")
        loader = AsyncMock(return_value="fresh")

        assert await aggregates.read_through("k", 60, loader) == "fresh"


class TestRedisAggregateCache:
    @pytest.mark.asyncio
    async def test_prefix_invalidation_in_batches(self):
        redis = FakeRedis([f"leaderboard:xp:{i}" for i in range(5)] + ["player:p1"])
        cache = RedisAggregateCache(redis, scan_batch=2)

        await cache.invalidate_prefix("leaderboard:")

        deleted = [key for call in redis.delete.await_args_list for key in call.args]
        assert sorted(deleted) == sorted(f"leaderboard:xp:{i}" for i in range(5))
        assert redis.delete.await_count == 3

    @pytest.mark.asyncio
    async def test_json_round_trip(self):
        redis = AsyncMock()
        redis.get.return_value = '{"a": 1}'
        cache = RedisAggregateCache(redis)

        assert await cache.get_json("k") == {"a": 1}
        await cache.set_json("k", {"a": 1}, 30)
        redis.setex.assert_awaited_once_with("k", 30, '{"a": 1}')
