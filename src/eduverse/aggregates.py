"""Derived-aggregate caching and invalidation.

Leaderboards, course listings and player profiles are cached in Redis.
``DerivedAggregates`` is the strategy the transition operations call once a
mutation is confirmed; it knows which keys a kind of change makes stale.
Invalidation is best-effort: a Redis failure is logged and never undoes or
masks the committed transition.
"""

from __future__ import annotations

import json
from typing import Any, Protocol

import redis.asyncio as aioredis
import structlog

logger = structlog.get_logger()

LEADERBOARD_PREFIX = "leaderboard:"
COURSES_PREFIX = "courses:"
PLAYER_KEY = "player:{player_id}"
TEAM_KEY = "team:{team_id}"


class AggregateCache(Protocol):
    """Key/value collaborator holding cached aggregates."""

    async def get_json(self, key: str) -> Any | None: ...

    async def set_json(self, key: str, value: Any, ttl_seconds: int) -> None: ...

    async def invalidate(self, key: str) -> None: ...

    async def invalidate_prefix(self, prefix: str) -> None: ...


class RedisAggregateCache:
    """``AggregateCache`` on a Redis client with ``decode_responses=True``."""

    def __init__(self, redis: aioredis.Redis, scan_batch: int = 500) -> None:
        self.redis = redis
        self.scan_batch = scan_batch

    async def get_json(self, key: str) -> Any | None:
        cached = await self.redis.get(key)
        return json.loads(cached) if cached else None

    async def set_json(self, key: str, value: Any, ttl_seconds: int) -> None:
        await self.redis.setex(key, ttl_seconds, json.dumps(value, default=str))

    async def invalidate(self, key: str) -> None:
        await self.redis.delete(key)

    async def invalidate_prefix(self, prefix: str) -> None:
        # SCAN instead of KEYS so a large keyspace never blocks the server.
        batch: list[str] = []
        async for key in self.redis.scan_iter(match=f"{prefix}*", count=self.scan_batch):
            batch.append(key)
            if len(batch) >= self.scan_batch:
                await self.redis.delete(*batch)
                batch = []
        if batch:
            await self.redis.delete(*batch)


class DerivedAggregates:
    """Invalidation strategy invoked after confirmed transitions only."""

    def __init__(self, cache: AggregateCache | None) -> None:
        self.cache = cache

    async def _run(self, keys: list[str], prefixes: list[str], reason: str) -> None:
        if self.cache is None:
            return
        try:
            for prefix in prefixes:
                await self.cache.invalidate_prefix(prefix)
            for key in keys:
                await self.cache.invalidate(key)
        except Exception:
            logger.warning("cache_invalidation_failed", reason=reason, keys=keys, prefixes=prefixes, exc_info=True)

    async def player_progressed(self, player_id: str) -> None:
        """XP, level or achievements changed: leaderboards and the profile are stale."""
        await self._run([PLAYER_KEY.format(player_id=player_id)], [LEADERBOARD_PREFIX], "player_progressed")

    async def course_membership_changed(self, course_id: str, player_id: str) -> None:
        await self._run([PLAYER_KEY.format(player_id=player_id)], [COURSES_PREFIX], "course_membership_changed")

    async def course_catalogue_changed(self) -> None:
        await self._run([], [COURSES_PREFIX], "course_catalogue_changed")

    async def social_graph_changed(self, *player_ids: str) -> None:
        keys = [PLAYER_KEY.format(player_id=pid) for pid in player_ids]
        await self._run(keys, [], "social_graph_changed")

    async def team_changed(self, team_id: str, player_id: str) -> None:
        keys = [TEAM_KEY.format(team_id=team_id), PLAYER_KEY.format(player_id=player_id)]
        await self._run(keys, [LEADERBOARD_PREFIX], "team_changed")

    async def read_through(self, key: str, ttl_seconds: int, loader: Any) -> Any:
        """Return the cached value for ``key`` or load, cache and return it.

        Cache errors degrade to a direct load.
        """
        if self.cache is not None:
            try:
                cached = await self.cache.get_json(key)
            except Exception:
                logger.warning("cache_read_failed", key=key, exc_info=True)
                cached = None
            if cached is not None:
                return cached
        value = await loader()
        if self.cache is not None:
            try:
                await self.cache.set_json(key, value, ttl_seconds)
            except Exception:
                logger.warning("cache_write_failed", key=key, exc_info=True)
        return value
