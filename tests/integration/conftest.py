"""Fixtures backed by real Postgres and Redis. Skipped when either is down."""

from __future__ import annotations

from collections.abc import AsyncGenerator

import pytest
import pytest_asyncio
import redis.asyncio as aioredis
from sqlalchemy import text
from sqlalchemy.exc import DBAPIError

from eduverse.aggregates import RedisAggregateCache
from eduverse.config import get_settings
from eduverse.database import close_db, get_engine, get_session_factory, init_db
from eduverse.db.base import Base
from eduverse.redis_client import close_redis, get_redis, init_redis
from eduverse.store.postgres import PostgresDocumentStore


@pytest_asyncio.fixture
async def pg_store() -> AsyncGenerator[PostgresDocumentStore, None]:
    """Document store on a clean ``documents`` table."""
    settings = get_settings()
    await init_db(settings.database_url)
    try:
        async with get_engine().begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
            await conn.execute(text("TRUNCATE TABLE documents"))
    except (DBAPIError, OSError) as exc:
        await close_db()
        pytest.skip(f"Postgres unavailable: {exc}")

    yield PostgresDocumentStore(get_session_factory())
    await close_db()


@pytest_asyncio.fixture
async def redis_cache() -> AsyncGenerator[RedisAggregateCache, None]:
    """Aggregate cache on the test Redis database, flushed after use."""
    settings = get_settings()
    await init_redis(settings.redis_url)
    client = get_redis()
    try:
        await client.ping()
    except (aioredis.RedisError, OSError) as exc:
        await close_redis()
        pytest.skip(f"Redis unavailable: {exc}")

    yield RedisAggregateCache(client, scan_batch=10)
    await client.flushdb()
    await close_redis()
