"""Process wiring for the engine.

Usage: python -m eduverse.main seed
"""

from __future__ import annotations

import asyncio
import sys
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from dataclasses import dataclass

import structlog

from eduverse.achievements.seed import seed_achievements
from eduverse.aggregates import DerivedAggregates, RedisAggregateCache
from eduverse.config import Settings, get_settings
from eduverse.database import close_db, get_session_factory, init_db
from eduverse.logging_config import setup_logging
from eduverse.redis_client import close_redis, get_redis, init_redis
from eduverse.store.postgres import PostgresDocumentStore

logger = structlog.get_logger()


@dataclass
class Services:
    """Collaborators every operation takes as its first arguments."""

    store: PostgresDocumentStore
    aggregates: DerivedAggregates


@asynccontextmanager
async def lifespan(settings: Settings | None = None) -> AsyncGenerator[Services, None]:
    """Startup and shutdown lifecycle."""
    settings = settings or get_settings()
    setup_logging(settings)
    await init_db(settings.database_url)
    await init_redis(settings.redis_url)

    services = Services(
        store=PostgresDocumentStore(get_session_factory()),
        aggregates=DerivedAggregates(RedisAggregateCache(get_redis())),
    )

    # Seed achievement definitions (idempotent)
    try:
        await seed_achievements(services.store)
    except Exception:
        logger.warning("achievement_seeding_failed", exc_info=True)

    try:
        yield services
    finally:
        await close_db()
        await close_redis()


async def main(argv: list[str]) -> int:
    command = argv[0] if argv else "seed"
    if command != "seed":
        print(f"Unknown command: {command}. Usage: python -m eduverse.main seed", file=sys.stderr)
        return 2

    async with lifespan():
        pass
    logger.info("seed_complete")
    return 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main(sys.argv[1:])))
