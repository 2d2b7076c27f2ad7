"""Shared test fixtures."""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Generator
from typing import Any
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio

from eduverse.aggregates import DerivedAggregates
from eduverse.config import get_settings
from eduverse.learning.course_service import create_course, create_lesson
from eduverse.models import PLAYERS, Course, Lesson, Player
from eduverse.players import create_player
from eduverse.progression.levels import level_for_xp
from eduverse.progression.xp_service import get_player
from eduverse.store.memory import MemoryDocumentStore

PlayerFactory = Callable[..., Awaitable[Player]]


@pytest.fixture(autouse=True)
def _fresh_settings() -> Generator[None, None, None]:
    """Drop cached settings so monkeypatched EDUVERSE_* variables apply."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def store() -> MemoryDocumentStore:
    return MemoryDocumentStore()


@pytest.fixture
def cache() -> AsyncMock:
    """Aggregate cache double. Reads miss so loaders always run."""
    mock = AsyncMock()
    mock.get_json.return_value = None
    return mock


@pytest.fixture
def aggregates(cache: AsyncMock) -> DerivedAggregates:
    return DerivedAggregates(cache)


@pytest_asyncio.fixture
async def make_player(store: MemoryDocumentStore) -> PlayerFactory:
    """Create a player and optionally overwrite scalar fields.

    ``level`` follows ``xp`` unless given explicitly.
    """

    async def _make(username: str = "alice", **fields: Any) -> Player:
        player = await create_player(store, username, f"{username}@example.com")
        if "xp" in fields:
            fields.setdefault("level", level_for_xp(fields["xp"]))
        for path, value in fields.items():
            await store.set_field(PLAYERS, player.id, path, value)
        return await get_player(store, player.id)

    return _make


@pytest_asyncio.fixture
async def course(store: MemoryDocumentStore, aggregates: DerivedAggregates) -> Course:
    return await create_course(store, aggregates, "Python Basics", category="programming", xp_reward=100)


@pytest_asyncio.fixture
async def lesson(store: MemoryDocumentStore, course: Course) -> Lesson:
    return await create_lesson(store, course.id, "Variables", xp_reward=100, order=1)
