"""Leaderboard reads, cached in Redis and dropped on every XP change."""

from __future__ import annotations

from typing import Literal

from eduverse.aggregates import LEADERBOARD_PREFIX, DerivedAggregates
from eduverse.config import get_settings
from eduverse.errors import ValidationError
from eduverse.models import PLAYERS
from eduverse.schemas import LeaderboardEntry
from eduverse.store.base import DocumentStore, OrderBy, Page, Query

LeaderboardKind = Literal["xp", "level"]

_ORDERING: dict[str, list[OrderBy]] = {
    "xp": [OrderBy("xp", descending=True), OrderBy("username")],
    "level": [OrderBy("level", descending=True), OrderBy("xp", descending=True), OrderBy("username")],
}


def build_leaderboard_key(kind: str, limit: int) -> str:
    return f"{LEADERBOARD_PREFIX}{kind}:{limit}"


async def get_leaderboard(
    store: DocumentStore,
    aggregates: DerivedAggregates,
    kind: LeaderboardKind = "xp",
    limit: int | None = None,
) -> list[LeaderboardEntry]:
    if kind not in _ORDERING:
        raise ValidationError(f"Unknown leaderboard kind: {kind}")
    window = Page.clamp(limit)

    async def load() -> list[dict]:
        docs = await store.query(Query(PLAYERS, order_by=_ORDERING[kind]), window)
        return [
            {
                "rank": rank,
                "player_id": doc["id"],
                "username": doc["username"],
                "xp": doc.get("xp", 0),
                "level": doc.get("level", 1),
            }
            for rank, doc in enumerate(docs, start=1)
        ]

    rows = await aggregates.read_through(
        build_leaderboard_key(kind, window.limit),
        get_settings().leaderboard_cache_ttl_seconds,
        load,
    )
    return [LeaderboardEntry.model_validate(row) for row in rows]
