"""Daily activity streaks.

A player's streak counts consecutive active days. Marking a day active is a
claim on ``last_active_date`` made with compare-and-set, so two requests on
the same day bump the streak once.
"""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone

import structlog

from eduverse.models import PLAYERS
from eduverse.progression.xp_service import get_player
from eduverse.store.base import DocumentStore

logger = structlog.get_logger()


def today_utc() -> date:
    return datetime.now(timezone.utc).date()


async def mark_active(store: DocumentStore, player_id: str, today: date | None = None) -> int:
    """Record activity for ``today`` and return the resulting streak.

    Same day: no change. Day after the last active day: streak + 1.
    Any longer gap (or first activity): streak restarts at 1.
    """
    if today is None:
        today = today_utc()

    player = await get_player(store, player_id)
    last = player.last_active_date
    if last is not None and last >= today:
        return player.streak

    claimed = await store.compare_and_set(
        PLAYERS,
        player_id,
        "last_active_date",
        last.isoformat() if last else None,
        today.isoformat(),
    )
    if not claimed:
        # A concurrent request claimed the day first and owns the update.
        return (await get_player(store, player_id)).streak

    if last is not None and last == today - timedelta(days=1):
        update = await store.increment(PLAYERS, player_id, "streak", 1)
        streak = update.current
    else:
        await store.set_field(PLAYERS, player_id, "streak", 1)
        streak = 1

    logger.info("streak_updated", player_id=player_id, streak=streak, day=today.isoformat())
    return streak
