"""XP awards with multiplier application and level-up detection."""

from __future__ import annotations

import structlog

from eduverse.errors import ValidationError
from eduverse.models import PLAYERS, Player
from eduverse.progression.levels import apply_multiplier, level_for_xp, level_progress, xp_multiplier
from eduverse.schemas import PlayerStats, XPAward
from eduverse.social.activity_service import record_activity
from eduverse.store.base import DocumentStore

logger = structlog.get_logger()


async def get_player(store: DocumentStore, player_id: str) -> Player:
    return Player.model_validate(await store.get(PLAYERS, player_id))


async def award_xp(
    store: DocumentStore,
    player_id: str,
    base_amount: int,
    source: str,
) -> XPAward:
    """Credit ``base_amount`` times the player's multiplier.

    The multiplier comes from a fresh read. XP is added with an atomic
    increment and ``level`` is raised to the level of the new total with an
    atomic max, so concurrent awards never lose XP and the level always
    ends at ``level_for_xp(xp)``. The pre/post XP values reported by the
    increment belong to this award alone, so a level-up is detected (and
    logged as one activity) exactly once no matter how many thresholds the
    award crosses.

    Callers must report ``actual_amount``, never ``base_amount``.
    """
    if base_amount < 0:
        msg = f"XP amount must be non-negative, got {base_amount}"
        raise ValidationError(msg)

    player = await get_player(store, player_id)
    multiplier = xp_multiplier(player)
    actual = apply_multiplier(base_amount, multiplier)

    if actual == 0:
        return XPAward(
            base_amount=base_amount,
            actual_amount=0,
            multiplier=float(multiplier),
            old_level=player.level,
            new_level=player.level,
            total_xp=player.xp,
        )

    update = await store.increment(PLAYERS, player_id, "xp", actual)
    old_level = level_for_xp(update.previous)
    new_level = level_for_xp(update.current)
    await store.raise_to(PLAYERS, player_id, "level", new_level)

    award = XPAward(
        base_amount=base_amount,
        actual_amount=actual,
        multiplier=float(multiplier),
        old_level=old_level,
        new_level=new_level,
        total_xp=update.current,
    )
    logger.info(
        "xp_awarded",
        player_id=player_id,
        source=source,
        base=base_amount,
        actual=actual,
        total_xp=update.current,
    )

    if award.leveled_up:
        await record_activity(
            store,
            player_id,
            "level_up",
            "Level Up!",
            f"You reached level {new_level}",
            {"level": new_level, "previous_level": old_level},
        )
    return award


async def get_player_stats(store: DocumentStore, player_id: str) -> PlayerStats:
    """Profile numbers: level progress, multiplier and set sizes."""
    player = await get_player(store, player_id)
    return PlayerStats(
        player_id=player.id,
        username=player.username,
        xp=player.xp,
        level=player.level,
        streak=player.streak,
        multiplier=float(xp_multiplier(player)),
        progress=level_progress(player.xp),
        achievements=len(player.achievements),
        badges=len(player.badges),
        friends=len(player.friends),
        team_id=player.team_id,
    )
