"""Level curve and XP multiplier.

``level = floor(sqrt(xp / 100)) + 1``, so level ``n`` starts at
``(n - 1)^2 * 100`` XP: 0, 100, 400, 900, ...
"""

from __future__ import annotations

import math
from decimal import ROUND_FLOOR, Decimal

from eduverse.models import Player
from eduverse.schemas import LevelProgress

XP_PER_LEVEL_UNIT = 100

STREAK_BONUS_PER_DAY = Decimal("0.01")
STREAK_BONUS_CAP = Decimal("0.5")
TEAM_BONUS = Decimal("0.1")


def level_for_xp(xp: int) -> int:
    """Level for a total XP amount. Integer arithmetic only, so exact at every boundary."""
    if xp < 0:
        msg = f"xp must be non-negative, got {xp}"
        raise ValueError(msg)
    return math.isqrt(xp // XP_PER_LEVEL_UNIT) + 1


def xp_for_level(level: int) -> int:
    """Total XP at which ``level + 1`` begins (``level^2 * 100``)."""
    return level * level * XP_PER_LEVEL_UNIT


def level_progress(xp: int) -> LevelProgress:
    level = level_for_xp(xp)
    floor_xp = xp_for_level(level - 1)
    needed = xp_for_level(level) - floor_xp
    progress = xp - floor_xp
    return LevelProgress(
        level=level,
        progress_xp=progress,
        needed_xp=needed,
        progress_percent=round(progress * 100 / needed),
    )


def xp_multiplier(player: Player) -> Decimal:
    """1.0 + streak bonus (1% a day, capped at 50%) + flat 10% for team members."""
    multiplier = Decimal("1.0")
    if player.streak > 0:
        multiplier += min(player.streak * STREAK_BONUS_PER_DAY, STREAK_BONUS_CAP)
    if player.team_id:
        multiplier += TEAM_BONUS
    return multiplier


def apply_multiplier(base_amount: int, multiplier: Decimal) -> int:
    return int((Decimal(base_amount) * multiplier).to_integral_value(rounding=ROUND_FLOOR))
