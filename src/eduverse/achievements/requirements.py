"""Achievement unlock requirements.

A requirement is one of a closed set of kinds, each carrying its own integer
threshold. Stored documents keep them as ``{"kind": ..., "value": ...}``;
pydantic picks the variant from ``kind``.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field

if TYPE_CHECKING:
    from eduverse.models import Player


class _Threshold(BaseModel):
    model_config = ConfigDict(frozen=True)

    value: Annotated[int, Field(ge=0)]


class XPRequirement(_Threshold):
    kind: Literal["xp"] = "xp"


class LevelRequirement(_Threshold):
    kind: Literal["level"] = "level"


class StreakRequirement(_Threshold):
    kind: Literal["streak"] = "streak"


class FriendsRequirement(_Threshold):
    kind: Literal["friends"] = "friends"


class AchievementsRequirement(_Threshold):
    kind: Literal["achievements"] = "achievements"


class LessonsCompletedRequirement(_Threshold):
    kind: Literal["lessons_completed"] = "lessons_completed"


Requirement = Annotated[
    XPRequirement
    | LevelRequirement
    | StreakRequirement
    | FriendsRequirement
    | AchievementsRequirement
    | LessonsCompletedRequirement,
    Field(discriminator="kind"),
]


def is_satisfied(requirement: Requirement, player: Player, lessons_completed: int = 0) -> bool:
    """Evaluate ``requirement`` against a freshly read player.

    ``lessons_completed`` is only consulted for the lessons kind; callers
    count it from the store when that kind is present.
    """
    match requirement:
        case XPRequirement(value=value):
            return player.xp >= value
        case LevelRequirement(value=value):
            return player.level >= value
        case StreakRequirement(value=value):
            return player.streak >= value
        case FriendsRequirement(value=value):
            return len(player.friends) >= value
        case AchievementsRequirement(value=value):
            return len(player.achievements) >= value
        case LessonsCompletedRequirement(value=value):
            return lessons_completed >= value
    msg = f"Unknown requirement: {requirement!r}"
    raise TypeError(msg)
