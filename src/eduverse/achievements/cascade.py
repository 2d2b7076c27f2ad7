"""Achievement cascade: unlocks everything a player qualifies for in one call."""

from __future__ import annotations

import structlog

from eduverse.achievements.requirements import LessonsCompletedRequirement, is_satisfied
from eduverse.aggregates import DerivedAggregates
from eduverse.config import get_settings
from eduverse.errors import DuplicateFact, EduverseError
from eduverse.models import ACHIEVEMENTS, LESSONS, PLAYERS, Achievement, Player
from eduverse.progression.xp_service import award_xp, get_player
from eduverse.schemas import AchievementStatus, CascadeResult, UnlockedAchievement
from eduverse.social.activity_service import record_activity
from eduverse.store.base import DocumentStore, Has, NotIn, OrderBy, Query, iter_all
from eduverse.transitions import add_membership

logger = structlog.get_logger()


async def load_achievements(store: DocumentStore, exclude: set[str] | None = None) -> list[Achievement]:
    """All achievement definitions, optionally without the ``exclude`` ids."""
    filters = {"id": NotIn(tuple(sorted(exclude)))} if exclude else {}
    query = Query(ACHIEVEMENTS, filters=filters, order_by=[OrderBy("xp_reward")])
    return [Achievement.model_validate(doc) async for doc in iter_all(store, query)]


async def count_completed_lessons(store: DocumentStore, player_id: str) -> int:
    return await store.count(Query(LESSONS, filters={"completed_by": Has(player_id)}))


class AchievementCascade:
    """Evaluates achievement eligibility in rounds until nothing new unlocks.

    Unlocking one achievement grants XP, which can make another one
    eligible, so a single pass over a start-of-call snapshot is not enough.
    Each candidate is evaluated against a fresh read of the player, and each
    unlock goes through the membership protocol so concurrent cascades for
    the same player never double-award.
    """

    def __init__(
        self,
        store: DocumentStore,
        aggregates: DerivedAggregates,
        max_rounds: int | None = None,
    ) -> None:
        self.store = store
        self.aggregates = aggregates
        self.max_rounds = max_rounds if max_rounds is not None else get_settings().max_cascade_rounds

    async def _eligible(self, achievement: Achievement, player: Player) -> bool:
        lessons = 0
        if isinstance(achievement.requirement, LessonsCompletedRequirement):
            lessons = await count_completed_lessons(self.store, player.id)
        return is_satisfied(achievement.requirement, player, lessons_completed=lessons)

    async def _unlock(self, player_id: str, achievement: Achievement) -> UnlockedAchievement | None:
        """Unlock one achievement. Returns None when another request got there first."""
        try:
            await add_membership(
                self.store, PLAYERS, player_id, "achievements", achievement.id,
                what=f"unlocked {achievement.name}",
            )
        except DuplicateFact:
            return None

        award = await award_xp(self.store, player_id, achievement.xp_reward, source="achievement")
        await record_activity(
            self.store,
            player_id,
            "achievement_unlocked",
            "Achievement Unlocked!",
            f"You unlocked: {achievement.name}",
            {
                "achievement_id": achievement.id,
                "achievement_name": achievement.name,
                "xp": award.actual_amount,
            },
        )
        logger.info(
            "achievement_unlocked",
            player_id=player_id,
            achievement_id=achievement.id,
            xp=award.actual_amount,
        )
        return UnlockedAchievement(id=achievement.id, name=achievement.name, actual_xp_awarded=award.actual_amount)

    async def check(self, player_id: str) -> CascadeResult:
        """Unlock every achievement the player is eligible for, cascading."""
        player = await get_player(self.store, player_id)
        unlocked_ids = set(player.achievements)
        unlocked: list[UnlockedAchievement] = []

        rounds = 0
        while rounds < self.max_rounds:
            rounds += 1
            changed = False
            for achievement in await load_achievements(self.store, exclude=unlocked_ids):
                fresh = await get_player(self.store, player_id)
                if achievement.id in fresh.achievements:
                    unlocked_ids.add(achievement.id)
                    continue
                if not await self._eligible(achievement, fresh):
                    continue
                result = await self._unlock(player_id, achievement)
                unlocked_ids.add(achievement.id)
                if result is not None:
                    unlocked.append(result)
                    changed = True
            if not changed:
                break
        else:
            logger.warning("cascade_round_limit_reached", player_id=player_id, rounds=rounds)

        new_level = None
        if unlocked:
            await self.aggregates.player_progressed(player_id)
            new_level = (await get_player(self.store, player_id)).level

        return CascadeResult(unlocked=unlocked, rounds=rounds, new_level=new_level)


async def check_after_transition(
    store: DocumentStore,
    aggregates: DerivedAggregates,
    player_id: str,
) -> CascadeResult:
    """Run the cascade once a transition is confirmed.

    The transition and its rewards already happened, so a failure here is
    logged and reported as an empty result instead of failing the call.
    """
    try:
        return await AchievementCascade(store, aggregates).check(player_id)
    except EduverseError:
        logger.warning("achievement_cascade_failed", player_id=player_id, exc_info=True)
        return CascadeResult(success=False)


async def list_achievements(store: DocumentStore, player_id: str) -> list[AchievementStatus]:
    """Every achievement definition with the player's unlock status."""
    player = await get_player(store, player_id)
    return [
        AchievementStatus(
            id=achievement.id,
            name=achievement.name,
            description=achievement.description,
            icon=achievement.icon,
            category=achievement.category,
            rarity=achievement.rarity,
            xp_reward=achievement.xp_reward,
            unlocked=achievement.id in player.achievements,
        )
        for achievement in await load_achievements(store)
    ]
