"""Quest listing and completion."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

import structlog

from eduverse.achievements.cascade import check_after_transition
from eduverse.aggregates import DerivedAggregates
from eduverse.errors import NotFound
from eduverse.models import PLAYERS, QUESTS, Quest
from eduverse.progression.xp_service import award_xp, get_player
from eduverse.schemas import QuestStatus, TransitionResult
from eduverse.social.activity_service import record_activity
from eduverse.store.base import DocumentStore, Eq, OrderBy, Query, iter_all
from eduverse.transitions import add_membership

logger = structlog.get_logger()


async def create_quest(
    store: DocumentStore,
    title: str,
    description: str = "",
    quest_type: str = "daily",
    xp: int = 0,
    badges: set[str] | None = None,
    expires_at: datetime | None = None,
) -> Quest:
    quest = Quest(
        id=uuid.uuid4().hex,
        title=title,
        description=description,
        type=quest_type,
        rewards={"xp": xp, "badges": badges or set()},
        expires_at=expires_at,
    )
    return Quest.model_validate(await store.insert(QUESTS, quest.model_dump(mode="json")))


async def list_active_quests(
    store: DocumentStore,
    player_id: str,
    now: datetime | None = None,
) -> list[QuestStatus]:
    """Active, unexpired quests with the player's completion flag."""
    if now is None:
        now = datetime.now(timezone.utc)
    await get_player(store, player_id)

    query = Query(QUESTS, filters={"is_active": Eq(True)}, order_by=[OrderBy("type"), OrderBy("title")])
    statuses = []
    async for doc in iter_all(store, query):
        quest = Quest.model_validate(doc)
        if not quest.is_open(now):
            continue
        statuses.append(
            QuestStatus(
                id=quest.id,
                title=quest.title,
                description=quest.description,
                type=quest.type,
                xp=quest.rewards.xp,
                expires_at=quest.expires_at,
                completed=player_id in quest.completed_by,
            )
        )
    return statuses


async def complete_quest(
    store: DocumentStore,
    aggregates: DerivedAggregates,
    player_id: str,
    quest_id: str,
    now: datetime | None = None,
) -> TransitionResult:
    """Complete a quest once and grant its XP and badge rewards.

    Inactive or expired quests are reported as ``NotFound``.
    """
    if now is None:
        now = datetime.now(timezone.utc)
    await get_player(store, player_id)
    quest = Quest.model_validate(await store.get(QUESTS, quest_id))
    if not quest.is_open(now):
        raise NotFound(QUESTS, quest_id, "Quest not found or inactive")

    await add_membership(store, QUESTS, quest_id, "completed_by", player_id, what="completed this quest")

    award = await award_xp(store, player_id, quest.rewards.xp, source="quest")
    granted_badges = []
    for badge_id in sorted(quest.rewards.badges):
        update = await store.add_to_set(PLAYERS, player_id, "badges", badge_id)
        if update.changed:
            granted_badges.append(badge_id)

    await record_activity(
        store,
        player_id,
        "quest_completed",
        "Quest Completed!",
        f"You completed: {quest.title}",
        {
            "quest_id": quest.id,
            "quest_title": quest.title,
            "xp": award.actual_amount,
            "badges": granted_badges,
        },
    )
    await aggregates.player_progressed(player_id)
    logger.info("quest_completed", player_id=player_id, quest_id=quest_id, xp=award.actual_amount)

    cascade = await check_after_transition(store, aggregates, player_id)
    new_level = cascade.new_level or award.new_level
    return TransitionResult(
        actual_xp_awarded=award.actual_amount,
        new_level=new_level,
        leveled_up=new_level > award.old_level,
        unlocked=[u.id for u in cascade.unlocked],
    )
