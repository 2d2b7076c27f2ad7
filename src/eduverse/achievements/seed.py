"""Default achievement catalogue."""

from __future__ import annotations

import logging

from eduverse.errors import NotFound
from eduverse.models import ACHIEVEMENTS, Achievement
from eduverse.store.base import DocumentStore

logger = logging.getLogger(__name__)

ACHIEVEMENT_SEED_DATA: list[dict] = [
    {
        "id": "first_steps",
        "name": "First Steps",
        "description": "Reach level 5",
        "icon": "\U0001f476",
        "xp_reward": 50,
        "category": "learning",
        "requirement": {"kind": "level", "value": 5},
        "rarity": "common",
    },
    {
        "id": "rising_star",
        "name": "Rising Star",
        "description": "Reach level 10",
        "icon": "⭐",
        "xp_reward": 100,
        "category": "learning",
        "requirement": {"kind": "level", "value": 10},
        "rarity": "rare",
    },
    {
        "id": "xp_master",
        "name": "XP Master",
        "description": "Earn 10,000 XP",
        "icon": "\U0001f48e",
        "xp_reward": 200,
        "category": "learning",
        "requirement": {"kind": "xp", "value": 10_000},
        "rarity": "epic",
    },
    {
        "id": "bookworm",
        "name": "Bookworm",
        "description": "Complete 25 lessons",
        "icon": "\U0001f4da",
        "xp_reward": 150,
        "category": "learning",
        "requirement": {"kind": "lessons_completed", "value": 25},
        "rarity": "rare",
    },
    {
        "id": "week_warrior",
        "name": "Week Warrior",
        "description": "Maintain a 7-day streak",
        "icon": "\U0001f525",
        "xp_reward": 150,
        "category": "streak",
        "requirement": {"kind": "streak", "value": 7},
        "rarity": "rare",
    },
    {
        "id": "social_butterfly",
        "name": "Social Butterfly",
        "description": "Add 10 friends",
        "icon": "\U0001f98b",
        "xp_reward": 100,
        "category": "social",
        "requirement": {"kind": "friends", "value": 10},
        "rarity": "rare",
    },
    {
        "id": "collector",
        "name": "Collector",
        "description": "Unlock 5 other achievements",
        "icon": "\U0001f3c6",
        "xp_reward": 250,
        "category": "special",
        "requirement": {"kind": "achievements", "value": 5},
        "rarity": "legendary",
    },
]


async def seed_achievements(store: DocumentStore) -> int:
    """Insert missing catalogue entries. Existing definitions are left as they are.

    Returns the number of definitions inserted.
    """
    inserted = 0
    for data in ACHIEVEMENT_SEED_DATA:
        definition = Achievement.model_validate(data)
        try:
            await store.get(ACHIEVEMENTS, definition.id)
            continue
        except NotFound:
            pass
        try:
            await store.insert(ACHIEVEMENTS, definition.model_dump(mode="json"))
        except ValueError:
            # Inserted by a concurrent seeder between the check and the insert.
            continue
        inserted += 1

    logger.info("Seeded %d achievement definitions", inserted)
    return inserted
