"""Typed views over store snapshots.

Snapshots are plain JSON objects; these pydantic models parse them so the
rest of the engine works with real ``set[str]`` membership instead of
ad hoc list scans. Models are read-only views: mutations always go back
through the store primitives.
"""

from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from eduverse.achievements.requirements import Requirement

PLAYERS = "players"
COURSES = "courses"
LESSONS = "lessons"
QUESTS = "quests"
TEAMS = "teams"
ACHIEVEMENTS = "achievements"
ACTIVITIES = "activities"


def as_utc(value: datetime) -> datetime:
    """Naive datetimes are taken to be UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class DocumentModel(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)

    id: str


class FriendRequests(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)

    sent: set[str] = Field(default_factory=set)
    received: set[str] = Field(default_factory=set)


class Player(DocumentModel):
    username: str
    email: str | None = None
    xp: Annotated[int, Field(ge=0)] = 0
    level: Annotated[int, Field(ge=1)] = 1
    streak: Annotated[int, Field(ge=0)] = 0
    last_active_date: date | None = None
    team_id: str | None = None
    achievements: set[str] = Field(default_factory=set)
    badges: set[str] = Field(default_factory=set)
    friends: set[str] = Field(default_factory=set)
    friend_requests: FriendRequests = Field(default_factory=FriendRequests)


class Course(DocumentModel):
    title: str
    description: str = ""
    category: str = "general"
    difficulty: Literal["beginner", "intermediate", "advanced"] = "beginner"
    tags: list[str] = Field(default_factory=list)
    is_published: bool = False
    xp_reward: int = 100
    enrolled_students: set[str] = Field(default_factory=set)


class Lesson(DocumentModel):
    course_id: str
    title: str
    order: int = 0
    xp_reward: int = 10
    completed_by: set[str] = Field(default_factory=set)


class QuestRewards(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)

    xp: int = 0
    badges: set[str] = Field(default_factory=set)


class Quest(DocumentModel):
    title: str
    description: str = ""
    type: Literal["daily", "weekly", "special"] = "daily"
    rewards: QuestRewards = Field(default_factory=QuestRewards)
    is_active: bool = True
    expires_at: datetime | None = None
    completed_by: set[str] = Field(default_factory=set)

    @field_validator("expires_at")
    @classmethod
    def _expires_at_utc(cls, value: datetime | None) -> datetime | None:
        return as_utc(value) if value is not None else None

    def is_open(self, now: datetime) -> bool:
        return self.is_active and (self.expires_at is None or self.expires_at > as_utc(now))


class Team(DocumentModel):
    name: str
    description: str = ""
    leader: str
    members: set[str] = Field(default_factory=set)
    max_members: int = 20


class Achievement(DocumentModel):
    name: str
    description: str = ""
    icon: str = ""
    category: Literal["learning", "social", "streak", "special"] = "learning"
    rarity: Literal["common", "rare", "epic", "legendary"] = "common"
    xp_reward: int = 50
    requirement: Requirement


ActivityKind = Literal[
    "lesson_completed",
    "course_enrolled",
    "achievement_unlocked",
    "level_up",
    "friend_added",
    "quest_completed",
    "team_joined",
]


class Activity(DocumentModel):
    player_id: str
    kind: ActivityKind
    title: str
    description: str
    metadata: dict = Field(default_factory=dict)
    created_at: datetime
