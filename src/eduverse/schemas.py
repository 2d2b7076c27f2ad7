"""Pydantic result models returned by engine operations."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel


# --- Transitions ---


class TransitionResult(BaseModel):
    success: bool = True
    actual_xp_awarded: int | None = None
    new_level: int | None = None
    leveled_up: bool = False
    unlocked: list[str] = []


class XPAward(BaseModel):
    base_amount: int
    actual_amount: int
    multiplier: float
    old_level: int
    new_level: int
    total_xp: int

    @property
    def leveled_up(self) -> bool:
        return self.new_level > self.old_level


# --- Progression ---


class LevelProgress(BaseModel):
    level: int
    progress_xp: int
    needed_xp: int
    progress_percent: int


class PlayerStats(BaseModel):
    player_id: str
    username: str
    xp: int
    level: int
    streak: int
    multiplier: float
    progress: LevelProgress
    achievements: int
    badges: int
    friends: int
    team_id: str | None = None


# --- Achievements ---


class UnlockedAchievement(BaseModel):
    id: str
    name: str
    actual_xp_awarded: int


class AchievementStatus(BaseModel):
    id: str
    name: str
    description: str
    icon: str
    category: str
    rarity: str
    xp_reward: int
    unlocked: bool


class CascadeResult(BaseModel):
    success: bool = True
    unlocked: list[UnlockedAchievement] = []
    rounds: int = 0
    new_level: int | None = None


# --- Listings ---


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    pages: int


class ActivityEntry(BaseModel):
    id: str
    player_id: str
    kind: str
    title: str
    description: str
    metadata: dict = {}
    created_at: datetime


class ActivityFeed(BaseModel):
    entries: list[ActivityEntry]
    pagination: Pagination


class QuestStatus(BaseModel):
    id: str
    title: str
    description: str
    type: str
    xp: int
    expires_at: datetime | None = None
    completed: bool


class FriendsView(BaseModel):
    friends: list[str]
    sent_requests: list[str]
    received_requests: list[str]


class LeaderboardEntry(BaseModel):
    rank: int
    player_id: str
    username: str
    xp: int
    level: int


class PlayerSummary(BaseModel):
    id: str
    username: str
    level: int
    xp: int


# --- Courses ---


class LessonSummary(BaseModel):
    id: str
    title: str
    order: int
    xp_reward: int


class CourseDetail(BaseModel):
    id: str
    title: str
    description: str
    category: str
    difficulty: str
    tags: list[str]
    xp_reward: int
    is_published: bool
    enrolled: int
    lessons: list[LessonSummary]
