"""Team business logic.

Rules:
- Members are bounded by the team's ``max_members`` (hard limit, enforced
  by the store's bounded add so concurrent joins cannot overfill a team)
- One team per player
- Team names are unique (case-insensitive)
- The creator is the leader and the first member
"""

from __future__ import annotations

import uuid

import structlog

from eduverse.aggregates import DerivedAggregates
from eduverse.config import get_settings
from eduverse.errors import DuplicateFact, EduverseError, ValidationError
from eduverse.models import PLAYERS, TEAMS, Team
from eduverse.names import TEAM_NAMES, claim_name, release_name
from eduverse.progression.xp_service import get_player
from eduverse.schemas import TransitionResult
from eduverse.social.activity_service import record_activity
from eduverse.store.base import DocumentStore
from eduverse.transitions import add_membership

logger = structlog.get_logger()


async def get_team(store: DocumentStore, team_id: str) -> Team:
    return Team.model_validate(await store.get(TEAMS, team_id))


async def create_team(
    store: DocumentStore,
    aggregates: DerivedAggregates,
    leader_id: str,
    name: str,
    description: str = "",
    max_members: int | None = None,
) -> Team:
    """Create a team. The creator becomes its leader and first member."""
    name = name.strip()
    if not name:
        raise ValidationError("Team name must not be empty")
    if max_members is None:
        max_members = get_settings().default_team_size
    if max_members < 1:
        raise ValidationError("A team needs room for at least one member")

    leader = await get_player(store, leader_id)
    if leader.team_id is not None:
        raise DuplicateFact("You are already a member of a team. Leave it first.")

    team_id = uuid.uuid4().hex
    await claim_name(store, TEAM_NAMES, name, team_id, "A team with this name already exists")
    if not await store.compare_and_set(PLAYERS, leader_id, "team_id", None, team_id):
        await release_name(store, TEAM_NAMES, name)
        raise DuplicateFact("You are already a member of a team. Leave it first.")

    team = Team(
        id=team_id,
        name=name,
        description=description,
        leader=leader_id,
        members={leader_id},
        max_members=max_members,
    )
    try:
        created = Team.model_validate(await store.insert(TEAMS, team.model_dump(mode="json")))
    except Exception:
        await store.compare_and_set(PLAYERS, leader_id, "team_id", team_id, None)
        await release_name(store, TEAM_NAMES, name)
        raise

    await aggregates.team_changed(created.id, leader_id)
    logger.info("team_created", team_id=created.id, name=name, leader_id=leader_id)
    return created


async def join_team(
    store: DocumentStore,
    aggregates: DerivedAggregates,
    player_id: str,
    team_id: str,
) -> TransitionResult:
    """Join a team. Raises ``CapacityExceeded`` when it is full."""
    player = await get_player(store, player_id)
    team = await get_team(store, team_id)
    if player.team_id == team_id:
        raise DuplicateFact("Already a member of this team")
    if player.team_id is not None:
        raise DuplicateFact("You are already a member of a team. Leave it first.")

    # Claim the player first so concurrent joins to different teams cannot both win.
    if not await store.compare_and_set(PLAYERS, player_id, "team_id", None, team_id):
        raise DuplicateFact("You are already a member of a team. Leave it first.")
    try:
        await add_membership(
            store, TEAMS, team_id, "members", player_id,
            what="a member of this team",
            max_size=team.max_members,
        )
    except EduverseError:
        await store.compare_and_set(PLAYERS, player_id, "team_id", team_id, None)
        raise

    await record_activity(
        store,
        player_id,
        "team_joined",
        "Joined a Team",
        f"You joined {team.name}",
        {"team_id": team.id, "team_name": team.name},
    )
    await aggregates.team_changed(team_id, player_id)
    logger.info("team_joined", player_id=player_id, team_id=team_id)
    return TransitionResult()
