"""Player registration and lookup."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

import structlog

from eduverse.config import get_settings
from eduverse.errors import ValidationError
from eduverse.models import PLAYERS, Player
from eduverse.names import USERNAMES, claim_name, release_name
from eduverse.schemas import PlayerSummary
from eduverse.store.base import Contains, DocumentStore, NotIn, OrderBy, Page, Query

logger = structlog.get_logger()


async def create_player(store: DocumentStore, username: str, email: str | None = None) -> Player:
    """Register a player with every set field present and empty."""
    username = username.strip()
    if not username:
        raise ValidationError("Username must not be empty")

    player = Player(id=uuid.uuid4().hex, username=username, email=email)
    await claim_name(store, USERNAMES, username, player.id, "Username is already taken")

    document = player.model_dump(mode="json") | {"created_at": datetime.now(timezone.utc).isoformat()}
    try:
        created = Player.model_validate(await store.insert(PLAYERS, document))
    except Exception:
        await release_name(store, USERNAMES, username)
        raise
    logger.info("player_created", player_id=created.id, username=username)
    return created


async def search_players(
    store: DocumentStore,
    current_id: str,
    q: str,
    limit: int | None = None,
) -> list[PlayerSummary]:
    """Players whose username contains ``q``, excluding the caller."""
    q = q.strip()
    min_length = get_settings().min_search_length
    if len(q) < min_length:
        raise ValidationError(f"Search term must be at least {min_length} characters")

    query = Query(
        PLAYERS,
        filters={"username": Contains(q), "id": NotIn((current_id,))},
        order_by=[OrderBy("username")],
    )
    docs = await store.query(query, Page.clamp(limit))
    return [PlayerSummary.model_validate(doc) for doc in docs]
