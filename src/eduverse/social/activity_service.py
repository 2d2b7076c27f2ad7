"""Player activity recording and the social feed.

Activities are append-only documents. They are only created after a
transition has been confirmed, and never updated afterwards.
"""

from __future__ import annotations

import math
import uuid
from datetime import datetime, timezone
from typing import Any

from eduverse.models import ACTIVITIES, PLAYERS, Activity, ActivityKind, Player
from eduverse.schemas import ActivityEntry, ActivityFeed, Pagination
from eduverse.store.base import DocumentStore, In, OrderBy, Page, Query, iter_all


async def record_activity(
    store: DocumentStore,
    player_id: str,
    kind: ActivityKind,
    title: str,
    description: str,
    metadata: dict[str, Any] | None = None,
) -> Activity:
    """Record an activity for the feed."""
    document = {
        "id": uuid.uuid4().hex,
        "player_id": player_id,
        "kind": kind,
        "title": title,
        "description": description,
        "metadata": metadata or {},
        "created_at": datetime.now(timezone.utc).isoformat(),
    }
    return Activity.model_validate(await store.insert(ACTIVITIES, document))


async def get_activity_feed(
    store: DocumentStore,
    player_id: str,
    page: int = 1,
    per_page: int = 20,
) -> ActivityFeed:
    """Activities of the player and their friends, newest first (paginated)."""
    player = Player.model_validate(await store.get(PLAYERS, player_id))
    authors = (player_id, *sorted(player.friends))

    window = Page.for_page(page, per_page)
    query = Query(
        ACTIVITIES,
        filters={"player_id": In(authors)},
        order_by=[OrderBy("created_at", descending=True)],
    )
    total = await store.count(query)
    docs = await store.query(query, window)

    return ActivityFeed(
        entries=[ActivityEntry.model_validate(doc) for doc in docs],
        pagination=Pagination(
            page=window.offset // window.limit + 1,
            limit=window.limit,
            total=total,
            pages=math.ceil(total / window.limit),
        ),
    )


async def list_player_activities(
    store: DocumentStore,
    player_id: str,
    kind: ActivityKind | None = None,
) -> list[Activity]:
    """All activities one player authored, oldest first."""
    filters: dict = {"player_id": In((player_id,))}
    if kind is not None:
        filters["kind"] = In((kind,))
    query = Query(ACTIVITIES, filters=filters, order_by=[OrderBy("created_at")])
    return [Activity.model_validate(doc) async for doc in iter_all(store, query)]
