"""Membership transitions: adding a fact to a set field exactly once.

Every "add fact" operation (enroll, complete lesson or quest, befriend, join
team, unlock achievement) goes through ``add_membership``. The caller only
runs reward side effects after it returns; a ``DuplicateFact`` means some
request, this one or a concurrent one, already holds the fact and nothing
may be rewarded.

Steps:

1. Fast-path read. A fact already present is rejected without touching the
   store's write path (the common retry case).
2. Freshness re-check right before the write. This only narrows the window;
   it is not what makes the operation safe.
3. Atomic conditional add in the store.
4. Effect determination. The store reports the set size it saw right before
   the add. Only a strictly larger size afterwards means this call added the
   value. Presence in the returned snapshot proves nothing, because a
   concurrent request may have been the one that added it.
"""

from __future__ import annotations

import structlog

from eduverse.errors import CapacityExceeded, DuplicateFact
from eduverse.store.base import DocumentStore, SetUpdate, Snapshot, get_path

logger = structlog.get_logger()


def _members(snapshot: Snapshot, path: str) -> list[str]:
    return list(get_path(snapshot, path) or [])


async def add_membership(
    store: DocumentStore,
    collection: str,
    entity_id: str,
    path: str,
    value: str,
    *,
    what: str,
    max_size: int | None = None,
) -> SetUpdate:
    """Add ``value`` to ``collection/entity_id.path`` once.

    ``what`` names the fact for error messages ("already {what}").
    ``max_size`` makes it the bounded-capacity variant used for team
    membership. Raises ``NotFound``, ``DuplicateFact`` or
    ``CapacityExceeded``; returns the store's update when this call
    performed the transition.
    """
    snapshot = await store.get(collection, entity_id)
    if value in _members(snapshot, path):
        raise DuplicateFact(f"Already {what}")

    snapshot = await store.get(collection, entity_id)
    members = _members(snapshot, path)
    if value in members:
        raise DuplicateFact(f"Already {what}")
    if max_size is not None and len(members) >= max_size:
        raise CapacityExceeded(f"Full ({max_size} members maximum)")

    update = await store.add_to_set(collection, entity_id, path, value, max_size=max_size)

    if update.after_size <= update.before_size:
        if value not in _members(update.snapshot, path):
            # The store refused the add because the bound was reached first.
            raise CapacityExceeded(f"Full ({max_size} members maximum)")
        logger.info("duplicate_fact", collection=collection, entity_id=entity_id, path=path, value=value)
        raise DuplicateFact(f"Already {what}")

    if max_size is not None and update.after_size > max_size:
        logger.error(
            "capacity_overflow_detected",
            collection=collection,
            entity_id=entity_id,
            path=path,
            size=update.after_size,
            max_size=max_size,
        )
        raise CapacityExceeded(f"Full ({max_size} members maximum)")

    return update


async def remove_membership(
    store: DocumentStore,
    collection: str,
    entity_id: str,
    path: str,
    value: str,
) -> bool:
    """Remove ``value`` from the set. Returns True if this call removed it."""
    update = await store.remove_from_set(collection, entity_id, path, value)
    return update.after_size < update.before_size
