"""Case-insensitive unique names.

A name is claimed by inserting a document keyed by its lowercased form, so
the store's duplicate-id check decides between concurrent claimants.
"""

from __future__ import annotations

from eduverse.errors import DuplicateFact
from eduverse.store.base import DocumentStore

USERNAMES = "usernames"
TEAM_NAMES = "team_names"


def name_key(name: str) -> str:
    return name.strip().lower()


async def claim_name(store: DocumentStore, collection: str, name: str, owner_id: str, message: str) -> None:
    """Claim ``name`` for ``owner_id`` or raise ``DuplicateFact(message)``."""
    try:
        await store.insert(collection, {"id": name_key(name), "name": name, "owner_id": owner_id})
    except ValueError as exc:
        raise DuplicateFact(message) from exc


async def release_name(store: DocumentStore, collection: str, name: str) -> None:
    await store.delete(collection, name_key(name))
