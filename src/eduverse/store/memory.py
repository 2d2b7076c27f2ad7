"""In-process document store.

Runs on a single event loop. Every primitive yields to the loop once and then
applies its change without another ``await``, so each primitive is atomic
with respect to other tasks while concurrent callers still interleave
between primitives the way they would against a networked store.
"""

from __future__ import annotations

import asyncio
import copy
from typing import Any

from eduverse.errors import NotFound
from eduverse.store.base import (
    Condition,
    Contains,
    Eq,
    FieldUpdate,
    Gt,
    Gte,
    Has,
    In,
    Lt,
    Lte,
    NotIn,
    Page,
    Query,
    SetUpdate,
    Snapshot,
    get_path,
    set_path,
)


def _matches(document: Snapshot, path: str, condition: Condition) -> bool:
    value = get_path(document, path)
    match condition:
        case Contains(text=text):
            return isinstance(value, str) and text.lower() in value.lower()
        case Eq(value=expected):
            return value == expected
        case In(values=values):
            return value in values
        case NotIn(values=values):
            return value not in values
        case Has(value=member):
            return isinstance(value, list) and member in value
    if value is None:
        return False
    match condition:
        case Gt(value=bound):
            return value > bound
        case Gte(value=bound):
            return value >= bound
        case Lt(value=bound):
            return value < bound
        case Lte(value=bound):
            return value <= bound
    msg = f"Unsupported condition: {condition!r}"
    raise TypeError(msg)


def _export(document: Snapshot) -> Snapshot:
    exported = copy.deepcopy(document)
    exported.pop("_seq", None)
    return exported


class MemoryDocumentStore:
    """Dict-backed ``DocumentStore`` used by tests and local tooling."""

    def __init__(self) -> None:
        self._collections: dict[str, dict[str, Snapshot]] = {}
        self._sequence = 0

    def _document(self, collection: str, entity_id: str) -> Snapshot:
        document = self._collections.get(collection, {}).get(entity_id)
        if document is None:
            raise NotFound(collection, entity_id)
        return document

    async def get(self, collection: str, entity_id: str) -> Snapshot:
        await asyncio.sleep(0)
        return _export(self._document(collection, entity_id))

    async def insert(self, collection: str, document: Snapshot) -> Snapshot:
        await asyncio.sleep(0)
        docs = self._collections.setdefault(collection, {})
        entity_id = document["id"]
        if entity_id in docs:
            msg = f"{collection} {entity_id} already exists"
            raise ValueError(msg)
        self._sequence += 1
        stored = copy.deepcopy(document)
        stored["_seq"] = self._sequence
        docs[entity_id] = stored
        return _export(stored)

    async def add_to_set(
        self,
        collection: str,
        entity_id: str,
        path: str,
        value: str,
        max_size: int | None = None,
    ) -> SetUpdate:
        await asyncio.sleep(0)
        document = self._document(collection, entity_id)
        members = list(get_path(document, path) or [])
        before = len(members)
        if value not in members and (max_size is None or before < max_size):
            members.append(value)
            set_path(document, path, members)
        return SetUpdate(snapshot=_export(document), path=path, before_size=before)

    async def remove_from_set(self, collection: str, entity_id: str, path: str, value: str) -> SetUpdate:
        await asyncio.sleep(0)
        document = self._document(collection, entity_id)
        members = list(get_path(document, path) or [])
        before = len(members)
        if value in members:
            members.remove(value)
            set_path(document, path, members)
        return SetUpdate(snapshot=_export(document), path=path, before_size=before)

    async def increment(self, collection: str, entity_id: str, path: str, delta: int) -> FieldUpdate:
        await asyncio.sleep(0)
        document = self._document(collection, entity_id)
        previous = get_path(document, path) or 0
        set_path(document, path, previous + delta)
        return FieldUpdate(snapshot=_export(document), previous=previous, current=previous + delta)

    async def raise_to(self, collection: str, entity_id: str, path: str, value: int) -> Snapshot:
        await asyncio.sleep(0)
        document = self._document(collection, entity_id)
        current = get_path(document, path)
        if current is None or current < value:
            set_path(document, path, value)
        return _export(document)

    async def compare_and_set(
        self, collection: str, entity_id: str, path: str, expected: Any, value: Any
    ) -> bool:
        await asyncio.sleep(0)
        document = self._document(collection, entity_id)
        if get_path(document, path) != expected:
            return False
        set_path(document, path, value)
        return True

    async def set_field(self, collection: str, entity_id: str, path: str, value: Any) -> Snapshot:
        await asyncio.sleep(0)
        document = self._document(collection, entity_id)
        set_path(document, path, copy.deepcopy(value))
        return _export(document)

    def _select(self, query: Query) -> list[Snapshot]:
        docs = [
            doc
            for doc in self._collections.get(query.collection, {}).values()
            if all(_matches(doc, path, cond) for path, cond in query.filters.items())
        ]
        docs.sort(key=lambda d: d["_seq"])
        # Stable sorts applied last-key-first give a lexicographic order.
        for order in reversed(query.order_by):
            present = [d for d in docs if get_path(d, order.path) is not None]
            missing = [d for d in docs if get_path(d, order.path) is None]
            present.sort(key=lambda d: get_path(d, order.path), reverse=order.descending)
            docs = present + missing
        return docs

    async def query(self, query: Query, page: Page) -> list[Snapshot]:
        await asyncio.sleep(0)
        page = Page.clamp(page.limit, page.offset)
        selected = self._select(query)[page.offset : page.offset + page.limit]
        return [_export(doc) for doc in selected]

    async def count(self, query: Query) -> int:
        await asyncio.sleep(0)
        return len(self._select(query))

    async def delete(self, collection: str, entity_id: str) -> bool:
        await asyncio.sleep(0)
        return self._collections.get(collection, {}).pop(entity_id, None) is not None
