"""Document store contract shared by every adapter.

Documents are JSON objects addressed by ``(collection, id)``. Nested fields
are addressed with dotted paths (``friend_requests.sent``). Set-typed fields
are JSON arrays of string ids and may only be changed through
``add_to_set`` / ``remove_from_set``, which each adapter implements as one
indivisible operation.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol

from eduverse.config import get_settings

Snapshot = dict[str, Any]


# ---------------------------------------------------------------------------
# Mutation results
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SetUpdate:
    """Outcome of a conditional set mutation.

    ``before_size`` is the cardinality the store saw immediately before the
    mutation, captured inside the same atomic operation as ``snapshot``.
    """

    snapshot: Snapshot
    path: str
    before_size: int

    @property
    def after_size(self) -> int:
        return len(get_path(self.snapshot, self.path) or [])

    @property
    def changed(self) -> bool:
        return self.after_size != self.before_size


@dataclass(frozen=True)
class FieldUpdate:
    """Outcome of an atomic numeric increment."""

    snapshot: Snapshot
    previous: Any
    current: Any


# ---------------------------------------------------------------------------
# Query conditions
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Contains:
    """Case-insensitive substring match on a string field."""

    text: str


@dataclass(frozen=True)
class Eq:
    value: Any


@dataclass(frozen=True)
class Gt:
    value: Any


@dataclass(frozen=True)
class Gte:
    value: Any


@dataclass(frozen=True)
class Lt:
    value: Any


@dataclass(frozen=True)
class Lte:
    value: Any


@dataclass(frozen=True)
class In:
    """Scalar field value is one of ``values``."""

    values: tuple[Any, ...]


@dataclass(frozen=True)
class NotIn:
    values: tuple[Any, ...]


@dataclass(frozen=True)
class Has:
    """Set field contains ``value``."""

    value: str


Condition = Contains | Eq | Gt | Gte | Lt | Lte | In | NotIn | Has


@dataclass(frozen=True)
class Page:
    """Normalised pagination window. Never trust caller supplied bounds."""

    limit: int
    offset: int = 0

    @classmethod
    def clamp(cls, limit: int | None, offset: int | None = 0) -> Page:
        settings = get_settings()
        if limit is None or limit <= 0:
            limit = settings.default_query_limit
        limit = min(limit, settings.max_query_limit)
        offset = max(offset or 0, 0)
        return cls(limit=limit, offset=offset)

    @classmethod
    def for_page(cls, page: int | None, per_page: int | None) -> Page:
        """Clamp 1-based ``page``/``per_page`` style arguments."""
        window = cls.clamp(per_page)
        page = max(page or 1, 1)
        return cls(limit=window.limit, offset=(page - 1) * window.limit)


@dataclass(frozen=True)
class OrderBy:
    path: str
    descending: bool = False


@dataclass
class Query:
    collection: str
    filters: dict[str, Condition] = field(default_factory=dict)
    order_by: list[OrderBy] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Store protocol
# ---------------------------------------------------------------------------


class DocumentStore(Protocol):
    """Atomic primitives the engine relies on. Every call is awaited I/O."""

    async def get(self, collection: str, entity_id: str) -> Snapshot:
        """Return the current snapshot or raise ``NotFound``."""
        ...

    async def insert(self, collection: str, document: Snapshot) -> Snapshot:
        """Create a document. ``document["id"]`` must be set and unused."""
        ...

    async def add_to_set(
        self,
        collection: str,
        entity_id: str,
        path: str,
        value: str,
        max_size: int | None = None,
    ) -> SetUpdate:
        """Add ``value`` if absent (and, with ``max_size``, only while the set is below it)."""
        ...

    async def remove_from_set(self, collection: str, entity_id: str, path: str, value: str) -> SetUpdate:
        ...

    async def increment(self, collection: str, entity_id: str, path: str, delta: int) -> FieldUpdate:
        ...

    async def raise_to(self, collection: str, entity_id: str, path: str, value: int) -> Snapshot:
        """Atomically set ``path`` to ``max(current, value)``."""
        ...

    async def compare_and_set(
        self, collection: str, entity_id: str, path: str, expected: Any, value: Any
    ) -> bool:
        ...

    async def set_field(self, collection: str, entity_id: str, path: str, value: Any) -> Snapshot:
        ...

    async def query(self, query: Query, page: Page) -> list[Snapshot]:
        ...

    async def count(self, query: Query) -> int:
        ...

    async def delete(self, collection: str, entity_id: str) -> bool:
        """Remove a document. Returns False when it did not exist."""
        ...


# ---------------------------------------------------------------------------
# Path helpers
# ---------------------------------------------------------------------------


def split_path(path: str) -> list[str]:
    return path.split(".")


def get_path(document: Snapshot, path: str) -> Any:
    """Read a dotted path; missing keys read as ``None``."""
    node: Any = document
    for key in split_path(path):
        if not isinstance(node, dict):
            return None
        node = node.get(key)
    return node


def set_path(document: Snapshot, path: str, value: Any) -> None:
    keys = split_path(path)
    node = document
    for key in keys[:-1]:
        node = node.setdefault(key, {})
    node[keys[-1]] = value


async def iter_all(store: DocumentStore, query: Query, batch_size: int | None = None):
    """Yield every match by walking clamped pages until a short page."""
    page = Page.clamp(batch_size)
    offset = 0
    while True:
        batch = await store.query(query, Page(limit=page.limit, offset=offset))
        for doc in batch:
            yield doc
        if len(batch) < page.limit:
            return
        offset += page.limit
