"""PostgreSQL JSONB document store.

Each mutation primitive is a single UPDATE statement whose WHERE clause
carries the condition, so Postgres row locking makes it indivisible with
respect to concurrent callers. Cardinalities are derived from the row the
statement itself returned: a conditional append that matched added exactly
one element, so the pre-image size is ``len(after) - 1``.
"""

from __future__ import annotations

import json
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

import structlog
from sqlalchemy import ColumnElement, delete, func, not_, or_, select, text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from eduverse.db.models import Document
from eduverse.errors import NotFound, StoreUnavailable
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
    split_path,
)

logger = structlog.get_logger()

_ADD_TO_SET = text("""
    UPDATE documents
    SET body = jsonb_set(
            body,
            CAST(:path AS text[]),
            COALESCE(body #> CAST(:path AS text[]), '[]'::jsonb) || jsonb_build_array(CAST(:value AS text)),
            true
        ),
        updated_at = NOW()
    WHERE collection = :collection
      AND id = :id
      AND NOT (COALESCE(body #> CAST(:path AS text[]), '[]'::jsonb) @> jsonb_build_array(CAST(:value AS text)))
      AND (
        CAST(:max_size AS integer) IS NULL
        OR jsonb_array_length(COALESCE(body #> CAST(:path AS text[]), '[]'::jsonb)) < CAST(:max_size AS integer)
      )
    RETURNING body
""").columns(body=JSONB)

_REMOVE_FROM_SET = text("""
    UPDATE documents
    SET body = jsonb_set(body, CAST(:path AS text[]), (body #> CAST(:path AS text[])) - CAST(:value AS text), true),
        updated_at = NOW()
    WHERE collection = :collection
      AND id = :id
      AND COALESCE(body #> CAST(:path AS text[]), '[]'::jsonb) @> jsonb_build_array(CAST(:value AS text))
    RETURNING body
""").columns(body=JSONB)

_INCREMENT = text("""
    UPDATE documents
    SET body = jsonb_set(
            body,
            CAST(:path AS text[]),
            to_jsonb(COALESCE(CAST(body #>> CAST(:path AS text[]) AS bigint), 0) + :delta),
            true
        ),
        updated_at = NOW()
    WHERE collection = :collection AND id = :id
    RETURNING body
""").columns(body=JSONB)

_RAISE_TO = text("""
    UPDATE documents
    SET body = jsonb_set(
            body,
            CAST(:path AS text[]),
            to_jsonb(GREATEST(COALESCE(CAST(body #>> CAST(:path AS text[]) AS bigint), :value), :value)),
            true
        ),
        updated_at = NOW()
    WHERE collection = :collection AND id = :id
    RETURNING body
""").columns(body=JSONB)

_SET_FIELD = text("""
    UPDATE documents
    SET body = jsonb_set(body, CAST(:path AS text[]), CAST(:value AS jsonb), true),
        updated_at = NOW()
    WHERE collection = :collection AND id = :id
    RETURNING body
""").columns(body=JSONB)

_COMPARE_AND_SET = """
    UPDATE documents
    SET body = jsonb_set(body, CAST(:path AS text[]), CAST(:value AS jsonb), true),
        updated_at = NOW()
    WHERE collection = :collection AND id = :id AND {guard}
    RETURNING id
"""
_GUARD_EQUALS = "body #> CAST(:path AS text[]) = CAST(:expected AS jsonb)"
_GUARD_MISSING = "(body #> CAST(:path AS text[]) IS NULL OR body #> CAST(:path AS text[]) = 'null'::jsonb)"


def _field(path: str) -> Any:
    if path == "id":
        return Document.id
    parts = split_path(path)
    return Document.body[parts[0]] if len(parts) == 1 else Document.body[tuple(parts)]


def _typed(path: str, sample: Any) -> Any:
    """Pick the JSONB accessor whose SQL type matches ``sample``."""
    column = _field(path)
    if path == "id":
        return column
    if isinstance(sample, bool):
        return column.as_boolean()
    if isinstance(sample, int | float):
        return column.as_float()
    return column.as_string()


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _clause(path: str, condition: Condition) -> ColumnElement[bool]:
    match condition:
        case Contains(text=needle):
            return _typed(path, "").ilike(f"%{_escape_like(needle)}%", escape="\\")
        case Eq(value=None):
            return _typed(path, "").is_(None)
        case Eq(value=value):
            return _typed(path, value) == value
        case Gt(value=value):
            return _typed(path, value) > value
        case Gte(value=value):
            return _typed(path, value) >= value
        case Lt(value=value):
            return _typed(path, value) < value
        case Lte(value=value):
            return _typed(path, value) <= value
        case In(values=values):
            return _typed(path, "").in_([str(v) for v in values])
        case NotIn(values=values):
            column = _typed(path, "")
            return or_(column.is_(None), not_(column.in_([str(v) for v in values])))
        case Has(value=value):
            return _field(path).contains([value])
    msg = f"Unsupported condition: {condition!r}"
    raise TypeError(msg)


class PostgresDocumentStore:
    """``DocumentStore`` over the ``documents`` table."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    @asynccontextmanager
    async def _transaction(self) -> AsyncIterator[AsyncSession]:
        try:
            async with self._session_factory() as session, session.begin():
                yield session
        except (OperationalError, InterfaceError, OSError) as exc:
            logger.error("store_unavailable", error=str(exc))
            msg = "Document store unavailable"
            raise StoreUnavailable(msg) from exc

    @staticmethod
    async def _current(session: AsyncSession, collection: str, entity_id: str) -> Snapshot:
        result = await session.execute(
            select(Document.body).where(Document.collection == collection, Document.id == entity_id)
        )
        body = result.scalar_one_or_none()
        if body is None:
            raise NotFound(collection, entity_id)
        return body

    async def _update(self, statement: Any, collection: str, entity_id: str, **params: Any) -> Snapshot:
        async with self._transaction() as session:
            result = await session.execute(statement, {"collection": collection, "id": entity_id, **params})
            body = result.scalar_one_or_none()
            if body is None:
                raise NotFound(collection, entity_id)
            return body

    async def get(self, collection: str, entity_id: str) -> Snapshot:
        async with self._transaction() as session:
            return await self._current(session, collection, entity_id)

    async def insert(self, collection: str, document: Snapshot) -> Snapshot:
        entity_id = document["id"]
        stmt = (
            pg_insert(Document)
            .values(collection=collection, id=entity_id, body=document)
            .on_conflict_do_nothing()
            .returning(Document.body)
        )
        async with self._transaction() as session:
            result = await session.execute(stmt)
            body = result.scalar_one_or_none()
        if body is None:
            msg = f"{collection} {entity_id} already exists"
            raise ValueError(msg)
        return body

    async def add_to_set(
        self,
        collection: str,
        entity_id: str,
        path: str,
        value: str,
        max_size: int | None = None,
    ) -> SetUpdate:
        params = {
            "collection": collection,
            "id": entity_id,
            "path": split_path(path),
            "value": value,
            "max_size": max_size,
        }
        async with self._transaction() as session:
            result = await session.execute(_ADD_TO_SET, params)
            body = result.scalar_one_or_none()
            if body is not None:
                return SetUpdate(snapshot=body, path=path, before_size=len(get_path(body, path)) - 1)
            body = await self._current(session, collection, entity_id)
        return SetUpdate(snapshot=body, path=path, before_size=len(get_path(body, path) or []))

    async def remove_from_set(self, collection: str, entity_id: str, path: str, value: str) -> SetUpdate:
        params = {"collection": collection, "id": entity_id, "path": split_path(path), "value": value}
        async with self._transaction() as session:
            result = await session.execute(_REMOVE_FROM_SET, params)
            body = result.scalar_one_or_none()
            if body is not None:
                return SetUpdate(snapshot=body, path=path, before_size=len(get_path(body, path)) + 1)
            body = await self._current(session, collection, entity_id)
        return SetUpdate(snapshot=body, path=path, before_size=len(get_path(body, path) or []))

    async def increment(self, collection: str, entity_id: str, path: str, delta: int) -> FieldUpdate:
        body = await self._update(_INCREMENT, collection, entity_id, path=split_path(path), delta=delta)
        current = get_path(body, path)
        return FieldUpdate(snapshot=body, previous=current - delta, current=current)

    async def raise_to(self, collection: str, entity_id: str, path: str, value: int) -> Snapshot:
        return await self._update(_RAISE_TO, collection, entity_id, path=split_path(path), value=value)

    async def compare_and_set(
        self, collection: str, entity_id: str, path: str, expected: Any, value: Any
    ) -> bool:
        guard = _GUARD_MISSING if expected is None else _GUARD_EQUALS
        params = {
            "collection": collection,
            "id": entity_id,
            "path": split_path(path),
            "value": json.dumps(value),
            "expected": json.dumps(expected),
        }
        if expected is None:
            params.pop("expected")
        async with self._transaction() as session:
            result = await session.execute(text(_COMPARE_AND_SET.format(guard=guard)), params)
            if result.scalar_one_or_none() is not None:
                return True
            await self._current(session, collection, entity_id)
        return False

    async def set_field(self, collection: str, entity_id: str, path: str, value: Any) -> Snapshot:
        return await self._update(
            _SET_FIELD, collection, entity_id, path=split_path(path), value=json.dumps(value)
        )

    @staticmethod
    def _where(query: Query) -> list[ColumnElement[bool]]:
        clauses: list[ColumnElement[bool]] = [Document.collection == query.collection]
        clauses.extend(_clause(path, cond) for path, cond in query.filters.items())
        return clauses

    async def query(self, query: Query, page: Page) -> list[Snapshot]:
        page = Page.clamp(page.limit, page.offset)
        stmt = select(Document.body).where(*self._where(query))
        for order in query.order_by:
            column = _field(order.path)
            stmt = stmt.order_by(column.desc().nulls_last() if order.descending else column.asc().nulls_last())
        stmt = stmt.order_by(Document.created_at.asc(), Document.id.asc()).offset(page.offset).limit(page.limit)
        async with self._transaction() as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def count(self, query: Query) -> int:
        stmt = select(func.count()).select_from(Document).where(*self._where(query))
        async with self._transaction() as session:
            result = await session.execute(stmt)
            return result.scalar_one()

    async def delete(self, collection: str, entity_id: str) -> bool:
        stmt = (
            delete(Document)
            .where(Document.collection == collection, Document.id == entity_id)
            .returning(Document.id)
        )
        async with self._transaction() as session:
            result = await session.execute(stmt)
            return result.scalar_one_or_none() is not None
