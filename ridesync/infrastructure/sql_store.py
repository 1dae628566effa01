"""
SQL-backed document store with a Redis change feed.

Documents live in one JSON table (see ``models.DocumentModel``); query
predicates compile to JSON path comparisons so filtering happens in the
database.

Change feed
-----------
Every committed write publishes ``{"collection", "id"}`` on the Redis
channel ``docs:<collection>:<id>``.  One reader task per process
pattern-subscribes to ``docs:*``, re-reads the changed document and fans
it out to local listeners, so pushes reach every API process.  Without a
Redis client the fan-out happens in-process right after the commit.
"""

from __future__ import annotations

import asyncio
import json
import logging
from datetime import datetime, timezone
from typing import Any, Optional, Sequence

import redis.asyncio as aioredis
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ridesync.domain.errors import NotFound

from .models import DocumentModel
from .store import (
    Document,
    DocumentStore,
    ListenerRegistry,
    OnChange,
    OnQueryChange,
    OrderBy,
    QueryWatch,
    Unsubscribe,
    Where,
    deliver,
    prepare_fields,
)

logger = logging.getLogger(__name__)

CHANNEL_PREFIX = "docs"


def _jsonable(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, dict):
        return {k: _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    return value


def _field(name: str, sample: Any):
    """JSON path accessor typed after the value it is compared with."""
    element = DocumentModel.data[name]
    if isinstance(sample, bool):
        return element.as_boolean()
    if isinstance(sample, (int, float)):
        return element.as_float()
    return element.as_string()


def _predicate(name: str, op: str, value: Any):
    value = _jsonable(value)
    if op == "in":
        options = list(value)
        column = _field(name, options[0] if options else "")
        return column.in_(options)
    column = _field(name, value)
    if op == "==":
        return column == value
    if op == "!=":
        return column != value
    if op == "<":
        return column < value
    if op == "<=":
        return column <= value
    if op == ">":
        return column > value
    if op == ">=":
        return column >= value
    raise ValueError(f"Unsupported query operator: {op}")


class SqlDocumentStore(DocumentStore):
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        redis: Optional[aioredis.Redis] = None,
    ):
        self._session_factory = session_factory
        self._redis = redis
        self.listeners = ListenerRegistry()
        self._feed_task: Optional[asyncio.Task] = None
        self.reconnect_delay = 5

    # ── CRUD ──────────────────────────────────────────────────────

    async def create(self, collection: str, doc_id: str, fields: Document) -> None:
        data = _jsonable(prepare_fields(fields, datetime.now(timezone.utc)))
        data["id"] = doc_id
        async with self._session_factory() as session, session.begin():
            row = await session.get(DocumentModel, (collection, doc_id))
            if row is None:
                session.add(DocumentModel(collection=collection, id=doc_id, data=data))
            else:
                row.data = data
        await self._publish(collection, doc_id)

    async def get(self, collection: str, doc_id: str) -> Optional[Document]:
        async with self._session_factory() as session:
            row = await session.get(DocumentModel, (collection, doc_id))
            return dict(row.data) if row is not None else None

    async def query(
        self,
        collection: str,
        where: Sequence[Where] = (),
        order_by: Optional[OrderBy] = None,
        limit: Optional[int] = None,
    ) -> list[Document]:
        stmt = select(DocumentModel).where(DocumentModel.collection == collection)
        for name, op, value in where:
            stmt = stmt.where(_predicate(name, op, value))
        if order_by is not None:
            name, direction = order_by
            column = DocumentModel.data[name].as_string()
            stmt = stmt.order_by(column.desc() if direction == "desc" else column.asc())
        if limit is not None:
            stmt = stmt.limit(limit)
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return [dict(row.data) for row in result.scalars().all()]

    async def update(self, collection: str, doc_id: str, fields: Document) -> None:
        changes = _jsonable(prepare_fields(fields, datetime.now(timezone.utc)))
        async with self._session_factory() as session, session.begin():
            row = await session.get(DocumentModel, (collection, doc_id))
            if row is None:
                raise NotFound(f"{collection}/{doc_id} does not exist")
            # reassign so the JSON column is flagged dirty
            row.data = {**row.data, **changes}
        await self._publish(collection, doc_id)

    # ── Subscriptions ─────────────────────────────────────────────

    def subscribe(self, collection: str, doc_id: str, on_change: OnChange) -> Unsubscribe:
        unsubscribe = self.listeners.add_document(collection, doc_id, on_change)
        self._ensure_feed()
        asyncio.get_running_loop().create_task(
            self._initial_document(collection, doc_id, on_change)
        )
        return unsubscribe

    def subscribe_query(
        self,
        collection: str,
        where: Sequence[Where],
        on_change: OnQueryChange,
        order_by: Optional[OrderBy] = None,
        limit: Optional[int] = None,
    ) -> Unsubscribe:
        watch = QueryWatch(collection, tuple(where), order_by, limit, on_change)
        unsubscribe = self.listeners.add_query(watch)
        self._ensure_feed()
        asyncio.get_running_loop().create_task(self._deliver_query(watch))
        return unsubscribe

    async def close(self) -> None:
        if self._feed_task:
            self._feed_task.cancel()
            try:
                await self._feed_task
            except asyncio.CancelledError:
                pass
            self._feed_task = None

    # ── Change feed ───────────────────────────────────────────────

    async def _publish(self, collection: str, doc_id: str) -> None:
        if self._redis is None:
            await self.dispatch(collection, doc_id)
            return
        payload = json.dumps({"collection": collection, "id": doc_id})
        await self._redis.publish(f"{CHANNEL_PREFIX}:{collection}:{doc_id}", payload)

    def _ensure_feed(self) -> None:
        if self._redis is None or self._feed_task is not None:
            return
        self._feed_task = asyncio.get_running_loop().create_task(self._listen())

    async def _listen(self) -> None:
        assert self._redis is not None
        while True:
            try:
                pubsub = self._redis.pubsub()
                await pubsub.psubscribe(f"{CHANNEL_PREFIX}:*")
                async for message in pubsub.listen():
                    if message["type"] != "pmessage":
                        continue
                    try:
                        change = json.loads(message["data"])
                        await self.dispatch(change["collection"], change["id"])
                    except (json.JSONDecodeError, KeyError, TypeError):
                        logger.warning("Malformed change-feed message: %r", message["data"])
            except aioredis.ConnectionError:
                logger.error(
                    "Redis disconnected, reconnecting in %ss...", self.reconnect_delay
                )
                await asyncio.sleep(self.reconnect_delay)
            except asyncio.CancelledError:
                break

    async def dispatch(self, collection: str, doc_id: str) -> None:
        """Push the current state of one document to its listeners."""
        listeners = self.listeners.document_listeners(collection, doc_id)
        if listeners:
            doc = await self.get(collection, doc_id)
            for listener in listeners:
                if self.listeners.has_document(collection, doc_id, listener):
                    deliver(listener, doc)
        for watch in self.listeners.query_watches(collection):
            await self._deliver_query(watch)

    async def _initial_document(
        self, collection: str, doc_id: str, on_change: OnChange
    ) -> None:
        try:
            doc = await self.get(collection, doc_id)
        except Exception:
            logger.exception("Initial snapshot of %s/%s failed", collection, doc_id)
            return
        if self.listeners.has_document(collection, doc_id, on_change):
            deliver(on_change, doc)

    async def _deliver_query(self, watch: QueryWatch) -> None:
        try:
            docs = await self.query(
                watch.collection, watch.where, watch.order_by, watch.limit
            )
        except Exception:
            logger.exception("Query snapshot of %s failed", watch.collection)
            return
        if self.listeners.has_query(watch):
            deliver(watch.listener, docs)
