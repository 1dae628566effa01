"""
Document store contract.

The ride session only needs a handful of primitives: create / get / query /
update a document and subscribe to one document (or one query) for pushes.
``subscribe`` returns the unsubscribe handle synchronously; the current
snapshot is delivered shortly after, then every committed change.

Writes never persist ``None`` values, and ``SERVER_TIMESTAMP`` is replaced
by the store's clock at write time.
"""

from __future__ import annotations

import asyncio
import copy
import logging
import operator
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Optional, Sequence

from ridesync.domain.errors import NotFound

logger = logging.getLogger(__name__)

Document = dict[str, Any]
Where = tuple[str, str, Any]  # (field, op, value)
OrderBy = tuple[str, str]  # (field, "asc" | "desc")
OnChange = Callable[[Optional[Document]], None]
OnQueryChange = Callable[[list[Document]], None]
Unsubscribe = Callable[[], None]


class _ServerTimestamp:
    def __repr__(self) -> str:
        return "SERVER_TIMESTAMP"


SERVER_TIMESTAMP: Any = _ServerTimestamp()

_OPERATORS: dict[str, Callable[[Any, Any], bool]] = {
    "==": operator.eq,
    "!=": operator.ne,
    "<": operator.lt,
    "<=": operator.le,
    ">": operator.gt,
    ">=": operator.ge,
    "in": lambda value, options: value in options,
}


def prepare_fields(fields: dict[str, Any], now: datetime) -> dict[str, Any]:
    """Drop ``None`` values and resolve ``SERVER_TIMESTAMP`` (recursively)."""
    prepared: dict[str, Any] = {}
    for key, value in fields.items():
        if value is None:
            continue
        if value is SERVER_TIMESTAMP:
            value = now
        elif isinstance(value, dict):
            value = prepare_fields(value, now)
        prepared[key] = value
    return prepared


def matches(doc: Document, where: Sequence[Where]) -> bool:
    for name, op, expected in where:
        if op not in _OPERATORS:
            raise ValueError(f"Unsupported query operator: {op}")
        if name not in doc:
            return False
        try:
            if not _OPERATORS[op](doc[name], expected):
                return False
        except TypeError:
            return False
    return True


def order_and_limit(
    docs: list[Document],
    order_by: Optional[OrderBy] = None,
    limit: Optional[int] = None,
) -> list[Document]:
    if order_by is not None:
        name, direction = order_by
        present = [d for d in docs if name in d]
        missing = [d for d in docs if name not in d]
        present.sort(key=lambda d: d[name], reverse=direction == "desc")
        docs = present + missing
    if limit is not None:
        docs = docs[:limit]
    return docs


# ── Listener bookkeeping shared by the implementations ────────────────


@dataclass(eq=False)
class QueryWatch:
    collection: str
    where: tuple[Where, ...]
    order_by: Optional[OrderBy]
    limit: Optional[int]
    listener: OnQueryChange


class ListenerRegistry:
    """Document and query listeners keyed by collection."""

    def __init__(self) -> None:
        self.documents: dict[tuple[str, str], list[OnChange]] = {}
        self.queries: dict[str, list[QueryWatch]] = {}

    def add_document(self, collection: str, doc_id: str, listener: OnChange) -> Unsubscribe:
        key = (collection, doc_id)
        self.documents.setdefault(key, []).append(listener)

        def unsubscribe() -> None:
            listeners = self.documents.get(key, [])
            if listener in listeners:
                listeners.remove(listener)
            if not listeners:
                self.documents.pop(key, None)

        return unsubscribe

    def add_query(self, watch: QueryWatch) -> Unsubscribe:
        self.queries.setdefault(watch.collection, []).append(watch)

        def unsubscribe() -> None:
            watches = self.queries.get(watch.collection, [])
            if watch in watches:
                watches.remove(watch)
            if not watches:
                self.queries.pop(watch.collection, None)

        return unsubscribe

    def has_document(self, collection: str, doc_id: str, listener: OnChange) -> bool:
        return listener in self.documents.get((collection, doc_id), [])

    def has_query(self, watch: QueryWatch) -> bool:
        return watch in self.queries.get(watch.collection, [])

    def document_listeners(self, collection: str, doc_id: str) -> list[OnChange]:
        return list(self.documents.get((collection, doc_id), []))

    def query_watches(self, collection: str) -> list[QueryWatch]:
        return list(self.queries.get(collection, []))

    def count(self) -> int:
        return sum(len(v) for v in self.documents.values()) + sum(
            len(v) for v in self.queries.values()
        )


def deliver(listener: Callable[[Any], None], payload: Any) -> None:
    """Invoke a listener; a failing listener must not break the others."""
    try:
        listener(payload)
    except Exception:
        logger.exception("Document listener raised")


# ── Contract ──────────────────────────────────────────────────────────


class DocumentStore(ABC):
    @abstractmethod
    async def create(self, collection: str, doc_id: str, fields: Document) -> None: ...

    @abstractmethod
    async def get(self, collection: str, doc_id: str) -> Optional[Document]: ...

    @abstractmethod
    async def query(
        self,
        collection: str,
        where: Sequence[Where] = (),
        order_by: Optional[OrderBy] = None,
        limit: Optional[int] = None,
    ) -> list[Document]: ...

    @abstractmethod
    async def update(self, collection: str, doc_id: str, fields: Document) -> None:
        """Merge *fields* into an existing document; ``NotFound`` if absent."""

    @abstractmethod
    def subscribe(self, collection: str, doc_id: str, on_change: OnChange) -> Unsubscribe: ...

    @abstractmethod
    def subscribe_query(
        self,
        collection: str,
        where: Sequence[Where],
        on_change: OnQueryChange,
        order_by: Optional[OrderBy] = None,
        limit: Optional[int] = None,
    ) -> Unsubscribe: ...

    async def close(self) -> None:
        """Release background resources."""


def _schedule(callback: Callable[[], Any]) -> None:
    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        callback()
        return
    loop.call_soon(callback)


# ── In-memory implementation ──────────────────────────────────────────


class InMemoryDocumentStore(DocumentStore):
    """Process-local store.  Pushes fan out synchronously after each write."""

    def __init__(self, clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc)):
        self._clock = clock
        self._collections: dict[str, dict[str, Document]] = {}
        self.listeners = ListenerRegistry()

    async def create(self, collection: str, doc_id: str, fields: Document) -> None:
        data = prepare_fields(fields, self._clock())
        data["id"] = doc_id
        self._collections.setdefault(collection, {})[doc_id] = data
        self._notify(collection, doc_id)

    async def get(self, collection: str, doc_id: str) -> Optional[Document]:
        return self._snapshot(collection, doc_id)

    async def query(
        self,
        collection: str,
        where: Sequence[Where] = (),
        order_by: Optional[OrderBy] = None,
        limit: Optional[int] = None,
    ) -> list[Document]:
        return self._run_query(collection, where, order_by, limit)

    async def update(self, collection: str, doc_id: str, fields: Document) -> None:
        docs = self._collections.get(collection, {})
        if doc_id not in docs:
            raise NotFound(f"{collection}/{doc_id} does not exist")
        docs[doc_id] = {**docs[doc_id], **prepare_fields(fields, self._clock())}
        self._notify(collection, doc_id)

    async def delete(self, collection: str, doc_id: str) -> None:
        self._collections.get(collection, {}).pop(doc_id, None)
        self._notify(collection, doc_id)

    def subscribe(self, collection: str, doc_id: str, on_change: OnChange) -> Unsubscribe:
        unsubscribe = self.listeners.add_document(collection, doc_id, on_change)

        def initial() -> None:
            if self.listeners.has_document(collection, doc_id, on_change):
                deliver(on_change, self._snapshot(collection, doc_id))

        _schedule(initial)
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

        def initial() -> None:
            if self.listeners.has_query(watch):
                deliver(on_change, self._run_query(collection, where, order_by, limit))

        _schedule(initial)
        return unsubscribe

    # ── internals ─────────────────────────────────────────────────

    def _snapshot(self, collection: str, doc_id: str) -> Optional[Document]:
        doc = self._collections.get(collection, {}).get(doc_id)
        return copy.deepcopy(doc) if doc is not None else None

    def _run_query(self, collection, where, order_by, limit) -> list[Document]:
        docs = [
            copy.deepcopy(d)
            for d in self._collections.get(collection, {}).values()
            if matches(d, where)
        ]
        return order_and_limit(docs, order_by, limit)

    def _notify(self, collection: str, doc_id: str) -> None:
        for listener in self.listeners.document_listeners(collection, doc_id):
            if self.listeners.has_document(collection, doc_id, listener):
                deliver(listener, self._snapshot(collection, doc_id))
        for watch in self.listeners.query_watches(collection):
            if not self.listeners.has_query(watch):
                continue
            deliver(
                watch.listener,
                self._run_query(collection, watch.where, watch.order_by, watch.limit),
            )
