"""In-process implementation of the reactive document store.

Documents live in nested dictionaries guarded by a lock.  Every write
computes the snapshots it affects while still holding the lock and
queues them; the queue is drained in FIFO order outside the lock.  A
listener that writes from inside its own callback therefore never
causes an older snapshot to reach another listener after a newer one.
"""

from __future__ import annotations

import copy
import itertools
import threading
import uuid
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timezone
from functools import partial
from typing import Any, Callable, Sequence

from loguru import logger

from ..utils.error_handler import NotFoundError
from .document_store import (
    SERVER_TIMESTAMP,
    ArrayUnion,
    DocumentListener,
    DocumentSnapshot,
    DocumentStore,
    ErrorListener,
    FieldFilter,
    OrderBy,
    SnapshotListener,
    Subscription,
    TransactionFunction,
    get_path,
    has_path,
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def order_key(value: Any) -> tuple[int, Any]:
    """Sort key that never compares values of different types.

    Mixed types order by rank: null, booleans, numbers, strings,
    timestamps, then anything else by its text form.
    """
    if value is None:
        return (0, 0)
    if isinstance(value, bool):
        return (1, value)
    if isinstance(value, (int, float)):
        return (2, value)
    if isinstance(value, str):
        return (3, value)
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return (4, value)
    return (5, repr(value))


@dataclass
class _CollectionListener:
    collection: str
    filters: tuple[FieldFilter, ...]
    order_by: OrderBy | None
    on_snapshot: SnapshotListener
    on_error: ErrorListener | None
    active: bool = True

    def matches(self, data: dict[str, Any]) -> bool:
        if self.order_by is not None and not has_path(data, self.order_by.field):
            return False
        return all(f.matches(data) for f in self.filters)


@dataclass
class _DocumentListener:
    collection: str
    doc_id: str
    on_snapshot: DocumentListener
    on_error: ErrorListener | None
    active: bool = True


class InMemoryDocumentStore(DocumentStore):
    """Thread-safe, in-process :class:`DocumentStore`.

    ``clock`` supplies the value written for :data:`SERVER_TIMESTAMP`
    and ``id_factory`` the ids of documents created with
    :meth:`add_document`; both are injectable for tests.
    """

    def __init__(
        self,
        clock: Callable[[], datetime] | None = None,
        id_factory: Callable[[], str] | None = None,
    ) -> None:
        self._clock = clock or _utcnow
        self._id_factory = id_factory or (lambda: uuid.uuid4().hex)
        self._collections: dict[str, dict[str, dict[str, Any]]] = {}
        self._lock = threading.RLock()
        self._listener_ids = itertools.count(1)
        self._collection_listeners: dict[int, _CollectionListener] = {}
        self._document_listeners: dict[int, _DocumentListener] = {}
        self._pending: deque[Callable[[], None]] = deque()
        self._dispatching = False

    # ------------------------------------------------------------------
    # Live queries

    def subscribe_to_collection(
        self,
        collection: str,
        filters: Sequence[FieldFilter],
        order_by: OrderBy | None,
        on_snapshot: SnapshotListener,
        on_error: ErrorListener | None = None,
    ) -> Subscription:
        listener = _CollectionListener(collection, tuple(filters), order_by, on_snapshot, on_error)
        with self._lock:
            listener_id = next(self._listener_ids)
            self._collection_listeners[listener_id] = listener
            self._pending.append(self._query_delivery(listener))
        logger.debug("Collection subscription {} opened on {}", listener_id, collection)
        self._drain()
        return Subscription(partial(self._cancel_collection_listener, listener_id))

    def subscribe_to_document(
        self,
        collection: str,
        doc_id: str,
        on_snapshot: DocumentListener,
        on_error: ErrorListener | None = None,
    ) -> Subscription:
        listener = _DocumentListener(collection, doc_id, on_snapshot, on_error)
        with self._lock:
            listener_id = next(self._listener_ids)
            self._document_listeners[listener_id] = listener
            snapshot = self._snapshot(collection, doc_id)
            self._pending.append(partial(self._deliver, listener, snapshot))
        logger.debug("Document subscription {} opened on {}/{}", listener_id, collection, doc_id)
        self._drain()
        return Subscription(partial(self._cancel_document_listener, listener_id))

    def _cancel_collection_listener(self, listener_id: int) -> None:
        with self._lock:
            listener = self._collection_listeners.pop(listener_id, None)
            if listener is not None:
                listener.active = False
        logger.debug("Collection subscription {} closed", listener_id)

    def _cancel_document_listener(self, listener_id: int) -> None:
        with self._lock:
            listener = self._document_listeners.pop(listener_id, None)
            if listener is not None:
                listener.active = False
        logger.debug("Document subscription {} closed", listener_id)

    # ------------------------------------------------------------------
    # Reads

    def get_document(self, collection: str, doc_id: str) -> DocumentSnapshot:
        with self._lock:
            return self._snapshot(collection, doc_id)

    def query(
        self,
        collection: str,
        filters: Sequence[FieldFilter],
        order_by: OrderBy | None = None,
    ) -> list[DocumentSnapshot]:
        probe = _CollectionListener(collection, tuple(filters), order_by, lambda _: None, None)
        with self._lock:
            return self._run_query(probe)

    # ------------------------------------------------------------------
    # Writes

    def add_document(self, collection: str, data: dict[str, Any]) -> str:
        doc_id = self._id_factory()
        self.set_document(collection, doc_id, data)
        return doc_id

    def set_document(self, collection: str, doc_id: str, data: dict[str, Any]) -> None:
        with self._lock:
            docs = self._collections.setdefault(collection, {})
            before = docs.get(doc_id)
            docs[doc_id] = self._resolve(data, self._clock())
            self._queue_changes(collection, doc_id, before)
        self._drain()

    def merge_fields(self, collection: str, doc_id: str, fields: dict[str, Any]) -> None:
        with self._lock:
            current = self._require(collection, doc_id)
            before = copy.deepcopy(current)
            self._apply_merge(current, fields, self._clock())
            self._queue_changes(collection, doc_id, before)
        self._drain()

    def append_and_merge_atomic(
        self,
        collection: str,
        doc_id: str,
        append_field: str,
        append_value: Any,
        merge_fields: dict[str, Any],
    ) -> None:
        with self._lock:
            current = self._require(collection, doc_id)
            before = copy.deepcopy(current)
            now = self._clock()
            sequence = get_path(current, append_field)
            if sequence is None:
                sequence = []
            elif not isinstance(sequence, list):
                raise TypeError(f"Field '{append_field}' of {collection}/{doc_id} is not a sequence")
            sequence = sequence + [self._resolve(append_value, now)]
            self._apply_merge(current, {append_field: sequence, **merge_fields}, now)
            self._queue_changes(collection, doc_id, before)
        self._drain()

    def run_transaction(
        self,
        collection: str,
        doc_id: str,
        update_fn: TransactionFunction,
    ) -> None:
        with self._lock:
            current = self._require(collection, doc_id)
            updates = update_fn(copy.deepcopy(current))
            if not updates:
                return
            before = copy.deepcopy(current)
            self._apply_merge(current, updates, self._clock())
            self._queue_changes(collection, doc_id, before)
        self._drain()

    # ------------------------------------------------------------------
    # Internals; callers hold ``self._lock`` unless noted

    def _require(self, collection: str, doc_id: str) -> dict[str, Any]:
        current = self._collections.get(collection, {}).get(doc_id)
        if current is None:
            raise NotFoundError(f"Document {collection}/{doc_id} does not exist")
        return current

    def _snapshot(self, collection: str, doc_id: str) -> DocumentSnapshot:
        data = self._collections.get(collection, {}).get(doc_id)
        return DocumentSnapshot(doc_id, copy.deepcopy(data) if data is not None else None)

    def _run_query(self, listener: _CollectionListener) -> list[DocumentSnapshot]:
        docs = self._collections.get(listener.collection, {})
        matched = [(doc_id, data) for doc_id, data in docs.items() if listener.matches(data)]
        if listener.order_by is not None:
            field_name = listener.order_by.field
            matched.sort(
                key=lambda item: order_key(get_path(item[1], field_name)),
                reverse=listener.order_by.descending,
            )
        return [DocumentSnapshot(doc_id, copy.deepcopy(data)) for doc_id, data in matched]

    def _queue_changes(self, collection: str, doc_id: str, before: dict[str, Any] | None) -> None:
        after = self._collections.get(collection, {}).get(doc_id)
        for listener in self._collection_listeners.values():
            if listener.collection != collection:
                continue
            touched_before = before is not None and listener.matches(before)
            touched_after = after is not None and listener.matches(after)
            if touched_before or touched_after:
                self._pending.append(self._query_delivery(listener))
        for doc_listener in self._document_listeners.values():
            if doc_listener.collection == collection and doc_listener.doc_id == doc_id:
                self._pending.append(
                    partial(self._deliver, doc_listener, self._snapshot(collection, doc_id))
                )

    def _query_delivery(self, listener: _CollectionListener) -> Callable[[], None]:
        # A write has already been applied here, so a failing query is
        # reported to the listener instead of failing the write.
        try:
            return partial(self._deliver, listener, self._run_query(listener))
        except Exception as exc:
            logger.exception("Query on {} failed", listener.collection)
            return partial(self._report, listener, exc)

    def _drain(self) -> None:
        """Deliver queued snapshots in order.  Called without the lock held."""
        with self._lock:
            if self._dispatching:
                return
            self._dispatching = True
        try:
            while True:
                with self._lock:
                    if not self._pending:
                        self._dispatching = False
                        return
                    delivery = self._pending.popleft()
                delivery()
        except BaseException:
            with self._lock:
                self._dispatching = False
            raise

    @staticmethod
    def _deliver(listener: _CollectionListener | _DocumentListener, payload: Any) -> None:
        if not listener.active:
            return
        try:
            listener.on_snapshot(payload)
        except Exception as exc:
            logger.exception("Snapshot listener on {} raised", listener.collection)
            InMemoryDocumentStore._report(listener, exc)

    @staticmethod
    def _report(listener: _CollectionListener | _DocumentListener, exc: Exception) -> None:
        if not listener.active or listener.on_error is None:
            return
        try:
            listener.on_error(exc)
        except Exception:
            logger.exception("Error listener on {} raised", listener.collection)

    def _resolve(self, value: Any, now: datetime) -> Any:
        if value is SERVER_TIMESTAMP:
            return now
        if isinstance(value, dict):
            return {key: self._resolve(item, now) for key, item in value.items()}
        if isinstance(value, list):
            return [self._resolve(item, now) for item in value]
        if isinstance(value, ArrayUnion):
            return [self._resolve(item, now) for item in value.values]
        return copy.deepcopy(value)

    def _apply_merge(self, data: dict[str, Any], fields: dict[str, Any], now: datetime) -> None:
        for path, value in fields.items():
            *parents, leaf = path.split(".")
            target = data
            for segment in parents:
                child = target.get(segment)
                if not isinstance(child, dict):
                    child = {}
                    target[segment] = child
                target = child
            if isinstance(value, ArrayUnion):
                existing = target.get(leaf)
                merged = list(existing) if isinstance(existing, list) else []
                for item in self._resolve(value, now):
                    if item not in merged:
                        merged.append(item)
                target[leaf] = merged
            else:
                target[leaf] = self._resolve(value, now)
