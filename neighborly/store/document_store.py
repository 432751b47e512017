"""Contract of the reactive document store used by the messaging services.

The store holds JSON-like documents grouped in collections.  Live
queries push the complete current result on the initial load and on
every later change, rather than incremental diffs.  Every live query
returns a :class:`Subscription` that the owner must cancel when it is
done; a cancelled subscription never calls back again.

Writes that have to be atomic with respect to a concurrent writer go
through :meth:`DocumentStore.append_and_merge_atomic` or
:meth:`DocumentStore.run_transaction`.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Literal, Sequence


class _ServerTimestamp:
    """Placeholder resolved to the store's clock when a write is applied."""

    _instance: "_ServerTimestamp | None" = None

    def __new__(cls) -> "_ServerTimestamp":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "SERVER_TIMESTAMP"


SERVER_TIMESTAMP = _ServerTimestamp()


@dataclass(frozen=True)
class ArrayUnion:
    """Merge value that adds elements to an array field unless already present."""

    values: tuple[Any, ...]

    def __init__(self, *values: Any) -> None:
        object.__setattr__(self, "values", tuple(values))


def get_path(data: dict[str, Any], path: str) -> Any:
    """Return the value at a dotted ``path`` or None when any segment is missing."""
    current: Any = data
    for segment in path.split("."):
        if not isinstance(current, dict) or segment not in current:
            return None
        current = current[segment]
    return current


def has_path(data: dict[str, Any], path: str) -> bool:
    current: Any = data
    for segment in path.split("."):
        if not isinstance(current, dict) or segment not in current:
            return False
        current = current[segment]
    return True


@dataclass(frozen=True)
class FieldFilter:
    """A single predicate of a collection query."""

    field: str
    op: Literal["==", "array_contains"]
    value: Any

    def matches(self, data: dict[str, Any]) -> bool:
        actual = get_path(data, self.field)
        if self.op == "==":
            return actual == self.value
        if self.op == "array_contains":
            return isinstance(actual, list) and self.value in actual
        raise ValueError(f"Unsupported filter operator '{self.op}'")


@dataclass(frozen=True)
class OrderBy:
    field: str
    descending: bool = False


@dataclass(frozen=True)
class DocumentSnapshot:
    """A point-in-time copy of one document.  ``data`` is None when missing."""

    id: str
    data: dict[str, Any] | None = None

    @property
    def exists(self) -> bool:
        return self.data is not None


SnapshotListener = Callable[[list[DocumentSnapshot]], None]
DocumentListener = Callable[[DocumentSnapshot], None]
ErrorListener = Callable[[Exception], None]
TransactionFunction = Callable[[dict[str, Any]], dict[str, Any]]


@dataclass
class Subscription:
    """Cancelable handle for a live query.

    Use it as a context manager to tie the subscription to a scope::

        with store.subscribe_to_document("chats", chat_id, render):
            ...
    """

    _cancel: Callable[[], None]
    _active: bool = field(default=True, init=False)

    @property
    def active(self) -> bool:
        return self._active

    def unsubscribe(self) -> None:
        if not self._active:
            return
        self._active = False
        self._cancel()

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.unsubscribe()


class DocumentStore(ABC):
    """Reactive document store consumed by the messaging components."""

    @abstractmethod
    def subscribe_to_collection(
        self,
        collection: str,
        filters: Sequence[FieldFilter],
        order_by: OrderBy | None,
        on_snapshot: SnapshotListener,
        on_error: ErrorListener | None = None,
    ) -> Subscription:
        """Deliver the full matching result now and after every relevant change."""

    @abstractmethod
    def subscribe_to_document(
        self,
        collection: str,
        doc_id: str,
        on_snapshot: DocumentListener,
        on_error: ErrorListener | None = None,
    ) -> Subscription:
        """Deliver the document now and after every change to it."""

    @abstractmethod
    def get_document(self, collection: str, doc_id: str) -> DocumentSnapshot:
        """Fetch one document; a missing document yields ``exists == False``."""

    @abstractmethod
    def query(
        self,
        collection: str,
        filters: Sequence[FieldFilter],
        order_by: OrderBy | None = None,
    ) -> list[DocumentSnapshot]:
        """One-shot version of :meth:`subscribe_to_collection`."""

    @abstractmethod
    def add_document(self, collection: str, data: dict[str, Any]) -> str:
        """Create a document with a generated id and return the id."""

    @abstractmethod
    def set_document(self, collection: str, doc_id: str, data: dict[str, Any]) -> None:
        """Create or replace the document stored under ``doc_id``."""

    @abstractmethod
    def merge_fields(self, collection: str, doc_id: str, fields: dict[str, Any]) -> None:
        """Update fields of an existing document.

        Keys may be dotted paths into nested maps.  Values may be
        :data:`SERVER_TIMESTAMP` or :class:`ArrayUnion`.
        """

    @abstractmethod
    def append_and_merge_atomic(
        self,
        collection: str,
        doc_id: str,
        append_field: str,
        append_value: Any,
        merge_fields: dict[str, Any],
    ) -> None:
        """Append to a sequence field and merge other fields as one write."""

    @abstractmethod
    def run_transaction(
        self,
        collection: str,
        doc_id: str,
        update_fn: TransactionFunction,
    ) -> None:
        """Read the document, compute merge fields from it and apply them atomically.

        ``update_fn`` receives a private copy of the current data and
        returns the fields to merge; an empty result writes nothing.
        """
