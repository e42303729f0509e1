"""
Document store adapter interface.

Every persistence, query and live-update call in PrintLink goes through a
DocumentStore. Components receive the store explicitly at construction;
nothing looks it up from a global.

Namespace model:
    Collections are slash-separated paths with an odd number of segments
    (e.g. "artifacts/app/public/data/printRequests"). A document path is a
    collection path plus a document id. Sub-collections hang off documents
    ("<request path>/offers").

Live queries:
    subscribe() delivers a full QuerySnapshot to on_snapshot immediately,
    then again after every change that touches the query's collection.
    The returned Subscription is released with unsubscribe(), which is
    idempotent. No callback is delivered after unsubscribe() returns.

Timestamps:
    Put SERVER_TIMESTAMP as a field value and the store replaces it with
    its own clock (UTC, timezone-aware) when the write is applied.

Usage:
    store = InMemoryDocumentStore()
    request_id = store.create(collection, {"status": "Pending", "createdAt": SERVER_TIMESTAMP})

    sub = store.subscribe(Query(collection, (("status", "Pending"),)), on_snapshot)
    ...
    sub.unsubscribe()
"""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional, Tuple

from .exceptions import PersistenceError


class _ServerTimestamp:
    """Sentinel replaced by the store clock on write."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "SERVER_TIMESTAMP"


SERVER_TIMESTAMP = _ServerTimestamp()


# =============================================================================
# PATH HELPERS
# =============================================================================

def join_path(*segments: str) -> str:
    """Join path segments, dropping empty ones and stray slashes."""
    return "/".join(s.strip("/") for s in segments if s and s.strip("/"))


def split_document_path(document_path: str) -> Tuple[str, str]:
    """
    Split a document path into (collection_path, document_id).

    Raises:
        PersistenceError: If the path does not name a document
    """
    parts = [p for p in document_path.split("/") if p]
    if len(parts) < 2 or len(parts) % 2 != 0:
        raise PersistenceError(
            f"Not a document path: '{document_path}'",
            operation="resolve",
            path=document_path
        )
    return "/".join(parts[:-1]), parts[-1]


def validate_collection_path(collection_path: str) -> str:
    """Normalize a collection path, rejecting document paths."""
    parts = [p for p in collection_path.split("/") if p]
    if not parts or len(parts) % 2 != 1:
        raise PersistenceError(
            f"Not a collection path: '{collection_path}'",
            operation="resolve",
            path=collection_path
        )
    return "/".join(parts)


def resolve_timestamps(fields: Dict[str, Any], now: Optional[datetime] = None) -> Dict[str, Any]:
    """Return a copy of fields with SERVER_TIMESTAMP sentinels replaced."""
    now = now or datetime.now(timezone.utc)
    return {
        key: (now if value is SERVER_TIMESTAMP else value)
        for key, value in fields.items()
    }


# =============================================================================
# QUERY & SNAPSHOT TYPES
# =============================================================================

@dataclass(frozen=True)
class Query:
    """
    A collection-scoped query with equality filters.

    Ordering is not part of the query; projections sort client-side.
    """

    collection_path: str
    """Collection the query is scoped to."""

    filters: Tuple[Tuple[str, Any], ...] = ()
    """(field, value) pairs that must all be equal."""

    def where(self, field_name: str, value: Any) -> "Query":
        """Return a new query with one more equality filter."""
        return Query(self.collection_path, self.filters + ((field_name, value),))

    def matches(self, data: Dict[str, Any]) -> bool:
        """True if a document's data satisfies every filter."""
        return all(data.get(name) == value for name, value in self.filters)


@dataclass(frozen=True)
class DocumentSnapshot:
    """Point-in-time copy of a single document."""

    id: str
    path: str
    data: Dict[str, Any] = field(default_factory=dict)

    def get(self, key: str, default: Any = None) -> Any:
        return self.data.get(key, default)


@dataclass(frozen=True)
class QuerySnapshot:
    """Point-in-time result of a query."""

    query: Query
    documents: Tuple[DocumentSnapshot, ...] = ()
    read_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def __len__(self) -> int:
        return len(self.documents)

    def __iter__(self):
        return iter(self.documents)

    @property
    def ids(self) -> Tuple[str, ...]:
        return tuple(d.id for d in self.documents)


SnapshotCallback = Callable[[QuerySnapshot], None]
ErrorCallback = Callable[[PersistenceError], None]


class Subscription:
    """
    Handle for a live query.

    unsubscribe() is idempotent and safe to call from any thread,
    including from inside a snapshot callback.
    """

    def __init__(self, query: Query, on_release: Optional[Callable[["Subscription"], None]] = None):
        self._query = query
        self._on_release = on_release
        self._lock = threading.Lock()
        self._active = True

    @property
    def query(self) -> Query:
        return self._query

    @property
    def active(self) -> bool:
        return self._active

    def unsubscribe(self) -> None:
        with self._lock:
            if not self._active:
                return
            self._active = False
            on_release, self._on_release = self._on_release, None
        if on_release:
            on_release(self)

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.unsubscribe()


# =============================================================================
# STORE INTERFACE
# =============================================================================

class DocumentStore(ABC):
    """
    Capability interface for the document store service.

    Implementations:
        InMemoryDocumentStore - in-process, synchronous fan-out (dev/tests)
        MongoDocumentStore    - MongoDB via pymongo, change streams

    All methods raise PersistenceError when the backend call fails.
    """

    backend_name = "abstract"

    @abstractmethod
    def create(self, collection_path: str, document: Dict[str, Any]) -> str:
        """Insert a document and return its generated id."""

    @abstractmethod
    def update(self, document_path: str, fields: Dict[str, Any]) -> None:
        """Merge fields into an existing document."""

    @abstractmethod
    def update_if(
        self,
        document_path: str,
        field_name: str,
        expected: Any,
        fields: Dict[str, Any]
    ) -> bool:
        """
        Merge fields only if document[field_name] == expected.

        Returns:
            True if the update was applied, False if the guard failed
        """

    @abstractmethod
    def get(self, document_path: str) -> Optional[DocumentSnapshot]:
        """Read one document, or None if it does not exist."""

    @abstractmethod
    def subscribe(
        self,
        query: Query,
        on_snapshot: SnapshotCallback,
        on_error: Optional[ErrorCallback] = None
    ) -> Subscription:
        """Start a live query. The first snapshot arrives before this returns."""

    def ping(self) -> bool:
        """Cheap liveness check used by /health."""
        return True

    def close(self) -> None:
        """Release backend resources."""
