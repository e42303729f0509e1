"""
In-process document store.

Holds every collection in memory and fans out live-query snapshots
synchronously on the thread that performed the write. Used as the
default backend in development and for the whole test suite.

THREAD SAFETY:
    - All reads and writes take the store lock
    - Snapshots are deep copies, never views into store state
    - Callbacks run AFTER the store lock is released, so a callback may
      write to the store or open/close subscriptions without deadlocking
    - Each listener has its own re-entrant delivery lock; unsubscribe()
      waits for an in-flight delivery on another thread to finish, which
      guarantees no callback after unsubscribe() returns
    - Snapshots are numbered under the store lock; a listener drops any
      snapshot older than the last one it received, so concurrent writers
      fanning out in a different order never leave a listener behind
"""

from __future__ import annotations

import threading
import uuid
from copy import deepcopy
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from .document_store import (
    DocumentSnapshot,
    DocumentStore,
    ErrorCallback,
    Query,
    QuerySnapshot,
    SnapshotCallback,
    Subscription,
    join_path,
    resolve_timestamps,
    split_document_path,
    validate_collection_path,
)
from .exceptions import PersistenceError
from logging_config import get_logger


# Module logger
logger = get_logger(__name__)


class _Listener:
    """One live query registered with the store."""

    def __init__(self, subscription: Subscription, on_snapshot: SnapshotCallback,
                 on_error: Optional[ErrorCallback]):
        self.subscription = subscription
        self.on_snapshot = on_snapshot
        self.on_error = on_error
        self.delivery_lock = threading.RLock()
        self.last_sequence = -1

    def deliver(self, snapshot: QuerySnapshot, sequence: int) -> None:
        """
        Hand a snapshot to the consumer.

        Args:
            snapshot: Query result
            sequence: Store write number the snapshot was taken at
        """
        with self.delivery_lock:
            if not self.subscription.active:
                return
            if sequence < self.last_sequence:
                # A later write already delivered a newer snapshot
                return
            self.last_sequence = sequence
            try:
                self.on_snapshot(snapshot)
            except Exception as e:
                # A failing consumer must not break the writer or other listeners
                logger.error(f"Snapshot callback failed for {snapshot.query.collection_path}: {e}",
                             exc_info=True)
                if self.on_error:
                    self.on_error(PersistenceError(
                        f"Snapshot handler failed: {e}",
                        operation="subscribe",
                        path=snapshot.query.collection_path
                    ))


class InMemoryDocumentStore(DocumentStore):
    """
    Dictionary-backed DocumentStore with synchronous change fan-out.

    Documents are kept per collection path in insertion order, which is
    the order queries return them in.
    """

    backend_name = "memory"

    def __init__(self, clock=None):
        """
        Args:
            clock: Optional zero-arg callable returning the "server" time
                   (tests pass a fake clock to control createdAt ordering)
        """
        self._collections: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self._listeners: List[_Listener] = []
        self._lock = threading.Lock()
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._closed = False
        # Incremented under the lock on every write
        self._sequence = 0

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    def create(self, collection_path: str, document: Dict[str, Any]) -> str:
        collection_path = validate_collection_path(collection_path)
        doc_id = uuid.uuid4().hex
        with self._lock:
            self._ensure_open("create", collection_path)
            data = resolve_timestamps(deepcopy(document), self._clock())
            self._collections.setdefault(collection_path, {})[doc_id] = data
            pending = self._pending_snapshots(collection_path)

        logger.debug(f"Created {collection_path}/{doc_id}")
        self._fan_out(pending)
        return doc_id

    def update(self, document_path: str, fields: Dict[str, Any]) -> None:
        collection_path, doc_id = split_document_path(document_path)
        with self._lock:
            self._ensure_open("update", document_path)
            current = self._collections.get(collection_path, {}).get(doc_id)
            if current is None:
                raise PersistenceError(
                    f"No document to update at '{document_path}'",
                    operation="update",
                    path=document_path
                )
            current.update(resolve_timestamps(deepcopy(fields), self._clock()))
            pending = self._pending_snapshots(collection_path)

        logger.debug(f"Updated {document_path}: {sorted(fields)}")
        self._fan_out(pending)

    def update_if(self, document_path: str, field_name: str, expected: Any,
                  fields: Dict[str, Any]) -> bool:
        collection_path, doc_id = split_document_path(document_path)
        with self._lock:
            self._ensure_open("update_if", document_path)
            current = self._collections.get(collection_path, {}).get(doc_id)
            if current is None:
                raise PersistenceError(
                    f"No document to update at '{document_path}'",
                    operation="update_if",
                    path=document_path
                )
            if current.get(field_name) != expected:
                return False
            current.update(resolve_timestamps(deepcopy(fields), self._clock()))
            pending = self._pending_snapshots(collection_path)

        self._fan_out(pending)
        return True

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def get(self, document_path: str) -> Optional[DocumentSnapshot]:
        collection_path, doc_id = split_document_path(document_path)
        with self._lock:
            data = self._collections.get(collection_path, {}).get(doc_id)
            if data is None:
                return None
            return DocumentSnapshot(doc_id, document_path, deepcopy(data))

    def subscribe(self, query: Query, on_snapshot: SnapshotCallback,
                  on_error: Optional[ErrorCallback] = None) -> Subscription:
        query = Query(validate_collection_path(query.collection_path), query.filters)
        subscription = Subscription(query, on_release=self._release)
        listener = _Listener(subscription, on_snapshot, on_error)

        with self._lock:
            self._ensure_open("subscribe", query.collection_path)
            self._listeners.append(listener)
            initial = self._snapshot(query)
            sequence = self._sequence

        logger.debug(f"Subscribed to {query.collection_path} filters={query.filters}")
        listener.deliver(initial, sequence)
        return subscription

    @property
    def listener_count(self) -> int:
        """Number of live subscriptions (used by tests to detect leaks)."""
        with self._lock:
            return len(self._listeners)

    def close(self) -> None:
        with self._lock:
            listeners, self._listeners = self._listeners, []
            self._closed = True
        for listener in listeners:
            listener.subscription.unsubscribe()
        logger.info("In-memory document store closed")

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _ensure_open(self, operation: str, path: str) -> None:
        if self._closed:
            raise PersistenceError("Document store is closed", operation=operation, path=path)

    def _release(self, subscription: Subscription) -> None:
        with self._lock:
            matching = [l for l in self._listeners if l.subscription is subscription]
            self._listeners = [l for l in self._listeners if l.subscription is not subscription]
        for listener in matching:
            # Wait for an in-flight delivery on another thread
            with listener.delivery_lock:
                pass
        logger.debug(f"Released subscription on {subscription.query.collection_path}")

    def _snapshot(self, query: Query) -> QuerySnapshot:
        """Build a snapshot. Caller holds the store lock."""
        documents = self._collections.get(query.collection_path, {})
        return QuerySnapshot(
            query=query,
            documents=tuple(
                DocumentSnapshot(doc_id, join_path(query.collection_path, doc_id), deepcopy(data))
                for doc_id, data in documents.items()
                if query.matches(data)
            ),
            read_at=self._clock(),
        )

    def _pending_snapshots(self, collection_path: str):
        """
        Snapshots owed to listeners of a collection, numbered with this
        write. Caller holds the store lock.
        """
        self._sequence += 1
        sequence = self._sequence
        return [
            (listener, self._snapshot(listener.subscription.query), sequence)
            for listener in self._listeners
            if listener.subscription.query.collection_path == collection_path
        ]

    @staticmethod
    def _fan_out(pending) -> None:
        for listener, snapshot, sequence in pending:
            listener.deliver(snapshot, sequence)
