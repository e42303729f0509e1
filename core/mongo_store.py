"""
MongoDB document store.

Maps the hierarchical collection namespace onto flat MongoDB collections:

    artifacts/app/public/data/printRequests            -> collection "printRequests"
    artifacts/app/public/data/printRequests/<id>/offers -> collection "offers"

Every stored document carries a "_collection" field holding its full
collection path, so tenants (app ids) and parents never mix. Document ids
are string ObjectIds.

Live queries use change streams: subscribe() opens the stream before the
initial read, then one watcher thread per subscription waits on it and
re-reads the query whenever a change in the watched collection path
arrives. Query and callback failures on that thread go to on_error.
Change streams need a replica set (or a sharded cluster); on a
standalone server subscribe() reports a PersistenceError through
on_error.

THREAD SAFETY:
    - MongoClient is thread-safe and shared by all calls
    - Each watcher thread owns its change stream cursor
    - unsubscribe() signals the thread, closes the stream and joins it
"""

from __future__ import annotations

import threading
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from bson.objectid import ObjectId
from pymongo import MongoClient
from pymongo.errors import PyMongoError

from .document_store import (
    SERVER_TIMESTAMP,
    DocumentSnapshot,
    DocumentStore,
    ErrorCallback,
    Query,
    QuerySnapshot,
    SnapshotCallback,
    Subscription,
    join_path,
    split_document_path,
    validate_collection_path,
)
from .exceptions import PersistenceError, StoreUnavailableError
from logging_config import get_logger, set_thread_name


# Module logger
logger = get_logger(__name__)

COLLECTION_FIELD = "_collection"


def _mongo_collection_name(collection_path: str) -> str:
    """Last path segment names the MongoDB collection."""
    return collection_path.rsplit("/", 1)[-1]


def _to_snapshot(collection_path: str, raw: Dict[str, Any]) -> DocumentSnapshot:
    data = {k: v for k, v in raw.items() if k not in ("_id", COLLECTION_FIELD)}
    doc_id = str(raw["_id"])
    return DocumentSnapshot(doc_id, join_path(collection_path, doc_id), data)


class _Watcher:
    """
    Background change-stream loop for one subscription.

    open() runs on the subscribing thread before the initial read, so a
    write landing between that read and the thread start is still seen.
    """

    def __init__(self, store: "MongoDocumentStore", subscription: Subscription,
                 on_snapshot: SnapshotCallback, on_error: Optional[ErrorCallback]):
        self._store = store
        self._subscription = subscription
        self._on_snapshot = on_snapshot
        self._on_error = on_error
        self._stop_event = threading.Event()
        self._delivery_lock = threading.RLock()
        self._stream = None
        self._open_error: Optional[PyMongoError] = None
        query = subscription.query
        self._thread = threading.Thread(
            target=self._watch_loop,
            name=f"Watch-{_mongo_collection_name(query.collection_path)}",
            daemon=True
        )

    def open(self) -> None:
        """Open the change stream. A failure is reported once the thread runs."""
        query = self._subscription.query
        pipeline = [{"$match": {"$or": [
            {f"fullDocument.{COLLECTION_FIELD}": query.collection_path},
            {"operationType": {"$in": ["delete", "drop", "invalidate"]}},
        ]}}]
        try:
            self._stream = self._store.collection_for(query.collection_path).watch(
                pipeline, full_document="updateLookup"
            )
        except PyMongoError as e:
            self._open_error = e

    def start(self) -> None:
        self._thread.start()

    def stop(self) -> None:
        self._stop_event.set()
        self._close_stream()
        if self._thread.is_alive() and threading.current_thread() is not self._thread:
            self._thread.join(timeout=5.0)
            if self._thread.is_alive():
                logger.warning(f"Watcher thread {self._thread.name} did not stop cleanly")
        with self._delivery_lock:
            pass

    def deliver(self, snapshot: QuerySnapshot) -> None:
        with self._delivery_lock:
            if not self._subscription.active or self._stop_event.is_set():
                return
            try:
                self._on_snapshot(snapshot)
            except Exception as e:
                # A failing consumer must not kill the watcher silently
                logger.error(f"Snapshot callback failed for {snapshot.query.collection_path}: {e}",
                             exc_info=True)
                self._report(PersistenceError(
                    f"Snapshot handler failed: {e}",
                    operation="subscribe",
                    path=snapshot.query.collection_path
                ))

    def _report(self, error: PersistenceError) -> None:
        with self._delivery_lock:
            if self._subscription.active and self._on_error:
                self._on_error(error)

    def _close_stream(self) -> None:
        stream, self._stream = self._stream, None
        if stream is not None:
            try:
                stream.close()
            except PyMongoError as e:
                logger.debug(f"Change stream close failed: {e}")

    def _watch_loop(self) -> None:
        set_thread_name(self._thread.name)
        query = self._subscription.query
        stream = self._stream

        logger.debug(f"Watching {query.collection_path}")
        try:
            if self._open_error is not None:
                raise PersistenceError(
                    f"Live query failed: {self._open_error}",
                    operation="subscribe",
                    path=query.collection_path
                )
            while stream is not None and not self._stop_event.is_set() and stream.alive:
                change = stream.try_next()
                if change is None:
                    # No change this round; try_next() waited max_await_time
                    continue
                self.deliver(self._store.run_query(query))
        except PyMongoError as e:
            if not self._stop_event.is_set():
                logger.error(f"Change stream on {query.collection_path} failed: {e}")
                self._report(PersistenceError(
                    f"Live query failed: {e}",
                    operation="subscribe",
                    path=query.collection_path
                ))
        except PersistenceError as e:
            if not self._stop_event.is_set():
                logger.error(f"Live query on {query.collection_path} stopped: {e}")
                self._report(e)
        finally:
            self._close_stream()
            logger.debug(f"Stopped watching {query.collection_path}")


class MongoDocumentStore(DocumentStore):
    """
    DocumentStore backed by MongoDB.

    Attributes:
        database_name: Name of the MongoDB database holding all collections
    """

    backend_name = "mongo"

    def __init__(self, url: str, database_name: str, client: Optional[MongoClient] = None,
                 server_selection_timeout_ms: int = 5000):
        """
        Args:
            url: MongoDB connection string
            database_name: Database to use
            client: Pre-built client (tests pass a mock)
            server_selection_timeout_ms: How long connect() waits for a server
        """
        self._client = client or MongoClient(
            url,
            tz_aware=True,
            serverSelectionTimeoutMS=server_selection_timeout_ms
        )
        self._db = self._client[database_name]
        self.database_name = database_name
        self._watchers: Dict[int, _Watcher] = {}
        self._watchers_lock = threading.Lock()

    def connect(self) -> None:
        """
        Verify the server is reachable.

        Raises:
            StoreUnavailableError: If the ping fails
        """
        try:
            self._client.admin.command("ping")
        except PyMongoError as e:
            raise StoreUnavailableError(self.backend_name, str(e)) from e
        logger.info(f"Connected to MongoDB database '{self.database_name}'")

    def collection_for(self, collection_path: str):
        return self._db[_mongo_collection_name(collection_path)]

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    def create(self, collection_path: str, document: Dict[str, Any]) -> str:
        collection_path = validate_collection_path(collection_path)
        now = datetime.now(timezone.utc)
        doc_id = str(ObjectId())
        record = {
            key: (now if value is SERVER_TIMESTAMP else value)
            for key, value in document.items()
        }
        record["_id"] = doc_id
        record[COLLECTION_FIELD] = collection_path
        try:
            self.collection_for(collection_path).insert_one(record)
        except PyMongoError as e:
            raise PersistenceError(f"Create failed: {e}", operation="create", path=collection_path) from e
        logger.debug(f"Created {collection_path}/{doc_id}")
        return doc_id

    def update(self, document_path: str, fields: Dict[str, Any]) -> None:
        collection_path, doc_id = split_document_path(document_path)
        try:
            result = self.collection_for(collection_path).update_one(
                {"_id": doc_id, COLLECTION_FIELD: collection_path},
                self._update_operators(fields)
            )
        except PyMongoError as e:
            raise PersistenceError(f"Update failed: {e}", operation="update", path=document_path) from e
        if result.matched_count == 0:
            raise PersistenceError(
                f"No document to update at '{document_path}'",
                operation="update",
                path=document_path
            )

    def update_if(self, document_path: str, field_name: str, expected: Any,
                  fields: Dict[str, Any]) -> bool:
        collection_path, doc_id = split_document_path(document_path)
        try:
            result = self.collection_for(collection_path).update_one(
                {"_id": doc_id, COLLECTION_FIELD: collection_path, field_name: expected},
                self._update_operators(fields)
            )
        except PyMongoError as e:
            raise PersistenceError(f"Update failed: {e}", operation="update_if", path=document_path) from e
        return result.matched_count == 1

    @staticmethod
    def _update_operators(fields: Dict[str, Any]) -> Dict[str, Any]:
        """SERVER_TIMESTAMP fields use the server clock via $currentDate."""
        to_set = {k: v for k, v in fields.items() if v is not SERVER_TIMESTAMP}
        stamped = {k: True for k, v in fields.items() if v is SERVER_TIMESTAMP}
        operators: Dict[str, Any] = {}
        if to_set:
            operators["$set"] = to_set
        if stamped:
            operators["$currentDate"] = stamped
        return operators

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def get(self, document_path: str) -> Optional[DocumentSnapshot]:
        collection_path, doc_id = split_document_path(document_path)
        try:
            raw = self.collection_for(collection_path).find_one(
                {"_id": doc_id, COLLECTION_FIELD: collection_path}
            )
        except PyMongoError as e:
            raise PersistenceError(f"Read failed: {e}", operation="get", path=document_path) from e
        return _to_snapshot(collection_path, raw) if raw else None

    def run_query(self, query: Query) -> QuerySnapshot:
        """One-shot read of a query (also used by watchers after each change)."""
        criteria: Dict[str, Any] = {COLLECTION_FIELD: query.collection_path}
        criteria.update(dict(query.filters))
        try:
            cursor = self.collection_for(query.collection_path).find(criteria).sort("_id", 1)
            documents = tuple(_to_snapshot(query.collection_path, raw) for raw in cursor)
        except PyMongoError as e:
            raise PersistenceError(f"Query failed: {e}", operation="query",
                                   path=query.collection_path) from e
        return QuerySnapshot(query=query, documents=documents)

    def subscribe(self, query: Query, on_snapshot: SnapshotCallback,
                  on_error: Optional[ErrorCallback] = None) -> Subscription:
        query = Query(validate_collection_path(query.collection_path), query.filters)
        subscription = Subscription(query, on_release=self._release)
        watcher = _Watcher(self, subscription, on_snapshot, on_error)

        # Stream first: changes after this point are replayed as re-reads
        watcher.open()
        try:
            initial = self.run_query(query)
        except PersistenceError:
            watcher.stop()
            raise

        with self._watchers_lock:
            self._watchers[id(subscription)] = watcher

        watcher.deliver(initial)
        watcher.start()
        return subscription

    def ping(self) -> bool:
        try:
            self._client.admin.command("ping")
            return True
        except PyMongoError:
            return False

    def close(self) -> None:
        with self._watchers_lock:
            watchers = list(self._watchers.values())
        for watcher in watchers:
            watcher._subscription.unsubscribe()
        self._client.close()
        logger.info("MongoDB document store closed")

    def _release(self, subscription: Subscription) -> None:
        with self._watchers_lock:
            watcher = self._watchers.pop(id(subscription), None)
        if watcher:
            watcher.stop()
