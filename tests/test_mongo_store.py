"""
Unit tests for the MongoDB document store.

Uses a mocked MongoClient; no server is needed.
"""

import threading
import time
from datetime import datetime
from unittest.mock import MagicMock

import pytest
from pymongo.errors import PyMongoError

from core.document_store import SERVER_TIMESTAMP, Query
from core.exceptions import PersistenceError, StoreUnavailableError
from core.mongo_store import COLLECTION_FIELD, MongoDocumentStore


COLLECTION = "artifacts/test-app/public/data/printRequests"


# Fixtures

@pytest.fixture
def mock_client():
    return MagicMock()


@pytest.fixture
def collection(mock_client):
    """The mock collection every path maps to."""
    return mock_client.__getitem__.return_value.__getitem__.return_value


@pytest.fixture
def mongo_store(mock_client):
    return MongoDocumentStore("mongodb://localhost:27017", "printlink", client=mock_client)


def _wait_for(predicate, timeout=2.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return False


# Tests for Connection

class TestConnection:
    def test_connect_pings(self, mongo_store, mock_client):
        mongo_store.connect()
        mock_client.admin.command.assert_called_with("ping")

    def test_connect_failure_is_fatal(self, mongo_store, mock_client):
        mock_client.admin.command.side_effect = PyMongoError("no server")

        with pytest.raises(StoreUnavailableError) as exc_info:
            mongo_store.connect()

        assert exc_info.value.backend == "mongo"

    def test_ping_reports_failure(self, mongo_store, mock_client):
        mock_client.admin.command.side_effect = PyMongoError("no server")
        assert mongo_store.ping() is False


# Tests for Writes

class TestWrites:
    def test_create_stamps_and_tags_document(self, mongo_store, collection):
        doc_id = mongo_store.create(COLLECTION, {"title": "Gear", "createdAt": SERVER_TIMESTAMP})

        record = collection.insert_one.call_args[0][0]
        assert record["_id"] == doc_id
        assert len(doc_id) == 24
        assert record[COLLECTION_FIELD] == COLLECTION
        assert isinstance(record["createdAt"], datetime)
        assert record["title"] == "Gear"

    def test_create_failure(self, mongo_store, collection):
        collection.insert_one.side_effect = PyMongoError("write failed")

        with pytest.raises(PersistenceError) as exc_info:
            mongo_store.create(COLLECTION, {"title": "Gear"})

        assert exc_info.value.operation == "create"

    def test_update_missing_document(self, mongo_store, collection):
        collection.update_one.return_value.matched_count = 0

        with pytest.raises(PersistenceError):
            mongo_store.update(f"{COLLECTION}/abc", {"status": "Complete"})

    def test_update_if_filters_on_expected_value(self, mongo_store, collection):
        collection.update_one.return_value.matched_count = 1

        applied = mongo_store.update_if(
            f"{COLLECTION}/abc", "status", "Pending",
            {"status": "In Progress", "makerId": "m1", "updatedAt": SERVER_TIMESTAMP}
        )

        assert applied is True
        criteria, operators = collection.update_one.call_args[0]
        assert criteria == {"_id": "abc", COLLECTION_FIELD: COLLECTION, "status": "Pending"}
        assert operators == {
            "$set": {"status": "In Progress", "makerId": "m1"},
            "$currentDate": {"updatedAt": True},
        }

    def test_update_if_no_match(self, mongo_store, collection):
        collection.update_one.return_value.matched_count = 0
        assert mongo_store.update_if(f"{COLLECTION}/abc", "status", "Pending", {"status": "x"}) is False


# Tests for Reads

class TestReads:
    def test_get_strips_internal_fields(self, mongo_store, collection):
        collection.find_one.return_value = {
            "_id": "abc", COLLECTION_FIELD: COLLECTION, "title": "Gear",
        }

        snapshot = mongo_store.get(f"{COLLECTION}/abc")

        assert snapshot.id == "abc"
        assert snapshot.data == {"title": "Gear"}

    def test_get_missing(self, mongo_store, collection):
        collection.find_one.return_value = None
        assert mongo_store.get(f"{COLLECTION}/abc") is None

    def test_run_query_applies_filters(self, mongo_store, collection):
        collection.find.return_value.sort.return_value = [
            {"_id": "a", COLLECTION_FIELD: COLLECTION, "status": "Pending"},
        ]

        snapshot = mongo_store.run_query(Query(COLLECTION).where("status", "Pending"))

        collection.find.assert_called_with({COLLECTION_FIELD: COLLECTION, "status": "Pending"})
        assert snapshot.ids == ("a",)


# Tests for Live Queries

@pytest.fixture
def stream(collection):
    """Open change stream that yields the given changes, then idles."""
    stream = collection.watch.return_value
    stream.alive = True
    stream.try_next.side_effect = _changes([])
    return stream


def _changes(changes):
    pending = iter(changes)

    def next_change():
        try:
            return next(pending)
        except StopIteration:
            time.sleep(0.01)
            return None

    return next_change


def _watchers_running():
    return any(t.name == "Watch-printRequests" for t in threading.enumerate())


class TestSubscribe:
    def test_change_triggers_requery_and_unsubscribe_stops_watcher(self, mongo_store, collection,
                                                                   stream):
        collection.find.return_value.sort.return_value = []
        stream.try_next.side_effect = _changes([{"operationType": "insert"}])
        received = []

        subscription = mongo_store.subscribe(Query(COLLECTION), received.append)

        assert len(received) >= 1
        assert _wait_for(lambda: len(received) >= 2)
        assert _watchers_running()

        subscription.unsubscribe()
        subscription.unsubscribe()

        count = len(received)
        time.sleep(0.05)
        assert len(received) == count
        assert not _watchers_running()
        stream.close.assert_called()

    def test_stream_opened_before_initial_read(self, mongo_store, collection, stream):
        order = []
        found = MagicMock()
        found.sort.return_value = []
        collection.watch.side_effect = lambda *args, **kwargs: order.append("watch") or stream
        collection.find.side_effect = lambda *args, **kwargs: order.append("find") or found

        subscription = mongo_store.subscribe(Query(COLLECTION), lambda s: None)

        assert order[:2] == ["watch", "find"]
        subscription.unsubscribe()

    def test_initial_read_failure_closes_stream(self, mongo_store, collection, stream):
        collection.find.side_effect = PyMongoError("read failed")

        with pytest.raises(PersistenceError):
            mongo_store.subscribe(Query(COLLECTION), lambda s: None)

        stream.close.assert_called()
        assert not _watchers_running()

    def test_stream_failure_reported(self, mongo_store, collection):
        collection.find.return_value.sort.return_value = []
        collection.watch.side_effect = PyMongoError("not a replica set")
        errors = []

        subscription = mongo_store.subscribe(Query(COLLECTION), lambda s: None, errors.append)

        assert _wait_for(lambda: len(errors) == 1)
        assert errors[0].operation == "subscribe"
        subscription.unsubscribe()

    def test_requery_failure_reported(self, mongo_store, collection, stream):
        collection.find.return_value.sort.side_effect = [[], PyMongoError("requery failed")]
        stream.try_next.side_effect = _changes([{"operationType": "insert"}])
        errors = []

        subscription = mongo_store.subscribe(Query(COLLECTION), lambda s: None, errors.append)

        assert _wait_for(lambda: len(errors) == 1)
        assert errors[0].operation == "query"
        assert _wait_for(lambda: not _watchers_running())
        subscription.unsubscribe()

    def test_failing_callback_reported_and_watcher_keeps_running(self, mongo_store, collection,
                                                                  stream):
        collection.find.return_value.sort.return_value = []
        stream.try_next.side_effect = _changes([{"operationType": "insert"}])
        calls = []
        errors = []

        def on_snapshot(snapshot):
            calls.append(snapshot)
            if len(calls) == 2:
                raise RuntimeError("consumer broke")

        subscription = mongo_store.subscribe(Query(COLLECTION), on_snapshot, errors.append)

        assert _wait_for(lambda: len(errors) == 1)
        assert "consumer broke" in errors[0].message
        assert _watchers_running()
        subscription.unsubscribe()
