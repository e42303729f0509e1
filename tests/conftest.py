"""
Shared fixtures for the PrintLink test suite.

Every test runs against the in-memory document store with a fake clock,
so createdAt values are distinct and increase with each write.
"""

from datetime import datetime, timedelta, timezone

import pytest

from config import MarketplaceSettings, TestingConfig
from core.memory_store import InMemoryDocumentStore
from modules.field_schema import load_field_schema
from services import OfferService, RequestService, ViewService


class FakeClock:
    """Store clock that advances one second per reading."""

    def __init__(self, start=None, step=timedelta(seconds=1)):
        self.now = start or datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)
        self.step = step

    def __call__(self):
        self.now = self.now + self.step
        return self.now


# Fixtures

@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(clock):
    """In-memory store, closed after the test."""
    store = InMemoryDocumentStore(clock=clock)
    yield store
    store.close()


@pytest.fixture
def settings():
    return MarketplaceSettings(app_id="test-app")


@pytest.fixture(scope="session")
def schema():
    """The shipped request field schema."""
    return load_field_schema()


@pytest.fixture
def request_service(store, settings, schema):
    return RequestService(store, settings, schema)


@pytest.fixture
def offer_service(store, settings):
    return OfferService(store, settings)


@pytest.fixture
def view_service(store, settings):
    return ViewService(store, settings)


@pytest.fixture
def valid_fields():
    """Raw values that pass validation."""
    return {
        "title": "Replacement gear",
        "modelInput": {"type": "link", "value": "thingiverse.com/thing/123"},
        "material": "PLA",
        "quantity": "2",
        "urgencyDays": "5 Days",
        "priceRange": {"selectedRange": "$50 - $150", "min": "", "max": ""},
        "colors": ["Black"],
        "shippingOption": "Shipping",
        "pickupLocation": "",
        "description": "",
    }


@pytest.fixture
def app(store):
    """Flask app wired to the test store."""
    from app import create_app

    app = create_app(TestingConfig, store=store)
    return app


@pytest.fixture
def client(app):
    return app.test_client()
