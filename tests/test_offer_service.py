"""
Unit tests for the offer service.
"""

import pytest

from core.document_store import Query
from core.exceptions import AuthError, ValidationError
from services.offer_service import parse_price


# Fixtures

@pytest.fixture
def request_id(request_service, valid_fields):
    return request_service.submit_request(valid_fields, "alice")


def _offers(store, settings, request_id):
    received = []
    with store.subscribe(Query(settings.offers_collection(request_id)), received.append):
        return received[0]


# Tests

class TestParsePrice:
    @pytest.mark.parametrize("raw,expected", [
        (12.5, 12.5),
        ("12.50", 12.5),
        ("$1,200", 1200.0),
        ("abc", None),
        ("", None),
        (None, None),
        (True, None),
        ("nan", None),
        ("inf", None),
    ])
    def test_parse(self, raw, expected):
        assert parse_price(raw) == expected


class TestSubmitOffer:
    """Tests for submit_offer."""

    def test_accepts_valid_price(self, offer_service, store, settings, request_id):
        offer_service.submit_offer(request_id, "bob", "12.50", message="Can do PLA")

        offers = _offers(store, settings, request_id)
        assert len(offers) == 1
        doc = offers.documents[0]
        assert doc.get("price") == 12.5
        assert doc.get("makerId") == "bob"
        assert doc.get("message") == "Can do PLA"
        assert doc.get("createdAt") is not None

    @pytest.mark.parametrize("price", [0, "0", -5, "-0.01", "", "twelve", None])
    def test_rejects_invalid_price(self, offer_service, store, settings, request_id, price):
        with pytest.raises(ValidationError) as exc_info:
            offer_service.submit_offer(request_id, "bob", price)

        assert exc_info.value.field == "price"
        assert len(_offers(store, settings, request_id)) == 0

    def test_parent_untouched(self, offer_service, store, settings, request_id):
        before = store.get(settings.request_document(request_id)).data

        offer_service.submit_offer(request_id, "bob", 30)

        assert store.get(settings.request_document(request_id)).data == before

    def test_repeat_offers_not_deduplicated(self, offer_service, store, settings, request_id):
        offer_service.submit_offer(request_id, "bob", 30)
        offer_service.submit_offer(request_id, "bob", 30)

        assert len(_offers(store, settings, request_id)) == 2

    def test_default_message_names_request(self, offer_service, store, settings, request_id):
        offer_service.submit_offer(request_id, "bob", 30, request_title="Replacement gear")

        doc = _offers(store, settings, request_id).documents[0]
        assert doc.get("message") == 'Offer for "Replacement gear" - see details in request.'

    def test_message_sanitized(self, offer_service, store, settings, request_id):
        offer_service.submit_offer(request_id, "bob", 30, message="<i>fast</i> turnaround")

        doc = _offers(store, settings, request_id).documents[0]
        assert doc.get("message") == "fast turnaround"

    def test_blank_maker(self, offer_service, request_id):
        with pytest.raises(AuthError):
            offer_service.submit_offer(request_id, "", 30)
