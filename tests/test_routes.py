"""
Integration tests for the HTTP routes, through the Flask test client.
"""

import json

import pytest

from core.exceptions import StoreUnavailableError
from core.identity import IdentityProvider


# Fixtures

@pytest.fixture
def form_data():
    """Request form as the browser posts it."""
    return {
        "title": "Phone stand",
        "modelInputType": "link",
        "modelInputValue": "printables.com/model/42",
        "material": "Other",
        "materialOther": "TPU",
        "quantity": "3",
        "urgencyDays": "3 Days (Rush)",
        "priceRange": "Other",
        "priceRangeMin": "20",
        "priceRangeMax": "60",
        "colors": ["Red", "Other"],
        "colorsOther": "Matte",
        "shippingOption": "Pickup",
        "pickupLocation": "Austin, TX",
        "description": "Snug fit please",
    }


@pytest.fixture
def token_for(app):
    def _token(user_id):
        return app.config["IDENTITY_PROVIDER"].issue_token(user_id)
    return _token


def _auth(token):
    return {"Authorization": f"Bearer {token}"}


def _identity(client):
    return client.get("/api/identity").get_json()["userId"]


# Tests for Pages

class TestPages:
    def test_index_redirects_to_requester(self, client):
        response = client.get("/")
        assert response.status_code == 302
        assert response.headers["Location"].endswith("/requester")

    def test_mode_switch_is_remembered(self, client):
        client.get("/mode/maker")
        response = client.get("/")
        assert response.headers["Location"].endswith("/maker")

    def test_unknown_mode(self, client):
        response = client.get("/mode/admin", follow_redirects=True)
        assert b"Unknown view: admin" in response.data

    @pytest.mark.parametrize("path", ["/requester", "/maker", "/queue"])
    def test_pages_render(self, client, path):
        response = client.get(path)
        assert response.status_code == 200
        assert b"Anonymous Session" in response.data

    def test_requester_form_rendered_from_schema(self, client):
        html = client.get("/requester").get_data(as_text=True)
        assert 'name="modelInputValue"' in html
        assert 'name="priceRangeMin"' in html
        assert 'id="pickupLocation-group"' in html


# Tests for Form Submission

class TestRequestForm:
    def test_submit_request(self, client, form_data, app):
        response = client.post("/requests", data=form_data, follow_redirects=True)

        assert b"Print request submitted successfully!" in response.data
        assert b"Phone stand" in response.data

        user_id = _identity(client)
        entries = app.config["VIEW_SERVICE"].snapshot("requester", user_id)
        request = entries[0].request
        assert request.material == "Other: TPU"
        assert request.colors == ["Red", "Other: Matte"]
        assert request.price_range.min == 20.0
        assert request.pickup_location == "Austin, TX"

    def test_invalid_request_keeps_form(self, client, form_data):
        form_data["pickupLocation"] = ""

        response = client.post("/requests", data=form_data, follow_redirects=True)

        html = response.get_data(as_text=True)
        assert "Please select a pickup location." in html
        assert 'value="Phone stand"' in html

    def test_offer_flow(self, client, app, form_data):
        client.post("/requests", data=form_data)
        requester_id = _identity(client)
        request_id = app.config["VIEW_SERVICE"].snapshot("requester", requester_id)[0].id

        maker = app.test_client()
        page = maker.get("/maker")
        assert b"Phone stand" in page.data

        response = maker.post(f"/requests/{request_id}/offers",
                              data={"price": "45", "message": ""}, follow_redirects=True)
        assert b"Offer submitted for &#34;Phone stand&#34;." in response.data

        entries = app.config["VIEW_SERVICE"].snapshot("requester", requester_id)
        assert entries[0].offers[0].price == 45.0

    def test_cannot_offer_on_own_request(self, client, app, form_data):
        client.post("/requests", data=form_data)
        request_id = app.config["VIEW_SERVICE"].snapshot("requester", _identity(client))[0].id

        response = client.post(f"/requests/{request_id}/offers", data={"price": "10"},
                               follow_redirects=True)

        assert b"You cannot make an offer on your own request." in response.data

    def test_invalid_offer_price(self, client, app, form_data):
        client.post("/requests", data=form_data)
        request_id = app.config["VIEW_SERVICE"].snapshot("requester", _identity(client))[0].id

        response = app.test_client().post(f"/requests/{request_id}/offers", data={"price": "0"},
                                          follow_redirects=True)

        assert b"Please enter a valid price." in response.data

    def test_queue_advance(self, client, app, form_data):
        client.post("/requests", data=form_data)
        request_id = app.config["VIEW_SERVICE"].snapshot("requester", _identity(client))[0].id

        response = client.post(f"/requests/{request_id}/advance", data={"status": "Pending"},
                               follow_redirects=True)
        assert b"is now In Progress" in response.data

        response = client.post(f"/requests/{request_id}/advance", data={"status": "Pending"},
                               follow_redirects=True)
        assert b"This request was already updated." in response.data

    def test_mutation_refused_without_identity(self, client, form_data):
        response = client.post("/requests", data=form_data, headers=_auth("bad-token"),
                               follow_redirects=True)
        assert b"Error: Authentication not ready." in response.data


# Tests for JSON API

class TestJsonApi:
    def test_schema(self, client):
        body = client.get("/api/schema").get_json()
        assert [f["key"] for f in body["fields"]][0] == "title"
        assert body["initialValues"]["shippingOption"] == "Shipping"

    def test_identity_with_bearer_token(self, client, token_for):
        body = client.get("/api/identity", headers=_auth(token_for("req-1"))).get_json()
        assert body == {
            "userId": "req-1",
            "isAnonymous": False,
            "status": "Authenticated (Persistent Requester ID)",
        }

    def test_invalid_token_is_401(self, client):
        response = client.get("/api/requests", headers=_auth("nope"))
        assert response.status_code == 401
        assert "error" in response.get_json()

    def test_full_lifecycle(self, client, token_for, valid_fields):
        requester = _auth(token_for("req-1"))
        maker = _auth(token_for("maker-1"))

        response = client.post("/api/requests", json={"fields": valid_fields}, headers=requester)
        assert response.status_code == 201
        request_id = response.get_json()["id"]

        open_requests = client.get("/api/open-requests", headers=maker).get_json()["requests"]
        assert [r["id"] for r in open_requests] == [request_id]
        assert client.get("/api/open-requests", headers=requester).get_json()["requests"] == []

        response = client.post(f"/api/requests/{request_id}/offers", json={"price": 12.5},
                               headers=maker)
        assert response.status_code == 201

        mine = client.get("/api/requests", headers=requester).get_json()["requests"]
        assert mine[0]["offers"][0]["price"] == 12.5
        assert mine[0]["status"] == "Pending"

        response = client.post(f"/api/requests/{request_id}/advance",
                               json={"expectedStatus": "Pending"}, headers=maker)
        body = response.get_json()
        assert body["applied"] is True
        assert body["request"]["status"] == "In Progress"
        assert body["request"]["makerId"] == "maker-1"

        response = client.post(f"/api/requests/{request_id}/advance",
                               json={"expectedStatus": "Pending"}, headers=_auth(token_for("maker-2")))
        assert response.status_code == 409
        assert response.get_json()["actual"] == "In Progress"

        queue = client.get("/api/queue", headers=maker).get_json()["requests"]
        assert queue[0]["offers"] == []

    def test_validation_error_is_400(self, client, token_for, valid_fields):
        valid_fields["quantity"] = "0"
        response = client.post("/api/requests", json=valid_fields, headers=_auth(token_for("r")))

        assert response.status_code == 400
        assert response.get_json() == {"error": "Quantity cannot be zero.", "field": "quantity"}

    def test_offer_on_unknown_request(self, client, token_for):
        response = client.post("/api/requests/nope/offers", json={"price": 5},
                               headers=_auth(token_for("m")))
        assert response.status_code == 404

    def test_fields_must_be_object(self, client, token_for):
        headers = _auth(token_for("r"))

        response = client.post("/api/requests", json={"fields": ["title"]}, headers=headers)
        assert response.status_code == 400

        response = client.post("/api/requests", json=["title"], headers=headers)
        assert response.status_code == 400

    def test_non_string_offer_message(self, client, token_for, valid_fields):
        created = client.post("/api/requests", json=valid_fields, headers=_auth(token_for("r")))
        request_id = created.get_json()["id"]

        response = client.post(f"/api/requests/{request_id}/offers",
                               json={"price": 8, "message": 123}, headers=_auth(token_for("m")))

        assert response.status_code == 201
        mine = client.get("/api/open-requests", headers=_auth(token_for("m"))).get_json()
        assert mine["requests"][0]["offers"][0]["message"] == "123"

    def test_offer_body_must_be_object(self, client, token_for):
        response = client.post("/api/requests/any/offers", json=[8],
                               headers=_auth(token_for("m")))
        assert response.status_code == 400

    def test_unknown_expected_status(self, client, token_for, valid_fields):
        created = client.post("/api/requests", json=valid_fields, headers=_auth(token_for("r")))
        request_id = created.get_json()["id"]

        response = client.post(f"/api/requests/{request_id}/advance",
                               json={"expectedStatus": "Bogus"}, headers=_auth(token_for("m")))

        assert response.status_code == 400
        assert response.get_json() == {"error": "Unknown status: Bogus", "field": "expectedStatus"}
        queue = client.get("/api/queue", headers=_auth(token_for("m"))).get_json()["requests"]
        assert queue[0]["status"] == "Pending"

    def test_unknown_api_path(self, client):
        response = client.get("/api/nothing-here")
        assert response.status_code == 404
        assert response.get_json() == {"error": "Not found"}


# Tests for Live Updates

class TestLiveUpdates:
    def test_stream_sends_snapshot_and_closes_view(self, client, app, store, token_for):
        response = client.get("/api/stream/queue", headers=_auth(token_for("m")))
        assert response.status_code == 200
        assert response.mimetype == "text/event-stream"

        chunks = response.response
        first = next(iter(chunks))
        if isinstance(first, bytes):
            first = first.decode()
        assert first.startswith("event: snapshot")
        payload = json.loads(first.split("data: ", 1)[1])
        assert payload == {"view": "queue", "requests": []}

        response.close()
        assert store.listener_count == 0

    def test_unknown_stream(self, client):
        assert client.get("/api/stream/admin").status_code == 404

    @pytest.mark.parametrize("view", ["requester", "maker", "queue"])
    def test_partials(self, client, view):
        response = client.get(f"/partials/{view}")
        assert response.status_code == 200
        assert b'class="empty"' in response.data


# Tests for App Factory

class TestAppFactory:
    def test_health(self, client):
        body = client.get("/health").get_json()
        assert body["status"] == "ok"
        assert body["checks"]["store"] == "memory"
        assert body["checks"]["identity"] == "anonymous"

    def test_unknown_backend_fails_fast(self):
        from app import create_app
        from config import TestingConfig

        class BadBackendConfig(TestingConfig):
            STORE_BACKEND = "cassandra"

        with pytest.raises(StoreUnavailableError):
            create_app(BadBackendConfig)

    def test_issue_token_command(self, app):
        result = app.test_cli_runner().invoke(args=["issue-token", "req-9"])

        assert result.exit_code == 0
        provider = IdentityProvider(app.config["SECRET_KEY"])
        assert provider.verify_token(result.output.strip()) == "req-9"
