"""
Unit tests for identity resolution.
"""

import pytest

from core.exceptions import AuthError
from core.identity import SESSION_KEY, IdentityProvider


# Fixtures

@pytest.fixture
def provider():
    return IdentityProvider("test-secret")


# Tests

class TestIdentityProvider:
    def test_anonymous_identity_is_session_scoped(self, provider):
        session = {}

        first = provider.resolve(session)
        second = provider.resolve(session)

        assert first.is_anonymous
        assert first.user_id == second.user_id
        assert session[SESSION_KEY] == first.user_id

    def test_new_session_new_identity(self, provider):
        assert provider.resolve({}).user_id != provider.resolve({}).user_id

    def test_token_round_trip(self, provider):
        token = provider.issue_token("requester-42")
        assert provider.verify_token(token) == "requester-42"

    def test_bearer_token_gives_persistent_identity(self, provider):
        token = provider.issue_token("requester-42")

        identity = provider.resolve({}, bearer_token=token)

        assert identity.user_id == "requester-42"
        assert not identity.is_anonymous
        assert identity.status_text == "Authenticated (Persistent Requester ID)"

    def test_invalid_bearer_token(self, provider):
        with pytest.raises(AuthError):
            provider.resolve({}, bearer_token="not-a-token")

    def test_token_from_other_secret_rejected(self, provider):
        token = IdentityProvider("other-secret").issue_token("mallory")
        with pytest.raises(AuthError):
            provider.verify_token(token)

    def test_startup_token_applies_to_every_session(self):
        token = IdentityProvider("test-secret").issue_token("requester-42")
        provider = IdentityProvider("test-secret", initial_auth_token=token)

        assert provider.has_persistent_identity
        assert provider.resolve({}).user_id == "requester-42"

    def test_bad_startup_token_falls_back_to_anonymous(self):
        provider = IdentityProvider("test-secret", initial_auth_token="garbage")

        assert not provider.has_persistent_identity
        identity = provider.resolve({})
        assert identity.is_anonymous
        assert identity.status_text == "Anonymous Session (Maker/Test Identity)"

    def test_empty_user_id_rejected(self, provider):
        with pytest.raises(ValueError):
            provider.issue_token("  ")

    def test_secret_required(self):
        with pytest.raises(ValueError):
            IdentityProvider("")

    def test_to_dict(self, provider):
        identity = provider.resolve({}, bearer_token=provider.issue_token("u1"))
        assert identity.to_dict() == {
            "userId": "u1",
            "isAnonymous": False,
            "status": "Authenticated (Persistent Requester ID)",
        }
