"""
Identity provider adapter.

Resolves who is acting before any mutating operation runs.

Two kinds of identity:
    - Anonymous: a random id kept in the (signed) Flask session cookie.
      Lives as long as the browser session. This is the default.
    - Persistent: a user id carried in a token signed with the app secret
      (itsdangerous). Supplied at startup via PRINTLINK_AUTH_TOKEN, or per
      request via "Authorization: Bearer <token>".

Failure policy:
    - Bad startup token: logged, then the provider falls back to anonymous
      identities (the app must still come up).
    - Bad bearer token: AuthError. The caller asked for a specific identity
      and must not silently become someone else.

Usage:
    provider = IdentityProvider(secret_key, initial_auth_token=token)
    identity = provider.resolve(session)
    identity.user_id, identity.is_anonymous
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import MutableMapping, Optional

from itsdangerous import BadSignature, URLSafeSerializer

from .exceptions import AuthError
from logging_config import get_logger


# Module logger
logger = get_logger(__name__)

SESSION_KEY = "uid"
TOKEN_SALT = "printlink-identity"


@dataclass(frozen=True)
class Identity:
    """The resolved actor for one request."""

    user_id: str
    """Stable id stored as requesterId / makerId."""

    is_anonymous: bool
    """True for session-scoped identities."""

    @property
    def status_text(self) -> str:
        """Label shown in the identity banner."""
        if self.is_anonymous:
            return "Anonymous Session (Maker/Test Identity)"
        return "Authenticated (Persistent Requester ID)"

    def to_dict(self) -> dict:
        return {
            "userId": self.user_id,
            "isAnonymous": self.is_anonymous,
            "status": self.status_text,
        }


class IdentityProvider:
    """
    Issues and resolves identities.

    Attributes:
        has_persistent_identity: True if a valid startup token was supplied
    """

    def __init__(self, secret_key: str, initial_auth_token: Optional[str] = None):
        """
        Args:
            secret_key: Key used to sign and verify identity tokens
            initial_auth_token: Optional token applied to every session
        """
        if not secret_key:
            raise ValueError("secret_key is required to sign identity tokens")

        self._serializer = URLSafeSerializer(secret_key, salt=TOKEN_SALT)
        self._persistent_user_id: Optional[str] = None

        if initial_auth_token:
            try:
                self._persistent_user_id = self.verify_token(initial_auth_token)
                logger.info(f"Startup token accepted for user {self._persistent_user_id[:8]}")
            except AuthError as e:
                logger.error(f"Startup token rejected, falling back to anonymous sign-in: {e.message}")

    @property
    def has_persistent_identity(self) -> bool:
        return self._persistent_user_id is not None

    def issue_token(self, user_id: str) -> str:
        """Sign a persistent identity token for user_id."""
        if not user_id or not user_id.strip():
            raise ValueError("user_id must not be empty")
        return self._serializer.dumps({"uid": user_id.strip()})

    def verify_token(self, token: str) -> str:
        """
        Return the user id carried by a token.

        Raises:
            AuthError: If the signature is bad or the payload malformed
        """
        try:
            payload = self._serializer.loads(token)
        except BadSignature as e:
            raise AuthError("Invalid identity token") from e

        user_id = payload.get("uid") if isinstance(payload, dict) else None
        if not isinstance(user_id, str) or not user_id:
            raise AuthError("Identity token carries no user id")
        return user_id

    def resolve(self, session: MutableMapping, bearer_token: Optional[str] = None) -> Identity:
        """
        Resolve the identity for one request.

        Args:
            session: Mutable session mapping (Flask session)
            bearer_token: Token from the Authorization header, if any

        Returns:
            Identity (never None)

        Raises:
            AuthError: If bearer_token is present but invalid
        """
        if bearer_token:
            return Identity(self.verify_token(bearer_token), is_anonymous=False)

        if self._persistent_user_id:
            return Identity(self._persistent_user_id, is_anonymous=False)

        user_id = session.get(SESSION_KEY)
        if not user_id:
            user_id = uuid.uuid4().hex
            session[SESSION_KEY] = user_id
            logger.info(f"Started anonymous session {user_id[:8]}")
        return Identity(user_id, is_anonymous=True)
