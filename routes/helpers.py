"""
Shared route helpers.

identity_required guards the HTML mutation routes; json_identity and
json_error do the same job for the JSON API.
"""

from functools import wraps
from typing import Optional, Tuple

from flask import flash, g, redirect, url_for

from core.identity import Identity


AUTH_NOT_READY = "Error: Authentication not ready."


def identity_required(redirect_endpoint: str):
    """
    Refuse to run a mutating route until the caller has an identity.

    Args:
        redirect_endpoint: Where to send the user back to
    """
    def decorator(view):
        @wraps(view)
        def wrapped(*args, **kwargs):
            if g.get("identity") is None:
                flash(AUTH_NOT_READY, "error")
                return redirect(url_for(redirect_endpoint))
            return view(*args, **kwargs)
        return wrapped
    return decorator


def json_error(message: str, status: int, **extra) -> Tuple[dict, int]:
    """JSON error body: {"error": message, ...}."""
    body = {"error": message}
    body.update(extra)
    return body, status


def json_identity() -> Tuple[Optional[Identity], Optional[Tuple[dict, int]]]:
    """
    Identity for a JSON route.

    Returns:
        (identity, None), or (None, 401 response) when there is none
    """
    identity = g.get("identity")
    if identity is None:
        return None, json_error(g.get("auth_error") or "Authentication not ready", 401)
    return identity, None
