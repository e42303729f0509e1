"""
Core module for PrintLink.

Contains fundamental infrastructure components:
- exceptions: Custom exception hierarchy
- document_store: Store adapter interface, queries, snapshots, subscriptions
- memory_store: In-process store with synchronous fan-out
- mongo_store: MongoDB store with change-stream subscriptions
- identity: Anonymous and token-based identity resolution
"""

from .exceptions import (
    PrintLinkError,
    StoreUnavailableError,
    ValidationError,
    AuthError,
    PersistenceError,
    ConflictError,
)
from .document_store import (
    SERVER_TIMESTAMP,
    DocumentStore,
    DocumentSnapshot,
    Query,
    QuerySnapshot,
    Subscription,
)
from .memory_store import InMemoryDocumentStore
from .identity import Identity, IdentityProvider

__all__ = [
    "PrintLinkError",
    "StoreUnavailableError",
    "ValidationError",
    "AuthError",
    "PersistenceError",
    "ConflictError",
    "SERVER_TIMESTAMP",
    "DocumentStore",
    "DocumentSnapshot",
    "Query",
    "QuerySnapshot",
    "Subscription",
    "InMemoryDocumentStore",
    "Identity",
    "IdentityProvider",
]
