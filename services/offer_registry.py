"""
Per-request offer subscriptions.

A live view that shows offers needs one offers subscription per visible
request. The registry keeps that set in step with the view: sync() opens
subscriptions for request ids that appeared and retires the ones whose
request left the view, so nothing leaks as requests change status or a
view changes filter.

THREAD SAFETY:
    The registry shares its owner's re-entrant lock. Offer snapshots may
    arrive on store threads and take the same lock before touching
    registry state.

    sync() and detach() do not unsubscribe anything themselves. They hand
    back the retired subscriptions, and the caller unsubscribes them after
    releasing the shared lock (see release()). Unsubscribing waits for an
    in-flight delivery, and that delivery may be waiting for the lock.
"""

from __future__ import annotations

import threading
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from config import MarketplaceSettings
from core.document_store import DocumentStore, ErrorCallback, Query, QuerySnapshot, Subscription
from models.offer import Offer
from logging_config import get_logger


# Module logger
logger = get_logger(__name__)


def release(subscriptions: Iterable[Subscription]) -> None:
    """Unsubscribe retired subscriptions. Call without holding the shared lock."""
    for subscription in subscriptions:
        subscription.unsubscribe()


class OfferSubscriptionRegistry:
    """
    Map of request id to its live offers subscription.

    Attributes:
        maker_id: When set, only this maker's offers are subscribed to
    """

    def __init__(
        self,
        store: DocumentStore,
        settings: MarketplaceSettings,
        on_change: Callable[[str], None],
        on_error: Optional[ErrorCallback] = None,
        maker_id: Optional[str] = None,
        lock: Optional[threading.RLock] = None
    ):
        """
        Args:
            store: Document store adapter
            settings: Collection namespace
            on_change: Called with a request id whenever its offers change
                (including the initial snapshot)
            on_error: Forwarded to every offers subscription
            maker_id: Optional makerId filter
            lock: Lock shared with the owning view
        """
        self._store = store
        self._settings = settings
        self._on_change = on_change
        self._on_error = on_error
        self.maker_id = maker_id
        self._lock = lock or threading.RLock()

        self._subscriptions: Dict[str, Subscription] = {}
        self._offers: Dict[str, Tuple[Offer, ...]] = {}
        # Identifies the current subscription per request; late snapshots
        # from a retired one carry a stale token and are dropped
        self._tokens: Dict[str, object] = {}
        self._closed = False

    def __len__(self) -> int:
        with self._lock:
            return len(self._subscriptions)

    def __contains__(self, request_id: str) -> bool:
        with self._lock:
            return request_id in self._subscriptions

    def sync(self, request_ids: Iterable[str]) -> List[Subscription]:
        """
        Make the subscribed set equal to request_ids.

        New ids get a subscription (whose initial snapshot is delivered
        before this returns).

        Returns:
            Subscriptions retired by this call, for the caller to release()
        """
        wanted = list(dict.fromkeys(request_ids))
        with self._lock:
            if self._closed:
                return []

            retired = [self._retire(r) for r in list(self._subscriptions) if r not in wanted]

            for request_id in wanted:
                if request_id not in self._subscriptions:
                    self._open(request_id)
            return retired

    def offers_for(self, request_id: str) -> Tuple[Offer, ...]:
        """Latest offers for a request, oldest first (empty if not subscribed)."""
        with self._lock:
            return self._offers.get(request_id, ())

    def detach(self) -> List[Subscription]:
        """
        Stop tracking everything. Idempotent.

        Returns:
            Every live subscription, for the caller to release()
        """
        with self._lock:
            if self._closed:
                return []
            self._closed = True
            return [self._retire(r) for r in list(self._subscriptions)]

    def close(self) -> None:
        """Detach and release. Must not be called while holding the shared lock."""
        release(self.detach())

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _open(self, request_id: str) -> None:
        query = Query(self._settings.offers_collection(request_id))
        if self.maker_id:
            query = query.where("makerId", self.maker_id)

        token = object()
        # Register before subscribing: the initial snapshot arrives inside subscribe()
        self._tokens[request_id] = token
        self._offers[request_id] = ()
        self._subscriptions[request_id] = self._store.subscribe(
            query,
            lambda snapshot: self._on_offers(request_id, token, snapshot),
            self._on_error,
        )
        logger.debug(f"Watching offers of {request_id[:8]}")

    def _retire(self, request_id: str) -> Subscription:
        self._tokens.pop(request_id, None)
        self._offers.pop(request_id, None)
        logger.debug(f"Stopped watching offers of {request_id[:8]}")
        return self._subscriptions.pop(request_id)

    def _on_offers(self, request_id: str, token: object, snapshot: QuerySnapshot) -> None:
        with self._lock:
            if self._closed or self._tokens.get(request_id) is not token:
                return
            offers = [Offer.from_document(doc.id, request_id, doc.data) for doc in snapshot]
            offers.sort(key=_offer_sort_key)
            self._offers[request_id] = tuple(offers)
            self._on_change(request_id)


def _offer_sort_key(offer: Offer):
    created = offer.created_at.timestamp() if offer.created_at else 0.0
    return created, offer.id
