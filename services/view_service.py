"""
Live views over the request collection.

A live view holds a subscription on the requests collection (plus, where
the view shows offers, one subscription per visible request) and keeps an
ordered tuple of RequestEntry objects current as the store pushes
snapshots. Consumers either read view.entries or pass on_change to be
called with every new tuple.

Views:
    RequesterView - the requester's own requests, newest first, with all offers
    MakerView     - Pending requests of other users, oldest first, with
                    the viewing maker's own offers
    JobQueueView  - every request, newest first, no offers

Lifecycle:
    view = RequesterView(store, settings, requester_id).start()
    view.wait_until_ready(timeout=2.0)
    ...
    view.close()        # idempotent; no callback fires after it returns

    Views are also context managers (start on enter, close on exit).
    set_filter() tears the subscriptions down and re-creates them for the
    new identity.

Ordering:
    By createdAt, ties broken by request id. A request whose createdAt has
    not been resolved yet sorts as the oldest.
"""

from __future__ import annotations

import threading
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Tuple

from config import MarketplaceSettings
from core.document_store import DocumentStore, ErrorCallback, Query, QuerySnapshot, Subscription
from core.exceptions import PersistenceError
from models.print_request import PrintRequest, RequestStatus
from models.request_entry import RequestEntry
from services.offer_registry import OfferSubscriptionRegistry, release
from logging_config import get_logger


# Module logger
logger = get_logger(__name__)

EntriesCallback = Callable[[Tuple[RequestEntry, ...]], None]

_OLDEST = datetime.min.replace(tzinfo=timezone.utc)


def _sort_key(request: PrintRequest):
    created = request.created_at
    if created is None:
        created = _OLDEST
    elif created.tzinfo is None:
        created = created.replace(tzinfo=timezone.utc)
    return created, request.id


class LiveView:
    """
    Base class for live request projections.

    Subclasses define the query, which requests to keep, the order and
    whether offers are shown.
    """

    name = "view"
    newest_first = True
    shows_offers = True

    def __init__(
        self,
        store: DocumentStore,
        settings: MarketplaceSettings,
        on_change: Optional[EntriesCallback] = None,
        on_error: Optional[ErrorCallback] = None
    ):
        self._store = store
        self._settings = settings
        self._on_change = on_change
        self._on_error = on_error

        self._lock = threading.RLock()
        self._ready = threading.Event()

        self._subscription: Optional[Subscription] = None
        self._registry: Optional[OfferSubscriptionRegistry] = None
        self._requests: Dict[str, PrintRequest] = {}
        self._entries: Tuple[RequestEntry, ...] = ()
        self._generation = 0
        self._started = False
        self._closed = False
        self._syncing = False
        self._error: Optional[PersistenceError] = None

    # -------------------------------------------------------------------------
    # Hooks for subclasses
    # -------------------------------------------------------------------------

    def _build_query(self) -> Query:
        return Query(self._settings.requests_collection)

    def _include(self, request: PrintRequest) -> bool:
        return True

    def _offer_maker_filter(self) -> Optional[str]:
        return None

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    @property
    def entries(self) -> Tuple[RequestEntry, ...]:
        """Current ordered entries (immutable)."""
        with self._lock:
            return self._entries

    @property
    def is_ready(self) -> bool:
        """True once the first snapshot has been applied."""
        return self._ready.is_set()

    @property
    def is_closed(self) -> bool:
        return self._closed

    @property
    def error(self) -> Optional[PersistenceError]:
        """Last error reported by the store, if any."""
        return self._error

    def start(self) -> "LiveView":
        """
        Open the subscriptions. Safe to call more than once.

        Raises:
            RuntimeError: If the view was closed
            PersistenceError: If the store refuses the subscription
        """
        with self._lock:
            if self._closed:
                raise RuntimeError(f"{self.name} view is closed")
            if not self._started:
                self._started = True
                self._open()
        return self

    def wait_until_ready(self, timeout: Optional[float] = None) -> bool:
        """Block until the first snapshot arrives. Returns False on timeout."""
        return self._ready.wait(timeout)

    def close(self) -> None:
        """Release every subscription. Idempotent."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            retired = self._detach()
        release(retired)
        logger.debug(f"{self.name} view closed")

    def __enter__(self) -> "LiveView":
        return self.start()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    # -------------------------------------------------------------------------
    # Subscription management
    # -------------------------------------------------------------------------

    def _open(self) -> None:
        """Subscribe for the current filter. Caller holds the lock."""
        self._generation += 1
        generation = self._generation

        if self.shows_offers:
            self._registry = OfferSubscriptionRegistry(
                self._store,
                self._settings,
                on_change=self._on_offers_changed,
                on_error=self._report_error,
                maker_id=self._offer_maker_filter(),
                lock=self._lock,
            )

        self._subscription = self._store.subscribe(
            self._build_query(),
            lambda snapshot: self._on_requests(generation, snapshot),
            self._report_error,
        )

    def _detach(self) -> List[Subscription]:
        """
        Forget subscriptions and state. Caller holds the lock.

        Returns the subscriptions to release once the lock is dropped;
        unsubscribing waits for in-flight deliveries, which need the lock.
        """
        self._generation += 1
        retired: List[Subscription] = []
        if self._subscription is not None:
            retired.append(self._subscription)
            self._subscription = None
        if self._registry is not None:
            retired.extend(self._registry.detach())
            self._registry = None
        self._requests = {}
        self._entries = ()
        self._ready.clear()
        return retired

    def _refilter(self) -> None:
        """Re-create subscriptions after a filter change."""
        retired: List[Subscription] = []
        with self._lock:
            if self._closed or not self._started:
                return
            retired = self._detach()
            self._open()
        release(retired)

    # -------------------------------------------------------------------------
    # Snapshot handling
    # -------------------------------------------------------------------------

    def _on_requests(self, generation: int, snapshot: QuerySnapshot) -> None:
        retired: List[Subscription] = []
        with self._lock:
            if self._closed or generation != self._generation:
                return

            requests = [PrintRequest.from_document(doc.id, doc.data) for doc in snapshot]
            self._requests = {r.id: r for r in requests if self._include(r)}

            if self._registry is not None:
                self._syncing = True
                try:
                    retired = self._registry.sync(self._requests.keys())
                finally:
                    self._syncing = False

            self._publish()
        release(retired)

    def _on_offers_changed(self, request_id: str) -> None:
        with self._lock:
            if self._closed or self._syncing or request_id not in self._requests:
                return
            self._publish()

    def _publish(self) -> None:
        """Rebuild entries and notify. Caller holds the lock."""
        ordered = sorted(self._requests.values(), key=_sort_key, reverse=self.newest_first)
        registry = self._registry
        self._entries = tuple(
            RequestEntry(r, registry.offers_for(r.id) if registry else ())
            for r in ordered
        )
        self._ready.set()

        if self._on_change is not None and not self._closed:
            self._on_change(self._entries)

    def _report_error(self, error: PersistenceError) -> None:
        with self._lock:
            if self._closed:
                return
            self._error = error
        logger.error(f"{self.name} view error: {error}")
        if self._on_error is not None:
            self._on_error(error)


class RequesterView(LiveView):
    """A requester's own requests with every offer received, newest first."""

    name = "requester"
    newest_first = True
    shows_offers = True

    def __init__(self, store, settings, requester_id: str,
                 on_change: Optional[EntriesCallback] = None,
                 on_error: Optional[ErrorCallback] = None):
        super().__init__(store, settings, on_change, on_error)
        self.requester_id = requester_id

    def _build_query(self) -> Query:
        return Query(self._settings.requests_collection).where("requesterId", self.requester_id)

    def set_filter(self, requester_id: str) -> None:
        """Switch to another requester (re-subscribes when the id changes)."""
        if requester_id == self.requester_id:
            return
        self.requester_id = requester_id
        self._refilter()


class MakerView(LiveView):
    """
    Open requests a maker can bid on, oldest first.

    Excludes the maker's own requests; each entry carries only the offers
    this maker made.
    """

    name = "maker"
    newest_first = False
    shows_offers = True

    def __init__(self, store, settings, maker_id: str,
                 on_change: Optional[EntriesCallback] = None,
                 on_error: Optional[ErrorCallback] = None):
        super().__init__(store, settings, on_change, on_error)
        self.maker_id = maker_id

    def _build_query(self) -> Query:
        return Query(self._settings.requests_collection).where(
            "status", RequestStatus.PENDING.value
        )

    def _include(self, request: PrintRequest) -> bool:
        return request.is_open and request.requester_id != self.maker_id

    def _offer_maker_filter(self) -> Optional[str]:
        return self.maker_id

    def set_filter(self, maker_id: str) -> None:
        """Switch to another maker (re-subscribes when the id changes)."""
        if maker_id == self.maker_id:
            return
        self.maker_id = maker_id
        self._refilter()


class JobQueueView(LiveView):
    """Every request, newest first, for the status-advancing queue."""

    name = "queue"
    newest_first = True
    shows_offers = False


class ViewService:
    """
    Factory for live views.

    Routes use snapshot() for one-shot page renders and open_view() for
    long-lived event streams.
    """

    VIEW_NAMES = ("requester", "maker", "queue")

    def __init__(self, store: DocumentStore, settings: MarketplaceSettings):
        self._store = store
        self._settings = settings

    def requester_view(self, requester_id: str, on_change=None, on_error=None) -> RequesterView:
        return RequesterView(self._store, self._settings, requester_id, on_change, on_error)

    def maker_view(self, maker_id: str, on_change=None, on_error=None) -> MakerView:
        return MakerView(self._store, self._settings, maker_id, on_change, on_error)

    def job_queue_view(self, on_change=None, on_error=None) -> JobQueueView:
        return JobQueueView(self._store, self._settings, on_change, on_error)

    def create_view(self, name: str, user_id: str, on_change=None, on_error=None) -> LiveView:
        """
        Build an unstarted view by name.

        Raises:
            ValueError: For unknown view names
        """
        if name == "requester":
            return self.requester_view(user_id, on_change, on_error)
        if name == "maker":
            return self.maker_view(user_id, on_change, on_error)
        if name == "queue":
            return self.job_queue_view(on_change, on_error)
        raise ValueError(f"Unknown view '{name}'")

    def open_view(self, name: str, user_id: str, on_change=None, on_error=None) -> LiveView:
        """Build and start a view by name."""
        return self.create_view(name, user_id, on_change, on_error).start()

    def snapshot(self, name: str, user_id: str, timeout: float = 5.0) -> List[RequestEntry]:
        """
        Current entries of a view, read once.

        Raises:
            PersistenceError: If the store fails or no snapshot arrives in time
        """
        with self.create_view(name, user_id) as view:
            if not view.wait_until_ready(timeout):
                raise PersistenceError(
                    f"Timed out waiting for {name} view",
                    operation="subscribe",
                    path=self._settings.requests_collection
                )
            if view.error is not None:
                raise view.error
            return list(view.entries)
