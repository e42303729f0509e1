"""
Services layer for PrintLink.

This module contains the marketplace services:
- RequestService: Request submission and the status state machine
- OfferService: Offer submission
- ViewService: Live requester, maker and job-queue views

Thread Model:
    Main Thread (Flask)
    └── Store delivery (writer thread for the in-memory store,
        one watcher thread per subscription for MongoDB)

Live views take their own lock before touching state, so snapshots may
arrive on any thread.
"""

from .request_service import RequestService
from .offer_service import OfferService
from .offer_registry import OfferSubscriptionRegistry
from .view_service import ViewService, LiveView, RequesterView, MakerView, JobQueueView

__all__ = [
    "RequestService",
    "OfferService",
    "OfferSubscriptionRegistry",
    "ViewService",
    "LiveView",
    "RequesterView",
    "MakerView",
    "JobQueueView",
]
