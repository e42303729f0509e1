"""
Data models for PrintLink.

This module contains the marketplace entities:
- PrintRequest: A requester's print job and its lifecycle status
- Offer: A maker's price bid, child of a PrintRequest
- RequestEntry: A request as shown in a live view, with its offers

PrintRequest and Offer convert to and from the camelCase documents of
the shared store. RequestEntry is frozen so views can hand snapshots to
any thread.
"""

from .print_request import (
    PrintRequest,
    RequestStatus,
    ShippingOption,
    PriceRange,
    ModelInput,
)
from .offer import Offer
from .request_entry import RequestEntry

__all__ = [
    # Request models
    "PrintRequest",
    "RequestStatus",
    "ShippingOption",
    "PriceRange",
    "ModelInput",
    # Offer models
    "Offer",
    # View models
    "RequestEntry",
]
