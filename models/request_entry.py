"""
Live view entry model.

A RequestEntry pairs a PrintRequest with the offers a view is allowed to
show for it: every offer in the requester view, the viewing maker's own
offers in the maker view, none in the job queue.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Tuple

from .offer import Offer
from .print_request import PrintRequest


@dataclass(frozen=True)
class RequestEntry:
    """One row of a live view (immutable snapshot)."""

    request: PrintRequest
    offers: Tuple[Offer, ...] = ()

    @property
    def id(self) -> str:
        return self.request.id

    @property
    def offer_count(self) -> int:
        return len(self.offers)

    @property
    def lowest_price(self) -> float:
        """Cheapest offer price, 0.0 when there are no offers."""
        return min((o.price for o in self.offers), default=0.0)

    def to_json(self) -> Dict[str, Any]:
        data = self.request.to_json()
        data["offers"] = [o.to_json() for o in self.offers]
        return data
