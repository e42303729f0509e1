"""
Offer data model.

An Offer is a maker's price bid on one PrintRequest, stored in the
request's "offers" sub-collection. Offers are immutable once written and
never deleted; a maker may send any number of them for the same request.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional

from .print_request import parse_timestamp


@dataclass(frozen=True)
class Offer:
    """A maker's bid on a print request."""

    id: str
    """Document id."""

    request_id: str
    """Parent PrintRequest id (from the sub-collection path, not stored)."""

    maker_id: str
    """Identity of the submitting maker."""

    price: float
    """Total price in USD, always > 0."""

    message: str = ""
    """Optional note from the maker."""

    created_at: Optional[datetime] = None
    """Server-assigned creation time."""

    def to_dict(self) -> Dict[str, Any]:
        """Stored fields (camelCase)."""
        data: Dict[str, Any] = {
            "makerId": self.maker_id,
            "price": self.price,
            "message": self.message,
        }
        if self.created_at:
            data["createdAt"] = self.created_at
        return data

    def to_json(self) -> Dict[str, Any]:
        data = self.to_dict()
        data["id"] = self.id
        data["requestId"] = self.request_id
        data["createdAt"] = self.created_at.isoformat() if self.created_at else None
        return data

    @classmethod
    def from_document(cls, doc_id: str, request_id: str, data: Dict[str, Any]) -> "Offer":
        return cls(
            id=doc_id,
            request_id=request_id,
            maker_id=data.get("makerId", ""),
            price=float(data.get("price", 0) or 0),
            message=data.get("message", "") or "",
            created_at=parse_timestamp(data.get("createdAt", data.get("timestamp"))),
        )
