"""
Print request data models.

A PrintRequest is the job a requester submits. Stored documents use the
camelCase keys of the shared collection (requesterId, urgencyDays, ...);
the dataclasses expose snake_case attributes and convert at the edge.

Lifecycle:
    Pending --(claim)--> In Progress --(complete)--> Complete

    Status only moves forward. Complete is terminal. makerId is set on the
    claim and never overwritten afterwards. Requests are never deleted.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional


class RequestStatus(Enum):
    """
    Status of a print request.

    Values are the strings stored in the document.
    """

    PENDING = "Pending"
    """Open for offers; shown in the maker queue."""

    IN_PROGRESS = "In Progress"
    """Claimed by a maker."""

    COMPLETE = "Complete"
    """Finished. Terminal."""

    @property
    def next_status(self) -> Optional["RequestStatus"]:
        """The only status this one may advance to (None when terminal)."""
        return _NEXT_STATUS.get(self)

    @property
    def is_terminal(self) -> bool:
        return self.next_status is None

    @property
    def action_label(self) -> str:
        """Button text for advancing out of this status."""
        return _ACTION_LABELS.get(self, "")

    @property
    def css_class(self) -> str:
        return _CSS_CLASSES[self]

    @classmethod
    def parse(cls, value: Any) -> Optional["RequestStatus"]:
        """Lenient parse; accepts enum members, stored values and names."""
        if isinstance(value, cls):
            return value
        if not isinstance(value, str):
            return None
        for status in cls:
            if value == status.value or value.upper().replace(" ", "_") == status.name:
                return status
        return None


_NEXT_STATUS = {
    RequestStatus.PENDING: RequestStatus.IN_PROGRESS,
    RequestStatus.IN_PROGRESS: RequestStatus.COMPLETE,
}

_ACTION_LABELS = {
    RequestStatus.PENDING: "Start Printing",
    RequestStatus.IN_PROGRESS: "Mark as Complete",
}

_CSS_CLASSES = {
    RequestStatus.PENDING: "status-pending",
    RequestStatus.IN_PROGRESS: "status-in-progress",
    RequestStatus.COMPLETE: "status-complete",
}


class ShippingOption(Enum):
    SHIPPING = "Shipping"
    PICKUP = "Pickup"


@dataclass(frozen=True)
class PriceRange:
    """Budget expectation: a predefined range or a custom ("Other") one."""

    selected_range: str
    min: float
    max: float

    @property
    def is_custom(self) -> bool:
        return self.selected_range == "Other"

    def to_dict(self) -> Dict[str, Any]:
        return {"selectedRange": self.selected_range, "min": self.min, "max": self.max}

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "PriceRange":
        data = data or {}
        return cls(
            selected_range=data.get("selectedRange", ""),
            min=float(data.get("min", 0) or 0),
            max=float(data.get("max", 0) or 0),
        )


@dataclass(frozen=True)
class ModelInput:
    """Where the 3D model comes from: a link, or a simulated upload name."""

    kind: str
    """'link' or 'upload'."""

    value: str
    """URL or simulated filename."""

    @property
    def is_link(self) -> bool:
        return self.kind == "link"

    def to_dict(self) -> Dict[str, str]:
        return {"type": self.kind, "value": self.value}

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "ModelInput":
        data = data or {}
        return cls(kind=data.get("type", "link"), value=data.get("value", ""))


@dataclass
class PrintRequest:
    """
    A print job submitted by a requester.

    Built from a store document with from_document(); the id is the
    document id and is not part of the stored fields.
    """

    id: str
    requester_id: str
    title: str
    status: RequestStatus = RequestStatus.PENDING
    material: str = ""
    quantity: int = 0
    urgency_days: str = ""
    description: str = ""
    price_range: Optional[PriceRange] = None
    colors: List[str] = field(default_factory=list)
    model_input: Optional[ModelInput] = None
    shipping_option: str = ShippingOption.SHIPPING.value
    pickup_location: Optional[str] = None
    maker_id: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def is_open(self) -> bool:
        """Open requests appear in the maker queue."""
        return self.status is RequestStatus.PENDING

    @property
    def is_pickup(self) -> bool:
        return self.shipping_option == ShippingOption.PICKUP.value

    def to_dict(self) -> Dict[str, Any]:
        """Stored fields (camelCase). Excludes the id and unset optionals."""
        data: Dict[str, Any] = {
            "requesterId": self.requester_id,
            "title": self.title,
            "material": self.material,
            "quantity": self.quantity,
            "urgencyDays": self.urgency_days,
            "description": self.description,
            "colors": list(self.colors),
            "shippingOption": self.shipping_option,
            "status": self.status.value,
        }
        if self.price_range:
            data["priceRange"] = self.price_range.to_dict()
        if self.model_input:
            data["modelInput"] = self.model_input.to_dict()
        if self.pickup_location:
            data["pickupLocation"] = self.pickup_location
        if self.maker_id:
            data["makerId"] = self.maker_id
        if self.created_at:
            data["createdAt"] = self.created_at
        if self.updated_at:
            data["updatedAt"] = self.updated_at
        return data

    def to_json(self) -> Dict[str, Any]:
        """JSON-safe form for the API (id included, timestamps as ISO strings)."""
        data = self.to_dict()
        data["id"] = self.id
        data["createdAt"] = self.created_at.isoformat() if self.created_at else None
        data["updatedAt"] = self.updated_at.isoformat() if self.updated_at else None
        return data

    @classmethod
    def from_document(cls, doc_id: str, data: Dict[str, Any]) -> "PrintRequest":
        """
        Create from a stored document.

        Tolerates documents written by the older job-queue form, which
        stored "pages" instead of "quantity" and "timestamp" instead of
        "createdAt".
        """
        return cls(
            id=doc_id,
            requester_id=data.get("requesterId", ""),
            title=data.get("title", ""),
            status=RequestStatus.parse(data.get("status")) or RequestStatus.PENDING,
            material=data.get("material", ""),
            quantity=int(data.get("quantity", data.get("pages", 0)) or 0),
            urgency_days=data.get("urgencyDays", ""),
            description=data.get("description", "") or "",
            price_range=PriceRange.from_dict(data["priceRange"]) if data.get("priceRange") else None,
            colors=list(data.get("colors", [])),
            model_input=ModelInput.from_dict(data["modelInput"]) if data.get("modelInput") else None,
            shipping_option=data.get("shippingOption", ShippingOption.SHIPPING.value),
            pickup_location=data.get("pickupLocation"),
            maker_id=data.get("makerId"),
            created_at=parse_timestamp(data.get("createdAt", data.get("timestamp"))),
            updated_at=parse_timestamp(data.get("updatedAt")),
        )


def parse_timestamp(value: Any) -> Optional[datetime]:
    if isinstance(value, datetime):
        return value
    if isinstance(value, str) and value:
        try:
            return datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None
    return None
