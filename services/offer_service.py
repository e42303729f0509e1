"""
Offer service.

Appends maker offers to a request's "offers" sub-collection. The parent
request document is never touched: making an offer does not claim the
job or change its status.

There is no amend or withdraw. A maker may send as many offers as they
like for the same request; each call writes a new document.
"""

from __future__ import annotations

import math
from typing import Any, Optional

from config import MarketplaceSettings
from core.document_store import SERVER_TIMESTAMP, DocumentStore
from core.exceptions import AuthError, ValidationError
from modules.sanitize import sanitize_text
from logging_config import get_request_logger


def parse_price(value: Any) -> Optional[float]:
    """Parse a price from form or JSON input; None if not a finite number."""
    if isinstance(value, bool) or value is None:
        return None
    try:
        price = float(str(value).strip().lstrip("$").replace(",", ""))
    except ValueError:
        return None
    return price if math.isfinite(price) else None


class OfferService:
    """Creates offers on print requests."""

    def __init__(self, store: DocumentStore, settings: MarketplaceSettings):
        self._store = store
        self._settings = settings

    def submit_offer(
        self,
        request_id: str,
        maker_id: str,
        price: Any,
        message: str = "",
        request_title: Optional[str] = None
    ) -> str:
        """
        Append one offer to a request.

        Args:
            request_id: Parent request id
            maker_id: Identity of the submitting maker
            price: Total price (number or numeric string), must be > 0
            message: Optional note; when empty and request_title is given,
                a default note naming the request is stored
            request_title: Title of the parent request, for the default note

        Returns:
            Id of the new offer

        Raises:
            AuthError: If maker_id is empty
            ValidationError: If price is missing, non-numeric or <= 0
            PersistenceError: If the store rejects the create
        """
        if not maker_id:
            raise AuthError("Authentication not ready.")

        amount = parse_price(price)
        if amount is None or amount <= 0:
            raise ValidationError("price", "Please enter a valid price.")

        note = sanitize_text(message, max_length=self._settings.max_offer_message_length)
        if not note and request_title:
            note = f'Offer for "{request_title}" - see details in request.'

        offer_id = self._store.create(
            self._settings.offers_collection(request_id),
            {
                "makerId": maker_id,
                "price": amount,
                "message": note,
                "createdAt": SERVER_TIMESTAMP,
            }
        )

        get_request_logger(request_id).info(
            f"Offer {offer_id[:8]} of ${amount:,.2f} from {maker_id[:8]}"
        )
        return offer_id
