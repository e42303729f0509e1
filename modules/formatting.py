"""Jinja filters for displaying requests and offers."""

from datetime import datetime
from typing import Any, Optional

from .field_schema import other_text


def short_id(value: Optional[str], length: int = 8) -> str:
    """Abbreviated id for display ("a1b2c3d4...")."""
    if not value:
        return ""
    return f"{value[:length]}..." if len(value) > length else value


def currency(value: Any) -> str:
    try:
        return f"${float(value):,.2f}"
    except (TypeError, ValueError):
        return "$0.00"


def timestamp(value: Optional[datetime]) -> str:
    # createdAt is unset until the store resolves it
    if not isinstance(value, datetime):
        return "Pending..."
    return value.strftime("%Y-%m-%d %H:%M")


def other_value(value: Any) -> str:
    """Free text of an "Other: ..." value, for refilling the form."""
    return other_text(value) if isinstance(value, str) else ""


FILTERS = {
    "short_id": short_id,
    "currency": currency,
    "timestamp": timestamp,
    "other_value": other_value,
}


def register_filters(app) -> None:
    """Register the display filters on a Flask app."""
    for name, func in FILTERS.items():
        app.add_template_filter(func, name)
