"""Helper modules for the PrintLink application."""

__all__ = [
    "field_schema",
    "form_parsing",
    "formatting",
    "sanitize",
]
