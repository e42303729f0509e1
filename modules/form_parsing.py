"""
HTML form to raw field values.

The request form posts flat key/value pairs. This module folds them back
into the raw value shapes FieldSchema.validate() expects, using the same
per-type dispatch as the schema itself. Companion inputs follow a naming
convention based on the field key:

    select_with_other   <key>, <key>Other
    multiselect_tags    <key> (repeated), <key>Other
    budget_range        <key>, <key>Min, <key>Max
    model_source        <key>Type, <key>Value

Nothing is validated here; empty inputs come through as empty values so
the schema reports them with its own messages.
"""

from typing import Any, Callable, Dict

from werkzeug.datastructures import MultiDict

from .field_schema import OTHER, FieldDescriptor, FieldSchema, FieldType, compose_other


def _parse_plain(field: FieldDescriptor, form: MultiDict) -> Any:
    return form.get(field.key, "")


def _parse_select_with_other(field: FieldDescriptor, form: MultiDict) -> str:
    value = form.get(field.key, "")
    if value == OTHER:
        return compose_other(form.get(f"{field.key}Other", ""))
    return value


def _parse_tags(field: FieldDescriptor, form: MultiDict) -> list:
    tags = [t for t in form.getlist(field.key) if t != OTHER]
    if OTHER in form.getlist(field.key):
        tags.append(compose_other(form.get(f"{field.key}Other", "")))
    return tags


def _parse_budget(field: FieldDescriptor, form: MultiDict) -> Dict[str, Any]:
    return {
        "selectedRange": form.get(field.key, ""),
        "min": form.get(f"{field.key}Min", ""),
        "max": form.get(f"{field.key}Max", ""),
    }


def _parse_model_source(field: FieldDescriptor, form: MultiDict) -> Dict[str, str]:
    return {
        "type": form.get(f"{field.key}Type", ""),
        "value": form.get(f"{field.key}Value", ""),
    }


_PARSERS: Dict[FieldType, Callable[[FieldDescriptor, MultiDict], Any]] = {
    FieldType.TEXT: _parse_plain,
    FieldType.NUMBER: _parse_plain,
    FieldType.SELECT: _parse_plain,
    FieldType.SELECT_WITH_OTHER: _parse_select_with_other,
    FieldType.MULTISELECT_TAGS: _parse_tags,
    FieldType.BUDGET_RANGE: _parse_budget,
    FieldType.MODEL_SOURCE: _parse_model_source,
    FieldType.DEPENDENT_SELECT: _parse_plain,
}

_missing = set(FieldType) - set(_PARSERS)
if _missing:
    raise RuntimeError(f"Form parsers missing for: {sorted(t.value for t in _missing)}")


def parse_request_form(form: MultiDict, schema: FieldSchema) -> Dict[str, Any]:
    """
    Collect raw values for every schema field from a submitted form.

    Args:
        form: request.form
        schema: Field schema

    Returns:
        Raw values keyed by field key
    """
    return {field.key: _PARSERS[field.type](field, form) for field in schema}
