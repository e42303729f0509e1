"""
Declarative request field schema.

The schema lives in data/request_fields.json as an ordered list of field
descriptors. This module turns it into typed FieldDescriptor objects and
owns the per-type behaviour through two handler maps keyed by FieldType:

    _DEFAULTS    - initial form value for a field
    _VALIDATORS  - clean a raw value or raise ValidationError

Both maps must cover every FieldType; a missing handler fails at import
time, and an unknown type tag in the JSON fails at load time. Adding a
field type means adding an enum member plus one entry in each map.

Raw value shapes (what forms and the JSON API hand to validate()):
    text              str
    number            str | int | float
    select            str
    select_with_other str, "Other: <free text>" for the fallback
    multiselect_tags  list[str], may contain "Other: <free text>"
    budget_range      {"selectedRange": label | "Other", "min": n, "max": n}
    model_source      {"type": kind, "value": str}
    dependent_select  str (an option value)

Usage:
    schema = load_field_schema()
    cleaned = schema.validate(raw_values)   # raises ValidationError
"""

from __future__ import annotations

import json
import math
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

from core.exceptions import ValidationError
from logging_config import get_logger


# Module logger
logger = get_logger(__name__)

DEFAULT_SCHEMA_PATH = Path(__file__).resolve().parent.parent / "data" / "request_fields.json"

OTHER = "Other"
OTHER_PREFIX = "Other:"


class FieldType(Enum):
    """Closed set of field type tags."""

    TEXT = "text"
    NUMBER = "number"
    SELECT = "select"
    SELECT_WITH_OTHER = "select_with_other"
    MULTISELECT_TAGS = "multiselect_tags"
    BUDGET_RANGE = "budget_range"
    MODEL_SOURCE = "model_source"
    DEPENDENT_SELECT = "dependent_select"


# =============================================================================
# "OTHER" HELPERS
# =============================================================================

def is_other(value: Any) -> bool:
    """True for "Other" and "Other: ..." values."""
    return isinstance(value, str) and (value.strip() == OTHER or value.startswith(OTHER_PREFIX))


def other_text(value: str) -> str:
    """Free text carried by an "Other: ..." value ("" for bare "Other")."""
    if value.startswith(OTHER_PREFIX):
        return value[len(OTHER_PREFIX):].strip()
    return ""


def compose_other(text: str) -> str:
    """Build the stored form of an "Other" value."""
    text = (text or "").strip()
    return f"{OTHER_PREFIX} {text}" if text else OTHER


# =============================================================================
# DESCRIPTORS
# =============================================================================

@dataclass(frozen=True)
class BudgetRange:
    label: str
    min: float
    max: float


@dataclass(frozen=True)
class ModelSource:
    kind: str
    label: str
    placeholder: str = ""


@dataclass(frozen=True)
class Choice:
    """Option of a dependent_select; selecting it may activate another field."""

    value: str
    label: str
    dependent_field: Optional[str] = None


@dataclass(frozen=True)
class DependsOn:
    field: str
    value: Any


@dataclass(frozen=True)
class FieldDescriptor:
    """One entry of the field schema."""

    key: str
    label: str
    type: FieldType
    required: bool = False
    placeholder: str = ""
    options: Tuple[str, ...] = ()
    choices: Tuple[Choice, ...] = ()
    ranges: Tuple[BudgetRange, ...] = ()
    sources: Tuple[ModelSource, ...] = ()
    min: Optional[float] = None
    integer: bool = False
    multiline: bool = False
    depends_on: Optional[DependsOn] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FieldDescriptor":
        """
        Build a descriptor from its JSON form.

        Raises:
            ValueError: On unknown type tags or missing keys
        """
        try:
            key = data["key"]
            field_type = FieldType(data["type"])
        except KeyError as e:
            raise ValueError(f"Field descriptor missing {e}: {data}") from e
        except ValueError as e:
            raise ValueError(f"Unknown field type '{data.get('type')}' for '{data.get('key')}'") from e

        options: Tuple[str, ...] = ()
        choices: Tuple[Choice, ...] = ()
        if field_type is FieldType.DEPENDENT_SELECT:
            choices = tuple(
                Choice(o["value"], o.get("label", o["value"]), o.get("dependentField"))
                for o in data.get("options", [])
            )
        else:
            options = tuple(data.get("options", []))

        depends_on = None
        if data.get("dependsOn"):
            depends_on = DependsOn(data["dependsOn"]["field"], data["dependsOn"]["value"])

        return cls(
            key=key,
            label=data.get("label", key),
            type=field_type,
            required=bool(data.get("required", False)),
            placeholder=data.get("placeholder", ""),
            options=options,
            choices=choices,
            ranges=tuple(
                BudgetRange(r["label"], float(r["min"]), float(r["max"]))
                for r in data.get("ranges", [])
            ),
            sources=tuple(
                ModelSource(s["kind"], s.get("label", s["kind"]), s.get("placeholder", ""))
                for s in data.get("sources", [])
            ),
            min=data.get("min"),
            integer=bool(data.get("integer", False)),
            multiline=bool(data.get("multiline", False)),
            depends_on=depends_on,
        )

    def to_dict(self) -> Dict[str, Any]:
        """JSON form, as served by /api/schema."""
        data: Dict[str, Any] = {
            "key": self.key,
            "label": self.label,
            "type": self.type.value,
            "required": self.required,
        }
        if self.placeholder:
            data["placeholder"] = self.placeholder
        if self.options:
            data["options"] = list(self.options)
        if self.choices:
            data["options"] = [
                {k: v for k, v in (("value", c.value), ("label", c.label),
                                   ("dependentField", c.dependent_field)) if v}
                for c in self.choices
            ]
        if self.ranges:
            data["ranges"] = [{"label": r.label, "min": r.min, "max": r.max} for r in self.ranges]
        if self.sources:
            data["sources"] = [
                {"kind": s.kind, "label": s.label, "placeholder": s.placeholder}
                for s in self.sources
            ]
        if self.min is not None:
            data["min"] = self.min
        if self.integer:
            data["integer"] = True
        if self.multiline:
            data["multiline"] = True
        if self.depends_on:
            data["dependsOn"] = {"field": self.depends_on.field, "value": self.depends_on.value}
        return data

    def is_active(self, values: Dict[str, Any]) -> bool:
        """A dependent field only counts when its parent has the trigger value."""
        return self.depends_on is None or values.get(self.depends_on.field) == self.depends_on.value

    def missing_message(self) -> str:
        if self.depends_on is not None:
            return f"Please select a {self.label.lower()}."
        return f"{self.label} is required."


# =============================================================================
# DEFAULT HANDLERS
# =============================================================================

def _default_first_option(field: FieldDescriptor) -> Any:
    return field.options[0] if field.options else ""


def _default_budget(field: FieldDescriptor) -> Dict[str, Any]:
    if field.ranges:
        first = field.ranges[0]
        return {"selectedRange": first.label, "min": first.min, "max": first.max}
    return {"selectedRange": OTHER, "min": 0, "max": 0}


def _default_model_source(field: FieldDescriptor) -> Dict[str, Any]:
    kind = field.sources[0].kind if field.sources else "link"
    return {"type": kind, "value": ""}


_DEFAULTS: Dict[FieldType, Callable[[FieldDescriptor], Any]] = {
    FieldType.TEXT: lambda field: "",
    FieldType.NUMBER: lambda field: "",
    FieldType.SELECT: _default_first_option,
    FieldType.SELECT_WITH_OTHER: _default_first_option,
    FieldType.MULTISELECT_TAGS: lambda field: [],
    FieldType.BUDGET_RANGE: _default_budget,
    FieldType.MODEL_SOURCE: _default_model_source,
    FieldType.DEPENDENT_SELECT: lambda field: field.choices[0].value if field.choices else "",
}


# =============================================================================
# VALIDATION HANDLERS
# =============================================================================
# Each handler returns the cleaned value, None for an empty optional field,
# or raises ValidationError. Text has already been through clean_text.

def _as_text(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def _to_number(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def _validate_text(field: FieldDescriptor, value: Any) -> Optional[str]:
    text = _as_text(value)
    if not text:
        if field.required:
            raise ValidationError(field.key, field.missing_message())
        return None
    return text


def _validate_number(field: FieldDescriptor, value: Any) -> Optional[float]:
    if value is None or _as_text(value) == "":
        if field.required:
            raise ValidationError(field.key, field.missing_message())
        return None

    number = _to_number(value)
    if number is None:
        raise ValidationError(field.key, f"{field.label} must be a number.")
    if number == 0 and field.required:
        raise ValidationError(field.key, f"{field.label} cannot be zero.")
    if field.min is not None and number < field.min:
        raise ValidationError(field.key, f"{field.label} must be at least {field.min:g}.")
    if field.integer:
        if not number.is_integer():
            raise ValidationError(field.key, f"{field.label} must be a whole number.")
        return int(number)
    return number


def _validate_select(field: FieldDescriptor, value: Any) -> Optional[str]:
    text = _as_text(value)
    if not text:
        if field.required:
            raise ValidationError(field.key, field.missing_message())
        return None
    if text not in field.options:
        raise ValidationError(field.key, f"{field.label} has an unknown option '{text}'.")
    return text


def _validate_select_with_other(field: FieldDescriptor, value: Any) -> Optional[str]:
    text = _as_text(value)
    if not text:
        if field.required:
            raise ValidationError(field.key, field.missing_message())
        return None
    if is_other(text):
        custom = other_text(text)
        if not custom:
            raise ValidationError(field.key, f"Please specify the other {field.label.lower()}.")
        return compose_other(custom)
    if text not in field.options:
        raise ValidationError(field.key, f"{field.label} has an unknown option '{text}'.")
    return text


def _validate_multiselect(field: FieldDescriptor, value: Any) -> Optional[List[str]]:
    if value is None:
        items: List[Any] = []
    elif isinstance(value, str):
        items = [value]
    else:
        items = list(value)

    cleaned: List[str] = []
    for item in items:
        text = _as_text(item)
        if not text:
            continue
        if is_other(text):
            custom = other_text(text)
            if not custom:
                # A bare "Other" toggle without text carries no finish
                continue
            text = compose_other(custom)
        elif text not in field.options:
            raise ValidationError(field.key, f"{field.label} has an unknown option '{text}'.")
        if text not in cleaned:
            cleaned.append(text)

    if not cleaned:
        if field.required:
            raise ValidationError(field.key, field.missing_message())
        return None
    return cleaned


def _validate_budget(field: FieldDescriptor, value: Any) -> Optional[Dict[str, Any]]:
    value = value if isinstance(value, dict) else {}
    selected = _as_text(value.get("selectedRange"))
    if not selected:
        if field.required:
            raise ValidationError(field.key, field.missing_message())
        return None

    if selected == OTHER:
        low = _to_number(value.get("min")) or 0.0
        high = _to_number(value.get("max")) or 0.0
        if low <= 0 or high <= 0:
            raise ValidationError(field.key, "Please enter a valid Min/Max budget.")
        if low > high:
            raise ValidationError(field.key, "Minimum budget cannot exceed maximum budget.")
        return {"selectedRange": OTHER, "min": low, "max": high}

    for budget in field.ranges:
        if budget.label == selected:
            return {"selectedRange": budget.label, "min": budget.min, "max": budget.max}
    raise ValidationError(field.key, f"{field.label} has an unknown range '{selected}'.")


def _validate_model_source(field: FieldDescriptor, value: Any) -> Optional[Dict[str, str]]:
    value = value if isinstance(value, dict) else {}
    kinds = [s.kind for s in field.sources]
    kind = _as_text(value.get("type")) or (kinds[0] if kinds else "")
    if kind not in kinds:
        raise ValidationError(field.key, f"{field.label} has an unknown source '{kind}'.")

    text = _as_text(value.get("value"))
    if not text:
        if field.required:
            raise ValidationError(field.key, f"Model Data ({kind}) is required.")
        return None
    return {"type": kind, "value": text}


def _validate_dependent_select(field: FieldDescriptor, value: Any) -> Optional[str]:
    text = _as_text(value)
    if not text:
        if field.required:
            raise ValidationError(field.key, field.missing_message())
        return None
    if text not in [c.value for c in field.choices]:
        raise ValidationError(field.key, f"{field.label} has an unknown option '{text}'.")
    return text


_VALIDATORS: Dict[FieldType, Callable[[FieldDescriptor, Any], Any]] = {
    FieldType.TEXT: _validate_text,
    FieldType.NUMBER: _validate_number,
    FieldType.SELECT: _validate_select,
    FieldType.SELECT_WITH_OTHER: _validate_select_with_other,
    FieldType.MULTISELECT_TAGS: _validate_multiselect,
    FieldType.BUDGET_RANGE: _validate_budget,
    FieldType.MODEL_SOURCE: _validate_model_source,
    FieldType.DEPENDENT_SELECT: _validate_dependent_select,
}


def _check_handler_maps() -> None:
    for name, handlers in (("defaults", _DEFAULTS), ("validators", _VALIDATORS)):
        missing = set(FieldType) - set(handlers)
        if missing:
            raise RuntimeError(
                f"Field {name} missing for: {sorted(t.value for t in missing)}"
            )


_check_handler_maps()


# =============================================================================
# SCHEMA
# =============================================================================

class FieldSchema:
    """Ordered, immutable collection of field descriptors."""

    def __init__(self, fields: List[FieldDescriptor]):
        keys = [f.key for f in fields]
        duplicates = {k for k in keys if keys.count(k) > 1}
        if duplicates:
            raise ValueError(f"Duplicate field keys in schema: {sorted(duplicates)}")

        by_key = {f.key: f for f in fields}
        for f in fields:
            if f.depends_on and f.depends_on.field not in by_key:
                raise ValueError(f"Field '{f.key}' depends on unknown field '{f.depends_on.field}'")
            for choice in f.choices:
                if choice.dependent_field and choice.dependent_field not in by_key:
                    raise ValueError(
                        f"Option '{choice.value}' of '{f.key}' names unknown field "
                        f"'{choice.dependent_field}'"
                    )

        self._fields: Tuple[FieldDescriptor, ...] = tuple(fields)
        self._by_key = by_key

    def __iter__(self):
        return iter(self._fields)

    def __len__(self) -> int:
        return len(self._fields)

    def __contains__(self, key: str) -> bool:
        return key in self._by_key

    @property
    def keys(self) -> Tuple[str, ...]:
        return tuple(f.key for f in self._fields)

    def get(self, key: str) -> FieldDescriptor:
        return self._by_key[key]

    def top_level_fields(self) -> List[FieldDescriptor]:
        """Fields rendered directly (dependent fields render under their parent)."""
        return [f for f in self._fields if f.depends_on is None]

    def dependents_of(self, key: str) -> List[FieldDescriptor]:
        return [f for f in self._fields if f.depends_on and f.depends_on.field == key]

    def initial_values(self) -> Dict[str, Any]:
        """Blank form state, one entry per field."""
        return {f.key: _DEFAULTS[f.type](f) for f in self._fields}

    def validate(
        self,
        values: Dict[str, Any],
        clean_text: Optional[Callable[[str, FieldDescriptor], str]] = None
    ) -> Dict[str, Any]:
        """
        Validate raw values in schema order.

        Args:
            values: Raw values keyed by field key (missing keys count as empty)
            clean_text: Optional sanitizer applied to str values first

        Returns:
            Cleaned values for every field (None for empty optional or
            inactive dependent fields)

        Raises:
            ValidationError: For the first unsatisfied field
        """
        cleaned: Dict[str, Any] = {}
        for field in self._fields:
            if not field.is_active(cleaned):
                cleaned[field.key] = None
                continue

            raw = values.get(field.key)
            if clean_text is not None:
                raw = _apply_clean_text(raw, field, clean_text)
            cleaned[field.key] = _VALIDATORS[field.type](field, raw)
        return cleaned

    def to_list(self) -> List[Dict[str, Any]]:
        return [f.to_dict() for f in self._fields]


def _apply_clean_text(raw: Any, field: FieldDescriptor, clean_text) -> Any:
    if isinstance(raw, str):
        return clean_text(raw, field)
    if isinstance(raw, list):
        return [clean_text(v, field) if isinstance(v, str) else v for v in raw]
    if isinstance(raw, dict) and field.type is FieldType.MODEL_SOURCE:
        return {**raw, "value": clean_text(raw.get("value") or "", field)}
    return raw


def load_field_schema(path: Optional[Path] = None) -> FieldSchema:
    """
    Load the field schema from JSON.

    Args:
        path: Schema file (defaults to data/request_fields.json)

    Raises:
        ValueError: If the file is malformed or uses unknown type tags
    """
    path = Path(path) if path else DEFAULT_SCHEMA_PATH
    with open(path, "r", encoding="utf-8") as f:
        raw_fields = json.load(f)

    if not isinstance(raw_fields, list):
        raise ValueError(f"Field schema must be a JSON list: {path}")

    schema = FieldSchema([FieldDescriptor.from_dict(item) for item in raw_fields])
    logger.info(f"Loaded field schema with {len(schema)} fields from {path.name}")
    return schema
