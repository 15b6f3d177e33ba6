"""
Record and query criteria models shared by every collection.

Collections are heterogeneous in shape but every record carries ``id``,
``created_at`` and ``updated_at``. Records are plain mappings by default;
:data:`FieldAccessor` lets a collection bind its own field lookup (for example
attribute access on dataclass records) without changing the query engine.
"""

from __future__ import annotations

import uuid
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any

Record = dict[str, Any]
"""A single collection record. Always contains ``id``, ``created_at`` and ``updated_at``."""

FieldAccessor = Callable[[Any, str], Any]
"""Callable returning the value of ``field`` on ``item`` (``None`` when missing)."""

SYSTEM_FIELDS = ("id", "created_at", "updated_at")


def item_field(item: Any, field_name: str) -> Any:
    """
    Default field accessor.

    Reads mapping keys first and falls back to attributes so that mapping
    records and dataclass/object records work with the same engine.
    """
    if isinstance(item, Mapping):
        return item.get(field_name)
    return getattr(item, field_name, None)


def new_record_id() -> str:
    """Return a fresh random record id."""
    return uuid.uuid4().hex


def utc_now() -> datetime:
    """Return the current timezone-aware UTC timestamp."""
    return datetime.now(timezone.utc)


def stamp_new_record(payload: Mapping[str, Any], record_id: str | None = None) -> Record:
    """
    Build a stored record from a create payload.

    Client-supplied system fields are ignored; the store assigns the id and
    both timestamps.
    """
    now = utc_now()
    record: Record = {"id": record_id or new_record_id()}
    record.update({key: value for key, value in payload.items() if key not in SYSTEM_FIELDS})
    record["created_at"] = now
    record["updated_at"] = now
    return record


def stamp_update(record: Mapping[str, Any], partial: Mapping[str, Any]) -> Record:
    """Return ``record`` merged with ``partial`` and a refreshed ``updated_at``."""
    merged: Record = dict(record)
    merged.update({key: value for key, value in partial.items() if key not in SYSTEM_FIELDS})
    merged["updated_at"] = utc_now()
    return merged


class FilterOperator(str, Enum):
    """
    Structured filter operators.

    String operators compare case-insensitive stringified values. Numeric
    operators coerce both sides to numbers; failed coercions never match.
    """

    EQUALS = "equals"
    CONTAINS = "contains"
    STARTS_WITH = "startsWith"
    ENDS_WITH = "endsWith"
    GT = "gt"
    LT = "lt"
    GTE = "gte"
    LTE = "lte"

    @property
    def is_numeric(self) -> bool:
        return self in {FilterOperator.GT, FilterOperator.LT, FilterOperator.GTE, FilterOperator.LTE}


class SortDirection(str, Enum):
    """Sort direction."""

    ASC = "asc"
    DESC = "desc"


@dataclass(frozen=True, slots=True)
class FilterCriteria:
    """
    One structured filter predicate.

    Parameters
    ----------
    field:
        Record field to test.
    operator:
        :class:`FilterOperator` or its string value.
    value:
        Right-hand side of the comparison.
    """

    field: str
    operator: FilterOperator
    value: Any = None

    def __post_init__(self) -> None:
        if not self.field:
            raise ValueError("FilterCriteria.field must be a non-empty string.")
        if not isinstance(self.operator, FilterOperator):
            object.__setattr__(self, "operator", FilterOperator(self.operator))

    def as_dict(self) -> dict[str, Any]:
        return {"field": self.field, "operator": self.operator.value, "value": self.value}

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "FilterCriteria":
        return cls(
            field=str(payload["field"]),
            operator=FilterOperator(payload["operator"]),
            value=payload.get("value"),
        )


@dataclass(frozen=True, slots=True)
class SortCriteria:
    """Single active sort: one field and one direction."""

    field: str
    direction: SortDirection = SortDirection.ASC

    def __post_init__(self) -> None:
        if not self.field:
            raise ValueError("SortCriteria.field must be a non-empty string.")
        if not isinstance(self.direction, SortDirection):
            object.__setattr__(self, "direction", SortDirection(self.direction))

    def as_dict(self) -> dict[str, Any]:
        return {"field": self.field, "direction": self.direction.value}

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "SortCriteria":
        return cls(
            field=str(payload["field"]),
            direction=SortDirection(payload.get("direction", SortDirection.ASC.value)),
        )


@dataclass(frozen=True, slots=True)
class SearchCriteria:
    """Repository-level search request: text query plus structured filters."""

    query: str = ""
    fields: tuple[str, ...] = ()
    filters: tuple[FilterCriteria, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "fields", tuple(self.fields))
        object.__setattr__(self, "filters", tuple(self.filters))

    def as_dict(self) -> dict[str, Any]:
        return {
            "query": self.query,
            "fields": list(self.fields),
            "filters": [item.as_dict() for item in self.filters],
        }
