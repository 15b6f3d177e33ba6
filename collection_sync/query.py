"""
Search, filter and sort pipeline for in-memory collection snapshots.

The engine is stateless and works on any record shape: field values are read
through a :data:`~collection_sync.records.FieldAccessor` bound at construction
time. Stages always run in the same order:

1. text search across a field set (case-insensitive substring)
2. structured filters, AND-combined
3. a single stable sort with missing values placed last
"""

from __future__ import annotations

import json
import locale
import math
from collections.abc import Iterable, Mapping, Sequence
from datetime import date, datetime
from functools import cmp_to_key
from typing import Any, TypeVar

from .records import (
    FieldAccessor,
    FilterCriteria,
    FilterOperator,
    SortCriteria,
    SortDirection,
    item_field,
)

T = TypeVar("T")


def stringify(value: Any) -> str:
    """
    Render a field value as text for matching and fallback comparisons.

    Booleans render lowercase and integral floats drop the trailing ``.0`` so
    ``1.0`` and ``1`` compare equal as text.
    """
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and math.isfinite(value) and value.is_integer():
        return str(int(value))
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, (list, tuple)):
        return ",".join(stringify(item) for item in value)
    if isinstance(value, Mapping):
        return json.dumps(value, sort_keys=True, default=str)
    return str(value)


def to_number(value: Any) -> float:
    """
    Coerce a value to ``float``; returns ``nan`` when coercion fails.

    Blank strings and ``None`` coerce to ``0.0``.
    """
    if value is None:
        return 0.0
    if isinstance(value, bool):
        return float(int(value))
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, datetime):
        return value.timestamp() * 1000.0
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return 0.0
        try:
            return float(text)
        except ValueError:
            return math.nan
    return math.nan


def locale_compare(left: str, right: str) -> int:
    """Compare two strings with the active locale's collation, case-insensitive first."""
    primary = locale.strcoll(left.casefold(), right.casefold())
    if primary:
        return primary
    return locale.strcoll(left, right)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _coerce_filters(criteria: Iterable[FilterCriteria | Mapping[str, Any]]) -> list[FilterCriteria]:
    return [
        item if isinstance(item, FilterCriteria) else FilterCriteria.from_dict(item)
        for item in criteria
    ]


class QueryEngine:
    """
    Stateless search/filter/sort pipeline bound to one field accessor.

    Parameters
    ----------
    accessor:
        Field lookup used for every stage. Defaults to
        :func:`~collection_sync.records.item_field`.
    """

    def __init__(self, accessor: FieldAccessor = item_field) -> None:
        self._accessor = accessor

    def search(self, items: Sequence[T], query: str | None, fields: Sequence[str]) -> Sequence[T]:
        """
        Return items where any of ``fields`` contains ``query``.

        A blank query is a no-op and returns ``items`` itself. Missing and
        empty field values never match.
        """
        if not query or not query.strip():
            return items
        needle = query.lower()
        return [item for item in items if self._matches_query(item, needle, fields)]

    def _matches_query(self, item: Any, needle: str, fields: Sequence[str]) -> bool:
        for field_name in fields:
            value = self._accessor(item, field_name)
            if value is None:
                continue
            text = stringify(value)
            if not text.strip():
                continue
            if needle in text.lower():
                return True
        return False

    def filter(
        self,
        items: Sequence[T],
        criteria: Iterable[FilterCriteria | Mapping[str, Any]],
    ) -> Sequence[T]:
        """Return items satisfying every criterion. No criteria returns ``items``."""
        resolved = _coerce_filters(criteria)
        if not resolved:
            return items
        return [
            item for item in items if all(self._matches_filter(item, entry) for entry in resolved)
        ]

    def _matches_filter(self, item: Any, criterion: FilterCriteria) -> bool:
        value = self._accessor(item, criterion.field)
        if value is None:
            return False
        operator = criterion.operator

        if operator.is_numeric:
            left = to_number(value)
            right = to_number(criterion.value)
            if math.isnan(left) or math.isnan(right):
                return False
            if operator is FilterOperator.GT:
                return left > right
            if operator is FilterOperator.LT:
                return left < right
            if operator is FilterOperator.GTE:
                return left >= right
            return left <= right

        text = stringify(value).lower()
        target = stringify(criterion.value).lower()
        if operator is FilterOperator.EQUALS:
            return text == target
        if operator is FilterOperator.CONTAINS:
            return target in text
        if operator is FilterOperator.STARTS_WITH:
            return text.startswith(target)
        if operator is FilterOperator.ENDS_WITH:
            return text.endswith(target)
        return False

    def sort(
        self,
        items: Sequence[T],
        field_name: str,
        direction: SortDirection | str = SortDirection.ASC,
    ) -> list[T]:
        """
        Return a new list ordered by ``field_name``.

        Equal values keep their input order. ``None`` values are always
        placed last, whatever the direction.
        """
        descending = SortDirection(direction) is SortDirection.DESC

        def compare(left: Any, right: Any) -> int:
            return self._compare(
                self._accessor(left, field_name),
                self._accessor(right, field_name),
                descending,
            )

        return sorted(items, key=cmp_to_key(compare))

    @staticmethod
    def _compare(left: Any, right: Any, descending: bool) -> int:
        if left is None and right is None:
            return 0
        if left is None:
            return 1
        if right is None:
            return -1
        if left == right:
            return 0

        if isinstance(left, str) and isinstance(right, str):
            result = locale_compare(left, right)
        elif _is_number(left) and _is_number(right):
            result = (left > right) - (left < right)
        else:
            result = locale_compare(stringify(left), stringify(right))
        return -result if descending else result

    def search_filter_sort(
        self,
        items: Sequence[T],
        query: str | None,
        search_fields: Sequence[str],
        filters: Iterable[FilterCriteria | Mapping[str, Any]] = (),
        sort: SortCriteria | None = None,
    ) -> Sequence[T]:
        """Apply search, then filters, then the optional sort."""
        result = self.search(items, query, search_fields)
        result = self.filter(result, filters)
        if sort is not None:
            result = self.sort(result, sort.field, sort.direction)
        return result


_DEFAULT_ENGINE = QueryEngine()


def search(items: Sequence[T], query: str | None, fields: Sequence[str]) -> Sequence[T]:
    """Module-level :meth:`QueryEngine.search` using the default accessor."""
    return _DEFAULT_ENGINE.search(items, query, fields)


def filter_items(
    items: Sequence[T],
    criteria: Iterable[FilterCriteria | Mapping[str, Any]],
) -> Sequence[T]:
    """Module-level :meth:`QueryEngine.filter` using the default accessor."""
    return _DEFAULT_ENGINE.filter(items, criteria)


def sort_items(
    items: Sequence[T],
    field_name: str,
    direction: SortDirection | str = SortDirection.ASC,
) -> list[T]:
    """Module-level :meth:`QueryEngine.sort` using the default accessor."""
    return _DEFAULT_ENGINE.sort(items, field_name, direction)


def search_filter_sort(
    items: Sequence[T],
    query: str | None,
    search_fields: Sequence[str],
    filters: Iterable[FilterCriteria | Mapping[str, Any]] = (),
    sort: SortCriteria | None = None,
) -> Sequence[T]:
    """Module-level :meth:`QueryEngine.search_filter_sort` using the default accessor."""
    return _DEFAULT_ENGINE.search_filter_sort(items, query, search_fields, filters, sort)


class CollectionSearch:
    """
    Mutable search state for one consumer, with a one-entry result memo.

    The memo is keyed by the current query/filters/sort and by the identity
    of the snapshot passed to :meth:`results`, so a new snapshot from the
    cache or a live subscription always recomputes.
    """

    def __init__(self, search_fields: Sequence[str], *, engine: QueryEngine | None = None) -> None:
        self.search_fields = tuple(search_fields)
        self._engine = engine or _DEFAULT_ENGINE
        self.query = ""
        self.filters: list[FilterCriteria] = []
        self.sort: SortCriteria | None = None
        self._memo_key: str | None = None
        self._memo_source: Sequence[Any] | None = None
        self._memo_result: Sequence[Any] = []

    def set_query(self, query: str) -> None:
        self.query = query or ""

    def set_filters(self, filters: Iterable[FilterCriteria | Mapping[str, Any]]) -> None:
        self.filters = _coerce_filters(filters)

    def set_sort(self, sort: SortCriteria | None) -> None:
        self.sort = sort

    def clear_all(self) -> None:
        """Reset query, filters and sort, and drop the memoized result."""
        self.query = ""
        self.filters = []
        self.sort = None
        self._memo_key = None
        self._memo_source = None
        self._memo_result = []

    def _state_key(self) -> str:
        return json.dumps(
            {
                "query": self.query,
                "filters": [item.as_dict() for item in self.filters],
                "sort": self.sort.as_dict() if self.sort else None,
            },
            sort_keys=True,
            default=str,
        )

    def results(self, data: Sequence[T] | None) -> Sequence[T]:
        """Return the pipeline output for ``data`` (empty when ``data`` is ``None``)."""
        if data is None:
            return []
        key = self._state_key()
        if self._memo_key == key and self._memo_source is data:
            return self._memo_result
        result = self._engine.search_filter_sort(
            data, self.query, self.search_fields, self.filters, self.sort
        )
        self._memo_key = key
        self._memo_source = data
        self._memo_result = result
        return result
