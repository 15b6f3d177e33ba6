"""
Collection service: repository calls plus query and export orchestration.

Every public method either returns a result or raises
:class:`~collection_sync.exceptions.CollectionError`; raw repository
exceptions never escape.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping, Sequence
from typing import Any

from .exceptions import CollectionError, ErrorCode, normalize_error, not_found
from .exporting import ExportBlob, ExportFormat, export_items, parse_format
from .importing import ImportIssue, ImportResult, validate_rows
from .query import QueryEngine
from .records import FilterCriteria, Record, SortCriteria
from .repository import CollectionRepository

_LOGGER = logging.getLogger(__name__)


class CollectionService:
    """
    Business operations for one collection.

    Parameters
    ----------
    repository:
        Repository serving the collection.
    engine:
        Query engine bound to the collection's field accessor.
    """

    def __init__(self, repository: CollectionRepository, *, engine: QueryEngine | None = None) -> None:
        self._repository = repository
        self._engine = engine or QueryEngine()
        self.collection = getattr(repository, "collection", "collection")

    async def get_items(
        self,
        filters: Iterable[FilterCriteria | Mapping[str, Any]] | None = None,
    ) -> list[Record]:
        """Fetch every record, narrowed by ``filters`` when given."""
        try:
            items = await self._repository.get_all()
        except Exception as exc:
            raise normalize_error(exc, ErrorCode.FETCH_FAILED) from exc
        if not filters:
            return list(items)
        return list(self._engine.filter(items, filters))

    async def get_item_by_id(self, record_id: str) -> Record:
        """Fetch one record or raise ``NOT_FOUND``."""
        try:
            item = await self._repository.get_by_id(record_id)
        except Exception as exc:
            raise normalize_error(exc, ErrorCode.FETCH_FAILED) from exc
        if item is None:
            raise not_found(self.collection, record_id)
        return item

    async def search_items(
        self,
        query: str | None,
        fields: Sequence[str],
        filters: Iterable[FilterCriteria | Mapping[str, Any]] = (),
        sort: SortCriteria | None = None,
    ) -> list[Record]:
        """Fetch every record and run the search/filter/sort pipeline on it."""
        items = await self.get_items()
        return list(self._engine.search_filter_sort(items, query, fields, filters, sort))

    async def create_item(self, payload: Mapping[str, Any]) -> Record:
        try:
            return await self._repository.create(payload)
        except Exception as exc:
            raise normalize_error(exc, ErrorCode.CREATE_FAILED) from exc

    async def update_item(self, record_id: str, partial: Mapping[str, Any]) -> Record:
        """Update an existing record; raises ``NOT_FOUND`` when it is missing."""
        await self.get_item_by_id(record_id)
        try:
            return await self._repository.update(record_id, partial)
        except Exception as exc:
            raise normalize_error(exc, ErrorCode.UPDATE_FAILED) from exc

    async def delete_item(self, record_id: str) -> None:
        """Delete an existing record; raises ``NOT_FOUND`` when it is missing."""
        await self.get_item_by_id(record_id)
        try:
            await self._repository.delete(record_id)
        except Exception as exc:
            raise normalize_error(exc, ErrorCode.DELETE_FAILED) from exc

    async def bulk_delete_items(self, record_ids: Sequence[str]) -> None:
        """Delete many records in one repository call. An empty list is a no-op."""
        ids = list(record_ids)
        if not ids:
            return
        try:
            await self._repository.bulk_delete(ids)
        except Exception as exc:
            raise normalize_error(exc, ErrorCode.DELETE_FAILED) from exc

    async def export_items(
        self,
        fmt: ExportFormat | str,
        filters: Iterable[FilterCriteria | Mapping[str, Any]] | None = None,
        *,
        fields: Sequence[str] | None = None,
    ) -> ExportBlob:
        """Fetch filtered records and serialize them to CSV or JSON."""
        resolved = parse_format(fmt)
        try:
            items = await self.get_items(filters)
            return export_items(items, resolved, fields=fields, filename=self.collection)
        except CollectionError as exc:
            if exc.code is ErrorCode.FETCH_FAILED:
                raise CollectionError(
                    exc.message, ErrorCode.EXPORT_FAILED, original=exc.original or exc
                ) from exc
            raise
        except (TypeError, ValueError) as exc:
            raise normalize_error(exc, ErrorCode.EXPORT_FAILED) from exc

    async def import_items(
        self,
        rows: Sequence[Mapping[str, Any]],
        required_fields: Sequence[str],
        optional_fields: Sequence[str] = (),
    ) -> tuple[ImportResult, list[Record]]:
        """
        Validate ``rows`` and create every valid one, in order.

        Creation is best-effort: a failed create is appended to the result's
        errors and the remaining rows are still attempted.
        """
        result = validate_rows(rows, required_fields, optional_fields)
        rejected = {issue.row for issue in result.errors}
        row_numbers = [number for number in range(1, len(rows) + 1) if number not in rejected]
        created: list[Record] = []
        for index, row in zip(row_numbers, result.data):
            try:
                created.append(await self.create_item(row))
            except CollectionError as exc:
                _LOGGER.warning("Import row %d into %r failed: %s", index, self.collection, exc)
                result.errors.append(ImportIssue(row=index, message=exc.user_message()))
        return result, created
