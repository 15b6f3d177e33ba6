"""
Import contract: parse CSV/JSON rows and validate them against a field list.

A row missing any required field (absent or empty) is excluded from the
result and reported in ``errors``. Unknown fields only produce ``warnings``.
"""

from __future__ import annotations

import csv
import io
import json
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True, slots=True)
class ImportIssue:
    """One validation problem. ``row`` is 1-based; 0 means the whole file."""

    row: int
    message: str
    field: str | None = None

    def as_dict(self) -> dict[str, Any]:
        return {"row": self.row, "field": self.field, "message": self.message}


@dataclass(slots=True)
class ImportResult:
    """Validated rows plus the errors and warnings found along the way."""

    data: list[dict[str, Any]] = field(default_factory=list)
    errors: list[ImportIssue] = field(default_factory=list)
    warnings: list[ImportIssue] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors


def parse_csv(content: str) -> list[dict[str, str]]:
    """
    Parse CSV text with a header row into a list of dictionaries.

    Blank lines are skipped and surrounding whitespace is stripped from
    headers and values. Short rows simply omit the missing columns.
    """
    text = content.strip()
    if not text:
        raise ValueError("CSV file is empty")
    reader = csv.reader(io.StringIO(text))
    rows = [row for row in reader if any(cell.strip() for cell in row)]
    if not rows:
        raise ValueError("CSV file is empty")
    headers = [cell.strip() for cell in rows[0]]
    parsed: list[dict[str, str]] = []
    for row in rows[1:]:
        parsed.append(
            {header: value.strip() for header, value in zip(headers, row)}
        )
    return parsed


def parse_json(content: str) -> list[dict[str, Any]]:
    """Parse JSON text holding an array of objects or a single object."""
    try:
        payload = json.loads(content)
    except json.JSONDecodeError as exc:
        raise ValueError(f"Invalid JSON: {exc.msg}") from exc
    if isinstance(payload, list):
        return [dict(item) for item in payload if isinstance(item, Mapping)]
    if isinstance(payload, Mapping):
        return [dict(payload)]
    raise ValueError("Invalid JSON: JSON must be an array or object")


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and value.strip() == "")


def validate_rows(
    rows: Sequence[Mapping[str, Any]],
    required_fields: Sequence[str],
    optional_fields: Sequence[str] = (),
) -> ImportResult:
    """Split ``rows`` into valid data, errors and warnings."""
    result = ImportResult()
    known = set(required_fields) | set(optional_fields) | {"id"}
    for index, row in enumerate(rows, start=1):
        valid = True
        for field_name in required_fields:
            if _is_blank(row.get(field_name)):
                result.errors.append(
                    ImportIssue(
                        row=index,
                        field=field_name,
                        message=f'Required field "{field_name}" is missing or empty',
                    )
                )
                valid = False
        for field_name in row:
            if field_name not in known:
                result.warnings.append(
                    ImportIssue(
                        row=index,
                        field=field_name,
                        message=f'Unknown field "{field_name}" will be ignored',
                    )
                )
        if valid:
            result.data.append(dict(row))
    return result


def process_import(
    content: str,
    filename: str,
    required_fields: Sequence[str],
    optional_fields: Sequence[str] = (),
) -> ImportResult:
    """
    Parse file content by extension (``.json`` or CSV) and validate it.

    Parse failures come back as a single row-0 error instead of raising.
    """
    try:
        if filename.lower().endswith(".json"):
            rows = parse_json(content)
        else:
            rows = parse_csv(content)
    except ValueError as exc:
        return ImportResult(errors=[ImportIssue(row=0, message=str(exc))])
    return validate_rows(rows, required_fields, optional_fields)
