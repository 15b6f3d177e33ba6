"""
CSV and JSON export of collection records.

CSV output takes its header from the first record's keys (or from an
explicit field list), quotes a value only when it contains a comma, a quote
or a line break, and joins rows with ``\\n`` without a trailing newline.
JSON output is a 2-space indented array.
"""

from __future__ import annotations

import json
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from typing import Any

from .exceptions import UnsupportedFormatError
from .records import item_field


class ExportFormat(str, Enum):
    """Supported export formats."""

    CSV = "csv"
    JSON = "json"

    @property
    def media_type(self) -> str:
        if self is ExportFormat.CSV:
            return "text/csv; charset=utf-8"
        return "application/json; charset=utf-8"


def parse_format(value: ExportFormat | str) -> ExportFormat:
    """Normalize a format name into :class:`ExportFormat`."""
    if isinstance(value, ExportFormat):
        return value
    try:
        return ExportFormat(str(value).strip().lower())
    except ValueError as exc:
        valid = ", ".join(item.value for item in ExportFormat)
        raise UnsupportedFormatError(
            f"Unsupported export format {value!r}. Supported values: {valid}."
        ) from exc


@dataclass(frozen=True, slots=True)
class ExportBlob:
    """Serialized export payload."""

    content: bytes
    media_type: str
    filename: str

    def text(self) -> str:
        return self.content.decode("utf-8")


def _json_default(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, (set, frozenset, tuple)):
        return list(value)
    return str(value)


def _record_keys(item: Any) -> list[str]:
    if isinstance(item, Mapping):
        return [str(key) for key in item.keys()]
    return [key for key in vars(item) if not key.startswith("_")]


def _csv_cell(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, (Mapping, list, tuple)):
        return json.dumps(value, default=_json_default)
    return str(value)


def _quote(text: str) -> str:
    if any(char in text for char in (",", '"', "\n")):
        return '"' + text.replace('"', '""') + '"'
    return text


def export_csv(items: Sequence[Any], fields: Sequence[str] | None = None) -> str:
    """Serialize ``items`` to CSV text. Empty input gives an empty string."""
    if not items:
        return ""
    columns = list(fields) if fields else _record_keys(items[0])
    lines = [",".join(_quote(str(column)) for column in columns)]
    for item in items:
        lines.append(",".join(_quote(_csv_cell(item_field(item, column))) for column in columns))
    return "\n".join(lines)


def _project(item: Any, fields: Sequence[str]) -> dict[str, Any]:
    if isinstance(item, Mapping):
        return {field_name: item[field_name] for field_name in fields if field_name in item}
    return {field_name: getattr(item, field_name) for field_name in fields if hasattr(item, field_name)}


def export_json(items: Sequence[Any], fields: Sequence[str] | None = None) -> str:
    """Serialize ``items`` to an indented JSON array, keeping only ``fields`` when given."""
    if fields:
        payload = [_project(item, fields) for item in items]
    else:
        payload = [dict(item) if isinstance(item, Mapping) else vars(item) for item in items]
    return json.dumps(payload, indent=2, default=_json_default)


def export_items(
    items: Sequence[Any],
    fmt: ExportFormat | str,
    *,
    fields: Sequence[str] | None = None,
    filename: str = "export",
) -> ExportBlob:
    """Serialize ``items`` and wrap the result as an :class:`ExportBlob`."""
    resolved = parse_format(fmt)
    if resolved is ExportFormat.CSV:
        text = export_csv(items, fields)
    else:
        text = export_json(items, fields)
    suffix = f".{resolved.value}"
    final_name = filename if filename.endswith(suffix) else f"{filename}{suffix}"
    return ExportBlob(content=text.encode("utf-8"), media_type=resolved.media_type, filename=final_name)
