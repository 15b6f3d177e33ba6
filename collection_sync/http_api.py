"""
FastAPI application exposing collections over HTTP.

Reads go through the hub's cache-first loader; writes go through the
collection service and invalidate the cached snapshot so the next read sees
them. Run it with::

    CSYNC_BACKEND=memory collection-sync-api --port 8000

or mount ``create_app(hub)`` in an existing ASGI server.
"""

from __future__ import annotations

import argparse
import logging
import os
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

import uvicorn
from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.responses import JSONResponse, PlainTextResponse, Response

from .config import SyncConfig
from .exceptions import CollectionError, ErrorCode, UnsupportedFormatError, normalize_error
from .hub import CollectionHub
from .records import FilterCriteria, SortCriteria, SortDirection

_LOGGER = logging.getLogger(__name__)

_STATUS_BY_KIND = {
    ErrorCode.NOT_FOUND: 404,
    ErrorCode.PERMISSION_DENIED: 403,
    ErrorCode.VALIDATION_ERROR: 422,
    ErrorCode.CONFLICT: 409,
    ErrorCode.TIMEOUT: 504,
    ErrorCode.NETWORK_ERROR: 503,
}


def status_for(error: CollectionError) -> int:
    """Return the HTTP status code for a normalized error."""
    return _STATUS_BY_KIND.get(error.kind, 500)


def _get_env(name: str, default: str) -> str:
    value = os.getenv(name, "").strip()
    return value if value else default


def _parse_int(name: str, default: int) -> int:
    raw = _get_env(name, str(default))
    try:
        return int(raw)
    except ValueError as exc:
        raise RuntimeError(f"Environment variable {name} must be an integer.") from exc


def _split_fields(raw: str | None) -> list[str]:
    if not raw:
        return []
    return [item.strip() for item in raw.split(",") if item.strip()]


def _parse_filters(raw_filters: list[str]) -> list[FilterCriteria]:
    filters: list[FilterCriteria] = []
    for entry in raw_filters:
        parts = entry.split(":", 2)
        if len(parts) != 3 or not parts[0]:
            raise HTTPException(
                status_code=422,
                detail=f"Filter must use field:operator:value format (invalid entry: {entry!r}).",
            )
        try:
            filters.append(FilterCriteria(parts[0], parts[1], parts[2]))
        except ValueError as exc:
            raise HTTPException(status_code=422, detail=str(exc)) from exc
    return filters


def _parse_sort(field_name: str | None, direction: str) -> SortCriteria | None:
    if not field_name:
        return None
    try:
        return SortCriteria(field_name, SortDirection(direction.lower()))
    except ValueError as exc:
        raise HTTPException(status_code=422, detail="direction must be asc or desc.") from exc


def create_app(hub: CollectionHub) -> FastAPI:
    """
    Build a FastAPI application bound to ``hub``.

    The hub is closed when the application shuts down.
    """

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        try:
            yield
        finally:
            hub.close()

    app = FastAPI(title="collection-sync", version="0.1.0", lifespan=lifespan)
    app.state.hub = hub

    @app.exception_handler(CollectionError)
    async def collection_error_handler(_: Request, exc: CollectionError) -> JSONResponse:
        status = status_for(exc)
        if status >= 500:
            _LOGGER.warning("Request failed with %s: %s", exc.code.value, exc.message)
        return JSONResponse(
            status_code=status,
            content={"detail": exc.user_message(), "code": exc.code.value},
        )

    @app.get("/healthz")
    def healthz() -> dict[str, Any]:
        return hub.health()

    @app.get("/stats")
    def stats() -> dict[str, Any]:
        return hub.stats()

    @app.get("/metrics", response_class=PlainTextResponse)
    def metrics() -> str:
        return hub.metrics_text()

    @app.get("/collections/{key}")
    async def list_items(
        key: str,
        q: str | None = None,
        fields: str | None = None,
        filter: list[str] = Query(default=[]),  # noqa: A002 - public query name
        sort: str | None = None,
        direction: str = "asc",
    ) -> dict[str, Any]:
        criteria = _parse_filters(filter)
        sort_criteria = _parse_sort(sort, direction)
        try:
            items = await hub.load(key)
        except Exception as exc:
            raise normalize_error(exc, ErrorCode.FETCH_FAILED, "Failed to fetch collection data") from exc
        result = hub.engine(key).search_filter_sort(
            items, q, _split_fields(fields), criteria, sort_criteria
        )
        return {"collection": key, "count": len(result), "items": list(result)}

    @app.post("/collections/{key}/items", status_code=201)
    async def create_item(key: str, payload: dict[str, Any]) -> dict[str, Any]:
        created = await hub.service(key).create_item(payload)
        hub.invalidate(key)
        return created

    @app.get("/collections/{key}/items/{item_id}")
    async def get_item(key: str, item_id: str) -> dict[str, Any]:
        return await hub.service(key).get_item_by_id(item_id)

    @app.patch("/collections/{key}/items/{item_id}")
    async def update_item(key: str, item_id: str, payload: dict[str, Any]) -> dict[str, Any]:
        updated = await hub.service(key).update_item(item_id, payload)
        hub.invalidate(key)
        return updated

    @app.delete("/collections/{key}/items/{item_id}")
    async def delete_item(key: str, item_id: str) -> dict[str, Any]:
        await hub.service(key).delete_item(item_id)
        hub.invalidate(key)
        return {"deleted": item_id}

    @app.post("/collections/{key}/bulk-delete")
    async def bulk_delete(key: str, payload: dict[str, Any]) -> dict[str, Any]:
        ids = payload.get("ids")
        if not isinstance(ids, list):
            raise HTTPException(status_code=400, detail="Payload must include list field 'ids'.")
        await hub.service(key).bulk_delete_items([str(item) for item in ids])
        hub.invalidate(key)
        return {"deleted": len(ids)}

    @app.get("/collections/{key}/export")
    async def export(key: str, format: str = "csv", fields: str | None = None) -> Response:  # noqa: A002
        try:
            blob = await hub.service(key).export_items(format, fields=_split_fields(fields) or None)
        except UnsupportedFormatError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        return Response(
            content=blob.content,
            media_type=blob.media_type,
            headers={"Content-Disposition": f'attachment; filename="{blob.filename}"'},
        )

    @app.post("/collections/{key}/refresh")
    async def refresh(key: str) -> dict[str, Any]:
        try:
            items = await hub.load(key, force=True)
        except Exception as exc:
            raise normalize_error(exc, ErrorCode.FETCH_FAILED, "Failed to fetch collection data") from exc
        return {"collection": key, "count": len(items)}

    return app


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Serve collections over HTTP.")
    parser.add_argument("--host", default=_get_env("CSYNC_API_HOST", "0.0.0.0"))
    parser.add_argument("--port", type=int, default=_parse_int("CSYNC_API_PORT", 8000))
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=_get_env("CSYNC_LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    config = SyncConfig.from_env()
    _LOGGER.info("Starting collection API on %s:%s (backend=%s)", args.host, args.port, config.backend)
    app = create_app(CollectionHub(config))
    uvicorn.run(app, host=args.host, port=args.port)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
