"""Read cached entities, refreshing them through the synchroniser when stale.

Listing a per-symbol entity only reads the cache; listing a full-collection
entity refreshes the collection first.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query, status

from signal_desk.api.dependencies import get_synchronizer
from signal_desk.core.errors import ConfigurationError, StoreError, UpstreamFetchError
from signal_desk.sync.synchronizer import Synchronizer

router = APIRouter()


def _http_error(exc: Exception) -> HTTPException:
    if isinstance(exc, ConfigurationError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    if isinstance(exc, UpstreamFetchError):
        return HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc))
    return HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc))


@router.get("/{entity}")
async def list_cached(
    entity: str,
    limit: int = Query(default=1000, ge=1, le=5000),
    synchronizer: Synchronizer = Depends(get_synchronizer),
) -> list[dict[str, Any]]:
    try:
        if synchronizer.descriptor(entity).full_collection:
            return await synchronizer.ensure_collection(entity, limit=limit)
        return await synchronizer.list_cached(entity, limit=limit)
    except (ConfigurationError, UpstreamFetchError, StoreError) as exc:
        raise _http_error(exc) from exc


@router.get("/{entity}/{symbol}")
async def read_entity(
    entity: str,
    symbol: str,
    limit: int | None = Query(default=None, ge=1),
    synchronizer: Synchronizer = Depends(get_synchronizer),
) -> Any:
    try:
        if synchronizer.descriptor(entity).single_record:
            return await synchronizer.ensure_fresh(entity, symbol)
        return await synchronizer.history(entity, symbol, limit=limit)
    except (ConfigurationError, UpstreamFetchError, StoreError) as exc:
        raise _http_error(exc) from exc


__all__ = ["list_cached", "read_entity"]
