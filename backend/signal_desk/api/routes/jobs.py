"""Batch trigger endpoint."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Query, status

from signal_desk.api.dependencies import get_orchestrator, require_cron_secret
from signal_desk.core.errors import ConfigurationError, StoreError
from signal_desk.schemas import BatchReportSchema
from signal_desk.services.orchestrator import BatchOrchestrator

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/batch", response_model=BatchReportSchema, dependencies=[Depends(require_cron_secret)])
async def run_batch(
    batch: int = Query(default=1, ge=1),
    size: int | None = Query(default=None, ge=1, le=100),
    orchestrator: BatchOrchestrator = Depends(get_orchestrator),
) -> BatchReportSchema:
    try:
        report = await orchestrator.run(batch=batch, size=size)
    except ConfigurationError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except StoreError as exc:
        logger.exception("Batch %s could not enumerate symbols", batch)
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    return BatchReportSchema.model_validate(report.as_dict())


__all__ = ["run_batch"]
