"""Signal endpoints."""

from __future__ import annotations

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from signal_desk.api.dependencies import get_engine
from signal_desk.core.errors import ConfigurationError, StoreError
from signal_desk.schemas import DerivationResponse, SignalSchema
from signal_desk.signals.engine import DerivationEngine

router = APIRouter()


@router.get("/{symbol}", response_model=list[SignalSchema])
async def list_signals(
    symbol: str,
    from_date: Optional[date] = Query(default=None, alias="from"),
    to_date: Optional[date] = Query(default=None, alias="to"),
    engine: DerivationEngine = Depends(get_engine),
) -> list[SignalSchema]:
    try:
        rows = await engine.list_signals(symbol, from_date=from_date, to_date=to_date)
    except ConfigurationError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except StoreError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    return [SignalSchema.model_validate(row) for row in rows]


@router.post("/{symbol}/derive", response_model=DerivationResponse)
async def derive_signals(
    symbol: str,
    as_of: Optional[date] = Query(default=None),
    engine: DerivationEngine = Depends(get_engine),
) -> DerivationResponse:
    """Derive signals from whatever history is already cached; does not refresh upstream data."""

    try:
        result = await engine.derive(symbol, as_of=as_of)
    except ConfigurationError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except StoreError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    return DerivationResponse(
        symbol=result.symbol,
        signal_date=result.signal_date,
        families=result.families,
        signal_codes=[candidate.signal_code for candidate in result.signals],
        inserted=result.inserted,
    )


__all__ = ["list_signals", "derive_signals"]
