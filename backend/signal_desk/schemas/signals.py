"""Schemas for derived signals."""

from __future__ import annotations

from datetime import date, datetime
from typing import Any, Optional

from pydantic import BaseModel


class SignalSchema(BaseModel):
    id: int
    symbol: str
    signal_date: date
    signal_code: str
    signal_category: str
    signal_type: str
    details: Optional[dict[str, Any]] = None
    confidence: Optional[float] = None
    created_at: Optional[datetime] = None

    class Config:
        json_schema_extra = {
            "example": {
                "id": 1,
                "symbol": "AAPL",
                "signal_date": "2024-09-10",
                "signal_code": "RSI_ENTERED_OVERBOUGHT",
                "signal_category": "technical",
                "signal_type": "event",
                "details": {"rsi": 72.4, "prev_rsi": 65.1, "close": 221.3, "threshold": 70},
            }
        }


class DerivationResponse(BaseModel):
    symbol: str
    signal_date: Optional[date] = None
    families: dict[str, str]
    signal_codes: list[str]
    inserted: int
