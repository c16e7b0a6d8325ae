"""Schemas for batch job reports."""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field


class EntityReportSchema(BaseModel):
    symbol: str
    status: str
    steps: dict[str, str]
    signal_families: dict[str, str] = Field(default_factory=dict)
    signals_inserted: int = 0
    error: Optional[str] = None


class BatchReportSchema(BaseModel):
    message: str
    batch: int
    batch_size: int
    total_available: int
    attempted: int
    succeeded: int
    failed: int
    next_batch: Optional[int] = None
    duration_ms: int
    details: list[EntityReportSchema]

    class Config:
        json_schema_extra = {
            "example": {
                "message": "Batch 1 processed 1 symbols: 1 succeeded, 0 failed",
                "batch": 1,
                "batch_size": 5,
                "total_available": 1,
                "attempted": 1,
                "succeeded": 1,
                "failed": 0,
                "next_batch": None,
                "duration_ms": 842,
                "details": [
                    {
                        "symbol": "AAPL",
                        "status": "Success",
                        "steps": {"profile": "Success", "historical_prices": "Success", "derivation": "Success"},
                        "signal_families": {"rsi": "Success"},
                        "signals_inserted": 3,
                    }
                ],
            }
        }


class HealthResponse(BaseModel):
    status: str
    service: str
    database_url: str
