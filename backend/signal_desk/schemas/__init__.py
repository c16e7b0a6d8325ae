"""Pydantic schema exports."""

from .jobs import BatchReportSchema, EntityReportSchema, HealthResponse
from .signals import DerivationResponse, SignalSchema

__all__ = [
    "BatchReportSchema",
    "DerivationResponse",
    "EntityReportSchema",
    "HealthResponse",
    "SignalSchema",
]
