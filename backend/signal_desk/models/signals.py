"""Derived signal model."""

from __future__ import annotations

from datetime import date, datetime

from sqlalchemy import JSON, Date, DateTime, Float, Index, String, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column

from signal_desk.db.base import Base


class Signal(Base):
    """A labelled observation about a symbol; written once and never mutated."""

    __tablename__ = "signals"
    __table_args__ = (
        UniqueConstraint("symbol", "signal_date", "signal_code"),
        Index("ix_signals_symbol_date", "symbol", "signal_date"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    symbol: Mapped[str] = mapped_column(String(20))
    signal_date: Mapped[date] = mapped_column(Date)
    signal_code: Mapped[str] = mapped_column(String(64))
    signal_category: Mapped[str] = mapped_column(String(32))
    signal_type: Mapped[str] = mapped_column(String(16))
    details: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    confidence: Mapped[float | None] = mapped_column(Float, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


__all__ = ["Signal"]
