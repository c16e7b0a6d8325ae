"""Stock screener snapshot (one row per listed symbol, refreshed as a whole)."""

from __future__ import annotations

from sqlalchemy import Boolean, Numeric, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from signal_desk.db.base import Base, CachedRecordMixin


class StockScreenerEntry(CachedRecordMixin, Base):
    __tablename__ = "stock_screener"
    __table_args__ = (UniqueConstraint("symbol"),)

    company_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    price: Mapped[float | None] = mapped_column(Numeric(18, 6, asdecimal=False), nullable=True)
    market_cap: Mapped[float | None] = mapped_column(Numeric(24, 2, asdecimal=False), nullable=True)
    volume: Mapped[float | None] = mapped_column(Numeric(24, 2, asdecimal=False), nullable=True)
    beta: Mapped[float | None] = mapped_column(Numeric(10, 4, asdecimal=False), nullable=True)
    last_annual_dividend: Mapped[float | None] = mapped_column(Numeric(18, 6, asdecimal=False), nullable=True)
    exchange: Mapped[str | None] = mapped_column(String(64), nullable=True)
    exchange_short_name: Mapped[str | None] = mapped_column(String(32), nullable=True)
    sector: Mapped[str | None] = mapped_column(String(128), nullable=True)
    industry: Mapped[str | None] = mapped_column(String(128), nullable=True)
    country: Mapped[str | None] = mapped_column(String(64), nullable=True)
    is_actively_trading: Mapped[bool] = mapped_column(Boolean, default=True)
    is_etf: Mapped[bool] = mapped_column(Boolean, default=False)
    is_fund: Mapped[bool] = mapped_column(Boolean, default=False)


__all__ = ["StockScreenerEntry"]
