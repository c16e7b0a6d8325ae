"""Daily price history model."""

from __future__ import annotations

from sqlalchemy import Index, Numeric, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from signal_desk.db.base import Base, DatedRecordMixin


class HistoricalPrice(DatedRecordMixin, Base):
    __tablename__ = "historical_prices"
    __table_args__ = (
        UniqueConstraint("symbol", "date"),
        Index("ix_historical_prices_symbol_date", "symbol", "date"),
    )

    open: Mapped[float] = mapped_column(Numeric(18, 6, asdecimal=False))
    high: Mapped[float] = mapped_column(Numeric(18, 6, asdecimal=False))
    low: Mapped[float] = mapped_column(Numeric(18, 6, asdecimal=False))
    close: Mapped[float] = mapped_column(Numeric(18, 6, asdecimal=False))
    adj_close: Mapped[float] = mapped_column(Numeric(18, 6, asdecimal=False))
    volume: Mapped[float] = mapped_column(Numeric(20, 2, asdecimal=False))
    change: Mapped[float | None] = mapped_column(Numeric(18, 6, asdecimal=False), nullable=True)
    change_percent: Mapped[float | None] = mapped_column(Numeric(12, 6, asdecimal=False), nullable=True)
    vwap: Mapped[float | None] = mapped_column(Numeric(18, 6, asdecimal=False), nullable=True)


__all__ = ["HistoricalPrice"]
