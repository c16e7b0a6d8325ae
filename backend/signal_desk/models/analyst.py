"""Analyst grade consensus and earnings report models."""

from __future__ import annotations

from datetime import date

from sqlalchemy import Date, Integer, Numeric, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from signal_desk.db.base import Base, DatedRecordMixin


class GradesConsensus(DatedRecordMixin, Base):
    """Daily snapshot of the analyst grade distribution for a symbol."""

    __tablename__ = "grades_consensus"
    __table_args__ = (UniqueConstraint("symbol", "date"),)

    strong_buy: Mapped[int] = mapped_column(Integer, default=0)
    buy: Mapped[int] = mapped_column(Integer, default=0)
    hold: Mapped[int] = mapped_column(Integer, default=0)
    sell: Mapped[int] = mapped_column(Integer, default=0)
    strong_sell: Mapped[int] = mapped_column(Integer, default=0)
    consensus: Mapped[str] = mapped_column(String(32))


class EarningsReport(DatedRecordMixin, Base):
    """Reported (or scheduled) earnings; actuals stay null until the report lands."""

    __tablename__ = "earnings"
    __table_args__ = (UniqueConstraint("symbol", "date"),)

    eps_actual: Mapped[float | None] = mapped_column(Numeric(18, 6, asdecimal=False), nullable=True)
    eps_estimated: Mapped[float | None] = mapped_column(Numeric(18, 6, asdecimal=False), nullable=True)
    revenue_actual: Mapped[float | None] = mapped_column(Numeric(24, 2, asdecimal=False), nullable=True)
    revenue_estimated: Mapped[float | None] = mapped_column(Numeric(24, 2, asdecimal=False), nullable=True)
    last_updated: Mapped[date | None] = mapped_column(Date, nullable=True)


__all__ = ["GradesConsensus", "EarningsReport"]
