"""Company profile model (one row per symbol)."""

from __future__ import annotations

from sqlalchemy import Boolean, Numeric, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from signal_desk.db.base import Base, CachedRecordMixin


class CompanyProfile(CachedRecordMixin, Base):
    __tablename__ = "profiles"
    __table_args__ = (UniqueConstraint("symbol"),)

    company_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    currency: Mapped[str | None] = mapped_column(String(8), nullable=True)
    exchange: Mapped[str | None] = mapped_column(String(32), nullable=True)
    sector: Mapped[str | None] = mapped_column(String(128), nullable=True)
    industry: Mapped[str | None] = mapped_column(String(128), nullable=True)
    country: Mapped[str | None] = mapped_column(String(64), nullable=True)
    price: Mapped[float | None] = mapped_column(Numeric(18, 6, asdecimal=False), nullable=True)
    market_cap: Mapped[float | None] = mapped_column(Numeric(24, 2, asdecimal=False), nullable=True)
    beta: Mapped[float | None] = mapped_column(Numeric(10, 4, asdecimal=False), nullable=True)
    is_actively_trading: Mapped[bool] = mapped_column(Boolean, default=True)


__all__ = ["CompanyProfile"]
