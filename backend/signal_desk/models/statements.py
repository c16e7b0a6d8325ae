"""Annual financial statement models."""

from __future__ import annotations

from sqlalchemy import Integer, Numeric, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from signal_desk.db.base import Base, DatedRecordMixin


class StatementMixin(DatedRecordMixin):
    fiscal_year: Mapped[int | None] = mapped_column(Integer, nullable=True)
    period: Mapped[str | None] = mapped_column(String(8), nullable=True)
    reported_currency: Mapped[str | None] = mapped_column(String(8), nullable=True)


def _amount() -> Mapped[float | None]:
    return mapped_column(Numeric(24, 4, asdecimal=False), nullable=True)


class IncomeStatement(StatementMixin, Base):
    __tablename__ = "income_statements"
    __table_args__ = (UniqueConstraint("symbol", "date"),)

    revenue: Mapped[float | None] = _amount()
    gross_profit: Mapped[float | None] = _amount()
    operating_income: Mapped[float | None] = _amount()
    net_income: Mapped[float | None] = _amount()
    eps: Mapped[float | None] = _amount()
    eps_diluted: Mapped[float | None] = _amount()


class BalanceSheetStatement(StatementMixin, Base):
    __tablename__ = "balance_sheet_statements"
    __table_args__ = (UniqueConstraint("symbol", "date"),)

    total_assets: Mapped[float | None] = _amount()
    total_liabilities: Mapped[float | None] = _amount()
    total_equity: Mapped[float | None] = _amount()
    cash_and_equivalents: Mapped[float | None] = _amount()
    total_debt: Mapped[float | None] = _amount()


class CashFlowStatement(StatementMixin, Base):
    __tablename__ = "cash_flow_statements"
    __table_args__ = (UniqueConstraint("symbol", "date"),)

    operating_cash_flow: Mapped[float | None] = _amount()
    capital_expenditure: Mapped[float | None] = _amount()
    free_cash_flow: Mapped[float | None] = _amount()
    dividends_paid: Mapped[float | None] = _amount()


__all__ = ["IncomeStatement", "BalanceSheetStatement", "CashFlowStatement"]
