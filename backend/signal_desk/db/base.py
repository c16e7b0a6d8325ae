"""SQLAlchemy declarative registry and shared column mixins."""

from __future__ import annotations

from datetime import date, datetime

from sqlalchemy import Date, DateTime, MetaData, String
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

NAMING_CONVENTION = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_N_name)s",
    "pk": "pk_%(table_name)s",
}


class Base(DeclarativeBase):
    """Declarative base for SQLAlchemy models."""

    metadata = MetaData(naming_convention=NAMING_CONVENTION)


class CachedRecordMixin:
    """Columns shared by every table the synchroniser refreshes.

    ``modified_at`` is stamped at upsert time and only drives freshness
    decisions; the business date of a row lives in ``date``.
    """

    id: Mapped[int] = mapped_column(primary_key=True)
    symbol: Mapped[str] = mapped_column(String(20), index=True)
    modified_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))


class DatedRecordMixin(CachedRecordMixin):
    date: Mapped[date] = mapped_column(Date)


__all__ = ["Base", "CachedRecordMixin", "DatedRecordMixin", "NAMING_CONVENTION"]
