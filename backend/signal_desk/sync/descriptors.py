"""Declarative descriptors for every entity type the synchroniser caches."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Callable, Literal, Mapping

from signal_desk.config import AppSettings
from signal_desk.core.errors import ConfigurationError, UpstreamFetchError
from signal_desk.db.base import Base
from signal_desk.models import (
    BalanceSheetStatement,
    CashFlowStatement,
    CompanyProfile,
    EarningsReport,
    GradesConsensus,
    HistoricalPrice,
    IncomeStatement,
    StockScreenerEntry,
)
from signal_desk.providers.fmp import SymbolLocation
from signal_desk.sync import transforms
from signal_desk.sync.transforms import Transform

PROFILE = "profile"
HISTORICAL_PRICES = "historical_prices"
INCOME_STATEMENTS = "income_statements"
BALANCE_SHEET_STATEMENTS = "balance_sheet_statements"
CASH_FLOW_STATEMENTS = "cash_flow_statements"
GRADES_CONSENSUS = "grades_consensus"
EARNINGS = "earnings"
STOCK_SCREENER = "stock_screener"

BY_SYMBOL = "by_symbol"
FULL_COLLECTION = "full_collection"
FetchMode = Literal["by_symbol", "full_collection"]

Extractor = Callable[[Any], list[Any]]
RawProcessor = Callable[[list[Any]], list[Any]]


def extract_items(payload: Any) -> list[Any]:
    """Normalise a payload into a list of raw items; one object becomes a one-item list."""

    if isinstance(payload, dict):
        items: list[Any] = [payload]
    elif isinstance(payload, list):
        items = payload
    else:
        raise UpstreamFetchError(f"Unexpected payload type {type(payload).__name__}")
    if not items:
        raise UpstreamFetchError("No data found for symbol")
    return items


def extract_price_items(payload: Any) -> list[Any]:
    """Accept both the flat end-of-day list and the legacy ``{"symbol", "historical": [...]}`` shape."""

    if isinstance(payload, dict) and "historical" in payload:
        historical = payload["historical"]
        if not isinstance(historical, list):
            raise UpstreamFetchError("Malformed historical price payload")
        symbol = payload.get("symbol")
        payload = [dict(item, symbol=item.get("symbol", symbol)) if isinstance(item, dict) else item for item in historical]
    return extract_items(payload)


def first_item(items: list[Any]) -> list[Any]:
    return items[:1]


@dataclass(frozen=True)
class EntityDescriptor:
    """Everything the synchroniser needs to cache one entity type.

    ``single_record`` entities keep one row per symbol. History entities keep
    one row per (symbol, ``latest_sort_field``) and use that field, not
    ``modified_at``, to decide which row is the latest. ``full_collection``
    entities are fetched without a symbol, one request for the whole set.
    """

    name: str
    model: type[Base]
    path: str
    transform: Transform
    unique_columns: tuple[str, ...]
    ttl: timedelta
    single_record: bool = False
    latest_sort_field: str | None = None
    symbol_location: SymbolLocation = "param"
    params: Mapping[str, Any] = field(default_factory=dict)
    extract: Extractor = extract_items
    process_raw: RawProcessor | None = None
    projection: tuple[str, ...] | None = None
    list_projection: tuple[str, ...] | None = None
    fetch_mode: FetchMode = BY_SYMBOL

    @property
    def full_collection(self) -> bool:
        return self.fetch_mode == FULL_COLLECTION

    @property
    def table(self) -> str:
        return self.model.__tablename__  # type: ignore[attr-defined]

    @property
    def order_field(self) -> str:
        return self.latest_sort_field or "modified_at"

    def columns(self) -> tuple[str, ...]:
        return tuple(column.name for column in self.model.__table__.columns)  # type: ignore[attr-defined]

    def validate(self) -> None:
        """Raise :class:`ConfigurationError` for descriptors the synchroniser cannot serve."""

        known = set(self.columns())
        if not self.unique_columns:
            raise ConfigurationError(f"{self.name}: unique_columns must not be empty")
        if "symbol" not in self.unique_columns:
            raise ConfigurationError(f"{self.name}: unique_columns must include 'symbol'")
        if self.fetch_mode not in (BY_SYMBOL, FULL_COLLECTION):
            raise ConfigurationError(f"{self.name}: unknown fetch_mode {self.fetch_mode!r}")
        if self.full_collection and not self.single_record:
            raise ConfigurationError(f"{self.name}: full-collection entities keep one row per symbol")
        if not self.single_record and not self.latest_sort_field:
            raise ConfigurationError(f"{self.name}: history entities require latest_sort_field")
        if self.ttl < timedelta(0):
            raise ConfigurationError(f"{self.name}: ttl must not be negative")
        named = set(self.unique_columns)
        if self.latest_sort_field:
            named.add(self.latest_sort_field)
        named.update(self.projection or ())
        named.update(self.list_projection or ())
        unknown = sorted(named - known)
        if unknown:
            raise ConfigurationError(f"{self.name}: unknown columns {unknown} on {self.table}")

    def project(self, row: Mapping[str, Any]) -> dict[str, Any]:
        names = self.projection or tuple(name for name in self.columns() if name != "id")
        return {name: row.get(name) for name in names}


def build_descriptors(settings: AppSettings) -> dict[str, EntityDescriptor]:
    """Return the descriptor table keyed by entity name."""

    statements_ttl = timedelta(minutes=settings.statements_ttl_minutes)
    annual = {"period": "annual"}
    table = [
        EntityDescriptor(
            name=PROFILE,
            model=CompanyProfile,
            path="stable/profile",
            transform=transforms.transform_profile,
            unique_columns=("symbol",),
            ttl=timedelta(minutes=settings.profile_ttl_minutes),
            single_record=True,
            process_raw=first_item,
            list_projection=("symbol", "company_name", "exchange", "sector", "industry", "market_cap"),
        ),
        EntityDescriptor(
            name=HISTORICAL_PRICES,
            model=HistoricalPrice,
            path="stable/historical-price-eod/full",
            transform=transforms.transform_price,
            unique_columns=("symbol", "date"),
            ttl=timedelta(minutes=settings.historical_prices_ttl_minutes),
            latest_sort_field="date",
            extract=extract_price_items,
            list_projection=("symbol", "date", "close", "volume"),
        ),
        EntityDescriptor(
            name=INCOME_STATEMENTS,
            model=IncomeStatement,
            path="stable/income-statement",
            transform=transforms.transform_income_statement,
            unique_columns=("symbol", "date"),
            ttl=statements_ttl,
            latest_sort_field="date",
            params=annual,
            list_projection=("symbol", "date", "fiscal_year", "revenue", "net_income", "eps"),
        ),
        EntityDescriptor(
            name=BALANCE_SHEET_STATEMENTS,
            model=BalanceSheetStatement,
            path="stable/balance-sheet-statement",
            transform=transforms.transform_balance_sheet,
            unique_columns=("symbol", "date"),
            ttl=statements_ttl,
            latest_sort_field="date",
            params=annual,
            list_projection=("symbol", "date", "fiscal_year", "total_assets", "total_liabilities", "total_equity"),
        ),
        EntityDescriptor(
            name=CASH_FLOW_STATEMENTS,
            model=CashFlowStatement,
            path="stable/cash-flow-statement",
            transform=transforms.transform_cash_flow,
            unique_columns=("symbol", "date"),
            ttl=statements_ttl,
            latest_sort_field="date",
            params=annual,
            list_projection=("symbol", "date", "fiscal_year", "operating_cash_flow", "free_cash_flow"),
        ),
        EntityDescriptor(
            name=GRADES_CONSENSUS,
            model=GradesConsensus,
            path="stable/grades-consensus",
            transform=transforms.transform_grades_consensus,
            unique_columns=("symbol", "date"),
            ttl=timedelta(minutes=settings.grades_consensus_ttl_minutes),
            latest_sort_field="date",
            process_raw=first_item,
            list_projection=("symbol", "date", "consensus"),
        ),
        EntityDescriptor(
            name=EARNINGS,
            model=EarningsReport,
            path="stable/earnings",
            transform=transforms.transform_earnings,
            unique_columns=("symbol", "date"),
            ttl=timedelta(minutes=settings.earnings_ttl_minutes),
            latest_sort_field="date",
            process_raw=transforms.latest_revision_per_date,
            list_projection=("symbol", "date", "eps_actual", "eps_estimated"),
        ),
        EntityDescriptor(
            name=STOCK_SCREENER,
            model=StockScreenerEntry,
            path="stable/company-screener",
            transform=transforms.transform_screener_entry,
            unique_columns=("symbol",),
            ttl=timedelta(minutes=settings.stock_screener_ttl_minutes),
            single_record=True,
            fetch_mode=FULL_COLLECTION,
            params={"limit": settings.stock_screener_limit, "isActivelyTrading": "true"},
            list_projection=("symbol", "company_name", "price", "market_cap", "sector", "industry"),
        ),
    ]
    return {descriptor.name: descriptor for descriptor in table}


__all__ = [
    "BALANCE_SHEET_STATEMENTS",
    "BY_SYMBOL",
    "CASH_FLOW_STATEMENTS",
    "EARNINGS",
    "EntityDescriptor",
    "FULL_COLLECTION",
    "FetchMode",
    "GRADES_CONSENSUS",
    "HISTORICAL_PRICES",
    "INCOME_STATEMENTS",
    "PROFILE",
    "STOCK_SCREENER",
    "build_descriptors",
    "extract_items",
    "extract_price_items",
    "first_item",
]
