"""Schema-validating transforms from provider payload items to storage rows.

Each entity type has a pydantic model describing the provider item. A
transform validates one raw item, applies the entity's entry in
:data:`FIELD_DEFAULTS` and returns a :class:`TransformResult` instead of
raising, so the synchroniser can log and skip bad items.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date as date_type, datetime
from typing import Any, Callable, Mapping

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic.alias_generators import to_camel


@dataclass(frozen=True)
class CopyFrom:
    """Default a missing field to the value of another field of the same row."""

    field: str


# Fields omitted by the provider are filled from this table after validation.
# Fields not listed here and without a value are left as null; fields the
# schema marks required fail validation instead.
FIELD_DEFAULTS: dict[str, dict[str, Any]] = {
    "profile": {
        "is_actively_trading": True,
    },
    "historical_prices": {
        "adj_close": CopyFrom("close"),
        "volume": 0.0,
    },
    "income_statements": {
        "period": "FY",
    },
    "balance_sheet_statements": {
        "period": "FY",
    },
    "cash_flow_statements": {
        "period": "FY",
    },
    "grades_consensus": {
        "strong_buy": 0,
        "buy": 0,
        "hold": 0,
        "sell": 0,
        "strong_sell": 0,
    },
    "earnings": {},
    "stock_screener": {
        "is_actively_trading": True,
        "is_etf": False,
        "is_fund": False,
    },
}


@dataclass
class TransformResult:
    ok: bool
    row: dict[str, Any] | None = None
    error: str | None = None

    @classmethod
    def success(cls, row: dict[str, Any]) -> "TransformResult":
        return cls(ok=True, row=row)

    @classmethod
    def failure(cls, error: str) -> "TransformResult":
        return cls(ok=False, error=error)


class ProviderItem(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    symbol: str | None = None


class ProfileItem(ProviderItem):
    company_name: str | None = None
    currency: str | None = None
    exchange: str | None = Field(default=None, validation_alias=AliasChoices("exchange", "exchangeShortName"))
    sector: str | None = None
    industry: str | None = None
    country: str | None = None
    price: float | None = None
    market_cap: float | None = Field(default=None, validation_alias=AliasChoices("marketCap", "mktCap", "market_cap"))
    beta: float | None = None
    is_actively_trading: bool | None = None


class PriceItem(ProviderItem):
    date: date_type
    open: float
    high: float
    low: float
    close: float
    adj_close: float | None = None
    volume: float | None = None
    change: float | None = None
    change_percent: float | None = None
    vwap: float | None = None


class StatementItem(ProviderItem):
    date: date_type
    fiscal_year: int | None = Field(
        default=None, validation_alias=AliasChoices("fiscalYear", "calendarYear", "fiscal_year")
    )
    period: str | None = None
    reported_currency: str | None = None


class IncomeStatementItem(StatementItem):
    revenue: float | None = None
    gross_profit: float | None = None
    operating_income: float | None = None
    net_income: float | None = None
    eps: float | None = None
    eps_diluted: float | None = Field(
        default=None, validation_alias=AliasChoices("epsDiluted", "epsdiluted", "eps_diluted")
    )


class BalanceSheetItem(StatementItem):
    total_assets: float | None = None
    total_liabilities: float | None = None
    total_equity: float | None = Field(
        default=None, validation_alias=AliasChoices("totalEquity", "totalStockholdersEquity", "total_equity")
    )
    cash_and_equivalents: float | None = Field(
        default=None,
        validation_alias=AliasChoices("cashAndCashEquivalents", "cashAndEquivalents", "cash_and_equivalents"),
    )
    total_debt: float | None = None


class CashFlowItem(StatementItem):
    operating_cash_flow: float | None = None
    capital_expenditure: float | None = None
    free_cash_flow: float | None = None
    dividends_paid: float | None = Field(
        default=None,
        validation_alias=AliasChoices("dividendsPaid", "netDividendsPaid", "commonDividendsPaid", "dividends_paid"),
    )


class GradesConsensusItem(ProviderItem):
    strong_buy: int | None = None
    buy: int | None = None
    hold: int | None = None
    sell: int | None = None
    strong_sell: int | None = None
    consensus: str = Field(min_length=1)


class EarningsItem(ProviderItem):
    date: date_type
    eps_actual: float | None = None
    eps_estimated: float | None = None
    revenue_actual: float | None = None
    revenue_estimated: float | None = None
    last_updated: date_type | None = None

    @field_validator("last_updated", mode="before")
    @classmethod
    def _date_part(cls, value: Any) -> Any:
        # lastUpdated sometimes carries a time component
        if isinstance(value, str) and len(value) > 10:
            return value[:10]
        return value


class ScreenerItem(ProviderItem):
    symbol: str = Field(min_length=1)
    company_name: str | None = None
    price: float | None = None
    market_cap: float | None = None
    volume: float | None = None
    beta: float | None = None
    last_annual_dividend: float | None = None
    exchange: str | None = None
    exchange_short_name: str | None = None
    sector: str | None = None
    industry: str | None = None
    country: str | None = None
    is_actively_trading: bool | None = None
    is_etf: bool | None = None
    is_fund: bool | None = None


Transform = Callable[[Mapping[str, Any], datetime], TransformResult]


def _apply_defaults(entity: str, row: dict[str, Any]) -> dict[str, Any]:
    for field, default in FIELD_DEFAULTS.get(entity, {}).items():
        if row.get(field) is not None:
            continue
        row[field] = row.get(default.field) if isinstance(default, CopyFrom) else default
    return row


def _validate(entity: str, schema: type[ProviderItem], raw: Mapping[str, Any]) -> TransformResult:
    if not isinstance(raw, Mapping):
        return TransformResult.failure(f"expected an object, got {type(raw).__name__}")
    try:
        item = schema.model_validate(dict(raw))
    except ValidationError as exc:
        fields = ", ".join(".".join(str(part) for part in error["loc"]) for error in exc.errors())
        return TransformResult.failure(f"invalid {entity} item ({fields})")
    row = _apply_defaults(entity, item.model_dump())
    if isinstance(row.get("symbol"), str):
        row["symbol"] = row["symbol"].strip().upper()
    return TransformResult.success(row)


def transform_profile(raw: Mapping[str, Any], as_of: datetime) -> TransformResult:
    return _validate("profile", ProfileItem, raw)


def transform_price(raw: Mapping[str, Any], as_of: datetime) -> TransformResult:
    return _validate("historical_prices", PriceItem, raw)


def transform_income_statement(raw: Mapping[str, Any], as_of: datetime) -> TransformResult:
    return _validate("income_statements", IncomeStatementItem, raw)


def transform_balance_sheet(raw: Mapping[str, Any], as_of: datetime) -> TransformResult:
    return _validate("balance_sheet_statements", BalanceSheetItem, raw)


def transform_cash_flow(raw: Mapping[str, Any], as_of: datetime) -> TransformResult:
    return _validate("cash_flow_statements", CashFlowItem, raw)


def transform_grades_consensus(raw: Mapping[str, Any], as_of: datetime) -> TransformResult:
    """The provider reports the current consensus only; the row is dated on the fetch day."""

    result = _validate("grades_consensus", GradesConsensusItem, raw)
    if result.ok and result.row is not None:
        result.row["date"] = as_of.date()
    return result


def transform_earnings(raw: Mapping[str, Any], as_of: datetime) -> TransformResult:
    return _validate("earnings", EarningsItem, raw)


def transform_screener_entry(raw: Mapping[str, Any], as_of: datetime) -> TransformResult:
    return _validate("stock_screener", ScreenerItem, raw)


def latest_revision_per_date(items: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """Keep one earnings item per (symbol, date), preferring the newest ``lastUpdated``.

    Items without a usable date or symbol pass through untouched so the
    transform step rejects and logs them.
    """

    passthrough: list[dict[str, Any]] = []
    chosen: dict[tuple[str, str], dict[str, Any]] = {}
    for item in items:
        symbol = item.get("symbol") if isinstance(item, Mapping) else None
        day = item.get("date") if isinstance(item, Mapping) else None
        if not isinstance(symbol, str) or not isinstance(day, str):
            passthrough.append(item)
            continue
        key = (symbol.strip().upper(), day)
        existing = chosen.get(key)
        if existing is None or _revision(item) >= _revision(existing):
            chosen[key] = item
    return passthrough + list(chosen.values())


def _revision(item: Mapping[str, Any]) -> str:
    value = item.get("lastUpdated")
    return value if isinstance(value, str) else ""


__all__ = [
    "CopyFrom",
    "FIELD_DEFAULTS",
    "Transform",
    "TransformResult",
    "latest_revision_per_date",
    "transform_balance_sheet",
    "transform_cash_flow",
    "transform_earnings",
    "transform_grades_consensus",
    "transform_income_statement",
    "transform_price",
    "transform_profile",
    "transform_screener_entry",
]
