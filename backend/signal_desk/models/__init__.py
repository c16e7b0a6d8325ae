"""Database model exports."""

from .analyst import EarningsReport, GradesConsensus
from .prices import HistoricalPrice
from .profile import CompanyProfile
from .screener import StockScreenerEntry
from .signals import Signal
from .statements import BalanceSheetStatement, CashFlowStatement, IncomeStatement

__all__ = [
    "CompanyProfile",
    "HistoricalPrice",
    "IncomeStatement",
    "BalanceSheetStatement",
    "CashFlowStatement",
    "GradesConsensus",
    "EarningsReport",
    "StockScreenerEntry",
    "Signal",
]
