from portfolio_perf.aggregate import aggregate
from portfolio_perf.consolidate import consolidate, consolidate_months_to_year
from portfolio_perf.daily import compute_day
from portfolio_perf.exceptions import ConfigError, InvariantViolation, PerformanceError
from portfolio_perf.fx import convert
from portfolio_perf.models import (
    AssetDay,
    ConsolidatedPeriodRecord,
    CurrencyDay,
    DailyPerformanceRecord,
    Holding,
    PriceQuote,
    RateTable,
    TrailingWindowResult,
    Transaction,
)
from portfolio_perf.trailing import resolve_windows

__all__ = [
    "AssetDay",
    "ConfigError",
    "ConsolidatedPeriodRecord",
    "CurrencyDay",
    "DailyPerformanceRecord",
    "Holding",
    "InvariantViolation",
    "PerformanceError",
    "PriceQuote",
    "RateTable",
    "TrailingWindowResult",
    "Transaction",
    "aggregate",
    "compute_day",
    "consolidate",
    "consolidate_months_to_year",
    "convert",
    "resolve_windows",
]
