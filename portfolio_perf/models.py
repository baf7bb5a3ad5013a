from __future__ import annotations

import datetime as dt
import enum
import re
from dataclasses import dataclass, field
from typing import Mapping

from portfolio_perf.exceptions import InvariantViolation

SCHEMA_VERSION = 2

TX_TYPES = ("buy", "sell", "dividend")
PERIOD_TYPES = ("month", "year")
WINDOW_IDS = ("ytd", "1m", "3m", "6m", "1y", "2y", "5y")

# Data-quality flags carried on AssetDay.flags.
FLAG_MISSING_PRICE = "missing_price"
FLAG_NEW_INVESTMENT = "new_investment"
FLAG_ANOMALOUS_CHANGE = "anomalous_change"
FLAG_COST_BASIS_UNKNOWN = "cost_basis_unknown"
FLAG_MISSING_HOLDING = "missing_holding"

_CCY_RE = re.compile(r"^[A-Z]{3}$")


def validate_currency(code: str) -> str:
    if not isinstance(code, str) or not _CCY_RE.match(code):
        raise InvariantViolation(f"Invalid currency code: {code!r}")
    return code


def make_asset_key(name: str, asset_type: str) -> str:
    name = (name or "").strip()
    asset_type = (asset_type or "").strip()
    if not name or not asset_type:
        raise InvariantViolation(f"Asset key needs a name and a type (got {name!r}, {asset_type!r})")
    return f"{name}_{asset_type}"


def validate_asset_key(key: str) -> str:
    # Names may contain underscores; the type is the last segment.
    name, sep, asset_type = (key or "").rpartition("_")
    if not sep or not name or not asset_type:
        raise InvariantViolation(f"Invalid asset key: {key!r} (expected name_type)")
    return key


@dataclass(frozen=True)
class Holding:
    name: str
    asset_type: str
    units: float
    unit_cost: float
    cost_currency: str
    acquisition_date: dt.date | None = None
    historical_rate: float | None = None
    default_currency: str | None = None
    # Market symbol used for price lookups; falls back to `name`.
    symbol: str | None = None

    def __post_init__(self) -> None:
        validate_currency(self.cost_currency)
        if self.default_currency is not None:
            validate_currency(self.default_currency)
        if float(self.units) < 0:
            raise InvariantViolation(f"Holding {self.asset_key} has negative units: {self.units}")

    @property
    def asset_key(self) -> str:
        return make_asset_key(self.name, self.asset_type)

    @property
    def price_symbol(self) -> str:
        return self.symbol or self.name


@dataclass(frozen=True)
class Transaction:
    """
    One ledger event. For dividends `units * price` is the amount received.
    """

    name: str
    asset_type: str
    tx_type: str
    units: float
    price: float
    currency: str
    date: dt.date
    historical_rate: float | None = None
    default_currency: str | None = None

    def __post_init__(self) -> None:
        if self.tx_type not in TX_TYPES:
            raise InvariantViolation(f"Unknown transaction type: {self.tx_type!r}")
        validate_currency(self.currency)
        if self.default_currency is not None:
            validate_currency(self.default_currency)
        if float(self.units) < 0:
            raise InvariantViolation(f"Transaction units must be non-negative (got {self.units})")

    @property
    def asset_key(self) -> str:
        return make_asset_key(self.name, self.asset_type)

    @property
    def gross(self) -> float:
        return float(self.units) * float(self.price)


@dataclass(frozen=True)
class PriceQuote:
    amount: float
    currency: str

    def __post_init__(self) -> None:
        validate_currency(self.currency)


@dataclass(frozen=True)
class RateTable:
    """
    FX rates relative to `base` (rate(base) == 1).
    """

    base: str = "USD"
    rates: Mapping[str, float] = field(default_factory=dict)

    def __post_init__(self) -> None:
        validate_currency(self.base)
        for code in self.rates:
            validate_currency(code)

    def rate(self, code: str) -> float:
        if code == self.base:
            return 1.0
        r = self.rates.get(code)
        if r is None or float(r) <= 0:
            return 1.0
        return float(r)

    def currencies(self) -> list[str]:
        return sorted({self.base, *self.rates.keys()})


@dataclass(frozen=True)
class AssetDay:
    total_value: float = 0.0
    total_investment: float = 0.0
    total_cash_flow: float = 0.0
    done_profit_and_loss: float = 0.0
    unrealized_profit_and_loss: float = 0.0
    total_roi: float = 0.0
    daily_change_percentage: float = 0.0
    adjusted_daily_change_percentage: float = 0.0
    daily_return: float = 0.0
    units: float = 0.0
    flags: tuple[str, ...] = ()


@dataclass(frozen=True)
class CurrencyDay:
    total_value: float = 0.0
    total_investment: float = 0.0
    total_cash_flow: float = 0.0
    done_profit_and_loss: float = 0.0
    unrealized_profit_and_loss: float = 0.0
    total_roi: float = 0.0
    daily_change_percentage: float = 0.0
    adjusted_daily_change_percentage: float = 0.0
    daily_return: float = 0.0
    asset_performance: dict[str, AssetDay] = field(default_factory=dict)

    def __post_init__(self) -> None:
        for key in self.asset_performance:
            validate_asset_key(key)


@dataclass(frozen=True)
class DailyPerformanceRecord:
    date: dt.date
    per_currency: dict[str, CurrencyDay] = field(default_factory=dict)
    warnings: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        for code in self.per_currency:
            validate_currency(code)


@dataclass(frozen=True)
class AssetPeriod:
    start_factor: float
    end_factor: float
    period_return: float
    start_total_value: float
    end_total_value: float
    total_cash_flow: float
    personal_return: float
    valid_docs_count: int


@dataclass(frozen=True)
class CurrencyPeriod:
    start_factor: float
    end_factor: float
    period_return: float
    start_total_value: float
    end_total_value: float
    start_total_investment: float
    end_total_investment: float
    total_cash_flow: float
    personal_return: float
    valid_docs_count: int
    asset_performance: dict[str, AssetPeriod] = field(default_factory=dict)

    def __post_init__(self) -> None:
        for key in self.asset_performance:
            validate_asset_key(key)


@dataclass(frozen=True)
class ConsolidatedPeriodRecord:
    period_type: str
    period_key: str
    start_date: dt.date
    end_date: dt.date
    docs_count: int
    per_currency: dict[str, CurrencyPeriod] = field(default_factory=dict)
    schema_version: int = SCHEMA_VERSION

    def __post_init__(self) -> None:
        if self.period_type not in PERIOD_TYPES:
            raise InvariantViolation(f"Unknown period type: {self.period_type!r}")
        for code in self.per_currency:
            validate_currency(code)


class WindowState(str, enum.Enum):
    NOT_FOUND = "not_found"
    ACCUMULATING = "accumulating"
    RESOLVED = "resolved"


@dataclass(frozen=True)
class TrailingWindowResult:
    window_id: str
    state: WindowState
    found: bool
    docs_count: int
    time_weighted_return: float | None
    personal_return: float | None
    sufficient_history: bool = False
    reason: str | None = None

    def to_dict(self) -> dict:
        return {
            "windowId": self.window_id,
            "state": self.state.value,
            "found": bool(self.found),
            "docsCount": int(self.docs_count),
            "timeWeightedReturn": self.time_weighted_return,
            "personalReturn": self.personal_return,
            "sufficientHistory": bool(self.sufficient_history),
            "reason": self.reason,
        }
