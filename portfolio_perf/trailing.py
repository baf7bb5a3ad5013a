from __future__ import annotations

import datetime as dt
import math
from dataclasses import dataclass, field
from typing import Iterable, Mapping

from portfolio_perf.consolidate import period_bounds
from portfolio_perf.exceptions import InvariantViolation
from portfolio_perf.models import (
    WINDOW_IDS,
    ConsolidatedPeriodRecord,
    DailyPerformanceRecord,
    TrailingWindowResult,
    WindowState,
)
from portfolio_perf.returns import chain_factors, period_factor, personal_return_pct
from portfolio_perf.util import add_months

WINDOW_MONTHS = {"1m": 1, "3m": 3, "6m": 6, "1y": 12, "2y": 24, "5y": 60}

# Roughly one document per trading day.
DEFAULT_MIN_DOCS = {"ytd": 1, "1m": 21, "3m": 63, "6m": 126, "1y": 252, "2y": 504, "5y": 1260}

_KIND_RANK = {"year": 0, "month": 1, "day": 2}


def window_boundary(window_id: str, now: dt.date) -> dt.date:
    if window_id == "ytd":
        return dt.date(now.year, 1, 1)
    months = WINDOW_MONTHS.get(window_id)
    if months is None:
        raise InvariantViolation(f"Unknown window: {window_id!r}")
    return add_months(now, -months)


def window_boundaries(now: dt.date) -> dict[str, dt.date]:
    return {w: window_boundary(w, now) for w in WINDOW_IDS}


def required_docs(window_id: str, now: dt.date, min_docs: Mapping[str, int] | None = None) -> int:
    table = {**DEFAULT_MIN_DOCS, **(min_docs or {})}
    if window_id not in table:
        raise InvariantViolation(f"Unknown window: {window_id!r}")
    if window_id == "ytd":
        return max(math.ceil(now.month * 4 / 12), int(table["ytd"]))
    return int(table[window_id])


@dataclass(frozen=True)
class _Unit:
    kind: str
    start: dt.date  # first day with data
    end: dt.date  # last day with data
    cover_end: dt.date  # last calendar day the unit speaks for
    factor: float
    cash_flow: float
    docs: int
    start_value: float
    end_value: float


def _period_units(
    records: Iterable[ConsolidatedPeriodRecord], currency: str, asset_key: str | None
) -> list[_Unit]:
    out: list[_Unit] = []
    for rec in records:
        cp = rec.per_currency.get(currency)
        if cp is None:
            continue
        part = cp if asset_key is None else cp.asset_performance.get(asset_key)
        if part is None:
            continue
        _cal_start, cal_end = period_bounds(rec.period_type, rec.period_key)
        out.append(
            _Unit(
                kind=rec.period_type,
                start=rec.start_date,
                end=rec.end_date,
                cover_end=cal_end,
                factor=period_factor(part.end_factor, part.start_factor),
                cash_flow=part.total_cash_flow,
                docs=part.valid_docs_count,
                start_value=part.start_total_value,
                end_value=part.end_total_value,
            )
        )
    return out


def _day_units(records: Iterable[DailyPerformanceRecord], currency: str, asset_key: str | None) -> list[_Unit]:
    out: list[_Unit] = []
    for rec in records:
        cd = rec.per_currency.get(currency)
        if cd is None:
            continue
        part = cd if asset_key is None else cd.asset_performance.get(asset_key)
        if part is None:
            continue
        out.append(
            _Unit(
                kind="day",
                start=rec.date,
                end=rec.date,
                cover_end=rec.date,
                factor=1.0 + part.adjusted_daily_change_percentage / 100.0,
                cash_flow=part.total_cash_flow,
                docs=1,
                start_value=part.total_value,
                end_value=part.total_value,
            )
        )
    return out


@dataclass
class _WindowAccumulator:
    window_id: str
    boundary: dt.date
    now: dt.date
    state: WindowState = WindowState.NOT_FOUND
    factor: float = 1.0
    cash_flow: float = 0.0
    docs: int = 0
    covered_until: dt.date | None = None
    included: list[_Unit] = field(default_factory=list)
    straddlers: list[_Unit] = field(default_factory=list)

    def offer(self, u: _Unit) -> None:
        if u.end < self.boundary or u.start > self.now:
            return
        if self.covered_until is not None and u.start <= self.covered_until:
            return
        if u.start >= self.boundary and u.end <= self.now:
            self.factor *= u.factor
            self.cash_flow += u.cash_flow
            self.docs += u.docs
            self.covered_until = u.cover_end
            self.included.append(u)
            self.state = WindowState.ACCUMULATING
        else:
            self.straddlers.append(u)

    def _unresolved(self) -> _Unit | None:
        for s in self.straddlers:
            if not any(s.start <= u.start and u.end <= s.end for u in self.included):
                return s
        return None

    def result(self, required: int) -> TrailingWindowResult:
        gap = self._unresolved()
        if gap is not None:
            return TrailingWindowResult(
                window_id=self.window_id,
                state=WindowState.NOT_FOUND,
                found=False,
                docs_count=0,
                time_weighted_return=None,
                personal_return=None,
                reason=(
                    f"{gap.kind} {gap.start.isoformat()}..{gap.end.isoformat()} straddles the window start "
                    f"{self.boundary.isoformat()} and no finer records cover it"
                ),
            )
        if not self.included:
            return TrailingWindowResult(
                window_id=self.window_id,
                state=WindowState.NOT_FOUND,
                found=False,
                docs_count=0,
                time_weighted_return=None,
                personal_return=None,
                reason="no records in window",
            )
        self.state = WindowState.RESOLVED
        return TrailingWindowResult(
            window_id=self.window_id,
            state=self.state,
            found=True,
            docs_count=self.docs,
            time_weighted_return=(self.factor - 1.0) * 100.0,
            personal_return=personal_return_pct(
                start_value=self.included[0].start_value,
                end_value=self.included[-1].end_value,
                total_cash_flow=self.cash_flow,
            ),
            sufficient_history=self.docs >= required,
        )


def resolve_windows(
    consolidated_years: Iterable[ConsolidatedPeriodRecord],
    consolidated_months: Iterable[ConsolidatedPeriodRecord],
    open_daily_records: Iterable[DailyPerformanceRecord],
    now: dt.date,
    *,
    currency: str = "USD",
    asset_key: str | None = None,
    min_docs: Mapping[str, int] | None = None,
) -> dict[str, TrailingWindowResult]:
    """
    Trailing returns (YTD, 1M, 3M, 6M, 1Y, 2Y, 5Y) as of `now`.

    Years, months and days are walked chronologically, coarser units first. A
    unit counts toward a window only when all of its data lies in
    [boundary, now] and it does not overlap a unit already counted. A
    consolidated period that straddles the boundary is never prorated: finer
    records inside it must stand in for it, otherwise the window is NOT_FOUND.
    """
    units = (
        _period_units(consolidated_years, currency, asset_key)
        + _period_units(consolidated_months, currency, asset_key)
        + _day_units(open_daily_records, currency, asset_key)
    )
    units.sort(key=lambda u: (u.start, -u.end.toordinal(), _KIND_RANK[u.kind]))

    windows = [_WindowAccumulator(window_id=w, boundary=b, now=now) for w, b in window_boundaries(now).items()]
    for u in units:
        for acc in windows:
            acc.offer(u)
    return {acc.window_id: acc.result(required_docs(acc.window_id, now, min_docs)) for acc in windows}


@dataclass(frozen=True)
class YearPerformance:
    year: int
    months: dict[int, float]  # month number -> return %
    personal_months: dict[int, float]
    total: float
    personal_total: float

    def to_dict(self) -> dict:
        # Every month is present; months without data read 0.
        return {
            "months": {str(m): float(self.months.get(m, 0.0)) for m in range(1, 13)},
            "personalMonths": {str(m): float(self.personal_months.get(m, 0.0)) for m in range(1, 13)},
            "total": float(self.total),
            "personalTotal": float(self.personal_total),
        }


@dataclass(frozen=True)
class ValuePoint:
    date: dt.date
    value: float


@dataclass(frozen=True)
class ReturnsReport:
    windows: dict[str, TrailingWindowResult]
    performance_by_year: dict[int, YearPerformance]
    value_series: list[ValuePoint]

    @property
    def available_years(self) -> list[int]:
        return sorted(self.performance_by_year, reverse=True)

    @property
    def overall_percent_change(self) -> float:
        if not self.value_series or self.value_series[0].value <= 0:
            return 0.0
        first = self.value_series[0].value
        return (self.value_series[-1].value - first) / first * 100.0

    def to_dict(self) -> dict:
        first = self.value_series[0].value if self.value_series else 0.0
        return {
            "returns": {k: v.to_dict() for k, v in self.windows.items()},
            "performanceByYear": {str(y): p.to_dict() for y, p in self.performance_by_year.items()},
            "availableYears": [str(y) for y in self.available_years],
            "totalValueData": {
                "dates": [p.date.isoformat() for p in self.value_series],
                "values": [p.value for p in self.value_series],
                "percentChanges": [
                    (p.value - first) / first * 100.0 if first > 0 else 0.0 for p in self.value_series
                ],
                "overallPercentChange": self.overall_percent_change,
            },
            "startDate": self.value_series[0].date.isoformat() if self.value_series else "",
        }


def _grouped_units(
    consolidated_years: Iterable[ConsolidatedPeriodRecord],
    consolidated_months: Iterable[ConsolidatedPeriodRecord],
    open_daily_records: Iterable[DailyPerformanceRecord],
    currency: str,
    asset_key: str | None,
) -> tuple[dict[int, _Unit], dict[tuple[int, int], list[_Unit]]]:
    """
    Year units by year and month-sized unit lists by (year, month).

    A consolidated month stands for its days; days only fill months that have no
    consolidated month and lie in a year without a consolidated year record.
    """
    years = {u.start.year: u for u in _period_units(consolidated_years, currency, asset_key) if u.kind == "year"}
    months: dict[tuple[int, int], list[_Unit]] = {}
    for u in _period_units(consolidated_months, currency, asset_key):
        if u.kind == "month":
            months[(u.start.year, u.start.month)] = [u]
    consolidated = set(months)
    for u in sorted(_day_units(open_daily_records, currency, asset_key), key=lambda x: x.start):
        k = (u.start.year, u.start.month)
        if k in consolidated or u.start.year in years:
            continue
        months.setdefault(k, []).append(u)
    return years, months


def _personal(units: list[_Unit]) -> float:
    return personal_return_pct(
        start_value=units[0].start_value,
        end_value=units[-1].end_value,
        total_cash_flow=sum(u.cash_flow for u in units),
    )


def performance_by_year(
    consolidated_months: Iterable[ConsolidatedPeriodRecord],
    open_daily_records: Iterable[DailyPerformanceRecord],
    *,
    consolidated_years: Iterable[ConsolidatedPeriodRecord] = (),
    currency: str = "USD",
    asset_key: str | None = None,
) -> dict[int, YearPerformance]:
    """
    Monthly time-weighted and personal returns grouped by year, with yearly totals.

    Months without a consolidated record are built from their daily records. A
    year known only through its consolidated year record reports that record's
    totals and no months.
    """
    years, months = _grouped_units(consolidated_years, consolidated_months, open_daily_records, currency, asset_key)

    out: dict[int, YearPerformance] = {}
    for year in sorted({y for y, _m in months}):
        keys = sorted(k for k in months if k[0] == year)
        factors = {m: chain_factors(u.factor for u in months[(year, m)]) for _y, m in keys}
        year_units = [u for k in keys for u in months[k]]
        out[year] = YearPerformance(
            year=year,
            months={m: (f - 1.0) * 100.0 for m, f in factors.items()},
            personal_months={m: _personal(months[(year, m)]) for _y, m in keys},
            total=(chain_factors(factors.values()) - 1.0) * 100.0,
            personal_total=_personal(year_units),
        )
    for year, u in years.items():
        if year in out:
            continue
        out[year] = YearPerformance(
            year=year,
            months={},
            personal_months={},
            total=(u.factor - 1.0) * 100.0,
            personal_total=_personal([u]),
        )
    return dict(sorted(out.items()))


def value_series(
    consolidated_years: Iterable[ConsolidatedPeriodRecord],
    consolidated_months: Iterable[ConsolidatedPeriodRecord],
    open_daily_records: Iterable[DailyPerformanceRecord],
    *,
    currency: str = "USD",
    asset_key: str | None = None,
) -> list[ValuePoint]:
    """Value at the end of each year-only period, each consolidated month, and each open day."""
    years, months = _grouped_units(consolidated_years, consolidated_months, open_daily_records, currency, asset_key)
    month_years = {y for y, _m in months}
    points = [ValuePoint(date=u.end, value=u.end_value) for y, u in years.items() if y not in month_years]
    points.extend(ValuePoint(date=u.end, value=u.end_value) for units in months.values() for u in units)
    return sorted(points, key=lambda p: p.date)


def build_returns_report(
    consolidated_years: Iterable[ConsolidatedPeriodRecord],
    consolidated_months: Iterable[ConsolidatedPeriodRecord],
    open_daily_records: Iterable[DailyPerformanceRecord],
    now: dt.date,
    *,
    currency: str = "USD",
    asset_key: str | None = None,
    min_docs: Mapping[str, int] | None = None,
) -> ReturnsReport:
    years = list(consolidated_years)
    months = list(consolidated_months)
    dailies = list(open_daily_records)
    return ReturnsReport(
        windows=resolve_windows(years, months, dailies, now, currency=currency, asset_key=asset_key, min_docs=min_docs),
        performance_by_year=performance_by_year(
            months, dailies, consolidated_years=years, currency=currency, asset_key=asset_key
        ),
        value_series=value_series(years, months, dailies, currency=currency, asset_key=asset_key),
    )
