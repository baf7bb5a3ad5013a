from __future__ import annotations

import datetime as dt
import logging
from dataclasses import dataclass, field
from typing import Callable, Iterable, Mapping, Sequence

from portfolio_perf.aggregate import aggregate
from portfolio_perf.cache import NullCache, ReadThroughCache
from portfolio_perf.config import PerformanceConfig
from portfolio_perf.consolidate import (
    closed_period_keys,
    consolidate,
    consolidate_months_to_year,
    period_bounds,
)
from portfolio_perf.daily import compute_day
from portfolio_perf.exceptions import InvariantViolation
from portfolio_perf.holdings import apply_transactions
from portfolio_perf.models import (
    ConsolidatedPeriodRecord,
    DailyPerformanceRecord,
    Holding,
    PriceQuote,
    RateTable,
    TrailingWindowResult,
    Transaction,
)
from portfolio_perf.store import OVERALL_ACCOUNT, PerformanceStore
from portfolio_perf.trailing import ReturnsReport, build_returns_report, resolve_windows, window_boundaries
from portfolio_perf.util import month_key

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AccountInput:
    account_id: str
    # End-of-day positions for run_daily; opening positions for run_range.
    holdings: Sequence[Holding] = ()
    ledger: Sequence[Transaction] = ()


@dataclass
class DailyRunResult:
    day: dt.date
    records: dict[str, DailyPerformanceRecord] = field(default_factory=dict)
    warnings: list[str] = field(default_factory=list)


def _previous_record(
    store: PerformanceStore, cache: ReadThroughCache, owner_id: str, account_id: str, day: dt.date
) -> DailyPerformanceRecord | None:
    return cache.get_or_load(
        ("latest_before", owner_id, account_id, day),
        lambda: store.latest_daily_before(owner_id, account_id, day),
    )


def run_daily(
    store: PerformanceStore,
    owner_id: str,
    accounts: Sequence[AccountInput],
    prices: Mapping[str, PriceQuote],
    rates: RateTable,
    day: dt.date,
    *,
    config: PerformanceConfig | None = None,
    cache: ReadThroughCache | None = None,
    as_of: dt.date | None = None,
) -> DailyRunResult:
    """
    Compute and store each account's record for `day`, then the overall record.

    Accounts are independent of each other; the previous stored record of each
    account (most recent before `day`) seeds its daily change.
    """
    config = config or PerformanceConfig()
    cache = cache or NullCache()
    result = DailyRunResult(day=day)
    for acc in accounts:
        if acc.account_id == OVERALL_ACCOUNT:
            raise InvariantViolation(f"Account id {OVERALL_ACCOUNT!r} is reserved for the aggregate")
        yesterday = _previous_record(store, cache, owner_id, acc.account_id, day)
        record = compute_day(
            acc.holdings,
            prices,
            rates,
            yesterday,
            [t for t in acc.ledger if t.date == day],
            day=day,
            currencies=config.currencies or None,
            ledger=acc.ledger,
            anomaly_threshold=config.anomaly_threshold_pct,
            realized_pnl_method=config.realized_pnl_method,
        )
        store.put_daily(owner_id, acc.account_id, record, as_of=as_of)
        cache.invalidate(("latest_before", owner_id, acc.account_id))
        result.records[acc.account_id] = record
        result.warnings.extend(f"{acc.account_id}: {w}" for w in record.warnings)

    if result.records:
        overall = aggregate(result.records.values())
        store.put_daily(owner_id, OVERALL_ACCOUNT, overall, as_of=as_of)
        cache.invalidate(("latest_before", owner_id, OVERALL_ACCOUNT))
        result.records[OVERALL_ACCOUNT] = overall
    cache.invalidate(("window_inputs", owner_id))
    store.commit()
    logger.info(
        "Computed %d account record(s) for %s on %s (%d warning(s))",
        len(accounts),
        owner_id,
        day.isoformat(),
        len(result.warnings),
    )
    return result


def run_range(
    store: PerformanceStore,
    owner_id: str,
    accounts: Sequence[AccountInput],
    market: Callable[[dt.date], tuple[Mapping[str, PriceQuote], RateTable]],
    days: Iterable[dt.date],
    *,
    config: PerformanceConfig | None = None,
    cache: ReadThroughCache | None = None,
) -> list[DailyRunResult]:
    """
    Process `days` strictly in order, rolling each account's opening holdings
    forward through its ledger. `market(day)` supplies that day's prices and rates.
    """
    config = config or PerformanceConfig()
    lot_method = "fifo" if config.realized_pnl_method == "fifo" else "average"
    positions = {acc.account_id: list(acc.holdings) for acc in accounts}
    out: list[DailyRunResult] = []
    for day in sorted(set(days)):
        todays: list[AccountInput] = []
        for acc in accounts:
            positions[acc.account_id] = apply_transactions(
                positions[acc.account_id],
                [t for t in acc.ledger if t.date == day],
                method=lot_method,
            )
            todays.append(AccountInput(account_id=acc.account_id, holdings=positions[acc.account_id], ledger=acc.ledger))
        prices, rates = market(day)
        out.append(run_daily(store, owner_id, todays, prices, rates, day, config=config, cache=cache))
    return out


def consolidate_closed_periods(
    store: PerformanceStore,
    owner_id: str,
    account_id: str,
    *,
    as_of: dt.date,
    cache: ReadThroughCache | None = None,
) -> list[ConsolidatedPeriodRecord]:
    """
    Consolidate every closed month that has daily records, then chain closed
    years from their months. Re-running rewrites identical records.
    """
    months, years = closed_period_keys(store.daily_dates(owner_id, account_id), as_of)
    written: list[ConsolidatedPeriodRecord] = []
    for mk in months:
        start, end = period_bounds("month", mk)
        rec = consolidate(store.daily_between(owner_id, account_id, start, end), mk, "month", as_of=as_of)
        if rec is None:
            continue
        store.put_period(owner_id, account_id, rec)
        written.append(rec)
    for yk in years:
        month_recs = store.get_periods(owner_id, account_id, "month", start_key=f"{yk}-01", end_key=f"{yk}-12")
        rec = consolidate_months_to_year(month_recs, yk, as_of=as_of)
        if rec is None:
            continue
        store.put_period(owner_id, account_id, rec)
        written.append(rec)
    if cache is not None:
        cache.invalidate(("window_inputs", owner_id, account_id))
    store.commit()
    logger.info(
        "Consolidated %d month(s) and %d year(s) for %s/%s", len(months), len(years), owner_id, account_id
    )
    return written


def load_window_inputs(
    store: PerformanceStore,
    owner_id: str,
    account_id: str,
    *,
    now: dt.date,
) -> tuple[list[ConsolidatedPeriodRecord], list[ConsolidatedPeriodRecord], list[DailyPerformanceRecord]]:
    """
    Closed years, closed months, and the daily records trailing windows need:
    everything after the last consolidated month, plus each boundary's month.
    """
    years = [y for y in store.get_periods(owner_id, account_id, "year") if y.end_date <= now]
    months = [m for m in store.get_periods(owner_id, account_id, "month") if m.end_date <= now]

    boundaries = window_boundaries(now)
    earliest = min(boundaries.values())
    if months:
        _start, last_month_end = period_bounds("month", months[-1].period_key)
        open_start = last_month_end + dt.timedelta(days=1)
    else:
        open_start = earliest

    by_date: dict[dt.date, DailyPerformanceRecord] = {}
    for r in store.daily_between(owner_id, account_id, open_start, now):
        by_date[r.date] = r
    for mk in sorted({month_key(b) for b in boundaries.values()}):
        start, end = period_bounds("month", mk)
        if start > now:
            continue
        for r in store.daily_between(owner_id, account_id, start, min(end, now)):
            by_date[r.date] = r
    return years, months, [by_date[d] for d in sorted(by_date)]


def trailing_returns(
    store: PerformanceStore,
    owner_id: str,
    account_id: str,
    *,
    now: dt.date,
    currency: str = "USD",
    asset_key: str | None = None,
    config: PerformanceConfig | None = None,
    cache: ReadThroughCache | None = None,
) -> dict[str, TrailingWindowResult]:
    config = config or PerformanceConfig()
    cache = cache or NullCache()
    years, months, dailies = cache.get_or_load(
        ("window_inputs", owner_id, account_id, now),
        lambda: load_window_inputs(store, owner_id, account_id, now=now),
    )
    return resolve_windows(
        years,
        months,
        dailies,
        now,
        currency=currency,
        asset_key=asset_key,
        min_docs=config.min_docs,
    )


def returns_report(
    store: PerformanceStore,
    owner_id: str,
    account_id: str,
    *,
    now: dt.date,
    currency: str = "USD",
    asset_key: str | None = None,
    config: PerformanceConfig | None = None,
    cache: ReadThroughCache | None = None,
) -> ReturnsReport:
    """
    Trailing windows plus the per-year breakdown and the value series, all from
    the same loaded inputs.
    """
    config = config or PerformanceConfig()
    cache = cache or NullCache()
    years, months, dailies = cache.get_or_load(
        ("window_inputs", owner_id, account_id, now),
        lambda: load_window_inputs(store, owner_id, account_id, now=now),
    )
    return build_returns_report(
        years,
        months,
        dailies,
        now,
        currency=currency,
        asset_key=asset_key,
        min_docs=config.min_docs,
    )
