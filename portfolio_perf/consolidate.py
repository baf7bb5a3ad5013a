from __future__ import annotations

import datetime as dt
import re
from typing import Iterable, Sequence

from portfolio_perf.exceptions import InvariantViolation
from portfolio_perf.models import (
    PERIOD_TYPES,
    AssetDay,
    AssetPeriod,
    ConsolidatedPeriodRecord,
    CurrencyDay,
    CurrencyPeriod,
    DailyPerformanceRecord,
)
from portfolio_perf.returns import chain_factors, compound_factor, period_factor, personal_return_pct
from portfolio_perf.util import last_day_of_month, month_key, year_key

_MONTH_KEY_RE = re.compile(r"^(\d{4})-(\d{2})$")
_YEAR_KEY_RE = re.compile(r"^(\d{4})$")


def period_key_for(d: dt.date, period_type: str) -> str:
    if period_type == "month":
        return month_key(d)
    if period_type == "year":
        return year_key(d)
    raise InvariantViolation(f"Unknown period type: {period_type!r}")


def period_bounds(period_type: str, period_key: str) -> tuple[dt.date, dt.date]:
    """First and last calendar day of a `YYYY-MM` month or `YYYY` year."""
    if period_type == "month":
        m = _MONTH_KEY_RE.match(period_key or "")
        if not m or not 1 <= int(m.group(2)) <= 12:
            raise InvariantViolation(f"Invalid month key: {period_key!r}")
        start = dt.date(int(m.group(1)), int(m.group(2)), 1)
        return start, last_day_of_month(start)
    if period_type == "year":
        m = _YEAR_KEY_RE.match(period_key or "")
        if not m:
            raise InvariantViolation(f"Invalid year key: {period_key!r}")
        y = int(m.group(1))
        return dt.date(y, 1, 1), dt.date(y, 12, 31)
    raise InvariantViolation(f"Unknown period type: {period_type!r}")


def is_period_closed(period_type: str, period_key: str, as_of: dt.date) -> bool:
    _start, end = period_bounds(period_type, period_key)
    return as_of > end


def closed_period_keys(dates: Iterable[dt.date], as_of: dt.date) -> tuple[list[str], list[str]]:
    """Closed month keys and closed year keys spanned by `dates`."""
    months: set[str] = set()
    years: set[str] = set()
    for d in dates:
        mk = period_key_for(d, "month")
        if is_period_closed("month", mk, as_of):
            months.add(mk)
        yk = period_key_for(d, "year")
        if is_period_closed("year", yk, as_of):
            years.add(yk)
    return sorted(months), sorted(years)


def _require_closed(period_type: str, period_key: str, as_of: dt.date) -> tuple[dt.date, dt.date]:
    if period_type not in PERIOD_TYPES:
        raise InvariantViolation(f"Unknown period type: {period_type!r}")
    start, end = period_bounds(period_type, period_key)
    if not as_of > end:
        raise InvariantViolation(
            f"{period_type} {period_key} is still open on {as_of.isoformat()}; only closed periods are consolidated"
        )
    return start, end


def _asset_period(days: Sequence[AssetDay]) -> AssetPeriod:
    end_factor = compound_factor(a.adjusted_daily_change_percentage for a in days)
    start_value = days[0].total_value
    end_value = days[-1].total_value
    cash_flow = sum(a.total_cash_flow for a in days)
    return AssetPeriod(
        start_factor=1.0,
        end_factor=end_factor,
        period_return=(end_factor - 1.0) * 100.0,
        start_total_value=start_value,
        end_total_value=end_value,
        total_cash_flow=cash_flow,
        personal_return=personal_return_pct(
            start_value=start_value, end_value=end_value, total_cash_flow=cash_flow
        ),
        valid_docs_count=len(days),
    )


def _currency_period(days: Sequence[CurrencyDay]) -> CurrencyPeriod:
    end_factor = compound_factor(c.adjusted_daily_change_percentage for c in days)
    first = days[0]
    last = days[-1]
    cash_flow = sum(c.total_cash_flow for c in days)

    by_asset: dict[str, list[AssetDay]] = {}
    for c in days:
        for key, a in c.asset_performance.items():
            by_asset.setdefault(key, []).append(a)

    return CurrencyPeriod(
        start_factor=1.0,
        end_factor=end_factor,
        period_return=(end_factor - 1.0) * 100.0,
        start_total_value=first.total_value,
        end_total_value=last.total_value,
        start_total_investment=first.total_investment,
        end_total_investment=last.total_investment,
        total_cash_flow=cash_flow,
        personal_return=personal_return_pct(
            start_value=first.total_value, end_value=last.total_value, total_cash_flow=cash_flow
        ),
        valid_docs_count=len(days),
        asset_performance={k: _asset_period(v) for k, v in sorted(by_asset.items())},
    )


def consolidate(
    daily_records: Iterable[DailyPerformanceRecord],
    period_key: str,
    period_type: str,
    *,
    as_of: dt.date,
) -> ConsolidatedPeriodRecord | None:
    """
    Compress a closed month's or year's daily records into one period record.

    Output is a pure function of the inputs: records are ordered by date and
    nothing time-dependent is stamped, so re-running over the same records yields
    an identical record. Returns None when there is nothing to consolidate.
    """
    start, end = _require_closed(period_type, period_key, as_of)
    records = sorted(daily_records, key=lambda r: r.date)
    if not records:
        return None
    seen: set[dt.date] = set()
    for r in records:
        if not start <= r.date <= end:
            raise InvariantViolation(f"Record dated {r.date.isoformat()} is outside {period_type} {period_key}")
        if r.date in seen:
            raise InvariantViolation(f"Duplicate daily record for {r.date.isoformat()}")
        seen.add(r.date)

    currencies = sorted({c for r in records for c in r.per_currency})
    if not currencies:
        return None
    per_currency = {
        ccy: _currency_period([r.per_currency[ccy] for r in records if ccy in r.per_currency])
        for ccy in currencies
    }
    return ConsolidatedPeriodRecord(
        period_type=period_type,
        period_key=period_key,
        start_date=records[0].date,
        end_date=records[-1].date,
        docs_count=len(records),
        per_currency=per_currency,
    )


def _chain_asset_periods(parts: Sequence[AssetPeriod]) -> AssetPeriod:
    end_factor = chain_factors(period_factor(p.end_factor, p.start_factor) for p in parts)
    cash_flow = sum(p.total_cash_flow for p in parts)
    return AssetPeriod(
        start_factor=1.0,
        end_factor=end_factor,
        period_return=(end_factor - 1.0) * 100.0,
        start_total_value=parts[0].start_total_value,
        end_total_value=parts[-1].end_total_value,
        total_cash_flow=cash_flow,
        personal_return=personal_return_pct(
            start_value=parts[0].start_total_value,
            end_value=parts[-1].end_total_value,
            total_cash_flow=cash_flow,
        ),
        valid_docs_count=sum(p.valid_docs_count for p in parts),
    )


def _chain_currency_periods(parts: Sequence[CurrencyPeriod]) -> CurrencyPeriod:
    end_factor = chain_factors(period_factor(p.end_factor, p.start_factor) for p in parts)
    cash_flow = sum(p.total_cash_flow for p in parts)

    by_asset: dict[str, list[AssetPeriod]] = {}
    for p in parts:
        for key, a in p.asset_performance.items():
            by_asset.setdefault(key, []).append(a)

    return CurrencyPeriod(
        start_factor=1.0,
        end_factor=end_factor,
        period_return=(end_factor - 1.0) * 100.0,
        start_total_value=parts[0].start_total_value,
        end_total_value=parts[-1].end_total_value,
        start_total_investment=parts[0].start_total_investment,
        end_total_investment=parts[-1].end_total_investment,
        total_cash_flow=cash_flow,
        personal_return=personal_return_pct(
            start_value=parts[0].start_total_value,
            end_value=parts[-1].end_total_value,
            total_cash_flow=cash_flow,
        ),
        valid_docs_count=sum(p.valid_docs_count for p in parts),
        asset_performance={k: _chain_asset_periods(v) for k, v in sorted(by_asset.items())},
    )


def consolidate_months_to_year(
    month_records: Iterable[ConsolidatedPeriodRecord],
    year_key: str,
    *,
    as_of: dt.date,
) -> ConsolidatedPeriodRecord | None:
    """
    Build a year record by chaining its consolidated months.

    Factors multiply, cash flows and doc counts add up; the result matches
    consolidating the year's daily records directly.
    """
    _require_closed("year", year_key, as_of)
    months = sorted(month_records, key=lambda m: m.period_key)
    if not months:
        return None
    seen: set[str] = set()
    for m in months:
        if m.period_type != "month" or not m.period_key.startswith(f"{year_key}-"):
            raise InvariantViolation(f"{m.period_type} {m.period_key} does not belong to year {year_key}")
        if m.period_key in seen:
            raise InvariantViolation(f"Duplicate month record {m.period_key}")
        seen.add(m.period_key)

    currencies = sorted({c for m in months for c in m.per_currency})
    if not currencies:
        return None
    per_currency = {
        ccy: _chain_currency_periods([m.per_currency[ccy] for m in months if ccy in m.per_currency])
        for ccy in currencies
    }
    return ConsolidatedPeriodRecord(
        period_type="year",
        period_key=year_key,
        start_date=months[0].start_date,
        end_date=months[-1].end_date,
        docs_count=sum(m.docs_count for m in months),
        per_currency=per_currency,
    )
