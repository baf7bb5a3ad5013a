from __future__ import annotations

from typing import Iterable, Sequence

from portfolio_perf.exceptions import InvariantViolation
from portfolio_perf.models import AssetDay, CurrencyDay, DailyPerformanceRecord


def pre_change_weighted(pairs: Iterable[tuple[float, float]]) -> float:
    """
    Combine percentage changes weighted by each part's value before the change.

    `pairs` are (value_after_change, change_pct). The weight of a part is
    `value / (1 + change/100)`; parts with no positive pre-change value get no
    weight. The result is a convex combination, so it never leaves the range of
    the weighted inputs. Returns 0 when no part carries weight.
    """
    num = 0.0
    den = 0.0
    for value, change in pairs:
        factor = 1.0 + float(change) / 100.0
        if factor <= 0:
            continue
        pre = float(value) / factor
        if pre <= 0:
            continue
        num += pre * float(change)
        den += pre
    if den == 0:
        return 0.0
    return num / den


def _roi(value: float, investment: float) -> float:
    if investment <= 0:
        return 0.0
    return (value - investment) / investment * 100.0


def _merge_assets(parts: Sequence[AssetDay]) -> AssetDay:
    value = sum(a.total_value for a in parts)
    investment = sum(a.total_investment for a in parts)
    adjusted = pre_change_weighted((a.total_value, a.adjusted_daily_change_percentage) for a in parts)
    flags = sorted({f for a in parts for f in a.flags})
    return AssetDay(
        total_value=value,
        total_investment=investment,
        total_cash_flow=sum(a.total_cash_flow for a in parts),
        done_profit_and_loss=sum(a.done_profit_and_loss for a in parts),
        unrealized_profit_and_loss=value - investment,
        total_roi=_roi(value, investment),
        daily_change_percentage=pre_change_weighted((a.total_value, a.daily_change_percentage) for a in parts),
        adjusted_daily_change_percentage=adjusted,
        daily_return=adjusted / 100.0,
        units=sum(a.units for a in parts),
        flags=tuple(flags),
    )


def _merge_currency(parts: Sequence[CurrencyDay]) -> CurrencyDay:
    value = sum(c.total_value for c in parts)
    investment = sum(c.total_investment for c in parts)
    adjusted = pre_change_weighted((c.total_value, c.adjusted_daily_change_percentage) for c in parts)

    keys = sorted({k for c in parts for k in c.asset_performance})
    assets = {
        k: _merge_assets([c.asset_performance[k] for c in parts if k in c.asset_performance])
        for k in keys
    }
    return CurrencyDay(
        total_value=value,
        total_investment=investment,
        total_cash_flow=sum(c.total_cash_flow for c in parts),
        done_profit_and_loss=sum(c.done_profit_and_loss for c in parts),
        unrealized_profit_and_loss=value - investment,
        total_roi=_roi(value, investment),
        daily_change_percentage=pre_change_weighted((c.total_value, c.daily_change_percentage) for c in parts),
        adjusted_daily_change_percentage=adjusted,
        daily_return=adjusted / 100.0,
        asset_performance=assets,
    )


def aggregate(account_days: Iterable[DailyPerformanceRecord]) -> DailyPerformanceRecord:
    """
    Combine several accounts' records for the same day into one overall record.
    """
    days = list(account_days)
    if not days:
        raise InvariantViolation("aggregate() needs at least one account record")
    dates = {d.date for d in days}
    if len(dates) != 1:
        raise InvariantViolation(f"Cannot aggregate records of different dates: {sorted(x.isoformat() for x in dates)}")

    currencies = sorted({c for d in days for c in d.per_currency})
    per_currency = {
        ccy: _merge_currency([d.per_currency[ccy] for d in days if ccy in d.per_currency])
        for ccy in currencies
    }
    warnings = tuple(dict.fromkeys(w for d in days for w in d.warnings))
    return DailyPerformanceRecord(date=days[0].date, per_currency=per_currency, warnings=warnings)
