from __future__ import annotations

import datetime as dt
from dataclasses import dataclass
from typing import Iterable

_EPS = 1e-12


@dataclass
class Lot:
    open_date: dt.date | None
    units: float
    unit_cost: float  # already in the reporting currency


@dataclass(frozen=True)
class LotEvent:
    date: dt.date
    kind: str  # "buy" | "sell"
    units: float
    unit_price: float  # already in the reporting currency


@dataclass(frozen=True)
class RealizedSale:
    asset_key: str
    sell_date: dt.date
    units: float
    proceeds: float
    cost: float | None
    pnl: float | None
    basis_unknown: bool


def average_unit_cost(lots: Iterable[Lot]) -> float | None:
    total_units = 0.0
    total_cost = 0.0
    for lot in lots:
        u = float(lot.units)
        if u <= _EPS:
            continue
        total_units += u
        total_cost += u * float(lot.unit_cost)
    if total_units <= _EPS:
        return None
    return total_cost / total_units


def realized_average(
    *,
    asset_key: str,
    sell_date: dt.date,
    units: float,
    proceeds: float,
    buy_lots: Iterable[Lot],
) -> RealizedSale:
    """
    Realized P&L against the weighted-average cost of every buy lot for the asset.
    Earlier sells do not change the average.
    """
    avg = average_unit_cost(buy_lots)
    if avg is None:
        return RealizedSale(
            asset_key=asset_key,
            sell_date=sell_date,
            units=float(units),
            proceeds=float(proceeds),
            cost=None,
            pnl=None,
            basis_unknown=True,
        )
    cost = avg * float(units)
    return RealizedSale(
        asset_key=asset_key,
        sell_date=sell_date,
        units=float(units),
        proceeds=float(proceeds),
        cost=cost,
        pnl=float(proceeds) - cost,
        basis_unknown=False,
    )


def fifo_realized(
    events: Iterable[LotEvent],
    *,
    asset_key: str,
) -> tuple[list[RealizedSale], list[str]]:
    """
    FIFO realized P&L for a single asset, replaying its buys and sells in date order.

    Same-day buys are applied before sells. A sell that exceeds the open lots is
    reported with unknown cost and pnl.
    """
    warnings: list[str] = []
    lots: list[Lot] = []
    sales: list[RealizedSale] = []
    unmatched_sells = 0
    unmatched_units = 0.0

    for ev in sorted(events, key=lambda e: (e.date, 0 if e.kind == "buy" else 1)):
        qty = abs(float(ev.units))
        if qty <= _EPS:
            continue
        if ev.kind == "buy":
            lots.append(Lot(open_date=ev.date, units=qty, unit_cost=abs(float(ev.unit_price))))
            continue
        if ev.kind != "sell":
            continue
        proceeds = abs(float(ev.unit_price)) * qty
        remaining = qty
        cost = 0.0
        while remaining > _EPS and lots:
            lot = lots[0]
            take = min(lot.units, remaining)
            cost += take * lot.unit_cost
            lot.units -= take
            remaining -= take
            if lot.units <= _EPS:
                lots.pop(0)
        if remaining > _EPS:
            unmatched_sells += 1
            unmatched_units += remaining
            sales.append(
                RealizedSale(
                    asset_key=asset_key,
                    sell_date=ev.date,
                    units=qty,
                    proceeds=proceeds,
                    cost=None,
                    pnl=None,
                    basis_unknown=True,
                )
            )
            continue
        sales.append(
            RealizedSale(
                asset_key=asset_key,
                sell_date=ev.date,
                units=qty,
                proceeds=proceeds,
                cost=cost,
                pnl=proceeds - cost,
                basis_unknown=False,
            )
        )
    if unmatched_sells > 0:
        warnings.append(
            f"{asset_key}: {unmatched_sells} sell(s) exceed open lots by {unmatched_units:.6g} units (cost basis unknown)."
        )
    return sales, warnings
