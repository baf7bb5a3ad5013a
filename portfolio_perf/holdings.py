from __future__ import annotations

import csv
import dataclasses
import datetime as dt
from pathlib import Path
from typing import Iterable

from portfolio_perf.exceptions import InvariantViolation
from portfolio_perf.models import Holding, Transaction
from portfolio_perf.util import parse_date, parse_money, pick, sniff_delimiter

_EPS = 1e-9


def load_holdings_csv(path: Path) -> tuple[list[Holding], list[str]]:
    """
    Parse a holdings snapshot: one row per lot.

    Required columns: name, type, units, unit cost, currency. Optional: acquisition
    date, historical rate, default currency, symbol.
    """
    warnings: list[str] = []
    text = path.read_text(encoding="utf-8-sig", errors="replace")
    reader = csv.DictReader(text.splitlines(), delimiter=sniff_delimiter(text))
    out: list[Holding] = []
    for i, row in enumerate(reader, start=2):
        if not row:
            continue
        name = (pick(row, ["name", "asset", "asset_name"]) or "").strip()
        asset_type = (pick(row, ["type", "asset_type", "assettype"]) or "").strip()
        units = parse_money(pick(row, ["units", "qty", "quantity", "shares"]))
        unit_cost = parse_money(pick(row, ["unit_cost", "cost", "avg_cost", "cost_per_unit"]))
        currency = (pick(row, ["currency", "cost_currency", "ccy"]) or "").strip().upper()
        if not name or not asset_type or units is None or unit_cost is None or not currency:
            warnings.append(f"{path.name}:{i}: skipped holding row with missing name/type/units/cost/currency")
            continue
        if units <= 0:
            continue
        default_ccy = (pick(row, ["default_currency", "acquisition_currency"]) or "").strip().upper() or None
        try:
            lot = Holding(
                name=name,
                asset_type=asset_type,
                units=units,
                unit_cost=unit_cost,
                cost_currency=currency,
                acquisition_date=parse_date(pick(row, ["acquisition_date", "date", "open_date"])),
                historical_rate=parse_money(pick(row, ["historical_rate", "acquisition_rate", "fx_rate"])),
                default_currency=default_ccy,
                symbol=(pick(row, ["symbol", "ticker"]) or "").strip() or None,
            )
        except InvariantViolation as e:
            warnings.append(f"{path.name}:{i}: {e}")
            continue
        out.append(lot)
    return out, warnings


def _lot_order(h: Holding) -> dt.date:
    return h.acquisition_date or dt.date.min


def apply_transactions(
    holdings: Iterable[Holding],
    transactions: Iterable[Transaction],
    *,
    method: str = "average",
) -> list[Holding]:
    """
    Roll holdings forward through transactions (date order, buys before sells).

    Buys open a lot. Sells shrink the asset's lots pro rata (`average`) or oldest
    first (`fifo`); lots reaching zero units are removed. Selling more than is
    held raises InvariantViolation. Dividends leave positions unchanged.
    """
    if method not in ("average", "fifo"):
        raise InvariantViolation(f"Unknown lot method: {method!r}")
    lots = [h for h in holdings if float(h.units) > _EPS]
    order = {"buy": 0, "dividend": 1, "sell": 2}
    for t in sorted(transactions, key=lambda x: (x.date, order[x.tx_type])):
        key = t.asset_key
        if t.tx_type == "buy":
            symbol = next((h.symbol for h in lots if h.asset_key == key and h.symbol), None)
            lots.append(
                Holding(
                    name=t.name,
                    asset_type=t.asset_type,
                    units=float(t.units),
                    unit_cost=float(t.price),
                    cost_currency=t.currency,
                    acquisition_date=t.date,
                    historical_rate=t.historical_rate,
                    default_currency=t.default_currency,
                    symbol=symbol,
                )
            )
            continue
        if t.tx_type != "sell":
            continue

        mine = [h for h in lots if h.asset_key == key]
        held = sum(float(h.units) for h in mine)
        sell = float(t.units)
        if sell > held + _EPS:
            raise InvariantViolation(
                f"Sell of {sell:g} {key} on {t.date.isoformat()} exceeds held units {held:g}"
            )
        others = [h for h in lots if h.asset_key != key]
        if method == "average":
            keep = (held - sell) / held if held > 0 else 0.0
            remaining = [dataclasses.replace(h, units=float(h.units) * keep) for h in mine]
        else:
            remaining = []
            left = sell
            for h in sorted(mine, key=_lot_order):
                take = min(float(h.units), left)
                left -= take
                remaining.append(dataclasses.replace(h, units=float(h.units) - take))
        lots = others + [h for h in remaining if float(h.units) > _EPS]
    return lots
