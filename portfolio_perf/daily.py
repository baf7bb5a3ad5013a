from __future__ import annotations

import datetime as dt
import logging
from collections import defaultdict
from typing import Iterable, Mapping, Sequence

from portfolio_perf.cost_basis import Lot, LotEvent, RealizedSale, fifo_realized, realized_average
from portfolio_perf.exceptions import InvariantViolation
from portfolio_perf.fx import convert
from portfolio_perf.models import (
    FLAG_ANOMALOUS_CHANGE,
    FLAG_COST_BASIS_UNKNOWN,
    FLAG_MISSING_HOLDING,
    FLAG_MISSING_PRICE,
    FLAG_NEW_INVESTMENT,
    AssetDay,
    CurrencyDay,
    DailyPerformanceRecord,
    Holding,
    PriceQuote,
    RateTable,
    Transaction,
    validate_currency,
)
from portfolio_perf.util import pct_change

logger = logging.getLogger(__name__)

REALIZED_PNL_METHODS = ("average", "fifo")
DEFAULT_ANOMALY_THRESHOLD = 50.0


def _roi(value: float, investment: float) -> float:
    if investment <= 0:
        return 0.0
    return (value - investment) / investment * 100.0


def _tx_amount(t: Transaction, ccy: str, rates: RateTable) -> float:
    return convert(t.gross, t.currency, ccy, rates, t.default_currency, t.historical_rate)


def _tx_unit_price(t: Transaction, ccy: str, rates: RateTable) -> float:
    return convert(t.price, t.currency, ccy, rates, t.default_currency, t.historical_rate)


def _holding_lots(hs: Sequence[Holding], ccy: str, rates: RateTable) -> list[Lot]:
    return [
        Lot(
            open_date=h.acquisition_date,
            units=float(h.units),
            unit_cost=convert(h.unit_cost, h.cost_currency, ccy, rates, h.default_currency, h.historical_rate),
        )
        for h in hs
    ]


def _realized_for_asset(
    *,
    key: str,
    day: dt.date,
    sells_today: Sequence[Transaction],
    history: Sequence[Transaction],
    holdings: Sequence[Holding],
    ccy: str,
    rates: RateTable,
    method: str,
) -> list[RealizedSale]:
    if not sells_today:
        return []
    buys = [t for t in history if t.asset_key == key and t.tx_type == "buy"]
    if not buys:
        # No ledger lots: price the sale against what is still held.
        lots = _holding_lots(holdings, ccy, rates)
        return [
            realized_average(
                asset_key=key,
                sell_date=day,
                units=t.units,
                proceeds=_tx_amount(t, ccy, rates),
                buy_lots=lots,
            )
            for t in sells_today
        ]
    if method == "fifo":
        events = [
            LotEvent(date=t.date, kind=t.tx_type, units=t.units, unit_price=_tx_unit_price(t, ccy, rates))
            for t in history
            if t.asset_key == key and t.tx_type in ("buy", "sell")
        ]
        sales, _warnings = fifo_realized(events, asset_key=key)
        return [s for s in sales if s.sell_date == day]
    lots = [Lot(open_date=t.date, units=float(t.units), unit_cost=_tx_unit_price(t, ccy, rates)) for t in buys]
    return [
        realized_average(
            asset_key=key,
            sell_date=day,
            units=t.units,
            proceeds=_tx_amount(t, ccy, rates),
            buy_lots=lots,
        )
        for t in sells_today
    ]


def _asset_day(
    *,
    key: str,
    ccy: str,
    day: dt.date,
    holdings: Sequence[Holding],
    txs: Sequence[Transaction],
    history: Sequence[Transaction],
    prices: Mapping[str, PriceQuote],
    rates: RateTable,
    yesterday_asset: AssetDay | None,
    anomaly_threshold: float,
    method: str,
    warnings: list[str],
) -> tuple[AssetDay, bool]:
    flags: set[str] = set()
    units = sum(float(h.units) for h in holdings)
    value = 0.0
    if holdings:
        symbol = holdings[0].price_symbol
        quote = prices.get(symbol)
        if quote is None:
            flags.add(FLAG_MISSING_PRICE)
            warnings.append(f"{key}: no price for {symbol}; valued at 0")
            logger.warning("Missing price for %s (%s) on %s", symbol, key, day.isoformat())
        else:
            value = convert(float(quote.amount) * units, quote.currency, ccy, rates)
    elif not txs:
        flags.add(FLAG_MISSING_HOLDING)
        warnings.append(f"{key}: held yesterday but no holding or transaction today; valued at 0")

    investment = sum(
        convert(float(h.units) * float(h.unit_cost), h.cost_currency, ccy, rates, h.default_currency, h.historical_rate)
        for h in holdings
    )

    bought = sum(_tx_amount(t, ccy, rates) for t in txs if t.tx_type == "buy")
    sold = sum(_tx_amount(t, ccy, rates) for t in txs if t.tx_type == "sell")
    dividends = sum(_tx_amount(t, ccy, rates) for t in txs if t.tx_type == "dividend")
    cash_flow = sold + dividends - bought

    y_value = float(yesterday_asset.total_value) if yesterday_asset is not None else 0.0
    raw = pct_change(value, y_value)
    if y_value == 0:
        adjusted = 0.0
        if value > 0:
            flags.add(FLAG_NEW_INVESTMENT)
    else:
        adjusted = (value - y_value + cash_flow) / y_value * 100.0

    sales = _realized_for_asset(
        key=key,
        day=day,
        sells_today=[t for t in txs if t.tx_type == "sell"],
        history=history,
        holdings=holdings,
        ccy=ccy,
        rates=rates,
        method=method,
    )
    done = sum(s.pnl for s in sales if s.pnl is not None)
    if any(s.basis_unknown for s in sales):
        flags.add(FLAG_COST_BASIS_UNKNOWN)
        warnings.append(f"{key}: sell without known cost basis; realized P&L counted as 0")

    anomalous = abs(adjusted) > float(anomaly_threshold)
    if anomalous:
        flags.add(FLAG_ANOMALOUS_CHANGE)
        warnings.append(f"{key} [{ccy}]: adjusted change {adjusted:.2f}% exceeds {anomaly_threshold:g}%; reset to 0")
        logger.warning(
            "Anomalous daily change for %s in %s on %s: %.2f%% (threshold %.2f%%)",
            key,
            ccy,
            day.isoformat(),
            adjusted,
            anomaly_threshold,
        )
        raw = 0.0
        adjusted = 0.0

    asset = AssetDay(
        total_value=value,
        total_investment=investment,
        total_cash_flow=cash_flow,
        done_profit_and_loss=done,
        unrealized_profit_and_loss=value - investment,
        total_roi=_roi(value, investment),
        daily_change_percentage=raw,
        adjusted_daily_change_percentage=adjusted,
        daily_return=adjusted / 100.0,
        units=units,
        flags=tuple(sorted(flags)),
    )
    return asset, anomalous


def _currency_day(
    *,
    ccy: str,
    day: dt.date,
    by_key: Mapping[str, list[Holding]],
    tx_by_key: Mapping[str, list[Transaction]],
    history: Sequence[Transaction],
    prices: Mapping[str, PriceQuote],
    rates: RateTable,
    yesterday_ccy: CurrencyDay | None,
    anomaly_threshold: float,
    method: str,
    warnings: list[str],
) -> CurrencyDay:
    y_assets = yesterday_ccy.asset_performance if yesterday_ccy is not None else {}
    keys = set(by_key) | set(tx_by_key) | {k for k, a in y_assets.items() if a.total_value > 0}

    assets: dict[str, AssetDay] = {}
    # Value change of suppressed assets, removed from the currency-level change.
    suppressed = 0.0
    for key in sorted(keys):
        asset, anomalous = _asset_day(
            key=key,
            ccy=ccy,
            day=day,
            holdings=by_key.get(key, []),
            txs=tx_by_key.get(key, []),
            history=history,
            prices=prices,
            rates=rates,
            yesterday_asset=y_assets.get(key),
            anomaly_threshold=anomaly_threshold,
            method=method,
            warnings=warnings,
        )
        assets[key] = asset
        y_asset = y_assets.get(key)
        y_val = y_asset.total_value if y_asset is not None else 0.0
        bought = any(t.tx_type == "buy" for t in tx_by_key.get(key, []))
        if anomalous:
            suppressed += asset.total_value - y_val + asset.total_cash_flow
        elif y_val == 0 and asset.total_value > 0 and not bought:
            # Value appearing from nothing (a price back after a gap, a position
            # added without a buy) is not market movement.
            suppressed += asset.total_value + asset.total_cash_flow

    total_value = sum(a.total_value for a in assets.values())
    total_investment = sum(a.total_investment for a in assets.values())
    total_cash_flow = sum(a.total_cash_flow for a in assets.values())
    done = sum(a.done_profit_and_loss for a in assets.values())

    y_total = float(yesterday_ccy.total_value) if yesterday_ccy is not None else 0.0
    raw = pct_change(total_value, y_total)
    if y_total == 0:
        adjusted = 0.0
    else:
        adjusted = (total_value - y_total + total_cash_flow - suppressed) / y_total * 100.0

    return CurrencyDay(
        total_value=total_value,
        total_investment=total_investment,
        total_cash_flow=total_cash_flow,
        done_profit_and_loss=done,
        unrealized_profit_and_loss=total_value - total_investment,
        total_roi=_roi(total_value, total_investment),
        daily_change_percentage=raw,
        adjusted_daily_change_percentage=adjusted,
        daily_return=adjusted / 100.0,
        asset_performance=assets,
    )


def compute_day(
    holdings: Iterable[Holding],
    prices: Mapping[str, PriceQuote],
    rates: RateTable,
    yesterday: DailyPerformanceRecord | None,
    todays_transactions: Iterable[Transaction],
    *,
    day: dt.date,
    currencies: Iterable[str] | None = None,
    ledger: Iterable[Transaction] = (),
    anomaly_threshold: float = DEFAULT_ANOMALY_THRESHOLD,
    realized_pnl_method: str = "average",
) -> DailyPerformanceRecord:
    """
    Compute one account's performance record for `day`.

    `holdings` are end-of-day positions, `yesterday` is the most recent stored
    record before `day` (None on the first day), and `ledger` is the account's
    transaction history used for cost basis. Every currency of the rate table is
    reported unless `currencies` narrows it.
    """
    if realized_pnl_method not in REALIZED_PNL_METHODS:
        raise InvariantViolation(f"Unknown realized P&L method: {realized_pnl_method!r}")
    if yesterday is not None and yesterday.date >= day:
        raise InvariantViolation(
            f"Previous record ({yesterday.date.isoformat()}) is not before {day.isoformat()}"
        )
    todays = list(todays_transactions)
    for t in todays:
        if t.date != day:
            raise InvariantViolation(f"Transaction dated {t.date.isoformat()} passed for {day.isoformat()}")
    history = [t for t in ledger if t.date < day] + todays

    by_key: dict[str, list[Holding]] = defaultdict(list)
    for h in holdings:
        if float(h.units) > 0:
            by_key[h.asset_key].append(h)
    tx_by_key: dict[str, list[Transaction]] = defaultdict(list)
    for t in todays:
        tx_by_key[t.asset_key].append(t)

    targets = sorted({validate_currency(c) for c in currencies}) if currencies else rates.currencies()
    warnings: list[str] = []
    per_currency: dict[str, CurrencyDay] = {}
    for ccy in targets:
        per_currency[ccy] = _currency_day(
            ccy=ccy,
            day=day,
            by_key=by_key,
            tx_by_key=tx_by_key,
            history=history,
            prices=prices,
            rates=rates,
            yesterday_ccy=yesterday.per_currency.get(ccy) if yesterday is not None else None,
            anomaly_threshold=anomaly_threshold,
            method=realized_pnl_method,
            warnings=warnings,
        )
    return DailyPerformanceRecord(date=day, per_currency=per_currency, warnings=tuple(dict.fromkeys(warnings)))
