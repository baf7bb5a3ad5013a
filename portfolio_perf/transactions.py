from __future__ import annotations

import csv
from pathlib import Path

from portfolio_perf.exceptions import InvariantViolation
from portfolio_perf.models import Transaction
from portfolio_perf.util import parse_date, parse_money, pick, sniff_delimiter


def classify_type(raw: str | None) -> str | None:
    t = (raw or "").strip().upper().replace(" ", "_")
    if t in {"BUY", "B", "PURCHASE"}:
        return "buy"
    if t in {"SELL", "S", "SALE"}:
        return "sell"
    if t in {"DIV", "DIVIDEND", "DIVIDEND_PAYMENT"}:
        return "dividend"
    return None


def load_transactions_csv(path: Path) -> tuple[list[Transaction], list[str]]:
    """
    Parse a ledger export into transactions sorted by date.

    Dividends may give the received amount in `amount` instead of units/price.
    Rows with an unsupported type are skipped with a warning.
    """
    warnings: list[str] = []
    text = path.read_text(encoding="utf-8-sig", errors="replace")
    reader = csv.DictReader(text.splitlines(), delimiter=sniff_delimiter(text))
    out: list[Transaction] = []
    skipped_types: dict[str, int] = {}
    for i, row in enumerate(reader, start=2):
        if not row:
            continue
        raw_type = pick(row, ["type", "tx_type", "transaction_type", "action"])
        tx_type = classify_type(raw_type)
        if tx_type is None:
            label = (raw_type or "").strip() or "<blank>"
            skipped_types[label] = skipped_types.get(label, 0) + 1
            continue
        d = parse_date(pick(row, ["date", "trade_date", "transaction_date"]))
        name = (pick(row, ["name", "asset", "asset_name"]) or "").strip()
        asset_type = (pick(row, ["asset_type", "assettype", "kind"]) or "").strip()
        currency = (pick(row, ["currency", "ccy"]) or "").strip().upper()
        units = parse_money(pick(row, ["units", "qty", "quantity", "shares"]))
        price = parse_money(pick(row, ["price", "unit_price"]))
        if tx_type == "dividend" and (units is None or price is None):
            amount = parse_money(pick(row, ["amount", "net_amount"]))
            if amount is not None:
                units, price = 1.0, abs(amount)
        if d is None or not name or not asset_type or not currency or units is None or price is None:
            warnings.append(f"{path.name}:{i}: skipped transaction row with missing fields")
            continue
        default_ccy = (pick(row, ["default_currency", "acquisition_currency"]) or "").strip().upper() or None
        try:
            tx = Transaction(
                name=name,
                asset_type=asset_type,
                tx_type=tx_type,
                units=abs(units),
                price=abs(price),
                currency=currency,
                date=d,
                historical_rate=parse_money(pick(row, ["historical_rate", "acquisition_rate", "fx_rate"])),
                default_currency=default_ccy,
            )
        except InvariantViolation as e:
            warnings.append(f"{path.name}:{i}: {e}")
            continue
        out.append(tx)
    for label, n in sorted(skipped_types.items()):
        warnings.append(f"{path.name}: skipped {n} row(s) with unsupported type {label!r}")
    out.sort(key=lambda t: t.date)
    return out, warnings
