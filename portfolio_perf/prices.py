from __future__ import annotations

import csv
from pathlib import Path

from portfolio_perf.exceptions import InvariantViolation
from portfolio_perf.models import PriceQuote, RateTable
from portfolio_perf.util import parse_money, pick, sniff_delimiter


def load_prices_csv(path: Path) -> tuple[dict[str, PriceQuote], list[str]]:
    """Columns: symbol, price, currency. Later rows win for repeated symbols."""
    warnings: list[str] = []
    text = path.read_text(encoding="utf-8-sig", errors="replace")
    reader = csv.DictReader(text.splitlines(), delimiter=sniff_delimiter(text))
    out: dict[str, PriceQuote] = {}
    for i, row in enumerate(reader, start=2):
        if not row:
            continue
        symbol = (pick(row, ["symbol", "ticker", "name"]) or "").strip()
        price = parse_money(pick(row, ["price", "close", "last", "amount"]))
        currency = (pick(row, ["currency", "ccy"]) or "").strip().upper()
        if not symbol or price is None or not currency:
            warnings.append(f"{path.name}:{i}: skipped price row with missing symbol/price/currency")
            continue
        try:
            out[symbol] = PriceQuote(amount=price, currency=currency)
        except InvariantViolation as e:
            warnings.append(f"{path.name}:{i}: {e}")
    return out, warnings


def load_rates_csv(path: Path, *, base: str = "USD") -> tuple[RateTable, list[str]]:
    """Columns: currency, rate (units of currency per one `base`)."""
    warnings: list[str] = []
    text = path.read_text(encoding="utf-8-sig", errors="replace")
    reader = csv.DictReader(text.splitlines(), delimiter=sniff_delimiter(text))
    rates: dict[str, float] = {}
    for i, row in enumerate(reader, start=2):
        if not row:
            continue
        code = (pick(row, ["currency", "code", "ccy"]) or "").strip().upper()
        rate = parse_money(pick(row, ["rate", "fx_rate", "value"]))
        if not code or rate is None or rate <= 0:
            warnings.append(f"{path.name}:{i}: skipped rate row with missing currency or non-positive rate")
            continue
        if code == base:
            continue
        if len(code) != 3 or not code.isalpha():
            warnings.append(f"{path.name}:{i}: skipped rate row with invalid currency {code!r}")
            continue
        rates[code] = rate
    return RateTable(base=base, rates=rates), warnings
