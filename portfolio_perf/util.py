from __future__ import annotations

import calendar
import csv
import datetime as dt
import re
from typing import Any


_MONEY_RE = re.compile(r"[-+]?\d[\d,]*\.?\d*")


def sniff_delimiter(text: str) -> str:
    sample = "\n".join((text or "").splitlines()[:30])
    if not sample:
        return ","
    try:
        dialect = csv.Sniffer().sniff(sample, delimiters=",\t;")
        return getattr(dialect, "delimiter", ",") or ","
    except csv.Error:
        return ","


def norm_key(s: str) -> str:
    return "".join(ch.lower() if ch.isalnum() else "_" for ch in (s or "")).strip("_")


def pick(row: dict[str, Any], keys: list[str]) -> Any:
    norm = {norm_key(k): k for k in row.keys() if k}
    for k in keys:
        if k in norm:
            return row.get(norm[k])
    return None


def parse_date(value: Any) -> dt.date | None:
    if value is None:
        return None
    if isinstance(value, dt.datetime):
        return value.date()
    if isinstance(value, dt.date):
        return value
    s = str(value).strip()
    if not s:
        return None
    try:
        return dt.date.fromisoformat(s[:10])
    except ValueError:
        pass
    for fmt in ("%m/%d/%Y", "%m/%d/%y", "%d-%b-%Y", "%Y/%m/%d"):
        try:
            return dt.datetime.strptime(s.split()[0], fmt).date()
        except ValueError:
            continue
    return None


def parse_money(value: Any) -> float | None:
    if value is None:
        return None
    if isinstance(value, (int, float)):
        return float(value)
    s = str(value).strip()
    if not s:
        return None
    neg = False
    # Formats like "(123.45)".
    if s.startswith("(") and s.endswith(")"):
        neg = True
        s = s[1:-1]
    m = _MONEY_RE.search(s.replace("$", "").replace(" ", ""))
    if not m:
        return None
    try:
        x = float(m.group(0).replace(",", ""))
    except ValueError:
        return None
    return -x if neg else x


def pct_change(today: float, yesterday: float) -> float:
    if yesterday == 0:
        return 0.0
    return (float(today) - float(yesterday)) / float(yesterday) * 100.0


def last_day_of_month(d: dt.date) -> dt.date:
    return dt.date(d.year, d.month, calendar.monthrange(d.year, d.month)[1])


def add_months(d: dt.date, months: int) -> dt.date:
    """Shift by calendar months, clamping the day to the target month's end."""
    idx = d.year * 12 + (d.month - 1) + int(months)
    y, m = divmod(idx, 12)
    m += 1
    day = min(d.day, calendar.monthrange(y, m)[1])
    return dt.date(y, m, day)


def month_key(d: dt.date) -> str:
    return f"{d.year:04d}-{d.month:02d}"


def year_key(d: dt.date) -> str:
    return f"{d.year:04d}"
