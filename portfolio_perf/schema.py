from __future__ import annotations

import datetime as dt
import json
import logging
from typing import Any, Callable

from portfolio_perf.exceptions import InvariantViolation
from portfolio_perf.models import (
    SCHEMA_VERSION,
    AssetDay,
    AssetPeriod,
    ConsolidatedPeriodRecord,
    CurrencyDay,
    CurrencyPeriod,
    DailyPerformanceRecord,
)
from portfolio_perf.returns import period_factor, personal_return_pct

logger = logging.getLogger(__name__)

# Field order is irrelevant on disk: documents are dumped with sorted keys.
_DAY_FIELDS = {
    "total_value": "totalValue",
    "total_investment": "totalInvestment",
    "total_cash_flow": "totalCashFlow",
    "done_profit_and_loss": "doneProfitAndLoss",
    "unrealized_profit_and_loss": "unrealizedProfitAndLoss",
    "total_roi": "totalROI",
    "daily_change_percentage": "dailyChangePercentage",
    "adjusted_daily_change_percentage": "adjustedDailyChangePercentage",
    "daily_return": "dailyReturn",
}

_ASSET_PERIOD_FIELDS = {
    "start_factor": "startFactor",
    "end_factor": "endFactor",
    "period_return": "periodReturn",
    "start_total_value": "startTotalValue",
    "end_total_value": "endTotalValue",
    "total_cash_flow": "totalCashFlow",
    "personal_return": "personalReturn",
    "valid_docs_count": "validDocsCount",
}

_CURRENCY_PERIOD_FIELDS = {
    **_ASSET_PERIOD_FIELDS,
    "start_total_investment": "startTotalInvestment",
    "end_total_investment": "endTotalInvestment",
}


def _num(v: Any) -> float:
    return float(v or 0.0)


# ---------------------------------------------------------------- daily records


def _asset_day_to_dict(a: AssetDay) -> dict[str, Any]:
    d = {camel: float(getattr(a, attr)) for attr, camel in _DAY_FIELDS.items()}
    d["units"] = float(a.units)
    d["flags"] = list(a.flags)
    return d


def _asset_day_from_dict(d: dict[str, Any]) -> AssetDay:
    return AssetDay(
        **{attr: _num(d.get(camel)) for attr, camel in _DAY_FIELDS.items()},
        units=_num(d.get("units")),
        flags=tuple(d.get("flags") or ()),
    )


def daily_to_dict(record: DailyPerformanceRecord) -> dict[str, Any]:
    currencies: dict[str, Any] = {}
    for ccy, c in record.per_currency.items():
        cd = {camel: float(getattr(c, attr)) for attr, camel in _DAY_FIELDS.items()}
        cd["assetPerformance"] = {k: _asset_day_to_dict(a) for k, a in c.asset_performance.items()}
        currencies[ccy] = cd
    return {
        "schemaVersion": SCHEMA_VERSION,
        "date": record.date.isoformat(),
        "currencies": currencies,
        "warnings": list(record.warnings),
    }


def daily_from_dict(doc: dict[str, Any]) -> DailyPerformanceRecord:
    doc = migrate_daily(doc)
    per_currency: dict[str, CurrencyDay] = {}
    for ccy, cd in (doc.get("currencies") or {}).items():
        per_currency[ccy] = CurrencyDay(
            **{attr: _num(cd.get(camel)) for attr, camel in _DAY_FIELDS.items()},
            asset_performance={
                k: _asset_day_from_dict(a) for k, a in (cd.get("assetPerformance") or {}).items()
            },
        )
    return DailyPerformanceRecord(
        date=dt.date.fromisoformat(doc["date"]),
        per_currency=per_currency,
        warnings=tuple(doc.get("warnings") or ()),
    )


# ---------------------------------------------------------------- period records


def _asset_period_from_dict(d: dict[str, Any]) -> AssetPeriod:
    vals = {attr: _num(d.get(camel)) for attr, camel in _ASSET_PERIOD_FIELDS.items()}
    vals["valid_docs_count"] = int(vals["valid_docs_count"])
    return AssetPeriod(**vals)


def _period_part_to_dict(p: Any, fields: dict[str, str]) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for attr, camel in fields.items():
        v = getattr(p, attr)
        out[camel] = int(v) if attr == "valid_docs_count" else float(v)
    return out


def period_to_dict(record: ConsolidatedPeriodRecord) -> dict[str, Any]:
    currencies: dict[str, Any] = {}
    for ccy, cp in record.per_currency.items():
        cd = _period_part_to_dict(cp, _CURRENCY_PERIOD_FIELDS)
        cd["assetPerformance"] = {
            k: _period_part_to_dict(a, _ASSET_PERIOD_FIELDS) for k, a in cp.asset_performance.items()
        }
        currencies[ccy] = cd
    return {
        "schemaVersion": int(record.schema_version),
        "periodType": record.period_type,
        "periodKey": record.period_key,
        "startDate": record.start_date.isoformat(),
        "endDate": record.end_date.isoformat(),
        "docsCount": int(record.docs_count),
        "currencies": currencies,
    }


def period_from_dict(doc: dict[str, Any]) -> ConsolidatedPeriodRecord:
    doc = migrate_period(doc)
    per_currency: dict[str, CurrencyPeriod] = {}
    for ccy, cd in (doc.get("currencies") or {}).items():
        vals = {attr: _num(cd.get(camel)) for attr, camel in _CURRENCY_PERIOD_FIELDS.items()}
        vals["valid_docs_count"] = int(vals["valid_docs_count"])
        per_currency[ccy] = CurrencyPeriod(
            **vals,
            asset_performance={
                k: _asset_period_from_dict(a) for k, a in (cd.get("assetPerformance") or {}).items()
            },
        )
    return ConsolidatedPeriodRecord(
        period_type=doc["periodType"],
        period_key=doc["periodKey"],
        start_date=dt.date.fromisoformat(doc["startDate"]),
        end_date=dt.date.fromisoformat(doc["endDate"]),
        docs_count=int(doc.get("docsCount") or 0),
        per_currency=per_currency,
        schema_version=int(doc["schemaVersion"]),
    )


def dumps(doc: dict[str, Any]) -> str:
    return json.dumps(doc, indent=2, sort_keys=True)


# ---------------------------------------------------------------- migrations


def document_version(doc: dict[str, Any]) -> int:
    """Version 1 documents carry `version` (or nothing); later ones `schemaVersion`."""
    if "schemaVersion" in doc:
        return int(doc["schemaVersion"])
    return int(doc.get("version") or 1)


def _split_v1_currencies(doc: dict[str, Any]) -> tuple[dict[str, Any], dict[str, Any]]:
    # v1 kept the per-currency maps as top-level keys next to the metadata.
    currencies = {k: v for k, v in doc.items() if len(k) == 3 and k.isalpha() and k.isupper() and isinstance(v, dict)}
    rest = {k: v for k, v in doc.items() if k not in currencies and k != "version"}
    return currencies, rest


def _daily_v1_to_v2(doc: dict[str, Any]) -> dict[str, Any]:
    currencies, rest = _split_v1_currencies(doc)
    for cd in currencies.values():
        for a in (cd.get("assetPerformance") or {}).values():
            a.setdefault("units", 0.0)
            a.setdefault("flags", [])
    return {**rest, "schemaVersion": 2, "currencies": currencies, "warnings": rest.get("warnings") or []}


def _period_v1_to_v2(doc: dict[str, Any]) -> dict[str, Any]:
    currencies, rest = _split_v1_currencies(doc)
    docs_count = int(rest.get("docsCount") or 0)
    for cd in currencies.values():
        cd.setdefault("startTotalInvestment", 0.0)
        cd.setdefault("endTotalInvestment", 0.0)
        cd.setdefault("validDocsCount", docs_count)
        parts = [cd, *(cd.get("assetPerformance") or {}).values()]
        for p in parts:
            p.setdefault("startFactor", 1.0)
            p.setdefault("validDocsCount", cd["validDocsCount"])
            if "periodReturn" not in p:
                p["periodReturn"] = (period_factor(_num(p.get("endFactor")), _num(p["startFactor"])) - 1.0) * 100.0
            if "personalReturn" not in p:
                p["personalReturn"] = personal_return_pct(
                    start_value=_num(p.get("startTotalValue")),
                    end_value=_num(p.get("endTotalValue")),
                    total_cash_flow=_num(p.get("totalCashFlow")),
                )
    return {**rest, "schemaVersion": 2, "currencies": currencies}


DAILY_MIGRATIONS: dict[int, Callable[[dict[str, Any]], dict[str, Any]]] = {1: _daily_v1_to_v2}
PERIOD_MIGRATIONS: dict[int, Callable[[dict[str, Any]], dict[str, Any]]] = {1: _period_v1_to_v2}


def _migrate(doc: dict[str, Any], migrations: dict[int, Callable[[dict[str, Any]], dict[str, Any]]]) -> dict[str, Any]:
    version = document_version(doc)
    if version > SCHEMA_VERSION:
        raise InvariantViolation(f"Document schema version {version} is newer than supported {SCHEMA_VERSION}")
    out = json.loads(json.dumps(doc))
    while version < SCHEMA_VERSION:
        step = migrations.get(version)
        if step is None:
            raise InvariantViolation(f"No migration from schema version {version}")
        out = step(out)
        new_version = document_version(out)
        logger.debug("Migrated document from schema v%d to v%d", version, new_version)
        version = new_version
    return out


def migrate_daily(doc: dict[str, Any]) -> dict[str, Any]:
    return _migrate(doc, DAILY_MIGRATIONS)


def migrate_period(doc: dict[str, Any]) -> dict[str, Any]:
    return _migrate(doc, PERIOD_MIGRATIONS)
