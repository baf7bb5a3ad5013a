from __future__ import annotations

import datetime as dt
import sys
from pathlib import Path

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from portfolio_perf.db.models import Base
from portfolio_perf.models import (
    AssetDay,
    AssetPeriod,
    ConsolidatedPeriodRecord,
    CurrencyDay,
    CurrencyPeriod,
    DailyPerformanceRecord,
)
from portfolio_perf.store import PerformanceStore


@pytest.fixture()
def session() -> Session:
    engine = create_engine("sqlite:///:memory:", future=True)
    Base.metadata.create_all(bind=engine)
    SessionLocal = sessionmaker(bind=engine, class_=Session, autoflush=False, autocommit=False)
    with SessionLocal() as s:
        yield s


@pytest.fixture()
def store(session) -> PerformanceStore:
    return PerformanceStore(session)


def _make_day(
    d: dt.date,
    value: float,
    adj: float,
    *,
    cf: float = 0.0,
    ccy: str = "USD",
    investment: float = 0.0,
    asset_key: str | None = None,
) -> DailyPerformanceRecord:
    assets = {}
    if asset_key is not None:
        assets[asset_key] = AssetDay(
            total_value=value,
            total_investment=investment,
            total_cash_flow=cf,
            unrealized_profit_and_loss=value - investment,
            daily_change_percentage=adj,
            adjusted_daily_change_percentage=adj,
            daily_return=adj / 100.0,
        )
    cd = CurrencyDay(
        total_value=value,
        total_investment=investment,
        total_cash_flow=cf,
        unrealized_profit_and_loss=value - investment,
        daily_change_percentage=adj,
        adjusted_daily_change_percentage=adj,
        daily_return=adj / 100.0,
        asset_performance=assets,
    )
    return DailyPerformanceRecord(date=d, per_currency={ccy: cd})


def _make_period(
    period_type: str,
    key: str,
    start: dt.date,
    end: dt.date,
    *,
    factor: float,
    docs: int,
    start_value: float = 100.0,
    end_value: float = 100.0,
    cf: float = 0.0,
    ccy: str = "USD",
) -> ConsolidatedPeriodRecord:
    cp = CurrencyPeriod(
        start_factor=1.0,
        end_factor=factor,
        period_return=(factor - 1.0) * 100.0,
        start_total_value=start_value,
        end_total_value=end_value,
        start_total_investment=0.0,
        end_total_investment=0.0,
        total_cash_flow=cf,
        personal_return=0.0,
        valid_docs_count=docs,
        asset_performance={
            "AAA_stock": AssetPeriod(
                start_factor=1.0,
                end_factor=factor,
                period_return=(factor - 1.0) * 100.0,
                start_total_value=start_value,
                end_total_value=end_value,
                total_cash_flow=cf,
                personal_return=0.0,
                valid_docs_count=docs,
            )
        },
    )
    return ConsolidatedPeriodRecord(
        period_type=period_type,
        period_key=key,
        start_date=start,
        end_date=end,
        docs_count=docs,
        per_currency={ccy: cp},
    )


@pytest.fixture()
def make_day():
    return _make_day


@pytest.fixture()
def make_period():
    return _make_period
