from __future__ import annotations

import datetime as dt

import pytest

from portfolio_perf.aggregate import aggregate, pre_change_weighted
from portfolio_perf.exceptions import InvariantViolation

D = dt.date(2025, 3, 4)


def test_combined_change_leans_toward_larger_account(make_day):
    a = make_day(D, 1000.0, 2.0, investment=900.0)
    b = make_day(D, 3000.0, 5.0, investment=2500.0)
    out = aggregate([a, b]).per_currency["USD"]

    pre_a = 1000.0 / 1.02
    pre_b = 3000.0 / 1.05
    expected = (pre_a * 2.0 + pre_b * 5.0) / (pre_a + pre_b)
    assert abs(out.adjusted_daily_change_percentage - expected) < 1e-12
    assert 2.0 <= out.adjusted_daily_change_percentage <= 5.0
    assert out.adjusted_daily_change_percentage > 3.5
    assert out.total_value == 4000.0
    assert out.total_investment == 3400.0
    assert out.unrealized_profit_and_loss == 600.0


def test_combined_change_stays_within_constituents(make_day):
    cases = [(10.0, -3.0, 5000.0, 12.0), (250.0, 40.0, 1.0, -20.0), (700.0, 0.0, 700.0, 0.5)]
    for va, ca, vb, cb in cases:
        out = aggregate([make_day(D, va, ca), make_day(D, vb, cb)]).per_currency["USD"]
        c = out.adjusted_daily_change_percentage
        assert min(ca, cb) - 1e-12 <= c <= max(ca, cb) + 1e-12


def test_flows_and_realized_pnl_are_summed(make_day):
    a = make_day(D, 100.0, 0.0, cf=-50.0)
    b = make_day(D, 100.0, 0.0, cf=20.0)
    out = aggregate([a, b]).per_currency["USD"]
    assert out.total_cash_flow == -30.0


def test_all_zero_pre_change_values_give_zero(make_day):
    out = aggregate([make_day(D, 0.0, 0.0), make_day(D, 0.0, 0.0)]).per_currency["USD"]
    assert out.adjusted_daily_change_percentage == 0.0
    assert pre_change_weighted([(100.0, -100.0)]) == 0.0


def test_asset_maps_are_merged_with_the_same_weighting(make_day):
    a = make_day(D, 1000.0, 2.0, asset_key="AAA_stock")
    b = make_day(D, 3000.0, 5.0, asset_key="AAA_stock")
    c = make_day(D, 50.0, 1.0, asset_key="BBB_stock")
    out = aggregate([a, b, c]).per_currency["USD"]
    assert sorted(out.asset_performance) == ["AAA_stock", "BBB_stock"]
    aaa = out.asset_performance["AAA_stock"]
    assert aaa.total_value == 4000.0
    assert 2.0 < aaa.adjusted_daily_change_percentage < 5.0
    assert out.asset_performance["BBB_stock"].adjusted_daily_change_percentage == 1.0


def test_currency_present_in_one_account_only(make_day):
    out = aggregate([make_day(D, 100.0, 1.0, ccy="USD"), make_day(D, 200.0, 3.0, ccy="EUR")])
    assert sorted(out.per_currency) == ["EUR", "USD"]
    assert out.per_currency["EUR"].total_value == 200.0


def test_mixed_dates_and_empty_input_are_rejected(make_day):
    with pytest.raises(InvariantViolation):
        aggregate([make_day(D, 1.0, 0.0), make_day(D + dt.timedelta(days=1), 1.0, 0.0)])
    with pytest.raises(InvariantViolation):
        aggregate([])
