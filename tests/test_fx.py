from __future__ import annotations

from portfolio_perf.fx import convert
from portfolio_perf.models import RateTable

RATES = RateTable(base="USD", rates={"EUR": 0.9, "COP": 4000.0})


def test_same_currency_is_unchanged():
    assert convert(123.45, "EUR", "EUR", RATES) == 123.45


def test_cross_rate_uses_both_sides():
    got = convert(100.0, "EUR", "COP", RATES)
    assert abs(got - 100.0 * 4000.0 / 0.9) < 1e-6


def test_unknown_currency_defaults_to_rate_one():
    assert convert(10.0, "USD", "XYZ", RATES) == 10.0
    assert convert(10.0, "XYZ", "EUR", RATES) == 9.0


def test_historical_rate_applies_only_from_base_into_default_currency():
    # Cost basis kept at the acquisition FX rate.
    assert convert(100.0, "USD", "COP", RATES, default_currency="COP", historical_rate=3500.0) == 350000.0
    # Target is not the holding's own currency: today's rate.
    assert convert(100.0, "USD", "EUR", RATES, default_currency="COP", historical_rate=3500.0) == 90.0
    # No declared default currency: today's rate.
    assert convert(100.0, "USD", "COP", RATES, historical_rate=3500.0) == 400000.0
