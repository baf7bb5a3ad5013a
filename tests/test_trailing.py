from __future__ import annotations

import datetime as dt

import pytest

from portfolio_perf.exceptions import InvariantViolation
from portfolio_perf.models import WindowState
from portfolio_perf.returns import personal_return_pct
from portfolio_perf.trailing import (
    build_returns_report,
    performance_by_year,
    required_docs,
    resolve_windows,
    window_boundaries,
    window_boundary,
)


def test_window_boundaries_are_calendar_based():
    now = dt.date(2024, 3, 31)
    b = window_boundaries(now)
    assert b["ytd"] == dt.date(2024, 1, 1)
    assert b["1m"] == dt.date(2024, 2, 29)
    assert b["3m"] == dt.date(2023, 12, 31)
    assert b["1y"] == dt.date(2023, 3, 31)
    assert b["5y"] == dt.date(2019, 3, 31)
    assert window_boundary("2y", dt.date(2024, 2, 29)) == dt.date(2022, 2, 28)


def test_short_history_is_reported_not_extrapolated(make_day):
    start = dt.date(2024, 5, 1)
    dailies = [make_day(start + dt.timedelta(days=i), 100.0, 0.1) for i in range(40)]
    now = dt.date(2024, 6, 28)
    out = resolve_windows([], [], dailies, now)

    one_year = out["1y"]
    assert one_year.found is True
    assert one_year.state == WindowState.RESOLVED
    assert one_year.docs_count == 40
    assert abs(one_year.time_weighted_return - (1.001 ** 40 - 1.0) * 100.0) < 1e-9
    assert one_year.sufficient_history is False

    # 1m starts 2024-05-28: May 28 .. June 9.
    assert out["1m"].docs_count == 13
    assert out["ytd"].docs_count == 40
    assert out["ytd"].sufficient_history is True


def test_straddling_month_without_dailies_is_not_found(make_day, make_period):
    feb = make_period("month", "2024-02", dt.date(2024, 2, 1), dt.date(2024, 2, 29), factor=1.02, docs=21)
    march = [make_day(dt.date(2024, 3, d), 100.0, 0.5) for d in (1, 4, 5)]
    now = dt.date(2024, 3, 15)
    out = resolve_windows([], [feb], march, now)

    one_month = out["1m"]
    assert one_month.found is False
    assert one_month.state == WindowState.NOT_FOUND
    assert one_month.time_weighted_return is None
    assert "straddles" in one_month.reason

    three_months = out["3m"]
    assert three_months.found is True
    assert three_months.docs_count == 24
    assert abs(three_months.time_weighted_return - (1.02 * 1.005 ** 3 - 1.0) * 100.0) < 1e-9


def test_straddling_month_is_resolved_by_its_dailies(make_day, make_period):
    feb = make_period("month", "2024-02", dt.date(2024, 2, 1), dt.date(2024, 2, 29), factor=1.02, docs=21)
    feb_days = [make_day(dt.date(2024, 2, d), 100.0, 1.0) for d in (15, 20, 28)]
    march = [make_day(dt.date(2024, 3, d), 100.0, 0.5) for d in (1, 4, 5)]
    now = dt.date(2024, 3, 15)
    out = resolve_windows([], [feb], feb_days + march, now)

    one_month = out["1m"]
    assert one_month.found is True
    assert one_month.docs_count == 6
    assert abs(one_month.time_weighted_return - (1.01 ** 3 * 1.005 ** 3 - 1.0) * 100.0) < 1e-9

    # The whole month is inside 3m: its dailies must not be counted twice.
    three_months = out["3m"]
    assert three_months.docs_count == 24
    assert abs(three_months.time_weighted_return - (1.02 * 1.005 ** 3 - 1.0) * 100.0) < 1e-9


def test_straddling_year_is_resolved_by_months_and_boundary_dailies(make_day, make_period):
    year = make_period("year", "2023", dt.date(2023, 1, 2), dt.date(2023, 12, 29), factor=1.10, docs=250)
    june = make_period("month", "2023-06", dt.date(2023, 6, 1), dt.date(2023, 6, 30), factor=1.01, docs=21)
    later = [
        make_period("month", f"2023-{m:02d}", dt.date(2023, m, 1), dt.date(2023, m, 28), factor=1.005, docs=20)
        for m in range(7, 13)
    ]
    june_days = [make_day(dt.date(2023, 6, d), 100.0, 0.2) for d in (20, 27)]
    open_days = [make_day(dt.date(2024, 6, 3), 100.0, 0.3)]
    now = dt.date(2024, 6, 15)

    out = resolve_windows([year], [june] + later, june_days + open_days, now)
    one_year = out["1y"]
    assert one_year.found is True
    assert one_year.docs_count == 2 + 6 * 20 + 1
    expected = (1.002 ** 2) * (1.005 ** 6) * 1.003
    assert abs(one_year.time_weighted_return - (expected - 1.0) * 100.0) < 1e-9

    # Without June's dailies the straddling June record cannot be split.
    out = resolve_windows([year], [june] + later, open_days, now)
    assert out["1y"].found is False
    assert out["1y"].state == WindowState.NOT_FOUND


def test_whole_year_inside_window_is_used_directly(make_day, make_period):
    year = make_period("year", "2023", dt.date(2023, 1, 2), dt.date(2023, 12, 29), factor=1.10, docs=250)
    months = [
        make_period("month", f"2023-{m:02d}", dt.date(2023, m, 2), dt.date(2023, m, 27), factor=1.5, docs=20)
        for m in range(1, 13)
    ]
    now = dt.date(2024, 6, 15)
    out = resolve_windows([year], months, [make_day(dt.date(2024, 1, 2), 100.0, 1.0)], now)
    two_years = out["2y"]
    assert two_years.docs_count == 251
    assert abs(two_years.time_weighted_return - (1.10 * 1.01 - 1.0) * 100.0) < 1e-9
    assert out["ytd"].docs_count == 1


def test_empty_window_is_not_found():
    out = resolve_windows([], [], [], dt.date(2024, 6, 15))
    assert all(r.found is False for r in out.values())
    assert out["5y"].reason == "no records in window"


def test_personal_return_uses_window_start_end_and_flows(make_day):
    days = [
        make_day(dt.date(2024, 6, 3), 100.0, 0.0),
        make_day(dt.date(2024, 6, 4), 160.0, 5.0, cf=-50.0),
        make_day(dt.date(2024, 6, 5), 165.0, 3.125),
    ]
    out = resolve_windows([], [], days, dt.date(2024, 6, 10))
    expected = personal_return_pct(start_value=100.0, end_value=165.0, total_cash_flow=-50.0)
    assert abs(out["1m"].personal_return - expected) < 1e-12


def test_asset_level_windows(make_day):
    days = [
        make_day(dt.date(2024, 6, 3), 100.0, 1.0, asset_key="AAA_stock"),
        make_day(dt.date(2024, 6, 4), 100.0, 1.0),
    ]
    out = resolve_windows([], [], days, dt.date(2024, 6, 10), asset_key="AAA_stock")
    assert out["1m"].docs_count == 1
    assert resolve_windows([], [], days, dt.date(2024, 6, 10), asset_key="ZZZ_bond")["1m"].found is False


def test_required_docs():
    assert required_docs("1y", dt.date(2024, 6, 1)) == 252
    assert required_docs("ytd", dt.date(2024, 6, 1)) == 2
    assert required_docs("ytd", dt.date(2024, 1, 5)) == 1
    assert required_docs("1m", dt.date(2024, 6, 1), {"1m": 5}) == 5


def test_performance_by_year(make_day, make_period):
    jan = make_period("month", "2024-01", dt.date(2024, 1, 2), dt.date(2024, 1, 31), factor=1.02, docs=21)
    feb_days = [make_day(dt.date(2024, 2, d), 100.0, 1.0) for d in (1, 2)]
    out = performance_by_year([jan], feb_days)
    y = out[2024]
    assert abs(y.months[1] - 2.0) < 1e-9
    assert abs(y.months[2] - (1.01 ** 2 - 1.0) * 100.0) < 1e-9
    assert abs(y.total - (1.02 * 1.01 ** 2 - 1.0) * 100.0) < 1e-9


def test_year_known_only_from_its_year_record(make_day, make_period):
    y2022 = make_period(
        "year", "2022", dt.date(2022, 1, 3), dt.date(2022, 12, 30), factor=1.1, docs=250, end_value=110.0
    )
    jan = make_period("month", "2024-01", dt.date(2024, 1, 2), dt.date(2024, 1, 31), factor=1.02, docs=21)
    feb_days = [make_day(dt.date(2024, 2, d), 100.0, 1.0) for d in (1, 2)]
    out = performance_by_year([jan], feb_days, consolidated_years=[y2022])
    assert sorted(out) == [2022, 2024]
    y = out[2022]
    assert y.months == {}
    assert abs(y.total - 10.0) < 1e-9
    assert abs(y.personal_total - 10.0) < 1e-9
    assert y.to_dict()["months"] == {str(m): 0.0 for m in range(1, 13)}


def test_personal_monthly_return_accounts_for_deposits(make_day):
    days = [
        make_day(dt.date(2024, 3, 1), 100.0, 0.0),
        make_day(dt.date(2024, 3, 4), 150.0, 10.0, cf=-40.0),
    ]
    y = performance_by_year([], days)[2024]
    assert abs(y.months[3] - 10.0) < 1e-9
    # (150 - 100 - 40) / (100 + 40 / 2)
    assert abs(y.personal_months[3] - 10.0 / 120.0 * 100.0) < 1e-9
    assert abs(y.personal_total - y.personal_months[3]) < 1e-12


def test_returns_report_lists_years_and_values(make_day, make_period):
    y2022 = make_period(
        "year", "2022", dt.date(2022, 1, 3), dt.date(2022, 12, 30), factor=1.1, docs=250, end_value=110.0
    )
    jan = make_period("month", "2024-01", dt.date(2024, 1, 2), dt.date(2024, 1, 31), factor=1.02, docs=21)
    feb_days = [make_day(dt.date(2024, 2, d), 100.0, 1.0) for d in (1, 2)]
    report = build_returns_report([y2022], [jan], feb_days, dt.date(2024, 2, 2))
    assert report.available_years == [2024, 2022]
    assert [p.date for p in report.value_series] == [
        dt.date(2022, 12, 30),
        dt.date(2024, 1, 31),
        dt.date(2024, 2, 1),
        dt.date(2024, 2, 2),
    ]
    assert abs(report.overall_percent_change - (100.0 - 110.0) / 110.0 * 100.0) < 1e-9
    doc = report.to_dict()
    assert doc["availableYears"] == ["2024", "2022"]
    assert doc["startDate"] == "2022-12-30"
    assert doc["returns"]["ytd"]["found"] is True
    assert set(doc["performanceByYear"]) == {"2022", "2024"}


def test_unknown_window_is_an_invariant_violation():
    with pytest.raises(InvariantViolation):
        window_boundary("10y", dt.date(2024, 1, 1))
    with pytest.raises(InvariantViolation):
        required_docs("10y", dt.date(2024, 1, 1))
