from __future__ import annotations

import json

import pytest
from typer.testing import CliRunner

from portfolio_perf.cli import app

runner = CliRunner()


@pytest.fixture()
def workdir(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("HOME", str(tmp_path))
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path / 'perf.db'}")
    data = tmp_path / "input"
    (data / "taxable").mkdir(parents=True)
    (data / "rates.csv").write_text("currency,rate\nUSD,1\nEUR,0.5\n", encoding="utf-8")
    (data / "taxable" / "holdings.csv").write_text(
        "name,type,units,unit_cost,currency,symbol\nAAA,stock,10,10,USD,AAA.X\n", encoding="utf-8"
    )
    return data


def _prices(data, price: float) -> None:
    (data / "prices.csv").write_text(f"symbol,price,currency\nAAA.X,{price},USD\n", encoding="utf-8")


def test_compute_day_then_returns(workdir):
    _prices(workdir, 10)
    args = ["compute-day", "--owner", "u1", "--account", "taxable", "--data-dir", str(workdir)]
    first = runner.invoke(app, args + ["--date", "2025-03-03"])
    assert first.exit_code == 0, first.output
    doc = json.loads(first.stdout)
    assert set(doc) == {"taxable", "overall"}
    assert doc["taxable"]["currencies"]["USD"]["totalValue"] == 100.0
    assert doc["taxable"]["currencies"]["EUR"]["totalValue"] == 50.0

    _prices(workdir, 11)
    second = runner.invoke(app, args + ["--date", "2025-03-04"])
    assert second.exit_code == 0, second.output
    assert json.loads(second.stdout)["overall"]["currencies"]["USD"]["adjustedDailyChangePercentage"] == pytest.approx(10.0)

    res = runner.invoke(app, ["returns", "--owner", "u1", "--now", "2025-03-04"])
    assert res.exit_code == 0, res.output
    windows = json.loads(res.stdout)
    assert windows["ytd"]["found"] is True
    assert windows["ytd"]["docsCount"] == 2
    assert windows["ytd"]["timeWeightedReturn"] == pytest.approx(10.0)


def test_invalid_date_is_rejected(workdir):
    _prices(workdir, 10)
    res = runner.invoke(
        app, ["compute-day", "--owner", "u1", "--account", "taxable", "--data-dir", str(workdir), "--date", "soon"]
    )
    assert res.exit_code != 0


def test_performance_reports_years(workdir):
    _prices(workdir, 10)
    args = ["compute-day", "--owner", "u1", "--account", "taxable", "--data-dir", str(workdir)]
    assert runner.invoke(app, args + ["--date", "2025-03-03"]).exit_code == 0
    _prices(workdir, 11)
    assert runner.invoke(app, args + ["--date", "2025-03-04"]).exit_code == 0

    res = runner.invoke(app, ["performance", "--owner", "u1", "--now", "2025-03-04"])
    assert res.exit_code == 0, res.output
    doc = json.loads(res.stdout)
    assert doc["availableYears"] == ["2025"]
    assert doc["performanceByYear"]["2025"]["months"]["3"] == pytest.approx(10.0)
    assert doc["totalValueData"]["values"] == [100.0, 110.0]
    assert doc["returns"]["ytd"]["found"] is True
