from __future__ import annotations

import pytest

from portfolio_perf.config import PerformanceConfig, load_config
from portfolio_perf.exceptions import ConfigError


def test_defaults_when_no_file(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("HOME", str(tmp_path))
    cfg, source = load_config()
    assert source is None
    assert cfg == PerformanceConfig()
    assert cfg.realized_pnl_method == "average"
    assert cfg.min_docs["1y"] == 252


def test_yaml_in_working_directory_wins(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("HOME", str(tmp_path))
    (tmp_path / "portfolio_perf.yaml").write_text(
        "anomaly_threshold_pct: 25\nrealized_pnl_method: fifo\ncurrencies: [USD, EUR]\n", encoding="utf-8"
    )
    cfg, source = load_config()
    assert source == "portfolio_perf.yaml"
    assert cfg.anomaly_threshold_pct == 25.0
    assert cfg.realized_pnl_method == "fifo"
    assert cfg.currencies == ["USD", "EUR"]


def test_invalid_values_raise_config_error(tmp_path):
    p = tmp_path / "bad.yaml"
    p.write_text("realized_pnl_method: lifo\n", encoding="utf-8")
    with pytest.raises(ConfigError):
        load_config(p)
    with pytest.raises(ConfigError):
        load_config(tmp_path / "missing.yaml")
