from __future__ import annotations

import os
from pathlib import Path
from typing import Literal, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError

from portfolio_perf.exceptions import ConfigError
from portfolio_perf.trailing import DEFAULT_MIN_DOCS


class PerformanceConfig(BaseModel):
    base_currency: str = Field(default="USD", description="Unit the FX rate table is quoted against")
    # Reported currencies; empty means every currency in the rate table.
    currencies: list[str] = Field(default_factory=list)
    anomaly_threshold_pct: float = Field(
        default=50.0, gt=0, description="Per-asset |adjusted daily change| above this is treated as bad data"
    )
    realized_pnl_method: Literal["average", "fifo"] = "average"
    min_docs: dict[str, int] = Field(default_factory=lambda: dict(DEFAULT_MIN_DOCS))
    database_url: Optional[str] = Field(default=None, description="SQLAlchemy URL; DATABASE_URL env wins")
    log_level: str = "INFO"


def _candidate_paths() -> list[Path]:
    paths = [Path("portfolio_perf.yaml")]
    home = Path(os.path.expanduser("~"))
    paths.append(home / ".portfolio_perf" / "config.yaml")
    return paths


def load_config(path: Path | None = None) -> tuple[PerformanceConfig, Optional[str]]:
    """
    Load engine settings from YAML (if present).

    Search paths (first match wins) unless `path` is given:
      - ./portfolio_perf.yaml
      - ~/.portfolio_perf/config.yaml
    """
    candidates = [Path(path)] if path is not None else _candidate_paths()
    for p in candidates:
        if p.exists():
            try:
                data = yaml.safe_load(p.read_text()) or {}
                return PerformanceConfig.model_validate(data), str(p)
            except (yaml.YAMLError, ValidationError) as e:
                raise ConfigError(f"Invalid config {p}: {e}") from e
    if path is not None:
        raise ConfigError(f"Config file not found: {path}")
    return PerformanceConfig(), None
