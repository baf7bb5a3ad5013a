from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Optional

import typer
from dotenv import load_dotenv

from portfolio_perf.config import PerformanceConfig, load_config
from portfolio_perf.exceptions import ConfigError, InvariantViolation
from portfolio_perf.util import parse_date

app = typer.Typer(help="Portfolio performance engine", add_completion=False, no_args_is_help=True)

logger = logging.getLogger(__name__)


def _config(ctx: typer.Context) -> PerformanceConfig:
    return ctx.obj["config"]


def _store(cfg: PerformanceConfig):
    from portfolio_perf.db.session import get_database_url, get_session
    from portfolio_perf.store import PerformanceStore

    return PerformanceStore(get_session(get_database_url(cfg.database_url)))


def _date_option(value: Optional[str], name: str):
    d = parse_date(value)
    if d is None:
        raise typer.BadParameter(f"Invalid --{name} date: {value}")
    return d


@app.callback()
def main(
    ctx: typer.Context,
    config: Optional[Path] = typer.Option(None, help="YAML config path (default: search ./portfolio_perf.yaml, ~/.portfolio_perf/config.yaml)."),
    log_level: Optional[str] = typer.Option(None, help="Override the configured log level."),
):
    load_dotenv()
    try:
        cfg, source = load_config(config)
    except ConfigError as e:
        raise typer.BadParameter(str(e)) from e
    logging.basicConfig(
        level=(log_level or cfg.log_level).upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    if source:
        logger.debug("Loaded config from %s", source)
    ctx.obj = {"config": cfg}


@app.command("compute-day")
def compute_day_cmd(
    ctx: typer.Context,
    owner: str = typer.Option(..., help="Owner (user) id."),
    account: list[str] = typer.Option(..., help="Account id; repeat for several accounts."),
    data_dir: Path = typer.Option(Path("./data/input"), help="Folder with prices.csv, rates.csv and <account>/{holdings,transactions}.csv."),
    date: str = typer.Option(..., help="Day to compute (YYYY-MM-DD)."),
    as_of: Optional[str] = typer.Option(None, help="Days before this date are closed and cannot be rewritten."),
):
    """
    Compute daily records for the given accounts plus the overall aggregate.
    """
    from portfolio_perf.holdings import load_holdings_csv
    from portfolio_perf.pipeline import AccountInput, run_daily
    from portfolio_perf.prices import load_prices_csv, load_rates_csv
    from portfolio_perf.transactions import load_transactions_csv

    cfg = _config(ctx)
    day = _date_option(date, "date")
    as_of_d = _date_option(as_of, "as-of") if as_of is not None else None
    prices_csv = data_dir / "prices.csv"
    rates_csv = data_dir / "rates.csv"
    for p in (prices_csv, rates_csv):
        if not p.exists():
            raise typer.BadParameter(f"File not found: {p}")

    warnings: list[str] = []
    prices, w = load_prices_csv(prices_csv)
    warnings.extend(w)
    rates, w = load_rates_csv(rates_csv, base=cfg.base_currency)
    warnings.extend(w)
    accounts: list[AccountInput] = []
    for acc_id in account:
        holdings_csv = data_dir / acc_id / "holdings.csv"
        if not holdings_csv.exists():
            raise typer.BadParameter(f"Holdings file not found: {holdings_csv}")
        holdings, w = load_holdings_csv(holdings_csv)
        warnings.extend(w)
        tx_csv = data_dir / acc_id / "transactions.csv"
        ledger = []
        if tx_csv.exists():
            ledger, w = load_transactions_csv(tx_csv)
            warnings.extend(w)
        accounts.append(AccountInput(account_id=acc_id, holdings=holdings, ledger=ledger))
    for msg in warnings:
        logger.warning(msg)

    store = _store(cfg)
    try:
        result = run_daily(store, owner, accounts, prices, rates, day, config=cfg, as_of=as_of_d)
    except InvariantViolation as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=2)
    finally:
        store.session.close()

    from portfolio_perf.schema import daily_to_dict

    payload = {acc_id: daily_to_dict(rec) for acc_id, rec in result.records.items()}
    typer.echo(json.dumps(payload, indent=2, sort_keys=True))


@app.command("consolidate")
def consolidate_cmd(
    ctx: typer.Context,
    owner: str = typer.Option(..., help="Owner (user) id."),
    account: str = typer.Option("overall", help="Account id."),
    as_of: Optional[str] = typer.Option(None, help="Reference date (YYYY-MM-DD); defaults to today."),
):
    """
    Consolidate every closed month and year that has daily records.
    """
    import datetime as dt

    from portfolio_perf.pipeline import consolidate_closed_periods

    as_of_d = _date_option(as_of, "as-of") if as_of is not None else dt.date.today()
    store = _store(_config(ctx))
    try:
        written = consolidate_closed_periods(store, owner, account, as_of=as_of_d)
    finally:
        store.session.close()
    typer.echo(json.dumps([f"{r.period_type}:{r.period_key}" for r in written], indent=2))


@app.command("returns")
def returns_cmd(
    ctx: typer.Context,
    owner: str = typer.Option(..., help="Owner (user) id."),
    account: str = typer.Option("overall", help="Account id."),
    currency: str = typer.Option("USD", help="Reporting currency."),
    asset: Optional[str] = typer.Option(None, help="Restrict to one asset key (name_type)."),
    now: Optional[str] = typer.Option(None, help="Reference date (YYYY-MM-DD); defaults to today."),
):
    """
    Trailing-window returns (YTD, 1M, 3M, 6M, 1Y, 2Y, 5Y).
    """
    import datetime as dt

    from portfolio_perf.pipeline import trailing_returns

    cfg = _config(ctx)
    now_d = _date_option(now, "now") if now is not None else dt.date.today()
    store = _store(cfg)
    try:
        results = trailing_returns(
            store, owner, account, now=now_d, currency=currency.upper(), asset_key=asset, config=cfg
        )
    finally:
        store.session.close()
    typer.echo(json.dumps({k: v.to_dict() for k, v in results.items()}, indent=2, sort_keys=True))


@app.command("performance")
def performance_cmd(
    ctx: typer.Context,
    owner: str = typer.Option(..., help="Owner (user) id."),
    account: str = typer.Option("overall", help="Account id."),
    currency: str = typer.Option("USD", help="Reporting currency."),
    asset: Optional[str] = typer.Option(None, help="Restrict to one asset key (name_type)."),
    now: Optional[str] = typer.Option(None, help="Reference date (YYYY-MM-DD); defaults to today."),
):
    """
    Trailing returns with monthly and yearly returns per year and the value series.
    """
    import datetime as dt

    from portfolio_perf.pipeline import returns_report

    cfg = _config(ctx)
    now_d = _date_option(now, "now") if now is not None else dt.date.today()
    store = _store(cfg)
    try:
        report = returns_report(
            store, owner, account, now=now_d, currency=currency.upper(), asset_key=asset, config=cfg
        )
    finally:
        store.session.close()
    typer.echo(json.dumps(report.to_dict(), indent=2, sort_keys=True))


@app.command("migrate-records")
def migrate_records_cmd(
    ctx: typer.Context,
    owner: Optional[str] = typer.Option(None, help="Limit to one owner id."),
):
    """
    Rewrite stored records to the current schema version.
    """
    store = _store(_config(ctx))
    try:
        n = store.migrate_all(owner)
        store.commit()
    finally:
        store.session.close()
    typer.echo(json.dumps({"migrated": n}))


if __name__ == "__main__":
    app()
