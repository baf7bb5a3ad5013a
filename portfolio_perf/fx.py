from __future__ import annotations

from portfolio_perf.models import RateTable


def convert(
    amount: float,
    from_currency: str,
    to_currency: str,
    rates: RateTable,
    default_currency: str | None = None,
    historical_rate: float | None = None,
) -> float:
    """
    Convert `amount` between currencies.

    - Same currency: unchanged.
    - From the base unit into the holding's own default currency with a known
      acquisition rate: use that historical rate so cost basis does not move with
      today's FX.
    - Otherwise `amount * rate(to) / rate(from)`; unknown codes count as rate 1.
    """
    amount = float(amount)
    if from_currency == to_currency:
        return amount
    if (
        historical_rate is not None
        and float(historical_rate) > 0
        and default_currency is not None
        and from_currency == rates.base
        and to_currency == default_currency
    ):
        return amount * float(historical_rate)
    return amount * rates.rate(to_currency) / rates.rate(from_currency)
