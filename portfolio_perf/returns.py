from __future__ import annotations

from typing import Iterable


def modified_dietz_return(
    *,
    begin_value: float,
    end_value: float,
    net_external_flow: float,
    flow_weight: float = 0.5,
) -> float | None:
    """
    Modified Dietz return for a period with (net) external flow.

    - `net_external_flow` is portfolio-perspective: contributions positive, withdrawals negative.
    - `flow_weight` approximates average timing (0.5 means mid-period).
    """
    denom = float(begin_value) + float(flow_weight) * float(net_external_flow)
    if abs(denom) <= 1e-12:
        return None
    return (float(end_value) - float(begin_value) - float(net_external_flow)) / denom


def chain_factors(factors: Iterable[float]) -> float:
    """Growth factors of consecutive sub-periods multiplied into one."""
    prod = 1.0
    for f in factors:
        prod *= float(f)
    return prod


def compound_factor(changes_pct: Iterable[float]) -> float:
    return chain_factors(1.0 + float(c) / 100.0 for c in changes_pct)


def personal_return_pct(*, start_value: float, end_value: float, total_cash_flow: float) -> float:
    """
    Money-weighted return in percent (simplified Modified Dietz, flows at mid-period).

    `total_cash_flow` uses the ledger convention: buys negative, sells and dividends
    positive. Net deposits into the portfolio are therefore `-total_cash_flow`.
    """
    start_value = float(start_value)
    total_cash_flow = float(total_cash_flow)
    if start_value == 0 and total_cash_flow == 0:
        return 0.0
    net_deposits = -total_cash_flow
    if start_value + 0.5 * net_deposits <= 0:
        return 0.0
    r = modified_dietz_return(
        begin_value=start_value,
        end_value=end_value,
        net_external_flow=net_deposits,
    )
    return 0.0 if r is None else r * 100.0


def period_factor(end_factor: float, start_factor: float) -> float:
    """Growth over a period from its chained factors; a zero start factor means no growth."""
    if float(start_factor) == 0:
        return 1.0
    return float(end_factor) / float(start_factor)
