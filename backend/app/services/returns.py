"""Return metrics for mutual-fund schemes: per-scheme summary and XIRR."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Callable, Iterable, Optional, Sequence

from app.services.holdings_normalizer import coerce_number

PURCHASE_TYPES = {"purchase", "sip", "switch_in"}
REDEMPTION_TYPES = {"redemption", "switch_out"}
DIVIDEND_TYPES = {"dividend", "dividend_payout"}

_RATE_MIN = -0.999
_RATE_MAX = 10.0


def xirr(
    cashflows: Sequence[tuple[date, float]],
    *,
    tolerance: float = 1e-7,
    max_iterations: int = 300,
) -> Optional[float]:
    """Annualized return for irregular cash flows, e.g. ``0.12`` for 12%.

    Investments are negative amounts, redemptions and terminal value are
    positive. Newton-Raphson from several guesses, then bisection. Returns
    ``None`` when the flows do not change sign or no root is found.
    """

    if len(cashflows) < 2:
        return None
    amounts = [amount for _, amount in cashflows]
    if not (any(a > 0 for a in amounts) and any(a < 0 for a in amounts)):
        return None

    ordered = sorted(cashflows, key=lambda cf: cf[0])
    start = ordered[0][0]
    flows = [(amount, (day - start).days / 365.0) for day, amount in ordered]

    def npv(rate: float) -> float:
        return sum(amount / (1.0 + rate) ** years for amount, years in flows)

    def dnpv(rate: float) -> float:
        return sum(-years * amount / (1.0 + rate) ** (years + 1.0) for amount, years in flows)

    npv_tol = max(sum(abs(a) for a, _ in flows) * 1e-6, 1.0)

    def newton(guess: float) -> Optional[float]:
        rate = guess
        for _ in range(max_iterations):
            deriv = dnpv(rate)
            if abs(deriv) < 1e-14:
                break
            next_rate = max(_RATE_MIN, min(_RATE_MAX, rate - npv(rate) / deriv))
            if abs(next_rate - rate) < tolerance:
                rate = next_rate
                break
            rate = next_rate
        return rate if abs(npv(rate)) < npv_tol else None

    total_out = sum(a for a, _ in flows if a < 0)
    total_in = sum(a for a, _ in flows if a > 0)
    span_years = flows[-1][1]
    if span_years > 0 and total_out < 0:
        first_guess = ((-total_in / total_out) - 1.0) / max(span_years, 0.5)
        first_guess = max(-0.99, min(5.0, first_guess))
    else:
        first_guess = 0.1

    for guess in (first_guess, 0.0, 0.1, 0.5, -0.5, 1.0, -0.9):
        result = newton(guess)
        if result is not None:
            return result
    return _bisect(npv, _RATE_MIN, _RATE_MAX, tolerance, max_iterations)


def _bisect(
    f: Callable[[float], float],
    lo: float,
    hi: float,
    tolerance: float,
    max_iterations: int,
) -> Optional[float]:
    f_lo = f(lo)
    if f_lo * f(hi) > 0:
        return None
    for _ in range(max_iterations):
        mid = (lo + hi) / 2.0
        f_mid = f(mid)
        if abs(f_mid) < tolerance or (hi - lo) < tolerance:
            return mid
        if f_lo * f_mid < 0:
            hi = mid
        else:
            lo, f_lo = mid, f_mid
    return (lo + hi) / 2.0


@dataclass
class SchemeSummary:
    total_units: float = 0.0
    total_purchase_units: float = 0.0
    total_redemption_units: float = 0.0
    total_dividend_amount: float = 0.0
    invested_value: float = 0.0
    avg_nav: float = 0.0
    first_investment_date: Optional[date] = None
    last_transaction_date: Optional[date] = None


@dataclass
class CasTransaction:
    date: date
    type: str
    amount: float = 0.0
    units: float = 0.0
    nav: Optional[float] = None
    balance_units: Optional[float] = None
    description: Optional[str] = None
    dividend_rate: Optional[float] = None


def summarize_transactions(transactions: Iterable[CasTransaction]) -> SchemeSummary:
    """Fold a scheme's transactions into units, net invested amount and dates.

    Units held are the running balance reported on the last transaction, or
    purchased minus redeemed units when the statement reports no balances.
    """

    summary = SchemeSummary()
    saw_balance = False
    for txn in sorted(transactions, key=lambda t: t.date):
        if summary.first_investment_date is None or txn.date < summary.first_investment_date:
            summary.first_investment_date = txn.date
        if summary.last_transaction_date is None or txn.date > summary.last_transaction_date:
            summary.last_transaction_date = txn.date

        kind = txn.type.lower()
        if kind in PURCHASE_TYPES:
            summary.total_purchase_units += abs(txn.units)
            summary.invested_value += abs(txn.amount)
        elif kind in REDEMPTION_TYPES:
            summary.total_redemption_units += abs(txn.units)
            summary.invested_value -= abs(txn.amount)
        elif kind in DIVIDEND_TYPES:
            summary.total_dividend_amount += abs(txn.amount)

        if txn.balance_units is not None:
            summary.total_units = coerce_number(txn.balance_units)
            saw_balance = True

    if not saw_balance:
        summary.total_units = max(
            summary.total_purchase_units - summary.total_redemption_units, 0.0
        )
    if summary.total_purchase_units > 0:
        summary.avg_nav = summary.invested_value / summary.total_purchase_units
    return summary


def scheme_cashflows(
    transactions: Iterable[CasTransaction],
    *,
    current_value: float,
    as_of: date,
) -> list[tuple[date, float]]:
    """Cash flows for XIRR: purchases out, redemptions and payouts in, value today."""

    flows: list[tuple[date, float]] = []
    for txn in transactions:
        kind = txn.type.lower()
        amount = abs(txn.amount)
        if not amount:
            continue
        if kind in PURCHASE_TYPES:
            flows.append((txn.date, -amount))
        elif kind in REDEMPTION_TYPES or kind in DIVIDEND_TYPES:
            flows.append((txn.date, amount))
    if current_value > 0:
        flows.append((as_of, current_value))
    return flows


__all__ = [
    "xirr",
    "SchemeSummary",
    "CasTransaction",
    "summarize_transactions",
    "scheme_cashflows",
]
