"""
Derived Ledger Views

Read-only aggregates over an account projection: totals, monthly trend,
trailing 30-day flows, savings rate and budget utilization.

DESIGN DECISION: Nothing here is stored or cached. Every view is
recomputed from the projection it is given, so it can never drift from
the ledger.
"""

from datetime import date, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Annotated, Iterable

from pydantic import Field, PlainSerializer

from src.ledger.fx import convert_to_eur, to_money
from src.models.account import AccountState, LedgerModel, LedgerTransaction, Money

TRAILING_WINDOW_DAYS = 30

Percent = Annotated[
    Decimal,
    PlainSerializer(float, return_type=float, when_used="json"),
]

_TENTH = Decimal("0.1")
_HUNDRED = Decimal("100")


class LedgerSummary(LedgerModel):
    """Aggregates for one account, amounts in EUR."""

    total_eur: Money
    month_income: Money
    month_outflow: Money
    monthly_trend: Percent
    income_30d: Money = Field(alias="income30d")
    expense_30d: Money = Field(alias="expense30d")
    savings_rate: Percent
    budget_utilization: Percent


def _percent(numerator: Decimal, denominator: Decimal) -> Decimal:
    if denominator <= 0:
        return Decimal("0.0")
    return (numerator / denominator * _HUNDRED).quantize(_TENTH, rounding=ROUND_HALF_UP)


def _split_flows(transactions: Iterable[LedgerTransaction]) -> tuple[Decimal, Decimal]:
    """(incoming, outgoing) in EUR; outgoing is returned as a positive amount."""
    incoming = Decimal("0")
    outgoing = Decimal("0")
    for txn in transactions:
        eur = convert_to_eur(txn.amount, txn.currency or "EUR")
        if eur >= 0:
            incoming += eur
        else:
            outgoing += -eur
    return to_money(incoming), to_money(outgoing)


def compute_summary(state: AccountState, today: date) -> LedgerSummary:
    total_eur = sum(
        (convert_to_eur(w.balance, w.code) for w in state.wallets),
        Decimal("0"),
    )

    this_month = [
        t for t in state.transactions
        if t.booked_on.year == today.year and t.booked_on.month == today.month
    ]
    month_in, month_out = _split_flows(this_month)

    cutoff = today - timedelta(days=TRAILING_WINDOW_DAYS)
    trailing = [t for t in state.transactions if t.booked_on >= cutoff]
    income_30d, expense_30d = _split_flows(trailing)

    budget = state.user.monthly_budget
    utilization = min(_HUNDRED, _percent(month_out, budget)) if budget > 0 else Decimal("0.0")

    return LedgerSummary(
        total_eur=total_eur,
        month_income=month_in,
        month_outflow=month_out,
        monthly_trend=_percent(month_in - month_out, month_in),
        income_30d=income_30d,
        expense_30d=expense_30d,
        savings_rate=_percent(income_30d - expense_30d, income_30d),
        budget_utilization=utilization,
    )


def ordered_transactions(transactions: Iterable[LedgerTransaction]) -> list[LedgerTransaction]:
    """
    Most recent day first. Same-day entries keep their log order
    (the log is newest-first), since the sort is stable.
    """
    return sorted(transactions, key=lambda t: t.booked_on, reverse=True)


def filter_transactions(
    transactions: Iterable[LedgerTransaction],
    direction: str = "all",
) -> list[LedgerTransaction]:
    """`in` keeps credits, `out` keeps debits, `all` keeps everything; ordered."""
    items = ordered_transactions(transactions)
    if direction == "in":
        return [t for t in items if t.amount > 0]
    if direction == "out":
        return [t for t in items if t.amount < 0]
    return items
