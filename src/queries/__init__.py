"""Derived read-only views package."""

from src.queries.summary import (
    LedgerSummary,
    compute_summary,
    filter_transactions,
    ordered_transactions,
)

__all__ = [
    "LedgerSummary",
    "compute_summary",
    "filter_transactions",
    "ordered_transactions",
]
