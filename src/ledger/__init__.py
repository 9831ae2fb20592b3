"""Ledger domain package: errors, FX table and wallet/card mutations."""

from src.ledger.errors import (
    AccountNotFoundError,
    EmailTakenError,
    InsufficientFundsError,
    InvalidCredentialsError,
    InvalidInputError,
    LedgerError,
    NoCardError,
    NotFoundError,
    UnauthenticatedError,
    WalletNotFoundError,
)
from src.ledger.fx import (
    BASE_CURRENCY,
    FX_TO_EUR,
    MAX_AMOUNT,
    MAX_BALANCE,
    convert_to_eur,
    credited_eur,
    rate_to_eur,
    to_money,
)

__all__ = [
    # Errors
    "AccountNotFoundError",
    "EmailTakenError",
    "InsufficientFundsError",
    "InvalidCredentialsError",
    "InvalidInputError",
    "LedgerError",
    "NoCardError",
    "NotFoundError",
    "UnauthenticatedError",
    "WalletNotFoundError",
    # FX
    "BASE_CURRENCY",
    "FX_TO_EUR",
    "MAX_AMOUNT",
    "MAX_BALANCE",
    "convert_to_eur",
    "credited_eur",
    "rate_to_eur",
    "to_money",
]
