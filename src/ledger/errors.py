"""
Domain Errors

Every failure a ledger operation can report to its caller.
All of them are raised before any mutation is committed.
"""

from typing import Optional


class LedgerError(Exception):
    """Base exception for ledger operations."""

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.field = field


class InvalidInputError(LedgerError):
    """Malformed or missing input the caller can correct."""
    pass


class UnauthenticatedError(LedgerError):
    """Missing, unknown or expired session token."""

    def __init__(self, message: str = "Invalid session"):
        super().__init__(message)


class InvalidCredentialsError(LedgerError):
    """Email/password pair does not match any account."""

    def __init__(self, message: str = "Invalid credentials"):
        super().__init__(message)


class InsufficientFundsError(LedgerError):
    """A debit would drive a wallet below zero."""
    pass


class EmailTakenError(LedgerError):
    """Another account already uses this email."""

    def __init__(self, message: str = "This email is already registered"):
        super().__init__(message, field="email")


class NotFoundError(LedgerError):
    """Entity not found."""
    pass


class AccountNotFoundError(NotFoundError):
    """The account behind a session no longer exists."""

    def __init__(self, message: str = "Account not found"):
        super().__init__(message)


class WalletNotFoundError(NotFoundError):
    """The account holds no wallet in the requested currency."""
    pass


class NoCardError(NotFoundError):
    """The account has no card to operate on."""

    def __init__(self, message: str = "No card available"):
        super().__init__(message)
