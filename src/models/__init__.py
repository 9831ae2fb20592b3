"""
Data Models Package

This package contains all Pydantic models used by the ledger service.
All data flowing through the system must conform to these schemas.
"""

from src.models.account import (
    CURRENT_SCHEMA_VERSION,
    AccountCollection,
    AccountState,
    ActionResult,
    AuthResult,
    Beneficiary,
    Card,
    CardToggleResult,
    CardType,
    LedgerTransaction,
    Money,
    TransactionKind,
    TransferReceipt,
    UserAccount,
    UserProfile,
    VirtualCardResult,
    Wallet,
)
from src.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Ledger models
    "CURRENT_SCHEMA_VERSION",
    "AccountCollection",
    "AccountState",
    "ActionResult",
    "AuthResult",
    "Beneficiary",
    "Card",
    "CardToggleResult",
    "CardType",
    "LedgerTransaction",
    "Money",
    "TransactionKind",
    "TransferReceipt",
    "UserAccount",
    "UserProfile",
    "VirtualCardResult",
    "Wallet",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
