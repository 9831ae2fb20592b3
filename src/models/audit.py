"""
Audit Models for the Ledger Service

Every business event (and every rejected operation) is recorded as an
AuditEvent. Audit logs are append-only: we never delete or modify them.

CRITICAL: Events carry account ids and amounts, never credentials.
"""

import json
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AuditEventType(str, Enum):
    """Types of events we audit."""
    # Identity and sessions
    ACCOUNT_REGISTERED = "account_registered"
    LOGIN_SUCCEEDED = "login_succeeded"
    LOGIN_FAILED = "login_failed"
    LOGGED_OUT = "logged_out"
    ACCOUNT_DELETED = "account_deleted"

    # Ledger movements
    TRANSFER_EXECUTED = "transfer_executed"
    CURRENCY_CONVERTED = "currency_converted"
    WALLET_TOPPED_UP = "wallet_topped_up"

    # Cards
    CARD_FREEZE_TOGGLED = "card_freeze_toggled"
    VIRTUAL_CARD_ISSUED = "virtual_card_issued"

    # Failures
    OPERATION_REJECTED = "operation_rejected"
    SYSTEM_ERROR = "system_error"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """
    A single audit event.

    This is the core unit of our audit trail.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=_utcnow,
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: AuditEventType
    severity: AuditSeverity = AuditSeverity.INFO

    # Context - what entity is this about?
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'account', 'card')"
    )
    entity_id: Optional[str] = Field(
        default=None,
        description="ID of the entity this event relates to"
    )

    description: str = Field(..., max_length=500)
    details: dict[str, Any] = Field(default_factory=dict)

    error_code: Optional[str] = None
    error_message: Optional[str] = None

    is_user_action: bool = False

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "description": self.description,
            "details": self.details,
            "error_code": self.error_code,
            "error_message": self.error_message,
            "is_user_action": self.is_user_action,
        }

    def to_json_line(self) -> str:
        """One line of the JSON-lines audit file."""
        return json.dumps(self.model_dump(mode="json"), ensure_ascii=False)


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.account_registered(account_id)
        event = AuditEventBuilder.transfer_executed(account_id, "50.00", "0.00", "standard")
    """

    @staticmethod
    def account_registered(account_id: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ACCOUNT_REGISTERED,
            entity_type="account",
            entity_id=account_id,
            description="Account registered with starter wallets",
            is_user_action=True,
        )

    @staticmethod
    def login_succeeded(account_id: str, credential_upgraded: bool) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.LOGIN_SUCCEEDED,
            entity_type="account",
            entity_id=account_id,
            description="Login succeeded",
            details={"credential_upgraded": credential_upgraded},
            is_user_action=True,
        )

    @staticmethod
    def login_failed() -> AuditEvent:
        # No email or account id: failed logins must not reveal which accounts exist
        return AuditEvent(
            event_type=AuditEventType.LOGIN_FAILED,
            severity=AuditSeverity.WARNING,
            entity_type="account",
            description="Login failed: invalid credentials",
            is_user_action=True,
        )

    @staticmethod
    def logged_out(revoked: bool) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.LOGGED_OUT,
            entity_type="session",
            description="Logout requested",
            details={"session_revoked": revoked},
            is_user_action=True,
        )

    @staticmethod
    def account_deleted(account_id: str, revoked_sessions: int) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ACCOUNT_DELETED,
            severity=AuditSeverity.WARNING,
            entity_type="account",
            entity_id=account_id,
            description="Account deleted",
            details={"revoked_sessions": revoked_sessions},
            is_user_action=True,
        )

    @staticmethod
    def transfer_executed(
        account_id: str,
        amount: str,
        fee: str,
        speed: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSFER_EXECUTED,
            entity_type="account",
            entity_id=account_id,
            description=f"Transfer executed: {amount} EUR (fee {fee})",
            details={"amount": amount, "fee": fee, "speed": speed},
            is_user_action=True,
        )

    @staticmethod
    def currency_converted(
        account_id: str,
        amount: str,
        source: str,
        converted: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.CURRENCY_CONVERTED,
            entity_type="account",
            entity_id=account_id,
            description=f"Converted {amount} {source} into {converted} EUR",
            details={"amount": amount, "from": source, "converted": converted},
            is_user_action=True,
        )

    @staticmethod
    def wallet_topped_up(account_id: str, amount: str, currency: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.WALLET_TOPPED_UP,
            entity_type="account",
            entity_id=account_id,
            description=f"Wallet {currency} topped up by {amount}",
            details={"amount": amount, "currency": currency},
            is_user_action=True,
        )

    @staticmethod
    def card_freeze_toggled(account_id: str, card_id: str, frozen: bool) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.CARD_FREEZE_TOGGLED,
            entity_type="card",
            entity_id=card_id,
            description="Card frozen" if frozen else "Card unfrozen",
            details={"account_id": account_id, "frozen": frozen},
            is_user_action=True,
        )

    @staticmethod
    def virtual_card_issued(account_id: str, card_id: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.VIRTUAL_CARD_ISSUED,
            entity_type="card",
            entity_id=card_id,
            description="Virtual card issued",
            details={"account_id": account_id},
            is_user_action=True,
        )

    @staticmethod
    def operation_rejected(
        operation: str,
        error_code: str,
        error_message: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.OPERATION_REJECTED,
            severity=AuditSeverity.WARNING,
            description=f"Operation rejected: {operation}",
            error_code=error_code,
            error_message=error_message,
            details={"operation": operation},
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"System error: {error_type}",
            error_code=error_type,
            error_message=error_message,
            details=details or {},
        )
