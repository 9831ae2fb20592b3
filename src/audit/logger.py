"""
Audit Logger

DESIGN DECISION: Every business event and every rejected operation is logged.

The audit logger:
- Is async so it composes with the store's async operations
- Gracefully handles failures (audit storage errors never fail an operation)
- Never receives credentials, only account ids and amounts
"""

from typing import Optional

import structlog

from src.models.audit import AuditEvent, AuditEventBuilder
from src.services.storage import AuditStorageInterface


# Configure structlog for local logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)


class AuditLogger:
    """
    Central audit logging service.

    Logs events both to:
    1. Structured local log (for debugging)
    2. Audit storage, when one is configured (for persistence)
    """

    def __init__(
        self,
        storage: Optional[AuditStorageInterface] = None,
    ):
        """
        Initialize audit logger.

        Args:
            storage: Storage backend for persistence.
                    If None, only logs locally.
        """
        self._storage = storage
        self._logger = structlog.get_logger("audit")

    @property
    def storage(self) -> Optional[AuditStorageInterface]:
        return self._storage

    async def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        Always logs locally. Persists to storage if available.

        Returns True if storage write succeeded (or no storage configured).
        """
        log_dict = event.to_log_dict()

        if event.severity.value in ("error", "critical"):
            self._logger.error("audit_event", **log_dict)
        elif event.severity.value == "warning":
            self._logger.warning("audit_event", **log_dict)
        else:
            self._logger.info("audit_event", **log_dict)

        if self._storage:
            try:
                return await self._storage.append_event(event)
            except Exception as e:
                # Log failure but don't raise
                self._logger.error(
                    "audit_storage_failed",
                    error=str(e),
                    event_id=str(event.event_id),
                )
                return False

        return True

    async def log_account_registered(self, account_id: str) -> None:
        await self.log(AuditEventBuilder.account_registered(account_id))

    async def log_login(
        self,
        account_id: Optional[str],
        succeeded: bool,
        credential_upgraded: bool = False,
    ) -> None:
        if succeeded and account_id:
            event = AuditEventBuilder.login_succeeded(account_id, credential_upgraded)
        else:
            event = AuditEventBuilder.login_failed()
        await self.log(event)

    async def log_logout(self, revoked: bool) -> None:
        await self.log(AuditEventBuilder.logged_out(revoked))

    async def log_account_deleted(self, account_id: str, revoked_sessions: int) -> None:
        await self.log(AuditEventBuilder.account_deleted(account_id, revoked_sessions))

    async def log_transfer(
        self,
        account_id: str,
        amount: str,
        fee: str,
        speed: str,
    ) -> None:
        await self.log(AuditEventBuilder.transfer_executed(account_id, amount, fee, speed))

    async def log_conversion(
        self,
        account_id: str,
        amount: str,
        source: str,
        converted: str,
    ) -> None:
        await self.log(AuditEventBuilder.currency_converted(account_id, amount, source, converted))

    async def log_top_up(self, account_id: str, amount: str, currency: str) -> None:
        await self.log(AuditEventBuilder.wallet_topped_up(account_id, amount, currency))

    async def log_card_toggled(self, account_id: str, card_id: str, frozen: bool) -> None:
        await self.log(AuditEventBuilder.card_freeze_toggled(account_id, card_id, frozen))

    async def log_virtual_card_issued(self, account_id: str, card_id: str) -> None:
        await self.log(AuditEventBuilder.virtual_card_issued(account_id, card_id))

    async def log_rejected(
        self,
        operation: str,
        error_code: str,
        error_message: str,
    ) -> None:
        await self.log(AuditEventBuilder.operation_rejected(operation, error_code, error_message))

    async def log_error(
        self,
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
    ) -> None:
        """Log an error."""
        await self.log(AuditEventBuilder.system_error(error_type, error_message, details))
