"""
Ledger Orchestrator

This module ties together the session table, the document store and the
ledger mutations, and defines every account operation end to end:

    authenticate -> load -> validate -> mutate -> save -> project

DESIGN DECISION: The orchestrator enforces the boundaries:
- Input is validated before the store is touched
- Every mutation runs inside one exclusive store transaction; an error
  anywhere inside it means nothing is saved
- Sessions are created only after the account they point to is durable,
  and revoked once the account is gone
- Only the redacted projection ever leaves this module
"""

from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Callable, Optional

import structlog
from starlette.concurrency import run_in_threadpool

from src.audit import AuditLogger
from src.config import Settings, get_settings
from src.ledger.errors import (
    AccountNotFoundError,
    EmailTakenError,
    InsufficientFundsError,
    InvalidCredentialsError,
    InvalidInputError,
    UnauthenticatedError,
)
from src.ledger.fx import BASE_CURRENCY, credited_eur
from src.ledger.operations import (
    credit,
    debit,
    issue_virtual_card,
    new_starter_account,
    record_transaction,
    toggle_display_card,
    transfer_fee,
)
from src.models.account import (
    AccountCollection,
    AccountState,
    ActionResult,
    AuthResult,
    CardToggleResult,
    LedgerTransaction,
    TransactionKind,
    TransferReceipt,
    UserAccount,
    VirtualCardResult,
)
from src.queries import LedgerSummary, compute_summary, filter_transactions
from src.services.auth import SessionManager, hash_password, verify_password
from src.services.storage import DocumentStore, JsonFileStore, JsonLinesAuditStorage
from src.validation import (
    clean_text,
    parse_amount,
    parse_currency,
    validate_direction,
    validate_registration,
    validate_transfer,
)

logger = structlog.get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _fmt(amount: Decimal) -> str:
    """Amount for human-readable messages: no trailing zeros."""
    text = f"{amount:.2f}"
    return text.rstrip("0").rstrip(".") if "." in text else text


class LedgerService:
    """
    The Ledger & Account domain.

    Every method takes the caller's bearer token (except register/login)
    and returns a result carrying the redacted account state.
    """

    def __init__(
        self,
        store: DocumentStore,
        sessions: SessionManager,
        audit_logger: Optional[AuditLogger] = None,
        starter_monthly_budget: Decimal = Decimal("2200"),
        clock: Callable[[], datetime] = _utcnow,
    ):
        self._store = store
        self._sessions = sessions
        self._audit_logger = audit_logger
        self._starter_monthly_budget = starter_monthly_budget
        self._clock = clock

    @property
    def sessions(self) -> SessionManager:
        return self._sessions

    @property
    def audit_logger(self) -> Optional[AuditLogger]:
        return self._audit_logger

    def _now(self) -> tuple[date, int]:
        """Today's date and the current epoch millis, from one clock reading."""
        now = self._clock()
        return now.date(), int(now.timestamp() * 1000)

    @staticmethod
    def _require_account(collection: AccountCollection, user_id: str) -> UserAccount:
        account = collection.find_by_id(user_id)
        if account is None:
            # The session outlived its account
            raise UnauthenticatedError()
        return account

    # -------------------------------------------------------------------------
    # Identity and sessions
    # -------------------------------------------------------------------------

    async def register(self, name: Any, email: Any, password: Any) -> AuthResult:
        """
        Create an account with starter contents and open a session.

        Raises:
            InvalidInputError, EmailTakenError
        """
        registration = validate_registration(name, email, password)
        password_hash = await run_in_threadpool(hash_password, registration.password)
        today, now_ms = self._now()

        async with self._store.mutate() as collection:
            if collection.find_by_email(registration.email) is not None:
                raise EmailTakenError()
            account = new_starter_account(
                name=registration.name,
                email=registration.email,
                password_hash=password_hash,
                monthly_budget=self._starter_monthly_budget,
                booked_on=today,
                now_ms=now_ms,
            )
            collection.users.append(account)

        token = self._sessions.create(account.id)
        logger.info("account_registered", account_id=account.id)
        if self._audit_logger:
            await self._audit_logger.log_account_registered(account.id)
        return AuthResult(token=token, state=AccountState.from_account(account))

    async def login(self, email: Any, password: Any) -> AuthResult:
        """
        Open a session for matching credentials.

        Clear-text or outdated stored credentials are replaced by a
        fresh hash on success.

        Raises:
            InvalidCredentialsError
        """
        email = clean_text(email).lower()
        password = "" if password is None else str(password)

        collection = await self._store.snapshot()
        account = collection.find_by_email(email) if email else None
        matches, replacement = (False, None)
        if account is not None:
            matches, replacement = await run_in_threadpool(
                verify_password, password, account.password_hash
            )

        if not matches:
            if self._audit_logger:
                await self._audit_logger.log_login(None, succeeded=False)
            raise InvalidCredentialsError()

        if replacement is not None:
            async with self._store.mutate() as collection:
                stored = collection.find_by_id(account.id)
                if stored is None:
                    raise InvalidCredentialsError()
                # Only upgrade if nobody changed the credential meanwhile
                if stored.password_hash == account.password_hash:
                    stored.password_hash = replacement

        # A deletion cannot commit between this check and the new session
        async with self._store.locked_snapshot() as collection:
            account = collection.find_by_id(account.id)
            if account is None:
                raise InvalidCredentialsError()
            token = self._sessions.create(account.id)

        if self._audit_logger:
            await self._audit_logger.log_login(
                account.id,
                succeeded=True,
                credential_upgraded=replacement is not None,
            )
        return AuthResult(token=token, state=AccountState.from_account(account))

    async def logout(self, token: Optional[str]) -> None:
        """Revoke `token` if it is a live session. Never fails."""
        revoked = self._sessions.revoke(token)
        if self._audit_logger:
            await self._audit_logger.log_logout(revoked)

    async def delete_account(self, token: Optional[str]) -> None:
        """
        Remove the account and every session issued to it.

        Raises:
            UnauthenticatedError, AccountNotFoundError
        """
        user_id = self._sessions.resolve(token)

        async with self._store.mutate() as collection:
            if not collection.remove(user_id):
                raise AccountNotFoundError()

        # No await since the commit: runs before any login waiting on the lock
        revoked = self._sessions.revoke_all(user_id)
        logger.info("account_deleted", account_id=user_id, revoked_sessions=revoked)
        if self._audit_logger:
            await self._audit_logger.log_account_deleted(user_id, revoked)

    # -------------------------------------------------------------------------
    # Read-only views
    # -------------------------------------------------------------------------

    async def get_state(self, token: Optional[str]) -> AccountState:
        """
        Raises:
            UnauthenticatedError
        """
        user_id = self._sessions.resolve(token)
        collection = await self._store.snapshot()
        return AccountState.from_account(self._require_account(collection, user_id))

    async def get_summary(self, token: Optional[str]) -> LedgerSummary:
        state = await self.get_state(token)
        today, _ = self._now()
        return compute_summary(state, today)

    async def list_transactions(
        self,
        token: Optional[str],
        direction: Optional[str] = "all",
    ) -> list[LedgerTransaction]:
        """
        Raises:
            InvalidInputError, UnauthenticatedError
        """
        direction = validate_direction(direction)
        state = await self.get_state(token)
        return filter_transactions(state.transactions, direction)

    # -------------------------------------------------------------------------
    # Ledger movements
    # -------------------------------------------------------------------------

    async def transfer(
        self,
        token: Optional[str],
        recipient: Any,
        iban: Any,
        amount: Any,
        reference: Any = None,
        speed: Any = None,
    ) -> TransferReceipt:
        """
        Send `amount` EUR out of the EUR wallet. Instant transfers cost a fee,
        recorded as its own expense.

        Raises:
            UnauthenticatedError, InvalidInputError, InsufficientFundsError
        """
        user_id = self._sessions.resolve(token)
        request = validate_transfer(recipient, iban, amount, reference, speed)
        fee = transfer_fee(request.speed)
        today, now_ms = self._now()

        async with self._store.mutate() as collection:
            account = self._require_account(collection, user_id)
            debit(account, BASE_CURRENCY, request.amount + fee)
            record_transaction(
                account,
                label=request.reference or f"Transfer to {request.recipient}",
                amount=-request.amount,
                currency=BASE_CURRENCY,
                kind=TransactionKind.EXPENSE,
                booked_on=today,
                now_ms=now_ms,
            )
            if fee > 0:
                record_transaction(
                    account,
                    label="Instant transfer fee",
                    amount=-fee,
                    currency=BASE_CURRENCY,
                    kind=TransactionKind.EXPENSE,
                    booked_on=today,
                    now_ms=now_ms,
                )

        if self._audit_logger:
            await self._audit_logger.log_transfer(
                user_id, str(request.amount), str(fee), request.speed
            )
        return TransferReceipt(
            recipient=request.recipient,
            iban=request.iban,
            amount=request.amount,
            fee=fee,
            state=AccountState.from_account(account),
        )

    async def convert(
        self,
        token: Optional[str],
        amount: Any,
        from_currency: Any = "USD",
        to_currency: Any = "EUR",
    ) -> ActionResult:
        """
        Move `amount` out of the source wallet into the EUR wallet at the
        fixed FX rate, rounded down to the cent. Unknown currencies convert
        at rate 1. The log gets an informational entry of amount 0.

        Raises:
            UnauthenticatedError, InvalidInputError, InsufficientFundsError
        """
        user_id = self._sessions.resolve(token)
        value = parse_amount(amount)
        source = parse_currency(from_currency, "USD", field="from")
        target = parse_currency(to_currency, BASE_CURRENCY, field="to")
        if target != BASE_CURRENCY:
            raise InvalidInputError("Conversion is only supported into EUR", field="to")
        converted = credited_eur(value, source)
        if converted <= 0:
            raise InvalidInputError("Amount too small to convert", field="amount")
        today, now_ms = self._now()

        async with self._store.mutate() as collection:
            account = self._require_account(collection, user_id)
            source_wallet = account.wallet(source)
            if (
                source_wallet is None
                or account.wallet(target) is None
                or source_wallet.balance < value
            ):
                raise InsufficientFundsError(f"Insufficient {source} balance")
            debit(account, source, value)
            credit(account, target, converted)
            record_transaction(
                account,
                label=f"Conversion {source} to {target}",
                amount=Decimal("0"),
                currency=BASE_CURRENCY,
                kind=TransactionKind.INFO,
                booked_on=today,
                now_ms=now_ms,
            )

        if self._audit_logger:
            await self._audit_logger.log_conversion(user_id, str(value), source, str(converted))
        return ActionResult(
            message=f"{_fmt(value)} {source} converted into {converted:.2f} EUR",
            state=AccountState.from_account(account),
        )

    async def top_up(
        self,
        token: Optional[str],
        amount: Any,
        currency: Any = "EUR",
    ) -> ActionResult:
        """
        Credit an existing wallet and record the income.

        Raises:
            UnauthenticatedError, InvalidInputError, WalletNotFoundError
        """
        user_id = self._sessions.resolve(token)
        value = parse_amount(amount)
        code = parse_currency(currency, BASE_CURRENCY)
        today, now_ms = self._now()

        async with self._store.mutate() as collection:
            account = self._require_account(collection, user_id)
            credit(account, code, value)
            record_transaction(
                account,
                label="Card top up",
                amount=value,
                currency=code,
                kind=TransactionKind.INCOME,
                booked_on=today,
                now_ms=now_ms,
            )

        if self._audit_logger:
            await self._audit_logger.log_top_up(user_id, str(value), code)
        return ActionResult(
            message=f"{_fmt(value)} {code} added to the {code} wallet",
            state=AccountState.from_account(account),
        )

    # -------------------------------------------------------------------------
    # Cards
    # -------------------------------------------------------------------------

    async def toggle_card_freeze(self, token: Optional[str]) -> CardToggleResult:
        """
        Flip `frozen` on the display card.

        Raises:
            UnauthenticatedError, NoCardError
        """
        user_id = self._sessions.resolve(token)

        async with self._store.mutate() as collection:
            account = self._require_account(collection, user_id)
            card = toggle_display_card(account)

        if self._audit_logger:
            await self._audit_logger.log_card_toggled(user_id, card.id, card.frozen)
        return CardToggleResult(frozen=card.frozen, state=AccountState.from_account(account))

    async def issue_virtual_card(self, token: Optional[str]) -> VirtualCardResult:
        """
        Raises:
            UnauthenticatedError
        """
        user_id = self._sessions.resolve(token)

        async with self._store.mutate() as collection:
            account = self._require_account(collection, user_id)
            card = issue_virtual_card(account)

        if self._audit_logger:
            await self._audit_logger.log_virtual_card_issued(user_id, card.id)
        return VirtualCardResult(
            card=card.model_copy(),
            state=AccountState.from_account(account),
        )


@dataclass
class AppComponents:
    ledger: LedgerService
    sessions: SessionManager
    store: DocumentStore
    audit_logger: AuditLogger


def create_app_components(
    settings: Optional[Settings] = None,
    store: Optional[DocumentStore] = None,
) -> AppComponents:
    """
    Factory function to create all application components.

    Args:
        settings: Settings to build from; defaults to get_settings().
        store: Pre-built document store (tests pass an in-memory one).
               Defaults to the configured JSON file store.
    """
    settings = settings or get_settings()
    store_settings = settings.store
    app_settings = settings.app
    session_settings = settings.sessions

    if store is None:
        store = JsonFileStore(
            store_settings.path,
            default_monthly_budget=app_settings.default_monthly_budget,
            io_retry_attempts=store_settings.io_retry_attempts,
        )

    audit_storage = None
    if store_settings.audit_log_path:
        audit_storage = JsonLinesAuditStorage(store_settings.audit_log_path)
    audit_logger = AuditLogger(audit_storage)

    idle_timeout = None
    if session_settings.idle_timeout_minutes > 0:
        idle_timeout = timedelta(minutes=session_settings.idle_timeout_minutes)
    sessions = SessionManager(idle_timeout=idle_timeout)

    ledger = LedgerService(
        store=store,
        sessions=sessions,
        audit_logger=audit_logger,
        starter_monthly_budget=app_settings.starter_monthly_budget,
    )

    return AppComponents(
        ledger=ledger,
        sessions=sessions,
        store=store,
        audit_logger=audit_logger,
    )
