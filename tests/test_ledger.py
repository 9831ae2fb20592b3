"""
Flow tests for the ledger service

Every test runs the service against an in-memory store and audit storage.
Coroutines are driven with asyncio.run; tests that need concurrency build
their own store and run everything inside one event loop.
"""

import asyncio
import threading
import time
from datetime import date, datetime, timezone
from decimal import Decimal

import pytest

from src import orchestrator
from src.audit import AuditLogger
from src.ledger.errors import (
    AccountNotFoundError,
    EmailTakenError,
    InsufficientFundsError,
    InvalidCredentialsError,
    InvalidInputError,
    NoCardError,
    UnauthenticatedError,
    WalletNotFoundError,
)
from src.ledger.fx import MAX_AMOUNT, MAX_BALANCE
from src.models.account import CardType, TransactionKind
from src.models.audit import AuditEventType
from src.orchestrator import LedgerService
from src.services.auth import SessionManager, hash_password, is_password_hash
from src.services.storage import InMemoryAuditStorage, InMemoryStore
from src.services.storage.migrations import LEGACY_SEED_ACCOUNT_ID, legacy_account_id

NOW = datetime(2024, 5, 20, 12, 0, tzinfo=timezone.utc)
TODAY = date(2024, 5, 20)
IBAN = "FR7630006000011234567890189"


def fixed_clock() -> datetime:
    return NOW


def make_service(document=None):
    store = InMemoryStore(document)
    audit_storage = InMemoryAuditStorage()
    service = LedgerService(
        store=store,
        sessions=SessionManager(),
        audit_logger=AuditLogger(audit_storage),
        clock=fixed_clock,
    )
    return service, store, audit_storage


def register(service, email="alice@example.com", password="secret123", name="Alice"):
    return asyncio.run(service.register(name, email, password))


def balance(state, code):
    return next(w.balance for w in state.wallets if w.code == code)


def event_types(audit_storage):
    return [e.event_type for e in audit_storage.events]


class TestRegistration:
    """Tests for account registration."""

    def test_register_creates_starter_account(self):
        """Test that a new account comes with starter contents and a session."""
        service, store, audit = make_service()
        result = register(service)

        state = result.state
        assert state.user.email == "alice@example.com"
        assert state.user.monthly_budget == Decimal("2200.00")
        assert balance(state, "EUR") == Decimal("500.00")
        assert balance(state, "USD") == Decimal("120.00")
        assert balance(state, "GBP") == Decimal("90.00")
        assert state.transactions[0].label == "Welcome bonus"
        assert state.transactions[0].booked_on == TODAY

        assert asyncio.run(service.get_state(result.token)) == state
        assert AuditEventType.ACCOUNT_REGISTERED in event_types(audit)

    def test_credential_is_hashed_at_rest(self):
        """Test that the stored credential is a hash, never the password."""
        service, store, _ = make_service()
        register(service, password="secret123")

        record = store.document["users"][0]
        assert record["passwordHash"] != "secret123"
        assert is_password_hash(record["passwordHash"])
        assert "secret123" not in str(store.document)

    def test_email_taken_is_case_insensitive(self):
        """Test that a second registration with the same email never succeeds."""
        service, store, _ = make_service()
        register(service, email="alice@example.com")

        with pytest.raises(EmailTakenError):
            register(service, email="  ALICE@Example.com ")

        assert len(store.document["users"]) == 1

    def test_invalid_registration_touches_nothing(self):
        """Test that validation happens before the store is touched."""
        service, store, _ = make_service()
        with pytest.raises(InvalidInputError):
            register(service, password="123")
        assert store.save_count == 0
        assert len(service.sessions) == 0


class TestLogin:
    """Tests for login and logout."""

    def test_login_success(self):
        """Test that valid credentials open a new session."""
        service, _, audit = make_service()
        registered = register(service)

        result = asyncio.run(service.login(" Alice@Example.com ", "secret123"))

        assert result.token != registered.token
        assert result.state.user.email == "alice@example.com"
        assert AuditEventType.LOGIN_SUCCEEDED in event_types(audit)

    def test_wrong_password_and_unknown_email_look_alike(self):
        """Test that both failures raise the same error."""
        service, _, audit = make_service()
        register(service)

        with pytest.raises(InvalidCredentialsError) as wrong_password:
            asyncio.run(service.login("alice@example.com", "nope-nope"))
        with pytest.raises(InvalidCredentialsError) as unknown_email:
            asyncio.run(service.login("bob@example.com", "secret123"))

        assert wrong_password.value.message == unknown_email.value.message
        failures = [e for e in audit.events if e.event_type == AuditEventType.LOGIN_FAILED]
        assert len(failures) == 2
        assert all(e.entity_id is None for e in failures)

    def test_login_does_not_rewrite_current_hash(self):
        """Test that a login with an up-to-date hash saves nothing."""
        service, store, _ = make_service()
        register(service)
        saves = store.save_count

        asyncio.run(service.login("alice@example.com", "secret123"))

        assert store.save_count == saves

    def test_legacy_clear_text_credential_is_upgraded(self):
        """Test that a clear-text stored credential is replaced by a hash on login."""
        legacy = {
            "user": {"name": "Camille", "email": "camille@example.com", "password": "hunter22"},
            "wallets": [{"code": "EUR", "balance": 100}],
        }
        service, store, _ = make_service(legacy)

        result = asyncio.run(service.login("camille@example.com", "hunter22"))

        assert result.state.user.name == "Camille"
        stored = store.document["users"][0]["passwordHash"]
        assert stored != "hunter22"
        assert is_password_hash(stored)
        # The upgraded credential keeps working
        asyncio.run(service.login("camille@example.com", "hunter22"))
        with pytest.raises(InvalidCredentialsError):
            asyncio.run(service.login("camille@example.com", "hunter23"))

    def test_account_without_stored_id_can_use_its_token(self):
        """Test that a record stored without an id logs in and keeps its session."""
        document = {
            "users": [{
                "name": "Dana",
                "email": "dana@example.com",
                "password": "secret123",
                "wallets": [{"code": "EUR", "balance": 100}],
            }]
        }
        service, store, _ = make_service(document)

        token = asyncio.run(service.login("dana@example.com", "secret123")).token
        time.sleep(0.01)

        assert balance(asyncio.run(service.get_state(token)), "EUR") == Decimal("100.00")
        assert store.document["users"][0]["id"] == legacy_account_id("dana@example.com", 0)

    def test_account_without_stored_id_and_current_hash(self):
        """Test the same without any write persisting the id at login."""
        document = {
            "users": [{
                "email": "dana@example.com",
                "passwordHash": hash_password("secret123"),
                "wallets": [{"code": "EUR", "balance": 100}],
            }]
        }
        service, store, _ = make_service(document)

        token = asyncio.run(service.login("dana@example.com", "secret123")).token
        time.sleep(0.01)
        assert asyncio.run(service.get_state(token)).user.email == "dana@example.com"
        assert "id" not in store.document["users"][0]

        topped = asyncio.run(service.top_up(token, 5, "EUR"))
        assert balance(topped.state, "EUR") == Decimal("105.00")
        assert asyncio.run(service.get_state(token)) == topped.state

    def test_password_hashing_runs_off_the_event_loop(self, monkeypatch):
        """Test that hashing and verification run in worker threads."""
        threads = []
        real_hash = orchestrator.hash_password
        real_verify = orchestrator.verify_password

        def recording_hash(password):
            threads.append(threading.get_ident())
            return real_hash(password)

        def recording_verify(password, stored):
            threads.append(threading.get_ident())
            return real_verify(password, stored)

        monkeypatch.setattr(orchestrator, "hash_password", recording_hash)
        monkeypatch.setattr(orchestrator, "verify_password", recording_verify)
        service, _, _ = make_service()

        register(service)
        asyncio.run(service.login("alice@example.com", "secret123"))

        assert len(threads) == 2
        assert threading.get_ident() not in threads

    def test_logout(self):
        """Test that logout revokes the token and never fails."""
        service, _, _ = make_service()
        token = register(service).token

        asyncio.run(service.logout(token))
        asyncio.run(service.logout(token))
        asyncio.run(service.logout(None))

        with pytest.raises(UnauthenticatedError):
            asyncio.run(service.get_state(token))


class TestMovements:
    """Tests for transfers, conversions and top-ups."""

    def test_top_up_transfer_and_card_scenario(self):
        """Test top up, standard transfer and card toggling end to end."""
        service, _, _ = make_service()
        token = register(service).token

        topped = asyncio.run(service.top_up(token, 100, "EUR"))
        assert balance(topped.state, "EUR") == Decimal("600.00")
        assert topped.message == "100 EUR added to the EUR wallet"
        assert topped.state.transactions[0].label == "Card top up"
        assert topped.state.transactions[0].kind == TransactionKind.INCOME

        receipt = asyncio.run(service.transfer(token, "Bob", IBAN, 50))
        assert balance(receipt.state, "EUR") == Decimal("550.00")
        assert receipt.fee == Decimal("0")
        head = receipt.state.transactions[0]
        assert head.amount == Decimal("-50.00")
        assert head.kind == TransactionKind.EXPENSE
        assert head.label == "Transfer to Bob"
        assert len(receipt.state.transactions) == 3

        first = asyncio.run(service.toggle_card_freeze(token))
        second = asyncio.run(service.toggle_card_freeze(token))
        assert first.frozen is True
        assert second.frozen is False

    def test_instant_transfer_charges_fee(self):
        """Test that an instant transfer debits amount + 1.50 in two entries."""
        service, _, _ = make_service()
        token = register(service).token

        receipt = asyncio.run(service.transfer(token, "Bob", IBAN, "20", "Rent", "instant"))

        assert receipt.fee == Decimal("1.50")
        assert receipt.amount == Decimal("20.00")
        assert balance(receipt.state, "EUR") == Decimal("478.50")
        fee, transfer = receipt.state.transactions[:2]
        assert fee.label == "Instant transfer fee"
        assert fee.amount == Decimal("-1.50")
        assert transfer.label == "Rent"
        assert transfer.amount == Decimal("-20.00")
        assert fee.id > transfer.id
        assert len(receipt.state.transactions) == 3

    def test_insufficient_funds_changes_nothing(self):
        """Test that amount + fee above the balance leaves the account unchanged."""
        service, store, _ = make_service()
        token = register(service).token
        before = asyncio.run(service.get_state(token))
        saves = store.save_count

        with pytest.raises(InsufficientFundsError):
            asyncio.run(service.transfer(token, "Bob", IBAN, "499.00", speed="instant"))

        assert asyncio.run(service.get_state(token)) == before
        assert store.save_count == saves

        # Exactly the balance is fine
        receipt = asyncio.run(service.transfer(token, "Bob", IBAN, "500"))
        assert balance(receipt.state, "EUR") == Decimal("0.00")

    def test_transfer_requires_session(self):
        """Test that an unknown token is rejected."""
        service, _, _ = make_service()
        register(service)
        with pytest.raises(UnauthenticatedError):
            asyncio.run(service.transfer("bogus", "Bob", IBAN, 10))

    def test_transfer_rejects_invalid_input(self):
        """Test that invalid transfer input is rejected before any change."""
        service, store, _ = make_service()
        token = register(service).token
        saves = store.save_count

        for args in (("", IBAN, 10), ("Bob", "FR76", 10), ("Bob", IBAN, 0), ("Bob", IBAN, "NaN")):
            with pytest.raises(InvalidInputError):
                asyncio.run(service.transfer(token, *args))

        assert store.save_count == saves

    def test_convert_usd_to_eur(self):
        """Test converting 50 USD at the fixed rate."""
        service, _, _ = make_service()
        token = register(service).token

        result = asyncio.run(service.convert(token, 50, "usd", "eur"))

        assert balance(result.state, "USD") == Decimal("70.00")
        assert balance(result.state, "EUR") == Decimal("546.00")
        assert result.message == "50 USD converted into 46.00 EUR"
        info = result.state.transactions[0]
        assert info.kind == TransactionKind.INFO
        assert info.amount == Decimal("0")
        assert info.label == "Conversion USD to EUR"

    def test_convert_in_steps_matches_single_conversion(self):
        """Test that repeated conversions of the same volume give the same result."""
        service, _, _ = make_service()
        token = register(service).token

        asyncio.run(service.convert(token, 20, "USD"))
        result = asyncio.run(service.convert(token, 30, "USD"))

        assert balance(result.state, "USD") == Decimal("70.00")
        assert balance(result.state, "EUR") == Decimal("546.00")

    def test_split_conversions_never_credit_more_than_single(self):
        """Test that many small conversions cannot create EUR out of rounding."""
        split_service, _, _ = make_service()
        split_token = register(split_service).token
        single_service, _, _ = make_service()
        single_token = register(single_service).token

        for _ in range(20):
            asyncio.run(split_service.convert(split_token, "0.05", "USD"))
        split = asyncio.run(split_service.get_state(split_token))
        single = asyncio.run(single_service.convert(single_token, "1.00", "USD")).state

        assert balance(split, "USD") == balance(single, "USD") == Decimal("119.00")
        assert balance(single, "EUR") == Decimal("500.92")
        assert balance(split, "EUR") == Decimal("500.80")
        assert balance(split, "EUR") <= balance(single, "EUR")

    def test_convert_rounds_credit_down(self):
        """Test that the sub-cent remainder of a conversion is not credited."""
        service, _, _ = make_service()
        token = register(service).token

        result = asyncio.run(service.convert(token, "1.99", "GBP"))

        assert balance(result.state, "GBP") == Decimal("88.01")
        assert balance(result.state, "EUR") == Decimal("502.30")
        assert result.message == "1.99 GBP converted into 2.30 EUR"

    def test_convert_worth_less_than_a_cent_is_rejected(self):
        """Test that a conversion crediting nothing is invalid and changes nothing."""
        service, store, _ = make_service()
        token = register(service).token
        saves = store.save_count

        with pytest.raises(InvalidInputError):
            asyncio.run(service.convert(token, "0.01", "USD"))

        assert store.save_count == saves
        assert balance(asyncio.run(service.get_state(token)), "USD") == Decimal("120.00")

    def test_top_up_rejects_oversized_amounts(self):
        """Test that huge amounts are invalid input rather than arithmetic failures."""
        service, store, _ = make_service()
        token = register(service).token
        saves = store.save_count

        for _ in range(2):
            with pytest.raises(InvalidInputError) as info:
                asyncio.run(service.top_up(token, "9e25", "EUR"))
            assert info.value.message == "Amount too large"

        assert store.save_count == saves
        assert balance(asyncio.run(service.get_state(token)), "EUR") == Decimal("500.00")

    def test_top_up_rejects_balance_above_limit(self):
        """Test that a top up past the wallet balance limit changes nothing."""
        document = {
            "users": [{
                "id": "u_rich",
                "name": "Rich",
                "email": "rich@example.com",
                "passwordHash": hash_password("secret123"),
                "wallets": [{"code": "EUR", "balance": str(MAX_BALANCE - 10)}],
            }]
        }
        service, store, _ = make_service(document)
        token = asyncio.run(service.login("rich@example.com", "secret123")).token
        saves = store.save_count

        with pytest.raises(InvalidInputError):
            asyncio.run(service.top_up(token, MAX_AMOUNT, "EUR"))

        assert store.save_count == saves
        state = asyncio.run(service.top_up(token, 10, "EUR")).state
        assert balance(state, "EUR") == MAX_BALANCE

    def test_convert_only_into_eur(self):
        """Test that a non-EUR target is invalid input."""
        service, _, _ = make_service()
        token = register(service).token
        with pytest.raises(InvalidInputError):
            asyncio.run(service.convert(token, 10, "USD", "GBP"))

    def test_convert_missing_or_short_wallet(self):
        """Test that a missing or short source wallet is insufficient funds."""
        service, _, _ = make_service()
        token = register(service).token

        with pytest.raises(InsufficientFundsError) as info:
            asyncio.run(service.convert(token, 10, "JPY"))
        assert info.value.message == "Insufficient JPY balance"

        with pytest.raises(InsufficientFundsError):
            asyncio.run(service.convert(token, "120.01", "USD"))

    def test_top_up_unknown_wallet(self):
        """Test that topping up a currency without a wallet is rejected."""
        service, _, _ = make_service()
        token = register(service).token
        with pytest.raises(WalletNotFoundError):
            asyncio.run(service.top_up(token, 10, "JPY"))


class TestCards:
    """Tests for card operations."""

    def test_issue_virtual_card(self):
        """Test that a new virtual card becomes the display card."""
        service, _, audit = make_service()
        token = register(service).token

        result = asyncio.run(service.issue_virtual_card(token))

        assert result.card.type == CardType.VIRTUAL
        assert result.card.label == "Virtual 1"
        assert result.state.cards[0].id == result.card.id
        assert len(result.state.cards) == 2

        toggled = asyncio.run(service.toggle_card_freeze(token))
        assert toggled.state.cards[0].frozen is True
        assert toggled.state.cards[1].frozen is False
        assert AuditEventType.VIRTUAL_CARD_ISSUED in event_types(audit)

    def test_toggle_without_card(self):
        """Test that toggling with no card is rejected."""
        legacy = {"users": [{"id": "u_1", "email": "a@example.com", "password": "secret1"}]}
        service, _, _ = make_service(legacy)
        token = service.sessions.create("u_1")
        with pytest.raises(NoCardError):
            asyncio.run(service.toggle_card_freeze(token))


class TestAccountDeletion:
    """Tests for account deletion."""

    def test_delete_revokes_every_session(self):
        """Test that deleting removes the account and all its sessions."""
        service, store, audit = make_service()
        first = register(service).token
        second = asyncio.run(service.login("alice@example.com", "secret123")).token
        other = register(service, email="bob@example.com", name="Bob").token

        asyncio.run(service.delete_account(first))

        for token in (first, second):
            with pytest.raises(UnauthenticatedError):
                asyncio.run(service.get_state(token))
        assert [u["email"] for u in store.document["users"]] == ["bob@example.com"]
        assert asyncio.run(service.get_state(other)).user.name == "Bob"
        assert AuditEventType.ACCOUNT_DELETED in event_types(audit)

    def test_delete_missing_account(self):
        """Test that a session for a vanished account reports not found."""
        service, _, _ = make_service()
        token = service.sessions.create("ghost")
        with pytest.raises(AccountNotFoundError):
            asyncio.run(service.delete_account(token))

    def test_state_for_vanished_account(self):
        """Test that a session outliving its account is unauthenticated."""
        service, _, _ = make_service()
        token = service.sessions.create("ghost")
        with pytest.raises(UnauthenticatedError):
            asyncio.run(service.get_state(token))


class TestViews:
    """Tests for the derived views exposed by the service."""

    def test_summary(self):
        """Test the summary of a fresh account."""
        service, _, _ = make_service()
        token = register(service).token
        asyncio.run(service.transfer(token, "Bob", IBAN, 110))

        summary = asyncio.run(service.get_summary(token))

        assert summary.month_income == Decimal("500.00")
        assert summary.month_outflow == Decimal("110.00")
        assert summary.budget_utilization == Decimal("5.0")

    def test_list_transactions(self):
        """Test filtering the log by direction."""
        service, _, _ = make_service()
        token = register(service).token
        asyncio.run(service.transfer(token, "Bob", IBAN, 10))
        asyncio.run(service.convert(token, 10, "USD"))

        assert len(asyncio.run(service.list_transactions(token))) == 3
        incoming = asyncio.run(service.list_transactions(token, "in"))
        outgoing = asyncio.run(service.list_transactions(token, "out"))
        assert [t.label for t in incoming] == ["Welcome bonus"]
        assert [t.label for t in outgoing] == ["Transfer to Bob"]

        with pytest.raises(InvalidInputError):
            asyncio.run(service.list_transactions(token, "up"))


class TestConcurrency:
    """Concurrent operations against one account."""

    def test_concurrent_transfers_equal_sequential_application(self):
        """Test that N concurrent transfers never lose an update."""
        service, _, _ = make_service()

        async def scenario():
            token = (await service.register("Alice", "alice@example.com", "secret123")).token
            await asyncio.gather(*(
                service.transfer(token, f"Payee {i}", IBAN, "12.34") for i in range(20)
            ))
            return await service.get_state(token)

        state = asyncio.run(scenario())

        assert balance(state, "EUR") == Decimal("500.00") - 20 * Decimal("12.34")
        assert len(state.transactions) == 21
        ids = [t.id for t in state.transactions]
        assert len(set(ids)) == 21

    def test_concurrent_overdraft_never_goes_negative(self):
        """Test that racing transfers cannot spend the same balance twice."""
        service, _, _ = make_service()

        async def scenario():
            token = (await service.register("Alice", "alice@example.com", "secret123")).token
            results = await asyncio.gather(
                *(service.transfer(token, "Bob", IBAN, 100) for _ in range(10)),
                return_exceptions=True,
            )
            return results, await service.get_state(token)

        results, state = asyncio.run(scenario())

        succeeded = [r for r in results if not isinstance(r, Exception)]
        failed = [r for r in results if isinstance(r, Exception)]
        assert len(succeeded) == 5
        assert all(isinstance(e, InsufficientFundsError) for e in failed)
        assert balance(state, "EUR") == Decimal("0.00")

    def test_concurrent_registrations_with_same_email(self):
        """Test that racing registrations create exactly one account."""
        service, store, _ = make_service()

        async def scenario():
            return await asyncio.gather(
                *(service.register("Alice", "alice@example.com", "secret123") for _ in range(5)),
                return_exceptions=True,
            )

        results = asyncio.run(scenario())

        assert sum(1 for r in results if not isinstance(r, Exception)) == 1
        assert sum(1 for r in results if isinstance(r, EmailTakenError)) == 4
        assert len(store.document["users"]) == 1

    def test_login_racing_legacy_upgrade_and_deletion(self):
        """Test that a credential upgrade overlapping a deletion leaves no session."""
        legacy = {
            "user": {"name": "Camille", "email": "camille@example.com", "password": "hunter22"},
            "wallets": [{"code": "EUR", "balance": 100}],
        }
        service, store, _ = make_service(legacy)
        other_token = service.sessions.create(LEGACY_SEED_ACCOUNT_ID)

        async def scenario():
            return await asyncio.gather(
                service.login("camille@example.com", "hunter22"),
                service.delete_account(other_token),
                return_exceptions=True,
            )

        login, deletion = asyncio.run(scenario())

        assert deletion is None
        assert isinstance(login, InvalidCredentialsError)
        assert store.document["users"] == []
        assert len(service.sessions) == 0

    def test_login_racing_deletion(self):
        """Test that a login overlapping a deletion never outlives the account."""
        service, store, _ = make_service()

        async def scenario():
            token = (await service.register("Alice", "alice@example.com", "secret123")).token
            return await asyncio.gather(
                service.login("alice@example.com", "secret123"),
                service.delete_account(token),
                return_exceptions=True,
            )

        login, deletion = asyncio.run(scenario())

        assert deletion is None
        assert store.document["users"] == []
        assert len(service.sessions) == 0
        if not isinstance(login, InvalidCredentialsError):
            with pytest.raises(UnauthenticatedError):
                asyncio.run(service.get_state(login.token))
