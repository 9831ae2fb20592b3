"""
Ledger Mutations

Pure, in-memory changes to a single UserAccount. They know nothing about
sessions or storage; the orchestrator runs them inside a store transaction.

Each function either applies its whole change or raises before touching
anything.
"""

import secrets
import uuid
from datetime import date
from decimal import Decimal
from typing import Union

from src.ledger.errors import (
    InsufficientFundsError,
    InvalidInputError,
    NoCardError,
    WalletNotFoundError,
)
from src.ledger.fx import BASE_CURRENCY, MAX_BALANCE, to_money
from src.models.account import (
    Beneficiary,
    Card,
    CardType,
    LedgerTransaction,
    TransactionKind,
    UserAccount,
    Wallet,
)

INSTANT_TRANSFER_FEE = Decimal("1.50")

STARTER_WALLETS = (
    ("EUR", Decimal("500")),
    ("USD", Decimal("120")),
    ("GBP", Decimal("90")),
)
STARTER_CARD_NUMBER = "**** **** **** 1201"
WELCOME_BONUS = Decimal("500")
SUPPORT_BENEFICIARY = {
    "name": "Support",
    "iban": "FR7630006000011234567890189",
    "country": "FR",
}


def transfer_fee(speed: str) -> Decimal:
    return INSTANT_TRANSFER_FEE if speed == "instant" else Decimal("0.00")


def mask_card_number(raw: str) -> str:
    """Keep the last four digits, hide the rest."""
    digits = "".join(str(raw).split())
    return f"**** **** **** {digits[-4:].rjust(4, '0')}"


def next_transaction_id(account: UserAccount, now_ms: int) -> int:
    """
    Strictly increasing integer id: the clock, or one past the
    largest integer id already in the log, whichever is greater.
    """
    existing = [t.id for t in account.transactions if isinstance(t.id, int)]
    return max([now_ms] + [i + 1 for i in existing])


def record_transaction(
    account: UserAccount,
    *,
    label: str,
    amount: Decimal,
    currency: str,
    kind: TransactionKind,
    booked_on: date,
    now_ms: int,
) -> LedgerTransaction:
    """Insert a new entry at the head of the log."""
    transaction = LedgerTransaction(
        id=next_transaction_id(account, now_ms),
        label=label,
        booked_on=booked_on,
        amount=amount,
        currency=currency,
        kind=kind,
    )
    account.transactions.insert(0, transaction)
    return transaction


def credit(account: UserAccount, code: str, amount: Decimal) -> Wallet:
    """
    Raises:
        WalletNotFoundError: No wallet in `code`
        InvalidInputError: The new balance would exceed MAX_BALANCE
    """
    wallet = account.wallet(code)
    if wallet is None:
        raise WalletNotFoundError(f"Wallet {code} not found", field="currency")
    balance = wallet.balance + amount
    if balance > MAX_BALANCE:
        raise InvalidInputError(f"Wallet {code} balance limit reached", field="amount")
    wallet.balance = to_money(balance)
    return wallet


def debit(account: UserAccount, code: str, amount: Decimal) -> Wallet:
    """
    Raises:
        InsufficientFundsError: No wallet in `code`, or balance below `amount`
    """
    wallet = account.wallet(code)
    if wallet is None or wallet.balance < amount:
        raise InsufficientFundsError(f"Insufficient funds in the {code} wallet")
    wallet.balance = to_money(wallet.balance - amount)
    return wallet


def toggle_display_card(account: UserAccount) -> Card:
    """
    Raises:
        NoCardError: The account has no card
    """
    card = account.display_card
    if card is None:
        raise NoCardError()
    card.frozen = not card.frozen
    return card


def issue_virtual_card(account: UserAccount) -> Card:
    """Create a virtual card and make it the display card."""
    virtual_count = sum(1 for c in account.cards if c.type == CardType.VIRTUAL)
    raw_number = str(secrets.randbelow(10 ** 16)).zfill(16)
    card = Card(
        id=f"card_virtual_{uuid.uuid4().hex[:12]}",
        label=f"Virtual {virtual_count + 1}",
        number=mask_card_number(raw_number),
        frozen=False,
        type=CardType.VIRTUAL,
    )
    account.cards.insert(0, card)
    return card


def new_starter_account(
    *,
    name: str,
    email: str,
    password_hash: str,
    monthly_budget: Union[Decimal, int],
    booked_on: date,
    now_ms: int,
) -> UserAccount:
    """A fresh account with starter wallets, card, beneficiary and welcome bonus."""
    suffix = uuid.uuid4().hex[:8]
    account = UserAccount(
        id=f"u_{now_ms}_{suffix}",
        name=name,
        email=email,
        password_hash=password_hash,
        monthly_budget=monthly_budget,
        wallets=[Wallet(code=code, balance=balance) for code, balance in STARTER_WALLETS],
        cards=[
            Card(
                id=f"card_main_{now_ms}_{suffix}",
                label="Standard card",
                number=STARTER_CARD_NUMBER,
                frozen=False,
                type=CardType.PHYSICAL,
            )
        ],
        beneficiaries=[Beneficiary(id=f"b_{now_ms}_1", **SUPPORT_BENEFICIARY)],
    )
    record_transaction(
        account,
        label="Welcome bonus",
        amount=WELCOME_BONUS,
        currency=BASE_CURRENCY,
        kind=TransactionKind.INCOME,
        booked_on=booked_on,
        now_ms=now_ms,
    )
    return account
