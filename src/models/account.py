"""
Core Ledger Models

These models define the canonical schema of everything the store holds:
accounts, their wallets, cards, beneficiaries and transaction log.

DESIGN DECISION: Amounts are Decimals rounded to the cent on the way in,
and written back to JSON as plain numbers. Persisted and external field
names are camelCase; Python attributes are snake_case.
"""

from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Annotated, Optional, Union

from pydantic import (
    AfterValidator,
    BaseModel,
    ConfigDict,
    Field,
    PlainSerializer,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel

from src.ledger.fx import to_money


def _money(value: Decimal) -> Decimal:
    try:
        return to_money(value)
    except InvalidOperation:
        raise ValueError("amount out of range")


Money = Annotated[
    Decimal,
    AfterValidator(_money),
    PlainSerializer(float, return_type=float, when_used="json"),
]

CURRENT_SCHEMA_VERSION = 2


class LedgerModel(BaseModel):
    """Base model: camelCase aliases, snake_case attributes."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
    )


# =============================================================================
# ENUMS
# =============================================================================

class TransactionKind(str, Enum):
    INCOME = "income"
    EXPENSE = "expense"
    INFO = "info"  # Informational only, never moves a displayed total


class CardType(str, Enum):
    PHYSICAL = "physical"
    VIRTUAL = "virtual"


# =============================================================================
# OWNED ENTITIES
# =============================================================================

class Wallet(LedgerModel):
    """A per-currency balance. At most one per currency code per account."""

    code: str = Field(..., min_length=1, max_length=10)
    balance: Money = Field(default=Decimal("0"))

    @field_validator('code')
    @classmethod
    def normalize_code(cls, v: str) -> str:
        return v.strip().upper()


class Card(LedgerModel):
    """
    A payment card.

    The first card of an account's list is the display card;
    new cards are inserted at the front.
    """

    id: str
    label: str = "Card"
    number: str = Field(
        default="**** **** **** 0000",
        description="Masked number, last four digits visible"
    )
    frozen: bool = False
    type: CardType = CardType.PHYSICAL


class Beneficiary(LedgerModel):
    """Reference data used to prefill a transfer."""

    id: str
    name: str = ""
    iban: str = ""
    country: str = ""


class LedgerTransaction(LedgerModel):
    """
    One entry of the append-only transaction log.

    Positive amounts are credits, negative amounts debits.
    """

    id: Union[int, str]
    label: str = ""
    booked_on: date = Field(default_factory=date.today, alias="date")
    amount: Money = Field(default=Decimal("0"))
    currency: str = "EUR"
    kind: Optional[TransactionKind] = None

    @field_validator('booked_on', mode='before')
    @classmethod
    def truncate_to_day(cls, v):
        """Accept full timestamps but keep calendar-day granularity."""
        if isinstance(v, datetime):
            return v.date()
        if isinstance(v, str) and len(v) > 10:
            return v[:10]
        return v

    @model_validator(mode='after')
    def infer_kind(self) -> 'LedgerTransaction':
        """Records without a kind get one from the amount sign."""
        if self.kind is None:
            if self.amount > 0:
                self.kind = TransactionKind.INCOME
            elif self.amount < 0:
                self.kind = TransactionKind.EXPENSE
            else:
                self.kind = TransactionKind.INFO
        return self


# =============================================================================
# ACCOUNT AND COLLECTION
# =============================================================================

class UserAccount(LedgerModel):
    """
    A user account and everything it owns.

    CRITICAL: `password_hash` must never leave the service.
    Use `AccountState.from_account` for anything external.
    """

    id: str
    name: str
    email: str
    password_hash: str = Field(..., repr=False)
    monthly_budget: Money = Field(default=Decimal("2000"))
    wallets: list[Wallet] = Field(default_factory=list)
    cards: list[Card] = Field(default_factory=list)
    beneficiaries: list[Beneficiary] = Field(default_factory=list)
    transactions: list[LedgerTransaction] = Field(default_factory=list)

    @model_validator(mode='after')
    def unique_wallet_codes(self) -> 'UserAccount':
        codes = [wallet.code for wallet in self.wallets]
        if len(codes) != len(set(codes)):
            raise ValueError("An account holds at most one wallet per currency")
        return self

    def wallet(self, code: str) -> Optional[Wallet]:
        for wallet in self.wallets:
            if wallet.code == code:
                return wallet
        return None

    @property
    def display_card(self) -> Optional[Card]:
        return self.cards[0] if self.cards else None


class AccountCollection(LedgerModel):
    """The whole store: every account, in one document."""

    schema_version: int = CURRENT_SCHEMA_VERSION
    users: list[UserAccount] = Field(default_factory=list)

    def find_by_id(self, account_id: str) -> Optional[UserAccount]:
        for account in self.users:
            if account.id == account_id:
                return account
        return None

    def find_by_email(self, email: str) -> Optional[UserAccount]:
        """Case-insensitive email lookup."""
        wanted = email.strip().lower()
        for account in self.users:
            if account.email.lower() == wanted:
                return account
        return None

    def remove(self, account_id: str) -> bool:
        before = len(self.users)
        self.users = [a for a in self.users if a.id != account_id]
        return len(self.users) != before

    def to_document(self) -> dict:
        """Serialize for persistence (camelCase, JSON-native values)."""
        return self.model_dump(mode="json", by_alias=True)


# =============================================================================
# PROJECTION AND OPERATION RESULTS
# =============================================================================

class UserProfile(LedgerModel):
    name: str
    email: str
    monthly_budget: Money


class AccountState(LedgerModel):
    """
    The redacted, externally visible view of an account.

    The credential is never part of it.
    """

    user: UserProfile
    wallets: list[Wallet]
    cards: list[Card]
    beneficiaries: list[Beneficiary]
    transactions: list[LedgerTransaction]

    @classmethod
    def from_account(cls, account: UserAccount) -> 'AccountState':
        snapshot = account.model_copy(deep=True)
        return cls(
            user=UserProfile(
                name=snapshot.name,
                email=snapshot.email,
                monthly_budget=snapshot.monthly_budget,
            ),
            wallets=snapshot.wallets,
            cards=snapshot.cards,
            beneficiaries=snapshot.beneficiaries,
            transactions=snapshot.transactions,
        )

    def to_public(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


class AuthResult(LedgerModel):
    """Returned by register and login."""

    token: str = Field(..., repr=False)
    state: AccountState


class TransferReceipt(LedgerModel):
    recipient: str
    iban: str
    amount: Money
    fee: Money
    state: AccountState


class ActionResult(LedgerModel):
    """Returned by convert and top-up."""

    message: str
    state: AccountState


class CardToggleResult(LedgerModel):
    frozen: bool
    state: AccountState


class VirtualCardResult(LedgerModel):
    card: Card
    state: AccountState
