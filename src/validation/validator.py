"""
Input Validation

Every operation's raw input is parsed and checked here before the store
is touched. A failure raises InvalidInputError naming the offending field;
nothing is ever silently corrected beyond trimming and rounding to the cent.
"""

import math
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

from pydantic import BaseModel

from src.ledger.errors import InvalidInputError
from src.ledger.fx import MAX_AMOUNT, to_money

MIN_NAME_LENGTH = 2
MIN_PASSWORD_LENGTH = 6
MIN_IBAN_LENGTH = 10

TRANSACTION_DIRECTIONS = ("all", "in", "out")


class RegistrationInput(BaseModel):
    name: str
    email: str
    password: str


class TransferInput(BaseModel):
    recipient: str
    iban: str
    amount: Decimal
    reference: str
    speed: str

    @property
    def is_instant(self) -> bool:
        return self.speed == "instant"


def clean_text(value: Any) -> str:
    """None becomes empty; anything else is stringified and trimmed."""
    if value is None:
        return ""
    return str(value).strip()


def parse_amount(value: Any, field: str = "amount") -> Decimal:
    """
    Parse a strictly positive, finite amount rounded to the cent and no
    larger than MAX_AMOUNT.

    Accepts JSON numbers and numeric strings. Booleans are rejected.
    """
    if value is None or isinstance(value, bool):
        raise InvalidInputError("Invalid amount", field=field)

    if isinstance(value, float) and not math.isfinite(value):
        raise InvalidInputError("Invalid amount", field=field)

    try:
        amount = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise InvalidInputError("Invalid amount", field=field)

    if not amount.is_finite():
        raise InvalidInputError("Invalid amount", field=field)
    if amount > MAX_AMOUNT:
        raise InvalidInputError("Amount too large", field=field)

    try:
        amount = to_money(amount)
    except InvalidOperation:
        raise InvalidInputError("Invalid amount", field=field)
    if amount <= 0:
        raise InvalidInputError("Amount must be greater than zero", field=field)
    return amount


def parse_currency(value: Any, default: str, field: str = "currency") -> str:
    code = clean_text(value).upper() or default
    if len(code) > 10:
        raise InvalidInputError("Invalid currency code", field=field)
    return code


def validate_registration(name: Any, email: Any, password: Any) -> RegistrationInput:
    """Email is trimmed and lower-cased; the password is kept verbatim."""
    name = clean_text(name)
    email = clean_text(email).lower()
    password = "" if password is None else str(password)

    if len(name) < MIN_NAME_LENGTH:
        raise InvalidInputError("Invalid name", field="name")
    if "@" not in email:
        raise InvalidInputError("Invalid email", field="email")
    if len(password) < MIN_PASSWORD_LENGTH:
        raise InvalidInputError("Password too short", field="password")

    return RegistrationInput(name=name, email=email, password=password)


def validate_transfer(
    recipient: Any,
    iban: Any,
    amount: Any,
    reference: Any = None,
    speed: Any = None,
) -> TransferInput:
    recipient = clean_text(recipient)
    iban = clean_text(iban)

    if not recipient:
        raise InvalidInputError("Invalid transfer fields", field="recipient")
    if not iban:
        raise InvalidInputError("Invalid transfer fields", field="iban")
    parsed_amount = parse_amount(amount)
    if len(iban) < MIN_IBAN_LENGTH:
        raise InvalidInputError("Invalid IBAN", field="iban")

    return TransferInput(
        recipient=recipient,
        iban=iban,
        amount=parsed_amount,
        reference=clean_text(reference),
        speed=clean_text(speed) or "standard",
    )


def validate_direction(value: Optional[str]) -> str:
    direction = clean_text(value).lower() or "all"
    if direction not in TRANSACTION_DIRECTIONS:
        raise InvalidInputError(
            f"Direction must be one of: {', '.join(TRANSACTION_DIRECTIONS)}",
            field="direction",
        )
    return direction
