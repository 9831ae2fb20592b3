"""
Fixed FX Table

Every supported currency maps to a rate against EUR.

DESIGN DECISION: A currency missing from the table converts at rate 1,
i.e. it is treated as EUR-equivalent. Callers that need to reject unknown
currencies must check `is_supported_currency` themselves.

Display totals round half-up. Amounts actually credited by a conversion
round down, so a conversion never credits more than `amount * rate`.
"""

from decimal import ROUND_DOWN, ROUND_HALF_UP, Decimal

BASE_CURRENCY = "EUR"

FX_TO_EUR: dict[str, Decimal] = {
    "EUR": Decimal("1"),
    "USD": Decimal("0.92"),
    "GBP": Decimal("1.16"),
}

UNKNOWN_CURRENCY_RATE = Decimal("1")

CENT = Decimal("0.01")

# Largest amount a single operation accepts, and largest wallet balance.
MAX_AMOUNT = Decimal("1000000000")
MAX_BALANCE = Decimal("1000000000000")


def to_money(value: Decimal) -> Decimal:
    """Round an amount half-up to two decimals."""
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def is_supported_currency(code: str) -> bool:
    return code in FX_TO_EUR


def rate_to_eur(code: str) -> Decimal:
    """Rate for `code`; unknown currency => rate 1."""
    return FX_TO_EUR.get(code, UNKNOWN_CURRENCY_RATE)


def convert_to_eur(amount: Decimal, code: str) -> Decimal:
    """Convert `amount` of `code` into EUR, rounded to the cent."""
    return to_money(amount * rate_to_eur(code))


def credited_eur(amount: Decimal, code: str) -> Decimal:
    """EUR credited for converting `amount` of `code`; sub-cent remainders are dropped."""
    return (amount * rate_to_eur(code)).quantize(CENT, rounding=ROUND_DOWN)
