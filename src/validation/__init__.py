"""Input validation package."""

from src.validation.validator import (
    RegistrationInput,
    TransferInput,
    clean_text,
    parse_amount,
    parse_currency,
    validate_direction,
    validate_registration,
    validate_transfer,
)

__all__ = [
    "RegistrationInput",
    "TransferInput",
    "clean_text",
    "parse_amount",
    "parse_currency",
    "validate_direction",
    "validate_registration",
    "validate_transfer",
]
