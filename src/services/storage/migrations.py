"""
Schema Migrations

Every document shape the store has ever written is upgraded here, once,
at load time. Nothing else in the codebase sniffs document shapes.

Versions:
    0 - legacy single-account document: {user, wallets, cards, beneficiaries, transactions}
    1 - multi-account collection: {users: [...]}
    2 - canonical collection: {schemaVersion: 2, users: [...]} with normalized records
"""

import hashlib
import math
from decimal import Decimal
from typing import Any, Callable, Optional

import structlog
from pydantic import ValidationError

from src.models.account import CURRENT_SCHEMA_VERSION, AccountCollection
from src.services.storage.interface import CorruptStoreError

logger = structlog.get_logger(__name__)

LEGACY_SEED_ACCOUNT_ID = "u_seed"


def detect_version(document: Any) -> int:
    """Work out which schema version a raw document was written with."""
    if not isinstance(document, dict):
        raise CorruptStoreError(
            f"Store root must be an object, got {type(document).__name__}"
        )

    version = document.get("schemaVersion")
    if version is not None:
        if isinstance(version, bool) or not isinstance(version, int):
            raise CorruptStoreError(f"Invalid schema version: {version!r}")
        return version

    if isinstance(document.get("users"), list):
        return 1
    if isinstance(document.get("user"), dict):
        return 0
    # Unknown shape: nothing recoverable, start from an empty collection
    return 1


def _as_list(value: Any) -> list:
    return value if isinstance(value, list) else []


def _finite_number(value: Any, default: Decimal) -> Any:
    if isinstance(value, bool):
        return default
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    return value if math.isfinite(number) else default


def _migrate_v0_to_v1(document: dict, **_: Any) -> dict:
    """Wrap a legacy single-account document into a collection."""
    user = document.get("user") or {}
    return {
        "users": [
            {
                "id": LEGACY_SEED_ACCOUNT_ID,
                "name": user.get("name"),
                "email": user.get("email"),
                "password": user.get("password"),
                "monthlyBudget": user.get("monthlyBudget"),
                "wallets": document.get("wallets"),
                "cards": document.get("cards"),
                "beneficiaries": document.get("beneficiaries"),
                "transactions": document.get("transactions"),
            }
        ]
    }


def _dedupe_wallets(wallets: list, account_id: str) -> list:
    seen = set()
    kept = []
    for wallet in wallets:
        if not isinstance(wallet, dict):
            continue
        code = str(wallet.get("code") or "").strip().upper()
        if not code:
            continue
        if code in seen:
            logger.warning("duplicate_wallet_dropped", account_id=account_id, code=code)
            continue
        seen.add(code)
        kept.append(wallet)
    return kept


def legacy_account_id(email: str, index: int) -> str:
    """
    Id for a stored record that has none. Derived from the record's
    position and email only, so every load of the same document agrees.
    """
    digest = hashlib.sha256(f"{index}:{email.lower()}".encode("utf-8")).hexdigest()
    return f"u_legacy_{digest[:16]}"


def _with_ids(items: Any, prefix: str) -> list:
    """Keep object entries only, giving an id to those missing one."""
    kept = []
    for position, item in enumerate(_as_list(items)):
        if not isinstance(item, dict):
            continue
        if item.get("id") in (None, ""):
            item = {**item, "id": f"{prefix}_{position}"}
        kept.append(item)
    return kept


def _normalize_record(
    raw: Any,
    index: int,
    default_monthly_budget: Decimal,
) -> Optional[dict]:
    if not isinstance(raw, dict):
        return None

    email = str(raw.get("email") or "").strip()
    credential = str(raw.get("passwordHash") or raw.get("password") or "")
    if not email or not credential:
        return None

    account_id = str(raw.get("id") or legacy_account_id(email, index))
    return {
        "id": account_id,
        "name": str(raw.get("name") or "Client"),
        "email": email,
        "passwordHash": credential,
        "monthlyBudget": _finite_number(raw.get("monthlyBudget"), default_monthly_budget),
        "wallets": _dedupe_wallets(_as_list(raw.get("wallets")), account_id),
        "cards": _with_ids(raw.get("cards"), f"card_{account_id}"),
        "beneficiaries": _with_ids(raw.get("beneficiaries"), f"b_{account_id}"),
        "transactions": _with_ids(raw.get("transactions"), f"t_{account_id}"),
    }


def _migrate_v1_to_v2(document: dict, default_monthly_budget: Decimal, **_: Any) -> dict:
    """Normalize every record into the canonical account shape."""
    users = []
    for index, raw in enumerate(_as_list(document.get("users"))):
        record = _normalize_record(raw, index, default_monthly_budget)
        if record is None:
            logger.warning("unusable_account_record_dropped", index=index)
            continue
        users.append(record)
    return {"schemaVersion": 2, "users": users}


MIGRATIONS: dict[int, Callable[..., dict]] = {
    0: _migrate_v0_to_v1,
    1: _migrate_v1_to_v2,
}


def migrate(document: Any, default_monthly_budget: Decimal = Decimal("2000")) -> dict:
    """
    Upgrade a raw document to the current schema version.

    Raises:
        CorruptStoreError: If the document is not an object or was
            written by a newer, unknown schema version
    """
    version = detect_version(document)
    if version > CURRENT_SCHEMA_VERSION or version < 0:
        raise CorruptStoreError(f"Unsupported schema version: {version}")

    if version < CURRENT_SCHEMA_VERSION:
        logger.info(
            "store_migration",
            from_version=version,
            to_version=CURRENT_SCHEMA_VERSION,
        )

    while version < CURRENT_SCHEMA_VERSION:
        document = MIGRATIONS[version](
            document,
            default_monthly_budget=default_monthly_budget,
        )
        version = detect_version(document)

    return document


def load_collection(
    document: Any,
    default_monthly_budget: Decimal = Decimal("2000"),
) -> AccountCollection:
    """Migrate a raw document and validate it into the canonical model."""
    canonical = migrate(document, default_monthly_budget=default_monthly_budget)
    try:
        return AccountCollection.model_validate(canonical)
    except ValidationError as e:
        raise CorruptStoreError(
            f"Stored accounts do not match the schema ({e.error_count()} errors)",
            cause=e,
        )
