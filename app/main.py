"""
HTTP API Gateway for the Ledger Service

Thin adapter between HTTP and LedgerService. It owns no business rules:

1. Parse the bearer token and the JSON body
2. Call exactly one service operation
3. Map domain errors to status codes, with `{"error": message}` bodies

CRITICAL: Store failures surface as a generic 500. The detail goes to the
log and the audit trail, never to the caller.
"""

import json
import logging
from typing import Any, Optional

import structlog
import uvicorn
from fastapi import Depends, FastAPI, Header, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from src.config import get_settings
from src.ledger.errors import (
    AccountNotFoundError,
    EmailTakenError,
    InvalidCredentialsError,
    InvalidInputError,
    LedgerError,
    UnauthenticatedError,
)
from src.orchestrator import AppComponents, LedgerService, create_app_components
from src.services.storage import StorageError

logger = structlog.get_logger(__name__)

SERVER_ERROR_MESSAGE = "Server state invalid"

# Checked in order; the first matching class wins. Anything else is a 400.
ERROR_STATUS = (
    (UnauthenticatedError, 401),
    (InvalidCredentialsError, 401),
    (AccountNotFoundError, 404),
    (EmailTakenError, 409),
)


def status_for(error: LedgerError) -> int:
    for error_type, status in ERROR_STATUS:
        if isinstance(error, error_type):
            return status
    return 400


def error_response(status: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status, content={"error": message})


# =============================================================================
# DEPENDENCIES
# =============================================================================

def get_ledger(request: Request) -> LedgerService:
    return request.app.state.components.ledger


def bearer_token(authorization: Optional[str] = Header(None)) -> Optional[str]:
    """The token from `Authorization: Bearer <token>`, or None."""
    if not authorization or not authorization.lower().startswith("bearer "):
        return None
    token = authorization.split(" ", 1)[1].strip()
    return token or None


async def json_body(request: Request) -> dict[str, Any]:
    """
    The request body as a JSON object. An empty body is an empty object.

    Raises:
        InvalidInputError: Oversize, malformed or non-object body
    """
    limit = request.app.state.max_body_bytes
    declared = request.headers.get("content-length", "")
    if declared.isdigit() and int(declared) > limit:
        raise InvalidInputError("Request body too large")

    raw = await request.body()
    if len(raw) > limit:
        raise InvalidInputError("Request body too large")
    if not raw.strip():
        return {}

    try:
        payload = json.loads(raw)
    except (UnicodeDecodeError, json.JSONDecodeError):
        raise InvalidInputError("Invalid JSON body")
    if not isinstance(payload, dict):
        raise InvalidInputError("Invalid JSON body")
    return payload


def _value(body: dict[str, Any], key: str, default: Any = None) -> Any:
    value = body.get(key)
    return default if value is None else value


# =============================================================================
# APPLICATION
# =============================================================================

def create_app(components: Optional[AppComponents] = None) -> FastAPI:
    """
    Build the API around `components` (defaults to the configured ones).
    """
    settings = get_settings()
    components = components or create_app_components(settings)

    app = FastAPI(title="Personal Ledger API", debug=settings.app.debug_mode)
    app.state.components = components
    app.state.max_body_bytes = settings.app.max_body_bytes

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # -------------------------------------------------------------------------
    # Error mapping
    # -------------------------------------------------------------------------

    @app.exception_handler(LedgerError)
    async def ledger_error_handler(request: Request, exc: LedgerError):
        status = status_for(exc)
        logger.info(
            "operation_rejected",
            path=request.url.path,
            error=type(exc).__name__,
            status=status,
        )
        await components.audit_logger.log_rejected(
            request.url.path, type(exc).__name__, exc.message
        )
        return error_response(status, exc.message)

    @app.exception_handler(StorageError)
    async def storage_error_handler(request: Request, exc: StorageError):
        logger.error(
            "store_failure",
            path=request.url.path,
            error_type=type(exc).__name__,
            error=str(exc),
        )
        await components.audit_logger.log_error(
            type(exc).__name__, str(exc), {"path": request.url.path}
        )
        return error_response(500, SERVER_ERROR_MESSAGE)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        return error_response(400, "Invalid request")

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException):
        if exc.status_code == 404:
            return error_response(404, "API route not found")
        return error_response(exc.status_code, str(exc.detail))

    # -------------------------------------------------------------------------
    # Identity
    # -------------------------------------------------------------------------

    @app.post("/api/register")
    async def register(
        body: dict[str, Any] = Depends(json_body),
        ledger: LedgerService = Depends(get_ledger),
    ):
        result = await ledger.register(body.get("name"), body.get("email"), body.get("password"))
        return result.model_dump(mode="json", by_alias=True)

    @app.post("/api/login")
    async def login(
        body: dict[str, Any] = Depends(json_body),
        ledger: LedgerService = Depends(get_ledger),
    ):
        result = await ledger.login(body.get("email"), body.get("password"))
        return result.model_dump(mode="json", by_alias=True)

    @app.post("/api/logout")
    async def logout(
        token: Optional[str] = Depends(bearer_token),
        ledger: LedgerService = Depends(get_ledger),
    ):
        await ledger.logout(token)
        return {"ok": True}

    @app.delete("/api/account")
    async def delete_account(
        token: Optional[str] = Depends(bearer_token),
        ledger: LedgerService = Depends(get_ledger),
    ):
        await ledger.delete_account(token)
        return {"ok": True}

    # -------------------------------------------------------------------------
    # Views
    # -------------------------------------------------------------------------

    @app.get("/api/dashboard")
    async def dashboard(
        token: Optional[str] = Depends(bearer_token),
        ledger: LedgerService = Depends(get_ledger),
    ):
        state = await ledger.get_state(token)
        return {"state": state.to_public()}

    @app.get("/api/summary")
    async def summary(
        token: Optional[str] = Depends(bearer_token),
        ledger: LedgerService = Depends(get_ledger),
    ):
        result = await ledger.get_summary(token)
        return {"summary": result.model_dump(mode="json", by_alias=True)}

    @app.get("/api/transactions")
    async def transactions(
        direction: Optional[str] = "all",
        token: Optional[str] = Depends(bearer_token),
        ledger: LedgerService = Depends(get_ledger),
    ):
        items = await ledger.list_transactions(token, direction)
        return {"transactions": [t.model_dump(mode="json", by_alias=True) for t in items]}

    # -------------------------------------------------------------------------
    # Movements
    # -------------------------------------------------------------------------

    @app.post("/api/transfer")
    async def transfer(
        token: Optional[str] = Depends(bearer_token),
        body: dict[str, Any] = Depends(json_body),
        ledger: LedgerService = Depends(get_ledger),
    ):
        receipt = await ledger.transfer(
            token,
            recipient=body.get("recipient"),
            iban=body.get("iban"),
            amount=body.get("amount"),
            reference=body.get("reference"),
            speed=body.get("speed"),
        )
        return receipt.model_dump(mode="json", by_alias=True)

    @app.post("/api/action/convert")
    async def convert(
        token: Optional[str] = Depends(bearer_token),
        body: dict[str, Any] = Depends(json_body),
        ledger: LedgerService = Depends(get_ledger),
    ):
        result = await ledger.convert(
            token,
            amount=_value(body, "amount", 50),
            from_currency=_value(body, "from", "USD"),
            to_currency=_value(body, "to", "EUR"),
        )
        return result.model_dump(mode="json", by_alias=True)

    @app.post("/api/action/topup")
    async def top_up(
        token: Optional[str] = Depends(bearer_token),
        body: dict[str, Any] = Depends(json_body),
        ledger: LedgerService = Depends(get_ledger),
    ):
        result = await ledger.top_up(
            token,
            amount=_value(body, "amount", 100),
            currency=_value(body, "currency", "EUR"),
        )
        return result.model_dump(mode="json", by_alias=True)

    # -------------------------------------------------------------------------
    # Cards
    # -------------------------------------------------------------------------

    @app.post("/api/card/toggle")
    async def toggle_card(
        token: Optional[str] = Depends(bearer_token),
        ledger: LedgerService = Depends(get_ledger),
    ):
        result = await ledger.toggle_card_freeze(token)
        return result.model_dump(mode="json", by_alias=True)

    @app.post("/api/card/virtual")
    async def virtual_card(
        token: Optional[str] = Depends(bearer_token),
        ledger: LedgerService = Depends(get_ledger),
    ):
        result = await ledger.issue_virtual_card(token)
        return result.model_dump(mode="json", by_alias=True)

    return app


app = create_app()


def main() -> None:
    """Run the API server."""
    settings = get_settings()
    logging.basicConfig(
        level=logging.DEBUG if settings.app.debug_mode else logging.INFO,
        format="%(message)s",
    )
    logger.info(
        "server_starting",
        environment=settings.app.app_environment,
        store=settings.store.path,
        port=settings.app.port,
    )
    uvicorn.run(app, host=settings.app.host, port=settings.app.port)


if __name__ == "__main__":
    main()
