"""
Response envelope and error mapping.

Every response body is `{status, data?, message?}`. Domain errors map to
stable status codes; unexpected exceptions become a generic 500 and their
detail only reaches the server log.
"""

from typing import Any, Optional

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from starlette.exceptions import HTTPException as StarletteHTTPException

from ledger.errors import (
    ConstraintViolationError,
    DependencyFailureError,
    DuplicateBudgetError,
    LedgerError,
    NotFoundError,
    ReconciliationRequiredError,
    ValidationError,
)


logger = structlog.get_logger(__name__)


def to_json(value: Any) -> Any:
    """Dump models (and lists/dicts of them) with camelCase keys."""
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json", by_alias=True)
    if isinstance(value, list):
        return [to_json(item) for item in value]
    if isinstance(value, dict):
        return {key: to_json(item) for key, item in value.items()}
    return value


def envelope(
    data: Any = None,
    message: Optional[str] = None,
    status_code: int = 200,
) -> JSONResponse:
    body: dict[str, Any] = {"status": "success" if status_code < 400 else "error"}
    if data is not None:
        body["data"] = to_json(data)
    if message is not None:
        body["message"] = message
    return JSONResponse(status_code=status_code, content=body)


def _issues_payload(issues) -> dict:
    return {"issues": [issue.model_dump(mode="json", by_alias=True) for issue in issues]}


def register_exception_handlers(app: FastAPI) -> None:
    """Map the domain error taxonomy onto HTTP status codes."""

    @app.exception_handler(ValidationError)
    async def handle_validation(request: Request, exc: ValidationError):
        return envelope(_issues_payload(exc.issues), exc.message, 400)

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        message = "; ".join(
            f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}"
            for error in errors
        ) or "Invalid request"
        return envelope(message=message, status_code=400)

    @app.exception_handler(NotFoundError)
    async def handle_not_found(request: Request, exc: NotFoundError):
        return envelope(message=exc.message, status_code=404)

    @app.exception_handler(DuplicateBudgetError)
    async def handle_duplicate_budget(request: Request, exc: DuplicateBudgetError):
        return envelope(message=exc.message, status_code=409)

    @app.exception_handler(ConstraintViolationError)
    async def handle_constraint(request: Request, exc: ConstraintViolationError):
        return envelope(message=exc.message, status_code=409)

    @app.exception_handler(ReconciliationRequiredError)
    async def handle_reconciliation(request: Request, exc: ReconciliationRequiredError):
        logger.critical(
            "reconciliation_required",
            path=request.url.path,
            details=exc.details,
        )
        return envelope(
            message="The operation failed and balances need reconciliation",
            status_code=500,
        )

    @app.exception_handler(DependencyFailureError)
    async def handle_dependency(request: Request, exc: DependencyFailureError):
        logger.error("dependency_failure", path=request.url.path, error=exc.message, details=exc.details)
        return envelope(message="A backing service is unavailable, please retry", status_code=503)

    @app.exception_handler(LedgerError)
    async def handle_ledger_error(request: Request, exc: LedgerError):
        logger.error("ledger_error", path=request.url.path, error=exc.message)
        return envelope(message="Internal server error", status_code=500)

    @app.exception_handler(StarletteHTTPException)
    async def handle_http(request: Request, exc: StarletteHTTPException):
        return envelope(message=str(exc.detail), status_code=exc.status_code)

    @app.exception_handler(Exception)
    async def handle_unexpected(request: Request, exc: Exception):
        logger.exception("unhandled_error", path=request.url.path)
        return envelope(message="Internal server error", status_code=500)
