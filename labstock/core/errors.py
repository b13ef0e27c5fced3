from __future__ import annotations

import logging
from typing import Any

from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette import status
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)


class LedgerError(Exception):
    """Base class for every failure the inventory core reports to callers.

    ``code`` is the machine readable identifier placed in the error envelope and
    ``status_code`` is the HTTP status the API layer answers with.
    """

    code = "ledger_error"
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str, *, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details


class NotFoundError(LedgerError):
    code = "not_found"
    status_code = status.HTTP_404_NOT_FOUND


class ValidationError(LedgerError):
    code = "validation_error"


class DuplicateReferenceError(LedgerError):
    code = "duplicate_reference"


class AlreadyDeletedError(LedgerError):
    code = "already_deleted"


class EditConflictError(AlreadyDeletedError):
    """Raised when an edit targets a soft-deleted ledger entry."""

    code = "edit_conflict"


class InvalidStateError(LedgerError):
    code = "invalid_state"


class ReconciliationError(LedgerError):
    """Ledger totals and the consumable aggregate disagree after a replay."""

    code = "reconciliation_failed"


class ErrorEnvelope(JSONResponse):
    def __init__(
        self,
        *,
        status_code: int,
        code: str,
        message: str,
        details: Any | None = None,
        headers: dict[str, str] | None = None,
    ) -> None:
        payload: dict[str, Any] = {"code": code, "message": message}
        if details is not None:
            payload["details"] = details
        super().__init__(payload, status_code=status_code, headers=headers)


async def ledger_error_handler(request: Request, exc: LedgerError):
    logger.info(
        "request.rejected",
        extra={"extra_data": {"code": exc.code, "path": request.url.path, "reason": exc.message}},
    )
    return ErrorEnvelope(status_code=exc.status_code, code=exc.code, message=exc.message, details=exc.details)


async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    detail = exc.detail
    if isinstance(detail, str):
        message = detail
    else:
        message = "Error"
    details = detail if isinstance(detail, dict) else None
    return ErrorEnvelope(
        status_code=exc.status_code,
        code="http_error",
        message=message,
        details=details,
        headers=getattr(exc, "headers", None),
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    return ErrorEnvelope(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        code="validation_error",
        message="Validation failed",
        details={"errors": jsonable_errors(exc)},
    )


async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception("request.failed", extra={"extra_data": {"path": request.url.path}})
    return ErrorEnvelope(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        code="internal_error",
        message="An unexpected error occurred",
    )


def jsonable_errors(exc: RequestValidationError) -> list[dict[str, Any]]:
    # pydantic puts the raised exception object under ``ctx``; keep it printable.
    errors = []
    for error in exc.errors():
        item = dict(error)
        ctx = item.get("ctx")
        if isinstance(ctx, dict):
            item["ctx"] = {key: str(value) for key, value in ctx.items()}
        errors.append(item)
    return errors


def register_exception_handlers(app) -> None:
    app.add_exception_handler(LedgerError, ledger_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
