from __future__ import annotations

import logging
from http import HTTPStatus
from typing import Any

from fastapi import Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from starlette.exceptions import HTTPException as StarletteHTTPException

from permitflow.services.errors import WorkflowError

logger = logging.getLogger(__name__)

_STATUS_CODES = {
    400: "bad_request",
    404: "not_found",
    405: "method_not_allowed",
    409: "conflict",
    410: "gone",
    422: "unprocessable_entity",
    429: "rate_limited",
}


def _status_message(status_code: int) -> str:
    try:
        return HTTPStatus(status_code).phrase
    except ValueError:
        return "Request failed"


def _as_details(details: Any) -> dict:
    if details is None:
        return {}
    if isinstance(details, dict):
        return dict(details)
    if isinstance(details, list):
        return {"errors": details}
    return {"detail": str(details)}


def error_response(
    status_code: int,
    code: str,
    message: str,
    details: Any | None = None,
    headers: dict | None = None,
) -> JSONResponse:
    """Failure envelope; ``details.success`` is always false."""
    body = {"success": False}
    body.update(_as_details(details))
    payload = {"code": code, "message": message, "data": None, "details": body}
    return JSONResponse(status_code=status_code, content=jsonable_encoder(payload), headers=headers)


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    code = _STATUS_CODES.get(exc.status_code, "http_error")
    detail = exc.detail
    if isinstance(detail, dict):
        code = detail.get("code") or code
        message = detail.get("message") or _status_message(exc.status_code)
        details = {k: v for k, v in detail.items() if k not in {"code", "message"}}
    elif isinstance(detail, str) and detail:
        message, details = detail, None
    else:
        message, details = _status_message(exc.status_code), None
    return error_response(exc.status_code, code, message, details, headers=getattr(exc, "headers", None))


async def workflow_exception_handler(request: Request, exc: WorkflowError) -> JSONResponse:
    logger.info("Workflow request refused: code=%s path=%s", exc.code, request.url.path)
    return error_response(exc.status_code, exc.code, exc.message, exc.details)


def _validation_message(errors: list[dict]) -> str:
    if not errors:
        return "Validation failed"
    first = errors[0] or {}
    msg = str(first.get("msg") or "Validation failed")
    # body/query/path prefixes say nothing useful to the caller
    field = ".".join(str(part) for part in first.get("loc") or () if part not in {"body", "query", "path"})
    return f"{field}: {msg}" if field else msg


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    errors = exc.errors()
    return error_response(422, "validation_error", _validation_message(errors), {"errors": errors})


async def rate_limit_exception_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    headers = getattr(exc, "headers", None)
    return error_response(
        429,
        "rate_limited",
        _status_message(429),
        {"limit": getattr(exc, "detail", None)},
        headers=headers if isinstance(headers, dict) else None,
    )


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s", request.url.path)
    return error_response(500, "internal_server_error", "Internal server error")


def register_exception_handlers(app) -> None:
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(WorkflowError, workflow_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(RateLimitExceeded, rate_limit_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
