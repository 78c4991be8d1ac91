from __future__ import annotations

import logging
from typing import Any

from fastapi import HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from vanplane.apps.api.response import error_response
from vanplane.core.errors import (
    AccessPointConfiguredError,
    AuthorityNotReadyError,
    InvitationExpiredError,
    InvitationLimitError,
    NotFoundError,
    ProtocolError,
    StoreError,
    TopologyError,
    VanError,
)


logger = logging.getLogger(__name__)

_DEFAULT_ERROR_CODES: dict[int, str] = {
    400: "BAD_REQUEST",
    404: "NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
    409: "CONFLICT",
    410: "GONE",
    422: "VALIDATION_ERROR",
    500: "INTERNAL_ERROR",
    503: "SERVICE_UNAVAILABLE",
}

_VAN_ERROR_CODES: dict[type[VanError], str] = {
    AccessPointConfiguredError: "ACCESS_POINT_CONFIGURED",
    AuthorityNotReadyError: "AUTHORITY_NOT_READY",
    InvitationExpiredError: "INVITATION_EXPIRED",
    InvitationLimitError: "INVITATION_LIMIT_REACHED",
    NotFoundError: "NOT_FOUND",
    ProtocolError: "PROTOCOL_ERROR",
    StoreError: "STORE_UNAVAILABLE",
    TopologyError: "TOPOLOGY_ERROR",
}


def _default_code(status_code: int) -> str:
    return _DEFAULT_ERROR_CODES.get(status_code, "UNKNOWN_ERROR")


def _split_detail(detail: Any, status_code: int) -> tuple[str, str, dict[str, Any] | None]:
    # HTTPException detail may be a plain message or a {code, message, ...} dict.
    if isinstance(detail, dict):
        code = str(detail.get("code") or _default_code(status_code))
        message = str(detail.get("message") or "Request failed")
        details = {k: v for k, v in detail.items() if k not in {"code", "message"}}
        return code, message, details or None
    if isinstance(detail, str):
        return _default_code(status_code), detail, None
    return _default_code(status_code), "Request failed", None


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    code, message, details = _split_detail(exc.detail, exc.status_code)
    payload = error_response(request=request, code=code, message=message, details=details)
    return JSONResponse(content=payload, status_code=exc.status_code, headers=exc.headers)


async def starlette_http_exception_handler(
    request: Request, exc: StarletteHTTPException
) -> JSONResponse:
    code, message, details = _split_detail(exc.detail, exc.status_code)
    payload = error_response(request=request, code=code, message=message, details=details)
    return JSONResponse(content=payload, status_code=exc.status_code, headers=exc.headers)


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    payload = error_response(
        request=request,
        code="REQUEST_VALIDATION_ERROR",
        message="Validation error",
        details={"errors": exc.errors()},
    )
    return JSONResponse(content=payload, status_code=422)


async def van_error_handler(request: Request, exc: VanError) -> JSONResponse:
    # Domain errors carry their own status; the message is safe to show.
    code = next(
        (value for error_type, value in _VAN_ERROR_CODES.items() if isinstance(exc, error_type)),
        _default_code(exc.status_code),
    )
    if exc.status_code >= 500:
        logger.error("Request %s failed: %s", request.url.path, exc)
    payload = error_response(request=request, code=code, message=str(exc))
    return JSONResponse(content=payload, status_code=exc.status_code)


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    # Never leak stack traces to callers.
    logger.exception("Unhandled error on %s", request.url.path, exc_info=exc)
    payload = error_response(
        request=request,
        code="INTERNAL_ERROR",
        message="Internal server error",
    )
    return JSONResponse(content=payload, status_code=500)
