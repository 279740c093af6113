from __future__ import annotations

import logging
from typing import Any

from fastapi import HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

from subgate.apps.api.response import error_response
from subgate.core.config import get_settings
from subgate.core.errors import AccountSuspended, SubgateError


logger = logging.getLogger(__name__)

_DEFAULT_ERROR_CODES: dict[int, str] = {
    400: "VALIDATION_ERROR",
    401: "NOT_AUTHENTICATED",
    403: "NOT_AUTHORIZED",
    404: "NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
    409: "CONFLICT",
    500: "SERVER_FAULT",
}


def _default_code(status_code: int) -> str:
    return _DEFAULT_ERROR_CODES.get(status_code, "UNKNOWN_ERROR")


def _split_detail(detail: Any, status_code: int) -> tuple[str, str, dict[str, Any] | None]:
    # Extract code/message/details from HTTPException detail payloads.
    if isinstance(detail, dict):
        code = str(detail.get("code") or _default_code(status_code))
        message = str(detail.get("message") or "Request failed")
        details = {k: v for k, v in detail.items() if k not in {"code", "message"}}
        return code, message, details or None
    if isinstance(detail, str):
        return _default_code(status_code), detail, None
    return _default_code(status_code), "Request failed", None


async def subgate_exception_handler(request: Request, exc: SubgateError) -> JSONResponse:
    payload = error_response(
        request=request, code=exc.code, message=exc.message, details=exc.details
    )
    response = JSONResponse(content=payload, status_code=exc.status_code)
    if isinstance(exc, AccountSuspended):
        # Suspended identities lose their stored credential on every denial.
        settings = get_settings()
        response.delete_cookie(
            settings.session_cookie_name,
            httponly=True,
            samesite=settings.session_cookie_samesite,
            secure=settings.is_production,
        )
    if exc.status_code >= 500:
        logger.error(
            "request_failed code=%s path=%s", exc.code, request.url.path, exc_info=exc
        )
    return response


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    code, message, details = _split_detail(exc.detail, exc.status_code)
    payload = error_response(request=request, code=code, message=message, details=details)
    return JSONResponse(content=payload, status_code=exc.status_code, headers=exc.headers)


async def starlette_http_exception_handler(
    request: Request, exc: StarletteHTTPException
) -> JSONResponse:
    # Router-level 404/405s share the same body shape.
    code, message, details = _split_detail(exc.detail, exc.status_code)
    payload = error_response(request=request, code=code, message=message, details=details)
    return JSONResponse(content=payload, status_code=exc.status_code, headers=exc.headers)


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    # Missing or malformed fields are client errors (400), not 422.
    payload = error_response(
        request=request,
        code="VALIDATION_ERROR",
        message="Validation error",
        details={"errors": jsonable_encoder(exc.errors())},
    )
    return JSONResponse(content=payload, status_code=400)


async def database_exception_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    logger.error("database_error path=%s", request.url.path, exc_info=exc)
    payload = error_response(request=request, code="SERVER_FAULT", message="Server error")
    return JSONResponse(content=payload, status_code=500)


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    # Never leak stack traces to clients.
    logger.exception("unhandled_error path=%s", request.url.path, exc_info=exc)
    payload = error_response(request=request, code="SERVER_FAULT", message="Server error")
    return JSONResponse(content=payload, status_code=500)
