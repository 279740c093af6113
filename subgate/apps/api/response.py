from __future__ import annotations

from typing import Any
from uuid import uuid4

from pydantic import BaseModel
from starlette.requests import HTTPConnection


class ErrorBody(BaseModel):
    # Flat error shape; `code` is the stable value clients branch on.
    code: str
    message: str
    details: dict[str, Any] | None = None
    request_id: str


class MessageResponse(BaseModel):
    message: str


def get_request_id(request: HTTPConnection) -> str:
    # Reuse the middleware-assigned id so logs and bodies agree.
    request_id = getattr(request.state, "request_id", None)
    if request_id:
        return request_id
    header_request_id = request.headers.get("X-Request-Id")
    if header_request_id:
        request.state.request_id = header_request_id
        return header_request_id
    generated = str(uuid4())
    request.state.request_id = generated
    return generated


def error_response(
    *,
    request: HTTPConnection,
    code: str,
    message: str,
    details: dict[str, Any] | None = None,
) -> dict[str, Any]:
    body = ErrorBody(
        code=code,
        message=message,
        details=details,
        request_id=get_request_id(request),
    )
    return body.model_dump(exclude_none=True)
