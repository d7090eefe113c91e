import uuid
from http import HTTPStatus
from typing import Any

from fastapi import Request, status
from fastapi.responses import JSONResponse

PROBLEM_TYPE_VALIDATION = "https://example.com/problems/validation-error"
PROBLEM_TYPE_DOMAIN = "https://example.com/problems/domain-error"
PROBLEM_TYPE_UNAUTHORIZED = "https://example.com/problems/unauthorized"
PROBLEM_TYPE_FORBIDDEN = "https://example.com/problems/forbidden"
PROBLEM_TYPE_NOT_FOUND = "https://example.com/problems/not-found"
PROBLEM_TYPE_UNAVAILABLE = "https://example.com/problems/service-unavailable"
PROBLEM_TYPE_SERVER = "https://example.com/problems/server-error"

_TYPES_BY_STATUS = {
    status.HTTP_401_UNAUTHORIZED: PROBLEM_TYPE_UNAUTHORIZED,
    status.HTTP_403_FORBIDDEN: PROBLEM_TYPE_FORBIDDEN,
    status.HTTP_404_NOT_FOUND: PROBLEM_TYPE_NOT_FOUND,
    status.HTTP_422_UNPROCESSABLE_ENTITY: PROBLEM_TYPE_VALIDATION,
    status.HTTP_503_SERVICE_UNAVAILABLE: PROBLEM_TYPE_UNAVAILABLE,
}


def _resolve_request_id(request: Request) -> str:
    request_id = getattr(request.state, "request_id", None) or request.headers.get("X-Request-ID")
    if not request_id:
        request_id = str(uuid.uuid4())
    request.state.request_id = request_id
    return request_id


def _resolve_title(status_code: int, fallback: str | None) -> str:
    if fallback:
        return fallback
    try:
        return HTTPStatus(status_code).phrase
    except ValueError:
        return "Error"


def _resolve_type(status_code: int, type_override: str | None) -> str:
    if type_override:
        return type_override
    if status_code in _TYPES_BY_STATUS:
        return _TYPES_BY_STATUS[status_code]
    if status_code >= 500:
        return PROBLEM_TYPE_SERVER
    return PROBLEM_TYPE_DOMAIN


def problem_details(
    request: Request,
    *,
    status: int,
    title: str | None,
    detail: str,
    errors: list[dict[str, Any]] | None = None,
    type_: str | None = None,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    request_id = _resolve_request_id(request)
    content = {
        "type": _resolve_type(status, type_),
        "title": _resolve_title(status, title),
        "status": status,
        "detail": detail,
        "request_id": request_id,
        "errors": errors or [],
    }
    response = JSONResponse(
        status_code=status,
        content=content,
        headers=headers,
        media_type="application/problem+json",
    )
    response.headers.setdefault("X-Request-ID", request_id)
    return response
