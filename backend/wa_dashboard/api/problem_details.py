"""RFC 7807 error bodies for every failure the API returns.

The dashboard frontend shows ``detail`` verbatim and reads ``errors`` for per-field messages.
"""

import logging
import uuid
from http import HTTPStatus
from typing import Any

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException

from wa_dashboard.domain.errors import DomainError
from wa_dashboard.infra.logging import update_log_context

logger = logging.getLogger(__name__)

PROBLEM_MEDIA_TYPE = "application/problem+json"
_PROBLEM_BASE = "urn:wa-dashboard:problem:"

PROBLEM_TYPE_VALIDATION = _PROBLEM_BASE + "validation-error"
PROBLEM_TYPE_DOMAIN = _PROBLEM_BASE + "domain-error"
PROBLEM_TYPE_SERVER = _PROBLEM_BASE + "server-error"

_TYPE_BY_STATUS = {
    401: _PROBLEM_BASE + "unauthorized",
    403: _PROBLEM_BASE + "forbidden",
    404: _PROBLEM_BASE + "not-found",
    409: _PROBLEM_BASE + "conflict",
    413: _PROBLEM_BASE + "payload-too-large",
    415: _PROBLEM_BASE + "unsupported-media-type",
    422: PROBLEM_TYPE_VALIDATION,
    502: _PROBLEM_BASE + "whatsapp-upstream-error",
}


def _request_id(request: Request) -> str:
    request_id = getattr(request.state, "request_id", None) or request.headers.get("X-Request-ID")
    if not request_id:
        request_id = str(uuid.uuid4())
        request.state.request_id = request_id
    return request_id


def _type_for(status: int) -> str:
    if status in _TYPE_BY_STATUS:
        return _TYPE_BY_STATUS[status]
    return PROBLEM_TYPE_SERVER if status >= 500 else PROBLEM_TYPE_DOMAIN


def problem_details(
    request: Request,
    *,
    status: int,
    detail: str,
    title: str | None = None,
    errors: list[dict[str, Any]] | None = None,
    type_: str | None = None,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    request_id = _request_id(request)
    try:
        default_title = HTTPStatus(status).phrase
    except ValueError:
        default_title = "Error"
    response = JSONResponse(
        status_code=status,
        content={
            "type": type_ or _type_for(status),
            "title": title or default_title,
            "status": status,
            "detail": detail,
            "request_id": request_id,
            "errors": errors or [],
        },
        headers=headers,
        media_type=PROBLEM_MEDIA_TYPE,
    )
    response.headers.setdefault("X-Request-ID", request_id)
    return response


def _field_errors(exc: RequestValidationError) -> list[dict[str, str]]:
    fields = []
    for error in exc.errors():
        location = [str(part) for part in error.get("loc", []) if part not in {"body", "query", "path"}]
        fields.append({"field": ".".join(location) or "body", "message": error.get("msg", "Invalid value")})
    return fields


def install_problem_handlers(app: FastAPI) -> None:
    @app.exception_handler(RequestValidationError)
    async def _validation(request: Request, exc: RequestValidationError) -> JSONResponse:
        return problem_details(
            request,
            status=422,
            title="Validation Error",
            detail="Request validation failed",
            errors=_field_errors(exc),
        )

    @app.exception_handler(DomainError)
    async def _domain(request: Request, exc: DomainError) -> JSONResponse:
        return problem_details(
            request,
            status=exc.status_code,
            title=exc.title,
            detail=exc.detail,
            errors=exc.errors,
            type_=PROBLEM_TYPE_DOMAIN,
        )

    @app.exception_handler(HTTPException)
    async def _http(request: Request, exc: HTTPException) -> JSONResponse:
        message = exc.detail if isinstance(exc.detail, str) else "Request failed"
        return problem_details(request, status=exc.status_code, detail=message, headers=exc.headers)

    @app.exception_handler(Exception)
    async def _unhandled(request: Request, exc: Exception) -> JSONResponse:
        error_type = type(exc).__name__
        update_log_context(status_code=500, error_type=error_type)
        logger.exception(
            "unhandled_exception",
            extra={"extra": {"path": request.url.path, "error_type": error_type}},
        )
        return problem_details(request, status=500, title="Internal Server Error", detail="Unexpected error")
