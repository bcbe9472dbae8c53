from __future__ import annotations

from http import HTTPStatus
import logging
from typing import Any

from fastapi import Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.core.context import get_request_id
from app.core.exceptions import LifecycleError

logger = logging.getLogger(__name__)

_HTTP_CODES = {
    400: "bad_request",
    401: "unauthorized",
    403: "forbidden",
    404: "not_found",
    405: "method_not_allowed",
    409: "conflict",
    422: "unprocessable_entity",
    429: "rate_limited",
}
# Request sections FastAPI prefixes onto validation locations.
_LOCATION_SECTIONS = {"body", "query", "path", "header"}


def _phrase(status_code: int) -> str:
    try:
        return HTTPStatus(status_code).phrase
    except ValueError:
        return "Request failed"


def error_envelope(status_code: int, code: str, message: str, details: dict | None = None) -> JSONResponse:
    """Render a failure as ``{code, message, data: null, details}``."""
    payload = {"code": code, "message": message, "data": None, "details": details or {}}
    return JSONResponse(status_code=status_code, content=jsonable_encoder(payload))


def _field_errors(errors: list[dict[str, Any]]) -> list[dict[str, str]]:
    # Input values are dropped: staff payloads carry applicant personal data.
    compact = []
    for error in errors:
        location = [str(part) for part in error.get("loc") or () if part not in _LOCATION_SECTIONS]
        compact.append(
            {
                "field": ".".join(location) or "request",
                "message": str(error.get("msg") or "Invalid value"),
                "type": str(error.get("type") or "value_error"),
            }
        )
    return compact


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    code = _HTTP_CODES.get(exc.status_code, "http_error")
    if isinstance(exc.detail, str) and exc.detail:
        return error_envelope(exc.status_code, code, exc.detail)
    details = {"errors": exc.detail} if isinstance(exc.detail, list) else {}
    return error_envelope(exc.status_code, code, _phrase(exc.status_code), details)


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = _field_errors(exc.errors())
    message = f"{errors[0]['field']}: {errors[0]['message']}" if errors else "Validation failed"
    return error_envelope(422, "validation_error", message, {"errors": errors})


async def lifecycle_exception_handler(request: Request, exc: LifecycleError) -> JSONResponse:
    if exc.status_code in (403, 409):
        logger.warning(
            "Lifecycle action refused",
            extra={"action": exc.code, "resource_type": request.url.path},
        )
    return error_envelope(exc.status_code, exc.code, exc.message, exc.details)


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error while processing %s %s", request.method, request.url.path)
    return error_envelope(500, "internal_server_error", "Internal server error", {"request_id": get_request_id()})


async def rate_limit_exception_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    response = error_envelope(429, "rate_limited", _phrase(429), {"limit": str(getattr(exc, "detail", ""))})
    headers = getattr(exc, "headers", None)
    if isinstance(headers, dict):
        response.headers.update(headers)
    return response


def register_exception_handlers(app) -> None:
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(RateLimitExceeded, rate_limit_exception_handler)
    app.add_exception_handler(LifecycleError, lifecycle_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
