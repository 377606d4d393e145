from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any
from uuid import uuid4

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import DBAPIError, IntegrityError

from tenant_query.core.errors import ConfigurationError, EntityNotFoundError
from tenant_query.core.logging import correlation_id_var, tenant_id_var
from tenant_query.schemas.common import ErrorInfo, ErrorResponse

logger = logging.getLogger(__name__)


async def request_context_middleware(request: Request, call_next):
    """
    Enrich request context with correlation_id and tenant_id for logging and error responses.
    Adds 'X-Correlation-ID' to every response.
    """
    corr = request.headers.get("X-Correlation-ID") or request.headers.get("X-Request-ID") or str(uuid4())
    tenant = request.headers.get("X-Tenant-ID")
    token_corr = correlation_id_var.set(corr)
    token_tenant = tenant_id_var.set(tenant)
    request.state.correlation_id = corr
    request.state.tenant_id = tenant

    logger.info("Incoming request %s %s", request.method, request.url.path)
    try:
        response = await call_next(request)
    finally:
        correlation_id_var.reset(token_corr)
        tenant_id_var.reset(token_tenant)
    response.headers["X-Correlation-ID"] = corr
    return response


def _build_error_response(
    request: Request,
    status_code: int,
    error_type: str,
    message: str,
    details: Any | None = None,
) -> JSONResponse:
    """Build a standardized ErrorResponse JSONResponse."""
    err = ErrorResponse(
        status=status_code,
        error=ErrorInfo(type=error_type, message=message, details=details),
        correlation_id=getattr(request.state, "correlation_id", None),
        tenant_id=getattr(request.state, "tenant_id", None),
        path=request.url.path,
        method=request.method,
        timestamp=datetime.now(tz=timezone.utc),
    )
    return JSONResponse(status_code=status_code, content=err.model_dump(mode="json"))


async def entity_not_found_handler(request: Request, exc: EntityNotFoundError):
    return _build_error_response(
        request,
        404,
        "not_found",
        str(exc),
        {"entity": exc.entity, "criteria": exc.criteria if isinstance(exc.criteria, (str, int, dict, list)) else str(exc.criteria)},
    )


async def configuration_error_handler(request: Request, exc: ConfigurationError):
    return _build_error_response(request, 400, "bad_request", str(exc))


async def database_error_handler(request: Request, exc: DBAPIError):
    """Constraint violations and other engine errors surface as 400 without the SQL text."""
    logger.warning("Database error: %s", exc.orig)
    error_type = "integrity_error" if isinstance(exc, IntegrityError) else "database_error"
    return _build_error_response(request, 400, error_type, str(exc.orig))


async def http_exception_handler(request: Request, exc: HTTPException):
    """
    Global handler for HTTPException to produce a standardized error envelope.
    """
    detail = exc.detail if isinstance(exc.detail, str) else "HTTP Error"
    return _build_error_response(
        request,
        exc.status_code,
        "http_error",
        str(detail),
        None if isinstance(exc.detail, str) else exc.detail,
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    return _build_error_response(
        request, 422, "validation_error", "Request validation failed", exc.errors()
    )


async def unhandled_exception_handler(request: Request, exc: Exception):
    """
    Catch-all handler to avoid leaking stack traces and to return a structured error.
    """
    logger.exception("Unhandled error processing request")
    return _build_error_response(request, 500, "internal_error", "An unexpected error occurred")


# PUBLIC_INTERFACE
def install_exception_handlers(app: FastAPI) -> FastAPI:
    """
    Register the request context middleware and the exception handlers that
    map repository errors onto the ErrorResponse envelope:
    EntityNotFoundError -> 404, ConfigurationError and database errors -> 400.
    """
    app.middleware("http")(request_context_middleware)
    app.add_exception_handler(EntityNotFoundError, entity_not_found_handler)
    app.add_exception_handler(ConfigurationError, configuration_error_handler)
    app.add_exception_handler(DBAPIError, database_error_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
    return app
