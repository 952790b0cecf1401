"""Relay exception handlers: every failure becomes ``{"error": ..., "code": ...}``."""
from __future__ import annotations

import logging
from typing import Any

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.status import HTTP_500_INTERNAL_SERVER_ERROR

from peerlink.core.exceptions import DomainError, InvalidRequestError
from peerlink.schemas import ErrorResponse

logger = logging.getLogger("peerlink")


def error_body(detail: str, code: str, extra: dict[str, Any] | None = None) -> dict[str, Any]:
    return ErrorResponse(error=detail, code=code, meta=extra or None).model_dump(exclude_none=True)


def _log_failure(request: Request, exc: DomainError) -> None:
    if exc.status_code >= 500:
        # store failures keep their transport cause
        logger.error(
            "Signaling %s %s failed: %s",
            request.method,
            request.url.path,
            exc.detail,
            exc_info=exc.__cause__ or exc,
        )
    else:
        logger.warning("Signaling %s %s rejected: %s", request.method, request.url.path, exc.detail)


def register_exception_handlers(app: FastAPI) -> None:
    """Attach global exception handlers to the FastAPI app."""

    @app.exception_handler(DomainError)
    async def handle_domain_error(request: Request, exc: DomainError) -> JSONResponse:
        _log_failure(request, exc)
        return JSONResponse(
            status_code=exc.status_code,
            content=error_body(exc.detail, exc.error_code, exc.extra),
        )

    @app.exception_handler(RequestValidationError)
    async def handle_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
        logger.warning("Malformed body on %s %s: %s", request.method, request.url.path, exc.errors())
        return JSONResponse(
            status_code=InvalidRequestError.status_code,
            content=error_body("Malformed request body", InvalidRequestError.error_code),
        )

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(
            status_code=HTTP_500_INTERNAL_SERVER_ERROR,
            content=error_body("Internal server error", "internal_error"),
        )
