"""Exception handlers mapping tagged application errors to HTTP responses."""

import logging

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from authcore.core.errors import AppError, ErrorKind

logger = logging.getLogger(__name__)


def _error_response(
    status_code: int,
    detail,
    kind: ErrorKind,
) -> JSONResponse:
    headers = {"WWW-Authenticate": "Bearer"} if status_code == 401 else None
    return JSONResponse(
        status_code=status_code,
        content={"detail": detail, "code": kind.value},
        headers=headers,
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Install handlers for domain errors and request validation."""

    @app.exception_handler(AppError)
    async def handle_app_error(request: Request, exc: AppError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error(
                f"{request.method} {request.url.path} failed: {exc.message}",
                extra={"error_kind": exc.kind.value},
            )
        else:
            logger.info(
                f"{request.method} {request.url.path} rejected: {exc.message}",
                extra={"error_kind": exc.kind.value},
            )
        return _error_response(exc.status_code, exc.detail, exc.kind)

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        return _error_response(400, jsonable_encoder(exc.errors()), ErrorKind.VALIDATION)
