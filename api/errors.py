"""Error boundary: turns exceptions into JSON error responses.

Copyright (c) Bryn Gwalad 2025
"""

import logging
import traceback

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from utils import config
from utils.errors import AppError

logger = logging.getLogger("custom_tables.errors")


def _error_response(status_code: int, message: str, exc: Exception = None, **extra) -> JSONResponse:
    body = {"error": message, "status": status_code}
    body.update(extra)
    if exc is not None and config.APP_ENV == "development":
        body["stack"] = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
    return JSONResponse(status_code=status_code, content=body)


def _log_failure(request: Request, status_code: int, message: str, exc: Exception, with_trace: bool) -> None:
    logger.log(
        logging.ERROR if status_code >= 500 else logging.WARNING,
        "%s %s failed for user %s: %s %s",
        request.method,
        request.url.path,
        request.headers.get("X-User-Id", "-"),
        status_code,
        message,
        exc_info=exc if with_trace else None,
    )


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(AppError)
    async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
        _log_failure(request, exc.status_code, exc.message, exc, not exc.is_operational)
        return _error_response(exc.status_code, exc.message, exc)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        errors = [
            {"loc": [str(part) for part in error.get("loc", ())], "msg": error.get("msg", "")}
            for error in exc.errors()
        ]
        _log_failure(request, 400, "Validation error", exc, False)
        return _error_response(400, "Validation error", validationErrors=errors)

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
        _log_failure(request, 500, str(exc), exc, True)
        return _error_response(500, "An unexpected error occurred", exc)
