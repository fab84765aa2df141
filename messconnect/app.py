"""
FastAPI application entry point.

Every response uses the envelope `{"success": bool, "data": ..., "error": ...}`;
the exception handlers below render failures in that shape.
"""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from messconnect.config import get_settings
from messconnect.dependencies import get_kv_store
from messconnect.errors import EntityNotFoundError, StorageUnavailableError
from messconnect.logging_config import configure_logging
from messconnect.routes import router
from messconnect.seed import ensure_staff_accounts

logger = logging.getLogger(__name__)

_LOCATIONS = ("body", "query", "path", "header", "cookie")


def error_response(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code, content={"success": False, "error": message}
    )


def format_validation_errors(errors) -> str:
    messages = []
    for error in errors:
        if error.get("type") == "value_error":
            message = error["msg"].removeprefix("Value error, ")
        else:
            loc = tuple(error.get("loc", ()))
            if loc and loc[0] in _LOCATIONS:
                loc = loc[1:]
            field = ".".join(str(part) for part in loc)
            message = f"{field}: {error['msg']}" if field else error["msg"]
        messages.append(message)
    return ", ".join(messages) or "Invalid request"


def create_app() -> FastAPI:
    settings = get_settings()
    configure_logging(settings.log_level)
    app = FastAPI(title="Mess Connect API", version="0.1.0")

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def ensure_staff(request: Request, call_next):
        if request.url.path.startswith(settings.api_prefix):
            store_factory = app.dependency_overrides.get(get_kv_store, get_kv_store)
            try:
                await run_in_threadpool(ensure_staff_accounts, store_factory(), settings)
            except StorageUnavailableError:
                logger.exception("Storage unavailable while checking staff accounts")
                return error_response(503, "Storage unavailable")
        return await call_next(request)

    @app.exception_handler(StarletteHTTPException)
    async def http_error(request: Request, exc: StarletteHTTPException):
        return error_response(exc.status_code, str(exc.detail))

    @app.exception_handler(RequestValidationError)
    async def validation_error(request: Request, exc: RequestValidationError):
        return error_response(400, format_validation_errors(exc.errors()))

    @app.exception_handler(EntityNotFoundError)
    async def not_found(request: Request, exc: EntityNotFoundError):
        return error_response(404, "Not found.")

    @app.exception_handler(StorageUnavailableError)
    async def storage_unavailable(request: Request, exc: StorageUnavailableError):
        logger.error("Storage unavailable: %s", exc)
        return error_response(503, "Storage unavailable")

    @app.exception_handler(Exception)
    async def unhandled_error(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return error_response(500, "Internal server error")

    app.include_router(router, prefix=settings.api_prefix)
    return app


app = create_app()
