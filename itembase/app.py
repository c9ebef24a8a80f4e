"""
FastAPI application entry point.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from itembase.config import Settings, get_settings
from itembase.dependencies import AppContext, build_context
from itembase.errors import ItemBaseError
from itembase.routes import router

logger = logging.getLogger(__name__)


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


async def handle_item_error(request: Request, exc: ItemBaseError) -> JSONResponse:
    if exc.status_code >= 500:
        # Availability and transport details stay in the log.
        logger.error("%s on %s %s: %s", type(exc).__name__, request.method, request.url.path, exc.message)
        return _error(500, "Internal server error")
    return _error(exc.status_code, exc.message)


async def handle_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    if errors:
        location = ".".join(str(part) for part in errors[0].get("loc", ()) if part != "body")
        message = errors[0].get("msg", "Invalid request body")
        return _error(400, f"{location}: {message}" if location else message)
    return _error(400, "Invalid request body")


async def handle_http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    if exc.status_code == 404 and exc.detail == "Not Found":
        return _error(404, "API endpoint not found")
    return _error(exc.status_code, str(exc.detail))


async def handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return _error(500, "Internal server error")


def create_app(context: AppContext | None = None, settings: Settings | None = None) -> FastAPI:
    settings = settings or (context.settings if context else get_settings())
    logging.basicConfig(level=settings.log_level.upper())
    context = context or build_context(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await context.start()
        logger.info("Serving with %s backend", context.selector.active_kind.value)
        try:
            yield
        finally:
            await context.close()

    app = FastAPI(title="Itembase API", version="0.1.0", lifespan=lifespan)
    app.state.context = context
    app.add_exception_handler(ItemBaseError, handle_item_error)
    app.add_exception_handler(RequestValidationError, handle_validation_error)
    app.add_exception_handler(StarletteHTTPException, handle_http_error)
    app.add_exception_handler(Exception, handle_unexpected_error)
    app.include_router(router, prefix=settings.api_prefix)
    return app
