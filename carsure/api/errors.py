"""Exception handlers rendering every failure as the ``{"ok": false}`` envelope."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from redis.exceptions import RedisError
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

from carsure.errors import CarSureError, UpstreamIO

logger = logging.getLogger(__name__)


def error_body(error: CarSureError) -> dict[str, Any]:
    return {"ok": False, "message": error.message, **error.extra()}


def _render(error: CarSureError) -> JSONResponse:
    headers = None
    retry_after = getattr(error, "retry_after", None)
    if retry_after is not None:
        headers = {"Retry-After": str(retry_after)}
    return JSONResponse(status_code=error.status_code, content=error_body(error), headers=headers)


def _format_validation(exc: RequestValidationError) -> list[str]:
    messages = []
    for err in exc.errors():
        location = ".".join(str(part) for part in err.get("loc", ()) if part != "body")
        messages.append(f"{location}: {err.get('msg')}" if location else str(err.get("msg")))
    return messages


async def handle_domain_error(request: Request, exc: CarSureError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s -> %s: %s", request.method, request.url.path, exc.status_code, exc.message)
    else:
        logger.info("%s %s -> %s: %s", request.method, request.url.path, exc.status_code, exc.message)
    return _render(exc)


async def handle_request_validation(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = _format_validation(exc)
    return JSONResponse(
        status_code=422,
        content={"ok": False, "message": "Données invalides", "errors": errors},
    )


async def handle_http_exception(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"ok": False, "message": str(exc.detail)},
        headers=getattr(exc, "headers", None),
    )


async def handle_backend_error(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Backend failure on %s %s", request.method, request.url.path)
    return _render(UpstreamIO())


async def handle_unexpected(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"ok": False, "message": "Erreur interne du serveur"})


def register_exception_handlers(app: FastAPI) -> None:
    """Install the envelope handlers on ``app``."""
    app.add_exception_handler(CarSureError, handle_domain_error)  # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, handle_request_validation)  # type: ignore[arg-type]
    app.add_exception_handler(StarletteHTTPException, handle_http_exception)  # type: ignore[arg-type]
    app.add_exception_handler(SQLAlchemyError, handle_backend_error)
    app.add_exception_handler(RedisError, handle_backend_error)
    app.add_exception_handler(Exception, handle_unexpected)
