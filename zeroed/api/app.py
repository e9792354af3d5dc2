"""
Zeroed — HTTP application.

Builds the FastAPI app: one router per area, domain errors translated to
{"error": ...} JSON bodies, and the maintenance-mode gate.
"""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from zeroed.api.deps import Stores
from zeroed.api.routes import (
    account,
    admin,
    billing,
    cron,
    integrations,
    productivity,
    tasks,
    teams,
)
from zeroed.core.errors import NotFoundError, PermissionDeniedError, TaskError
from zeroed.core.filters import FilterError
from zeroed.core.platform_settings import get_setting
from zeroed.data.db import DuplicateRecord, RecordNotFound
from zeroed.data.query import QueryError
from zeroed.integrations.google_auth import GoogleAuthError
from zeroed.integrations.notion import NotionError
from zeroed.integrations.stripe_billing import BillingError
from zeroed.ports.calendar_port import CalendarError

logger = logging.getLogger(__name__)

# Reachable while maintenance_mode is on
MAINTENANCE_EXEMPT_PREFIXES = ("/health", "/api/admin", "/api/cron")


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


def _register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(StarletteHTTPException)
    async def http_error(_: Request, exc: StarletteHTTPException):
        return _error(exc.status_code, str(exc.detail))

    @app.exception_handler(RequestValidationError)
    async def validation_error(_: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=400,
            content={"error": "Invalid request", "details": jsonable_encoder(exc.errors())},
        )

    @app.exception_handler(NotFoundError)
    @app.exception_handler(RecordNotFound)
    async def not_found(_: Request, exc: Exception):
        return _error(404, str(exc) or "Not found")

    @app.exception_handler(PermissionDeniedError)
    async def forbidden(_: Request, exc: PermissionDeniedError):
        return _error(403, str(exc) or "Permission denied")

    @app.exception_handler(TaskError)
    @app.exception_handler(FilterError)
    @app.exception_handler(QueryError)
    @app.exception_handler(BillingError)
    async def bad_request(_: Request, exc: Exception):
        return _error(400, str(exc))

    @app.exception_handler(GoogleAuthError)
    @app.exception_handler(CalendarError)
    @app.exception_handler(NotionError)
    async def upstream_error(_: Request, exc: Exception):
        logger.warning("Integration error: %s", exc)
        return _error(502, str(exc))

    @app.exception_handler(DuplicateRecord)
    async def conflict(_: Request, exc: DuplicateRecord):
        return _error(409, str(exc))

    @app.exception_handler(Exception)
    async def unhandled(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return _error(500, "Internal server error")


def create_app(db_path: str | None = None) -> FastAPI:
    """Build the app; db_path overrides DATABASE_PATH (tests use a temp file)."""
    app = FastAPI(title="Zeroed", version="1.0.0")
    app.state.stores = Stores.open(db_path)

    _register_error_handlers(app)

    @app.middleware("http")
    async def maintenance_gate(request: Request, call_next):
        path = request.url.path
        if not path.startswith(MAINTENANCE_EXEMPT_PREFIXES):
            if get_setting(request.app.state.stores.platform, "maintenance_mode"):
                return _error(503, "Bruh is down for maintenance. Back soon.")
        return await call_next(request)

    @app.get("/health")
    def health():
        return {"ok": True}

    for module in (account, tasks, productivity, integrations, billing, teams, cron, admin):
        app.include_router(module.router)

    logger.info("Zeroed app created with %d routes", len(app.routes))
    return app
