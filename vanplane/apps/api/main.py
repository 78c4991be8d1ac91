from __future__ import annotations

import time
from uuid import uuid4

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from vanplane.apps.api.errors import (
    http_exception_handler,
    starlette_http_exception_handler,
    unhandled_exception_handler,
    validation_exception_handler,
    van_error_handler,
)
from vanplane.apps.api.response import API_VERSION
from vanplane.apps.api.routes.health import router as health_router
from vanplane.apps.api.routes.ops import router as ops_router
from vanplane.apps.api.routes.sync import sync_endpoint
from vanplane.apps.api.routes.topology import router as topology_router
from vanplane.core.config import get_settings
from vanplane.core.errors import VanError
from vanplane.core.logging import configure_logging
from vanplane.services.telemetry import record_request


def create_app() -> FastAPI:
    configure_logging()
    settings = get_settings()
    app = FastAPI(title="vanplane control plane", version=API_VERSION)

    @app.middleware("http")
    async def request_context_middleware(request: Request, call_next):  # type: ignore[override]
        # Preserve incoming request IDs or assign a new one for traceability.
        request_id = request.headers.get("X-Request-Id") or str(uuid4())
        request.state.request_id = request_id
        start = time.monotonic()
        response = await call_next(request)
        record_request(
            path=request.url.path,
            status_code=response.status_code,
            latency_ms=(time.monotonic() - start) * 1000.0,
        )
        response.headers.setdefault("X-Request-Id", request_id)
        return response

    @app.exception_handler(StarletteHTTPException)
    async def _starlette_http_exception_handler(request: Request, exc: StarletteHTTPException):
        return await starlette_http_exception_handler(request, exc)

    @app.exception_handler(HTTPException)
    async def _http_exception_handler(request: Request, exc: HTTPException):
        return await http_exception_handler(request, exc)

    @app.exception_handler(RequestValidationError)
    async def _validation_exception_handler(request: Request, exc: RequestValidationError):
        return await validation_exception_handler(request, exc)

    @app.exception_handler(VanError)
    async def _van_error_handler(request: Request, exc: VanError):
        return await van_error_handler(request, exc)

    @app.exception_handler(Exception)
    async def _unhandled_exception_handler(request: Request, exc: Exception):
        return await unhandled_exception_handler(request, exc)

    app.include_router(health_router)
    app.include_router(topology_router, prefix=f"/{API_VERSION}")
    app.include_router(ops_router, prefix=f"/{API_VERSION}")
    # Sites post protocol envelopes here; the path is configurable for gateways.
    app.add_api_route(settings.sync_route, sync_endpoint, methods=["POST"], tags=["sync"])

    return app


app = create_app()
