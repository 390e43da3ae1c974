#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
verification-core HTTP entrypoint (FastAPI).

- JSON logging with request-id and session/account context
- Security headers on every response
- Prometheus metrics, /metrics
- Health/Ready/Live, /version
- Tagged contract errors mapped to stable HTTP statuses and public messages
"""

from __future__ import annotations

import logging
import os
import time
import uuid
from typing import Optional

from fastapi import FastAPI, Request, Response, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from .. import deps
from ..config import Settings, get_settings
from ..deps import DependencyContainer
from ..errors import AppError, ContractError, http_status_for, public_message_for
from ..logging_setup import clear_context, get_request_id, set_context, setup_logging
from ..metrics import PROM_REGISTRY, REQ_COUNTER, REQ_LATENCY
from ..schemas import ErrorResponse
from .routes import router as verification_router

log = logging.getLogger("verification_core.api")


# ==========================================================
# Middlewares
# ==========================================================

def install_middlewares(app: FastAPI, settings: Settings) -> None:

    @app.middleware("http")
    async def request_context_middleware(request: Request, call_next):
        req_id = request.headers.get("x-request-id") or str(uuid.uuid4())
        clear_context()
        set_context(request_id=req_id)
        # outlives the context for handlers run by the outer error middleware
        request.state.request_id = req_id
        try:
            response: Response = await call_next(request)
        finally:
            clear_context()
        response.headers["x-request-id"] = req_id
        response.headers["x-content-type-options"] = "nosniff"
        response.headers["x-frame-options"] = "DENY"
        response.headers["referrer-policy"] = "no-referrer"
        response.headers["content-security-policy"] = "default-src 'none'; frame-ancestors 'none'; base-uri 'none';"
        if request.url.scheme == "https":
            response.headers["strict-transport-security"] = "max-age=63072000; includeSubDomains; preload"
        return response

    if settings.cors_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=list(settings.cors_origins),
            allow_credentials=False,
            allow_methods=["GET", "POST", "OPTIONS"],
            allow_headers=["*"],
            max_age=600,
        )

    if settings.metrics_enabled:
        @app.middleware("http")
        async def metrics_middleware(request: Request, call_next):
            start = time.perf_counter()
            status_code = 500
            try:
                response: Response = await call_next(request)
                status_code = response.status_code
                return response
            finally:
                route = request.scope.get("route")
                path = getattr(route, "path", "unmatched")
                REQ_COUNTER.labels(request.method, path, str(status_code)).inc()
                REQ_LATENCY.labels(request.method, path, str(status_code)).observe(time.perf_counter() - start)


# ==========================================================
# Exception handlers
# ==========================================================

def _request_id(request: Request) -> str:
    return getattr(request.state, "request_id", None) or get_request_id()


def _error(request: Request, status_code: int, message: str, code: str) -> JSONResponse:
    req_id = _request_id(request)
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=message, code=code, request_id=req_id).model_dump(),
        headers={"x-request-id": req_id},
    )


def install_exception_handlers(app: FastAPI) -> None:

    @app.exception_handler(AppError)
    async def app_error_handler(request: Request, exc: AppError):
        log.warning("app_error", extra={"code": exc.code, "http_status": exc.http_status})
        return _error(request, exc.http_status, exc.message, exc.code)

    @app.exception_handler(ContractError)
    async def contract_error_handler(request: Request, exc: ContractError):
        log.warning(
            "contract_error",
            extra={"kind": exc.kind.value, "rpc_method": exc.method, "detail": exc.message},
        )
        return _error(request, http_status_for(exc.kind), public_message_for(exc.kind), exc.kind.value)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        # no field details: they would reveal why an id was rejected
        return _error(request, status.HTTP_400_BAD_REQUEST, "Invalid request", "invalid_request")

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        set_context(request_id=_request_id(request))
        try:
            log.exception("unhandled_error")
        finally:
            clear_context()
        return _error(request, status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal server error", "internal_error")


# ==========================================================
# Application
# ==========================================================

def create_app(settings: Optional[Settings] = None, container: Optional[DependencyContainer] = None) -> FastAPI:
    settings = settings or get_settings()
    setup_logging(settings.log_level, settings.log_format)

    app = FastAPI(
        title=settings.app_name,
        version=settings.version,
        docs_url="/docs" if settings.expose_openapi else None,
        redoc_url=None,
        openapi_url="/openapi.json" if settings.expose_openapi else None,
        default_response_class=JSONResponse,
        lifespan=deps.lifespan,
    )
    app.state.settings = settings
    app.state.container = container

    install_middlewares(app, settings)
    install_exception_handlers(app)

    @app.get("/healthz", include_in_schema=False)
    async def healthz():
        return {"status": "ok"}

    @app.get("/livez", include_in_schema=False)
    async def livez():
        return {"status": "live"}

    @app.get("/readyz", include_in_schema=False)
    async def readyz(request: Request):
        c = getattr(request.app.state, "container", None)
        if c is None:
            return JSONResponse(status_code=503, content={"status": "not_ready", "store": "uninitialized"})
        try:
            ok = await c.store.ping()
        except Exception as e:  # noqa: BLE001
            log.warning("readiness_store_ping_failed", extra={"err": type(e).__name__})
            ok = False
        if not ok:
            return JSONResponse(status_code=503, content={"status": "not_ready", "store": "unreachable"})
        return {"status": "ready"}

    @app.get("/version", include_in_schema=False)
    async def version():
        return {"name": settings.app_name, "version": settings.version, "env": settings.env}

    if settings.metrics_enabled:
        @app.get("/metrics", include_in_schema=False)
        async def metrics():
            return Response(content=generate_latest(PROM_REGISTRY), media_type=CONTENT_TYPE_LATEST)

    app.include_router(verification_router, prefix="/api")

    log.info("app_created", extra={"env": settings.env, "version": settings.version})
    return app


# ==========================================================
# Local run (uvicorn)
# ==========================================================

def run() -> None:
    """
    Local run:
      python -m verification_core.api.main
    Environment:
      VERIFY_LOG_LEVEL=INFO VERIFY_REDIS_URL=redis://localhost:6379/0 VERIFY_VERIFICATION_CONTRACT_ID=...
    """
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "verification_core.api.main:create_app",
        factory=True,
        host="0.0.0.0",
        port=int(os.getenv("PORT", "8080")),
        reload=settings.env == "dev",
        log_config=None,
        access_log=False,
        proxy_headers=True,
        forwarded_allow_ips="*",
    )


if __name__ == "__main__":
    run()
