"""Forum service FastAPI application.

Builds the app around one `ForumStore` and one `BroadcastHub`, both held on
`app.state` and injected into the routes. The store binding is made once in the
lifespan unless a store is passed in.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from packages.common.config import Settings, get_settings
from packages.common.errors import BackendError, ForumError, NotFoundError, ValidationError
from packages.common.logging import configure_logging
from packages.common.metrics import store_errors
from packages.common.tracing import trace_middleware
from .hub import BroadcastHub
from .routes import router as posts_router, ws_router
from .store import ForumStore, build_store

log = logging.getLogger("forum")

LOCALHOST_ORIGIN_RE = r"https?://(localhost|127\.0\.0\.1)(:\d+)?"


def _error_detail(settings: Settings, exc: Exception) -> str:
    return str(exc) if settings.is_dev else "Something went wrong"


def _register_error_handlers(app: FastAPI, settings: Settings) -> None:
    @app.exception_handler(ValidationError)
    async def _validation(request: Request, exc: ValidationError) -> JSONResponse:
        return JSONResponse({"error": exc.message}, status_code=400)

    @app.exception_handler(RequestValidationError)
    async def _bad_body(request: Request, exc: RequestValidationError) -> JSONResponse:
        fields = sorted({".".join(str(p) for p in err.get("loc", ())[1:]) or "body" for err in exc.errors()})
        return JSONResponse({"error": f"Invalid request: {', '.join(fields)}"}, status_code=400)

    @app.exception_handler(NotFoundError)
    async def _not_found(request: Request, exc: NotFoundError) -> JSONResponse:
        return JSONResponse({"error": exc.message}, status_code=404)

    @app.exception_handler(BackendError)
    async def _backend(request: Request, exc: BackendError) -> JSONResponse:
        log.error("backend failure on %s %s: %s", request.method, request.url.path, exc.message)
        return JSONResponse(
            {"error": "Internal Server Error", "message": _error_detail(settings, exc)},
            status_code=500,
        )

    @app.exception_handler(ForumError)
    async def _forum(request: Request, exc: ForumError) -> JSONResponse:
        return JSONResponse({"error": exc.message}, status_code=exc.status_code)

    @app.exception_handler(Exception)
    async def _unhandled(request: Request, exc: Exception) -> JSONResponse:
        store_errors.labels(kind="unhandled").inc()
        log.exception("unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(
            {"error": "Internal Server Error", "message": _error_detail(settings, exc)},
            status_code=500,
        )


def create_app(
    settings: Optional[Settings] = None,
    store: Optional[ForumStore] = None,
    hub: Optional[BroadcastHub] = None,
) -> FastAPI:
    """Assemble the forum app.

    Args:
        settings: Configuration; defaults to the cached env-derived settings.
        store: Pre-built store (tests); otherwise bound from settings at startup.
        hub: Pre-built broadcaster; otherwise a fresh `BroadcastHub`.

    Returns:
        The configured FastAPI application.
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        if app.state.store is None:
            app.state.store = await build_store(settings)
        log.info("AskBoard ready (storage=%s, env=%s)", app.state.store.backend.value, settings.ENV)
        try:
            yield
        finally:
            await app.state.hub.close()
            await app.state.store.close()

    app = FastAPI(
        title="AskBoard API",
        version="1.0.0",
        description="Question board with live updates",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.store = store
    app.state.hub = hub or BroadcastHub(queue_size=settings.WS_QUEUE_SIZE)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_origin_regex=LOCALHOST_ORIGIN_RE if settings.is_dev else None,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type", "X-Request-ID"],
    )
    app.middleware("http")(trace_middleware)
    _register_error_handlers(app, settings)

    app.include_router(posts_router)
    app.include_router(ws_router)

    def _health() -> dict[str, Any]:
        current = app.state.store
        return {
            "status": "ok",
            "env": settings.ENV,
            "storage": current.backend.value if current is not None else settings.backend.value,
        }

    @app.get("/api/health", tags=["infra"])
    async def health() -> dict[str, Any]:
        return _health()

    @app.get("/healthz", tags=["infra"])
    async def healthz() -> dict[str, Any]:
        return _health()

    @app.get("/metrics", tags=["infra"])
    def metrics() -> PlainTextResponse:
        data = generate_latest()
        return PlainTextResponse(data.decode("utf-8"), media_type=CONTENT_TYPE_LATEST)

    return app


_settings = get_settings()
configure_logging(_settings.LOG_LEVEL, _settings.SERVICE_NAME)
app = create_app()
