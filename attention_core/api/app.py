"""FastAPI application factory."""

from contextlib import asynccontextmanager
from typing import AsyncGenerator
import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .routes import events_router, inbox_router, notifications_router
from ..container import get_container
from ..domain.errors import (
    BadInputError,
    DownstreamError,
    FanoutError,
    FatalError,
    IntegrityViolationError,
    NotFoundError,
    StaleStateError,
    TransientError,
)

logger = logging.getLogger(__name__)


ERROR_STATUS = (
    (BadInputError, 400),
    (NotFoundError, 404),
    (StaleStateError, 409),
    (IntegrityViolationError, 500),
    (DownstreamError, 502),
    (TransientError, 503),
    (FatalError, 503),
)


def status_for(error: FanoutError) -> int:
    for error_type, status_code in ERROR_STATUS:
        if isinstance(error, error_type):
            return status_code
    return 500


def make_lifespan(start_scheduler: bool):
    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Create the schema on startup, release resources on shutdown."""
        container = get_container()
        await container.database.create_all()

        scheduler = None
        if start_scheduler and container.settings.scheduler.enabled:
            from ..scheduler import build_scheduler

            scheduler = build_scheduler(container)
            scheduler.start()

        yield

        if scheduler is not None:
            scheduler.stop()
        await container.aclose()

    return lifespan


def create_app(
    title: str = "Attention Core API",
    version: str = "1.0.0",
    cors_origins: list[str] | None = None,
    start_scheduler: bool = False,
) -> FastAPI:
    """Create FastAPI application.

    Args:
        title: API title
        version: API version
        cors_origins: Allowed CORS origins
        start_scheduler: Run the default background jobs

    Returns:
        FastAPI application instance
    """
    app = FastAPI(
        title=title,
        version=version,
        lifespan=make_lifespan(start_scheduler),
        docs_url="/docs",
        redoc_url="/redoc",
    )

    if cors_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=cors_origins,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    @app.exception_handler(RequestValidationError)
    async def validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
        return JSONResponse(
            status_code=400,
            content={"detail": "Invalid request", "errors": _errors(exc)},
        )

    @app.exception_handler(FanoutError)
    async def fanout_error(request: Request, exc: FanoutError) -> JSONResponse:
        status_code = status_for(exc)
        if status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc}")
        content = {"detail": str(exc), "error": type(exc).__name__}
        if isinstance(exc, BadInputError) and exc.field:
            content["field"] = exc.field
        return JSONResponse(status_code=status_code, content=content)

    app.include_router(events_router)
    app.include_router(inbox_router)
    app.include_router(notifications_router)

    @app.get("/health")
    async def health_check() -> JSONResponse:
        """Health check endpoint. 503 once the store is unreachable."""
        container = get_container()
        consumer_ok = container.event_consumer.healthy
        store_ok = await container.database.ping()
        healthy = consumer_ok and store_ok
        return JSONResponse(
            status_code=200 if healthy else 503,
            content={
                "status": "healthy" if healthy else "unhealthy",
                "version": version,
                "consumer": consumer_ok,
                "store": store_ok,
            },
        )

    return app


def _errors(exc: RequestValidationError) -> list[dict]:
    return [
        {"loc": list(e.get("loc", ())), "msg": e.get("msg", "")}
        for e in exc.errors()
    ]


# Create default app instance
app = create_app()
