"""Quikpik settlement API main application module.

This module initializes the FastAPI application and configures
core middleware, routers, and startup/shutdown events.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

import structlog
from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from quikpik.api.health import router as health_router
from quikpik.api.inventory import router as inventory_router
from quikpik.api.middleware import setup_middleware
from quikpik.api.orders import router as orders_router
from quikpik.api.pricing import router as pricing_router
from quikpik.api.webhooks import router as webhooks_router
from quikpik.application.notifications import close_notifier
from quikpik.application.order_service import ArchiveSweeper
from quikpik.infrastructure.config import settings
from quikpik.infrastructure.logging_config import configure_logging

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Handle application startup and shutdown events.

    Starts the auto-archive sweeper. On shutdown stops it, closes the
    notifier and, with the SQL backend, disposes the engine.
    """
    configure_logging(settings.log_level)
    logger.info(
        "Starting Quikpik settlement API",
        version=settings.api_version,
        debug=settings.debug,
        storage_backend=settings.storage_backend,
        fee_model=settings.fee_model.value,
    )

    sweeper = ArchiveSweeper()
    sweeper.start()

    yield

    logger.info("Shutting down Quikpik settlement API")
    await sweeper.stop()
    await close_notifier()
    if settings.storage_backend == "sql":
        from quikpik.infrastructure.database import dispose_engine

        await dispose_engine()


app = FastAPI(
    title="Quikpik Settlement API",
    description="Order pricing and split-settlement core for wholesale orders",
    version=settings.api_version,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

# CORS middleware (must be added before custom middleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Request ID, API key auth, error handling
setup_middleware(app)

app.include_router(health_router, tags=["Health"])
app.include_router(pricing_router)
app.include_router(orders_router)
app.include_router(inventory_router)
app.include_router(webhooks_router)


# ============================================================================
# Custom Exception Handlers
# ============================================================================


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Handle HTTP exceptions with consistent format."""
    request_id = getattr(request.state, "request_id", None)

    detail = exc.detail
    if isinstance(detail, dict):
        error_code = detail.get("error_code", "ERROR")
        message = detail.get("message", str(detail))
        details = detail.get("details", [])
    else:
        error_code = "ERROR"
        message = str(detail)
        details = []

    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error_code": error_code,
            "message": message,
            "details": details,
            "request_id": request_id,
        },
        headers=exc.headers,
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle uncaught exceptions with consistent format."""
    request_id = getattr(request.state, "request_id", None)

    logger.exception(
        "Unhandled exception in handler",
        path=request.url.path,
        method=request.method,
        error=str(exc),
    )

    return JSONResponse(
        status_code=500,
        content={
            "error_code": "INTERNAL_ERROR",
            "message": "An internal error occurred",
            "details": [],
            "request_id": request_id,
        },
    )
