# ==== CLAIMFLOW MAIN APPLICATION MODULE ==== #

"""
Main FastAPI application for claimflow.

This module provides the FastAPI application with middleware, observability
and error handling for the reimbursement claim approval workflow.
"""

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from sqlalchemy import text
from starlette.exceptions import HTTPException as StarletteHTTPException

from claimflow import __version__
from claimflow.business.errors import ClaimWorkflowError
from claimflow.middleware.correlation import CorrelationMiddleware
from claimflow.observability.logging import get_logger, init_logging
from claimflow.observability.metrics import get_metrics, init_metrics
from claimflow.observability.tracing import init_tracing
from claimflow.routes import expenses, finance, manager
from claimflow.settings import settings
from claimflow.storage import db as storage_db


logger = get_logger(__name__)

# Stable codes for HTTP errors raised outside the workflow engine
HTTP_ERROR_CODES = {
    401: "UNAUTHORIZED",
    403: "FORBIDDEN",
    404: "NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
}


# ==== APPLICATION LIFECYCLE MANAGEMENT ==== #


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Application lifespan manager for startup and shutdown operations.

    Handles initialization of logging, the database and tracing, and
    disposes database connections on shutdown.

    Args:
        app (FastAPI): FastAPI application instance

    Yields:
        None: Control back to FastAPI during application runtime
    """
    # --► STARTUP SEQUENCE
    init_logging(settings.LOG_LEVEL, settings.LOG_DIR, settings.LOG_TO_FILES)
    storage_db.init_database()
    await storage_db.create_schema()
    init_tracing(settings.SERVICE_NAME, storage_db.engine)
    logger.info("claimflow started", environment=settings.APP_ENV)

    yield

    # --► SHUTDOWN SEQUENCE
    await storage_db.close_database()


# ==== APPLICATION FACTORY ==== #


def create_app() -> FastAPI:
    """
    Create and configure the FastAPI application.

    Returns:
        FastAPI: Fully configured FastAPI application instance
    """
    app = FastAPI(
        title="claimflow",
        description="Reimbursement claim approval workflow",
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs" if settings.APP_ENV == "dev" else None,
        redoc_url="/redoc" if settings.APP_ENV == "dev" else None
    )

    # --► OBSERVABILITY INITIALIZATION
    init_metrics(app)

    # --► MIDDLEWARE STACK CONFIGURATION
    # ⚠️ CORS middleware must be added FIRST before other middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ALLOW_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Correlation-Id"],
    )
    app.add_middleware(CorrelationMiddleware)

    _register_health_endpoints(app)
    _register_routers(app)
    _register_exception_handlers(app)

    # --► OPENTELEMETRY INSTRUMENTATION
    FastAPIInstrumentor.instrument_app(app)

    return app


# ==== ENDPOINT REGISTRATION HELPERS ==== #


def _register_health_endpoints(app: FastAPI) -> None:
    """
    Register health check endpoints for liveness and readiness probes.

    Args:
        app (FastAPI): FastAPI application instance
    """
    @app.get("/healthz", tags=["health"])
    async def health_check() -> dict:
        """Liveness probe endpoint."""
        return {
            "status": "ok",
            "service": settings.SERVICE_NAME,
            "timestamp": datetime.now(timezone.utc).isoformat()
        }

    @app.get("/readyz", tags=["health"])
    async def readiness_check() -> JSONResponse:
        """
        Readiness probe endpoint; ready once the database answers.

        Returns:
            JSONResponse: 200 when the database is reachable, 503 otherwise
        """
        try:
            async with storage_db.get_session() as db:
                await db.execute(text("SELECT 1"))
        except Exception as e:
            logger.warning(f"Readiness check failed: {e}")
            return JSONResponse(
                status_code=503,
                content={
                    "status": "not_ready",
                    "service": settings.SERVICE_NAME,
                    "database_status": "disconnected"
                }
            )

        return JSONResponse(content={
            "status": "ready",
            "service": settings.SERVICE_NAME,
            "environment": settings.APP_ENV,
            "database_status": "connected"
        })


def _register_routers(app: FastAPI) -> None:
    """
    Register all application routers with their prefixes and tags.

    Args:
        app (FastAPI): FastAPI application instance
    """
    app.add_api_route(
        settings.PROMETHEUS_SCRAPE_PATH,
        get_metrics,
        methods=["GET"],
        response_class=PlainTextResponse,
        tags=["monitoring"]
    )
    app.include_router(expenses.router, prefix="/api/expenses", tags=["expenses"])
    app.include_router(manager.router, prefix="/api/manager/requests", tags=["manager"])
    app.include_router(finance.router, prefix="/api/finance/requests", tags=["finance"])


# ==== EXCEPTION HANDLERS ==== #


def _register_exception_handlers(app: FastAPI) -> None:
    """
    Register exception handlers rendering one error body shape.

    Args:
        app (FastAPI): FastAPI application instance
    """
    @app.exception_handler(ClaimWorkflowError)
    async def workflow_error_handler(
        request: Request,
        exc: ClaimWorkflowError
    ) -> JSONResponse:
        """
        Render a workflow rejection with its stable code and retry hint.

        Args:
            request (Request): HTTP request that caused the exception
            exc (ClaimWorkflowError): Rejection raised by the engine or views

        Returns:
            JSONResponse: Error response with the mapped status code
        """
        correlation_id = getattr(request.state, 'correlation_id', 'unknown')
        headers = {"Retry-After": "1"} if exc.retryable else None

        return JSONResponse(
            status_code=exc.status_code,
            headers=headers,
            content={
                "error": exc.code.replace("_", " ").capitalize(),
                "message": exc.message,
                "code": exc.code,
                "retryable": exc.retryable,
                "correlation_id": correlation_id
            }
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(
        request: Request,
        exc: Exception
    ) -> JSONResponse:
        """Global handler for unhandled errors."""
        correlation_id = getattr(request.state, 'correlation_id', 'unknown')
        logger.exception(
            f"Unhandled error on {request.method} {request.url.path}",
            correlation_id=correlation_id
        )

        return JSONResponse(
            status_code=500,
            content={
                "error": "Internal server error",
                "message": "An unexpected error occurred",
                "code": "INTERNAL_ERROR",
                "retryable": False,
                "correlation_id": correlation_id
            }
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(
        request: Request,
        exc: StarletteHTTPException
    ) -> JSONResponse:
        """
        Render framework and authentication HTTP errors in the same body shape.

        Covers the 401 and 403 raised by the auth dependencies as well as
        unknown routes and methods.
        """
        correlation_id = getattr(request.state, 'correlation_id', 'unknown')
        code = HTTP_ERROR_CODES.get(exc.status_code, "HTTP_ERROR")

        return JSONResponse(
            status_code=exc.status_code,
            headers=getattr(exc, "headers", None),
            content={
                "error": code.replace("_", " ").capitalize(),
                "message": str(exc.detail),
                "code": code,
                "retryable": False,
                "correlation_id": correlation_id
            }
        )


# ==== APPLICATION INSTANCE ==== #


# Create application instance for deployment
app = create_app()
