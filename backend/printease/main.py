"""
FastAPI application entry point with health endpoints and service routing.

This module builds the FastAPI application with CORS configuration, rate
limiting, request correlation, health check endpoints and global exception
handling. The lifespan creates the document store, the notification bus and
every service once per process and stores them on ``app.state``.
"""

from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from slowapi.util import get_remote_address

from printease.api.v1 import ROUTERS
from printease.core.config import Settings, get_settings
from printease.core.errors import PrintEaseError
from printease.core.logging import (
    clear_context,
    configure_logging,
    get_logger,
    get_request_id,
    log_performance,
    set_request_id,
)
from printease.services.container import Services, create_services
from printease.storage.sql import SqlDocumentStore

logger = get_logger(__name__)


def create_app(
    settings: Optional[Settings] = None,
    services: Optional[Services] = None,
) -> FastAPI:
    """
    Build the application.

    Args:
        settings: Application settings; defaults to the environment
        services: Prebuilt services; the caller then owns their shutdown

    Returns:
        Configured FastAPI application
    """
    settings = settings or get_settings()
    configure_logging(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        logger.info(
            "Application starting",
            environment=settings.environment,
            debug=settings.debug,
            version=settings.app_version,
            storage_backend=settings.storage_backend,
            broadcast_backend=settings.broadcast_backend,
        )

        with log_performance(logger, "application_startup"):
            app.state.services = services or await create_services(settings)
            logger.info("Resources initialized successfully")

        yield

        logger.info("Application shutting down")
        with log_performance(logger, "application_shutdown"):
            if services is None:
                await app.state.services.close()
            logger.info("Resources cleaned up successfully")

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="PrintEase print ordering backend API",
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
        debug=settings.debug,
    )

    # Configure rate limiting
    app.state.limiter = Limiter(
        key_func=get_remote_address,
        default_limits=[settings.rate_limit],
        enabled=not settings.is_test,
    )
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    app.add_middleware(SlowAPIMiddleware)

    # Configure CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID"],
    )

    @app.middleware("http")
    async def request_logging_middleware(request: Request, call_next):
        """
        Middleware for request logging and correlation ID management.

        Sets request ID for correlation, logs request details, and measures
        response time. Clears context after request processing.
        """
        request_id = set_request_id(request.headers.get("X-Request-ID"))

        logger.info(
            "Request received",
            method=request.method,
            path=request.url.path,
            client_host=request.client.host if request.client else None,
        )

        try:
            with log_performance(
                logger,
                "request_processing",
                method=request.method,
                path=request.url.path,
            ):
                response = await call_next(request)

            response.headers["X-Request-ID"] = request_id
            logger.info(
                "Request completed",
                method=request.method,
                path=request.url.path,
                status_code=response.status_code,
            )
            return response
        except Exception as e:
            logger.error(
                "Request failed",
                method=request.method,
                path=request.url.path,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise
        finally:
            clear_context()

    @app.exception_handler(PrintEaseError)
    async def service_exception_handler(request: Request, exc: PrintEaseError) -> JSONResponse:
        """Translate service errors into their HTTP status with a structured body."""
        log_method = logger.error if exc.status_code >= 500 else logger.warning
        log_method(
            "Service error",
            method=request.method,
            path=request.url.path,
            error_type=type(exc).__name__,
            error=exc.message,
            context=exc.context,
        )

        return JSONResponse(
            status_code=exc.status_code,
            content={
                "error": exc.error,
                "message": exc.message,
                "details": jsonable_encoder(exc.context),
                "request_id": get_request_id(),
            },
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        """Handle request validation errors with structured error response."""
        # Rejected input is not echoed back; it may hold NaN or infinity,
        # which JSON responses cannot carry.
        errors = [
            {key: value for key, value in error.items() if key != "input"}
            for error in exc.errors()
        ]
        logger.warning(
            "Request validation failed",
            method=request.method,
            path=request.url.path,
            errors=errors,
        )

        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content={
                "error": "Validation Error",
                "message": "Request validation failed",
                "details": jsonable_encoder(errors),
                "request_id": get_request_id(),
            },
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """
        Handle unexpected exceptions with structured error response.

        Logs error with full context and returns generic error message
        to avoid exposing internal details.
        """
        logger.error(
            "Unhandled exception",
            method=request.method,
            path=request.url.path,
            error=str(exc),
            error_type=type(exc).__name__,
            exc_info=True,
        )

        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "error": "Internal Server Error",
                "message": "An unexpected error occurred",
                "request_id": get_request_id(),
            },
        )

    @app.get(
        "/health",
        status_code=status.HTTP_200_OK,
        tags=["Health"],
        summary="Health check endpoint",
    )
    async def health_check() -> dict[str, str]:
        """Always returns 200 OK while the process is running."""
        return {
            "status": "healthy",
            "service": settings.app_name,
            "version": settings.app_version,
            "environment": settings.environment,
        }

    @app.get(
        "/ready",
        status_code=status.HTTP_200_OK,
        tags=["Health"],
        summary="Readiness check endpoint",
    )
    async def readiness_check(request: Request):
        """
        Readiness check endpoint for orchestration.

        Verifies that the document store answers before accepting traffic.
        """
        services: Services = request.app.state.services
        storage_status = "healthy"

        if isinstance(services.documents, SqlDocumentStore):
            if not await services.documents.health_check():
                storage_status = "unhealthy"

        if storage_status != "healthy":
            logger.warning("Readiness check failed", storage=storage_status)
            return JSONResponse(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                content={
                    "status": "not_ready",
                    "service": settings.app_name,
                    "dependencies_ready": False,
                    "storage": storage_status,
                },
            )

        return {
            "status": "ready",
            "service": settings.app_name,
            "version": settings.app_version,
            "environment": settings.environment,
            "dependencies_ready": True,
            "storage": storage_status,
            "notification_subscribers": services.bus.subscriber_count,
        }

    @app.get(
        "/live",
        status_code=status.HTTP_200_OK,
        tags=["Health"],
        summary="Liveness check endpoint",
    )
    async def liveness_check() -> dict[str, str]:
        return {
            "status": "alive",
            "service": settings.app_name,
            "version": settings.app_version,
        }

    for router in ROUTERS:
        app.include_router(router, prefix=settings.api_v1_prefix)

    return app


app = create_app()
