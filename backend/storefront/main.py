"""
FastAPI application entry point with health endpoints and service routing.

This module builds the FastAPI application: storage and services are created
in the lifespan, the cancelled-order reconciliation runs as a background task,
and domain errors are translated into a uniform error envelope.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from storefront.api.deps import build_services
from storefront.api.v1 import api_router
from storefront.core.config import get_settings
from storefront.core.errors import StorefrontError
from storefront.core.logging import (
    clear_context,
    configure_logging,
    get_logger,
    get_request_id,
    log_performance,
    set_request_id,
)
from storefront.core.rate_limit import limiter
from storefront.core.security import SessionResolver
from storefront.schemas.common import ErrorResponse
from storefront.services.evidence import EvidenceStorage
from storefront.storage import create_store
from storefront.storage.base import KeyValueStore

# Configure logging before application initialization
configure_logging()
logger = get_logger(__name__)


async def reconcile_cancelled_orders_periodically(app: FastAPI, interval: int) -> None:
    """
    Background task creating refunds missing from cancelled paid orders.

    Runs until cancelled; a failed pass is logged and retried next interval.
    """
    while True:
        await asyncio.sleep(interval)
        services = app.state.services
        try:
            result = await services.orders.reconcile_cancelled_orders()
            await services.dispatcher.dispatch(result.events)
            if result.record:
                logger.info("Reconciliation created refunds", count=len(result.record))
        except Exception as e:
            logger.error(
                "Failed to reconcile cancelled orders",
                error=str(e),
                error_type=type(e).__name__,
            )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """
    Application lifespan context manager for startup and shutdown events.

    Connects the storage backend, wires the services, seeds the public
    vouchers and starts the reconciliation task.
    """
    settings = get_settings()

    logger.info(
        "Application starting",
        environment=settings.environment,
        debug=settings.debug,
        version=settings.app_version,
        storage_backend=settings.storage_backend,
    )

    with log_performance(logger, "application_startup"):
        store: KeyValueStore = app.state.store or create_store(settings)
        app.state.store = store
        await store.connect()
        app.state.services = build_services(
            store,
            settings,
            evidence_storage=app.state.evidence_storage,
        )
        await app.state.services.vouchers.seed_public_vouchers()
        logger.info("Resources initialized successfully")

    reconcile_task = asyncio.create_task(
        reconcile_cancelled_orders_periodically(app, settings.reconcile_interval_seconds)
    )
    logger.info("Background reconciliation task started")

    yield

    logger.info("Application shutting down")
    with log_performance(logger, "application_shutdown"):
        reconcile_task.cancel()
        try:
            await reconcile_task
        except asyncio.CancelledError:
            pass
        await store.close()
        logger.info("Resources cleaned up successfully")


def create_app(
    store: Optional[KeyValueStore] = None,
    session_resolver: Optional[SessionResolver] = None,
    evidence_storage: Optional[EvidenceStorage] = None,
) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        store: Storage backend to use instead of the configured one
        session_resolver: Session resolver to use instead of signed tokens
        evidence_storage: Evidence storage to use instead of the configured one
    """
    settings = get_settings()
    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="Storefront order and refund lifecycle API",
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
        debug=settings.debug,
    )
    app.state.store = store
    app.state.session_resolver = session_resolver
    app.state.evidence_storage = evidence_storage

    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

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
        Set the request ID for correlation, log the request and time it.
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
        finally:
            clear_context()

    @app.exception_handler(StorefrontError)
    async def storefront_exception_handler(
        request: Request, exc: StorefrontError
    ) -> JSONResponse:
        """Translate domain errors into the error envelope."""
        log = logger.error if exc.status_code >= 500 else logger.warning
        log(
            "Request rejected",
            method=request.method,
            path=request.url.path,
            error=exc.kind,
            detail=exc.message,
            context=exc.context,
        )
        body = ErrorResponse(error=exc.kind, message=exc.user_message, request_id=get_request_id())
        return JSONResponse(status_code=exc.status_code, content=body.model_dump())

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        logger.warning(
            "Request validation failed",
            method=request.method,
            path=request.url.path,
            errors=exc.errors(),
        )
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content={
                **ErrorResponse(
                    error="RequestValidation",
                    message="Data yang dikirim tidak valid.",
                    request_id=get_request_id(),
                ).model_dump(),
                "details": jsonable_errors(exc),
            },
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Log unexpected errors and hide their details from clients."""
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
            content=ErrorResponse(
                error="Internal",
                message=StorefrontError.default_user_message,
                request_id=get_request_id(),
            ).model_dump(),
        )

    @app.get("/health", tags=["Health"], summary="Health check endpoint")
    async def health_check() -> dict[str, str]:
        return {
            "status": "healthy",
            "service": settings.app_name,
            "version": settings.app_version,
            "environment": settings.environment,
        }

    @app.get("/ready", tags=["Health"], summary="Readiness check endpoint")
    async def readiness_check():
        """Ready when the storage backend answers a ping."""
        store = app.state.store
        storage_ready = False
        if store is not None:
            try:
                storage_ready = await store.ping()
            except StorefrontError as e:
                logger.warning("Storage readiness check failed", error=e.message)

        if not storage_ready:
            return JSONResponse(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                content={
                    "status": "not_ready",
                    "service": settings.app_name,
                    "storage": "unhealthy",
                },
            )
        return {
            "status": "ready",
            "service": settings.app_name,
            "version": settings.app_version,
            "storage": "healthy",
        }

    @app.get("/live", tags=["Health"], summary="Liveness check endpoint")
    async def liveness_check() -> dict[str, str]:
        return {
            "status": "alive",
            "service": settings.app_name,
            "version": settings.app_version,
        }

    app.include_router(api_router, prefix=settings.api_v1_prefix)
    return app


def jsonable_errors(exc: RequestValidationError) -> list[dict]:
    """Validation errors with their non-JSON ``ctx`` values stringified."""
    errors = []
    for error in exc.errors():
        error = dict(error)
        if "ctx" in error:
            error["ctx"] = {k: str(v) for k, v in error["ctx"].items()}
        errors.append(error)
    return errors


app = create_app()
