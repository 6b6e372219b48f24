"""FastAPI application entry point."""
import traceback
import uuid
from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncGenerator

import structlog
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_client import make_asgi_app
from sqlalchemy.exc import SQLAlchemyError

from entitlements.api.v1 import admin, entitlements, health, plans, subscriptions, usage
from entitlements.cache import cache
from entitlements.config import settings
from entitlements.exceptions import EntitlementError, StorageUnavailable
from entitlements.middleware.logging import LoggingMiddleware, setup_logging
from entitlements.middleware.metrics import MetricsMiddleware
from entitlements.schemas.error import REMEDIATION_HINTS, ErrorCode, ErrorDetail

# Setup structured logging
setup_logging()
logger = structlog.get_logger(__name__)

RETRY_AFTER_SECONDS = "30"


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager for startup and shutdown events."""
    logger.info("application_starting", env=settings.app_env)
    yield
    await cache.close()
    logger.info("application_shutting_down")


app = FastAPI(
    title="HireScore Entitlements",
    description="Plan entitlements, quota admission control and billing period reconciliation",
    version="0.1.0",
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(MetricsMiddleware)
# Added last so it wraps everything and binds request_id first
app.add_middleware(LoggingMiddleware)

# Mount Prometheus metrics endpoint
app.mount("/metrics", make_asgi_app())

if settings.otel_enabled:
    from entitlements.tracing import setup_tracing

    setup_tracing(app)


def _request_id(request: Request) -> str:
    return getattr(request.state, "request_id", None) or request.headers.get(
        "x-request-id", f"req_{uuid.uuid4().hex[:12]}"
    )


def _timestamp() -> str:
    return datetime.utcnow().isoformat() + "Z"


@app.exception_handler(EntitlementError)
async def entitlement_exception_handler(request: Request, exc: EntitlementError) -> JSONResponse:
    """
    Render domain errors with their own HTTP status and error code.

    Storage errors carry a Retry-After header; they are transient.
    """
    request_id = _request_id(request)

    logger.warning(
        "entitlement_error",
        error_code=exc.code,
        status_code=exc.status_code,
        error_message=exc.message,
        **{f"detail_{key}": value for key, value in exc.details.items()},
    )

    headers = {"Retry-After": RETRY_AFTER_SECONDS} if isinstance(exc, StorageUnavailable) else None

    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": exc.error,
            "message": exc.message,
            "details": [ErrorDetail(code=exc.code, message=exc.message).model_dump(exclude_none=True)],
            "remediation": REMEDIATION_HINTS.get(exc.code),
            "request_id": request_id,
            "timestamp": _timestamp(),
        },
        headers=headers,
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """
    Handle Pydantic validation errors with structured response.

    Returns 422 with detailed field-level validation errors.
    """
    request_id = _request_id(request)

    # Pydantic v2 error types
    code_mapping = {
        "uuid_parsing": ErrorCode.INVALID_UUID,
        "uuid_type": ErrorCode.INVALID_UUID,
        "enum": ErrorCode.INVALID_ENUM_VALUE,
        "missing": ErrorCode.MISSING_REQUIRED_FIELD,
        "greater_than_equal": ErrorCode.INVALID_AMOUNT,
        "int_parsing": ErrorCode.INVALID_AMOUNT,
    }

    details = []
    for error in exc.errors():
        details.append(
            ErrorDetail(
                code=code_mapping.get(error["type"], "validation_error"),
                message=error["msg"],
                field=".".join(str(loc) for loc in error["loc"]),
                value=error.get("input"),
            ).model_dump(mode="json")
        )

    logger.warning("validation_error", error_count=len(details))

    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "error": "ValidationError",
            "message": "Request validation failed",
            "details": details,
            "remediation": "Check the API documentation for correct request format at /docs",
            "request_id": request_id,
            "timestamp": _timestamp(),
            "documentation_url": f"{request.base_url}docs",
        },
    )


@app.exception_handler(SQLAlchemyError)
async def database_exception_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    """
    Handle database errors that escaped the service layer.

    Returns 503 Service Unavailable; callers should retry.
    """
    request_id = _request_id(request)

    logger.error(
        "database_error",
        error_type=type(exc).__name__,
        error_message=str(exc),
    )

    # Don't expose internal database details in production
    error_message = "Database temporarily unavailable" if settings.app_env == "production" else str(exc)

    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={
            "error": "DatabaseError",
            "message": "A database error occurred",
            "details": [{"code": ErrorCode.DATABASE_ERROR, "message": error_message}],
            "remediation": REMEDIATION_HINTS.get(ErrorCode.DATABASE_ERROR),
            "request_id": request_id,
            "timestamp": _timestamp(),
        },
        headers={"Retry-After": RETRY_AFTER_SECONDS},
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """
    Handle all other uncaught exceptions.

    Logs the full stack trace but returns a safe message to the client.
    """
    request_id = _request_id(request)

    logger.exception(
        "unhandled_exception",
        exception_type=type(exc).__name__,
        exception_message=str(exc),
        stack_trace=traceback.format_exc(),
    )

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": "InternalServerError",
            "message": "An unexpected error occurred",
            "details": [
                {
                    "code": ErrorCode.INTERNAL_ERROR,
                    "message": str(exc) if settings.debug else "Internal server error",
                }
            ],
            "remediation": "Please contact support with the request ID",
            "request_id": request_id,
            "timestamp": _timestamp(),
        },
    )


@app.get("/", tags=["Root"])
async def root() -> dict[str, str]:
    """Root endpoint with API information."""
    return {
        "service": "HireScore Entitlements",
        "version": "0.1.0",
        "status": "operational",
        "docs": "/docs",
    }


app.include_router(health.router, tags=["Health"])
app.include_router(entitlements.router, prefix="/v1")
app.include_router(usage.router, prefix="/v1")
app.include_router(plans.router, prefix="/v1")
app.include_router(subscriptions.router, prefix="/v1")
app.include_router(admin.router, prefix="/v1")
