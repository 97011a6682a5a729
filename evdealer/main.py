"""
FastAPI application entry point.

Wires the versioned routers, request correlation logging, rate limiting
and the mapping from domain errors onto HTTP responses, plus health
endpoints for orchestration.
"""

from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from evdealer.api.v1.analytics import router as analytics_router
from evdealer.api.v1.deliveries import router as deliveries_router
from evdealer.api.v1.feedback import router as feedback_router
from evdealer.api.v1.orders import router as orders_router
from evdealer.api.v1.payments import router as payments_router
from evdealer.core.config import get_settings
from evdealer.core.exceptions import (
    EVDealerError,
    ExternalServiceError,
    ForbiddenError,
    InvalidStateError,
    NotFoundError,
    PaymentGatewayTimeoutError,
    PersistenceError,
    UnauthorizedError,
)
from evdealer.core.logging import (
    clear_context,
    configure_logging,
    get_logger,
    get_request_id,
    log_performance,
    set_request_id,
)
from evdealer.core.rate_limit import limiter
from evdealer.database.connection import check_database_health, close_database_connections

configure_logging()
logger = get_logger(__name__)

# Checked in order; the first matching class wins. When a generic message is
# set it replaces the domain message in the response.
ERROR_RESPONSES = (
    (NotFoundError, status.HTTP_404_NOT_FOUND, "Not Found", None),
    (UnauthorizedError, status.HTTP_401_UNAUTHORIZED, "Unauthorized", None),
    (ForbiddenError, status.HTTP_403_FORBIDDEN, "Forbidden", None),
    (InvalidStateError, status.HTTP_400_BAD_REQUEST, "Bad Request", None),
    (
        PaymentGatewayTimeoutError,
        status.HTTP_504_GATEWAY_TIMEOUT,
        "Gateway Timeout",
        "The payment provider did not respond in time",
    ),
    (
        ExternalServiceError,
        status.HTTP_502_BAD_GATEWAY,
        "Bad Gateway",
        "The payment provider could not process the request",
    ),
    (
        PersistenceError,
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        "Internal Server Error",
        "The change could not be saved",
    ),
)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """
    Application lifespan context manager for startup and shutdown events.

    Args:
        app: FastAPI application instance

    Yields:
        None during application runtime
    """
    settings = get_settings()

    logger.info(
        "Application starting",
        environment=settings.environment,
        debug=settings.debug,
        version=settings.app_version,
    )

    yield

    logger.info("Application shutting down")
    with log_performance(logger, "application_shutdown"):
        await close_database_connections()


settings = get_settings()
app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="EV dealership ordering, payment and delivery API",
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
    lifespan=lifespan,
    debug=settings.debug,
)

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
    Set the correlation id, log the request and measure response time.

    Args:
        request: Incoming HTTP request
        call_next: Next middleware or route handler

    Returns:
        HTTP response with X-Request-ID header
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


@app.exception_handler(EVDealerError)
async def domain_exception_handler(request: Request, exc: EVDealerError) -> JSONResponse:
    """
    Map a domain error onto its HTTP status.

    Business rule and access messages are returned as raised. Gateway and
    persistence failures are logged with their detail and answered with a
    generic message.
    """
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    title = "Internal Server Error"
    message = "An unexpected error occurred"
    for error_class, error_status, error_title, generic_message in ERROR_RESPONSES:
        if isinstance(exc, error_class):
            status_code = error_status
            title = error_title
            message = generic_message or exc.message
            break

    log = logger.error if status_code >= 500 else logger.warning
    log(
        "Request rejected",
        method=request.method,
        path=request.url.path,
        status_code=status_code,
        error=exc.message,
        error_type=type(exc).__name__,
        context=exc.context,
    )

    headers = {"WWW-Authenticate": "Bearer"} if status_code == 401 else None
    return JSONResponse(
        status_code=status_code,
        content={
            "error": title,
            "message": message,
            "request_id": get_request_id(),
        },
        headers=headers,
    )


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
            "error": "Validation Error",
            "message": "Request validation failed",
            "details": jsonable_errors(exc),
            "request_id": get_request_id(),
        },
    )


def jsonable_errors(exc: RequestValidationError) -> list[dict]:
    """Validation errors without the raw input and exception context."""
    return [
        {"loc": list(error.get("loc", ())), "msg": error.get("msg"), "type": error.get("type")}
        for error in exc.errors()
    ]


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """
    Handle unexpected exceptions without exposing internal details.
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
async def readiness_check():
    """
    Readiness check for orchestration.

    Returns 503 while the database is unreachable.
    """
    if not await check_database_health():
        logger.warning("Readiness check failed", dependencies_ready=False)
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={
                "status": "not_ready",
                "service": settings.app_name,
                "dependencies_ready": False,
                "database": "unhealthy",
            },
        )

    return {
        "status": "ready",
        "service": settings.app_name,
        "version": settings.app_version,
        "environment": settings.environment,
        "dependencies_ready": True,
        "database": "healthy",
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


app.include_router(orders_router, prefix=settings.api_v1_prefix)
app.include_router(payments_router, prefix=settings.api_v1_prefix)
app.include_router(deliveries_router, prefix=settings.api_v1_prefix)
app.include_router(feedback_router, prefix=settings.api_v1_prefix)
app.include_router(analytics_router, prefix=settings.api_v1_prefix)
