"""Main FastAPI application for the Rent Payment Orchestrator Service."""

import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from rent_payments.api.health import router as health_router
from rent_payments.api.payments import router as payments_router
from rent_payments.core.config import get_settings
from rent_payments.core.exceptions import (
    BaseAPIException,
    DatabaseError,
    ExternalServiceError,
    map_external_service_error,
)
from rent_payments.core.logging import get_correlation_id, get_logger, setup_logging
from rent_payments.core.middleware import CorrelationIDMiddleware, PerformanceMonitoringMiddleware
from rent_payments.services.funding_source_manager import wait_for_background_tasks

settings = get_settings()

# Initialize logging
setup_logging(
    log_level=settings.log_level,
    service_name=settings.service_name,
    version=settings.service_version,
    environment=settings.environment,
)
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    app.state.start_time = time.time()
    logger.info(
        "Starting Rent Payment Orchestrator Service",
        version=settings.service_version,
        processor_environment=settings.dwolla_env,
    )
    yield
    logger.info("Shutting down Rent Payment Orchestrator Service")
    await wait_for_background_tasks()


app = FastAPI(
    title="Rent Payment Orchestrator Service",
    description="Resolves payment processors, links bank accounts and initiates rent transfers",
    version=settings.service_version,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

app.add_middleware(PerformanceMonitoringMiddleware, slow_request_threshold_ms=1000.0)
app.add_middleware(CorrelationIDMiddleware)

if settings.enable_cors:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )


@app.exception_handler(BaseAPIException)
async def api_exception_handler(request: Request, exc: BaseAPIException):
    exc.correlation_id = get_correlation_id() or exc.correlation_id
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=exc.headers)


@app.exception_handler(DatabaseError)
async def database_exception_handler(request: Request, exc: DatabaseError):
    logger.error("Unhandled database error", path=request.url.path, error=str(exc), **exc.context)
    return JSONResponse(
        status_code=500,
        content={
            "error": True,
            "error_code": "DATABASE_ERROR",
            "message": "A storage error occurred. Please try again.",
            "correlation_id": get_correlation_id(),
        },
    )


@app.exception_handler(ExternalServiceError)
async def external_service_exception_handler(request: Request, exc: ExternalServiceError):
    logger.error("Unhandled processor error", path=request.url.path, error=str(exc))
    api_exc = map_external_service_error(exc)
    api_exc.correlation_id = get_correlation_id() or api_exc.correlation_id
    return JSONResponse(status_code=api_exc.status_code, content=api_exc.to_dict(), headers=api_exc.headers)


app.include_router(payments_router, prefix=settings.api_prefix)
app.include_router(health_router, prefix=settings.api_prefix, tags=["health"])


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "rent_payments.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
    )
