"""
Health check endpoints for the Rent Payment Orchestrator Service.
"""
import time
from datetime import datetime
from typing import Any, Dict, Optional
from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel

from rent_payments.core.config import Settings, get_settings
from rent_payments.core.dependencies import get_dwolla_client, get_supabase_client
from rent_payments.core.exceptions import DatabaseError
from rent_payments.core.logging import get_logger
from rent_payments.database.payment_repository import PaymentRepository

router = APIRouter()
logger = get_logger(__name__)


class HealthResponse(BaseModel):
    """Health check response model."""

    status: str
    version: str
    uptime_seconds: float
    timestamp: datetime
    service_name: str
    processor_environment: str


class ServiceHealthDetail(BaseModel):
    """Health information for a single dependency."""

    healthy: bool
    configured: bool = True
    circuit_breaker_status: Optional[Dict[str, Any]] = None
    response_time: float = 0.0


class DependenciesHealthResponse(BaseModel):
    """Dependencies health check response model."""

    services: Dict[str, ServiceHealthDetail]
    overall_status: str
    timestamp: datetime


@router.get("/health", response_model=HealthResponse)
async def health_check(request: Request, settings: Settings = Depends(get_settings)):
    """
    Basic health check endpoint.

    Returns service status, version, and basic health indicators.
    """
    start_time = getattr(request.app.state, "start_time", time.time())

    return HealthResponse(
        status="healthy",
        version=settings.service_version,
        uptime_seconds=time.time() - start_time,
        timestamp=datetime.utcnow(),
        service_name=settings.service_name,
        processor_environment=settings.dwolla_env,
    )


async def check_database() -> ServiceHealthDetail:
    start_time = time.time()
    try:
        repository = PaymentRepository(get_supabase_client())
    except DatabaseError as e:
        logger.warning("Database not configured", error=str(e))
        return ServiceHealthDetail(healthy=False, configured=False)

    healthy = await repository.health_check()
    return ServiceHealthDetail(healthy=healthy, response_time=round(time.time() - start_time, 3))


@router.get("/health/dependencies", response_model=DependenciesHealthResponse)
async def dependencies_health_check(request: Request):
    """
    Health check endpoint for external dependencies.

    The processor is reported from its circuit breaker instead of being
    called, so health checks never spend processor API quota.
    """
    correlation_id = request.headers.get("X-Correlation-ID")

    database = await check_database()

    processor = get_dwolla_client()
    breaker_status = processor.circuit_breaker.get_status()
    processor_detail = ServiceHealthDetail(
        healthy=processor.is_configured and breaker_status["is_available"],
        configured=processor.is_configured,
        circuit_breaker_status=breaker_status,
    )

    services = {"supabase": database, "dwolla": processor_detail}
    healthy_count = sum(1 for detail in services.values() if detail.healthy)
    if healthy_count == len(services):
        overall_status = "healthy"
    elif healthy_count:
        overall_status = "degraded"
    else:
        overall_status = "critical"

    logger.info(
        "Dependencies health check completed",
        supabase=database.healthy,
        dwolla=processor_detail.healthy,
        overall_status=overall_status,
        correlation_id=correlation_id,
    )

    return DependenciesHealthResponse(
        services=services,
        overall_status=overall_status,
        timestamp=datetime.utcnow(),
    )
