"""
Health Check Routes
===================

Kubernetes-compatible health and readiness endpoints.
"""

from datetime import datetime, timezone

from fastapi import APIRouter, Request

from api import __version__
from api.schemas import HealthResponse, HealthStatus, ReadinessResponse

router = APIRouter(tags=["Health"])


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
    description="Returns the health status of the service",
)
async def health_check(request: Request) -> HealthResponse:
    """
    Health check endpoint for load balancers and monitoring.

    The service is degraded when it runs without a dry-run engine or
    without a correction generator.
    """
    service = getattr(request.app.state, "service", None)
    checks = {
        "api": True,
        "pipeline": service is not None,
        "dry_run": service is not None and service.orchestrator.dry_run_executor is not None,
        "self_correction": service is not None and service.correction_engine is not None,
    }

    if not checks["pipeline"]:
        status = HealthStatus.UNHEALTHY
    elif all(checks.values()):
        status = HealthStatus.HEALTHY
    else:
        status = HealthStatus.DEGRADED

    return HealthResponse(
        status=status,
        version=__version__,
        timestamp=datetime.now(timezone.utc),
        checks=checks,
    )


@router.get(
    "/ready",
    response_model=ReadinessResponse,
    summary="Readiness check",
    description="Returns whether the service is ready to handle requests",
)
async def readiness_check(request: Request) -> ReadinessResponse:
    """
    Readiness check for Kubernetes.

    Used to determine if the pod should receive traffic.
    """
    service = getattr(request.app.state, "service", None)
    checks = {
        "service_initialized": service is not None,
        "schema_loaded": service is not None and bool(service.orchestrator.business_schema.tables),
    }

    return ReadinessResponse(
        ready=all(checks.values()),
        checks=checks,
    )


@router.get(
    "/live",
    summary="Liveness check",
    description="Simple liveness probe",
)
async def liveness_check() -> dict:
    return {"status": "ok"}
