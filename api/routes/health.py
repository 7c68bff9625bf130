"""Health check endpoints."""

from datetime import datetime
from typing import Dict

from fastapi import APIRouter, Depends, Response
from pydantic import BaseModel

from api.dependencies import AppServices, get_services


router = APIRouter()


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    timestamp: str
    version: str
    services: Dict[str, str]


@router.get("/health", response_model=HealthResponse)
async def health_check(services: AppServices = Depends(get_services)) -> HealthResponse:
    """Health check endpoint."""
    return HealthResponse(
        status="healthy",
        timestamp=datetime.utcnow().isoformat(),
        version="1.0.0",
        services={
            "api": "up",
            "dilovod": services.runtime.connector.connection_status.value if services.runtime else "not_configured",
            "salesdrive": "configured" if services.storefront else "not_configured",
            "storage": "up" if services.db_path.exists() else "missing",
        },
    )


@router.get("/ready")
async def readiness_check(response: Response, services: AppServices = Depends(get_services)) -> Dict[str, str]:
    """Readiness probe; exports need the Dilovod connection."""
    if services.runtime is None:
        response.status_code = 503
        return {"status": "not_ready"}
    return {"status": "ready"}


@router.get("/live")
async def liveness_check() -> Dict[str, str]:
    """Liveness probe for Kubernetes."""
    return {"status": "alive"}
