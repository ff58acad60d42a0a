"""Health check endpoints."""

from datetime import datetime, timezone
from typing import Dict

from fastapi import APIRouter, Response
from pydantic import BaseModel

from api.services import list_services
from core import __version__
from connectors import list_available_connectors


router = APIRouter()


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    timestamp: str
    version: str
    services: Dict[str, str]
    connectors: list


@router.get("/health", response_model=HealthResponse)
async def health_check() -> HealthResponse:
    """Health check endpoint."""
    return HealthResponse(
        status="healthy",
        timestamp=datetime.now(timezone.utc).isoformat(),
        version=__version__,
        services={
            "api": "up",
            "consolidation": f"{len(list_services())} business line(s) loaded",
        },
        connectors=list_available_connectors(),
    )


@router.get("/ready")
async def readiness_check() -> Dict[str, str]:
    """Readiness check for Kubernetes."""
    return {"status": "ready"}


@router.get("/live")
async def liveness_check(response: Response) -> Dict[str, str]:
    """Liveness check for Kubernetes."""
    return {"status": "alive"}
