"""
Health check endpoint.
"""

from dataclasses import asdict
from datetime import datetime, timezone

from fastapi import APIRouter

from app.config import APP_VERSION
from app.dependencies import Limiter, Passcodes
from app.models import HealthResponse, StoreStatsResponse

router = APIRouter(prefix="/api", tags=["health"])


@router.get(
    "/health",
    response_model=HealthResponse,
    operation_id="getHealth",
    summary="Health check with auth store diagnostics",
)
async def get_health(passcodes: Passcodes, limiter: Limiter) -> HealthResponse:
    return HealthResponse(
        status="ok",
        version=APP_VERSION,
        timestamp=datetime.now(timezone.utc),
        passcodes=StoreStatsResponse(**asdict(passcodes.stats())),
        rate_limits=StoreStatsResponse(**asdict(limiter.stats())),
    )
