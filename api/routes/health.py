"""Health check endpoints."""

from datetime import datetime, timezone
from typing import Dict, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from core import __version__
from sync_engine.engine import SyncEngine
from api.deps import get_engine


router = APIRouter()


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    timestamp: str
    version: str
    services: Dict[str, str]


class ConfigStatusResponse(BaseModel):
    """Non-secret view of the running configuration."""
    sync_schedule: str
    sync_days_back: int
    xano_rate_limit: int
    worker_concurrency: int
    retry_max_attempts: int
    busy_policy: str
    business_category_group: Optional[str] = None
    actual_configured: bool
    xano_configured: bool
    xero_configured: bool


@router.get("/health", response_model=HealthResponse)
async def health_check(engine: SyncEngine = Depends(get_engine)) -> HealthResponse:
    """Health check endpoint."""
    return HealthResponse(
        status="healthy",
        timestamp=datetime.now(timezone.utc).isoformat(),
        version=__version__,
        services={
            "api": "up",
            "sync_engine": engine.lock.state.value,
        },
    )


@router.get("/config/status", response_model=ConfigStatusResponse)
async def config_status(engine: SyncEngine = Depends(get_engine)) -> ConfigStatusResponse:
    """Which integrations are configured, without exposing secrets."""
    s = engine.settings
    return ConfigStatusResponse(
        sync_schedule=s.sync_schedule,
        sync_days_back=s.sync_days_back,
        xano_rate_limit=s.xano_rate_limit,
        worker_concurrency=s.worker_concurrency,
        retry_max_attempts=s.retry_max_attempts,
        busy_policy=s.busy_policy,
        business_category_group=s.business_category_group_id or s.business_category_group_name,
        actual_configured=bool(s.actual_budget_url and s.actual_budget_password),
        xano_configured=bool(s.xano_api_url and s.xano_api_key),
        xero_configured=bool(s.xero_client_id and s.xero_client_secret and s.xero_tenant_id),
    )


@router.get("/live")
async def liveness_check() -> Dict[str, str]:
    """Liveness probe for Kubernetes."""
    return {"status": "alive"}
