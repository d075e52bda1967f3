"""Sync endpoints: trigger, status, abandoned retries, shutdown."""

from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, ValidationError

from api.deps import get_engine
from core.models.sync import RetryItem, RetryState, RunStatus, RunSummary, SyncWindow
from sync_engine.engine import SyncEngine
from sync_engine.errors import EngineBusy


router = APIRouter()


class TriggerRequest(BaseModel):
    """Optional window for a manual run; defaults to the trailing sync_days_back days."""
    since: Optional[date] = None
    until: Optional[date] = None
    days_back: Optional[int] = None


class AcknowledgeResponse(BaseModel):
    id: int
    state: RetryState


class ShutdownResponse(BaseModel):
    draining: bool


def _window(request: Optional[TriggerRequest], default_days_back: int) -> Optional[SyncWindow]:
    if request is None or (request.since is None and request.until is None and request.days_back is None):
        return None
    days_back = request.days_back if request.days_back is not None else default_days_back
    until = request.until or date.today()
    try:
        if request.since is not None:
            return SyncWindow(since=request.since, until=until)
        return SyncWindow.trailing(days_back, today=until)
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=str(e)) from e


@router.post("/trigger", response_model=RunSummary)
async def trigger_sync(
    request: Optional[TriggerRequest] = None,
    engine: SyncEngine = Depends(get_engine),
) -> RunSummary:
    """Run a sync now and return its summary. 409 while another run is active."""
    window = _window(request, engine.settings.sync_days_back)
    try:
        return await engine.trigger_sync(window, trigger="api")
    except EngineBusy as e:
        raise HTTPException(status_code=409, detail=str(e)) from e


@router.get("/status", response_model=RunStatus)
async def run_status(engine: SyncEngine = Depends(get_engine)) -> RunStatus:
    return engine.get_run_status()


@router.get("/retries/abandoned", response_model=List[RetryItem])
async def abandoned_retries(engine: SyncEngine = Depends(get_engine)) -> List[RetryItem]:
    return engine.list_abandoned_retries()


@router.post("/retries/{item_id}/acknowledge", response_model=AcknowledgeResponse)
async def acknowledge_retry(item_id: int, engine: SyncEngine = Depends(get_engine)) -> AcknowledgeResponse:
    """Acknowledge an abandoned retry item. 404 if unknown, 409 if not abandoned."""
    item = engine.get_retry_item(item_id)
    if item is None:
        raise HTTPException(status_code=404, detail=f"Retry item {item_id} not found")
    if not engine.acknowledge_abandoned(item_id):
        raise HTTPException(
            status_code=409,
            detail=f"Retry item {item_id} is {item.state.value}, only abandoned items can be acknowledged",
        )
    return AcknowledgeResponse(id=item_id, state=RetryState.ACKNOWLEDGED)


@router.post("/shutdown", response_model=ShutdownResponse)
async def request_shutdown(engine: SyncEngine = Depends(get_engine)) -> ShutdownResponse:
    """Drain the current run, if any."""
    return ShutdownResponse(draining=engine.request_shutdown())
