"""Sync activities.

The worker process owns one SyncEngine; the scheduled workflow runs a sync
window through it. EngineBusy and AuthenticationFailure are reported as
non-retryable application errors.
"""

from dataclasses import dataclass
from datetime import date
from typing import Optional

from temporalio import activity
from temporalio.exceptions import ApplicationError

from core.config import SyncSettings
from core.models.sync import RunOutcome, SyncWindow
from core.observability.logging import get_logger, with_correlation
from sync_engine.engine import SyncEngine
from sync_engine.errors import EngineBusy

logger = get_logger(__name__)

NON_RETRYABLE_ERRORS = ["EngineBusy", "AuthenticationFailure", "ConfigurationError"]

_engine: Optional[SyncEngine] = None


def set_engine(engine: Optional[SyncEngine]) -> None:
    """Install the engine used by activities in this process."""
    global _engine
    _engine = engine


def get_engine() -> SyncEngine:
    global _engine
    if _engine is None:
        _engine = SyncEngine.from_settings(SyncSettings.from_env().validate())
    return _engine


@dataclass
class SyncWindowInput:
    """Input for run_sync_window.

    Attributes:
        since: Window start (ISO date); defaults to today - days_back
        until: Window end (ISO date); defaults to today
        days_back: Override for the configured sync_days_back
        trigger: What started the run (schedule, manual, ...)
    """
    since: Optional[str] = None
    until: Optional[str] = None
    days_back: Optional[int] = None
    trigger: str = "schedule"


def resolve_window(input: SyncWindowInput, default_days_back: int) -> SyncWindow:
    days_back = input.days_back if input.days_back is not None else default_days_back
    if input.since is None and input.until is None:
        return SyncWindow.trailing(days_back)
    until = date.fromisoformat(input.until) if input.until else date.today()
    if input.since:
        return SyncWindow(since=date.fromisoformat(input.since), until=until)
    return SyncWindow.trailing(days_back, today=until)


@activity.defn
async def run_sync_window(input: SyncWindowInput) -> dict:
    """Run one sync and return its RunSummary as a dict."""
    engine = get_engine()
    info = activity.info()
    window = resolve_window(input, engine.settings.sync_days_back)

    with with_correlation(workflow_id=info.workflow_id, activity_name=info.activity_type):
        try:
            summary = await engine.trigger_sync(window, trigger=input.trigger)
        except EngineBusy as e:
            raise ApplicationError(str(e), type="EngineBusy", non_retryable=True) from e

    if summary.status is RunOutcome.FAILED:
        error_type = (summary.error or "SyncRunFailed").split(":", 1)[0]
        raise ApplicationError(
            f"sync run {summary.run_id} failed: {summary.error}",
            summary.model_dump(mode="json"),
            type=error_type,
            non_retryable=error_type in NON_RETRYABLE_ERRORS,
        )

    return summary.model_dump(mode="json")
