"""Create (or run once) the scheduled sync on Temporal.

    python scripts/start_sync_schedule.py            # create schedule from SYNC_SCHEDULE
    python scripts/start_sync_schedule.py --once     # start one SyncWindowWorkflow now
"""

import argparse
import asyncio
import logging
import sys
import uuid
from pathlib import Path

from temporalio.client import (
    Schedule,
    ScheduleActionStartWorkflow,
    ScheduleAlreadyRunningError,
    ScheduleOverlapPolicy,
    SchedulePolicy,
    ScheduleSpec,
)

# Add repo root to path
sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from activities.sync import SyncWindowInput
from core.config import SyncSettings
from core.observability.logging import configure_logging, get_logger
from temporal_client import get_temporal_client
from workflows.sync_workflow import TASK_QUEUE_SYNC, SyncWindowWorkflow

logger = get_logger(__name__)

SCHEDULE_ID = "ledger-sync-schedule"


def build_schedule(cron: str, task_queue: str = TASK_QUEUE_SYNC) -> Schedule:
    """Schedule starting SyncWindowWorkflow on `cron`; overlapping runs are skipped."""
    return Schedule(
        action=ScheduleActionStartWorkflow(
            SyncWindowWorkflow.run,
            SyncWindowInput(trigger="schedule"),
            id="ledger-sync-scheduled",
            task_queue=task_queue,
        ),
        spec=ScheduleSpec(cron_expressions=[cron]),
        policy=SchedulePolicy(overlap=ScheduleOverlapPolicy.SKIP),
    )


async def create_schedule(cron: str) -> None:
    client = await get_temporal_client()
    try:
        await client.create_schedule(SCHEDULE_ID, build_schedule(cron))
        logger.info(f"Created schedule '{SCHEDULE_ID}' with cron '{cron}'")
    except ScheduleAlreadyRunningError:
        logger.info(f"Schedule '{SCHEDULE_ID}' already exists")


async def run_once(days_back: int) -> dict:
    client = await get_temporal_client()
    handle = await client.start_workflow(
        SyncWindowWorkflow.run,
        SyncWindowInput(days_back=days_back, trigger="manual"),
        id=f"ledger-sync-{uuid.uuid4().hex[:8]}",
        task_queue=TASK_QUEUE_SYNC,
    )
    logger.info(f"Workflow started: {handle.id}")
    return await handle.result()


def main():
    parser = argparse.ArgumentParser(description="Start the ledger sync on Temporal")
    parser.add_argument("--once", action="store_true", help="Run one sync now instead of scheduling")
    parser.add_argument("--days-back", type=int, default=None, help="Window length for --once")
    args = parser.parse_args()

    settings = SyncSettings.from_env()
    configure_logging(level=getattr(logging, settings.log_level, logging.INFO))

    if args.once:
        days_back = args.days_back if args.days_back is not None else settings.sync_days_back
        summary = asyncio.run(run_once(days_back))
        print(summary)
    else:
        asyncio.run(create_schedule(settings.sync_schedule))
    return 0


if __name__ == "__main__":
    sys.exit(main())
