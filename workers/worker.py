"""Worker for the ledger sync.

Polls the sync task queue and runs SyncWindowWorkflow / run_sync_window.
The worker owns one SyncEngine; on Ctrl+C the current run is drained
before the process exits.
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from temporalio.worker import Worker

# Add repo root to path
sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from activities.sync import run_sync_window, set_engine
from core.config import SyncSettings
from core.observability.logging import configure_logging, get_logger
from sync_engine.engine import SyncEngine
from temporal_client import get_temporal_client
from workflows.sync_workflow import TASK_QUEUE_SYNC, SyncWindowWorkflow

logger = get_logger(__name__)


async def run_worker(task_queue: str = TASK_QUEUE_SYNC) -> None:
    """Start a worker on `task_queue` with a fresh engine."""
    settings = SyncSettings.from_env().validate()
    engine = SyncEngine.from_settings(settings)
    set_engine(engine)

    client = await get_temporal_client()
    logger.info(f"Connected to Temporal: {client.namespace}")

    worker = Worker(
        client,
        task_queue=task_queue,
        workflows=[SyncWindowWorkflow],
        activities=[run_sync_window],
    )
    logger.info(f"Worker running on queue '{task_queue}' (Ctrl+C to stop)")
    try:
        await worker.run()
    except asyncio.CancelledError:
        logger.info("Worker interrupted, draining current run")
        engine.request_shutdown()
        raise
    finally:
        set_engine(None)
        await engine.close()


def main():
    """Entry point for worker with CLI args."""
    parser = argparse.ArgumentParser(description="Ledger sync Temporal worker")
    parser.add_argument(
        "--queue", "-q",
        default=TASK_QUEUE_SYNC,
        help=f"Task queue to poll (default: {TASK_QUEUE_SYNC})",
    )
    args = parser.parse_args()

    settings = SyncSettings.from_env()
    configure_logging(
        level=getattr(logging, settings.log_level, logging.INFO),
        json_format=settings.log_json,
    )
    try:
        asyncio.run(run_worker(task_queue=args.queue))
    except KeyboardInterrupt:
        logger.info("Worker stopped")


if __name__ == "__main__":
    main()
