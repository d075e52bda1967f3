"""Sync Window Workflow.

Started by a Temporal schedule (cron from SYNC_SCHEDULE) or on demand; runs
one sync window through the run_sync_window activity.
"""

from datetime import timedelta

from temporalio import workflow
from temporalio.common import RetryPolicy

with workflow.unsafe.imports_passed_through():
    from activities.sync import NON_RETRYABLE_ERRORS, SyncWindowInput, run_sync_window


TASK_QUEUE_SYNC = "ledger-sync"


@workflow.defn
class SyncWindowWorkflow:
    """Runs one sync window and returns the RunSummary dict."""

    @workflow.run
    async def run(self, input: SyncWindowInput) -> dict:
        workflow.logger.info(f"Starting sync window workflow (trigger: {input.trigger})")

        summary = await workflow.execute_activity(
            run_sync_window,
            input,
            start_to_close_timeout=timedelta(minutes=30),
            retry_policy=RetryPolicy(
                initial_interval=timedelta(seconds=30),
                backoff_coefficient=2.0,
                maximum_interval=timedelta(minutes=10),
                maximum_attempts=3,
                non_retryable_error_types=NON_RETRYABLE_ERRORS,
            ),
        )

        workflow.logger.info(
            f"Sync run {summary['run_id']} {summary['status']}: "
            f"posted={summary['posted']} failed={summary['failed']}"
        )
        return summary
