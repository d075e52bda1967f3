"""Workflow definitions module."""

from workflows.sync_workflow import TASK_QUEUE_SYNC, SyncWindowWorkflow

__all__ = ["SyncWindowWorkflow", "TASK_QUEUE_SYNC"]
