"""Reprocessing - bounded retry of failed pipeline stages."""

from reprocessing.engine import ReprocessingEngine
from reprocessing.policy import RetryPolicy

__all__ = ["ReprocessingEngine", "RetryPolicy"]
