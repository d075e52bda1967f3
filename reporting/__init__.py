"""Run reporting - outcome events folded into run summaries."""

from reporting.reporter import OutcomeEvent, OutcomeKind, RunReporter

__all__ = ["OutcomeEvent", "OutcomeKind", "RunReporter"]
