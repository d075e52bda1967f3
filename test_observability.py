"""
Observability Validation Test

Validates structured logging with correlation IDs:
1. Correlation context merges and resets around each scope
2. Concurrent asyncio tasks keep their own transaction IDs
3. JSON and human-readable formatters include the correlation IDs
4. Per-call extra fields reach the JSON output

Pass criteria: every log line of a run can be traced to its run_id, and every
per-transaction line to its transaction_id.
"""

import asyncio
import json
import logging

import pytest

from core.observability import (
    CorrelationContext,
    configure_logging,
    get_correlation_context,
    get_logger,
    with_correlation,
)
from core.observability.logging import HumanReadableFormatter, StructuredFormatter


def make_record(message: str, extra_fields=None) -> logging.LogRecord:
    record = logging.LogRecord(
        name="sync_engine.orchestrator",
        level=logging.INFO,
        pathname=__file__,
        lineno=1,
        msg=message,
        args=(),
        exc_info=None,
    )
    if extra_fields is not None:
        record.extra_fields = extra_fields
    return record


class TestCorrelationContext:
    """Test correlation ID propagation."""

    def test_to_dict_drops_empty_values(self):
        ctx = CorrelationContext(run_id="run-1", stage="posting")
        assert ctx.to_dict() == {"run_id": "run-1", "stage": "posting"}

    def test_merge_keeps_existing_values(self):
        ctx = CorrelationContext(run_id="run-1").merge(transaction_id="tx-1", stage=None)
        assert ctx.run_id == "run-1"
        assert ctx.transaction_id == "tx-1"
        assert ctx.stage is None

    def test_with_correlation_nests_and_resets(self):
        assert get_correlation_context().run_id is None

        with with_correlation(run_id="run-1"):
            with with_correlation(transaction_id="tx-1", stage="staging"):
                ctx = get_correlation_context()
                assert (ctx.run_id, ctx.transaction_id, ctx.stage) == ("run-1", "tx-1", "staging")
            assert get_correlation_context().transaction_id is None
            assert get_correlation_context().run_id == "run-1"

        assert get_correlation_context().run_id is None

    @pytest.mark.asyncio
    async def test_tasks_do_not_share_transaction_ids(self):
        seen = {}

        async def worker(tx_id: str):
            with with_correlation(transaction_id=tx_id):
                await asyncio.sleep(0)
                seen[tx_id] = get_correlation_context().transaction_id

        with with_correlation(run_id="run-1"):
            await asyncio.gather(*[worker(f"tx-{i}") for i in range(5)])

        assert seen == {f"tx-{i}": f"tx-{i}" for i in range(5)}


class TestFormatters:
    """Test log output formats."""

    def test_structured_formatter_includes_correlation(self):
        with with_correlation(run_id="run-abc", transaction_id="tx-7", stage="posting"):
            line = StructuredFormatter().format(make_record("Transaction posted", {"document_id": "inv-1"}))

        data = json.loads(line)
        assert data["message"] == "Transaction posted"
        assert data["level"] == "INFO"
        assert data["run_id"] == "run-abc"
        assert data["transaction_id"] == "tx-7"
        assert data["stage"] == "posting"
        assert data["document_id"] == "inv-1"

    def test_human_readable_formatter(self):
        with with_correlation(run_id="run-abc", transaction_id="tx-7"):
            line = HumanReadableFormatter().format(make_record("Transaction posted"))

        assert "[run-abc/tx:tx-7]" in line
        assert line.endswith("Transaction posted")

    def test_human_readable_without_context(self):
        line = HumanReadableFormatter().format(make_record("Worker started"))
        assert "[-]" in line


class TestCorrelatedLogger:
    """Test the logger wrapper."""

    def test_get_logger_is_cached(self):
        assert get_logger("sync_engine.test") is get_logger("sync_engine.test")

    def test_extra_fields_reach_the_record(self, caplog):
        logger = get_logger("sync_engine.test")
        with caplog.at_level(logging.INFO, logger="sync_engine.test"):
            logger.info("Run finished", extra_fields={"posted": 3})

        record = caplog.records[-1]
        assert record.getMessage() == "Run finished"
        assert record.extra_fields == {"posted": 3}

    def test_configure_logging_installs_one_handler(self):
        root = logging.getLogger()
        configure_logging(level=logging.INFO, force=True)
        configure_logging(level=logging.DEBUG)

        ours = [h for h in root.handlers if getattr(h, "_ledger_sync_handler", False)]
        assert len(ours) == 1
        for handler in ours:
            root.removeHandler(handler)
