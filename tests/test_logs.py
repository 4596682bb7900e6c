"""
Tests for structured logging and metrics.
"""
import json
import logging
import sys

import pytest

from interview_engine.core.errors import GenerationServiceError
from interview_engine.logs import StructuredFormatter, log_metric, metrics


class TestStructuredFormatter:

    def test_json_with_context(self):
        record = logging.LogRecord("engine", logging.INFO, __file__, 10, "hello %s", ("world",), None)
        record.context = {"session_id": "s1"}

        payload = json.loads(StructuredFormatter().format(record))

        assert payload["message"] == "hello world"
        assert payload["level"] == "INFO"
        assert payload["session_id"] == "s1"

    def test_engine_error_context_included(self):
        try:
            raise GenerationServiceError("timed out", session_id="s9", stage="generate")
        except GenerationServiceError:
            record = logging.LogRecord("engine", logging.ERROR, __file__, 1, "failed", (), sys.exc_info())

        payload = json.loads(StructuredFormatter().format(record))

        assert payload["session_id"] == "s9"
        assert payload["stage"] == "generate"
        assert payload["retryable"] is True
        assert "exception" in payload


class TestLogMetric:

    @pytest.mark.asyncio
    async def test_async_success_and_failure(self):
        @log_metric("retrievals")
        async def ok():
            return 1

        @log_metric("retrievals")
        async def fail():
            raise RuntimeError("boom")

        assert await ok() == 1
        with pytest.raises(RuntimeError):
            await fail()
        assert metrics.get("retrievals") == 1
        assert "retrievals_seconds" in metrics.get_all()

    def test_sync_function(self):
        @log_metric("turns_committed")
        def ok():
            return "done"

        assert ok() == "done"
        assert metrics.get("turns_committed") == 1
