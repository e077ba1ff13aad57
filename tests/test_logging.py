"""Tests for structured logging."""

from __future__ import annotations

import json
import logging
import sys
from collections.abc import Iterator
from io import StringIO

import pytest

from qualitypulse.config import AnalyticsConfig
from qualitypulse.observability import (
    HumanReadableFormatter,
    StructuredFormatter,
    configure_logging,
    get_context,
    log_context,
)


@pytest.fixture
def restore_logger() -> Iterator[None]:
    logger = logging.getLogger("qualitypulse")
    handlers, level, propagate = list(logger.handlers), logger.level, logger.propagate
    yield
    logger.handlers[:] = handlers
    logger.setLevel(level)
    logger.propagate = propagate


def make_record(message: str = "snapshot saved", level: int = logging.INFO) -> logging.LogRecord:
    return logging.LogRecord("qualitypulse.storage", level, __file__, 42, message, (), None)


class TestStructuredFormatter:
    """Tests for JSON log lines."""

    def test_basic_fields(self) -> None:
        data = json.loads(StructuredFormatter().format(make_record()))

        assert data["level"] == "info"
        assert data["message"] == "snapshot saved"
        assert data["logger"] == "qualitypulse.storage"
        assert "timestamp" in data
        assert "context" not in data

    def test_context_fields(self) -> None:
        with log_context(run_id="2026-10-18T12:00:00", tests=10):
            data = json.loads(StructuredFormatter().format(make_record()))

        assert data["context"] == {"run_id": "2026-10-18T12:00:00", "tests": 10}

    def test_exception(self) -> None:
        try:
            raise ValueError("bad snapshot")
        except ValueError:
            record = logging.LogRecord(
                "qualitypulse", logging.ERROR, __file__, 1, "failed", (), exc_info=sys.exc_info()
            )

        data = json.loads(StructuredFormatter().format(record))

        assert data["exception"]["type"] == "ValueError"
        assert data["exception"]["message"] == "bad snapshot"


class TestHumanReadableFormatter:
    def test_plain_output(self) -> None:
        line = HumanReadableFormatter(use_colors=False).format(make_record())

        assert "INFO" in line
        assert "[qualitypulse.storage] snapshot saved" in line

    def test_context_suffix(self) -> None:
        with log_context(run_id="r1"):
            line = HumanReadableFormatter(use_colors=False).format(make_record())

        assert line.endswith('| context={"run_id": "r1"}')


class TestLogContext:
    def test_nesting_and_reset(self) -> None:
        with log_context(run_id="r1"):
            with log_context(test="login works"):
                assert get_context() == {"run_id": "r1", "test": "login works"}
            assert get_context() == {"run_id": "r1"}
        assert get_context() == {}


@pytest.mark.usefixtures("restore_logger")
class TestConfigureLogging:
    """Tests for configure_logging."""

    def test_json_output(self) -> None:
        stream = StringIO()
        configure_logging(level="debug", json_format=True, stream=stream)

        logging.getLogger("qualitypulse.trends.base").debug("Recorded %s snapshot", "trend-history.json")

        data = json.loads(stream.getvalue().strip())
        assert data["message"] == "Recorded trend-history.json snapshot"
        assert data["logger"] == "qualitypulse.trends.base"

    def test_level_filters(self) -> None:
        stream = StringIO()
        configure_logging(level=logging.WARNING, stream=stream)

        logging.getLogger("qualitypulse.models").info("hidden")
        logging.getLogger("qualitypulse.models").warning("shown")

        output = stream.getvalue()
        assert "hidden" not in output
        assert "shown" in output

    def test_reconfigure_replaces_handler(self) -> None:
        configure_logging(stream=StringIO())
        logger = configure_logging(stream=StringIO())

        assert len(logger.handlers) == 1

    def test_applied_from_config(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("QUALITYPULSE_LOG_LEVEL", "warning")
        monkeypatch.setenv("QUALITYPULSE_LOG_JSON", "true")
        stream = StringIO()

        logger = AnalyticsConfig().configure_logging(stream=stream)
        logging.getLogger("qualitypulse.storage.history").info("hidden")
        logging.getLogger("qualitypulse.storage.history").warning("Removing stale lock %s", "trend-history.json.lock")

        assert logger.level == logging.WARNING
        lines = stream.getvalue().strip().splitlines()
        assert len(lines) == 1
        assert json.loads(lines[0])["message"] == "Removing stale lock trend-history.json.lock"
