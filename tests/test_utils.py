"""Tests for logging setup and structured log output."""

import json
import logging

from rich.logging import RichHandler

from mcruntime.utils import StructuredFormatter, setup_logging


class TestStructuredFormatter:

    def test_includes_extra_fields(self):
        record = logging.LogRecord("mcruntime.processor", logging.INFO, __file__, 1, "Run completed", None, None)
        record.run_id = "abc"
        record.event = "run_completed"
        record.metadata = {"package": "ndvi"}

        data = json.loads(StructuredFormatter().format(record))
        assert data["level"] == "INFO"
        assert data["logger"] == "mcruntime.processor"
        assert data["message"] == "Run completed"
        assert data["run_id"] == "abc"
        assert data["event"] == "run_completed"
        assert data["metadata"] == {"package": "ndvi"}

    def test_without_extras(self):
        record = logging.LogRecord("mcruntime", logging.WARNING, __file__, 1, "plain", None, None)
        data = json.loads(StructuredFormatter().format(record))
        assert "run_id" not in data
        assert "event" not in data


class TestSetupLogging:

    def test_pretty_console(self):
        logger = setup_logging(log_level="DEBUG")
        assert logger.name == "mcruntime"
        assert logger.level == logging.DEBUG
        assert len(logger.handlers) == 1
        assert isinstance(logger.handlers[0], RichHandler)

    def test_structured_file(self, tmp_path):
        log_file = tmp_path / "logs" / "mcruntime.log"
        logger = setup_logging(log_file=log_file, log_format="structured", console_output=False)

        logger.info("hello", extra={"event": "test_event"})
        for handler in logger.handlers:
            handler.flush()

        line = log_file.read_text().strip().splitlines()[-1]
        assert json.loads(line)["event"] == "test_event"

        for handler in logger.handlers:
            handler.close()
        logger.handlers = []
