"""Tests for logging configuration."""

import json
import logging

import pytest

from card_advisor.core.logging_config import JSONFormatter, get_logger, setup_logging


@pytest.fixture
def restore_logging():
    """Fixture removing the file handlers setup_logging attaches."""
    root = logging.getLogger()
    level = root.level
    yield
    for logger in (root, logging.getLogger("card_advisor.services")):
        for handler in list(logger.handlers):
            if isinstance(handler, logging.FileHandler):
                logger.removeHandler(handler)
                handler.close()
    root.setLevel(level)


class TestJSONFormatter:
    """Tests for the structured JSON formatter."""

    def test_includes_extra_data(self):
        """Structured fields appear under "extra"."""
        record = logging.LogRecord(
            "card_advisor.services.pipeline", logging.INFO, __file__, 10, "Done", None, None
        )
        record.extra_data = {"candidate_count": 5}

        data = json.loads(JSONFormatter().format(record))

        assert data["message"] == "Done"
        assert data["level"] == "INFO"
        assert data["extra"] == {"candidate_count": 5}


class TestContextLogger:
    """Tests for the context logger adapter."""

    def test_merges_context_and_extra(self):
        """Adapter context and call-site extra_data are merged."""
        logger = get_logger("card_advisor.test", request_id="abc")

        _msg, kwargs = logger.process("hello", {"extra": {"extra_data": {"mode": "x"}}})

        assert kwargs["extra"]["extra_data"] == {"request_id": "abc", "mode": "x"}

    def test_bind_adds_context(self):
        """bind returns a logger with the combined context, leaving the source logger unchanged."""
        logger = get_logger("card_advisor.test", component="pipeline")

        bound = logger.bind(request_id="abc")

        assert bound.extra == {"component": "pipeline", "request_id": "abc"}
        assert logger.extra == {"component": "pipeline"}


class TestSetupLogging:
    """Tests for setup_logging."""

    def test_creates_log_files(self, tmp_path, restore_logging):
        """File logging writes the app, error and pipeline logs."""
        setup_logging(enable_console=False, log_dir=tmp_path)

        get_logger("card_advisor.services.pipeline").error(
            "Pipeline failed", extra={"extra_data": {"mode": "needs_cards"}}
        )
        for handler in logging.getLogger().handlers + logging.getLogger(
            "card_advisor.services"
        ).handlers:
            handler.flush()

        for name in ("card_advisor.log", "errors.log", "pipeline.log"):
            lines = (tmp_path / name).read_text().splitlines()
            assert json.loads(lines[-1])["extra"] == {"mode": "needs_cards"}
