"""Unit tests for structured logging setup."""

import json
import logging

import pytest
import structlog

from objectstore.config import LoggingSettings, Settings
from objectstore.logging import get_logger, setup_logging


@pytest.fixture
def restore_logging():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    structlog.reset_defaults()
    root.handlers[:] = handlers
    root.setLevel(level)


@pytest.mark.unit
class TestSetupLogging:
    def test_json_output(self, capsys, restore_logging):
        setup_logging(Settings(logging=LoggingSettings(format="json", level="info")))

        get_logger("service").info("bucket_created", bucket="docs")

        line = capsys.readouterr().out.strip().splitlines()[-1]
        record = json.loads(line)
        assert record["event"] == "bucket_created"
        assert record["bucket"] == "docs"
        assert record["component"] == "service"
        assert record["service"] == "objectstore"
        assert record["level"] == "info"

    def test_level_filters(self, capsys, restore_logging):
        setup_logging(Settings(logging=LoggingSettings(format="json", level="warning")))

        logger = get_logger("service")
        logger.info("quiet")
        logger.warning("loud")

        out = capsys.readouterr().out
        assert "quiet" not in out
        assert "loud" in out

    def test_single_root_handler(self, restore_logging):
        setup_logging(Settings())
        setup_logging(Settings())
        assert len(logging.getLogger().handlers) == 1
