"""Tests for structlog configuration."""

import logging
from unittest.mock import patch

import structlog

from mocha_client.config import LoggingConfig
from mocha_client.logging_config import add_timestamp, configure_logging, get_logger


class TestLoggingConfig:
    """Test logging setup."""

    def test_add_timestamp(self):
        event = add_timestamp(None, "info", {"event": "x"})
        assert event["timestamp"].endswith("Z")

    def test_configure_sets_logger_level(self):
        configure_logging(LoggingConfig(level="DEBUG", logger_name="mocha_client.test"))
        assert logging.getLogger("mocha_client.test").level == logging.DEBUG

    def test_existing_structlog_configuration_is_kept(self):
        with patch("mocha_client.logging_config.structlog.is_configured", return_value=True), patch(
            "mocha_client.logging_config.setup_logging"
        ) as setup:
            configure_logging(LoggingConfig())
        setup.assert_not_called()

    def test_unconfigured_structlog_is_set_up(self):
        with patch("mocha_client.logging_config.structlog.is_configured", return_value=False), patch(
            "mocha_client.logging_config.setup_logging"
        ) as setup:
            configure_logging(LoggingConfig(level="warning", format="json"))
        setup.assert_called_once_with("WARNING", "json")

    def test_get_logger(self):
        logger = get_logger("mocha_client.test")
        assert hasattr(logger, "info")
        assert structlog.get_config() is not None
