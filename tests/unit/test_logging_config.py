"""Tests for the structlog configuration."""

import json
import logging
import pytest
from decimal import Decimal
from unittest.mock import patch

import structlog

from seqtrade_app.logging.config import (
    build_processors,
    build_renderer,
    configure_logging,
)


class TestProcessors:
    """Test the shared processor chain."""

    def test_default_chain(self):
        """Test timestamps are added and call-site info is not."""
        processors = build_processors()

        types = [type(processor) for processor in processors]
        assert structlog.processors.TimeStamper in types
        assert structlog.processors.CallsiteParameterAdder not in types

    def test_optional_processors(self):
        """Test caller info and extra processors are included on request."""
        def extra(_logger, _method, event_dict):
            return event_dict

        processors = build_processors(include_timestamp=False, include_caller=True,
                                      extra_processors=[extra])

        types = [type(processor) for processor in processors]
        assert structlog.processors.TimeStamper not in types
        assert structlog.processors.CallsiteParameterAdder in types
        assert processors[-2] is extra

    def test_session_context_leads(self):
        """Test session and subsystem keys follow the event message."""
        reorder = build_processors()[-1]

        event_dict = reorder(None, "info", {
            "run": 3,
            "subsystem": "trade_session",
            "event": "Trade settled",
            "session_key": "42",
        })

        assert list(event_dict) == ["event", "session_key", "subsystem", "run"]


class TestRenderer:
    """Test output renderers."""

    def test_json_renderer(self):
        """Test JSON lines are rendered through orjson with str fallback."""
        renderer = build_renderer(format_json=True)

        line = renderer(None, "info", {"event": "Trade settled", "stake": Decimal("1.5")})

        assert json.loads(line) == {"event": "Trade settled", "stake": "1.5"}

    def test_console_renderer(self):
        """Test console output is the default."""
        assert isinstance(build_renderer(), structlog.dev.ConsoleRenderer)


class TestConfigureLogging:
    """Test global logging configuration."""

    def test_configures_structlog_and_root_logger(self):
        """Test both structlog and stdlib logging are configured."""
        with patch("seqtrade_app.logging.config.logging.basicConfig") as basic_config, \
                patch("seqtrade_app.logging.config.structlog.configure") as configure:
            configure_logging(level="debug", format_json=True)

        assert basic_config.call_args.kwargs["level"] == logging.DEBUG
        assert basic_config.call_args.kwargs["force"] is True
        processors = configure.call_args.kwargs["processors"]
        assert isinstance(processors[-1], structlog.processors.JSONRenderer)
        assert configure.call_args.kwargs["wrapper_class"] is structlog.stdlib.BoundLogger

    def test_numeric_level(self):
        """Test logging constants are accepted as levels."""
        with patch("seqtrade_app.logging.config.logging.basicConfig") as basic_config, \
                patch("seqtrade_app.logging.config.structlog.configure"):
            configure_logging(level=logging.WARNING)

        assert basic_config.call_args.kwargs["level"] == logging.WARNING

    def test_unknown_level(self):
        """Test unknown level names are rejected before anything is configured."""
        with patch("seqtrade_app.logging.config.structlog.configure") as configure:
            with pytest.raises(ValueError):
                configure_logging(level="chatty")

        configure.assert_not_called()
