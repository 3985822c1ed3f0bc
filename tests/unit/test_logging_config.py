"""
Unit tests for logging configuration.
Tests JSON formatting, trace ID injection, and log structure.
"""
import pytest
import json
import logging
import sys
from unittest.mock import MagicMock, patch
from expiringmap.logging_config import JsonFormatter, setup_logging


def _record(msg='Test message', level=logging.INFO, exc_info=None):
    return logging.LogRecord(
        name='expiringmap',
        level=level,
        pathname='expiring_map.py',
        lineno=1,
        msg=msg,
        args=(),
        exc_info=exc_info
    )


@pytest.mark.unit
class TestJsonFormatter:
    """Test JSON log formatter."""

    def test_formatter_creates_valid_json(self):
        """Test that formatter produces valid JSON."""
        output = JsonFormatter().format(_record())
        data = json.loads(output)  # Should not raise
        assert isinstance(data, dict)

    def test_formatter_includes_required_fields(self):
        """Test that all required fields are present."""
        data = json.loads(JsonFormatter().format(_record()))

        assert 'timestamp' in data
        assert 'level' in data
        assert 'service' in data
        assert 'message' in data
        assert 'logger' in data
        assert data['timestamp'].endswith('Z')

    def test_formatter_service_name(self):
        """Test default and custom service names."""
        assert json.loads(JsonFormatter().format(_record()))['service'] == 'expiringmap'
        assert json.loads(JsonFormatter('sessions').format(_record()))['service'] == 'sessions'

    def test_formatter_log_level(self):
        """Test that log level is captured."""
        data = json.loads(JsonFormatter().format(_record('Error message', logging.ERROR)))
        assert data['level'] == 'ERROR'

    def test_formatter_extra_fields(self):
        """Test that extra dicts are merged and extra_fields are nested."""
        record = _record()
        record.extra = {'component': 'sweep'}
        record.extra_fields = {'map': 'sessions', 'expired': 3}

        data = json.loads(JsonFormatter().format(record))
        assert data['component'] == 'sweep'
        assert data['fields'] == {'map': 'sessions', 'expired': 3}

    def test_formatter_includes_exception(self):
        """Test that tracebacks are rendered."""
        try:
            raise RuntimeError("listener exploded")
        except RuntimeError:
            record = _record('expiration listener failed', logging.ERROR, sys.exc_info())

        data = json.loads(JsonFormatter().format(record))
        assert 'RuntimeError: listener exploded' in data['exception']

    def test_formatter_serializes_unknown_types(self):
        """Test that non-JSON values in fields fall back to str()."""
        record = _record()
        record.extra_fields = {'key': object()}
        data = json.loads(JsonFormatter().format(record))
        assert data['fields']['key'].startswith('<object object')

    @patch('opentelemetry.trace.get_current_span')
    def test_formatter_includes_otel_trace_id(self, mock_get_span):
        """Test that OpenTelemetry trace IDs are included when available."""
        mock_span = MagicMock()
        mock_ctx = MagicMock()
        mock_ctx.is_valid = True
        mock_ctx.trace_id = 123456789
        mock_ctx.span_id = 987654321
        mock_span.get_span_context.return_value = mock_ctx
        mock_get_span.return_value = mock_span

        data = json.loads(JsonFormatter().format(_record()))
        assert data['otel_trace_id'] == format(123456789, '032x')
        assert data['otel_span_id'] == format(987654321, '016x')

    def test_formatter_omits_trace_ids_without_span(self):
        data = json.loads(JsonFormatter().format(_record()))
        assert 'otel_trace_id' not in data


@pytest.mark.unit
class TestLoggingSetup:
    """Test logging setup function."""

    def test_setup_logging_configures_root_logger(self):
        """Test that setup_logging configures the root logger."""
        setup_logging()
        root = logging.getLogger()
        assert root.level == logging.INFO
        assert len(root.handlers) > 0

    def test_setup_logging_level(self):
        setup_logging(logging.DEBUG)
        assert logging.getLogger().level == logging.DEBUG
        setup_logging()

    def test_setup_logging_uses_json_formatter(self):
        """Test that JSON formatter is used."""
        setup_logging(service='sessions')
        handler = logging.getLogger().handlers[0]
        assert isinstance(handler.formatter, JsonFormatter)
        assert handler.formatter.service == 'sessions'
