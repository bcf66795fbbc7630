"""Tests for the shared logging configuration."""

from __future__ import annotations

import io
import json
import logging

import pytest

from meshpatch.error_handling import ErrorContext, IntegrityError
from meshpatch.logging_config import JsonLogFormatter, PlainTextFormatter, init_logging


def _record(message: str, **extra) -> logging.LogRecord:
    record = logging.LogRecord(
        name="meshpatch.test",
        level=logging.ERROR,
        pathname=__file__,
        lineno=1,
        msg=message,
        args=(),
        exc_info=None,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


@pytest.fixture(autouse=True)
def _restore_root_logger():
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    yield
    root.handlers = handlers
    root.setLevel(level)


@pytest.mark.unit
class TestJsonLogFormatter:

    def test_basic_payload(self, monkeypatch):
        monkeypatch.delenv("MESHPATCH_ASSET_REF", raising=False)
        payload = json.loads(JsonLogFormatter().format(_record("hello", asset_ref="hat.npz")))
        assert payload["message"] == "hello"
        assert payload["level"] == "ERROR"
        assert payload["logger"] == "meshpatch.test"
        assert payload["asset_ref"] == "hat.npz"
        assert payload["manifest_id"] == ""

    def test_context_from_environment(self, monkeypatch):
        monkeypatch.setenv("REQUEST_ID", "req-7")
        payload = json.loads(JsonLogFormatter().format(_record("hello")))
        assert payload["request_id"] == "req-7"

    def test_engine_error_expanded(self):
        error = IntegrityError(
            "target_content_hash mismatch",
            check="target_content_hash",
            context=ErrorContext(step="apply_binary"),
        )
        payload = json.loads(JsonLogFormatter().format(_record("apply failed", engine_error=error)))
        assert payload["error_category"] == "integrity"
        assert payload["engine_error"]["error_type"] == "IntegrityError"
        assert payload["engine_error"]["context"]["step"] == "apply_binary"


@pytest.mark.unit
class TestPlainTextFormatter:

    def test_context_fields_filled(self, monkeypatch):
        monkeypatch.delenv("MESHPATCH_MANIFEST_ID", raising=False)
        formatter = PlainTextFormatter("%(asset_ref)s|%(manifest_id)s|%(message)s")
        assert formatter.format(_record("hi", asset_ref="a.npz")) == "a.npz||hi"


@pytest.mark.unit
class TestInitLogging:

    def test_json_output(self, monkeypatch):
        monkeypatch.delenv("MESHPATCH_LOG_LEVEL", raising=False)
        monkeypatch.delenv("LOG_LEVEL", raising=False)
        stream = io.StringIO()
        init_logging(json_enabled=True, stream=stream)
        logging.getLogger("meshpatch.test").info("structured")

        line = stream.getvalue().strip().splitlines()[-1]
        assert json.loads(line)["message"] == "structured"
        assert logging.getLogger().level == logging.INFO

    def test_level_from_environment(self, monkeypatch):
        monkeypatch.setenv("MESHPATCH_LOG_LEVEL", "warning")
        stream = io.StringIO()
        init_logging(json_enabled=False, stream=stream)
        logging.getLogger("meshpatch.test").info("hidden")
        logging.getLogger("meshpatch.test").warning("shown")

        output = stream.getvalue()
        assert "hidden" not in output
        assert "shown" in output

    def test_plain_text_selected_by_env(self, monkeypatch):
        monkeypatch.setenv("LOG_FORMAT", "plain")
        monkeypatch.delenv("MESHPATCH_LOG_JSON", raising=False)
        stream = io.StringIO()
        init_logging(level=logging.INFO, stream=stream)
        logging.getLogger("meshpatch.test").info("readable")

        output = stream.getvalue()
        assert "readable" in output
        assert not output.lstrip().startswith("{")
