"""Shared logging configuration for the engine and its CLI."""

from __future__ import annotations

import json
import logging
import os
import sys
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from meshpatch.config.env import parse_bool_env


DEFAULT_JSON_ENV_KEYS = ("MESHPATCH_LOG_JSON", "LOG_FORMAT")
CONTEXT_FIELDS = (
    ("asset_ref", "MESHPATCH_ASSET_REF"),
    ("manifest_id", "MESHPATCH_MANIFEST_ID"),
    ("request_id", "REQUEST_ID"),
)


def _should_use_json(env: dict[str, str]) -> bool:
    for key in DEFAULT_JSON_ENV_KEYS:
        if key in env:
            parsed = parse_bool_env(env.get(key))
            if parsed is not None:
                return parsed
    return True


def _resolve_context_value(record: logging.LogRecord, key: str, env_key: str) -> str:
    value = getattr(record, key, None)
    if value is not None:
        return str(value)
    env_value = os.getenv(env_key)
    return env_value if env_value is not None else ""


class JsonLogFormatter(logging.Formatter):
    """Formats records as one JSON object per line.

    A ``MeshPatchError`` passed as ``extra={"engine_error": err}`` is expanded
    through its ``to_dict()`` and its category is lifted to the top level.
    """

    def format(self, record: logging.LogRecord) -> str:
        engine_error = self._resolve_engine_error(record)
        error_category = getattr(record, "error_category", None)
        if engine_error and error_category is None:
            error_category = engine_error.get("category")
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key, env_key in CONTEXT_FIELDS:
            payload[key] = _resolve_context_value(record, key, env_key)
        if engine_error is not None:
            payload["engine_error"] = engine_error
        if error_category is not None:
            payload["error_category"] = self._serialize_enum(error_category)
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload)

    @staticmethod
    def _serialize_enum(value: Any) -> Any:
        if isinstance(value, Enum):
            return value.value
        return value

    @staticmethod
    def _resolve_engine_error(record: logging.LogRecord) -> Optional[dict[str, Any]]:
        engine_error = getattr(record, "engine_error", None)
        if engine_error is None:
            return None
        if isinstance(engine_error, dict):
            return engine_error
        to_dict = getattr(engine_error, "to_dict", None)
        if callable(to_dict):
            return to_dict()
        return {"detail": str(engine_error)}


class PlainTextFormatter(logging.Formatter):
    """Human-friendly formatter for local runs."""

    def format(self, record: logging.LogRecord) -> str:
        for key, env_key in CONTEXT_FIELDS:
            setattr(record, key, _resolve_context_value(record, key, env_key))
        return super().format(record)


def init_logging(
    *,
    level: Optional[int] = None,
    json_enabled: Optional[bool] = None,
    stream: Optional[Any] = None,
) -> None:
    """Install a single stream handler on the root logger."""

    if level is None:
        level_name = os.getenv("MESHPATCH_LOG_LEVEL", os.getenv("LOG_LEVEL", "INFO")).upper()
        level = logging.getLevelName(level_name)
        if isinstance(level, str):
            level = logging.INFO

    if json_enabled is None:
        json_enabled = _should_use_json(dict(os.environ))

    handler = logging.StreamHandler(stream if stream is not None else sys.stderr)
    if json_enabled:
        handler.setFormatter(JsonLogFormatter())
    else:
        handler.setFormatter(
            PlainTextFormatter(
                "%(asctime)s %(levelname)s %(name)s "
                "[asset_ref=%(asset_ref)s manifest_id=%(manifest_id)s request_id=%(request_id)s] "
                "%(message)s"
            )
        )

    logging.basicConfig(level=level, handlers=[handler], force=True)
