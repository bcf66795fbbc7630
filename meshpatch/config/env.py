"""Environment variable parsing helpers for engine settings."""

from __future__ import annotations

from typing import Optional


_TRUTHY_VALUES = {"1", "true", "yes", "y", "on", "json"}
_FALSEY_VALUES = {"0", "false", "no", "n", "off", "plain", "text"}


def parse_bool_env(value: Optional[str], *, default: Optional[bool] = None) -> Optional[bool]:
    """Parse a boolean-like environment value.

    ``json``/``plain`` are accepted so the same helper can read log format
    switches such as ``LOG_FORMAT=plain``.

    Args:
        value: Raw environment variable value.
        default: Returned when the value is unset or not recognized.
    """
    if value is None:
        return default
    normalized = str(value).strip().lower()
    if normalized in _TRUTHY_VALUES:
        return True
    if normalized in _FALSEY_VALUES:
        return False
    return default
