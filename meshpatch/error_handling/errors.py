"""
Exception hierarchy for the meshpatch delta engine.

Every failure the engine reports belongs to one category of the taxonomy
below, so orchestrators can decide retry-vs-abort per category:

- ValidationError: malformed or unloadable input asset
- CorrespondenceError: a required entity has no match under strict policy
- DiffToolError: the external diff/patch routine returned a failure code
- IntegrityError: content-hash or manifest-id mismatch at apply time
- ReconstructionError: non-finite geometry, missing or empty output
- ConfigurationError: invalid engine configuration
"""

from __future__ import annotations

import json
import os
import re
import traceback
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


class ErrorSeverity(str, Enum):
    """Severity levels for engine errors."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class ErrorCategory(str, Enum):
    """Top-level failure categories surfaced across the engine boundary."""
    VALIDATION = "validation"
    CORRESPONDENCE = "correspondence"
    DIFF_TOOL = "diff_tool"
    INTEGRITY = "integrity"
    RECONSTRUCTION = "reconstruction"
    CONFIGURATION = "configuration"
    UNKNOWN = "unknown"


class DiffFailureCategory(str, Enum):
    """Failure classes reported by the external diff/patch routine."""
    OPTIONS = "options"
    OPEN_READ = "open_read"
    OPEN_WRITE = "open_write"
    FILE_CLOSE = "file_close"
    FILE_READ = "file_read"
    FILE_WRITE = "file_write"
    MEMORY = "memory"
    DIFF_INTERNAL = "diff_internal"
    PATCH_INTERNAL = "patch_internal"
    CORRUPT_ARTIFACT = "corrupt_artifact"
    PATH_TYPE = "path_type"
    TIMEOUT = "timeout"
    TOOL_UNAVAILABLE = "tool_unavailable"
    UNKNOWN = "unknown"


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


@dataclass
class ErrorContext:
    """Where in the engine an error happened."""
    asset_ref: Optional[str] = None
    manifest_id: Optional[str] = None
    step: Optional[str] = None
    timestamp: str = field(default_factory=_utc_now)
    additional: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "asset_ref": self.asset_ref,
            "manifest_id": self.manifest_id,
            "step": self.step,
            "timestamp": self.timestamp,
            "additional": self.additional,
        }


_PATH_PATTERN = re.compile(r"(?:[A-Za-z]:\\|/)[^\s'\"]+")


def _debug_enabled() -> bool:
    return os.getenv("MESHPATCH_DEBUG", "0").strip().lower() in {"1", "true", "yes", "y", "on"}


class MeshPatchError(Exception):
    """
    Base exception for all engine errors.

    Carries structured information (category, severity, context) so that the
    engine facade can turn it into an inspectable result and the JSON log
    formatter can emit it without string parsing.
    """

    category_default = ErrorCategory.UNKNOWN

    def __init__(
        self,
        message: str,
        *,
        category: Optional[ErrorCategory] = None,
        severity: ErrorSeverity = ErrorSeverity.ERROR,
        retryable: bool = False,
        context: Optional[ErrorContext] = None,
        cause: Optional[BaseException] = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.category_default
        self.severity = severity
        self.retryable = retryable
        self.context = context or ErrorContext()
        self.cause = cause
        self.traceback_str = (
            "".join(traceback.format_exception(type(cause), cause, cause.__traceback__))
            if cause is not None and _debug_enabled()
            else None
        )

    def _sanitize(self, text: str) -> str:
        if not text or _debug_enabled():
            return text
        return _PATH_PATTERN.sub("<redacted-path>", text)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize for structured logs."""
        return {
            "error_type": self.__class__.__name__,
            "message": self._sanitize(self.message),
            "category": self.category.value,
            "severity": self.severity.value,
            "retryable": self.retryable,
            "context": self.context.to_dict(),
            "cause": self._sanitize(str(self.cause)) if self.cause else None,
            "traceback": self.traceback_str,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2)


class ValidationError(MeshPatchError):
    """Input asset is malformed or could not be loaded."""

    category_default = ErrorCategory.VALIDATION

    def __init__(self, message: str, issues: Optional[List[str]] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.issues = issues or []
        if self.issues:
            self.context.additional["issues"] = list(self.issues)


class CorrespondenceError(MeshPatchError):
    """A required entity has no correspondence under strict policy."""

    category_default = ErrorCategory.CORRESPONDENCE

    def __init__(
        self,
        message: str,
        entity_kind: str,
        unmatched: Optional[List[str]] = None,
        **kwargs,
    ):
        super().__init__(message, **kwargs)
        self.entity_kind = entity_kind
        self.unmatched = unmatched or []
        self.context.additional["entity_kind"] = entity_kind
        self.context.additional["unmatched"] = list(self.unmatched)


class DiffToolError(MeshPatchError):
    """The external diff/patch routine reported a failure.

    ``code`` is the raw result code of the routine (``None`` when the routine
    never produced one, e.g. on timeout) and ``diff_category`` the failure
    class it maps to.
    """

    category_default = ErrorCategory.DIFF_TOOL

    def __init__(
        self,
        message: str,
        diff_category: DiffFailureCategory,
        code: Optional[int] = None,
        operation: str = "diff",
        **kwargs,
    ):
        kwargs.setdefault(
            "retryable",
            diff_category in (DiffFailureCategory.MEMORY, DiffFailureCategory.TIMEOUT),
        )
        super().__init__(message, **kwargs)
        self.diff_category = diff_category
        self.code = code
        self.operation = operation
        self.context.additional["diff_category"] = diff_category.value
        self.context.additional["code"] = code
        self.context.additional["operation"] = operation


class IntegrityError(MeshPatchError):
    """Recorded and observed fingerprints of an asset disagree."""

    category_default = ErrorCategory.INTEGRITY

    def __init__(
        self,
        message: str,
        check: str,
        expected: Optional[str] = None,
        actual: Optional[str] = None,
        **kwargs,
    ):
        kwargs.setdefault("severity", ErrorSeverity.CRITICAL)
        super().__init__(message, **kwargs)
        self.check = check
        self.expected = expected
        self.actual = actual
        self.context.additional.update({"check": check, "expected": expected, "actual": actual})


class ReconstructionError(MeshPatchError):
    """Reconstructed output is unusable."""

    category_default = ErrorCategory.RECONSTRUCTION

    def __init__(self, message: str, mesh_name: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.mesh_name = mesh_name
        if mesh_name is not None:
            self.context.additional["mesh_name"] = mesh_name


class ConfigurationError(MeshPatchError):
    """Engine configuration is invalid."""

    category_default = ErrorCategory.CONFIGURATION

    def __init__(self, message: str, config_key: Optional[str] = None, **kwargs):
        kwargs.setdefault("severity", ErrorSeverity.CRITICAL)
        super().__init__(message, **kwargs)
        self.config_key = config_key
        self.context.additional["config_key"] = config_key
