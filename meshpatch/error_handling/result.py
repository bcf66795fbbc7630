"""Structured outcome returned across the engine boundary."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Generic, Optional, TypeVar

from .errors import DiffToolError, ErrorCategory, MeshPatchError

T = TypeVar("T")


class Outcome(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"


@dataclass
class OperationResult(Generic[T]):
    """Outcome + category + message, with the produced value on success.

    Orchestrators branch on ``category`` (and ``diff_category`` for diff
    tool failures) rather than catching exceptions.
    """
    outcome: Outcome
    message: str = ""
    value: Optional[T] = None
    category: Optional[ErrorCategory] = None
    error: Optional[MeshPatchError] = None

    @classmethod
    def success(cls, value: T, message: str = "") -> "OperationResult[T]":
        return cls(outcome=Outcome.SUCCESS, value=value, message=message)

    @classmethod
    def failure(cls, error: MeshPatchError) -> "OperationResult[T]":
        return cls(
            outcome=Outcome.FAILURE,
            message=error.message,
            category=error.category,
            error=error,
        )

    @property
    def ok(self) -> bool:
        return self.outcome is Outcome.SUCCESS

    @property
    def diff_category(self):
        if isinstance(self.error, DiffToolError):
            return self.error.diff_category
        return None

    def unwrap(self) -> T:
        """Return the value, re-raising the recorded error on failure."""
        if self.error is not None:
            raise self.error
        return self.value  # type: ignore[return-value]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "outcome": self.outcome.value,
            "message": self.message,
            "category": self.category.value if self.category else None,
            "diff_category": self.diff_category.value if self.diff_category else None,
            "error": self.error.to_dict() if self.error else None,
        }
