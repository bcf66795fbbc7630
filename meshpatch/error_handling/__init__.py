"""
meshpatch error handling.

Usage:
    from meshpatch.error_handling import IntegrityError, OperationResult

    result = engine.apply_binary(...)
    if not result.ok and result.category is ErrorCategory.INTEGRITY:
        ...
"""

from .errors import (
    ConfigurationError,
    CorrespondenceError,
    DiffFailureCategory,
    DiffToolError,
    ErrorCategory,
    ErrorContext,
    ErrorSeverity,
    IntegrityError,
    MeshPatchError,
    ReconstructionError,
    ValidationError,
)
from .result import OperationResult, Outcome

__all__ = [
    "ConfigurationError",
    "CorrespondenceError",
    "DiffFailureCategory",
    "DiffToolError",
    "ErrorCategory",
    "ErrorContext",
    "ErrorSeverity",
    "IntegrityError",
    "MeshPatchError",
    "ReconstructionError",
    "ValidationError",
    "OperationResult",
    "Outcome",
]
