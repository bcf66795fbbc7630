"""
meshpatch: non-destructive modification of 3D mesh assets.

Two strategies are offered over the same manifest/correspondence layer:
structured per-entity patch packages and whole-file binary derived assets.
``MeshPatchEngine`` is the entry point for orchestrators.
"""

from meshpatch.config import EngineConfig, load_engine_config
from meshpatch.engine import MeshPatchEngine
from meshpatch.error_handling import ErrorCategory, MeshPatchError, OperationResult

__version__ = "0.1.0"

__all__ = [
    "EngineConfig",
    "ErrorCategory",
    "MeshPatchEngine",
    "MeshPatchError",
    "OperationResult",
    "load_engine_config",
    "__version__",
]
