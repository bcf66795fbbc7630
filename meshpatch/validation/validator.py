"""Post-reconstruction checks on meshes, delta payloads and output files."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Optional, Union

import numpy as np

from meshpatch.error_handling import ErrorContext, IntegrityError, ReconstructionError
from meshpatch.host.models import MeshData

logger = logging.getLogger(__name__)


def validate_mesh(mesh: MeshData) -> None:
    """Reject meshes whose vertex positions are not all finite."""
    finite = np.isfinite(mesh.vertices).all(axis=1)
    if finite.all():
        return
    index = int(np.flatnonzero(~finite)[0])
    raise ReconstructionError(
        f"Mesh '{mesh.name}' has a non-finite position at vertex {index}: {mesh.vertices[index].tolist()}",
        mesh_name=mesh.name,
        context=ErrorContext(step="validate_mesh", additional={"vertex_index": index}),
    )


def _check_length(array: Optional[np.ndarray], expected: int, label: str, mesh_name: str) -> None:
    if array is None:
        return
    if array.shape[0] != expected:
        raise ReconstructionError(
            f"{label} for mesh '{mesh_name}' has {array.shape[0]} entries, expected {expected}",
            mesh_name=mesh_name,
            context=ErrorContext(step="validate_delta"),
        )


def validate_mesh_delta(delta, vertex_count: int) -> None:
    """Every delta array of a ``MeshDeltaAsset`` must match ``vertex_count``."""
    if delta.vertex_count != vertex_count:
        raise ReconstructionError(
            f"Mesh delta for '{delta.target_mesh_name}' targets {delta.vertex_count} vertices, "
            f"mesh has {vertex_count}",
            mesh_name=delta.target_mesh_name,
            context=ErrorContext(step="validate_delta"),
        )
    _check_length(delta.position_deltas, vertex_count, "Position deltas", delta.target_mesh_name)
    _check_length(delta.normal_deltas, vertex_count, "Normal deltas", delta.target_mesh_name)
    _check_length(delta.tangent_deltas, vertex_count, "Tangent deltas", delta.target_mesh_name)


def validate_blendshape_frame(frame, vertex_count: int) -> None:
    """Every delta array of a ``BlendshapeFrameAsset`` must match ``vertex_count``."""
    label = f"Blendshape '{frame.blendshape_name}'"
    _check_length(frame.delta_vertices, vertex_count, f"{label} vertex deltas", frame.target_mesh_name)
    _check_length(frame.delta_normals, vertex_count, f"{label} normal deltas", frame.target_mesh_name)
    _check_length(frame.delta_tangents, vertex_count, f"{label} tangent deltas", frame.target_mesh_name)


def validate_output_file(path: Union[str, Path]) -> None:
    """A reconstructed file must exist and be non-empty."""
    path = Path(path)
    if not path.exists():
        raise ReconstructionError(
            f"Output file was not created: {path}",
            context=ErrorContext(step="validate_output", additional={"path": str(path)}),
        )
    if path.stat().st_size == 0:
        raise ReconstructionError(
            f"Output file is empty: {path}",
            context=ErrorContext(step="validate_output", additional={"path": str(path)}),
        )
    logger.debug("Output file %s verified (%d bytes)", path, path.stat().st_size)


INTEGRITY_STRICT = "strict"
INTEGRITY_WARN = "warn"


def check_integrity(
    check: str,
    expected: Optional[str],
    actual: Optional[str],
    *,
    integrity_mode: str = INTEGRITY_STRICT,
    context: Optional[ErrorContext] = None,
    warnings: Optional[List[str]] = None,
) -> bool:
    """Compare a recorded fingerprint with the observed one.

    Returns ``True`` on a match. A mismatch raises ``IntegrityError`` unless
    ``integrity_mode`` is ``"warn"``, in which case it is logged, appended
    to ``warnings`` and ``False`` is returned.
    """
    if expected == actual:
        return True
    message = f"{check} mismatch: expected {expected}, got {actual}"
    if integrity_mode == INTEGRITY_WARN:
        logger.warning(
            "%s; continuing (integrity_mode=warn)",
            message,
            extra={"asset_ref": context.asset_ref if context else None},
        )
        if warnings is not None:
            warnings.append(message)
        return False
    raise IntegrityError(message, check=check, expected=expected, actual=actual, context=context)
