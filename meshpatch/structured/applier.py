"""Structured patch applier: rebuilds modified meshes from base meshes plus ops."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Set

import numpy as np

from meshpatch.error_handling import ErrorContext, ReconstructionError
from meshpatch.host.models import BlendshapeFrame, MeshData
from meshpatch.validation import validate_blendshape_frame, validate_mesh, validate_mesh_delta

from .ops import BlendshapeOp, MeshDeltaOp, UVLayerOp, dispatch_op
from .package import PatchPackage

logger = logging.getLogger(__name__)


@dataclass
class StructuredApplyResult:
    meshes: Dict[str, MeshData]
    warnings: List[str] = field(default_factory=list)


class _ApplyVisitor:
    """Mutates copies of the base meshes; records which meshes were touched."""

    def __init__(self, meshes: Dict[str, MeshData]) -> None:
        self.meshes = meshes
        self.touched: Set[str] = set()

    def _target(self, name: str) -> MeshData:
        mesh = self.meshes.get(name)
        if mesh is None:
            raise ReconstructionError(
                f"Patch targets mesh '{name}' which is missing from the base asset",
                mesh_name=name,
                context=ErrorContext(step="apply_patch_package"),
            )
        return mesh

    def visit_mesh_delta(self, op: MeshDeltaOp) -> None:
        mesh = self._target(op.target_mesh_name)
        delta = op.mesh_delta
        validate_mesh_delta(delta, mesh.vertex_count)
        mesh.vertices = mesh.vertices + delta.position_deltas
        if mesh.normals is not None:
            mesh.normals = mesh.normals + delta.normal_deltas
        elif np.any(delta.normal_deltas):
            mesh.normals = delta.normal_deltas.copy()
        if mesh.tangents is not None:
            # w carries handedness and is kept from the base.
            tangents = mesh.tangents.copy()
            tangents[:, :3] += delta.tangent_deltas
            mesh.tangents = tangents
        elif np.any(delta.tangent_deltas):
            # No base handedness to keep; assume right-handed.
            w = np.ones((mesh.vertex_count, 1), dtype=np.float32)
            mesh.tangents = np.hstack([delta.tangent_deltas, w]).astype(np.float32)
        self.touched.add(mesh.name)

    def visit_uv_layer(self, op: UVLayerOp) -> None:
        mesh = self._target(op.target_mesh_name)
        uvs = op.uv_layer.uvs
        if uvs.shape[0] != mesh.vertex_count:
            raise ReconstructionError(
                f"UV layer {op.channel} for '{mesh.name}' has {uvs.shape[0]} entries, "
                f"mesh has {mesh.vertex_count}",
                mesh_name=mesh.name,
                context=ErrorContext(step="apply_patch_package"),
            )
        if mesh.has_uv_channel(op.channel) and not op.replace_existing:
            logger.info("UV channel %d already present on %s; leaving it", op.channel, mesh.name)
            return
        mesh.uvs[op.channel] = uvs.copy()
        self.touched.add(mesh.name)

    def visit_blendshape(self, op: BlendshapeOp) -> None:
        mesh = self._target(op.target_mesh_name)
        if op.is_passthrough:
            return
        frame = op.synthesized_frame
        validate_blendshape_frame(frame, mesh.vertex_count)
        frames = mesh.blendshapes.setdefault(frame.blendshape_name, [])
        frames.append(BlendshapeFrame(
            weight=frame.frame_weight,
            delta_vertices=frame.delta_vertices.copy(),
            delta_normals=frame.delta_normals.copy(),
            delta_tangents=frame.delta_tangents.copy(),
        ))
        self.touched.add(mesh.name)


def apply_patch_package(base_meshes: Mapping[str, MeshData], package: PatchPackage) -> Dict[str, MeshData]:
    """
    Apply every op of ``package`` to copies of ``base_meshes``.

    Meshes keep their base names. Every mesh an op changed is validated
    before the result is returned; the inputs are never mutated.

    Raises:
        ReconstructionError: If an op targets a missing mesh, a delta does
            not fit its mesh, or a reconstructed mesh is not finite.
    """
    meshes = {name: mesh.copy() for name, mesh in base_meshes.items()}
    visitor = _ApplyVisitor(meshes)
    for op in package.ops:
        dispatch_op(op, visitor)

    for name in sorted(visitor.touched):
        validate_mesh(meshes[name])

    logger.info(
        "Applied patch package %s: %d ops, %d meshes changed",
        package.package_id[:12],
        len(package.ops),
        len(visitor.touched),
        extra={"manifest_id": package.source_manifest_id},
    )
    return meshes
