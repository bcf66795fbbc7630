"""Structured delta builder: typed per-entity ops between two asset versions."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Union

import numpy as np

from meshpatch.correspondence import CorrespondenceMap, CorrespondenceResult, SeedAliases, build_correspondence
from meshpatch.error_handling import ErrorContext, MeshPatchError, ValidationError
from meshpatch.host.models import MAX_UV_CHANNELS, LoadedAsset, MeshData
from meshpatch.manifest import Manifest, manifest_from_asset
from meshpatch.validation import validate_blendshape_frame, validate_mesh_delta

from .ops import (
    SYNTHESIZED_FRAME_WEIGHT,
    BlendshapeFrameAsset,
    BlendshapeOp,
    MeshDeltaAsset,
    MeshDeltaOp,
    Op,
    UVLayerAsset,
    UVLayerOp,
)
from .package import PatchPackage, Policy, UIHints, compute_package_id, save_patch_package

logger = logging.getLogger(__name__)


@dataclass
class TopologyMismatch:
    mesh_name: str
    base_vertex_count: int
    modified_vertex_count: int


@dataclass
class StructuredBuildResult:
    package: PatchPackage
    correspondence: CorrespondenceResult
    package_dir: Optional[Path] = None
    sidecar_paths: List[Path] = field(default_factory=list)
    skipped_meshes: List[str] = field(default_factory=list)
    topology_mismatches: List[TopologyMismatch] = field(default_factory=list)
    requires_binary_fallback: bool = False


def _vector_delta(modified: Optional[np.ndarray], base: Optional[np.ndarray], count: int) -> np.ndarray:
    """``modified - base`` over xyz.

    A channel missing from ``modified`` contributes zero deltas. A channel
    missing from ``base`` counts as zero, so the delta is the modified channel.
    """
    if modified is None:
        return np.zeros((count, 3), dtype=np.float32)
    if base is None:
        return np.asarray(modified[:, :3], dtype=np.float32).copy()
    return (modified[:, :3] - base[:, :3]).astype(np.float32)


def compute_mesh_delta(base: MeshData, modified: MeshData) -> MeshDeltaAsset:
    """Per-vertex deltas between meshes of equal vertex count."""
    if base.vertex_count != modified.vertex_count:
        raise ValueError(
            f"Vertex count mismatch for '{base.name}': {base.vertex_count} vs {modified.vertex_count}"
        )
    count = base.vertex_count
    delta = MeshDeltaAsset(
        target_mesh_name=base.name,
        vertex_count=count,
        position_deltas=_vector_delta(modified.vertices, base.vertices, count),
        normal_deltas=_vector_delta(modified.normals, base.normals, count),
        tangent_deltas=_vector_delta(modified.tangents, base.tangents, count),
    )
    validate_mesh_delta(delta, count)
    return delta


def _uv_ops(base: MeshData, modified: MeshData) -> List[Op]:
    ops: List[Op] = []
    for channel in range(MAX_UV_CHANNELS):
        if modified.has_uv_channel(channel) and not base.has_uv_channel(channel):
            ops.append(UVLayerOp(
                target_mesh_name=base.name,
                channel=channel,
                uv_layer=UVLayerAsset(base.name, channel, modified.uvs[channel].copy()),
                replace_existing=False,
            ))
    return ops


def synthesize_blendshape_frame(mesh_name: str, blendshape_name: str, modified: MeshData) -> BlendshapeFrameAsset:
    """Frame asset from the first frame of a blendshape that only exists in ``modified``."""
    frames = modified.blendshapes.get(blendshape_name) or []
    if not frames:
        raise ValueError(f"Blendshape '{blendshape_name}' on '{modified.name}' has no frames")
    first = frames[0]
    count = modified.vertex_count

    def _or_zero(values: Optional[np.ndarray]) -> np.ndarray:
        return np.zeros((count, 3), dtype=np.float32) if values is None else values.copy()

    frame = BlendshapeFrameAsset(
        target_mesh_name=mesh_name,
        blendshape_name=blendshape_name,
        frame_weight=SYNTHESIZED_FRAME_WEIGHT,
        delta_vertices=first.delta_vertices.copy(),
        delta_normals=_or_zero(first.delta_normals),
        delta_tangents=_or_zero(first.delta_tangents),
    )
    validate_blendshape_frame(frame, count)
    return frame


def _blendshape_ops(base: MeshData, modified: MeshData, cmap: CorrespondenceMap) -> List[Op]:
    inverse = cmap.inverse("blendshapes")
    ops: List[Op] = []
    for name in sorted(modified.blendshapes):
        base_name = name if name in base.blendshapes else inverse.get(name)
        if base_name is not None and base_name in base.blendshapes:
            ops.append(BlendshapeOp.passthrough(base.name, base_name))
        else:
            ops.append(BlendshapeOp.synthesized(synthesize_blendshape_frame(base.name, name, modified)))
    return ops


def build_structured_delta(
    base: LoadedAsset,
    modified: LoadedAsset,
    *,
    policy: Optional[Policy] = None,
    seeds: Optional[SeedAliases] = None,
    ui_hints: Optional[UIHints] = None,
    staging_dir: Optional[Union[str, Path]] = None,
    base_manifest: Optional[Manifest] = None,
    modified_manifest: Optional[Manifest] = None,
) -> StructuredBuildResult:
    """
    Diff two loaded assets into a ``PatchPackage``.

    Mesh pairs are visited in sorted base-name order. Pairs whose vertex
    counts differ never produce ops; under ``strict_topology`` they are
    skipped, otherwise the result is flagged ``requires_binary_fallback``.

    Raises:
        CorrespondenceError: Under ``strict_correspondence`` (see
            ``build_correspondence``).
        ValidationError: Under ``strict_topology``, when a mesh pair is
            malformed.
    """
    policy = policy or Policy()
    seeds = seeds or SeedAliases()
    ui_hints = ui_hints or UIHints()
    base_manifest = base_manifest or manifest_from_asset(base)
    modified_manifest = modified_manifest or manifest_from_asset(modified)

    correspondence = build_correspondence(
        base_manifest, modified_manifest, seeds, strict=policy.strict_correspondence
    )
    package = PatchPackage(
        package_id="",
        source_manifest_id=base_manifest.manifest_id,
        modified_manifest_id=modified_manifest.manifest_id,
        policy=policy,
        ui_hints=ui_hints,
        seed_aliases=seeds,
    )
    result = StructuredBuildResult(package=package, correspondence=correspondence)
    log_extra = {"asset_ref": base.asset_ref, "manifest_id": base_manifest.manifest_id}

    for base_name in sorted(correspondence.map.meshes):
        modified_name = correspondence.map.meshes[base_name]
        base_mesh = base.meshes[base_name]
        modified_mesh = modified.meshes[modified_name]

        if base_mesh.vertex_count != modified_mesh.vertex_count:
            result.topology_mismatches.append(
                TopologyMismatch(base_name, base_mesh.vertex_count, modified_mesh.vertex_count)
            )
            if policy.strict_topology:
                result.skipped_meshes.append(base_name)
                logger.warning(
                    "Skipping mesh %s: vertex count %d -> %d",
                    base_name, base_mesh.vertex_count, modified_mesh.vertex_count,
                    extra=log_extra,
                )
            else:
                result.requires_binary_fallback = True
                logger.warning(
                    "Mesh %s changed topology (%d -> %d); binary diff required",
                    base_name, base_mesh.vertex_count, modified_mesh.vertex_count,
                    extra=log_extra,
                )
            continue

        try:
            mesh_ops: List[Op] = [
                MeshDeltaOp(target_mesh_name=base_name, mesh_delta=compute_mesh_delta(base_mesh, modified_mesh))
            ]
            mesh_ops.extend(_uv_ops(base_mesh, modified_mesh))
            mesh_ops.extend(_blendshape_ops(base_mesh, modified_mesh, correspondence.map))
        except (ValueError, MeshPatchError) as e:
            if policy.strict_topology:
                raise ValidationError(
                    f"Malformed mesh pair {base_name} -> {modified_name}: {e}",
                    context=ErrorContext(
                        asset_ref=base.asset_ref,
                        manifest_id=base_manifest.manifest_id,
                        step="build_structured_delta",
                        additional={"mesh_name": base_name},
                    ),
                    cause=e,
                ) from e
            result.skipped_meshes.append(base_name)
            logger.warning("Skipping mesh %s: %s", base_name, e, extra=log_extra)
            continue

        package.ops.extend(mesh_ops)

    package.package_id = compute_package_id(
        base_manifest.manifest_id, modified_manifest.manifest_id, policy, seeds, ui_hints, package.ops
    )
    logger.info(
        "Structured delta %s: %d ops, %d skipped, %d topology mismatches",
        package.package_id[:12],
        len(package.ops),
        len(result.skipped_meshes),
        len(result.topology_mismatches),
        extra=log_extra,
    )

    if staging_dir is not None:
        result.package_dir, result.sidecar_paths = save_patch_package(package, staging_dir)
    return result
