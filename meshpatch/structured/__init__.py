"""Structured (per-entity) deltas: ops, packages, builder and applier."""

from .applier import StructuredApplyResult, apply_patch_package
from .builder import (
    StructuredBuildResult,
    TopologyMismatch,
    build_structured_delta,
    compute_mesh_delta,
    synthesize_blendshape_frame,
)
from .ops import (
    BLENDSHAPE,
    MESH_DELTA,
    UV_LAYER,
    BlendshapeFrameAsset,
    BlendshapeOp,
    MeshDeltaAsset,
    MeshDeltaOp,
    Op,
    UVLayerAsset,
    UVLayerOp,
    dispatch_op,
)
from .package import (
    PACKAGE_FILENAME,
    PatchPackage,
    Policy,
    UIHints,
    compute_package_id,
    load_patch_package,
    save_patch_package,
)

__all__ = [
    "StructuredApplyResult",
    "apply_patch_package",
    "StructuredBuildResult",
    "TopologyMismatch",
    "build_structured_delta",
    "compute_mesh_delta",
    "synthesize_blendshape_frame",
    "BLENDSHAPE",
    "MESH_DELTA",
    "UV_LAYER",
    "BlendshapeFrameAsset",
    "BlendshapeOp",
    "MeshDeltaAsset",
    "MeshDeltaOp",
    "Op",
    "UVLayerAsset",
    "UVLayerOp",
    "dispatch_op",
    "PACKAGE_FILENAME",
    "PatchPackage",
    "Policy",
    "UIHints",
    "compute_package_id",
    "load_patch_package",
    "save_patch_package",
]
