"""
Structured delta operations.

Ops form a tagged union over the ``kind`` field rather than a class
hierarchy. Consumers dispatch with ``dispatch_op(op, visitor)``, where the
visitor provides ``visit_mesh_delta``, ``visit_uv_layer`` and
``visit_blendshape``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional, Union

import numpy as np

from meshpatch.host.models import MAX_UV_CHANNELS, as_float_array

MESH_DELTA = "mesh_delta"
UV_LAYER = "uv_layer"
BLENDSHAPE = "blendshape"

SYNTHESIZED_FRAME_WEIGHT = 100.0
PASSTHROUGH_SCALE = 1.0


def _check_rows(array: np.ndarray, expected: int, label: str) -> None:
    if array.shape[0] != expected:
        raise ValueError(f"{label} has {array.shape[0]} rows, expected {expected}")


@dataclass
class MeshDeltaAsset:
    """Per-vertex position, normal and tangent (xyz) deltas for one mesh."""
    target_mesh_name: str
    vertex_count: int
    position_deltas: np.ndarray
    normal_deltas: np.ndarray
    tangent_deltas: np.ndarray

    def __post_init__(self) -> None:
        self.vertex_count = int(self.vertex_count)
        self.position_deltas = as_float_array(self.position_deltas, 3, name="position_deltas")
        self.normal_deltas = as_float_array(self.normal_deltas, 3, name="normal_deltas")
        self.tangent_deltas = as_float_array(self.tangent_deltas, 3, name="tangent_deltas")
        _check_rows(self.position_deltas, self.vertex_count, "position_deltas")
        _check_rows(self.normal_deltas, self.vertex_count, "normal_deltas")
        _check_rows(self.tangent_deltas, self.vertex_count, "tangent_deltas")

    def is_zero(self) -> bool:
        return not (
            np.any(self.position_deltas) or np.any(self.normal_deltas) or np.any(self.tangent_deltas)
        )


@dataclass
class UVLayerAsset:
    target_mesh_name: str
    channel: int
    uvs: np.ndarray

    def __post_init__(self) -> None:
        self.channel = int(self.channel)
        if not 0 <= self.channel < MAX_UV_CHANNELS:
            raise ValueError(f"UV channel must be in [0, {MAX_UV_CHANNELS}), got {self.channel}")
        self.uvs = as_float_array(self.uvs, 2, name="uvs")


@dataclass
class BlendshapeFrameAsset:
    """A single blendshape frame to add to ``target_mesh_name``."""
    target_mesh_name: str
    blendshape_name: str
    frame_weight: float
    delta_vertices: np.ndarray
    delta_normals: np.ndarray
    delta_tangents: np.ndarray

    def __post_init__(self) -> None:
        self.frame_weight = float(self.frame_weight)
        self.delta_vertices = as_float_array(self.delta_vertices, 3, name="delta_vertices")
        self.delta_normals = as_float_array(self.delta_normals, 3, name="delta_normals")
        self.delta_tangents = as_float_array(self.delta_tangents, 3, name="delta_tangents")
        _check_rows(self.delta_normals, self.delta_vertices.shape[0], "delta_normals")
        _check_rows(self.delta_tangents, self.delta_vertices.shape[0], "delta_tangents")


@dataclass
class MeshDeltaOp:
    target_mesh_name: str
    mesh_delta: MeshDeltaAsset
    kind: str = field(default=MESH_DELTA, init=False)


@dataclass
class UVLayerOp:
    target_mesh_name: str
    channel: int
    uv_layer: UVLayerAsset
    replace_existing: bool = False
    kind: str = field(default=UV_LAYER, init=False)


@dataclass
class BlendshapeOp:
    """Either a passthrough marker (``scale``) or a new frame (``synthesized_frame``).

    Passthrough ops are emitted for blendshapes present in both versions and
    always carry ``scale == 1.0``; they change nothing on apply.
    """
    # TODO: diff frame deltas of shared blendshapes instead of emitting a fixed scale.
    target_mesh_name: str
    blendshape_name: str
    scale: Optional[float] = None
    synthesized_frame: Optional[BlendshapeFrameAsset] = None
    kind: str = field(default=BLENDSHAPE, init=False)

    def __post_init__(self) -> None:
        if (self.scale is None) == (self.synthesized_frame is None):
            raise ValueError(
                f"BlendshapeOp '{self.blendshape_name}' needs exactly one of scale or synthesized_frame"
            )
        if self.scale is not None:
            self.scale = float(self.scale)

    @property
    def is_passthrough(self) -> bool:
        return self.synthesized_frame is None

    @classmethod
    def passthrough(cls, target_mesh_name: str, blendshape_name: str) -> "BlendshapeOp":
        return cls(target_mesh_name, blendshape_name, scale=PASSTHROUGH_SCALE)

    @classmethod
    def synthesized(cls, frame: BlendshapeFrameAsset) -> "BlendshapeOp":
        return cls(frame.target_mesh_name, frame.blendshape_name, synthesized_frame=frame)


Op = Union[MeshDeltaOp, UVLayerOp, BlendshapeOp]

_VISIT_METHODS = {
    MESH_DELTA: "visit_mesh_delta",
    UV_LAYER: "visit_uv_layer",
    BLENDSHAPE: "visit_blendshape",
}


def dispatch_op(op: Op, visitor: Any) -> Any:
    """Call the visitor method matching ``op.kind`` and return its result."""
    try:
        method_name = _VISIT_METHODS[op.kind]
    except KeyError:
        raise ValueError(f"Unknown op kind: {op.kind!r}") from None
    return getattr(visitor, method_name)(op)
