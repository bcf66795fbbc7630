"""In-memory representation of a loaded 3D asset."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import numpy as np

MAX_UV_CHANNELS = 8
DEFAULT_UNITS = "meters"
DEFAULT_AXIS = "YUp"


def as_float_array(values: Any, width: int, *, name: str = "array") -> np.ndarray:
    """Coerce ``values`` to a contiguous ``float32`` array of shape ``(n, width)``."""
    array = np.asarray(values, dtype=np.float32)
    if array.size == 0:
        return np.zeros((0, width), dtype=np.float32)
    if array.ndim != 2 or array.shape[1] != width:
        raise ValueError(f"{name} must have shape (n, {width}), got {array.shape}")
    return np.ascontiguousarray(array)


def _optional_array(values: Any, width: int, name: str) -> Optional[np.ndarray]:
    if values is None:
        return None
    return as_float_array(values, width, name=name)


@dataclass(frozen=True)
class MaterialInfo:
    """Material name plus the shader it is rendered with."""
    name: str
    shader_name: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "shader_name": self.shader_name}

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "MaterialInfo":
        return cls(name=payload["name"], shader_name=payload.get("shader_name", "") or "")


@dataclass
class BlendshapeFrame:
    """One frame of a blendshape: per-vertex deltas at ``weight``."""
    weight: float
    delta_vertices: np.ndarray
    delta_normals: Optional[np.ndarray] = None
    delta_tangents: Optional[np.ndarray] = None

    def __post_init__(self) -> None:
        self.weight = float(self.weight)
        self.delta_vertices = as_float_array(self.delta_vertices, 3, name="delta_vertices")
        self.delta_normals = _optional_array(self.delta_normals, 3, "delta_normals")
        self.delta_tangents = _optional_array(self.delta_tangents, 3, "delta_tangents")


@dataclass
class MeshData:
    """Geometry of one named mesh.

    ``tangents`` carry ``xyzw`` with ``w`` the handedness sign. ``uvs`` is
    keyed by channel index; a channel only counts as present when it has one
    entry per vertex.
    """
    name: str
    vertices: np.ndarray
    normals: Optional[np.ndarray] = None
    tangents: Optional[np.ndarray] = None
    uvs: Dict[int, np.ndarray] = field(default_factory=dict)
    sub_mesh_count: int = 1
    blendshapes: Dict[str, List[BlendshapeFrame]] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.vertices = as_float_array(self.vertices, 3, name=f"{self.name}.vertices")
        self.normals = _optional_array(self.normals, 3, f"{self.name}.normals")
        self.tangents = _optional_array(self.tangents, 4, f"{self.name}.tangents")
        self.uvs = {
            int(channel): as_float_array(uv, 2, name=f"{self.name}.uv{channel}")
            for channel, uv in self.uvs.items()
        }
        self.sub_mesh_count = int(self.sub_mesh_count)

    @property
    def vertex_count(self) -> int:
        return int(self.vertices.shape[0])

    def has_uv_channel(self, channel: int) -> bool:
        uv = self.uvs.get(channel)
        return uv is not None and uv.shape[0] == self.vertex_count

    def uv_channels(self) -> List[int]:
        return [ch for ch in range(MAX_UV_CHANNELS) if self.has_uv_channel(ch)]

    @property
    def uv_channel_count(self) -> int:
        return len(self.uv_channels())

    def copy(self) -> "MeshData":
        return MeshData(
            name=self.name,
            vertices=self.vertices.copy(),
            normals=None if self.normals is None else self.normals.copy(),
            tangents=None if self.tangents is None else self.tangents.copy(),
            uvs={ch: uv.copy() for ch, uv in self.uvs.items()},
            sub_mesh_count=self.sub_mesh_count,
            blendshapes={
                name: [
                    BlendshapeFrame(
                        weight=frame.weight,
                        delta_vertices=frame.delta_vertices.copy(),
                        delta_normals=None if frame.delta_normals is None else frame.delta_normals.copy(),
                        delta_tangents=None if frame.delta_tangents is None else frame.delta_tangents.copy(),
                    )
                    for frame in frames
                ]
                for name, frames in self.blendshapes.items()
            },
        )


@dataclass
class LoadedAsset:
    """Everything the engine reads from one asset version."""
    asset_ref: str
    meshes: Dict[str, MeshData] = field(default_factory=dict)
    materials: List[MaterialInfo] = field(default_factory=list)
    animation_clip_names: List[str] = field(default_factory=list)
    units: str = DEFAULT_UNITS
    axis: str = DEFAULT_AXIS
