"""Manifest records: an immutable fingerprint of one asset version."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple

from meshpatch.host.models import DEFAULT_AXIS, DEFAULT_UNITS, MaterialInfo


@dataclass(frozen=True)
class MeshInfo:
    """Topology summary of one mesh."""
    name: str
    vertex_count: int
    sub_mesh_count: int
    uv_channel_count: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "vertex_count": self.vertex_count,
            "sub_mesh_count": self.sub_mesh_count,
            "uv_channel_count": self.uv_channel_count,
        }

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "MeshInfo":
        return cls(
            name=payload["name"],
            vertex_count=int(payload["vertex_count"]),
            sub_mesh_count=int(payload["sub_mesh_count"]),
            uv_channel_count=int(payload["uv_channel_count"]),
        )


@dataclass(frozen=True)
class Manifest:
    """Deterministic fingerprint of an asset version.

    ``manifest_id`` depends only on the content fields; ``asset_ref`` records
    where the manifest was built from and never feeds the id.
    """
    manifest_id: str
    asset_ref: str
    units: str = DEFAULT_UNITS
    axis: str = DEFAULT_AXIS
    meshes: Tuple[MeshInfo, ...] = field(default_factory=tuple)
    materials: Tuple[MaterialInfo, ...] = field(default_factory=tuple)
    blendshape_names: Tuple[str, ...] = field(default_factory=tuple)
    animation_clip_names: Tuple[str, ...] = field(default_factory=tuple)

    def mesh(self, name: str) -> Optional[MeshInfo]:
        for info in self.meshes:
            if info.name == name:
                return info
        return None

    @property
    def mesh_names(self) -> Tuple[str, ...]:
        return tuple(info.name for info in self.meshes)

    @property
    def material_names(self) -> Tuple[str, ...]:
        return tuple(info.name for info in self.materials)

    def names_for(self, kind: str) -> Tuple[str, ...]:
        """Entity names for a correspondence kind."""
        if kind == "meshes":
            return self.mesh_names
        if kind == "materials":
            return self.material_names
        if kind == "blendshapes":
            return self.blendshape_names
        raise KeyError(f"Unknown entity kind: {kind}")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "manifest_id": self.manifest_id,
            "asset_ref": self.asset_ref,
            "units": self.units,
            "axis": self.axis,
            "meshes": [info.to_dict() for info in self.meshes],
            "materials": [info.to_dict() for info in self.materials],
            "blendshape_names": list(self.blendshape_names),
            "animation_clip_names": list(self.animation_clip_names),
        }

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "Manifest":
        return cls(
            manifest_id=payload["manifest_id"],
            asset_ref=payload.get("asset_ref", ""),
            units=payload.get("units", DEFAULT_UNITS),
            axis=payload.get("axis", DEFAULT_AXIS),
            meshes=tuple(MeshInfo.from_dict(m) for m in payload.get("meshes", [])),
            materials=tuple(MaterialInfo.from_dict(m) for m in payload.get("materials", [])),
            blendshape_names=tuple(payload.get("blendshape_names", [])),
            animation_clip_names=tuple(payload.get("animation_clip_names", [])),
        )
