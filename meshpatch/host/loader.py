"""Asset loader capability and its bundled adapters."""

from __future__ import annotations

import io
import json
import logging
import zipfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import numpy as np

from meshpatch.error_handling import ErrorContext, ValidationError
from meshpatch.utils import write_bytes_atomic

from .models import (
    DEFAULT_AXIS,
    DEFAULT_UNITS,
    BlendshapeFrame,
    LoadedAsset,
    MaterialInfo,
    MeshData,
)

logger = logging.getLogger(__name__)

NPZ_FORMAT_VERSION = 1
_META_KEY = "__meta__"


class AssetLoader(ABC):
    """Host capability that reads mesh data out of an asset.

    Only ``load_meshes_by_name`` and ``load_materials`` are required; hosts
    without animation or unit metadata inherit the defaults.
    """

    @abstractmethod
    def load_meshes_by_name(self, asset_ref: str) -> Dict[str, MeshData]:
        """Return every mesh of the asset keyed by mesh name."""

    @abstractmethod
    def load_materials(self, asset_ref: str) -> List[MaterialInfo]:
        """Return the materials referenced by the asset."""

    def load_animation_clip_names(self, asset_ref: str) -> List[str]:
        return []

    def load_units_and_axis(self, asset_ref: str) -> Tuple[str, str]:
        return DEFAULT_UNITS, DEFAULT_AXIS

    def load_asset(self, asset_ref: str) -> LoadedAsset:
        units, axis = self.load_units_and_axis(asset_ref)
        return LoadedAsset(
            asset_ref=asset_ref,
            meshes=dict(self.load_meshes_by_name(asset_ref)),
            materials=list(self.load_materials(asset_ref)),
            animation_clip_names=list(self.load_animation_clip_names(asset_ref)),
            units=units,
            axis=axis,
        )


class InMemoryAssetLoader(AssetLoader):
    """Serves assets registered in a dict; used by tests and embedding hosts."""

    def __init__(self, assets: Optional[Dict[str, LoadedAsset]] = None) -> None:
        self._assets: Dict[str, LoadedAsset] = dict(assets or {})

    def register(self, asset: LoadedAsset) -> None:
        self._assets[asset.asset_ref] = asset

    def _get(self, asset_ref: str) -> LoadedAsset:
        try:
            return self._assets[asset_ref]
        except KeyError:
            raise ValidationError(
                f"Unknown asset: {asset_ref}",
                context=ErrorContext(asset_ref=asset_ref, step="load_asset"),
            ) from None

    def load_meshes_by_name(self, asset_ref: str) -> Dict[str, MeshData]:
        return {name: mesh.copy() for name, mesh in self._get(asset_ref).meshes.items()}

    def load_materials(self, asset_ref: str) -> List[MaterialInfo]:
        return list(self._get(asset_ref).materials)

    def load_animation_clip_names(self, asset_ref: str) -> List[str]:
        return list(self._get(asset_ref).animation_clip_names)

    def load_units_and_axis(self, asset_ref: str) -> Tuple[str, str]:
        asset = self._get(asset_ref)
        return asset.units, asset.axis


def _mesh_key(index: int, suffix: str) -> str:
    return f"m{index}_{suffix}"


def _frame_key(mesh_index: int, shape_index: int, frame_index: int, suffix: str) -> str:
    return f"m{mesh_index}_bs{shape_index}_f{frame_index}_{suffix}"


def save_asset_npz(asset: LoadedAsset, path: Path) -> Path:
    """Write ``asset`` as a single ``.npz`` archive the ``NpzAssetLoader`` reads.

    Arrays are stored under index-based keys; names and scalar metadata live
    in a JSON document under ``__meta__``.
    """
    path = Path(path)
    arrays: Dict[str, np.ndarray] = {}
    mesh_meta: List[Dict[str, Any]] = []
    for mesh_index, name in enumerate(sorted(asset.meshes)):
        mesh = asset.meshes[name]
        arrays[_mesh_key(mesh_index, "vertices")] = mesh.vertices
        if mesh.normals is not None:
            arrays[_mesh_key(mesh_index, "normals")] = mesh.normals
        if mesh.tangents is not None:
            arrays[_mesh_key(mesh_index, "tangents")] = mesh.tangents
        for channel, uv in sorted(mesh.uvs.items()):
            arrays[_mesh_key(mesh_index, f"uv{channel}")] = uv

        shapes: List[Dict[str, Any]] = []
        for shape_index, shape_name in enumerate(sorted(mesh.blendshapes)):
            frames_meta = []
            for frame_index, frame in enumerate(mesh.blendshapes[shape_name]):
                arrays[_frame_key(mesh_index, shape_index, frame_index, "vertices")] = frame.delta_vertices
                if frame.delta_normals is not None:
                    arrays[_frame_key(mesh_index, shape_index, frame_index, "normals")] = frame.delta_normals
                if frame.delta_tangents is not None:
                    arrays[_frame_key(mesh_index, shape_index, frame_index, "tangents")] = frame.delta_tangents
                frames_meta.append({
                    "weight": frame.weight,
                    "has_normals": frame.delta_normals is not None,
                    "has_tangents": frame.delta_tangents is not None,
                })
            shapes.append({"name": shape_name, "frames": frames_meta})

        mesh_meta.append({
            "name": name,
            "sub_mesh_count": mesh.sub_mesh_count,
            "has_normals": mesh.normals is not None,
            "has_tangents": mesh.tangents is not None,
            "uv_channels": sorted(mesh.uvs),
            "blendshapes": shapes,
        })

    meta = {
        "format_version": NPZ_FORMAT_VERSION,
        "units": asset.units,
        "axis": asset.axis,
        "materials": [material.to_dict() for material in asset.materials],
        "animation_clip_names": list(asset.animation_clip_names),
        "meshes": mesh_meta,
    }
    arrays[_META_KEY] = np.array(json.dumps(meta))

    buffer = io.BytesIO()
    np.savez_compressed(buffer, **arrays)
    write_bytes_atomic(path, buffer.getvalue())
    return path


class NpzAssetLoader(AssetLoader):
    """Reads assets written by ``save_asset_npz``; ``asset_ref`` is the file path."""

    def __init__(self) -> None:
        self._cache: Dict[Tuple[str, int, int], LoadedAsset] = {}

    def _read(self, asset_ref: str) -> LoadedAsset:
        path = Path(asset_ref)
        context = ErrorContext(asset_ref=asset_ref, step="load_asset")
        try:
            stat = path.stat()
        except OSError as e:
            raise ValidationError(f"Asset not readable: {asset_ref}", context=context, cause=e) from e

        cache_key = (str(path.resolve()), stat.st_mtime_ns, stat.st_size)
        cached = self._cache.get(cache_key)
        if cached is not None:
            return cached

        try:
            with np.load(path, allow_pickle=False) as data:
                meta = json.loads(str(data[_META_KEY]))
                asset = self._decode(asset_ref, meta, data)
        except ValidationError:
            raise
        except (OSError, EOFError, zipfile.BadZipFile, KeyError, ValueError, TypeError) as e:
            raise ValidationError(
                f"Malformed asset archive {asset_ref}: {e}",
                context=context,
                cause=e,
            ) from e

        self._cache.clear()
        self._cache[cache_key] = asset
        return asset

    @staticmethod
    def _decode(asset_ref: str, meta: Dict[str, Any], data: Any) -> LoadedAsset:
        version = meta.get("format_version")
        if version != NPZ_FORMAT_VERSION:
            raise ValidationError(
                f"Unsupported asset archive version {version!r} in {asset_ref}",
                context=ErrorContext(asset_ref=asset_ref, step="load_asset"),
            )

        meshes: Dict[str, MeshData] = {}
        for mesh_index, entry in enumerate(meta.get("meshes", [])):
            blendshapes: Dict[str, List[BlendshapeFrame]] = {}
            for shape_index, shape in enumerate(entry.get("blendshapes", [])):
                frames = []
                for frame_index, frame_meta in enumerate(shape.get("frames", [])):
                    frames.append(BlendshapeFrame(
                        weight=frame_meta["weight"],
                        delta_vertices=data[_frame_key(mesh_index, shape_index, frame_index, "vertices")],
                        delta_normals=(
                            data[_frame_key(mesh_index, shape_index, frame_index, "normals")]
                            if frame_meta.get("has_normals") else None
                        ),
                        delta_tangents=(
                            data[_frame_key(mesh_index, shape_index, frame_index, "tangents")]
                            if frame_meta.get("has_tangents") else None
                        ),
                    ))
                blendshapes[shape["name"]] = frames

            meshes[entry["name"]] = MeshData(
                name=entry["name"],
                vertices=data[_mesh_key(mesh_index, "vertices")],
                normals=data[_mesh_key(mesh_index, "normals")] if entry.get("has_normals") else None,
                tangents=data[_mesh_key(mesh_index, "tangents")] if entry.get("has_tangents") else None,
                uvs={int(ch): data[_mesh_key(mesh_index, f"uv{ch}")] for ch in entry.get("uv_channels", [])},
                sub_mesh_count=entry.get("sub_mesh_count", 1),
                blendshapes=blendshapes,
            )

        return LoadedAsset(
            asset_ref=asset_ref,
            meshes=meshes,
            materials=[MaterialInfo.from_dict(m) for m in meta.get("materials", [])],
            animation_clip_names=list(meta.get("animation_clip_names", [])),
            units=meta.get("units", DEFAULT_UNITS),
            axis=meta.get("axis", DEFAULT_AXIS),
        )

    def load_meshes_by_name(self, asset_ref: str) -> Dict[str, MeshData]:
        return {name: mesh.copy() for name, mesh in self._read(asset_ref).meshes.items()}

    def load_materials(self, asset_ref: str) -> List[MaterialInfo]:
        return list(self._read(asset_ref).materials)

    def load_animation_clip_names(self, asset_ref: str) -> List[str]:
        return list(self._read(asset_ref).animation_clip_names)

    def load_units_and_axis(self, asset_ref: str) -> Tuple[str, str]:
        asset = self._read(asset_ref)
        return asset.units, asset.axis
