"""Manifest builder: deterministic content fingerprints of asset versions."""

from __future__ import annotations

import logging
from typing import Iterable, List, Optional, Sequence

from meshpatch.checksums import sha256_text
from meshpatch.error_handling import ErrorContext, MeshPatchError, ValidationError
from meshpatch.host.loader import AssetLoader
from meshpatch.host.models import LoadedAsset, MaterialInfo

from .models import Manifest, MeshInfo

logger = logging.getLogger(__name__)

PREVIEW_CLIP_PREFIX = "__preview__"

_ESCAPES = str.maketrans({"\\": "\\\\", "|": "\\|", ",": "\\,", ":": "\\:"})


def _escape(value: str) -> str:
    return str(value).translate(_ESCAPES)


def _join(items: Iterable[str]) -> str:
    return ",".join(items)


def compute_manifest_id(
    meshes: Sequence[MeshInfo],
    materials: Sequence[MaterialInfo],
    blendshape_names: Sequence[str],
    animation_clip_names: Sequence[str],
    units: str,
    axis: str,
) -> str:
    """SHA-256 hex digest of the canonical summary of the given content.

    Inputs are sorted here as well, so the id does not depend on caller order.
    Separator characters inside names are escaped.
    """
    mesh_part = _join(
        f"{_escape(m.name)}:{m.vertex_count}:{m.sub_mesh_count}:{m.uv_channel_count}"
        for m in sorted(meshes, key=lambda m: m.name)
    )
    material_part = _join(
        f"{_escape(m.name)}:{_escape(m.shader_name)}"
        for m in sorted(materials, key=lambda m: (m.name, m.shader_name))
    )
    summary = "|".join([
        _escape(units),
        _escape(axis),
        mesh_part,
        material_part,
        _join(_escape(name) for name in sorted(blendshape_names)),
        _join(_escape(name) for name in sorted(animation_clip_names)),
    ])
    return sha256_text(summary)


def _visible_clip_names(names: Iterable[str]) -> List[str]:
    return sorted(
        name for name in names
        if name and not name.lower().startswith(PREVIEW_CLIP_PREFIX)
    )


def manifest_from_asset(asset: LoadedAsset) -> Manifest:
    """Build the manifest of an already loaded asset."""
    meshes = sorted(
        (
            MeshInfo(
                name=mesh.name,
                vertex_count=mesh.vertex_count,
                sub_mesh_count=mesh.sub_mesh_count,
                uv_channel_count=mesh.uv_channel_count,
            )
            for mesh in asset.meshes.values()
        ),
        key=lambda m: m.name,
    )
    materials = sorted(
        {(m.name, m.shader_name): m for m in asset.materials}.values(),
        key=lambda m: (m.name, m.shader_name),
    )
    blendshape_names = sorted({
        name for mesh in asset.meshes.values() for name in mesh.blendshapes
    })
    clip_names = _visible_clip_names(asset.animation_clip_names)

    manifest_id = compute_manifest_id(
        meshes, materials, blendshape_names, clip_names, asset.units, asset.axis
    )
    return Manifest(
        manifest_id=manifest_id,
        asset_ref=asset.asset_ref,
        units=asset.units,
        axis=asset.axis,
        meshes=tuple(meshes),
        materials=tuple(materials),
        blendshape_names=tuple(blendshape_names),
        animation_clip_names=tuple(clip_names),
    )


def build_manifest(asset_ref: str, loader: AssetLoader, store=None) -> Manifest:
    """
    Load ``asset_ref`` through ``loader`` and fingerprint it.

    When a ``ManifestStore`` is given the manifest is persisted (append-only).

    Raises:
        ValidationError: If the asset cannot be loaded. Nothing is persisted.
    """
    try:
        asset = loader.load_asset(asset_ref)
    except MeshPatchError:
        raise
    except Exception as e:
        raise ValidationError(
            f"Failed to load asset {asset_ref}: {e}",
            context=ErrorContext(asset_ref=asset_ref, step="build_manifest"),
            cause=e,
        ) from e

    manifest = manifest_from_asset(asset)
    logger.info(
        "Built manifest for %s: %d meshes, %d materials, %d blendshapes",
        asset_ref,
        len(manifest.meshes),
        len(manifest.materials),
        len(manifest.blendshape_names),
        extra={"asset_ref": asset_ref, "manifest_id": manifest.manifest_id},
    )
    if store is not None:
        store.persist(manifest)
    return manifest
