"""Patch packages: ops plus the policy and hints they were built under.

A package is staged as a directory::

    <staging>/<package_id>/package.json
    <staging>/<package_id>/MeshDelta_<mesh>.npz
    <staging>/<package_id>/UVLayer_ch<channel>_<mesh>.npz
    <staging>/<package_id>/Blendshape_<name>_<mesh>.npz

Side-cars are referenced from ``package.json`` by relative path. The whole
directory is assembled under a temporary name and renamed into place, and an
existing package directory is never rewritten.
"""

from __future__ import annotations

import hashlib
import io
import json
import logging
import os
import re
import shutil
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

import numpy as np
from pydantic import ValidationError as PydanticValidationError

from meshpatch.checksums import sha256_text
from meshpatch.correspondence import SeedAliases
from meshpatch.error_handling import ErrorContext, ValidationError
from meshpatch.utils import write_bytes_atomic, write_json_atomic
from meshpatch.validation.schemas import load_and_validate_patch_package

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
)

logger = logging.getLogger(__name__)

PACKAGE_FILENAME = "package.json"

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


@dataclass(frozen=True)
class Policy:
    """Diff strictness flags; the thresholds are carried for the host only."""
    strict_topology: bool = False
    strict_correspondence: bool = False
    auto_apply_threshold: float = 0.0
    review_threshold: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "strict_topology": self.strict_topology,
            "strict_correspondence": self.strict_correspondence,
            "auto_apply_threshold": self.auto_apply_threshold,
            "review_threshold": self.review_threshold,
        }

    @classmethod
    def from_dict(cls, payload: Optional[Dict[str, Any]]) -> "Policy":
        payload = payload or {}
        return cls(
            strict_topology=bool(payload.get("strict_topology", False)),
            strict_correspondence=bool(payload.get("strict_correspondence", False)),
            auto_apply_threshold=float(payload.get("auto_apply_threshold", 0.0)),
            review_threshold=float(payload.get("review_threshold", 0.0)),
        )


@dataclass(frozen=True)
class UIHints:
    friendly_name: str = ""
    category: str = ""
    thumbnail_path: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "friendly_name": self.friendly_name,
            "category": self.category,
            "thumbnail_path": self.thumbnail_path,
        }

    @classmethod
    def from_dict(cls, payload: Optional[Dict[str, Any]]) -> "UIHints":
        payload = payload or {}
        return cls(
            friendly_name=payload.get("friendly_name", "") or "",
            category=payload.get("category", "") or "",
            thumbnail_path=payload.get("thumbnail_path"),
        )


@dataclass
class PatchPackage:
    package_id: str
    source_manifest_id: str
    modified_manifest_id: str
    policy: Policy = field(default_factory=Policy)
    ui_hints: UIHints = field(default_factory=UIHints)
    seed_aliases: SeedAliases = field(default_factory=SeedAliases)
    ops: List[Op] = field(default_factory=list)

    def ops_of_kind(self, kind: str) -> List[Op]:
        return [op for op in self.ops if op.kind == kind]


def compute_ops_digest(ops: List[Op]) -> str:
    """SHA-256 over op metadata and the raw bytes of every delta array."""
    hasher = hashlib.sha256()
    for op in ops:
        hasher.update(f"{op.kind}|{op.target_mesh_name}|".encode("utf-8"))
        if op.kind == MESH_DELTA:
            arrays = (op.mesh_delta.position_deltas, op.mesh_delta.normal_deltas, op.mesh_delta.tangent_deltas)
        elif op.kind == UV_LAYER:
            hasher.update(f"{op.channel}|{op.replace_existing}|".encode("utf-8"))
            arrays = (op.uv_layer.uvs,)
        else:
            hasher.update(f"{op.blendshape_name}|{op.scale}|".encode("utf-8"))
            frame = op.synthesized_frame
            arrays = () if frame is None else (frame.delta_vertices, frame.delta_normals, frame.delta_tangents)
            if frame is not None:
                hasher.update(f"{frame.frame_weight}|".encode("utf-8"))
        for array in arrays:
            hasher.update(np.ascontiguousarray(array, dtype=np.float32).tobytes())
    return hasher.hexdigest()


def compute_package_id(
    source_manifest_id: str,
    modified_manifest_id: str,
    policy: Policy,
    seed_aliases: SeedAliases,
    ui_hints: UIHints,
    ops: Optional[List[Op]] = None,
) -> str:
    """Content address of a package: the same inputs always stage to the same directory."""
    payload = {
        "source_manifest_id": source_manifest_id,
        "modified_manifest_id": modified_manifest_id,
        "policy": policy.to_dict(),
        "seed_aliases": seed_aliases.to_dict(),
        "ui_hints": ui_hints.to_dict(),
        "ops_digest": compute_ops_digest(ops or []),
    }
    return sha256_text(json.dumps(payload, sort_keys=True, separators=(",", ":")))


def _safe_name(name: str) -> str:
    cleaned = _UNSAFE_CHARS.sub("_", name).strip("._")
    return cleaned or "unnamed"


def sidecar_filename(op: Op) -> str:
    if op.kind == MESH_DELTA:
        return f"MeshDelta_{_safe_name(op.target_mesh_name)}.npz"
    if op.kind == UV_LAYER:
        return f"UVLayer_ch{op.channel}_{_safe_name(op.target_mesh_name)}.npz"
    if op.kind == BLENDSHAPE:
        return f"Blendshape_{_safe_name(op.blendshape_name)}_{_safe_name(op.target_mesh_name)}.npz"
    raise ValueError(f"Unknown op kind: {op.kind!r}")


def _unique_filename(name: str, used: set) -> str:
    candidate = name
    counter = 1
    stem, suffix = os.path.splitext(name)
    while candidate in used:
        candidate = f"{stem}_{counter}{suffix}"
        counter += 1
    used.add(candidate)
    return candidate


def _npz_bytes(**arrays: np.ndarray) -> bytes:
    buffer = io.BytesIO()
    np.savez_compressed(buffer, **arrays)
    return buffer.getvalue()


def _write_sidecar(directory: Path, filename: str, op: Op) -> Optional[Dict[str, Any]]:
    """Write the side-car for ``op`` and return its descriptor reference."""
    path = directory / filename
    if op.kind == MESH_DELTA:
        delta = op.mesh_delta
        write_bytes_atomic(path, _npz_bytes(
            position_deltas=delta.position_deltas,
            normal_deltas=delta.normal_deltas,
            tangent_deltas=delta.tangent_deltas,
        ))
        return {"path": filename, "target_mesh_name": delta.target_mesh_name, "vertex_count": delta.vertex_count}
    if op.kind == UV_LAYER:
        layer = op.uv_layer
        write_bytes_atomic(path, _npz_bytes(uvs=layer.uvs))
        return {"path": filename, "target_mesh_name": layer.target_mesh_name, "channel": layer.channel}
    frame = op.synthesized_frame
    if frame is None:
        return None
    write_bytes_atomic(path, _npz_bytes(
        delta_vertices=frame.delta_vertices,
        delta_normals=frame.delta_normals,
        delta_tangents=frame.delta_tangents,
    ))
    return {
        "path": filename,
        "target_mesh_name": frame.target_mesh_name,
        "blendshape_name": frame.blendshape_name,
        "frame_weight": frame.frame_weight,
    }


def _op_to_dict(op: Op, ref: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    if op.kind == MESH_DELTA:
        return {"kind": op.kind, "target_mesh_name": op.target_mesh_name, "mesh_delta": ref}
    if op.kind == UV_LAYER:
        return {
            "kind": op.kind,
            "target_mesh_name": op.target_mesh_name,
            "channel": op.channel,
            "uv_layer": ref,
            "replace_existing": op.replace_existing,
        }
    return {
        "kind": op.kind,
        "target_mesh_name": op.target_mesh_name,
        "blendshape_name": op.blendshape_name,
        "scale": op.scale,
        "synthesized_frame": ref,
    }


def _write_package_files(package: PatchPackage, directory: Path) -> List[str]:
    used: set = set()
    op_entries = []
    sidecars = []
    for op in package.ops:
        ref = None
        if op.kind != BLENDSHAPE or not op.is_passthrough:
            filename = _unique_filename(sidecar_filename(op), used)
            ref = _write_sidecar(directory, filename, op)
            sidecars.append(filename)
        op_entries.append(_op_to_dict(op, ref))

    descriptor = {
        "package_id": package.package_id,
        "source_manifest_id": package.source_manifest_id,
        "modified_manifest_id": package.modified_manifest_id,
        "policy": package.policy.to_dict(),
        "ui_hints": package.ui_hints.to_dict(),
        "seed_aliases": package.seed_aliases.to_dict(),
        "ops": op_entries,
    }
    write_json_atomic(directory / PACKAGE_FILENAME, descriptor)
    return sidecars


def save_patch_package(package: PatchPackage, staging_dir: Union[str, Path]) -> Tuple[Path, List[Path]]:
    """
    Stage ``package`` under ``staging_dir/<package_id>/``.

    Returns:
        The package directory and the side-car paths inside it. When the
        package is already staged the existing files are returned untouched.
    """
    staging_dir = Path(staging_dir)
    staging_dir.mkdir(parents=True, exist_ok=True)
    package_dir = staging_dir / package.package_id

    if (package_dir / PACKAGE_FILENAME).exists():
        logger.info("Patch package %s already staged", package.package_id)
        return package_dir, _existing_sidecars(package_dir)

    tmp_dir = Path(tempfile.mkdtemp(prefix=f".{package.package_id[:16]}.", suffix=".partial", dir=staging_dir))
    try:
        sidecars = _write_package_files(package, tmp_dir)
        try:
            os.rename(tmp_dir, package_dir)
        except OSError:
            if not (package_dir / PACKAGE_FILENAME).exists():
                raise
            # Another writer staged the same content first.
            logger.info("Patch package %s staged concurrently", package.package_id)
            return package_dir, _existing_sidecars(package_dir)
    finally:
        if tmp_dir.exists():
            shutil.rmtree(tmp_dir, ignore_errors=True)

    logger.info(
        "Staged patch package %s with %d ops",
        package.package_id,
        len(package.ops),
        extra={"manifest_id": package.source_manifest_id},
    )
    return package_dir, [package_dir / name for name in sidecars]


def _existing_sidecars(package_dir: Path) -> List[Path]:
    return sorted(package_dir.glob("*.npz"))


def _load_npz(path: Path, *keys: str) -> Dict[str, np.ndarray]:
    with np.load(path, allow_pickle=False) as data:
        return {key: np.asarray(data[key]) for key in keys}


def load_patch_package(path: Union[str, Path]) -> PatchPackage:
    """
    Read a staged package back from its directory or ``package.json``.

    Raises:
        ValidationError: If the descriptor or a side-car is missing or malformed.
    """
    path = Path(path)
    descriptor_path = path / PACKAGE_FILENAME if path.is_dir() else path
    package_dir = descriptor_path.parent
    context = ErrorContext(step="load_patch_package", additional={"path": str(descriptor_path)})

    try:
        schema = load_and_validate_patch_package(descriptor_path)
    except FileNotFoundError as e:
        raise ValidationError(f"Patch package not found: {descriptor_path}", context=context, cause=e) from e
    except (json.JSONDecodeError, PydanticValidationError) as e:
        raise ValidationError(f"Invalid patch package descriptor: {e}", context=context, cause=e) from e

    ops: List[Op] = []
    try:
        for entry in schema.ops:
            if entry.kind == MESH_DELTA:
                ref = entry.mesh_delta
                arrays = _load_npz(package_dir / ref.path, "position_deltas", "normal_deltas", "tangent_deltas")
                ops.append(MeshDeltaOp(
                    target_mesh_name=entry.target_mesh_name,
                    mesh_delta=MeshDeltaAsset(
                        target_mesh_name=ref.target_mesh_name,
                        vertex_count=ref.vertex_count,
                        **arrays,
                    ),
                ))
            elif entry.kind == UV_LAYER:
                ref = entry.uv_layer
                arrays = _load_npz(package_dir / ref.path, "uvs")
                ops.append(UVLayerOp(
                    target_mesh_name=entry.target_mesh_name,
                    channel=entry.channel,
                    uv_layer=UVLayerAsset(ref.target_mesh_name, ref.channel, arrays["uvs"]),
                    replace_existing=entry.replace_existing,
                ))
            elif entry.synthesized_frame is not None:
                ref = entry.synthesized_frame
                arrays = _load_npz(package_dir / ref.path, "delta_vertices", "delta_normals", "delta_tangents")
                ops.append(BlendshapeOp.synthesized(BlendshapeFrameAsset(
                    target_mesh_name=ref.target_mesh_name,
                    blendshape_name=ref.blendshape_name,
                    frame_weight=ref.frame_weight,
                    **arrays,
                )))
            else:
                ops.append(BlendshapeOp(
                    target_mesh_name=entry.target_mesh_name,
                    blendshape_name=entry.blendshape_name,
                    scale=entry.scale,
                ))
    except (OSError, KeyError, ValueError) as e:
        raise ValidationError(f"Invalid patch package side-car: {e}", context=context, cause=e) from e

    return PatchPackage(
        package_id=schema.package_id,
        source_manifest_id=schema.source_manifest_id,
        modified_manifest_id=schema.modified_manifest_id,
        policy=Policy.from_dict(schema.policy.model_dump()),
        ui_hints=UIHints.from_dict(schema.ui_hints.model_dump()),
        seed_aliases=SeedAliases.from_dict(schema.seed_aliases.model_dump(by_alias=True)),
        ops=ops,
    )
