"""
Pydantic schemas for engine configuration and on-disk descriptors.

Every JSON document the engine reads back (manifests, patch packages,
derived-asset descriptors) and the layered engine configuration are checked
here before they are turned into the engine's dataclasses.
"""

from __future__ import annotations

import json
import re
from enum import Enum
from pathlib import Path
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from meshpatch.config.env import parse_bool_env

_SHA256_PATTERN = re.compile(r"^[0-9a-f]{64}$")

MAX_UV_CHANNELS = 8


# ============================================================================
# Engine Configuration
# ============================================================================

class IntegrityMode(str, Enum):
    """How a content-hash or manifest-id mismatch is treated at apply time."""
    STRICT = "strict"
    WARN = "warn"


class DiffBackend(str, Enum):
    """Available binary diff routines."""
    BSDIFF4 = "bsdiff4"
    HDIFFPATCH = "hdiffpatch"


class EngineConfigSchema(BaseModel):
    """Validated engine configuration.

    Values may arrive as strings from ``MESHPATCH_*`` environment variables,
    so booleans and numbers are coerced in ``before`` validators.
    """
    model_config = ConfigDict(extra="forbid")

    manifest_cache_dir: Path = Path(".meshpatch/manifests")
    staging_dir: Path = Path(".meshpatch/staging")
    output_dir: Path = Path(".meshpatch/derived")
    integrity_mode: IntegrityMode = IntegrityMode.STRICT
    diff_backend: DiffBackend = DiffBackend.BSDIFF4
    hdiffz_path: str = "hdiffz"
    hpatchz_path: str = "hpatchz"
    diff_options: str = "-m-6 -SD -c-zstd-21-24 -d"
    process_timeout_s: float = 300.0
    poll_interval_s: float = 0.1
    progress_interval_s: float = 5.0
    strict_topology: bool = False
    strict_correspondence: bool = False
    verify_target_hash: bool = True

    @field_validator("manifest_cache_dir", "staging_dir", "output_dir", mode="before")
    @classmethod
    def _validate_paths(cls, value: Any, info) -> Path:
        if isinstance(value, Path):
            return value.expanduser()
        if isinstance(value, str):
            candidate = value.strip()
            if not candidate:
                raise ValueError(f"{info.field_name} must be a non-empty path.")
            return Path(candidate).expanduser()
        raise ValueError(f"{info.field_name} must be a path-like value (got {value!r}).")

    @field_validator("integrity_mode", "diff_backend", mode="before")
    @classmethod
    def _normalize_choice(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip().lower()
        return value

    @field_validator("process_timeout_s", "poll_interval_s", "progress_interval_s", mode="before")
    @classmethod
    def _validate_positive_floats(cls, value: Any, info) -> float:
        if isinstance(value, bool):
            raise ValueError(f"{info.field_name} must be a number, not a boolean.")
        if isinstance(value, (int, float)):
            parsed = float(value)
        elif isinstance(value, str):
            try:
                parsed = float(value.strip())
            except ValueError as exc:
                raise ValueError(f"{info.field_name} must be a number (got {value!r}).") from exc
        else:
            raise ValueError(f"{info.field_name} must be a number (got {value!r}).")
        if parsed <= 0.0:
            raise ValueError(f"{info.field_name} must be > 0.")
        return parsed

    @field_validator("strict_topology", "strict_correspondence", "verify_target_hash", mode="before")
    @classmethod
    def _validate_bools(cls, value: Any, info) -> bool:
        if isinstance(value, bool):
            return value
        if isinstance(value, (int, float)) and value in (0, 1):
            return bool(value)
        if isinstance(value, str):
            parsed = parse_bool_env(value, default=None)
            if parsed is None:
                raise ValueError(f"{info.field_name} must be a boolean-like value (got {value!r}).")
            return parsed
        raise ValueError(f"{info.field_name} must be a boolean-like value (got {value!r}).")

    @model_validator(mode="after")
    def _check_intervals(self) -> "EngineConfigSchema":
        if self.poll_interval_s > self.process_timeout_s:
            raise ValueError("poll_interval_s must not exceed process_timeout_s.")
        return self


# ============================================================================
# Manifest Schema
# ============================================================================

def _check_sha256(value: str, field_name: str) -> str:
    if not _SHA256_PATTERN.match(value):
        raise ValueError(f"{field_name} must be a lowercase SHA-256 hex digest (got {value!r}).")
    return value


class MeshInfoSchema(BaseModel):
    name: str = Field(..., min_length=1)
    vertex_count: int = Field(..., ge=0)
    sub_mesh_count: int = Field(..., ge=0)
    uv_channel_count: int = Field(..., ge=0, le=MAX_UV_CHANNELS)


class MaterialInfoSchema(BaseModel):
    name: str = Field(..., min_length=1)
    shader_name: str = ""


class ManifestSchema(BaseModel):
    """Persisted manifest document."""
    manifest_id: str
    asset_ref: str = ""
    units: str = "meters"
    axis: str = "YUp"
    meshes: List[MeshInfoSchema] = Field(default_factory=list)
    materials: List[MaterialInfoSchema] = Field(default_factory=list)
    blendshape_names: List[str] = Field(default_factory=list)
    animation_clip_names: List[str] = Field(default_factory=list)

    @field_validator("manifest_id")
    @classmethod
    def validate_manifest_id(cls, v: str) -> str:
        return _check_sha256(v, "manifest_id")

    @field_validator("meshes")
    @classmethod
    def validate_unique_meshes(cls, v: List[MeshInfoSchema]) -> List[MeshInfoSchema]:
        names = [mesh.name for mesh in v]
        duplicates = {name for name in names if names.count(name) > 1}
        if duplicates:
            raise ValueError(f"Duplicate mesh names found: {sorted(duplicates)}")
        return v


# ============================================================================
# Patch Package Schemas
# ============================================================================

class PolicySchema(BaseModel):
    strict_topology: bool = False
    strict_correspondence: bool = False
    auto_apply_threshold: float = Field(0.0, ge=0.0, le=1.0)
    review_threshold: float = Field(0.0, ge=0.0, le=1.0)


class UIHintsSchema(BaseModel):
    friendly_name: str = ""
    category: str = ""
    thumbnail_path: Optional[str] = None


class StringPairSchema(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    from_name: str = Field(..., alias="from", min_length=1)
    to_name: str = Field(..., alias="to", min_length=1)


class SeedAliasesSchema(BaseModel):
    meshes: List[StringPairSchema] = Field(default_factory=list)
    materials: List[StringPairSchema] = Field(default_factory=list)
    blendshapes: List[StringPairSchema] = Field(default_factory=list)
    bones: List[StringPairSchema] = Field(default_factory=list)


class SidecarRefSchema(BaseModel):
    """Reference to a side-car ``.npz`` file, relative to the descriptor."""
    path: str = Field(..., min_length=1)
    target_mesh_name: str = Field(..., min_length=1)

    @field_validator("path")
    @classmethod
    def validate_relative(cls, v: str) -> str:
        candidate = Path(v)
        if candidate.is_absolute() or ".." in candidate.parts:
            raise ValueError(f"Side-car path must be relative to the package (got {v!r})")
        return v


class MeshDeltaRefSchema(SidecarRefSchema):
    vertex_count: int = Field(..., ge=0)


class UVLayerRefSchema(SidecarRefSchema):
    channel: int = Field(..., ge=0, lt=MAX_UV_CHANNELS)


class BlendshapeFrameRefSchema(SidecarRefSchema):
    blendshape_name: str = Field(..., min_length=1)
    frame_weight: float = 100.0


class MeshDeltaOpSchema(BaseModel):
    kind: Literal["mesh_delta"]
    target_mesh_name: str = Field(..., min_length=1)
    mesh_delta: MeshDeltaRefSchema


class UVLayerOpSchema(BaseModel):
    kind: Literal["uv_layer"]
    target_mesh_name: str = Field(..., min_length=1)
    channel: int = Field(..., ge=0, lt=MAX_UV_CHANNELS)
    uv_layer: UVLayerRefSchema
    replace_existing: bool = False

    @model_validator(mode="after")
    def validate_channel_matches(self) -> "UVLayerOpSchema":
        if self.uv_layer.channel != self.channel:
            raise ValueError(
                f"UV layer channel {self.uv_layer.channel} does not match op channel {self.channel}"
            )
        return self


class BlendshapeOpSchema(BaseModel):
    kind: Literal["blendshape"]
    target_mesh_name: str = Field(..., min_length=1)
    blendshape_name: str = Field(..., min_length=1)
    scale: Optional[float] = None
    synthesized_frame: Optional[BlendshapeFrameRefSchema] = None

    @model_validator(mode="after")
    def validate_exactly_one(self) -> "BlendshapeOpSchema":
        if (self.scale is None) == (self.synthesized_frame is None):
            raise ValueError(
                f"Blendshape op '{self.blendshape_name}' must carry exactly one of "
                "scale or synthesized_frame"
            )
        return self


OpSchema = Annotated[
    Union[MeshDeltaOpSchema, UVLayerOpSchema, BlendshapeOpSchema],
    Field(discriminator="kind"),
]


class PatchPackageSchema(BaseModel):
    """``package.json`` written into a staging entry."""
    package_id: str
    source_manifest_id: str
    modified_manifest_id: str
    policy: PolicySchema = Field(default_factory=PolicySchema)
    ui_hints: UIHintsSchema = Field(default_factory=UIHintsSchema)
    seed_aliases: SeedAliasesSchema = Field(default_factory=SeedAliasesSchema)
    ops: List[OpSchema] = Field(default_factory=list)

    @field_validator("package_id", "source_manifest_id", "modified_manifest_id")
    @classmethod
    def validate_digest(cls, v: str, info) -> str:
        return _check_sha256(v, info.field_name)


# ============================================================================
# Derived Asset Schema
# ============================================================================

class DerivedAssetSchema(BaseModel):
    """``<name>.derived.json`` written beside a binary diff artifact."""
    source_manifest_id: Optional[str] = None
    base_asset_identity: str = Field(..., min_length=1)
    base_asset_content_hash: Optional[str] = None
    target_content_hash: Optional[str] = None
    target_identity: Optional[str] = None
    diff_artifact_path: str = Field(..., min_length=1)
    diff_backend: DiffBackend = DiffBackend.BSDIFF4
    policy: PolicySchema = Field(default_factory=PolicySchema)
    ui_hints: UIHintsSchema = Field(default_factory=UIHintsSchema)
    embedded_original_metadata: Optional[str] = None

    @field_validator("source_manifest_id", "base_asset_content_hash", "target_content_hash")
    @classmethod
    def validate_optional_digest(cls, v: Optional[str], info) -> Optional[str]:
        if v is None:
            return v
        return _check_sha256(v, info.field_name)


# ============================================================================
# Utility Functions
# ============================================================================

def _read_json(path: Union[str, Path]) -> Dict[str, Any]:
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Descriptor not found: {path}")
    with open(path) as f:
        return json.load(f)


def load_and_validate_manifest(manifest_path: Union[str, Path]) -> ManifestSchema:
    """
    Load and validate a persisted manifest file.

    Raises:
        pydantic.ValidationError: If the manifest is invalid
        FileNotFoundError: If the file doesn't exist
    """
    return ManifestSchema.model_validate(_read_json(manifest_path))


def load_and_validate_patch_package(package_path: Union[str, Path]) -> PatchPackageSchema:
    """Load and validate a ``package.json`` descriptor."""
    return PatchPackageSchema.model_validate(_read_json(package_path))


def load_and_validate_derived_asset(descriptor_path: Union[str, Path]) -> DerivedAssetSchema:
    """Load and validate a ``.derived.json`` descriptor."""
    return DerivedAssetSchema.model_validate(_read_json(descriptor_path))
