"""Whole-file binary delta: build a derived asset, and rebuild the target from it."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, List, Optional, Union

from meshpatch.checksums import compute_sha256
from meshpatch.error_handling import ErrorContext, ValidationError
from meshpatch.host.identity import IdentityStore, new_identity_token
from meshpatch.host.loader import AssetLoader
from meshpatch.manifest import build_manifest
from meshpatch.structured.package import Policy, UIHints
from meshpatch.utils import atomic_destination
from meshpatch.validation import INTEGRITY_STRICT, INTEGRITY_WARN, check_integrity, validate_output_file

from .codes import raise_for_diff_code, raise_for_patch_code
from .derived import DESCRIPTOR_SUFFIX, DerivedAsset, load_derived_asset, save_derived_asset
from .tools import Bsdiff4DiffTool, DiffTool, create_diff_tool

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]

ARTIFACT_SUFFIXES = {"bsdiff4": ".bsdiff", "hdiffpatch": ".hdiff"}

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


@dataclass
class DerivedBuildResult:
    descriptor: DerivedAsset
    descriptor_path: Path
    artifact_path: Path


@dataclass
class DerivedApplyResult:
    output_path: Path
    target_identity: Optional[str] = None
    warnings: List[str] = field(default_factory=list)


def _require_file(path: Path, role: str, context: ErrorContext) -> None:
    if not path.is_file():
        raise ValidationError(f"{role} not found: {path}", context=context)


def artifact_filename(name: str, tag: str, backend: str) -> str:
    safe = _UNSAFE_CHARS.sub("_", name).strip("._") or "asset"
    return f"DerivedAsset_{safe}_{tag}{ARTIFACT_SUFFIXES.get(backend, '.diff')}"


def build_derived_asset(
    base_path: PathLike,
    modified_path: PathLike,
    output_dir: PathLike,
    *,
    name: Optional[str] = None,
    tool: Optional[DiffTool] = None,
    loader: Optional[AssetLoader] = None,
    identity_store: Optional[IdentityStore] = None,
    policy: Optional[Policy] = None,
    ui_hints: Optional[UIHints] = None,
) -> DerivedBuildResult:
    """
    Diff ``modified_path`` against ``base_path`` into ``output_dir``.

    Writes the diff artifact and a ``<name>.derived.json`` descriptor, each
    through a temp file and an atomic rename. The base manifest id is only
    recorded when a ``loader`` is supplied.

    Raises:
        ValidationError: If an input is missing or cannot be fingerprinted.
        DiffToolError: If the diff routine fails.
    """
    base_path = Path(base_path)
    modified_path = Path(modified_path)
    output_dir = Path(output_dir)
    tool = tool or Bsdiff4DiffTool()
    name = name or modified_path.stem
    context = ErrorContext(asset_ref=str(modified_path), step="build_derived_asset")

    _require_file(base_path, "Base asset", context)
    _require_file(modified_path, "Modified asset", context)

    base_hash = compute_sha256(base_path)
    target_hash = compute_sha256(modified_path)
    source_manifest_id = None
    if loader is not None:
        source_manifest_id = build_manifest(str(base_path), loader).manifest_id
        context.manifest_id = source_manifest_id

    artifact_path = output_dir / artifact_filename(name, target_hash[:12], tool.name)
    with atomic_destination(artifact_path) as tmp_path:
        code = tool.create_diff(base_path, modified_path, tmp_path)
        raise_for_diff_code(code, context)
        validate_output_file(tmp_path)

    base_identity = None
    target_identity = None
    embedded = None
    if identity_store is not None:
        base_identity = identity_store.read_identity(str(base_path))
        target_identity = identity_store.read_identity(str(modified_path))
        embedded = identity_store.read_descriptor_for_embedding(str(modified_path))

    descriptor = DerivedAsset(
        base_asset_identity=base_identity or f"sha256:{base_hash}",
        diff_artifact_path=artifact_path.name,
        diff_backend=tool.name,
        source_manifest_id=source_manifest_id,
        base_asset_content_hash=base_hash,
        target_content_hash=target_hash,
        target_identity=target_identity,
        policy=policy or Policy(),
        ui_hints=ui_hints or UIHints(),
        embedded_original_metadata=embedded,
    )
    descriptor_path = save_derived_asset(descriptor, output_dir / f"{name}{DESCRIPTOR_SUFFIX}")
    logger.info(
        "Built derived asset %s (%d bytes diff)",
        descriptor_path.name,
        artifact_path.stat().st_size,
        extra={"asset_ref": str(modified_path), "manifest_id": source_manifest_id},
    )
    return DerivedBuildResult(descriptor=descriptor, descriptor_path=descriptor_path, artifact_path=artifact_path)


def apply_derived_asset(
    base_path: PathLike,
    descriptor_path: PathLike,
    out_path: PathLike,
    *,
    tool: Optional[DiffTool] = None,
    tool_factory: Callable[[str], DiffTool] = create_diff_tool,
    loader: Optional[AssetLoader] = None,
    identity_store: Optional[IdentityStore] = None,
    integrity_mode: str = INTEGRITY_STRICT,
    verify_target_hash: bool = True,
) -> DerivedApplyResult:
    """
    Rebuild the modified asset at ``out_path`` from ``base_path`` and a descriptor.

    Fingerprint mismatches raise ``IntegrityError`` unless ``integrity_mode``
    is ``"warn"``, in which case they are logged and returned as warnings.
    ``out_path`` is only ever replaced by a complete, verified file; any
    failure leaves no output behind.

    Raises:
        ValidationError: If the base, descriptor or artifact is missing.
        IntegrityError: On a base or target fingerprint mismatch.
        DiffToolError: If the patch routine fails.
        ReconstructionError: If the routine produced no usable output.
    """
    if integrity_mode not in (INTEGRITY_STRICT, INTEGRITY_WARN):
        raise ValueError(f"integrity_mode must be 'strict' or 'warn', got {integrity_mode!r}")

    base_path = Path(base_path)
    descriptor_path = Path(descriptor_path)
    out_path = Path(out_path)
    context = ErrorContext(asset_ref=str(base_path), step="apply_derived_asset")
    warnings: List[str] = []

    descriptor = load_derived_asset(descriptor_path)
    context.manifest_id = descriptor.source_manifest_id
    _require_file(base_path, "Base asset", context)
    artifact_path = descriptor_path.parent / descriptor.diff_artifact_path
    _require_file(artifact_path, "Diff artifact", context)

    if descriptor.base_asset_content_hash:
        check_integrity(
            "base_content_hash",
            descriptor.base_asset_content_hash,
            compute_sha256(base_path),
            integrity_mode=integrity_mode,
            context=context,
            warnings=warnings,
        )
    if loader is not None and descriptor.source_manifest_id:
        check_integrity(
            "source_manifest_id",
            descriptor.source_manifest_id,
            build_manifest(str(base_path), loader).manifest_id,
            integrity_mode=integrity_mode,
            context=context,
            warnings=warnings,
        )

    tool = tool or tool_factory(descriptor.diff_backend)
    with atomic_destination(out_path) as tmp_path:
        code = tool.apply_patch(base_path, artifact_path, tmp_path)
        raise_for_patch_code(code, context)
        validate_output_file(tmp_path)
        if verify_target_hash and descriptor.target_content_hash:
            check_integrity(
                "target_content_hash",
                descriptor.target_content_hash,
                compute_sha256(tmp_path),
                integrity_mode=integrity_mode,
                context=context,
                warnings=warnings,
            )

    target_identity = None
    if identity_store is not None:
        try:
            target_identity = _transfer_descriptor(base_path, out_path, descriptor, identity_store)
        except Exception:
            out_path.unlink(missing_ok=True)
            raise

    logger.info(
        "Reconstructed %s from %s",
        out_path.name,
        descriptor_path.name,
        extra={"asset_ref": str(base_path), "manifest_id": descriptor.source_manifest_id},
    )
    return DerivedApplyResult(output_path=out_path, target_identity=target_identity, warnings=warnings)


def _transfer_descriptor(
    base_path: Path,
    out_path: Path,
    descriptor: DerivedAsset,
    identity_store: IdentityStore,
) -> str:
    """Give the output descriptor metadata and its own identity token."""
    token = (
        descriptor.target_identity
        or identity_store.read_identity(str(out_path))
        or new_identity_token()
    )
    text = descriptor.embedded_original_metadata
    if text is None:
        text = identity_store.read_descriptor(str(base_path))
    if text is None:
        identity_store.write_identity(str(out_path), token)
    else:
        identity_store.write_descriptor(str(out_path), text, token)
    return token
