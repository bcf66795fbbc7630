"""
Engine facade.

Every public operation returns an ``OperationResult`` instead of raising:
``MeshPatchError`` subclasses are caught at this boundary, logged with their
structured payload and surfaced with their category. Anything else is a bug
and propagates.

Example:
    engine = MeshPatchEngine(loader=NpzAssetLoader())
    result = engine.build_binary("base.npz", "modified.npz")
    if not result.ok:
        print(result.category, result.message)
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Callable, List, Optional, TypeVar, Union

from meshpatch.binary import (
    DerivedApplyResult,
    DerivedBuildResult,
    DiffTool,
    apply_derived_asset,
    build_derived_asset,
    create_diff_tool,
)
from meshpatch.config import EngineConfig, load_engine_config
from meshpatch.correspondence import CorrespondenceResult, SeedAliases, build_correspondence
from meshpatch.error_handling import ErrorContext, MeshPatchError, OperationResult, ValidationError
from meshpatch.host import AssetLoader, IdentityStore, LoadedAsset, NpzAssetLoader
from meshpatch.manifest import Manifest, ManifestStore, build_manifest, manifest_from_asset
from meshpatch.structured import (
    PatchPackage,
    Policy,
    StructuredApplyResult,
    StructuredBuildResult,
    UIHints,
    apply_patch_package,
    build_structured_delta,
    load_patch_package,
)
from meshpatch.validation import check_integrity

logger = logging.getLogger(__name__)

T = TypeVar("T")
PathLike = Union[str, Path]


class MeshPatchEngine:
    """Stateless per call; holds only configuration and injected host capabilities."""

    def __init__(
        self,
        config: Optional[EngineConfig] = None,
        *,
        loader: Optional[AssetLoader] = None,
        identity_store: Optional[IdentityStore] = None,
        diff_tool: Optional[DiffTool] = None,
    ) -> None:
        self.config = config or load_engine_config()
        self.loader = loader or NpzAssetLoader()
        self.identity_store = identity_store
        self.diff_tool = diff_tool
        self.manifest_store = ManifestStore(self.config.manifest_cache_dir)

    def _run(self, step: str, asset_ref: Optional[str], func: Callable[[], T]) -> OperationResult[T]:
        try:
            value = func()
        except MeshPatchError as e:
            if e.context.step is None:
                e.context.step = step
            if e.context.asset_ref is None:
                e.context.asset_ref = asset_ref
            logger.error(
                "%s failed: %s",
                step,
                e.message,
                extra={
                    "engine_error": e,
                    "asset_ref": asset_ref,
                    "manifest_id": e.context.manifest_id,
                },
            )
            return OperationResult.failure(e)
        return OperationResult.success(value, message=f"{step} succeeded")

    def default_policy(self) -> Policy:
        return Policy(
            strict_topology=self.config.strict_topology,
            strict_correspondence=self.config.strict_correspondence,
        )

    def _load_asset(self, asset_ref: str) -> LoadedAsset:
        """Load through the injected loader; foreign loader errors become ``ValidationError``."""
        try:
            return self.loader.load_asset(asset_ref)
        except MeshPatchError:
            raise
        except Exception as e:
            raise ValidationError(
                f"Failed to load asset {asset_ref}: {e}",
                context=ErrorContext(asset_ref=asset_ref, step="load_asset"),
                cause=e,
            ) from e

    def _tool(self) -> DiffTool:
        return self.diff_tool or create_diff_tool(self.config.diff_backend, self.config)

    # ------------------------------------------------------------------
    # Manifest / correspondence
    # ------------------------------------------------------------------

    def build_manifest(self, asset_ref: str, *, persist: bool = True) -> OperationResult[Manifest]:
        store = self.manifest_store if persist else None
        return self._run("build_manifest", asset_ref, lambda: build_manifest(asset_ref, self.loader, store))

    def build_correspondence(
        self,
        base_ref: str,
        modified_ref: str,
        *,
        seeds: Optional[SeedAliases] = None,
        strict: Optional[bool] = None,
    ) -> OperationResult[CorrespondenceResult]:
        def _build() -> CorrespondenceResult:
            base = build_manifest(base_ref, self.loader, self.manifest_store)
            modified = build_manifest(modified_ref, self.loader, self.manifest_store)
            use_strict = self.config.strict_correspondence if strict is None else strict
            return build_correspondence(base, modified, seeds, strict=use_strict)

        return self._run("build_correspondence", base_ref, _build)

    # ------------------------------------------------------------------
    # Structured deltas
    # ------------------------------------------------------------------

    def build_structured(
        self,
        base_ref: str,
        modified_ref: str,
        *,
        policy: Optional[Policy] = None,
        seeds: Optional[SeedAliases] = None,
        ui_hints: Optional[UIHints] = None,
        staging_dir: Optional[PathLike] = None,
    ) -> OperationResult[StructuredBuildResult]:
        def _build() -> StructuredBuildResult:
            base = self._load_asset(base_ref)
            modified = self._load_asset(modified_ref)
            base_manifest = manifest_from_asset(base)
            modified_manifest = manifest_from_asset(modified)
            self.manifest_store.persist(base_manifest)
            self.manifest_store.persist(modified_manifest)
            return build_structured_delta(
                base,
                modified,
                policy=policy or self.default_policy(),
                seeds=seeds,
                ui_hints=ui_hints,
                staging_dir=staging_dir or self.config.staging_dir,
                base_manifest=base_manifest,
                modified_manifest=modified_manifest,
            )

        return self._run("build_structured", base_ref, _build)

    def apply_structured(
        self,
        base_ref: str,
        package: Union[PatchPackage, PathLike],
    ) -> OperationResult[StructuredApplyResult]:
        """Apply a package (or a staged ``package.json``) to the meshes of ``base_ref``.

        With ``integrity_mode="warn"`` a manifest mismatch is reported in
        ``StructuredApplyResult.warnings`` instead of failing.
        """

        def _apply() -> StructuredApplyResult:
            patch = package if isinstance(package, PatchPackage) else load_patch_package(package)
            base = self._load_asset(base_ref)
            warnings: List[str] = []
            check_integrity(
                "source_manifest_id",
                patch.source_manifest_id,
                manifest_from_asset(base).manifest_id,
                integrity_mode=self.config.integrity_mode,
                context=ErrorContext(asset_ref=base_ref, manifest_id=patch.source_manifest_id),
                warnings=warnings,
            )
            return StructuredApplyResult(apply_patch_package(base.meshes, patch), warnings)

        return self._run("apply_structured", base_ref, _apply)

    # ------------------------------------------------------------------
    # Binary deltas
    # ------------------------------------------------------------------

    def build_binary(
        self,
        base_path: PathLike,
        modified_path: PathLike,
        *,
        output_dir: Optional[PathLike] = None,
        name: Optional[str] = None,
        policy: Optional[Policy] = None,
        ui_hints: Optional[UIHints] = None,
        use_loader: bool = True,
    ) -> OperationResult[DerivedBuildResult]:
        return self._run(
            "build_binary",
            str(modified_path),
            lambda: build_derived_asset(
                base_path,
                modified_path,
                output_dir or self.config.output_dir,
                name=name,
                tool=self._tool(),
                loader=self.loader if use_loader else None,
                identity_store=self.identity_store,
                policy=policy or self.default_policy(),
                ui_hints=ui_hints,
            ),
        )

    def apply_binary(
        self,
        base_path: PathLike,
        descriptor_path: PathLike,
        out_path: PathLike,
        *,
        use_loader: bool = True,
    ) -> OperationResult[DerivedApplyResult]:
        return self._run(
            "apply_binary",
            str(base_path),
            lambda: apply_derived_asset(
                base_path,
                descriptor_path,
                out_path,
                tool=self.diff_tool,
                tool_factory=lambda backend: create_diff_tool(backend, self.config),
                loader=self.loader if use_loader else None,
                identity_store=self.identity_store,
                integrity_mode=self.config.integrity_mode,
                verify_target_hash=self.config.verify_target_hash,
            ),
        )
