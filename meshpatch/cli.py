#!/usr/bin/env python3
"""
Command-line entry point for the meshpatch engine.

Usage:
    meshpatch manifest base.npz
    meshpatch diff base.npz modified.npz out/
    meshpatch patch base.npz out/modified.derived.json rebuilt.npz
    meshpatch structured-diff base.npz modified.npz --staging-dir staging/
    meshpatch structured-apply base.npz staging/<id>/package.json patched.npz

Every command prints a JSON summary on stdout. Failures print the error
category and exit non-zero.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

from meshpatch.config import load_engine_config
from meshpatch.engine import MeshPatchEngine
from meshpatch.error_handling import MeshPatchError, OperationResult
from meshpatch.host import LoadedAsset, NpzAssetLoader, save_asset_npz
from meshpatch.logging_config import init_logging

logger = logging.getLogger(__name__)

NPZ_SUFFIX = ".npz"


def _build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Mesh asset delta utilities")
    parser.add_argument("--config", type=Path, default=None, help="YAML or JSON engine config")
    parser.add_argument("--log-level", default=None, help="Override MESHPATCH_LOG_LEVEL")
    parser.add_argument("--log-json", action="store_true", help="Emit JSON log lines")

    sub = parser.add_subparsers(dest="command", required=True)

    manifest_cmd = sub.add_parser("manifest", help="Print the structural manifest of an asset")
    manifest_cmd.add_argument("asset", type=Path)
    manifest_cmd.add_argument("--no-persist", action="store_true", help="Do not write to the manifest cache")

    diff_cmd = sub.add_parser("diff", help="Build a binary derived asset")
    diff_cmd.add_argument("base", type=Path)
    diff_cmd.add_argument("modified", type=Path)
    diff_cmd.add_argument("out_dir", type=Path)
    diff_cmd.add_argument("--name", default=None, help="Descriptor name (defaults to the modified file stem)")

    patch_cmd = sub.add_parser("patch", help="Rebuild a modified asset from a derived asset")
    patch_cmd.add_argument("base", type=Path)
    patch_cmd.add_argument("descriptor", type=Path)
    patch_cmd.add_argument("out", type=Path)

    sdiff_cmd = sub.add_parser("structured-diff", help="Build and stage a structured patch package")
    sdiff_cmd.add_argument("base", type=Path)
    sdiff_cmd.add_argument("modified", type=Path)
    sdiff_cmd.add_argument("--staging-dir", type=Path, default=None)

    sapply_cmd = sub.add_parser("structured-apply", help="Apply a staged patch package")
    sapply_cmd.add_argument("base", type=Path)
    sapply_cmd.add_argument("package", type=Path)
    sapply_cmd.add_argument("out", type=Path)

    return parser


def _emit(payload: Dict[str, Any]) -> None:
    json.dump(payload, sys.stdout, indent=2, default=str)
    sys.stdout.write("\n")


def _report_failure(result: OperationResult) -> int:
    category = result.category.value if result.category else "unknown"
    detail = f" ({result.diff_category.value})" if result.diff_category else ""
    print(f"[MESHPATCH] {category}{detail}: {result.message}", file=sys.stderr)
    return 1


def _is_npz(*paths: Path) -> bool:
    return all(path.suffix.lower() == NPZ_SUFFIX for path in paths)


def _structured_summary(result) -> Dict[str, Any]:
    package = result.package
    return {
        "package_id": package.package_id,
        "package_dir": str(result.package_dir) if result.package_dir else None,
        "source_manifest_id": package.source_manifest_id,
        "modified_manifest_id": package.modified_manifest_id,
        "ops": [{"kind": op.kind, "target_mesh_name": op.target_mesh_name} for op in package.ops],
        "sidecars": [str(path) for path in result.sidecar_paths],
        "skipped_meshes": result.skipped_meshes,
        "topology_mismatches": [
            {
                "mesh_name": m.mesh_name,
                "base_vertex_count": m.base_vertex_count,
                "modified_vertex_count": m.modified_vertex_count,
            }
            for m in result.topology_mismatches
        ],
        "requires_binary_fallback": result.requires_binary_fallback,
        "correspondence": result.correspondence.to_dict(),
    }


def _run_command(engine: MeshPatchEngine, args: argparse.Namespace) -> int:
    if args.command == "manifest":
        result = engine.build_manifest(str(args.asset), persist=not args.no_persist)
        if not result.ok:
            return _report_failure(result)
        _emit(result.value.to_dict())
        return 0

    if args.command == "diff":
        result = engine.build_binary(
            args.base,
            args.modified,
            output_dir=args.out_dir,
            name=args.name,
            use_loader=_is_npz(args.base),
        )
        if not result.ok:
            return _report_failure(result)
        _emit({
            "descriptor_path": str(result.value.descriptor_path),
            "artifact_path": str(result.value.artifact_path),
            "descriptor": result.value.descriptor.to_dict(),
        })
        return 0

    if args.command == "patch":
        result = engine.apply_binary(args.base, args.descriptor, args.out, use_loader=_is_npz(args.base))
        if not result.ok:
            return _report_failure(result)
        _emit({
            "output_path": str(result.value.output_path),
            "target_identity": result.value.target_identity,
            "warnings": result.value.warnings,
        })
        return 0

    if args.command == "structured-diff":
        result = engine.build_structured(str(args.base), str(args.modified), staging_dir=args.staging_dir)
        if not result.ok:
            return _report_failure(result)
        _emit(_structured_summary(result.value))
        return 0

    if args.command == "structured-apply":
        result = engine.apply_structured(str(args.base), args.package)
        if not result.ok:
            return _report_failure(result)
        base = engine.loader.load_asset(str(args.base))
        patched = LoadedAsset(
            asset_ref=str(args.out),
            meshes=result.value.meshes,
            materials=list(base.materials),
            animation_clip_names=list(base.animation_clip_names),
            units=base.units,
            axis=base.axis,
        )
        out_path = save_asset_npz(patched, args.out)
        _emit({
            "output_path": str(out_path),
            "meshes": sorted(result.value.meshes),
            "warnings": result.value.warnings,
        })
        return 0

    raise ValueError(f"Unknown command: {args.command}")


def main(argv: Optional[List[str]] = None) -> int:
    parser = _build_arg_parser()
    args = parser.parse_args(argv)

    level = getattr(logging, args.log_level.upper(), logging.INFO) if args.log_level else None
    init_logging(level=level, json_enabled=True if args.log_json else None, stream=sys.stderr)

    try:
        config = load_engine_config(args.config)
    except MeshPatchError as e:
        print(f"[MESHPATCH] {e.category.value}: {e.message}", file=sys.stderr)
        return 2

    engine = MeshPatchEngine(config, loader=NpzAssetLoader())
    return _run_command(engine, args)


if __name__ == "__main__":
    raise SystemExit(main())
