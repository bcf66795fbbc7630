"""Binary (whole-file) deltas: diff backends, derived assets and the process watchdog."""

from .builder import (
    INTEGRITY_STRICT,
    INTEGRITY_WARN,
    DerivedApplyResult,
    DerivedBuildResult,
    apply_derived_asset,
    artifact_filename,
    build_derived_asset,
)
from .codes import (
    DiffResultCode,
    PatchResultCode,
    diff_category,
    patch_category,
    raise_for_diff_code,
    raise_for_patch_code,
)
from .derived import DESCRIPTOR_SUFFIX, DerivedAsset, load_derived_asset, save_derived_asset
from .process import DiffProcess, wait_for_process
from .tools import (
    DEFAULT_HDIFF_OPTIONS,
    Bsdiff4DiffTool,
    DiffTool,
    HDiffPatchCliTool,
    create_diff_tool,
)

__all__ = [
    "INTEGRITY_STRICT",
    "INTEGRITY_WARN",
    "DerivedApplyResult",
    "DerivedBuildResult",
    "apply_derived_asset",
    "artifact_filename",
    "build_derived_asset",
    "DiffResultCode",
    "PatchResultCode",
    "diff_category",
    "patch_category",
    "raise_for_diff_code",
    "raise_for_patch_code",
    "DESCRIPTOR_SUFFIX",
    "DerivedAsset",
    "load_derived_asset",
    "save_derived_asset",
    "DiffProcess",
    "wait_for_process",
    "DEFAULT_HDIFF_OPTIONS",
    "Bsdiff4DiffTool",
    "DiffTool",
    "HDiffPatchCliTool",
    "create_diff_tool",
]
