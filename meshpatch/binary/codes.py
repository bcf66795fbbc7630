"""Result codes of the binary diff/patch routines and their failure categories.

Values match the HDiffPatch ``hdiffz`` / ``hpatchz`` exit codes; the
in-process backend reports through the same enums.
"""

from __future__ import annotations

from enum import IntEnum
from typing import Dict, Optional, Union

from meshpatch.error_handling import DiffFailureCategory, DiffToolError, ErrorContext


class DiffResultCode(IntEnum):
    SUCCESS = 0
    OPTIONS_ERROR = 1
    OPENREAD_ERROR = 2
    OPENWRITE_ERROR = 3
    FILECLOSE_ERROR = 4
    MEM_ERROR = 5
    DIFF_ERROR = 6
    PATCH_ERROR = 7
    RESAVE_FILEREAD_ERROR = 8
    RESAVE_DIFFINFO_ERROR = 9
    RESAVE_COMPRESSTYPE_ERROR = 10
    RESAVE_ERROR = 11
    RESAVE_CHECKSUMTYPE_ERROR = 12
    PATHTYPE_ERROR = 13
    TEMPPATH_ERROR = 14
    DELETEPATH_ERROR = 15
    RENAMEPATH_ERROR = 16


class PatchResultCode(IntEnum):
    SUCCESS = 0
    OPTIONS_ERROR = 1
    OPENREAD_ERROR = 2
    OPENWRITE_ERROR = 3
    FILEREAD_ERROR = 4
    FILEWRITE_ERROR = 5
    FILEDATA_ERROR = 6
    FILECLOSE_ERROR = 7
    MEM_ERROR = 8
    HDIFFINFO_ERROR = 9
    COMPRESSTYPE_ERROR = 10
    HPATCH_ERROR = 11
    PATHTYPE_ERROR = 12
    TEMPPATH_ERROR = 13
    DELETEPATH_ERROR = 14
    RENAMEPATH_ERROR = 15
    SPATCH_ERROR = 16
    BSPATCH_ERROR = 17
    VCPATCH_ERROR = 18
    DECOMPRESSER_OPEN_ERROR = 20
    DECOMPRESSER_CLOSE_ERROR = 21
    DECOMPRESSER_MEM_ERROR = 22
    DECOMPRESSER_DECOMPRESS_ERROR = 23
    FILEWRITE_NO_SPACE_ERROR = 24


DIFF_CATEGORIES: Dict[DiffResultCode, DiffFailureCategory] = {
    DiffResultCode.OPTIONS_ERROR: DiffFailureCategory.OPTIONS,
    DiffResultCode.OPENREAD_ERROR: DiffFailureCategory.OPEN_READ,
    DiffResultCode.OPENWRITE_ERROR: DiffFailureCategory.OPEN_WRITE,
    DiffResultCode.FILECLOSE_ERROR: DiffFailureCategory.FILE_CLOSE,
    DiffResultCode.MEM_ERROR: DiffFailureCategory.MEMORY,
    DiffResultCode.DIFF_ERROR: DiffFailureCategory.DIFF_INTERNAL,
    # hdiffz re-patches its own output; a failure there is still a diff failure.
    DiffResultCode.PATCH_ERROR: DiffFailureCategory.DIFF_INTERNAL,
    DiffResultCode.RESAVE_FILEREAD_ERROR: DiffFailureCategory.FILE_READ,
    DiffResultCode.RESAVE_DIFFINFO_ERROR: DiffFailureCategory.CORRUPT_ARTIFACT,
    DiffResultCode.RESAVE_COMPRESSTYPE_ERROR: DiffFailureCategory.OPTIONS,
    DiffResultCode.RESAVE_ERROR: DiffFailureCategory.FILE_WRITE,
    DiffResultCode.RESAVE_CHECKSUMTYPE_ERROR: DiffFailureCategory.OPTIONS,
    DiffResultCode.PATHTYPE_ERROR: DiffFailureCategory.PATH_TYPE,
    DiffResultCode.TEMPPATH_ERROR: DiffFailureCategory.OPEN_WRITE,
    DiffResultCode.DELETEPATH_ERROR: DiffFailureCategory.FILE_WRITE,
    DiffResultCode.RENAMEPATH_ERROR: DiffFailureCategory.FILE_WRITE,
}

PATCH_CATEGORIES: Dict[PatchResultCode, DiffFailureCategory] = {
    PatchResultCode.OPTIONS_ERROR: DiffFailureCategory.OPTIONS,
    PatchResultCode.OPENREAD_ERROR: DiffFailureCategory.OPEN_READ,
    PatchResultCode.OPENWRITE_ERROR: DiffFailureCategory.OPEN_WRITE,
    PatchResultCode.FILEREAD_ERROR: DiffFailureCategory.FILE_READ,
    PatchResultCode.FILEWRITE_ERROR: DiffFailureCategory.FILE_WRITE,
    PatchResultCode.FILEDATA_ERROR: DiffFailureCategory.CORRUPT_ARTIFACT,
    PatchResultCode.FILECLOSE_ERROR: DiffFailureCategory.FILE_CLOSE,
    PatchResultCode.MEM_ERROR: DiffFailureCategory.MEMORY,
    PatchResultCode.HDIFFINFO_ERROR: DiffFailureCategory.CORRUPT_ARTIFACT,
    PatchResultCode.COMPRESSTYPE_ERROR: DiffFailureCategory.CORRUPT_ARTIFACT,
    PatchResultCode.HPATCH_ERROR: DiffFailureCategory.PATCH_INTERNAL,
    PatchResultCode.PATHTYPE_ERROR: DiffFailureCategory.PATH_TYPE,
    PatchResultCode.TEMPPATH_ERROR: DiffFailureCategory.OPEN_WRITE,
    PatchResultCode.DELETEPATH_ERROR: DiffFailureCategory.FILE_WRITE,
    PatchResultCode.RENAMEPATH_ERROR: DiffFailureCategory.FILE_WRITE,
    PatchResultCode.SPATCH_ERROR: DiffFailureCategory.PATCH_INTERNAL,
    PatchResultCode.BSPATCH_ERROR: DiffFailureCategory.PATCH_INTERNAL,
    PatchResultCode.VCPATCH_ERROR: DiffFailureCategory.PATCH_INTERNAL,
    PatchResultCode.DECOMPRESSER_OPEN_ERROR: DiffFailureCategory.CORRUPT_ARTIFACT,
    PatchResultCode.DECOMPRESSER_CLOSE_ERROR: DiffFailureCategory.CORRUPT_ARTIFACT,
    PatchResultCode.DECOMPRESSER_MEM_ERROR: DiffFailureCategory.MEMORY,
    PatchResultCode.DECOMPRESSER_DECOMPRESS_ERROR: DiffFailureCategory.CORRUPT_ARTIFACT,
    PatchResultCode.FILEWRITE_NO_SPACE_ERROR: DiffFailureCategory.FILE_WRITE,
}


def diff_category(code: Union[DiffResultCode, int]) -> DiffFailureCategory:
    try:
        return DIFF_CATEGORIES[DiffResultCode(code)]
    except (KeyError, ValueError):
        return DiffFailureCategory.UNKNOWN


def patch_category(code: Union[PatchResultCode, int]) -> DiffFailureCategory:
    try:
        return PATCH_CATEGORIES[PatchResultCode(code)]
    except (KeyError, ValueError):
        return DiffFailureCategory.UNKNOWN


def _code_name(enum_cls, code: int) -> str:
    try:
        return enum_cls(code).name
    except ValueError:
        return f"UNKNOWN({code})"


def raise_for_diff_code(code: Union[DiffResultCode, int], context: Optional[ErrorContext] = None) -> None:
    """Raise ``DiffToolError`` unless ``code`` is success."""
    if int(code) == DiffResultCode.SUCCESS:
        return
    category = diff_category(code)
    raise DiffToolError(
        f"Diff failed with {_code_name(DiffResultCode, int(code))} ({category.value})",
        diff_category=category,
        code=int(code),
        operation="diff",
        context=context,
    )


def raise_for_patch_code(code: Union[PatchResultCode, int], context: Optional[ErrorContext] = None) -> None:
    """Raise ``DiffToolError`` unless ``code`` is success."""
    if int(code) == PatchResultCode.SUCCESS:
        return
    category = patch_category(code)
    raise DiffToolError(
        f"Patch failed with {_code_name(PatchResultCode, int(code))} ({category.value})",
        diff_category=category,
        code=int(code),
        operation="patch",
        context=context,
    )
