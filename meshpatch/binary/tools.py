"""Binary diff/patch backends.

Both backends read and write files by path and report through the
HDiffPatch result-code enums, so the builder never sees a bare boolean.
"""

from __future__ import annotations

import logging
import shlex
from abc import ABC, abstractmethod
from pathlib import Path
from typing import List, Optional, Union

import bsdiff4

from meshpatch.error_handling import DiffFailureCategory, DiffToolError

from .codes import DiffResultCode, PatchResultCode
from .process import (
    DEFAULT_POLL_INTERVAL_S,
    DEFAULT_PROGRESS_INTERVAL_S,
    DEFAULT_TIMEOUT_S,
    DiffProcess,
    wait_for_process,
)

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]

DEFAULT_HDIFF_OPTIONS = "-m-6 -SD -c-zstd-21-24 -d"


class DiffTool(ABC):
    """External diff routine contract."""

    name: str = "diff"

    @abstractmethod
    def create_diff(self, base_path: PathLike, modified_path: PathLike, out_path: PathLike) -> DiffResultCode:
        """Write a diff artifact turning ``base_path`` into ``modified_path``."""

    @abstractmethod
    def apply_patch(self, base_path: PathLike, artifact_path: PathLike, out_path: PathLike) -> PatchResultCode:
        """Write the file reconstructed from ``base_path`` and the artifact."""


class Bsdiff4DiffTool(DiffTool):
    """In-process bsdiff via the ``bsdiff4`` extension."""

    name = "bsdiff4"

    def create_diff(self, base_path: PathLike, modified_path: PathLike, out_path: PathLike) -> DiffResultCode:
        try:
            base = Path(base_path).read_bytes()
            modified = Path(modified_path).read_bytes()
        except OSError as e:
            logger.error("bsdiff4: cannot read inputs: %s", e)
            return DiffResultCode.OPENREAD_ERROR

        try:
            artifact = bsdiff4.diff(base, modified)
        except MemoryError:
            return DiffResultCode.MEM_ERROR
        except (ValueError, TypeError) as e:
            logger.error("bsdiff4: diff failed: %s", e)
            return DiffResultCode.DIFF_ERROR

        try:
            Path(out_path).write_bytes(artifact)
        except OSError as e:
            logger.error("bsdiff4: cannot write artifact: %s", e)
            return DiffResultCode.OPENWRITE_ERROR
        return DiffResultCode.SUCCESS

    def apply_patch(self, base_path: PathLike, artifact_path: PathLike, out_path: PathLike) -> PatchResultCode:
        try:
            base = Path(base_path).read_bytes()
            artifact = Path(artifact_path).read_bytes()
        except OSError as e:
            logger.error("bsdiff4: cannot read inputs: %s", e)
            return PatchResultCode.OPENREAD_ERROR

        try:
            reconstructed = bsdiff4.patch(base, artifact)
        except MemoryError:
            return PatchResultCode.MEM_ERROR
        except (ValueError, EOFError, OSError) as e:
            # bz2 and header failures all mean the artifact is unreadable.
            logger.error("bsdiff4: corrupt artifact: %s", e)
            return PatchResultCode.FILEDATA_ERROR

        try:
            Path(out_path).write_bytes(reconstructed)
        except OSError as e:
            logger.error("bsdiff4: cannot write output: %s", e)
            return PatchResultCode.OPENWRITE_ERROR
        return PatchResultCode.SUCCESS


class HDiffPatchCliTool(DiffTool):
    """Drives the ``hdiffz`` / ``hpatchz`` executables; their exit code is the result code."""

    name = "hdiffpatch"

    def __init__(
        self,
        hdiffz_path: str = "hdiffz",
        hpatchz_path: str = "hpatchz",
        options: str = DEFAULT_HDIFF_OPTIONS,
        *,
        timeout_s: float = DEFAULT_TIMEOUT_S,
        poll_interval_s: float = DEFAULT_POLL_INTERVAL_S,
        progress_interval_s: float = DEFAULT_PROGRESS_INTERVAL_S,
    ) -> None:
        self.hdiffz_path = hdiffz_path
        self.hpatchz_path = hpatchz_path
        self.options = options
        self.timeout_s = timeout_s
        self.poll_interval_s = poll_interval_s
        self.progress_interval_s = progress_interval_s

    def diff_command(self, base_path: PathLike, modified_path: PathLike, out_path: PathLike) -> List[str]:
        return [self.hdiffz_path, *shlex.split(self.options), str(base_path), str(modified_path), str(out_path)]

    def patch_command(self, base_path: PathLike, artifact_path: PathLike, out_path: PathLike) -> List[str]:
        return [self.hpatchz_path, str(base_path), str(artifact_path), str(out_path)]

    def _run(self, command: List[str], operation: str) -> Optional[int]:
        with DiffProcess(command, operation=operation) as process:
            code = wait_for_process(
                process,
                timeout_s=self.timeout_s,
                poll_interval_s=self.poll_interval_s,
                progress_interval_s=self.progress_interval_s,
                label=Path(command[0]).name,
            )
            if code:
                logger.warning("%s exited with %s: %s", Path(command[0]).name, code, process.output_tail())
            return code

    def create_diff(self, base_path: PathLike, modified_path: PathLike, out_path: PathLike) -> DiffResultCode:
        code = self._run(self.diff_command(base_path, modified_path, out_path), "diff")
        try:
            return DiffResultCode(code)
        except ValueError:
            raise DiffToolError(
                f"hdiffz exited with unrecognized code {code}",
                diff_category=DiffFailureCategory.UNKNOWN,
                code=code,
                operation="diff",
            ) from None

    def apply_patch(self, base_path: PathLike, artifact_path: PathLike, out_path: PathLike) -> PatchResultCode:
        code = self._run(self.patch_command(base_path, artifact_path, out_path), "patch")
        try:
            return PatchResultCode(code)
        except ValueError:
            raise DiffToolError(
                f"hpatchz exited with unrecognized code {code}",
                diff_category=DiffFailureCategory.UNKNOWN,
                code=code,
                operation="patch",
            ) from None


def create_diff_tool(backend: str, config=None) -> DiffTool:
    """Backend by name (``bsdiff4`` or ``hdiffpatch``), configured from an ``EngineConfig``."""
    if backend == Bsdiff4DiffTool.name:
        return Bsdiff4DiffTool()
    if backend == HDiffPatchCliTool.name:
        if config is None:
            return HDiffPatchCliTool()
        return HDiffPatchCliTool(
            hdiffz_path=config.hdiffz_path,
            hpatchz_path=config.hpatchz_path,
            options=config.diff_options,
            timeout_s=config.process_timeout_s,
            poll_interval_s=config.poll_interval_s,
            progress_interval_s=config.progress_interval_s,
        )
    raise DiffToolError(
        f"Unknown diff backend: {backend}",
        diff_category=DiffFailureCategory.TOOL_UNAVAILABLE,
    )
