"""Polling handle and watchdog for long-running external diff routines."""

from __future__ import annotations

import logging
import subprocess
import tempfile
import time
from typing import Callable, List, Optional

from meshpatch.error_handling import DiffFailureCategory, DiffToolError, ErrorContext

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_S = 300.0
DEFAULT_POLL_INTERVAL_S = 0.1
DEFAULT_PROGRESS_INTERVAL_S = 5.0

_OUTPUT_TAIL_CHARS = 500


class DiffProcess:
    """A started external routine.

    Output goes to a temporary file rather than a pipe so a chatty routine
    cannot block on a full pipe while it is only being polled.
    """

    def __init__(self, command: List[str], *, operation: str = "diff") -> None:
        self.command = list(command)
        self.operation = operation
        self._output = tempfile.TemporaryFile(mode="w+b")
        try:
            self._proc = subprocess.Popen(
                self.command,
                stdout=self._output,
                stderr=subprocess.STDOUT,
            )
        except OSError as e:
            self._output.close()
            raise DiffToolError(
                f"Could not start {self.command[0]}: {e}",
                diff_category=DiffFailureCategory.TOOL_UNAVAILABLE,
                operation=operation,
                cause=e,
            ) from e

    def is_done(self) -> bool:
        return self._proc.poll() is not None

    @property
    def returncode(self) -> Optional[int]:
        return self._proc.returncode

    def terminate(self) -> None:
        if self._proc.poll() is None:
            self._proc.kill()
            self._proc.wait()

    def output_tail(self) -> str:
        if self._output.closed:
            return ""
        self._output.seek(0)
        text = self._output.read().decode("utf-8", errors="replace")
        return text[-_OUTPUT_TAIL_CHARS:]

    def close(self) -> None:
        self.terminate()
        self._output.close()

    def __enter__(self) -> "DiffProcess":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


def wait_for_process(
    process,
    *,
    timeout_s: float = DEFAULT_TIMEOUT_S,
    poll_interval_s: float = DEFAULT_POLL_INTERVAL_S,
    progress_interval_s: float = DEFAULT_PROGRESS_INTERVAL_S,
    label: str = "diff routine",
    context: Optional[ErrorContext] = None,
    clock: Callable[[], float] = time.monotonic,
    sleep: Callable[[float], None] = time.sleep,
) -> Optional[int]:
    """
    Poll ``process`` until it finishes, logging progress periodically.

    ``process`` needs ``is_done()``, ``terminate()`` and ``returncode``.

    Returns:
        The process return code.

    Raises:
        DiffToolError: With category ``TIMEOUT`` after killing the process
            when ``timeout_s`` elapses first.
    """
    start = clock()
    next_progress = start + progress_interval_s
    while not process.is_done():
        now = clock()
        elapsed = now - start
        if elapsed > timeout_s:
            process.terminate()
            logger.error("%s timed out after %.1fs; killed", label, elapsed)
            raise DiffToolError(
                f"{label} timed out after {timeout_s:.0f}s",
                diff_category=DiffFailureCategory.TIMEOUT,
                operation=getattr(process, "operation", "diff"),
                context=context,
            )
        if now >= next_progress:
            logger.info("%s still running (%.1fs elapsed)", label, elapsed)
            next_progress = now + progress_interval_s
        sleep(poll_interval_s)

    logger.debug("%s finished in %.2fs", label, clock() - start)
    return process.returncode
