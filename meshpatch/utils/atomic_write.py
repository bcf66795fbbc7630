"""Temp-file + rename writers so readers never observe a partial artifact."""

from __future__ import annotations

import json
import os
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator, Optional


def _discard(tmp_path: Optional[Path]) -> None:
    if tmp_path and tmp_path.exists():
        try:
            tmp_path.unlink()
        except OSError:
            pass


def write_bytes_atomic(path: Path, data: bytes) -> None:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path: Optional[Path] = None
    try:
        with tempfile.NamedTemporaryFile(mode="wb", dir=path.parent, delete=False) as handle:
            tmp_path = Path(handle.name)
            handle.write(data)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(tmp_path, path)
    finally:
        _discard(tmp_path)


def write_text_atomic(path: Path, text: str, *, encoding: str = "utf-8") -> None:
    write_bytes_atomic(path, text.encode(encoding))


def write_json_atomic(
    path: Path,
    payload: Any,
    *,
    indent: Optional[int] = 2,
    sort_keys: bool = False,
) -> None:
    write_text_atomic(path, json.dumps(payload, indent=indent, sort_keys=sort_keys, ensure_ascii=False))


@contextmanager
def atomic_destination(path: Path, *, suffix: str = ".partial") -> Iterator[Path]:
    """Yield a temp path beside ``path``; rename it into place on success.

    Used when a third party (an external diff/patch routine) writes the file
    itself. On any exception the temp file is removed and ``path`` is left
    untouched.

    Example:
        with atomic_destination(out_path) as tmp:
            tool.create_diff(base, modified, tmp)
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=suffix, dir=path.parent)
    os.close(fd)
    tmp_path = Path(name)
    # Some routines refuse to overwrite an existing output file.
    tmp_path.unlink()
    try:
        yield tmp_path
        os.replace(tmp_path, path)
    finally:
        _discard(tmp_path)
