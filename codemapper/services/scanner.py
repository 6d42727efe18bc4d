"""Scanner: enumerate candidate source files under a project root."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, List

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ScannedFile:
    """A file found by the scanner: POSIX path relative to the root and size in bytes."""

    path: str
    size: int


class ScanError(Exception):
    """Raised when the root is missing or any directory under it cannot be read.

    The scan is all-or-nothing: callers never see a partial file list.
    """

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


def _normalize_extensions(extensions: Iterable[str]) -> frozenset[str]:
    out = set()
    for ext in extensions:
        ext = (ext or "").strip().lower()
        if not ext:
            continue
        out.add(ext if ext.startswith(".") else f".{ext}")
    return frozenset(out)


def scan_directory(
    root: str | Path,
    extensions: Iterable[str],
    ignored_dirs: Iterable[str],
) -> List[ScannedFile]:
    """Walk root and return files whose extension is allowed, skipping ignored directory names.

    Args:
        root: Project root directory.
        extensions: Extension allow-list, e.g. [".py", ".go"].
        ignored_dirs: Directory names never descended into (exact name match, any depth).

    Returns:
        ScannedFile list in walk order (callers sort by path).

    Raises:
        ScanError: Root missing/not a directory, or a subdirectory/file could not be read.
    """
    root_path = Path(root)
    if not root_path.exists():
        raise ScanError(f"Directory does not exist: {root_path}")
    if not root_path.is_dir():
        raise ScanError(f"Not a directory: {root_path}")

    allowed = _normalize_extensions(extensions)
    ignored = frozenset(d for d in ignored_dirs if d)

    def _on_error(err: OSError) -> None:
        raise ScanError(f"Cannot read directory {err.filename}: {err.strerror or err}") from err

    found: List[ScannedFile] = []
    for dirpath, dirnames, filenames in os.walk(root_path, onerror=_on_error):
        dirnames[:] = [d for d in dirnames if d not in ignored]
        for fn in filenames:
            if Path(fn).suffix.lower() not in allowed:
                continue
            full = Path(dirpath) / fn
            try:
                size = full.stat().st_size
            except OSError as e:
                raise ScanError(f"Cannot stat file {full}: {e.strerror or e}") from e
            found.append(ScannedFile(path=full.relative_to(root_path).as_posix(), size=size))
    logger.debug("Scanned %s: %d supported files", root_path, len(found))
    return found
