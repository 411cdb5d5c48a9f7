"""
File system utilities for HashSync.
"""

import os
import shutil
import tempfile
from pathlib import Path
from typing import Union

from ..errors import FileSystemError


def ensure_parent_dir(path: Path):
    """Create the parent directory of path, wrapping failures."""
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise FileSystemError(path.parent, "directory creation", str(e)) from e


def resolve_within(base: Path, rel_path: str) -> Path:
    """
    Join a manifest-relative path onto base.

    Rejects absolute paths and '..' segments that would land outside base.
    """
    rel = rel_path.replace("\\", "/")
    candidate = Path(rel)
    if candidate.is_absolute() or ".." in candidate.parts:
        raise FileSystemError(rel_path, "path resolution", f"path escapes '{base}'")
    return base / candidate


def atomic_write_text(path: Path, text: str):
    """Write text to path via a temp file in the same directory + os.replace."""
    ensure_parent_dir(path)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(text)
        os.replace(tmp_name, path)
    except OSError:
        try:
            os.unlink(tmp_name)
        except OSError:
            pass
        raise


def remove_path(path: Path) -> bool:
    """
    Remove a file or directory tree.

    Returns False if nothing existed at path.
    """
    try:
        if path.is_dir() and not path.is_symlink():
            shutil.rmtree(path)
        else:
            path.unlink()
        return True
    except FileNotFoundError:
        return False
    except OSError as e:
        raise FileSystemError(path, "delete", str(e)) from e


def prune_empty_dirs(start: Union[str, Path], stop_at: Path):
    """Remove empty directories from start up to (not including) stop_at."""
    current = Path(start)
    stop_at = Path(stop_at)
    while current != stop_at and stop_at in current.parents:
        try:
            if any(current.iterdir()):
                return
            current.rmdir()
        except OSError:
            return
        current = current.parent
