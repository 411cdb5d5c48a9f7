"""
Rename and deletion reconciliation for HashSync.

Renames run before diffing so a moved file is matched against its new
manifest path; deletions run after downloading so nothing is removed while
a sync might still need it. Both are idempotent across repeated runs.
"""

import logging
import os
from pathlib import Path
from typing import List, Optional, Tuple

from ..core.files import ensure_parent_dir, prune_empty_dirs, remove_path, resolve_within
from ..errors import FileSystemError
from ..manifest import ReconciliationSpec
from .cache import HashCache

logger = logging.getLogger(__name__)


def apply_renames(
    spec: ReconciliationSpec,
    install_dir: Path,
    cache: Optional[HashCache] = None,
) -> List[Tuple[str, str]]:
    """
    Move each declared old path to its new path.

    A missing source is skipped (already renamed, or never installed). An
    existing destination is replaced. Cached hashes follow the file.

    Returns the renames actually performed.
    """
    install_dir = Path(install_dir)
    done = []

    for old, new in spec.renames:
        source = resolve_within(install_dir, old)
        target = resolve_within(install_dir, new)

        if not source.exists():
            logger.info("Rename source %s does not exist, skipping", old)
            continue
        if source == target:
            continue

        ensure_parent_dir(target)
        try:
            if target.is_dir() and not source.is_dir():
                raise FileSystemError(target, "rename", "destination is a directory")
            os.replace(source, target)
        except OSError as e:
            raise FileSystemError(source, f"rename to '{new}'", str(e)) from e

        if cache is not None:
            cache.move(old, new)
        prune_empty_dirs(source.parent, install_dir)
        logger.info("Renamed %s -> %s", old, new)
        done.append((old, new))

    return done


def apply_deletions(
    spec: ReconciliationSpec,
    install_dir: Path,
    cache: Optional[HashCache] = None,
) -> List[str]:
    """
    Remove each declared path; directories are removed recursively.

    Missing paths are not an error. Directories emptied by a deletion are
    pruned up to install_dir.

    Returns the paths actually removed.
    """
    install_dir = Path(install_dir)
    done = []

    for rel_path in spec.deletions:
        target = resolve_within(install_dir, rel_path)
        if target == install_dir:
            raise FileSystemError(target, "delete", "refusing to delete the install directory")

        if not remove_path(target):
            logger.debug("Deletion target %s does not exist", rel_path)
            continue

        if cache is not None:
            cache.discard_prefix(rel_path)
        prune_empty_dirs(target.parent, install_dir)
        logger.info("Removed %s", rel_path)
        done.append(rel_path)

    return done
