"""
Manifest generation for HashSync (publisher side).

Walks a release directory and describes every file in it. Each .zip found
becomes an archive entry whose members are hashed from inside the archive;
everything else becomes a standalone file.
"""

import logging
import zipfile
from pathlib import Path
from typing import List, Optional

from ..core.constants import ARCHIVE_EXTENSIONS
from ..core.hashing import hash_file, hash_stream
from ..errors import ExtractError
from .manifest import ArchiveEntry, FileEntry, Manifest, ReconciliationSpec

logger = logging.getLogger(__name__)

# Default manifest file name; skipped when walking the directory
MANIFEST_NAME = "update.json"


def is_archive_file(filename: str) -> bool:
    """Check if a filename is an archive type we handle."""
    return Path(filename).suffix.lower() in ARCHIVE_EXTENSIONS


def describe_archive(path: Path, archive_name: str) -> ArchiveEntry:
    """Hash a zip archive and each file inside it."""
    archive = ArchiveEntry(
        content_hash=hash_file(path),
        size=path.stat().st_size,
        archive_name=archive_name,
    )
    try:
        with zipfile.ZipFile(path) as zf:
            for info in zf.infolist():
                if info.is_dir():
                    continue
                member_path = info.filename.replace("\\", "/")
                with zf.open(info) as member:
                    member_hash = hash_stream(member)
                logger.debug("Hashed %s in %s", member_path, archive_name)
                archive = archive.with_member(FileEntry(member_hash, info.file_size, member_path))
    except zipfile.BadZipFile as e:
        raise ExtractError(archive_name, f"not a valid zip file: {e}") from e
    return archive


def build_manifest(
    root: Path,
    reconciliation: Optional[ReconciliationSpec] = None,
    skip_names: tuple = (MANIFEST_NAME,),
) -> Manifest:
    """
    Describe every file under root.

    Standalone files get their file name as asset name (how a release
    uploads them); archives are named by their path under root, so nested
    archives with the same file name stay distinct.
    """
    root = Path(root)
    if not root.is_dir():
        raise NotADirectoryError(f"Must be a directory: {root}")

    files: List[FileEntry] = []
    archives: List[ArchiveEntry] = []

    for path in sorted(p for p in root.rglob("*") if p.is_file()):
        rel_path = path.relative_to(root).as_posix()
        if rel_path in skip_names:
            continue

        if is_archive_file(path.name):
            logger.info("Visiting archive %s", rel_path)
            archives.append(describe_archive(path, rel_path))
        else:
            logger.info("Visiting file %s", rel_path)
            files.append(FileEntry(
                content_hash=hash_file(path),
                size=path.stat().st_size,
                relative_path=rel_path,
                source_locator=path.name if path.name != rel_path else "",
            ))

    return Manifest.from_entries(files, archives, reconciliation)
