"""
Diffing for HashSync.

Determines what needs to be downloaded by comparing the manifest to the
install directory, using the hash cache to avoid rehashing unchanged files.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from ..core.files import resolve_within
from ..core.hashing import hash_file, hashes_match
from ..core.progress import SyncProgress
from ..errors import FileSystemError
from ..manifest import ArchiveEntry, FileEntry, Manifest
from .cache import HashCache

logger = logging.getLogger(__name__)


@dataclass
class DiffResult:
    """Files and archives that are missing or stale."""
    stale_files: List[FileEntry] = field(default_factory=list)
    stale_archives: List[ArchiveEntry] = field(default_factory=list)
    checked: int = 0

    @property
    def up_to_date(self) -> bool:
        return not self.stale_files and not self.stale_archives

    @property
    def download_size(self) -> int:
        return sum(f.size for f in self.stale_files) + sum(a.size for a in self.stale_archives)

    @property
    def download_count(self) -> int:
        return len(self.stale_files) + len(self.stale_archives)


def local_hash(
    entry: FileEntry,
    path: Path,
    cache: HashCache,
    verify_cached: bool = False,
) -> str:
    """
    Hash of the file at path: the cached value on a hit, otherwise freshly
    computed and written through to the cache.
    """
    if not verify_cached:
        cached = cache.get(entry.relative_path)
        if cached is not None:
            return cached

    try:
        computed = hash_file(path)
    except OSError as e:
        raise FileSystemError(path, "hash calculation", str(e)) from e
    cache.put(entry.relative_path, computed)
    return computed


def file_is_stale(
    entry: FileEntry,
    install_dir: Path,
    cache: HashCache,
    verify_cached: bool = False,
) -> bool:
    """A file is stale if it is missing or its hash differs from the manifest."""
    path = resolve_within(install_dir, entry.relative_path)
    if not path.is_file():
        logger.debug("File %s does not exist, will download", entry.relative_path)
        cache.discard(entry.relative_path)
        return True

    current = local_hash(entry, path, cache, verify_cached)
    if hashes_match(current, entry.content_hash):
        logger.debug("File %s is up to date", entry.relative_path)
        return False

    logger.debug(
        "File %s hash mismatch (local: %s, remote: %s), will download",
        entry.relative_path, current, entry.content_hash,
    )
    return True


def archive_is_stale(
    archive: ArchiveEntry,
    install_dir: Path,
    cache: HashCache,
    progress: Optional[SyncProgress] = None,
    verify_cached: bool = False,
) -> bool:
    """
    An archive is stale if any of its members is.

    Stops at the first stale member; the unchecked remainder is still
    reported to progress so the checking counter reaches its total.
    """
    for i, member in enumerate(archive.members):
        stale = file_is_stale(member, install_dir, cache, verify_cached)
        if progress:
            progress.checked(member.relative_path)
        if stale:
            remaining = len(archive.members) - i - 1
            if progress and remaining:
                progress.checked(member.relative_path, count=remaining)
            logger.debug("Archive %s has stale member %s", archive.archive_name, member.relative_path)
            return True
    return False


def diff(
    manifest: Manifest,
    install_dir: Path,
    cache: HashCache,
    progress: Optional[SyncProgress] = None,
    verify_cached: bool = False,
) -> DiffResult:
    """
    Find every stale standalone file and every archive with a stale member.

    Archives with no stale member are left out entirely so they are never
    downloaded.
    """
    install_dir = Path(install_dir)
    result = DiffResult()

    logger.info(
        "Checking %d files and %d archives for updates",
        len(manifest.files), len(manifest.archives),
    )
    if progress:
        progress.start_checking(manifest.check_count)

    for entry in manifest.files:
        if file_is_stale(entry, install_dir, cache, verify_cached):
            result.stale_files.append(entry)
        result.checked += 1
        if progress:
            progress.checked(entry.relative_path)

    for archive in manifest.archives:
        if archive_is_stale(archive, install_dir, cache, progress, verify_cached):
            result.stale_archives.append(archive)
        result.checked += len(archive.members)

    if progress:
        progress.finish_checking()

    logger.info(
        "%d files and %d archives need downloading",
        len(result.stale_files), len(result.stale_archives),
    )
    return result
