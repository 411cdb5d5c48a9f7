"""
Archive extraction for HashSync.

Extracts only the members the manifest declares, skipping members that are
already on disk with the right hash so an interrupted extraction resumes
cheaply. Each member is written to a temp file and moved into place, so a
half-written file never sits at the final path.
"""

import logging
import os
import shutil
import tempfile
import zipfile
import zlib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, List, Optional

from ..core.files import ensure_parent_dir, resolve_within
from ..core.hashing import hash_file, hashes_match
from ..core.progress import SyncProgress
from ..errors import (
    ExtractError,
    FileSystemError,
    IntegrityError,
    MissingArchiveMemberError,
)
from ..manifest import FileEntry
from .cache import HashCache

logger = logging.getLogger(__name__)


@dataclass
class ExtractResult:
    """Which members were written and which were already current."""
    extracted: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)


def _verifies(path: Path, member: FileEntry) -> bool:
    if not path.is_file():
        return False
    try:
        return hashes_match(hash_file(path), member.content_hash)
    except OSError as e:
        raise FileSystemError(path, "hash verification", str(e)) from e


def _find_member(zf: zipfile.ZipFile, name: str) -> Optional[zipfile.ZipInfo]:
    """Look a member up by path, tolerating backslash separators in the archive."""
    try:
        return zf.getinfo(name)
    except KeyError:
        pass
    for info in zf.infolist():
        if info.filename.replace("\\", "/") == name:
            return info
    return None


def _write_member(zf: zipfile.ZipFile, info: zipfile.ZipInfo, target: Path):
    """Copy one member to a temp file beside target, then replace target."""
    ensure_parent_dir(target)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{target.name}.", suffix=".part", dir=target.parent)
    try:
        with os.fdopen(fd, "wb") as out, zf.open(info) as src:
            shutil.copyfileobj(src, out)
        os.replace(tmp_name, target)
    except BaseException:
        try:
            os.unlink(tmp_name)
        except OSError:
            pass
        raise


def extract(
    archive_path: Path,
    members: Iterable[FileEntry],
    install_dir: Path,
    archive_name: str = "",
    cache: Optional[HashCache] = None,
    progress: Optional[SyncProgress] = None,
    delete_archive: bool = True,
) -> ExtractResult:
    """
    Extract the declared members of a zip archive into install_dir.

    Args:
        archive_path: Downloaded archive
        members: Manifest entries the archive must yield
        install_dir: Root the member paths are relative to
        archive_name: Name used in messages (defaults to the file name)
        cache: Hash cache updated with every verified member
        progress: Receives one message per member
        delete_archive: Remove the archive once every member is in place

    Raises:
        ExtractError: archive cannot be opened or read
        MissingArchiveMemberError: a declared member is not in the archive
        IntegrityError: an extracted member does not match its manifest hash
        FileSystemError: a member could not be written
    """
    archive_path = Path(archive_path)
    install_dir = Path(install_dir)
    archive_name = archive_name or archive_path.name
    result = ExtractResult()

    logger.info("Extracting archive %s", archive_name)

    try:
        zf = zipfile.ZipFile(archive_path)
    except (zipfile.BadZipFile, OSError) as e:
        raise ExtractError(archive_name, str(e)) from e

    with zf:
        for member in members:
            target = resolve_within(install_dir, member.relative_path)

            if _verifies(target, member):
                logger.info("File %s from archive %s is already up to date", member.relative_path, archive_name)
                if cache is not None:
                    cache.put(member.relative_path, member.content_hash)
                result.skipped.append(member.relative_path)
                continue

            info = _find_member(zf, member.relative_path)
            if info is None:
                logger.error("Could not find file %s in archive %s", member.relative_path, archive_name)
                raise MissingArchiveMemberError(archive_name, member.relative_path)

            try:
                _write_member(zf, info, target)
            except (zipfile.BadZipFile, zipfile.LargeZipFile, zlib.error, EOFError, RuntimeError) as e:
                raise ExtractError(archive_name, f"member '{member.relative_path}': {e}") from e
            except OSError as e:
                raise FileSystemError(target, "extraction", str(e)) from e

            try:
                actual = hash_file(target)
            except OSError as e:
                raise FileSystemError(target, "hash verification", str(e)) from e
            if not hashes_match(actual, member.content_hash):
                if cache is not None:
                    cache.discard(member.relative_path)
                raise IntegrityError(member.relative_path, member.content_hash, actual)

            if cache is not None:
                cache.put(member.relative_path, actual)
            result.extracted.append(member.relative_path)
            logger.info("Extracted file %s from archive %s", member.relative_path, archive_name)
            if progress:
                progress.message(f"Extracted {member.relative_path}")

    if delete_archive:
        try:
            archive_path.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            raise FileSystemError(archive_path, "delete", str(e)) from e
        logger.info("Removed download artifact %s", archive_name)

    return result
