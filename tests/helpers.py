"""Builders shared by the test modules."""

import zipfile
from pathlib import Path

from hashsync.core.hashing import hash_bytes
from hashsync.manifest import ArchiveEntry, FileEntry


def file_entry(path: str, data: bytes, locator: str = "") -> FileEntry:
    """Manifest entry describing data at path."""
    return FileEntry(hash_bytes(data), len(data), path, locator)


def make_zip(path: Path, members: dict) -> Path:
    """Write a zip archive of {name: bytes}."""
    path.parent.mkdir(parents=True, exist_ok=True)
    with zipfile.ZipFile(path, "w") as zf:
        for name, data in members.items():
            zf.writestr(name, data)
    return path


def archive_entry(path: Path, members: dict, name: str = "") -> ArchiveEntry:
    """Manifest entry for a zip created with make_zip."""
    archive = ArchiveEntry(hash_bytes(path.read_bytes()), path.stat().st_size, name or path.name)
    for member_path, data in members.items():
        archive = archive.with_member(file_entry(member_path, data))
    return archive


def write(path: Path, data: bytes) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(data)
    return path
