"""
Manifest classes for HashSync.

The manifest is a JSON descriptor listing every file an installation should
contain, each with a BLAKE3 hash and byte size. Files are either standalone
downloads or members of a zip archive:

    {
      "files": [
        {"blake3": "...", "size": 123, "path": "bin/tool.dll", "asset_name": "tool.dll"},
        {"blake3": "...", "size": 456, "path": "data/a.bin", "archive": "data.zip"}
      ],
      "archives": [{"blake3": "...", "size": 789, "name": "data.zip"}],
      "renames": [["old/name.dll", "bin/tool.dll"]],
      "deletions": ["obsolete"]
    }
"""

import json
import string
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, Iterator, Optional, Tuple

from ..core.files import atomic_write_text
from ..core.formatting import to_posix
from ..errors import ManifestIntegrityError, ManifestParseError

HEX_DIGITS = set(string.hexdigits)


def _locator_fields(locator: str, default: str) -> dict:
    """Serialize a source locator only when it differs from the default."""
    if not locator or locator == default:
        return {}
    if "://" in locator:
        return {"url": locator}
    return {"asset_name": locator}


def _require(data: dict, key: str, kind, context: str):
    if key not in data:
        raise ManifestParseError(context, f"missing required field '{key}'")
    value = data[key]
    # bool is an int subclass; reject it for sizes
    if not isinstance(value, kind) or isinstance(value, bool):
        raise ManifestParseError(context, f"field '{key}' has wrong type {type(value).__name__}")
    return value


def _list_field(data: dict, key: str) -> list:
    """An optional list-valued key; absent or null reads as empty."""
    value = data.get(key)
    if value is None:
        return []
    if not isinstance(value, list):
        raise ManifestParseError("manifest", f"'{key}' must be a list, got {type(value).__name__}")
    return value


def _parse_locator(data: dict, context: str) -> str:
    for key in ("url", "asset_name"):
        value = data.get(key)
        if value is not None and not isinstance(value, str):
            raise ManifestParseError(context, f"field '{key}' has wrong type {type(value).__name__}")
    return data.get("url") or data.get("asset_name") or ""


def _parse_hash(data: dict, context: str) -> str:
    value = _require(data, "blake3", str, context).strip()
    if not value or not set(value) <= HEX_DIGITS:
        raise ManifestParseError(context, f"'blake3' is not a hex digest: {value!r}")
    return value


def _parse_size(data: dict, context: str) -> int:
    value = _require(data, "size", int, context)
    if value < 0:
        raise ManifestParseError(context, f"'size' must not be negative: {value}")
    return value


@dataclass(frozen=True)
class FileEntry:
    """A single file the installation should contain."""
    content_hash: str
    size: int
    relative_path: str
    source_locator: str = ""  # Asset name, CDN-relative path or absolute URL

    @property
    def locator(self) -> str:
        return self.source_locator or self.relative_path

    def to_dict(self, archive_name: str = "") -> dict:
        data = {"blake3": self.content_hash, "size": self.size, "path": self.relative_path}
        if archive_name:
            data["archive"] = archive_name
        else:
            data.update(_locator_fields(self.source_locator, self.relative_path))
        return data

    @classmethod
    def from_dict(cls, data: dict, index: int = 0) -> "FileEntry":
        if not isinstance(data, dict):
            raise ManifestParseError(f"manifest file entry #{index}", "entry is not an object")
        path = _require(data, "path", str, f"manifest file entry #{index}")
        context = f"manifest file entry '{path}'"
        if not path.strip():
            raise ManifestParseError(context, "'path' is empty")
        locator = _parse_locator(data, context)
        return cls(
            content_hash=_parse_hash(data, context),
            size=_parse_size(data, context),
            relative_path=to_posix(path),
            source_locator=locator,
        )


@dataclass(frozen=True)
class ArchiveEntry:
    """A zip archive plus the member files the manifest expects it to yield."""
    content_hash: str
    size: int
    archive_name: str
    source_locator: str = ""
    members: Tuple[FileEntry, ...] = ()

    @property
    def locator(self) -> str:
        return self.source_locator or self.archive_name

    @property
    def download_name(self) -> str:
        """File name used for the transient download (flattened, no dirs)."""
        return Path(to_posix(self.archive_name)).name

    @property
    def extracted_size(self) -> int:
        return sum(m.size for m in self.members)

    def as_file(self) -> FileEntry:
        """The archive itself as a downloadable file."""
        return FileEntry(self.content_hash, self.size, self.archive_name, self.source_locator)

    def with_member(self, member: FileEntry) -> "ArchiveEntry":
        return ArchiveEntry(
            content_hash=self.content_hash,
            size=self.size,
            archive_name=self.archive_name,
            source_locator=self.source_locator,
            members=self.members + (member,),
        )

    def to_dict(self) -> dict:
        data = {"blake3": self.content_hash, "size": self.size, "name": self.archive_name}
        data.update(_locator_fields(self.source_locator, self.archive_name))
        return data

    @classmethod
    def from_dict(cls, data: dict, index: int = 0) -> "ArchiveEntry":
        if not isinstance(data, dict):
            raise ManifestParseError(f"manifest archive entry #{index}", "entry is not an object")
        name = _require(data, "name", str, f"manifest archive entry #{index}")
        context = f"manifest archive entry '{name}'"
        if not name.strip():
            raise ManifestParseError(context, "'name' is empty")
        return cls(
            content_hash=_parse_hash(data, context),
            size=_parse_size(data, context),
            archive_name=name,
            source_locator=_parse_locator(data, context),
        )


@dataclass(frozen=True)
class ReconciliationSpec:
    """Renames applied before diffing and deletions applied after downloading."""
    renames: Tuple[Tuple[str, str], ...] = ()
    deletions: Tuple[str, ...] = ()

    @property
    def is_empty(self) -> bool:
        return not self.renames and not self.deletions

    def merged(self, other: Optional["ReconciliationSpec"]) -> "ReconciliationSpec":
        """These renames and deletions followed by other's."""
        if other is None:
            return self
        return ReconciliationSpec(
            renames=self.renames + other.renames,
            deletions=self.deletions + other.deletions,
        )

    def to_dict(self) -> dict:
        data = {}
        if self.renames:
            data["renames"] = [[old, new] for old, new in self.renames]
        if self.deletions:
            data["deletions"] = list(self.deletions)
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "ReconciliationSpec":
        """
        Parse the optional "renames"/"deletions" manifest keys.

        Renames may be [old, new] pairs or {"from": old, "to": new} objects.
        """
        if not isinstance(data, dict):
            raise ManifestParseError("reconciliation", "top level is not an object")

        renames = []
        for i, item in enumerate(_list_field(data, "renames")):
            if isinstance(item, dict) and "from" in item and "to" in item:
                old, new = item["from"], item["to"]
            elif isinstance(item, (list, tuple)) and len(item) == 2:
                old, new = item
            else:
                raise ManifestParseError(f"manifest rename #{i}", "expected [old, new] or {from, to}")
            if not isinstance(old, str) or not isinstance(new, str) or not old or not new:
                raise ManifestParseError(f"manifest rename #{i}", "paths must be non-empty strings")
            renames.append((to_posix(old), to_posix(new)))

        deletions = []
        for i, item in enumerate(_list_field(data, "deletions")):
            if not isinstance(item, str) or not item:
                raise ManifestParseError(f"manifest deletion #{i}", "path must be a non-empty string")
            deletions.append(to_posix(item))

        return cls(renames=tuple(renames), deletions=tuple(deletions))


@dataclass(frozen=True)
class Manifest:
    """
    What an installation should contain.

    Immutable once loaded; a sync pass never modifies it.
    """
    files: Tuple[FileEntry, ...] = ()
    archives: Tuple[ArchiveEntry, ...] = ()
    reconciliation: ReconciliationSpec = field(default_factory=ReconciliationSpec)

    @property
    def total_size(self) -> int:
        """Download size if everything were stale."""
        return sum(f.size for f in self.files) + sum(a.size for a in self.archives)

    @property
    def check_count(self) -> int:
        """Number of files/members the differ verifies."""
        return len(self.files) + sum(len(a.members) for a in self.archives)

    def get_archive(self, name: str) -> Optional[ArchiveEntry]:
        for archive in self.archives:
            if archive.archive_name == name:
                return archive
        return None

    def iter_paths(self) -> Iterator[str]:
        """Every relative path the manifest places in the install dir."""
        for f in self.files:
            yield f.relative_path
        for archive in self.archives:
            for member in archive.members:
                yield member.relative_path

    def to_dict(self) -> dict:
        files = [f.to_dict() for f in self.files]
        for archive in self.archives:
            files.extend(m.to_dict(archive_name=archive.archive_name) for m in archive.members)
        data = {
            "files": files,
            "archives": [a.to_dict() for a in self.archives],
        }
        data.update(self.reconciliation.to_dict())
        return data

    def to_json(self, indent: Optional[int] = 2) -> str:
        return json.dumps(self.to_dict(), indent=indent)

    def save(self, path: Path):
        """Write manifest JSON to path."""
        atomic_write_text(path, self.to_json())

    @classmethod
    def from_entries(
        cls,
        files: Iterable[FileEntry] = (),
        archives: Iterable[ArchiveEntry] = (),
        reconciliation: Optional[ReconciliationSpec] = None,
    ) -> "Manifest":
        """Build a manifest in code, checking the same invariants as parsing."""
        files = tuple(files)
        archives = tuple(archives)
        _check_unique([f.relative_path for f in files], "standalone file path")
        _check_unique([a.archive_name for a in archives], "archive name")
        return cls(files, archives, reconciliation or ReconciliationSpec())

    @classmethod
    def from_dict(cls, data: dict) -> "Manifest":
        """
        Parse a manifest descriptor.

        Raises ManifestParseError for malformed entries and
        ManifestIntegrityError when a file names an archive that is not
        declared or a path is listed twice.
        """
        if not isinstance(data, dict):
            raise ManifestParseError("manifest", "top level is not an object")

        raw_files = data.get("files", [])
        raw_archives = data.get("archives", [])
        if not isinstance(raw_files, list) or not isinstance(raw_archives, list):
            raise ManifestParseError("manifest", "'files' and 'archives' must be lists")

        archives = [ArchiveEntry.from_dict(a, i) for i, a in enumerate(raw_archives)]
        _check_unique([a.archive_name for a in archives], "archive name")
        archive_index = {a.archive_name: i for i, a in enumerate(archives)}

        files = []
        for i, raw in enumerate(raw_files):
            entry = FileEntry.from_dict(raw, i)
            archive_name = raw.get("archive")
            if archive_name is not None and not isinstance(archive_name, str):
                raise ManifestParseError(
                    f"manifest file entry '{entry.relative_path}'",
                    f"field 'archive' has wrong type {type(archive_name).__name__}",
                )
            if archive_name:
                if archive_name not in archive_index:
                    raise ManifestIntegrityError(
                        f"manifest file entry '{entry.relative_path}'",
                        f"archive '{archive_name}' is not declared in the manifest",
                    )
                idx = archive_index[archive_name]
                archives[idx] = archives[idx].with_member(entry)
            else:
                files.append(entry)

        _check_unique([f.relative_path for f in files], "standalone file path")

        return cls(
            files=tuple(files),
            archives=tuple(archives),
            reconciliation=ReconciliationSpec.from_dict(data),
        )

    @classmethod
    def from_json(cls, text: str, context: str = "manifest") -> "Manifest":
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise ManifestParseError(context, str(e)) from e
        return cls.from_dict(data)

    @classmethod
    def load(cls, path: Path) -> "Manifest":
        """Load a manifest from disk."""
        try:
            text = Path(path).read_text(encoding="utf-8")
        except OSError as e:
            raise ManifestParseError(f"manifest '{path}'", f"cannot read file: {e}") from e
        return cls.from_json(text, context=f"manifest '{path}'")


def _check_unique(values: list, what: str):
    seen = set()
    for value in values:
        if value in seen:
            raise ManifestIntegrityError("manifest", f"duplicate {what} '{value}'")
        seen.add(value)
