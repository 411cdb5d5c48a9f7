"""
Persistent hash cache for HashSync.

Maps install-relative paths to the last known BLAKE3 hash of the file at
that path, so unchanged multi-gigabyte files are not rehashed every run.

The cache is only an optimization: a missing, empty or corrupt cache file
loads as an empty cache, and failing to save is logged, never raised.
"""

import json
import logging
from pathlib import Path
from typing import Dict, Iterator, Optional

from ..core.constants import CACHE_FILE
from ..core.files import atomic_write_text
from ..core.hashing import normalize_hash
from ..errors import FileSystemError

logger = logging.getLogger(__name__)


class HashCache:
    """relative path → lowercase hex hash."""

    def __init__(self, entries: Optional[Dict[str, str]] = None):
        self._entries: Dict[str, str] = {}
        self.dirty = False
        for path, value in (entries or {}).items():
            self._entries[path] = normalize_hash(value)

    def get(self, rel_path: str) -> Optional[str]:
        return self._entries.get(rel_path)

    def put(self, rel_path: str, content_hash: str):
        value = normalize_hash(content_hash)
        if self._entries.get(rel_path) != value:
            self._entries[rel_path] = value
            self.dirty = True

    def discard(self, rel_path: str):
        if self._entries.pop(rel_path, None) is not None:
            self.dirty = True

    def discard_prefix(self, rel_dir: str):
        """Drop every entry at or below a directory path."""
        prefix = rel_dir.rstrip("/") + "/"
        for key in [k for k in self._entries if k == rel_dir or k.startswith(prefix)]:
            self.discard(key)

    def move(self, old_path: str, new_path: str):
        """Carry a cached hash along with a rename."""
        value = self._entries.get(old_path)
        self.discard(old_path)
        if value is not None:
            self.put(new_path, value)

    def to_dict(self) -> Dict[str, str]:
        return dict(self._entries)

    def __contains__(self, rel_path: str) -> bool:
        return rel_path in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[str]:
        return iter(self._entries)

    @staticmethod
    def path_for(metadata_dir: Path) -> Path:
        return Path(metadata_dir) / CACHE_FILE

    @classmethod
    def load(cls, metadata_dir: Path) -> "HashCache":
        """Load the cache file, or return an empty cache if it is unusable."""
        cache_path = cls.path_for(metadata_dir)
        try:
            text = cache_path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return cls()
        except (OSError, UnicodeDecodeError) as e:
            logger.warning("Could not read hash cache %s: %s", cache_path, e)
            return cls()

        if not text.strip():
            return cls()

        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            logger.warning("Hash cache %s is corrupt, ignoring it: %s", cache_path, e)
            return cls()

        if not isinstance(data, dict):
            logger.warning("Hash cache %s is not a JSON object, ignoring it", cache_path)
            return cls()

        entries = {k: v for k, v in data.items() if isinstance(k, str) and isinstance(v, str)}
        if len(entries) != len(data):
            logger.warning("Dropped %d malformed hash cache entries", len(data) - len(entries))
        return cls(entries)

    def save(self, metadata_dir: Path) -> bool:
        """
        Persist the cache atomically. Returns False (after logging) on failure.
        """
        cache_path = self.path_for(metadata_dir)
        try:
            atomic_write_text(cache_path, json.dumps(self._entries, indent=2, sort_keys=True))
        except (OSError, FileSystemError, TypeError, ValueError) as e:
            logger.error("Failed to save hash cache %s: %s", cache_path, e)
            return False
        self.dirty = False
        logger.debug("Saved %d hash cache entries to %s", len(self._entries), cache_path)
        return True
