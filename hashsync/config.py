"""
Configuration for HashSync.

A SyncConfig is threaded explicitly into the orchestrator, differ and
download engine; there is no process-wide client or selected-CDN state.

Config file (optional): <install_dir>/launcher/config.json
"""

import json
import logging
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Optional

from . import __version__
from .core import constants
from .core.files import atomic_write_text

logger = logging.getLogger(__name__)


def default_user_agent() -> str:
    return f"HashSync/{__version__}"


@dataclass
class SyncConfig:
    """Settings for one sync pass."""
    install_dir: Path = field(default_factory=Path.cwd)
    metadata_dir: str = constants.METADATA_DIR
    cdn_url: str = ""
    max_attempts: int = constants.MAX_DOWNLOAD_ATTEMPTS
    retry_delay: float = constants.RETRY_DELAY_SECONDS
    chunk_size: int = constants.CHUNK_SIZE
    connect_timeout: float = constants.CONNECT_TIMEOUT
    read_timeout: float = constants.READ_TIMEOUT
    force_recheck: bool = False  # Discard the hash cache and rehash everything
    verify_cached_hashes: bool = False  # Rehash files even on cache hits
    user_agent: str = field(default_factory=default_user_agent)

    def __post_init__(self):
        self.install_dir = Path(self.install_dir)
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be at least 1, got {self.max_attempts}")
        if self.retry_delay < 0:
            raise ValueError(f"retry_delay must not be negative, got {self.retry_delay}")

    @property
    def metadata_path(self) -> Path:
        """Directory holding the hash cache, lock file and transient archives."""
        return self.install_dir / self.metadata_dir

    def to_dict(self) -> dict:
        data = asdict(self)
        data["install_dir"] = str(self.install_dir)
        return data

    @classmethod
    def from_dict(cls, data: dict, install_dir: Optional[Path] = None) -> "SyncConfig":
        """Build from a dict, ignoring unknown keys and keeping defaults for missing ones."""
        known = {f.name for f in fields(cls)}
        kwargs = {k: v for k, v in data.items() if k in known}
        if install_dir is not None:
            kwargs["install_dir"] = install_dir
        return cls(**kwargs)

    @classmethod
    def load(cls, path: Path, install_dir: Optional[Path] = None) -> "SyncConfig":
        """
        Load config from a JSON file.

        A missing or unreadable file yields the defaults; a bad file is
        logged rather than raised so it never blocks an update.
        """
        if path.exists():
            try:
                with open(path, encoding="utf-8") as f:
                    data = json.load(f)
                if isinstance(data, dict):
                    return cls.from_dict(data, install_dir=install_dir)
                logger.warning("Config file %s is not a JSON object, using defaults", path)
            except (json.JSONDecodeError, OSError, TypeError, ValueError) as e:
                logger.warning("Could not load config %s: %s", path, e)
        else:
            logger.info("No config file at %s, using defaults", path)

        if install_dir is not None:
            return cls(install_dir=install_dir)
        return cls()

    def save(self, path: Path):
        """Save config to file."""
        atomic_write_text(path, json.dumps(self.to_dict(), indent=2))
        logger.debug("Saved config to %s", path)
