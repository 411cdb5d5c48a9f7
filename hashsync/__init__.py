"""
HashSync - manifest-driven file synchronization.

Brings an install directory in line with a manifest of BLAKE3-hashed files
and zip archives, downloading only what is missing or stale.

Import from submodules directly:
    from hashsync.config import SyncConfig
    from hashsync.manifest import Manifest, fetch_manifest
    from hashsync.sync import SyncOrchestrator, HashCache
"""


def _get_version():
    """Read version from VERSION file."""
    from pathlib import Path
    version_file = Path(__file__).parent.parent / "VERSION"
    if version_file.exists():
        return version_file.read_text().strip()
    return "0.0.0"


__version__ = _get_version()
