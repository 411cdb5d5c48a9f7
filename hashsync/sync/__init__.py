"""
Sync engine for HashSync.

Brings an install directory in line with a manifest: diffing against a
persistent hash cache, downloading stale files and archives, extracting
archives and applying renames and deletions.
"""

from .cache import HashCache
from .differ import DiffResult, diff
from .downloader import DownloadEngine, DownloadRequest
from .extractor import ExtractResult, extract
from .lock import SyncLock
from .orchestrator import SyncOrchestrator, SyncReport, SyncState
from .reconciler import apply_deletions, apply_renames

__all__ = [
    # Cache
    "HashCache",
    # Diffing
    "DiffResult",
    "diff",
    # Download
    "DownloadEngine",
    "DownloadRequest",
    # Extraction
    "ExtractResult",
    "extract",
    # Reconciliation
    "apply_renames",
    "apply_deletions",
    # Orchestration
    "SyncLock",
    "SyncOrchestrator",
    "SyncReport",
    "SyncState",
]
