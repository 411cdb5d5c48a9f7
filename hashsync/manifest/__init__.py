"""
Manifest management for HashSync.

The manifest is a JSON descriptor of every file an installation should
contain, with BLAKE3 hashes and sizes.
"""

from .manifest import Manifest, FileEntry, ArchiveEntry, ReconciliationSpec
from .fetch import fetch_manifest, CdnResolver, AssetResolver, UrlResolver
from .generate import build_manifest, MANIFEST_NAME

__all__ = [
    # Model
    "Manifest",
    "FileEntry",
    "ArchiveEntry",
    "ReconciliationSpec",
    # Sources
    "fetch_manifest",
    "CdnResolver",
    "AssetResolver",
    "UrlResolver",
    # Generation
    "build_manifest",
    "MANIFEST_NAME",
]
