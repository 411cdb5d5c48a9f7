"""
BLAKE3 content hashing for HashSync.

All hashes are lowercase hex. Comparisons are case-insensitive because
manifests in the wild carry either case.
"""

from pathlib import Path
from typing import BinaryIO, Union

from blake3 import blake3

from .constants import HASH_CHUNK_SIZE


def hash_bytes(data: bytes) -> str:
    """Hash an in-memory buffer."""
    return blake3(data).hexdigest()


def hash_stream(stream: BinaryIO, chunk_size: int = HASH_CHUNK_SIZE) -> str:
    """Hash a readable binary stream to EOF without loading it whole."""
    hasher = blake3()
    while True:
        chunk = stream.read(chunk_size)
        if not chunk:
            break
        hasher.update(chunk)
    return hasher.hexdigest()


def hash_file(path: Union[str, Path], chunk_size: int = HASH_CHUNK_SIZE) -> str:
    """
    Hash a file on disk.

    Raises OSError if the file cannot be read; never returns a partial hash.
    """
    with open(path, "rb") as f:
        return hash_stream(f, chunk_size)


def normalize_hash(value: str) -> str:
    """Canonical form used for storage and comparison."""
    return value.strip().lower()


def hashes_match(a: str, b: str) -> bool:
    """Case-insensitive hash comparison."""
    return normalize_hash(a) == normalize_hash(b)
