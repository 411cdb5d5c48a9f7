"""
Error types for HashSync.

Every error carries the file, path or operation it concerns so a failed
sync can be diagnosed from the message alone.
"""

from pathlib import Path
from typing import Optional, Union

from .core.constants import RETRYABLE_CLIENT_STATUSES


class SyncError(Exception):
    """Base class for all sync failures."""


class NetworkError(SyncError):
    """A request could not be sent or its body could not be received."""

    def __init__(self, url: str, operation: str, reason: str = ""):
        self.url = url
        self.operation = operation
        self.reason = reason
        message = f"Network error during {operation} of '{url}'"
        if reason:
            message += f": {reason}"
        super().__init__(message)


class HttpStatusError(NetworkError):
    """The server answered with a non-success status."""

    def __init__(self, url: str, status: int, operation: str = "download"):
        self.status = status
        super().__init__(url, operation, f"HTTP {status}")

    @property
    def retryable(self) -> bool:
        return self.status >= 500 or self.status in RETRYABLE_CLIENT_STATUSES


class FileSystemError(SyncError):
    """A create/read/write/rename/delete on disk failed."""

    def __init__(self, path: Union[str, Path], operation: str, reason: str = ""):
        self.path = Path(path)
        self.operation = operation
        self.reason = reason
        message = f"File system error during {operation} on path '{self.path}'"
        if reason:
            message += f": {reason}"
        super().__init__(message)


class IntegrityError(SyncError):
    """Content hash on disk does not match the manifest hash."""

    def __init__(self, path: str, expected: str, actual: str):
        self.path = path
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Integrity check failed for '{path}': expected {expected}, got {actual}"
        )


class ManifestParseError(SyncError):
    """Manifest (or other descriptor) JSON is malformed or incomplete."""

    def __init__(self, context: str, reason: str = ""):
        self.context = context
        self.reason = reason
        message = f"Parse error in {context}"
        if reason:
            message += f": {reason}"
        super().__init__(message)


class ManifestIntegrityError(ManifestParseError):
    """Manifest is well-formed JSON but internally inconsistent."""


class DownloadExhaustedError(SyncError):
    """Every download attempt for one file failed."""

    def __init__(self, path: str, attempts: int, last_error: Optional[BaseException] = None):
        self.path = path
        self.attempts = attempts
        self.last_error = last_error
        plural = "" if attempts == 1 else "s"
        message = f"Download failed for '{path}' after {attempts} attempt{plural}"
        if last_error is not None:
            message += f" (last error: {last_error})"
        super().__init__(message)


class ExtractError(SyncError):
    """An archive could not be opened or a member could not be written."""

    def __init__(self, archive: str, reason: str):
        self.archive = archive
        self.reason = reason
        super().__init__(f"Failed to extract archive '{archive}': {reason}")


class MissingArchiveMemberError(ExtractError):
    """A member declared by the manifest is not inside the downloaded archive."""

    def __init__(self, archive: str, member: str):
        self.member = member
        super().__init__(archive, f"could not find file '{member}' in archive")


class SyncLockedError(SyncError):
    """Another sync pass holds the lock on this install directory."""

    def __init__(self, lock_path: Path):
        self.lock_path = lock_path
        super().__init__(
            f"Another sync is already running against this directory (lock file '{lock_path}')"
        )
