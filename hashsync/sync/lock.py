"""
Lock file serializing sync passes against one install directory.

Two passes writing the same hash cache and files would corrupt both, so a
pass refuses to start while another holds the lock.
"""

import logging
import os
from pathlib import Path

from ..core.constants import LOCK_FILE
from ..core.files import ensure_parent_dir
from ..errors import FileSystemError, SyncLockedError

logger = logging.getLogger(__name__)


def _pid_alive(pid: int) -> bool:
    # Signal 0 is only a liveness check on POSIX; on Windows os.kill would terminate
    if os.name == "nt":
        return True
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    return True


class SyncLock:
    """Exclusive lock file holding the owner's PID."""

    def __init__(self, metadata_dir: Path):
        self.path = Path(metadata_dir) / LOCK_FILE
        self.held = False

    def _read_owner(self):
        try:
            return int(self.path.read_text().strip())
        except (OSError, ValueError):
            return None

    def _try_create(self) -> bool:
        try:
            fd = os.open(self.path, os.O_CREAT | os.O_EXCL | os.O_WRONLY)
        except FileExistsError:
            return False
        except OSError as e:
            raise FileSystemError(self.path, "lock creation", str(e)) from e
        with os.fdopen(fd, "w") as f:
            f.write(str(os.getpid()))
        return True

    def acquire(self):
        ensure_parent_dir(self.path)
        if self._try_create():
            self.held = True
            return

        owner = self._read_owner()
        if owner is not None and owner != os.getpid() and not _pid_alive(owner):
            logger.warning("Removing stale lock %s left by process %d", self.path, owner)
            try:
                self.path.unlink()
            except FileNotFoundError:
                pass
            except OSError as e:
                raise FileSystemError(self.path, "stale lock removal", str(e)) from e
            if self._try_create():
                self.held = True
                return

        raise SyncLockedError(self.path)

    def release(self):
        if not self.held:
            return
        try:
            self.path.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning("Could not remove lock file %s: %s", self.path, e)
        self.held = False

    def __enter__(self) -> "SyncLock":
        self.acquire()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.release()
