"""
Progress tracking for sync passes.

SyncProgress holds three counters a caller can render:
- checking: files/members verified so far during diffing
- file: bytes of the current download
- total: bytes across every download in the pass
"""

import threading
from typing import Callable, List, Optional


class ProgressTracker:
    """Base class for thread-safe progress tracking."""

    def __init__(self):
        self.lock = threading.Lock()
        self._closed = False

    def write(self, msg: str):
        """Write a message (thread-safe)."""
        with self.lock:
            print(msg)

    def close(self):
        """Close the progress tracker."""
        with self.lock:
            self._closed = True


# Events passed to listeners
CHECK_STARTED = "check_started"
CHECKED = "checked"
CHECK_FINISHED = "check_finished"
DOWNLOAD_STARTED = "download_started"
FILE_STARTED = "file_started"
FILE_PROGRESS = "file_progress"
FILE_FINISHED = "file_finished"
MESSAGE = "message"

ProgressListener = Callable[[str, "SyncProgress"], None]


class SyncProgress(ProgressTracker):
    """
    Progress state for one sync pass, with listener callbacks.

    Listeners are called with (event, progress) after each update, outside
    the lock, so they may read any counter.
    """

    def __init__(self, listener: Optional[ProgressListener] = None):
        super().__init__()
        self._listeners: List[ProgressListener] = []
        if listener:
            self._listeners.append(listener)

        self.checking_pos = 0
        self.checking_total = 0
        self.current_item = ""

        self.file_name = ""
        self.file_pos = 0
        self.file_total = 0
        self.file_offset = 0

        self.total_pos = 0
        self.total_bytes = 0
        self.files_done = 0
        self.files_total = 0

        self.last_message = ""

    def add_listener(self, listener: ProgressListener):
        self._listeners.append(listener)

    def _emit(self, event: str):
        if self._closed:
            return
        for listener in list(self._listeners):
            listener(event, self)

    # Checking (diff) phase

    def start_checking(self, total: int):
        with self.lock:
            self.checking_pos = 0
            self.checking_total = total
        self._emit(CHECK_STARTED)

    def checked(self, rel_path: str, count: int = 1):
        """Mark count files/members as verified (count > 1 for skipped members)."""
        with self.lock:
            self.checking_pos = min(self.checking_pos + count, self.checking_total)
            self.current_item = rel_path
        self._emit(CHECKED)

    def finish_checking(self):
        with self.lock:
            self.checking_pos = self.checking_total
            self.current_item = ""
        self._emit(CHECK_FINISHED)

    # Download phase

    def start_downloads(self, total_bytes: int, total_files: int):
        with self.lock:
            self.total_bytes = total_bytes
            self.total_pos = 0
            self.files_total = total_files
            self.files_done = 0
        self._emit(DOWNLOAD_STARTED)

    def start_file(self, name: str, size: int, offset: int):
        """
        Begin (or restart, on retry) a download.

        offset is the cumulative byte count of every finished download
        before this one; the total counter is rewound to it.
        """
        with self.lock:
            self.file_name = name
            self.file_pos = 0
            self.file_total = size
            self.file_offset = offset
            self.total_pos = offset
        self._emit(FILE_STARTED)

    def set_file_total(self, size: int):
        with self.lock:
            self.file_total = size
        self._emit(FILE_PROGRESS)

    def set_file_position(self, position: int):
        with self.lock:
            if self.file_total > 0:
                position = min(position, self.file_total)
            self.file_pos = position
            self.total_pos = self.file_offset + position
        self._emit(FILE_PROGRESS)

    def finish_file(self):
        with self.lock:
            self.files_done += 1
        self._emit(FILE_FINISHED)

    def message(self, msg: str):
        """Report a one-line status message to listeners."""
        with self.lock:
            self.last_message = msg
        self._emit(MESSAGE)

    @property
    def file_percent(self) -> float:
        return (self.file_pos / self.file_total * 100) if self.file_total > 0 else 0.0

    @property
    def total_percent(self) -> float:
        return (self.total_pos / self.total_bytes * 100) if self.total_bytes > 0 else 0.0
