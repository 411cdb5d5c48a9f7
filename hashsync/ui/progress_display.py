"""
Console progress display for HashSync.

Renders SyncProgress events: an overwriting status line while checking and
downloading, and one permanent line per finished download.
"""

import shutil
import time

from ..core import progress as events
from ..core.formatting import format_duration, format_size
from ..core.progress import SyncProgress


def get_terminal_width() -> int:
    return shutil.get_terminal_size().columns


def print_progress(message: str, prefix: str = "  "):
    """
    Print a progress message that overwrites the previous line.

    Handles narrow terminals by truncating and using ANSI clear codes.
    """
    width = get_terminal_width()
    full_msg = f"{prefix}{message}"

    if len(full_msg) >= width:
        full_msg = full_msg[:width - 4] + "..."

    # \033[2K clears the entire line
    print(f"\033[2K\r{full_msg}", end="", flush=True)


class ConsolePrinter:
    """
    SyncProgress listener that prints to the terminal.

    In-place updates are throttled to min_interval seconds; start, finish
    and message events are always printed.
    """

    def __init__(self, progress: SyncProgress, min_interval: float = 0.1):
        self.progress = progress
        self.min_interval = min_interval
        self.start_time = time.time()
        self._last_update = 0.0
        self._inline = False
        progress.add_listener(self)

    def __call__(self, event: str, progress: SyncProgress):
        if event == events.CHECK_STARTED:
            self._status(f"Checking {progress.checking_total} files...")
        elif event == events.CHECKED:
            if self._throttled():
                return
            self._status(
                f"Checking {progress.checking_pos}/{progress.checking_total}  {progress.current_item}"
            )
        elif event == events.CHECK_FINISHED:
            self._line(f"  Checked {progress.checking_total} files")
        elif event == events.DOWNLOAD_STARTED:
            self._line(f"  Downloading {progress.files_total} items ({format_size(progress.total_bytes)})")
            self.start_time = time.time()
        elif event == events.FILE_STARTED:
            self._status(f"{progress.file_name}  starting...")
        elif event == events.FILE_PROGRESS:
            if self._throttled():
                return
            self._status(self._download_status(progress))
        elif event == events.FILE_FINISHED:
            pct = (progress.files_done / progress.files_total * 100) if progress.files_total > 0 else 0
            self._line(f"  {pct:5.1f}% ({progress.files_done}/{progress.files_total})  {progress.file_name}")
        elif event == events.MESSAGE:
            self._line(f"  {progress.last_message}")

    def _throttled(self) -> bool:
        now = time.time()
        if now - self._last_update < self.min_interval:
            return True
        self._last_update = now
        return False

    @staticmethod
    def _download_status(progress: SyncProgress) -> str:
        return (
            f"{progress.file_name}  {progress.file_percent:5.1f}%"
            f"  [{format_size(progress.total_pos)}/{format_size(progress.total_bytes)}"
            f"  {progress.total_percent:.0f}%]"
        )

    def _status(self, message: str):
        with self.progress.lock:
            print_progress(message)
            self._inline = True

    def _line(self, message: str):
        # Terminate any in-place status line before printing a permanent one
        if self._inline:
            print("\033[2K\r", end="")
            self._inline = False
        self.progress.write(message)

    def finish(self):
        """Print the elapsed time for the pass."""
        self._line(f"  Finished in {format_duration(time.time() - self.start_time)}")
