"""
Console output for HashSync.
"""

from .progress_display import ConsolePrinter, print_progress

__all__ = ["ConsolePrinter", "print_progress"]
