"""
Formatting utilities for HashSync.
"""

import random
import string
from pathlib import Path
from typing import Union


# ============================================================================
# Size and duration formatting
# ============================================================================

def format_size(size_bytes: int) -> str:
    """Format bytes as human readable string."""
    for unit in ["B", "KB", "MB", "GB", "TB"]:
        if size_bytes < 1024:
            return f"{size_bytes:.1f} {unit}"
        size_bytes /= 1024
    return f"{size_bytes:.1f} PB"


def format_duration(seconds: float) -> str:
    """Format seconds as human readable duration."""
    if seconds < 60:
        return f"{seconds:.1f}s"
    elif seconds < 3600:
        return f"{int(seconds // 60)}m {int(seconds % 60)}s"
    else:
        return f"{int(seconds // 3600)}h {int((seconds % 3600) // 60)}m"


# ============================================================================
# Paths
# ============================================================================

def to_posix(path: Union[str, Path]) -> str:
    """Manifest-style relative path: forward slashes, no leading './'."""
    text = str(path).replace("\\", "/")
    while text.startswith("./"):
        text = text[2:]
    return text


# ============================================================================
# Random tokens
# ============================================================================

_TOKEN_CHARS = string.ascii_letters + string.digits


def random_string(length: int) -> str:
    """Random alphanumeric token (cache-busting, temp names)."""
    return "".join(random.choice(_TOKEN_CHARS) for _ in range(length))
