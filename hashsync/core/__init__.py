"""Shared low-level helpers: hashing, filesystem, formatting, progress."""
