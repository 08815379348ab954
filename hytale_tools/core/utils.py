"""Shared utilities for hytale-tools."""

from __future__ import annotations

import hashlib
import os
import stat
import sys
from pathlib import Path

CHUNK_SIZE = 1024 * 1024


def file_digest(path: Path, algorithm: str = "sha256") -> str:
    """Compute the hex digest of a file, reading it in chunks.

    Args:
        path: File to hash
        algorithm: hashlib algorithm name

    Returns:
        Lowercase hex digest

    Raises:
        OSError: If the file cannot be read
    """
    digest = hashlib.new(algorithm)
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(CHUNK_SIZE), b""):
            digest.update(chunk)
    return digest.hexdigest()


def sha256_file(path: Path) -> str:
    """SHA256 hex digest of a file."""
    return file_digest(path, "sha256")


def normalize_hash(value: str) -> str:
    """Normalize a hex digest for comparison."""
    return value.strip().lower()


def hashes_match(actual: str | None, expected: str | None) -> bool:
    """Compare two hex digests, ignoring case and surrounding whitespace.

    Example:
        >>> hashes_match("ABC ", "abc")
        True
        >>> hashes_match(None, "abc")
        False
    """
    if not actual or not expected:
        return False
    return normalize_hash(actual) == normalize_hash(expected)


def file_matches(path: Path, expected_hash: str | None) -> bool:
    """Whether a file exists and its SHA256 equals ``expected_hash``."""
    if not expected_hash or not path.is_file():
        return False
    try:
        return hashes_match(sha256_file(path), expected_hash)
    except OSError:
        return False


def make_executable(path: Path) -> None:
    """Add execute permission bits on non-Windows hosts."""
    if sys.platform == "win32":
        return
    mode = path.stat().st_mode
    path.chmod(mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)


def dir_has_content(path: Path) -> bool:
    """Whether ``path`` is a directory with at least one entry."""
    try:
        return path.is_dir() and any(path.iterdir())
    except OSError:
        return False


def atomic_write_text(path: Path, text: str) -> None:
    """Write a text file via temp file + os.replace.

    A reader never sees a partially written file, even if the process is
    killed during the write.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_name(path.name + ".tmp")
    tmp_path.write_text(text, encoding="utf-8")
    os.replace(tmp_path, path)


def format_size(size_bytes: int) -> str:
    """Format byte size in human readable format.

    Example:
        >>> format_size(1536)
        '1.5 KB'
    """
    if size_bytes < 1024:
        return f"{size_bytes} B"
    size = float(size_bytes)
    for unit in ("KB", "MB", "GB"):
        size /= 1024
        if size < 1024 or unit == "GB":
            return f"{size:.1f} {unit}"
    return f"{size:.1f} GB"
