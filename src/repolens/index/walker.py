"""File walker — eligible text files under a repository root."""

from __future__ import annotations

import logging
import os
from pathlib import Path

logger = logging.getLogger(__name__)

# Iteration order matters: import resolution tries extensions in this order.
EXTENSIONS: tuple[str, ...] = (
    ".ts",
    ".tsx",
    ".js",
    ".jsx",
    ".mjs",
    ".cjs",
    ".py",
    ".go",
    ".rs",
    ".java",
    ".kt",
    ".rb",
    ".php",
    ".cs",
    ".cpp",
    ".c",
    ".h",
    ".hpp",
    ".json",
    ".md",
    ".yml",
    ".yaml",
    ".toml",
    ".sql",
    ".txt",
    ".ini",
)

_EXTENSION_SET: frozenset[str] = frozenset(EXTENSIONS)

IGNORED_DIRS: frozenset[str] = frozenset(
    [
        ".git",
        "node_modules",
        "dist",
        "build",
        ".next",
        ".turbo",
        ".cache",
        ".idea",
        ".vscode",
        "repos",
    ]
)

MAX_FILE_BYTES = 350_000


def is_ignored_directory(name: str) -> bool:
    return name in IGNORED_DIRS or name.startswith(".")


def is_supported_file(name: str) -> bool:
    """True if *name* carries an allow-listed extension (case-insensitive)."""
    return os.path.splitext(name)[1].lower() in _EXTENSION_SET


def walk_files(root: Path | str, max_file_bytes: int = MAX_FILE_BYTES) -> list[Path]:
    """Return every eligible file below *root*, depth-first in name order.

    Directories that cannot be listed and files that vanish between listing
    and ``stat()`` are skipped.
    """
    output: list[Path] = []
    _walk(Path(root), output, max_file_bytes)
    return output


def _walk(directory: Path, output: list[Path], max_file_bytes: int) -> None:
    try:
        entries = sorted(os.scandir(directory), key=lambda e: e.name)
    except OSError as exc:
        logger.debug("Cannot list %s: %s", directory, exc)
        return

    for entry in entries:
        try:
            is_dir = entry.is_dir(follow_symlinks=False)
        except OSError:
            continue

        if is_dir:
            if is_ignored_directory(entry.name):
                continue
            _walk(Path(entry.path), output, max_file_bytes)
            continue

        if not is_supported_file(entry.name):
            continue

        try:
            size = entry.stat().st_size
        except OSError:
            continue

        if size > max_file_bytes:
            logger.debug("Skipping oversized file %s (%d bytes)", entry.path, size)
            continue

        output.append(Path(entry.path))
