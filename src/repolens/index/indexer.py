"""Incremental indexer — file records reused across passes by modification time.

The modification timestamp (``st_mtime_ns``) is the only staleness signal.
A record whose timestamp is bit-identical to the previous pass is reused
as the same object, including its lowered content and split lines.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable

from repolens.index.walker import MAX_FILE_BYTES, walk_files

logger = logging.getLogger(__name__)

_LINE_SPLIT_RE = re.compile(r"\r?\n")


@dataclass(frozen=True)
class FileRecord:
    """One indexed text file.

    Attributes:
        full_path: Absolute path on disk.
        relative_path: POSIX path relative to the repository root (identity).
        normalized_path: Lowercased ``relative_path``.
        lowered: Lowercased file content.
        lines: Content split on ``\\n`` / ``\\r\\n``; an empty file is ``("",)``.
        bytes: UTF-8 byte length of the decoded content.
        mtime: ``st_mtime_ns`` observed when the file was read.
    """

    full_path: str
    relative_path: str
    normalized_path: str
    lowered: str
    lines: tuple[str, ...]
    bytes: int
    mtime: int


def split_lines(content: str) -> tuple[str, ...]:
    return tuple(_LINE_SPLIT_RE.split(content))


def read_file_record(full_path: Path, relative_path: str, mtime: int) -> FileRecord | None:
    """Read *full_path* into a fresh FileRecord, or None if it cannot be read."""
    try:
        content = full_path.read_bytes().decode("utf-8", errors="replace")
    except OSError as exc:
        logger.debug("Skipping unreadable file %s: %s", full_path, exc)
        return None

    return FileRecord(
        full_path=str(full_path),
        relative_path=relative_path,
        normalized_path=relative_path.lower(),
        lowered=content.lower(),
        lines=split_lines(content),
        bytes=len(content.encode("utf-8")),
        mtime=mtime,
    )


def build_index(
    root: Path | str,
    previous: Iterable[FileRecord] | None = None,
    max_file_bytes: int = MAX_FILE_BYTES,
) -> list[FileRecord]:
    """Return the current ordered file records for the repository at *root*.

    Args:
        root: Repository root directory.
        previous: Records from the previous pass; unchanged files are reused.
        max_file_bytes: Per-file size ceiling applied by the walker.
    """
    root_path = Path(root)
    previous_by_path = {r.relative_path: r for r in previous} if previous else {}

    indexed: list[FileRecord] = []
    reused = 0
    for full_path in walk_files(root_path, max_file_bytes=max_file_bytes):
        relative_path = full_path.relative_to(root_path).as_posix()
        try:
            mtime = full_path.stat().st_mtime_ns
        except OSError:
            continue

        prev = previous_by_path.get(relative_path)
        if prev is not None and prev.mtime == mtime:
            indexed.append(prev)
            reused += 1
            continue

        record = read_file_record(full_path, relative_path, mtime)
        if record is not None:
            indexed.append(record)

    logger.debug(
        "Indexed %d files under %s (%d reused)", len(indexed), root_path, reused
    )
    return indexed
