"""Line-window chunker for embeddings.

Window = ``chunk_lines`` (floor 20), overlap clamped to ``[0, window // 2]``,
stride = window − overlap (floor 1). Each chunk is content-addressed by
``sha1("{path}:{start}:{end}:{content}")`` so unchanged windows keep their hash
across passes and are never re-embedded.
"""

from __future__ import annotations

import hashlib
from typing import Iterable

from repolens.db.models import Chunk
from repolens.index.indexer import FileRecord

MIN_WINDOW = 20
DEFAULT_WINDOW = 120
DEFAULT_OVERLAP = 24
DEFAULT_MAX_CHUNKS = 1_200


def chunk_hash(file_path: str, start_line: int, end_line: int, content: str) -> str:
    return hashlib.sha1(
        f"{file_path}:{start_line}:{end_line}:{content}".encode("utf-8")
    ).hexdigest()


class LineChunker:
    """Split file records into overlapping line windows.

    Args:
        chunk_lines: Requested window size in lines (raised to 20 if smaller).
        overlap: Requested overlap in lines (clamped to half the window).
        max_chunks: Global cap; emission stops as soon as it is reached, so a
            capped run is a partial chunk set, not a representative sample.
    """

    def __init__(
        self,
        chunk_lines: int = DEFAULT_WINDOW,
        overlap: int = DEFAULT_OVERLAP,
        max_chunks: int = DEFAULT_MAX_CHUNKS,
    ) -> None:
        if max_chunks < 0:
            raise ValueError("max_chunks must be >= 0")
        self.window = max(MIN_WINDOW, chunk_lines)
        self.overlap = max(0, min(overlap, self.window // 2))
        self.stride = max(1, self.window - self.overlap)
        self.max_chunks = max_chunks

    def chunk(self, repo_key: str, files: Iterable[FileRecord]) -> list[Chunk]:
        """Return chunks for *files* in file order, then window order."""
        chunks: list[Chunk] = []
        if self.max_chunks == 0:
            return chunks

        for record in files:
            for chunk in self._windows(repo_key, record):
                chunks.append(chunk)
                if len(chunks) >= self.max_chunks:
                    return chunks
        return chunks

    def _windows(self, repo_key: str, record: FileRecord) -> Iterable[Chunk]:
        lines = record.lines
        total = len(lines)
        start = 0
        while start < total:
            end = min(total, start + self.window)
            content = "\n".join(lines[start:end]).strip()
            if content:
                yield Chunk(
                    repo_key=repo_key,
                    file_path=record.relative_path,
                    start_line=start + 1,
                    end_line=end,
                    content=content,
                    content_hash=chunk_hash(record.relative_path, start + 1, end, content),
                )
            if end >= total:
                break
            start += self.stride
