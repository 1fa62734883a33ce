"""Domain models for the repolens database layer."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class Chunk:
    """A line window of one file, content-addressed by ``content_hash``.

    Line numbers are 1-based and inclusive.
    """

    repo_key: str
    file_path: str
    start_line: int
    end_line: int
    content: str
    content_hash: str


@dataclass
class StoredChunk:
    """A chunk row read back from the embedding tables."""

    file_path: str
    start_line: int
    end_line: int
    content: str
    content_hash: str
    rowid: int | None = None
    embedding: list[float] | None = None  # populated for the JSON encoding only


@dataclass
class ChatTurn:
    question: str
    answer: str
    citations: str = "[]"
    id: int | None = None
    created_at: str | None = None
