"""Citation model and vector-first merging."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterable

MAX_MERGED = 12
SNIPPET_CHARS = 240

_WS_RE = re.compile(r"\s+")


@dataclass(frozen=True)
class Citation:
    """A ``file:line`` reference with a one-line snippet.

    Attributes:
        file: Root-relative file path.
        line: 1-based line number (chunk start line for vector hits).
        snippet: Whitespace-normalized text, at most 240 characters.
        score: Channel-specific score (line hits or cosine similarity).
        source: ``"lexical"``, ``"vector"`` or ``"vector-json"``.
        end_line: Last line of the chunk for vector hits.
    """

    file: str
    line: int
    snippet: str
    score: float
    source: str = "lexical"
    end_line: int | None = None

    def to_dict(self) -> dict:
        data = {
            "file": self.file,
            "line": self.line,
            "snippet": self.snippet,
            "score": self.score,
            "source": self.source,
        }
        if self.end_line is not None:
            data["endLine"] = self.end_line
        return data


def normalize_snippet(text: str) -> str:
    return _WS_RE.sub(" ", text).strip()[:SNIPPET_CHARS]


def merge_citations(
    vector: Iterable[Citation], lexical: Iterable[Citation], limit: int = MAX_MERGED
) -> list[Citation]:
    """Vector citations first, then lexical; dedup on (file, line, snippet)."""
    seen: set[tuple[str, int, str]] = set()
    merged: list[Citation] = []
    for citation in (*vector, *lexical):
        if len(merged) >= limit:
            break
        key = (citation.file, citation.line, citation.snippet)
        if key in seen:
            continue
        seen.add(key)
        merged.append(citation)
    return merged
