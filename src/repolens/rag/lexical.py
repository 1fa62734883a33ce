"""Lexical retrieval — token hits over paths and content.

Path hits weigh 4, content hits 2 (tokens longer than 4 chars) or 1, which
biases results toward files whose name matches the question.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterable

from repolens.index.indexer import FileRecord
from repolens.rag.citations import Citation, normalize_snippet

MAX_TOKENS = 14
MAX_FILES = 8
CITATIONS_PER_FILE = 3

_PATH_HIT = 4
_TOKEN_RE = re.compile(r"[a-z0-9_]+")


@dataclass(frozen=True)
class FileMatch:
    file: str
    score: int
    citations: tuple[Citation, ...]


def tokenize(text: str) -> list[str]:
    """Distinct lowercase ``[a-z0-9_]`` runs of length ≥ 2, first 14, in order."""
    tokens: list[str] = []
    for token in _TOKEN_RE.findall(text.lower()):
        if len(token) > 1 and token not in tokens:
            tokens.append(token)
            if len(tokens) >= MAX_TOKENS:
                break
    return tokens


def _content_weight(token: str) -> int:
    return 2 if len(token) > 4 else 1


def score_line(line_lower: str, tokens: Iterable[str]) -> int:
    return sum(_content_weight(t) for t in tokens if t in line_lower)


def score_file(record: FileRecord, tokens: Iterable[str]) -> int:
    score = 0
    for token in tokens:
        if token in record.normalized_path:
            score += _PATH_HIT
        if token in record.lowered:
            score += _content_weight(token)
    return score


def best_matches(question: str, files: Iterable[FileRecord]) -> list[FileMatch]:
    """Rank *files* for *question*; top 8 files with up to 3 line citations each."""
    tokens = tokenize(question)
    if not tokens:
        return []

    ranked: list[FileMatch] = []
    for record in files:
        score = score_file(record, tokens)
        if score <= 0:
            continue

        citations = []
        for index, line in enumerate(record.lines):
            line_score = score_line(line.lower(), tokens)
            if line_score > 0:
                citations.append(
                    Citation(
                        file=record.relative_path,
                        line=index + 1,
                        snippet=normalize_snippet(line),
                        score=line_score,
                    )
                )
        citations.sort(key=lambda c: c.score, reverse=True)
        ranked.append(
            FileMatch(
                file=record.relative_path,
                score=score,
                citations=tuple(citations[:CITATIONS_PER_FILE]),
            )
        )

    ranked.sort(key=lambda m: m.score, reverse=True)
    return ranked[:MAX_FILES]


def lexical_citations(matches: Iterable[FileMatch], limit: int = 12) -> list[Citation]:
    """Flatten per-file citations in rank order, capped at *limit*."""
    flat = [c for match in matches for c in match.citations]
    return flat[:limit]
