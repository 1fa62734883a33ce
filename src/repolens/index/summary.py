"""Repository summary — language totals, important files, README excerpt."""

from __future__ import annotations

import math
import posixpath
import re
from collections import Counter
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Sequence

from repolens.index.graph import Graph
from repolens.index.indexer import FileRecord

if TYPE_CHECKING:
    from repolens.repos import RepoRecord

LANGUAGE_BY_EXT: dict[str, str] = {
    ".ts": "TypeScript",
    ".tsx": "TypeScript",
    ".js": "JavaScript",
    ".jsx": "JavaScript",
    ".mjs": "JavaScript",
    ".cjs": "JavaScript",
    ".py": "Python",
    ".go": "Go",
    ".rs": "Rust",
    ".java": "Java",
    ".kt": "Kotlin",
    ".rb": "Ruby",
    ".php": "PHP",
    ".cs": "C#",
    ".cpp": "C++",
    ".c": "C",
    ".h": "C/C++ Headers",
    ".hpp": "C++ Headers",
    ".json": "JSON",
    ".md": "Markdown",
    ".yml": "YAML",
    ".yaml": "YAML",
    ".toml": "TOML",
    ".sql": "SQL",
    ".txt": "Text",
    ".ini": "INI/Config",
}

SUGGESTED_QUESTIONS: tuple[str, ...] = (
    "Where is authentication implemented?",
    "Which files define API routes?",
    "How does data flow from route to DB?",
    "Where are shared utilities located?",
)

_ENTRY_POINT_RE = re.compile(
    r"^(main|index|app|server|client|router|routes|api|auth|config|model|service|controller|handler|entry)",
    re.IGNORECASE,
)
_MANIFEST_RE = re.compile(
    r"^(package\.json|pyproject\.toml|go\.mod|cargo\.toml|requirements\.txt|pom\.xml)$",
    re.IGNORECASE,
)
_README_RE = re.compile(r"^readme(\.md|\.txt)?$", re.IGNORECASE)

_ENTRY_POINT_BONUS = 8.0
_MANIFEST_BONUS = 7.0
_TOP_LANGUAGES = 10
_TOP_FILES = 10
_README_LINES = 10
_README_CHARS = 900


@dataclass(frozen=True)
class LanguageStats:
    language: str
    files: int
    lines: int
    bytes: int


@dataclass(frozen=True)
class ImportantFile:
    file: str
    line_count: int
    incoming: int
    outgoing: int
    score: float


@dataclass(frozen=True)
class RepoSummary:
    repo: "RepoRecord | None"
    indexed_files: int
    total_lines: int
    languages: tuple[LanguageStats, ...]
    main_files: tuple[ImportantFile, ...]
    readme_preview: str | None
    suggested_questions: tuple[str, ...] = field(default=SUGGESTED_QUESTIONS)

    def to_dict(self) -> dict:
        return {
            "repo": self.repo.to_dict() if self.repo else None,
            "totals": {"indexedFiles": self.indexed_files, "totalLines": self.total_lines},
            "languages": [
                {"language": l.language, "files": l.files, "lines": l.lines, "bytes": l.bytes}
                for l in self.languages
            ],
            "mainFiles": [
                {
                    "file": f.file,
                    "lineCount": f.line_count,
                    "incoming": f.incoming,
                    "outgoing": f.outgoing,
                    "score": f.score,
                }
                for f in self.main_files
            ],
            "readmePreview": self.readme_preview,
            "suggestedQuestions": list(self.suggested_questions),
        }


def language_for(relative_path: str) -> str:
    ext = posixpath.splitext(relative_path)[1].lower()
    return LANGUAGE_BY_EXT.get(ext) or f"Other ({ext or 'none'})"


def importance_score(line_count: int, incoming: int, outgoing: int, basename: str) -> float:
    """Composite centrality + naming heuristic used to rank notable files."""
    score = math.log10(line_count + 10) + incoming * 1.8 + outgoing * 1.2
    if _ENTRY_POINT_RE.match(basename):
        score += _ENTRY_POINT_BONUS
    if _MANIFEST_RE.match(basename):
        score += _MANIFEST_BONUS
    return round(score, 2)


def _language_stats(files: Sequence[FileRecord]) -> tuple[LanguageStats, ...]:
    totals: dict[str, list[int]] = {}
    for record in files:
        entry = totals.setdefault(language_for(record.relative_path), [0, 0, 0])
        entry[0] += 1
        entry[1] += len(record.lines)
        entry[2] += record.bytes

    stats = [LanguageStats(lang, f, l, b) for lang, (f, l, b) in totals.items()]
    stats.sort(key=lambda s: s.lines, reverse=True)
    return tuple(stats[:_TOP_LANGUAGES])


def _readme_preview(files: Sequence[FileRecord]) -> str | None:
    for record in files:
        if "/" not in record.relative_path and _README_RE.match(record.relative_path):
            return "\n".join(record.lines[:_README_LINES])[:_README_CHARS]
    return None


def build_summary(
    repo: "RepoRecord | None", files: Sequence[FileRecord], graph: Graph
) -> RepoSummary:
    """Derive aggregate statistics from indexed *files* and their *graph*."""
    incoming: Counter[str] = Counter(e.target for e in graph.edges)
    outgoing: Counter[str] = Counter(e.source for e in graph.edges)

    ranked = [
        ImportantFile(
            file=r.relative_path,
            line_count=len(r.lines),
            incoming=incoming[r.relative_path],
            outgoing=outgoing[r.relative_path],
            score=importance_score(
                len(r.lines),
                incoming[r.relative_path],
                outgoing[r.relative_path],
                posixpath.basename(r.relative_path),
            ),
        )
        for r in files
    ]
    ranked.sort(key=lambda f: f.score, reverse=True)

    return RepoSummary(
        repo=repo,
        indexed_files=len(files),
        total_lines=sum(len(r.lines) for r in files),
        languages=_language_stats(files),
        main_files=tuple(ranked[:_TOP_FILES]),
        readme_preview=_readme_preview(files),
    )
