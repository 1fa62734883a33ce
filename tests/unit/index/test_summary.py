"""Tests for the repository summary builder."""

from __future__ import annotations

import math

import pytest

from repolens.index.graph import Graph, GraphEdge, build_graph
from repolens.index.indexer import FileRecord, build_index, split_lines
from repolens.index.summary import (
    SUGGESTED_QUESTIONS,
    build_summary,
    importance_score,
    language_for,
)


def _record(path: str, content: str) -> FileRecord:
    return FileRecord(
        full_path=f"/repo/{path}",
        relative_path=path,
        normalized_path=path.lower(),
        lowered=content.lower(),
        lines=split_lines(content),
        bytes=len(content.encode("utf-8")),
        mtime=0,
    )


@pytest.mark.parametrize("path,language", [
    ("src/a.ts", "TypeScript"),
    ("b.JSX", "JavaScript"),
    ("c.h", "C/C++ Headers"),
    ("notes.txt", "Text"),
    ("weird.xyz", "Other (.xyz)"),
])
def test_language_for(path, language):
    assert language_for(path) == language


def test_importance_score_formula():
    expected = round(math.log10(40 + 10) + 2 * 1.8 + 1 * 1.2, 2)
    assert importance_score(40, 2, 1, "helpers.ts") == expected


def test_importance_score_bonuses():
    base = importance_score(0, 0, 0, "util.ts")
    assert importance_score(0, 0, 0, "index.ts") == round(base + 8, 2)
    assert importance_score(0, 0, 0, "package.json") == round(base + 7, 2)


def test_build_summary_from_sample_repo(sample_repo):
    files = build_index(sample_repo)
    graph = build_graph(files)
    summary = build_summary(None, files, graph)

    assert summary.indexed_files == 5
    assert summary.total_lines == sum(len(f.lines) for f in files)
    assert summary.languages[0].language == "TypeScript"
    assert summary.languages[0].files == 2
    assert summary.readme_preview.startswith("# Sample")
    assert summary.suggested_questions == SUGGESTED_QUESTIONS

    auth = next(f for f in summary.main_files if f.file == "src/lib/auth.ts")
    assert auth.incoming == 1
    index = next(f for f in summary.main_files if f.file == "src/index.ts")
    assert index.outgoing == 1
    # auth.ts: entry-point name bonus plus one incoming edge
    assert summary.main_files[0].file == "src/lib/auth.ts"


def test_main_files_top_ten_sorted():
    files = [_record(f"f{i}.md", "line\n" * i) for i in range(15)]
    summary = build_summary(None, files, Graph())
    assert len(summary.main_files) == 10
    scores = [f.score for f in summary.main_files]
    assert scores == sorted(scores, reverse=True)
    assert summary.main_files[0].file == "f14.md"


def test_readme_only_at_root():
    files = [_record("docs/README.md", "nested")]
    assert build_summary(None, files, Graph()).readme_preview is None


def test_readme_preview_truncated():
    content = "\n".join(f"line {i}" for i in range(50))
    summary = build_summary(None, [_record("readme", content)], Graph())
    assert summary.readme_preview.splitlines() == [f"line {i}" for i in range(10)]

    long_line = "x" * 2_000
    summary = build_summary(None, [_record("README.txt", long_line)], Graph())
    assert len(summary.readme_preview) == 900


def test_languages_capped_at_ten():
    exts = [".ts", ".js", ".py", ".go", ".rs", ".java", ".kt", ".rb", ".php", ".cs", ".sql", ".ini"]
    files = [_record(f"f{i}{ext}", "x\n" * (i + 1)) for i, ext in enumerate(exts)]
    summary = build_summary(None, files, Graph())
    assert len(summary.languages) == 10
    assert summary.languages[0].language == "INI/Config"


def test_to_dict_shape():
    files = [_record("a.ts", "import b from './b'"), _record("b.ts", "")]
    graph = Graph(edges=(GraphEdge("a.ts", "b.ts"),))
    data = build_summary(None, files, graph).to_dict()
    assert data["totals"] == {"indexedFiles": 2, "totalLines": 2}
    assert data["repo"] is None
    assert {"file", "lineCount", "incoming", "outgoing", "score"} <= set(data["mainFiles"][0])
