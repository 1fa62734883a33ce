"""Tests for the line-window chunker."""

from __future__ import annotations

import hashlib

import pytest

from repolens.index.chunker import LineChunker, chunk_hash
from repolens.index.indexer import FileRecord, split_lines


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


def _numbered(n: int) -> str:
    return "\n".join(f"line {i}" for i in range(1, n + 1))


def test_130_lines_two_windows():
    chunks = LineChunker(120, 24).chunk(".", [_record("a.py", _numbered(130))])
    assert [(c.start_line, c.end_line) for c in chunks] == [(1, 120), (97, 130)]
    assert chunks[1].content.splitlines()[0] == "line 97"


def test_window_and_overlap_clamped():
    chunker = LineChunker(chunk_lines=5, overlap=50)
    assert chunker.window == 20
    assert chunker.overlap == 10
    assert chunker.stride == 10

    negative = LineChunker(chunk_lines=40, overlap=-3)
    assert negative.overlap == 0
    assert negative.stride == 40


def test_short_file_single_chunk():
    chunks = LineChunker().chunk(".", [_record("a.py", _numbered(5))])
    assert [(c.start_line, c.end_line) for c in chunks] == [(1, 5)]


def test_whitespace_windows_skipped():
    content = "\n" * 60 + "real content"
    chunks = LineChunker(20, 0).chunk(".", [_record("a.py", content)])
    assert len(chunks) == 1
    assert chunks[0].content == "real content"
    assert chunks[0].start_line == 61


def test_empty_file_no_chunks():
    assert LineChunker().chunk(".", [_record("a.py", "")]) == []


def test_max_chunks_cap_is_global():
    files = [_record(f"f{i}.py", _numbered(100)) for i in range(5)]
    chunks = LineChunker(20, 0, max_chunks=7).chunk(".", files)
    assert len(chunks) == 7
    assert [c.file_path for c in chunks] == ["f0.py"] * 5 + ["f1.py"] * 2


def test_max_chunks_zero():
    assert LineChunker(max_chunks=0).chunk(".", [_record("a.py", "x")]) == []


def test_negative_max_chunks_rejected():
    with pytest.raises(ValueError):
        LineChunker(max_chunks=-1)


def test_chunk_hash_sha1_of_location_and_content():
    expected = hashlib.sha1(b"a.py:1:2:hello").hexdigest()
    assert chunk_hash("a.py", 1, 2, "hello") == expected


def test_rechunking_is_deterministic():
    record = _record("src/a.py", _numbered(300))
    first = LineChunker().chunk("repos/x", [record])
    second = LineChunker().chunk("repos/x", [record])
    assert [c.content_hash for c in first] == [c.content_hash for c in second]
    assert all(c.repo_key == "repos/x" for c in first)


def test_hash_depends_on_position():
    a = LineChunker(20, 0).chunk(".", [_record("a.py", "same")])
    b = LineChunker(20, 0).chunk(".", [_record("a.py", "\nsame")])
    assert a[0].content == b[0].content
    assert a[0].content_hash != b[0].content_hash
