"""Tests for snapshot and chat-history persistence."""

from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from repolens.config import DatabaseCfg, IndexCfg
from repolens.persistence import DatabaseStatus, SnapshotWriter, open_database
from repolens.repos import workspace_record
from repolens.service import build_state


@pytest.fixture
def writer(tmp_path):
    status = DatabaseStatus()
    db, conn = open_database(DatabaseCfg(path="state.db"), tmp_path, status)
    yield SnapshotWriter(conn, status)
    conn.close()


def test_open_database_disabled(tmp_path: Path) -> None:
    status = DatabaseStatus()
    assert open_database(DatabaseCfg(enabled=False), tmp_path, status) is None
    assert status.enabled is False
    assert status.connected is False
    assert not (tmp_path / ".repolens.db").exists()


def test_open_database_relative_path(tmp_path: Path) -> None:
    status = DatabaseStatus()
    db, conn = open_database(DatabaseCfg(path="nested.db"), tmp_path, status)
    try:
        assert status.connected is True
        assert status.path == str(tmp_path / "nested.db")
        assert (tmp_path / "nested.db").exists()
    finally:
        conn.close()


def test_open_database_failure_is_recorded(tmp_path: Path) -> None:
    blocker = tmp_path / "not-a-dir"
    blocker.write_text("x", encoding="utf-8")
    status = DatabaseStatus()
    assert open_database(DatabaseCfg(path=str(blocker / "db.sqlite")), tmp_path, status) is None
    assert status.connected is False
    assert status.last_error


def test_persist_snapshot(writer, sample_repo) -> None:
    state = build_state(workspace_record(sample_repo), None, IndexCfg())
    assert asyncio.run(writer.persist(state)) is True

    assert writer.status.persisted_files == 5
    assert writer.status.persisted_edges == 1
    assert writer.status.last_write_at is not None
    assert writer.status.writing is False
    assert writer.snapshot_stats(".") == {"files": 5, "edges": 1}
    assert writer.snapshot_stats("repos/other") == {"files": 0, "edges": 0}


def test_persist_replaces_previous_snapshot(writer, sample_repo) -> None:
    asyncio.run(writer.persist(build_state(workspace_record(sample_repo), None, IndexCfg())))
    (sample_repo / "src" / "app.py").unlink()
    asyncio.run(writer.persist(build_state(workspace_record(sample_repo), None, IndexCfg())))
    assert writer.snapshot_stats(".") == {"files": 4, "edges": 1}


def test_persist_skipped_while_writing(writer, sample_repo) -> None:
    writer.status.writing = True
    state = build_state(workspace_record(sample_repo), None, IndexCfg())
    assert asyncio.run(writer.persist(state)) is False
    assert writer.snapshot_stats(".") == {"files": 0, "edges": 0}


def test_record_and_list_chats(writer) -> None:
    first = writer.record_chat("q1", "a1")
    second = writer.record_chat("q2", "a2", '[{"file": "a.py"}]')
    assert second > first
    assert writer.status.persisted_chats == 2

    turns = writer.recent_chats(limit=1)
    assert [(t.question, t.answer, t.citations) for t in turns] == [("q2", "a2", '[{"file": "a.py"}]')]
    assert turns[0].created_at


def test_disconnected_writer_is_inert(writer, sample_repo) -> None:
    writer.status.connected = False
    state = build_state(workspace_record(sample_repo), None, IndexCfg())
    assert asyncio.run(writer.persist(state)) is False
    assert writer.record_chat("q", "a") is None
    assert writer.recent_chats() == []
    assert writer.snapshot_stats(".") is None


def test_status_to_dict_keys() -> None:
    assert set(DatabaseStatus().to_dict()) == {
        "enabled", "connected", "path", "lastWriteAt", "persistedFiles",
        "persistedEdges", "persistedChats", "writing", "lastError",
    }
