"""Snapshot and chat-history persistence.

Persistence is best-effort: every failure is logged and recorded in
``DatabaseStatus.last_error``, and never propagates to the read path.
"""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING

from repolens.config import DatabaseCfg
from repolens.db.connection import Database
from repolens.db.models import ChatTurn
from repolens.db.repository import Repository
from repolens.db.schema import initialize

if TYPE_CHECKING:
    from repolens.service import RepoState

logger = logging.getLogger(__name__)


@dataclass
class DatabaseStatus:
    enabled: bool = True
    connected: bool = False
    path: str | None = None
    last_write_at: str | None = None
    persisted_files: int = 0
    persisted_edges: int = 0
    persisted_chats: int = 0
    writing: bool = False
    last_error: str | None = None

    def to_dict(self) -> dict:
        return {
            "enabled": self.enabled,
            "connected": self.connected,
            "path": self.path,
            "lastWriteAt": self.last_write_at,
            "persistedFiles": self.persisted_files,
            "persistedEdges": self.persisted_edges,
            "persistedChats": self.persisted_chats,
            "writing": self.writing,
            "lastError": self.last_error,
        }


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def open_database(
    cfg: DatabaseCfg, workspace: Path | str, status: DatabaseStatus
) -> tuple[Database, sqlite3.Connection] | None:
    """Open and migrate the workspace database, or return None.

    A relative ``cfg.path`` is resolved against *workspace*. Failures leave
    ``status.connected`` False with the reason in ``status.last_error``.
    """
    status.enabled = cfg.enabled
    if not cfg.enabled:
        return None

    db_path = Path(cfg.path).expanduser()
    if not db_path.is_absolute():
        db_path = Path(workspace) / db_path
    status.path = str(db_path)

    db = Database(db_path)
    try:
        conn = db.connect()
        initialize(conn)
    except (sqlite3.Error, OSError) as exc:
        logger.error("Could not open database %s: %s", db_path, exc)
        status.last_error = str(exc)
        return None

    status.connected = True
    return db, conn


class SnapshotWriter:
    """Writes file/edge snapshots and chat turns for the active repository."""

    def __init__(self, conn: sqlite3.Connection, status: DatabaseStatus) -> None:
        self._repo = Repository(conn)
        self.status = status

    async def persist(self, state: RepoState) -> bool:
        """Replace the stored snapshot of ``state.repo`` with *state*.

        Returns False when skipped (a write is already running) or failed.
        """
        status = self.status
        if not status.connected or status.writing:
            return False

        status.writing = True
        try:
            files, edges = self._repo.replace_snapshot(
                state.repo.key,
                ((f.relative_path, len(f.lines)) for f in state.files),
                ((e.source, e.target) for e in state.graph.edges),
            )
        except sqlite3.Error as exc:
            logger.warning("Snapshot write failed for %s: %s", state.repo.key, exc)
            status.last_error = str(exc)
            return False
        finally:
            status.writing = False

        status.persisted_files = files
        status.persisted_edges = edges
        status.last_write_at = _now()
        status.last_error = None
        logger.debug("Persisted %d files and %d edges for %s", files, edges, state.repo.key)
        return True

    def record_chat(self, question: str, answer: str, citations: str = "[]") -> int | None:
        if not self.status.connected:
            return None
        try:
            row_id = self._repo.add_chat_turn(
                ChatTurn(question=question, answer=answer, citations=citations)
            )
        except sqlite3.Error as exc:
            logger.warning("Chat history write failed: %s", exc)
            self.status.last_error = str(exc)
            return None
        self.status.persisted_chats += 1
        self.status.last_write_at = _now()
        return row_id

    def recent_chats(self, limit: int = 12) -> list[ChatTurn]:
        if not self.status.connected:
            return []
        try:
            return self._repo.recent_chats(limit)
        except sqlite3.Error as exc:
            self.status.last_error = str(exc)
            return []

    def snapshot_stats(self, repo_key: str) -> dict | None:
        """Persisted row counts for *repo_key*; None when unavailable."""
        if not self.status.connected:
            return None
        try:
            files, edges = self._repo.snapshot_stats(repo_key)
        except sqlite3.Error as exc:
            self.status.last_error = str(exc)
            return None
        return {"files": files, "edges": edges}
