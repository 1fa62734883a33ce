"""SQLite connection layer with optional sqlite-vec extension."""

from __future__ import annotations

import logging
import sqlite3
from pathlib import Path

import sqlite_vec

logger = logging.getLogger(__name__)


def load_vector_extension(conn: sqlite3.Connection) -> bool:
    """Try to load sqlite-vec into *conn*. Returns False when unavailable.

    Python builds without extension loading, or a platform without a
    sqlite-vec binary, leave the connection usable for the JSON fallback.
    """
    try:
        conn.enable_load_extension(True)
        sqlite_vec.load(conn)
        conn.enable_load_extension(False)
    except (AttributeError, sqlite3.Error, OSError) as exc:
        logger.info("sqlite-vec unavailable, vector search will use JSON storage: %s", exc)
        return False
    return True


class Database:
    """Per-workspace SQLite database with optional sqlite-vec vector search."""

    def __init__(self, db_path: Path | str, load_vec: bool = True) -> None:
        """Store the database path. Call connect() to open the connection.

        Args:
            db_path: Path to the SQLite database file (created if missing).
            load_vec: Attempt to load sqlite-vec on connect.
        """
        self.db_path = Path(db_path)
        self.load_vec = load_vec
        self.vec_loaded = False
        self._conn: sqlite3.Connection | None = None

    def connect(self) -> sqlite3.Connection:
        """Open a connection, try to load sqlite-vec, and return the connection."""
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        self.vec_loaded = load_vector_extension(conn) if self.load_vec else False
        conn.execute("PRAGMA foreign_keys = ON")
        conn.execute("PRAGMA journal_mode = WAL")
        return conn

    def __enter__(self) -> sqlite3.Connection:
        """Open the database and return the connection (context manager support)."""
        self._conn = self.connect()
        return self._conn

    def __exit__(self, *args: object) -> None:
        """Close the connection when leaving the context manager."""
        if self._conn:
            self._conn.close()
            self._conn = None
