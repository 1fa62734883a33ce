"""Database schema initialization."""

from __future__ import annotations

import sqlite3

from repolens.db.migrations import run_migrations


def initialize(conn: sqlite3.Connection) -> None:
    """Initialize the database schema via the migration runner (idempotent)."""
    run_migrations(conn)
