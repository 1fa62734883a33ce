"""Forward-only migration runner for the repolens database schema.

Embedding tables (repo_chunks_*, vec_repo_chunks_*) are NOT migration-managed;
they are provisioned by the vector capability probe in repolens.db.vectors.
"""

from __future__ import annotations

import sqlite3

# schema_version is the bootstrap table, created before migrations run.
_CREATE_SCHEMA_VERSION = """
CREATE TABLE IF NOT EXISTS schema_version (
    version     INTEGER NOT NULL,
    applied_at  DATETIME NOT NULL DEFAULT (datetime('now'))
)
"""

_V1_SQL = """
CREATE TABLE IF NOT EXISTS repo_file_snapshots (
    repo_key        TEXT NOT NULL,
    relative_path   TEXT NOT NULL,
    line_count      INTEGER NOT NULL,
    updated_at      DATETIME NOT NULL DEFAULT (datetime('now')),
    PRIMARY KEY (repo_key, relative_path)
);

CREATE INDEX IF NOT EXISTS repo_file_snapshots_repo_key_idx
    ON repo_file_snapshots (repo_key);

CREATE TABLE IF NOT EXISTS graph_edge_snapshots (
    repo_key        TEXT NOT NULL,
    source_path     TEXT NOT NULL,
    target_path     TEXT NOT NULL,
    updated_at      DATETIME NOT NULL DEFAULT (datetime('now')),
    PRIMARY KEY (repo_key, source_path, target_path)
);

CREATE INDEX IF NOT EXISTS graph_edge_snapshots_repo_key_idx
    ON graph_edge_snapshots (repo_key);

CREATE TABLE IF NOT EXISTS chat_history (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    question        TEXT NOT NULL,
    answer          TEXT NOT NULL,
    citations       TEXT NOT NULL DEFAULT '[]',
    created_at      DATETIME NOT NULL DEFAULT (datetime('now'))
);
"""

# Append-only. Each entry: (version: int, sql: str).
# executescript() issues an implicit COMMIT before running.
MIGRATIONS: list[tuple[int, str]] = [
    (1, _V1_SQL),
]

CURRENT_VERSION = MIGRATIONS[-1][0]


def run_migrations(conn: sqlite3.Connection) -> None:
    """Apply all pending migrations in ascending version order.

    Idempotent: safe to call on a database at any version.
    """
    conn.execute(_CREATE_SCHEMA_VERSION)
    conn.commit()

    row = conn.execute("SELECT MAX(version) FROM schema_version").fetchone()
    current = row[0] if row[0] is not None else 0

    for version, sql in MIGRATIONS:
        if version > current:
            conn.executescript(sql)
            conn.execute(
                "INSERT INTO schema_version (version) VALUES (?)", (version,)
            )
            conn.commit()
