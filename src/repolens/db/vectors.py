"""Per-model embedding tables: native sqlite-vec or JSON-array fallback.

Native encoding: a regular ``repo_chunks_{slug}`` table holds chunk metadata;
``vec_repo_chunks_{slug}`` (vec0, ``repo_key`` partition key, cosine distance)
holds the vector under the same rowid.

JSON encoding: ``repo_chunks_json_{slug}`` holds metadata and the embedding as
a JSON float array; similarity is computed in-process.
"""

from __future__ import annotations

import re
import sqlite3
from dataclasses import dataclass

NATIVE = "native"
JSON = "json"


@dataclass(frozen=True)
class EmbeddingTables:
    """Table names chosen by the capability probe.

    Attributes:
        mode: ``"native"`` or ``"json"``.
        chunks: Metadata table (both modes).
        vec: vec0 table (native mode only).
    """

    mode: str
    chunks: str
    vec: str | None = None


def model_to_slug(model: str) -> str:
    """Convert a provider/model string to a valid table name suffix.

    Examples:
        "openai/text-embedding-3-small" -> "openai_text_embedding_3_small"
    """
    return re.sub(r"[^a-z0-9]", "_", model.lower())


def native_table_names(model_slug: str) -> tuple[str, str]:
    return f"repo_chunks_{model_slug}", f"vec_repo_chunks_{model_slug}"


def json_table_name(model_slug: str) -> str:
    return f"repo_chunks_json_{model_slug}"


def _check_slug(model_slug: str) -> None:
    if not re.fullmatch(r"[a-z0-9_]+", model_slug):
        raise ValueError(
            f"Invalid model_slug '{model_slug}' — use model_to_slug() to sanitize."
        )


def _table_exists(conn: sqlite3.Connection, name: str) -> bool:
    row = conn.execute(
        "SELECT name FROM sqlite_master WHERE type='table' AND name=?", (name,)
    ).fetchone()
    return row is not None


def ensure_native_tables(
    conn: sqlite3.Connection, model_slug: str, dimensions: int
) -> EmbeddingTables:
    """Create the metadata + vec0 tables for *model_slug* if missing.

    Raises:
        ValueError: On an unsanitized slug or non-positive dimensions.
        sqlite3.Error: If the vec0 module is not available on *conn*.
    """
    _check_slug(model_slug)
    if dimensions < 1:
        raise ValueError(f"dimensions must be >= 1, got {dimensions}")

    chunks, vec = native_table_names(model_slug)
    if not _table_exists(conn, vec):
        conn.execute(
            f"CREATE VIRTUAL TABLE {vec} USING vec0("
            f"repo_key text partition key, "
            f"embedding float[{dimensions}] distance_metric=cosine)"
        )
    conn.execute(
        f"""
        CREATE TABLE IF NOT EXISTS {chunks} (
            id              INTEGER PRIMARY KEY AUTOINCREMENT,
            repo_key        TEXT NOT NULL,
            file_path       TEXT NOT NULL,
            start_line      INTEGER NOT NULL,
            end_line        INTEGER NOT NULL,
            content         TEXT NOT NULL,
            content_hash    TEXT NOT NULL,
            updated_at      DATETIME NOT NULL DEFAULT (datetime('now')),
            UNIQUE (repo_key, content_hash)
        )
        """
    )
    conn.execute(f"CREATE INDEX IF NOT EXISTS {chunks}_repo_key_idx ON {chunks} (repo_key)")
    conn.commit()
    return EmbeddingTables(mode=NATIVE, chunks=chunks, vec=vec)


def ensure_json_table(conn: sqlite3.Connection, model_slug: str) -> EmbeddingTables:
    """Create the JSON-array fallback table for *model_slug* if missing."""
    _check_slug(model_slug)
    table = json_table_name(model_slug)
    conn.execute(
        f"""
        CREATE TABLE IF NOT EXISTS {table} (
            id              INTEGER PRIMARY KEY AUTOINCREMENT,
            repo_key        TEXT NOT NULL,
            file_path       TEXT NOT NULL,
            start_line      INTEGER NOT NULL,
            end_line        INTEGER NOT NULL,
            content         TEXT NOT NULL,
            content_hash    TEXT NOT NULL,
            embedding_json  TEXT NOT NULL,
            updated_at      DATETIME NOT NULL DEFAULT (datetime('now')),
            UNIQUE (repo_key, content_hash)
        )
        """
    )
    conn.execute(f"CREATE INDEX IF NOT EXISTS {table}_repo_key_idx ON {table} (repo_key)")
    conn.commit()
    return EmbeddingTables(mode=JSON, chunks=table)
