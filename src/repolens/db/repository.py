"""Repository pattern for all repolens database operations.

Single interface for: file/edge snapshots, chat history, and the embedding
tables in both encodings. Table names for embeddings come from the capability
probe (repolens.db.vectors); this class only reads and writes.
"""

from __future__ import annotations

import json
import sqlite3
from typing import Iterable, Sequence

from repolens.db.models import ChatTurn, Chunk, StoredChunk
from repolens.db.vectors import EmbeddingTables

_DELETE_BATCH = 500


class Repository:
    """Data access layer for all repolens database entities.

    Wraps an open sqlite3.Connection. The connection is owned by the caller
    and must be closed after use.
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        """Initialise with an open database connection.

        Args:
            conn: An open sqlite3.Connection with the schema initialised
                (see repolens.db.schema.initialize).
        """
        self._conn = conn

    # ------------------------------------------------------------------
    # File + edge snapshots
    # ------------------------------------------------------------------

    def replace_snapshot(
        self,
        repo_key: str,
        files: Iterable[tuple[str, int]],
        edges: Iterable[tuple[str, str]],
    ) -> tuple[int, int]:
        """Replace all file and edge rows for *repo_key* in one transaction.

        Args:
            repo_key: Partition key of the repository.
            files: ``(relative_path, line_count)`` pairs.
            edges: ``(source_path, target_path)`` pairs.

        Returns:
            ``(file_rows, edge_rows)`` written.
        """
        file_rows = [(repo_key, path, count) for path, count in files]
        edge_rows = [(repo_key, src, dst) for src, dst in edges]
        try:
            self._conn.execute("DELETE FROM repo_file_snapshots WHERE repo_key = ?", (repo_key,))
            self._conn.execute("DELETE FROM graph_edge_snapshots WHERE repo_key = ?", (repo_key,))
            self._conn.executemany(
                """
                INSERT INTO repo_file_snapshots (repo_key, relative_path, line_count)
                VALUES (?, ?, ?)
                ON CONFLICT(repo_key, relative_path) DO UPDATE SET
                    line_count = excluded.line_count,
                    updated_at = datetime('now')
                """,
                file_rows,
            )
            self._conn.executemany(
                """
                INSERT INTO graph_edge_snapshots (repo_key, source_path, target_path)
                VALUES (?, ?, ?)
                ON CONFLICT(repo_key, source_path, target_path) DO UPDATE SET
                    updated_at = datetime('now')
                """,
                edge_rows,
            )
            self._conn.commit()
        except sqlite3.Error:
            self._conn.rollback()
            raise
        return len(file_rows), len(edge_rows)

    def snapshot_stats(self, repo_key: str) -> tuple[int, int]:
        """Return ``(file_rows, edge_rows)`` persisted for *repo_key*."""
        files = self._conn.execute(
            "SELECT COUNT(*) FROM repo_file_snapshots WHERE repo_key = ?", (repo_key,)
        ).fetchone()[0]
        edges = self._conn.execute(
            "SELECT COUNT(*) FROM graph_edge_snapshots WHERE repo_key = ?", (repo_key,)
        ).fetchone()[0]
        return files, edges

    # ------------------------------------------------------------------
    # Chat history
    # ------------------------------------------------------------------

    def add_chat_turn(self, turn: ChatTurn) -> int:
        """Insert a question/answer pair. Returns the new row id."""
        cur = self._conn.execute(
            "INSERT INTO chat_history (question, answer, citations) VALUES (?, ?, ?)",
            (turn.question, turn.answer, turn.citations),
        )
        self._conn.commit()
        return cur.lastrowid

    def recent_chats(self, limit: int = 12) -> list[ChatTurn]:
        """Return the newest *limit* chat turns, newest first."""
        rows = self._conn.execute(
            "SELECT id, question, answer, citations, created_at FROM chat_history "
            "ORDER BY id DESC LIMIT ?",
            (limit,),
        ).fetchall()
        return [
            ChatTurn(
                id=r["id"],
                question=r["question"],
                answer=r["answer"],
                citations=r["citations"],
                created_at=r["created_at"],
            )
            for r in rows
        ]

    # ------------------------------------------------------------------
    # Embedding tables (both encodings)
    # ------------------------------------------------------------------

    def existing_hashes(self, tables: EmbeddingTables, repo_key: str) -> set[str]:
        rows = self._conn.execute(
            f"SELECT content_hash FROM {tables.chunks} WHERE repo_key = ?", (repo_key,)
        ).fetchall()
        return {r[0] for r in rows}

    def upsert_chunk(
        self, tables: EmbeddingTables, chunk: Chunk, embedding: Sequence[float]
    ) -> int:
        """Insert or update *chunk* keyed by ``(repo_key, content_hash)``.

        Native mode writes the vector to the vec0 table under the chunk's
        rowid; JSON mode stores it inline. Returns the chunk rowid.
        """
        params = (
            chunk.repo_key,
            chunk.file_path,
            chunk.start_line,
            chunk.end_line,
            chunk.content,
            chunk.content_hash,
        )
        try:
            if tables.vec is None:
                self._conn.execute(
                    f"""
                    INSERT INTO {tables.chunks}
                        (repo_key, file_path, start_line, end_line, content, content_hash, embedding_json)
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT(repo_key, content_hash) DO UPDATE SET
                        file_path = excluded.file_path,
                        start_line = excluded.start_line,
                        end_line = excluded.end_line,
                        content = excluded.content,
                        embedding_json = excluded.embedding_json,
                        updated_at = datetime('now')
                    """,
                    (*params, json.dumps(list(embedding))),
                )
            else:
                self._conn.execute(
                    f"""
                    INSERT INTO {tables.chunks}
                        (repo_key, file_path, start_line, end_line, content, content_hash)
                    VALUES (?, ?, ?, ?, ?, ?)
                    ON CONFLICT(repo_key, content_hash) DO UPDATE SET
                        file_path = excluded.file_path,
                        start_line = excluded.start_line,
                        end_line = excluded.end_line,
                        content = excluded.content,
                        updated_at = datetime('now')
                    """,
                    params,
                )

            rowid = self._conn.execute(
                f"SELECT id FROM {tables.chunks} WHERE repo_key = ? AND content_hash = ?",
                (chunk.repo_key, chunk.content_hash),
            ).fetchone()[0]

            if tables.vec is not None:
                # vec0 has no UPSERT; replace the row under the same rowid.
                self._conn.execute(f"DELETE FROM {tables.vec} WHERE rowid = ?", (rowid,))
                self._conn.execute(
                    f"INSERT INTO {tables.vec}(rowid, repo_key, embedding) VALUES (?, ?, ?)",
                    (rowid, chunk.repo_key, json.dumps(list(embedding))),
                )
            self._conn.commit()
        except sqlite3.Error:
            self._conn.rollback()
            raise
        return rowid

    def delete_chunks_except(
        self, tables: EmbeddingTables, repo_key: str, keep: set[str]
    ) -> int:
        """Delete every chunk row of *repo_key* whose hash is not in *keep*.

        An empty *keep* deletes all rows of the repository. Returns the number
        of chunk rows removed.
        """
        stale = [
            r[0]
            for r in self._conn.execute(
                f"SELECT id, content_hash FROM {tables.chunks} WHERE repo_key = ?", (repo_key,)
            ).fetchall()
            if r[1] not in keep
        ]
        for i in range(0, len(stale), _DELETE_BATCH):
            batch = stale[i : i + _DELETE_BATCH]
            placeholders = ",".join("?" * len(batch))
            if tables.vec is not None:
                self._conn.execute(
                    f"DELETE FROM {tables.vec} WHERE rowid IN ({placeholders})", batch
                )
            self._conn.execute(
                f"DELETE FROM {tables.chunks} WHERE id IN ({placeholders})", batch
            )
        self._conn.commit()
        return len(stale)

    def count_chunks(self, tables: EmbeddingTables, repo_key: str) -> int:
        return self._conn.execute(
            f"SELECT COUNT(*) FROM {tables.chunks} WHERE repo_key = ?", (repo_key,)
        ).fetchone()[0]

    def search_vec(
        self,
        tables: EmbeddingTables,
        repo_key: str,
        embedding: Sequence[float],
        limit: int = 10,
    ) -> list[tuple[StoredChunk, float]]:
        """Nearest-neighbour search (native mode). Returns (chunk, distance) by distance."""
        if tables.vec is None:
            raise RuntimeError("search_vec requires native vector tables")

        vec_rows = self._conn.execute(
            f"""
            SELECT rowid, distance FROM {tables.vec}
            WHERE embedding MATCH ? AND k = ? AND repo_key = ?
            ORDER BY distance
            """,
            (json.dumps(list(embedding)), limit, repo_key),
        ).fetchall()

        results: list[tuple[StoredChunk, float]] = []
        for vec_row in vec_rows:
            row = self._conn.execute(
                f"""
                SELECT id, file_path, start_line, end_line, content, content_hash
                FROM {tables.chunks} WHERE id = ?
                """,
                (vec_row["rowid"],),
            ).fetchone()
            if row is not None:
                results.append((_row_to_chunk(row), vec_row["distance"]))
        return results

    def load_json_chunks(self, tables: EmbeddingTables, repo_key: str) -> list[StoredChunk]:
        """Return every JSON-encoded chunk of *repo_key* with its decoded embedding."""
        rows = self._conn.execute(
            f"""
            SELECT id, file_path, start_line, end_line, content, content_hash, embedding_json
            FROM {tables.chunks} WHERE repo_key = ?
            """,
            (repo_key,),
        ).fetchall()
        chunks = []
        for row in rows:
            chunk = _row_to_chunk(row)
            chunk.embedding = json.loads(row["embedding_json"] or "[]")
            chunks.append(chunk)
        return chunks


# ------------------------------------------------------------------
# Row → model helpers
# ------------------------------------------------------------------


def _row_to_chunk(row: sqlite3.Row) -> StoredChunk:
    return StoredChunk(
        rowid=row["id"],
        file_path=row["file_path"],
        start_line=row["start_line"],
        end_line=row["end_line"],
        content=row["content"],
        content_hash=row["content_hash"],
    )
