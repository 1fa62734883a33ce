"""Vector retrieval — chunk embedding sync and semantic search.

The store is provisioned once per process. Native mode uses sqlite-vec KNN;
JSON mode loads every row of the repository and ranks in-process with
cosine similarity. The chosen mode does not change afterwards.

Sync is mark-and-sweep: only chunks whose content hash is not stored yet are
embedded, and rows whose hash is no longer produced are deleted. Syncing an
unchanged repository twice therefore makes no provider calls the second time.
"""

from __future__ import annotations

import logging
import math
import sqlite3
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Sequence

from repolens.config import EmbeddingCfg
from repolens.db.repository import Repository
from repolens.db.vectors import NATIVE, EmbeddingTables, ensure_json_table, ensure_native_tables, model_to_slug
from repolens.index.chunker import LineChunker
from repolens.rag import llm_client
from repolens.rag.citations import Citation, normalize_snippet

if TYPE_CHECKING:
    from repolens.rag.llm_client import ModelSettings
    from repolens.service import RepoState

logger = logging.getLogger(__name__)


class EmbeddingBatchError(RuntimeError):
    """Raised when the provider returns a different number of vectors than inputs."""


@dataclass
class EmbeddingStatus:
    enabled: bool = True
    model: str = ""
    dimensions: int = 0
    storage_mode: str | None = None
    vector_extension_ready: bool = False
    ready: bool = False
    syncing: bool = False
    chunk_count: int = 0
    last_sync_at: str | None = None
    last_repo_key: str | None = None
    last_error: str | None = None

    def to_dict(self) -> dict:
        return {
            "enabled": self.enabled,
            "model": self.model,
            "dimensions": self.dimensions,
            "storageMode": self.storage_mode,
            "vectorExtensionReady": self.vector_extension_ready,
            "ready": self.ready,
            "syncing": self.syncing,
            "chunkCount": self.chunk_count,
            "lastSyncAt": self.last_sync_at,
            "lastRepoKey": self.last_repo_key,
            "lastError": self.last_error,
        }


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine over the overlapping prefix of *a* and *b*; 0.0 when undefined."""
    length = min(len(a), len(b))
    if not length:
        return 0.0

    dot = norm_a = norm_b = 0.0
    for i in range(length):
        av = float(a[i] or 0.0)
        bv = float(b[i] or 0.0)
        dot += av * bv
        norm_a += av * av
        norm_b += bv * bv

    if not norm_a or not norm_b:
        return 0.0
    return dot / (math.sqrt(norm_a) * math.sqrt(norm_b))


def _first_line_snippet(content: str) -> str:
    return normalize_snippet(content.splitlines()[0] if content else "")


class VectorStore:
    """Embedding storage and retrieval over one SQLite connection.

    Args:
        conn: Open connection with the base schema initialised.
        cfg: Embedding configuration (chunking, batching, storage mode).
        models: Shared model selection; the embedding model and key come from here.
        vec_loaded: Whether sqlite-vec was loaded into *conn*.
        status: Status object to update; a fresh one is created when omitted.
    """

    def __init__(
        self,
        conn: sqlite3.Connection,
        cfg: EmbeddingCfg,
        models: ModelSettings,
        vec_loaded: bool,
        status: EmbeddingStatus | None = None,
    ) -> None:
        self._conn = conn
        self._repo = Repository(conn)
        self.cfg = cfg
        self.models = models
        self.vec_loaded = vec_loaded
        self.status = status or EmbeddingStatus()
        self.status.enabled = cfg.enabled
        self.status.model = models.embedding_model
        self.status.dimensions = cfg.dimensions
        self.tables: EmbeddingTables | None = None
        self.chunker = LineChunker(cfg.chunk_lines, cfg.chunk_overlap, cfg.max_chunks_per_sync)

    # ------------------------------------------------------------------
    # Capability probe
    # ------------------------------------------------------------------

    def provision(self) -> EmbeddingTables | None:
        """Create the embedding tables and fix the storage mode for this process."""
        if self.tables is not None:
            return self.tables

        slug = model_to_slug(self.models.embedding_model)
        if self.cfg.storage != "json" and self.vec_loaded:
            try:
                self.tables = ensure_native_tables(self._conn, slug, self.cfg.dimensions)
            except (sqlite3.Error, ValueError) as exc:
                logger.warning("Native vector tables unavailable, using JSON storage: %s", exc)

        if self.tables is None:
            try:
                self.tables = ensure_json_table(self._conn, slug)
            except sqlite3.Error as exc:
                logger.error("Could not create embedding tables: %s", exc)
                self.status.last_error = str(exc)
                return None

        self.status.storage_mode = self.tables.mode
        self.status.vector_extension_ready = self.tables.mode == NATIVE
        logger.info("Embedding storage: %s (%s)", self.tables.mode, self.tables.chunks)
        return self.tables

    @property
    def available(self) -> bool:
        return self.tables is not None

    def has_credentials(self) -> bool:
        return llm_client.has_credentials(self.models.embedding_model, self.models.api_key)

    # ------------------------------------------------------------------
    # Sync
    # ------------------------------------------------------------------

    async def _embed(self, texts: Sequence[str]) -> list[list[float]]:
        vectors = await llm_client.embed_texts(
            self.models.embedding_model,
            texts,
            api_key=self.models.api_key,
            dimensions=self.cfg.dimensions,
            timeout=self.cfg.timeout_seconds,
        )
        if len(vectors) != len(texts):
            raise EmbeddingBatchError(
                f"Embedding batch size mismatch: sent {len(texts)}, got {len(vectors)}"
            )
        return vectors

    async def sync(self, state: RepoState) -> int:
        """Bring the stored chunks of ``state.repo`` in line with its files.

        Returns the number of chunks embedded in this run. A call made while
        another sync is running returns 0 immediately.
        """
        status = self.status
        if not status.enabled or self.tables is None or status.syncing:
            return 0
        if not self.has_credentials():
            status.last_error = (
                f"No API key configured for embedding model '{self.models.embedding_model}'"
            )
            return 0

        repo_key = state.repo.key
        tables = self.tables
        status.syncing = True
        status.last_repo_key = repo_key
        embedded = 0
        try:
            chunks = self.chunker.chunk(repo_key, state.files)
            desired = {c.content_hash for c in chunks}
            existing = self._repo.existing_hashes(tables, repo_key)
            pending = [c for c in chunks if c.content_hash not in existing]

            batch_size = max(1, self.cfg.batch_size)
            for i in range(0, len(pending), batch_size):
                batch = pending[i : i + batch_size]
                vectors = await self._embed([c.content for c in batch])
                for chunk, vector in zip(batch, vectors):
                    self._repo.upsert_chunk(tables, chunk, vector)
                embedded += len(batch)

            removed = self._repo.delete_chunks_except(tables, repo_key, desired)
            count = self._repo.count_chunks(tables, repo_key)
        except Exception as exc:
            logger.warning("Embedding sync failed for %s: %s", repo_key, exc)
            status.last_error = str(exc) or type(exc).__name__
            return embedded
        finally:
            status.syncing = False

        if status.last_repo_key == repo_key:
            status.chunk_count = count
            status.last_sync_at = datetime.now(timezone.utc).isoformat()
            status.ready = True
            status.last_error = None
        logger.info(
            "Embedding sync %s: %d embedded, %d removed, %d stored",
            repo_key, embedded, removed, count,
        )
        return embedded

    # ------------------------------------------------------------------
    # Search
    # ------------------------------------------------------------------

    async def search(self, question: str, state: RepoState, limit: int = 10) -> list[Citation]:
        """Semantic citations for *question*; ``[]`` when unavailable or on error."""
        status = self.status
        if not status.enabled or not status.ready or self.tables is None:
            return []
        if not self.has_credentials():
            return []

        tables = self.tables
        try:
            vectors = await self._embed([question])
            if not vectors:
                return []
            query = vectors[0]

            if tables.mode == NATIVE:
                return [
                    Citation(
                        file=chunk.file_path,
                        line=chunk.start_line,
                        end_line=chunk.end_line,
                        snippet=_first_line_snippet(chunk.content),
                        score=1.0 - float(distance),
                        source="vector",
                    )
                    for chunk, distance in self._repo.search_vec(tables, state.repo.key, query, limit)
                ]

            scored = [
                Citation(
                    file=chunk.file_path,
                    line=chunk.start_line,
                    end_line=chunk.end_line,
                    snippet=_first_line_snippet(chunk.content),
                    score=cosine_similarity(query, chunk.embedding or []),
                    source="vector-json",
                )
                for chunk in self._repo.load_json_chunks(tables, state.repo.key)
            ]
            scored.sort(key=lambda c: c.score, reverse=True)
            return scored[:limit]
        except Exception as exc:
            logger.warning("Vector search failed: %s", exc)
            status.last_error = str(exc) or type(exc).__name__
            return []
