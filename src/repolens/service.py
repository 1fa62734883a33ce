"""Process context and the freshness cache.

``RepoLensContext`` owns every piece of mutable process state: the active
repository, the per-repository cache, model selection, and the database,
embedding and snapshot-writer handles. Components receive the context
explicitly.

Reads go through ``FreshnessCache.get_state``. A stale or forced entry is
rebuilt (walk, index, graph, summary) in a worker thread and swapped in as
one immutable ``RepoState``; persistence and embedding sync are then
scheduled as background tasks that the read does not wait for.
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Coroutine, Sequence

from repolens.config import IndexCfg, RepoLensConfig
from repolens.db.connection import Database
from repolens.index.graph import Graph, build_graph
from repolens.index.indexer import FileRecord, build_index
from repolens.index.summary import RepoSummary, build_summary
from repolens.persistence import DatabaseStatus, SnapshotWriter, open_database
from repolens.rag.llm_client import ModelSettings
from repolens.rag.vector_store import EmbeddingStatus, VectorStore
from repolens.repos import RepoRecord, find_repo, workspace_record

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RepoState:
    """Immutable index of one repository at one point in time."""

    repo: RepoRecord
    indexed_at: float
    files: tuple[FileRecord, ...]
    graph: Graph
    summary: RepoSummary


def build_state(
    repo: RepoRecord, previous: Sequence[FileRecord] | None, cfg: IndexCfg
) -> RepoState:
    """Run the indexing pipeline for *repo*; blocking, safe to run in a thread."""
    files = tuple(build_index(repo.root_path, previous, cfg.max_file_bytes))
    graph = build_graph(files, cfg.max_graph_nodes, cfg.max_graph_edges)
    summary = build_summary(repo, files, graph)
    return RepoState(
        repo=repo, indexed_at=time.time(), files=files, graph=graph, summary=summary
    )


class FreshnessCache:
    """Per-repository cache of ``RepoState`` with a time-to-live.

    Entries are keyed by the resolved root path of the repository.
    """

    def __init__(self, ctx: RepoLensContext, clock: Callable[[], float] = time.monotonic) -> None:
        self._ctx = ctx
        self._clock = clock
        self._entries: dict[str, tuple[float, RepoState]] = {}
        self._tasks: set[asyncio.Task] = set()
        self._lock: asyncio.Lock | None = None

    def __contains__(self, root_path: str) -> bool:
        return str(Path(root_path).resolve()) in self._entries

    def invalidate(self, root_path: str) -> None:
        self._entries.pop(str(Path(root_path).resolve()), None)

    def _fresh(self, key: str) -> RepoState | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        built_at, state = entry
        if self._clock() - built_at < self._ctx.config.index.cache_ttl_seconds:
            return state
        return None

    async def get_state(self, force: bool = False) -> RepoState:
        """Current state of the active repository, rebuilt when stale or *force*."""
        repo = self._ctx.active_repo
        key = str(Path(repo.root_path).resolve())
        if not force:
            state = self._fresh(key)
            if state is not None:
                return state

        if self._lock is None:
            self._lock = asyncio.Lock()
        async with self._lock:
            if not force:
                state = self._fresh(key)
                if state is not None:
                    return state

            previous = self._entries.get(key)
            prev_files = previous[1].files if previous else None
            state = await asyncio.to_thread(build_state, repo, prev_files, self._ctx.config.index)
            self._entries[key] = (self._clock(), state)
            logger.info(
                "Indexed %s: %d files, %d edges",
                repo.key, len(state.files), len(state.graph.edges),
            )

        self._schedule_background(state)
        return state

    def _schedule_background(self, state: RepoState) -> None:
        ctx = self._ctx
        if ctx.writer is not None:
            self.spawn(ctx.writer.persist(state))
        if ctx.vector_store is not None and ctx.embeddings.enabled:
            self.spawn(ctx.vector_store.sync(state))

    def spawn(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task:
        """Run *coro* in the background, keeping a reference until it finishes."""
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        return task

    def _on_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Background task failed: %s", task.exception())

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self) -> None:
        """Wait until every background task (including ones they spawn) is done."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)


class RepoLensContext:
    """Process-wide state shared by the CLI commands and the answer pipeline.

    Args:
        config: Merged configuration.
        workspace: Workspace root; clones live in ``<workspace>/repos``.
        models: Model selection; built from *config* when omitted.
    """

    def __init__(
        self,
        config: RepoLensConfig,
        workspace: Path | str,
        models: ModelSettings | None = None,
    ) -> None:
        self.config = config
        self.workspace = Path(workspace).resolve()
        self.models = models or ModelSettings.from_config(config)
        self.embeddings = EmbeddingStatus(
            enabled=config.embedding.enabled,
            model=self.models.embedding_model,
            dimensions=config.embedding.dimensions,
        )
        self.database = DatabaseStatus(enabled=config.database.enabled)
        self.db: Database | None = None
        self.conn: sqlite3.Connection | None = None
        self.writer: SnapshotWriter | None = None
        self.vector_store: VectorStore | None = None
        self.active_repo: RepoRecord = workspace_record(self.workspace)
        self.cache = FreshnessCache(self)

    @classmethod
    def open(cls, config: RepoLensConfig, workspace: Path | str) -> RepoLensContext:
        """Build a context and connect the database and vector store when enabled."""
        ctx = cls(config, workspace)
        opened = open_database(config.database, ctx.workspace, ctx.database)
        if opened is not None:
            ctx.db, ctx.conn = opened
            ctx.writer = SnapshotWriter(ctx.conn, ctx.database)
            ctx.vector_store = VectorStore(
                ctx.conn, config.embedding, ctx.models, ctx.db.vec_loaded, ctx.embeddings
            )
            ctx.vector_store.provision()
        return ctx

    def close(self) -> None:
        if self.conn is not None:
            self.conn.close()
            self.conn = None
        self.database.connected = False

    async def get_state(self, force: bool = False) -> RepoState:
        return await self.cache.get_state(force)

    def activate(self, record: RepoRecord) -> RepoRecord:
        """Make *record* active and drop its cached state and embedding readiness."""
        self.active_repo = record
        self.cache.invalidate(record.root_path)
        self.embeddings.ready = False
        self.embeddings.chunk_count = 0
        self.embeddings.last_repo_key = record.key
        logger.info("Active repository: %s (%s)", record.label, record.key)
        return record

    def switch_repo(self, repo_path: Path | str) -> RepoRecord:
        """Activate the workspace or a managed clone by path.

        Raises:
            RepoError: If the path is not a selectable repository.
        """
        return self.activate(find_repo(self.workspace, repo_path))


def build_meta(ctx: RepoLensContext, state: RepoState) -> dict:
    """Status payload for ``state`` and the context's subsystems."""
    return {
        "repoPath": state.repo.root_path,
        "activeRepo": state.repo.to_dict(),
        "indexedFiles": len(state.files),
        "graphNodes": len(state.graph.nodes),
        "graphEdges": len(state.graph.edges),
        "indexedAt": datetime.fromtimestamp(state.indexed_at, timezone.utc).isoformat(),
        "database": ctx.database.to_dict(),
        "model": ctx.models.to_dict(),
        "embeddings": ctx.embeddings.to_dict(),
    }
