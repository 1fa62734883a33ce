"""Tests for the process context and freshness cache."""

from __future__ import annotations

import asyncio
from pathlib import Path
from unittest.mock import patch

import pytest

from repolens.config import RepoLensConfig
from repolens.repos import RepoError, write_snapshot_meta
from repolens.service import FreshnessCache, RepoLensContext, build_meta, build_state


class FakeClock:
    def __init__(self) -> None:
        self.now = 100.0

    def __call__(self) -> float:
        return self.now


@pytest.fixture(autouse=True)
def _no_provider_keys(monkeypatch):
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)


@pytest.fixture
def offline_config() -> RepoLensConfig:
    config = RepoLensConfig()
    config.database.enabled = False
    config.embedding.enabled = False
    return config


@pytest.fixture
def ctx(sample_repo, offline_config):
    context = RepoLensContext(offline_config, sample_repo)
    clock = FakeClock()
    context.cache = FreshnessCache(context, clock=clock)
    context.clock = clock
    return context


# ------------------------------------------------------------------
# FreshnessCache
# ------------------------------------------------------------------


def test_cached_state_reused_within_ttl(ctx):
    first = asyncio.run(ctx.get_state())
    ctx.clock.now += 14.9
    assert asyncio.run(ctx.get_state()) is first
    assert [f.relative_path for f in first.files] == [
        "README.md", "package.json", "src/app.py", "src/index.ts", "src/lib/auth.ts",
    ]


def test_stale_state_rebuilt_after_ttl(ctx):
    first = asyncio.run(ctx.get_state())
    ctx.clock.now += 15.0
    second = asyncio.run(ctx.get_state())
    assert second is not first
    assert second.files == first.files


def test_force_rebuilds(ctx):
    first = asyncio.run(ctx.get_state())
    assert asyncio.run(ctx.get_state(force=True)) is not first


def test_rebuild_sees_new_files(ctx, sample_repo: Path):
    asyncio.run(ctx.get_state())
    (sample_repo / "src" / "new.ts").write_text("export const y = 2\n", encoding="utf-8")
    state = asyncio.run(ctx.get_state(force=True))
    assert "src/new.ts" in [f.relative_path for f in state.files]


def test_concurrent_reads_build_once(ctx):
    async def _both():
        return await asyncio.gather(ctx.get_state(), ctx.get_state())

    with patch("repolens.service.build_state", wraps=build_state) as spy:
        a, b = asyncio.run(_both())
    assert spy.call_count == 1
    assert a is b


def test_invalidate_drops_entry(ctx):
    asyncio.run(ctx.get_state())
    root = ctx.active_repo.root_path
    assert root in ctx.cache
    ctx.cache.invalidate(root)
    assert root not in ctx.cache


def test_cache_lookup_resolves_path(ctx):
    asyncio.run(ctx.get_state())
    root = Path(ctx.active_repo.root_path)
    assert str(root / "src" / "..") in ctx.cache
    ctx.cache.invalidate(str(root / "."))
    assert str(root) not in ctx.cache


def test_drain_waits_for_nested_tasks(ctx):
    done: list[str] = []

    async def _child():
        await asyncio.sleep(0.01)
        done.append("child")

    async def _parent():
        await asyncio.sleep(0.01)
        ctx.cache.spawn(_child())
        done.append("parent")

    async def _run():
        ctx.cache.spawn(_parent())
        await ctx.cache.drain()

    asyncio.run(_run())
    assert done == ["parent", "child"]
    assert ctx.cache.pending == 0


def test_failed_background_task_is_logged(ctx, caplog):
    async def _boom():
        raise RuntimeError("disk full")

    async def _run():
        ctx.cache.spawn(_boom())
        await ctx.cache.drain()

    asyncio.run(_run())
    assert "disk full" in caplog.text


# ------------------------------------------------------------------
# Repository switching
# ------------------------------------------------------------------


def test_switch_repo_resets_embedding_readiness(ctx, sample_repo: Path):
    other = sample_repo / "repos" / "other"
    (other / "src").mkdir(parents=True)
    (other / "src" / "main.go").write_text("package main\n", encoding="utf-8")
    write_snapshot_meta(other, {"source": "github-url", "label": "other (github snapshot)"})
    ctx.embeddings.ready = True
    ctx.embeddings.chunk_count = 12

    record = ctx.switch_repo(other)

    assert record.key == "repos/other"
    assert ctx.active_repo == record
    assert ctx.embeddings.ready is False
    assert ctx.embeddings.chunk_count == 0
    assert ctx.embeddings.last_repo_key == "repos/other"
    state = asyncio.run(ctx.get_state())
    assert [f.relative_path for f in state.files] == [".repolens.json", "src/main.go"]


def test_workspace_index_skips_clones(ctx, sample_repo: Path):
    (sample_repo / "repos" / "other").mkdir(parents=True)
    (sample_repo / "repos" / "other" / "x.py").write_text("x = 1\n", encoding="utf-8")
    state = asyncio.run(ctx.get_state())
    assert not any(f.relative_path.startswith("repos/") for f in state.files)


def test_switch_repo_rejects_outside_path(ctx, tmp_path: Path):
    with pytest.raises(RepoError):
        ctx.switch_repo(tmp_path)
    assert ctx.active_repo.key == "."


# ------------------------------------------------------------------
# RepoLensContext.open / build_meta
# ------------------------------------------------------------------


def test_open_persists_snapshot_in_background(sample_repo):
    config = RepoLensConfig()
    config.embedding.storage = "json"
    ctx = RepoLensContext.open(config, sample_repo)
    try:
        assert ctx.database.connected is True
        assert ctx.database.path == str(sample_repo.resolve() / ".repolens.db")
        assert ctx.embeddings.storage_mode == "json"

        async def _run():
            state = await ctx.get_state()
            await ctx.cache.drain()
            return state

        state = asyncio.run(_run())
        assert ctx.writer.snapshot_stats(".") == {"files": len(state.files), "edges": 1}
        # no credentials: sync is a no-op and records why
        assert ctx.embeddings.ready is False
        assert "No API key" in ctx.embeddings.last_error
    finally:
        ctx.close()
    assert ctx.database.connected is False


def test_open_with_database_disabled(sample_repo, offline_config):
    ctx = RepoLensContext.open(offline_config, sample_repo)
    assert ctx.writer is None
    assert ctx.vector_store is None
    assert ctx.database.connected is False
    ctx.close()


def test_build_meta(ctx):
    state = asyncio.run(ctx.get_state())
    meta = build_meta(ctx, state)
    assert meta["repoPath"] == state.repo.root_path
    assert meta["activeRepo"]["key"] == "."
    assert meta["indexedFiles"] == 5
    assert meta["graphEdges"] == 1
    assert meta["graphNodes"] == len(state.graph.nodes)
    assert meta["indexedAt"].endswith("+00:00")
    assert meta["database"]["enabled"] is False
    assert meta["model"]["generationModel"] == "openai/gpt-4o-mini"
    assert meta["model"]["hasGenerationKey"] is False
    assert meta["embeddings"]["enabled"] is False
