"""Tests for repolens config loader."""

from __future__ import annotations

import warnings
from pathlib import Path

import pytest
import yaml

from repolens.config import ConfigError, RepoLensConfig, load_config


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _write_yaml(path: Path, data: dict) -> None:
    path.write_text(yaml.dump(data), encoding="utf-8")


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for var in (
        "REPOLENS_GENERATION_MODEL",
        "REPOLENS_EMBEDDING_MODEL",
        "REPOLENS_EMBEDDINGS_ENABLED",
        "REPOLENS_DB_ENABLED",
        "REPOLENS_DB_PATH",
    ):
        monkeypatch.delenv(var, raising=False)


# ---------------------------------------------------------------------------
# Defaults with no config files present
# ---------------------------------------------------------------------------


def test_load_config_defaults_no_files(tmp_path: Path) -> None:
    """No config files → all hardcoded defaults."""
    missing_global = tmp_path / "nonexistent" / "config.yaml"
    cfg = load_config(project_dir=tmp_path, global_config_path=missing_global)

    assert cfg.index.max_file_bytes == 350_000
    assert cfg.index.cache_ttl_seconds == 15.0
    assert cfg.index.max_graph_nodes == 600
    assert cfg.index.max_graph_edges == 2_000
    assert cfg.embedding.model == "openai/text-embedding-3-small"
    assert cfg.embedding.chunk_lines == 120
    assert cfg.embedding.chunk_overlap == 24
    assert cfg.embedding.batch_size == 16
    assert cfg.embedding.max_chunks_per_sync == 1_200
    assert cfg.embedding.storage == "auto"
    assert cfg.generation.model == "openai/gpt-4o-mini"
    assert cfg.generation.fallback_model is None
    assert cfg.database.path == ".repolens.db"
    assert cfg.snapshot.concurrency == 8


# ---------------------------------------------------------------------------
# Layering
# ---------------------------------------------------------------------------


def test_load_config_global_overrides_defaults(tmp_path: Path) -> None:
    global_cfg = tmp_path / "config.yaml"
    _write_yaml(global_cfg, {"generation": {"model": "anthropic/claude-3-5-haiku-latest"}})

    cfg = load_config(project_dir=tmp_path, global_config_path=global_cfg)
    assert cfg.generation.model == "anthropic/claude-3-5-haiku-latest"
    assert cfg.embedding.model == "openai/text-embedding-3-small"


def test_load_config_project_overrides_global(tmp_path: Path) -> None:
    global_cfg = tmp_path / "global.yaml"
    _write_yaml(global_cfg, {"generation": {"model": "openai/gpt-4o", "max_tokens": 500}})
    _write_yaml(tmp_path / "repolens.yaml", {"generation": {"model": "ollama/llama3"}})

    cfg = load_config(project_dir=tmp_path, global_config_path=global_cfg)
    assert cfg.generation.model == "ollama/llama3"
    # Deep merge keeps sibling keys from the global layer
    assert cfg.generation.max_tokens == 500


def test_load_config_env_overrides(tmp_path: Path, monkeypatch) -> None:
    _write_yaml(tmp_path / "repolens.yaml", {"embedding": {"enabled": True}})
    monkeypatch.setenv("REPOLENS_EMBEDDINGS_ENABLED", "0")
    monkeypatch.setenv("REPOLENS_DB_PATH", "/tmp/other.db")
    monkeypatch.setenv("REPOLENS_GENERATION_MODEL", "groq/llama3-8b-8192")

    cfg = load_config(project_dir=tmp_path, global_config_path=tmp_path / "missing.yaml")
    assert cfg.embedding.enabled is False
    assert cfg.database.path == "/tmp/other.db"
    assert cfg.generation.model == "groq/llama3-8b-8192"


def test_load_config_string_booleans(tmp_path: Path) -> None:
    _write_yaml(tmp_path / "repolens.yaml", {"database": {"enabled": "false"}})
    cfg = load_config(project_dir=tmp_path, global_config_path=tmp_path / "missing.yaml")
    assert cfg.database.enabled is False


def test_load_config_empty_file(tmp_path: Path) -> None:
    (tmp_path / "repolens.yaml").write_text("", encoding="utf-8")
    cfg = load_config(project_dir=tmp_path, global_config_path=tmp_path / "missing.yaml")
    assert cfg == RepoLensConfig()


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


def test_global_config_rejects_api_keys(tmp_path: Path) -> None:
    global_cfg = tmp_path / "config.yaml"
    _write_yaml(global_cfg, {"generation": {"api_key": "sk-secret"}})
    with pytest.raises(ConfigError, match="forbidden key 'generation.api_key'"):
        load_config(project_dir=tmp_path, global_config_path=global_cfg)


def test_max_tokens_is_not_an_api_key(tmp_path: Path) -> None:
    global_cfg = tmp_path / "config.yaml"
    _write_yaml(global_cfg, {"generation": {"max_tokens": 256}})
    cfg = load_config(project_dir=tmp_path, global_config_path=global_cfg)
    assert cfg.generation.max_tokens == 256


def test_invalid_int_raises_with_dotted_key(tmp_path: Path) -> None:
    _write_yaml(tmp_path / "repolens.yaml", {"embedding": {"batch_size": "many"}})
    with pytest.raises(ConfigError, match="embedding.batch_size"):
        load_config(project_dir=tmp_path, global_config_path=tmp_path / "missing.yaml")


def test_invalid_storage_mode(tmp_path: Path) -> None:
    _write_yaml(tmp_path / "repolens.yaml", {"embedding": {"storage": "pgvector"}})
    with pytest.raises(ConfigError, match="embedding.storage"):
        load_config(project_dir=tmp_path, global_config_path=tmp_path / "missing.yaml")


def test_unknown_section_warns(tmp_path: Path) -> None:
    _write_yaml(tmp_path / "repolens.yaml", {"retrieval": {"top_k": 3}})
    with warnings.catch_warnings(record=True) as caught:
        warnings.simplefilter("always")
        load_config(project_dir=tmp_path, global_config_path=tmp_path / "missing.yaml")
    assert any("Unknown config key 'retrieval'" in str(w.message) for w in caught)
