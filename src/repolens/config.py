"""repolens configuration loader.

Priority (high → low):
  1. CLI flags           (handled at call site — not in this module)
  2. Environment variables  (REPOLENS_GENERATION_MODEL, REPOLENS_EMBEDDING_MODEL,
     REPOLENS_EMBEDDINGS_ENABLED, REPOLENS_DB_ENABLED, REPOLENS_DB_PATH)
  3. Per-project repolens.yaml  (in the workspace directory)
  4. Global ~/.repolens/config.yaml  (model defaults only — no API keys)
  5. Hardcoded defaults

Global config must never contain API keys; use environment variables instead.
All YAML reads use yaml.safe_load() — never yaml.load().
"""

from __future__ import annotations

import os
import re
import warnings
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

_GLOBAL_CONFIG_DIR: Path = Path.home() / ".repolens"
_GLOBAL_CONFIG_PATH: Path = _GLOBAL_CONFIG_DIR / "config.yaml"
_PROJECT_CONFIG_NAME: str = "repolens.yaml"

# Fields that suggest an API key are forbidden in global config.
# Does NOT match legitimate config keys like max_tokens.
_API_KEY_RE: re.Pattern[str] = re.compile(
    r"api[_\-]?(?:key|secret)"
    r"|_token$"
    r"|^token$"
    r"|_secret$"
    r"|^secret$"
    r"|passw(?:ord|d)"
    r"|credential",
    re.IGNORECASE,
)

_KNOWN_SECTIONS: frozenset[str] = frozenset(
    ["index", "embedding", "generation", "database", "snapshot"]
)

_STORAGE_MODES: frozenset[str] = frozenset(["auto", "json"])


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class ConfigError(ValueError):
    """Raised when a config file contains an invalid or forbidden value."""


# ---------------------------------------------------------------------------
# Data model
# ---------------------------------------------------------------------------


@dataclass
class IndexCfg:
    """Indexing limits (repolens.yaml: index:)."""

    max_file_bytes: int = 350_000
    cache_ttl_seconds: float = 15.0
    max_graph_nodes: int = 600
    max_graph_edges: int = 2_000


@dataclass
class EmbeddingCfg:
    """Embedding sync configuration (repolens.yaml: embedding:).

    Attributes:
        enabled: Master switch for vector retrieval.
        model: LiteLLM embedding model string (provider/model format).
        dimensions: Vector width stored in the native vector table.
        chunk_lines: Sliding window size in lines.
        chunk_overlap: Lines shared between consecutive windows.
        max_chunks_per_sync: Global chunk cap per sync run.
        batch_size: Texts per embedding provider call.
        storage: 'auto' probes the native vector table; 'json' forces the fallback.
        timeout_seconds: Hard timeout per provider call.
    """

    enabled: bool = True
    model: str = "openai/text-embedding-3-small"
    dimensions: int = 1536
    chunk_lines: int = 120
    chunk_overlap: int = 24
    max_chunks_per_sync: int = 1_200
    batch_size: int = 16
    storage: str = "auto"
    timeout_seconds: float = 30.0


@dataclass
class GenerationCfg:
    """Answer generation configuration (repolens.yaml: generation:)."""

    model: str = "openai/gpt-4o-mini"
    fallback_model: str | None = None
    max_tokens: int = 1024
    temperature: float = 0.2
    timeout_seconds: float = 30.0


@dataclass
class DatabaseCfg:
    """Backing store configuration (repolens.yaml: database:)."""

    enabled: bool = True
    path: str = ".repolens.db"


@dataclass
class SnapshotCfg:
    """GitHub snapshot download limits (repolens.yaml: snapshot:)."""

    max_files: int = 220
    max_bytes: int = 18_000_000
    concurrency: int = 8
    timeout_seconds: float = 8.0


@dataclass
class RepoLensConfig:
    """Root configuration object, built by load_config() from merged YAML layers."""

    index: IndexCfg = field(default_factory=IndexCfg)
    embedding: EmbeddingCfg = field(default_factory=EmbeddingCfg)
    generation: GenerationCfg = field(default_factory=GenerationCfg)
    database: DatabaseCfg = field(default_factory=DatabaseCfg)
    snapshot: SnapshotCfg = field(default_factory=SnapshotCfg)


# ---------------------------------------------------------------------------
# Validation helpers
# ---------------------------------------------------------------------------


def _check_no_api_keys(data: dict[str, Any], source: Path) -> None:
    """Raise ConfigError if *data* contains any API-key-like key names."""

    def _scan(obj: Any, path: str) -> None:
        if isinstance(obj, dict):
            for k, v in obj.items():
                full = f"{path}.{k}" if path else k
                if _API_KEY_RE.search(str(k)):
                    raise ConfigError(
                        f"Global config '{source}' contains a forbidden key '{full}'.\n"
                        f"  API keys must be set via environment variables, not config files.\n"
                        f"  Remove '{full}' from {source.name} and use:\n"
                        f"    export {str(k).upper().replace('-', '_')}=<value>"
                    )
                _scan(v, full)

    _scan(data, "")


def _warn_unknown_keys(data: dict[str, Any], source: Path) -> None:
    """Emit a UserWarning for unrecognised top-level keys."""
    for key in data:
        if key not in _KNOWN_SECTIONS:
            warnings.warn(
                f"Unknown config key '{key}' in '{source}' — ignored.",
                UserWarning,
                stacklevel=4,
            )


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() not in ("0", "false", "no", "off", "")
    return bool(value)


def _coerce(section: str, key: str, value: Any, kind: type) -> Any:
    """Convert a raw YAML value, raising ConfigError with the dotted key on failure."""
    if kind is bool:
        return _as_bool(value)
    try:
        return kind(value)
    except (TypeError, ValueError):
        raise ConfigError(
            f"Invalid value for '{section}.{key}': {value!r} (expected {kind.__name__})"
        ) from None


# ---------------------------------------------------------------------------
# Merge + build
# ---------------------------------------------------------------------------


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Return a new dict that is *base* deep-merged with *override*."""
    result = dict(base)
    for k, v in override.items():
        if k in result and isinstance(result[k], dict) and isinstance(v, dict):
            result[k] = _deep_merge(result[k], v)
        else:
            result[k] = v
    return result


def _cfg_from_dict(data: dict[str, Any]) -> RepoLensConfig:
    """Build a *RepoLensConfig* from a merged raw YAML dict."""
    cfg = RepoLensConfig()

    if "index" in data:
        i = data["index"] or {}
        d = cfg.index
        cfg.index = IndexCfg(
            max_file_bytes=_coerce("index", "max_file_bytes", i.get("max_file_bytes", d.max_file_bytes), int),
            cache_ttl_seconds=_coerce(
                "index", "cache_ttl_seconds", i.get("cache_ttl_seconds", d.cache_ttl_seconds), float
            ),
            max_graph_nodes=_coerce("index", "max_graph_nodes", i.get("max_graph_nodes", d.max_graph_nodes), int),
            max_graph_edges=_coerce("index", "max_graph_edges", i.get("max_graph_edges", d.max_graph_edges), int),
        )

    if "embedding" in data:
        e = data["embedding"] or {}
        d = cfg.embedding
        storage = str(e.get("storage", d.storage)).lower()
        if storage not in _STORAGE_MODES:
            raise ConfigError(
                f"Invalid value for 'embedding.storage': {storage!r} (expected 'auto' or 'json')"
            )
        cfg.embedding = EmbeddingCfg(
            enabled=_coerce("embedding", "enabled", e.get("enabled", d.enabled), bool),
            model=str(e.get("model", d.model)),
            dimensions=_coerce("embedding", "dimensions", e.get("dimensions", d.dimensions), int),
            chunk_lines=_coerce("embedding", "chunk_lines", e.get("chunk_lines", d.chunk_lines), int),
            chunk_overlap=_coerce("embedding", "chunk_overlap", e.get("chunk_overlap", d.chunk_overlap), int),
            max_chunks_per_sync=_coerce(
                "embedding", "max_chunks_per_sync", e.get("max_chunks_per_sync", d.max_chunks_per_sync), int
            ),
            batch_size=_coerce("embedding", "batch_size", e.get("batch_size", d.batch_size), int),
            storage=storage,
            timeout_seconds=_coerce(
                "embedding", "timeout_seconds", e.get("timeout_seconds", d.timeout_seconds), float
            ),
        )

    if "generation" in data:
        g = data["generation"] or {}
        d = cfg.generation
        cfg.generation = GenerationCfg(
            model=str(g.get("model", d.model)),
            fallback_model=g.get("fallback_model") or d.fallback_model,
            max_tokens=_coerce("generation", "max_tokens", g.get("max_tokens", d.max_tokens), int),
            temperature=_coerce("generation", "temperature", g.get("temperature", d.temperature), float),
            timeout_seconds=_coerce(
                "generation", "timeout_seconds", g.get("timeout_seconds", d.timeout_seconds), float
            ),
        )

    if "database" in data:
        db = data["database"] or {}
        cfg.database = DatabaseCfg(
            enabled=_coerce("database", "enabled", db.get("enabled", cfg.database.enabled), bool),
            path=str(db.get("path", cfg.database.path)),
        )

    if "snapshot" in data:
        s = data["snapshot"] or {}
        d = cfg.snapshot
        cfg.snapshot = SnapshotCfg(
            max_files=_coerce("snapshot", "max_files", s.get("max_files", d.max_files), int),
            max_bytes=_coerce("snapshot", "max_bytes", s.get("max_bytes", d.max_bytes), int),
            concurrency=_coerce("snapshot", "concurrency", s.get("concurrency", d.concurrency), int),
            timeout_seconds=_coerce(
                "snapshot", "timeout_seconds", s.get("timeout_seconds", d.timeout_seconds), float
            ),
        )

    return cfg


def _apply_env_overrides(cfg: RepoLensConfig) -> RepoLensConfig:
    """Apply REPOLENS_* environment variable overrides."""
    if model := os.environ.get("REPOLENS_GENERATION_MODEL"):
        cfg.generation.model = model
    if model := os.environ.get("REPOLENS_EMBEDDING_MODEL"):
        cfg.embedding.model = model
    if (flag := os.environ.get("REPOLENS_EMBEDDINGS_ENABLED")) is not None:
        cfg.embedding.enabled = flag != "0"
    if (flag := os.environ.get("REPOLENS_DB_ENABLED")) is not None:
        cfg.database.enabled = flag != "0"
    if db_path := os.environ.get("REPOLENS_DB_PATH"):
        cfg.database.path = db_path
    return cfg


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def load_config(
    project_dir: Path | None = None,
    *,
    global_config_path: Path | None = None,
) -> RepoLensConfig:
    """Load and return a merged *RepoLensConfig*.

    Applies layers in order: global → per-project → env vars.
    CLI flag overrides must be applied by the caller after this function.

    Args:
        project_dir: Directory to search for *repolens.yaml*. Defaults to CWD.
        global_config_path: Override the global config path (for testing).

    Returns:
        Fully merged *RepoLensConfig* with env var overrides applied.

    Raises:
        ConfigError: If global config contains API-key-like fields or a value
            cannot be converted to its field type.
    """
    global_path = global_config_path if global_config_path is not None else _GLOBAL_CONFIG_PATH
    search_dir = project_dir if project_dir is not None else Path.cwd()

    merged: dict[str, Any] = {}

    if global_path.exists():
        raw_global = yaml.safe_load(global_path.read_text(encoding="utf-8")) or {}
        _check_no_api_keys(raw_global, global_path)
        _warn_unknown_keys(raw_global, global_path)
        merged = _deep_merge(merged, raw_global)

    project_cfg_path = search_dir / _PROJECT_CONFIG_NAME
    if project_cfg_path.exists():
        raw_project = yaml.safe_load(project_cfg_path.read_text(encoding="utf-8")) or {}
        _warn_unknown_keys(raw_project, project_cfg_path)
        merged = _deep_merge(merged, raw_project)

    cfg = _cfg_from_dict(merged)
    return _apply_env_overrides(cfg)
