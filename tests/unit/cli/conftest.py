"""Fixtures for CLI tests: isolated config and no provider credentials."""

from __future__ import annotations

import pytest

_ENV_VARS = (
    "OPENAI_API_KEY",
    "ANTHROPIC_API_KEY",
    "GITHUB_TOKEN",
    "REPOLENS_GENERATION_MODEL",
    "REPOLENS_EMBEDDING_MODEL",
    "REPOLENS_EMBEDDINGS_ENABLED",
    "REPOLENS_DB_ENABLED",
    "REPOLENS_DB_PATH",
)


@pytest.fixture(autouse=True)
def _isolated_cli(monkeypatch, tmp_path):
    for var in _ENV_VARS:
        monkeypatch.delenv(var, raising=False)
    monkeypatch.setattr("repolens.config._GLOBAL_CONFIG_PATH", tmp_path / "no-global.yaml")
