"""Shared pytest fixtures."""

from __future__ import annotations

from pathlib import Path

import pytest

from repolens.db.connection import Database
from repolens.db.schema import initialize


@pytest.fixture
def tmp_db(tmp_path):
    """File-based DB in tmp_path with schema initialized, closed after test."""
    db = Database(tmp_path / ".repolens.db")
    conn = db.connect()
    initialize(conn)
    yield conn
    conn.close()


@pytest.fixture
def json_db(tmp_path):
    """DB without sqlite-vec loaded, for the JSON embedding encoding."""
    db = Database(tmp_path / ".repolens-json.db", load_vec=False)
    conn = db.connect()
    initialize(conn)
    yield conn
    conn.close()


@pytest.fixture
def sample_repo(tmp_path) -> Path:
    """Small mixed-language repository used across index/rag/service tests."""
    root = tmp_path / "workspace"
    (root / "src" / "lib").mkdir(parents=True)
    (root / "node_modules" / "dep").mkdir(parents=True)
    (root / ".hidden").mkdir()

    (root / "README.md").write_text("# Sample\n\nA tiny sample app.\n", encoding="utf-8")
    (root / "package.json").write_text('{"name": "sample"}\n', encoding="utf-8")
    (root / "src" / "index.ts").write_text(
        "import { authenticate } from './lib/auth'\n"
        "import x from 'react'\n"
        "export function main() { return authenticate('token') }\n",
        encoding="utf-8",
    )
    (root / "src" / "lib" / "auth.ts").write_text(
        "export function authenticate(token: string) {\n"
        "  return token.length > 0\n"
        "}\n",
        encoding="utf-8",
    )
    (root / "src" / "app.py").write_text(
        "from .lib import helpers\n\ndef run():\n    return 'ok'\n", encoding="utf-8"
    )
    (root / "node_modules" / "dep" / "index.js").write_text("module.exports = 1\n", encoding="utf-8")
    (root / ".hidden" / "secret.ts").write_text("export const x = 1\n", encoding="utf-8")
    (root / "logo.png").write_bytes(b"\x89PNG\r\n")
    return root
