"""repolens database layer."""

from repolens.db.connection import Database, load_vector_extension
from repolens.db.migrations import MIGRATIONS, run_migrations
from repolens.db.repository import Repository
from repolens.db.schema import initialize
from repolens.db.vectors import EmbeddingTables, ensure_json_table, ensure_native_tables, model_to_slug

__all__ = [
    "Database",
    "EmbeddingTables",
    "MIGRATIONS",
    "Repository",
    "ensure_json_table",
    "ensure_native_tables",
    "initialize",
    "load_vector_extension",
    "model_to_slug",
    "run_migrations",
]
