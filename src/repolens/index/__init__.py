"""repolens indexing pipeline — walker, incremental indexer, import graph, summary, chunker."""

from repolens.index.chunker import LineChunker, chunk_hash
from repolens.index.graph import Graph, GraphEdge, GraphNode, build_graph, extract_imports, resolve_local_import
from repolens.index.indexer import FileRecord, build_index
from repolens.index.summary import RepoSummary, build_summary
from repolens.index.walker import EXTENSIONS, IGNORED_DIRS, walk_files

__all__ = [
    "EXTENSIONS",
    "FileRecord",
    "Graph",
    "GraphEdge",
    "GraphNode",
    "IGNORED_DIRS",
    "LineChunker",
    "RepoSummary",
    "build_graph",
    "build_index",
    "build_summary",
    "chunk_hash",
    "extract_imports",
    "resolve_local_import",
    "walk_files",
]
