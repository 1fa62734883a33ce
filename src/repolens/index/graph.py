"""Import graph builder — best-effort relative import resolution.

References are pulled from each file's lowercased content with three
language-agnostic patterns. Only references starting with ``.`` are
resolved; package imports never produce an edge.

Resolution priority (first hit wins):
  1. exact relative path
  2. path + each allow-listed extension
  3. path + ``/index`` + each allow-listed extension
"""

from __future__ import annotations

import posixpath
import re
from dataclasses import dataclass, field
from typing import Collection, Iterable

from repolens.index.indexer import FileRecord
from repolens.index.walker import EXTENSIONS

MAX_NODES = 600
MAX_EDGES = 2_000

_IMPORT_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"""\bimport\s+[^'"]*?from\s+['"]([^'"]+)['"]"""),
    re.compile(r"""\bimport\s+['"]([^'"]+)['"]"""),
    re.compile(r"""\brequire\(\s*['"]([^'"]+)['"]\s*\)"""),
)


@dataclass(frozen=True)
class GraphNode:
    id: str
    label: str
    group: str


@dataclass(frozen=True)
class GraphEdge:
    source: str
    target: str


@dataclass(frozen=True)
class Graph:
    """Capped import graph. The caps are a rendering/cost safeguard; they do
    not reflect the true size of the repository's graph."""

    nodes: tuple[GraphNode, ...] = field(default_factory=tuple)
    edges: tuple[GraphEdge, ...] = field(default_factory=tuple)

    def to_dict(self) -> dict:
        return {
            "nodes": [{"id": n.id, "label": n.label, "group": n.group} for n in self.nodes],
            "edges": [{"source": e.source, "target": e.target} for e in self.edges],
        }


def extract_imports(record: FileRecord) -> list[str]:
    """Return raw import references found in *record*, pattern by pattern."""
    imports: list[str] = []
    for pattern in _IMPORT_PATTERNS:
        imports.extend(m.group(1) for m in pattern.finditer(record.lowered))
    return imports


def resolve_local_import(
    relative_path: str, reference: str, indexed: Collection[str]
) -> str | None:
    """Resolve *reference* imported from *relative_path* against *indexed* paths.

    Returns the root-relative target path, or None when the reference is not
    relative, escapes the repository root, or matches no indexed file.
    """
    if not reference.startswith("."):
        return None

    joined = posixpath.normpath(posixpath.join(posixpath.dirname(relative_path), reference))
    if joined == ".." or joined.startswith("../"):
        return None

    if joined in indexed:
        return joined

    for ext in EXTENSIONS:
        candidate = f"{joined}{ext}"
        if candidate in indexed:
            return candidate

    for ext in EXTENSIONS:
        candidate = f"{joined}/index{ext}"
        if candidate in indexed:
            return candidate

    return None


def _node_for(relative_path: str) -> GraphNode:
    group = relative_path.split("/", 1)[0] if "/" in relative_path else "root"
    return GraphNode(id=relative_path, label=posixpath.basename(relative_path), group=group)


def build_graph(
    files: Iterable[FileRecord],
    max_nodes: int = MAX_NODES,
    max_edges: int = MAX_EDGES,
) -> Graph:
    """Build the deduplicated import graph for *files*.

    Edges follow discovery order (file order, then pattern order) and are
    truncated after deduplication.
    """
    records = list(files)
    indexed = {r.relative_path for r in records}

    nodes = [_node_for(r.relative_path) for r in records]

    seen: set[tuple[str, str]] = set()
    edges: list[GraphEdge] = []
    for record in records:
        for reference in extract_imports(record):
            target = resolve_local_import(record.relative_path, reference, indexed)
            if target is None:
                continue
            key = (record.relative_path, target)
            if key in seen:
                continue
            seen.add(key)
            edges.append(GraphEdge(source=record.relative_path, target=target))

    return Graph(nodes=tuple(nodes[:max_nodes]), edges=tuple(edges[:max_edges]))
