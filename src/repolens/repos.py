"""Repository identity and registry.

A repository's ``key`` is its root path relative to the workspace directory
(POSIX form, ``.`` for the workspace itself). The key partitions every cached
and persisted row. Selectable roots are the workspace itself and directories
inside ``<workspace>/repos``.
"""

from __future__ import annotations

import json
import logging
import os
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

logger = logging.getLogger(__name__)

CLONES_DIR_NAME = "repos"
SNAPSHOT_META_FILE = ".repolens.json"

_ORIGIN_URL_RE = re.compile(r'\[remote\s+"origin"\][\s\S]*?url\s*=\s*(.+)', re.IGNORECASE)
_GITDIR_RE = re.compile(r"gitdir:\s*(.+)$", re.IGNORECASE | re.MULTILINE)


class RepoError(ValueError):
    """Raised when a repository cannot be selected, cloned, or downloaded."""


@dataclass(frozen=True)
class RepoRecord:
    """Identity of one indexable source tree."""

    key: str
    root_path: str
    source: str
    label: str
    remote_url: str | None = None
    branch: str | None = None
    commit: str | None = None

    def to_dict(self) -> dict:
        return {
            "key": self.key,
            "rootPath": self.root_path,
            "source": self.source,
            "label": self.label,
            "remoteUrl": self.remote_url,
            "branch": self.branch,
            "commit": self.commit,
        }


def make_repo_record(
    workspace: Path | str,
    root_path: Path | str,
    source: str,
    label: str | None = None,
    remote_url: str | None = None,
    branch: str | None = None,
    commit: str | None = None,
) -> RepoRecord:
    root = Path(root_path).resolve()
    relative = os.path.relpath(root, Path(workspace).resolve())
    return RepoRecord(
        key=Path(relative).as_posix() if relative != "." else ".",
        root_path=str(root),
        source=source,
        label=label or root.name,
        remote_url=remote_url,
        branch=branch,
        commit=commit,
    )


# ------------------------------------------------------------------
# Git metadata
# ------------------------------------------------------------------


def resolve_git_config_path(repo_path: Path) -> Path | None:
    """Return the git config path for *repo_path*, following ``gitdir:`` files."""
    dot_git = repo_path / ".git"
    if dot_git.is_dir():
        return dot_git / "config"
    if dot_git.is_file():
        try:
            match = _GITDIR_RE.search(dot_git.read_text(encoding="utf-8"))
        except OSError:
            return None
        if not match:
            return None
        return (repo_path / match.group(1).strip()).resolve() / "config"
    return None


def read_origin_url(repo_path: Path | str) -> str | None:
    config_path = resolve_git_config_path(Path(repo_path))
    if config_path is None or not config_path.exists():
        return None
    try:
        content = config_path.read_text(encoding="utf-8")
    except OSError:
        return None
    match = _ORIGIN_URL_RE.search(content)
    return match.group(1).strip() if match else None


# ------------------------------------------------------------------
# Snapshot metadata
# ------------------------------------------------------------------


def read_snapshot_meta(repo_path: Path | str) -> dict | None:
    meta_path = Path(repo_path) / SNAPSHOT_META_FILE
    if not meta_path.exists():
        return None
    try:
        data = json.loads(meta_path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        logger.debug("Ignoring unreadable snapshot metadata %s: %s", meta_path, exc)
        return None
    return data if isinstance(data, dict) else None


def write_snapshot_meta(repo_path: Path | str, meta: dict) -> None:
    payload = {
        **meta,
        "createdAt": meta.get("createdAt") or datetime.now(timezone.utc).isoformat(),
        "version": 1,
    }
    (Path(repo_path) / SNAPSHOT_META_FILE).write_text(
        json.dumps(payload, indent=2) + "\n", encoding="utf-8"
    )


# ------------------------------------------------------------------
# Registry
# ------------------------------------------------------------------


def workspace_record(workspace: Path | str) -> RepoRecord:
    root = Path(workspace).resolve()
    return make_repo_record(
        root,
        root,
        source="workspace",
        label=root.name or "workspace",
        remote_url=read_origin_url(root),
    )


def _record_for(workspace: Path, repo_path: Path, default_label: str) -> RepoRecord:
    meta = read_snapshot_meta(repo_path) or {}
    return make_repo_record(
        workspace,
        repo_path,
        source=meta.get("source") or "clone",
        label=meta.get("label") or default_label,
        remote_url=meta.get("remoteUrl") or read_origin_url(repo_path),
        branch=meta.get("branch"),
        commit=meta.get("commit"),
    )


def list_repos(workspace: Path | str, clones_dir: Path | str | None = None) -> list[RepoRecord]:
    """Return the workspace plus every clone/snapshot under *clones_dir*, sorted by label."""
    workspace = Path(workspace).resolve()
    clones = Path(clones_dir) if clones_dir is not None else workspace / CLONES_DIR_NAME

    repos = [workspace_record(workspace)]
    try:
        entries = sorted(clones.iterdir())
    except OSError:
        entries = []

    for entry in entries:
        if not entry.is_dir():
            continue
        if not (entry / ".git").exists() and read_snapshot_meta(entry) is None:
            continue
        repos.append(_record_for(workspace, entry, entry.name))

    seen: set[str] = set()
    deduped: list[RepoRecord] = []
    for repo in repos:
        if repo.root_path in seen:
            continue
        seen.add(repo.root_path)
        deduped.append(repo)

    return sorted(deduped, key=lambda r: r.label.lower())


def is_managed_path(workspace: Path | str, repo_path: Path | str) -> bool:
    root = Path(workspace).resolve()
    target = Path(repo_path).resolve()
    clones = root / CLONES_DIR_NAME
    return target == root or clones in target.parents


def find_repo(workspace: Path | str, repo_path: Path | str) -> RepoRecord:
    """Return the registry record for *repo_path*.

    Raises:
        RepoError: If the path is outside the workspace/clones area or is not
            an existing directory.
    """
    workspace = Path(workspace).resolve()
    target = Path(repo_path).resolve()
    if not is_managed_path(workspace, target):
        raise RepoError(
            f"Repository path must be the workspace root or inside {CLONES_DIR_NAME}/: {repo_path}"
        )
    if not target.is_dir():
        raise RepoError(f"Repository path does not exist: {repo_path}")

    for repo in list_repos(workspace):
        if repo.root_path == str(target):
            return repo
    return _record_for(workspace, target, target.name)
