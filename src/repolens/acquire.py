"""Repository acquisition: shallow git clones and GitHub snapshots.

Security requirements:
- shell=False always (no command injection).
- URL scheme whitelist: https://, http://, ssh://, git@ only.
- Credentials are stripped from every error message.
- Snapshot output paths are confined to the target directory.
"""

from __future__ import annotations

import asyncio
import json
import logging
import math
import os
import posixpath
import re
import shutil
import subprocess
import urllib.parse
import urllib.request
from dataclasses import dataclass
from pathlib import Path
from typing import Awaitable, Callable, Iterable

from repolens.config import SnapshotCfg
from repolens.index.walker import MAX_FILE_BYTES, is_supported_file
from repolens.repos import RepoError, RepoRecord, make_repo_record, read_origin_url, write_snapshot_meta

logger = logging.getLogger(__name__)

CLONE_TIMEOUT_SECONDS = 240
GIT_INFO_TIMEOUT_SECONDS = 15
MIN_SNAPSHOT_CANDIDATES = 30
_MAX_ALLOCATION_ATTEMPTS = 120

_URL_RE = re.compile(r"^(https?://|git@|ssh://)", re.IGNORECASE)
_CRED_RE = re.compile(r"(https?://)([^@/]+@)", re.IGNORECASE)
_GITHUB_PATTERNS = (
    re.compile(r"^https?://github\.com/([^/]+)/([^/?#]+?)(?:\.git)?(?:[/?#].*)?$", re.IGNORECASE),
    re.compile(r"^git@github\.com:([^/]+)/([^/?#]+?)(?:\.git)?$", re.IGNORECASE),
    re.compile(r"^ssh://git@github\.com/([^/]+)/([^/?#]+?)(?:\.git)?(?:[/?#].*)?$", re.IGNORECASE),
)
_SEGMENT_RE = re.compile(r"^[A-Za-z0-9._-]+$")

_DOC_RE = re.compile(r"^(readme|license|contributing|changelog)(\.|$)", re.IGNORECASE)
_MANIFEST_RE = re.compile(
    r"^(package\.json|pnpm-workspace\.yaml|tsconfig\.json|vite\.config|webpack\.config"
    r"|dockerfile|docker-compose|pyproject\.toml|setup\.py|requirements)",
    re.IGNORECASE,
)
_ENTRY_RE = re.compile(
    r"^(main|index|app|server|client|router|routes|api|auth|config|model|service"
    r"|controller|handler|entry)",
    re.IGNORECASE,
)

GITHUB_API = "https://api.github.com"
GITHUB_RAW = "https://raw.githubusercontent.com"


def _sanitise_url(text: str) -> str:
    """Remove embedded credentials from a URL for safe logging / error messages."""
    return _CRED_RE.sub(r"\1***@", text)


def is_valid_repo_url(url: str) -> bool:
    return bool(_URL_RE.match(url.strip()))


def derive_repo_name(url: str) -> str:
    """Folder-safe lowercase name from the last URL segment, ``.git`` dropped."""
    trimmed = url.strip().rstrip("/\\")
    name = trimmed.split("/")[-1] or trimmed
    if ":" in name:
        name = name.split(":")[-1]
    name = re.sub(r"\.git$", "", name, flags=re.IGNORECASE)
    name = re.sub(r"[^a-zA-Z0-9._-]", "-", name).lower()
    return name or "repo"


def allocate_clone_path(clones_dir: Path, base_name: str) -> Path:
    """Return the first free ``base_name``, ``base_name-2``, … under *clones_dir*."""
    for i in range(_MAX_ALLOCATION_ATTEMPTS):
        suffix = "" if i == 0 else f"-{i + 1}"
        target = clones_dir / f"{base_name}{suffix}"
        if not target.exists():
            return target
    raise RepoError(f"Unable to allocate a clone folder for '{base_name}'")


# ------------------------------------------------------------------
# git clone
# ------------------------------------------------------------------


def _run_git(args: list[str], timeout: float, cwd: Path | None = None) -> str:
    """Run git (shell=False). Raises RepoError on failure with sanitised output."""
    try:
        result = subprocess.run(
            ["git", *args],
            shell=False,
            check=True,
            capture_output=True,
            text=True,
            timeout=timeout,
            cwd=cwd,
        )
    except FileNotFoundError:
        raise RepoError("git executable not found on PATH") from None
    except subprocess.TimeoutExpired:
        raise RepoError(f"git {args[0]} timed out after {timeout:.0f}s") from None
    except subprocess.CalledProcessError as exc:
        detail = _sanitise_url((exc.stderr or exc.stdout or "").strip()) or f"exit code {exc.returncode}"
        raise RepoError(f"git {args[0]} failed: {detail}") from None
    return result.stdout.strip()


def read_git_head(repo_path: Path) -> tuple[str | None, str | None]:
    """Return ``(branch, short_commit)``; either is None when git cannot tell."""
    values: list[str | None] = []
    for args in (["rev-parse", "--abbrev-ref", "HEAD"], ["rev-parse", "--short", "HEAD"]):
        try:
            values.append(_run_git(["-C", str(repo_path), *args], GIT_INFO_TIMEOUT_SECONDS) or None)
        except RepoError as exc:
            logger.debug("git %s unavailable for %s: %s", args[-1], repo_path, exc)
            values.append(None)
    return values[0], values[1]


def clone_repo(url: str, workspace: Path | str, clones_dir: Path | str) -> RepoRecord:
    """Shallow-clone *url* into a fresh folder under *clones_dir*.

    Raises:
        RepoError: If the URL is not a git URL or the clone fails.
    """
    if not is_valid_repo_url(url):
        raise RepoError("Invalid repo URL; use an SSH or HTTPS git URL.")

    clones = Path(clones_dir)
    clones.mkdir(parents=True, exist_ok=True)
    target = allocate_clone_path(clones, derive_repo_name(url))

    logger.info("Cloning %s into %s", _sanitise_url(url), target)
    _run_git(["clone", "--depth", "1", "--", url.strip(), str(target)], CLONE_TIMEOUT_SECONDS)

    branch, commit = read_git_head(target)
    return make_repo_record(
        workspace,
        target,
        source="clone",
        label=target.name,
        remote_url=read_origin_url(target) or _sanitise_url(url.strip()),
        branch=branch,
        commit=commit,
    )


# ------------------------------------------------------------------
# GitHub snapshot
# ------------------------------------------------------------------


def parse_github_repo(url: str) -> tuple[str, str] | None:
    """Return ``(owner, repo)`` for a GitHub HTTPS/SSH URL, else None."""
    value = (url or "").strip()
    if not value:
        return None
    for pattern in _GITHUB_PATTERNS:
        match = pattern.match(value)
        if match:
            break
    else:
        return None

    owner = match.group(1).strip()
    repo = re.sub(r"\.git$", "", match.group(2).strip(), flags=re.IGNORECASE)
    if not _SEGMENT_RE.match(owner) or not _SEGMENT_RE.match(repo):
        return None
    return owner, repo


def score_snapshot_candidate(path: str, size: int) -> float:
    """Heuristic download priority of a tree entry; higher is fetched first.

    Shallow paths, docs, manifests and entry-point names rank high; large
    files are penalised logarithmically.
    """
    lowered = path.lower()
    segments = lowered.split("/")
    base = segments[-1]
    ext = posixpath.splitext(base)[1]
    depth = len(segments) - 1

    score = 0.0
    if depth <= 1:
        score += 10
    elif depth <= 3:
        score += 4

    if _DOC_RE.match(base):
        score += 30
    if _MANIFEST_RE.match(base):
        score += 26
    if _ENTRY_RE.match(base):
        score += 18

    if "src" in segments:
        score += 12
    if "api" in segments or "routes" in segments:
        score += 9
    if {"tests", "test", "__tests__"} & set(segments):
        score += 3

    if ext == ".md":
        score += 4
    elif ext in (".json", ".yaml", ".yml", ".toml"):
        score += 6
    else:
        score += 8

    if size > 0:
        score += max(0.0, 16 - math.log10(size + 10) * 3)
    return score


def safe_join(base_dir: Path, relative_path: str) -> Path | None:
    """Resolve *relative_path* under *base_dir*; None if it escapes."""
    root = base_dir.resolve()
    target = (root / relative_path.replace("\\", "/")).resolve()
    if target != root and root in target.parents:
        return target
    return None


@dataclass
class SnapshotResult:
    downloaded: int = 0
    skipped: int = 0
    bytes: int = 0
    last_error: str | None = None


async def download_snapshot(
    paths: Iterable[str],
    target_dir: Path,
    fetch: Callable[[str], Awaitable[str]],
    *,
    concurrency: int = 8,
    max_bytes: int = 18_000_000,
    max_file_bytes: int = MAX_FILE_BYTES,
    timeout: float = 8.0,
) -> SnapshotResult:
    """Fetch *paths* into *target_dir* with a bounded worker pool.

    ``concurrency`` (clamped to 2..12) workers pull from one shared queue.
    Each fetch runs under its own *timeout*. Once the running byte total
    reaches *max_bytes* the remaining units are skipped, not cancelled.
    A failed unit is counted as skipped and its message kept in
    ``last_error``; it never stops the other workers.
    """
    queue: asyncio.Queue[str] = asyncio.Queue()
    for path in paths:
        queue.put_nowait(path)

    result = SnapshotResult()
    workers = max(2, min(12, concurrency))

    async def _worker() -> None:
        while True:
            try:
                path = queue.get_nowait()
            except asyncio.QueueEmpty:
                return

            if result.bytes >= max_bytes:
                result.skipped += 1
                continue

            output = safe_join(target_dir, path)
            if output is None:
                logger.warning("Skipping snapshot path outside target: %s", path)
                result.skipped += 1
                continue

            try:
                text = await asyncio.wait_for(fetch(path), timeout=timeout)
                size = len(text.encode("utf-8"))
                if not size or size > max_file_bytes or result.bytes + size > max_bytes:
                    result.skipped += 1
                    continue
                output.parent.mkdir(parents=True, exist_ok=True)
                output.write_text(text, encoding="utf-8")
            except asyncio.TimeoutError:
                result.skipped += 1
                result.last_error = f"timed out fetching {path}"
                continue
            except Exception as exc:
                logger.debug("Snapshot unit %s failed: %s", path, exc)
                result.skipped += 1
                result.last_error = _sanitise_url(str(exc)) or f"failed to fetch {path}"
                continue

            result.downloaded += 1
            result.bytes += size

    await asyncio.gather(*(_worker() for _ in range(workers)))
    return result


def _github_headers() -> dict[str, str]:
    headers = {"Accept": "application/vnd.github+json", "User-Agent": "repolens"}
    token = os.environ.get("GITHUB_TOKEN")
    if token:
        headers["Authorization"] = f"Bearer {token}"
    return headers


def _http_get(url: str, timeout: float) -> str:
    request = urllib.request.Request(url, headers=_github_headers())
    with urllib.request.urlopen(request, timeout=timeout) as response:  # noqa: S310
        return response.read().decode("utf-8", errors="replace")


def _get_json(url: str, timeout: float) -> dict:
    try:
        data = json.loads(_http_get(url, timeout))
    except (OSError, ValueError) as exc:
        raise RepoError(f"GitHub request failed for {url}: {exc}") from None
    if not isinstance(data, dict):
        raise RepoError(f"Unexpected GitHub response for {url}")
    return data


def select_snapshot_candidates(
    tree: list[dict], max_files: int, max_file_bytes: int = MAX_FILE_BYTES
) -> list[str]:
    """Filter a git tree listing to supported blobs and order by priority."""
    candidates = []
    for entry in tree:
        if not isinstance(entry, dict) or entry.get("type") != "blob":
            continue
        path = entry.get("path")
        if not isinstance(path, str) or not is_supported_file(posixpath.basename(path)):
            continue
        size = int(entry.get("size") or 0)
        if size <= 0 or size > max_file_bytes:
            continue
        candidates.append((score_snapshot_candidate(path, size), size, path))

    candidates.sort(key=lambda item: (-item[0], item[1]))
    return [path for _, _, path in candidates[: max(MIN_SNAPSHOT_CANDIDATES, max_files)]]


def snapshot_github_repo(
    url: str,
    workspace: Path | str,
    clones_dir: Path | str,
    cfg: SnapshotCfg | None = None,
    max_file_bytes: int = MAX_FILE_BYTES,
) -> RepoRecord:
    """Download a file-level snapshot of a GitHub repository's default branch.

    Raises:
        RepoError: If the URL is not a GitHub repo, the tree is empty or
            nothing could be downloaded.
    """
    cfg = cfg or SnapshotCfg()
    parsed = parse_github_repo(url)
    if parsed is None:
        raise RepoError("Snapshots support GitHub URLs only (owner/repo).")
    owner, repo = parsed

    base_api = f"{GITHUB_API}/repos/{owner}/{repo}"
    meta = _get_json(base_api, 15)
    default_branch = str(meta.get("default_branch") or "").strip() or "main"

    branch_meta = _get_json(f"{base_api}/branches/{urllib.parse.quote(default_branch, safe='')}", 15)
    sha = (branch_meta.get("commit") or {}).get("sha")
    if not isinstance(sha, str) or not sha:
        raise RepoError("Could not resolve the default branch commit from GitHub")

    tree = _get_json(f"{base_api}/git/trees/{sha}?recursive=1", 25).get("tree") or []
    if not tree:
        raise RepoError("Repository tree is empty")

    paths = select_snapshot_candidates(tree, cfg.max_files, max_file_bytes)
    if not paths:
        raise RepoError("No supported code or text files found in repository")

    clones = Path(clones_dir)
    target = allocate_clone_path(clones, f"{derive_repo_name(f'{owner}-{repo}')}-snapshot")
    target.mkdir(parents=True)

    async def _fetch(path: str) -> str:
        raw_url = f"{GITHUB_RAW}/{owner}/{repo}/{sha}/{urllib.parse.quote(path)}"
        return await asyncio.to_thread(_http_get, raw_url, cfg.timeout_seconds)

    logger.info("Downloading %d files from %s/%s@%s", len(paths), owner, repo, sha[:10])
    remote_url = f"https://github.com/{owner}/{repo}"
    label = f"{repo} (github snapshot)"
    try:
        result = asyncio.run(
            download_snapshot(
                paths,
                target,
                _fetch,
                concurrency=cfg.concurrency,
                max_bytes=cfg.max_bytes,
                max_file_bytes=max_file_bytes,
                timeout=cfg.timeout_seconds,
            )
        )
        if not result.downloaded:
            raise RepoError(result.last_error or "Failed to download repository snapshot from GitHub")
        write_snapshot_meta(
            target,
            {
                "source": "github-url",
                "owner": owner,
                "repo": repo,
                "remoteUrl": remote_url,
                "label": label,
                "branch": default_branch,
                "commit": sha[:10],
                "fileCount": result.downloaded,
                "skippedFiles": result.skipped,
                "totalBytes": result.bytes,
            },
        )
    except RepoError:
        shutil.rmtree(target, ignore_errors=True)
        raise
    except Exception as exc:
        shutil.rmtree(target, ignore_errors=True)
        raise RepoError(f"Snapshot download failed: {_sanitise_url(str(exc))}") from exc

    logger.info(
        "Snapshot %s: %d downloaded, %d skipped, %d bytes",
        target.name, result.downloaded, result.skipped, result.bytes,
    )
    return make_repo_record(
        workspace,
        target,
        source="github-url",
        label=label,
        remote_url=remote_url,
        branch=default_branch,
        commit=sha[:10],
    )
