"""Shared CLI plumbing: global options, logging setup and context lifecycle."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Awaitable, Callable, TypeVar

import typer
from rich.console import Console
from rich.logging import RichHandler

from repolens.cli.errors import err_config, err_repo
from repolens.config import ConfigError, load_config
from repolens.repos import RepoError
from repolens.service import RepoLensContext

console = Console()
err_console = Console(stderr=True)

T = TypeVar("T")


@dataclass
class CliOptions:
    workspace: Path
    repo: Path | None = None
    verbose: bool = False


def configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=err_console, show_path=False, rich_tracebacks=verbose)],
        force=True,
    )
    # LiteLLM and httpx are noisy at INFO even when we are verbose
    for name in ("LiteLLM", "httpx"):
        logging.getLogger(name).setLevel(logging.WARNING)


def options_from(ctx: typer.Context) -> CliOptions:
    obj = ctx.obj
    if isinstance(obj, CliOptions):
        return obj
    return CliOptions(workspace=Path.cwd())


def open_context(options: CliOptions) -> RepoLensContext:
    """Load config, open the context and apply ``--repo``. Exits on user errors."""
    try:
        cfg = load_config(options.workspace)
        repo_ctx = RepoLensContext.open(cfg, options.workspace)
    except ConfigError as exc:
        console.print(err_config(str(exc)))
        raise typer.Exit(1)

    if options.repo is not None:
        try:
            repo_ctx.switch_repo(options.repo)
        except RepoError as exc:
            repo_ctx.close()
            console.print(err_repo(str(exc)))
            raise typer.Exit(1)
    return repo_ctx


def run_flow(options: CliOptions, flow: Callable[[RepoLensContext], Awaitable[T]]) -> T:
    """Run *flow* on a fresh context, draining background work before closing."""
    repo_ctx = open_context(options)

    async def _main() -> T:
        try:
            return await flow(repo_ctx)
        finally:
            await repo_ctx.cache.drain()

    try:
        return asyncio.run(_main())
    finally:
        repo_ctx.close()
