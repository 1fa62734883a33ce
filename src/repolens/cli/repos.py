"""repolens repos subcommands — list, clone, snapshot."""

from __future__ import annotations

from typing import Annotated

import typer
from rich.table import Table

from repolens.acquire import clone_repo, snapshot_github_repo
from repolens.cli.errors import err_config, err_repo
from repolens.cli.session import console, options_from
from repolens.config import ConfigError, load_config
from repolens.repos import CLONES_DIR_NAME, RepoError, RepoRecord, find_repo, list_repos

repos_app = typer.Typer(help="List and acquire repositories.", no_args_is_help=True)


@repos_app.command("list")
def list_cmd(ctx: typer.Context) -> None:
    """List the workspace and every clone or snapshot under repos/."""
    options = options_from(ctx)
    active = None
    if options.repo is not None:
        try:
            active = find_repo(options.workspace, options.repo).key
        except RepoError as exc:
            console.print(err_repo(str(exc)))
            raise typer.Exit(1)

    table = Table(title="Repositories")
    table.add_column("", width=1)
    table.add_column("Key", style="cyan")
    table.add_column("Label")
    table.add_column("Source", style="dim")
    table.add_column("Remote")
    table.add_column("Commit", style="dim")
    for repo in list_repos(options.workspace):
        marker = "*" if repo.key == (active or ".") else ""
        table.add_row(
            marker, repo.key, repo.label, repo.source, repo.remote_url or "", repo.commit or ""
        )
    console.print(table)


def _report(record: RepoRecord) -> None:
    console.print(f"[green]✓[/] {record.label} → {record.root_path}")
    if record.commit:
        console.print(f"  {record.branch or '?'} @ {record.commit}")
    console.print(f"  Use:  repolens --repo {record.key} summary")


@repos_app.command("clone")
def clone_cmd(
    ctx: typer.Context,
    url: Annotated[str, typer.Argument(help="HTTPS or SSH git URL.")],
) -> None:
    """Shallow-clone a git repository into repos/."""
    options = options_from(ctx)
    try:
        record = clone_repo(url, options.workspace, options.workspace / CLONES_DIR_NAME)
    except RepoError as exc:
        console.print(err_repo(str(exc)))
        raise typer.Exit(1)
    _report(record)


@repos_app.command("snapshot")
def snapshot_cmd(
    ctx: typer.Context,
    url: Annotated[str, typer.Argument(help="GitHub repository URL (owner/repo).")],
) -> None:
    """Download a file-level snapshot of a GitHub repository without git."""
    options = options_from(ctx)
    try:
        cfg = load_config(options.workspace)
    except ConfigError as exc:
        console.print(err_config(str(exc)))
        raise typer.Exit(1)

    try:
        with console.status("Downloading snapshot…"):
            record = snapshot_github_repo(
                url,
                options.workspace,
                options.workspace / CLONES_DIR_NAME,
                cfg.snapshot,
                cfg.index.max_file_bytes,
            )
    except RepoError as exc:
        console.print(err_repo(str(exc)))
        raise typer.Exit(1)
    _report(record)
