"""repolens CLI entry point."""

from __future__ import annotations

import importlib.metadata
from pathlib import Path
from typing import Annotated, Optional

import typer

from repolens.cli.ask import ask_cmd, sync_cmd
from repolens.cli.repos import repos_app
from repolens.cli.session import CliOptions, configure_logging
from repolens.cli.status import status_cmd
from repolens.cli.summary import graph_cmd, summary_cmd


def _package_version() -> str:
    try:
        return importlib.metadata.version("repolens")
    except importlib.metadata.PackageNotFoundError:
        return "dev"


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"repolens {_package_version()}")
        raise typer.Exit()


app = typer.Typer(
    name="repolens",
    help=(
        "repolens — ask questions about a codebase.\n\n"
        "  repolens summary   Languages, main files and README preview.\n"
        "  repolens ask       Cited answers from lexical + vector retrieval."
    ),
    add_completion=False,
    no_args_is_help=True,
)


@app.callback()
def main_callback(
    ctx: typer.Context,
    workspace: Annotated[
        Path,
        typer.Option(
            "--workspace",
            "-w",
            help="Workspace root (holds repolens.yaml, the database and repos/).",
            file_okay=False,
        ),
    ] = Path("."),
    repo: Annotated[
        Optional[Path],
        typer.Option("--repo", "-r", help="Repository to use: the workspace or a folder in repos/."),
    ] = None,
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Enable debug logging.")] = False,
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            callback=_version_callback,
            is_eager=True,
            help="Show version and exit.",
        ),
    ] = False,
) -> None:
    """repolens — ask questions about a codebase."""
    configure_logging(verbose)
    workspace = workspace.resolve()
    if repo is not None and not repo.is_absolute():
        repo = workspace / repo
    ctx.obj = CliOptions(workspace=workspace, repo=repo, verbose=verbose)


app.command("summary")(summary_cmd)
app.command("graph")(graph_cmd)
app.command("ask")(ask_cmd)
app.command("sync")(sync_cmd)
app.command("status")(status_cmd)
app.add_typer(repos_app, name="repos")


@app.command("version")
def version_cmd() -> None:
    """Show the installed repolens version."""
    typer.echo(f"repolens {_package_version()}")


if __name__ == "__main__":
    app()
