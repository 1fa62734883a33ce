"""repolens summary / graph commands."""

from __future__ import annotations

import json
from typing import Annotated

import typer
from rich.panel import Panel
from rich.table import Table

from repolens.cli.session import console, options_from, run_flow
from repolens.service import RepoLensContext, RepoState


def summary_cmd(
    ctx: typer.Context,
    as_json: Annotated[bool, typer.Option("--json", help="Print the summary as JSON.")] = False,
    force: Annotated[bool, typer.Option("--force", help="Re-index even if the cache is fresh.")] = False,
) -> None:
    """Show languages, main files and the README preview of the active repository."""

    async def _flow(repo_ctx: RepoLensContext) -> RepoState:
        return await repo_ctx.get_state(force=force)

    state = run_flow(options_from(ctx), _flow)
    if as_json:
        typer.echo(json.dumps(state.summary.to_dict(), indent=2))
        return
    _show_summary(state)


def graph_cmd(
    ctx: typer.Context,
    as_json: Annotated[bool, typer.Option("--json", help="Print nodes and edges as JSON.")] = False,
    limit: Annotated[int, typer.Option("--limit", min=1, help="Edges to show in the table.")] = 50,
) -> None:
    """Show the local import graph of the active repository."""

    async def _flow(repo_ctx: RepoLensContext) -> RepoState:
        return await repo_ctx.get_state()

    state = run_flow(options_from(ctx), _flow)
    if as_json:
        typer.echo(json.dumps(state.graph.to_dict(), indent=2))
        return

    table = Table(title=f"Imports — {len(state.graph.nodes)} nodes, {len(state.graph.edges)} edges")
    table.add_column("Source", style="cyan")
    table.add_column("Target", style="green")
    for edge in state.graph.edges[:limit]:
        table.add_row(edge.source, edge.target)
    console.print(table)
    hidden = len(state.graph.edges) - limit
    if hidden > 0:
        console.print(f"[dim]… {hidden} more edges (use --json for all)[/]")


def _show_summary(state: RepoState) -> None:
    summary = state.summary
    repo = state.repo
    header = [
        f"Repository:  [bold]{repo.label}[/] ({repo.key})",
        f"Files:       {summary.indexed_files:,}",
        f"Lines:       {summary.total_lines:,}",
    ]
    if repo.remote_url:
        header.append(f"Remote:      {repo.remote_url}")
    console.print(Panel("\n".join(header), title="[bold]Summary[/]", expand=False))

    languages = Table(title="Languages")
    languages.add_column("Language")
    languages.add_column("Files", justify="right")
    languages.add_column("Lines", justify="right")
    for lang in summary.languages:
        languages.add_row(lang.language, str(lang.files), f"{lang.lines:,}")
    console.print(languages)

    main_files = Table(title="Main files")
    main_files.add_column("File", style="cyan")
    main_files.add_column("Lines", justify="right")
    main_files.add_column("In", justify="right")
    main_files.add_column("Out", justify="right")
    main_files.add_column("Score", justify="right")
    for item in summary.main_files:
        main_files.add_row(
            item.file, str(item.line_count), str(item.incoming), str(item.outgoing), f"{item.score:.2f}"
        )
    console.print(main_files)

    if summary.readme_preview:
        console.print(Panel(summary.readme_preview, title="[bold]README[/]", expand=False))

    console.print("[bold]Try asking:[/]")
    for question in summary.suggested_questions:
        console.print(f"  • {question}")
