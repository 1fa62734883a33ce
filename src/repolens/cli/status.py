"""repolens status command.

Shows the active repository, index counts, database and embedding state,
and recent chat history.
"""

from __future__ import annotations

import json
from typing import Annotated

import typer
from rich.panel import Panel
from rich.table import Table

from repolens.cli.session import console, options_from, run_flow
from repolens.service import RepoLensContext, build_meta


def status_cmd(
    ctx: typer.Context,
    as_json: Annotated[bool, typer.Option("--json", help="Print the status payload as JSON.")] = False,
    chats: Annotated[int, typer.Option("--chats", min=0, help="Recent chat turns to list.")] = 5,
) -> None:
    """Show repository, database and embedding status."""

    async def _flow(repo_ctx: RepoLensContext) -> tuple[dict, dict | None, list]:
        state = await repo_ctx.get_state()
        await repo_ctx.cache.drain()
        writer = repo_ctx.writer
        stats = writer.snapshot_stats(state.repo.key) if writer else None
        recent = writer.recent_chats(chats) if writer and chats else []
        return build_meta(repo_ctx, state), stats, recent

    meta, stats, recent = run_flow(options_from(ctx), _flow)

    if as_json:
        payload = {**meta, "snapshots": stats, "recentChats": [
            {"question": t.question, "createdAt": t.created_at} for t in recent
        ]}
        typer.echo(json.dumps(payload, indent=2))
        return

    repo = meta["activeRepo"]
    console.print(
        Panel(
            "\n".join(
                [
                    f"Repository:  [bold]{repo['label']}[/] ({repo['key']}, {repo['source']})",
                    f"Path:        {meta['repoPath']}",
                    f"Indexed:     {meta['indexedFiles']:,} files, "
                    f"{meta['graphNodes']:,} nodes, {meta['graphEdges']:,} edges",
                    f"Indexed at:  {meta['indexedAt']}",
                ]
            ),
            title="[bold]Repository[/]",
            expand=False,
        )
    )
    _show_database_panel(meta["database"], stats)
    _show_embeddings_panel(meta["embeddings"], meta["model"])

    if recent:
        table = Table(title="Recent questions")
        table.add_column("When", style="dim", no_wrap=True)
        table.add_column("Question")
        for turn in recent:
            table.add_row(turn.created_at or "", turn.question)
        console.print(table)


def _mark(ok: bool) -> str:
    return "[green]✓[/]" if ok else "[yellow]✗[/]"


def _show_database_panel(db: dict, stats: dict | None) -> None:
    if not db["enabled"]:
        console.print(Panel("[dim]Database disabled.[/]", title="[bold]Database[/]", expand=False))
        return

    lines = [f"Path:        {db['path']} {_mark(db['connected'])}"]
    if stats is not None:
        lines.append(f"Snapshot:    {stats['files']:,} files, {stats['edges']:,} edges")
    if db["lastWriteAt"]:
        lines.append(f"Last write:  {db['lastWriteAt']}")
    if db["lastError"]:
        lines.append(f"[red]Last error:[/] {db['lastError']}")
    console.print(Panel("\n".join(lines), title="[bold]Database[/]", expand=False))


def _show_embeddings_panel(emb: dict, model: dict) -> None:
    lines = [
        f"Generation:  {model['generationModel']} {_mark(model['hasGenerationKey'])}",
    ]
    if model["fallbackModel"]:
        lines.append(f"Fallback:    {model['fallbackModel']}")
    lines.append(f"Embeddings:  {emb['model']} {_mark(model['hasEmbeddingKey'])}")
    if not emb["enabled"]:
        lines.append("[dim]Vector retrieval disabled.[/]")
    else:
        lines.append(
            f"Storage:     {emb['storageMode'] or 'unavailable'}  |  "
            f"Ready: {_mark(emb['ready'])}  |  Chunks: [bold]{emb['chunkCount']:,}[/]"
        )
        if emb["lastSyncAt"]:
            lines.append(f"Last sync:   {emb['lastSyncAt']}")
    if emb["lastError"]:
        lines.append(f"[red]Last error:[/] {emb['lastError']}")
    if model["lastError"]:
        lines.append(f"[red]Model error:[/] {model['lastError']}")
    console.print(Panel("\n".join(lines), title="[bold]Models[/]", expand=False))
