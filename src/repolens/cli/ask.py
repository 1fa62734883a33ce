"""repolens ask / sync commands."""

from __future__ import annotations

import json
from typing import Annotated

import typer
from rich.table import Table

from repolens.cli.errors import err_embeddings_unavailable, err_no_api_key, warn_sync_failed
from repolens.cli.session import console, options_from, run_flow
from repolens.rag.answer import Answer, answer_question
from repolens.rag.llm_client import has_credentials, provider_of
from repolens.service import RepoLensContext


def ask_cmd(
    ctx: typer.Context,
    question: Annotated[str, typer.Argument(help="Question about the active repository.")],
    stream: Annotated[bool, typer.Option("--stream", help="Stream the model answer as it arrives.")] = False,
    as_json: Annotated[bool, typer.Option("--json", help="Print answer, citations and model as JSON.")] = False,
) -> None:
    """Answer a question with file:line citations."""
    question = question.strip()
    if not question:
        console.print("[red]Error:[/] Question must not be empty.")
        raise typer.Exit(1)

    streamed: list[str] = []

    def _on_chunk(text: str) -> None:
        streamed.append(text)
        console.print(text, end="", markup=False, highlight=False)

    async def _flow(repo_ctx: RepoLensContext) -> Answer:
        state = await repo_ctx.get_state()
        # Finish the incremental embedding sync so vector search sees this state.
        await repo_ctx.cache.drain()
        return await answer_question(
            repo_ctx, question, state, on_chunk=_on_chunk if stream and not as_json else None
        )

    answer = run_flow(options_from(ctx), _flow)

    if as_json:
        typer.echo(json.dumps(answer.to_dict(), indent=2))
        return

    if answer.streamed:
        console.print()
    else:
        if streamed:
            # End the partial fragment from a model that failed mid-stream.
            console.print()
        console.print(answer.answer, markup=False, highlight=False)

    if answer.citations:
        table = Table(title="Citations")
        table.add_column("Location", style="cyan", no_wrap=True)
        table.add_column("Source", style="dim")
        table.add_column("Snippet")
        for c in answer.citations:
            table.add_row(f"{c.file}:{c.line}", c.source, c.snippet)
        console.print(table)

    model = answer.model
    if model.used:
        console.print(f"[dim]Answered by {model.model_id}[/]")
    elif model.error:
        console.print(f"[yellow]Model unavailable:[/] {model.error}")


def sync_cmd(
    ctx: typer.Context,
    force: Annotated[bool, typer.Option("--force", help="Re-index before syncing.")] = False,
) -> None:
    """Embed new or changed chunks of the active repository and drop stale ones."""

    async def _flow(repo_ctx: RepoLensContext) -> RepoLensContext:
        store = repo_ctx.vector_store
        if store is None or not repo_ctx.embeddings.enabled:
            return repo_ctx
        if not store.has_credentials():
            return repo_ctx
        await repo_ctx.get_state(force=force)
        await repo_ctx.cache.drain()
        return repo_ctx

    repo_ctx = run_flow(options_from(ctx), _flow)
    status = repo_ctx.embeddings

    if repo_ctx.vector_store is None or not status.enabled:
        console.print(err_embeddings_unavailable(status.last_error or repo_ctx.database.last_error))
        raise typer.Exit(1)
    if not has_credentials(repo_ctx.models.embedding_model, repo_ctx.models.api_key):
        console.print(err_no_api_key(provider_of(repo_ctx.models.embedding_model)))
        raise typer.Exit(1)
    if not status.ready:
        console.print(warn_sync_failed(status.last_error or "unknown error"))
        raise typer.Exit(1)

    console.print(
        f"[green]✓[/] {status.chunk_count:,} chunks stored for "
        f"[bold]{repo_ctx.active_repo.label}[/] ({status.storage_mode} storage, {status.model})"
    )
