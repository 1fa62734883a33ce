"""repolens rich error messages — actionable feedback.

Every error shown to the user must contain:
  1. What went wrong (clear cause)
  2. The exact action the user should take to fix it

Usage:
    from repolens.cli.errors import err_no_api_key
    console.print(err_no_api_key("openai"))
    raise typer.Exit(1)
"""

from __future__ import annotations

from repolens.rag.llm_client import _PROVIDER_ENV


def err_no_api_key(provider: str) -> str:
    """No API key for *provider*.

    Example:
        No API key for 'openai'. Set:  export OPENAI_API_KEY=sk-...
    """
    env_var = _PROVIDER_ENV.get(provider.lower()) or f"{provider.upper()}_API_KEY"
    return (
        f"[red]Error:[/] No API key for '{provider}'.\n"
        f"  Set:  export {env_var}=sk-..."
    )


def err_config(message: str) -> str:
    """Configuration could not be loaded."""
    return (
        f"[red]Error:[/] Invalid configuration: {message}\n"
        "  Fix repolens.yaml (or ~/.repolens/config.yaml) and retry."
    )


def err_repo(message: str) -> str:
    """Repository cannot be selected, cloned or downloaded."""
    return (
        f"[red]Error:[/] {message}\n"
        "  Run:  repolens repos list  to see selectable repositories."
    )


def err_embeddings_unavailable(reason: str | None) -> str:
    """Embedding sync cannot run."""
    detail = reason or "embeddings are disabled or the database is unavailable"
    return (
        f"[red]Error:[/] Vector sync unavailable: {detail}\n"
        "  Check 'embedding.enabled' and 'database.enabled' in repolens.yaml."
    )


def warn_sync_failed(reason: str) -> str:
    """Embedding sync failed; answers fall back to lexical retrieval."""
    return (
        f"[yellow]Warning:[/] Embedding sync failed: {reason}\n"
        "  Answers will use lexical matches only. Re-run:  repolens sync"
    )
