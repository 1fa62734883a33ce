"""Tests for repolens rich error messages."""

from __future__ import annotations

import pytest

from repolens.cli.errors import (
    err_config,
    err_embeddings_unavailable,
    err_no_api_key,
    err_repo,
    warn_sync_failed,
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _has_what_and_action(msg: str) -> bool:
    """Every error must contain a cause AND an actionable instruction."""
    lower = msg.lower()
    return any(kw in lower for kw in ["run:", "set:", "export ", "repolens ", "fix ", "check "])


# ---------------------------------------------------------------------------
# Messages
# ---------------------------------------------------------------------------


@pytest.mark.parametrize("msg", [
    err_no_api_key("openai"),
    err_config("embedding.storage must be 'auto' or 'json'"),
    err_repo("Repository path does not exist: repos/x"),
    err_embeddings_unavailable(None),
    warn_sync_failed("rate limited"),
])
def test_messages_are_actionable(msg: str) -> None:
    assert _has_what_and_action(msg)


def test_err_no_api_key_known_provider() -> None:
    assert "export ANTHROPIC_API_KEY=" in err_no_api_key("anthropic")


def test_err_no_api_key_unknown_provider() -> None:
    assert "export DEEPSEEK_API_KEY=" in err_no_api_key("deepseek")


def test_err_config_includes_message() -> None:
    assert "embedding.batch_size" in err_config("embedding.batch_size: expected int")


def test_err_embeddings_unavailable_default_reason() -> None:
    assert "disabled" in err_embeddings_unavailable(None)
    assert "locked" in err_embeddings_unavailable("database is locked")


def test_warn_sync_failed_mentions_fallback() -> None:
    msg = warn_sync_failed("timeout")
    assert "lexical" in msg
    assert "repolens sync" in msg
