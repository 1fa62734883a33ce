"""LiteLLM client wrapper: embeddings, completion, streaming, key validation.

All provider calls in repolens route through this module. Each call carries a
hard timeout (``asyncio.wait_for``) on top of LiteLLM's own request timeout;
an expired call raises ``asyncio.TimeoutError`` and is treated as a transient
failure by the callers.
"""

from __future__ import annotations

import asyncio
import os
import re
from dataclasses import dataclass
from typing import Callable, Sequence

import litellm

from repolens.config import ConfigError, RepoLensConfig

# Disable LiteLLM verbose logging unless explicitly enabled
litellm.suppress_debug_info = True
litellm.set_verbose = False  # type: ignore[assignment]


# ------------------------------------------------------------------
# Provider → env var mapping for API key validation
# ------------------------------------------------------------------

_PROVIDER_ENV: dict[str, str | None] = {
    "openai": "OPENAI_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
    "azure": "AZURE_API_KEY",
    "cohere": "COHERE_API_KEY",
    "gemini": "GEMINI_API_KEY",
    "google": "GOOGLE_API_KEY",
    "mistral": "MISTRAL_API_KEY",
    "groq": "GROQ_API_KEY",
    "huggingface": "HUGGINGFACE_API_KEY",
    "together_ai": "TOGETHERAI_API_KEY",
    "ollama": None,  # Local, no key required
    "ollama_chat": None,
}

_MODEL_RE = re.compile(r"^[A-Za-z0-9_.\-]+/[A-Za-z0-9_.:\-/]+$")


def provider_of(model: str) -> str:
    return model.split("/")[0].lower() if "/" in model else "openai"


def validate_model(model: str) -> str:
    """Return *model* stripped, or raise ConfigError if not 'provider/model'.

    Raises:
        ConfigError: If the identifier is empty or malformed.
    """
    value = (model or "").strip()
    if not _MODEL_RE.match(value):
        raise ConfigError(
            f"Invalid model identifier '{model}'. "
            "Use 'provider/model', e.g. 'openai/gpt-4o-mini'."
        )
    return value


def validate_api_key(model: str, api_key: str | None = None) -> None:
    """Check that a credential is available for *model*.

    Args:
        model: LiteLLM model string in 'provider/model' format.
        api_key: Explicit key; when set, the environment is not consulted.

    Raises:
        EnvironmentError: If the required key is missing from environment.
    """
    if api_key:
        return

    provider = provider_of(model)
    env_var = _PROVIDER_ENV.get(provider, f"{provider.upper()}_API_KEY")

    if env_var is None:
        return  # No key required (e.g. ollama)

    if not os.getenv(env_var):
        raise EnvironmentError(
            f"API key not found for provider '{provider}'. "
            f"Set the {env_var} environment variable."
        )


def has_credentials(model: str, api_key: str | None = None) -> bool:
    try:
        validate_api_key(model, api_key)
    except EnvironmentError:
        return False
    return True


@dataclass
class ModelSettings:
    """Runtime model selection shared by generation and embeddings.

    ``api_key`` is an explicit override; when unset each provider's key is
    read from its environment variable.
    """

    generation_model: str = "openai/gpt-4o-mini"
    fallback_model: str | None = None
    embedding_model: str = "openai/text-embedding-3-small"
    api_key: str | None = None
    last_error: str | None = None

    @classmethod
    def from_config(cls, config: RepoLensConfig) -> "ModelSettings":
        return cls(
            generation_model=validate_model(config.generation.model),
            fallback_model=(
                validate_model(config.generation.fallback_model)
                if config.generation.fallback_model
                else None
            ),
            embedding_model=validate_model(config.embedding.model),
        )

    def configure(
        self,
        generation_model: str | None = None,
        fallback_model: str | None = None,
        embedding_model: str | None = None,
        api_key: str | None = None,
    ) -> None:
        """Update the selection in place. Unset arguments keep current values.

        Raises:
            ConfigError: If any given model identifier is malformed.
        """
        if generation_model is not None:
            self.generation_model = validate_model(generation_model)
        if fallback_model is not None:
            self.fallback_model = validate_model(fallback_model) if fallback_model else None
        if embedding_model is not None:
            self.embedding_model = validate_model(embedding_model)
        if api_key is not None:
            self.api_key = api_key.strip() or None

    def to_dict(self) -> dict:
        return {
            "generationModel": self.generation_model,
            "fallbackModel": self.fallback_model,
            "embeddingModel": self.embedding_model,
            "hasGenerationKey": has_credentials(self.generation_model, self.api_key),
            "hasEmbeddingKey": has_credentials(self.embedding_model, self.api_key),
            "lastError": self.last_error,
        }


async def embed_texts(
    model: str,
    texts: Sequence[str],
    *,
    api_key: str | None = None,
    dimensions: int | None = None,
    timeout: float = 30.0,
    num_retries: int = 2,
) -> list[list[float]]:
    """Embed *texts* in one provider call. Output order matches input order."""
    kwargs: dict = {"model": model, "input": list(texts), "num_retries": num_retries, "timeout": timeout}
    if api_key:
        kwargs["api_key"] = api_key
    if dimensions:
        kwargs["dimensions"] = dimensions

    response = await asyncio.wait_for(litellm.aembedding(**kwargs), timeout=timeout)
    items = sorted(response.data, key=lambda item: _field(item, "index", 0))
    return [list(_field(item, "embedding", [])) for item in items]


async def complete(
    model: str,
    messages: list[dict],
    *,
    api_key: str | None = None,
    max_tokens: int = 1024,
    temperature: float = 0.2,
    timeout: float = 30.0,
    num_retries: int = 2,
) -> str:
    """Call litellm.acompletion() and return the stripped content string."""
    kwargs: dict = {
        "model": model,
        "messages": messages,
        "max_tokens": max_tokens,
        "temperature": temperature,
        "num_retries": num_retries,
        "timeout": timeout,
    }
    if api_key:
        kwargs["api_key"] = api_key

    response = await asyncio.wait_for(litellm.acompletion(**kwargs), timeout=timeout)
    return (response.choices[0].message.content or "").strip()


async def stream_complete(
    model: str,
    messages: list[dict],
    on_chunk: Callable[[str], None],
    *,
    api_key: str | None = None,
    max_tokens: int = 1024,
    temperature: float = 0.2,
    timeout: float = 30.0,
) -> str:
    """Stream a completion, calling *on_chunk* per text fragment.

    The timeout bounds the whole stream. Returns the full stripped text.
    """
    kwargs: dict = {
        "model": model,
        "messages": messages,
        "max_tokens": max_tokens,
        "temperature": temperature,
        "stream": True,
        "timeout": timeout,
    }
    if api_key:
        kwargs["api_key"] = api_key

    async def _consume() -> str:
        parts: list[str] = []
        stream = await litellm.acompletion(**kwargs)
        async for part in stream:
            delta = part.choices[0].delta.content if part.choices else None
            if isinstance(delta, str) and delta:
                parts.append(delta)
                on_chunk(delta)
        return "".join(parts)

    full = await asyncio.wait_for(_consume(), timeout=timeout)
    return full.strip()


def _field(item: object, name: str, default: object) -> object:
    if isinstance(item, dict):
        return item.get(name, default)
    return getattr(item, name, default)
