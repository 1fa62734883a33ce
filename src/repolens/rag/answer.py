"""Answer synthesis — retrieval, prompt construction and model fallback.

The retrieval-only answer is always built first, so a question gets a useful
response with citations even when no model is configured or every model call
fails.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Callable, Sequence

from repolens.index.summary import RepoSummary
from repolens.rag import llm_client
from repolens.rag.citations import Citation, merge_citations
from repolens.rag.lexical import FileMatch, best_matches, lexical_citations
from repolens.rag.llm_client import ModelSettings

if TYPE_CHECKING:
    from repolens.service import RepoLensContext, RepoState

logger = logging.getLogger(__name__)

__all__ = [
    "Answer",
    "ModelSettings",
    "ModelUsage",
    "SYSTEM_PROMPT",
    "answer_question",
    "build_fallback_answer",
    "build_prompt",
]

SYSTEM_PROMPT = (
    "You are repolens, a professional codebase assistant. "
    "Give concrete, detailed answers using the provided context. "
    "Always cite file paths and line numbers (e.g. path/to/file.js:42). "
    "When asked what the app does, for an overview, or to inspect the codebase: "
    "provide a structured answer (purpose, main features, tech stack, key entry points) "
    "based on the context; do not hedge with phrases like 'without a comprehensive review' "
    "or 'high-level overview', answer confidently from the evidence given. "
    "Stay factual and avoid filler; if the context does not support something, "
    "say so briefly and point to what is present."
)

VECTOR_LIMIT = 10
PROMPT_CITATIONS = 12


@dataclass
class ModelUsage:
    """Which path produced the answer.

    ``provider`` is ``"retrieval"`` or ``"retrieval+vector"`` when no model
    answered, otherwise the provider prefix of ``model_id``.
    """

    provider: str = "retrieval"
    model_id: str | None = None
    used: bool = False
    error: str | None = None

    def to_dict(self) -> dict:
        return {
            "provider": self.provider,
            "modelId": self.model_id,
            "used": self.used,
            "error": self.error,
        }


@dataclass
class Answer:
    answer: str
    citations: list[Citation] = field(default_factory=list)
    model: ModelUsage = field(default_factory=ModelUsage)
    streamed: bool = False

    def to_dict(self) -> dict:
        return {
            "answer": self.answer,
            "citations": [c.to_dict() for c in self.citations],
            "model": self.model.to_dict(),
        }


def build_prompt(question: str, citations: Sequence[Citation], summary: RepoSummary | None) -> str:
    """User prompt: question, language and file hints, numbered excerpts."""
    languages = summary.languages[:4] if summary else ()
    language_hint = ", ".join(f"{lang.language} ({lang.lines} lines)" for lang in languages)
    main_files = ", ".join(f.file for f in summary.main_files[:12]) if summary else ""
    context = "\n".join(
        f"{index}. {c.file}:{c.line} {c.snippet}"
        for index, c in enumerate(citations[:PROMPT_CITATIONS], start=1)
    )

    lines = [
        f"Question: {question}",
        f"Languages in repo: {language_hint}" if language_hint else "",
        f"Notable files: {main_files}" if main_files else "",
        "Relevant code excerpts (cite these file:line in your answer):",
        context or "(none)",
        "Answer in detail, citing file:line from the context above:",
    ]
    return "\n".join(line for line in lines if line)


def build_fallback_answer(
    question: str, matches: Sequence[FileMatch], summary: RepoSummary | None
) -> str:
    if not matches:
        langs = ", ".join(lang.language for lang in summary.languages[:3]) if summary else ""
        return "\n".join(
            [
                f'I could not find strong direct matches for: "{question}"',
                f"Dominant languages: {langs}" if langs else "No language metadata available yet.",
                "Try adding concrete symbols like function names, class names, route paths, "
                "or error strings.",
            ]
        )

    top_files = ", ".join(m.file for m in matches[:4])
    return "\n".join(
        [
            f'Likely locations for: "{question}"',
            f"Top files: {top_files}",
            "Use the citations below to jump to exact lines.",
        ]
    )


def _vector_answer(question: str, citations: Sequence[Citation]) -> str:
    files = ", ".join(c.file for c in citations[:4])
    return "\n".join(
        [
            f'Vector search found relevant chunks for: "{question}"',
            f"Top semantic files: {files}",
            "Citations below include semantic and lexical matches.",
        ]
    )


async def _generate(
    ctx: RepoLensContext,
    model: str,
    messages: list[dict],
    on_chunk: Callable[[str], None] | None,
) -> str:
    gen = ctx.config.generation
    if on_chunk is not None:
        return await llm_client.stream_complete(
            model,
            messages,
            on_chunk,
            api_key=ctx.models.api_key,
            max_tokens=gen.max_tokens,
            temperature=gen.temperature,
            timeout=gen.timeout_seconds,
        )
    return await llm_client.complete(
        model,
        messages,
        api_key=ctx.models.api_key,
        max_tokens=gen.max_tokens,
        temperature=gen.temperature,
        timeout=gen.timeout_seconds,
    )


async def answer_question(
    ctx: RepoLensContext,
    question: str,
    state: RepoState,
    on_chunk: Callable[[str], None] | None = None,
) -> Answer:
    """Answer *question* about ``state.repo`` with merged citations.

    Model calls are attempted only when citations exist: the generation model
    first, then the fallback model. Each failure is appended to
    ``ModelUsage.error``; the retrieval answer stands if none succeeds.
    With *on_chunk*, fragments are streamed until a model fails after
    emitting some; later models then answer without streaming and
    ``Answer.streamed`` stays False. The turn is recorded in chat history.
    """
    matches = best_matches(question, state.files)
    lexical = lexical_citations(matches)
    vector: list[Citation] = []
    if ctx.vector_store is not None:
        vector = await ctx.vector_store.search(question, state, VECTOR_LIMIT)
    citations = merge_citations(vector, lexical)

    text = build_fallback_answer(question, matches, state.summary)
    usage = ModelUsage(provider="retrieval+vector" if vector else "retrieval")
    if vector:
        text = _vector_answer(question, vector)

    streamed = False
    models = ctx.models
    candidates = [m for m in (models.generation_model, models.fallback_model) if m]
    if citations:
        messages = [
            {"role": "system", "content": SYSTEM_PROMPT},
            {"role": "user", "content": build_prompt(question, citations, state.summary)},
        ]
        errors: list[str] = []
        emitted = 0
        stream = on_chunk is not None

        def _forward(fragment: str) -> None:
            nonlocal emitted
            emitted += 1
            on_chunk(fragment)

        for model in dict.fromkeys(candidates):
            if not llm_client.has_credentials(model, models.api_key):
                continue
            try:
                generated = await _generate(ctx, model, messages, _forward if stream else None)
            except Exception as exc:
                message = str(exc) or type(exc).__name__
                logger.warning("Generation with %s failed: %s", model, message)
                errors.append(f"{model}: {message}")
                usage.model_id = usage.model_id or model
                models.last_error = message
                # Fragments already reached on_chunk; later models return whole answers.
                if emitted:
                    stream = False
                continue
            models.last_error = None
            if generated:
                text = generated
                usage.provider = llm_client.provider_of(model)
                usage.model_id = model
                usage.used = True
                streamed = stream
                break
        usage.error = " | ".join(errors) or None

    answer = Answer(answer=text, citations=citations, model=usage, streamed=streamed)
    if ctx.writer is not None:
        ctx.writer.record_chat(
            question, text, json.dumps([c.to_dict() for c in citations])
        )
    return answer
