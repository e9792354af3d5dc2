"""
Zeroed — LLM provider layer for the AI features.

`complete()` sends one system + user prompt to the provider named by
LLM_PROVIDER (anthropic, gemini, openai or cohere) and returns the reply
text. Brain dump and task breakdown ask for JSON output; providers that
have a JSON response mode get it switched on, the rest rely on the prompt.

Callers check `is_configured()` first and fall back to keyword heuristics
when it is False.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Awaitable, Callable

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT_SECONDS = 30.0


class LLMNotConfiguredError(RuntimeError):
    """Raised by complete() when no LLM_API_KEY is set."""


@dataclass(frozen=True)
class _Request:
    api_key: str
    model: str
    system: str
    user_message: str
    max_tokens: int
    json_output: bool


_ProviderFn = Callable[[_Request], Awaitable[str]]


# ---------------------------------------------------------------------------
# Providers
# ---------------------------------------------------------------------------


async def _anthropic(req: _Request) -> str:
    import anthropic

    client = anthropic.AsyncAnthropic(api_key=req.api_key, timeout=REQUEST_TIMEOUT_SECONDS)
    response = await client.messages.create(
        model=req.model,
        max_tokens=req.max_tokens,
        system=req.system,
        messages=[{"role": "user", "content": req.user_message}],
    )
    return "".join(block.text for block in response.content if block.type == "text")


async def _gemini(req: _Request) -> str:
    import google.generativeai as genai

    genai.configure(api_key=req.api_key)
    model = genai.GenerativeModel(model_name=req.model, system_instruction=req.system)
    config = genai.types.GenerationConfig(
        max_output_tokens=req.max_tokens,
        response_mime_type="application/json" if req.json_output else "text/plain",
    )
    response = await model.generate_content_async(
        req.user_message,
        generation_config=config,
        request_options={"timeout": REQUEST_TIMEOUT_SECONDS},
    )
    return response.text


async def _openai(req: _Request) -> str:
    from openai import AsyncOpenAI

    client = AsyncOpenAI(api_key=req.api_key, timeout=REQUEST_TIMEOUT_SECONDS)
    kwargs: dict = {}
    if req.json_output:
        kwargs["response_format"] = {"type": "json_object"}
    response = await client.chat.completions.create(
        model=req.model,
        max_tokens=req.max_tokens,
        messages=[
            {"role": "system", "content": req.system},
            {"role": "user", "content": req.user_message},
        ],
        **kwargs,
    )
    return response.choices[0].message.content or ""


async def _cohere(req: _Request) -> str:
    import cohere

    client = cohere.AsyncClientV2(api_key=req.api_key, timeout=REQUEST_TIMEOUT_SECONDS)
    kwargs: dict = {}
    if req.json_output:
        kwargs["response_format"] = {"type": "json_object"}
    response = await client.chat(
        model=req.model,
        max_tokens=req.max_tokens,
        messages=[
            {"role": "system", "content": req.system},
            {"role": "user", "content": req.user_message},
        ],
        **kwargs,
    )
    return response.message.content[0].text


# name → (implementation, default model)
_PROVIDERS: dict[str, tuple[_ProviderFn, str]] = {
    "anthropic": (_anthropic, "claude-3-5-haiku-latest"),
    "gemini":    (_gemini,    "gemini-2.0-flash"),
    "openai":    (_openai,    "gpt-4o-mini"),
    "cohere":    (_cohere,    "command-a-03-2025"),
}


@dataclass(frozen=True)
class _Selection:
    name: str
    fn: _ProviderFn
    model: str


_selected: _Selection | None = None


def _selection() -> _Selection:
    global _selected
    if _selected is None:
        from zeroed.config import settings

        name = settings.LLM_PROVIDER.lower()
        if name not in _PROVIDERS:
            raise ValueError(f"Unknown LLM_PROVIDER={name!r}. Supported: {', '.join(_PROVIDERS)}")
        fn, default_model = _PROVIDERS[name]
        _selected = _Selection(name, fn, settings.LLM_MODEL or default_model)
        logger.info("LLM provider: %s, model: %s", name, _selected.model)
    return _selected


def reset_provider() -> None:
    """Forget the selected provider so the next call re-reads settings."""
    global _selected
    _selected = None


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def is_configured() -> bool:
    from zeroed.config import settings

    return bool(settings.LLM_API_KEY)


async def complete(
    system: str, user_message: str, max_tokens: int = 256, json_output: bool = False,
) -> str:
    """Return the provider's reply text.

    Raises LLMNotConfiguredError without an API key; provider errors
    propagate and callers are expected to fall back.
    """
    from zeroed.config import settings

    if not settings.LLM_API_KEY:
        raise LLMNotConfiguredError("LLM_API_KEY is not set")

    selection = _selection()
    request = _Request(
        api_key=settings.LLM_API_KEY,
        model=selection.model,
        system=system,
        user_message=user_message,
        max_tokens=max_tokens,
        json_output=json_output,
    )
    text = await selection.fn(request)
    logger.debug("LLM %s replied with %d chars", selection.name, len(text))
    return text
