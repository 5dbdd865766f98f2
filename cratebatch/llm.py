"""LLM access for tagging: provider routing, retries, cost and the batch tagger.

Model names starting with ``claude`` go to Anthropic, everything else to
OpenAI. Transient provider errors (connection drops, rate limits, 5xx) are
retried with exponential backoff; anything else surfaces on the first try
so the scheduler can route the chunk to its retry queue.

Usage::

    llm = LLMClient()  # keys from OPENAI_API_KEY / ANTHROPIC_API_KEY

    reply = await llm.call("Tag these tracks...", model="claude-3-5-haiku-20241022")
    reply.text, reply.input_tokens, reply.output_tokens

    tagger = LLMTagger(llm)
    result = await tagger.tag_batch(TagRequest(items=[...], mode=EnrichMode.FULL))
"""

from __future__ import annotations

import json
import logging
import os
import re
from dataclasses import dataclass
from typing import Any

import anthropic
import openai
from anthropic import AsyncAnthropic
from dotenv import load_dotenv
from openai import AsyncOpenAI
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from cratebatch.errors import ChunkFailure, CollaboratorUnavailable
from cratebatch.scheduler import AUTHORITATIVE, STANDARD, BatchUsage, TagBatchResult, TagRequest
from cratebatch.tagger import DEFAULT_SYSTEM_PROMPT, build_batch_prompt, parse_batch_reply

load_dotenv()
logger = logging.getLogger(__name__)

TRANSIENT_ERRORS = (
    openai.APIConnectionError,
    openai.RateLimitError,
    openai.InternalServerError,
    anthropic.APIConnectionError,
    anthropic.RateLimitError,
    anthropic.InternalServerError,
)


# ---------------------------------------------------------------------------
# Models and pricing
# ---------------------------------------------------------------------------

# "mechanical" handles first passes, "creative" the authoritative retries
DEFAULT_TIERED_MODELS: dict[str, str] = {
    "creative": "claude-sonnet-4-5-20250929",
    "mechanical": "claude-3-5-haiku-20241022",
}

# USD per million tokens (input, output)
MODEL_PRICES: dict[str, tuple[float, float]] = {
    "claude-sonnet-4-5-20250929": (3.00, 15.00),
    "claude-3-5-haiku-20241022": (0.80, 4.00),
    "gpt-4o": (2.50, 10.00),
    "gpt-4o-mini": (0.15, 0.60),
}


def provider_for_model(model: str) -> str:
    return "anthropic" if model.startswith("claude") else "openai"


def get_tiered_model(tier: str, models: dict[str, str] | None = None) -> tuple[str, str]:
    """(model, provider) for ``tier``; unknown tiers fall back to the creative model."""
    models = models or DEFAULT_TIERED_MODELS
    model = models.get(tier) or models.get("creative") or DEFAULT_TIERED_MODELS["creative"]
    return model, provider_for_model(model)


def estimate_cost(model: str, input_tokens: int, output_tokens: int) -> float:
    """Dollar cost of one call; 0 for models without a known price."""
    price_in, price_out = MODEL_PRICES.get(model, (0.0, 0.0))
    return (input_tokens * price_in + output_tokens * price_out) / 1_000_000


# ---------------------------------------------------------------------------
# Reply parsing
# ---------------------------------------------------------------------------

_FENCE_RE = re.compile(r"```(?:json)?\s*(.*?)\s*```", re.DOTALL)


def extract_json(text: str) -> Any:
    """Parse the JSON payload out of a model reply.

    Tries, in order: the whole text, the first fenced code block, then the
    widest ``[...]`` span and the widest ``{...}`` span. Raises ValueError
    when none of them parses.
    """
    candidates = [text]
    fence = _FENCE_RE.search(text)
    if fence:
        candidates.append(fence.group(1))
    for opener, closer in ("[", "]"), ("{", "}"):
        start, end = text.find(opener), text.rfind(closer)
        if -1 < start < end:
            candidates.append(text[start:end + 1])

    for candidate in candidates:
        try:
            return json.loads(candidate)
        except json.JSONDecodeError:
            continue
    raise ValueError(f"No JSON found in model reply: {text[:200]!r}")


# ---------------------------------------------------------------------------
# Provider client
# ---------------------------------------------------------------------------

@dataclass
class LLMResponse:
    text: str
    input_tokens: int = 0
    output_tokens: int = 0


class LLMClient:
    """One text-in, text-out call against either provider.

    SDK clients are created on first use, so constructing an LLMClient
    without keys is fine; ``has_key`` tells callers whether a call can work.
    """

    def __init__(
        self,
        openai_api_key: str | None = None,
        anthropic_api_key: str | None = None,
    ) -> None:
        self._keys = {
            "openai": openai_api_key or os.getenv("OPENAI_API_KEY"),
            "anthropic": anthropic_api_key or os.getenv("ANTHROPIC_API_KEY"),
        }
        self._openai: AsyncOpenAI | None = None
        self._anthropic: AsyncAnthropic | None = None

    def has_key(self, provider: str) -> bool:
        return bool(self._keys.get(provider))

    @retry(
        wait=wait_exponential(multiplier=1, min=3, max=30),
        stop=stop_after_attempt(3),
        retry=retry_if_exception_type(TRANSIENT_ERRORS),
        reraise=True,
    )
    async def call(
        self,
        user_prompt: str,
        *,
        model: str,
        system_prompt: str = "",
        max_tokens: int = 8192,
    ) -> LLMResponse:
        if provider_for_model(model) == "anthropic":
            return await self._call_anthropic(user_prompt.strip(), model, system_prompt, max_tokens)
        return await self._call_openai(user_prompt.strip(), model, system_prompt, max_tokens)

    async def _call_anthropic(self, prompt: str, model: str, system_prompt: str,
                              max_tokens: int) -> LLMResponse:
        if self._anthropic is None:
            self._anthropic = AsyncAnthropic(api_key=self._keys["anthropic"])
        kwargs: dict[str, Any] = {
            "model": model,
            "max_tokens": max_tokens,
            "messages": [{"role": "user", "content": prompt}],
        }
        if system_prompt:
            kwargs["system"] = system_prompt
        message = await self._anthropic.messages.create(**kwargs)
        text = "".join(block.text for block in message.content if block.type == "text")
        return LLMResponse(
            text=text.strip(),
            input_tokens=message.usage.input_tokens,
            output_tokens=message.usage.output_tokens,
        )

    async def _call_openai(self, prompt: str, model: str, system_prompt: str,
                           max_tokens: int) -> LLMResponse:
        if self._openai is None:
            self._openai = AsyncOpenAI(api_key=self._keys["openai"])
        messages = [{"role": "system", "content": system_prompt}] if system_prompt else []
        messages.append({"role": "user", "content": prompt})
        completion = await self._openai.chat.completions.create(
            model=model,
            messages=messages,
            max_tokens=max_tokens,
        )
        usage = completion.usage
        return LLMResponse(
            text=(completion.choices[0].message.content or "").strip(),
            input_tokens=usage.prompt_tokens if usage else 0,
            output_tokens=usage.completion_tokens if usage else 0,
        )


# ---------------------------------------------------------------------------
# Tagging collaborator
# ---------------------------------------------------------------------------

class LLMTagger:
    """Tags one chunk of tracks per LLM call.

    ``strategy_hint="authoritative"`` switches to the creative (larger)
    model tier; everything else uses the mechanical tier.
    """

    def __init__(
        self,
        client: LLMClient | None = None,
        models: dict[str, str] | None = None,
        system_prompt: str | None = None,
    ) -> None:
        self.client = client or LLMClient()
        self.models = models or DEFAULT_TIERED_MODELS
        self.system_prompt = system_prompt or DEFAULT_SYSTEM_PROMPT

    def model_for(self, strategy_hint: str) -> tuple[str, str]:
        tier = "creative" if strategy_hint == AUTHORITATIVE else "mechanical"
        return get_tiered_model(tier, self.models)

    def available(self) -> bool:
        """True when both model tiers have an API key configured."""
        return all(
            self.client.has_key(self.model_for(hint)[1]) for hint in (STANDARD, AUTHORITATIVE)
        )

    async def tag_batch(self, request: TagRequest) -> TagBatchResult:
        model, provider = self.model_for(request.strategy_hint)
        if not self.client.has_key(provider):
            raise CollaboratorUnavailable(f"No API key configured for {provider}")

        prompt = build_batch_prompt(request.items, request.mode, request.strategy_hint)
        reply = await self.client.call(prompt, model=model, system_prompt=self.system_prompt)
        usage = BatchUsage(
            input_tokens=reply.input_tokens,
            output_tokens=reply.output_tokens,
            cost=estimate_cost(model, reply.input_tokens, reply.output_tokens),
        )
        try:
            items = parse_batch_reply(extract_json(reply.text))
        except ValueError as e:
            raise ChunkFailure(str(e)) from e
        logger.debug("%s answered %d/%d items", model, len(items), len(request.items))
        return TagBatchResult(items=items, usage=usage)
