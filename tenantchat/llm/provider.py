"""LLM provider abstraction using litellm.

Tenant models are plain ids ("gemini-2.5-pro"); litellm needs a provider
prefix, added from settings.llm_model_prefix unless the id already has one.

Streaming:
- open_stream() returns a ModelStream: async iterator of text chunks,
  usage report available after exhaustion (None if never sent or cancelled)
- aclose() stops pulling chunks; the usage report may then be missing
- Optional heartbeat liveness: no token for llm_heartbeat_seconds
  → HeartbeatTimeoutError (disabled when 0)
"""

from __future__ import annotations

import asyncio
import logging

import litellm

from tenantchat.config import settings
from tenantchat.errors import HeartbeatTimeoutError, UpstreamStreamError
from tenantchat.models import TokenUsage

logger = logging.getLogger(__name__)


def resolve_model(model: str | None) -> str:
    """Tenant model id → litellm model id."""
    model = model or settings.default_model
    if "/" in model:
        return model
    return f"{settings.llm_model_prefix}{model}"


def _to_usage(usage) -> TokenUsage | None:
    """litellm Usage (prompt/completion/total) → TokenUsage."""
    if usage is None:
        return None
    prompt = getattr(usage, "prompt_tokens", None) or 0
    completion = getattr(usage, "completion_tokens", None) or 0
    total = getattr(usage, "total_tokens", None) or (prompt + completion)
    if not (prompt or completion or total):
        return None
    return TokenUsage(promptTokens=prompt, responseTokens=completion, totalTokens=total)


class ModelStream:
    """Token stream of one model call.

    Iterating yields non-empty text chunks in order. Provider failures are
    raised as UpstreamStreamError.
    """

    def __init__(self, response, model: str, heartbeat_seconds: float = 0) -> None:
        self._response = response
        self._source = response.__aiter__()
        self._heartbeat = heartbeat_seconds
        self._closed = False
        self.model = model
        self.usage: TokenUsage | None = None
        self.chunk_count = 0

    def __aiter__(self) -> ModelStream:
        return self

    async def __anext__(self) -> str:
        while True:
            if self._closed:
                raise StopAsyncIteration
            chunk = await self._next_chunk()

            usage = _to_usage(getattr(chunk, "usage", None))
            if usage is not None:
                self.usage = usage

            choices = getattr(chunk, "choices", None)
            delta = choices[0].delta if choices else None
            text = getattr(delta, "content", None) if delta is not None else None
            if text:
                self.chunk_count += 1
                return text

    async def _next_chunk(self):
        try:
            if self._heartbeat > 0:
                return await asyncio.wait_for(self._source.__anext__(), timeout=self._heartbeat)
            return await self._source.__anext__()
        except StopAsyncIteration:
            self._closed = True
            raise
        except asyncio.TimeoutError:
            if self._heartbeat > 0:
                raise HeartbeatTimeoutError(
                    f"LLM stopped sending tokens for {self._heartbeat}s"
                )
            raise UpstreamStreamError(f"LLM stream timed out (model={self.model})")
        except asyncio.CancelledError:
            raise
        except Exception as e:
            raise UpstreamStreamError(f"LLM stream failed (model={self.model}): {e}") from e

    async def aclose(self) -> None:
        """Stop the stream; no further chunks are pulled."""
        if self._closed:
            return
        self._closed = True
        close = getattr(self._response, "aclose", None)
        if close is None:
            return
        try:
            await close()
        except Exception as e:
            logger.debug("LLM stream close failed (model=%s): %s", self.model, e)


class LLMProvider:
    """Unified LLM provider using litellm."""

    async def open_stream(
        self,
        prompt: str,
        system_instruction: str,
        model: str | None,
        prior_turns: list[dict],
    ) -> ModelStream:
        """Open a token stream: system + prior turns + prompt as the user turn."""
        model_id = resolve_model(model)
        messages = [
            {"role": "system", "content": system_instruction},
            *prior_turns,
            {"role": "user", "content": prompt},
        ]

        logger.info("LLM streaming call: model=%s, prior_turns=%d", model_id, len(prior_turns))
        try:
            response = await litellm.acompletion(
                model=model_id,
                messages=messages,
                stream=True,
                stream_options={"include_usage": True},
            )
        except Exception as e:
            raise UpstreamStreamError(f"Failed to open LLM stream (model={model_id}): {e}") from e

        return ModelStream(response, model_id, settings.llm_heartbeat_seconds)

    async def completion(
        self,
        messages: list[dict],
        model: str | None = None,
        temperature: float = 0.1,
        max_tokens: int = 2048,
    ) -> str:
        """Non-tool call; streams internally and returns the assembled text."""
        model_id = resolve_model(model)
        try:
            response = await litellm.acompletion(
                model=model_id,
                messages=messages,
                temperature=temperature,
                max_tokens=max_tokens,
                stream=True,
            )
        except Exception as e:
            raise UpstreamStreamError(f"LLM call failed (model={model_id}): {e}") from e

        stream = ModelStream(response, model_id, settings.llm_heartbeat_seconds)
        parts = [text async for text in stream]
        content = "".join(parts)
        logger.info(
            "LLM streaming complete: model=%s, %d chunks, %d chars",
            model_id, stream.chunk_count, len(content),
        )
        return content


# Singleton
llm_provider = LLMProvider()
