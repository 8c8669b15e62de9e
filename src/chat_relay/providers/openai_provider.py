from __future__ import annotations

from collections.abc import Sequence

import openai
from loguru import logger
from tenacity import retry

from chat_relay.errors import ProviderUnavailableError
from chat_relay.messages import ChatMessage, to_provider_format
from chat_relay.models import GenerationParams, ProviderReply
from chat_relay.providers.common import (
    classify_sdk_error,
    default_retry_kwargs,
    estimate_tokens,
    http_timeout,
)

_RETRYABLE = (
    openai.RateLimitError,
    openai.APIConnectionError,
    openai.APITimeoutError,
)


class OpenAIProvider:
    """Chat Completions client. The wire format is flat text per message."""

    def __init__(self, api_key: str, *, timeout_seconds: float = 60.0, client=None):
        self._client = client or openai.AsyncOpenAI(
            api_key=api_key,
            timeout=http_timeout(timeout_seconds),
            max_retries=0,
        )

    @property
    def name(self) -> str:
        return "openai"

    async def count_tokens(self, model: str, messages: Sequence[ChatMessage]) -> int:
        # No counting endpoint; estimate locally.
        return estimate_tokens(messages)

    async def send(
        self,
        model: str,
        messages: Sequence[ChatMessage],
        params: GenerationParams,
    ) -> ProviderReply:
        wire = to_provider_format("openai", messages)
        try:
            response = await self._create(model, wire, params)
        except openai.APIError as ex:
            raise classify_sdk_error(openai, ex, provider=self.name, model=model) from ex

        if not response.choices:
            raise ProviderUnavailableError("openai returned no choices", provider=self.name, model=model)
        choice = response.choices[0]
        text = choice.message.content or ""
        if not text:
            raise ProviderUnavailableError(
                f"openai returned no text (finish_reason={choice.finish_reason})",
                provider=self.name,
                model=model,
            )
        token_count = response.usage.total_tokens if response.usage else None
        logger.debug(f"API response: finish_reason={choice.finish_reason}, total_tokens={token_count}")
        return ProviderReply(
            text=text,
            token_count=token_count,
            finish_reason=choice.finish_reason or "stop",
        )

    @retry(**default_retry_kwargs(_RETRYABLE))
    async def _create(self, model: str, wire: list[dict], params: GenerationParams):
        logger.debug(f"API request: model={model}, max_tokens={params.max_tokens}, messages={len(wire)}")
        return await self._client.chat.completions.create(
            model=model,
            max_tokens=params.max_tokens,
            temperature=params.temperature,
            top_p=params.top_p,
            messages=wire,
        )
