from __future__ import annotations

from collections.abc import Sequence

import anthropic
from loguru import logger
from tenacity import retry

from chat_relay.errors import ProviderUnavailableError
from chat_relay.messages import ChatMessage, to_provider_format
from chat_relay.models import GenerationParams, ProviderReply
from chat_relay.providers.common import classify_sdk_error, default_retry_kwargs, http_timeout

_RETRYABLE = (
    anthropic.RateLimitError,
    anthropic.APIConnectionError,
    anthropic.APITimeoutError,
)


def _to_anthropic_request(messages: Sequence[ChatMessage]) -> tuple[str, list[dict]]:
    """Split wire messages into the ``system`` parameter and the message list.

    The Messages API has no system role and must open with a user turn, so
    system messages are lifted out and leading assistant turns are skipped.
    """
    system_parts: list[str] = []
    out: list[dict] = []
    for wire in to_provider_format("anthropic", messages):
        if wire["role"] == "system":
            system_parts.extend(b["text"] for b in wire["content"] if b.get("type") == "text")
            continue
        if not out and wire["role"] == "assistant":
            logger.debug("Skipping leading assistant message left over from trimming")
            continue
        out.append(wire)
    return "\n".join(system_parts), out


def _sampling_kwargs(params: GenerationParams) -> dict:
    """Current Claude models accept temperature or top_p, never both.

    top_p is sent only when the caller set it for this turn and left
    temperature alone; otherwise temperature is sent.
    """
    if "top_p" in params.overridden and "temperature" not in params.overridden:
        return {"top_p": params.top_p}
    return {"temperature": params.temperature}


class AnthropicProvider:
    def __init__(self, api_key: str, *, timeout_seconds: float = 60.0, client=None):
        self._client = client or anthropic.AsyncAnthropic(
            api_key=api_key,
            timeout=http_timeout(timeout_seconds),
            max_retries=0,
        )

    @property
    def name(self) -> str:
        return "anthropic"

    async def count_tokens(self, model: str, messages: Sequence[ChatMessage]) -> int:
        system, wire = _to_anthropic_request(messages)
        try:
            return await self._count_tokens(model, system, wire)
        except anthropic.APIError as ex:
            raise classify_sdk_error(anthropic, ex, provider=self.name, model=model) from ex

    async def send(
        self,
        model: str,
        messages: Sequence[ChatMessage],
        params: GenerationParams,
    ) -> ProviderReply:
        system, wire = _to_anthropic_request(messages)
        try:
            response = await self._create(model, system, wire, params)
        except anthropic.APIError as ex:
            raise classify_sdk_error(anthropic, ex, provider=self.name, model=model) from ex

        text = "".join(block.text for block in response.content if block.type == "text")
        if not text:
            raise ProviderUnavailableError(
                f"anthropic returned no text (stop_reason={response.stop_reason})",
                provider=self.name,
                model=model,
            )
        usage = response.usage
        logger.debug(
            f"API response: stop_reason={response.stop_reason}, "
            f"input_tokens={usage.input_tokens}, output_tokens={usage.output_tokens}"
        )
        return ProviderReply(
            text=text,
            token_count=usage.input_tokens + usage.output_tokens,
            finish_reason=response.stop_reason or "end_turn",
        )

    @retry(**default_retry_kwargs(_RETRYABLE))
    async def _count_tokens(self, model: str, system: str, wire: list[dict]) -> int:
        kwargs: dict = dict(model=model, messages=wire)
        if system:
            kwargs["system"] = system
        result = await self._client.messages.count_tokens(**kwargs)
        return int(result.input_tokens)

    @retry(**default_retry_kwargs(_RETRYABLE))
    async def _create(self, model: str, system: str, wire: list[dict], params: GenerationParams):
        logger.debug(f"API request: model={model}, max_tokens={params.max_tokens}, messages={len(wire)}")
        kwargs: dict = dict(model=model, max_tokens=params.max_tokens, messages=wire, **_sampling_kwargs(params))
        if system:
            kwargs["system"] = system
        return await self._client.messages.create(**kwargs)
