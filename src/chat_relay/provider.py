from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

from loguru import logger

from chat_relay.errors import InvalidModelError
from chat_relay.messages import ChatMessage
from chat_relay.models import GenerationParams, ProviderReply


@runtime_checkable
class ProviderClient(Protocol):
    @property
    def name(self) -> str: ...

    async def count_tokens(self, model: str, messages: Sequence[ChatMessage]) -> int:
        """Count the tokens the provider would bill for this message list."""
        ...

    async def send(
        self,
        model: str,
        messages: Sequence[ChatMessage],
        params: GenerationParams,
    ) -> ProviderReply:
        """Generate a reply to the conversation; the last message is the new user turn."""
        ...


@dataclass(frozen=True)
class ModelBinding:
    model: str
    client: ProviderClient
    token_budget: int

    @property
    def provider_name(self) -> str:
        return self.client.name

    async def count_tokens(self, messages: Sequence[ChatMessage]) -> int:
        return await self.client.count_tokens(self.model, messages)


class ProviderRegistry:
    """Maps model names to the client that serves them and their token budget."""

    def __init__(self) -> None:
        self._bindings: dict[str, ModelBinding] = {}

    def register(self, model: str, client: ProviderClient, token_budget: int) -> ModelBinding:
        if token_budget <= 0:
            raise ValueError(f"Token budget for {model!r} must be positive, got {token_budget}")
        binding = ModelBinding(model=model, client=client, token_budget=token_budget)
        self._bindings[model] = binding
        logger.info(f"Registered model {model} ({client.name}, budget {token_budget:,} tokens)")
        return binding

    def resolve(self, model: str) -> ModelBinding:
        binding = self._bindings.get(model)
        if binding is None:
            known = ", ".join(sorted(self._bindings)) or "none"
            raise InvalidModelError(f"Unknown model: {model!r}. Registered: {known}", model=model)
        return binding

    def models(self) -> list[str]:
        return sorted(self._bindings)


def create_provider(provider_name: str, api_key: str, *, timeout_seconds: float = 60.0) -> ProviderClient:
    """Factory: create a ProviderClient by name."""
    name = provider_name.strip().lower()
    if name == "anthropic":
        from chat_relay.providers.anthropic_provider import AnthropicProvider
        return AnthropicProvider(api_key, timeout_seconds=timeout_seconds)
    if name == "openai":
        from chat_relay.providers.openai_provider import OpenAIProvider
        return OpenAIProvider(api_key, timeout_seconds=timeout_seconds)
    raise ValueError(f"Unknown provider: {provider_name!r}. Supported: 'anthropic', 'openai'")
