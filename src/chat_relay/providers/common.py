from __future__ import annotations

from collections.abc import Sequence
from types import ModuleType

import httpx
from loguru import logger
from tenacity import retry_if_exception_type, stop_after_attempt, wait_exponential

from chat_relay.errors import (
    ChatRelayError,
    InvalidMessageError,
    InvalidModelError,
    ProviderUnavailableError,
    RateLimitedError,
)
from chat_relay.messages import ChatMessage, flatten_parts

_MAX_ATTEMPTS = 5
_PER_MESSAGE_OVERHEAD_TOKENS = 4


def _on_retry(retry_state):
    attempt = retry_state.attempt_number
    wait = retry_state.next_action.sleep if retry_state.next_action else 0
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    reason = type(exc).__name__ if exc else "Unknown"
    logger.warning(f"{reason}. Retrying in {wait:.0f}s (attempt {attempt}/{_MAX_ATTEMPTS})...")


def default_retry_kwargs(exception_types: tuple[type[Exception], ...]) -> dict:
    return {
        "retry": retry_if_exception_type(exception_types),
        "wait": wait_exponential(multiplier=2, min=2, max=60),
        "stop": stop_after_attempt(_MAX_ATTEMPTS),
        "before_sleep": _on_retry,
        "reraise": True,
    }


def http_timeout(timeout_seconds: float) -> httpx.Timeout:
    return httpx.Timeout(timeout_seconds, connect=min(10.0, timeout_seconds))


def estimate_tokens(messages: Sequence[ChatMessage]) -> int:
    """Rough count (~4 chars per token) for providers without a counting endpoint."""
    total = 0
    for msg in messages:
        total += len(flatten_parts(msg.parts)) // 4 + _PER_MESSAGE_OVERHEAD_TOKENS
    return total


_MODEL_NOT_FOUND_CODES = frozenset({"model_not_found", "not_found_error"})


def _error_codes(ex: Exception) -> set[str]:
    # Anthropic bodies nest {"error": {"type": ...}}; OpenAI passes the inner
    # error object with a "code" and also exposes it as ex.code.
    codes = {getattr(ex, "code", None)}
    body = getattr(ex, "body", None)
    if isinstance(body, dict):
        inner = body.get("error", body)
        if isinstance(inner, dict):
            codes.update((inner.get("code"), inner.get("type")))
    return {c for c in codes if isinstance(c, str)}


def classify_sdk_error(sdk: ModuleType, ex: Exception, *, provider: str, model: str) -> ChatRelayError:
    """Map an anthropic/openai SDK exception onto the relay's error taxonomy.

    Both SDKs expose the same exception class names, so the module is passed in.
    """
    context = {"provider": provider, "model": model}
    if isinstance(ex, sdk.RateLimitError):
        return RateLimitedError(f"{provider} rate limited the request: {ex}", **context)
    if isinstance(ex, sdk.APIConnectionError):
        return ProviderUnavailableError(f"{provider} is unreachable: {ex}", **context)
    if isinstance(ex, sdk.NotFoundError) or _error_codes(ex) & _MODEL_NOT_FOUND_CODES:
        return InvalidModelError(f"{provider} does not serve model {model!r}: {ex}", **context)
    if isinstance(ex, sdk.BadRequestError):
        return InvalidMessageError(f"{provider} rejected the request: {ex}", **context)
    if isinstance(ex, sdk.APIStatusError):
        return ProviderUnavailableError(
            f"{provider} returned HTTP {ex.status_code}: {ex}",
            status_code=ex.status_code,
            **context,
        )
    return ProviderUnavailableError(f"{provider} call failed: {ex}", **context)
