from __future__ import annotations

import inspect
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Protocol, Union

from loguru import logger

from chat_relay.messages import ChatMessage

TokenCounter = Callable[[Sequence[ChatMessage]], Union[int, Awaitable[int]]]


class TrimWarningCode(str, Enum):
    TRIM_BUDGET_EXCEEDED = "TRIM_BUDGET_EXCEEDED"
    TOKEN_COUNT_FAILED = "TOKEN_COUNT_FAILED"


@dataclass(frozen=True)
class TrimWarning:
    code: TrimWarningCode
    message: str
    error: Exception | None = None

    def __str__(self) -> str:
        return f"{self.code.value}: {self.message}"


@dataclass(frozen=True)
class TrimResult:
    messages: tuple[ChatMessage, ...]
    dropped: int
    token_count: int | None
    warnings: tuple[TrimWarning, ...] = ()


class Trimmer(Protocol):
    async def __call__(
        self,
        history: Sequence[ChatMessage],
        new_message: ChatMessage,
        token_budget: int,
        count_tokens: TokenCounter,
    ) -> TrimResult: ...


async def _count(count_tokens: TokenCounter, messages: Sequence[ChatMessage]) -> int:
    result = count_tokens(messages)
    if inspect.isawaitable(result):
        result = await result
    return int(result)


def _over_budget_warning(count: int, token_budget: int) -> TrimWarning:
    logger.warning(f"New message alone is ~{count:,} tokens, over the {token_budget:,} token budget")
    return TrimWarning(
        TrimWarningCode.TRIM_BUDGET_EXCEEDED,
        f"message uses {count} tokens, budget is {token_budget}",
    )


def _count_failed_warning(ex: Exception, kept: int) -> TrimWarning:
    logger.warning(f"Token counting failed: {ex}. Keeping {kept} messages untrimmed past this point")
    return TrimWarning(TrimWarningCode.TOKEN_COUNT_FAILED, str(ex) or type(ex).__name__, ex)


async def trim_history(
    history: Sequence[ChatMessage],
    new_message: ChatMessage,
    token_budget: int,
    count_tokens: TokenCounter,
) -> TrimResult:
    """Drop the oldest messages until history + new_message fits token_budget.

    The new message is never dropped. A counting failure does not raise: the
    most-trimmed candidate reached so far is returned with a warning.
    """
    candidate = [*history, new_message]
    dropped = 0
    try:
        count = await _count(count_tokens, candidate)
        while count > token_budget and len(candidate) > 1:
            candidate.pop(0)
            dropped += 1
            count = await _count(count_tokens, candidate)
    except Exception as ex:
        return TrimResult(tuple(candidate), dropped, None, (_count_failed_warning(ex, len(candidate)),))

    warnings: tuple[TrimWarning, ...] = ()
    if count > token_budget:
        warnings = (_over_budget_warning(count, token_budget),)
    if dropped:
        logger.debug(f"Trimmed {dropped} messages to fit {token_budget:,} tokens (now ~{count:,})")
    return TrimResult(tuple(candidate), dropped, count, warnings)


async def trim_history_bisect(
    history: Sequence[ChatMessage],
    new_message: ChatMessage,
    token_budget: int,
    count_tokens: TokenCounter,
) -> TrimResult:
    """Same result as trim_history for counters that never grow when messages
    are removed, using O(log n) counting calls instead of O(n).
    """
    history = list(history)

    def candidate(drop: int) -> list[ChatMessage]:
        return [*history[drop:], new_message]

    best: tuple[int, int] | None = None
    probe = 0
    try:
        count = await _count(count_tokens, candidate(0))
        if count <= token_budget:
            return TrimResult(tuple(candidate(0)), 0, count, ())
        if not history:
            return TrimResult((new_message,), 0, count, (_over_budget_warning(count, token_budget),))

        lo, hi = 1, len(history)
        while lo < hi:
            probe = (lo + hi) // 2
            count = await _count(count_tokens, candidate(probe))
            if count <= token_budget:
                best = (probe, count)
                hi = probe
            else:
                lo = probe + 1

        if best is not None and best[0] == lo:
            count = best[1]
        else:
            probe = lo
            count = await _count(count_tokens, candidate(lo))
    except Exception as ex:
        drop = best[0] if best is not None else probe
        kept = candidate(drop)
        return TrimResult(tuple(kept), drop, best[1] if best else None, (_count_failed_warning(ex, len(kept)),))

    warnings: tuple[TrimWarning, ...] = ()
    if count > token_budget:
        warnings = (_over_budget_warning(count, token_budget),)
    if lo:
        logger.debug(f"Trimmed {lo} messages to fit {token_budget:,} tokens (now ~{count:,})")
    return TrimResult(tuple(candidate(lo)), lo, count, warnings)


TRIMMERS: dict[str, Trimmer] = {
    "linear": trim_history,
    "bisect": trim_history_bisect,
}
