from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import UTC, datetime

from chat_relay.messages import ChatMessage, Role


def utc_now() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True)
class SessionRecord:
    session_id: str
    provider_name: str | None
    model_name: str | None
    history: tuple[ChatMessage, ...]
    created_at: datetime
    last_updated: datetime

    @classmethod
    def empty(cls, session_id: str, now: datetime) -> SessionRecord:
        return cls(
            session_id=session_id,
            provider_name=None,
            model_name=None,
            history=(),
            created_at=now,
            last_updated=now,
        )

    @property
    def turn_count(self) -> int:
        return sum(1 for m in self.history if m.role is Role.MODEL)

    def with_history(
        self,
        history: tuple[ChatMessage, ...],
        *,
        provider_name: str,
        model_name: str,
        now: datetime,
    ) -> SessionRecord:
        return replace(
            self,
            history=history,
            provider_name=provider_name,
            model_name=model_name,
            last_updated=now,
        )

    def to_dict(self) -> dict:
        return {
            "session_id": self.session_id,
            "provider_name": self.provider_name,
            "model_name": self.model_name,
            "created_at": self.created_at.isoformat(),
            "last_updated": self.last_updated.isoformat(),
            "history": [m.to_dict() for m in self.history],
        }

    @classmethod
    def from_dict(cls, data: dict) -> SessionRecord:
        return cls(
            session_id=data["session_id"],
            provider_name=data.get("provider_name"),
            model_name=data.get("model_name"),
            history=tuple(ChatMessage.from_dict(m) for m in data.get("history", [])),
            created_at=datetime.fromisoformat(data["created_at"]),
            last_updated=datetime.fromisoformat(data["last_updated"]),
        )


@dataclass(frozen=True)
class GenerationParams:
    temperature: float = 0.7
    top_p: float = 0.95
    max_tokens: int = 800
    # Names of fields the caller set for this turn, as opposed to configured defaults.
    overridden: frozenset[str] = field(default=frozenset(), compare=False)


@dataclass(frozen=True)
class ChatOverrides:
    model: str | None = None
    temperature: float | None = None
    max_tokens: int | None = None
    top_p: float | None = None

    def apply(self, defaults: GenerationParams) -> GenerationParams:
        return GenerationParams(
            temperature=defaults.temperature if self.temperature is None else self.temperature,
            top_p=defaults.top_p if self.top_p is None else self.top_p,
            max_tokens=defaults.max_tokens if self.max_tokens is None else self.max_tokens,
            overridden=frozenset(
                name for name in ("temperature", "top_p", "max_tokens") if getattr(self, name) is not None
            ),
        )


@dataclass(frozen=True)
class ProviderReply:
    text: str
    token_count: int | None
    finish_reason: str


@dataclass(frozen=True)
class GeneratedResponse:
    text: str
    token_count: int | None
    finish_reason: str
    model_name: str
    warnings: tuple[str, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class SessionSummary:
    session_id: str
    model_name: str | None
    turn_count: int
    last_updated: datetime
