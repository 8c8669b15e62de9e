from __future__ import annotations

import json
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
from typing import Any, Union

from loguru import logger

from chat_relay.errors import InvalidMessageError

FLAT_TEXT_SEPARATOR = " "

PROVIDER_TAGS = ("gemini", "anthropic", "openai")


class Role(str, Enum):
    USER = "user"
    MODEL = "model"
    SYSTEM = "system"


class MessageKind(str, Enum):
    SIMPLE = "simple"
    RICH = "rich"


@dataclass(frozen=True)
class TextPart:
    text: str


@dataclass(frozen=True)
class DataPart:
    """Opaque provider payload, e.g. ``{"inline_data": {"mime_type": ..., "data": ...}}``."""

    data: dict[str, Any]


ContentPart = Union[TextPart, DataPart]


@dataclass(frozen=True)
class ChatMessage:
    role: Role
    parts: tuple[ContentPart, ...]
    kind: MessageKind = MessageKind.SIMPLE
    timestamp: datetime | None = None

    @property
    def text(self) -> str:
        return FLAT_TEXT_SEPARATOR.join(p.text for p in self.parts if isinstance(p, TextPart))

    def stamped(self, when: datetime) -> ChatMessage:
        return replace(self, timestamp=when)

    def to_dict(self) -> dict:
        return {
            "role": self.role.value,
            "kind": self.kind.value,
            "parts": [_part_to_dict(p) for p in self.parts],
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
        }

    @classmethod
    def from_dict(cls, data: dict) -> ChatMessage:
        parts: list[ContentPart] = []
        for item in data.get("parts", []):
            if "text" in item:
                parts.append(TextPart(str(item["text"])))
            else:
                parts.append(DataPart(dict(item.get("data", {}))))
        if not parts:
            raise InvalidMessageError("Stored message has no content parts")
        raw_ts = data.get("timestamp")
        return cls(
            role=Role(data["role"]),
            parts=tuple(parts),
            kind=MessageKind(data.get("kind", MessageKind.SIMPLE.value)),
            timestamp=datetime.fromisoformat(raw_ts) if raw_ts else None,
        )


def _part_to_dict(part: ContentPart) -> dict:
    if isinstance(part, TextPart):
        return {"text": part.text}
    return {"data": dict(part.data)}


_ROLE_ALIASES = {
    "user": Role.USER,
    "model": Role.MODEL,
    "assistant": Role.MODEL,
    "system": Role.SYSTEM,
}

_WIRE_ROLES = {
    "gemini": {Role.USER: "user", Role.MODEL: "model", Role.SYSTEM: "system"},
    "anthropic": {Role.USER: "user", Role.MODEL: "assistant", Role.SYSTEM: "system"},
    "openai": {Role.USER: "user", Role.MODEL: "assistant", Role.SYSTEM: "system"},
}


def coerce_role(value: object) -> Role:
    if isinstance(value, Role):
        return value
    role = _ROLE_ALIASES.get(str(value).strip().lower()) if isinstance(value, str) else None
    if role is None:
        logger.warning(f"Unrecognized role {value!r} coerced to system")
        return Role.SYSTEM
    return role


def _parse_part(item: object) -> ContentPart | None:
    """Returns None for parts that carry nothing usable (blank text, empty dict)."""
    if isinstance(item, TextPart):
        return item if item.text.strip() else None
    if isinstance(item, DataPart):
        return item if item.data else None
    if isinstance(item, str):
        return TextPart(item) if item.strip() else None
    if isinstance(item, dict):
        if not item:
            return None
        if "text" in item and set(item) <= {"text", "type"} and item.get("type", "text") == "text":
            text = item["text"]
            if not isinstance(text, str):
                raise InvalidMessageError(f"Text part must be a string, got {type(text).__name__}")
            return TextPart(text) if text.strip() else None
        return DataPart(dict(item))
    raise InvalidMessageError(f"Unsupported content part: {type(item).__name__}")


def _parse_parts(items: object) -> tuple[ContentPart, ...]:
    if not isinstance(items, (list, tuple)):
        raise InvalidMessageError(f"Message parts must be a list, got {type(items).__name__}")
    return tuple(p for p in (_parse_part(i) for i in items) if p is not None)


def normalize(raw: object, *, role: Role | str = Role.USER) -> ChatMessage:
    """Turn caller input into a ChatMessage, tagging its shape once.

    Accepts plain text, an existing ChatMessage, a simple dict
    (``role`` + ``content`` string) or a rich dict (``role`` + ``parts``).
    """
    if isinstance(raw, ChatMessage):
        if not raw.parts:
            raise InvalidMessageError("Message has no content parts")
        return raw

    if isinstance(raw, str):
        part = _parse_part(raw)
        if part is None:
            raise InvalidMessageError("Message text is empty")
        return ChatMessage(role=coerce_role(role), parts=(part,), kind=MessageKind.SIMPLE)

    if isinstance(raw, dict):
        msg_role = coerce_role(raw.get("role") or role)
        if "parts" in raw:
            parts = _parse_parts(raw["parts"])
            kind = MessageKind.RICH
        else:
            content = raw.get("content")
            if isinstance(content, str):
                part = _parse_part(content)
                parts = (part,) if part is not None else ()
                kind = MessageKind.SIMPLE
            elif isinstance(content, (list, tuple)):
                parts = _parse_parts(content)
                kind = MessageKind.RICH
            else:
                raise InvalidMessageError("Message has neither text content nor parts")
        if not parts:
            raise InvalidMessageError("Message has no usable text or structured parts")
        return ChatMessage(role=msg_role, parts=parts, kind=kind)

    raise InvalidMessageError(f"Unsupported message type: {type(raw).__name__}")


def flatten_parts(parts: Iterable[ContentPart]) -> str:
    texts: list[str] = []
    for part in parts:
        if isinstance(part, TextPart):
            texts.append(part.text)
        else:
            texts.append(json.dumps(part.data, ensure_ascii=False))
    return FLAT_TEXT_SEPARATOR.join(t for t in texts if t)


def _check_tag(provider_tag: str) -> str:
    tag = provider_tag.strip().lower()
    if tag not in PROVIDER_TAGS:
        raise ValueError(f"Unknown provider format: {provider_tag!r}. Supported: {', '.join(PROVIDER_TAGS)}")
    return tag


def to_provider_format(provider_tag: str, messages: Sequence[ChatMessage]) -> list[dict]:
    """Convert neutral messages to a provider's wire shape.

    Rich-capable providers get every part in order; flat-text providers get a
    single string per message with structured parts JSON-encoded.
    """
    tag = _check_tag(provider_tag)
    roles = _WIRE_ROLES[tag]

    if tag == "gemini":
        return [
            {
                "role": roles[m.role],
                "parts": [{"text": p.text} if isinstance(p, TextPart) else dict(p.data) for p in m.parts],
            }
            for m in messages
        ]

    if tag == "anthropic":
        return [
            {
                "role": roles[m.role],
                "content": [
                    {"type": "text", "text": p.text} if isinstance(p, TextPart) else dict(p.data)
                    for p in m.parts
                ],
            }
            for m in messages
        ]

    return [{"role": roles[m.role], "content": flatten_parts(m.parts)} for m in messages]


def _wire_parts(tag: str, msg: dict) -> tuple[ContentPart, ...]:
    if tag == "gemini":
        raw = msg.get("parts", [])
    else:
        raw = msg.get("content")
        if isinstance(raw, str):
            raw = [raw]
        elif raw is None:
            raw = []
    return _parse_parts(raw)


def from_provider_format(provider_tag: str, payload: Sequence[dict]) -> list[ChatMessage]:
    """Convert a provider's wire messages back into ChatMessages.

    The whole batch becomes simple-shaped when every part is bare text,
    otherwise every message keeps its parts as rich-shaped.
    """
    tag = _check_tag(provider_tag)
    if not isinstance(payload, (list, tuple)):
        raise InvalidMessageError(f"Provider payload must be a list, got {type(payload).__name__}")

    decoded: list[tuple[Role, tuple[ContentPart, ...]]] = []
    for msg in payload:
        if not isinstance(msg, dict):
            raise InvalidMessageError(f"Provider message must be a dict, got {type(msg).__name__}")
        parts = _wire_parts(tag, msg)
        if not parts:
            raise InvalidMessageError("Provider message has no usable content")
        decoded.append((coerce_role(msg.get("role")), parts))

    all_text = all(isinstance(p, TextPart) for _, parts in decoded for p in parts)
    if all_text:
        return [
            ChatMessage(
                role=role,
                parts=(TextPart(FLAT_TEXT_SEPARATOR.join(p.text for p in parts)),),
                kind=MessageKind.SIMPLE,
            )
            for role, parts in decoded
        ]
    return [ChatMessage(role=role, parts=parts, kind=MessageKind.RICH) for role, parts in decoded]
