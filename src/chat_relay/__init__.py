from chat_relay.errors import (
    BackendUnavailableError,
    ChatRelayError,
    InvalidMessageError,
    InvalidModelError,
    ProviderUnavailableError,
    RateLimitedError,
)
from chat_relay.messages import ChatMessage, MessageKind, Role, from_provider_format, normalize, to_provider_format
from chat_relay.models import ChatOverrides, GeneratedResponse, GenerationParams, SessionRecord, SessionSummary
from chat_relay.provider import ProviderClient, ProviderRegistry, create_provider
from chat_relay.session_manager import SessionManager
from chat_relay.store import InMemorySessionStore, SessionStore, SqliteSessionStore
from chat_relay.sweeper import EvictionSweeper
from chat_relay.trimming import TrimResult, trim_history, trim_history_bisect

__all__ = [
    "BackendUnavailableError",
    "ChatMessage",
    "ChatOverrides",
    "ChatRelayError",
    "EvictionSweeper",
    "GeneratedResponse",
    "GenerationParams",
    "InMemorySessionStore",
    "InvalidMessageError",
    "InvalidModelError",
    "MessageKind",
    "ProviderClient",
    "ProviderRegistry",
    "ProviderUnavailableError",
    "RateLimitedError",
    "Role",
    "SessionManager",
    "SessionRecord",
    "SessionStore",
    "SessionSummary",
    "SqliteSessionStore",
    "TrimResult",
    "create_provider",
    "from_provider_format",
    "normalize",
    "to_provider_format",
    "trim_history",
    "trim_history_bisect",
]
