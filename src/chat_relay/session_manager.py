from __future__ import annotations

from collections.abc import Callable
from datetime import datetime

from loguru import logger

from chat_relay.errors import InvalidMessageError, ProviderUnavailableError
from chat_relay.messages import ChatMessage, Role, normalize
from chat_relay.models import (
    ChatOverrides,
    GeneratedResponse,
    GenerationParams,
    SessionRecord,
    SessionSummary,
    utc_now,
)
from chat_relay.provider import ProviderRegistry
from chat_relay.store import SessionStore
from chat_relay.trimming import Trimmer, trim_history


class SessionManager:
    def __init__(
        self,
        store: SessionStore,
        providers: ProviderRegistry,
        *,
        default_model: str,
        defaults: GenerationParams | None = None,
        trimmer: Trimmer = trim_history,
        serialize_sessions: bool = True,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._store = store
        self._providers = providers
        self._default_model = default_model
        self._defaults = defaults or GenerationParams()
        self._trimmer = trimmer
        self._serialize_sessions = serialize_sessions
        self._clock = clock

    async def continue_conversation(
        self,
        session_id: str,
        message: str | dict | ChatMessage,
        overrides: ChatOverrides | None = None,
    ) -> GeneratedResponse:
        """Run one turn: load, trim, generate, then persist user + model messages.

        Not idempotent. Nothing is persisted unless the provider call succeeds.
        """
        _check_session_id(session_id)
        user_message = normalize(message, role=Role.USER)
        if user_message.role is not Role.USER:
            # History must stay in user/model pairs.
            raise InvalidMessageError(
                f"New turns must have the user role, got {user_message.role.value!r}",
                session_id=session_id,
            )
        overrides = overrides or ChatOverrides()

        if not self._serialize_sessions:
            return await self._run_turn(session_id, user_message, overrides)
        async with self._store.session_lock(session_id):
            return await self._run_turn(session_id, user_message, overrides)

    async def delete_session(self, session_id: str) -> None:
        if self._serialize_sessions:
            async with self._store.session_lock(session_id):
                await self._store.delete(session_id)
        else:
            await self._store.delete(session_id)
        logger.bind(session_id=session_id).info("Session deleted")

    async def get_session(self, session_id: str) -> SessionRecord | None:
        return await self._store.get(session_id)

    async def list_sessions(self) -> list[SessionSummary]:
        records = await self._store.list_all()
        records.sort(key=lambda r: r.last_updated, reverse=True)
        return [
            SessionSummary(
                session_id=r.session_id,
                model_name=r.model_name,
                turn_count=r.turn_count,
                last_updated=r.last_updated,
            )
            for r in records
        ]

    async def _run_turn(
        self,
        session_id: str,
        user_message: ChatMessage,
        overrides: ChatOverrides,
    ) -> GeneratedResponse:
        log = logger.bind(session_id=session_id)
        record = await self._store.get(session_id)
        if record is None:
            record = SessionRecord.empty(session_id, self._clock())
            log.info("Starting new session")

        model = overrides.model or record.model_name or self._default_model
        binding = self._providers.resolve(model)
        params = overrides.apply(self._defaults)

        trimmed = await self._trimmer(
            record.history,
            user_message.stamped(self._clock()),
            binding.token_budget,
            binding.count_tokens,
        )
        for warning in trimmed.warnings:
            log.warning(f"History trim: {warning}")

        reply = await binding.client.send(model, trimmed.messages, params)

        try:
            model_message = normalize(reply.text, role=Role.MODEL)
        except InvalidMessageError as ex:
            raise ProviderUnavailableError(
                f"{binding.provider_name} returned an empty reply",
                provider=binding.provider_name,
                model=model,
            ) from ex

        now = self._clock()
        updated = record.with_history(
            (*trimmed.messages, model_message.stamped(now)),
            provider_name=binding.provider_name,
            model_name=model,
            now=now,
        )
        await self._store.put(session_id, updated)

        log.info(
            f"Turn complete: model={model}, history={len(updated.history)}, "
            f"dropped={trimmed.dropped}, finish_reason={reply.finish_reason}"
        )
        return GeneratedResponse(
            text=reply.text,
            token_count=reply.token_count,
            finish_reason=reply.finish_reason,
            model_name=model,
            warnings=tuple(str(w) for w in trimmed.warnings),
        )


def _check_session_id(session_id: str) -> None:
    if not isinstance(session_id, str) or not session_id.strip():
        raise InvalidMessageError("Session id must be a non-empty string")
