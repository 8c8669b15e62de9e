from __future__ import annotations

from uuid import uuid4

from loguru import logger

from chat_relay.commands import CommandRouter
from chat_relay.errors import ChatRelayError
from chat_relay.models import ChatOverrides, SessionSummary
from chat_relay.session_manager import SessionManager

LINE_PREFIX = "assistant> "


def format_session_entry(summary: SessionSummary, *, active_session_id: str | None) -> str:
    marker = "*" if summary.session_id == active_session_id else " "
    model = summary.model_name or "-"
    updated = summary.last_updated.isoformat(timespec="seconds")
    return f"{LINE_PREFIX}{marker} {summary.session_id} (model={model}, turns={summary.turn_count}, updated={updated})"


class ChatRepl:
    """Line-oriented front end over a SessionManager."""

    def __init__(self, session_manager: SessionManager, *, session_id: str | None = None):
        self._sessions = session_manager
        self._session_id = session_id or str(uuid4())
        self._model_override: str | None = None
        self._router = CommandRouter(
            on_help=self._on_help,
            on_session=self._on_session,
            on_sessions=self._on_sessions,
            on_delete=self._on_delete,
            on_model=self._on_model,
            on_unknown=self._on_unknown,
        )

    @property
    def session_id(self) -> str:
        return self._session_id

    async def handle(self, line: str) -> None:
        if await self._router.try_handle(line):
            return
        try:
            response = await self._sessions.continue_conversation(
                self._session_id,
                line,
                ChatOverrides(model=self._model_override),
            )
        except ChatRelayError as ex:
            logger.error(f"{ex.code.value}: {ex.message}")
            print(f"{LINE_PREFIX}[error] {ex.message}")
            return
        print(f"{LINE_PREFIX}{response.text}")
        for warning in response.warnings:
            print(f"{LINE_PREFIX}[warning] {warning}")

    async def _on_help(self) -> None:
        print(f"{LINE_PREFIX}Commands:")
        print(f"{LINE_PREFIX}  /session [id]   show or switch the active session")
        print(f"{LINE_PREFIX}  /sessions       list sessions")
        print(f"{LINE_PREFIX}  /delete [id]    delete a session (default: active)")
        print(f"{LINE_PREFIX}  /model [name]   override the model for following turns")

    async def _on_session(self, argument: str) -> None:
        if argument:
            self._session_id = argument
            self._model_override = None
        print(f"{LINE_PREFIX}Session: {self._session_id}")

    async def _on_sessions(self) -> None:
        summaries = await self._sessions.list_sessions()
        if not summaries:
            print(f"{LINE_PREFIX}No sessions.")
            return
        for summary in summaries:
            print(format_session_entry(summary, active_session_id=self._session_id))

    async def _on_delete(self, argument: str) -> None:
        target = argument or self._session_id
        await self._sessions.delete_session(target)
        print(f"{LINE_PREFIX}Deleted session {target}")

    async def _on_model(self, argument: str) -> None:
        self._model_override = argument or None
        print(f"{LINE_PREFIX}Model override: {self._model_override or 'none'}")

    def _on_unknown(self, command: str) -> None:
        print(f"{LINE_PREFIX}Unknown command: {command}. Type /help for commands.")
