from __future__ import annotations

from collections.abc import Awaitable, Callable

NoArgHandler = Callable[[], Awaitable[None]]
ArgHandler = Callable[[str], Awaitable[None]]


class CommandRouter:
    """Dispatches ``/command [argument]`` lines; anything else is chat input."""

    def __init__(
        self,
        *,
        on_help: NoArgHandler,
        on_session: ArgHandler,
        on_sessions: NoArgHandler,
        on_delete: ArgHandler,
        on_model: ArgHandler,
        on_unknown: Callable[[str], None],
    ) -> None:
        self._without_argument: dict[str, NoArgHandler] = {
            "/help": on_help,
            "/sessions": on_sessions,
        }
        self._with_argument: dict[str, ArgHandler] = {
            "/session": on_session,
            "/delete": on_delete,
            "/model": on_model,
        }
        self._on_unknown = on_unknown

    async def try_handle(self, line: str) -> bool:
        line = line.strip()
        if not line.startswith("/"):
            return False

        name, _, argument = line.partition(" ")
        if name in self._without_argument:
            await self._without_argument[name]()
        elif name in self._with_argument:
            await self._with_argument[name](argument.strip())
        else:
            self._on_unknown(line)
        return True
