from __future__ import annotations

import asyncio
from collections.abc import Callable
from datetime import datetime, timedelta

from loguru import logger

from chat_relay.models import utc_now
from chat_relay.store import SessionStore


class EvictionSweeper:
    """Periodically deletes sessions idle longer than ``idle_threshold``.

    Housekeeping only: a turn in flight while its session is evicted simply
    writes the session back when it completes.
    """

    def __init__(
        self,
        store: SessionStore,
        *,
        idle_threshold: timedelta = timedelta(minutes=60),
        interval_seconds: float = 30 * 60,
        clock: Callable[[], datetime] = utc_now,
    ):
        if interval_seconds <= 0:
            raise ValueError(f"Sweep interval must be positive, got {interval_seconds}")
        self._store = store
        self._idle_threshold = idle_threshold
        self._interval_seconds = interval_seconds
        self._clock = clock
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(self._run())
            logger.info(
                f"Session sweeper started (idle threshold {self._idle_threshold}, "
                f"every {self._interval_seconds:g}s)"
            )

    async def close(self) -> None:
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    async def sweep_once(self) -> list[str]:
        now = self._clock()
        evicted: list[str] = []
        for record in await self._store.list_all():
            if now - record.last_updated > self._idle_threshold:
                await self._store.delete(record.session_id)
                evicted.append(record.session_id)

        if evicted:
            logger.info(f"Evicted {len(evicted)} idle chat sessions")
        return evicted

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self._interval_seconds)
            try:
                await self.sweep_once()
            except Exception as ex:
                logger.error(f"Session sweep failed: {ex}")
