from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable

from .app_logging import get_logger, log_with_fields

DEFAULT_DEBOUNCE_SECONDS = 0.5


class DebouncedRefreshCoordinator:
    """Coalesces "history may have changed" signals into one refetch.

    ``schedule_refresh`` restarts a timer on every call, so a burst of calls
    closer together than ``delay_seconds`` produces a single fetch.
    ``refresh_now`` fetches immediately and ignores calls made while a fetch
    is already running. A timer that fires during a fetch is re-armed, so the
    change that scheduled it is still picked up.
    """

    def __init__(
        self,
        fetch: Callable[[bool], Awaitable[object]],
        delay_seconds: float = DEFAULT_DEBOUNCE_SECONDS,
        logger: logging.Logger | None = None,
    ) -> None:
        self._fetch = fetch
        self.delay_seconds = delay_seconds
        self.logger = logger or get_logger()
        self._timer: asyncio.TimerHandle | None = None
        self._tasks: set[asyncio.Task[bool]] = set()
        self._in_flight = False
        self.refetch_count = 0

    @property
    def pending(self) -> bool:
        return self._timer is not None

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    def schedule_refresh(self) -> None:
        loop = asyncio.get_running_loop()
        self._cancel_timer()
        self._timer = loop.call_later(self.delay_seconds, self._on_timer)

    def _on_timer(self) -> None:
        self._timer = None
        loop = asyncio.get_running_loop()
        if self._in_flight:
            # re-armed rather than dropped while a fetch is running
            log_with_fields(self.logger, logging.DEBUG, "refresh_deferred_in_flight")
            self._timer = loop.call_later(self.delay_seconds, self._on_timer)
            return
        task = loop.create_task(self.refresh_now(background=True))
        self._tasks.add(task)
        task.add_done_callback(self._on_task_done)

    def _on_task_done(self, task: asyncio.Task[bool]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            log_with_fields(self.logger, logging.ERROR, "debounced_refresh_failed", error=repr(exc))

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    async def refresh_now(self, *, background: bool = False) -> bool:
        if self._in_flight:
            log_with_fields(self.logger, logging.DEBUG, "refresh_skipped_in_flight")
            return False
        self._cancel_timer()
        self._in_flight = True
        try:
            await self._fetch(background)
            self.refetch_count += 1
        finally:
            self._in_flight = False
        return True

    def close(self) -> None:
        self._cancel_timer()
        for task in list(self._tasks):
            task.cancel()
        self._tasks.clear()
