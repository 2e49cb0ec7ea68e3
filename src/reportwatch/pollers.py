from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import Awaitable, Callable

from .api import ApiError
from .app_logging import get_logger, log_with_fields
from .models import ReportJob
from .registry import ActiveJobRegistry

StatusFetcher = Callable[[str], Awaitable[ReportJob]]
TerminalHandler = Callable[[str, ReportJob], None]

STATUS_FETCH_ERROR = "Failed to fetch report status"


class StatusMonitor:
    """High-frequency poller for the one job whose status surface is open.

    Closing the monitor stops the loop but leaves a request that is already
    on the wire alone; its response is dropped because the session it was
    issued for is no longer current.
    """

    def __init__(
        self,
        fetch_status: StatusFetcher,
        on_terminal: TerminalHandler,
        interval_seconds: float = 2.0,
        logger: logging.Logger | None = None,
    ) -> None:
        self._fetch_status = fetch_status
        self._on_terminal = on_terminal
        self.interval_seconds = interval_seconds
        self.logger = logger or get_logger()
        self.job_id: str | None = None
        self.status: ReportJob | None = None
        self.error: str | None = None
        self.loading = False
        self._completed = False
        self._stop: asyncio.Event | None = None
        self._tasks: set[asyncio.Task[None]] = set()

    @property
    def is_open(self) -> bool:
        return self.job_id is not None

    def is_watching(self, job_id: str) -> bool:
        return self.job_id is not None and self.job_id == job_id

    def open(self, job_id: str) -> None:
        self.close()
        self.job_id = job_id
        self.status = None
        self.error = None
        self.loading = True
        self._completed = False
        stop = asyncio.Event()
        self._stop = stop
        task = asyncio.get_running_loop().create_task(self._run(job_id, stop))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        log_with_fields(self.logger, logging.INFO, "status_monitor_opened", job_id=job_id)

    def close(self) -> None:
        if self._stop is None:
            return
        self._stop.set()
        self._stop = None
        log_with_fields(self.logger, logging.INFO, "status_monitor_closed", job_id=self.job_id)
        self.job_id = None
        self.loading = False

    def retry(self) -> None:
        if self.job_id is not None:
            self.open(self.job_id)

    async def shutdown(self) -> None:
        self.close()
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        for task in tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task

    def _is_current(self, job_id: str, stop: asyncio.Event) -> bool:
        return self._stop is stop and not stop.is_set() and self.job_id == job_id

    async def _run(self, job_id: str, stop: asyncio.Event) -> None:
        while not stop.is_set():
            if await self.poll_once(job_id, stop):
                return
            try:
                await asyncio.wait_for(stop.wait(), timeout=self.interval_seconds)
            except asyncio.TimeoutError:
                pass

    async def poll_once(self, job_id: str, stop: asyncio.Event) -> bool:
        """Fetch one status; returns True when this session should stop polling."""
        try:
            job = await self._fetch_status(job_id)
        except ApiError as exc:
            log_with_fields(
                self.logger,
                logging.WARNING,
                "status_poll_failed",
                observer="monitor",
                job_id=job_id,
                error=str(exc),
            )
            if self._is_current(job_id, stop):
                self.error = STATUS_FETCH_ERROR
                self.loading = False
                return False
            return True

        if not self._is_current(job_id, stop):
            log_with_fields(self.logger, logging.DEBUG, "status_response_discarded", job_id=job_id)
            return True

        self.status = job
        self.error = None
        self.loading = False
        if job.is_terminal and not self._completed:
            self._completed = True
            self._on_terminal(job_id, job)
            return True
        return False


class ActiveJobsPoller:
    """Low-frequency poller behind the always-visible active jobs badge."""

    def __init__(
        self,
        registry: ActiveJobRegistry,
        fetch_status: StatusFetcher,
        on_terminal: TerminalHandler,
        monitor: StatusMonitor | None = None,
        interval_seconds: float = 10.0,
        logger: logging.Logger | None = None,
    ) -> None:
        self.registry = registry
        self._fetch_status = fetch_status
        self._on_terminal = on_terminal
        self.monitor = monitor
        self.interval_seconds = interval_seconds
        self.logger = logger or get_logger()
        self.statuses: dict[str, ReportJob] = {}
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(self._run())

    async def stop(self) -> None:
        task = self._task
        self._task = None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    async def _run(self) -> None:
        while True:
            await self.poll_once()
            await asyncio.sleep(self.interval_seconds)

    async def poll_once(self) -> None:
        for job_id in self.registry.snapshot():
            if self.monitor is not None and self.monitor.is_watching(job_id):
                continue
            if job_id not in self.registry:
                continue
            try:
                job = await self._fetch_status(job_id)
            except ApiError as exc:
                log_with_fields(
                    self.logger,
                    logging.WARNING,
                    "status_poll_failed",
                    observer="badge",
                    job_id=job_id,
                    error=str(exc),
                )
                continue
            if job_id not in self.registry:
                continue
            self.statuses[job_id] = job
            if job.is_terminal:
                self._on_terminal(job_id, job)

        for stale in [job_id for job_id in self.statuses if job_id not in self.registry]:
            del self.statuses[stale]
