from __future__ import annotations

import asyncio
import inspect
import logging
from pathlib import Path
from typing import Any, Awaitable, Callable

from .api import ApiError, ReportApiClient
from .app_logging import log_with_fields
from .config import AppConfig
from .download import DownloadGuard, Saver
from .models import PaginationState, ReportJob, ReportSelection, ReportStatus
from .notify import NotificationDeduplicator, Notifier
from .pollers import ActiveJobsPoller, StatusMonitor
from .refresh import DebouncedRefreshCoordinator
from .registry import ActiveJobRegistry
from .utils import page_to_offset

ConfirmCallback = Callable[[str], "bool | Awaitable[bool]"]


class JobTracker:
    """Session-scoped controller for asynchronous report generation.

    Owns the pieces that must outlive any single view: the active job
    registry, the notification dedup gate, the download locks, the history
    refresh debounce and both status observers. Create one per login session
    and call ``shutdown`` on logout.
    """

    def __init__(
        self,
        config: AppConfig,
        api: ReportApiClient,
        registry: ActiveJobRegistry,
        saver: Saver,
        logger: logging.Logger,
        *,
        notifier: Notifier | None = None,
        confirm: ConfirmCallback | None = None,
    ) -> None:
        self.config = config
        self.api = api
        self.registry = registry
        self.logger = logger
        self.notifier = notifier or Notifier(logger)
        self.confirm = confirm
        self.notified = NotificationDeduplicator()
        self.refresher = DebouncedRefreshCoordinator(
            self._reload_history,
            delay_seconds=config.timing.refresh_debounce_seconds,
            logger=logger,
        )
        self.downloads = DownloadGuard(api.download_report, saver, logger=logger)
        self.monitor = StatusMonitor(
            api.get_report_status,
            self.handle_terminal,
            interval_seconds=config.poll.monitor_interval_seconds,
            logger=logger,
        )
        self.badge = ActiveJobsPoller(
            registry,
            api.get_report_status,
            self.handle_terminal,
            monitor=self.monitor,
            interval_seconds=config.poll.badge_interval_seconds,
            logger=logger,
        )
        self.pagination = PaginationState(limit=config.history.page_size)
        self.reports: list[ReportJob] = []
        self._loading_fetches = 0
        self._evictions: dict[str, asyncio.TimerHandle] = {}

    async def __aenter__(self) -> JobTracker:
        await self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.shutdown()

    @property
    def loading_history(self) -> bool:
        return self._loading_fetches > 0

    @property
    def active_job_ids(self) -> list[str]:
        return self.registry.snapshot()

    async def start(self, *, load_history: bool = True) -> None:
        self.badge.start()
        log_with_fields(self.logger, logging.INFO, "tracker_started", active_jobs=self.registry.snapshot())
        if load_history:
            await self.refresh_now()

    async def shutdown(self) -> None:
        await self.badge.stop()
        await self.monitor.shutdown()
        self.refresher.close()
        for handle in self._evictions.values():
            handle.cancel()
        self._evictions.clear()
        await self.api.close()
        log_with_fields(self.logger, logging.INFO, "tracker_stopped", active_jobs=self.registry.snapshot())

    # -- generation ---------------------------------------------------------

    async def submit(self, selection: ReportSelection) -> ReportJob | None:
        if not selection.report_type:
            self.notifier.error("Report type is required")
            return None
        if not selection.format:
            self.notifier.error("Export format is required")
            return None
        try:
            job = await self.api.generate_report(selection.to_payload())
        except ApiError as exc:
            log_with_fields(
                self.logger,
                logging.ERROR,
                "report_submit_failed",
                report_type=selection.report_type,
                error=str(exc),
            )
            self.notifier.error(f"Failed to generate report: {exc}")
            return None

        self._track(job.id)
        self.monitor.open(job.id)
        self.notifier.success(f'Report "{job.display_name}" queued for generation', job_id=job.id)
        self.refresher.schedule_refresh()
        return job

    def open_status(self, job_id: str) -> None:
        self.monitor.open(job_id)

    def close_status(self) -> None:
        self.monitor.close()

    def handle_terminal(self, job_id: str, job: ReportJob) -> None:
        if job.status == ReportStatus.COMPLETED:
            self.handle_completed(job_id, job)
        elif job.status == ReportStatus.FAILED:
            self.handle_failed(job_id, job)

    def handle_completed(self, job_id: str, job: ReportJob) -> None:
        if self.notified.claim(job_id):
            self.notifier.success(f'Report "{job.display_name}" is ready!', job_id=job_id)
        self.refresher.schedule_refresh()
        self._schedule_eviction(job_id, self.config.timing.success_grace_seconds)

    def handle_failed(self, job_id: str, job: ReportJob) -> None:
        if self.notified.claim(job_id):
            reason = job.error_message or "Unknown error"
            self.notifier.error(f"Report generation failed: {reason}", job_id=job_id)
        self.refresher.schedule_refresh()
        self._schedule_eviction(job_id, self.config.timing.failure_grace_seconds)

    def _track(self, job_id: str) -> None:
        pending = self._evictions.pop(job_id, None)
        if pending is not None:
            pending.cancel()
        self.registry.add(job_id)

    def _schedule_eviction(self, job_id: str, delay_seconds: float) -> None:
        if job_id in self._evictions:
            return
        loop = asyncio.get_running_loop()
        self._evictions[job_id] = loop.call_later(delay_seconds, self._evict, job_id)

    def _evict(self, job_id: str) -> None:
        self._evictions.pop(job_id, None)
        self.registry.remove(job_id)

    def _untrack(self, job_id: str) -> None:
        pending = self._evictions.pop(job_id, None)
        if pending is not None:
            pending.cancel()
        self.registry.remove(job_id)
        if self.monitor.is_watching(job_id):
            self.monitor.close()

    # -- history ------------------------------------------------------------

    async def refresh_now(self) -> bool:
        return await self.refresher.refresh_now()

    async def _reload_history(self, background: bool) -> bool:
        return await self._fetch_history(
            self.pagination.limit,
            self.pagination.offset,
            show_loading=not background,
        )

    async def change_page(self, page: int, page_size: int) -> bool:
        offset = page_to_offset(page, page_size)
        self.pagination.offset = offset
        self.pagination.limit = page_size
        return await self._fetch_history(page_size, offset, show_loading=True)

    async def _fetch_history(self, limit: int, offset: int, *, show_loading: bool) -> bool:
        if show_loading:
            self._loading_fetches += 1
        try:
            page = await self.api.get_report_history(limit, offset)
        except ApiError as exc:
            log_with_fields(self.logger, logging.ERROR, "history_load_failed", error=str(exc))
            self.notifier.error(f"Failed to load report history: {exc}")
            return False
        finally:
            if show_loading:
                self._loading_fetches -= 1

        if (limit, offset) != (self.pagination.limit, self.pagination.offset):
            log_with_fields(
                self.logger,
                logging.DEBUG,
                "history_response_discarded",
                limit=limit,
                offset=offset,
            )
            return False
        self.reports = page.data
        self.pagination.total = page.total or len(page.data)
        log_with_fields(
            self.logger,
            logging.INFO,
            "history_loaded",
            count=len(page.data),
            total=self.pagination.total,
            offset=offset,
        )
        return True

    # -- report actions -----------------------------------------------------

    async def load_catalog(self) -> dict[str, list[dict[str, Any]]] | None:
        try:
            return await self.api.get_catalog()
        except ApiError as exc:
            log_with_fields(self.logger, logging.ERROR, "catalog_load_failed", error=str(exc))
            self.notifier.error(f"Failed to load report catalog: {exc}")
            return None

    async def view(self, job_id: str) -> ReportJob | None:
        try:
            return await self.api.get_report(job_id)
        except ApiError as exc:
            self.notifier.error(f"Failed to load report details: {exc}", job_id=job_id)
            return None

    async def download(self, job: ReportJob) -> Path | None:
        if self.downloads.is_downloading(job.id):
            return None
        try:
            path = await self.downloads.download(job)
        except (ApiError, OSError) as exc:
            log_with_fields(self.logger, logging.ERROR, "download_failed", job_id=job.id, error=str(exc))
            self.notifier.error(f"Failed to download report: {exc}", job_id=job.id)
            return None
        if path is not None:
            self.notifier.success(f"Report saved to {path}", job_id=job.id)
        return path

    async def _confirmed(self, message: str) -> bool:
        if self.confirm is None:
            return False
        answer = self.confirm(message)
        if inspect.isawaitable(answer):
            answer = await answer
        return bool(answer)

    async def delete(self, job: ReportJob) -> bool:
        if not await self._confirmed(f'Are you sure you want to delete "{job.display_name}"?'):
            log_with_fields(self.logger, logging.INFO, "delete_not_confirmed", job_id=job.id)
            return False
        try:
            await self.api.delete_report(job.id)
        except ApiError as exc:
            log_with_fields(self.logger, logging.ERROR, "delete_failed", job_id=job.id, error=str(exc))
            self.notifier.error(f"Failed to delete report: {exc}", job_id=job.id)
            return False
        self._untrack(job.id)
        self.notifier.success("Report deleted", job_id=job.id)
        await self.refresh_now()
        return True

    async def retry(self, job: ReportJob) -> bool:
        try:
            result = await self.api.retry_report(job.id)
        except ApiError as exc:
            self.notifier.error(f"Failed to retry report: {exc}", job_id=job.id)
            return False
        job_id = str(result.get("reportId") or job.id)
        self._track(job_id)
        self.notifier.success("Report queued for retry", job_id=job_id)
        self.refresher.schedule_refresh()
        return True

    async def cancel(self, job: ReportJob) -> bool:
        try:
            await self.api.cancel_report(job.id)
        except ApiError as exc:
            self.notifier.error(f"Failed to cancel report: {exc}", job_id=job.id)
            return False
        # cancelled jobs read as FAILED; suppress the failure toast for them
        self.notified.mark_notified(job.id)
        self._untrack(job.id)
        self.notifier.success("Report cancelled", job_id=job.id)
        self.refresher.schedule_refresh()
        return True
