from __future__ import annotations

import asyncio
import dataclasses
import logging
from pathlib import Path
from typing import Any

from reportwatch.api import ApiError
from reportwatch.config import (
    ApiConfig,
    AppConfig,
    HistoryConfig,
    PathsConfig,
    PollConfig,
    TimingConfig,
)
from reportwatch.models import HistoryPage, ReportJob, ReportStatus


def quiet_logger(name: str = "test_reportwatch") -> logging.Logger:
    logger = logging.getLogger(name)
    logger.handlers.clear()
    logger.addHandler(logging.NullHandler())
    logger.propagate = False
    return logger


def make_config(
    root: Path,
    *,
    debounce_ms: int = 50,
    success_grace_ms: int = 200,
    failure_grace_ms: int = 150,
    badge_interval: float = 0.05,
    monitor_interval: float = 0.02,
    page_size: int = 10,
) -> AppConfig:
    return AppConfig(
        paths=PathsConfig(
            state_db=root / "reportwatch.db",
            log=root / "reportwatch.log",
            downloads=root / "downloads",
        ),
        api=ApiConfig(base_url="http://backend.test/api"),
        poll=PollConfig(badge_interval_seconds=badge_interval, monitor_interval_seconds=monitor_interval),
        timing=TimingConfig(
            refresh_debounce_ms=debounce_ms,
            success_grace_ms=success_grace_ms,
            failure_grace_ms=failure_grace_ms,
        ),
        history=HistoryConfig(page_size=page_size),
    )


class FakeApi:
    """In-memory stand-in for ReportApiClient."""

    def __init__(self) -> None:
        self.jobs: dict[str, ReportJob] = {}
        self.history: list[ReportJob] = []
        self.failures: dict[str, ApiError] = {}
        self.next_id = "r1"
        self.submitted: list[dict[str, Any]] = []
        self.status_calls: list[str] = []
        self.history_calls: list[tuple[int, int]] = []
        self.download_calls: list[str] = []
        self.deleted: list[str] = []
        self.retried: list[str] = []
        self.cancelled: list[str] = []
        self.download_gate: asyncio.Event | None = None
        self.history_gate: asyncio.Event | None = None
        self.history_gates: dict[tuple[int, int], asyncio.Event] = {}
        self.catalog: dict[str, list[dict[str, Any]]] = {}
        self.closed = False

    def _maybe_fail(self, name: str) -> None:
        error = self.failures.get(name)
        if error is not None:
            raise error

    def set_status(self, job_id: str, status: ReportStatus, error_message: str | None = None) -> None:
        self.jobs[job_id] = dataclasses.replace(self.jobs[job_id], status=status, error_message=error_message)

    async def generate_report(self, payload: dict[str, Any]) -> ReportJob:
        self.submitted.append(payload)
        self._maybe_fail("generate_report")
        job = ReportJob(
            id=self.next_id,
            status=ReportStatus.QUEUED,
            report_type=payload["type"],
            report_name=payload.get("name"),
            format=payload["format"],
        )
        self.jobs[job.id] = job
        return job

    async def get_catalog(self) -> dict[str, list[dict[str, Any]]]:
        self._maybe_fail("get_catalog")
        return self.catalog

    async def get_report_status(self, report_id: str) -> ReportJob:
        self.status_calls.append(report_id)
        await asyncio.sleep(0)
        self._maybe_fail("get_report_status")
        if report_id not in self.jobs:
            raise ApiError("Report not found", 404)
        return self.jobs[report_id]

    async def get_report(self, report_id: str) -> ReportJob:
        self._maybe_fail("get_report")
        if report_id not in self.jobs:
            raise ApiError("Report not found", 404)
        return self.jobs[report_id]

    async def get_report_history(self, limit: int, offset: int) -> HistoryPage:
        self.history_calls.append((limit, offset))
        if self.history_gate is not None:
            await self.history_gate.wait()
        if (limit, offset) in self.history_gates:
            await self.history_gates[(limit, offset)].wait()
        self._maybe_fail("get_report_history")
        return HistoryPage(data=self.history[offset : offset + limit], total=len(self.history))

    async def download_report(self, report_id: str) -> bytes:
        self.download_calls.append(report_id)
        if self.download_gate is not None:
            await self.download_gate.wait()
        self._maybe_fail("download_report")
        return b"report-bytes"

    async def delete_report(self, report_id: str) -> None:
        self._maybe_fail("delete_report")
        self.deleted.append(report_id)
        self.history = [job for job in self.history if job.id != report_id]

    async def retry_report(self, report_id: str) -> dict[str, Any]:
        self._maybe_fail("retry_report")
        self.retried.append(report_id)
        self.set_status(report_id, ReportStatus.QUEUED)
        return {"success": True, "jobId": "bull-7"}

    async def cancel_report(self, report_id: str) -> dict[str, Any]:
        self._maybe_fail("cancel_report")
        self.cancelled.append(report_id)
        self.set_status(report_id, ReportStatus.FAILED, "Cancelled by user")
        return {"success": True}

    async def close(self) -> None:
        self.closed = True
