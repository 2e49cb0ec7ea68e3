from __future__ import annotations

import logging
from pathlib import Path
from typing import Awaitable, Callable

from .app_logging import get_logger, log_with_fields
from .models import ReportJob
from .utils import file_extension, safe_filename_part, short_id

Fetcher = Callable[[str], Awaitable[bytes]]
Saver = Callable[[bytes, str], Path]


def build_download_filename(job: ReportJob) -> str:
    label = safe_filename_part(job.display_name)
    return f"{label}_{safe_filename_part(short_id(job.id))}.{file_extension(job.format)}"


class DirectorySaver:
    """Writes downloaded reports into a directory without clobbering files."""

    def __init__(self, directory: Path) -> None:
        self.directory = directory

    def __call__(self, content: bytes, filename: str) -> Path:
        self.directory.mkdir(parents=True, exist_ok=True)
        destination = self.directory / filename
        if destination.exists():
            stem = destination.stem
            suffix = destination.suffix
            index = 1
            while True:
                candidate = self.directory / f"{stem}.{index}{suffix}"
                if not candidate.exists():
                    destination = candidate
                    break
                index += 1
        destination.write_bytes(content)
        return destination


class DownloadGuard:
    """Allows at most one in-flight download per job id."""

    def __init__(self, fetch: Fetcher, save: Saver, logger: logging.Logger | None = None) -> None:
        self._fetch = fetch
        self._save = save
        self.logger = logger or get_logger()
        self.locks: dict[str, bool] = {}

    def is_downloading(self, job_id: str) -> bool:
        return self.locks.get(job_id, False)

    async def download(self, job: ReportJob) -> Path | None:
        """Download ``job`` and return the saved path.

        Returns None without touching the network when a download for the same
        job is already running. Errors from the fetch or the save propagate to
        the caller after the lock is released.
        """
        if self.locks.get(job.id):
            log_with_fields(self.logger, logging.DEBUG, "download_skipped_in_flight", job_id=job.id)
            return None
        self.locks[job.id] = True
        try:
            content = await self._fetch(job.id)
            path = self._save(content, build_download_filename(job))
            log_with_fields(
                self.logger,
                logging.INFO,
                "download_completed",
                job_id=job.id,
                path=str(path),
                size=len(content),
            )
            return path
        finally:
            self.locks[job.id] = False
