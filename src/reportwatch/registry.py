from __future__ import annotations

import logging
import sqlite3

from .app_logging import get_logger, log_with_fields
from .store import ActiveJobRepository


class ActiveJobRegistry:
    """Ordered, duplicate-free set of job ids currently being watched.

    Every mutation writes a full snapshot through the repository so tracking
    survives a restart. Saving is best effort: a failing save is logged and the
    in-memory state stays authoritative.
    """

    def __init__(self, repository: ActiveJobRepository, logger: logging.Logger | None = None) -> None:
        self.repository = repository
        self.logger = logger or get_logger()
        self._job_ids: list[str] = self._load()

    def _load(self) -> list[str]:
        try:
            job_ids = self.repository.load()
        except (sqlite3.Error, OSError, ValueError) as exc:
            log_with_fields(self.logger, logging.WARNING, "active_jobs_load_failed", error=str(exc))
            return []
        if job_ids:
            log_with_fields(self.logger, logging.INFO, "active_jobs_restored", job_ids=job_ids)
        return list(job_ids)

    def _persist(self) -> None:
        try:
            self.repository.save(list(self._job_ids))
        except (sqlite3.Error, OSError) as exc:
            log_with_fields(
                self.logger,
                logging.WARNING,
                "active_jobs_save_failed",
                error=str(exc),
                job_ids=list(self._job_ids),
            )

    def add(self, job_id: str) -> bool:
        if job_id in self._job_ids:
            return False
        self._job_ids.append(job_id)
        self._persist()
        log_with_fields(self.logger, logging.INFO, "job_registered", job_id=job_id)
        return True

    def remove(self, job_id: str) -> bool:
        if job_id not in self._job_ids:
            return False
        self._job_ids.remove(job_id)
        self._persist()
        log_with_fields(self.logger, logging.INFO, "job_evicted", job_id=job_id)
        return True

    def snapshot(self) -> list[str]:
        return list(self._job_ids)

    def __contains__(self, job_id: object) -> bool:
        return job_id in self._job_ids

    def __len__(self) -> int:
        return len(self._job_ids)
