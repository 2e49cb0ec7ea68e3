from __future__ import annotations

import logging
from typing import Callable

from .app_logging import get_logger, log_with_fields
from .models import Notification

SUCCESS = "success"
ERROR = "error"

Subscriber = Callable[[Notification], None]


class NotificationDeduplicator:
    """Write-once set of job ids that already produced a terminal notification.

    Entries live for the whole session. A backend that reused a job id would
    therefore never get a second notification for it.
    """

    def __init__(self) -> None:
        self._notified: set[str] = set()

    def has_notified(self, job_id: str) -> bool:
        return job_id in self._notified

    def mark_notified(self, job_id: str) -> None:
        self._notified.add(job_id)

    def claim(self, job_id: str) -> bool:
        if job_id in self._notified:
            return False
        self._notified.add(job_id)
        return True

    def __len__(self) -> int:
        return len(self._notified)


class Notifier:
    """Fan-out of user-facing toasts to whatever surface is listening."""

    def __init__(self, logger: logging.Logger | None = None) -> None:
        self.logger = logger or get_logger()
        self._subscribers: list[Subscriber] = []

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def success(self, message: str, *, job_id: str | None = None) -> Notification:
        return self._emit(Notification(kind=SUCCESS, message=message, job_id=job_id))

    def error(self, message: str, *, job_id: str | None = None) -> Notification:
        return self._emit(Notification(kind=ERROR, message=message, job_id=job_id))

    def _emit(self, notification: Notification) -> Notification:
        log_with_fields(
            self.logger,
            logging.INFO if notification.kind == SUCCESS else logging.WARNING,
            "notification",
            kind=notification.kind,
            message=notification.message,
            job_id=notification.job_id,
        )
        for callback in list(self._subscribers):
            try:
                callback(notification)
            except Exception as exc:
                log_with_fields(
                    self.logger,
                    logging.ERROR,
                    "notification_subscriber_failed",
                    error=str(exc),
                    kind=notification.kind,
                )
        return notification
