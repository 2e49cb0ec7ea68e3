from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from .utils import format_label, offset_to_page


class ReportStatus(str, Enum):
    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @classmethod
    def _missing_(cls, value: object) -> ReportStatus | None:
        if isinstance(value, str):
            aliases = {"pending": cls.QUEUED, "cancelled": cls.FAILED}
            lowered = value.lower()
            if lowered in aliases:
                return aliases[lowered]
            for member in cls:
                if member.value == lowered:
                    return member
        return None

    @property
    def is_terminal(self) -> bool:
        return self in {ReportStatus.COMPLETED, ReportStatus.FAILED}


class ExportFormat(str, Enum):
    EXCEL = "excel"
    CSV = "csv"
    PDF = "pdf"
    JSON = "json"


@dataclass(slots=True)
class ReportJob:
    id: str
    status: ReportStatus
    report_type: str | None = None
    report_name: str | None = None
    format: str | None = None
    error_message: str | None = None
    total_records: int | None = None
    created_at: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @property
    def display_name(self) -> str:
        return self.report_name or format_label(self.report_type) or "Report"

    @classmethod
    def from_api(cls, payload: Any) -> ReportJob:
        if not isinstance(payload, dict):
            raise ValueError("report payload must be a mapping")
        # status and history rows use `type`/`name`, the detail view `reportType`/`reportName`
        job_id = payload.get("id") or payload.get("reportId")
        if not job_id:
            raise ValueError("report payload is missing `id`")
        raw_status = payload.get("status") or ReportStatus.QUEUED.value
        total = payload.get("totalRecords")
        return cls(
            id=str(job_id),
            status=ReportStatus(raw_status),
            report_type=payload.get("reportType") or payload.get("type"),
            report_name=payload.get("reportName") or payload.get("name"),
            format=payload.get("format"),
            error_message=payload.get("errorMessage"),
            total_records=int(total) if total is not None else None,
            created_at=payload.get("createdAt"),
        )


@dataclass(slots=True)
class ReportSelection:
    """What the user picked in the report drawer, ready to submit."""

    report_type: str
    format: str
    report_name: str | None = None
    columns: list[str] = field(default_factory=list)
    filters: dict[str, Any] = field(default_factory=dict)
    group_by: str | None = None
    sort_by: str | None = None
    sort_order: str | None = None

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"type": self.report_type, "format": self.format}
        if self.report_name:
            payload["name"] = self.report_name
        if self.columns:
            payload["columns"] = list(self.columns)
        if self.filters:
            payload["filters"] = dict(self.filters)
        if self.group_by:
            payload["groupBy"] = self.group_by
        if self.sort_by:
            payload["sortBy"] = self.sort_by
            payload["sortOrder"] = self.sort_order or "asc"
        return payload


@dataclass(slots=True)
class PaginationState:
    total: int = 0
    limit: int = 10
    offset: int = 0

    @property
    def page(self) -> int:
        return offset_to_page(self.offset, self.limit)


@dataclass(slots=True)
class HistoryPage:
    data: list[ReportJob]
    total: int


@dataclass(slots=True, frozen=True)
class Notification:
    kind: str
    message: str
    job_id: str | None = None
