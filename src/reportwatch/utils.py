from __future__ import annotations

import re
from datetime import UTC, datetime

FILE_EXTENSIONS = {
    "excel": "xlsx",
    "csv": "csv",
    "pdf": "pdf",
    "json": "json",
}
DEFAULT_EXTENSION = "xlsx"
SHORT_ID_LENGTH = 8

_LABEL_SPLIT = re.compile(r"[-_\s]+")
_UNSAFE_FILENAME_CHARS = re.compile(r"[\\/\x00]")


def utc_now_iso() -> str:
    return datetime.now(UTC).isoformat()


def format_label(value: str | None) -> str:
    """Turn an identifier such as ``student-progress`` into ``Student Progress``."""
    if not value:
        return ""
    words = [word for word in _LABEL_SPLIT.split(value) if word]
    return " ".join(word[:1].upper() + word[1:] for word in words)


def file_extension(format_name: str | None) -> str:
    if not format_name:
        return DEFAULT_EXTENSION
    return FILE_EXTENSIONS.get(format_name.lower(), DEFAULT_EXTENSION)


def short_id(job_id: str) -> str:
    return job_id[:SHORT_ID_LENGTH]


def safe_filename_part(value: str) -> str:
    return _UNSAFE_FILENAME_CHARS.sub("_", value).strip() or "report"


def page_to_offset(page: int, page_size: int) -> int:
    if page < 1:
        raise ValueError("page must be >= 1")
    if page_size < 1:
        raise ValueError("page_size must be >= 1")
    return (page - 1) * page_size


def offset_to_page(offset: int, limit: int) -> int:
    return offset // limit + 1 if limit > 0 else 1
