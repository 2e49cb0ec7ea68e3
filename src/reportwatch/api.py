from __future__ import annotations

import asyncio
import json
from typing import Any
from urllib.parse import quote

import aiohttp

from .config import ApiConfig
from .models import HistoryPage, ReportJob

API_PATH = "/shared/reports"


class ApiError(RuntimeError):
    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


def _decode_json(body: bytes) -> Any:
    if not body:
        return None
    try:
        return json.loads(body)
    except ValueError:
        return None


def _unwrap(payload: Any) -> Any:
    if isinstance(payload, dict) and "data" in payload:
        return payload["data"]
    return payload


def _require_ok(status: int, payload: Any, context: str) -> None:
    server_message = payload.get("message") if isinstance(payload, dict) else None
    if status >= 400:
        raise ApiError(str(server_message or f"{context} failed: HTTP {status}"), status)
    if isinstance(payload, dict) and payload.get("success") is False:
        raise ApiError(str(server_message or f"{context} failed"), status)


def _require_id(value: str, what: str = "Report ID") -> None:
    if not value:
        raise ApiError(f"{what} is required")


def _segment(report_id: str) -> str:
    return quote(report_id, safe="")


def _parse_job(payload: Any, context: str) -> ReportJob:
    try:
        return ReportJob.from_api(payload)
    except (ValueError, TypeError) as exc:
        raise ApiError(f"{context}: invalid response ({exc})") from exc


class ReportApiClient:
    """Async client for the report builder's REST endpoints.

    Every failure, whether an HTTP error, a ``success: false`` envelope, a
    connection problem or an unreadable payload, surfaces as ``ApiError``.
    """

    def __init__(self, api_config: ApiConfig, session: aiohttp.ClientSession | None = None) -> None:
        self.api_config = api_config
        self._session = session
        self._owns_session = session is None

    def _headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        token = self.api_config.resolve_token()
        if token:
            headers["Authorization"] = f"Bearer {token}"
        return headers

    def _url(self, suffix: str = "") -> str:
        return f"{self.api_config.base_url}{API_PATH}{suffix}"

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.api_config.timeout_seconds),
                headers=self._headers(),
            )
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()

    async def __aenter__(self) -> ReportApiClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    async def _request(
        self,
        method: str,
        suffix: str,
        context: str,
        *,
        json_body: Any = None,
        params: dict[str, str] | None = None,
        raw: bool = False,
    ) -> Any:
        session = await self._get_session()
        try:
            async with session.request(method, self._url(suffix), json=json_body, params=params) as response:
                body = await response.read()
                if raw and response.status < 400:
                    return body
                payload = _decode_json(body)
                _require_ok(response.status, payload, context)
                return _unwrap(payload)
        except aiohttp.ClientError as exc:
            raise ApiError(f"{context} failed: {exc}") from exc
        except asyncio.TimeoutError as exc:
            raise ApiError(f"{context} timed out") from exc

    async def get_catalog(self) -> dict[str, list[dict[str, Any]]]:
        data = await self._request("GET", "/catalog", "Load report catalog")
        return data if isinstance(data, dict) else {}

    async def generate_report(self, payload: dict[str, Any]) -> ReportJob:
        if not payload.get("type"):
            raise ApiError("Report type is required")
        if not payload.get("format"):
            raise ApiError("Export format is required")
        data = await self._request("POST", "/generate", "Generate report", json_body=payload)
        if isinstance(data, dict):
            data = {
                "reportType": payload.get("type"),
                "reportName": payload.get("name"),
                "format": payload.get("format"),
                **data,
            }
        return _parse_job(data, "Generate report")

    async def get_report_status(self, report_id: str) -> ReportJob:
        _require_id(report_id)
        data = await self._request("GET", f"/{_segment(report_id)}/status", "Fetch report status")
        return _parse_job(data, "Fetch report status")

    async def get_report(self, report_id: str) -> ReportJob:
        _require_id(report_id)
        data = await self._request("GET", f"/{_segment(report_id)}", "Load report details")
        return _parse_job(data, "Load report details")

    async def get_report_history(self, limit: int, offset: int) -> HistoryPage:
        page = offset // limit + 1 if limit > 0 else 1
        data = await self._request(
            "GET",
            "",
            "Load report history",
            params={"page": str(page), "limit": str(limit)},
        )
        if isinstance(data, list):
            rows, total = data, len(data)
        elif isinstance(data, dict):
            rows = data.get("data") or []
            total = data.get("total")
        else:
            rows, total = [], 0
        if not isinstance(rows, list):
            raise ApiError("Load report history: invalid response (`data` is not a list)")
        jobs = [_parse_job(row, "Load report history") for row in rows]
        if total is None:
            return HistoryPage(data=jobs, total=len(jobs))
        try:
            return HistoryPage(data=jobs, total=int(total))
        except (ValueError, TypeError) as exc:
            raise ApiError(f"Load report history: invalid response (bad `total`: {total!r})") from exc

    async def download_report(self, report_id: str) -> bytes:
        _require_id(report_id)
        return await self._request("GET", f"/{_segment(report_id)}/download", "Download report", raw=True)

    async def delete_report(self, report_id: str) -> None:
        _require_id(report_id)
        await self._request("DELETE", f"/report/{_segment(report_id)}", "Delete report")

    async def retry_report(self, report_id: str) -> dict[str, Any]:
        _require_id(report_id)
        data = await self._request("POST", f"/retry/{_segment(report_id)}", "Retry report")
        return data if isinstance(data, dict) else {}

    async def cancel_report(self, report_id: str) -> dict[str, Any]:
        _require_id(report_id)
        data = await self._request("POST", f"/cancel/{_segment(report_id)}", "Cancel report")
        return data if isinstance(data, dict) else {}
