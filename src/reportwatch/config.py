from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from urllib.parse import urlparse

import yaml

DEFAULT_TOKEN_ENV = "REPORTWATCH_TOKEN"


@dataclass(slots=True)
class PathsConfig:
    state_db: Path
    log: Path
    downloads: Path


@dataclass(slots=True)
class ApiConfig:
    base_url: str
    token: str | None = None
    token_env: str = DEFAULT_TOKEN_ENV
    timeout_seconds: float = 30.0

    def resolve_token(self) -> str | None:
        if self.token:
            return self.token
        return os.environ.get(self.token_env) or None


@dataclass(slots=True)
class PollConfig:
    badge_interval_seconds: float = 10.0
    monitor_interval_seconds: float = 2.0


@dataclass(slots=True)
class TimingConfig:
    refresh_debounce_ms: int = 500
    success_grace_ms: int = 3000
    failure_grace_ms: int = 2000

    @property
    def refresh_debounce_seconds(self) -> float:
        return self.refresh_debounce_ms / 1000

    @property
    def success_grace_seconds(self) -> float:
        return self.success_grace_ms / 1000

    @property
    def failure_grace_seconds(self) -> float:
        return self.failure_grace_ms / 1000


@dataclass(slots=True)
class HistoryConfig:
    page_size: int = 10


@dataclass(slots=True)
class AppConfig:
    paths: PathsConfig
    api: ApiConfig
    poll: PollConfig = field(default_factory=PollConfig)
    timing: TimingConfig = field(default_factory=TimingConfig)
    history: HistoryConfig = field(default_factory=HistoryConfig)


def _require(mapping: dict, key: str, section: str) -> object:
    if key not in mapping:
        raise ValueError(f"Missing `{section}.{key}` in config")
    return mapping[key]


def _section(raw: dict, key: str, *, required: bool = False) -> dict:
    value = _require(raw, key, "root") if required else raw.get(key, {})
    if value is None:
        value = {}
    if not isinstance(value, dict):
        raise ValueError(f"`{key}` must be a mapping")
    return value


def load_config(path: str | Path) -> AppConfig:
    config_path = Path(path).expanduser().resolve()
    raw = yaml.safe_load(config_path.read_text(encoding="utf-8")) or {}
    if not isinstance(raw, dict):
        raise ValueError("Config root must be a mapping")

    paths_raw = _section(raw, "paths", required=True)
    api_raw = _section(raw, "api", required=True)
    poll_raw = _section(raw, "poll")
    timing_raw = _section(raw, "timing")
    history_raw = _section(raw, "history")

    def to_path(key: str) -> Path:
        value = _require(paths_raw, key, "paths")
        output = Path(str(value)).expanduser()
        if not output.is_absolute():
            output = config_path.parent / output
        return output

    paths = PathsConfig(
        state_db=to_path("state_db"),
        log=to_path("log"),
        downloads=to_path("downloads"),
    )

    token = api_raw.get("token")
    api = ApiConfig(
        base_url=str(_require(api_raw, "base_url", "api")).rstrip("/"),
        token=str(token) if token else None,
        token_env=str(api_raw.get("token_env", DEFAULT_TOKEN_ENV)),
        timeout_seconds=float(api_raw.get("timeout_seconds", 30)),
    )
    if urlparse(api.base_url).scheme not in {"http", "https"}:
        raise ValueError("`api.base_url` must be an http(s) URL")
    if api.timeout_seconds <= 0:
        raise ValueError("`api.timeout_seconds` must be > 0")

    poll = PollConfig(
        badge_interval_seconds=float(poll_raw.get("badge_interval_seconds", 10)),
        monitor_interval_seconds=float(poll_raw.get("monitor_interval_seconds", 2)),
    )
    if poll.badge_interval_seconds <= 0:
        raise ValueError("`poll.badge_interval_seconds` must be > 0")
    if poll.monitor_interval_seconds <= 0:
        raise ValueError("`poll.monitor_interval_seconds` must be > 0")

    timing = TimingConfig(
        refresh_debounce_ms=int(timing_raw.get("refresh_debounce_ms", 500)),
        success_grace_ms=int(timing_raw.get("success_grace_ms", 3000)),
        failure_grace_ms=int(timing_raw.get("failure_grace_ms", 2000)),
    )
    for name in ("refresh_debounce_ms", "success_grace_ms", "failure_grace_ms"):
        if getattr(timing, name) < 0:
            raise ValueError(f"`timing.{name}` must be >= 0")

    history = HistoryConfig(page_size=int(history_raw.get("page_size", 10)))
    if history.page_size < 1:
        raise ValueError("`history.page_size` must be >= 1")

    return AppConfig(paths=paths, api=api, poll=poll, timing=timing, history=history)


def ensure_local_paths(config: AppConfig) -> None:
    config.paths.state_db.parent.mkdir(parents=True, exist_ok=True)
    config.paths.log.parent.mkdir(parents=True, exist_ok=True)
    config.paths.downloads.mkdir(parents=True, exist_ok=True)
