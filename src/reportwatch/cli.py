from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from typing import Any, Awaitable, Callable

from .api import ReportApiClient
from .app_logging import get_logger, log_with_fields, setup_logger
from .config import AppConfig, ensure_local_paths, load_config
from .download import DirectorySaver
from .models import ExportFormat, Notification, ReportSelection
from .notify import ERROR
from .registry import ActiveJobRegistry
from .store import SqliteActiveJobRepository, StateStore
from .tracker import ConfirmCallback, JobTracker
from .utils import format_label

IDLE_CHECK_SECONDS = 0.2


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="reportwatch", description="Track asynchronous report generation jobs")
    parser.add_argument("--config", required=True, help="Path to reportwatch YAML config")
    parser.add_argument("--verbose", action="store_true", help="Echo debug logging to the console")
    subparsers = parser.add_subparsers(dest="command", required=True)

    submit = subparsers.add_parser("submit", help="Submit a report and wait for it to finish")
    submit.add_argument("--type", required=True, dest="report_type", help="Report type, e.g. student-progress")
    submit.add_argument(
        "--format",
        required=True,
        dest="export_format",
        choices=[item.value for item in ExportFormat],
        help="Export format",
    )
    submit.add_argument("--name", help="Display name for the generated report")
    submit.add_argument(
        "--filter",
        action="append",
        default=[],
        metavar="KEY=VALUE",
        help="Report filter, repeatable",
    )
    submit.add_argument("--no-wait", action="store_true", help="Return right after the job is queued")

    subparsers.add_parser("watch", help="Resume tracking of persisted active jobs until none remain")
    subparsers.add_parser("catalog", help="List the report types the backend offers")

    history = subparsers.add_parser("history", help="Show one page of report history")
    history.add_argument("--page", type=int, default=1, help="1-based page number")
    history.add_argument("--page-size", type=int, default=None, help="Rows per page")

    for name, help_text in [
        ("download", "Download a generated report"),
        ("retry", "Retry a failed report"),
        ("cancel", "Cancel a queued or running report"),
    ]:
        command = subparsers.add_parser(name, help=help_text)
        command.add_argument("--job-id", required=True, help="Report id")

    delete = subparsers.add_parser("delete", help="Delete a generated report")
    delete.add_argument("--job-id", required=True, help="Report id")
    delete.add_argument("--yes", action="store_true", help="Skip the confirmation prompt")

    subparsers.add_parser("status", help="Show persisted active jobs")
    return parser


def parse_filters(items: list[str]) -> dict[str, str]:
    filters: dict[str, str] = {}
    for item in items:
        key, sep, value = item.partition("=")
        if not sep or not key.strip():
            raise ValueError(f"filter must look like KEY=VALUE, got: {item}")
        filters[key.strip()] = value.strip()
    return filters


def format_catalog(catalog: dict[str, list[dict[str, Any]]]) -> str:
    if not catalog:
        return "(no report types)"
    lines: list[str] = []
    for category, entries in catalog.items():
        lines.append(f"{format_label(category)}:")
        for entry in entries if isinstance(entries, list) else []:
            if not isinstance(entry, dict):
                continue
            report_type = str(entry.get("type") or entry.get("id") or "?")
            lines.append(f"  {report_type:24} {entry.get('name') or format_label(report_type)}")
    return "\n".join(lines)


class ConsoleNotifications:
    def __init__(self) -> None:
        self.errors = 0

    def __call__(self, notification: Notification) -> None:
        stream = sys.stderr if notification.kind == ERROR else sys.stdout
        if notification.kind == ERROR:
            self.errors += 1
        print(f"[{notification.kind}] {notification.message}", file=stream)


async def _prompt_confirm(message: str) -> bool:
    answer = await asyncio.to_thread(input, f"{message} [y/N] ")
    return answer.strip().lower() in {"y", "yes"}


def _open_runtime(
    config: AppConfig,
    *,
    verbose: bool = False,
    confirm: ConfirmCallback | None = None,
) -> tuple[StateStore, JobTracker, ConsoleNotifications]:
    ensure_local_paths(config)
    logger = setup_logger(config.paths.log, verbose=verbose)
    store = StateStore(config.paths.state_db)
    store.init_schema()
    registry = ActiveJobRegistry(SqliteActiveJobRepository(store), logger)
    tracker = JobTracker(
        config,
        ReportApiClient(config.api),
        registry,
        DirectorySaver(config.paths.downloads),
        logger,
        confirm=confirm,
    )
    console = ConsoleNotifications()
    tracker.notifier.subscribe(console)
    return store, tracker, console


async def _wait_until_idle(tracker: JobTracker) -> None:
    while tracker.active_job_ids:
        await asyncio.sleep(IDLE_CHECK_SECONDS)


def _run_session(
    config: AppConfig,
    action: Callable[[JobTracker], Awaitable[bool]],
    *,
    verbose: bool = False,
    confirm: ConfirmCallback | None = None,
    start_polling: bool = False,
) -> int:
    store, tracker, console = _open_runtime(config, verbose=verbose, confirm=confirm)

    async def session() -> bool:
        try:
            if start_polling:
                await tracker.start(load_history=False)
            return await action(tracker)
        finally:
            await tracker.shutdown()

    try:
        ok = asyncio.run(session())
    except KeyboardInterrupt:
        log_with_fields(get_logger(), logging.INFO, "shutdown", reason="keyboard_interrupt")
        return 0
    finally:
        store.close()
    return 0 if ok and console.errors == 0 else 1


def cmd_submit(config: AppConfig, args: argparse.Namespace, filters: dict[str, str]) -> int:
    selection = ReportSelection(
        report_type=args.report_type,
        format=args.export_format,
        report_name=args.name,
        filters=filters,
    )

    async def action(tracker: JobTracker) -> bool:
        job = await tracker.submit(selection)
        if job is None:
            return False
        print(f"submitted {job.id}")
        if not args.no_wait:
            await _wait_until_idle(tracker)
        return True

    return _run_session(config, action, verbose=args.verbose, start_polling=True)


def cmd_watch(config: AppConfig, args: argparse.Namespace) -> int:
    async def action(tracker: JobTracker) -> bool:
        if not tracker.active_job_ids:
            print("no active jobs")
            return True
        print(f"watching {len(tracker.active_job_ids)} job(s)")
        await _wait_until_idle(tracker)
        return True

    return _run_session(config, action, verbose=args.verbose, start_polling=True)


def cmd_catalog(config: AppConfig, args: argparse.Namespace) -> int:
    async def action(tracker: JobTracker) -> bool:
        catalog = await tracker.load_catalog()
        if catalog is None:
            return False
        print(format_catalog(catalog))
        return True

    return _run_session(config, action, verbose=args.verbose)


def cmd_history(config: AppConfig, args: argparse.Namespace) -> int:
    page_size = args.page_size or config.history.page_size

    async def action(tracker: JobTracker) -> bool:
        if not await tracker.change_page(args.page, page_size):
            return False
        pagination = tracker.pagination
        print(f"Page {pagination.page} ({len(tracker.reports)} of {pagination.total}):")
        if not tracker.reports:
            print("  (no reports)")
        for job in tracker.reports:
            print(f"  {job.id}  {job.status.value:10} {job.format or '-':6} {job.display_name}")
        return True

    return _run_session(config, action, verbose=args.verbose)


def cmd_download(config: AppConfig, args: argparse.Namespace) -> int:
    async def action(tracker: JobTracker) -> bool:
        job = await tracker.view(args.job_id)
        if job is None:
            return False
        return await tracker.download(job) is not None

    return _run_session(config, action, verbose=args.verbose)


def cmd_delete(config: AppConfig, args: argparse.Namespace) -> int:
    async def action(tracker: JobTracker) -> bool:
        job = await tracker.view(args.job_id)
        if job is None:
            return False
        return await tracker.delete(job)

    confirm: ConfirmCallback = (lambda _message: True) if args.yes else _prompt_confirm
    return _run_session(config, action, verbose=args.verbose, confirm=confirm)


def cmd_retry(config: AppConfig, args: argparse.Namespace) -> int:
    async def action(tracker: JobTracker) -> bool:
        job = await tracker.view(args.job_id)
        if job is None:
            return False
        return await tracker.retry(job)

    return _run_session(config, action, verbose=args.verbose)


def cmd_cancel(config: AppConfig, args: argparse.Namespace) -> int:
    async def action(tracker: JobTracker) -> bool:
        job = await tracker.view(args.job_id)
        if job is None:
            return False
        return await tracker.cancel(job)

    return _run_session(config, action, verbose=args.verbose)


def cmd_status(config: AppConfig) -> int:
    ensure_local_paths(config)
    store = StateStore(config.paths.state_db)
    try:
        store.init_schema()
        job_ids = SqliteActiveJobRepository(store).load()
        print("Active jobs:")
        if not job_ids:
            print("  (no active jobs)")
        for job_id in job_ids:
            print(f"  {job_id}")
        return 0
    finally:
        store.close()


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    config = load_config(args.config)

    if args.command == "submit":
        try:
            filters = parse_filters(args.filter)
        except ValueError as exc:
            parser.error(str(exc))
        return cmd_submit(config, args, filters)
    if args.command == "watch":
        return cmd_watch(config, args)
    if args.command == "catalog":
        return cmd_catalog(config, args)
    if args.command == "history":
        if args.page < 1 or (args.page_size is not None and args.page_size < 1):
            parser.error("--page and --page-size must be >= 1")
        return cmd_history(config, args)
    if args.command == "download":
        return cmd_download(config, args)
    if args.command == "delete":
        return cmd_delete(config, args)
    if args.command == "retry":
        return cmd_retry(config, args)
    if args.command == "cancel":
        return cmd_cancel(config, args)
    if args.command == "status":
        return cmd_status(config)
    parser.error(f"Unknown command: {args.command}")
    return 2


if __name__ == "__main__":
    raise SystemExit(main())
