"""Command-line interface for Mail Archive Sync.

This module provides the main entry point for the CLI application.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from datetime import date
from pathlib import Path

import structlog

from mail_archive_sync import __version__
from mail_archive_sync.config import get_settings
from mail_archive_sync.models import CacheEntry, LogEntry, LogLevel, OperationResult
from mail_archive_sync.service import SyncService

logger = structlog.get_logger()

_LEVEL_MARKERS = {
    LogLevel.INFO: " ",
    LogLevel.SUCCESS: "+",
    LogLevel.WARNING: "!",
    LogLevel.ERROR: "x",
}


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="mail-sync", description="Mail Archive Sync")
    subparsers = parser.add_subparsers(dest="command", required=True)

    # Auth commands
    auth_parser = subparsers.add_parser("auth", help="Manage the Gmail session")
    auth_sub = auth_parser.add_subparsers(dest="auth_command", required=True)
    auth_sub.add_parser("login", help="Sign in to Gmail and store a short-lived session")
    auth_sub.add_parser("status", help="Show the stored session, if still valid")
    auth_sub.add_parser("logout", help="Forget the stored session and cached results")

    # Partition store commands
    subparsers.add_parser("scan", help="Summarize the monthly partitions on disk")

    read_parser = subparsers.add_parser("read", help="Show one month partition")
    read_parser.add_argument("month", help="Month key, YYYY-MM")

    subparsers.add_parser("migrate", help="Regroup legacy range exports into month partitions")

    ignore_parser = subparsers.add_parser("ignore", help="Mark a message as ignored and drop its full data")
    ignore_parser.add_argument("message_id", help="Message ID")
    ignore_parser.add_argument("--month", help="Month key, YYYY-MM (default: search all months)")

    unignore_parser = subparsers.add_parser("unignore", help="Clear a message's ignored flag")
    unignore_parser.add_argument("message_id", help="Message ID")
    unignore_parser.add_argument("--month", help="Month key, YYYY-MM (default: search all months)")

    # Full data commands
    full_parser = subparsers.add_parser("full", help="Full message documents under full/YYYY/MM/DD")
    full_sub = full_parser.add_subparsers(dest="full_command", required=True)
    for name, help_text in (("show", "Print a stored full message"), ("delete", "Delete a stored full message")):
        sub = full_sub.add_parser(name, help=help_text)
        sub.add_argument("message_id", help="Message ID")
        sub.add_argument("day", type=date.fromisoformat, help="UTC day of the message, YYYY-MM-DD")

    subparsers.add_parser("stats", help="Show disk usage of the partition directory")

    cleanup_parser = subparsers.add_parser("cleanup", help="Delete full data no stored message refers to")
    cleanup_parser.add_argument("--dry-run", action="store_true", help="Only list the files")

    # Fetch commands
    subparsers.add_parser("fetch", help="Smart Fetch: sync mail newer than the latest stored email")

    export_parser = subparsers.add_parser("export", help="Export a date range week by week")
    export_parser.add_argument("start", type=date.fromisoformat, help="First day, YYYY-MM-DD")
    export_parser.add_argument("end", type=date.fromisoformat, help="Last day, YYYY-MM-DD")
    export_parser.add_argument(
        "--output",
        type=Path,
        default=Path("."),
        help="Output file or directory (default: current directory)",
    )

    recent_parser = subparsers.add_parser("recent", help="List recent mail (cached for a while)")
    recent_parser.add_argument("--limit", type=int, default=50, help="Max messages")

    # Cache commands
    cache_parser = subparsers.add_parser("cache", help="Inspect the local result cache")
    cache_sub = cache_parser.add_subparsers(dest="cache_command", required=True)
    cache_sub.add_parser("info", help="Show cache age and local storage usage")
    cache_sub.add_parser("clear", help="Delete the cached result set")

    return parser


def _print_log(entry: LogEntry) -> None:
    print(f"[{entry.timestamp.strftime('%H:%M:%S')}] {_LEVEL_MARKERS[entry.level]} {entry.message}")


def _finish(result: OperationResult) -> int:
    if not result.success:
        print(f"Error: {result.error}", file=sys.stderr)
        return 1
    return 0


async def _cmd_auth_login(service: SyncService) -> int:
    result = await service.login()
    for entry in result.logs:
        _print_log(entry)
    return _finish(result)


def _cmd_auth_status(service: SyncService) -> int:
    result = service.auth_status()
    if result.data is None:
        print("Not signed in (or the session has expired).")
        return 1
    session = result.data
    print(f"Signed in as {session.profile.email}")
    print(f"Session expires at {session.expires_at.isoformat()}")
    return 0


def _cmd_auth_logout(service: SyncService) -> int:
    service.logout()
    print("Signed out.")
    return 0


async def _cmd_scan(service: SyncService) -> int:
    result = await service.scan()
    if not result.success:
        return _finish(result)

    scan = result.data
    print(f"Partitions: {scan.partition_count}")
    if scan.keys:
        print(f"Months: {scan.keys[0]} -> {scan.keys[-1]}")
    latest = scan.most_recent_item_timestamp
    print(f"Latest email: {latest.isoformat() if latest else '(none)'}")
    if scan.needs_migration:
        print(f"Legacy files needing migration: {len(scan.legacy_keys)}")
        for key in scan.legacy_keys:
            print(f"- {key}")
    return 0


async def _cmd_read(service: SyncService, month: str) -> int:
    result = await service.read(month)
    if not result.success:
        return _finish(result)
    if result.data is None:
        print(f"No partition for {month}")
        return 0

    partition = result.data
    print(f"{month}: {partition.total_emails} emails (last updated {partition.last_updated or 'never'})")
    for item in partition.emails:
        flag = "IGNORED" if item.ignored else ""
        sender = item.sender or item.header("From") or "(unknown sender)"
        subject = item.subject or item.header("Subject") or ""
        print(f"{item.date or '(no date)'}\t{sender}\t{subject}\t{flag}".rstrip())
    return 0


async def _cmd_migrate(service: SyncService) -> int:
    return _finish(await service.migrate(listener=_print_log))


async def _cmd_fetch(service: SyncService) -> int:
    result = await service.smart_fetch(listener=_print_log)
    return _finish(result)


async def _cmd_export(service: SyncService, args: argparse.Namespace) -> int:
    result = await service.export_range(args.start, args.end, output=args.output, listener=_print_log)
    return _finish(result)


async def _cmd_recent(service: SyncService, limit: int) -> int:
    result = await service.recent(limit=limit)
    if not result.success:
        return _finish(result)

    items = result.data.emails if isinstance(result.data, CacheEntry) else result.data
    for item in items:
        headers = {h.name.lower(): h.value for h in item.headers}
        print(f"{headers.get('date', '(no date)')}\t{headers.get('from', '(unknown sender)')}\t{headers.get('subject', '')}")
    return 0


async def _cmd_ignore(service: SyncService, args: argparse.Namespace, ignored: bool) -> int:
    result = await service.set_ignored(args.message_id, ignored=ignored, month=args.month)
    for entry in result.logs:
        _print_log(entry)
    return _finish(result)


async def _cmd_full_show(service: SyncService, args: argparse.Namespace) -> int:
    result = await service.full_message(args.message_id, args.day)
    if not result.success:
        return _finish(result)
    print(json.dumps(result.data.to_document(), indent=2, ensure_ascii=False))
    return 0


async def _cmd_full_delete(service: SyncService, args: argparse.Namespace) -> int:
    result = await service.delete_full_message(args.message_id, args.day)
    for entry in result.logs:
        _print_log(entry)
    return _finish(result)


async def _cmd_stats(service: SyncService) -> int:
    result = await service.storage_stats()
    if not result.success:
        return _finish(result)

    stats = result.data
    print(f"Total: {stats.total_files} files, {stats.total_size} bytes")
    print(f"Index: {stats.index_file_count} partition files, {stats.index_size} bytes")
    print(f"Full data: {stats.full_data_files} files, {stats.full_data_size} bytes")
    for year, usage in stats.by_year.items():
        print(f"- {year}: {usage['files']} files, {usage['size']} bytes")
    if stats.orphaned_files:
        print(f"Orphaned full data files: {len(stats.orphaned_files)} (run 'mail-sync cleanup')")
    return 0


async def _cmd_cleanup(service: SyncService, dry_run: bool) -> int:
    result = await service.cleanup(dry_run=dry_run)
    if dry_run and result.success:
        for path in result.data:
            print(path)
    for entry in result.logs:
        _print_log(entry)
    return _finish(result)


def _cmd_cache_info(service: SyncService) -> int:
    entry = service.cache.load()
    if entry is None:
        print("Cache is empty or expired.")
    else:
        note = f" ({entry.note})" if entry.note else ""
        print(f"Cached {len(entry.emails)} of {entry.count} emails at {entry.timestamp.isoformat()}{note}")
        print(f"Version {entry.version}, fetched in {entry.fetch_time:.0f} ms")

    usage = service.cache.storage_usage
    if usage is not None:
        print(f"Local storage: {usage.used_bytes} / {usage.quota_bytes} bytes ({usage.used_fraction:.0%})")
    return 0


def _cmd_cache_clear(service: SyncService) -> int:
    service.cache.clear()
    print("Cache cleared.")
    return 0


def main(args: list[str] | None = None) -> int:
    """Main entry point for the Mail Archive Sync CLI.

    Args:
        args: Command-line arguments. If None, uses sys.argv.

    Returns:
        Exit code (0 for success, 1 for a failed operation, 2 for usage errors).
    """
    if args is None:
        args = sys.argv[1:]

    settings = get_settings()

    # Configure logging
    structlog.configure(
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, settings.log_level.upper(), logging.INFO)
        ),
    )

    logger.info("mail_archive_sync_started", version=__version__, debug=settings.debug)

    parser = _build_parser()
    parsed = parser.parse_args(args)

    service = SyncService(settings)

    if parsed.command == "auth":
        if parsed.auth_command == "login":
            return asyncio.run(_cmd_auth_login(service))
        if parsed.auth_command == "status":
            return _cmd_auth_status(service)
        if parsed.auth_command == "logout":
            return _cmd_auth_logout(service)
    if parsed.command == "scan":
        return asyncio.run(_cmd_scan(service))
    if parsed.command == "read":
        return asyncio.run(_cmd_read(service, parsed.month))
    if parsed.command == "migrate":
        return asyncio.run(_cmd_migrate(service))
    if parsed.command in ("ignore", "unignore"):
        return asyncio.run(_cmd_ignore(service, parsed, parsed.command == "ignore"))
    if parsed.command == "full":
        if parsed.full_command == "show":
            return asyncio.run(_cmd_full_show(service, parsed))
        if parsed.full_command == "delete":
            return asyncio.run(_cmd_full_delete(service, parsed))
    if parsed.command == "stats":
        return asyncio.run(_cmd_stats(service))
    if parsed.command == "cleanup":
        return asyncio.run(_cmd_cleanup(service, parsed.dry_run))
    if parsed.command == "fetch":
        return asyncio.run(_cmd_fetch(service))
    if parsed.command == "export":
        return asyncio.run(_cmd_export(service, parsed))
    if parsed.command == "recent":
        return asyncio.run(_cmd_recent(service, parsed.limit))
    if parsed.command == "cache":
        if parsed.cache_command == "info":
            return _cmd_cache_info(service)
        if parsed.cache_command == "clear":
            return _cmd_cache_clear(service)

    logger.error("unknown_command", command=parsed.command)
    return 2


if __name__ == "__main__":
    sys.exit(main())
