"""CLI entry point for Momentum."""

import argparse
import asyncio
import json
import logging
import sys
import traceback
from datetime import date, datetime
from pathlib import Path

from .analytics import completion_rate, current_streak, longest_streak
from .config import load_config
from .errors import EntityNotFound, StorageFailure
from .models import EntityType
from .services import build_services
from .sync import SyncStatus


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_data = {
            "timestamp": datetime.fromtimestamp(record.created).isoformat(),
            "level": record.levelname,
            "component": record.name,
            "message": record.getMessage(),
        }

        if record.exc_info:
            log_data["exception"] = "".join(traceback.format_exception(*record.exc_info))

        return json.dumps(log_data, default=str)


def setup_logging(verbose: bool = False, log_level: str | None = None, json_output: bool = False) -> None:
    """Configure logging.

    Args:
        verbose: Enable debug logging (ignored if log_level is set).
        log_level: Explicit log level (warning, info, debug).
        json_output: Output logs as JSON lines for machine parsing.
    """
    if log_level:
        level_map = {
            "warning": logging.WARNING,
            "info": logging.INFO,
            "debug": logging.DEBUG,
        }
        level = level_map.get(log_level, logging.INFO)
    else:
        level = logging.DEBUG if verbose else logging.INFO

    handler = logging.StreamHandler()
    if json_output:
        handler.setFormatter(JSONFormatter())
    else:
        formatter = logging.Formatter(
            fmt="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
        handler.setFormatter(formatter)

    logging.basicConfig(
        level=level,
        handlers=[handler],
    )


async def cmd_sync(args: argparse.Namespace) -> int:
    """Run one sync round."""
    config = load_config(args.config)

    if not config.sync.enabled:
        print("Sync is disabled in configuration", file=sys.stderr)
        return 1
    if not config.sync.server_url:
        print("No sync server configured (sync.server_url)", file=sys.stderr)
        return 1

    services = build_services(config)
    types = [EntityType(args.type)] if args.type else config.sync.types
    results = await services.sync.sync_all(types)

    exit_code = 0
    for entity_type, result in results.items():
        line = (
            f"{entity_type.value}: {result.status.value} "
            f"(uploaded={result.uploaded}, downloaded={result.downloaded}, "
            f"collected={result.collected})"
        )
        if result.error:
            line += f" - {result.error}"
        print(line)
        if result.status not in (SyncStatus.SUCCESS, SyncStatus.SKIPPED):
            exit_code = 1

    return exit_code


async def cmd_status(args: argparse.Namespace) -> int:
    """Show local storage and sync watermark status."""
    config = load_config(args.config)
    services = build_services(config)

    try:
        stats = await services.store.get_stats()
        state = await services.state.load()
    except StorageFailure as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    status_data = {
        "timestamp": datetime.now().isoformat(),
        "user_id": config.account.user_id,
        "data_dir": str(services.store.root_dir),
        "server_url": config.sync.server_url or None,
        "sync_enabled": config.sync.enabled,
        "types": {},
    }
    for name, counts in stats["types"].items():
        sync_entry = state["types"].get(name, {})
        status_data["types"][name] = {
            **counts,
            "watermark": sync_entry.get("watermark"),
            "synced_at": sync_entry.get("synced_at"),
        }

    if args.json:
        print(json.dumps(status_data, indent=2))
        return 0

    print("Momentum Status")
    print("===============")
    print(f"User: {status_data['user_id']}")
    print(f"Data: {status_data['data_dir']}")
    print(f"Server: {status_data['server_url'] or 'not configured'}")
    print()
    for name, info in status_data["types"].items():
        synced = info["synced_at"] or "never"
        print(f"  {name}: {info['active']} active, {info['tombstones']} deleted, last sync {synced}")

    return 0


async def cmd_streak(args: argparse.Namespace) -> int:
    """Print streak statistics for one habit."""
    config = load_config(args.config)
    services = build_services(config)

    try:
        habit = await services.store.get(EntityType.HABITS, args.habit_id)
    except EntityNotFound:
        print(f"Habit not found: {args.habit_id}", file=sys.stderr)
        return 1

    as_of = date.fromisoformat(args.as_of) if args.as_of else date.today()
    window_start = date.fromordinal(as_of.toordinal() - args.days + 1)

    print(f"{habit.name or habit.id}")
    print(f"  Current streak: {current_streak(habit.logs, as_of)}")
    print(f"  Longest streak: {longest_streak(habit.logs)}")
    print(f"  Completion ({args.days}d): {completion_rate(habit.logs, window_start, as_of):.0%}")
    return 0


async def cmd_serve(args: argparse.Namespace) -> int:
    """Start the sync server."""
    config = load_config(args.config)

    try:
        import uvicorn

        from .server import create_app
    except ImportError as e:
        print(f"Server dependencies not installed: {e}", file=sys.stderr)
        print("Install with: pip install momentum-sync[server]", file=sys.stderr)
        return 1

    host = args.host or config.server.host
    port = args.port or config.server.port

    print("Starting Momentum sync server")
    print(f"Data: {Path(config.server.data_dir).expanduser()}")
    print(f"URL: http://{host}:{port}")

    app = create_app(config)
    verbose = getattr(args, "verbose", False)
    server = uvicorn.Server(
        uvicorn.Config(app, host=host, port=port, log_level="info" if verbose else "warning")
    )
    await server.serve()
    return 0


def main() -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        prog="momentum",
        description="Local-first sync for habits, moods, workouts, meals and tasks",
    )
    parser.add_argument(
        "-c", "--config",
        type=Path,
        default=None,
        help="Path to config file (default: built-in defaults)",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        choices=["warning", "info", "debug"],
        default=None,
        help="Set log level explicitly (overrides -v/--verbose)",
    )
    parser.add_argument(
        "--json-logs",
        action="store_true",
        help="Output logs as JSON for machine parsing",
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    sync_parser = subparsers.add_parser("sync", help="Sync local data with the server")
    sync_parser.add_argument(
        "-t", "--type",
        choices=[t.value for t in EntityType],
        default=None,
        help="Only sync one entity type (default: all configured)",
    )
    sync_parser.set_defaults(func=cmd_sync)

    status_parser = subparsers.add_parser("status", help="Show storage and sync status")
    status_parser.add_argument(
        "--json",
        action="store_true",
        help="Output status as JSON",
    )
    status_parser.set_defaults(func=cmd_status)

    streak_parser = subparsers.add_parser("streak", help="Show streaks for a habit")
    streak_parser.add_argument("habit_id", help="Habit id")
    streak_parser.add_argument(
        "--as-of",
        default=None,
        help="Reference day as YYYY-MM-DD (default: today)",
    )
    streak_parser.add_argument(
        "--days",
        type=int,
        default=30,
        help="Completion-rate window in days (default: 30)",
    )
    streak_parser.set_defaults(func=cmd_streak)

    serve_parser = subparsers.add_parser("serve", help="Start the sync server")
    serve_parser.add_argument(
        "-p", "--port",
        type=int,
        default=None,
        help="Port to listen on (default: server.port)",
    )
    serve_parser.add_argument(
        "--host",
        type=str,
        default=None,
        help="Host to bind to (default: server.host)",
    )
    serve_parser.set_defaults(func=cmd_serve)

    args = parser.parse_args()

    setup_logging(args.verbose, args.log_level, args.json_logs)

    if not args.command:
        parser.print_help()
        return 1

    try:
        return asyncio.run(args.func(args))
    except KeyboardInterrupt:
        print("\nShutting down...")
        return 0
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
