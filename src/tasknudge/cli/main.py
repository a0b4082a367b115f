# src/tasknudge/cli/main.py

"""
CLI entrypoint.

Subcommands:
- run:  start the reminder scheduler (with a slash-command console unless --no-console)
- tick: one evaluation pass against the task file, then exit
- next: print the next occurrence of a recurrence pattern
- add:  append a task to the task file
"""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import logging
import signal
import sys
import threading
from datetime import datetime, tzinfo

from ..config import get_settings
from ..core.models import RecurrencePattern, RecurrenceType
from ..core.recurrence import describe, get_zone, next_occurrence, validate_pattern
from ..errors import ConfigError, RecurrenceError
from ..logging_setup import setup_logging
from .bootstrap import App, create_app
from .commands import cmd_tick
from .commands import registry as command_registry

logger = logging.getLogger(__name__)


def _ts_local() -> str:
    return datetime.now().astimezone().strftime("%Y-%m-%d %H:%M:%S")


def _start_stdin_reader(loop: asyncio.AbstractEventLoop, queue: asyncio.Queue[str | None]) -> None:
    """Blocking input() lives in a daemon thread so Ctrl+C never waits on it."""

    def _push(item: str | None) -> None:
        with contextlib.suppress(RuntimeError):  # loop already closed
            loop.call_soon_threadsafe(queue.put_nowait, item)

    def _reader() -> None:
        while True:
            try:
                line = input()
            except (EOFError, KeyboardInterrupt):
                _push(None)
                return
            _push(line)

    threading.Thread(target=_reader, name="tasknudge-stdin", daemon=True).start()


async def _console_loop(app: App, stop: asyncio.Event) -> None:
    logger.info("Console started.")
    print(f"[{_ts_local()}] [CONSOLE] Use /help for commands. Use /quit to exit.\n", flush=True)

    queue: asyncio.Queue[str | None] = asyncio.Queue()
    _start_stdin_reader(asyncio.get_running_loop(), queue)

    while not stop.is_set():
        print(">>> ", end="", flush=True)
        get_line = asyncio.create_task(queue.get())
        stopped = asyncio.create_task(stop.wait())
        done, _ = await asyncio.wait({get_line, stopped}, return_when=asyncio.FIRST_COMPLETED)
        if stopped in done:
            get_line.cancel()
            break
        stopped.cancel()

        line = get_line.result()
        if line is None:
            logger.info("Console EOF received, exiting.")
            break
        line = line.strip()
        if not line:
            continue
        if line.lower() in ("/exit", "/quit"):
            logger.info("Console exit command received.")
            break

        try:
            reply = await command_registry.handle(app, line)
        except Exception:
            logger.exception("Command handler crashed.")
            reply = "Internal error while handling a command."

        if reply is None:
            reply = "Commands start with '/'. Use /help to list them."
        print(f"[{_ts_local()}] {reply}", flush=True)


async def _run(app: App, *, console: bool) -> None:
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        with contextlib.suppress(NotImplementedError, RuntimeError):
            loop.add_signal_handler(sig, stop.set)

    app.scheduler.start(app.store.list_snapshots, app.store.apply_updates, app.config)
    try:
        if console:
            await _console_loop(app, stop)
        else:
            logger.info("Console disabled. Scheduler running. Press Ctrl+C to stop.")
            await stop.wait()
    finally:
        await app.scheduler.stop()
        try:
            app.ledger.save()
        except OSError:
            logger.exception("Failed to save the ledger on shutdown.")


async def _tick_once(app: App) -> None:
    app.bind_scheduler()
    print(await cmd_tick(app, []))


def parse_instant(raw: str, tz: tzinfo) -> datetime:
    """ISO date/time in `tz`. An explicit offset in `raw` is honoured, then converted to `tz`."""
    dt = datetime.fromisoformat(raw)
    if dt.tzinfo is None:
        return dt.replace(tzinfo=tz)
    return dt.astimezone(tz)


def _parse_days(raw: str | None) -> tuple[int, ...]:
    if not raw:
        return ()
    return tuple(sorted({int(p) for p in raw.split(",") if p.strip()}))


def _cmd_next(args: argparse.Namespace, tz_name: str) -> int:
    tz = get_zone(tz_name)
    try:
        pattern = RecurrencePattern(
            type=RecurrenceType(args.type),
            interval=args.interval,
            days_of_week=_parse_days(args.days),
            day_of_month=args.day,
            month=args.month,
            time_of_day=args.time,
        )
        validate_pattern(pattern)
        start = parse_instant(args.start, tz) if args.start else datetime.now(tz)
        nxt = next_occurrence(pattern, start)
    except (RecurrenceError, ValueError) as e:
        print(f"error: {e}", file=sys.stderr)
        return 2

    print(f"{describe(pattern)}: {nxt.isoformat()}")
    return 0


def _cmd_add(app: App, args: argparse.Namespace) -> int:
    due_at: float | None = None
    try:
        if args.due:
            due_at = parse_instant(args.due, app.tz).timestamp()
        elif args.in_minutes is not None:
            due_at = datetime.now().timestamp() + args.in_minutes * 60.0

        recurrence = None
        if args.every:
            recurrence = RecurrencePattern(
                type=RecurrenceType(args.every),
                days_of_week=_parse_days(args.days),
                time_of_day=args.time,
            )
            validate_pattern(recurrence)
        lead = args.notify_before if args.notify_before is not None else app.config().reminder_timing
        task_id = app.store.add_task(
            args.title,
            due_at=due_at,
            recurrence=recurrence,
            notify_before_minutes=lead,
        )
    except (RecurrenceError, ValueError) as e:
        print(f"error: {e}", file=sys.stderr)
        return 2

    print(task_id)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="tasknudge", description="Due-date reminders with persona messages.")
    sub = parser.add_subparsers(dest="command", required=True)

    run = sub.add_parser("run", help="Start the reminder scheduler")
    run.add_argument("--no-console", action="store_true", help="Run without the slash-command console")

    sub.add_parser("tick", help="Run one evaluation pass and exit")

    nxt = sub.add_parser("next", help="Print the next occurrence of a recurrence pattern")
    nxt.add_argument("type", choices=[t.value for t in RecurrenceType])
    nxt.add_argument("--interval", type=int, default=1)
    nxt.add_argument("--days", help="Weekdays, 0=Sunday ... 6=Saturday, e.g. 1,3,5")
    nxt.add_argument("--day", type=int, help="Day of month (1-31)")
    nxt.add_argument("--month", type=int, help="Month for yearly patterns (1-12)")
    nxt.add_argument("--time", help="Time of day HH:MM")
    nxt.add_argument("--from", dest="start", help="Start instant, ISO format (default: now)")

    add = sub.add_parser("add", help="Add a task to the task file")
    add.add_argument("title")
    due = add.add_mutually_exclusive_group()
    due.add_argument("--due", help="Due date, ISO format in the reference timezone")
    due.add_argument("--in", dest="in_minutes", type=float, help="Due in N minutes")
    add.add_argument("--every", choices=[t.value for t in RecurrenceType], help="Make the task recurring")
    add.add_argument("--days", help="Weekdays for --every weekly, e.g. 1,3,5")
    add.add_argument("--time", help="Time of day HH:MM for recurring tasks")
    add.add_argument("--notify-before", type=int, help="Lead time in minutes (default: reminder_timing from config)")

    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    settings = get_settings()

    if args.command == "next":
        return _cmd_next(args, settings.timezone)

    level_name = str(settings.log_level).upper()
    console_level = getattr(logging, level_name, logging.INFO)
    setup_logging(log_dir=settings.data_dir, console_level=console_level)

    logger.info("Starting %s (%s)...", settings.app_name, args.command)
    try:
        app = create_app(settings=settings)
    except ConfigError as e:
        logger.error("Invalid configuration: %s", e)
        return 2

    if args.command == "add":
        return _cmd_add(app, args)

    try:
        if args.command == "tick":
            asyncio.run(_tick_once(app))
        else:
            asyncio.run(_run(app, console=not args.no_console))
    except KeyboardInterrupt:
        pass

    logger.info("Bye.")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
