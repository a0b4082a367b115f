# src/tasknudge/cli/commands.py

from __future__ import annotations

import inspect
import logging
from collections.abc import Awaitable, Callable
from datetime import datetime

from ..core.models import EventKind, GreetingKind
from ..core.recurrence import describe, to_local
from .bootstrap import App

CommandHandler = Callable[[App, list[str]], str | Awaitable[str]]

logger = logging.getLogger(__name__)


class CommandRegistry:
    """Simple slash-command registry used by the console (/help, /status, ...)."""

    def __init__(self) -> None:
        self._handlers: dict[str, CommandHandler] = {}
        self._help: dict[str, str] = {}

    def register(
        self,
        name: str,
        handler: CommandHandler,
        help_text: str,
        aliases: list[str] | None = None,
    ) -> None:
        aliases = aliases or []
        key = name.lower()
        self._handlers[key] = handler
        self._help[key] = help_text
        for alias in aliases:
            self._handlers[alias.lower()] = handler

    async def handle(self, app: App, line: str) -> str | None:
        """
        Handle a string like "/command args".
        Returns a reply string or None if not a command.
        """
        if not line.startswith("/"):
            return None

        parts = line[1:].split()
        if not parts:
            return "Empty command. Use /help to list available commands."

        name = parts[0].lower()
        args = parts[1:]

        handler = self._handlers.get(name)
        if not handler:
            return f"Unknown command: /{name}. Use /help to list available commands."

        reply = handler(app, args)
        if inspect.isawaitable(reply):
            reply = await reply
        return reply

    def build_help(self) -> str:
        lines = ["Available commands:"]
        for name, help_text in self._help.items():
            lines.append(f"  /{name} - {help_text}")
        return "\n".join(lines)


registry = CommandRegistry()


def _fmt_ts(ts: float | None, app: App) -> str:
    if ts is None:
        return "-"
    return to_local(ts, app.tz).strftime("%Y-%m-%d %H:%M")


def cmd_help(app: App, args: list[str]) -> str:
    return registry.build_help()


def cmd_status(app: App, args: list[str]) -> str:
    cfg = app.config()
    chain = ", ".join(app.composer.resolve_chain(cfg.persona_config))
    channels = ", ".join(c.value for c in cfg.channels) or "none"
    greetings = []
    for kind in GreetingKind:
        enabled, hhmm = cfg.greeting(kind.value)
        if enabled:
            greetings.append(f"{kind.value}@{hhmm}")
    now = datetime.now().timestamp()
    return (
        "Status:\n"
        f"  Scheduler: {app.scheduler.state.value} (reminders {'ON' if cfg.enabled else 'OFF'})\n"
        f"  Channels: {channels}\n"
        f"  Persona: {cfg.active_persona_id}\n"
        f"  Providers (first -> fallback): {chain}\n"
        f"  Greetings: {', '.join(greetings) or 'none'}\n"
        f"  Sent today: {app.ledger.total_today(now)} ({app.ledger.day_key(now)})\n"
        f"  Tasks: {len(app.store.list_snapshots())}"
    )


def cmd_tasks(app: App, args: list[str]) -> str:
    tasks = [t for t in app.store.list_snapshots() if not (t.completed or t.archived)]
    if not tasks:
        return "No open tasks."
    lines = ["Open tasks:"]
    for t in sorted(tasks, key=lambda x: (x.due_at is None, x.due_at or 0.0)):
        rec = f" [{describe(t.recurrence)}]" if t.recurrence is not None else ""
        notified = t.notification.notified_at if t.notification else None
        lines.append(f"  {t.id}  due {_fmt_ts(t.due_at, app)}{rec}  {t.title}  (last notified {_fmt_ts(notified, app)})")
    return "\n".join(lines)


def cmd_done(app: App, args: list[str]) -> str:
    if not args:
        return "Usage: /done <task_id>"
    snap = app.store.complete_task(args[0], tz=app.tz)
    if snap is None:
        return f"No task with id {args[0]}."
    if snap.is_recurring:
        return f"Done. Next occurrence of {snap.title!r}: {_fmt_ts(snap.due_at, app)}"
    return f"Done: {snap.title!r}"


async def cmd_tick(app: App, args: list[str]) -> str:
    report = await app.scheduler.tick()
    if report is None:
        return "A tick is already running."
    if report.skipped:
        return f"Tick skipped: {report.skipped}."
    if not report.decisions:
        return f"Tick: {report.evaluated} tasks evaluated, nothing to send."
    lines = [f"Tick: {report.evaluated} tasks evaluated."]
    for task_id, kind in report.decisions:
        sent = [r for tid, r in report.results if tid == task_id]
        outcome = ", ".join(f"{r.channel.value}={'ok' if r.ok else r.error}" for r in sent) or "already sent"
        lines.append(f"  {task_id} {kind.value}: {outcome}")
    return "\n".join(lines)


async def cmd_preview(app: App, args: list[str]) -> str:
    """
    /preview <task_id> [reminder|overdue|followup]

    Composes the message without sending it or touching the ledger.
    """
    if not args:
        return "Usage: /preview <task_id> [reminder|overdue|followup]"
    task = app.store.get(args[0])
    if task is None:
        return f"No task with id {args[0]}."
    try:
        kind = EventKind(args[1].lower()) if len(args) > 1 else EventKind.REMINDER
    except ValueError:
        return "Event kind must be one of: reminder, overdue, followup."

    cfg = app.config()
    count = task.notification.follow_up_count if task.notification else 0
    msg = await app.composer.compose(
        task,
        kind,
        cfg.persona_config,
        follow_up_count=count + 1 if kind == EventKind.FOLLOW_UP else 0,
    )
    source = msg.provider if msg.generated else f"fallback ({msg.failure.value if msg.failure else 'none'})"
    return f"[{msg.title}] via {source}\n{msg.body}"


async def cmd_greet(app: App, args: list[str]) -> str:
    """
    /greet <morning|noon|evening> [send]

    Without "send" the greeting is only composed and shown.
    """
    if not args:
        return "Usage: /greet <morning|noon|evening> [send]"
    try:
        kind = GreetingKind(args[0].lower())
    except ValueError:
        return "Greeting must be one of: morning, noon, evening."

    if len(args) > 1 and args[1].lower() == "send":
        result = await app.scheduler.send_greeting(kind)
        if result is None:
            return f"{kind.value} greeting is disabled (or DM is off)."
        return f"{kind.value} greeting {'sent' if result.ok else f'failed: {result.error}'}."

    cfg = app.config()
    msg = await app.composer.compose_greeting(kind, cfg.persona_config)
    return f"[{msg.title}]\n{msg.body}"


registry.register("help", cmd_help, help_text="Show available commands.", aliases=["h", "?"])
registry.register("status", cmd_status, help_text="Show scheduler, channels, persona and providers.")
registry.register("tasks", cmd_tasks, help_text="List open tasks.", aliases=["ls"])
registry.register("done", cmd_done, help_text="Complete a task: /done <task_id>.")
registry.register("tick", cmd_tick, help_text="Run one evaluation pass now.")
registry.register("preview", cmd_preview, help_text="Compose without sending: /preview <task_id> [kind].")
registry.register("greet", cmd_greet, help_text="Compose a greeting: /greet <morning|noon|evening> [send].")
