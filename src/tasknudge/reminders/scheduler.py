# src/tasknudge/reminders/scheduler.py

"""
Reminder scheduler.

One instance owns all timers (no module-level handles):
- a fixed-interval tick that evaluates every top-level task,
- up to three daily greeting timers (morning / noon / evening), each
  re-arming itself for the next day right after it fires.

Everything runs on one asyncio loop. A re-entrancy flag keeps a slow tick from
overlapping a manual one; the periodic loop only sleeps after a tick finishes.

Delivery is at-most-one-attempt: once the policy picks an event, notified_at
advances and the daily counter increments even if every channel fails. A
transient outage therefore suppresses that reminder until the next eligible
window (follow-up, overdue repeat or next day). Ledger keys are only written
for channels that actually succeeded.

To stop the scheduler, call stop().
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import tzinfo
from enum import StrEnum
from typing import Any

from ..config import DEFAULT_REMINDER_CONFIG, ReminderConfig
from ..core.models import (
    Channel,
    DispatchResult,
    EventKind,
    GreetingKind,
    Message,
    TaskSnapshot,
    TaskUpdate,
)
from ..core.ports import ChannelDispatcher, MutationCallback, TaskAccessor
from ..core.recurrence import next_daily_fire, to_local
from ..errors import RecurrenceError, SchedulerStateError
from .composer import MessageComposer, build_registry
from .ledger import NotificationLedger
from .memory_context import load_memory_context
from .policy import evaluate

logger = logging.getLogger(__name__)

ConfigSource = ReminderConfig | Callable[[], ReminderConfig]


class SchedulerState(StrEnum):
    STOPPED = "stopped"
    RUNNING = "running"


@dataclass(slots=True)
class TickReport:
    at: float
    evaluated: int = 0
    decisions: list[tuple[str, EventKind]] = field(default_factory=list)
    results: list[tuple[str, DispatchResult]] = field(default_factory=list)
    updates: list[TaskUpdate] = field(default_factory=list)
    skipped: str | None = None


class ReminderScheduler:
    def __init__(
        self,
        *,
        composer: MessageComposer,
        dispatcher: ChannelDispatcher,
        ledger: NotificationLedger,
        tz: tzinfo,
        tick_seconds: float = 60.0,
        dispatch_timeout: float = 15.0,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        memory_loader: Callable[[str], str] = load_memory_context,
    ) -> None:
        self._composer = composer
        self._dispatcher = dispatcher
        self._ledger = ledger
        self._tz = tz
        self._tick_seconds = max(0.01, float(tick_seconds))
        self._dispatch_timeout = float(dispatch_timeout)
        self._clock = clock
        self._sleep = sleep
        self._memory_loader = memory_loader

        self._state = SchedulerState.STOPPED
        self._config: ConfigSource = DEFAULT_REMINDER_CONFIG
        self._task_accessor: TaskAccessor | None = None
        self._mutation_callback: MutationCallback | None = None

        self._tick_task: asyncio.Task[None] | None = None
        self._greeting_tasks: dict[GreetingKind, asyncio.Task[None]] = {}
        self._ticking = False

    # ---- lifecycle ----

    @property
    def state(self) -> SchedulerState:
        return self._state

    @property
    def armed_greetings(self) -> list[GreetingKind]:
        return [k for k, t in self._greeting_tasks.items() if not t.done()]

    def bind(
        self,
        task_accessor: TaskAccessor,
        mutation_callback: MutationCallback,
        config: ConfigSource,
    ) -> None:
        """Attach the task store and config without arming timers (manual tick())."""
        self._task_accessor = task_accessor
        self._mutation_callback = mutation_callback
        self._config = config

    def start(
        self,
        task_accessor: TaskAccessor,
        mutation_callback: MutationCallback,
        config: ConfigSource,
    ) -> None:
        """Stopped -> Running. Must be called from inside a running event loop."""
        if self._state == SchedulerState.RUNNING:
            raise SchedulerStateError("scheduler is already running")

        self.bind(task_accessor, mutation_callback, config)

        self._tick_task = asyncio.create_task(self._tick_loop(), name="tasknudge-tick")

        cfg = self.current_config()
        for kind in GreetingKind:
            enabled, _ = cfg.greeting(kind.value)
            if enabled:
                self._greeting_tasks[kind] = asyncio.create_task(
                    self._greeting_loop(kind), name=f"tasknudge-greeting-{kind.value}"
                )

        self._state = SchedulerState.RUNNING
        logger.info(
            "Reminder scheduler started (tick=%.0fs, greetings=%s, enabled=%s)",
            self._tick_seconds,
            ",".join(k.value for k in self._greeting_tasks) or "none",
            cfg.enabled,
        )

    async def stop(self) -> None:
        """Cancel the tick and every greeting timer. No-op when already stopped."""
        if self._state == SchedulerState.STOPPED:
            return

        tasks = [t for t in (self._tick_task, *self._greeting_tasks.values()) if t is not None]
        for t in tasks:
            t.cancel()
        for t in tasks:
            try:
                await t
            except asyncio.CancelledError:
                pass
            except Exception:
                logger.exception("Scheduler timer ended with an error")

        self._tick_task = None
        self._greeting_tasks.clear()
        self._state = SchedulerState.STOPPED
        logger.info("Reminder scheduler stopped")

    def current_config(self) -> ReminderConfig:
        src = self._config
        if isinstance(src, ReminderConfig):
            return src
        try:
            cfg = src()
        except Exception:
            logger.exception("Loading reminder config failed; using defaults")
            return DEFAULT_REMINDER_CONFIG
        return cfg if isinstance(cfg, ReminderConfig) else DEFAULT_REMINDER_CONFIG

    # ---- tick ----

    async def _tick_loop(self) -> None:
        while True:
            await self._sleep(self._tick_seconds)
            try:
                await self.tick()
            except Exception:
                logger.exception("Reminder tick crashed")

    async def _load_tasks(self) -> list[TaskSnapshot]:
        if self._task_accessor is None:
            return []
        result: Any = self._task_accessor()
        if inspect.isawaitable(result):
            result = await result
        return list(result or [])

    async def tick(self, now: float | None = None) -> TickReport | None:
        """
        One evaluation pass. Returns None if another tick is still running.

        Mutations are handed to the callback once, after the full pass.
        """
        if self._ticking:
            logger.warning("Previous reminder tick still running; skipping this one")
            return None
        self._ticking = True
        try:
            return await self._tick(self._clock() if now is None else now)
        finally:
            self._ticking = False

    async def _tick(self, now: float) -> TickReport:
        report = TickReport(at=now)
        cfg = self.current_config()
        if not cfg.enabled:
            report.skipped = "disabled"
            return report

        channels = cfg.channels
        if not channels:
            report.skipped = "no channels"
            logger.debug("No notification channel enabled; skipping tick")
            return report

        # Day rollover writes the ledger; evaluate() only reads it.
        self._ledger.rollover(now)

        try:
            tasks = await self._load_tasks()
        except Exception:
            logger.exception("Task accessor failed")
            report.skipped = "task accessor failed"
            return report

        # Custom personas may have been edited since the last tick.
        self._composer.registry = build_registry(cfg)
        memory_context: str | None = None
        policy = cfg.policy
        persona_config = cfg.persona_config
        day = self._ledger.day_key(now)

        for task in tasks:
            if task.parent_id is not None:
                continue
            report.evaluated += 1
            try:
                decision = evaluate(task, now, self._ledger, policy, tz=self._tz, channels=channels)
                if decision is None:
                    continue

                report.decisions.append((task.id, decision.kind))
                if memory_context is None:
                    memory_context = self._memory_context(cfg)

                message = await self._composer.compose(
                    task,
                    decision.kind,
                    persona_config,
                    memory_context,
                    follow_up_count=decision.follow_up_count,
                    now=now,
                )

                metadata = {"task_id": task.id, "event": decision.kind.value, "title": message.title}
                for channel in channels:
                    if self._ledger.has_sent(task.id, decision.ledger_token, channel, day):
                        continue
                    result = await self._dispatch(channel, message, metadata)
                    report.results.append((task.id, result))
                    if result.ok:
                        self._ledger.mark_sent(task.id, decision.ledger_token, channel, day)
                    else:
                        logger.warning(
                            "%s notification failed task=%s: %s", channel.value, task.id, result.error
                        )

                self._ledger.increment(task.id, now)
                report.updates.append(
                    TaskUpdate(
                        task_id=task.id,
                        notified_at=decision.notified_at,
                        follow_up_count=decision.follow_up_count,
                    )
                )
                logger.info("Notified task=%s kind=%s", task.id, decision.kind.value)
            except Exception:
                logger.exception("Reminder processing failed task=%s", task.id)

        if report.updates:
            await self._flush(report.updates)

        logger.info(
            "Reminder tick: evaluated=%d notified=%d", report.evaluated, len(report.updates)
        )
        return report

    async def _flush(self, updates: list[TaskUpdate]) -> None:
        if self._mutation_callback is None:
            return
        try:
            result = self._mutation_callback(list(updates))
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.exception("Mutation callback failed (%d updates)", len(updates))

    async def _dispatch(self, channel: Channel, message: Message, metadata: dict[str, Any]) -> DispatchResult:
        try:
            if channel == Channel.DM:
                coro = self._dispatcher.send_direct_message(message.body, metadata)
            else:
                coro = self._dispatcher.show_local_notification(message.title, message.body)
            return await asyncio.wait_for(coro, self._dispatch_timeout)
        except asyncio.TimeoutError:
            return DispatchResult(channel=channel, ok=False, error="timeout")
        except Exception as e:
            logger.exception("%s dispatch raised", channel.value)
            return DispatchResult(channel=channel, ok=False, error=e.__class__.__name__)

    def _memory_context(self, cfg: ReminderConfig) -> str:
        if not cfg.use_memory or not cfg.memory_file_path:
            return ""
        try:
            return self._memory_loader(cfg.memory_file_path)
        except Exception:
            logger.exception("Memory context loader failed")
            return ""

    # ---- greetings ----

    def greeting_delay(self, time_of_day: str, now: float) -> float:
        """Seconds until the next "HH:MM" in the reference timezone."""
        local = to_local(now, self._tz)
        return max(0.0, next_daily_fire(time_of_day, local).timestamp() - now)

    async def _greeting_loop(self, kind: GreetingKind) -> None:
        not_before = 0.0
        while True:
            _, hhmm = self.current_config().greeting(kind.value)
            now = max(self._clock(), not_before)
            try:
                delay = self.greeting_delay(hhmm, now)
            except RecurrenceError:
                logger.warning("Invalid %s greeting time %r; timer disarmed", kind.value, hhmm)
                return
            fire_at = now + delay
            await self._sleep(max(0.0, fire_at - self._clock()))

            try:
                await self.send_greeting(kind)
            except Exception:
                logger.exception("%s greeting failed", kind.value)
            # Re-arm strictly after this firing, even if the sleep woke up early.
            not_before = fire_at + 1.0

    async def send_greeting(self, kind: GreetingKind) -> DispatchResult | None:
        """Compose and send one greeting over DM. None when greetings cannot be sent."""
        cfg = self.current_config()
        enabled, _ = cfg.greeting(kind.value)
        if not (cfg.enabled and enabled and Channel.DM in cfg.channels):
            logger.debug("%s greeting skipped (disabled or DM off)", kind.value)
            return None

        self._composer.registry = build_registry(cfg)
        message = await self._composer.compose_greeting(kind, cfg.persona_config, self._memory_context(cfg))
        result = await self._dispatch(Channel.DM, message, {"greeting": kind.value, "title": message.title})
        if result.ok:
            logger.info("%s greeting sent", kind.value)
        else:
            logger.warning("%s greeting failed: %s", kind.value, result.error)
        return result
