# tests/test_scheduler.py

from __future__ import annotations

import asyncio
import json
from pathlib import Path

import pytest

from tasknudge.config import ReminderConfig
from tasknudge.core.models import Channel, EventKind, GreetingKind, TaskUpdate
from tasknudge.core.ports import ProviderResult
from tasknudge.errors import SchedulerStateError
from tasknudge.reminders.composer import MessageComposer
from tasknudge.reminders.ledger import NotificationLedger
from tasknudge.reminders.scheduler import ReminderScheduler, SchedulerState

from .fakes import TOKYO, FakeClock, FakeDispatcher, FakeProvider, InMemoryTasks, make_task, tokyo_ts

MIN = 60.0
BOTH = ReminderConfig(enabled=True, discord_enabled=True, desktop_notification_enabled=True)
MORNING_DM = ReminderConfig(enabled=True, discord_enabled=True, morning_greeting=True)


def build(
    dispatcher: FakeDispatcher,
    ledger: NotificationLedger,
    clock: FakeClock,
    *,
    provider: FakeProvider | None = None,
    **kw,
) -> ReminderScheduler:
    provider = provider or FakeProvider("claude", ProviderResult.success("Time to do it."))
    return ReminderScheduler(
        composer=MessageComposer({"claude": provider}),
        dispatcher=dispatcher,
        ledger=ledger,
        tz=TOKYO,
        clock=clock,
        **kw,
    )


@pytest.mark.asyncio
async def test_tick_sends_on_every_channel_and_batches_updates(dispatcher, ledger, clock) -> None:
    now = clock()
    tasks = InMemoryTasks(
        [
            make_task("a", title="Report", due_at=now + 30 * MIN),
            make_task("b", title="Gym", due_at=now - 5 * MIN),
            make_task("c", title="Later", due_at=now + 600 * MIN),
        ]
    )
    sched = build(dispatcher, ledger, clock)
    sched.bind(tasks, tasks.apply, BOTH)

    report = await sched.tick()

    assert report is not None
    assert dict(report.decisions) == {"a": EventKind.REMINDER, "b": EventKind.OVERDUE}
    assert len(tasks.batches) == 1
    assert tasks.batches[0] == [
        TaskUpdate(task_id="a", notified_at=now, follow_up_count=0),
        TaskUpdate(task_id="b", notified_at=now, follow_up_count=0),
    ]
    assert [m["task_id"] for _, m in dispatcher.dms] == ["a", "b"]
    assert dispatcher.dms[0][1]["event"] == "reminder"
    assert len(dispatcher.notifications) == 2

    day = ledger.day_key(now)
    assert ledger.has_sent("a", "reminder", Channel.DM, day)
    assert ledger.has_sent("b", "overdue", Channel.DESKTOP, day)
    assert ledger.count_today("a") == 1


@pytest.mark.asyncio
async def test_no_updates_means_no_callback(dispatcher, ledger, clock) -> None:
    tasks = InMemoryTasks([make_task(due_at=clock() + 600 * MIN)])
    sched = build(dispatcher, ledger, clock)
    sched.bind(tasks, tasks.apply, BOTH)
    await sched.tick()
    assert tasks.batches == []


@pytest.mark.asyncio
async def test_channel_failure_is_isolated_and_not_rolled_back(dispatcher, ledger, clock) -> None:
    dispatcher.fail = {Channel.DM}
    tasks = InMemoryTasks([make_task("a", due_at=clock() + 30 * MIN)])
    sched = build(dispatcher, ledger, clock)
    sched.bind(tasks, tasks.apply, BOTH)

    report = await sched.tick()

    assert report is not None
    day = ledger.day_key(clock())
    assert not ledger.has_sent("a", "reminder", Channel.DM, day)
    assert ledger.has_sent("a", "reminder", Channel.DESKTOP, day)
    assert len(dispatcher.notifications) == 1
    # at-most-one-attempt: notified_at advanced anyway
    assert tasks.tasks["a"].notification.notified_at == clock()
    assert ledger.count_today("a") == 1


@pytest.mark.asyncio
async def test_raising_channel_does_not_abort_the_tick(dispatcher, ledger, clock) -> None:
    dispatcher.explode = {Channel.DM}
    tasks = InMemoryTasks(
        [
            make_task("a", due_at=clock() + 30 * MIN),
            make_task("b", due_at=clock() + 40 * MIN),
        ]
    )
    sched = build(dispatcher, ledger, clock)
    sched.bind(tasks, tasks.apply, BOTH)

    await sched.tick()

    assert len(dispatcher.notifications) == 2
    assert len(tasks.batches[0]) == 2


@pytest.mark.asyncio
async def test_crashing_task_is_skipped(dispatcher, ledger, clock) -> None:
    good = make_task("good", due_at=clock() + 30 * MIN)
    broken = make_task("broken", due_at=clock() + 30 * MIN)
    tasks = InMemoryTasks([broken, good])

    class ExplodingComposer(MessageComposer):
        async def compose(self, task, *args, **kwargs):
            if task.id == "broken":
                raise RuntimeError("boom")
            return await super().compose(task, *args, **kwargs)

    sched = ReminderScheduler(
        composer=ExplodingComposer({"claude": FakeProvider("claude")}),
        dispatcher=dispatcher,
        ledger=ledger,
        tz=TOKYO,
        clock=clock,
    )
    sched.bind(tasks, tasks.apply, BOTH)
    await sched.tick()

    assert [u.task_id for u in tasks.batches[0]] == ["good"]


@pytest.mark.asyncio
async def test_disabled_or_channelless_config_skips(dispatcher, ledger, clock) -> None:
    tasks = InMemoryTasks([make_task(due_at=clock() + 30 * MIN)])
    sched = build(dispatcher, ledger, clock)

    sched.bind(tasks, tasks.apply, ReminderConfig(enabled=False))
    assert (await sched.tick()).skipped == "disabled"

    sched.bind(tasks, tasks.apply, ReminderConfig(enabled=True, desktop_notification_enabled=False))
    assert (await sched.tick()).skipped == "no channels"
    assert dispatcher.dms == [] and dispatcher.notifications == []


@pytest.mark.asyncio
async def test_config_is_read_every_tick(dispatcher, ledger, clock) -> None:
    tasks = InMemoryTasks([make_task(due_at=clock() + 30 * MIN)])
    current = {"cfg": ReminderConfig(enabled=False)}
    sched = build(dispatcher, ledger, clock)
    sched.bind(tasks, tasks.apply, lambda: current["cfg"])

    await sched.tick()
    assert dispatcher.notifications == []

    current["cfg"] = ReminderConfig(enabled=True)
    await sched.tick()
    assert len(dispatcher.notifications) == 1


@pytest.mark.asyncio
async def test_async_mutation_callback_is_awaited(dispatcher, ledger, clock) -> None:
    tasks = InMemoryTasks([make_task(due_at=clock() + 30 * MIN)])
    received: list[list[TaskUpdate]] = []

    async def callback(updates: list[TaskUpdate]) -> None:
        await asyncio.sleep(0)
        received.append(updates)

    sched = build(dispatcher, ledger, clock)
    sched.bind(tasks, callback, BOTH)
    await sched.tick()
    assert len(received) == 1 and received[0][0].task_id == "t1"


@pytest.mark.asyncio
async def test_restart_does_not_resend(tmp_path: Path, dispatcher, clock) -> None:
    path = tmp_path / "ledger.json"
    tasks = InMemoryTasks([make_task(due_at=clock() + 30 * MIN)])

    sched = build(dispatcher, NotificationLedger(path, tz=TOKYO, clock=clock), clock)
    sched.bind(tasks, lambda updates: None, BOTH)  # the store "loses" every update
    await sched.tick()
    assert len(dispatcher.dms) == 1

    clock.advance(10 * MIN)
    restarted = build(dispatcher, NotificationLedger(path, tz=TOKYO, clock=clock), clock)
    restarted.bind(tasks, lambda updates: None, BOTH)
    report = await restarted.tick()

    assert report is not None and report.decisions == []
    assert len(dispatcher.dms) == 1


@pytest.mark.asyncio
async def test_overlapping_tick_is_skipped(dispatcher, ledger, clock) -> None:
    tasks = InMemoryTasks([make_task(due_at=clock() + 30 * MIN)])
    sched = build(dispatcher, ledger, clock, provider=FakeProvider("claude", delay=0.05))
    sched.bind(tasks, tasks.apply, BOTH)

    first, second = await asyncio.gather(sched.tick(), sched.tick())

    assert first is not None and second is None
    assert len(dispatcher.dms) == 1


@pytest.mark.asyncio
async def test_memory_context_loaded_once_per_tick(dispatcher, ledger, clock) -> None:
    calls: list[str] = []

    def loader(path: str) -> str:
        calls.append(path)
        return "[Emotion state]\nsleepy"

    provider = FakeProvider("claude")
    tasks = InMemoryTasks(
        [
            make_task("a", due_at=clock() + 30 * MIN),
            make_task("b", due_at=clock() + 30 * MIN),
        ]
    )
    sched = build(dispatcher, ledger, clock, provider=provider, memory_loader=loader)
    cfg = ReminderConfig(enabled=True, use_memory=True, memory_file_path="/tmp/memory.jsonl")
    sched.bind(tasks, tasks.apply, cfg)
    await sched.tick()

    assert calls == ["/tmp/memory.jsonl"]
    assert all("sleepy" in system for system, _ in provider.calls)


@pytest.mark.asyncio
async def test_start_stop_lifecycle(dispatcher, ledger, clock) -> None:
    tasks = InMemoryTasks([])
    sched = build(dispatcher, ledger, clock, tick_seconds=3600)
    cfg = ReminderConfig(enabled=True, morning_greeting=True, evening_greeting=True)

    sched.start(tasks, tasks.apply, cfg)
    try:
        assert sched.state == SchedulerState.RUNNING
        assert sched.armed_greetings == [GreetingKind.MORNING, GreetingKind.EVENING]
        with pytest.raises(SchedulerStateError):
            sched.start(tasks, tasks.apply, cfg)
    finally:
        await sched.stop()

    assert sched.state == SchedulerState.STOPPED
    assert sched.armed_greetings == []
    await sched.stop()  # idempotent

    sched.start(tasks, tasks.apply, cfg)  # restartable
    await sched.stop()


@pytest.mark.asyncio
async def test_periodic_loop_ticks(dispatcher, ledger, clock) -> None:
    ticked = asyncio.Event()
    tasks = InMemoryTasks([make_task(due_at=clock() + 30 * MIN)])

    def apply(updates: list[TaskUpdate]) -> None:
        tasks.apply(updates)
        ticked.set()

    sched = build(dispatcher, ledger, clock, tick_seconds=0.01)
    sched.start(tasks, apply, BOTH)
    try:
        await asyncio.wait_for(ticked.wait(), timeout=2.0)
    finally:
        await sched.stop()
    assert len(dispatcher.dms) == 1


def test_greeting_delay_uses_reference_timezone(dispatcher, ledger, clock) -> None:
    sched = build(dispatcher, ledger, clock)
    # clock is 10:00 in Tokyo
    assert sched.greeting_delay("10:30", clock()) == pytest.approx(30 * MIN)
    assert sched.greeting_delay("08:00", clock()) == pytest.approx(22 * 60 * MIN)


@pytest.mark.asyncio
async def test_send_greeting_requires_dm(dispatcher, ledger, clock) -> None:
    sched = build(dispatcher, ledger, clock)

    sched.bind(InMemoryTasks([]), lambda u: None, ReminderConfig(enabled=True, morning_greeting=True))
    assert await sched.send_greeting(GreetingKind.MORNING) is None

    sched.bind(
        InMemoryTasks([]),
        lambda u: None,
        ReminderConfig(enabled=True, discord_enabled=True, morning_greeting=True),
    )
    result = await sched.send_greeting(GreetingKind.MORNING)
    assert result is not None and result.ok
    assert dispatcher.dms[0][1]["greeting"] == "morning"
    assert dispatcher.notifications == []


def recording_sleep(clock: FakeClock, delays: list[float], *, stop_after: int, early: float = 0.0):
    """Fake sleep that advances `clock` (minus `early` seconds) and cancels on call `stop_after`."""

    async def sleep(delay: float) -> None:
        delays.append(delay)
        if len(delays) >= stop_after:
            raise asyncio.CancelledError
        clock.advance(delay - early)

    return sleep


@pytest.mark.asyncio
async def test_greeting_timer_rearms_daily_after_a_failed_send(dispatcher, ledger) -> None:
    clock = FakeClock(tokyo_ts(2025, 6, 11, 7))
    delays: list[float] = []
    sched = build(dispatcher, ledger, clock, sleep=recording_sleep(clock, delays, stop_after=4))
    sched.bind(InMemoryTasks([]), lambda u: None, MORNING_DM)

    fired: list[float] = []

    async def failing_greeting(kind: GreetingKind):
        fired.append(clock())
        raise RuntimeError("provider down")

    sched.send_greeting = failing_greeting

    with pytest.raises(asyncio.CancelledError):
        await sched._greeting_loop(GreetingKind.MORNING)

    assert delays == pytest.approx([3600.0, 86400.0, 86400.0, 86400.0])
    assert fired == [tokyo_ts(2025, 6, 11, 8), tokyo_ts(2025, 6, 12, 8), tokyo_ts(2025, 6, 13, 8)]


@pytest.mark.asyncio
async def test_early_wakeup_fires_once_per_day(dispatcher, ledger) -> None:
    clock = FakeClock(tokyo_ts(2025, 6, 11, 7))
    delays: list[float] = []
    sched = build(dispatcher, ledger, clock, sleep=recording_sleep(clock, delays, stop_after=3, early=0.5))
    sched.bind(InMemoryTasks([]), lambda u: None, MORNING_DM)

    with pytest.raises(asyncio.CancelledError):
        await sched._greeting_loop(GreetingKind.MORNING)

    # Woke 0.5s before 08:00; the next wait still targets tomorrow.
    assert len(dispatcher.dms) == 2
    assert delays[1] == pytest.approx(86400.5)


@pytest.mark.asyncio
async def test_tick_rolls_the_ledger_day_over(dispatcher, ledger, clock, tmp_path: Path) -> None:
    ledger.increment("t1")
    sched = build(dispatcher, ledger, clock)
    sched.bind(InMemoryTasks([]), lambda u: None, BOTH)

    clock.now = tokyo_ts(2025, 6, 12, 0, 1)
    await sched.tick()

    saved = json.loads((tmp_path / "ledger.json").read_text("utf-8"))
    assert saved["daily"] == {"date": "2025-06-12", "counts": {}}
