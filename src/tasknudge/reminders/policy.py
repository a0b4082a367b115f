# src/tasknudge/reminders/policy.py

"""
Notification policy.

evaluate() is a pure decision function: it reads the task snapshot, the clock
value it is given and the ledger, and returns either None or a Decision. It
never writes. Rules are checked in order and the first match wins:

1. completed / archived / sub-task / notifications off / no due date -> None
2. weekday not allowed, or inside quiet hours                        -> None
3. min interval since notified_at not elapsed                        -> None
4. per-task daily cap (sameTaskFrequency) or global daily cap hit    -> None
5. due <= now                              -> Overdue (gated by overdueFrequency)
6. due - lead <= now and never notified    -> Reminder
7. notified, follow-ups left, interval ok  -> FollowUp
8. otherwise                               -> None

Rules 5-7 form an else-if chain on the due state: an overdue task yields
Overdue or None, never FollowUp.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import tzinfo

from ..core.models import (
    Channel,
    Decision,
    EventKind,
    OverdueFrequency,
    PolicyConfig,
    TaskSnapshot,
)
from ..core.ports import LedgerView
from ..core.recurrence import js_weekday, minute_of_day, minutes_of_day, to_local

logger = logging.getLogger(__name__)


def in_quiet_hours(minute: int, start: str, end: str) -> bool:
    """
    Half-open window [start, end) in minutes of day.

    start > end spans midnight (23:00-07:00); start == end is an empty window.
    Malformed times disable the window.
    """
    s = minutes_of_day(start)
    e = minutes_of_day(end)
    if s is None or e is None or s == e:
        return False
    if s > e:
        return minute >= s or minute < e
    return s <= minute < e


def is_allowed_time(now: float, config: PolicyConfig, tz: tzinfo) -> bool:
    local = to_local(now, tz)
    if js_weekday(local) not in config.allowed_weekdays:
        return False
    if config.quiet_hours_enabled and in_quiet_hours(
        minute_of_day(local), config.quiet_hours_start, config.quiet_hours_end
    ):
        return False
    return True


def overdue_token(now: float, config: PolicyConfig, tz: tzinfo) -> str:
    """
    Ledger token for an overdue notice.

    Gated frequencies that can repeat within one day get a slot suffix so that
    successive notices on the same day never share a key.
    """
    interval = config.overdue_frequency.interval_minutes
    if interval is None or config.overdue_frequency == OverdueFrequency.DAILY:
        return EventKind.OVERDUE.value
    slot = minute_of_day(to_local(now, tz)) // interval
    return f"{EventKind.OVERDUE.value}.{slot}"


def _elapsed_minutes(now: float, since: float) -> float:
    return (now - since) / 60.0


def _decide(task: TaskSnapshot, now: float, config: PolicyConfig, tz: tzinfo) -> Decision | None:
    n = task.notification
    if n is None or task.due_at is None:
        return None

    last = n.notified_at
    notified_at = now if last is None else max(last, now)

    # 5. Overdue
    if task.due_at <= now:
        if not config.overdue_enabled:
            return None
        interval = config.overdue_frequency.interval_minutes
        if last is not None:
            if interval is None or _elapsed_minutes(now, last) < interval:
                return None
        return Decision(
            kind=EventKind.OVERDUE,
            notified_at=notified_at,
            follow_up_count=0,
            ledger_token=overdue_token(now, config, tz),
        )

    # 6. Reminder
    if last is None:
        if task.due_at - n.notify_before_minutes * 60 <= now:
            return Decision(
                kind=EventKind.REMINDER,
                notified_at=notified_at,
                follow_up_count=0,
                ledger_token=EventKind.REMINDER.value,
            )
        return None

    # 7. FollowUp
    if (
        config.follow_up_enabled
        and n.follow_up_count < config.follow_up_max_count
        and _elapsed_minutes(now, last) >= config.follow_up_interval_minutes
    ):
        count = n.follow_up_count + 1
        return Decision(
            kind=EventKind.FOLLOW_UP,
            notified_at=notified_at,
            follow_up_count=count,
            ledger_token=f"{EventKind.FOLLOW_UP.value}.{count}",
        )

    return None


def evaluate(
    task: TaskSnapshot,
    now: float,
    ledger: LedgerView,
    config: PolicyConfig,
    *,
    tz: tzinfo,
    channels: Iterable[Channel | str] = (),
) -> Decision | None:
    """
    Decide whether `task` should notify at `now`.

    When `channels` is given, a candidate whose ledger key already exists for
    every one of them today is suppressed (covers a restart that lost the
    notified_at update). Side effects are the caller's job: apply
    Decision.notified_at / follow_up_count, mark the ledger per channel and
    increment the daily counter.
    """
    # 1. Eligibility
    n = task.notification
    if task.completed or task.archived or task.parent_id is not None:
        return None
    if n is None or not n.enabled or task.due_at is None:
        return None

    # 2. Weekday / quiet hours
    if not is_allowed_time(now, config, tz):
        logger.debug("task=%s outside allowed notification time", task.id)
        return None

    # 3. Min interval
    if n.notified_at is not None and _elapsed_minutes(now, n.notified_at) < config.min_interval_minutes:
        return None

    # 4. Daily caps
    cap = config.same_task_cap
    if cap is not None and ledger.count_today(task.id, now) >= cap:
        logger.debug("task=%s hit per-task daily cap (%d)", task.id, cap)
        return None
    if config.daily_limit_enabled and ledger.total_today(now) >= config.daily_limit_count:
        logger.debug("global daily cap reached (%d)", config.daily_limit_count)
        return None

    decision = _decide(task, now, config, tz)
    if decision is None:
        return None

    chans = [str(c) for c in channels]
    if chans:
        day = ledger.day_key(now)
        if all(ledger.has_sent(task.id, decision.ledger_token, c, day) for c in chans):
            logger.debug("task=%s %s already sent on every channel today", task.id, decision.ledger_token)
            return None

    logger.debug("task=%s decision=%s token=%s", task.id, decision.kind.value, decision.ledger_token)
    return decision
