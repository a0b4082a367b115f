# src/tasknudge/reminders/ledger.py

"""
Notification ledger.

Two pieces of persisted state, both keyed on calendar days of ONE fixed
reference timezone (never the host locale):

- sent keys: "{task_id}-{token}-{channel}-{YYYY-MM-DD}"; presence means "already sent"
- daily counts: {"date": "YYYY-MM-DD", "counts": {task_id: n}}; reset on day rollover

Single writer only: the whole file is rewritten on every mutation and the last
writer wins. Running two schedulers against one ledger file is unsupported.
"""

from __future__ import annotations

import contextlib
import json
import logging
import os
import time
from collections.abc import Callable
from datetime import date, timedelta, tzinfo
from pathlib import Path
from typing import Any

from ..core.models import EventKind
from ..core.recurrence import day_key as _day_key
from ..errors import LedgerError

logger = logging.getLogger(__name__)


def make_key(task_id: str, token: str | EventKind, channel: str, day: str) -> str:
    if len(day) != 10 or _key_day(day) is None:
        raise LedgerError(f"malformed ledger day {day!r}")
    return f"{task_id}-{token}-{channel}-{day}"


def _key_day(key: str) -> date | None:
    # Task ids may contain "-", so the date is always read from the fixed-width suffix.
    try:
        return date.fromisoformat(key[-10:])
    except ValueError:
        return None


class NotificationLedger:
    """
    Persisted idempotency set + per-task daily counters.

    path=None keeps everything in memory (tests, dry runs).
    All operations are idempotent per key and safe to repeat within a tick.
    """

    def __init__(
        self,
        path: str | Path | None,
        *,
        tz: tzinfo,
        retention_days: int = 30,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._path = Path(path) if path is not None else None
        self._tz = tz
        self._retention_days = max(0, int(retention_days))
        self._clock = clock

        self._sent: set[str] = set()
        self._counts_date: str = self.day_key(self._clock())
        self._counts: dict[str, int] = {}

        self._load()

    # ---- day keys ----

    @property
    def tz(self) -> tzinfo:
        return self._tz

    def day_key(self, now: float) -> str:
        return _day_key(now, self._tz)

    # ---- idempotency set ----

    def has_sent(self, task_id: str, token: str | EventKind, channel: str, day: str) -> bool:
        return make_key(task_id, token, channel, day) in self._sent

    def mark_sent(self, task_id: str, token: str | EventKind, channel: str, day: str) -> None:
        key = make_key(task_id, token, channel, day)
        if key in self._sent:
            return
        self._sent.add(key)
        self.save()

    @property
    def sent_keys(self) -> frozenset[str]:
        return frozenset(self._sent)

    # ---- daily counters ----

    def _counts_for(self, now: float | None) -> dict[str, int]:
        # Reads never roll the day over; counts from another day read as empty.
        today = self.day_key(self._clock() if now is None else now)
        return self._counts if today == self._counts_date else {}

    def count_today(self, task_id: str, now: float | None = None) -> int:
        return self._counts_for(now).get(task_id, 0)

    def total_today(self, now: float | None = None) -> int:
        return sum(self._counts_for(now).values())

    def increment(self, task_id: str, now: float | None = None) -> int:
        self.rollover(self._clock() if now is None else now)
        self._counts[task_id] = self._counts.get(task_id, 0) + 1
        self.save()
        return self._counts[task_id]

    def rollover(self, now: float) -> bool:
        """Start a new counting day (reset counts, prune, save). False when `now` is still today."""
        today = self.day_key(now)
        if today == self._counts_date:
            return False
        logger.debug("Ledger day rollover %s -> %s", self._counts_date, today)
        self._counts_date = today
        self._counts = {}
        self.prune(now)
        self.save()
        return True

    # ---- pruning ----

    def prune(self, now: float | None = None) -> int:
        """Drop sent keys older than retention_days. 0 disables pruning."""
        if self._retention_days <= 0:
            return 0
        today = date.fromisoformat(self.day_key(self._clock() if now is None else now))
        cutoff = today - timedelta(days=self._retention_days)

        stale = set()
        for key in self._sent:
            d = _key_day(key)
            if d is not None and d < cutoff:
                stale.add(key)
        if stale:
            self._sent -= stale
            logger.info("Ledger pruned %d keys older than %s", len(stale), cutoff.isoformat())
        return len(stale)

    # ---- persistence ----

    def _load(self) -> None:
        if self._path is None or not self._path.exists():
            return
        try:
            data = json.loads(self._path.read_text("utf-8"))
        except (OSError, ValueError):
            logger.warning("Ledger at %s is unreadable; starting empty.", self._path, exc_info=True)
            return
        if not isinstance(data, dict):
            logger.warning("Ledger at %s is not a JSON object; starting empty.", self._path)
            return

        raw_sent = data.get("sent")
        if isinstance(raw_sent, list):
            self._sent = {k for k in raw_sent if isinstance(k, str)}

        raw_daily = data.get("daily")
        if isinstance(raw_daily, dict) and raw_daily.get("date") == self._counts_date:
            counts = raw_daily.get("counts")
            if isinstance(counts, dict):
                self._counts = {
                    str(k): int(v)
                    for k, v in counts.items()
                    if isinstance(v, int) and not isinstance(v, bool) and v >= 0
                }

        if self.prune():
            self.save()
        logger.info(
            "Ledger loaded from %s: %d sent keys, %d tasks counted today",
            self._path,
            len(self._sent),
            len(self._counts),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "sent": sorted(self._sent),
            "daily": {"date": self._counts_date, "counts": dict(self._counts)},
        }

    def save(self) -> None:
        """Atomic rewrite. Failures are logged; in-memory state is kept."""
        if self._path is None:
            return
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            tmp = self._path.with_suffix(".tmp")
            tmp.write_text(json.dumps(self.to_dict(), ensure_ascii=False), "utf-8")
            os.replace(tmp, self._path)
            with contextlib.suppress(Exception):
                os.chmod(self._path, 0o600)
        except OSError:
            logger.exception("Failed to save ledger to %s", self._path)
