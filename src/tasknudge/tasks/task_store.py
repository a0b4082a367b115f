# src/tasknudge/tasks/task_store.py

from __future__ import annotations

import contextlib
import json
import logging
import os
import time
import uuid
from collections.abc import Iterable
from datetime import tzinfo
from pathlib import Path
from typing import Any

from ..core.models import RecurrencePattern, TaskSnapshot, TaskUpdate
from ..core.recurrence import next_occurrence, to_local

logger = logging.getLogger(__name__)


class JsonTaskStore:
    """
    JSON file task store (the owning store used by the CLI).

    The file is a list of task objects. Raw dicts are kept as-is so fields the
    reminder engine does not know about survive a round-trip; snapshots are
    parsed fresh on every read.

    Writes are atomic (tmp + os.replace). One process at a time.
    """

    def __init__(self, path: str | Path, *, clock=time.time) -> None:
        self._path = Path(path)
        self._clock = clock
        self._tasks: list[dict[str, Any]] = []
        self._mtime: float | None = None
        self._load()
        logger.info("JsonTaskStore ready path=%s total=%d", self._path, len(self._tasks))

    @property
    def path(self) -> Path:
        return self._path

    # ---- persistence ----

    def _stat_mtime(self) -> float | None:
        try:
            return self._path.stat().st_mtime
        except OSError:
            return None

    def _load(self) -> None:
        self._mtime = self._stat_mtime()
        if self._mtime is None:
            self._tasks = []
            return
        try:
            data = json.loads(self._path.read_text("utf-8"))
        except (OSError, ValueError):
            logger.warning("Task file %s is unreadable; starting empty.", self._path, exc_info=True)
            self._tasks = []
            return
        if isinstance(data, dict):
            data = data.get("tasks")
        if not isinstance(data, list):
            logger.warning("Task file %s has no task list; starting empty.", self._path)
            self._tasks = []
            return
        self._tasks = [t for t in data if isinstance(t, dict) and t.get("id") not in (None, "")]

    def save(self) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self._path.with_suffix(".tmp")
        tmp.write_text(json.dumps(self._tasks, ensure_ascii=False, indent=2), "utf-8")
        os.replace(tmp, self._path)
        with contextlib.suppress(Exception):
            os.chmod(self._path, 0o600)
        self._mtime = self._stat_mtime()

    def reload_if_changed(self) -> bool:
        """Re-read the file when it was modified by someone else."""
        if self._stat_mtime() == self._mtime:
            return False
        self._load()
        logger.info("Task file changed on disk; reloaded %d tasks", len(self._tasks))
        return True

    # ---- reads ----

    def _find(self, task_id: str) -> dict[str, Any] | None:
        for t in self._tasks:
            if str(t.get("id")) == str(task_id):
                return t
        return None

    def list_snapshots(self) -> list[TaskSnapshot]:
        """TaskAccessor: every task, parsed leniently. Broken rows are skipped."""
        self.reload_if_changed()
        out: list[TaskSnapshot] = []
        for raw in self._tasks:
            try:
                out.append(TaskSnapshot.from_dict(raw))
            except (KeyError, TypeError, ValueError):
                logger.warning("Skipping malformed task row id=%r", raw.get("id"))
        return out

    def get(self, task_id: str) -> TaskSnapshot | None:
        raw = self._find(task_id)
        return TaskSnapshot.from_dict(raw) if raw is not None else None

    # ---- writes ----

    def add_task(
        self,
        title: str,
        *,
        due_at: float | None = None,
        recurrence: RecurrencePattern | None = None,
        notify_before_minutes: int = 60,
        notify: bool = True,
        parent_id: str | None = None,
    ) -> str:
        if not title or not title.strip():
            raise ValueError("title is required")

        task_id = uuid.uuid4().hex[:8]
        row: dict[str, Any] = {
            "id": task_id,
            "title": title.strip(),
            "completed": False,
            "archived": False,
            "parent_id": parent_id,
            "due_at": due_at,
            "created_at": self._clock(),
            "notification": {
                "enabled": bool(notify),
                "notify_before_minutes": int(notify_before_minutes),
                "notified_at": None,
                "follow_up_count": 0,
            },
        }
        if recurrence is not None:
            row["recurrence"] = recurrence.to_dict()

        self._tasks.append(row)
        self.save()
        logger.debug("Task added id=%s due_at=%s recurring=%s", task_id, due_at, recurrence is not None)
        return task_id

    def apply_updates(self, updates: Iterable[TaskUpdate]) -> int:
        """
        MutationCallback: write notified_at / follow_up_count into the stored rows.

        Unknown ids are ignored. Saves once per batch.
        """
        changed = 0
        for u in updates:
            raw = self._find(u.task_id)
            if raw is None:
                logger.warning("Update for unknown task id=%s dropped", u.task_id)
                continue
            notif = raw.get("notification")
            if not isinstance(notif, dict):
                notif = {"enabled": True}
                raw["notification"] = notif
            notif["notified_at"] = u.notified_at
            notif["follow_up_count"] = u.follow_up_count
            changed += 1

        if changed:
            self.save()
            logger.debug("Applied %d task updates", changed)
        return changed

    def complete_task(self, task_id: str, *, tz: tzinfo) -> TaskSnapshot | None:
        """
        Mark a task done.

        A recurring task is not closed: its due date moves to the next
        occurrence and its notification state is reset.
        """
        raw = self._find(task_id)
        if raw is None:
            return None
        snap = TaskSnapshot.from_dict(raw)

        if snap.recurrence is not None:
            base = snap.due_at if snap.due_at is not None else self._clock()
            nxt = next_occurrence(snap.recurrence, to_local(base, tz))
            raw["due_at"] = nxt.timestamp()
            notif = raw.get("notification")
            if isinstance(notif, dict):
                notif["notified_at"] = None
                notif["follow_up_count"] = 0
            logger.info("Recurring task id=%s advanced to %s", task_id, nxt.isoformat())
        else:
            raw["completed"] = True
            logger.info("Task id=%s completed", task_id)

        self.save()
        return TaskSnapshot.from_dict(raw)
