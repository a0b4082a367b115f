# tests/test_task_store.py

from __future__ import annotations

import json
import os
from pathlib import Path

import pytest

from tasknudge.core.models import RecurrencePattern, RecurrenceType, TaskUpdate
from tasknudge.tasks.task_store import JsonTaskStore

from .fakes import TOKYO, tokyo_ts

NOW = tokyo_ts(2025, 6, 11, 10)


def store(tmp_path: Path) -> JsonTaskStore:
    return JsonTaskStore(tmp_path / "tasks.json", clock=lambda: NOW)


def test_missing_file_is_empty(tmp_path: Path) -> None:
    assert store(tmp_path).list_snapshots() == []


def test_corrupt_file_is_empty(tmp_path: Path) -> None:
    (tmp_path / "tasks.json").write_text("{not json", "utf-8")
    assert store(tmp_path).list_snapshots() == []


def test_add_task_persists(tmp_path: Path) -> None:
    s = store(tmp_path)
    task_id = s.add_task("  Pay rent ", due_at=NOW + 3600, notify_before_minutes=30)

    assert len(task_id) == 8
    snap = JsonTaskStore(tmp_path / "tasks.json").get(task_id)
    assert snap is not None
    assert snap.title == "Pay rent"
    assert snap.due_at == NOW + 3600
    assert snap.notification is not None and snap.notification.notify_before_minutes == 30


def test_add_task_requires_title(tmp_path: Path) -> None:
    with pytest.raises(ValueError):
        store(tmp_path).add_task("   ")


def test_apply_updates_writes_once_and_ignores_unknown_ids(tmp_path: Path) -> None:
    s = store(tmp_path)
    a = s.add_task("A", due_at=NOW)
    b = s.add_task("B", due_at=NOW)

    changed = s.apply_updates(
        [
            TaskUpdate(task_id=a, notified_at=NOW, follow_up_count=0),
            TaskUpdate(task_id=b, notified_at=NOW, follow_up_count=2),
            TaskUpdate(task_id="missing", notified_at=NOW, follow_up_count=0),
        ]
    )

    assert changed == 2
    rows = {r["id"]: r for r in json.loads((tmp_path / "tasks.json").read_text("utf-8"))}
    assert rows[a]["notification"]["notified_at"] == NOW
    assert rows[b]["notification"]["follow_up_count"] == 2


def test_unknown_fields_survive_round_trip(tmp_path: Path) -> None:
    path = tmp_path / "tasks.json"
    path.write_text(json.dumps([{"id": "x1", "title": "Keep", "priority": "high", "tags": ["a"]}]), "utf-8")
    s = JsonTaskStore(path)
    s.apply_updates([TaskUpdate(task_id="x1", notified_at=NOW, follow_up_count=1)])

    row = json.loads(path.read_text("utf-8"))[0]
    assert row["priority"] == "high" and row["tags"] == ["a"]
    assert row["notification"]["follow_up_count"] == 1


def test_complete_plain_task(tmp_path: Path) -> None:
    s = store(tmp_path)
    task_id = s.add_task("Once", due_at=NOW)
    snap = s.complete_task(task_id, tz=TOKYO)
    assert snap is not None and snap.completed
    assert s.complete_task("nope", tz=TOKYO) is None


def test_complete_recurring_task_advances_due_date(tmp_path: Path) -> None:
    s = store(tmp_path)
    task_id = s.add_task(
        "Water plants",
        due_at=NOW,
        recurrence=RecurrencePattern(type=RecurrenceType.DAILY, time_of_day="09:00"),
    )
    s.apply_updates([TaskUpdate(task_id=task_id, notified_at=NOW, follow_up_count=2)])

    snap = s.complete_task(task_id, tz=TOKYO)

    assert snap is not None and not snap.completed
    assert snap.due_at == tokyo_ts(2025, 6, 12, 9)
    assert snap.notification is not None
    assert snap.notification.notified_at is None
    assert snap.notification.follow_up_count == 0


def test_external_edits_are_picked_up(tmp_path: Path) -> None:
    path = tmp_path / "tasks.json"
    s = JsonTaskStore(path)
    s.add_task("First")

    rows = json.loads(path.read_text("utf-8"))
    rows.append({"id": "ext", "title": "Added by hand"})
    path.write_text(json.dumps(rows), "utf-8")
    st = path.stat()
    os.utime(path, (st.st_atime, st.st_mtime + 5))

    titles = sorted(t.title for t in s.list_snapshots())
    assert titles == ["Added by hand", "First"]
