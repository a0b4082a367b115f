# src/tasknudge/reminders/memory_context.py

"""
Optional prompt enrichment from a knowledge-graph memory file.

The file is JSON lines, one item per line:

    {"type": "entity", "name": "...", "entityType": "...", "observations": ["..."]}
    {"type": "relation", "from": "...", "to": "...", "relationType": "..."}

extract_memory_context() renders a compact block (emotion state, recent events,
a few observations per focus entity, rules, relations between focus entities).
Loading never raises: unreadable files and bad lines are skipped.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable, Sequence
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

MAX_OBSERVATIONS = 3
MAX_RULES = 2
MAX_EVENTS = 3

_EMOTION_TYPES = {"emotionstate", "emotion", "mood"}
_RULE_TYPES = {"rule", "rules"}


def load_memory(path: str | Path) -> list[dict[str, Any]]:
    p = Path(path).expanduser()
    try:
        raw = p.read_text("utf-8")
    except OSError:
        logger.warning("Memory file %s is unreadable; continuing without context.", p)
        return []

    items: list[dict[str, Any]] = []
    for n, line in enumerate(raw.splitlines(), start=1):
        line = line.strip()
        if not line:
            continue
        try:
            item = json.loads(line)
        except ValueError:
            logger.debug("Memory file %s: skipping malformed line %d", p, n)
            continue
        if isinstance(item, dict) and item.get("type") in ("entity", "relation"):
            items.append(item)
    return items


def _observations(entity: dict[str, Any], limit: int) -> list[str]:
    obs = entity.get("observations")
    if not isinstance(obs, list):
        return []
    return [str(o) for o in obs[:limit]]


def _etype(entity: dict[str, Any]) -> str:
    return str(entity.get("entityType") or "").replace(" ", "").lower()


def extract_memory_context(items: Iterable[dict[str, Any]], *, focus: Sequence[str] = ()) -> str:
    """
    Render memory items into a prompt block.

    `focus` names the entities to describe (typically the persona and the user);
    when empty, the first two "Person" entities are used.
    """
    items = list(items)
    entities = [i for i in items if i.get("type") == "entity"]
    relations = [i for i in items if i.get("type") == "relation"]

    by_name = {str(e.get("name")): e for e in entities}
    focus_names = [f for f in focus if f in by_name]
    if not focus_names:
        focus_names = [str(e.get("name")) for e in entities if _etype(e) == "person"][:2]

    parts: list[str] = []

    emotion = next((e for e in entities if _etype(e) in _EMOTION_TYPES), None)
    if emotion is not None:
        parts.append("[Emotion state]\n" + "\n".join(_observations(emotion, MAX_OBSERVATIONS)))

    events = [e for e in entities if _etype(e) == "event"][-MAX_EVENTS:]
    if events:
        lines = [f"- {e.get('name')}: {', '.join(_observations(e, MAX_OBSERVATIONS))}" for e in events]
        parts.append("[Recent events]\n" + "\n".join(lines))

    for name in focus_names:
        obs = _observations(by_name[name], MAX_OBSERVATIONS)
        if obs:
            parts.append(f"[About {name}]\n" + "\n".join(obs))

    rules = next((e for e in entities if _etype(e) in _RULE_TYPES), None)
    if rules is not None:
        parts.append("[Rules]\n" + "\n".join(_observations(rules, MAX_RULES)))

    rel_lines = [
        f"{r.get('from')} and {r.get('to')}: {r.get('relationType')}"
        for r in relations
        if r.get("from") in focus_names and r.get("to") in focus_names and r.get("relationType")
    ]
    if rel_lines:
        parts.append("[Relationship]\n" + "\n".join(rel_lines))

    return "\n\n".join(p for p in parts if p.strip())


def load_memory_context(path: str | Path | None, *, focus: Sequence[str] = ()) -> str:
    """Load + extract in one call. Empty string when disabled or unreadable."""
    if not path:
        return ""
    try:
        return extract_memory_context(load_memory(path), focus=focus)
    except Exception:
        logger.exception("Failed to extract memory context from %s", path)
        return ""
