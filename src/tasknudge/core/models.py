# src/tasknudge/core/models.py

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any


def _as_bool(raw: Any, default: bool) -> bool:
    if isinstance(raw, bool):
        return raw
    if isinstance(raw, (int, float)):
        return bool(raw)
    if isinstance(raw, str):
        s = raw.strip().lower()
        if s in {"1", "true", "yes", "y", "on"}:
            return True
        if s in {"0", "false", "no", "n", "off"}:
            return False
    return default


def _as_int(raw: Any, default: int, *, minimum: int | None = None) -> int:
    if isinstance(raw, bool):
        return default
    try:
        val = int(raw)
    except (TypeError, ValueError):
        return default
    if minimum is not None and val < minimum:
        return default
    return val


def _as_float(raw: Any) -> float | None:
    if raw is None or isinstance(raw, bool):
        return None
    try:
        return float(raw)
    except (TypeError, ValueError):
        return None


def _pick(data: dict[str, Any], *names: str) -> Any:
    """First present key among snake_case / camelCase spellings."""
    for n in names:
        if n in data:
            return data[n]
    return None


def parse_time_of_day(raw: Any) -> tuple[int, int] | None:
    """Parse "HH:MM" (24h). Returns None on anything malformed."""
    if not raw or not isinstance(raw, str):
        return None
    parts = raw.strip().split(":")
    if len(parts) != 2:
        return None
    try:
        hh, mm = int(parts[0]), int(parts[1])
    except ValueError:
        return None
    if not (0 <= hh <= 23 and 0 <= mm <= 59):
        return None
    return hh, mm


def as_time_of_day(raw: Any, default: str) -> str:
    """`raw` normalised to "HH:MM", or `default` when it is not a valid time."""
    hm = parse_time_of_day(raw)
    return default if hm is None else f"{hm[0]:02d}:{hm[1]:02d}"


class RecurrenceType(StrEnum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    YEARLY = "yearly"

    @classmethod
    def parse(cls, raw: Any) -> RecurrenceType | None:
        if not raw:
            return None
        try:
            return cls(str(raw).strip().lower())
        except ValueError:
            return None


class EventKind(StrEnum):
    REMINDER = "reminder"
    OVERDUE = "overdue"
    FOLLOW_UP = "followup"


class Channel(StrEnum):
    DM = "dm"
    DESKTOP = "desktop"


class GreetingKind(StrEnum):
    MORNING = "morning"
    NOON = "noon"
    EVENING = "evening"


class FailureKind(StrEnum):
    CREDENTIAL_MISSING = "credential-missing"
    CREDENTIAL_INVALID = "credential-invalid"
    QUOTA_EXCEEDED = "quota-exceeded"
    RATE_LIMITED = "rate-limited"
    NETWORK = "network"
    UNKNOWN = "unknown"


class SameTaskFrequency(StrEnum):
    ONCE = "once"
    TWICE = "twice"
    CUSTOM = "custom"
    UNLIMITED = "unlimited"

    @classmethod
    def parse(cls, raw: Any) -> SameTaskFrequency:
        try:
            return cls(str(raw).strip().lower())
        except ValueError:
            return cls.UNLIMITED


class OverdueFrequency(StrEnum):
    ONCE = "once"
    HOURLY = "hourly"
    TWICE_DAILY = "twice_daily"
    DAILY = "daily"

    @classmethod
    def parse(cls, raw: Any) -> OverdueFrequency:
        s = str(raw or "").strip()
        if s == "twiceDaily":
            return cls.TWICE_DAILY
        try:
            return cls(s.lower())
        except ValueError:
            return cls.DAILY

    @property
    def interval_minutes(self) -> int | None:
        """Minimum gap between overdue notices; None means never repeat."""
        return {
            OverdueFrequency.ONCE: None,
            OverdueFrequency.HOURLY: 60,
            OverdueFrequency.TWICE_DAILY: 12 * 60,
            OverdueFrequency.DAILY: 24 * 60,
        }[self]


@dataclass(slots=True, frozen=True)
class RecurrencePattern:
    type: RecurrenceType
    interval: int = 1
    days_of_week: tuple[int, ...] = ()  # 0=Sunday ... 6=Saturday
    day_of_month: int | None = None
    month: int | None = None
    time_of_day: str | None = None  # "HH:MM" anchor

    @classmethod
    def from_dict(cls, data: Any) -> RecurrencePattern | None:
        if not isinstance(data, dict):
            return None
        rtype = RecurrenceType.parse(data.get("type"))
        if rtype is None:
            return None
        raw_days = _pick(data, "days_of_week", "daysOfWeek") or []
        days: list[int] = []
        if isinstance(raw_days, (list, tuple)):
            for d in raw_days:
                v = _as_int(d, -1)
                if 0 <= v <= 6 and v not in days:
                    days.append(v)
        dom = _as_int(_pick(data, "day_of_month", "dayOfMonth"), 0)
        month = _as_int(data.get("month"), 0)
        tod = _pick(data, "time_of_day", "timeOfDay", "time")
        return cls(
            type=rtype,
            interval=_as_int(data.get("interval"), 1, minimum=1),
            days_of_week=tuple(sorted(days)),
            day_of_month=dom if 1 <= dom <= 31 else None,
            month=month if 1 <= month <= 12 else None,
            time_of_day=str(tod) if isinstance(tod, str) and tod.strip() else None,
        )

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"type": self.type.value, "interval": self.interval}
        if self.days_of_week:
            out["days_of_week"] = list(self.days_of_week)
        if self.day_of_month is not None:
            out["day_of_month"] = self.day_of_month
        if self.month is not None:
            out["month"] = self.month
        if self.time_of_day is not None:
            out["time_of_day"] = self.time_of_day
        return out


@dataclass(slots=True, frozen=True)
class DueNotification:
    enabled: bool = True
    notify_before_minutes: int = 60
    notified_at: float | None = None
    follow_up_count: int = 0

    @classmethod
    def from_dict(cls, data: Any) -> DueNotification | None:
        if not isinstance(data, dict):
            return None
        return cls(
            enabled=_as_bool(data.get("enabled"), False),
            notify_before_minutes=_as_int(_pick(data, "notify_before_minutes", "notifyBefore"), 60, minimum=0),
            notified_at=_as_float(_pick(data, "notified_at", "notifiedAt")),
            follow_up_count=_as_int(_pick(data, "follow_up_count", "followUpCount"), 0, minimum=0),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "enabled": self.enabled,
            "notify_before_minutes": self.notify_before_minutes,
            "notified_at": self.notified_at,
            "follow_up_count": self.follow_up_count,
        }


@dataclass(slots=True, frozen=True)
class TaskSnapshot:
    """
    Read-only view of a task, produced fresh by the owning store every tick.

    Sub-tasks (parent_id set) are never notified directly.
    """

    id: str
    title: str
    completed: bool = False
    archived: bool = False
    parent_id: str | None = None
    due_at: float | None = None
    recurrence: RecurrencePattern | None = None
    notification: DueNotification | None = None

    @property
    def is_recurring(self) -> bool:
        return self.recurrence is not None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TaskSnapshot:
        status = str(data.get("status") or "").lower()
        parent = _pick(data, "parent_id", "parentId")
        return cls(
            id=str(data["id"]),
            title=str(data.get("title") or ""),
            completed=_as_bool(data.get("completed"), False) or status == "completed",
            archived=_as_bool(data.get("archived"), False) or status == "archived",
            parent_id=str(parent) if parent not in (None, "") else None,
            due_at=_as_float(_pick(data, "due_at", "dueDate", "due")),
            recurrence=RecurrencePattern.from_dict(data.get("recurrence")),
            notification=DueNotification.from_dict(_pick(data, "notification", "dueDateNotification")),
        )


@dataclass(slots=True, frozen=True)
class PolicyConfig:
    quiet_hours_enabled: bool = True
    quiet_hours_start: str = "23:00"
    quiet_hours_end: str = "07:00"
    allowed_weekdays: frozenset[int] = frozenset(range(7))  # 0=Sunday
    min_interval_minutes: int = 5
    daily_limit_enabled: bool = False
    daily_limit_count: int = 10
    same_task_frequency: SameTaskFrequency = SameTaskFrequency.UNLIMITED
    same_task_custom_limit: int = 5
    overdue_frequency: OverdueFrequency = OverdueFrequency.DAILY
    overdue_enabled: bool = True
    follow_up_enabled: bool = True
    follow_up_interval_minutes: int = 30
    follow_up_max_count: int = 3

    @property
    def same_task_cap(self) -> int | None:
        """Per-task daily cap; None means unlimited."""
        if self.same_task_frequency == SameTaskFrequency.ONCE:
            return 1
        if self.same_task_frequency == SameTaskFrequency.TWICE:
            return 2
        if self.same_task_frequency == SameTaskFrequency.CUSTOM:
            return self.same_task_custom_limit
        return None

    @classmethod
    def from_dict(cls, data: Any, *, overdue_enabled: bool = True) -> PolicyConfig:
        """Tolerant parser: every malformed field keeps its default."""
        d = cls(overdue_enabled=overdue_enabled)
        if not isinstance(data, dict):
            return d

        days_raw = _pick(data, "allowed_weekdays", "allowedDays", "allowed_days")
        allowed = d.allowed_weekdays
        if isinstance(days_raw, (list, tuple, set, frozenset)):
            allowed = frozenset(v for v in (_as_int(x, -1) for x in days_raw) if 0 <= v <= 6)

        def hhmm(*names: str, default: str) -> str:
            return as_time_of_day(_pick(data, *names), default)

        return cls(
            quiet_hours_enabled=_as_bool(_pick(data, "quiet_hours_enabled", "quietHoursEnabled"), d.quiet_hours_enabled),
            quiet_hours_start=hhmm("quiet_hours_start", "quietHoursStart", default=d.quiet_hours_start),
            quiet_hours_end=hhmm("quiet_hours_end", "quietHoursEnd", default=d.quiet_hours_end),
            allowed_weekdays=allowed,
            min_interval_minutes=_as_int(
                _pick(data, "min_interval_minutes", "minIntervalMinutes"), d.min_interval_minutes, minimum=0
            ),
            daily_limit_enabled=_as_bool(_pick(data, "daily_limit_enabled", "dailyLimitEnabled"), d.daily_limit_enabled),
            daily_limit_count=_as_int(_pick(data, "daily_limit_count", "dailyLimitCount"), d.daily_limit_count, minimum=0),
            same_task_frequency=SameTaskFrequency.parse(
                _pick(data, "same_task_frequency", "sameTaskFrequency") or d.same_task_frequency
            ),
            same_task_custom_limit=_as_int(
                _pick(data, "same_task_custom_limit", "sameTaskCustomLimit"), d.same_task_custom_limit, minimum=0
            ),
            overdue_frequency=OverdueFrequency.parse(
                _pick(data, "overdue_frequency", "overdueFrequency") or d.overdue_frequency
            ),
            overdue_enabled=overdue_enabled,
            follow_up_enabled=_as_bool(_pick(data, "follow_up_enabled", "followUpEnabled"), d.follow_up_enabled),
            follow_up_interval_minutes=_as_int(
                _pick(data, "follow_up_interval_minutes", "followUpIntervalMinutes"),
                d.follow_up_interval_minutes,
                minimum=1,
            ),
            follow_up_max_count=_as_int(
                _pick(data, "follow_up_max_count", "followUpMaxCount"), d.follow_up_max_count, minimum=0
            ),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "quiet_hours_enabled": self.quiet_hours_enabled,
            "quiet_hours_start": self.quiet_hours_start,
            "quiet_hours_end": self.quiet_hours_end,
            "allowed_weekdays": sorted(self.allowed_weekdays),
            "min_interval_minutes": self.min_interval_minutes,
            "daily_limit_enabled": self.daily_limit_enabled,
            "daily_limit_count": self.daily_limit_count,
            "same_task_frequency": self.same_task_frequency.value,
            "same_task_custom_limit": self.same_task_custom_limit,
            "overdue_frequency": self.overdue_frequency.value,
            "follow_up_enabled": self.follow_up_enabled,
            "follow_up_interval_minutes": self.follow_up_interval_minutes,
            "follow_up_max_count": self.follow_up_max_count,
        }


@dataclass(slots=True, frozen=True)
class Decision:
    """
    Outcome of a policy evaluation, including the mutation the caller must apply.

    ledger_token is the event part of the ledger key ("reminder", "followup.2", "overdue.13").
    """

    kind: EventKind
    notified_at: float
    follow_up_count: int
    ledger_token: str


@dataclass(slots=True, frozen=True)
class TaskUpdate:
    task_id: str
    notified_at: float
    follow_up_count: int


@dataclass(slots=True, frozen=True)
class Message:
    title: str
    body: str
    generated: bool = False
    provider: str | None = None
    failure: FailureKind | None = None


@dataclass(slots=True, frozen=True)
class DispatchResult:
    channel: Channel
    ok: bool
    error: str | None = None
    meta: dict[str, Any] = field(default_factory=dict)


DEFAULT_PROVIDER_PRIORITY: tuple[str, ...] = ("claude", "gemini", "openai")


@dataclass(slots=True, frozen=True)
class PersonaConfig:
    """
    What the composer needs to phrase one message.

    provider is "auto" or an explicit provider name; in auto mode the first
    provider of `priority` holding a credential wins.
    """

    persona_id: str = "kanae"
    provider: str = "auto"
    priority: tuple[str, ...] = DEFAULT_PROVIDER_PRIORITY
