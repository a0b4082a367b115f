# src/tasknudge/errors.py

from __future__ import annotations


class TaskNudgeError(Exception):
    """Base class for errors raised by tasknudge itself."""


class ConfigError(TaskNudgeError):
    pass


class RecurrenceError(TaskNudgeError, ValueError):
    """Invalid recurrence pattern (bad interval, weekday, day or month)."""


class LedgerError(TaskNudgeError):
    pass


class SchedulerStateError(TaskNudgeError):
    """Raised when start() is called on a scheduler that is already running."""
