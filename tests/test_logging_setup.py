# tests/test_logging_setup.py

from __future__ import annotations

import logging

import pytest

from tasknudge.logging_setup import _ConsoleNoiseFilter


def record(name: str, level: int) -> logging.LogRecord:
    return logging.LogRecord(name, level, __file__, 1, "msg", None, None)


@pytest.mark.parametrize(
    ("name", "level", "shown"),
    [
        ("tasknudge", logging.INFO, True),
        ("tasknudge.reminders.scheduler", logging.DEBUG, True),
        ("tasknudge.connectors.discord_dm", logging.INFO, False),
        ("tasknudge.connectors.discord_dm", logging.WARNING, True),
        ("tasknudge.llm.providers", logging.INFO, False),
        ("httpx", logging.WARNING, False),
        ("py.warnings", logging.ERROR, True),
        ("tasknudgeish", logging.INFO, False),
    ],
)
def test_console_filter(name: str, level: int, shown: bool) -> None:
    assert _ConsoleNoiseFilter().filter(record(name, level)) is shown
