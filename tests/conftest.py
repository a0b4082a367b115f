# tests/conftest.py

from __future__ import annotations

from pathlib import Path
from types import SimpleNamespace

import pytest

from tasknudge.core.models import PolicyConfig
from tasknudge.reminders.ledger import NotificationLedger

from .fakes import TOKYO, FakeClock, FakeDispatcher, tokyo_ts


@pytest.fixture()
def tz():
    return TOKYO


@pytest.fixture()
def clock() -> FakeClock:
    # Wednesday 2025-06-11 10:00 in Tokyo: inside allowed hours by default.
    return FakeClock(tokyo_ts(2025, 6, 11, 10, 0))


@pytest.fixture()
def ledger(tmp_path: Path, clock: FakeClock) -> NotificationLedger:
    return NotificationLedger(tmp_path / "ledger.json", tz=TOKYO, clock=clock)


@pytest.fixture()
def policy() -> PolicyConfig:
    return PolicyConfig()


@pytest.fixture()
def dispatcher() -> FakeDispatcher:
    return FakeDispatcher()


@pytest.fixture()
def settings(tmp_path: Path) -> SimpleNamespace:
    """
    Minimal settings object for provider / bootstrap wiring.

    A SimpleNamespace rather than the real Settings keeps unit tests isolated
    from the environment and any .env file.
    """
    return SimpleNamespace(
        anthropic_api_key=None,
        openai_api_key=None,
        gemini_api_key=None,
        anthropic_base_url="https://anthropic.test/v1",
        openai_base_url="https://openai.test/v1",
        gemini_base_url="https://gemini.test/v1beta",
        provider_timeout_seconds=5.0,
    )
