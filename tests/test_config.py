# tests/test_config.py

from __future__ import annotations

import json
import os
import stat
import sys
from pathlib import Path

import pytest

from tasknudge.config import (
    DEFAULT_AI_MODELS,
    DEFAULT_REMINDER_CONFIG,
    ReminderConfig,
    ReminderConfigStore,
)
from tasknudge.core.models import Channel, OverdueFrequency, PolicyConfig
from tasknudge.reminders.policy import evaluate

from .fakes import TOKYO, make_task, tokyo_ts


def test_missing_and_corrupt_files_yield_defaults(tmp_path: Path) -> None:
    path = tmp_path / "reminder.json"
    assert ReminderConfigStore(path).load() == DEFAULT_REMINDER_CONFIG

    path.write_text("{broken", "utf-8")
    assert ReminderConfigStore(path).load() == DEFAULT_REMINDER_CONFIG
    assert path.read_text("utf-8") == "{broken"

    path.write_text("[1, 2]", "utf-8")
    assert ReminderConfigStore(path).load() == DEFAULT_REMINDER_CONFIG


def test_defaults() -> None:
    cfg = ReminderConfig()
    assert not cfg.enabled
    assert cfg.channels == (Channel.DESKTOP,)
    assert cfg.greeting("morning") == (False, "08:00")
    assert cfg.policy.overdue_frequency == OverdueFrequency.DAILY


def test_camel_case_keys_and_bad_types() -> None:
    cfg = ReminderConfig.from_dict(
        {
            "enabled": True,
            "aiProvider": "GEMINI",
            "aiModels": {"gemini": "gemini-pro", "claude": ""},
            "discordEnabled": True,
            "desktopNotificationEnabled": "yes",
            "morningGreeting": True,
            "morningGreetingTime": "07:15",
            "personaType": "custom",
            "customPersona": {"id": "c1", "name": "Coach", "systemPrompt": "Be strict."},
            "unknownKey": 1,
        }
    )

    assert cfg.enabled
    assert cfg.ai_provider == "gemini"
    assert cfg.ai_models["gemini"] == "gemini-pro"
    assert cfg.ai_models["claude"] == DEFAULT_AI_MODELS["claude"]
    # wrong type keeps the default
    assert cfg.desktop_notification_enabled is True
    assert cfg.channels == (Channel.DM, Channel.DESKTOP)
    assert cfg.greeting("morning") == (True, "07:15")
    assert cfg.persona_type == "custom"
    assert cfg.custom_persona is not None and cfg.custom_persona.system_prompt == "Be strict."


def test_unknown_provider_falls_back_to_auto() -> None:
    assert ReminderConfig.from_dict({"ai_provider": "llama"}).ai_provider == "auto"
    assert ReminderConfig.from_dict({"ai_provider": "offline"}).ai_provider == "offline"


def test_overdue_toggle_reaches_policy() -> None:
    cfg = ReminderConfig.from_dict({"overdueReminder": False})
    assert not cfg.policy.overdue_enabled


def test_update_persists_and_round_trips(tmp_path: Path) -> None:
    path = tmp_path / "nested" / "reminder.json"
    store = ReminderConfigStore(path)

    cfg = store.update(enabled=True, discord_enabled=True, evening_greeting=True)

    assert cfg.enabled and cfg.discord_enabled
    on_disk = json.loads(path.read_text("utf-8"))
    assert on_disk["evening_greeting"] is True
    assert store.load() == cfg
    assert not path.with_suffix(".tmp").exists()


@pytest.mark.skipif(sys.platform.startswith("win"), reason="POSIX permissions")
def test_saved_file_is_private(tmp_path: Path) -> None:
    path = tmp_path / "reminder.json"
    ReminderConfigStore(path).save(ReminderConfig(enabled=True))
    assert stat.S_IMODE(os.stat(path).st_mode) == 0o600


@pytest.mark.parametrize("raw", ["11pm", "24:00", "7", "", 2300, None])
def test_malformed_quiet_hours_keep_the_default(raw: object) -> None:
    policy = PolicyConfig.from_dict({"quietHoursEnabled": True, "quietHoursStart": raw, "quietHoursEnd": "07:00"})
    assert policy.quiet_hours_start == "23:00"


def test_malformed_quiet_hours_still_suppress_at_night(ledger) -> None:
    policy = PolicyConfig.from_dict({"quietHoursEnabled": True, "quietHoursStart": "11pm", "quietHoursEnd": "07:00"})
    now = tokyo_ts(2025, 6, 11, 23, 30)
    assert evaluate(make_task(due_at=now + 10 * 60), now, ledger, policy, tz=TOKYO) is None


def test_greeting_times_are_validated_and_normalised() -> None:
    cfg = ReminderConfig.from_dict(
        {
            "morningGreeting": True,
            "morningGreetingTime": "8am",
            "noon_greeting_time": "12:5",
            "evening_greeting_time": ["18:00"],
        }
    )
    assert cfg.greeting("morning") == (True, "08:00")
    assert cfg.noon_greeting_time == "12:05"
    assert cfg.evening_greeting_time == "18:00"
