# src/tasknudge/config.py

"""Centralized settings.

Two layers:
- Settings: secrets, paths and runtime knobs from environment variables (+ optional .env).
- ReminderConfig: the user-facing reminder configuration, persisted as a flat JSON
  object and merged over DEFAULT_REMINDER_CONFIG. Corrupt or missing files fall back
  to defaults instead of failing.

No secrets are required at import time.
"""

from __future__ import annotations

import contextlib
import json
import logging
import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any

from dotenv import load_dotenv

from .core.models import Channel, PersonaConfig, PolicyConfig, as_time_of_day

logger = logging.getLogger(__name__)

ENV_PREFIX = "TASKNUDGE"


def _k(suffix: str) -> str:
    """Build env var name with the project prefix."""
    return f"{ENV_PREFIX}_{suffix}"


def _load_dotenv() -> None:
    """Load .env from the working directory; real environment variables win."""
    load_dotenv(override=False)


def _env(name: str, default: str = "") -> str:
    v = os.getenv(name)
    return default if v is None else v


def _first_env(*names: str, default: str | None = None) -> str | None:
    for n in names:
        v = os.getenv(n)
        if v is not None and v.strip() != "":
            return v
    return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_path(name: str, default: Path) -> Path:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return Path(raw).expanduser()


@dataclass(frozen=True, slots=True)
class Settings:
    # ---- App / logging ----
    app_name: str
    log_level: str

    # ---- Reference timezone for day keys, quiet hours and greetings ----
    timezone: str

    # ---- Provider credentials (None => not configured) ----
    anthropic_api_key: str | None
    openai_api_key: str | None
    gemini_api_key: str | None

    anthropic_base_url: str
    openai_base_url: str
    gemini_base_url: str

    # ---- Discord DM channel ----
    discord_bot_token: str | None
    discord_user_id: str | None
    discord_base_url: str

    # ---- Local data paths (ignored by git) ----
    data_dir: Path
    config_path: Path
    ledger_path: Path
    tasks_path: Path

    # ---- Timing ----
    tick_seconds: float
    provider_timeout_seconds: float
    dispatch_timeout_seconds: float
    ledger_retention_days: int

    @staticmethod
    def from_env() -> "Settings":
        _load_dotenv()

        app_name = _env(_k("APP_NAME"), "tasknudge")
        log_level = _env(_k("LOG_LEVEL"), "INFO")
        timezone = _env(_k("TIMEZONE"), "Asia/Tokyo").strip() or "Asia/Tokyo"

        data_dir = _env_path(_k("DATA_DIR"), Path(".local/tasknudge"))

        return Settings(
            app_name=app_name,
            log_level=log_level,
            timezone=timezone,
            anthropic_api_key=_first_env(_k("ANTHROPIC_API_KEY"), "ANTHROPIC_API_KEY"),
            openai_api_key=_first_env(_k("OPENAI_API_KEY"), "OPENAI_API_KEY"),
            gemini_api_key=_first_env(_k("GEMINI_API_KEY"), "GEMINI_API_KEY"),
            anthropic_base_url=_env(_k("ANTHROPIC_BASE_URL"), "https://api.anthropic.com/v1"),
            openai_base_url=_env(_k("OPENAI_BASE_URL"), "https://api.openai.com/v1"),
            gemini_base_url=_env(_k("GEMINI_BASE_URL"), "https://generativelanguage.googleapis.com/v1beta"),
            discord_bot_token=_first_env(_k("DISCORD_BOT_TOKEN"), "DISCORD_BOT_TOKEN"),
            discord_user_id=_first_env(_k("DISCORD_USER_ID"), "DISCORD_USER_ID"),
            discord_base_url=_env(_k("DISCORD_BASE_URL"), "https://discord.com/api/v10"),
            data_dir=data_dir,
            config_path=_env_path(_k("CONFIG_PATH"), data_dir / "reminder_config.json"),
            ledger_path=_env_path(_k("LEDGER_PATH"), data_dir / "ledger.json"),
            tasks_path=_env_path(_k("TASKS_PATH"), data_dir / "tasks.json"),
            tick_seconds=max(1.0, _env_float(_k("TICK_SECONDS"), 60.0)),
            provider_timeout_seconds=max(1.0, _env_float(_k("PROVIDER_TIMEOUT_SECONDS"), 20.0)),
            dispatch_timeout_seconds=max(1.0, _env_float(_k("DISPATCH_TIMEOUT_SECONDS"), 10.0)),
            ledger_retention_days=max(0, _env_int(_k("LEDGER_RETENTION_DAYS"), 30)),
        )

    def credential_for(self, provider: str) -> str | None:
        key = {
            "claude": self.anthropic_api_key,
            "openai": self.openai_api_key,
            "gemini": self.gemini_api_key,
        }.get(provider)
        return key.strip() if key and key.strip() else None


_SETTINGS: Settings | None = None


def get_settings() -> Settings:
    global _SETTINGS
    if _SETTINGS is None:
        _SETTINGS = Settings.from_env()
    return _SETTINGS


# --------------------------------------------------------------------------------------
# Persisted reminder configuration
# --------------------------------------------------------------------------------------

PROVIDER_NAMES = ("claude", "openai", "gemini")

DEFAULT_AI_MODELS: dict[str, str] = {
    "openai": "gpt-4.1-mini",
    "claude": "claude-sonnet-4-20250514",
    "gemini": "gemini-2.0-flash",
}


@dataclass(frozen=True, slots=True)
class CustomPersonaConfig:
    id: str
    name: str
    system_prompt: str
    reminder_prompt_template: str = ""
    morning_prompt_template: str = ""

    @classmethod
    def from_dict(cls, data: Any, *, default_id: str = "custom") -> CustomPersonaConfig | None:
        if not isinstance(data, dict):
            return None
        system_prompt = data.get("system_prompt", data.get("systemPrompt"))
        if not isinstance(system_prompt, str) or not system_prompt.strip():
            return None
        pid = data.get("id")
        return cls(
            id=str(pid) if pid else default_id,
            name=str(data.get("name") or pid or default_id),
            system_prompt=system_prompt,
            reminder_prompt_template=str(
                data.get("reminder_prompt_template", data.get("reminderPromptTemplate")) or ""
            ),
            morning_prompt_template=str(
                data.get("morning_prompt_template", data.get("morningPromptTemplate")) or ""
            ),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "system_prompt": self.system_prompt,
            "reminder_prompt_template": self.reminder_prompt_template,
            "morning_prompt_template": self.morning_prompt_template,
        }


@dataclass(frozen=True, slots=True)
class ReminderConfig:
    enabled: bool = False
    ai_provider: str = "auto"
    ai_models: dict[str, str] = field(default_factory=lambda: dict(DEFAULT_AI_MODELS))

    discord_enabled: bool = False
    desktop_notification_enabled: bool = True

    reminder_timing: int = 60
    overdue_reminder: bool = True

    morning_greeting: bool = False
    morning_greeting_time: str = "08:00"
    noon_greeting: bool = False
    noon_greeting_time: str = "12:00"
    evening_greeting: bool = False
    evening_greeting_time: str = "18:00"

    use_memory: bool = False
    memory_file_path: str = ""

    persona_type: str = "preset"
    persona_preset_id: str = "kanae"
    custom_persona: CustomPersonaConfig | None = None
    custom_personas: tuple[CustomPersonaConfig, ...] = ()

    notification_timing: PolicyConfig = field(default_factory=PolicyConfig)

    @property
    def policy(self) -> PolicyConfig:
        return replace(self.notification_timing, overdue_enabled=self.overdue_reminder)

    def model_for(self, provider: str) -> str:
        return self.ai_models.get(provider) or DEFAULT_AI_MODELS.get(provider, "")

    @property
    def active_persona_id(self) -> str:
        if self.persona_type == "custom" and self.custom_persona is not None:
            return self.custom_persona.id
        return self.persona_preset_id

    @property
    def persona_config(self) -> PersonaConfig:
        return PersonaConfig(persona_id=self.active_persona_id, provider=self.ai_provider)

    @property
    def channels(self) -> tuple[Channel, ...]:
        """Enabled outbound channels, DM first."""
        out: list[Channel] = []
        if self.discord_enabled:
            out.append(Channel.DM)
        if self.desktop_notification_enabled:
            out.append(Channel.DESKTOP)
        return tuple(out)

    def greeting(self, kind: str) -> tuple[bool, str]:
        """(enabled, "HH:MM") for morning / noon / evening."""
        return {
            "morning": (self.morning_greeting, self.morning_greeting_time),
            "noon": (self.noon_greeting, self.noon_greeting_time),
            "evening": (self.evening_greeting, self.evening_greeting_time),
        }[kind]

    @classmethod
    def from_dict(cls, data: Any) -> ReminderConfig:
        """
        Merge `data` key-by-key over the defaults.

        Wrong-typed values keep the default for that key; unknown keys are ignored.
        """
        d = cls()
        if not isinstance(data, dict):
            return d

        def get_bool(key: str, *alts: str) -> bool:
            for k in (key, *alts):
                v = data.get(k)
                if isinstance(v, bool):
                    return v
            return getattr(d, key)

        def get_str(key: str, *alts: str) -> str:
            for k in (key, *alts):
                v = data.get(k)
                if isinstance(v, str):
                    return v
            return getattr(d, key)

        def get_time(key: str, *alts: str) -> str:
            # Malformed "HH:MM" keeps the default.
            for k in (key, *alts):
                if k in data:
                    return as_time_of_day(data[k], getattr(d, key))
            return getattr(d, key)

        def get_int(key: str, *alts: str) -> int:
            for k in (key, *alts):
                v = data.get(k)
                if isinstance(v, int) and not isinstance(v, bool) and v >= 0:
                    return v
            return getattr(d, key)

        ai_provider = get_str("ai_provider", "aiProvider").strip().lower()
        if ai_provider not in ("auto", "offline", *PROVIDER_NAMES):
            ai_provider = "auto"

        models = dict(DEFAULT_AI_MODELS)
        raw_models = data.get("ai_models", data.get("aiModels"))
        if isinstance(raw_models, dict):
            models.update({str(k): str(v) for k, v in raw_models.items() if isinstance(v, str) and v.strip()})

        custom = CustomPersonaConfig.from_dict(data.get("custom_persona", data.get("customPersona")))

        customs: list[CustomPersonaConfig] = []
        raw_customs = data.get("custom_personas", data.get("customPresets"))
        if isinstance(raw_customs, list):
            for i, item in enumerate(raw_customs):
                cp = CustomPersonaConfig.from_dict(item, default_id=f"custom-{i}")
                if cp is not None:
                    customs.append(cp)

        overdue_reminder = get_bool("overdue_reminder", "overdueReminder")
        timing = PolicyConfig.from_dict(
            data.get("notification_timing", data.get("notificationTiming")),
            overdue_enabled=overdue_reminder,
        )

        return cls(
            enabled=get_bool("enabled"),
            ai_provider=ai_provider,
            ai_models=models,
            discord_enabled=get_bool("discord_enabled", "discordEnabled"),
            desktop_notification_enabled=get_bool("desktop_notification_enabled", "desktopNotificationEnabled"),
            reminder_timing=get_int("reminder_timing", "reminderTiming"),
            overdue_reminder=overdue_reminder,
            morning_greeting=get_bool("morning_greeting", "morningGreeting"),
            morning_greeting_time=get_time("morning_greeting_time", "morningGreetingTime"),
            noon_greeting=get_bool("noon_greeting", "noonGreeting"),
            noon_greeting_time=get_time("noon_greeting_time", "noonGreetingTime"),
            evening_greeting=get_bool("evening_greeting", "eveningGreeting"),
            evening_greeting_time=get_time("evening_greeting_time", "eveningGreetingTime"),
            use_memory=get_bool("use_memory", "useMemory"),
            memory_file_path=get_str("memory_file_path", "memoryFilePath"),
            persona_type="custom" if get_str("persona_type", "personaType") == "custom" else "preset",
            persona_preset_id=get_str("persona_preset_id", "personaPresetId") or d.persona_preset_id,
            custom_persona=custom,
            custom_personas=tuple(customs),
            notification_timing=timing,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "enabled": self.enabled,
            "ai_provider": self.ai_provider,
            "ai_models": dict(self.ai_models),
            "discord_enabled": self.discord_enabled,
            "desktop_notification_enabled": self.desktop_notification_enabled,
            "reminder_timing": self.reminder_timing,
            "overdue_reminder": self.overdue_reminder,
            "morning_greeting": self.morning_greeting,
            "morning_greeting_time": self.morning_greeting_time,
            "noon_greeting": self.noon_greeting,
            "noon_greeting_time": self.noon_greeting_time,
            "evening_greeting": self.evening_greeting,
            "evening_greeting_time": self.evening_greeting_time,
            "use_memory": self.use_memory,
            "memory_file_path": self.memory_file_path,
            "persona_type": self.persona_type,
            "persona_preset_id": self.persona_preset_id,
            "custom_persona": self.custom_persona.to_dict() if self.custom_persona else None,
            "custom_personas": [p.to_dict() for p in self.custom_personas],
            "notification_timing": self.notification_timing.to_dict(),
        }


DEFAULT_REMINDER_CONFIG = ReminderConfig()


class ReminderConfigStore:
    """
    JSON file holding the ReminderConfig.

    load() never raises: a missing file yields defaults, a corrupt file is logged
    and yields defaults too (the file is left untouched for inspection).
    """

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> ReminderConfig:
        if not self._path.exists():
            return DEFAULT_REMINDER_CONFIG
        try:
            data = json.loads(self._path.read_text("utf-8"))
        except (OSError, ValueError):
            logger.warning("Reminder config at %s is unreadable; using defaults.", self._path, exc_info=True)
            return DEFAULT_REMINDER_CONFIG
        if not isinstance(data, dict):
            logger.warning("Reminder config at %s is not a JSON object; using defaults.", self._path)
            return DEFAULT_REMINDER_CONFIG
        return ReminderConfig.from_dict(data)

    def save(self, config: ReminderConfig) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self._path.with_suffix(".tmp")
        tmp.write_text(json.dumps(config.to_dict(), ensure_ascii=False, indent=2), "utf-8")
        os.replace(tmp, self._path)
        with contextlib.suppress(Exception):
            # Best-effort: config may name a memory file path, keep it private.
            os.chmod(self._path, 0o600)
        logger.info("Saved reminder config to %s", self._path)

    def update(self, **changes: Any) -> ReminderConfig:
        """Shallow-merge `changes` into the stored config and persist it."""
        current = self.load().to_dict()
        current.update(changes)
        cfg = ReminderConfig.from_dict(current)
        self.save(cfg)
        return cfg
