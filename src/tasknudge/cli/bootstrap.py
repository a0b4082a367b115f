# src/tasknudge/cli/bootstrap.py

"""
CLI bootstrap helpers.

This module is the "composition root":
- loads settings once,
- ensures local (gitignored) directories exist,
- wires providers, channels, ledger, composer and scheduler into one App.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import tzinfo
from zoneinfo import ZoneInfoNotFoundError

from ..config import ReminderConfig, ReminderConfigStore, Settings, get_settings
from ..connectors.desktop import DesktopNotifier
from ..connectors.discord_dm import DiscordDMChannel
from ..connectors.router import ChannelRouter
from ..core.recurrence import get_zone
from ..errors import ConfigError
from ..llm.offline import OfflineProvider
from ..llm.providers import build_providers
from ..reminders.composer import MessageComposer, build_registry
from ..reminders.ledger import NotificationLedger
from ..reminders.scheduler import ReminderScheduler
from ..tasks.task_store import JsonTaskStore

logger = logging.getLogger(__name__)


@dataclass
class App:
    settings: Settings
    tz: tzinfo
    config_store: ReminderConfigStore
    ledger: NotificationLedger
    composer: MessageComposer
    router: ChannelRouter
    scheduler: ReminderScheduler
    store: JsonTaskStore

    def config(self) -> ReminderConfig:
        """Fresh read of the persisted reminder config (edits apply on the next tick)."""
        return self.config_store.load()

    def bind_scheduler(self) -> None:
        self.scheduler.bind(self.store.list_snapshots, self.store.apply_updates, self.config)


def _ensure_local_dirs(settings: Settings) -> None:
    settings.data_dir.mkdir(parents=True, exist_ok=True)
    settings.config_path.parent.mkdir(parents=True, exist_ok=True)
    settings.ledger_path.parent.mkdir(parents=True, exist_ok=True)
    settings.tasks_path.parent.mkdir(parents=True, exist_ok=True)


def create_app(*, settings: Settings | None = None) -> App:
    """
    Build the App from the provided settings.

    If settings is None, falls back to get_settings().
    """
    if settings is None:
        settings = get_settings()

    _ensure_local_dirs(settings)
    try:
        tz = get_zone(settings.timezone)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise ConfigError(f"unknown timezone {settings.timezone!r}") from e

    config_store = ReminderConfigStore(settings.config_path)
    cfg = config_store.load()

    providers = build_providers(settings, cfg.ai_models)
    # Selectable with ai_provider="offline"; never part of the auto chain.
    providers["offline"] = OfflineProvider()

    composer = MessageComposer(
        providers,
        registry=build_registry(cfg),
        timeout=settings.provider_timeout_seconds,
    )

    router = ChannelRouter(
        dm=DiscordDMChannel(
            bot_token=settings.discord_bot_token,
            user_id=settings.discord_user_id,
            base_url=settings.discord_base_url,
            timeout=settings.dispatch_timeout_seconds,
        ),
        desktop=DesktopNotifier(app_name=settings.app_name),
        timeout=settings.dispatch_timeout_seconds,
    )

    ledger = NotificationLedger(
        settings.ledger_path,
        tz=tz,
        retention_days=settings.ledger_retention_days,
    )

    scheduler = ReminderScheduler(
        composer=composer,
        dispatcher=router,
        ledger=ledger,
        tz=tz,
        tick_seconds=settings.tick_seconds,
        dispatch_timeout=settings.dispatch_timeout_seconds + 1.0,
    )

    app = App(
        settings=settings,
        tz=tz,
        config_store=config_store,
        ledger=ledger,
        composer=composer,
        router=router,
        scheduler=scheduler,
        store=JsonTaskStore(settings.tasks_path),
    )
    logger.info(
        "App ready tz=%s config=%s enabled=%s provider=%s",
        settings.timezone,
        settings.config_path,
        cfg.enabled,
        cfg.ai_provider,
    )
    return app
