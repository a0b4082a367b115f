# src/tasknudge/connectors/router.py

"""
ChannelDispatcher implementation: routes DMs and desktop notifications to
their adapters, each call bounded by a timeout. Never raises.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping
from typing import Any

from ..core.models import Channel, DispatchResult
from .desktop import DesktopNotifier
from .discord_dm import DiscordDMChannel

logger = logging.getLogger(__name__)


class ChannelRouter:
    def __init__(
        self,
        *,
        dm: DiscordDMChannel | None = None,
        desktop: DesktopNotifier | None = None,
        timeout: float = 10.0,
    ) -> None:
        self._dm = dm
        self._desktop = desktop
        self._timeout = float(timeout)

    async def _guard(self, channel: Channel, coro: Any) -> DispatchResult:
        try:
            return await asyncio.wait_for(coro, self._timeout)
        except asyncio.TimeoutError:
            logger.warning("%s dispatch timed out after %.1fs", channel.value, self._timeout)
            return DispatchResult(channel=channel, ok=False, error="timeout")
        except Exception as e:
            logger.exception("%s dispatch crashed", channel.value)
            return DispatchResult(channel=channel, ok=False, error=e.__class__.__name__)

    async def send_direct_message(self, text: str, metadata: Mapping[str, Any]) -> DispatchResult:
        if self._dm is None:
            return DispatchResult(channel=Channel.DM, ok=False, error="no dm adapter")
        return await self._guard(Channel.DM, self._dm.send(text, metadata))

    async def show_local_notification(self, title: str, body: str) -> DispatchResult:
        if self._desktop is None:
            return DispatchResult(channel=Channel.DESKTOP, ok=False, error="no desktop adapter")
        return await self._guard(Channel.DESKTOP, self._desktop.notify(title, body))
