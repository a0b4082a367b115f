# src/tasknudge/connectors/discord_dm.py

"""
Discord direct-message channel (bot API over httpx).

Sending is two calls: open (or reuse) the DM channel with the user, then post
the message. The channel id is cached for the lifetime of the adapter.
Errors are logged and returned as a failed DispatchResult; nothing is raised.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

import httpx

from ..core.models import Channel, DispatchResult

logger = logging.getLogger(__name__)

DISCORD_MESSAGE_LIMIT = 2000


class DiscordDMChannel:
    def __init__(
        self,
        *,
        bot_token: str | None,
        user_id: str | None,
        base_url: str = "https://discord.com/api/v10",
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._token = (bot_token or "").strip() or None
        self._user_id = (user_id or "").strip() or None
        self._base_url = base_url.rstrip("/")
        self._timeout = float(timeout)
        self._transport = transport
        self._dm_channel_id: str | None = None

    @property
    def configured(self) -> bool:
        return self._token is not None and self._user_id is not None

    def _headers(self) -> dict[str, str]:
        return {"Authorization": f"Bot {self._token}", "Content-Type": "application/json"}

    async def _open_dm(self, client: httpx.AsyncClient) -> str:
        if self._dm_channel_id is not None:
            return self._dm_channel_id
        resp = await client.post(
            f"{self._base_url}/users/@me/channels",
            headers=self._headers(),
            json={"recipient_id": self._user_id},
        )
        resp.raise_for_status()
        channel_id = str(resp.json()["id"])
        self._dm_channel_id = channel_id
        logger.debug("Discord DM channel opened id=%s", channel_id)
        return channel_id

    async def send(self, text: str, metadata: Mapping[str, Any] | None = None) -> DispatchResult:
        if not self.configured:
            logger.warning("Discord DM not configured (set TASKNUDGE_DISCORD_BOT_TOKEN and TASKNUDGE_DISCORD_USER_ID)")
            return DispatchResult(channel=Channel.DM, ok=False, error="not configured")

        content = text if len(text) <= DISCORD_MESSAGE_LIMIT else text[: DISCORD_MESSAGE_LIMIT - 1] + "…"
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                channel_id = await self._open_dm(client)
                resp = await client.post(
                    f"{self._base_url}/channels/{channel_id}/messages",
                    headers=self._headers(),
                    json={"content": content},
                )
                resp.raise_for_status()
                message_id = str(resp.json().get("id", ""))
        except httpx.HTTPStatusError as e:
            logger.error("Discord DM failed: HTTP %s", e.response.status_code)
            if e.response.status_code == 404:
                # Stale DM channel id; reopen on the next send.
                self._dm_channel_id = None
            return DispatchResult(channel=Channel.DM, ok=False, error=f"http {e.response.status_code}")
        except (httpx.HTTPError, KeyError, ValueError) as e:
            logger.error("Discord DM failed: %s", e.__class__.__name__, exc_info=True)
            return DispatchResult(channel=Channel.DM, ok=False, error=e.__class__.__name__)

        task_id = (metadata or {}).get("task_id")
        logger.info("Discord DM sent task=%s message_id=%s", task_id, message_id)
        return DispatchResult(channel=Channel.DM, ok=True, meta={"message_id": message_id})
