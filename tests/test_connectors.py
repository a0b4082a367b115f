# tests/test_connectors.py

from __future__ import annotations

import asyncio
import io
import json

import httpx
import pytest

from tasknudge.connectors.desktop import DesktopNotifier
from tasknudge.connectors.discord_dm import DISCORD_MESSAGE_LIMIT, DiscordDMChannel
from tasknudge.connectors.router import ChannelRouter
from tasknudge.core.models import Channel, DispatchResult


class FakeDiscord:
    """Minimal Discord REST double for httpx.MockTransport."""

    def __init__(self) -> None:
        self.opened = 0
        self.messages: list[dict] = []
        self.fail_next_message: int | None = None

    def __call__(self, request: httpx.Request) -> httpx.Response:
        assert request.headers["Authorization"] == "Bot tok"
        if request.url.path.endswith("/users/@me/channels"):
            self.opened += 1
            assert json.loads(request.content) == {"recipient_id": "42"}
            return httpx.Response(200, json={"id": f"c{self.opened}"})
        if request.url.path.endswith("/messages"):
            if self.fail_next_message is not None:
                status, self.fail_next_message = self.fail_next_message, None
                return httpx.Response(status, json={"message": "nope"})
            self.messages.append({"path": request.url.path, **json.loads(request.content)})
            return httpx.Response(200, json={"id": f"m{len(self.messages)}"})
        return httpx.Response(404)


def channel(api: FakeDiscord, *, token: str | None = "tok", user: str | None = "42") -> DiscordDMChannel:
    return DiscordDMChannel(
        bot_token=token,
        user_id=user,
        base_url="https://discord.test/api/v10",
        transport=httpx.MockTransport(api),
    )


@pytest.mark.asyncio
async def test_dm_opens_channel_once_and_sends() -> None:
    api = FakeDiscord()
    dm = channel(api)

    first = await dm.send("hello", {"task_id": "t1"})
    second = await dm.send("again", {"task_id": "t1"})

    assert first.ok and first.meta["message_id"] == "m1"
    assert second.ok
    assert api.opened == 1
    assert [m["content"] for m in api.messages] == ["hello", "again"]
    assert api.messages[0]["path"] == "/api/v10/channels/c1/messages"


@pytest.mark.asyncio
async def test_dm_truncates_long_messages() -> None:
    api = FakeDiscord()
    await channel(api).send("x" * 5000)
    content = api.messages[0]["content"]
    assert len(content) == DISCORD_MESSAGE_LIMIT
    assert content.endswith("…")


@pytest.mark.asyncio
async def test_dm_not_configured() -> None:
    api = FakeDiscord()
    result = await channel(api, token=None).send("hello")
    assert not result.ok and result.error == "not configured"
    assert api.opened == 0


@pytest.mark.asyncio
async def test_dm_http_error_is_reported() -> None:
    api = FakeDiscord()
    api.fail_next_message = 500
    result = await channel(api).send("hello")
    assert result == DispatchResult(channel=Channel.DM, ok=False, error="http 500")


@pytest.mark.asyncio
async def test_dm_404_reopens_channel() -> None:
    api = FakeDiscord()
    dm = channel(api)
    api.fail_next_message = 404
    assert not (await dm.send("lost")).ok
    assert (await dm.send("found")).ok
    assert api.opened == 2
    assert api.messages[0]["path"] == "/api/v10/channels/c2/messages"


@pytest.mark.asyncio
async def test_desktop_console_fallback() -> None:
    out = io.StringIO()
    notifier = DesktopNotifier(command=None, stream=out)
    result = await notifier.notify("Overdue", "Pay rent")

    assert not notifier.native
    assert result.ok and result.meta == {"console": True}
    assert "[NOTIFY] Overdue\nPay rent" in out.getvalue()


class _SlowDesktop:
    async def notify(self, title: str, body: str) -> DispatchResult:
        await asyncio.sleep(1.0)
        return DispatchResult(channel=Channel.DESKTOP, ok=True)


class _BrokenDM:
    async def send(self, text, metadata) -> DispatchResult:
        raise RuntimeError("boom")


@pytest.mark.asyncio
async def test_router_guards_timeouts_and_crashes() -> None:
    router = ChannelRouter(dm=_BrokenDM(), desktop=_SlowDesktop(), timeout=0.05)  # type: ignore[arg-type]

    dm = await router.send_direct_message("hi", {})
    desk = await router.show_local_notification("t", "b")

    assert dm == DispatchResult(channel=Channel.DM, ok=False, error="RuntimeError")
    assert desk == DispatchResult(channel=Channel.DESKTOP, ok=False, error="timeout")


@pytest.mark.asyncio
async def test_router_without_adapters() -> None:
    router = ChannelRouter()
    assert not (await router.send_direct_message("hi", {})).ok
    assert not (await router.show_local_notification("t", "b")).ok
