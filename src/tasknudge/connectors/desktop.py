# src/tasknudge/connectors/desktop.py

"""
Desktop notifications.

Uses `notify-send` when it is on PATH; otherwise the notification is printed
to the console (and logged), so the channel is always available.
"""

from __future__ import annotations

import asyncio
import logging
import shutil
import sys
from datetime import datetime
from typing import TextIO

from ..core.models import Channel, DispatchResult

logger = logging.getLogger(__name__)


def _ts_local() -> str:
    return datetime.now().astimezone().strftime("%Y-%m-%d %H:%M:%S")


class DesktopNotifier:
    def __init__(
        self,
        *,
        app_name: str = "tasknudge",
        command: str | None = "notify-send",
        stream: TextIO | None = None,
    ) -> None:
        self._app_name = app_name
        self._command = shutil.which(command) if command else None
        self._stream = stream

    @property
    def native(self) -> bool:
        return self._command is not None

    async def notify(self, title: str, body: str) -> DispatchResult:
        if self._command is None:
            return self._console(title, body)

        try:
            proc = await asyncio.create_subprocess_exec(
                self._command,
                "--app-name",
                self._app_name,
                title,
                body,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
            )
            _, err = await proc.communicate()
        except OSError as e:
            logger.warning("notify-send failed (%s); printing instead", e.__class__.__name__)
            return self._console(title, body)

        if proc.returncode != 0:
            detail = (err or b"").decode("utf-8", "replace").strip()
            logger.warning("notify-send exited with %s: %s", proc.returncode, detail)
            return DispatchResult(channel=Channel.DESKTOP, ok=False, error=f"exit {proc.returncode}")

        logger.debug("Desktop notification shown: %s", title)
        return DispatchResult(channel=Channel.DESKTOP, ok=True)

    def _console(self, title: str, body: str) -> DispatchResult:
        stream = self._stream or sys.stdout
        print(f"[{_ts_local()}] [NOTIFY] {title}\n{body}", file=stream, flush=True)
        logger.info("Desktop notification (console): %s", title)
        return DispatchResult(channel=Channel.DESKTOP, ok=True, meta={"console": True})
