# src/tasknudge/core/ports.py

from __future__ import annotations

"""
Ports (interfaces) used by the reminder engine.

The engine depends on Protocols instead of concrete implementations.
This keeps providers/channels/stores swappable and makes testing easier.
"""

from collections.abc import Awaitable, Callable, Iterable, Mapping
from dataclasses import dataclass
from typing import Any, Protocol

from .models import DispatchResult, EventKind, FailureKind, TaskSnapshot, TaskUpdate

TaskAccessor = Callable[[], Iterable[TaskSnapshot]]
# Returns the current task list; called once per tick.

MutationCallback = Callable[[list[TaskUpdate]], Awaitable[None] | None]
# Receives all partial updates of one tick in a single batch. May be sync or async.


@dataclass(slots=True, frozen=True)
class ProviderResult:
    """Uniform outcome of one generation attempt: Success(text) | Failure(kind)."""

    text: str | None = None
    failure: FailureKind | None = None
    detail: str = ""

    @property
    def ok(self) -> bool:
        return self.failure is None and bool(self.text and self.text.strip())

    @classmethod
    def success(cls, text: str) -> ProviderResult:
        return cls(text=text)

    @classmethod
    def fail(cls, kind: FailureKind, detail: str = "") -> ProviderResult:
        return cls(failure=kind, detail=detail)


class MessageProvider(Protocol):
    """A chat-completion backend (Claude / OpenAI / Gemini / offline)."""

    name: str

    def has_credential(self) -> bool: ...

    def attempt(self, system_prompt: str, user_prompt: str) -> Awaitable[ProviderResult]: ...


class ChannelDispatcher(Protocol):
    """
    Outbound channels. Both calls are best-effort: errors are logged and
    reported in the DispatchResult, never raised.
    """

    def send_direct_message(self, text: str, metadata: Mapping[str, Any]) -> Awaitable[DispatchResult]: ...

    def show_local_notification(self, title: str, body: str) -> Awaitable[DispatchResult]: ...


class LedgerView(Protocol):
    """Read side of the notification ledger (all the policy engine may touch)."""

    def has_sent(self, task_id: str, token: str | EventKind, channel: str, day: str) -> bool: ...

    def count_today(self, task_id: str, now: float | None = None) -> int: ...

    def total_today(self, now: float | None = None) -> int: ...

    def day_key(self, now: float) -> str: ...
