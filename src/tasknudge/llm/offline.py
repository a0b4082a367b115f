# src/tasknudge/llm/offline.py

from __future__ import annotations

from ..core.ports import ProviderResult


class OfflineProvider:
    """
    Offline deterministic provider used for demos when no external API is configured.

    Behavior:
    - Always "succeeds" without network access.
    - Echoes the first line of the user prompt, so the output still names the task.
    """

    name = "offline"

    def has_credential(self) -> bool:
        return True

    async def attempt(self, system_prompt: str, user_prompt: str) -> ProviderResult:
        first = next((ln.strip() for ln in (user_prompt or "").splitlines() if ln.strip()), "")
        return ProviderResult.success(f"[offline] {first or 'Reminder.'}")
