# src/tasknudge/reminders/composer.py

"""
Message composer.

compose() always returns a usable Message and never raises:

1. resolve the provider chain (explicit choice, else credentialed providers in
   priority order, else a hard-coded default),
2. build the persona's system/user prompts for the event kind,
3. try each provider under a per-call timeout, first success wins,
4. on failure, fall back by the FIRST failure's kind:
   - credential-missing / unknown -> a canned line in the persona's voice
   - anything else                -> a remediation warning that still carries
                                     the reminder content
"""

from __future__ import annotations

import asyncio
import logging
import random
import time
from collections.abc import Callable, Mapping
from typing import Any, Final

from ..core.models import (
    EventKind,
    FailureKind,
    GreetingKind,
    Message,
    PersonaConfig,
    TaskSnapshot,
)
from ..core.persona import (
    PERSONA_HINT,
    REMINDER_LABEL,
    WARNING_STATUS,
    Persona,
    PersonaRegistry,
    custom_persona,
)
from ..core.ports import MessageProvider, ProviderResult

logger = logging.getLogger(__name__)

DEFAULT_PROVIDER: Final[str] = "claude"

CANNED_FALLBACK_KINDS: Final[frozenset[FailureKind]] = frozenset(
    {FailureKind.CREDENTIAL_MISSING, FailureKind.UNKNOWN}
)

GREETING_TITLES: Final[Mapping[GreetingKind, str]] = {
    GreetingKind.MORNING: "Good morning",
    GreetingKind.NOON: "Good afternoon",
    GreetingKind.EVENING: "Good evening",
}


def remediation(kind: FailureKind, provider: str) -> tuple[str, str]:
    """(message, hint) shown when generation failed for `kind`."""
    p = provider.upper()
    return {
        FailureKind.CREDENTIAL_MISSING: (
            f"{p} API key is not set",
            "Add the API key in the settings, or switch the AI provider.",
        ),
        FailureKind.CREDENTIAL_INVALID: (
            f"{p} API key is invalid",
            "Enter a valid API key in the settings. It may have expired.",
        ),
        FailureKind.QUOTA_EXCEEDED: (
            f"{p} API usage limit reached",
            "Check billing with the provider or switch to another provider.",
        ),
        FailureKind.RATE_LIMITED: (
            f"{p} API rate limit reached",
            "Wait a little and it will recover on its own.",
        ),
        FailureKind.NETWORK: (
            "A network error occurred",
            "Check your internet connection.",
        ),
    }.get(kind, ("An unexpected error occurred", "Wait a little and try again."))


def warning_text(kind: FailureKind, provider: str, task: TaskSnapshot, event: EventKind) -> str:
    message, hint = remediation(kind, provider)
    label = REMINDER_LABEL[task.is_recurring]
    return f'⚠️ {message}\n{hint}\n※ {PERSONA_HINT}\n\n[{label}] "{task.title}" {WARNING_STATUS[event]}'


def build_registry(config: Any = None) -> PersonaRegistry:
    """Built-in personas plus the user-defined ones stored in a ReminderConfig."""
    registry = PersonaRegistry()
    if config is None:
        return registry
    customs = list(getattr(config, "custom_personas", ()) or ())
    single = getattr(config, "custom_persona", None)
    if single is not None:
        customs.append(single)
    for cp in customs:
        registry.register(
            custom_persona(
                cp.id,
                cp.name,
                cp.system_prompt,
                reminder_template=cp.reminder_prompt_template,
                greeting_template=cp.morning_prompt_template,
            )
        )
    return registry


class MessageComposer:
    def __init__(
        self,
        providers: Mapping[str, MessageProvider],
        *,
        registry: PersonaRegistry | None = None,
        timeout: float = 20.0,
        rng: random.Random | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._providers = dict(providers)
        self.registry = registry or PersonaRegistry()
        self._timeout = float(timeout)
        self._rng = rng or random.Random()
        self._clock = clock

    # ---- provider chain ----

    def resolve_chain(self, persona_config: PersonaConfig) -> list[str]:
        """Provider names to try, in order. Never empty."""
        explicit = persona_config.provider
        if explicit and explicit != "auto":
            return [explicit]

        chain = [
            name
            for name in persona_config.priority
            if name in self._providers and self._providers[name].has_credential()
        ]
        return chain or [DEFAULT_PROVIDER]

    async def _attempt(self, name: str, system_prompt: str, user_prompt: str) -> ProviderResult:
        provider = self._providers.get(name)
        if provider is None:
            return ProviderResult.fail(FailureKind.CREDENTIAL_MISSING, f"{name} provider is not configured")
        try:
            return await asyncio.wait_for(provider.attempt(system_prompt, user_prompt), self._timeout)
        except asyncio.TimeoutError:
            logger.warning("Provider %s timed out after %.1fs", name, self._timeout)
            return ProviderResult.fail(FailureKind.NETWORK, "timeout")
        except Exception:
            # Providers should not raise; keep the composer total anyway.
            logger.exception("Provider %s raised", name)
            return ProviderResult.fail(FailureKind.UNKNOWN, "provider raised")

    async def _generate(
        self, persona_config: PersonaConfig, system_prompt: str, user_prompt: str
    ) -> tuple[str | None, str, ProviderResult | None]:
        """(text, provider, first_failure)."""
        chain = self.resolve_chain(persona_config)
        first_failure: ProviderResult | None = None
        first_name = chain[0]
        for name in chain:
            result = await self._attempt(name, system_prompt, user_prompt)
            if result.ok:
                return result.text, name, None
            logger.info("Provider %s failed: %s", name, result.failure)
            if first_failure is None:
                first_failure = result
        return None, first_name, first_failure

    # ---- public API ----

    async def compose(
        self,
        task: TaskSnapshot,
        kind: EventKind,
        persona_config: PersonaConfig,
        memory_context: str = "",
        *,
        follow_up_count: int = 0,
        now: float | None = None,
    ) -> Message:
        now = self._clock() if now is None else now
        persona = self.registry.resolve(persona_config.persona_id)
        title, plain_body = persona.notification(kind, task.title, follow_up_count, task.is_recurring)

        try:
            system_prompt = persona.system_prompt(recurring=task.is_recurring, memory_context=memory_context)
            user_prompt = persona.reminder_prompt(task, kind, now, memory_hint=bool(memory_context.strip()))
            text, provider, failure = await self._generate(persona_config, system_prompt, user_prompt)
        except Exception:
            logger.exception("Message generation crashed for task=%s", task.id)
            text, provider, failure = None, DEFAULT_PROVIDER, ProviderResult.fail(FailureKind.UNKNOWN)

        if text:
            return Message(title=title, body=text, generated=True, provider=provider)

        fkind = failure.failure if failure and failure.failure else FailureKind.UNKNOWN
        if fkind in CANNED_FALLBACK_KINDS:
            body = self._canned(persona, task, kind, follow_up_count) or plain_body
        else:
            body = warning_text(fkind, provider, task, kind)
        return Message(title=title, body=body, generated=False, provider=provider, failure=fkind)

    async def compose_greeting(
        self,
        kind: GreetingKind,
        persona_config: PersonaConfig,
        memory_context: str = "",
    ) -> Message:
        persona = self.registry.resolve(persona_config.persona_id)
        title = GREETING_TITLES[kind]
        try:
            system_prompt = persona.system_prompt(greeting=True, memory_context=memory_context)
            user_prompt = persona.greeting_prompt(kind, memory_hint=bool(memory_context.strip()))
            text, provider, failure = await self._generate(persona_config, system_prompt, user_prompt)
        except Exception:
            logger.exception("Greeting generation crashed (%s)", kind.value)
            text, provider, failure = None, DEFAULT_PROVIDER, None

        if text:
            return Message(title=title, body=text, generated=True, provider=provider)
        fkind = failure.failure if failure and failure.failure else FailureKind.UNKNOWN
        return Message(
            title=title,
            body=persona.canned_greeting(kind, self._rng),
            generated=False,
            provider=provider,
            failure=fkind,
        )

    def _canned(self, persona: Persona, task: TaskSnapshot, kind: EventKind, follow_up_count: int) -> str:
        try:
            return persona.canned_reminder(task, kind, self._rng, follow_up_count)
        except (KeyError, IndexError, ValueError):
            logger.warning("Canned template of persona %s is broken", persona.id, exc_info=True)
            return ""
