# src/tasknudge/llm/providers.py

"""
Message-generation providers.

Every provider implements one contract:

    await provider.attempt(system_prompt, user_prompt) -> ProviderResult

and never raises: exceptions are classified into a FailureKind. The OpenAI
provider goes through the official SDK; Claude and Gemini are called over
plain HTTP with httpx. SDK retries are disabled so the composer can move on
quickly within its per-call timeout.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import httpx
import openai
from openai import AsyncOpenAI

from ..core.models import FailureKind
from ..core.ports import MessageProvider, ProviderResult

logger = logging.getLogger(__name__)

MAX_TOKENS = 300

# Message heuristics, checked in order after the typed checks.
_MESSAGE_RULES: tuple[tuple[FailureKind, tuple[str, ...]], ...] = (
    (FailureKind.CREDENTIAL_MISSING, ("not set", "missing")),
    (FailureKind.CREDENTIAL_INVALID, ("401", "403", "unauthorized", "invalid", "incorrect")),
    (FailureKind.QUOTA_EXCEEDED, ("quota", "exceeded", "billing", "insufficient")),
    (FailureKind.RATE_LIMITED, ("rate limit", "429", "too many")),
    (FailureKind.NETWORK, ("network", "fetch", "timeout", "connection")),
)


def _classify_status(status: int, body: str) -> FailureKind:
    text = body.lower()
    if status in (401, 403):
        return FailureKind.CREDENTIAL_INVALID
    if status == 402 or "quota" in text or "billing" in text or "insufficient" in text:
        return FailureKind.QUOTA_EXCEEDED
    if status == 429:
        return FailureKind.RATE_LIMITED
    if status >= 500:
        return FailureKind.NETWORK
    return FailureKind.UNKNOWN


def classify_error(exc: BaseException) -> FailureKind:
    """Map an exception from any provider into a FailureKind."""
    # Typed SDK / transport errors first.
    if isinstance(exc, (openai.APITimeoutError, openai.APIConnectionError)):
        return FailureKind.NETWORK
    if isinstance(exc, (openai.AuthenticationError, openai.PermissionDeniedError)):
        return FailureKind.CREDENTIAL_INVALID
    if isinstance(exc, openai.RateLimitError):
        # OpenAI reports an exhausted quota as 429 "insufficient_quota".
        if "quota" in str(exc).lower():
            return FailureKind.QUOTA_EXCEEDED
        return FailureKind.RATE_LIMITED
    if isinstance(exc, openai.APIStatusError):
        return _classify_status(exc.status_code, str(exc))
    if isinstance(exc, httpx.HTTPStatusError):
        return _classify_status(exc.response.status_code, exc.response.text)
    if isinstance(exc, (httpx.TransportError, asyncio.TimeoutError, TimeoutError, ConnectionError)):
        return FailureKind.NETWORK

    msg = str(exc).lower()
    for kind, needles in _MESSAGE_RULES:
        if any(n in msg for n in needles):
            return kind
    return FailureKind.UNKNOWN


class _BaseProvider:
    name = "base"
    label = "LLM"

    def __init__(self, *, api_key: str | None, model: str, base_url: str, timeout: float = 20.0) -> None:
        self._api_key = (api_key or "").strip() or None
        self.model = model
        self._base_url = base_url.rstrip("/")
        self._timeout = float(timeout)

    def has_credential(self) -> bool:
        return self._api_key is not None

    def _missing(self) -> ProviderResult:
        return ProviderResult.fail(FailureKind.CREDENTIAL_MISSING, f"{self.label} API key is not set")

    async def attempt(self, system_prompt: str, user_prompt: str) -> ProviderResult:
        if not self.has_credential():
            return self._missing()
        try:
            text = await self._generate(system_prompt, user_prompt)
        except Exception as e:
            kind = classify_error(e)
            logger.warning("%s generation failed (%s): %s", self.name, kind.value, e.__class__.__name__)
            logger.debug("%s error detail", self.name, exc_info=True)
            return ProviderResult.fail(kind, str(e))
        text = (text or "").strip()
        if not text:
            return ProviderResult.fail(FailureKind.UNKNOWN, f"{self.name} returned no content")
        return ProviderResult.success(text)

    async def _generate(self, system_prompt: str, user_prompt: str) -> str:
        raise NotImplementedError


class OpenAIProvider(_BaseProvider):
    name = "openai"
    label = "OpenAI"

    def __init__(self, *, client: AsyncOpenAI | None = None, **kw: Any) -> None:
        super().__init__(**kw)
        self._client = client

    def _get_client(self) -> AsyncOpenAI:
        if self._client is None:
            self._client = AsyncOpenAI(
                api_key=self._api_key,
                base_url=self._base_url,
                timeout=httpx.Timeout(self._timeout, connect=5.0),
                max_retries=0,
            )
        return self._client

    async def _generate(self, system_prompt: str, user_prompt: str) -> str:
        resp = await self._get_client().chat.completions.create(
            model=self.model,
            max_tokens=MAX_TOKENS,
            messages=[
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
        )
        if not resp.choices:
            return ""
        return resp.choices[0].message.content or ""


class _HttpProvider(_BaseProvider):
    def __init__(self, *, transport: httpx.AsyncBaseTransport | None = None, **kw: Any) -> None:
        super().__init__(**kw)
        self._transport = transport

    async def _post(self, url: str, *, headers: dict[str, str], json: dict[str, Any]) -> Any:
        async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
            response = await client.post(url, headers=headers, json=json)
            response.raise_for_status()
            return response.json()


class ClaudeProvider(_HttpProvider):
    name = "claude"
    label = "Claude"
    api_version = "2023-06-01"

    async def _generate(self, system_prompt: str, user_prompt: str) -> str:
        data = await self._post(
            f"{self._base_url}/messages",
            headers={
                "x-api-key": self._api_key or "",
                "anthropic-version": self.api_version,
                "content-type": "application/json",
            },
            json={
                "model": self.model,
                "max_tokens": MAX_TOKENS,
                "system": system_prompt,
                "messages": [{"role": "user", "content": user_prompt}],
            },
        )
        blocks = data.get("content") or []
        return "".join(b.get("text", "") for b in blocks if isinstance(b, dict) and b.get("type") == "text")


class GeminiProvider(_HttpProvider):
    name = "gemini"
    label = "Gemini"

    async def _generate(self, system_prompt: str, user_prompt: str) -> str:
        data = await self._post(
            f"{self._base_url}/models/{self.model}:generateContent",
            headers={"x-goog-api-key": self._api_key or "", "content-type": "application/json"},
            json={
                "systemInstruction": {"parts": [{"text": system_prompt}]},
                "contents": [{"role": "user", "parts": [{"text": user_prompt}]}],
                "generationConfig": {"maxOutputTokens": MAX_TOKENS},
            },
        )
        candidates = data.get("candidates") or []
        if not candidates:
            return ""
        parts = (candidates[0].get("content") or {}).get("parts") or []
        return "".join(p.get("text", "") for p in parts if isinstance(p, dict))


def build_providers(settings: Any, models: dict[str, str]) -> dict[str, MessageProvider]:
    """One provider per backend; missing credentials are reported at attempt time."""
    timeout = float(getattr(settings, "provider_timeout_seconds", 20.0))
    return {
        "claude": ClaudeProvider(
            api_key=settings.anthropic_api_key,
            model=models.get("claude", ""),
            base_url=settings.anthropic_base_url,
            timeout=timeout,
        ),
        "gemini": GeminiProvider(
            api_key=settings.gemini_api_key,
            model=models.get("gemini", ""),
            base_url=settings.gemini_base_url,
            timeout=timeout,
        ),
        "openai": OpenAIProvider(
            api_key=settings.openai_api_key,
            model=models.get("openai", ""),
            base_url=settings.openai_base_url,
            timeout=timeout,
        ),
    }
