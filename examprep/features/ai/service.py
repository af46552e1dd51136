"""
examprep/features/ai/service.py

AI Orchestrator: one entry point for a chat completion.

Each call runs SelectProvider -> Dispatch -> Classify, then one of
Retry (rate limited, same provider, capped backoff), Failover (local
provider down on its first attempt, once, to the hosted fallback),
Propagate (typed AIProviderError) or Succeed (extracted text).

The orchestrator knows nothing about retrieval or prompts; callers compose
the messages. The active provider is call-local, so concurrent calls share
only the HTTP client.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, List, Mapping, Optional

import httpx

from examprep.core.config import Settings, settings
from examprep.core.errors import (
    AIProviderError,
    AIProviderUnavailableError,
    AIRateLimitedError,
    AIRegionBlockedError,
)
from examprep.core.logging import safe_truncate, log_event
from examprep.core.metrics import ai_attempts_total, ai_failover_total
from examprep.features.ai.providers import MalformedResponse, ProviderConfig, build_providers
from examprep.features.ai.retry import RetryPolicy
from examprep.models.ai import ChatMessage, FailureKind


logger = logging.getLogger("examprep")

REGION_BLOCK_MESSAGE = "country, region, or territory not supported"

USER_MESSAGES = {
    FailureKind.RATE_LIMITED: "Слишком много запросов к AI. Попробуйте ещё раз через минуту.",
    FailureKind.REGION_BLOCKED: (
        "AI-сервис недоступен в вашем регионе. "
        "Попробуйте альтернативный способ доступа (например, VPN)."
    ),
    FailureKind.UNAVAILABLE: "AI-сервис временно недоступен. Попробуйте позже.",
    FailureKind.UNKNOWN: "Ошибка AI-сервиса. Попробуйте позже.",
}

_ERROR_TYPES = {
    FailureKind.RATE_LIMITED: AIRateLimitedError,
    FailureKind.REGION_BLOCKED: AIRegionBlockedError,
    FailureKind.UNAVAILABLE: AIProviderUnavailableError,
    FailureKind.UNKNOWN: AIProviderError,
}

SleepFn = Callable[[float], Awaitable[Any]]


class AttemptFailed(Exception):
    """One dispatch did not produce text. Internal to the retry loop."""

    def __init__(self, kind: FailureKind, *, status: Optional[int] = None, detail: Any = None):
        super().__init__(kind.value)
        self.kind = kind
        self.status = status
        self.detail = detail


def _is_region_block(payload: Any) -> bool:
    error = payload.get("error") if isinstance(payload, dict) else None
    if isinstance(error, dict):
        code = str(error.get("code") or "")
        if code.startswith("unsupported_country"):
            return True
        return REGION_BLOCK_MESSAGE in str(error.get("message") or "").casefold()
    return REGION_BLOCK_MESSAGE in str(payload or "").casefold()


def classify_failure(provider: ProviderConfig, status: int, payload: Any) -> FailureKind:
    """Map an HTTP error response to a FailureKind."""
    if status == 429:
        return FailureKind.RATE_LIMITED
    if not provider.is_local and _is_region_block(payload):
        return FailureKind.REGION_BLOCKED
    if status >= 500:
        return FailureKind.UNAVAILABLE
    return FailureKind.UNKNOWN


def _response_payload(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return response.text


class AIOrchestrator:
    def __init__(
        self,
        providers: Optional[Mapping[str, ProviderConfig]] = None,
        *,
        preferred: Optional[str] = None,
        fallback: Optional[str] = None,
        policy: Optional[RetryPolicy] = None,
        client: Optional[httpx.AsyncClient] = None,
        sleep: Optional[SleepFn] = None,
        probe_timeout: Optional[float] = None,
        cfg: Optional[Settings] = None,
    ):
        cfg = cfg or settings
        self.providers = dict(providers or build_providers(cfg))
        self.preferred = (preferred or cfg.AI_PROVIDER).strip().lower()
        fallback_name = fallback if fallback is not None else cfg.AI_FALLBACK_PROVIDER
        self.fallback = (fallback_name or "").strip().lower() or None
        self.policy = policy or RetryPolicy.from_settings(cfg)
        self.probe_timeout = probe_timeout if probe_timeout is not None else cfg.AI_PROBE_TIMEOUT_SECONDS
        self._client = client
        self._owns_client = client is None
        self._sleep: SleepFn = sleep or asyncio.sleep

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient()
        return self._client

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    def fallback_provider(self) -> Optional[ProviderConfig]:
        """The hosted fallback, or None when it is missing or has no key."""
        if not self.fallback or self.fallback == self.preferred:
            return None
        provider = self.providers.get(self.fallback)
        if provider is None or provider.is_local or not provider.is_configured:
            return None
        return provider

    async def probe_local(self, provider: Optional[ProviderConfig] = None) -> bool:
        """Liveness GET against the local provider; False on any transport error."""
        provider = provider or next((p for p in self.providers.values() if p.is_local), None)
        if provider is None or not provider.probe_url:
            return False
        try:
            response = await self.client.get(provider.probe_url, timeout=self.probe_timeout)
        except httpx.HTTPError:
            return False
        return response.status_code == 200

    async def select_provider(self) -> ProviderConfig:
        preferred = self.providers.get(self.preferred)
        if preferred is None:
            raise AIProviderUnavailableError(
                f"Неизвестный AI провайдер: {self.preferred}", provider=self.preferred
            )

        if preferred.is_local:
            if await self.probe_local(preferred):
                return preferred
            fallback = self.fallback_provider()
            if fallback is None:
                log_event(
                    "error",
                    "[ai] local provider down and no hosted fallback configured",
                    event_type="ai_unavailable",
                    error_code=FailureKind.UNAVAILABLE.value,
                    extra={"provider": preferred.name},
                )
                raise AIProviderUnavailableError(
                    USER_MESSAGES[FailureKind.UNAVAILABLE], provider=preferred.name
                )
            self._record_failover(preferred, fallback, "probe_failed")
            return fallback

        if not preferred.is_configured:
            raise AIProviderUnavailableError(
                f"API ключ для {preferred.name} не настроен", provider=preferred.name
            )
        return preferred

    async def call(
        self,
        messages: List[ChatMessage],
        max_tokens: int = 1000,
        temperature: float = 0.7,
    ) -> str:
        """Run one logical completion; returns text or raises AIProviderError."""
        provider = await self.select_provider()
        failed_over = provider.name != self.preferred
        retry_number = 0

        while True:
            try:
                text = await self._dispatch(provider, messages, max_tokens, temperature)
            except AttemptFailed as failure:
                ai_attempts_total.inc(labels={"provider": provider.name, "outcome": failure.kind.value})

                if (
                    failure.kind == FailureKind.RATE_LIMITED
                    and retry_number < self.policy.max_attempts - 1
                ):
                    delay = self.policy.delay_for(retry_number)
                    log_event(
                        "warning",
                        "[ai] rate limited, backing off",
                        event_type="ai_retry",
                        error_code=failure.kind.value,
                        extra={"provider": provider.name, "delay_seconds": delay, "attempt": retry_number + 1},
                    )
                    await self._sleep(delay)
                    retry_number += 1
                    continue

                if (
                    failure.kind == FailureKind.UNAVAILABLE
                    and provider.is_local
                    and retry_number == 0
                    and not failed_over
                ):
                    fallback = self.fallback_provider()
                    if fallback is not None:
                        self._record_failover(provider, fallback, failure.kind.value)
                        provider = fallback
                        failed_over = True
                        continue

                raise self._final_error(provider, failure)

            ai_attempts_total.inc(labels={"provider": provider.name, "outcome": "success"})
            return text

    async def _dispatch(
        self,
        provider: ProviderConfig,
        messages: List[ChatMessage],
        max_tokens: int,
        temperature: float,
    ) -> str:
        try:
            response = await self.client.post(
                provider.chat_url,
                json=provider.build_payload(messages, max_tokens, temperature),
                headers=provider.headers(),
                timeout=provider.timeout_seconds,
            )
        except httpx.TransportError as exc:
            raise AttemptFailed(FailureKind.UNAVAILABLE, detail=str(exc) or type(exc).__name__) from exc

        if response.status_code >= 400:
            payload = _response_payload(response)
            kind = classify_failure(provider, response.status_code, payload)
            raise AttemptFailed(kind, status=response.status_code, detail=payload)

        try:
            return provider.extract_text(response.json())
        except (ValueError, MalformedResponse) as exc:
            raise AttemptFailed(
                FailureKind.UNKNOWN, status=response.status_code, detail=safe_truncate(response.text)
            ) from exc

    def _record_failover(self, source: ProviderConfig, target: ProviderConfig, cause: str) -> None:
        ai_failover_total.inc(labels={"from_provider": source.name, "to_provider": target.name})
        log_event(
            "warning",
            "[ai] failing over to hosted provider",
            event_type="ai_failover",
            error_code=cause,
            extra={"provider": source.name, "fallback": target.name},
        )

    def _final_error(self, provider: ProviderConfig, failure: AttemptFailed) -> AIProviderError:
        # Upstream payload goes to the log only
        log_event(
            "error",
            "[ai] provider call failed",
            event_type="ai_call_failed",
            error_code=failure.kind.value,
            extra={"provider": provider.name, "upstream_status": failure.status, "upstream": failure.detail},
        )
        error_type = _ERROR_TYPES[failure.kind]
        return error_type(
            USER_MESSAGES[failure.kind],
            provider=provider.name,
            upstream_status=failure.status,
        )


def worst_case_call_seconds(cfg: Optional[Settings] = None) -> float:
    """Longest a single `call` can take with the configured providers and policy.

    Covers both paths: the preferred provider retrying through the whole
    budget, and (for a local preferred provider) one failed local attempt
    followed by the fallback retrying through the whole budget.
    """
    cfg = cfg or settings
    providers = build_providers(cfg)
    policy = RetryPolicy.from_settings(cfg)
    preferred = providers.get(str(cfg.AI_PROVIDER or "").lower())
    if preferred is None:
        return 0.0

    probe = cfg.AI_PROBE_TIMEOUT_SECONDS if preferred.is_local else 0.0
    paths = [[preferred.timeout_seconds] * policy.max_attempts]
    fallback = providers.get(str(cfg.AI_FALLBACK_PROVIDER or "").lower())
    if preferred.is_local and fallback is not None and not fallback.is_local:
        paths.append([preferred.timeout_seconds] + [fallback.timeout_seconds] * policy.max_attempts)
    return max(policy.worst_case_seconds(probe, path) for path in paths)
