"""Ordered provider fallback across a category's route chain."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass, field

from bulkgen.config import ProviderSettings
from bulkgen.providers.base import ProviderCallError, ProviderClient
from bulkgen.providers.claude import ClaudeClient
from bulkgen.providers.gemini import GeminiClient
from bulkgen.providers.models import (
    GenerateOptions,
    ProviderErrorCode,
    ProviderResponse,
    RetryPolicy,
)
from bulkgen.providers.openai import OpenAIClient
from bulkgen.providers.routes import RouteCategory, RouteEntry, RoutingDefaults

logger = logging.getLogger(__name__)

ALL_PROVIDERS_FAILED = "ALL_PROVIDERS_FAILED"

ClientFactory = Callable[[RouteEntry], ProviderClient]

_CLIENT_TYPES: dict[str, type[ProviderClient]] = {
    ClaudeClient.name: ClaudeClient,
    GeminiClient.name: GeminiClient,
    OpenAIClient.name: OpenAIClient,
}


@dataclass(slots=True)
class RouterResult:
    """First successful provider response, or the exhausted-chain failure."""

    success: bool
    provider: str
    model: str
    content: str = ""
    tokens_input: int = 0
    tokens_output: int = 0
    total_tokens: int = 0
    cost_usd: float = 0.0
    latency_ms: int = 0
    used_fallback: bool = False
    providers_attempted: list[str] = field(default_factory=list)
    error: str | None = None
    error_code: str | None = None
    last_error_code: str | None = None


class ProviderClientFactory:
    """Builds vendor clients from provider settings."""

    def __init__(self, settings: ProviderSettings) -> None:
        self.settings = settings

    def __call__(self, entry: RouteEntry) -> ProviderClient:
        client_type = _CLIENT_TYPES.get(entry.provider)
        if client_type is None:
            raise ValueError(f"Unsupported provider: {entry.provider!r}")
        api_key = self.settings.api_key_for(entry.provider)
        if not api_key:
            raise ProviderCallError(
                f"No API key configured for provider {entry.provider}",
                code=ProviderErrorCode.INVALID_API_KEY,
                retryable=False,
            )
        return client_type(
            api_key=api_key,
            model=entry.model,
            retry_policy=RetryPolicy(
                max_retries=self.settings.max_retries,
                base_delay_seconds=self.settings.retry_base_seconds,
                max_delay_seconds=self.settings.retry_max_seconds,
            ),
            timeout_seconds=self.settings.request_timeout_seconds,
        )


class Router:
    """Tries each provider of a category chain in order until one succeeds."""

    def __init__(self, *, routing: RoutingDefaults, client_factory: ClientFactory) -> None:
        self.routing = routing
        self._client_factory = client_factory
        self._clients: dict[str, ProviderClient] = {}
        self._lock = threading.Lock()

    def route(
        self,
        category: RouteCategory,
        prompt: str,
        options: GenerateOptions | None = None,
    ) -> RouterResult:
        """Return the first successful response in chain order."""

        chain = self.routing.chain_for(category)
        attempted: list[str] = []
        last_entry = chain[0]
        last_error: str | None = None
        last_error_code: str | None = None

        for entry in chain:
            attempted.append(entry.provider)
            last_entry = entry
            try:
                client = self.get_client(entry)
                response = client.generate(prompt, options)
            except Exception as error:  # noqa: BLE001
                last_error = str(error) or error.__class__.__name__
                last_error_code = (
                    error.code.value
                    if isinstance(error, ProviderCallError)
                    else ProviderErrorCode.UNKNOWN_ERROR.value
                )
                logger.warning(
                    "Route %s: provider %s model=%s raised: %s",
                    category.value,
                    entry.provider,
                    entry.model,
                    last_error,
                )
                continue

            if response.success:
                if len(attempted) > 1:
                    logger.info(
                        "Route %s served by fallback %s model=%s after %s",
                        category.value,
                        entry.provider,
                        entry.model,
                        attempted[:-1],
                    )
                return _success_result(response=response, attempted=attempted)

            last_error = response.error or "Provider returned an unsuccessful response"
            last_error_code = (
                response.error_code.value
                if response.error_code is not None
                else ProviderErrorCode.UNKNOWN_ERROR.value
            )
            logger.warning(
                "Route %s: provider %s model=%s failed: %s (%s)",
                category.value,
                entry.provider,
                entry.model,
                last_error,
                last_error_code,
            )

        logger.error(
            "Route %s: all providers failed, attempted=%s last_error=%s",
            category.value,
            attempted,
            last_error,
        )
        return RouterResult(
            success=False,
            provider=last_entry.provider,
            model=last_entry.model,
            used_fallback=len(attempted) > 1,
            providers_attempted=attempted,
            error=last_error,
            error_code=ALL_PROVIDERS_FAILED,
            last_error_code=last_error_code,
        )

    def get_client(self, entry: RouteEntry) -> ProviderClient:
        """Return the cached client for `(provider, model)`, building it on first use."""

        with self._lock:
            client = self._clients.get(entry.cache_key)
            if client is None:
                client = self._client_factory(entry)
                self._clients[entry.cache_key] = client
            return client

    def close(self) -> None:
        with self._lock:
            clients = list(self._clients.values())
            self._clients.clear()
        for client in clients:
            client.close()


def build_router(settings: ProviderSettings) -> Router:
    """Router wired to real vendor clients for the configured route matrix."""

    return Router(
        routing=RoutingDefaults.from_settings(settings),
        client_factory=ProviderClientFactory(settings),
    )


def _success_result(*, response: ProviderResponse, attempted: list[str]) -> RouterResult:
    return RouterResult(
        success=True,
        provider=response.provider,
        model=response.model,
        content=response.content,
        tokens_input=response.tokens_input,
        tokens_output=response.tokens_output,
        total_tokens=response.total_tokens,
        cost_usd=response.cost_usd,
        latency_ms=response.latency_ms,
        used_fallback=len(attempted) > 1,
        providers_attempted=list(attempted),
    )
