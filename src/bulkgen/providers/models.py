"""Domain models shared by provider clients and the router."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from bulkgen.retry import backoff_delay


class ProviderErrorCode(str, Enum):
    """Normalized provider failure codes."""

    RATE_LIMITED = "RATE_LIMITED"
    INVALID_API_KEY = "INVALID_API_KEY"
    TIMEOUT = "TIMEOUT"
    NETWORK_ERROR = "NETWORK_ERROR"
    INVALID_REQUEST = "INVALID_REQUEST"
    CONTENT_FILTERED = "CONTENT_FILTERED"
    PROVIDER_ERROR = "PROVIDER_ERROR"
    UNKNOWN_ERROR = "UNKNOWN_ERROR"


@dataclass(slots=True)
class GenerateOptions:
    """Sampling options forwarded to a provider."""

    temperature: float = 0.7
    max_tokens: int = 4_096
    system_prompt: str | None = None


@dataclass(slots=True)
class Completion:
    """Raw generation output returned by a vendor call."""

    content: str
    tokens_input: int
    tokens_output: int


@dataclass(slots=True)
class ProviderResponse:
    """Outcome of one `ProviderClient.generate` call, after retries."""

    success: bool
    provider: str
    model: str
    content: str = ""
    tokens_input: int = 0
    tokens_output: int = 0
    total_tokens: int = 0
    cost_usd: float = 0.0
    latency_ms: int = 0
    attempts: int = 1
    error: str | None = None
    error_code: ProviderErrorCode | None = None


@dataclass(slots=True)
class RetryPolicy:
    """Bounded retry policy for retryable provider failures."""

    max_retries: int = 3
    base_delay_seconds: float = 1.0
    max_delay_seconds: float = 30.0

    def delay_for(self, attempt: int) -> float:
        """Delay after the failed 0-based `attempt`: `min(base * 2**attempt, max)`."""

        return backoff_delay(
            retry_number=attempt + 1,
            base_seconds=self.base_delay_seconds,
            max_seconds=self.max_delay_seconds,
        )
