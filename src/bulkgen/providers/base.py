"""Provider client base: bounded retries, failure classification and cost accounting."""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from collections.abc import Callable
from typing import Any, ClassVar

import httpx

from bulkgen.providers.failure_classifier import classify_provider_failure
from bulkgen.providers.models import (
    Completion,
    GenerateOptions,
    ProviderErrorCode,
    ProviderResponse,
    RetryPolicy,
)
from bulkgen.providers.pricing import calculate_cost_usd

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 30.0


class ProviderCallError(RuntimeError):
    """Classified failure of a single vendor call."""

    def __init__(
        self,
        message: str,
        *,
        code: ProviderErrorCode,
        retryable: bool,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.retryable = retryable
        self.status_code = status_code


class ProviderClient(ABC):
    """Wraps one vendor generation endpoint for one model."""

    name: ClassVar[str]
    default_base_url: ClassVar[str]

    def __init__(  # noqa: PLR0913
        self,
        *,
        api_key: str,
        model: str,
        retry_policy: RetryPolicy | None = None,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        base_url: str | None = None,
        http_client: httpx.Client | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if not api_key.strip():
            raise ProviderCallError(
                f"Missing API key for provider {self.name}",
                code=ProviderErrorCode.INVALID_API_KEY,
                retryable=False,
            )
        self.model = model
        self.retry_policy = retry_policy or RetryPolicy()
        self._api_key = api_key
        self._sleep = sleep
        self._owns_client = http_client is None
        self._client = http_client or httpx.Client(
            base_url=base_url or self.default_base_url,
            timeout=httpx.Timeout(timeout_seconds, connect=10.0),
        )

    def generate(self, prompt: str, options: GenerateOptions | None = None) -> ProviderResponse:
        """Generate a completion, retrying retryable failures with exponential backoff."""

        effective = options or GenerateOptions()
        started = time.monotonic()
        max_attempts = max(1, self.retry_policy.max_retries + 1)

        for attempt in range(max_attempts):
            try:
                completion = self._send(prompt, effective)
            except Exception as error:  # noqa: BLE001
                failure = self._to_call_error(error)
                if failure.retryable and attempt < max_attempts - 1:
                    delay = self.retry_policy.delay_for(attempt)
                    logger.warning(
                        "Provider %s model=%s attempt %d/%d failed (%s), retrying in %.1fs",
                        self.name,
                        self.model,
                        attempt + 1,
                        max_attempts,
                        failure.code.value,
                        delay,
                    )
                    self._sleep(delay)
                    continue
                logger.warning(
                    "Provider %s model=%s failed after %d attempt(s): %s (%s)",
                    self.name,
                    self.model,
                    attempt + 1,
                    failure,
                    failure.code.value,
                )
                return ProviderResponse(
                    success=False,
                    provider=self.name,
                    model=self.model,
                    latency_ms=_elapsed_ms(started),
                    attempts=attempt + 1,
                    error=str(failure),
                    error_code=failure.code,
                )

            cost = calculate_cost_usd(
                provider=self.name,
                model=self.model,
                tokens_input=completion.tokens_input,
                tokens_output=completion.tokens_output,
            )
            return ProviderResponse(
                success=True,
                provider=self.name,
                model=self.model,
                content=completion.content,
                tokens_input=completion.tokens_input,
                tokens_output=completion.tokens_output,
                total_tokens=completion.tokens_input + completion.tokens_output,
                cost_usd=cost,
                latency_ms=_elapsed_ms(started),
                attempts=attempt + 1,
            )

        raise RuntimeError("Provider retry loop exited without a result.")

    @abstractmethod
    def _send(self, prompt: str, options: GenerateOptions) -> Completion:
        """Perform one vendor call; raise on failure."""

    def _post_json(
        self,
        path: str,
        *,
        payload: dict[str, Any],
        headers: dict[str, str],
    ) -> dict[str, Any]:
        response = self._client.post(path, json=payload, headers=headers)
        if not response.is_success:
            message = self._error_message(response)
            classification = classify_provider_failure(
                provider=self.name,
                status_code=response.status_code,
                message=message,
            )
            raise ProviderCallError(
                f"{self.name} HTTP {response.status_code}: {message}",
                code=classification.code,
                retryable=classification.retryable,
                status_code=response.status_code,
            )
        body = response.json()
        if not isinstance(body, dict):
            raise ProviderCallError(
                f"{self.name} returned a non-object JSON body",
                code=ProviderErrorCode.PROVIDER_ERROR,
                retryable=False,
                status_code=response.status_code,
            )
        return body

    def _error_message(self, response: httpx.Response) -> str:
        try:
            body = response.json()
        except ValueError:
            return response.text.strip()[:500] or response.reason_phrase
        if isinstance(body, dict):
            error = body.get("error")
            if isinstance(error, dict):
                parts = [
                    str(error[key]) for key in ("status", "type", "message") if error.get(key)
                ]
                if parts:
                    return ": ".join(parts)
            if isinstance(error, str):
                return error
        return response.text.strip()[:500]

    def _to_call_error(self, error: Exception) -> ProviderCallError:
        if isinstance(error, ProviderCallError):
            return error
        if isinstance(error, httpx.TimeoutException):
            return ProviderCallError(
                f"{self.name} request timeout: {error}",
                code=ProviderErrorCode.TIMEOUT,
                retryable=True,
            )
        if isinstance(error, httpx.TransportError):
            return ProviderCallError(
                f"{self.name} network error: {error}",
                code=ProviderErrorCode.NETWORK_ERROR,
                retryable=True,
            )
        classification = classify_provider_failure(
            provider=self.name,
            status_code=None,
            message=str(error),
        )
        return ProviderCallError(
            str(error) or error.__class__.__name__,
            code=classification.code,
            retryable=classification.retryable,
        )

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def __enter__(self) -> ProviderClient:
        return self

    def __exit__(self, *_: object) -> None:
        self.close()


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)
