"""Deterministic provider failure classification for client retry policy."""

from __future__ import annotations

from dataclasses import dataclass

from bulkgen.providers.models import ProviderErrorCode

_RATE_LIMIT_PATTERNS: tuple[str, ...] = (
    "resource_exhausted",
    "quota",
    "rate limit",
    "rate_limit",
    "too many requests",
)
_CONTENT_FILTER_PATTERNS: tuple[str, ...] = (
    "safety",
    "blocked",
    "harm",
    "content_filter",
    "content policy",
)
_TIMEOUT_PATTERNS: tuple[str, ...] = (
    "deadline_exceeded",
    "timed out",
    "timeout",
)
_NETWORK_PATTERNS: tuple[str, ...] = (
    "econnrefused",
    "econnreset",
    "unavailable",
    "connection refused",
    "connection reset",
    "network",
)
_AUTH_PATTERNS: tuple[str, ...] = (
    "invalid api key",
    "invalid x-api-key",
    "api key not valid",
    "unauthenticated",
    "permission_denied",
)
_OVERLOADED_STATUS = 529


@dataclass(slots=True)
class ProviderFailureClassification:
    """Normalized failure classification result."""

    code: ProviderErrorCode
    retryable: bool
    matched_rule: str
    matched_pattern: str | None


def classify_provider_failure(  # noqa: PLR0911
    *,
    provider: str,
    status_code: int | None,
    message: str,
) -> ProviderFailureClassification:
    """Classify a failed provider call into an error code and retry decision."""

    haystack = message.lower()

    if status_code is not None:
        if status_code == 429:
            return _classified(ProviderErrorCode.RATE_LIMITED, True, "status_429")
        if status_code == 401:
            return _classified(ProviderErrorCode.INVALID_API_KEY, False, "status_401")
        if status_code == 403:
            if provider == "openai":
                return _classified(ProviderErrorCode.CONTENT_FILTERED, False, "status_403")
            return _classified(ProviderErrorCode.INVALID_API_KEY, False, "status_403")
        if status_code == _OVERLOADED_STATUS or status_code >= 500:
            return _classified(ProviderErrorCode.PROVIDER_ERROR, True, "status_5xx")
        if status_code == 400:
            pattern = _first_match(haystack, _CONTENT_FILTER_PATTERNS)
            if pattern is not None:
                return _classified(
                    ProviderErrorCode.CONTENT_FILTERED,
                    False,
                    "status_400_content_filter",
                    pattern,
                )
            pattern = _first_match(haystack, _RATE_LIMIT_PATTERNS)
            if pattern is not None:
                return _classified(
                    ProviderErrorCode.RATE_LIMITED,
                    True,
                    "status_400_quota",
                    pattern,
                )
            return _classified(ProviderErrorCode.INVALID_REQUEST, False, "status_400")

    pattern = _first_match(haystack, _RATE_LIMIT_PATTERNS)
    if pattern is not None:
        return _classified(ProviderErrorCode.RATE_LIMITED, True, "rate_limit", pattern)

    pattern = _first_match(haystack, _CONTENT_FILTER_PATTERNS)
    if pattern is not None:
        return _classified(ProviderErrorCode.CONTENT_FILTERED, False, "content_filter", pattern)

    pattern = _first_match(haystack, _AUTH_PATTERNS)
    if pattern is not None:
        return _classified(ProviderErrorCode.INVALID_API_KEY, False, "auth", pattern)

    pattern = _first_match(haystack, _TIMEOUT_PATTERNS)
    if pattern is not None:
        return _classified(ProviderErrorCode.TIMEOUT, True, "timeout", pattern)

    pattern = _first_match(haystack, _NETWORK_PATTERNS)
    if pattern is not None:
        return _classified(ProviderErrorCode.NETWORK_ERROR, True, "network", pattern)

    if status_code is not None:
        return _classified(ProviderErrorCode.PROVIDER_ERROR, False, "status_other")
    return _classified(ProviderErrorCode.UNKNOWN_ERROR, False, "fallback_non_retryable")


def _classified(
    code: ProviderErrorCode,
    retryable: bool,
    rule: str,
    pattern: str | None = None,
) -> ProviderFailureClassification:
    return ProviderFailureClassification(
        code=code,
        retryable=retryable,
        matched_rule=rule,
        matched_pattern=pattern,
    )


def _first_match(haystack: str, patterns: tuple[str, ...]) -> str | None:
    for pattern in patterns:
        if pattern in haystack:
            return pattern
    return None
