"""Exponential backoff shared by provider calls and job attempts."""

from __future__ import annotations


def backoff_delay(*, retry_number: int, base_seconds: float, max_seconds: float) -> float:
    """Delay before the `retry_number`-th retry (1-based): `min(base * 2**(n-1), max)`."""

    return min(max_seconds, base_seconds * (2 ** max(retry_number - 1, 0)))
