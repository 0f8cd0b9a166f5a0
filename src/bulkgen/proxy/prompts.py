"""Prompt validation and markup scrubbing for direct route requests."""

from __future__ import annotations

import re

DEFAULT_MAX_PROMPT_CHARS = 100_000

_REMOVALS: tuple[tuple[re.Pattern[str], str], ...] = (
    (
        re.compile(r"(?is)<script\b[^<]*(?:(?!</script>)<[^<]*)*</script>"),
        "",
    ),
    (
        re.compile(r"(?is)<(iframe|object|embed|form)[^>]*>.*?</\1>"),
        "",
    ),
    (
        re.compile(r"(?i)\son\w+\s*="),
        " data-removed=",
    ),
)


class PromptError(ValueError):
    """Prompt is missing, empty or too long."""

    code = "INVALID_PROMPT"


def validate_prompt(prompt: object, *, max_chars: int = DEFAULT_MAX_PROMPT_CHARS) -> str:
    if not isinstance(prompt, str):
        raise PromptError("Prompt is required and must be a string")
    trimmed = prompt.strip()
    if not trimmed:
        raise PromptError("Prompt cannot be empty")
    if len(trimmed) > max_chars:
        raise PromptError(f"Prompt exceeds maximum length of {max_chars} characters")
    return prompt


def sanitize_prompt(prompt: str) -> str:
    """Strip active markup blocks and inline event handlers."""

    sanitized = prompt
    for pattern, replacement in _REMOVALS:
        sanitized = pattern.sub(replacement, sanitized)
    return sanitized.strip()
