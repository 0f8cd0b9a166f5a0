"""Anthropic Messages API client."""

from __future__ import annotations

from typing import Any

from bulkgen.providers.base import ProviderCallError, ProviderClient
from bulkgen.providers.models import Completion, GenerateOptions, ProviderErrorCode

ANTHROPIC_API_VERSION = "2023-06-01"


class ClaudeClient(ProviderClient):
    name = "claude"
    default_base_url = "https://api.anthropic.com"

    def _send(self, prompt: str, options: GenerateOptions) -> Completion:
        payload: dict[str, Any] = {
            "model": self.model,
            "max_tokens": options.max_tokens,
            "temperature": options.temperature,
            "messages": [{"role": "user", "content": prompt}],
        }
        if options.system_prompt:
            payload["system"] = options.system_prompt
        body = self._post_json(
            "/v1/messages",
            payload=payload,
            headers={
                "x-api-key": self._api_key,
                "anthropic-version": ANTHROPIC_API_VERSION,
            },
        )

        if body.get("stop_reason") == "refusal":
            raise ProviderCallError(
                "claude refused the request (stop_reason=refusal)",
                code=ProviderErrorCode.CONTENT_FILTERED,
                retryable=False,
            )
        text_parts = [
            str(block.get("text", ""))
            for block in body.get("content") or []
            if isinstance(block, dict) and block.get("type") == "text"
        ]
        usage = body.get("usage") or {}
        return Completion(
            content="".join(text_parts),
            tokens_input=int(usage.get("input_tokens") or 0),
            tokens_output=int(usage.get("output_tokens") or 0),
        )
