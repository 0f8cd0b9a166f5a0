"""OpenAI Chat Completions client."""

from __future__ import annotations

from typing import Any

from bulkgen.providers.base import ProviderCallError, ProviderClient
from bulkgen.providers.models import Completion, GenerateOptions, ProviderErrorCode


class OpenAIClient(ProviderClient):
    name = "openai"
    default_base_url = "https://api.openai.com"

    def _send(self, prompt: str, options: GenerateOptions) -> Completion:
        messages: list[dict[str, str]] = []
        if options.system_prompt:
            messages.append({"role": "system", "content": options.system_prompt})
        messages.append({"role": "user", "content": prompt})
        payload: dict[str, Any] = {
            "model": self.model,
            "messages": messages,
            "temperature": options.temperature,
            "max_tokens": options.max_tokens,
        }
        body = self._post_json(
            "/v1/chat/completions",
            payload=payload,
            headers={"Authorization": f"Bearer {self._api_key}"},
        )

        choices = body.get("choices") or []
        if not choices:
            raise ProviderCallError(
                "openai returned no choices",
                code=ProviderErrorCode.PROVIDER_ERROR,
                retryable=False,
            )
        choice = choices[0]
        if choice.get("finish_reason") == "content_filter":
            raise ProviderCallError(
                "openai response was filtered (finish_reason=content_filter)",
                code=ProviderErrorCode.CONTENT_FILTERED,
                retryable=False,
            )
        message = choice.get("message") or {}
        usage = body.get("usage") or {}
        return Completion(
            content=str(message.get("content") or ""),
            tokens_input=int(usage.get("prompt_tokens") or 0),
            tokens_output=int(usage.get("completion_tokens") or 0),
        )
