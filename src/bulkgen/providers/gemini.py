"""Google Gemini generateContent client."""

from __future__ import annotations

from typing import Any

from bulkgen.providers.base import ProviderCallError, ProviderClient
from bulkgen.providers.models import Completion, GenerateOptions, ProviderErrorCode

_SAFETY_FINISH_REASONS = frozenset({"SAFETY", "PROHIBITED_CONTENT", "BLOCKLIST", "SPII"})


class GeminiClient(ProviderClient):
    name = "gemini"
    default_base_url = "https://generativelanguage.googleapis.com"

    def _send(self, prompt: str, options: GenerateOptions) -> Completion:
        payload: dict[str, Any] = {
            "contents": [{"role": "user", "parts": [{"text": prompt}]}],
            "generationConfig": {
                "temperature": options.temperature,
                "maxOutputTokens": options.max_tokens,
            },
        }
        if options.system_prompt:
            payload["systemInstruction"] = {"parts": [{"text": options.system_prompt}]}
        body = self._post_json(
            f"/v1beta/models/{self.model}:generateContent",
            payload=payload,
            headers={"x-goog-api-key": self._api_key},
        )

        feedback = body.get("promptFeedback") or {}
        block_reason = feedback.get("blockReason")
        if block_reason:
            raise ProviderCallError(
                f"gemini blocked the prompt: {block_reason}",
                code=ProviderErrorCode.CONTENT_FILTERED,
                retryable=False,
            )

        candidates = body.get("candidates") or []
        if not candidates:
            raise ProviderCallError(
                "gemini returned no candidates",
                code=ProviderErrorCode.PROVIDER_ERROR,
                retryable=False,
            )
        candidate = candidates[0]
        finish_reason = str(candidate.get("finishReason") or "")
        if finish_reason in _SAFETY_FINISH_REASONS:
            raise ProviderCallError(
                f"gemini stopped generation: finishReason={finish_reason}",
                code=ProviderErrorCode.CONTENT_FILTERED,
                retryable=False,
            )

        parts = (candidate.get("content") or {}).get("parts") or []
        text = "".join(str(part.get("text", "")) for part in parts if isinstance(part, dict))
        usage = body.get("usageMetadata") or {}
        return Completion(
            content=text,
            tokens_input=int(usage.get("promptTokenCount") or 0),
            tokens_output=int(usage.get("candidatesTokenCount") or 0),
        )
