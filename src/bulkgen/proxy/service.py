"""Single-prompt routing gated by license, rate limit and quota."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from bulkgen.admission.control import AdmissionController, AdmissionDenied
from bulkgen.config import ProviderSettings
from bulkgen.jobs.validation import TaskDataError
from bulkgen.licensing.models import AuditStatus
from bulkgen.licensing.repository import LicenseRepository
from bulkgen.providers.models import GenerateOptions
from bulkgen.providers.router import Router
from bulkgen.providers.routes import parse_route_category
from bulkgen.proxy.prompts import PromptError, sanitize_prompt, validate_prompt

logger = logging.getLogger(__name__)

AI_REQUEST = "ai_request"
SERVICE_UNAVAILABLE = "SERVICE_UNAVAILABLE"


@dataclass(slots=True)
class RouteResponse:
    success: bool
    content: str = ""
    provider: str | None = None
    model: str | None = None
    used_fallback: bool = False
    providers_attempted: list[str] | None = None
    tokens_used: int = 0
    cost_usd: float = 0.0
    latency_ms: int = 0
    tokens_remaining: int = 0
    low_quota: bool = False
    error: str | None = None
    code: str | None = None

    def to_payload(self) -> dict[str, Any]:
        if not self.success:
            return {
                "success": False,
                "error": self.error,
                "code": self.code,
                "providers_attempted": list(self.providers_attempted or []),
            }
        payload: dict[str, Any] = {
            "success": True,
            "content": self.content,
            "provider": self.provider,
            "model": self.model,
            "used_fallback": self.used_fallback,
            "tokens_used": self.tokens_used,
            "cost_usd": self.cost_usd,
            "latency_ms": self.latency_ms,
        }
        if self.low_quota:
            payload["quota_warning"] = "low"
            payload["tokens_remaining"] = self.tokens_remaining
        return payload


class RouteRequestService:
    """Runs one prompt through the category chain and books its usage."""

    def __init__(
        self,
        *,
        licenses: LicenseRepository,
        admission: AdmissionController,
        router: Router,
        settings: ProviderSettings,
    ) -> None:
        self.licenses = licenses
        self.admission = admission
        self.router = router
        self.settings = settings

    def route_request(  # noqa: PLR0913
        self,
        *,
        license_id: str,
        category: str,
        prompt: object,
        system_prompt: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
        ip_address: str | None = None,
    ) -> RouteResponse:
        """Denials raise; provider exhaustion returns a failed response."""

        try:
            license_view = self.admission.require_license(license_id)
            self.admission.check_route_rate_limit(license_id)
            try:
                route_category = parse_route_category(category)
            except ValueError as error:
                raise TaskDataError(str(error), code="INVALID_TASK_TYPE") from error
            clean_prompt = sanitize_prompt(
                validate_prompt(prompt, max_chars=self.settings.max_prompt_chars),
            )
            quota = self.admission.check_quota(license_view)
        except (AdmissionDenied, TaskDataError, PromptError) as error:
            logger.warning(
                "Route request rejected: license_id=%s code=%s: %s",
                license_id,
                error.code,
                error,
            )
            self.licenses.add_audit_log(
                license_id=license_id,
                request_type=AI_REQUEST,
                status=AuditStatus.FAILED,
                error_message=str(error),
                ip_address=ip_address,
                metadata={"code": error.code},
            )
            raise

        options = GenerateOptions(
            temperature=self.settings.default_temperature if temperature is None else temperature,
            max_tokens=self.settings.default_max_tokens if max_tokens is None else max_tokens,
            system_prompt=system_prompt,
        )
        routed = self.router.route(route_category, clean_prompt, options)

        if not routed.success:
            self.licenses.add_audit_log(
                license_id=license_id,
                request_type=AI_REQUEST,
                status=AuditStatus.FAILED,
                error_message=routed.error or "All providers failed",
                ip_address=ip_address,
                metadata={
                    "category": route_category.value,
                    "providers_attempted": routed.providers_attempted,
                    "last_error_code": routed.last_error_code,
                },
            )
            logger.error(
                "Route request failed: license_id=%s category=%s attempted=%s error=%s",
                license_id,
                route_category.value,
                ",".join(routed.providers_attempted),
                routed.error,
            )
            return RouteResponse(
                success=False,
                providers_attempted=list(routed.providers_attempted),
                error=routed.error or "Service temporarily unavailable. Please try again later.",
                code=routed.error_code or SERVICE_UNAVAILABLE,
            )

        self.licenses.add_token_usage(license_id=license_id, delta=routed.total_tokens)
        self.licenses.add_cost_usage(
            license_id=license_id,
            provider=routed.provider,
            tokens_input=routed.tokens_input,
            tokens_output=routed.tokens_output,
            cost_usd=routed.cost_usd,
        )
        self.licenses.add_audit_log(
            license_id=license_id,
            request_type=AI_REQUEST,
            status=AuditStatus.SUCCESS,
            ip_address=ip_address,
            provider_used=routed.provider,
            tokens_used=routed.total_tokens,
            cost_usd=routed.cost_usd,
            metadata={
                "category": route_category.value,
                "model": routed.model,
                "used_fallback": routed.used_fallback,
                "latency_ms": routed.latency_ms,
            },
        )
        logger.info(
            "Route request completed: license_id=%s provider=%s model=%s fallback=%s tokens=%d",
            license_id,
            routed.provider,
            routed.model,
            routed.used_fallback,
            routed.total_tokens,
        )
        return RouteResponse(
            success=True,
            content=routed.content,
            provider=routed.provider,
            model=routed.model,
            used_fallback=routed.used_fallback,
            providers_attempted=list(routed.providers_attempted),
            tokens_used=routed.total_tokens,
            cost_usd=routed.cost_usd,
            latency_ms=routed.latency_ms,
            tokens_remaining=quota.tokens_remaining,
            low_quota=quota.low_quota,
        )
