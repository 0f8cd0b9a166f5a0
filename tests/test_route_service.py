from __future__ import annotations

import allure
import pytest

from bulkgen.admission.control import AdmissionController, AdmissionDenied
from bulkgen.admission.rate_limit import InMemoryCounterStore, RateLimiter
from bulkgen.config import AdmissionSettings, ProviderSettings
from bulkgen.jobs.validation import TaskDataError
from bulkgen.licensing.models import AuditStatus
from bulkgen.providers.routes import RouteCategory
from bulkgen.proxy.prompts import PromptError, sanitize_prompt, validate_prompt
from bulkgen.proxy.service import RouteRequestService

pytestmark = [
    allure.epic("Proxy"),
    allure.feature("Route Requests"),
]


@pytest.fixture()
def route_service(job_repository, license_repository, scripted_router) -> RouteRequestService:
    admission = AdmissionController(
        licenses=license_repository,
        jobs=job_repository,
        rate_limiter=RateLimiter(InMemoryCounterStore()),
        settings=AdmissionSettings(route_rate_limit_per_minute=2),
    )
    return RouteRequestService(
        licenses=license_repository,
        admission=admission,
        router=scripted_router,
        settings=ProviderSettings(),
    )


def test_successful_route_books_usage_and_audits(
    route_service: RouteRequestService,
    scripted_router,
    ok_reply,
    license_repository,
    active_license,
) -> None:
    scripted_router.replies = [
        ok_reply("Answer", provider="gemini", model="gemini-2.5-pro", cost_usd=0.002),
    ]

    response = route_service.route_request(
        license_id=active_license.license_id,
        category="code_gen",
        prompt="  Write <script>alert(1)</script>a function  ",
        system_prompt="Be brief",
        ip_address="198.51.100.1",
    )

    payload = response.to_payload()
    assert payload["success"] is True
    assert payload["content"] == "Answer"
    assert payload["provider"] == "gemini"
    assert payload["tokens_used"] == 150
    assert "quota_warning" not in payload

    category, prompt, options = scripted_router.calls[0]
    assert category is RouteCategory.CODE_GEN
    assert prompt == "Write a function"
    assert options.system_prompt == "Be brief"
    assert options.temperature == 0.7
    assert options.max_tokens == 4_096

    assert license_repository.get_remaining_tokens(active_license.license_id) == 100_000 - 150
    [ledger] = license_repository.list_cost_ledger(license_id=active_license.license_id)
    assert ledger.provider == "gemini"
    [audit] = license_repository.list_audit_logs(license_id=active_license.license_id)
    assert audit.request_type == "ai_request"
    assert audit.status is AuditStatus.SUCCESS
    assert audit.provider_used == "gemini"
    assert audit.tokens_used == 150


def test_low_quota_adds_warning(
    route_service: RouteRequestService,
    scripted_router,
    ok_reply,
    make_license,
) -> None:
    scripted_router.default = ok_reply("ok")
    license_view = make_license(tokens_limit=500)

    payload = route_service.route_request(
        license_id=license_view.license_id,
        category="text_gen",
        prompt="hi",
    ).to_payload()

    assert payload["quota_warning"] == "low"
    assert payload["tokens_remaining"] == 500


def test_exhausted_chain_returns_failure_and_books_nothing(
    route_service: RouteRequestService,
    scripted_router,
    failed_reply,
    license_repository,
    active_license,
) -> None:
    scripted_router.default = failed_reply("openai HTTP 500: boom")

    payload = route_service.route_request(
        license_id=active_license.license_id,
        category="design_gen",
        prompt="hero section",
    ).to_payload()

    assert payload == {
        "success": False,
        "error": "openai HTTP 500: boom",
        "code": "ALL_PROVIDERS_FAILED",
        "providers_attempted": ["claude", "gemini", "openai"],
    }
    assert license_repository.get_remaining_tokens(active_license.license_id) == 100_000
    [audit] = license_repository.list_audit_logs(license_id=active_license.license_id)
    assert audit.status is AuditStatus.FAILED
    assert audit.metadata["providers_attempted"] == ["claude", "gemini", "openai"]


def test_rejections_are_raised_and_audited(
    route_service: RouteRequestService,
    scripted_router,
    license_repository,
    active_license,
    make_license,
) -> None:
    with pytest.raises(TaskDataError) as bad_category:
        route_service.route_request(
            license_id=active_license.license_id,
            category="video_gen",
            prompt="x",
        )
    assert bad_category.value.code == "INVALID_TASK_TYPE"

    with pytest.raises(PromptError):
        route_service.route_request(
            license_id=active_license.license_id,
            category="text_gen",
            prompt="   ",
        )

    with pytest.raises(AdmissionDenied) as rate_limited:
        route_service.route_request(
            license_id=active_license.license_id,
            category="text_gen",
            prompt="x",
        )
    assert rate_limited.value.code == "RATE_LIMITED"

    poor = make_license(tokens_limit=10)
    with pytest.raises(AdmissionDenied) as quota:
        route_service.route_request(license_id=poor.license_id, category="text_gen", prompt="x")
    assert quota.value.code == "QUOTA_EXCEEDED"

    assert scripted_router.calls == []
    codes = [
        audit.metadata["code"]
        for audit in license_repository.list_audit_logs(request_type="ai_request")
    ]
    assert codes == ["INVALID_TASK_TYPE", "INVALID_PROMPT", "RATE_LIMITED", "QUOTA_EXCEEDED"]


def test_validate_prompt_bounds() -> None:
    assert validate_prompt("ok", max_chars=2) == "ok"
    for value in (None, 12, "", "  "):
        with pytest.raises(PromptError):
            validate_prompt(value)
    with pytest.raises(PromptError, match="3"):
        validate_prompt("toolong", max_chars=3)


def test_sanitize_prompt_strips_active_content() -> None:
    raw = (
        '<div onclick="steal()">Hi</div>'
        "<iframe src='x'></iframe>"
        "<SCRIPT>bad()</SCRIPT>"
        "<form action='/x'><input></form> done"
    )
    assert sanitize_prompt(raw) == '<div data-removed="steal()">Hi</div> done'
