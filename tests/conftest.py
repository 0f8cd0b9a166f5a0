"""Shared test fixtures."""

from __future__ import annotations

from collections.abc import Callable, Iterator
from pathlib import Path

import pytest

from bulkgen.jobs.repository import JobRepository
from bulkgen.licensing.models import LicensePlan, LicenseView
from bulkgen.licensing.repository import LicenseRepository
from bulkgen.providers.models import GenerateOptions
from bulkgen.providers.router import ALL_PROVIDERS_FAILED, RouterResult
from bulkgen.providers.routes import RouteCategory

_PROVIDER_ENV = (
    "ANTHROPIC_API_KEY",
    "GEMINI_API_KEY",
    "OPENAI_API_KEY",
    "BULKGEN_LLM_PRICING",
    "BULKGEN_ROUTE_TEXT_GEN",
    "BULKGEN_ROUTE_CODE_GEN",
    "BULKGEN_ROUTE_DESIGN_GEN",
    "BULKGEN_ROUTE_ECOMMERCE_GEN",
)


class ScriptedRouter:
    """Router stand-in replaying queued replies and recording every call."""

    def __init__(self, replies: list[RouterResult | Exception] | None = None) -> None:
        self.replies = list(replies or [])
        self.default: RouterResult | None = None
        self.calls: list[tuple[RouteCategory, str, GenerateOptions | None]] = []

    def route(
        self,
        category: RouteCategory,
        prompt: str,
        options: GenerateOptions | None = None,
    ) -> RouterResult:
        self.calls.append((category, prompt, options))
        if self.replies:
            reply = self.replies.pop(0)
        elif self.default is not None:
            reply = self.default
        else:
            raise AssertionError("ScriptedRouter ran out of replies")
        if isinstance(reply, Exception):
            raise reply
        return reply

    def close(self) -> None:
        return None


def ok_result(
    content: str,
    *,
    provider: str = "claude",
    model: str = "claude-opus-4-5-20251101",
    tokens_input: int = 100,
    tokens_output: int = 50,
    cost_usd: float = 0.01,
) -> RouterResult:
    return RouterResult(
        success=True,
        provider=provider,
        model=model,
        content=content,
        tokens_input=tokens_input,
        tokens_output=tokens_output,
        total_tokens=tokens_input + tokens_output,
        cost_usd=cost_usd,
        providers_attempted=[provider],
    )


def failed_result(error: str = "all down") -> RouterResult:
    return RouterResult(
        success=False,
        provider="openai",
        model="gpt-4o",
        used_fallback=True,
        providers_attempted=["claude", "gemini", "openai"],
        error=error,
        error_code=ALL_PROVIDERS_FAILED,
        last_error_code="PROVIDER_ERROR",
    )


@pytest.fixture(autouse=True)
def _isolated_provider_env(monkeypatch) -> None:
    for name in _PROVIDER_ENV:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture()
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "bulkgen.db"


@pytest.fixture()
def job_repository(db_path: Path) -> Iterator[JobRepository]:
    repository = JobRepository(db_path)
    repository.init_schema()
    yield repository
    repository.close()


@pytest.fixture()
def license_repository(db_path: Path) -> Iterator[LicenseRepository]:
    repository = LicenseRepository(db_path)
    repository.init_schema()
    yield repository
    repository.close()


@pytest.fixture()
def make_license(license_repository: LicenseRepository) -> Callable[..., LicenseView]:
    def _make(*, tokens_limit: int = 100_000, plan: LicensePlan = LicensePlan.PRO) -> LicenseView:
        return license_repository.create_license(
            site_url="https://shop.example.com",
            user_id="user-1",
            plan=plan,
            tokens_limit=tokens_limit,
        )

    return _make


@pytest.fixture()
def active_license(make_license) -> LicenseView:
    return make_license()


@pytest.fixture()
def scripted_router() -> ScriptedRouter:
    return ScriptedRouter()


@pytest.fixture()
def ok_reply() -> Callable[..., RouterResult]:
    return ok_result


@pytest.fixture()
def failed_reply() -> Callable[..., RouterResult]:
    return failed_result
