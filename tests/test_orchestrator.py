from __future__ import annotations

import allure
import pytest

from bulkgen.config import JobSettings
from bulkgen.jobs.models import BatchResult, JobStatus, TaskType
from bulkgen.jobs.orchestrator import JobOrchestrator, ProcessOutcome
from bulkgen.jobs.processors import build_processors
from bulkgen.jobs.processors.articles import ArticleProcessor

pytestmark = [
    allure.epic("Bulk Jobs"),
    allure.feature("Job Orchestrator"),
]


class FlakyProcessor:
    """Raises the queued errors first, then returns an empty batch."""

    def __init__(self, errors: list[Exception]) -> None:
        self.errors = list(errors)
        self.calls = 0

    def process(self, *, job_id, task_data, progress_sink) -> BatchResult:
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return BatchResult(
            kind=TaskType.ARTICLES,
            items=[],
            total_tokens=0,
            total_cost=0.0,
            processing_time_seconds=0,
        )


class StepClock:
    def __init__(self, step: float) -> None:
        self.now = 0.0
        self.step = step

    def __call__(self) -> float:
        self.now += self.step
        return self.now


class ExplodingLicenses:
    def add_token_usage(self, *, license_id: str, delta: int) -> bool:
        raise RuntimeError("ledger offline")


@pytest.fixture()
def delays() -> list[float]:
    return []


@pytest.fixture()
def make_orchestrator(job_repository, license_repository, scripted_router, delays):
    def _make(*, processors=None, licenses=None) -> JobOrchestrator:
        return JobOrchestrator(
            jobs=job_repository,
            licenses=licenses or license_repository,
            processors=processors or build_processors(router=scripted_router),
            settings=JobSettings(),
            sleep=delays.append,
        )

    return _make


@pytest.fixture()
def articles_job(job_repository, active_license):
    return job_repository.create_job(
        license_id=active_license.license_id,
        task_type=TaskType.ARTICLES,
        task_data={"topics": ["Topic A", "Topic B"], "include_seo": False},
    )


def test_successful_job_completes_and_books_usage(
    make_orchestrator,
    scripted_router,
    ok_reply,
    job_repository,
    license_repository,
    articles_job,
    delays,
) -> None:
    scripted_router.replies = [
        ok_reply("<p>A</p>", tokens_input=100, tokens_output=50, cost_usd=0.01),
        ok_reply("<p>B</p>", provider="gemini", model="gemini-2.5-pro", tokens_input=20),
    ]

    report = make_orchestrator().process_job(articles_job.job_id)

    assert report.outcome is ProcessOutcome.COMPLETED
    assert report.attempts == 0
    assert delays == []
    job = job_repository.get_job(articles_job.job_id)
    assert job.status is JobStatus.COMPLETED
    assert job.result is not None
    assert job.result.total_tokens == 220
    assert job.progress is not None
    assert job.progress.percent == 100
    assert license_repository.get_remaining_tokens(articles_job.license_id) == 100_000 - 220
    ledger = license_repository.list_cost_ledger(license_id=articles_job.license_id)
    assert {row.provider: row.tokens_input for row in ledger} == {"claude": 100, "gemini": 20}
    events = [event.event_type for event in job_repository.list_events(articles_job.job_id)]
    assert events == ["created", "processing_started", "completed"]


def test_batch_with_every_item_failed_still_completes(
    make_orchestrator,
    scripted_router,
    failed_reply,
    job_repository,
    license_repository,
    articles_job,
) -> None:
    scripted_router.default = failed_reply()

    report = make_orchestrator().process_job(articles_job.job_id)

    assert report.outcome is ProcessOutcome.COMPLETED
    job = job_repository.get_job(articles_job.job_id)
    assert job.result.failed == 2
    assert job.tokens_used == 0
    assert license_repository.list_cost_ledger(license_id=articles_job.license_id) == []


def test_retry_with_backoff_then_success(
    make_orchestrator,
    job_repository,
    articles_job,
    delays,
) -> None:
    processor = FlakyProcessor([RuntimeError("provider hiccup")])

    report = make_orchestrator(processors={TaskType.ARTICLES: processor}).process_job(
        articles_job.job_id,
    )

    assert report.outcome is ProcessOutcome.COMPLETED
    assert report.attempts == 1
    assert processor.calls == 2
    assert delays == [1.0]
    events = [event.event_type for event in job_repository.list_events(articles_job.job_id)]
    assert events == [
        "created",
        "processing_started",
        "attempt_failed",
        "retry_scheduled",
        "retry_started",
        "completed",
    ]


def test_exhausted_attempts_fail_the_job(
    make_orchestrator,
    job_repository,
    articles_job,
    delays,
) -> None:
    processor = FlakyProcessor([RuntimeError(f"boom {n}") for n in range(1, 4)])

    report = make_orchestrator(processors={TaskType.ARTICLES: processor}).process_job(
        articles_job.job_id,
    )

    assert report.outcome is ProcessOutcome.FAILED
    assert report.attempts == 3
    assert report.error == "boom 3"
    assert delays == [1.0, 2.0]
    job = job_repository.get_job(articles_job.job_id)
    assert job.status is JobStatus.FAILED
    assert job.attempts == 3
    assert job.error_message == "boom 3"
    assert job.completed_at is not None


def test_timeout_mid_batch_fails_after_every_attempt(
    make_orchestrator,
    scripted_router,
    ok_reply,
    job_repository,
    articles_job,
    delays,
) -> None:
    scripted_router.default = ok_reply("<p>x</p>")
    processor = ArticleProcessor(router=scripted_router, clock=StepClock(300.0))

    report = make_orchestrator(processors={TaskType.ARTICLES: processor}).process_job(
        articles_job.job_id,
    )

    assert report.outcome is ProcessOutcome.FAILED
    assert report.attempts == 3
    assert delays == [1.0, 2.0]
    assert len(scripted_router.calls) == 3
    assert report.error == "Job timeout: processed 1 of 2 articles before timeout"
    assert job_repository.get_job(articles_job.job_id).error_message.startswith("Job timeout")


def test_usage_accounting_errors_do_not_reopen_job(
    make_orchestrator,
    scripted_router,
    ok_reply,
    job_repository,
    articles_job,
) -> None:
    scripted_router.default = ok_reply("<p>x</p>")

    report = make_orchestrator(licenses=ExplodingLicenses()).process_job(articles_job.job_id)

    assert report.outcome is ProcessOutcome.COMPLETED
    assert job_repository.get_job(articles_job.job_id).status is JobStatus.COMPLETED


def test_non_pending_jobs_are_skipped(make_orchestrator, job_repository, articles_job) -> None:
    job_repository.claim_job(job_id=articles_job.job_id)
    orchestrator = make_orchestrator(processors={TaskType.ARTICLES: FlakyProcessor([])})

    assert orchestrator.process_job(articles_job.job_id).outcome is ProcessOutcome.SKIPPED
    assert orchestrator.process_job("job_missing").outcome is ProcessOutcome.SKIPPED


def test_invalid_stored_job_is_left_untouched(
    make_orchestrator,
    job_repository,
    active_license,
) -> None:
    broken = job_repository.create_job(
        license_id=active_license.license_id,
        task_type=TaskType.ARTICLES,
        task_data={"topics": []},
    )

    report = make_orchestrator().process_job(broken.job_id)

    assert report.outcome is ProcessOutcome.SKIPPED
    assert "topics" in (report.error or "")
    assert job_repository.get_job(broken.job_id).status is JobStatus.PENDING


class ReleasingProcessor:
    """Moves the job out of processing behind the orchestrator's back, then raises."""

    def __init__(self, job_repository) -> None:
        self.job_repository = job_repository
        self.calls = 0

    def process(self, *, job_id, task_data, progress_sink) -> BatchResult:
        self.calls += 1
        self.job_repository.fail_job(job_id=job_id, error_message="cancelled by operator")
        raise RuntimeError("provider hiccup")


def test_unrecorded_attempt_stops_the_retry_loop(
    make_orchestrator,
    job_repository,
    articles_job,
    delays,
) -> None:
    processor = ReleasingProcessor(job_repository)

    report = make_orchestrator(processors={TaskType.ARTICLES: processor}).process_job(
        articles_job.job_id,
    )

    assert report.outcome is ProcessOutcome.SKIPPED
    assert report.attempts == 0
    assert report.error == "provider hiccup"
    assert processor.calls == 1
    assert delays == []
    job = job_repository.get_job(articles_job.job_id)
    assert job.status is JobStatus.FAILED
    assert job.error_message == "cancelled by operator"
