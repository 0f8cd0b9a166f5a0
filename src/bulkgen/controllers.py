"""Controllers for bulkgen CLI commands."""

from __future__ import annotations

import json
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any

from bulkgen.admission.control import AdmissionController
from bulkgen.admission.rate_limit import (
    InMemoryCounterStore,
    RateLimiter,
    SqlCounterStore,
    build_counter_store,
)
from bulkgen.config import Settings
from bulkgen.jobs.models import JobStatus
from bulkgen.jobs.orchestrator import JobOrchestrator
from bulkgen.jobs.processors import build_processors
from bulkgen.jobs.repository import JobRepository
from bulkgen.jobs.services import JobStatusService, SubmissionService
from bulkgen.jobs.validation import TaskDataError
from bulkgen.jobs.worker import JobQueueWorker
from bulkgen.licensing.models import LicensePlan
from bulkgen.licensing.repository import LicenseRepository
from bulkgen.providers.router import Router, build_router
from bulkgen.proxy.service import RouteRequestService
from bulkgen.storage.common import month_key, utc_now


@dataclass(slots=True)
class LicenseCreateCommand:
    """CLI input for license creation."""

    db_path: Path | None
    site_url: str
    user_id: str
    plan: str
    tokens_limit: int
    license_key: str | None
    expires_at: datetime | None


@dataclass(slots=True)
class LicenseUsageCommand:
    db_path: Path | None
    license_id: str
    month: str | None


@dataclass(slots=True)
class JobSubmitCommand:
    """CLI input for a bulk task submission."""

    db_path: Path | None
    license_id: str
    task_type: str
    task_data: str
    ip_address: str | None


@dataclass(slots=True)
class JobStatusCommand:
    db_path: Path | None
    license_id: str
    job_id: str
    as_json: bool


@dataclass(slots=True)
class JobListCommand:
    db_path: Path | None
    status: str | None
    license_id: str | None
    limit: int


@dataclass(slots=True)
class JobEventsCommand:
    db_path: Path | None
    job_id: str


@dataclass(slots=True)
class JobProcessCommand:
    db_path: Path | None
    job_id: str


@dataclass(slots=True)
class JobWorkerCommand:
    db_path: Path | None
    once: bool
    max_jobs: int | None
    max_idle_polls: int


@dataclass(slots=True)
class RouteCommand:
    """CLI input for a single routed prompt."""

    db_path: Path | None
    license_id: str
    category: str
    prompt: str
    system_prompt: str | None
    temperature: float | None
    max_tokens: int | None
    as_json: bool


@dataclass(slots=True)
class Runtime:
    """Wired services sharing one database and one router."""

    settings: Settings
    jobs: JobRepository
    licenses: LicenseRepository
    counter_store: InMemoryCounterStore | SqlCounterStore
    admission: AdmissionController
    router: Router

    def orchestrator(self) -> JobOrchestrator:
        return JobOrchestrator(
            jobs=self.jobs,
            licenses=self.licenses,
            processors=build_processors(
                router=self.router,
                timeout_seconds=self.settings.jobs.timeout_seconds,
            ),
            settings=self.settings.jobs,
        )


@dataclass(slots=True)
class BulkgenCliController:
    """Coordinates license, job, worker and route CLI operations."""

    def create_license(self, command: LicenseCreateCommand) -> list[str]:
        settings = _settings(command.db_path)
        with _licenses(settings) as licenses:
            license_view = licenses.create_license(
                site_url=command.site_url,
                user_id=command.user_id,
                plan=LicensePlan(command.plan.strip().lower()),
                tokens_limit=command.tokens_limit,
                license_key=command.license_key,
                expires_at=command.expires_at,
            )
        return [
            "License created: "
            f"license_id={license_view.license_id} key={license_view.license_key} "
            f"plan={license_view.plan.value} tokens_limit={license_view.tokens_limit}",
        ]

    def license_usage(self, command: LicenseUsageCommand) -> list[str]:
        settings = _settings(command.db_path)
        month = command.month or month_key(utc_now())
        with _licenses(settings) as licenses:
            license_view = licenses.get_license(command.license_id)
            if license_view is None:
                return [f"License not found: {command.license_id}"]
            ledger = licenses.list_cost_ledger(license_id=command.license_id, month=month)

        lines = [
            f"License: {license_view.license_id} ({license_view.status.value})",
            f"Tokens: used={license_view.tokens_used} limit={license_view.tokens_limit} "
            f"remaining={license_view.tokens_remaining}",
            f"Cost ledger {month}: {len(ledger)} provider(s)",
        ]
        for entry in ledger:
            lines.append(
                f"  {entry.provider} tokens_in={entry.tokens_input} "
                f"tokens_out={entry.tokens_output} cost_usd={entry.cost_usd:.6f}",
            )
        return lines

    def submit_job(self, command: JobSubmitCommand) -> list[str]:
        task_data = _load_task_data(command.task_data)
        settings = _settings(command.db_path)
        with _runtime(settings) as runtime:
            service = SubmissionService(
                jobs=runtime.jobs,
                licenses=runtime.licenses,
                admission=runtime.admission,
                settings=settings.jobs,
            )
            receipt = service.submit(
                license_id=command.license_id,
                task_type=command.task_type,
                task_data=task_data,
                ip_address=command.ip_address,
            )
        return [
            "Job submitted: "
            f"job_id={receipt.job_id} status={receipt.status.value} "
            f"items={receipt.item_count} estimated_wait_seconds={receipt.estimated_wait_seconds}",
        ]

    def job_status(self, command: JobStatusCommand) -> list[str]:
        settings = _settings(command.db_path)
        with _jobs(settings) as jobs:
            view = JobStatusService(jobs=jobs).get_status(
                license_id=command.license_id,
                job_id=command.job_id,
            )
        if command.as_json:
            return [json.dumps(view, ensure_ascii=False, indent=2)]
        return _render_status(view)

    def list_jobs(self, command: JobListCommand) -> list[str]:
        settings = _settings(command.db_path)
        status_filter = JobStatus(command.status.strip().lower()) if command.status else None
        with _jobs(settings) as jobs:
            views = jobs.list_jobs(
                status=status_filter,
                license_id=command.license_id,
                limit=command.limit,
            )

        lines = [f"Jobs: {len(views)}"]
        for job in views:
            lines.append(
                f"  {job.job_id} type={job.task_type} status={job.status.value} "
                f"attempts={job.attempts}/{job.max_attempts} license={job.license_id} "
                f"created_at={job.created_at.isoformat()}",
            )
        return lines

    def job_events(self, command: JobEventsCommand) -> list[str]:
        settings = _settings(command.db_path)
        with _jobs(settings) as jobs:
            job = jobs.get_job(command.job_id)
            events = jobs.list_events(command.job_id)
        if job is None:
            return [f"Job not found: {command.job_id}"]

        lines = [f"Job: {job.job_id} status={job.status.value}", f"Events: {len(events)}"]
        for event in events:
            lines.append(
                f"  {event.created_at.isoformat()} {event.event_type} "
                f"{event.status_from.value if event.status_from else '-'} -> "
                f"{event.status_to.value if event.status_to else '-'}",
            )
        return lines

    def process_job(self, command: JobProcessCommand) -> list[str]:
        settings = _settings(command.db_path)
        with _runtime(settings) as runtime:
            report = runtime.orchestrator().process_job(command.job_id)
        line = (
            f"Job processed: job_id={report.job_id} outcome={report.outcome.value} "
            f"attempts={report.attempts}"
        )
        if report.error:
            line += f" error={report.error}"
        return [line]

    def run_worker(self, command: JobWorkerCommand) -> list[str]:
        settings = _settings(command.db_path)
        with _runtime(settings) as runtime:
            worker = JobQueueWorker(
                jobs=runtime.jobs,
                orchestrator=runtime.orchestrator(),
                concurrency=settings.jobs.worker_concurrency,
                poll_interval_seconds=settings.jobs.poll_interval_seconds,
            )
            summary = (
                worker.run_once()
                if command.once
                else worker.run_loop(
                    max_jobs=command.max_jobs,
                    max_idle_polls=command.max_idle_polls,
                )
            )
        return [
            "Worker summary: "
            f"processed={summary.processed} completed={summary.completed} "
            f"failed={summary.failed} skipped={summary.skipped} idle_polls={summary.idle_polls}",
        ]

    def route(self, command: RouteCommand) -> list[str]:
        settings = _settings(command.db_path)
        with _runtime(settings) as runtime:
            service = RouteRequestService(
                licenses=runtime.licenses,
                admission=runtime.admission,
                router=runtime.router,
                settings=settings.providers,
            )
            response = service.route_request(
                license_id=command.license_id,
                category=command.category,
                prompt=command.prompt,
                system_prompt=command.system_prompt,
                temperature=command.temperature,
                max_tokens=command.max_tokens,
            )
        if command.as_json:
            return [json.dumps(response.to_payload(), ensure_ascii=False, indent=2)]
        if not response.success:
            return [
                f"Route failed: code={response.code} "
                f"attempted={','.join(response.providers_attempted or []) or '-'}",
                f"Error: {response.error}",
            ]
        lines = [
            f"Provider: {response.provider} model={response.model} "
            f"fallback={response.used_fallback} tokens={response.tokens_used} "
            f"cost_usd={response.cost_usd:.6f} latency_ms={response.latency_ms}",
        ]
        if response.low_quota:
            lines.append(f"Warning: low quota, tokens_remaining={response.tokens_remaining}")
        lines.append(response.content)
        return lines


def _settings(db_path: Path | None) -> Settings:
    settings = Settings.from_env(db_path=db_path)
    settings.validate()
    return settings


def _load_task_data(raw: str) -> Any:
    try:
        return json.loads(raw)
    except json.JSONDecodeError as error:
        raise TaskDataError(f"task_data must be valid JSON: {error.msg}") from error


def _render_status(view: dict[str, Any]) -> list[str]:
    lines = [
        f"Job: {view['job_id']}",
        f"Status: {view['status']}",
        f"Created: {view['created_at']}",
    ]
    if "started_at" in view:
        lines.append(f"Started: {view['started_at']}")
    if "completed_at" in view:
        lines.append(f"Completed: {view['completed_at']}")
    progress = view.get("progress")
    if progress:
        lines.append(
            f"Progress: {progress['percent']}% "
            f"({progress['items_completed']}/{progress['items_total']}) "
            f"{progress['current_item_label']} eta={progress['eta_seconds']}s",
        )
    result = view.get("result")
    if result:
        lines.append(
            f"Result: kind={result['kind']} items={result['total_count']} "
            f"tokens={result['total_tokens']} cost_usd={result['total_cost']:.6f} "
            f"time={result['processing_time_seconds']}s",
        )
        for item in result["items"]:
            name = item.get("topic") or item.get("product_name") or item.get("section_name")
            lines.append(
                f"  {name}: {item['status']} provider={item['provider'] or '-'} "
                f"tokens={item['tokens_used']}"
                + (f" error={item['error']}" if item.get("error") else ""),
            )
    if "error" in view:
        lines.append(f"Error: {view['error']}")
    return lines


@contextmanager
def _jobs(settings: Settings) -> Iterator[JobRepository]:
    repository = JobRepository(
        settings.db_path,
        sqlite_busy_timeout_ms=settings.sqlite_busy_timeout_ms,
    )
    repository.init_schema()
    try:
        yield repository
    finally:
        repository.close()


@contextmanager
def _licenses(settings: Settings) -> Iterator[LicenseRepository]:
    repository = LicenseRepository(
        settings.db_path,
        sqlite_busy_timeout_ms=settings.sqlite_busy_timeout_ms,
    )
    repository.init_schema()
    try:
        yield repository
    finally:
        repository.close()


@contextmanager
def _runtime(settings: Settings) -> Iterator[Runtime]:
    with _jobs(settings) as jobs, _licenses(settings) as licenses:
        counter_store = build_counter_store(
            settings.admission,
            db_path=settings.db_path,
            sqlite_busy_timeout_ms=settings.sqlite_busy_timeout_ms,
        )
        router = build_router(settings.providers)
        try:
            yield Runtime(
                settings=settings,
                jobs=jobs,
                licenses=licenses,
                counter_store=counter_store,
                admission=AdmissionController(
                    licenses=licenses,
                    jobs=jobs,
                    rate_limiter=RateLimiter(
                        counter_store,
                        window_seconds=settings.admission.rate_limit_window_seconds,
                    ),
                    settings=settings.admission,
                ),
                router=router,
            )
        finally:
            router.close()
            counter_store.close()
