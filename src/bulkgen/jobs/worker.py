"""Queue worker draining pending jobs through the orchestrator."""

from __future__ import annotations

import logging
import signal
import time
from collections.abc import Iterator
from concurrent.futures import ThreadPoolExecutor
from contextlib import contextmanager
from dataclasses import dataclass

from bulkgen.jobs.models import JobStatus
from bulkgen.jobs.orchestrator import JobOrchestrator, ProcessOutcome, ProcessReport
from bulkgen.jobs.repository import JobRepository

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class WorkerRunSummary:
    """Aggregate worker counters for CLI reporting."""

    processed: int = 0
    completed: int = 0
    failed: int = 0
    skipped: int = 0
    idle_polls: int = 0

    def add(self, other: WorkerRunSummary) -> None:
        self.processed += other.processed
        self.completed += other.completed
        self.failed += other.failed
        self.skipped += other.skipped
        self.idle_polls += other.idle_polls


class JobQueueWorker:
    """Picks up pending jobs and runs each one in its own pool thread."""

    def __init__(
        self,
        *,
        jobs: JobRepository,
        orchestrator: JobOrchestrator,
        concurrency: int = 4,
        poll_interval_seconds: float = 2.0,
    ) -> None:
        self.jobs = jobs
        self.orchestrator = orchestrator
        self.concurrency = max(1, concurrency)
        self.poll_interval_seconds = poll_interval_seconds
        self._stop_requested = False
        self._ignored: set[str] = set()

    def run_once(self) -> WorkerRunSummary:
        """Dispatch the oldest pending jobs, at most `concurrency` of them, and wait."""

        summary = WorkerRunSummary()
        if self._stop_requested:
            summary.idle_polls = 1
            return summary

        self._prune_ignored()
        candidates = self.jobs.list_jobs(
            status=JobStatus.PENDING,
            limit=self.concurrency + len(self._ignored),
            oldest_first=True,
        )
        pending = [job for job in candidates if job.job_id not in self._ignored][: self.concurrency]
        if not pending:
            summary.idle_polls = 1
            return summary

        with ThreadPoolExecutor(
            max_workers=min(self.concurrency, len(pending)),
            thread_name_prefix="bulkgen-job",
        ) as pool:
            futures = [pool.submit(self.orchestrator.process_job, job.job_id) for job in pending]
            for job, future in zip(pending, futures, strict=True):
                try:
                    report = future.result()
                except Exception:  # noqa: BLE001
                    logger.exception("Job %s: orchestrator crashed", job.job_id)
                    report = ProcessReport(job_id=job.job_id, outcome=ProcessOutcome.SKIPPED)
                if report.outcome is ProcessOutcome.SKIPPED:
                    self._ignored.add(job.job_id)
                _count(summary, report)
        return summary

    def run_loop(
        self,
        *,
        max_jobs: int | None = None,
        max_idle_polls: int = 1,
    ) -> WorkerRunSummary:
        """Poll until the queue stays idle, `max_jobs` were handled or a stop signal arrives."""

        aggregate = WorkerRunSummary()
        consecutive_idle = 0
        with self._signal_handlers():
            while True:
                if self._stop_requested:
                    return aggregate
                if max_jobs is not None and aggregate.processed >= max_jobs:
                    return aggregate

                summary = self.run_once()
                aggregate.add(summary)

                if summary.processed == 0:
                    consecutive_idle += 1
                    if consecutive_idle >= max_idle_polls:
                        return aggregate
                    self._sleep_with_stop(self.poll_interval_seconds)
                    continue
                consecutive_idle = 0

    def request_stop(self) -> None:
        self._stop_requested = True

    def _prune_ignored(self) -> None:
        """Forget skipped ids that are no longer pending."""

        for job_id in list(self._ignored):
            job = self.jobs.get_job(job_id)
            if job is None or job.status is not JobStatus.PENDING:
                self._ignored.discard(job_id)

    def _sleep_with_stop(self, seconds: float) -> None:
        deadline = time.monotonic() + seconds
        while not self._stop_requested and time.monotonic() < deadline:
            time.sleep(min(0.1, max(0.0, deadline - time.monotonic())))

    @contextmanager
    def _signal_handlers(self) -> Iterator[None]:
        original_sigint = signal.getsignal(signal.SIGINT)
        original_sigterm = signal.getsignal(signal.SIGTERM)

        def _handler(signum: int, _: object | None) -> None:
            logger.info("Received %s, stopping after in-flight jobs", signal.Signals(signum).name)
            self.request_stop()

        installed = False
        try:
            signal.signal(signal.SIGINT, _handler)
            signal.signal(signal.SIGTERM, _handler)
            installed = True
        except ValueError:
            # Signal handlers can only be installed in main thread.
            logger.debug("Signal handlers not installed outside the main thread")
        try:
            yield
        finally:
            if installed:
                signal.signal(signal.SIGINT, original_sigint)
                signal.signal(signal.SIGTERM, original_sigterm)


def _count(summary: WorkerRunSummary, report: ProcessReport) -> None:
    summary.processed += 1
    if report.outcome is ProcessOutcome.COMPLETED:
        summary.completed += 1
    elif report.outcome is ProcessOutcome.FAILED:
        summary.failed += 1
    else:
        summary.skipped += 1
