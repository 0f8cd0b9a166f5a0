"""Job lifecycle driver: claim, attempt, retry with backoff, settle."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from enum import Enum

from bulkgen.config import JobSettings
from bulkgen.jobs.models import BatchResult, JobProgress, JobStatus, JobView, TaskType
from bulkgen.jobs.processors.base import BatchProcessor
from bulkgen.jobs.repository import JobRepository
from bulkgen.jobs.validation import TaskDataError, parse_task_data, parse_task_type
from bulkgen.licensing.repository import LicenseRepository
from bulkgen.retry import backoff_delay

logger = logging.getLogger(__name__)

EXHAUSTED_MESSAGE = "Maximum attempts exhausted"


class ProcessOutcome(str, Enum):
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass(slots=True)
class ProcessReport:
    """What one orchestrator invocation did with a job."""

    job_id: str
    outcome: ProcessOutcome
    attempts: int = 0
    error: str | None = None


class JobOrchestrator:
    """Sole owner of job state transitions once a job exists."""

    def __init__(  # noqa: PLR0913
        self,
        *,
        jobs: JobRepository,
        licenses: LicenseRepository,
        processors: Mapping[TaskType, BatchProcessor],
        settings: JobSettings,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.jobs = jobs
        self.licenses = licenses
        self.processors = processors
        self.settings = settings
        self._sleep = sleep

    def process_job(self, job_id: str) -> ProcessReport:
        """Run a pending job to a terminal state; anything else is logged and skipped."""

        job = self.jobs.get_job(job_id)
        if job is None:
            logger.warning("Job %s: not found, skipping", job_id)
            return ProcessReport(job_id=job_id, outcome=ProcessOutcome.SKIPPED, error="not found")
        if job.status is not JobStatus.PENDING:
            logger.info("Job %s: status is %s, skipping", job_id, job.status.value)
            return ProcessReport(
                job_id=job_id,
                outcome=ProcessOutcome.SKIPPED,
                attempts=job.attempts,
            )

        try:
            task_type = parse_task_type(job.task_type)
            task_data = parse_task_data(
                task_type,
                job.task_data,
                max_items=self.settings.max_bulk_items,
            )
        except TaskDataError as error:
            logger.error("Job %s: invalid stored job ignored: %s", job_id, error)
            return ProcessReport(job_id=job_id, outcome=ProcessOutcome.SKIPPED, error=str(error))

        processor = self.processors.get(task_type)
        if processor is None:
            logger.error("Job %s: no processor for task type %s", job_id, task_type.value)
            return ProcessReport(
                job_id=job_id,
                outcome=ProcessOutcome.SKIPPED,
                error=f"no processor for {task_type.value}",
            )

        if not self.jobs.claim_job(job_id=job_id):
            logger.info("Job %s: already claimed by another trigger", job_id)
            return ProcessReport(
                job_id=job_id,
                outcome=ProcessOutcome.SKIPPED,
                attempts=job.attempts,
            )

        logger.info(
            "Job %s: processing %s for license %s (max_attempts=%d)",
            job_id,
            task_type.value,
            job.license_id,
            job.max_attempts,
        )
        attempts = job.attempts
        last_error = job.error_message or EXHAUSTED_MESSAGE
        while attempts < job.max_attempts:
            try:
                result = processor.process(
                    job_id=job_id,
                    task_data=task_data,
                    progress_sink=self._progress_sink(job_id),
                )
            except Exception as error:  # noqa: BLE001
                last_error = str(error) or error.__class__.__name__
                previous = attempts
                attempts = self.jobs.increment_attempts(job_id=job_id, error_message=last_error)
                if attempts <= previous:
                    logger.error(
                        "Job %s: attempt not recorded, job is no longer processing: %s",
                        job_id,
                        last_error,
                    )
                    return ProcessReport(
                        job_id=job_id,
                        outcome=ProcessOutcome.SKIPPED,
                        attempts=attempts,
                        error=last_error,
                    )
                logger.warning(
                    "Job %s: attempt %d/%d failed: %s",
                    job_id,
                    attempts,
                    job.max_attempts,
                    last_error,
                )
                if attempts < job.max_attempts:
                    self._schedule_retry(job_id, attempts=attempts)
                continue

            if not self.jobs.complete_job(job_id=job_id, result=result):
                logger.error("Job %s: completion rejected, job is no longer processing", job_id)
                return ProcessReport(
                    job_id=job_id,
                    outcome=ProcessOutcome.SKIPPED,
                    attempts=attempts,
                )
            self._account_usage(job, result)
            logger.info(
                "Job %s: completed items=%d failed=%d tokens=%d cost=%.6f",
                job_id,
                len(result.items),
                result.failed,
                result.total_tokens,
                result.total_cost,
            )
            return ProcessReport(job_id=job_id, outcome=ProcessOutcome.COMPLETED, attempts=attempts)

        self.jobs.fail_job(job_id=job_id, error_message=last_error)
        logger.error("Job %s: failed after %d attempt(s): %s", job_id, attempts, last_error)
        return ProcessReport(
            job_id=job_id,
            outcome=ProcessOutcome.FAILED,
            attempts=attempts,
            error=last_error,
        )

    def _schedule_retry(self, job_id: str, *, attempts: int) -> None:
        delay = backoff_delay(
            retry_number=attempts,
            base_seconds=self.settings.retry_base_seconds,
            max_seconds=self.settings.retry_max_seconds,
        )
        self.jobs.record_event(
            job_id=job_id,
            event_type="retry_scheduled",
            details={"attempt": attempts, "delay_seconds": delay},
        )
        logger.info("Job %s: retrying in %.1fs", job_id, delay)
        self._sleep(delay)
        self.jobs.update_status(
            job_id=job_id,
            status=JobStatus.PROCESSING,
            expected=JobStatus.PROCESSING,
            details={"attempt": attempts + 1},
        )

    def _progress_sink(self, job_id: str) -> Callable[[JobProgress], None]:
        def sink(progress: JobProgress) -> None:
            self.jobs.update_progress(job_id=job_id, progress=progress)

        return sink

    def _account_usage(self, job: JobView, result: BatchResult) -> None:
        """Forward token and cost deltas; failures here never reopen the job."""

        try:
            if result.total_tokens > 0:
                self.licenses.add_token_usage(license_id=job.license_id, delta=result.total_tokens)
            for provider, usage in sorted(result.usage_by_provider().items()):
                self.licenses.add_cost_usage(
                    license_id=job.license_id,
                    provider=provider,
                    tokens_input=usage.tokens_input,
                    tokens_output=usage.tokens_output,
                    cost_usd=round(usage.cost_usd, 6),
                )
        except Exception:  # noqa: BLE001
            logger.exception(
                "Job %s: usage accounting failed for license %s",
                job.job_id,
                job.license_id,
            )
