"""Task submission and job status services."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from bulkgen.admission.control import AdmissionController, AdmissionDenied
from bulkgen.config import JobSettings
from bulkgen.jobs.models import JobStatus, JobView
from bulkgen.jobs.repository import JOB_ID_PREFIX, JobRepository
from bulkgen.jobs.validation import (
    TaskDataError,
    count_items,
    estimate_processing_seconds,
    parse_task_data,
    parse_task_type,
)
from bulkgen.licensing.models import AuditStatus
from bulkgen.licensing.repository import LicenseRepository

logger = logging.getLogger(__name__)

TASK_SUBMISSION_REQUEST = "task_submission"


class JobLookupError(LookupError):
    """Status lookup rejected: malformed id, unknown job or another tenant's job."""

    def __init__(self, code: str, message: str) -> None:
        super().__init__(message)
        self.code = code
        self.message = message


@dataclass(slots=True, frozen=True)
class SubmissionReceipt:
    job_id: str
    status: JobStatus
    estimated_wait_seconds: int
    item_count: int

    def to_payload(self) -> dict[str, Any]:
        return {
            "success": True,
            "job_id": self.job_id,
            "status": self.status.value,
            "estimated_wait_seconds": self.estimated_wait_seconds,
        }


class SubmissionService:
    """Admits a task submission and enqueues it as a pending job."""

    def __init__(
        self,
        *,
        jobs: JobRepository,
        licenses: LicenseRepository,
        admission: AdmissionController,
        settings: JobSettings,
    ) -> None:
        self.jobs = jobs
        self.licenses = licenses
        self.admission = admission
        self.settings = settings

    def submit(
        self,
        *,
        license_id: str,
        task_type: object,
        task_data: object,
        ip_address: str | None = None,
    ) -> SubmissionReceipt:
        """Check, validate and persist; raises before any job exists on rejection."""

        try:
            license_view = self.admission.require_license(license_id)
            self.admission.check_task_rate_limit(license_id)
            self.admission.check_pending_jobs(license_id)
            parsed_type = parse_task_type(task_type)
            parsed_data = parse_task_data(
                parsed_type,
                task_data,
                max_items=self.settings.max_bulk_items,
            )
            self.admission.check_quota(license_view)
        except (AdmissionDenied, TaskDataError) as error:
            logger.warning(
                "Task submission rejected: license_id=%s code=%s: %s",
                license_id,
                error.code,
                error,
            )
            self.licenses.add_audit_log(
                license_id=license_id,
                request_type=TASK_SUBMISSION_REQUEST,
                status=AuditStatus.FAILED,
                error_message=str(error),
                ip_address=ip_address,
                metadata={"code": error.code},
            )
            raise

        item_count = count_items(parsed_data)
        job = self.jobs.create_job(
            license_id=license_id,
            task_type=parsed_type,
            task_data=parsed_data.to_payload(),
            max_attempts=self.settings.max_attempts,
        )
        estimate = estimate_processing_seconds(parsed_type, item_count)
        self.licenses.add_audit_log(
            license_id=license_id,
            request_type=TASK_SUBMISSION_REQUEST,
            status=AuditStatus.SUCCESS,
            ip_address=ip_address,
            metadata={
                "job_id": job.job_id,
                "task_type": parsed_type.value,
                "item_count": item_count,
            },
        )
        logger.info(
            "Task submitted: license_id=%s job_id=%s task_type=%s items=%d estimate=%ds",
            license_id,
            job.job_id,
            parsed_type.value,
            item_count,
            estimate,
        )
        return SubmissionReceipt(
            job_id=job.job_id,
            status=job.status,
            estimated_wait_seconds=estimate,
            item_count=item_count,
        )


class JobStatusService:
    """Tenant-scoped job status lookups."""

    def __init__(self, *, jobs: JobRepository) -> None:
        self.jobs = jobs

    def get_status(self, *, license_id: str, job_id: str) -> dict[str, Any]:
        if not job_id or not job_id.startswith(JOB_ID_PREFIX):
            raise JobLookupError("INVALID_JOB_ID", "Invalid job ID format")
        job = self.jobs.get_job(job_id)
        if job is None:
            raise JobLookupError("JOB_NOT_FOUND", "Job not found")
        if job.license_id != license_id:
            logger.warning(
                "Job access denied: job_id=%s requested_by=%s owner=%s",
                job_id,
                license_id,
                job.license_id,
            )
            raise JobLookupError("ACCESS_DENIED", "You do not have access to this job")
        return build_status_view(job)


def build_status_view(job: JobView) -> dict[str, Any]:
    """Status envelope; progress, result and error appear only when set."""

    payload: dict[str, Any] = {
        "success": True,
        "job_id": job.job_id,
        "status": job.status.value,
        "created_at": job.created_at.isoformat(),
    }
    if job.progress is not None:
        payload["progress"] = job.progress.to_payload()
    if job.status is JobStatus.COMPLETED and job.result is not None:
        payload["result"] = job.result.to_payload()
    if job.status is JobStatus.FAILED and job.error_message:
        payload["error"] = job.error_message
    if job.started_at is not None:
        payload["started_at"] = job.started_at.isoformat()
    if job.completed_at is not None:
        payload["completed_at"] = job.completed_at.isoformat()
    return payload
