from __future__ import annotations

import allure
import pytest

from bulkgen.admission.control import AdmissionController, AdmissionDenied
from bulkgen.admission.rate_limit import InMemoryCounterStore, RateLimiter
from bulkgen.config import AdmissionSettings, JobSettings
from bulkgen.jobs.models import JobStatus, TaskType
from bulkgen.jobs.services import JobLookupError, JobStatusService, SubmissionService
from bulkgen.jobs.validation import TaskDataError
from bulkgen.licensing.models import AuditStatus

pytestmark = [
    allure.epic("Bulk Jobs"),
    allure.feature("Submission & Status"),
]


@pytest.fixture()
def submission(job_repository, license_repository) -> SubmissionService:
    admission = AdmissionController(
        licenses=license_repository,
        jobs=job_repository,
        rate_limiter=RateLimiter(InMemoryCounterStore()),
        settings=AdmissionSettings(),
    )
    return SubmissionService(
        jobs=job_repository,
        licenses=license_repository,
        admission=admission,
        settings=JobSettings(),
    )


def test_submit_creates_pending_job_with_estimate(
    submission: SubmissionService,
    job_repository,
    license_repository,
    active_license,
) -> None:
    receipt = submission.submit(
        license_id=active_license.license_id,
        task_type="articles",
        task_data={"topics": ["Topic A", "Topic B"]},
        ip_address="203.0.113.7",
    )

    assert receipt.status is JobStatus.PENDING
    assert receipt.estimated_wait_seconds == 35
    assert receipt.to_payload() == {
        "success": True,
        "job_id": receipt.job_id,
        "status": "pending",
        "estimated_wait_seconds": 35,
    }
    job = job_repository.get_job(receipt.job_id)
    assert job.task_data["topics"] == ["Topic A", "Topic B"]
    assert job.task_data["word_count"] == 800

    [audit] = license_repository.list_audit_logs(license_id=active_license.license_id)
    assert audit.request_type == "task_submission"
    assert audit.status is AuditStatus.SUCCESS
    assert audit.ip_address == "203.0.113.7"
    assert audit.metadata["job_id"] == receipt.job_id


def test_low_quota_rejects_without_creating_job(
    submission: SubmissionService,
    job_repository,
    license_repository,
    make_license,
) -> None:
    poor = make_license(tokens_limit=50)

    with pytest.raises(AdmissionDenied) as error:
        submission.submit(
            license_id=poor.license_id,
            task_type="articles",
            task_data={"topics": ["A"]},
        )

    assert error.value.code == "QUOTA_EXCEEDED"
    assert job_repository.list_jobs(license_id=poor.license_id) == []
    [audit] = license_repository.list_audit_logs(license_id=poor.license_id)
    assert audit.status is AuditStatus.FAILED
    assert audit.metadata == {"code": "QUOTA_EXCEEDED"}


@pytest.mark.parametrize(
    ("task_type", "task_data", "code"),
    [
        ("videos", {"topics": ["A"]}, "INVALID_TASK_TYPE"),
        ("articles", None, "MISSING_TASK_DATA"),
        ("products", {"products": []}, "INVALID_TASK_DATA"),
    ],
)
def test_invalid_payloads_are_rejected(
    submission: SubmissionService,
    job_repository,
    active_license,
    task_type: str,
    task_data: object,
    code: str,
) -> None:
    with pytest.raises(TaskDataError) as error:
        submission.submit(
            license_id=active_license.license_id,
            task_type=task_type,
            task_data=task_data,
        )

    assert error.value.code == code
    assert job_repository.list_jobs() == []


def test_unknown_license_is_audited(submission: SubmissionService, license_repository) -> None:
    with pytest.raises(AdmissionDenied) as error:
        submission.submit(license_id="lic_missing", task_type="articles", task_data={})

    assert error.value.code == "LICENSE_NOT_FOUND"
    assert license_repository.list_audit_logs(license_id="lic_missing")[0].error_message == (
        "License not found"
    )


def test_pending_cap_blocks_sixth_job(submission: SubmissionService, active_license) -> None:
    for _ in range(5):
        submission.submit(
            license_id=active_license.license_id,
            task_type="articles",
            task_data={"topics": ["A"]},
        )

    with pytest.raises(AdmissionDenied) as error:
        submission.submit(
            license_id=active_license.license_id,
            task_type="articles",
            task_data={"topics": ["A"]},
        )
    assert error.value.code == "TOO_MANY_PENDING_JOBS"


def test_status_is_tenant_scoped(job_repository, make_license) -> None:
    owner = make_license()
    stranger = make_license()
    job = job_repository.create_job(
        license_id=owner.license_id,
        task_type=TaskType.PRODUCTS,
        task_data={"products": [{"name": "Lamp"}]},
    )
    service = JobStatusService(jobs=job_repository)

    status = service.get_status(license_id=owner.license_id, job_id=job.job_id)
    assert status["success"] is True
    assert status["status"] == "pending"
    assert "result" not in status
    assert "progress" not in status
    assert "started_at" not in status

    for license_id, job_id, code in [
        (owner.license_id, "12345", "INVALID_JOB_ID"),
        (owner.license_id, "job_missing", "JOB_NOT_FOUND"),
        (stranger.license_id, job.job_id, "ACCESS_DENIED"),
    ]:
        with pytest.raises(JobLookupError) as error:
            service.get_status(license_id=license_id, job_id=job_id)
        assert error.value.code == code


def test_status_of_failed_job_carries_error(job_repository, active_license) -> None:
    job = job_repository.create_job(
        license_id=active_license.license_id,
        task_type=TaskType.ARTICLES,
        task_data={"topics": ["A"]},
    )
    job_repository.claim_job(job_id=job.job_id)
    job_repository.fail_job(job_id=job.job_id, error_message="Maximum attempts exhausted")

    status = JobStatusService(jobs=job_repository).get_status(
        license_id=active_license.license_id,
        job_id=job.job_id,
    )

    assert status["status"] == "failed"
    assert status["error"] == "Maximum attempts exhausted"
    assert "started_at" in status
    assert "completed_at" in status
