"""Persistent job store backed by SQLModel + SQLite."""

from __future__ import annotations

import json
from collections.abc import Mapping
from pathlib import Path
from typing import Any
from uuid import uuid4

from sqlalchemy import func
from sqlalchemy import update as sa_update
from sqlmodel import Session, col, select

from bulkgen.jobs.models import (
    ACTIVE_JOB_STATUSES,
    TERMINAL_JOB_STATUSES,
    BatchResult,
    JobEventView,
    JobProgress,
    JobStatus,
    JobView,
    TaskType,
)
from bulkgen.storage.alembic_runner import upgrade_head
from bulkgen.storage.common import (
    build_sqlite_engine,
    optional_utc,
    to_db_datetime,
    to_utc_aware_datetime,
    utc_now,
)
from bulkgen.storage.sqlmodel_models import Job, JobEvent

JOB_ID_PREFIX = "job_"

_ALLOWED_SOURCES: dict[JobStatus, tuple[JobStatus, ...]] = {
    JobStatus.PROCESSING: (JobStatus.PENDING, JobStatus.PROCESSING),
    JobStatus.COMPLETED: (JobStatus.PROCESSING,),
    JobStatus.FAILED: (JobStatus.PROCESSING,),
}
_MUTABLE_FIELDS = frozenset({"progress_json", "tokens_used", "cost_usd"})


class JobRepository:
    """Job persistence facade; every state change is a guarded conditional update."""

    def __init__(self, db_path: Path, *, sqlite_busy_timeout_ms: int = 5_000) -> None:
        self.db_path = db_path
        self.engine = build_sqlite_engine(db_path=db_path, busy_timeout_ms=sqlite_busy_timeout_ms)

    def close(self) -> None:
        """Close underlying DB resources."""

        self.engine.dispose()

    def init_schema(self) -> None:
        """Run schema migrations."""

        upgrade_head(self.db_path)

    def create_job(
        self,
        *,
        license_id: str,
        task_type: TaskType,
        task_data: Mapping[str, Any],
        max_attempts: int = 3,
    ) -> JobView:
        """Create a pending job."""

        now = utc_now()
        job_id = f"{JOB_ID_PREFIX}{uuid4()}"
        with Session(self.engine) as session:
            row = Job(
                job_id=job_id,
                license_id=license_id,
                task_type=task_type.value,
                status=JobStatus.PENDING.value,
                task_data_json=json.dumps(task_data, ensure_ascii=False, sort_keys=True),
                attempts=0,
                max_attempts=max_attempts,
                created_at=now,
                updated_at=now,
            )
            session.add(row)
            session.flush()
            self.add_job_event(
                session=session,
                job_id=job_id,
                event_type="created",
                status_from=None,
                status_to=JobStatus.PENDING,
                details={"task_type": task_type.value, "max_attempts": max_attempts},
            )
            session.commit()
            session.refresh(row)
            return _to_job_view(row)

    def get_job(self, job_id: str) -> JobView | None:
        with Session(self.engine) as session:
            row = session.exec(select(Job).where(Job.job_id == job_id)).one_or_none()
            return _to_job_view(row) if row is not None else None

    def list_jobs(
        self,
        *,
        status: JobStatus | None = None,
        license_id: str | None = None,
        limit: int = 50,
        oldest_first: bool = False,
    ) -> list[JobView]:
        with Session(self.engine) as session:
            query = select(Job)
            if status is not None:
                query = query.where(Job.status == status.value)
            if license_id is not None:
                query = query.where(Job.license_id == license_id)
            order = col(Job.created_at).asc() if oldest_first else col(Job.created_at).desc()
            rows = session.exec(query.order_by(order).limit(max(1, limit))).all()
            return [_to_job_view(row) for row in rows]

    def list_events(self, job_id: str) -> list[JobEventView]:
        with Session(self.engine) as session:
            rows = session.exec(
                select(JobEvent)
                .where(JobEvent.job_id == job_id)
                .order_by(col(JobEvent.created_at).asc(), col(JobEvent.id).asc()),
            ).all()
            return [_to_event_view(row) for row in rows]

    def count_active_jobs(self, license_id: str) -> int:
        """Jobs of a license that are still pending or processing."""

        with Session(self.engine) as session:
            count = session.exec(
                select(func.count())
                .select_from(Job)
                .where(
                    Job.license_id == license_id,
                    col(Job.status).in_([status.value for status in ACTIVE_JOB_STATUSES]),
                ),
            ).one()
            return int(count)

    def claim_job(self, *, job_id: str) -> bool:
        """Move a pending job to processing; False when another trigger got there first."""

        return self.update_status(
            job_id=job_id,
            status=JobStatus.PROCESSING,
            expected=JobStatus.PENDING,
        )

    def update_status(
        self,
        *,
        job_id: str,
        status: JobStatus,
        expected: JobStatus | None = None,
        details: dict[str, object] | None = None,
    ) -> bool:
        """Apply a legal status transition, stamping `started_at` / `completed_at`."""

        sources = _ALLOWED_SOURCES.get(status)
        if sources is None:
            raise ValueError(f"Unsupported target status: {status.value}")
        if expected is not None:
            if expected not in sources:
                raise ValueError(
                    f"Illegal transition {expected.value} -> {status.value}",
                )
            sources = (expected,)

        now = utc_now()
        with Session(self.engine) as session:
            row = session.exec(select(Job).where(Job.job_id == job_id)).one_or_none()
            if row is None:
                return False
            current = JobStatus(row.status)
            if current not in sources:
                return False

            values: dict[str, Any] = {
                "status": status.value,
                "updated_at": to_db_datetime(now),
            }
            if status is JobStatus.PROCESSING:
                values["started_at"] = func.coalesce(col(Job.started_at), to_db_datetime(now))
            if status in TERMINAL_JOB_STATUSES:
                values["completed_at"] = to_db_datetime(now)

            result = session.exec(
                sa_update(Job)
                .where(
                    col(Job.job_id) == job_id,
                    col(Job.status) == current.value,
                )
                .values(**values),
            )
            if result.rowcount != 1:
                session.rollback()
                return False
            self.add_job_event(
                session=session,
                job_id=job_id,
                event_type=_transition_event(current, status),
                status_from=current,
                status_to=status,
                details=details or {},
            )
            session.commit()
            return True

    def update_job(self, *, job_id: str, fields: Mapping[str, object]) -> bool:
        """Update mutable columns of a non-terminal job."""

        unknown = set(fields) - _MUTABLE_FIELDS
        if unknown:
            raise ValueError(f"Unsupported job fields: {', '.join(sorted(unknown))}")
        if not fields:
            return False

        with Session(self.engine) as session:
            result = session.exec(
                sa_update(Job)
                .where(
                    col(Job.job_id) == job_id,
                    col(Job.status).not_in([status.value for status in TERMINAL_JOB_STATUSES]),
                )
                .values(**fields, updated_at=to_db_datetime(utc_now())),
            )
            if result.rowcount != 1:
                session.rollback()
                return False
            session.commit()
            return True

    def update_progress(self, *, job_id: str, progress: JobProgress) -> bool:
        return self.update_job(
            job_id=job_id,
            fields={"progress_json": json.dumps(progress.to_payload(), ensure_ascii=False)},
        )

    def increment_attempts(self, *, job_id: str, error_message: str) -> int:
        """Atomically count one failed attempt of a processing job; returns the new total."""

        now = utc_now()
        with Session(self.engine) as session:
            result = session.exec(
                sa_update(Job)
                .where(
                    col(Job.job_id) == job_id,
                    col(Job.status) == JobStatus.PROCESSING.value,
                    col(Job.attempts) < col(Job.max_attempts),
                )
                .values(
                    attempts=col(Job.attempts) + 1,
                    updated_at=to_db_datetime(now),
                ),
            )
            row = session.exec(select(Job).where(Job.job_id == job_id)).one_or_none()
            if row is None:
                session.rollback()
                raise RuntimeError(f"Job not found: {job_id}")
            if result.rowcount != 1:
                session.rollback()
                return row.attempts
            self.add_job_event(
                session=session,
                job_id=job_id,
                event_type="attempt_failed",
                status_from=JobStatus.PROCESSING,
                status_to=JobStatus.PROCESSING,
                details={"attempt": row.attempts, "error": error_message},
            )
            session.commit()
            return row.attempts

    def complete_job(self, *, job_id: str, result: BatchResult) -> bool:
        """Persist the batch result and mark a processing job completed."""

        now = utc_now()
        with Session(self.engine) as session:
            update_result = session.exec(
                sa_update(Job)
                .where(
                    col(Job.job_id) == job_id,
                    col(Job.status) == JobStatus.PROCESSING.value,
                )
                .values(
                    status=JobStatus.COMPLETED.value,
                    result_json=json.dumps(result.to_payload(), ensure_ascii=False),
                    error_message=None,
                    tokens_used=result.total_tokens,
                    cost_usd=result.total_cost,
                    completed_at=to_db_datetime(now),
                    updated_at=to_db_datetime(now),
                ),
            )
            if update_result.rowcount != 1:
                session.rollback()
                return False
            self.add_job_event(
                session=session,
                job_id=job_id,
                event_type="completed",
                status_from=JobStatus.PROCESSING,
                status_to=JobStatus.COMPLETED,
                details={
                    "items": len(result.items),
                    "succeeded": result.succeeded,
                    "failed": result.failed,
                    "total_tokens": result.total_tokens,
                    "total_cost": result.total_cost,
                },
            )
            session.commit()
            return True

    def fail_job(self, *, job_id: str, error_message: str) -> bool:
        """Mark a processing job failed with its last error."""

        now = utc_now()
        with Session(self.engine) as session:
            result = session.exec(
                sa_update(Job)
                .where(
                    col(Job.job_id) == job_id,
                    col(Job.status) == JobStatus.PROCESSING.value,
                )
                .values(
                    status=JobStatus.FAILED.value,
                    error_message=error_message,
                    result_json=None,
                    completed_at=to_db_datetime(now),
                    updated_at=to_db_datetime(now),
                ),
            )
            if result.rowcount != 1:
                session.rollback()
                return False
            self.add_job_event(
                session=session,
                job_id=job_id,
                event_type="failed",
                status_from=JobStatus.PROCESSING,
                status_to=JobStatus.FAILED,
                details={"error": error_message},
            )
            session.commit()
            return True

    def record_event(
        self,
        *,
        job_id: str,
        event_type: str,
        details: dict[str, object],
    ) -> None:
        """Append a standalone event (no status change) to the job trail."""

        with Session(self.engine) as session:
            self.add_job_event(
                session=session,
                job_id=job_id,
                event_type=event_type,
                status_from=None,
                status_to=None,
                details=details,
            )
            session.commit()

    def add_job_event(  # noqa: PLR0913
        self,
        *,
        session: Session,
        job_id: str,
        event_type: str,
        status_from: JobStatus | None,
        status_to: JobStatus | None,
        details: dict[str, object],
    ) -> None:
        session.add(
            JobEvent(
                job_id=job_id,
                event_type=event_type,
                status_from=status_from.value if status_from is not None else None,
                status_to=status_to.value if status_to is not None else None,
                details_json=json.dumps(details, ensure_ascii=False, sort_keys=True)
                if details
                else None,
                created_at=utc_now(),
            ),
        )


def _transition_event(current: JobStatus, target: JobStatus) -> str:
    if target is JobStatus.PROCESSING:
        return "processing_started" if current is JobStatus.PENDING else "retry_started"
    return target.value


def _to_job_view(row: Job) -> JobView:
    return JobView(
        job_id=row.job_id,
        license_id=row.license_id,
        task_type=row.task_type,
        task_data=json.loads(row.task_data_json),
        status=JobStatus(row.status),
        attempts=row.attempts,
        max_attempts=row.max_attempts,
        progress=(
            JobProgress.from_payload(json.loads(row.progress_json))
            if row.progress_json is not None
            else None
        ),
        result=(
            BatchResult.from_payload(json.loads(row.result_json))
            if row.result_json is not None
            else None
        ),
        error_message=row.error_message,
        tokens_used=row.tokens_used,
        cost_usd=row.cost_usd,
        created_at=to_utc_aware_datetime(row.created_at),
        started_at=optional_utc(row.started_at),
        completed_at=optional_utc(row.completed_at),
        updated_at=to_utc_aware_datetime(row.updated_at),
    )


def _to_event_view(row: JobEvent) -> JobEventView:
    return JobEventView(
        event_id=row.id or 0,
        job_id=row.job_id,
        event_type=row.event_type,
        status_from=JobStatus(row.status_from) if row.status_from is not None else None,
        status_to=JobStatus(row.status_to) if row.status_to is not None else None,
        details=json.loads(row.details_json) if row.details_json else {},
        created_at=to_utc_aware_datetime(row.created_at),
    )
