"""SQLModel ORM tables for licenses, jobs and usage accounting."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Index, Text, UniqueConstraint
from sqlmodel import Field, SQLModel


class License(SQLModel, table=True):
    __tablename__ = "licenses"  # type: ignore[bad-override]

    license_id: str = Field(primary_key=True)
    license_key: str = Field(unique=True, index=True)
    site_url: str
    user_id: str = Field(index=True)
    plan: str
    tokens_limit: int = Field(default=0)
    tokens_used: int = Field(default=0)
    status: str = Field(index=True)
    reset_date: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))
    expires_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class Job(SQLModel, table=True):
    __tablename__ = "jobs"  # type: ignore[bad-override]
    __table_args__ = (
        Index("idx_jobs_license_status", "license_id", "status"),
        Index("idx_jobs_status_created", "status", "created_at"),
    )

    job_id: str = Field(primary_key=True)
    license_id: str = Field(
        sa_column=Column(
            ForeignKey("licenses.license_id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
    )
    task_type: str = Field(index=True)
    status: str = Field(index=True)
    task_data_json: str = Field(sa_column=Column(Text, nullable=False))
    attempts: int = Field(default=0)
    max_attempts: int = Field(default=3)
    progress_json: str | None = Field(default=None, sa_column=Column(Text))
    result_json: str | None = Field(default=None, sa_column=Column(Text))
    error_message: str | None = Field(default=None, sa_column=Column(Text))
    tokens_used: int = Field(default=0)
    cost_usd: float = Field(default=0.0)
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    started_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))
    completed_at: datetime | None = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True)),
    )
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class JobEvent(SQLModel, table=True):
    __tablename__ = "job_events"  # type: ignore[bad-override]
    __table_args__ = (Index("idx_job_events_job_time", "job_id", "created_at"),)

    id: int | None = Field(default=None, primary_key=True)
    job_id: str = Field(
        sa_column=Column(
            ForeignKey("jobs.job_id", ondelete="CASCADE"),
            nullable=False,
        ),
    )
    event_type: str = Field(index=True)
    status_from: str | None = None
    status_to: str | None = None
    details_json: str | None = Field(default=None, sa_column=Column(Text))
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class RateLimitCounter(SQLModel, table=True):
    __tablename__ = "rate_limit_counters"  # type: ignore[bad-override]

    counter_key: str = Field(primary_key=True)
    count: int = Field(default=0)
    window_start: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    expires_at: datetime = Field(
        sa_column=Column(DateTime(timezone=True), nullable=False, index=True),
    )


class CostLedgerEntry(SQLModel, table=True):
    __tablename__ = "cost_ledger"  # type: ignore[bad-override]
    __table_args__ = (
        UniqueConstraint(
            "license_id",
            "month",
            "provider",
            name="uq_cost_ledger_license_month_provider",
        ),
    )

    id: int | None = Field(default=None, primary_key=True)
    license_id: str = Field(
        sa_column=Column(
            ForeignKey("licenses.license_id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
    )
    month: str = Field(index=True)
    provider: str
    tokens_input: int = Field(default=0)
    tokens_output: int = Field(default=0)
    cost_usd: float = Field(default=0.0)
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class AuditLog(SQLModel, table=True):
    __tablename__ = "audit_logs"  # type: ignore[bad-override]
    __table_args__ = (Index("idx_audit_logs_license_time", "license_id", "created_at"),)

    id: int | None = Field(default=None, primary_key=True)
    license_id: str | None = None
    request_type: str = Field(index=True)
    status: str = Field(index=True)
    error_message: str | None = Field(default=None, sa_column=Column(Text))
    ip_address: str | None = None
    provider_used: str | None = None
    tokens_used: int = Field(default=0)
    cost_usd: float = Field(default=0.0)
    metadata_json: str | None = Field(default=None, sa_column=Column(Text))
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
