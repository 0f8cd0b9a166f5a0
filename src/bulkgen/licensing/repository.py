"""License, usage accounting and audit persistence."""

from __future__ import annotations

import json
import secrets
import string
from datetime import datetime
from pathlib import Path
from uuid import uuid4

from sqlalchemy import update as sa_update
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlmodel import Session, col, select

from bulkgen.licensing.models import (
    AuditLogView,
    AuditStatus,
    CostLedgerView,
    LicensePlan,
    LicenseStatus,
    LicenseView,
)
from bulkgen.storage.alembic_runner import upgrade_head
from bulkgen.storage.common import (
    build_sqlite_engine,
    month_key,
    optional_utc,
    to_db_datetime,
    to_utc_aware_datetime,
    utc_now,
)
from bulkgen.storage.sqlmodel_models import AuditLog, CostLedgerEntry, License

LICENSE_KEY_PREFIX = "CREATOR"
_KEY_ALPHABET = string.ascii_uppercase + string.digits


class LicenseRepository:
    """License store plus the usage counters and audit log tied to it."""

    def __init__(self, db_path: Path, *, sqlite_busy_timeout_ms: int = 5_000) -> None:
        self.db_path = db_path
        self.engine = build_sqlite_engine(db_path=db_path, busy_timeout_ms=sqlite_busy_timeout_ms)

    def close(self) -> None:
        self.engine.dispose()

    def init_schema(self) -> None:
        upgrade_head(self.db_path)

    def create_license(  # noqa: PLR0913
        self,
        *,
        site_url: str,
        user_id: str,
        plan: LicensePlan,
        tokens_limit: int,
        license_key: str | None = None,
        expires_at: datetime | None = None,
        reset_date: datetime | None = None,
    ) -> LicenseView:
        now = utc_now()
        row = License(
            license_id=f"lic_{uuid4().hex}",
            license_key=(license_key or generate_license_key(now)).strip().upper(),
            site_url=site_url,
            user_id=user_id,
            plan=plan.value,
            tokens_limit=tokens_limit,
            tokens_used=0,
            status=LicenseStatus.ACTIVE.value,
            reset_date=to_db_datetime(reset_date) if reset_date is not None else None,
            expires_at=to_db_datetime(expires_at) if expires_at is not None else None,
            created_at=now,
            updated_at=now,
        )
        with Session(self.engine) as session:
            session.add(row)
            session.commit()
            session.refresh(row)
            return _to_license_view(row)

    def get_license(self, license_id: str) -> LicenseView | None:
        with Session(self.engine) as session:
            row = session.exec(
                select(License).where(License.license_id == license_id),
            ).one_or_none()
            return _to_license_view(row) if row is not None else None

    def get_license_by_key(self, license_key: str) -> LicenseView | None:
        normalized = license_key.strip().upper()
        with Session(self.engine) as session:
            row = session.exec(
                select(License).where(License.license_key == normalized),
            ).one_or_none()
            return _to_license_view(row) if row is not None else None

    def set_status(self, *, license_id: str, status: LicenseStatus) -> bool:
        with Session(self.engine) as session:
            result = session.exec(
                sa_update(License)
                .where(col(License.license_id) == license_id)
                .values(status=status.value, updated_at=to_db_datetime(utc_now())),
            )
            if result.rowcount != 1:
                session.rollback()
                return False
            session.commit()
            return True

    def get_remaining_tokens(self, license_id: str) -> int:
        """Remaining token balance; zero for unknown licenses."""

        license_view = self.get_license(license_id)
        return license_view.tokens_remaining if license_view is not None else 0

    def add_token_usage(self, *, license_id: str, delta: int) -> bool:
        """Atomically add consumed tokens to the license counter."""

        if delta <= 0:
            return False
        with Session(self.engine) as session:
            result = session.exec(
                sa_update(License)
                .where(col(License.license_id) == license_id)
                .values(
                    tokens_used=col(License.tokens_used) + delta,
                    updated_at=to_db_datetime(utc_now()),
                ),
            )
            if result.rowcount != 1:
                session.rollback()
                return False
            session.commit()
            return True

    def add_cost_usage(  # noqa: PLR0913
        self,
        *,
        license_id: str,
        provider: str,
        tokens_input: int,
        tokens_output: int,
        cost_usd: float,
        at: datetime | None = None,
    ) -> None:
        """Accumulate per-provider usage into the monthly ledger row."""

        now = at or utc_now()
        month = month_key(now)
        stamp = to_db_datetime(now)
        table = CostLedgerEntry.__table__
        statement = sqlite_insert(table).values(
            license_id=license_id,
            month=month,
            provider=provider,
            tokens_input=tokens_input,
            tokens_output=tokens_output,
            cost_usd=cost_usd,
            updated_at=stamp,
        )
        statement = statement.on_conflict_do_update(
            index_elements=["license_id", "month", "provider"],
            set_={
                "tokens_input": table.c.tokens_input + statement.excluded.tokens_input,
                "tokens_output": table.c.tokens_output + statement.excluded.tokens_output,
                "cost_usd": table.c.cost_usd + statement.excluded.cost_usd,
                "updated_at": statement.excluded.updated_at,
            },
        )
        with Session(self.engine) as session:
            session.exec(statement)
            session.commit()

    def list_cost_ledger(
        self,
        *,
        license_id: str,
        month: str | None = None,
    ) -> list[CostLedgerView]:
        with Session(self.engine) as session:
            query = select(CostLedgerEntry).where(CostLedgerEntry.license_id == license_id)
            if month is not None:
                query = query.where(CostLedgerEntry.month == month)
            rows = session.exec(
                query.order_by(
                    col(CostLedgerEntry.month).asc(),
                    col(CostLedgerEntry.provider).asc(),
                ),
            ).all()
            return [
                CostLedgerView(
                    license_id=row.license_id,
                    month=row.month,
                    provider=row.provider,
                    tokens_input=row.tokens_input,
                    tokens_output=row.tokens_output,
                    cost_usd=row.cost_usd,
                    updated_at=to_utc_aware_datetime(row.updated_at),
                )
                for row in rows
            ]

    def add_audit_log(  # noqa: PLR0913
        self,
        *,
        license_id: str | None,
        request_type: str,
        status: AuditStatus,
        error_message: str | None = None,
        ip_address: str | None = None,
        provider_used: str | None = None,
        tokens_used: int = 0,
        cost_usd: float = 0.0,
        metadata: dict[str, object] | None = None,
    ) -> None:
        with Session(self.engine) as session:
            session.add(
                AuditLog(
                    license_id=license_id,
                    request_type=request_type,
                    status=status.value,
                    error_message=error_message,
                    ip_address=ip_address,
                    provider_used=provider_used,
                    tokens_used=tokens_used,
                    cost_usd=cost_usd,
                    metadata_json=json.dumps(metadata, ensure_ascii=False, sort_keys=True)
                    if metadata
                    else None,
                    created_at=utc_now(),
                ),
            )
            session.commit()

    def list_audit_logs(
        self,
        *,
        license_id: str | None = None,
        request_type: str | None = None,
        limit: int = 100,
    ) -> list[AuditLogView]:
        with Session(self.engine) as session:
            query = select(AuditLog)
            if license_id is not None:
                query = query.where(AuditLog.license_id == license_id)
            if request_type is not None:
                query = query.where(AuditLog.request_type == request_type)
            rows = session.exec(
                query.order_by(col(AuditLog.created_at).asc(), col(AuditLog.id).asc()).limit(
                    max(1, limit),
                ),
            ).all()
            return [
                AuditLogView(
                    audit_id=row.id or 0,
                    license_id=row.license_id,
                    request_type=row.request_type,
                    status=AuditStatus(row.status),
                    error_message=row.error_message,
                    ip_address=row.ip_address,
                    provider_used=row.provider_used,
                    tokens_used=row.tokens_used,
                    cost_usd=row.cost_usd,
                    metadata=json.loads(row.metadata_json) if row.metadata_json else {},
                    created_at=to_utc_aware_datetime(row.created_at),
                )
                for row in rows
            ]


def generate_license_key(now: datetime) -> str:
    """Random key in the `CREATOR-YYYY-XXXXX-XXXXX` format."""

    def block() -> str:
        return "".join(secrets.choice(_KEY_ALPHABET) for _ in range(5))

    return f"{LICENSE_KEY_PREFIX}-{now.year:04d}-{block()}-{block()}"


def _to_license_view(row: License) -> LicenseView:
    return LicenseView(
        license_id=row.license_id,
        license_key=row.license_key,
        site_url=row.site_url,
        user_id=row.user_id,
        plan=LicensePlan(row.plan),
        tokens_limit=row.tokens_limit,
        tokens_used=row.tokens_used,
        status=LicenseStatus(row.status),
        reset_date=optional_utc(row.reset_date),
        expires_at=optional_utc(row.expires_at),
        created_at=to_utc_aware_datetime(row.created_at),
        updated_at=to_utc_aware_datetime(row.updated_at),
    )
