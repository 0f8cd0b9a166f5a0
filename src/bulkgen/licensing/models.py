"""License, usage and audit models."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class LicenseStatus(str, Enum):
    ACTIVE = "active"
    SUSPENDED = "suspended"
    EXPIRED = "expired"


class LicensePlan(str, Enum):
    STARTER = "starter"
    PRO = "pro"
    ENTERPRISE = "enterprise"


class AuditStatus(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"


@dataclass(slots=True)
class LicenseView:
    """Readable license snapshot."""

    license_id: str
    license_key: str
    site_url: str
    user_id: str
    plan: LicensePlan
    tokens_limit: int
    tokens_used: int
    status: LicenseStatus
    reset_date: datetime | None
    expires_at: datetime | None
    created_at: datetime
    updated_at: datetime

    @property
    def tokens_remaining(self) -> int:
        return max(0, self.tokens_limit - self.tokens_used)

    def is_usable(self, now: datetime) -> bool:
        """Active and not past its expiry date."""

        if self.status is not LicenseStatus.ACTIVE:
            return False
        return self.expires_at is None or self.expires_at > now


@dataclass(slots=True)
class CostLedgerView:
    """Monthly token and cost totals for one provider."""

    license_id: str
    month: str
    provider: str
    tokens_input: int
    tokens_output: int
    cost_usd: float
    updated_at: datetime


@dataclass(slots=True)
class AuditLogView:
    audit_id: int
    license_id: str | None
    request_type: str
    status: AuditStatus
    error_message: str | None
    ip_address: str | None
    provider_used: str | None
    tokens_used: int
    cost_usd: float
    metadata: dict[str, object]
    created_at: datetime
