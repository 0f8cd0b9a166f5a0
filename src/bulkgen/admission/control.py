"""Admission gates applied before any work is accepted."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime

from bulkgen.admission.rate_limit import RateLimiter, RateLimitResult
from bulkgen.config import AdmissionSettings
from bulkgen.jobs.repository import JobRepository
from bulkgen.licensing.models import LicenseView
from bulkgen.licensing.repository import LicenseRepository
from bulkgen.storage.common import utc_now

logger = logging.getLogger(__name__)

TASK_SUBMIT_ENDPOINT = "task_submit"
AI_ROUTE_ENDPOINT = "ai_route"


class AdmissionDenied(RuntimeError):
    """Request rejected before any job or provider call exists."""

    def __init__(self, code: str, message: str) -> None:
        super().__init__(message)
        self.code = code
        self.message = message


@dataclass(slots=True, frozen=True)
class QuotaCheck:
    tokens_remaining: int
    low_quota: bool


class AdmissionController:
    """License, rate limit, pending-job and quota checks."""

    def __init__(
        self,
        *,
        licenses: LicenseRepository,
        jobs: JobRepository,
        rate_limiter: RateLimiter,
        settings: AdmissionSettings,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.licenses = licenses
        self.jobs = jobs
        self.rate_limiter = rate_limiter
        self.settings = settings
        self._clock = clock

    def require_license(self, license_id: str) -> LicenseView:
        license_view = self.licenses.get_license(license_id)
        if license_view is None:
            raise AdmissionDenied("LICENSE_NOT_FOUND", "License not found")
        if not license_view.is_usable(self._clock()):
            raise AdmissionDenied(
                "LICENSE_INACTIVE",
                f"License is {license_view.status.value} or expired",
            )
        return license_view

    def check_rate_limit(self, *, identifier: str, endpoint: str, limit: int) -> RateLimitResult:
        result = self.rate_limiter.check(identifier=identifier, endpoint=endpoint, limit=limit)
        if not result.allowed:
            logger.warning(
                "Rate limited: identifier=%s endpoint=%s count=%d reset_in=%ds",
                identifier,
                endpoint,
                result.count,
                result.reset_in,
            )
            raise AdmissionDenied(
                "RATE_LIMITED",
                f"Too many requests. Please try again in {result.reset_in} seconds.",
            )
        return result

    def check_task_rate_limit(self, license_id: str) -> RateLimitResult:
        return self.check_rate_limit(
            identifier=license_id,
            endpoint=TASK_SUBMIT_ENDPOINT,
            limit=self.settings.task_rate_limit_per_minute,
        )

    def check_route_rate_limit(self, license_id: str) -> RateLimitResult:
        return self.check_rate_limit(
            identifier=license_id,
            endpoint=AI_ROUTE_ENDPOINT,
            limit=self.settings.route_rate_limit_per_minute,
        )

    def check_pending_jobs(self, license_id: str) -> int:
        active = self.jobs.count_active_jobs(license_id)
        if active >= self.settings.max_pending_jobs:
            logger.warning("Too many pending jobs: license_id=%s active=%d", license_id, active)
            raise AdmissionDenied(
                "TOO_MANY_PENDING_JOBS",
                f"Maximum {self.settings.max_pending_jobs} pending jobs allowed. "
                "Please wait for current jobs to complete.",
            )
        return active

    def check_quota(self, license_view: LicenseView) -> QuotaCheck:
        remaining = license_view.tokens_remaining
        if remaining < self.settings.quota_exceeded_threshold:
            logger.warning(
                "Quota exceeded: license_id=%s tokens_remaining=%d",
                license_view.license_id,
                remaining,
            )
            raise AdmissionDenied(
                "QUOTA_EXCEEDED",
                "Token quota exceeded. Please upgrade your plan.",
            )
        return QuotaCheck(
            tokens_remaining=remaining,
            low_quota=remaining < self.settings.low_quota_warning_threshold,
        )
