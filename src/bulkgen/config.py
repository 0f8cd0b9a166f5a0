"""Runtime configuration for admission control, job processing and providers."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

SUPPORTED_RATE_LIMIT_STRATEGIES = ("memory", "sqlite")
_ROUTE_ENV_PREFIX = "BULKGEN_ROUTE_"


@dataclass(slots=True)
class AdmissionSettings:
    """Rate limit, pending job and quota thresholds applied before work is accepted."""

    task_rate_limit_per_minute: int = 10
    route_rate_limit_per_minute: int = 100
    rate_limit_window_seconds: int = 60
    max_pending_jobs: int = 5
    quota_exceeded_threshold: int = 100
    low_quota_warning_threshold: int = 1_000
    rate_limit_strategy: str = "memory"
    counter_max_age_seconds: int = 600
    cleanup_interval_seconds: int = 300


@dataclass(slots=True)
class JobSettings:
    """Job attempt, timeout and worker settings."""

    max_attempts: int = 3
    timeout_seconds: float = 540.0
    retry_base_seconds: float = 1.0
    retry_max_seconds: float = 60.0
    max_bulk_items: int = 50
    worker_concurrency: int = 4
    poll_interval_seconds: float = 2.0


@dataclass(slots=True)
class ProviderSettings:
    """Provider credentials, retry policy and route chain overrides."""

    anthropic_api_key: str | None = None
    gemini_api_key: str | None = None
    openai_api_key: str | None = None
    max_retries: int = 3
    retry_base_seconds: float = 1.0
    retry_max_seconds: float = 30.0
    request_timeout_seconds: float = 30.0
    default_temperature: float = 0.7
    default_max_tokens: int = 4_096
    max_prompt_chars: int = 100_000
    route_overrides: dict[str, str] = field(default_factory=dict)

    def api_key_for(self, provider: str) -> str | None:
        """Return the configured API key for a provider name."""

        keys = {
            "claude": self.anthropic_api_key,
            "gemini": self.gemini_api_key,
            "openai": self.openai_api_key,
        }
        return keys.get(provider.strip().lower())


@dataclass(slots=True)
class Settings:
    """Application settings grouped by domain concerns."""

    db_path: Path = Path(".bulkgen.db")
    sqlite_busy_timeout_ms: int = 5_000
    admission: AdmissionSettings = field(default_factory=AdmissionSettings)
    jobs: JobSettings = field(default_factory=JobSettings)
    providers: ProviderSettings = field(default_factory=ProviderSettings)

    @classmethod
    def from_env(cls, db_path: Path | None = None) -> Settings:
        """Load settings from environment with sane defaults for local development."""

        return cls(
            db_path=db_path or Path(os.getenv("BULKGEN_DB_PATH", ".bulkgen.db")),
            sqlite_busy_timeout_ms=int(os.getenv("BULKGEN_SQLITE_BUSY_TIMEOUT_MS", "5000")),
            admission=AdmissionSettings(
                task_rate_limit_per_minute=int(
                    os.getenv("BULKGEN_TASK_RATE_LIMIT_PER_MINUTE", "10"),
                ),
                route_rate_limit_per_minute=int(
                    os.getenv("BULKGEN_AI_RATE_LIMIT_PER_MINUTE", "100"),
                ),
                rate_limit_window_seconds=int(
                    os.getenv("BULKGEN_RATE_LIMIT_WINDOW_SECONDS", "60"),
                ),
                max_pending_jobs=int(os.getenv("BULKGEN_MAX_PENDING_JOBS", "5")),
                quota_exceeded_threshold=int(
                    os.getenv("BULKGEN_QUOTA_EXCEEDED_THRESHOLD", "100"),
                ),
                low_quota_warning_threshold=int(
                    os.getenv("BULKGEN_LOW_QUOTA_WARNING_THRESHOLD", "1000"),
                ),
                rate_limit_strategy=os.getenv("BULKGEN_RATE_LIMIT_STRATEGY", "memory")
                .strip()
                .lower(),
                counter_max_age_seconds=int(
                    os.getenv("BULKGEN_RATE_LIMIT_COUNTER_MAX_AGE_SECONDS", "600"),
                ),
                cleanup_interval_seconds=int(
                    os.getenv("BULKGEN_RATE_LIMIT_CLEANUP_INTERVAL_SECONDS", "300"),
                ),
            ),
            jobs=JobSettings(
                max_attempts=int(os.getenv("BULKGEN_JOB_MAX_ATTEMPTS", "3")),
                timeout_seconds=float(os.getenv("BULKGEN_JOB_TIMEOUT_SECONDS", "540")),
                retry_base_seconds=float(os.getenv("BULKGEN_JOB_RETRY_BASE_SECONDS", "1.0")),
                retry_max_seconds=float(os.getenv("BULKGEN_JOB_RETRY_MAX_SECONDS", "60.0")),
                max_bulk_items=int(os.getenv("BULKGEN_MAX_BULK_ITEMS", "50")),
                worker_concurrency=int(os.getenv("BULKGEN_WORKER_CONCURRENCY", "4")),
                poll_interval_seconds=float(
                    os.getenv("BULKGEN_WORKER_POLL_INTERVAL_SECONDS", "2.0"),
                ),
            ),
            providers=ProviderSettings(
                anthropic_api_key=_env_secret("ANTHROPIC_API_KEY"),
                gemini_api_key=_env_secret("GEMINI_API_KEY"),
                openai_api_key=_env_secret("OPENAI_API_KEY"),
                max_retries=int(os.getenv("BULKGEN_PROVIDER_MAX_RETRIES", "3")),
                retry_base_seconds=float(
                    os.getenv("BULKGEN_PROVIDER_RETRY_BASE_SECONDS", "1.0"),
                ),
                retry_max_seconds=float(
                    os.getenv("BULKGEN_PROVIDER_RETRY_MAX_SECONDS", "30.0"),
                ),
                request_timeout_seconds=float(
                    os.getenv("BULKGEN_PROVIDER_REQUEST_TIMEOUT_SECONDS", "30.0"),
                ),
                default_temperature=float(os.getenv("BULKGEN_DEFAULT_TEMPERATURE", "0.7")),
                default_max_tokens=int(os.getenv("BULKGEN_DEFAULT_MAX_TOKENS", "4096")),
                max_prompt_chars=int(os.getenv("BULKGEN_MAX_PROMPT_CHARS", "100000")),
                route_overrides=_collect_route_overrides(),
            ),
        )

    def validate(self) -> None:
        """Raise configuration error for out-of-range values."""

        admission = self.admission
        if admission.rate_limit_strategy not in SUPPORTED_RATE_LIMIT_STRATEGIES:
            raise ValueError(
                "Unsupported BULKGEN_RATE_LIMIT_STRATEGY: "
                f"{admission.rate_limit_strategy!r}. "
                f"Expected one of: {', '.join(SUPPORTED_RATE_LIMIT_STRATEGIES)}",
            )
        if admission.task_rate_limit_per_minute <= 0:
            raise ValueError("BULKGEN_TASK_RATE_LIMIT_PER_MINUTE must be > 0.")
        if admission.route_rate_limit_per_minute <= 0:
            raise ValueError("BULKGEN_AI_RATE_LIMIT_PER_MINUTE must be > 0.")
        if admission.rate_limit_window_seconds <= 0:
            raise ValueError("BULKGEN_RATE_LIMIT_WINDOW_SECONDS must be > 0.")
        if admission.max_pending_jobs <= 0:
            raise ValueError("BULKGEN_MAX_PENDING_JOBS must be > 0.")
        if admission.quota_exceeded_threshold < 0:
            raise ValueError("BULKGEN_QUOTA_EXCEEDED_THRESHOLD must be >= 0.")

        jobs = self.jobs
        if jobs.max_attempts <= 0:
            raise ValueError("BULKGEN_JOB_MAX_ATTEMPTS must be > 0.")
        if jobs.timeout_seconds <= 0:
            raise ValueError("BULKGEN_JOB_TIMEOUT_SECONDS must be > 0.")
        if jobs.retry_base_seconds < 0 or jobs.retry_max_seconds < 0:
            raise ValueError("Job retry delays must be >= 0.")
        if jobs.max_bulk_items <= 0:
            raise ValueError("BULKGEN_MAX_BULK_ITEMS must be > 0.")
        if jobs.worker_concurrency <= 0:
            raise ValueError("BULKGEN_WORKER_CONCURRENCY must be > 0.")

        providers = self.providers
        if providers.max_retries < 0:
            raise ValueError("BULKGEN_PROVIDER_MAX_RETRIES must be >= 0.")
        if providers.request_timeout_seconds <= 0:
            raise ValueError("BULKGEN_PROVIDER_REQUEST_TIMEOUT_SECONDS must be > 0.")
        if providers.max_prompt_chars <= 0:
            raise ValueError("BULKGEN_MAX_PROMPT_CHARS must be > 0.")


def _collect_route_overrides() -> dict[str, str]:
    overrides: dict[str, str] = {}
    for name, value in os.environ.items():
        if not name.startswith(_ROUTE_ENV_PREFIX):
            continue
        category = name.removeprefix(_ROUTE_ENV_PREFIX).strip().lower()
        if category and value.strip():
            overrides[category] = value.strip()
    return overrides


def _env_secret(name: str) -> str | None:
    value = os.getenv(name, "").strip()
    return value or None
