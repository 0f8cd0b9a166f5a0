"""CLI entrypoint for bulkgen."""

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path

import rich_click as click

from bulkgen import __version__
from bulkgen.admission.control import AdmissionDenied
from bulkgen.controllers import (
    BulkgenCliController,
    JobEventsCommand,
    JobListCommand,
    JobProcessCommand,
    JobStatusCommand,
    JobSubmitCommand,
    JobWorkerCommand,
    LicenseCreateCommand,
    LicenseUsageCommand,
    RouteCommand,
)
from bulkgen.jobs.models import JobStatus, TaskType
from bulkgen.jobs.services import JobLookupError
from bulkgen.jobs.validation import TaskDataError
from bulkgen.licensing.models import LicensePlan
from bulkgen.providers.routes import RouteCategory
from bulkgen.proxy.prompts import PromptError

click.rich_click.USE_MARKDOWN = True
CONTROLLER = BulkgenCliController()
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")


@click.group()
@click.version_option(version=__version__, prog_name="bulkgen")
@click.option(
    "--log-level",
    type=click.Choice(LOG_LEVELS, case_sensitive=False),
    default="WARNING",
    show_default=True,
    help="Root logging level.",
)
def bulkgen(log_level: str) -> None:
    """License-gated bulk AI content generation."""

    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@bulkgen.group()
def licenses() -> None:
    """License commands."""


@licenses.command("create")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--site-url", required=True, help="Registered site URL.")
@click.option("--user-id", required=True, help="Owner user id.")
@click.option(
    "--plan",
    type=click.Choice([plan.value for plan in LicensePlan]),
    default=LicensePlan.STARTER.value,
    show_default=True,
)
@click.option(
    "--tokens-limit",
    type=click.IntRange(min=0),
    default=1_000_000,
    show_default=True,
    help="Token allowance per billing period.",
)
@click.option("--license-key", default=None, help="Explicit key; generated when omitted.")
@click.option(
    "--expires-at",
    type=click.DateTime(),
    default=None,
    help="Expiry timestamp (UTC).",
)
def licenses_create(  # noqa: PLR0913
    db_path: Path | None,
    site_url: str,
    user_id: str,
    plan: str,
    tokens_limit: int,
    license_key: str | None,
    expires_at: datetime | None,
) -> None:
    """Create an active license."""

    _emit_lines(
        CONTROLLER.create_license(
            LicenseCreateCommand(
                db_path=db_path,
                site_url=site_url,
                user_id=user_id,
                plan=plan,
                tokens_limit=tokens_limit,
                license_key=license_key,
                expires_at=expires_at,
            ),
        ),
    )


@licenses.command("usage")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--month", default=None, help="Ledger month as YYYY-MM; current month by default.")
@click.argument("license_id")
def licenses_usage(db_path: Path | None, month: str | None, license_id: str) -> None:
    """Show token usage and the monthly per-provider cost ledger."""

    _emit_lines(
        CONTROLLER.license_usage(
            LicenseUsageCommand(db_path=db_path, license_id=license_id, month=month),
        ),
    )


@bulkgen.group()
def jobs() -> None:
    """Bulk job commands."""


@jobs.command("submit")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--license-id", required=True, help="Submitting license id.")
@click.option(
    "--task-type",
    type=click.Choice([task_type.value for task_type in TaskType]),
    required=True,
)
@click.option("--data", "task_data", default=None, help="Task data as a JSON object.")
@click.option(
    "--data-file",
    type=click.Path(path_type=Path, exists=True, dir_okay=False),
    default=None,
    help="Read task data JSON from a file.",
)
@click.option("--ip-address", default=None, help="Client address recorded in the audit log.")
def jobs_submit(  # noqa: PLR0913
    db_path: Path | None,
    license_id: str,
    task_type: str,
    task_data: str | None,
    data_file: Path | None,
    ip_address: str | None,
) -> None:
    """Submit a bulk task; prints the job id and estimated wait."""

    if data_file is not None:
        task_data = data_file.read_text(encoding="utf-8")
    if task_data is None:
        raise click.UsageError("Provide task data with --data or --data-file.")
    with _rejections():
        _emit_lines(
            CONTROLLER.submit_job(
                JobSubmitCommand(
                    db_path=db_path,
                    license_id=license_id,
                    task_type=task_type,
                    task_data=task_data,
                    ip_address=ip_address,
                ),
            ),
        )


@jobs.command("status")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--license-id", required=True, help="License that owns the job.")
@click.option("--json", "as_json", is_flag=True, help="Print the raw status envelope.")
@click.argument("job_id")
def jobs_status(db_path: Path | None, license_id: str, as_json: bool, job_id: str) -> None:
    """Show job status, progress and result."""

    with _rejections():
        _emit_lines(
            CONTROLLER.job_status(
                JobStatusCommand(
                    db_path=db_path,
                    license_id=license_id,
                    job_id=job_id,
                    as_json=as_json,
                ),
            ),
        )


@jobs.command("list")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option(
    "--status",
    type=click.Choice([status.value for status in JobStatus]),
    default=None,
)
@click.option("--license-id", default=None, help="Only jobs of this license.")
@click.option(
    "--limit",
    type=click.IntRange(min=1, max=1000),
    default=20,
    show_default=True,
)
def jobs_list(db_path: Path | None, status: str | None, license_id: str | None, limit: int) -> None:
    """List recent jobs."""

    _emit_lines(
        CONTROLLER.list_jobs(
            JobListCommand(db_path=db_path, status=status, license_id=license_id, limit=limit),
        ),
    )


@jobs.command("events")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.argument("job_id")
def jobs_events(db_path: Path | None, job_id: str) -> None:
    """Show the state change trail of a job."""

    _emit_lines(CONTROLLER.job_events(JobEventsCommand(db_path=db_path, job_id=job_id)))


@jobs.command("process")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.argument("job_id")
def jobs_process(db_path: Path | None, job_id: str) -> None:
    """Run one pending job to completion in the foreground."""

    _emit_lines(CONTROLLER.process_job(JobProcessCommand(db_path=db_path, job_id=job_id)))


@jobs.command("worker")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--once", is_flag=True, help="Dispatch one batch of pending jobs and exit.")
@click.option(
    "--max-jobs",
    type=click.IntRange(min=1),
    default=None,
    help="Stop after handling this many jobs.",
)
@click.option(
    "--max-idle-polls",
    type=click.IntRange(min=1),
    default=1,
    show_default=True,
    help="Consecutive empty polls before exiting.",
)
def jobs_worker(
    db_path: Path | None,
    once: bool,
    max_jobs: int | None,
    max_idle_polls: int,
) -> None:
    """Drain pending jobs from the queue."""

    _emit_lines(
        CONTROLLER.run_worker(
            JobWorkerCommand(
                db_path=db_path,
                once=once,
                max_jobs=max_jobs,
                max_idle_polls=max_idle_polls,
            ),
        ),
    )


@bulkgen.command("route")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--license-id", required=True, help="Requesting license id.")
@click.option(
    "--category",
    type=click.Choice([category.value for category in RouteCategory]),
    default=RouteCategory.TEXT_GEN.value,
    show_default=True,
)
@click.option("--system-prompt", default=None)
@click.option("--temperature", type=click.FloatRange(min=0.0, max=2.0), default=None)
@click.option("--max-tokens", type=click.IntRange(min=1), default=None)
@click.option("--json", "as_json", is_flag=True, help="Print the raw response envelope.")
@click.argument("prompt")
def route(  # noqa: PLR0913
    db_path: Path | None,
    license_id: str,
    category: str,
    system_prompt: str | None,
    temperature: float | None,
    max_tokens: int | None,
    as_json: bool,
    prompt: str,
) -> None:
    """Send one prompt through the category fallback chain."""

    with _rejections():
        _emit_lines(
            CONTROLLER.route(
                RouteCommand(
                    db_path=db_path,
                    license_id=license_id,
                    category=category,
                    prompt=prompt,
                    system_prompt=system_prompt,
                    temperature=temperature,
                    max_tokens=max_tokens,
                    as_json=as_json,
                ),
            ),
        )


@contextmanager
def _rejections() -> Iterator[None]:
    try:
        yield
    except (AdmissionDenied, TaskDataError, PromptError, JobLookupError) as error:
        raise click.ClickException(f"{error.code}: {error}") from error


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    bulkgen()
