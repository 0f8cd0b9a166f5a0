from __future__ import annotations

import json
import re
from pathlib import Path

import allure
from click.testing import CliRunner

from bulkgen.main import bulkgen

pytestmark = [
    allure.epic("CLI"),
    allure.feature("bulkgen Commands"),
]


def _json_output(output: str) -> dict:
    return json.loads(output[output.index("{") : output.rindex("}") + 1])


def _create_license(runner: CliRunner, db_path: Path, *, tokens_limit: int = 50_000) -> str:
    result = runner.invoke(
        bulkgen,
        [
            "licenses",
            "create",
            "--db-path",
            str(db_path),
            "--site-url",
            "https://shop.example.com",
            "--user-id",
            "user-1",
            "--plan",
            "pro",
            "--tokens-limit",
            str(tokens_limit),
        ],
    )
    assert result.exit_code == 0, result.output
    match = re.search(r"license_id=(lic_[0-9a-f]+) key=(CREATOR-\d{4}-\w{5}-\w{5})", result.output)
    assert match is not None, result.output
    return match.group(1)


def _submit(runner: CliRunner, db_path: Path, license_id: str, payload: str) -> str:
    result = runner.invoke(
        bulkgen,
        [
            "jobs",
            "submit",
            "--db-path",
            str(db_path),
            "--license-id",
            license_id,
            "--task-type",
            "articles",
            "--data",
            payload,
        ],
    )
    assert result.exit_code == 0, result.output
    assert "status=pending items=2 estimated_wait_seconds=35" in result.output
    match = re.search(r"job_id=(job_[0-9a-f-]+)", result.output)
    assert match is not None
    return match.group(1)


def test_cli_submit_process_and_inspect(tmp_path: Path) -> None:
    db_path = tmp_path / "cli.db"
    runner = CliRunner()
    license_id = _create_license(runner, db_path)
    job_id = _submit(runner, db_path, license_id, '{"topics": ["Topic A", "Topic B"]}')

    listed = runner.invoke(bulkgen, ["jobs", "list", "--db-path", str(db_path)])
    assert listed.exit_code == 0, listed.output
    assert "Jobs: 1" in listed.output
    assert f"{job_id} type=articles status=pending attempts=0/3" in listed.output

    processed = runner.invoke(bulkgen, ["jobs", "process", "--db-path", str(db_path), job_id])
    assert processed.exit_code == 0, processed.output
    assert f"Job processed: job_id={job_id} outcome=completed attempts=0" in processed.output

    status = runner.invoke(
        bulkgen,
        ["jobs", "status", "--db-path", str(db_path), "--license-id", license_id, "--json", job_id],
    )
    assert status.exit_code == 0, status.output
    payload = _json_output(status.output)
    assert payload["status"] == "completed"
    assert payload["result"]["total_count"] == 2
    assert [item["status"] for item in payload["result"]["items"]] == ["failed", "failed"]
    assert payload["progress"]["percent"] == 100

    events = runner.invoke(bulkgen, ["jobs", "events", "--db-path", str(db_path), job_id])
    assert events.exit_code == 0, events.output
    assert "Events: 3" in events.output
    assert "processing_started pending -> processing" in events.output

    usage = runner.invoke(bulkgen, ["licenses", "usage", "--db-path", str(db_path), license_id])
    assert usage.exit_code == 0, usage.output
    assert "Tokens: used=0 limit=50000 remaining=50000" in usage.output


def test_cli_worker_drains_pending_jobs(tmp_path: Path) -> None:
    db_path = tmp_path / "worker.db"
    runner = CliRunner()
    license_id = _create_license(runner, db_path)
    _submit(runner, db_path, license_id, '{"topics": ["A", "B"]}')
    _submit(runner, db_path, license_id, '{"topics": ["C", "D"]}')

    result = runner.invoke(bulkgen, ["jobs", "worker", "--db-path", str(db_path)])

    assert result.exit_code == 0, result.output
    assert "Worker summary: processed=2 completed=2 failed=0 skipped=0 idle_polls=1" in (
        result.output
    )


def test_cli_rejections_surface_error_codes(tmp_path: Path) -> None:
    db_path = tmp_path / "reject.db"
    runner = CliRunner()

    missing = runner.invoke(
        bulkgen,
        [
            "jobs",
            "submit",
            "--db-path",
            str(db_path),
            "--license-id",
            "lic_missing",
            "--task-type",
            "articles",
            "--data",
            '{"topics": ["A"]}',
        ],
    )
    assert missing.exit_code == 1
    assert "LICENSE_NOT_FOUND" in missing.output

    license_id = _create_license(runner, db_path, tokens_limit=50)
    poor = runner.invoke(
        bulkgen,
        [
            "jobs",
            "submit",
            "--db-path",
            str(db_path),
            "--license-id",
            license_id,
            "--task-type",
            "articles",
            "--data",
            "not json",
        ],
    )
    assert poor.exit_code == 1
    assert "INVALID_TASK_DATA" in poor.output

    no_data = runner.invoke(
        bulkgen,
        [
            "jobs",
            "submit",
            "--db-path",
            str(db_path),
            "--license-id",
            license_id,
            "--task-type",
            "articles",
        ],
    )
    assert no_data.exit_code == 2

    lookup = runner.invoke(
        bulkgen,
        ["jobs", "status", "--db-path", str(db_path), "--license-id", license_id, "bogus"],
    )
    assert lookup.exit_code == 1
    assert "INVALID_JOB_ID" in lookup.output


def test_cli_route_without_provider_keys_reports_failure(tmp_path: Path) -> None:
    db_path = tmp_path / "route.db"
    runner = CliRunner()
    license_id = _create_license(runner, db_path)

    result = runner.invoke(
        bulkgen,
        [
            "route",
            "--db-path",
            str(db_path),
            "--license-id",
            license_id,
            "--category",
            "text_gen",
            "--json",
            "Say hello",
        ],
    )

    assert result.exit_code == 0, result.output
    payload = _json_output(result.output)
    assert payload["success"] is False
    assert payload["code"] == "ALL_PROVIDERS_FAILED"
    assert payload["providers_attempted"] == ["claude", "gemini", "openai"]
