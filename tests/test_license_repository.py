from __future__ import annotations

import re
from datetime import UTC, datetime, timedelta

import allure

from bulkgen.licensing.models import AuditStatus, LicensePlan, LicenseStatus
from bulkgen.licensing.repository import LicenseRepository, generate_license_key

pytestmark = [
    allure.epic("Licensing"),
    allure.feature("License Repository"),
]


def test_create_and_lookup_license(license_repository: LicenseRepository) -> None:
    created = license_repository.create_license(
        site_url="https://shop.example.com",
        user_id="user-1",
        plan=LicensePlan.ENTERPRISE,
        tokens_limit=5_000,
    )

    assert created.license_id.startswith("lic_")
    assert re.fullmatch(r"CREATOR-\d{4}-[A-Z0-9]{5}-[A-Z0-9]{5}", created.license_key)
    assert created.status is LicenseStatus.ACTIVE
    assert created.tokens_remaining == 5_000

    by_id = license_repository.get_license(created.license_id)
    by_key = license_repository.get_license_by_key(created.license_key.lower())
    assert by_id == created
    assert by_key == created
    assert license_repository.get_license("lic_missing") is None


def test_explicit_key_is_normalized(license_repository: LicenseRepository) -> None:
    created = license_repository.create_license(
        site_url="https://a.example.com",
        user_id="u",
        plan=LicensePlan.STARTER,
        tokens_limit=10,
        license_key=" creator-2026-abcde-12345 ",
    )
    assert created.license_key == "CREATOR-2026-ABCDE-12345"


def test_token_usage_is_accumulated(
    license_repository: LicenseRepository,
    active_license,
) -> None:
    assert license_repository.add_token_usage(license_id=active_license.license_id, delta=150)
    assert license_repository.add_token_usage(license_id=active_license.license_id, delta=50)
    assert not license_repository.add_token_usage(license_id=active_license.license_id, delta=0)
    assert not license_repository.add_token_usage(license_id="lic_missing", delta=10)

    assert license_repository.get_remaining_tokens(active_license.license_id) == 100_000 - 200
    assert license_repository.get_remaining_tokens("lic_missing") == 0


def test_remaining_tokens_never_negative(
    license_repository: LicenseRepository,
    make_license,
) -> None:
    license_view = make_license(tokens_limit=100)
    license_repository.add_token_usage(license_id=license_view.license_id, delta=500)

    assert license_repository.get_remaining_tokens(license_view.license_id) == 0


def test_status_changes_affect_usability(
    license_repository: LicenseRepository,
    active_license,
) -> None:
    now = datetime.now(tz=UTC)
    assert active_license.is_usable(now)

    assert license_repository.set_status(
        license_id=active_license.license_id,
        status=LicenseStatus.SUSPENDED,
    )
    suspended = license_repository.get_license(active_license.license_id)
    assert suspended is not None
    assert suspended.is_usable(now) is False
    assert not license_repository.set_status(license_id="lic_missing", status=LicenseStatus.ACTIVE)


def test_expired_license_is_not_usable(license_repository: LicenseRepository) -> None:
    now = datetime.now(tz=UTC)
    expired = license_repository.create_license(
        site_url="https://old.example.com",
        user_id="u",
        plan=LicensePlan.PRO,
        tokens_limit=10,
        expires_at=now - timedelta(days=1),
    )
    assert expired.expires_at is not None
    assert expired.is_usable(now) is False


def test_cost_ledger_accumulates_per_month_and_provider(
    license_repository: LicenseRepository,
    active_license,
) -> None:
    october = datetime(2026, 10, 5, tzinfo=UTC)
    november = datetime(2026, 11, 1, tzinfo=UTC)
    license_id = active_license.license_id

    license_repository.add_cost_usage(
        license_id=license_id,
        provider="claude",
        tokens_input=100,
        tokens_output=200,
        cost_usd=0.5,
        at=october,
    )
    license_repository.add_cost_usage(
        license_id=license_id,
        provider="claude",
        tokens_input=10,
        tokens_output=20,
        cost_usd=0.25,
        at=october + timedelta(days=3),
    )
    license_repository.add_cost_usage(
        license_id=license_id,
        provider="gemini",
        tokens_input=1,
        tokens_output=1,
        cost_usd=0.01,
        at=october,
    )
    license_repository.add_cost_usage(
        license_id=license_id,
        provider="claude",
        tokens_input=5,
        tokens_output=5,
        cost_usd=0.1,
        at=november,
    )

    october_rows = license_repository.list_cost_ledger(license_id=license_id, month="2026-10")
    assert [(row.provider, row.tokens_input, row.tokens_output) for row in october_rows] == [
        ("claude", 110, 220),
        ("gemini", 1, 1),
    ]
    assert october_rows[0].cost_usd == 0.75
    assert len(license_repository.list_cost_ledger(license_id=license_id)) == 3


def test_audit_log_round_trip(license_repository: LicenseRepository) -> None:
    license_repository.add_audit_log(
        license_id="lic_unknown",
        request_type="ai_request",
        status=AuditStatus.FAILED,
        error_message="License not found",
        ip_address="10.0.0.1",
        metadata={"code": "LICENSE_NOT_FOUND"},
    )
    license_repository.add_audit_log(
        license_id="lic_unknown",
        request_type="task_submission",
        status=AuditStatus.SUCCESS,
    )

    ai_logs = license_repository.list_audit_logs(request_type="ai_request")
    assert len(ai_logs) == 1
    assert ai_logs[0].status is AuditStatus.FAILED
    assert ai_logs[0].metadata == {"code": "LICENSE_NOT_FOUND"}
    assert ai_logs[0].ip_address == "10.0.0.1"
    assert len(license_repository.list_audit_logs(license_id="lic_unknown")) == 2


def test_generate_license_key_uses_year() -> None:
    key = generate_license_key(datetime(2027, 1, 2, tzinfo=UTC))
    assert key.startswith("CREATOR-2027-")
    assert len(key) == len("CREATOR-2027-XXXXX-XXXXX")
