from datetime import timedelta, timezone

import pytest

from engine.audit import AuditContext, fncBuildAuditReport, fncMergeAuditSettings
from engine.models import AssignmentSource, ConfigurationError, Service
from engine.principals import PrincipalResolver

from builders import NOW, record, user


def _records():
    alice = user("u1", "Alice")
    return [
        record(alice, "Global Administrator", Service.AZURE_AD),
        record(alice, "Global Administrator", Service.EXCHANGE),
        record(user("u2", "Bob"), "Exchange Administrator", Service.EXCHANGE,
               source=AssignmentSource.PIM_ELIGIBLE),
    ]


def test_report_chains_dedupe_statistics_and_findings():
    report = fncBuildAuditReport(_records(), settings={"dedupe_mode": "Loose"},
                                 skipped={"Exchange": {"roleDefinitionNotFound": 2, "malformedAssignment": 1}},
                                 now=NOW, run_id="hound-test")

    assert report.duplicates_removed == 1
    assert report.statistics.total_assignments == 2
    summary = report.summary()
    assert summary["Total Assignments"] == 2
    assert summary["Global Administrators"] == 1
    assert summary["PIM Adoption Rate (%)"] == 50.0
    assert summary["Skipped Assignments"] == 3
    assert summary["Duplicates Removed"] == 1


def test_report_without_dedupe_keeps_everything():
    report = fncBuildAuditReport(_records(), now=NOW)

    assert report.dedupe_mode == "None"
    assert len(report.records) == 3


def test_report_to_dict_shape():
    data = fncBuildAuditReport(_records(), now=NOW, run_id="r1", errors={"Teams": "boom"}).to_dict()

    assert set(data) == {"provider", "run_id", "timestamp", "summary", "statistics", "compliance_findings",
                         "role_assignments", "deduplication", "skipped", "errors"}
    assert data["timestamp"].startswith("2025-06-01T12:00")
    assert data["role_assignments"][0]["roleName"] == "Global Administrator"
    assert data["errors"] == {"Teams": "boom"}


def test_settings_are_validated_up_front():
    with pytest.raises(ConfigurationError):
        fncMergeAuditSettings({"dedupe_mode": "Sometimes"})
    with pytest.raises(ConfigurationError):
        fncMergeAuditSettings({"top_n": "many"})
    assert fncMergeAuditSettings({"dedupe_mode": "role-scoped", "top_n": "3"})["top_n"] == 3


def test_context_overarching_rules():
    ctx = AuditContext.create({"include_overarching_roles": False}, services=["AzureAD", "Teams"])

    assert ctx.include_overarching_for(Service.AZURE_AD) is True
    assert ctx.include_overarching_for("Teams") is False
    assert "teams administrator" in ctx.claimed_role_names
    assert AuditContext.create({"include_overarching_roles": True}).include_overarching_for("Teams") is True


def test_fork_gets_fresh_resolver_and_shares_fetch_cache():
    ctx = AuditContext.create({}, services=[Service.EXCHANGE], resolver_factory=PrincipalResolver)
    ctx.resolver.remember(user("u1"))

    forked = ctx.fork()

    assert forked.resolver is not ctx.resolver
    assert "u1" not in forked.resolver
    assert forked.settings == ctx.settings
    forked.fetch_cache["directory"] = {"definitions": []}
    assert "directory" in ctx.fetch_cache
    assert forked.fetch_lock is ctx.fetch_lock


def test_naive_pim_end_is_read_as_utc():
    naive_end = NOW.replace(tzinfo=None) + timedelta(days=10)
    rec = record(user("u1", "Soon"), "Teams Administrator", Service.TEAMS,
                 source=AssignmentSource.PIM_ELIGIBLE, end=naive_end)

    report = fncBuildAuditReport([rec], now=NOW)

    assert rec.pim_window.end.tzinfo is timezone.utc
    expiring = [f for f in report.findings if f.issue == "Expiring PIM Assignments"]
    assert expiring and expiring[0].affected_principals == ["Soon"]


def test_assignment_rows_put_standing_access_first():
    alice, bob, carol = user("u1", "Alice"), user("u2", "Bob"), user("u3", "Carol")
    records = [
        record(alice, "Teams Administrator", Service.TEAMS, source=AssignmentSource.PIM_ELIGIBLE),
        record(bob, "Teams Administrator", Service.TEAMS, source=AssignmentSource.PIM_ACTIVE),
        record(carol, "Teams Administrator", Service.TEAMS),
        record(alice, "Global Administrator", Service.AZURE_AD),
    ]

    rows = fncBuildAuditReport(records, now=NOW).to_dict()["role_assignments"]

    assert [(r["service"], r["principalName"], r["assignmentType"]) for r in rows] == [
        ("AzureAD", "Alice", "Active"),
        ("Teams", "Carol", "Active"),
        ("Teams", "Bob", "Active (PIM)"),
        ("Teams", "Alice", "Eligible (PIM)"),
    ]
