from datetime import timedelta

from engine.compliance import fncAnalyseComplianceGaps, fncSeverityCounts
from engine.models import AssignmentSource, Principal, Service
from engine.statistics import fncBuildStatistics

from builders import NOW, record, sp, user


def _analyse(records, **settings):
    stats = fncBuildStatistics(records, global_admin_threshold=settings.get("global_admin_threshold", 5))
    return fncAnalyseComplianceGaps(records, stats, now=NOW, settings=settings)


def _by_issue(findings):
    return {f.issue: f for f in findings}


def _eligible(p, role_name, **kw):
    return record(p, role_name, source=AssignmentSource.PIM_ELIGIBLE, **kw)


def test_no_records_no_findings():
    assert _analyse([]) == []


def test_six_global_admins_is_critical():
    records = [_eligible(user(f"u{i}", f"Admin {i}"), "Global Administrator") for i in range(6)]

    found = _by_issue(_analyse(records))["Excessive Global Administrators"]

    assert found.severity == "Critical"
    assert "6" in found.details
    assert len(found.affected_principals) == 6
    assert found.frameworks


def test_five_global_admins_is_fine():
    records = [_eligible(user(f"u{i}"), "Global Administrator") for i in range(5)]
    assert "Excessive Global Administrators" not in _by_issue(_analyse(records))


def test_threshold_comes_from_settings():
    records = [_eligible(user(f"u{i}"), "Global Administrator") for i in range(2)]

    found = _by_issue(_analyse(records, global_admin_threshold=1))["Excessive Global Administrators"]

    assert "recommended maximum: 1" in found.details


def test_expiring_pim_within_window():
    records = [
        _eligible(user("u1", "Soon"), "Teams Administrator", end=NOW + timedelta(days=10)),
        _eligible(user("u2", "Later"), "Teams Administrator", end=NOW + timedelta(days=40)),
        _eligible(user("u3", "Past"), "Teams Administrator", end=NOW - timedelta(days=1)),
    ]

    found = _by_issue(_analyse(records))["Expiring PIM Assignments"]

    assert found.severity == "Medium"
    assert found.affected_principals == ["Soon"]
    assert "30 days" in found.details


def test_all_permanent_means_no_pim():
    records = [record(user("u1"), "Teams Administrator"), record(user("u2"), "Exchange Administrator")]

    found = _by_issue(_analyse(records))["No PIM Eligible Assignments"]

    assert found.severity == "High"
    assert "2" in found.details


def test_disabled_users_only_flagged_when_role_is_active():
    records = [
        record(user("u1", "Gone", enabled=False), "Teams Administrator"),
        _eligible(user("u2", "Parked", enabled=False), "Teams Administrator"),
    ]

    found = _by_issue(_analyse(records))["Disabled Users With Active Roles"]

    assert found.affected_principals == ["Gone"]


def test_client_secret_auth():
    records = [_eligible(user("u1"), "Teams Administrator", auth_type="ClientSecret")]
    assert _by_issue(_analyse(records))["Client Secret Authentication In Use"].severity == "Medium"


def test_excessive_service_admins_names_the_role():
    records = [record(user(f"u{i}"), "Exchange Administrator", Service.EXCHANGE) for i in range(4)]

    found = _by_issue(_analyse(records))["Excessive Service Administrators"]

    assert "Exchange Administrator" in found.details
    assert found.details.startswith("4 principals")


def test_orphaned_and_service_principal_findings():
    records = [
        _eligible(Principal.unknown("dead-beef"), "Teams Administrator"),
        _eligible(sp("s1", "Backup App"), "Application Administrator"),
    ]

    found = _by_issue(_analyse(records))

    assert found["Orphaned Role Assignments"].affected_principals == ["dead-beef"]
    assert found["Privileged Roles Held By Service Principals"].affected_principals == ["Backup App"]


def test_findings_follow_rule_order_and_severity_counts():
    records = [record(user(f"u{i}"), "Global Administrator", auth_type="ClientSecret") for i in range(6)]

    findings = _analyse(records)

    assert [f.severity for f in findings] == ["Critical", "High", "Medium"]
    assert fncSeverityCounts(findings) == {"Critical": 1, "High": 1, "Medium": 1, "Low": 0}
