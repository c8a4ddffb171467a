from datetime import datetime, timezone

import pytest

from engine.adapters import (
    SITE_ADMIN_ROLE_ID,
    SITE_ADMIN_ROLE_NAME,
    fncAdaptAssignments,
    fncAdaptRoleDefinitions,
)
from engine.models import AssignmentSource, ConfigurationError, RoleScope, Service
from engine.role_scope import RoleScopeClassifier


def test_unified_permanent_assignment():
    raw = [{"id": "ra1", "principalId": "u1", "roleDefinitionId": "r1", "directoryScopeId": "/"}]

    out, skipped = fncAdaptAssignments(Service.AZURE_AD, raw, AssignmentSource.ACTIVE)

    assert skipped == 0
    assert len(out) == 1
    a = out[0]
    assert (a.principal_id, a.role_definition_id, a.source_assignment_id) == ("u1", "r1", "ra1")
    assert a.scope_descriptor == "Directory"
    assert a.pim_window is None


def test_eligibility_instance_window_from_top_level_fields():
    raw = [{"id": "e1", "principalId": "u1", "roleDefinitionId": "r1",
            "startDateTime": "2025-01-01T00:00:00Z", "endDateTime": "2025-07-01T00:00:00.1234567Z"}]

    out, _ = fncAdaptAssignments("AzureAD", raw, AssignmentSource.PIM_ELIGIBLE)

    w = out[0].pim_window
    assert w.start == datetime(2025, 1, 1, tzinfo=timezone.utc)
    assert w.end.date().isoformat() == "2025-07-01"
    assert out[0].assigned_at == w.start


def test_schedule_request_window_from_nested_schedule_info():
    raw = [{"id": "s1", "principalId": "u1", "roleDefinitionId": "r1",
            "scheduleInfo": {"startDateTime": "2025-02-01T08:00:00Z",
                             "expiration": {"type": "afterDateTime", "endDateTime": "2025-03-01T08:00:00Z"}}}]

    out, _ = fncAdaptAssignments(Service.TEAMS, raw, AssignmentSource.PIM_ACTIVE)

    assert out[0].pim_window.end == datetime(2025, 3, 1, 8, 0, tzinfo=timezone.utc)


def test_malformed_rows_are_skipped_and_counted():
    raw = [
        {"id": "ok", "principalId": "u1", "roleDefinitionId": "r1"},
        {"id": "no-principal", "roleDefinitionId": "r1"},
        "not a dict",
        None,
    ]

    out, skipped = fncAdaptAssignments(Service.PURVIEW, raw, AssignmentSource.ACTIVE)

    assert [a.source_assignment_id for a in out] == ["ok"]
    assert skipped == 3


def test_intune_assignment_fans_out_per_member():
    raw = [{"id": "ia1", "roleDefinition": {"id": "ir1"}, "members": ["g1", "g2"], "resourceScopes": []}]

    out, skipped = fncAdaptAssignments(Service.INTUNE, raw, "Active")

    assert skipped == 0
    assert [a.principal_id for a in out] == ["g1", "g2"]
    assert [a.source_assignment_id for a in out] == ["ia1:g1", "ia1:g2"]
    assert all(a.scope_descriptor == "All Intune objects" for a in out)


def test_exchange_role_group_member_row():
    raw = [{"RoleGroupId": "rg-org", "ExternalDirectoryObjectId": "u9", "Name": "Bob"}]

    out, _ = fncAdaptAssignments(Service.EXCHANGE, raw, AssignmentSource.ACTIVE)

    assert out[0].role_definition_id == "rg-org"
    assert out[0].principal_id == "u9"
    assert out[0].scope_descriptor == "Organization"


def test_sharepoint_site_admin_row_from_login_name():
    raw = [{"SiteUrl": "https://contoso.sharepoint.com/sites/hr",
            "LoginName": "i:0#.f|membership|bob@contoso.com"}]

    out, _ = fncAdaptAssignments(Service.SHAREPOINT, raw, AssignmentSource.ACTIVE)

    assert out[0].principal_id == "bob@contoso.com"
    assert out[0].role_definition_id == SITE_ADMIN_ROLE_ID
    assert out[0].scope_descriptor.endswith("/sites/hr")


def test_unknown_source_kind_is_configuration_error():
    with pytest.raises(ConfigurationError):
        fncAdaptAssignments(Service.AZURE_AD, [], "Bogus")


def test_unknown_service_is_configuration_error():
    with pytest.raises(ConfigurationError):
        fncAdaptAssignments("Yammer", [], AssignmentSource.ACTIVE)


def test_role_definitions_are_classified():
    classifier = RoleScopeClassifier()
    raw = [
        {"id": "r-ga", "displayName": "Global Administrator", "isBuiltIn": True},
        {"id": "r-exo", "displayName": "Exchange Administrator", "isBuiltIn": True},
        {"displayName": "no id"},
    ]

    defs = fncAdaptRoleDefinitions(Service.EXCHANGE, raw, classifier)

    assert set(defs) == {"r-ga", "r-exo"}
    assert defs["r-ga"].scope == RoleScope.OVERARCHING
    assert defs["r-exo"].scope == RoleScope.SERVICE_SPECIFIC
    assert defs["r-exo"].service == Service.EXCHANGE


def test_exchange_role_groups_and_sharepoint_pseudo_role():
    classifier = RoleScopeClassifier()
    groups = [{"Guid": "rg1", "Name": "Organization Management", "RoleGroupType": "BuiltIn"},
              {"Guid": "rg2", "Name": "Custom Helpdesk", "RoleGroupType": "Standard"}]

    exo = fncAdaptRoleDefinitions(Service.EXCHANGE, groups, classifier)
    spo = fncAdaptRoleDefinitions(Service.SHAREPOINT, [], classifier)

    assert exo["rg1"].built_in is True
    assert exo["rg2"].built_in is False
    assert spo[SITE_ADMIN_ROLE_ID].display_name == SITE_ADMIN_ROLE_NAME
    assert spo[SITE_ADMIN_ROLE_ID].scope == RoleScope.SERVICE_SPECIFIC


@pytest.mark.parametrize("stamp", ["/Date(99999999999999999999999)/", "/Date(999999999999999)/"])
def test_out_of_range_optional_timestamp_keeps_the_assignment(stamp):
    raw = [{"RoleGroupId": "rg-org", "ExternalDirectoryObjectId": "u9", "WhenCreated": stamp}]

    out, skipped = fncAdaptAssignments(Service.EXCHANGE, raw, AssignmentSource.ACTIVE)

    assert skipped == 0
    assert out[0].principal_id == "u9"
    assert out[0].assigned_at is None


def test_out_of_range_pim_end_keeps_the_eligibility():
    raw = [{"id": "e1", "principalId": "u1", "roleDefinitionId": "r1",
            "startDateTime": "2025-01-01T00:00:00Z", "endDateTime": "/Date(99999999999999999999999)/"}]

    out, skipped = fncAdaptAssignments(Service.AZURE_AD, raw, AssignmentSource.PIM_ELIGIBLE)

    assert skipped == 0
    assert out[0].pim_window.start == datetime(2025, 1, 1, tzinfo=timezone.utc)
    assert out[0].pim_window.end is None
