import json
import time

import pytest

from core.module_loader import fncCollectPassResults, fncRunAllModules
from engine.audit import AuditContext
from engine.models import AssignmentSource, PrincipalKind, RoleScope, Service
from handlers.graph.graph_helpers import fncGraphResolverFactory
from modules.m365 import azure_ad, defender, exchange, intune, sharepoint, teams

from builders import FakeGraph, directory_group, directory_user

ROLE_DEFS = "roleManagement/directory/roleDefinitions"


def _routes():
    return {
        ROLE_DEFS: [
            {"id": "r-ga", "displayName": "Global Administrator", "isBuiltIn": True},
            {"id": "r-exo", "displayName": "Exchange Administrator", "isBuiltIn": True},
            {"id": "r-teams", "displayName": "Teams Administrator", "isBuiltIn": True},
            {"id": "r-secr", "displayName": "Security Reader", "isBuiltIn": True},
        ],
        "roleManagement/directory/roleAssignments": [
            {"id": "ra1", "principalId": "u-alice", "roleDefinitionId": "r-ga", "directoryScopeId": "/"},
            {"id": "ra2", "principalId": "u-bob", "roleDefinitionId": "r-exo", "directoryScopeId": "/"},
            # standing copy of dave's PIM activation
            {"id": "ra3", "principalId": "u-dave", "roleDefinitionId": "r-ga", "directoryScopeId": "/"},
            {"id": "ra4", "principalId": "u-erin", "roleDefinitionId": "r-secr", "directoryScopeId": "/"},
        ],
        "roleManagement/directory/roleEligibilityScheduleInstances": [
            {"id": "re1", "principalId": "u-carol", "roleDefinitionId": "r-teams", "directoryScopeId": "/",
             "startDateTime": "2025-01-01T00:00:00Z", "endDateTime": "2025-06-10T00:00:00Z"},
        ],
        "roleManagement/directory/roleAssignmentScheduleInstances": [
            {"id": "rai1", "principalId": "u-dave", "roleDefinitionId": "r-ga", "directoryScopeId": "/",
             "assignmentType": "Activated", "startDateTime": "2025-06-01T08:00:00Z",
             "endDateTime": "2025-06-01T16:00:00Z"},
            {"id": "rai2", "principalId": "u-alice", "roleDefinitionId": "r-ga", "directoryScopeId": "/",
             "assignmentType": "Assigned"},
        ],
        "deviceManagement/roleDefinitions": [
            {"id": "ir-help", "displayName": "Help Desk Operator", "isBuiltIn": True},
        ],
        "deviceManagement/roleDefinitions/ir-help/roleAssignments": [
            {"id": "ia1", "displayName": "Helpdesk", "members": ["g-helpdesk"], "resourceScopes": []},
            {"id": "ia2", "displayName": "Field"},
        ],
        "deviceManagement/roleAssignments/ia2": {"id": "ia2", "members": ["u-bob"], "resourceScopes": ["scope-emea"]},
    }


def _directory():
    objs = [directory_user("u-alice", "Alice"), directory_user("u-bob", "Bob"),
            directory_user("u-carol", "Carol"), directory_user("u-dave", "Dave"),
            directory_user("u-erin", "Erin", enabled=False), directory_user("u-frank", "Frank"),
            directory_group("g-helpdesk", "Helpdesk Team")]
    return {o["id"]: o for o in objs}


@pytest.fixture
def graph():
    return FakeGraph(_routes(), _directory())


def _ctx(graph, services, **settings):
    return AuditContext.create(settings, services=services, auth_type="Certificate",
                               run_id="hound-test", resolver_factory=fncGraphResolverFactory(graph))


def _summary(result):
    return sorted((r.principal.display_name, r.role.display_name, r.assignment_source.value)
                  for r in result["records"])


def test_azure_ad_leaves_claimed_roles_and_counts_activation_once(graph):
    ctx = _ctx(graph, [Service.AZURE_AD, Service.EXCHANGE, Service.TEAMS])

    result = azure_ad.run(graph, ctx)

    assert _summary(result) == [
        ("Alice", "Global Administrator", "Active"),
        ("Dave", "Global Administrator", "PIMActive"),
        ("Erin", "Security Reader", "Active"),
    ]
    assert result["service"] == "AzureAD"
    assert result["summary"]["Assignments"] == 3
    assert all(r.auth_type == "Certificate" for r in result["records"])
    labels = {r.principal.display_name: (r.assignment_label, r.role.scope) for r in result["records"]}
    assert labels["Alice"] == ("Active", RoleScope.OVERARCHING)
    assert labels["Dave"] == ("Active (PIM)", RoleScope.OVERARCHING)


def test_azure_ad_alone_reports_every_directory_role(graph):
    result = azure_ad.run(graph, _ctx(graph, [Service.AZURE_AD]))
    assert len(result["records"]) == 5


def test_exchange_pass_excludes_overarching_by_default(graph):
    result = exchange.run(graph, _ctx(graph, [Service.EXCHANGE]))

    assert _summary(result) == [("Bob", "Exchange Administrator", "Active")]
    assert ("get_all", "roleManagement/exchange/roleDefinitions", True) in graph.calls


def test_exchange_pass_can_include_overarching(graph):
    result = exchange.run(graph, _ctx(graph, [Service.EXCHANGE], include_overarching_roles=True))
    roles = {r.role.display_name for r in result["records"]}

    assert roles == {"Exchange Administrator", "Global Administrator"}


def test_exchange_rbac_and_offline_role_groups(graph, tmp_path):
    graph.routes["roleManagement/exchange/roleDefinitions"] = [
        {"id": "x-mr", "displayName": "Mail Recipients", "isBuiltIn": True}]
    graph.routes["roleManagement/exchange/roleAssignments"] = [
        {"id": "xa1", "principalId": "u-erin", "roleDefinitionId": "x-mr", "appScopeId": "/"}]
    (tmp_path / exchange.ROLE_GROUPS_FILE).write_text(json.dumps(
        [{"Guid": "rg-om", "Name": "Organization Management", "RoleGroupType": "BuiltIn"}]))
    (tmp_path / exchange.ROLE_GROUP_MEMBERS_FILE).write_text(json.dumps(
        {"RoleGroup": "Organization Management", "ExternalDirectoryObjectId": "u-alice", "Name": "Alice"}))

    result = exchange.run(graph, _ctx(graph, [Service.EXCHANGE], import_dir=str(tmp_path)))

    assert _summary(result) == [
        ("Alice", "Organization Management", "Active"),
        ("Bob", "Exchange Administrator", "Active"),
        ("Erin", "Mail Recipients", "Active"),
    ]
    scopes = {r.role.display_name: r.scope_descriptor for r in result["records"]}
    assert scopes["Organization Management"] == "Organization"


def test_teams_pass_keeps_pim_window(graph):
    result = teams.run(graph, _ctx(graph, [Service.TEAMS]))

    rec = result["records"][0]
    assert rec.assignment_source is AssignmentSource.PIM_ELIGIBLE
    assert rec.assignment_label == "Eligible (PIM)"
    assert rec.pim_window.end.isoformat().startswith("2025-06-10")


def test_defender_treats_security_reader_as_overarching(graph):
    assert defender.run(graph, _ctx(graph, [Service.DEFENDER]))["records"] == []

    wide = defender.run(graph, _ctx(graph, [Service.DEFENDER], include_overarching_roles=True))
    assert ("Erin", "Security Reader", "Active") in _summary(wide)


def test_intune_rbac_fans_out_to_member_groups(graph):
    result = intune.run(graph, _ctx(graph, [Service.INTUNE]))

    by_id = {r.source_assignment_id: r for r in result["records"]}
    assert set(by_id) == {"ia1:g-helpdesk", "ia2:u-bob"}
    assert by_id["ia1:g-helpdesk"].principal.kind == PrincipalKind.GROUP
    assert by_id["ia1:g-helpdesk"].scope_descriptor == "All Intune objects"
    assert by_id["ia2:u-bob"].scope_descriptor == "scope-emea"


def test_intune_row_without_id_is_not_fetched(graph):
    graph.routes["deviceManagement/roleDefinitions/ir-help/roleAssignments"].append({"displayName": "Orphan"})

    result = intune.run(graph, _ctx(graph, [Service.INTUNE]))

    assert not [c for c in graph.calls if c[1].endswith("roleAssignments/None")]
    assert len(result["records"]) == 2
    assert result["summary"]["Skipped (malformed)"] == 1


def test_sharepoint_site_admins_from_import(graph, tmp_path):
    (tmp_path / sharepoint.SITE_ADMINS_FILE).write_text(json.dumps({"value": [
        {"SiteUrl": "https://contoso.sharepoint.com/sites/finance", "AadObjectId": "u-frank"},
    ]}))

    result = sharepoint.run(graph, _ctx(graph, [Service.SHAREPOINT], import_dir=str(tmp_path)))

    assert _summary(result) == [("Frank", "Site Collection Administrator", "Active")]
    assert result["records"][0].scope_descriptor.endswith("/sites/finance")


def test_directory_data_fetched_once_per_run(graph):
    ctx = _ctx(graph, [Service.AZURE_AD, Service.TEAMS])

    azure_ad.run(graph, ctx)
    teams.run(graph, ctx)

    fetches = [c for c in graph.calls if c[0] == "get_all" and c[1].startswith(ROLE_DEFS)]
    assert len(fetches) == 1


def test_parallel_passes_share_one_directory_fetch():
    class SlowGraph(FakeGraph):
        def get_all(self, endpoint, params=None, beta=False):
            if endpoint.startswith(ROLE_DEFS):
                time.sleep(0.05)
            return super().get_all(endpoint, params=params, beta=beta)

    slow = SlowGraph(_routes(), _directory())
    services = [Service.AZURE_AD, Service.TEAMS, Service.DEFENDER, Service.PURVIEW]

    fncRunAllModules("m365", slow, _ctx(slow, services), services, parallel=4)

    fetches = [c for c in slow.calls if c[0] == "get_all" and c[1].startswith(ROLE_DEFS)]
    assert len(fetches) == 1


def test_unresolvable_principal_becomes_unknown(graph):
    graph.routes["roleManagement/directory/roleAssignments"].append(
        {"id": "ra9", "principalId": "ghost", "roleDefinitionId": "r-ga", "directoryScopeId": "/"})
    ctx = _ctx(graph, [Service.AZURE_AD])

    result = azure_ad.run(graph, ctx)

    ghost = [r for r in result["records"] if r.principal.id == "ghost"]
    assert ghost[0].principal.kind == PrincipalKind.UNKNOWN
    assert ctx.resolver.unresolved == 1


def test_sequential_and_parallel_runs_agree(graph):
    services = list(Service)

    serial = fncCollectPassResults(fncRunAllModules("m365", graph, _ctx(graph, services), services))
    threaded = fncCollectPassResults(fncRunAllModules("m365", graph, _ctx(graph, services), services, parallel=3))

    ids = sorted(r.source_assignment_id for r in serial["records"])
    assert ids == sorted(r.source_assignment_id for r in threaded["records"])
    assert len(ids) == 7
    assert serial["errors"] == {}
    assert list(serial["passes"]) == [s.value for s in services]


def test_failing_pass_is_reported_not_raised():
    broken = FakeGraph(_routes(), _directory(), fail={ROLE_DEFS})
    services = [Service.AZURE_AD, Service.TEAMS]

    collected = fncCollectPassResults(fncRunAllModules("m365", broken, _ctx(broken, services), services))

    assert collected["records"] == []
    assert set(collected["errors"]) == {"AzureAD", "Teams"}
    assert "403" in collected["errors"]["AzureAD"]
