# ================================================================
# File     : modules/m365/exchange.py
# Purpose  : Exchange Online admin role assignments
# Notes    : Three sources, merged into one pass:
#            - Exchange directory roles (Exchange Administrator, ...)
#            - Exchange unified RBAC (Graph beta roleManagement/exchange)
#            - optional offline role-group export under audit.import_dir
# ================================================================

from typing import Any, Dict, List

from core.utils import fncPrintMessage
from engine.adapters import fncAdaptRoleDefinitions
from engine.models import AssignmentSource, Service
from engine.role_scope import fncRoleNameMatches, fncServiceRoleNames
from modules.m365._common import (
    DIRECTORY_PERMS,
    fncDirectoryRoleData,
    fncDirectoryRoleDefinitions,
    fncMergeResults,
    fncNormaliseSources,
    fncPassResult,
    fncReadImport,
    fncSplitDirectorySources,
    fncTryGetAll,
)

SERVICE = Service.EXCHANGE
REQUIRED_PERMS = DIRECTORY_PERMS + ["RoleManagement.Read.Exchange"]

ROLE_GROUPS_FILE = "exchange_role_groups.json"
ROLE_GROUP_MEMBERS_FILE = "exchange_role_group_members.json"


def _link_members(groups: List[Dict[str, Any]], members: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    # Get-RoleGroupMember exports carry the group name; point them at the group Guid
    by_name = {}
    for g in groups:
        gid = g.get("Guid") or g.get("ExchangeObjectId")
        for key in ("Name", "DisplayName"):
            if g.get(key) and gid:
                by_name[str(g[key]).lower()] = gid
    out = []
    for m in members:
        row = dict(m)
        if not row.get("RoleGroupId") and not row.get("RoleGroupGuid"):
            gid = by_name.get(str(row.get("RoleGroup") or "").lower())
            if gid:
                row["RoleGroupId"] = gid
        out.append(row)
    return out


def run(client, ctx):
    include = ctx.include_overarching_for(SERVICE)

    # Directory roles
    names = fncServiceRoleNames(SERVICE, ctx.classifier, include)
    dir_defs = fncDirectoryRoleDefinitions(client, ctx, SERVICE, lambda n: fncRoleNameMatches(n, names))
    dir_sources = fncSplitDirectorySources(fncDirectoryRoleData(client, ctx), dir_defs.keys())
    directory = fncNormaliseSources(client, ctx, SERVICE, dir_defs, dir_sources)

    # Unified RBAC (beta)
    rbac_defs_raw = fncTryGetAll(client, "roleManagement/exchange/roleDefinitions",
                                 label="Exchange RBAC role definitions", beta=True)
    rbac_assignments = fncTryGetAll(client, "roleManagement/exchange/roleAssignments",
                                    label="Exchange RBAC role assignments", beta=True)
    rbac_defs = fncAdaptRoleDefinitions(SERVICE, rbac_defs_raw, ctx.classifier)
    rbac = fncNormaliseSources(client, ctx, SERVICE, rbac_defs,
                               [(rbac_assignments, AssignmentSource.ACTIVE)])

    # Offline role groups
    groups = fncReadImport(ctx, ROLE_GROUPS_FILE)
    members = fncReadImport(ctx, ROLE_GROUP_MEMBERS_FILE)
    parts = [directory, rbac]
    if members:
        group_defs = fncAdaptRoleDefinitions(SERVICE, groups, ctx.classifier)
        parts.append(fncNormaliseSources(client, ctx, SERVICE, group_defs,
                                         [(_link_members(groups, members), AssignmentSource.ACTIVE)]))
    elif groups:
        fncPrintMessage(f"{ROLE_GROUPS_FILE} present without {ROLE_GROUP_MEMBERS_FILE}; no members to audit", "warn")

    return fncPassResult(ctx, SERVICE, fncMergeResults(*parts))
