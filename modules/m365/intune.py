# ================================================================
# File     : modules/m365/intune.py
# Purpose  : Intune admin role assignments
# Notes    : Intune/Cloud Device directory roles plus Intune RBAC
#            (deviceManagement/roleDefinitions + roleAssignments).
#            An Intune RBAC assignment targets member groups; each
#            group becomes its own record.
# ================================================================

from core.utils import fncPrintMessage
from engine.adapters import fncAdaptRoleDefinitions
from engine.models import AssignmentSource, Service
from modules.m365._common import (
    DIRECTORY_PERMS,
    fncMergeResults,
    fncNormaliseSources,
    fncPassResult,
    fncRunDirectoryPass,
    fncTryGetAll,
)

SERVICE = Service.INTUNE
REQUIRED_PERMS = DIRECTORY_PERMS + ["DeviceManagementRBAC.Read.All"]


def _rbac_assignments(client, role_defs_raw):
    """roleAssignments does not return the role id in v1.0; walk each definition."""
    out = []
    for rd in role_defs_raw:
        rid = rd.get("id")
        if not rid:
            continue
        rows = fncTryGetAll(client, f"deviceManagement/roleDefinitions/{rid}/roleAssignments",
                            label=f"Intune assignments for {rd.get('displayName') or rid}")
        for row in rows:
            full = row
            # no id, nothing to fetch; the adapter counts it as malformed
            if not row.get("members") and row.get("id"):
                # list view omits members; fetch the assignment itself
                try:
                    full = client.get(f"deviceManagement/roleAssignments/{row.get('id')}")
                except Exception as ex:
                    fncPrintMessage(f"Intune assignment {row.get('id')} unavailable: {ex}", "warn")
                    full = row
            out.append(dict(full, roleDefinitionId=rid))
    return out


def run(client, ctx):
    directory = fncRunDirectoryPass(client, ctx, SERVICE)

    role_defs_raw = fncTryGetAll(client, "deviceManagement/roleDefinitions",
                                 label="Intune role definitions")
    rbac_defs = fncAdaptRoleDefinitions(SERVICE, role_defs_raw, ctx.classifier)
    rbac_rows = _rbac_assignments(client, role_defs_raw) if role_defs_raw else []
    rbac = fncNormaliseSources(client, ctx, SERVICE, rbac_defs, [(rbac_rows, AssignmentSource.ACTIVE)])

    return fncPassResult(ctx, SERVICE, fncMergeResults(directory, rbac))
