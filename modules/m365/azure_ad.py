# ================================================================
# File     : modules/m365/azure_ad.py
# Purpose  : Entra ID (Azure AD) directory role assignments
# Notes    : Always includes the tenant-wide (overarching) roles. Roles
#            owned by another service selected in this run are left to
#            that service's pass so nothing is counted twice.
# ================================================================

from core.utils import fncPrintMessage
from engine.models import Service
from engine.role_scope import fncRoleNameMatches
from modules.m365._common import (
    DIRECTORY_PERMS,
    fncDirectoryRoleData,
    fncDirectoryRoleDefinitions,
    fncNormaliseSources,
    fncPassResult,
    fncSplitDirectorySources,
)

SERVICE = Service.AZURE_AD
REQUIRED_PERMS = DIRECTORY_PERMS + ["RoleAssignmentSchedule.Read.Directory", "RoleEligibilitySchedule.Read.Directory"]


def run(client, ctx):
    claimed = ctx.claimed_role_names
    if claimed:
        fncPrintMessage(f"Azure AD pass leaves {len(claimed)} service role(s) to their own passes", "debug")

    role_defs = fncDirectoryRoleDefinitions(client, ctx, SERVICE,
                                            lambda name: not fncRoleNameMatches(name, claimed))
    data = fncDirectoryRoleData(client, ctx)
    sources = fncSplitDirectorySources(data, role_defs.keys())

    result = fncNormaliseSources(client, ctx, SERVICE, role_defs, sources)
    return fncPassResult(ctx, SERVICE, result)
