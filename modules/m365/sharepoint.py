# ================================================================
# File     : modules/m365/sharepoint.py
# Purpose  : SharePoint Online admin role assignments
# Notes    : SharePoint directory roles, plus site collection admins
#            when a PnP export (sharepoint_site_admins.json) is found
#            under audit.import_dir. Graph has no app-only read of
#            site collection admins, so that part is offline only.
# ================================================================

from engine.adapters import fncAdaptRoleDefinitions
from engine.models import AssignmentSource, Service
from modules.m365._common import (
    DIRECTORY_PERMS,
    fncMergeResults,
    fncNormaliseSources,
    fncPassResult,
    fncReadImport,
    fncRunDirectoryPass,
)

SERVICE = Service.SHAREPOINT
REQUIRED_PERMS = list(DIRECTORY_PERMS)

SITE_ADMINS_FILE = "sharepoint_site_admins.json"


def run(client, ctx):
    parts = [fncRunDirectoryPass(client, ctx, SERVICE)]

    site_admins = fncReadImport(ctx, SITE_ADMINS_FILE)
    if site_admins:
        # adapter adds the Site Collection Administrator pseudo role
        site_defs = fncAdaptRoleDefinitions(SERVICE, [], ctx.classifier)
        parts.append(fncNormaliseSources(client, ctx, SERVICE, site_defs,
                                         [(site_admins, AssignmentSource.ACTIVE)]))

    return fncPassResult(ctx, SERVICE, fncMergeResults(*parts))
