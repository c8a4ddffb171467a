# ================================================================
# File     : modules/m365/purview.py
# Purpose  : Purview compliance admin role assignments
# Notes    : Directory roles only; overarching roles are left to the
#            Azure AD pass unless include_overarching_roles is set
# ================================================================

from engine.models import Service
from modules.m365._common import DIRECTORY_PERMS, fncPassResult, fncRunDirectoryPass

SERVICE = Service.PURVIEW
REQUIRED_PERMS = list(DIRECTORY_PERMS)


def run(client, ctx):
    """Compliance, Compliance Data and AIP administrators."""
    result = fncRunDirectoryPass(client, ctx, SERVICE)
    return fncPassResult(ctx, SERVICE, result)
