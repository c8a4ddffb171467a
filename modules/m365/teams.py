# ================================================================
# File     : modules/m365/teams.py
# Purpose  : Teams admin role assignments (Teams, Teams Communications, Devices, Telephony)
# Notes    : Directory roles only; overarching roles are left to the
#            Azure AD pass unless include_overarching_roles is set
# ================================================================

from engine.models import Service
from modules.m365._common import DIRECTORY_PERMS, fncPassResult, fncRunDirectoryPass

SERVICE = Service.TEAMS
REQUIRED_PERMS = list(DIRECTORY_PERMS)


def run(client, ctx):
    result = fncRunDirectoryPass(client, ctx, SERVICE)
    return fncPassResult(ctx, SERVICE, result)
