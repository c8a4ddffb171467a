# ================================================================
# File     : modules/m365/defender.py
# Purpose  : Microsoft Defender / Cloud App Security admin role assignments
# Notes    : Security Operator / Security Reader sit on the overarching
#            list, so by default only Cloud App Security Administrator
#            is reported here; they are picked up by the Azure AD pass
# ================================================================

from engine.models import Service
from modules.m365._common import DIRECTORY_PERMS, fncPassResult, fncRunDirectoryPass

SERVICE = Service.DEFENDER
REQUIRED_PERMS = list(DIRECTORY_PERMS)


def run(client, ctx):
    result = fncRunDirectoryPass(client, ctx, SERVICE)
    return fncPassResult(ctx, SERVICE, result)
