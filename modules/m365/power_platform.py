# ================================================================
# File     : modules/m365/power_platform.py
# Purpose  : Power Platform, Dynamics 365 and Fabric admin role assignments
# Notes    : Directory roles only
# ================================================================

from engine.models import Service
from modules.m365._common import DIRECTORY_PERMS, fncPassResult, fncRunDirectoryPass

SERVICE = Service.POWER_PLATFORM
REQUIRED_PERMS = list(DIRECTORY_PERMS)


def run(client, ctx):
    result = fncRunDirectoryPass(client, ctx, SERVICE)
    return fncPassResult(ctx, SERVICE, result)
