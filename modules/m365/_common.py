# ================================================================
# File     : modules/m365/_common.py
# Purpose  : Shared plumbing for the M365 service passes
# Notes    : Directory role data is fetched once per run and cached
#            on the AuditContext; each pass filters it by its own
#            role catalogue before adapting and normalising.
# ================================================================

import os
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from core.utils import fncPrintMessage, fncReadJSON, fncToTable
from engine.adapters import fncAdaptAssignments, fncAdaptRoleDefinitions
from engine.audit import AuditContext
from engine.models import AssignmentSource, NormalisationResult, RoleDefinition, Service
from engine.normalise import fncNormaliseAssignments
from engine.role_scope import fncFilterRoleDefinitions, fncRoleNameMatches, fncServiceRoleNames
from handlers.graph.graph_helpers import fncHydratePrincipals, safe_select_get_all

DIRECTORY_PERMS = [
    "Directory.Read.All",
    "RoleManagement.Read.Directory",
]

Source = Tuple[List[Dict[str, Any]], AssignmentSource]


def _iso_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def fncTryGetAll(client, endpoint: str, fallback: Optional[str] = None, label: str = "",
                 beta: bool = False) -> List[Dict[str, Any]]:
    try:
        return client.get_all(endpoint, beta=beta) or []
    except Exception as ex:
        if fallback:
            fncPrintMessage(f"{label or endpoint} $select failed; retrying without ({ex})", "debug")
            try:
                return client.get_all(fallback, beta=beta) or []
            except Exception as ex2:
                ex = ex2
        fncPrintMessage(f"{label or endpoint} unavailable: {ex}", "warn")
        return []


# ================================================================
# Function: fncDirectoryRoleData
# Purpose : Fetch directory role catalogue, permanent assignments and
#           PIM schedule instances (once per run)
# Notes   : PIM endpoints need Entra ID P2; missing licence → []
# ================================================================
def fncDirectoryRoleData(client, ctx: AuditContext) -> Dict[str, List[Dict[str, Any]]]:
    with ctx.fetch_lock:
        cached = ctx.fetch_cache.get("directory")
        if cached is None:
            cached = ctx.fetch_cache["directory"] = _fetch_directory(client)
        return cached


def _fetch_directory(client) -> Dict[str, List[Dict[str, Any]]]:
    defs, _missing = safe_select_get_all(client, "roleManagement/directory/roleDefinitions",
                                         ["id", "displayName", "isBuiltIn"])
    data = {
        "definitions": defs,
        "assignments": fncTryGetAll(
            client,
            "roleManagement/directory/roleAssignments?$select=id,principalId,roleDefinitionId,directoryScopeId",
            fallback="roleManagement/directory/roleAssignments",
            label="Role assignments"),
        "eligible": fncTryGetAll(
            client,
            "roleManagement/directory/roleEligibilityScheduleInstances"
            "?$select=id,principalId,roleDefinitionId,startDateTime,endDateTime,directoryScopeId,memberType",
            fallback="roleManagement/directory/roleEligibilityScheduleInstances",
            label="PIM eligibility instances"),
        "active": fncTryGetAll(
            client,
            "roleManagement/directory/roleAssignmentScheduleInstances"
            "?$select=id,principalId,roleDefinitionId,startDateTime,endDateTime,directoryScopeId,assignmentType,memberType",
            fallback="roleManagement/directory/roleAssignmentScheduleInstances",
            label="PIM assignment instances"),
    }
    return data


def _key(row: Mapping[str, Any]) -> Tuple[Any, Any, Any]:
    return (row.get("principalId"), row.get("roleDefinitionId"), row.get("directoryScopeId") or "/")


def fncSplitDirectorySources(data: Mapping[str, List[Dict[str, Any]]], role_ids: Iterable[str]) -> List[Source]:
    """
    Restrict raw rows to the pass's roles and split them into sources.
    Activated PIM instances also show up in roleAssignments; those copies
    are dropped from the permanent list so each activation counts once.
    """
    ids = set(role_ids)
    activated = [r for r in data.get("active", [])
                 if r.get("roleDefinitionId") in ids and str(r.get("assignmentType") or "").lower() == "activated"]
    activated_keys = {_key(r) for r in activated}
    permanent = [r for r in data.get("assignments", [])
                 if r.get("roleDefinitionId") in ids and _key(r) not in activated_keys]
    eligible = [r for r in data.get("eligible", []) if r.get("roleDefinitionId") in ids]
    return [
        (permanent, AssignmentSource.ACTIVE),
        (eligible, AssignmentSource.PIM_ELIGIBLE),
        (activated, AssignmentSource.PIM_ACTIVE),
    ]


def fncDirectoryRoleDefinitions(client, ctx: AuditContext, service,
                                name_filter: Callable[[str], bool]) -> Dict[str, RoleDefinition]:
    data = fncDirectoryRoleData(client, ctx)
    defs = fncAdaptRoleDefinitions(service, data["definitions"], ctx.classifier)
    return {rid: rd for rid, rd in defs.items() if name_filter(rd.display_name)}


# ================================================================
# Function: fncNormaliseSources
# Purpose : Hydrate principals, adapt each source and normalise
# Notes   : Returns one merged NormalisationResult for the pass
# ================================================================
def fncNormaliseSources(client, ctx: AuditContext, service, role_defs: Mapping[str, RoleDefinition],
                        sources: Sequence[Source]) -> NormalisationResult:
    svc = Service.parse(service)
    include = ctx.include_overarching_for(svc)
    role_defs = fncFilterRoleDefinitions(role_defs, include)

    adapted = []
    for rows, kind in sources:
        assignments, skipped = fncAdaptAssignments(svc, rows, kind)
        adapted.append((assignments, skipped))

    if client is not None:
        ids = [a.principal_id for assignments, _ in adapted for a in assignments]
        fncHydratePrincipals(client, ctx.resolver, ids)

    merged = NormalisationResult()
    for assignments, skipped in adapted:
        res = fncNormaliseAssignments(assignments, role_defs, ctx.resolver, svc, include,
                                      auth_type=ctx.auth_type, skipped_malformed=skipped)
        merged.records.extend(res.records)
        merged.skipped_missing_role += res.skipped_missing_role
        merged.skipped_overarching += res.skipped_overarching
        merged.skipped_malformed += res.skipped_malformed
    return merged


def fncRunDirectoryPass(client, ctx: AuditContext, service) -> NormalisationResult:
    """Standard pass for services whose admin roles are Entra directory roles."""
    svc = Service.parse(service)
    names = fncServiceRoleNames(svc, ctx.classifier, ctx.include_overarching_for(svc))
    role_defs = fncDirectoryRoleDefinitions(client, ctx, svc, lambda n: fncRoleNameMatches(n, names))
    sources = fncSplitDirectorySources(fncDirectoryRoleData(client, ctx), role_defs.keys())
    return fncNormaliseSources(client, ctx, svc, role_defs, sources)


def fncMergeResults(*results: NormalisationResult) -> NormalisationResult:
    out = NormalisationResult()
    for r in results:
        out.records.extend(r.records)
        out.skipped_missing_role += r.skipped_missing_role
        out.skipped_overarching += r.skipped_overarching
        out.skipped_malformed += r.skipped_malformed
    return out


# ================================================================
# Function: fncPassResult
# Purpose : Build the per-pass payload returned by run()
# Notes   : Prints a short console preview like the other modules
# ================================================================
def fncPassResult(ctx: AuditContext, service, result: NormalisationResult) -> Dict[str, Any]:
    svc = Service.parse(service)
    rows = [r.to_row() for r in result.records]
    if rows:
        fncPrintMessage(f"{svc.value} role assignments (first 15)", "info")
        print(fncToTable(rows, headers=["principalName", "principalType", "roleName", "assignmentType", "scope"],
                         max_rows=15))
    else:
        fncPrintMessage(f"No {svc.value} role assignments found.", "warn")

    fncPrintMessage(
        f"{svc.value}: {len(result.records)} record(s), "
        f"{result.skipped_missing_role} unknown role, {result.skipped_malformed} malformed",
        "success",
    )
    return {
        "provider": "m365",
        "service": svc.value,
        "run_id": ctx.run_id,
        "timestamp": _iso_now(),
        "summary": {
            "Assignments": len(result.records),
            "Skipped (unknown role)": result.skipped_missing_role,
            "Skipped (malformed)": result.skipped_malformed,
            "Overarching left to Azure AD": result.skipped_overarching,
        },
        "records": result.records,
        "skipped": result.skipped_dict(),
    }


# ================================================================
# Function: fncReadImport
# Purpose : Load rows exported offline (PowerShell ConvertTo-Json)
# Notes   : Looks under audit.import_dir; a single object becomes a
#           one-row list, {"value": [...]} is unwrapped
# ================================================================
def fncReadImport(ctx: AuditContext, filename: str) -> List[Dict[str, Any]]:
    base = ctx.settings.get("import_dir")
    if not base:
        return []
    path = os.path.join(os.path.expanduser(str(base)), filename)
    if not os.path.isfile(path):
        fncPrintMessage(f"No import file {path}", "debug")
        return []
    data = fncReadJSON(path)
    if isinstance(data, dict):
        data = data.get("value", [data] if data else [])
    rows = [r for r in data or [] if isinstance(r, dict)]
    fncPrintMessage(f"Imported {len(rows)} row(s) from {path}", "info")
    return rows
