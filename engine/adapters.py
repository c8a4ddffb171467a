# ================================================================
# File     : engine/adapters.py
# Purpose  : Per-service adapters turning raw API rows into the
#            common Assignment / RoleDefinition shapes
# Notes    : Pure mapping. Missing optional fields default to None/"";
#            rows without a principal or role id are skipped and counted.
# ================================================================

from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple

from core.utils import fncParseTimestamp, fncPrintMessage
from engine.models import (
    Assignment,
    AssignmentSource,
    ConfigurationError,
    PimWindow,
    RoleDefinition,
    Service,
)
from engine.role_scope import RoleScopeClassifier

SITE_ADMIN_ROLE_ID = "SiteCollectionAdministrator"
SITE_ADMIN_ROLE_NAME = "Site Collection Administrator"

_PIM_KINDS = (AssignmentSource.PIM_ELIGIBLE, AssignmentSource.PIM_ACTIVE)


# ---------- small readers ----------

def _first(raw: Mapping[str, Any], *keys: str) -> Any:
    for k in keys:
        v = raw.get(k)
        if v not in (None, ""):
            return v
    return None

def _nested_id(raw: Mapping[str, Any], key: str) -> Optional[str]:
    obj = raw.get(key)
    if isinstance(obj, dict):
        return obj.get("id")
    return None

def _directory_scope(raw: Mapping[str, Any]) -> str:
    scope_obj = raw.get("directoryScope")
    if isinstance(scope_obj, dict) and scope_obj.get("displayName"):
        return str(scope_obj["displayName"])
    scope = _first(raw, "directoryScopeId", "appScopeId")
    if scope is None:
        return ""
    return "Directory" if scope == "/" else str(scope)

def _pim_window(raw: Mapping[str, Any]) -> PimWindow:
    """Read start/end from top-level instance fields or nested scheduleInfo."""
    sched = raw.get("scheduleInfo") if isinstance(raw.get("scheduleInfo"), dict) else {}
    expiration = sched.get("expiration") if isinstance(sched.get("expiration"), dict) else {}
    start = _first(raw, "startDateTime") or sched.get("startDateTime")
    end = _first(raw, "endDateTime") or expiration.get("endDateTime")
    return PimWindow(start=fncParseTimestamp(start), end=fncParseTimestamp(end))


def _build(pid: Any, rid: Any, source_kind: AssignmentSource, source_id: Any,
           assigned_at: Any, scope: str, raw: Mapping[str, Any]) -> Optional[Assignment]:
    if not pid or not rid:
        return None
    window = _pim_window(raw) if source_kind in _PIM_KINDS else None
    assigned = fncParseTimestamp(assigned_at)
    if assigned is None and window is not None:
        assigned = window.start
    return Assignment(
        principal_id=str(pid),
        role_definition_id=str(rid),
        source_kind=source_kind,
        source_assignment_id=str(source_id or f"{pid}:{rid}:{scope}"),
        assigned_at=assigned,
        scope_descriptor=scope,
        pim_window=window,
    )


# ---------- per-service assignment adapters ----------

def _adapt_unified(raw: Mapping[str, Any], source_kind: AssignmentSource) -> Optional[List[Assignment]]:
    # Graph unifiedRoleAssignment / schedule instance / schedule
    pid = raw.get("principalId") or _nested_id(raw, "principal")
    rid = raw.get("roleDefinitionId") or _nested_id(raw, "roleDefinition")
    a = _build(pid, rid, source_kind, raw.get("id"),
               _first(raw, "createdDateTime", "assignedDateTime"), _directory_scope(raw), raw)
    return [a] if a else None

def _adapt_exchange(raw: Mapping[str, Any], source_kind: AssignmentSource) -> Optional[List[Assignment]]:
    if "roleDefinitionId" in raw or "roleDefinition" in raw:
        return _adapt_unified(raw, source_kind)

    # Exchange role-group membership row
    pid = _first(raw, "ExternalDirectoryObjectId", "principalId", "Guid")
    rid = _first(raw, "RoleGroupId", "RoleGroupGuid", "RoleGroup")
    scope = str(_first(raw, "RecipientWriteScope", "Scope") or "Organization")
    source_id = f"{rid}:{pid}" if pid and rid else None
    a = _build(pid, rid, source_kind, source_id, _first(raw, "WhenCreated", "WhenChanged"), scope, raw)
    return [a] if a else None

def _adapt_intune(raw: Mapping[str, Any], source_kind: AssignmentSource) -> Optional[List[Assignment]]:
    # One deviceManagement roleAssignment fans out to one Assignment per member group
    rid = _nested_id(raw, "roleDefinition") or raw.get("roleDefinitionId")
    members = [m for m in (raw.get("members") or raw.get("principalIds") or []) if m]
    if not rid or not members:
        return None

    scopes = raw.get("resourceScopes") or raw.get("scopeMembers") or []
    scope = ", ".join(str(s) for s in scopes) if scopes else str(raw.get("scopeType") or "All Intune objects")
    out = []
    for member in members:
        a = _build(member, rid, source_kind, f"{raw.get('id') or rid}:{member}",
                   raw.get("createdDateTime"), scope, raw)
        if a:
            out.append(a)
    return out or None

def _adapt_sharepoint(raw: Mapping[str, Any], source_kind: AssignmentSource) -> Optional[List[Assignment]]:
    if "roleDefinitionId" in raw or "roleDefinition" in raw:
        return _adapt_unified(raw, source_kind)

    # Site collection admin row (PnP-style)
    site = _first(raw, "siteUrl", "SiteUrl", "Url")
    pid = _first(raw, "principalId", "AadObjectId", "Email", "UserPrincipalName")
    if not pid:
        login = str(raw.get("LoginName") or "")
        pid = login.split("|")[-1] if "|" in login else None
    source_id = f"{site}:{pid}" if site and pid else None
    a = _build(pid, SITE_ADMIN_ROLE_ID if site else None, source_kind, source_id,
               None, str(site or ""), raw)
    return [a] if a else None


AdapterFn = Callable[[Mapping[str, Any], AssignmentSource], Optional[List[Assignment]]]

ASSIGNMENT_ADAPTERS: Dict[Service, AdapterFn] = {
    Service.AZURE_AD: _adapt_unified,
    Service.EXCHANGE: _adapt_exchange,
    Service.SHAREPOINT: _adapt_sharepoint,
    Service.TEAMS: _adapt_unified,
    Service.DEFENDER: _adapt_unified,
    Service.INTUNE: _adapt_intune,
    Service.PURVIEW: _adapt_unified,
    Service.POWER_PLATFORM: _adapt_unified,
}


# ================================================================
# Function: fncAdaptAssignments
# Purpose : Map one service's raw assignment rows to Assignments
# Notes   : Returns (assignments, skipped_malformed); never raises on
#           partial data. Unknown service/source is a ConfigurationError.
# ================================================================
def fncAdaptAssignments(service, raw_assignments: Optional[Iterable[Any]],
                        source_kind: AssignmentSource) -> Tuple[List[Assignment], int]:
    svc = Service.parse(service)
    if not isinstance(source_kind, AssignmentSource):
        try:
            source_kind = AssignmentSource(source_kind)
        except ValueError:
            raise ConfigurationError(f"Unknown assignment source: {source_kind!r}") from None

    adapter = ASSIGNMENT_ADAPTERS[svc]
    out: List[Assignment] = []
    skipped = 0
    for raw in raw_assignments or []:
        adapted = None
        if isinstance(raw, Mapping):
            try:
                adapted = adapter(raw, source_kind)
            except (TypeError, ValueError, AttributeError) as ex:
                fncPrintMessage(f"[{svc.value}] malformed assignment skipped: {ex}", "debug")
        if not adapted:
            skipped += 1
            continue
        out.extend(adapted)

    if skipped:
        fncPrintMessage(f"[{svc.value}] skipped {skipped} malformed {source_kind.value} assignment(s)", "warn")
    return out, skipped


# ================================================================
# Function: fncAdaptRoleDefinitions
# Purpose : Map raw role catalogue rows to classified RoleDefinitions
# Notes   : Handles Graph unified roles, Intune roles and Exchange role
#           groups; SharePoint always gains the site-admin pseudo role
# ================================================================
def fncAdaptRoleDefinitions(service, raw_defs: Optional[Iterable[Any]],
                            classifier: RoleScopeClassifier) -> Dict[str, RoleDefinition]:
    svc = Service.parse(service)
    out: Dict[str, RoleDefinition] = {}

    for raw in raw_defs or []:
        if not isinstance(raw, Mapping):
            continue
        rid = _first(raw, "id", "Guid", "ExchangeObjectId", "Identity", "Name")
        if not rid:
            continue
        name = str(_first(raw, "displayName", "DisplayName", "Name") or "(unknown role)")
        built_in = _first(raw, "isBuiltIn", "isBuiltInRoleDefinition", "IsBuiltIn")
        if built_in is None and raw.get("RoleGroupType") is not None:
            built_in = str(raw.get("RoleGroupType")).lower() == "builtin"
        out[str(rid)] = RoleDefinition(
            id=str(rid),
            display_name=name,
            service=svc,
            scope=classifier.classify(name, svc),
            built_in=bool(built_in) if built_in is not None else True,
        )

    if svc is Service.SHAREPOINT and SITE_ADMIN_ROLE_ID not in out:
        out[SITE_ADMIN_ROLE_ID] = RoleDefinition(
            id=SITE_ADMIN_ROLE_ID,
            display_name=SITE_ADMIN_ROLE_NAME,
            service=svc,
            scope=classifier.classify(SITE_ADMIN_ROLE_NAME, svc),
            built_in=True,
        )
    return out
