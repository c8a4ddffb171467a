# ================================================================
# File     : engine/normalise.py
# Purpose  : Merge adapted Assignments, RoleDefinitions and Principals
#            into canonical RoleAssignmentRecords for one service pass
# Notes    : With include_overarching=False a pass only records its own
#            service-specific roles; tenant-wide roles are recorded once,
#            by the Azure AD pass.
# ================================================================

from typing import Any, Iterable, Mapping, Optional

from core.utils import fncPrintMessage
from engine.models import (
    Assignment,
    ConfigurationError,
    NormalisationResult,
    Principal,
    RoleAssignmentRecord,
    RoleDefinition,
    Service,
)


def _principal_for(principals: Any, pid: str) -> Principal:
    # Either a PrincipalResolver (has .resolve) or a plain id -> Principal mapping
    if hasattr(principals, "resolve"):
        return principals.resolve(pid)
    found = principals.get(pid) if principals is not None else None
    return found if isinstance(found, Principal) else Principal.unknown(pid)


# ================================================================
# Function: fncNormaliseAssignments
# Purpose : Build the canonical record list for one service pass
# Notes   : Never aborts on a bad row. Missing role definitions and
#           excluded overarching roles are counted, not raised.
# ================================================================
def fncNormaliseAssignments(
    assignments: Iterable[Assignment],
    role_defs: Mapping[str, RoleDefinition],
    principals: Any,
    service,
    include_overarching: bool,
    auth_type: Optional[str] = None,
    skipped_malformed: int = 0,
) -> NormalisationResult:
    if role_defs is None:
        raise ConfigurationError("role_defs is required")
    svc = Service.parse(service)

    result = NormalisationResult(skipped_malformed=skipped_malformed)
    missing_ids = set()

    for a in assignments or []:
        role = role_defs.get(a.role_definition_id)
        if role is None:
            result.skipped_missing_role += 1
            missing_ids.add(a.role_definition_id)
            continue

        if not include_overarching and role.is_overarching:
            result.skipped_overarching += 1
            continue

        result.records.append(RoleAssignmentRecord(
            service=svc,
            principal=_principal_for(principals, a.principal_id),
            role=role,
            assignment_source=a.source_kind,
            source_assignment_id=a.source_assignment_id,
            assigned_at=a.assigned_at,
            scope_descriptor=a.scope_descriptor,
            pim_window=a.pim_window,
            auth_type=auth_type,
        ))

    if missing_ids:
        fncPrintMessage(
            f"[{svc.value}] {result.skipped_missing_role} assignment(s) reference unknown role "
            f"definition(s): {', '.join(sorted(missing_ids)[:5])}{' …' if len(missing_ids) > 5 else ''}",
            "warn",
        )
    if result.skipped_overarching:
        fncPrintMessage(
            f"[{svc.value}] {result.skipped_overarching} overarching assignment(s) left to the Azure AD pass",
            "debug",
        )
    return result
