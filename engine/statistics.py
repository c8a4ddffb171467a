# ================================================================
# File     : engine/statistics.py
# Purpose  : Summary statistics and risk flags over canonical records
# Notes    : Pure; percentages and rates are rounded to one decimal.
#            Rankings tie-break alphabetically so output is stable.
# ================================================================

from collections import Counter, defaultdict
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Sequence

from core.utils import fncPercent
from engine.models import AssignmentSource, PrincipalKind, RoleAssignmentRecord

GLOBAL_ADMIN_ROLE = "Global Administrator"
CLIENT_SECRET_AUTH = "clientsecret"

# (substring, level) checked in order; first hit wins
ROLE_RISK_PATTERNS = (
    ("global administrator", "Critical"),
    ("privileged role administrator", "Critical"),
    ("administrator", "High"),
)
MEDIUM_RISK_MIN_COUNT = 5


def fncRoleRiskLevel(role_name: str, assignment_count: int) -> str:
    name = (role_name or "").lower()
    for needle, level in ROLE_RISK_PATTERNS:
        if needle in name:
            return level
    return "Medium" if assignment_count >= MEDIUM_RISK_MIN_COUNT else "Low"


def fncIsGlobalAdmin(rec: RoleAssignmentRecord) -> bool:
    return GLOBAL_ADMIN_ROLE.lower() in rec.role.display_name.lower()


def fncIsClientSecret(rec: RoleAssignmentRecord) -> bool:
    return (rec.auth_type or "").replace("_", "").replace(" ", "").replace("-", "").lower() == CLIENT_SECRET_AUTH


@dataclass
class AggregatedStatistics:
    total_assignments: int = 0
    unique_principals: int = 0
    by_service: List[Dict[str, Any]] = field(default_factory=list)
    by_principal_type: List[Dict[str, Any]] = field(default_factory=list)
    by_assignment_type: List[Dict[str, Any]] = field(default_factory=list)
    top_roles: List[Dict[str, Any]] = field(default_factory=list)
    top_users: List[Dict[str, Any]] = field(default_factory=list)
    eligible_count: int = 0
    pim_active_count: int = 0
    permanent_count: int = 0
    pim_adoption_rate: float = 0.0
    global_admins: List[str] = field(default_factory=list)
    disabled_users_with_roles: List[str] = field(default_factory=list)
    client_secret_records: int = 0
    role_sprawl: List[Dict[str, Any]] = field(default_factory=list)
    security_flags: Dict[str, bool] = field(default_factory=dict)

    @property
    def global_admin_count(self) -> int:
        return len(self.global_admins)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "totalAssignments": self.total_assignments,
            "uniquePrincipals": self.unique_principals,
            "byService": self.by_service,
            "byPrincipalType": self.by_principal_type,
            "byAssignmentType": self.by_assignment_type,
            "topRoles": self.top_roles,
            "topUsers": self.top_users,
            "pim": {
                "eligible": self.eligible_count,
                "activePim": self.pim_active_count,
                "permanent": self.permanent_count,
                "adoptionRate": self.pim_adoption_rate,
            },
            "globalAdminCount": self.global_admin_count,
            "globalAdmins": self.global_admins,
            "disabledUsersWithRoles": self.disabled_users_with_roles,
            "clientSecretRecords": self.client_secret_records,
            "roleSprawl": self.role_sprawl,
            "securityFlags": self.security_flags,
        }


def _distribution(counter: Counter, total: int) -> List[Dict[str, Any]]:
    rows = [{"name": k, "count": v, "percentage": fncPercent(v, total)} for k, v in counter.items()]
    rows.sort(key=lambda r: (-r["count"], r["name"]))
    return rows


def fncPimAdoptionRate(eligible: int, permanent: int) -> float:
    return fncPercent(eligible, eligible + permanent)


def _distinct_names(records: Iterable[RoleAssignmentRecord]) -> List[str]:
    seen: Dict[str, str] = {}
    for r in records:
        seen.setdefault(r.principal.id, r.principal.display_name)
    return sorted(seen.values(), key=str.lower)


# ================================================================
# Function: fncBuildStatistics
# Purpose : Aggregate the canonical record set for reporting
# Notes   : top_n limits both role and user rankings
# ================================================================
def fncBuildStatistics(
    records: Sequence[RoleAssignmentRecord],
    top_n: int = 10,
    global_admin_threshold: int = 5,
    role_sprawl_threshold: int = 5,
) -> AggregatedStatistics:
    records = list(records or [])
    total = len(records)
    stats = AggregatedStatistics(total_assignments=total)
    stats.unique_principals = len({r.principal.id for r in records})

    stats.by_service = _distribution(Counter(r.service.value for r in records), total)
    stats.by_principal_type = _distribution(Counter(r.principal.kind.value for r in records), total)
    stats.by_assignment_type = _distribution(Counter(r.assignment_label for r in records), total)

    # Top roles
    role_counts: Counter = Counter(r.role.display_name for r in records)
    role_services: Dict[str, set] = defaultdict(set)
    for r in records:
        role_services[r.role.display_name].add(r.service.value)
    ranked_roles = sorted(role_counts.items(), key=lambda kv: (-kv[1], kv[0]))
    stats.top_roles = [
        {
            "roleName": name,
            "count": count,
            "riskLevel": fncRoleRiskLevel(name, count),
            "services": sorted(role_services[name]),
        }
        for name, count in ranked_roles[:top_n]
    ]

    # Top users and role sprawl
    by_principal: Dict[str, List[RoleAssignmentRecord]] = defaultdict(list)
    for r in records:
        by_principal[r.principal.id].append(r)

    users = []
    sprawl = []
    for pid, recs in by_principal.items():
        p = recs[0].principal
        roles = sorted({x.role.display_name for x in recs})
        if p.kind == PrincipalKind.USER:
            users.append({
                "principalName": p.display_name,
                "userPrincipalName": p.user_principal_name or "",
                "principalId": pid,
                "assignmentCount": len(recs),
                "roles": roles,
            })
        if len(roles) > role_sprawl_threshold:
            sprawl.append({
                "principalName": p.display_name,
                "principalType": p.kind.value,
                "principalId": pid,
                "roleCount": len(roles),
                "roles": roles,
            })
    users.sort(key=lambda u: (-u["assignmentCount"], u["principalName"]))
    stats.top_users = users[:top_n]
    sprawl.sort(key=lambda s: (-s["roleCount"], s["principalName"]))
    stats.role_sprawl = sprawl

    # PIM
    stats.eligible_count = sum(1 for r in records if r.assignment_source is AssignmentSource.PIM_ELIGIBLE)
    stats.pim_active_count = sum(1 for r in records if r.assignment_source is AssignmentSource.PIM_ACTIVE)
    stats.permanent_count = sum(1 for r in records if r.assignment_source is AssignmentSource.ACTIVE)
    stats.pim_adoption_rate = fncPimAdoptionRate(stats.eligible_count, stats.permanent_count)

    # Risk signals
    stats.global_admins = _distinct_names(r for r in records if fncIsGlobalAdmin(r))
    stats.disabled_users_with_roles = _distinct_names(
        r for r in records if r.principal.kind == PrincipalKind.USER and r.principal.enabled is False
    )
    stats.client_secret_records = sum(1 for r in records if fncIsClientSecret(r))

    stats.security_flags = {
        "excessiveGlobalAdmins": stats.global_admin_count > global_admin_threshold,
        "disabledUsersWithRoles": len(stats.disabled_users_with_roles) > 0,
        "clientSecretAuth": stats.client_secret_records > 0,
        "roleSprawl": len(stats.role_sprawl) > 0,
    }
    return stats
