# ================================================================
# File     : engine/compliance.py
# Purpose  : Evaluate a fixed, ordered rule table against the record
#            set + statistics and emit ComplianceGapFindings
# Notes    : Stateless. Rules are independent; none suppresses another.
#            Templates may use {count}, {affectedPrincipals}, {roleName}
#            and the configured thresholds.
# ================================================================

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from engine.models import (
    AssignmentSource,
    ComplianceGapFinding,
    PrincipalKind,
    RoleAssignmentRecord,
)
from engine.statistics import AggregatedStatistics, fncIsClientSecret, fncRoleRiskLevel

SEVERITY_ORDER = ("Critical", "High", "Medium", "Low")

DEFAULT_SETTINGS: Dict[str, Any] = {
    "global_admin_threshold": 5,
    "role_sprawl_threshold": 5,
    "expiry_window_days": 30,
    "low_pim_adoption_rate": 50.0,
    "service_admin_thresholds": {
        "Exchange Administrator": 3,
        "SharePoint Administrator": 3,
        "Teams Administrator": 3,
        "Intune Administrator": 3,
        "Intune Service Administrator": 3,
        "Power Platform Administrator": 3,
        "Compliance Administrator": 3,
    },
}

_ACTIVE_SOURCES = (AssignmentSource.ACTIVE, AssignmentSource.PIM_ACTIVE)

# (matched, count, affected principal names)
Match = Tuple[bool, int, List[str]]


@dataclass(frozen=True)
class ComplianceRule:
    rule_id: str
    category: str
    issue: str
    severity: str
    details: str
    recommendation: str
    predicate: Callable[["_RuleInput"], List[Match]]
    frameworks: Sequence[str] = field(default_factory=tuple)
    remediation_steps: Sequence[str] = field(default_factory=tuple)


@dataclass
class _RuleInput:
    records: List[RoleAssignmentRecord]
    stats: AggregatedStatistics
    now: datetime
    settings: Mapping[str, Any]
    extra: Dict[str, Any] = field(default_factory=dict)


def _names(records) -> List[str]:
    seen: Dict[str, str] = {}
    for r in records:
        seen.setdefault(r.principal.id, r.principal.display_name)
    return sorted(seen.values(), key=str.lower)


# ---------- predicates ----------

def _excessive_global_admins(ctx: _RuleInput) -> List[Match]:
    count = ctx.stats.global_admin_count
    return [(count > int(ctx.settings["global_admin_threshold"]), count, list(ctx.stats.global_admins))]

def _disabled_users_active(ctx: _RuleInput) -> List[Match]:
    hits = [r for r in ctx.records
            if r.principal.kind == PrincipalKind.USER and r.principal.enabled is False
            and r.assignment_source in _ACTIVE_SOURCES]
    names = _names(hits)
    return [(bool(hits), len(names), names)]

def _no_pim(ctx: _RuleInput) -> List[Match]:
    s = ctx.stats
    return [(s.eligible_count == 0 and s.permanent_count > 0, s.permanent_count, [])]

def _low_pim(ctx: _RuleInput) -> List[Match]:
    s = ctx.stats
    low = s.eligible_count > 0 and s.pim_adoption_rate < float(ctx.settings["low_pim_adoption_rate"])
    return [(low, s.permanent_count, [])]

def _client_secret(ctx: _RuleInput) -> List[Match]:
    count = ctx.stats.client_secret_records
    if not count:
        count = sum(1 for r in ctx.records if fncIsClientSecret(r))
    return [(count > 0, count, [])]

def _role_sprawl(ctx: _RuleInput) -> List[Match]:
    sprawl = ctx.stats.role_sprawl
    return [(bool(sprawl), len(sprawl), [s["principalName"] for s in sprawl])]

def _expiring_pim(ctx: _RuleInput) -> List[Match]:
    horizon = ctx.now + timedelta(days=int(ctx.settings["expiry_window_days"]))
    hits = [r for r in ctx.records
            if r.pim_window and r.pim_window.end and ctx.now <= r.pim_window.end <= horizon]
    names = _names(hits)
    return [(bool(hits), len(hits), names)]

def _excessive_service_admins(ctx: _RuleInput) -> List[Match]:
    out: List[Match] = []
    thresholds = ctx.settings.get("service_admin_thresholds") or {}
    for role_name, limit in thresholds.items():
        holders = [r for r in ctx.records if r.role.display_name.lower() == role_name.lower()]
        names = _names(holders)
        if len(names) > int(limit):
            ctx.extra.setdefault("service_admin_roles", []).append(role_name)
            out.append((True, len(names), names))
    return out

def _orphaned(ctx: _RuleInput) -> List[Match]:
    hits = [r for r in ctx.records if r.principal.kind == PrincipalKind.UNKNOWN]
    return [(bool(hits), len(hits), sorted({r.principal.id for r in hits}))]

def _sp_privileged(ctx: _RuleInput) -> List[Match]:
    hits = [r for r in ctx.records
            if r.principal.kind == PrincipalKind.SERVICE_PRINCIPAL
            and fncRoleRiskLevel(r.role.display_name, 0) in ("Critical", "High")]
    names = _names(hits)
    return [(bool(hits), len(names), names)]


# ---------- rule table ----------

RULES: Sequence[ComplianceRule] = (
    ComplianceRule(
        rule_id="excessive-global-admins",
        category="Privileged Access",
        issue="Excessive Global Administrators",
        severity="Critical",
        details="{count} Global Administrators found (recommended maximum: {globalAdminThreshold}): {affectedPrincipals}",
        recommendation="Reduce Global Administrators to between 2 and 5 and use least-privileged roles for day-to-day work",
        predicate=_excessive_global_admins,
        frameworks=("CIS M365 1.1.3", "NIST 800-53 AC-6", "ISO 27001 A.9.2.3"),
        remediation_steps=(
            "Review every Global Administrator assignment and document a business justification",
            "Replace standing Global Administrator rights with narrower administrative roles",
            "Keep two break-glass accounts excluded from Conditional Access and monitor their sign-ins",
            "Convert the remaining Global Administrators to PIM-eligible assignments",
        ),
    ),
    ComplianceRule(
        rule_id="disabled-users-with-roles",
        category="Identity Lifecycle",
        issue="Disabled Users With Active Roles",
        severity="High",
        details="{count} disabled user account(s) still hold active administrative roles: {affectedPrincipals}",
        recommendation="Remove role assignments from disabled accounts as part of the leaver process",
        predicate=_disabled_users_active,
        frameworks=("NIST 800-53 AC-2(3)", "ISO 27001 A.9.2.6", "SOC 2 CC6.2"),
        remediation_steps=(
            "Confirm each listed account is permanently disabled",
            "Remove all directory and service role assignments from those accounts",
            "Add role removal to the joiner-mover-leaver runbook",
        ),
    ),
    ComplianceRule(
        rule_id="no-pim",
        category="Privileged Identity Management",
        issue="No PIM Eligible Assignments",
        severity="High",
        details="All {count} administrative assignments are permanent; no PIM-eligible assignments exist",
        recommendation="Adopt Privileged Identity Management and make administrative roles eligible rather than permanent",
        predicate=_no_pim,
        frameworks=("CIS M365 5.3.1", "NIST 800-53 AC-2(7)", "Zero Trust: Just-In-Time access"),
        remediation_steps=(
            "Confirm the tenant is licensed for Entra ID P2 or Entra ID Governance",
            "Convert permanent assignments to eligible assignments with approval and MFA on activation",
            "Set maximum activation durations of 8 hours or less",
        ),
    ),
    ComplianceRule(
        rule_id="low-pim-adoption",
        category="Privileged Identity Management",
        issue="Low PIM Adoption",
        severity="Low",
        details="Only a minority of assignments are PIM-eligible; {count} remain permanent",
        recommendation="Continue moving permanent administrative assignments to PIM-eligible",
        predicate=_low_pim,
        frameworks=("NIST 800-53 AC-2(7)",),
        remediation_steps=(
            "List the permanent assignments per role",
            "Migrate them to eligible assignments in priority order of role risk",
        ),
    ),
    ComplianceRule(
        rule_id="client-secret-auth",
        category="Application Security",
        issue="Client Secret Authentication In Use",
        severity="Medium",
        details="The audit connection authenticated with a client secret ({count} record(s) collected this way)",
        recommendation="Use certificate-based authentication for the audit application",
        predicate=_client_secret,
        frameworks=("CIS M365 5.1.2", "NIST 800-53 IA-5"),
        remediation_steps=(
            "Create a certificate for the app registration and upload the public key",
            "Switch the audit configuration to certificate authentication",
            "Delete the client secret from the app registration",
        ),
    ),
    ComplianceRule(
        rule_id="role-sprawl",
        category="Least Privilege",
        issue="Role Sprawl",
        severity="Medium",
        details="{count} principal(s) hold more than {roleSprawlThreshold} distinct roles: {affectedPrincipals}",
        recommendation="Consolidate role assignments so each administrator holds only the roles their job needs",
        predicate=_role_sprawl,
        frameworks=("NIST 800-53 AC-6", "ISO 27001 A.9.2.5"),
        remediation_steps=(
            "Review each listed principal's roles with their manager",
            "Remove overlapping or unused roles",
            "Schedule recurring access reviews for administrative roles",
        ),
    ),
    ComplianceRule(
        rule_id="expiring-pim",
        category="Privileged Identity Management",
        issue="Expiring PIM Assignments",
        severity="Medium",
        details="{count} PIM assignment(s) expire within {expiryWindowDays} days: {affectedPrincipals}",
        recommendation="Review expiring assignments and renew only those still required",
        predicate=_expiring_pim,
        frameworks=("NIST 800-53 AC-2(2)",),
        remediation_steps=(
            "Contact the owners of the expiring assignments",
            "Renew or extend only with a fresh business justification",
            "Let unneeded assignments lapse",
        ),
    ),
    ComplianceRule(
        rule_id="excessive-service-admins",
        category="Service Administration",
        issue="Excessive Service Administrators",
        severity="Medium",
        details="{count} principals hold {roleName}: {affectedPrincipals}",
        recommendation="Limit service administrator roles to a small named group and prefer scoped or read-only roles",
        predicate=_excessive_service_admins,
        frameworks=("NIST 800-53 AC-6(5)", "ISO 27001 A.9.2.3"),
        remediation_steps=(
            "Review who holds the role and why",
            "Move occasional users to PIM-eligible or narrower roles",
        ),
    ),
    ComplianceRule(
        rule_id="orphaned-assignments",
        category="Identity Lifecycle",
        issue="Orphaned Role Assignments",
        severity="Low",
        details="{count} assignment(s) reference principals that could not be resolved: {affectedPrincipals}",
        recommendation="Remove role assignments whose principals no longer exist",
        predicate=_orphaned,
        frameworks=("NIST 800-53 AC-2",),
        remediation_steps=(
            "Confirm the principal ids no longer exist in the directory",
            "Delete the stale role assignments",
        ),
    ),
    ComplianceRule(
        rule_id="service-principal-privileged",
        category="Application Security",
        issue="Privileged Roles Held By Service Principals",
        severity="Medium",
        details="{count} service principal(s) hold administrator roles: {affectedPrincipals}",
        recommendation="Replace directory roles on applications with scoped Graph application permissions where possible",
        predicate=_sp_privileged,
        frameworks=("NIST 800-53 AC-6(9)", "CIS M365 5.1.5"),
        remediation_steps=(
            "Identify the owner of each application",
            "Confirm the role is required for the application to function",
            "Monitor the service principal sign-ins and credential changes",
        ),
    ),
)


def _render(template: str, values: Mapping[str, Any]) -> str:
    return template.format_map(_SafeDict(values))


class _SafeDict(dict):
    def __missing__(self, key):
        return "{" + key + "}"


# ================================================================
# Function: fncAnalyseComplianceGaps
# Purpose : Run every rule in table order and collect findings
# Notes   : now defaults to UTC now; settings overlay DEFAULT_SETTINGS
# ================================================================
def fncAnalyseComplianceGaps(
    records: Sequence[RoleAssignmentRecord],
    stats: AggregatedStatistics,
    now: Optional[datetime] = None,
    settings: Optional[Mapping[str, Any]] = None,
    rules: Sequence[ComplianceRule] = RULES,
) -> List[ComplianceGapFinding]:
    merged = dict(DEFAULT_SETTINGS)
    merged.update({k: v for k, v in (settings or {}).items() if v is not None})
    ctx = _RuleInput(
        records=list(records or []),
        stats=stats,
        now=now or datetime.now(timezone.utc),
        settings=merged,
    )

    findings: List[ComplianceGapFinding] = []
    for rule in rules:
        ctx.extra.clear()
        matches = rule.predicate(ctx)
        role_names = list(ctx.extra.get("service_admin_roles", []))
        for i, (matched, count, affected) in enumerate(matches):
            if not matched:
                continue
            values = {
                "count": count,
                "affectedPrincipals": ", ".join(affected) if affected else "n/a",
                "roleName": role_names[i] if i < len(role_names) else "",
                "globalAdminThreshold": merged["global_admin_threshold"],
                "roleSprawlThreshold": merged["role_sprawl_threshold"],
                "expiryWindowDays": merged["expiry_window_days"],
            }
            findings.append(ComplianceGapFinding(
                category=rule.category,
                issue=_render(rule.issue, values),
                details=_render(rule.details, values),
                severity=rule.severity,
                recommendation=_render(rule.recommendation, values),
                affected_principals=list(affected),
                frameworks=list(rule.frameworks),
                remediation_steps=[_render(s, values) for s in rule.remediation_steps],
            ))
    return findings


def fncSeverityCounts(findings: Sequence[ComplianceGapFinding]) -> Dict[str, int]:
    counts = {s: 0 for s in SEVERITY_ORDER}
    for f in findings:
        counts[f.severity] = counts.get(f.severity, 0) + 1
    return counts
