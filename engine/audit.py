# ================================================================
# File     : engine/audit.py
# Purpose  : Per-run audit context and the pure report builder that
#            chains dedupe -> statistics -> compliance findings
# Notes    : The context owns the run's PrincipalResolver; parallel
#            service passes get a fork with a fresh resolver.
# ================================================================

import threading
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Callable, Dict, FrozenSet, List, Mapping, Optional, Sequence

from engine.compliance import fncAnalyseComplianceGaps, fncSeverityCounts
from engine.dedupe import DedupeMode, fncDeduplicateRecords
from engine.models import (
    ComplianceGapFinding,
    ConfigurationError,
    RoleAssignmentRecord,
    Service,
)
from engine.principals import PrincipalResolver
from engine.role_scope import RoleScopeClassifier, fncClaimedRoleNames
from engine.statistics import AggregatedStatistics, fncBuildStatistics

DEFAULT_AUDIT_SETTINGS: Dict[str, Any] = {
    "include_overarching_roles": False,
    "dedupe_mode": "None",
    "prefer_specific_service": False,
    "top_n": 10,
    "expiry_window_days": 30,
    "global_admin_threshold": 5,
    "role_sprawl_threshold": 5,
    "low_pim_adoption_rate": 50.0,
    "service_admin_thresholds": None,
    "extra_overarching_roles": {},
}


def fncMergeAuditSettings(settings: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    merged = dict(DEFAULT_AUDIT_SETTINGS)
    merged.update({k: v for k, v in (settings or {}).items() if v is not None})
    # fail fast on a bad selector rather than halfway through a run
    merged["dedupe_mode"] = DedupeMode.parse(merged["dedupe_mode"]).value
    try:
        merged["top_n"] = int(merged["top_n"])
    except (TypeError, ValueError):
        raise ConfigurationError(f"top_n must be an integer, got {merged['top_n']!r}") from None
    return merged


@dataclass
class AuditContext:
    """Everything a service pass needs besides the API client."""
    settings: Dict[str, Any]
    classifier: RoleScopeClassifier
    resolver: PrincipalResolver
    services: List[Service] = field(default_factory=list)
    auth_type: Optional[str] = None
    run_id: str = ""
    resolver_factory: Optional[Callable[[], PrincipalResolver]] = None
    # raw API payloads shared by passes in one run (directory roles etc.)
    fetch_cache: Dict[str, Any] = field(default_factory=dict)
    # guards fetch_cache fills; forks share it along with the cache
    fetch_lock: Any = field(default_factory=threading.Lock, repr=False, compare=False)

    @classmethod
    def create(cls, settings: Optional[Mapping[str, Any]] = None, services: Sequence = (),
               auth_type: Optional[str] = None, run_id: str = "",
               resolver_factory: Optional[Callable[[], PrincipalResolver]] = None) -> "AuditContext":
        merged = fncMergeAuditSettings(settings)
        factory = resolver_factory or PrincipalResolver
        return cls(
            settings=merged,
            classifier=RoleScopeClassifier(merged.get("extra_overarching_roles")),
            resolver=factory(),
            services=[Service.parse(s) for s in services],
            auth_type=auth_type,
            run_id=run_id,
            resolver_factory=factory,
        )

    def fork(self) -> "AuditContext":
        """Copy for a concurrently running pass; never shares the resolver cache."""
        factory = self.resolver_factory or PrincipalResolver
        return replace(self, resolver=factory())

    def include_overarching_for(self, service) -> bool:
        if Service.parse(service) is Service.AZURE_AD:
            return True
        return bool(self.settings.get("include_overarching_roles"))

    @property
    def claimed_role_names(self) -> FrozenSet[str]:
        return fncClaimedRoleNames(self.services, self.classifier)


_SERVICE_ORDER = {svc: i for i, svc in enumerate(Service)}


def fncDisplayOrder(records: Sequence[RoleAssignmentRecord]) -> List[RoleAssignmentRecord]:
    """Table order: service, role, standing risk (Active first), principal."""
    return sorted(records, key=lambda r: (
        _SERVICE_ORDER[r.service],
        r.role.display_name.lower(),
        r.assignment_source.standing_rank,
        r.principal.display_name.lower(),
    ))


@dataclass
class AuditReport:
    records: List[RoleAssignmentRecord]
    statistics: AggregatedStatistics
    findings: List[ComplianceGapFinding]
    dedupe_mode: str = "None"
    duplicates_removed: int = 0
    skipped: Dict[str, Dict[str, int]] = field(default_factory=dict)
    errors: Dict[str, str] = field(default_factory=dict)
    run_id: str = ""
    generated_at: Optional[datetime] = None

    def summary(self) -> Dict[str, Any]:
        sev = fncSeverityCounts(self.findings)
        return {
            "Total Assignments": self.statistics.total_assignments,
            "Unique Principals": self.statistics.unique_principals,
            "Global Administrators": self.statistics.global_admin_count,
            "PIM Adoption Rate (%)": self.statistics.pim_adoption_rate,
            "Permanent Assignments": self.statistics.permanent_count,
            "Eligible (PIM)": self.statistics.eligible_count,
            "Active (PIM)": self.statistics.pim_active_count,
            "Duplicates Removed": self.duplicates_removed,
            "Skipped Assignments": sum(
                v.get("roleDefinitionNotFound", 0) + v.get("malformedAssignment", 0)
                for v in self.skipped.values()
            ),
            "Critical Findings": sev["Critical"],
            "High Findings": sev["High"],
            "Medium Findings": sev["Medium"],
            "Low Findings": sev["Low"],
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "provider": "m365",
            "run_id": self.run_id,
            "timestamp": (self.generated_at or datetime.now(timezone.utc)).isoformat(),
            "summary": self.summary(),
            "statistics": self.statistics.to_dict(),
            "compliance_findings": [f.to_dict() for f in self.findings],
            "role_assignments": [r.to_row() for r in fncDisplayOrder(self.records)],
            "deduplication": {"mode": self.dedupe_mode, "removed": self.duplicates_removed},
            "skipped": self.skipped,
            "errors": self.errors,
        }


# ================================================================
# Function: fncBuildAuditReport
# Purpose : Turn the union of all service-pass records into the
#           final report (dedupe, statistics, compliance gaps)
# Notes   : Pure; exporters render AuditReport.to_dict() as-is
# ================================================================
def fncBuildAuditReport(
    records: Sequence[RoleAssignmentRecord],
    settings: Optional[Mapping[str, Any]] = None,
    skipped: Optional[Dict[str, Dict[str, int]]] = None,
    errors: Optional[Dict[str, str]] = None,
    now: Optional[datetime] = None,
    run_id: str = "",
) -> AuditReport:
    cfg = fncMergeAuditSettings(settings)
    now = now or datetime.now(timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)

    deduped = fncDeduplicateRecords(records, cfg["dedupe_mode"],
                                    prefer_specific_service=bool(cfg["prefer_specific_service"]))
    stats = fncBuildStatistics(
        deduped.records,
        top_n=cfg["top_n"],
        global_admin_threshold=int(cfg["global_admin_threshold"]),
        role_sprawl_threshold=int(cfg["role_sprawl_threshold"]),
    )
    findings = fncAnalyseComplianceGaps(deduped.records, stats, now=now, settings=cfg)

    return AuditReport(
        records=deduped.records,
        statistics=stats,
        findings=findings,
        dedupe_mode=deduped.mode,
        duplicates_removed=deduped.removed,
        skipped=dict(skipped or {}),
        errors=dict(errors or {}),
        run_id=run_id,
        generated_at=now,
    )
