# ================================================================
# File     : engine/models.py
# Purpose  : Canonical data model for the role-assignment engine
# Notes    : Records are frozen and self-contained so they can be
#            handed to any exporter without a live object graph.
# ================================================================

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


class ConfigurationError(ValueError):
    """Raised for caller mistakes (bad mode selector, unknown service, missing argument)."""


class Service(str, Enum):
    AZURE_AD = "AzureAD"
    EXCHANGE = "Exchange"
    SHAREPOINT = "SharePoint"
    TEAMS = "Teams"
    DEFENDER = "Defender"
    INTUNE = "Intune"
    PURVIEW = "Purview"
    POWER_PLATFORM = "PowerPlatform"

    @classmethod
    def parse(cls, value: Any) -> "Service":
        if isinstance(value, Service):
            return value
        key = str(value or "").replace("_", "").replace(" ", "").lower()
        for svc in cls:
            if svc.value.lower() == key or svc.name.replace("_", "").lower() == key:
                return svc
        if key in ("entra", "entraid", "azuread", "aad"):
            return cls.AZURE_AD
        raise ConfigurationError(f"Unknown service: {value!r}")


class PrincipalKind(str, Enum):
    USER = "User"
    GROUP = "Group"
    SERVICE_PRINCIPAL = "ServicePrincipal"
    UNKNOWN = "Unknown"


class RoleScope(str, Enum):
    OVERARCHING = "Overarching"
    SERVICE_SPECIFIC = "ServiceSpecific"


class AssignmentSource(str, Enum):
    ACTIVE = "Active"
    PIM_ELIGIBLE = "PIMEligible"
    PIM_ACTIVE = "PIMActive"

    @property
    def label(self) -> str:
        return ASSIGNMENT_LABELS[self]

    @property
    def standing_rank(self) -> int:
        # lower = higher standing risk
        return {"Active": 0, "PIMActive": 1, "PIMEligible": 2}[self.value]


ASSIGNMENT_LABELS = {
    AssignmentSource.ACTIVE: "Active",
    AssignmentSource.PIM_ELIGIBLE: "Eligible (PIM)",
    AssignmentSource.PIM_ACTIVE: "Active (PIM)",
}

UNKNOWN_PRINCIPAL_NAME = "Unknown Principal"


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if isinstance(value, datetime) else None


def _aware(obj, *names: str) -> None:
    # naive datetimes are taken as UTC
    for name in names:
        value = getattr(obj, name)
        if isinstance(value, datetime) and value.tzinfo is None:
            object.__setattr__(obj, name, value.replace(tzinfo=timezone.utc))


@dataclass(frozen=True)
class Principal:
    id: str
    kind: PrincipalKind
    display_name: str
    user_principal_name: Optional[str] = None
    enabled: Optional[bool] = None
    on_premises_synced: Optional[bool] = None

    @classmethod
    def unknown(cls, principal_id: str) -> "Principal":
        return cls(id=principal_id, kind=PrincipalKind.UNKNOWN, display_name=UNKNOWN_PRINCIPAL_NAME)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "kind": self.kind.value,
            "displayName": self.display_name,
            "userPrincipalName": self.user_principal_name,
            "enabled": self.enabled,
            "onPremisesSynced": self.on_premises_synced,
        }


@dataclass(frozen=True)
class RoleDefinition:
    id: str
    display_name: str
    service: Service
    scope: RoleScope
    built_in: bool = True

    @property
    def is_overarching(self) -> bool:
        return self.scope is RoleScope.OVERARCHING

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "displayName": self.display_name,
            "service": self.service.value,
            "scope": self.scope.value,
            "builtIn": self.built_in,
        }


@dataclass(frozen=True)
class PimWindow:
    start: Optional[datetime] = None
    end: Optional[datetime] = None

    def __post_init__(self):
        _aware(self, "start", "end")

    def to_dict(self) -> Dict[str, Any]:
        return {"start": _iso(self.start), "end": _iso(self.end)}


@dataclass(frozen=True)
class Assignment:
    """Intermediate, service-neutral assignment produced by an adapter."""
    principal_id: str
    role_definition_id: str
    source_kind: AssignmentSource
    source_assignment_id: str
    assigned_at: Optional[datetime] = None
    scope_descriptor: str = ""
    pim_window: Optional[PimWindow] = None

    def __post_init__(self):
        _aware(self, "assigned_at")


@dataclass(frozen=True)
class RoleAssignmentRecord:
    service: Service
    principal: Principal
    role: RoleDefinition
    assignment_source: AssignmentSource
    source_assignment_id: str
    assigned_at: Optional[datetime] = None
    scope_descriptor: str = ""
    pim_window: Optional[PimWindow] = None
    auth_type: Optional[str] = None

    def __post_init__(self):
        _aware(self, "assigned_at")

    @property
    def assignment_label(self) -> str:
        return self.assignment_source.label

    def to_dict(self) -> Dict[str, Any]:
        return {
            "service": self.service.value,
            "principal": self.principal.to_dict(),
            "role": self.role.to_dict(),
            "assignmentSource": self.assignment_source.value,
            "assignmentType": self.assignment_label,
            "assignedAt": _iso(self.assigned_at),
            "scopeDescriptor": self.scope_descriptor,
            "pimWindow": self.pim_window.to_dict() if self.pim_window else None,
            "sourceAssignmentId": self.source_assignment_id,
            "authType": self.auth_type,
        }

    def to_row(self) -> Dict[str, Any]:
        """Flat row for CSV / Excel / HTML tables."""
        window = self.pim_window or PimWindow()
        return {
            "service": self.service.value,
            "principalName": self.principal.display_name,
            "principalType": self.principal.kind.value,
            "userPrincipalName": self.principal.user_principal_name or "",
            "enabled": "" if self.principal.enabled is None else self.principal.enabled,
            "onPremisesSynced": "" if self.principal.on_premises_synced is None else self.principal.on_premises_synced,
            "roleName": self.role.display_name,
            "roleScope": self.role.scope.value,
            "builtIn": self.role.built_in,
            "assignmentType": self.assignment_label,
            "assignedAt": _iso(self.assigned_at) or "",
            "scope": self.scope_descriptor,
            "pimStart": _iso(window.start) or "",
            "pimEnd": _iso(window.end) or "",
            "authType": self.auth_type or "",
            "principalId": self.principal.id,
            "roleId": self.role.id,
            "sourceAssignmentId": self.source_assignment_id,
        }


@dataclass(frozen=True)
class ComplianceGapFinding:
    category: str
    issue: str
    details: str
    severity: str
    recommendation: str
    affected_principals: List[str] = field(default_factory=list)
    frameworks: List[str] = field(default_factory=list)
    remediation_steps: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "category": self.category,
            "issue": self.issue,
            "details": self.details,
            "severity": self.severity,
            "recommendation": self.recommendation,
            "affectedPrincipals": list(self.affected_principals),
            "frameworks": list(self.frameworks),
            "remediationSteps": list(self.remediation_steps),
        }


@dataclass
class NormalisationResult:
    records: List[RoleAssignmentRecord] = field(default_factory=list)
    skipped_missing_role: int = 0
    skipped_overarching: int = 0
    skipped_malformed: int = 0

    @property
    def skipped_total(self) -> int:
        return self.skipped_missing_role + self.skipped_malformed

    def skipped_dict(self) -> Dict[str, int]:
        return {
            "roleDefinitionNotFound": self.skipped_missing_role,
            "overarchingExcluded": self.skipped_overarching,
            "malformedAssignment": self.skipped_malformed,
        }


@dataclass
class DedupeResult:
    records: List[RoleAssignmentRecord]
    removed: int = 0
    mode: str = "None"
