# ================================================================
# File     : engine/role_scope.py
# Purpose  : Classify role definitions as Overarching (tenant-wide)
#            or ServiceSpecific, and hold the per-service catalogues
# Notes    : A name on ANY service's overarching list is Overarching
#            everywhere, so one role never counts twice across passes.
# ================================================================

from typing import Dict, FrozenSet, Iterable, Mapping, Optional, Set

from engine.models import RoleDefinition, RoleScope, Service

# Tenant-wide roles; identical whichever service surfaces them.
BASE_OVERARCHING_ROLES = (
    "Global Administrator",
    "Privileged Role Administrator",
    "Privileged Authentication Administrator",
    "Security Administrator",
    "Application Administrator",
    "Cloud Application Administrator",
    "Global Reader",
)

OVERARCHING_ROLES: Dict[Service, tuple] = {
    Service.AZURE_AD: BASE_OVERARCHING_ROLES + ("Conditional Access Administrator",),
    Service.EXCHANGE: BASE_OVERARCHING_ROLES,
    Service.SHAREPOINT: BASE_OVERARCHING_ROLES,
    Service.TEAMS: BASE_OVERARCHING_ROLES,
    Service.DEFENDER: BASE_OVERARCHING_ROLES + ("Security Operator", "Security Reader"),
    Service.INTUNE: BASE_OVERARCHING_ROLES + ("Conditional Access Administrator",),
    Service.PURVIEW: BASE_OVERARCHING_ROLES + ("Security Reader",),
    Service.POWER_PLATFORM: BASE_OVERARCHING_ROLES,
}

# Directory roles each service pass is responsible for.
SERVICE_ROLE_CATALOG: Dict[Service, tuple] = {
    Service.EXCHANGE: (
        "Exchange Administrator",
        "Exchange Recipient Administrator",
    ),
    Service.SHAREPOINT: (
        "SharePoint Administrator",
        "SharePoint Embedded Administrator",
    ),
    Service.TEAMS: (
        "Teams Administrator",
        "Teams Communications Administrator",
        "Teams Communications Support Engineer",
        "Teams Communications Support Specialist",
        "Teams Devices Administrator",
        "Teams Telephony Administrator",
    ),
    Service.DEFENDER: (
        "Cloud App Security Administrator",
        "Security Operator",
        "Security Reader",
    ),
    Service.INTUNE: (
        "Intune Administrator",
        "Cloud Device Administrator",
    ),
    Service.PURVIEW: (
        "Compliance Administrator",
        "Compliance Data Administrator",
        "Azure Information Protection Administrator",
    ),
    Service.POWER_PLATFORM: (
        "Power Platform Administrator",
        "Dynamics 365 Administrator",
        "Fabric Administrator",
    ),
}


def _norm(name: str) -> str:
    return " ".join(str(name or "").split()).lower()


class RoleScopeClassifier:
    """Allowlist-backed classifier; extra names may come from config."""

    def __init__(self, extra_overarching: Optional[Mapping[str, Iterable[str]]] = None):
        by_service: Dict[Service, Set[str]] = {svc: set(names) for svc, names in OVERARCHING_ROLES.items()}
        for svc_name, names in (extra_overarching or {}).items():
            svc = Service.parse(svc_name)
            by_service.setdefault(svc, set()).update(n for n in names if n)

        self._by_service: Dict[Service, FrozenSet[str]] = {k: frozenset(v) for k, v in by_service.items()}
        self._all_norm: FrozenSet[str] = frozenset(_norm(n) for names in self._by_service.values() for n in names)

    def classify(self, role_display_name: str, service=None) -> RoleScope:
        # service is accepted for the per-pass call shape; the decision is global.
        if _norm(role_display_name) in self._all_norm:
            return RoleScope.OVERARCHING
        return RoleScope.SERVICE_SPECIFIC

    def is_overarching(self, role_display_name: str) -> bool:
        return self.classify(role_display_name) is RoleScope.OVERARCHING

    def overarching_for(self, service) -> FrozenSet[str]:
        return self._by_service.get(Service.parse(service), frozenset())


# ================================================================
# Function: fncFilterRoleDefinitions
# Purpose : Apply the fetch-side overarching exclusion for one pass
# Notes   : include_overarching=False drops every Overarching role
# ================================================================
def fncFilterRoleDefinitions(role_defs: Mapping[str, RoleDefinition],
                             include_overarching: bool) -> Dict[str, RoleDefinition]:
    if include_overarching:
        return dict(role_defs)
    return {rid: rd for rid, rd in role_defs.items() if not rd.is_overarching}


# ================================================================
# Function: fncServiceRoleNames
# Purpose : Directory role names a service pass should audit
# Notes   : Adds the service's overarching list when requested
# ================================================================
def fncServiceRoleNames(service, classifier: RoleScopeClassifier,
                        include_overarching: bool = False) -> FrozenSet[str]:
    svc = Service.parse(service)
    names = set(SERVICE_ROLE_CATALOG.get(svc, ()))
    if include_overarching:
        names.update(classifier.overarching_for(svc))
    else:
        names = {n for n in names if not classifier.is_overarching(n)}
    return frozenset(_norm(n) for n in names)


def fncClaimedRoleNames(services: Iterable, classifier: RoleScopeClassifier) -> FrozenSet[str]:
    """Service-specific directory roles claimed by the given (non-Azure AD) passes."""
    claimed: Set[str] = set()
    for svc in services:
        svc = Service.parse(svc)
        if svc is Service.AZURE_AD:
            continue
        claimed.update(n for n in fncServiceRoleNames(svc, classifier, include_overarching=False))
    return frozenset(claimed)


def fncRoleNameMatches(display_name: str, names: FrozenSet[str]) -> bool:
    return _norm(display_name) in names
