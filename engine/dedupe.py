# ================================================================
# File     : engine/dedupe.py
# Purpose  : Optional cross-service deduplication of canonical records
# Notes    : Only runs when the caller opts in; default mode is "None".
#            Survivors keep the position of their class's first record,
#            which makes every mode idempotent.
# ================================================================

from enum import Enum
from typing import Callable, Dict, Hashable, List, Optional, Sequence

from core.utils import fncPrintMessage
from engine.models import (
    ConfigurationError,
    DedupeResult,
    RoleAssignmentRecord,
    RoleScope,
    Service,
)


class DedupeMode(str, Enum):
    NONE = "None"
    STRICT = "Strict"
    LOOSE = "Loose"
    SERVICE_PREFERENCE = "ServicePreference"
    ROLE_SCOPED = "RoleScoped"

    @classmethod
    def parse(cls, value) -> "DedupeMode":
        if isinstance(value, DedupeMode):
            return value
        if value is None:
            return cls.NONE
        key = str(value).replace("_", "").replace("-", "").replace(" ", "").lower()
        for mode in cls:
            if mode.value.lower() == key:
                return mode
        raise ConfigurationError(
            f"Unknown deduplication mode: {value!r} (expected one of {', '.join(m.value for m in cls)})"
        )


# Default priority: Azure AD first, then services in declaration order
DEFAULT_SERVICE_PRIORITY: Sequence[Service] = tuple(Service)


def _name(rec: RoleAssignmentRecord) -> str:
    return " ".join(rec.role.display_name.split()).lower()

def _key_strict(rec: RoleAssignmentRecord) -> Hashable:
    return (rec.principal.id, rec.role.id, rec.scope_descriptor)

def _key_loose(rec: RoleAssignmentRecord) -> Hashable:
    return (rec.principal.id, _name(rec))

def _key_role_scoped(rec: RoleAssignmentRecord) -> Hashable:
    if rec.role.scope is RoleScope.OVERARCHING:
        return (rec.principal.id, _name(rec), RoleScope.OVERARCHING.value)
    # service-specific assignments only collapse with exact copies of themselves
    return (rec.principal.id, _name(rec), RoleScope.SERVICE_SPECIFIC.value,
            rec.service.value, rec.source_assignment_id)

_KEYS: Dict[DedupeMode, Callable[[RoleAssignmentRecord], Hashable]] = {
    DedupeMode.STRICT: _key_strict,
    DedupeMode.LOOSE: _key_loose,
    DedupeMode.SERVICE_PREFERENCE: _key_loose,
    DedupeMode.ROLE_SCOPED: _key_role_scoped,
}


def _priority_map(prefer_specific_service: bool,
                  service_priority: Optional[Sequence] = None) -> Dict[Service, int]:
    order = [Service.parse(s) for s in (service_priority or DEFAULT_SERVICE_PRIORITY)]
    order += [s for s in Service if s not in order]
    if prefer_specific_service:
        # service-specific sources first, Azure AD last
        order = [s for s in order if s is not Service.AZURE_AD] + [Service.AZURE_AD]
    return {svc: i for i, svc in enumerate(order)}


# ================================================================
# Function: fncDeduplicateRecords
# Purpose : Collapse equivalent records according to the chosen mode
# Notes   : Returns DedupeResult(records, removed, mode). An unknown
#           mode raises ConfigurationError.
# ================================================================
def fncDeduplicateRecords(
    records: Sequence[RoleAssignmentRecord],
    mode="None",
    prefer_specific_service: bool = False,
    service_priority: Optional[Sequence] = None,
) -> DedupeResult:
    mode = DedupeMode.parse(mode)
    records = list(records or [])
    if mode is DedupeMode.NONE:
        return DedupeResult(records=records, removed=0, mode=mode.value)

    key_fn = _KEYS[mode]
    priority = _priority_map(prefer_specific_service, service_priority) \
        if mode is DedupeMode.SERVICE_PREFERENCE else None

    survivors: Dict[Hashable, RoleAssignmentRecord] = {}
    for rec in records:
        key = key_fn(rec)
        current = survivors.get(key)
        if current is None:
            survivors[key] = rec
        elif priority is not None and priority[rec.service] < priority[current.service]:
            survivors[key] = rec

    kept: List[RoleAssignmentRecord] = list(survivors.values())
    removed = len(records) - len(kept)
    if removed:
        fncPrintMessage(f"Deduplication ({mode.value}) removed {removed} duplicate record(s)", "info")
    return DedupeResult(records=kept, removed=removed, mode=mode.value)
