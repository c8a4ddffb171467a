# ================================================================
# File     : engine/principals.py
# Purpose  : Resolve principal ids into typed Principal records
# Notes    : Lookup callables are injected by the caller; any of them
#            may raise or return None. One resolver per audit run.
# ================================================================

from typing import Any, Callable, Dict, Mapping, Optional

from core.utils import fncPrintMessage
from engine.models import Principal, PrincipalKind, UNKNOWN_PRINCIPAL_NAME

Lookup = Callable[[str], Optional[Dict[str, Any]]]

_ODATA_KINDS = {
    "#microsoft.graph.user": PrincipalKind.USER,
    "#microsoft.graph.group": PrincipalKind.GROUP,
    "#microsoft.graph.serviceprincipal": PrincipalKind.SERVICE_PRINCIPAL,
}


# ================================================================
# Function: fncPrincipalFromGraph
# Purpose : Build a Principal from a Graph-shaped directory object
# Notes   : displayName falls back to UPN/appId, then the raw id
# ================================================================
def fncPrincipalFromGraph(obj: Dict[str, Any], kind: PrincipalKind) -> Principal:
    pid = str(obj.get("id") or "")
    if kind == PrincipalKind.USER:
        upn = obj.get("userPrincipalName") or obj.get("mail")
    elif kind == PrincipalKind.SERVICE_PRINCIPAL:
        upn = obj.get("appId")
    else:
        upn = obj.get("mail")

    enabled = obj.get("accountEnabled")
    if kind == PrincipalKind.GROUP:
        enabled = None

    synced = obj.get("onPremisesSyncEnabled")
    return Principal(
        id=pid,
        kind=kind,
        display_name=obj.get("displayName") or upn or pid or UNKNOWN_PRINCIPAL_NAME,
        user_principal_name=upn,
        enabled=enabled if isinstance(enabled, bool) else None,
        on_premises_synced=synced if isinstance(synced, bool) else None,
    )


def _kind_from_odata(obj: Dict[str, Any]) -> Optional[PrincipalKind]:
    return _ODATA_KINDS.get(str(obj.get("@odata.type") or "").lower())


class PrincipalResolver:
    """
    Memoising resolver. Strategy order is fixed: user, service principal,
    group, then the generic directory-object lookup (typed by @odata.type).
    Never raises; total failure yields an Unknown principal.
    """

    def __init__(
        self,
        lookup_user: Optional[Lookup] = None,
        lookup_group: Optional[Lookup] = None,
        lookup_service_principal: Optional[Lookup] = None,
        lookup_directory_object: Optional[Lookup] = None,
    ):
        self._strategies = [
            (PrincipalKind.USER, lookup_user),
            (PrincipalKind.SERVICE_PRINCIPAL, lookup_service_principal),
            (PrincipalKind.GROUP, lookup_group),
        ]
        self._lookup_directory_object = lookup_directory_object
        self._cache: Dict[str, Principal] = {}
        self.unresolved = 0

    def __contains__(self, principal_id: str) -> bool:
        return principal_id in self._cache

    @property
    def cache_size(self) -> int:
        return len(self._cache)

    def remember(self, principal: Principal) -> None:
        """Seed the cache (e.g. from a batch hydration call)."""
        if principal.id and principal.id not in self._cache:
            self._cache[principal.id] = principal

    def resolve(self, principal_id: str) -> Principal:
        pid = str(principal_id or "")
        if pid in self._cache:
            return self._cache[pid]

        principal = self._lookup(pid)
        if principal is None:
            self.unresolved += 1
            fncPrintMessage(f"Could not resolve principal {pid or '(empty id)'}", "debug")
            principal = Principal.unknown(pid)

        self._cache[pid] = principal
        return principal

    def _lookup(self, pid: str) -> Optional[Principal]:
        if not pid:
            return None

        for kind, fn in self._strategies:
            obj = self._try(fn, pid, kind.value)
            if obj:
                return fncPrincipalFromGraph({"id": pid, **obj}, kind)

        obj = self._try(self._lookup_directory_object, pid, "directoryObject")
        if obj:
            kind = _kind_from_odata(obj)
            if kind:
                return fncPrincipalFromGraph({"id": pid, **obj}, kind)
            fncPrintMessage(f"Directory object {pid} has unsupported type {obj.get('@odata.type')}", "debug")
        return None

    @staticmethod
    def _try(fn: Optional[Lookup], pid: str, label: str) -> Optional[Dict[str, Any]]:
        if fn is None:
            return None
        try:
            obj = fn(pid)
        except Exception as ex:
            fncPrintMessage(f"{label} lookup for {pid} failed: {ex}", "debug")
            return None
        # anything but a mapping counts as not found
        return obj if isinstance(obj, Mapping) else None
