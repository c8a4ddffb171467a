# ================================================================
# File     : handlers/graph/graph_helpers.py
# Purpose  : Graph helpers shared by the service passes
# Notes    : - $select-tolerant fetch (warn instead of fail)
#            - batch principal hydration (getByIds, then OR chunks)
#            - per-id lookup callables for the PrincipalResolver
# ================================================================

import re
from typing import Any, Callable, Dict, List, Optional, Tuple

from core.utils import fncChunkList, fncPrintMessage
from engine.models import PrincipalKind
from engine.principals import PrincipalResolver, fncPrincipalFromGraph

OR_LIMIT = 15  # Graph limit for OR'd child clauses

USER_FIELDS = "id,displayName,userPrincipalName,accountEnabled,onPremisesSyncEnabled,userType"
GROUP_FIELDS = "id,displayName,mail,onPremisesSyncEnabled,securityEnabled,isAssignableToRole"
SP_FIELDS = "id,displayName,appId,accountEnabled,servicePrincipalType"

_KIND_QUERY = {
    PrincipalKind.USER: ("users", USER_FIELDS, "user"),
    PrincipalKind.GROUP: ("groups", GROUP_FIELDS, "group"),
    PrincipalKind.SERVICE_PRINCIPAL: ("servicePrincipals", SP_FIELDS, "servicePrincipal"),
}


def safe_select_get_all(client, base_endpoint: str, fields: List[str],
                        beta: bool = False) -> Tuple[List[Dict[str, Any]], List[str]]:
    """
    Calls client.get_all with a $select list. If Graph returns 400 with
    "Could not find a property named 'X'", we warn, drop X, retry once,
    and add X = None to every returned row.
    Returns: (items, missing_fields)
    """
    sep = "&" if "?" in base_endpoint else "?"
    endpoint = f"{base_endpoint}{sep}$select={','.join(fields)}" if fields else base_endpoint
    try:
        items = client.get_all(endpoint, beta=beta)
        for it in items:
            for f in fields:
                it.setdefault(f, None)
        return items, []
    except Exception as ex:
        msg = str(ex)
        m = re.search(r"Could not find a property named '([^']+)'", msg)
        if not m:
            raise  # different error; bubble up

        missing = m.group(1)
        if missing in fields:
            fncPrintMessage(f"Property not found: '{missing}' — retrying without it.", "warn")
            retry_fields = [f for f in fields if f != missing]
            items, more_missing = safe_select_get_all(client, base_endpoint, retry_fields, beta=beta)
            for it in items:
                it[missing] = None
            return items, [missing] + more_missing
        raise


def _get_by_ids(client, ids: List[str], odata_type: str) -> List[Dict[str, Any]]:
    data = client.post("directoryObjects/getByIds", {"ids": ids, "types": [odata_type]})
    return data.get("value", []) if isinstance(data, dict) else []


def _batch_get(client, kind: PrincipalKind, ids: List[str]) -> Dict[str, Dict[str, Any]]:
    collection, fields, odata_type = _KIND_QUERY[kind]
    out: Dict[str, Dict[str, Any]] = {}
    if not ids:
        return out

    # Preferred: POST getByIds
    try:
        for chunk in fncChunkList(ids, 1000):
            for o in _get_by_ids(client, chunk, odata_type):
                if isinstance(o, dict) and o.get("id"):
                    out[o["id"]] = o
        if len(out) == len(ids):
            return out
    except Exception as ex:
        fncPrintMessage(f"getByIds ({collection}) failed, will chunk GETs: {ex}", "warn")

    # Fallback: GET in OR chunks (≤15)
    left = [i for i in ids if i not in out]
    for chunk in fncChunkList(left, OR_LIMIT):
        flt = " or ".join(f"id eq '{cid}'" for cid in chunk)
        try:
            rows = client.get_all(f"{collection}?$select={fields}&$filter={flt}")
            for r in rows or []:
                if isinstance(r, dict) and r.get("id"):
                    out[r["id"]] = r
        except Exception as ex:
            fncPrintMessage(f"{collection} chunk fetch failed: {ex}", "warn")
    return out


# ================================================================
# Function: fncHydratePrincipals
# Purpose : Batch-resolve principal ids and seed the run's resolver
# Notes   : Users, then groups, then service principals; anything left
#           falls through to per-id lookups inside the resolver
# ================================================================
def fncHydratePrincipals(client, resolver: PrincipalResolver, principal_ids: List[str]) -> int:
    ids = [i for i in dict.fromkeys(principal_ids) if i and i not in resolver]
    seeded = 0
    for kind in (PrincipalKind.USER, PrincipalKind.GROUP, PrincipalKind.SERVICE_PRINCIPAL):
        if not ids:
            break
        found = _batch_get(client, kind, ids)
        for pid, obj in found.items():
            resolver.remember(fncPrincipalFromGraph(obj, kind))
            seeded += 1
        ids = [i for i in ids if i not in found]
    fncPrintMessage(f"Hydrated {seeded} principal(s); {len(ids)} left for individual lookup", "debug")
    return seeded


def _lookup(client, collection: str, fields: str) -> Callable[[str], Optional[Dict[str, Any]]]:
    def fn(pid: str) -> Optional[Dict[str, Any]]:
        return client.get(f"{collection}/{pid}?$select={fields}", retry=False)
    return fn


# ================================================================
# Function: fncGraphLookups
# Purpose : Per-id lookup callables backed by Graph
# Notes   : 404s surface as exceptions; the resolver treats those as
#           "not found" and moves to the next strategy
# ================================================================
def fncGraphLookups(client) -> Dict[str, Callable[[str], Optional[Dict[str, Any]]]]:
    return {
        "lookup_user": _lookup(client, "users", USER_FIELDS),
        "lookup_group": _lookup(client, "groups", GROUP_FIELDS),
        "lookup_service_principal": _lookup(client, "servicePrincipals", SP_FIELDS),
        "lookup_directory_object": lambda pid: client.get(f"directoryObjects/{pid}", retry=False),
    }


def fncGraphResolverFactory(client) -> Callable[[], PrincipalResolver]:
    lookups = fncGraphLookups(client)
    return lambda: PrincipalResolver(**lookups)
