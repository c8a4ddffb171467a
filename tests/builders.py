"""Small record builders and an in-memory Graph stand-in for the tests."""
import re
from datetime import datetime, timezone

from engine.models import (
    AssignmentSource,
    PimWindow,
    Principal,
    PrincipalKind,
    RoleAssignmentRecord,
    RoleDefinition,
    Service,
)
from engine.role_scope import RoleScopeClassifier

NOW = datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)

_classifier = RoleScopeClassifier()


def user(pid, name=None, enabled=True):
    return Principal(id=pid, kind=PrincipalKind.USER, display_name=name or pid,
                     user_principal_name=f"{pid}@contoso.com", enabled=enabled)


def sp(pid, name=None):
    return Principal(id=pid, kind=PrincipalKind.SERVICE_PRINCIPAL, display_name=name or pid,
                     user_principal_name=f"app-{pid}", enabled=True)


def role(name, service=Service.AZURE_AD, rid=None):
    return RoleDefinition(id=rid or name.lower().replace(" ", "-"), display_name=name,
                          service=service, scope=_classifier.classify(name, service))


def record(principal, role_name, service=Service.AZURE_AD, source=AssignmentSource.ACTIVE,
           sid=None, scope="Directory", end=None, auth_type=None, rid=None):
    window = PimWindow(start=None, end=end) if end is not None else None
    return RoleAssignmentRecord(
        service=service,
        principal=principal,
        role=role(role_name, service, rid),
        assignment_source=source,
        source_assignment_id=sid or f"{principal.id}:{role_name}:{service.value}",
        scope_descriptor=scope,
        pim_window=window,
        auth_type=auth_type,
    )


class FakeGraph:
    """
    Answers get_all / get / post from dictionaries keyed by endpoint path
    (query string ignored). Unknown paths raise like the real client.
    """

    def __init__(self, routes=None, directory=None, fail=()):
        self.routes = dict(routes or {})
        self.directory = dict(directory or {})
        self.fail = set(fail)
        self.calls = []

    @staticmethod
    def _path(endpoint):
        return endpoint.split("?", 1)[0].strip("/")

    def _by_type(self, collection, ids):
        wanted = {"users": "#microsoft.graph.user", "groups": "#microsoft.graph.group",
                  "servicePrincipals": "#microsoft.graph.servicePrincipal"}[collection]
        return [dict(self.directory[i]) for i in ids
                if i in self.directory and self.directory[i].get("@odata.type") == wanted]

    def get_all(self, endpoint, params=None, beta=False):
        self.calls.append(("get_all", endpoint, beta))
        path = self._path(endpoint)
        if path in self.fail:
            raise Exception(f"Graph API request failed with status 403: {path}")
        if path in ("users", "groups", "servicePrincipals"):
            ids = re.findall(r"id eq '([^']+)'", endpoint)
            return self._by_type(path, ids)
        if path not in self.routes:
            raise Exception(f"Graph API request failed with status 404: {path}")
        return [dict(r) for r in self.routes[path]]

    def get(self, endpoint, params=None, beta=False, retry=True):
        self.calls.append(("get", endpoint, beta))
        path = self._path(endpoint)
        collection, _, pid = path.partition("/")
        if collection in ("users", "groups", "servicePrincipals"):
            found = self._by_type(collection, [pid])
            if found:
                return found[0]
        elif collection == "directoryObjects" and pid in self.directory:
            return dict(self.directory[pid])
        elif path in self.routes:
            return dict(self.routes[path])
        raise Exception("Graph API request failed with status 404")

    def post(self, endpoint, body, beta=False):
        self.calls.append(("post", endpoint, beta))
        kind = (body.get("types") or ["user"])[0]
        wanted = "#microsoft.graph." + kind
        return {"value": [dict(self.directory[i]) for i in body.get("ids", [])
                          if i in self.directory and self.directory[i].get("@odata.type") == wanted]}


def directory_user(pid, name, enabled=True):
    return {"@odata.type": "#microsoft.graph.user", "id": pid, "displayName": name,
            "userPrincipalName": f"{pid}@contoso.com", "accountEnabled": enabled,
            "onPremisesSyncEnabled": None}


def directory_group(pid, name):
    return {"@odata.type": "#microsoft.graph.group", "id": pid, "displayName": name, "mail": None}


def directory_sp(pid, name):
    return {"@odata.type": "#microsoft.graph.servicePrincipal", "id": pid, "displayName": name,
            "appId": f"app-{pid}", "accountEnabled": True}
