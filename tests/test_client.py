import json
from types import SimpleNamespace

import pytest

import handlers.graph.client as client_mod
from handlers.graph.client import MAX_THROTTLE_RETRIES, GraphClient, GraphError
from handlers.graph.graph_helpers import safe_select_get_all


class _Resp:
    def __init__(self, status, body=None, headers=None):
        self.status_code = status
        self._body = body or {}
        self.headers = headers or {}
        self.text = json.dumps(self._body)
        self.url = "https://graph.microsoft.com/v1.0/users"
        self.request = SimpleNamespace(method="GET", url=self.url, body=None)

    def json(self):
        return self._body


@pytest.fixture
def client(monkeypatch):
    c = GraphClient.__new__(GraphClient)
    c.token = "token"
    c.timeout = 5
    c.sleeps = []
    monkeypatch.setattr(client_mod.time, "sleep", c.sleeps.append)
    return c


def _serve(monkeypatch, responses):
    queue = list(responses)
    monkeypatch.setattr(client_mod.requests, "request", lambda *a, **kw: queue.pop(0))


def test_throttled_request_honours_retry_after(client, monkeypatch):
    _serve(monkeypatch, [_Resp(200, {"value": []})])

    out = client._handle_response(_Resp(429, headers={"Retry-After": "3"}))

    assert out == {"value": []}
    assert client.sleeps == [3]


def test_throttling_gives_up_after_bounded_retries(client, monkeypatch):
    _serve(monkeypatch, [_Resp(503) for _ in range(MAX_THROTTLE_RETRIES)])

    with pytest.raises(Exception, match="503"):
        client._handle_response(_Resp(503))

    assert client.sleeps == [1, 2, 4, 8, 16]


def test_not_found_raises(client):
    with pytest.raises(Exception, match="404"):
        client._handle_response(_Resp(404))


def test_client_errors_are_not_retried_but_server_errors_are(client):
    calls = []

    def failing(status):
        def _request(method, url, params=None, json_body=None):
            calls.append(url)
            raise GraphError(f"Graph API request failed with status {status}", status)
        return _request

    client._request = failing(404)
    with pytest.raises(GraphError):
        client.get("users/ghost")
    assert len(calls) == 1

    calls.clear()
    client._request = failing(500)
    with pytest.raises(GraphError):
        client.get("users/ghost")
    assert len(calls) == 3
    assert client.sleeps == [1.0, 1.5]


def test_get_all_follows_next_link(client):
    pages = {
        "https://graph.microsoft.com/beta/roleManagement/exchange/roleAssignments":
            {"value": [{"id": "1"}], "@odata.nextLink": "https://next/2"},
        "https://next/2": {"value": [{"id": "2"}]},
    }
    client._request = lambda method, url, params=None, json_body=None: pages[url]

    items = client.get_all("/roleManagement/exchange/roleAssignments", beta=True)

    assert [i["id"] for i in items] == ["1", "2"]


def test_safe_select_drops_unknown_property():
    class Picky:
        def __init__(self):
            self.endpoints = []

        def get_all(self, endpoint, beta=False):
            self.endpoints.append(endpoint)
            if "isBuiltIn" in endpoint:
                raise Exception("Could not find a property named 'isBuiltIn' on type 'unifiedRoleDefinition'")
            return [{"id": "r1", "displayName": "Global Administrator"}]

    picky = Picky()
    items, missing = safe_select_get_all(picky, "roleManagement/directory/roleDefinitions",
                                         ["id", "displayName", "isBuiltIn"])

    assert missing == ["isBuiltIn"]
    assert items[0]["isBuiltIn"] is None
    assert picky.endpoints[-1].endswith("$select=id,displayName")
