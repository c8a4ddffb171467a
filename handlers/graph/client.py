# ================================================================
# File     : client.py
# Purpose  : Microsoft Graph API read-only client for the M365 role audit
# Notes    : Read-only: GET (+ POST for getByIds lookups) + pagination
#            + retries. No destructive ops.
#            - Client secret or certificate (app-only) auth via MSAL
#            - Auto-refresh token on 401
#            - Proactive refresh if token expires in <5 minutes
#            - v1.0 by default; beta for Exchange/Intune unified RBAC
# ================================================================

import os
import msal
import requests
import time
import getpass
from typing import Dict, Any, List, Optional
from core.utils import fncPrintMessage, fncRetry

GRAPH_ROOT = "https://graph.microsoft.com/v1.0"
GRAPH_BETA_ROOT = "https://graph.microsoft.com/beta"

AUTH_CLIENT_SECRET = "ClientSecret"
AUTH_CERTIFICATE = "Certificate"

THROTTLE_STATUSES = (429, 503, 504)
MAX_THROTTLE_RETRIES = 5
MAX_RETRY_AFTER = 60
# client errors are answers, not glitches
NO_RETRY_STATUSES = (400, 401, 403, 404)


class GraphError(Exception):
    def __init__(self, message: str, status: int = 0):
        super().__init__(message)
        self.status = status


def _give_up(ex: BaseException) -> bool:
    return getattr(ex, "status", None) in NO_RETRY_STATUSES


def _read_private_key(path: str) -> str:
    with open(os.path.expanduser(path), "r", encoding="utf-8") as f:
        return f.read()


class GraphClient:
    def __init__(
        self,
        tenant_id: Optional[str] = None,
        client_id: Optional[str] = None,
        client_secret: Optional[str] = None,
        certificate_path: Optional[str] = None,
        certificate_thumbprint: Optional[str] = None,
        authority_host: str = "https://login.microsoftonline.com",
        timeout: int = 60,
    ):
        # Try environment variables first
        tenant_id = tenant_id or os.getenv("ROLEHOUND_TENANT_ID")
        client_id = client_id or os.getenv("ROLEHOUND_CLIENT_ID")
        client_secret = client_secret or os.getenv("ROLEHOUND_CLIENT_SECRET")
        certificate_path = certificate_path or os.getenv("ROLEHOUND_CERT_PATH")
        certificate_thumbprint = certificate_thumbprint or os.getenv("ROLEHOUND_CERT_THUMBPRINT")

        # Prompt interactively if any credential is missing
        if not tenant_id:
            tenant_id = input("Enter Tenant ID: ").strip()
        if not client_id:
            client_id = input("Enter Application (Client) ID: ").strip()

        use_cert = bool(certificate_path and certificate_thumbprint)
        if not use_cert and not client_secret:
            fncPrintMessage(
                "No certificate or Client Secret found *Hidden* "
                "Credentials are stored in environment only for this session.",
                "warn",
            )
            client_secret = getpass.getpass("Enter Client Secret (input hidden): ").strip()

        # Persist to environment for the lifetime of the session
        os.environ["ROLEHOUND_TENANT_ID"] = tenant_id
        os.environ["ROLEHOUND_CLIENT_ID"] = client_id

        self.tenant_id = tenant_id
        self.client_id = client_id
        self.timeout = timeout

        # Certificate wins when both are configured
        if use_cert:
            self.auth_type = AUTH_CERTIFICATE
            credential: Any = {
                "private_key": _read_private_key(certificate_path),
                "thumbprint": certificate_thumbprint,
            }
        else:
            self.auth_type = AUTH_CLIENT_SECRET
            credential = client_secret
            fncPrintMessage("Authenticating with a client secret; certificate auth is recommended.", "warn")

        # Application scope (app-only). Ensure the app has appropriate read-only app perms.
        self.scope = ["https://graph.microsoft.com/.default"]
        self.authority = f"{authority_host.rstrip('/')}/{tenant_id}"

        fncPrintMessage(f"Initialising Microsoft Graph (read-only) client [{self.auth_type}]...", "info")

        self.app = msal.ConfidentialClientApplication(
            client_id=self.client_id,
            client_credential=credential,
            authority=self.authority,
        )

        # token/bookkeeping
        self.token: str = ""
        self._token_expires_on: int = 0  # epoch seconds
        self._set_token(self._acquire_token())

        fncPrintMessage("GraphClient initialised (read-only).", "success")

    # ---------- Token helpers ----------

    def _acquire_token(self) -> Dict[str, Any]:
        """Acquire a token using MSAL (silent -> client creds). Returns MSAL result dict."""
        fncPrintMessage("Requesting Microsoft Graph access token...", "debug")
        result = self.app.acquire_token_silent(self.scope, account=None)
        if not result:
            result = self.app.acquire_token_for_client(scopes=self.scope)
        if "access_token" not in result:
            fncPrintMessage(
                f"MSAL Authentication failed: {result.get('error_description', 'Unknown error')}",
                "error",
            )
            raise GraphError("Failed to acquire access token")
        return result

    def _set_token(self, msal_result: Dict[str, Any]) -> None:
        """Store token and expiry from MSAL result."""
        self.token = msal_result["access_token"]
        try:
            self._token_expires_on = int(msal_result.get("expires_on") or 0)
        except (TypeError, ValueError):
            self._token_expires_on = 0
        if not self._token_expires_on:
            self._token_expires_on = int(time.time()) + int(msal_result.get("expires_in", 3600))

    def _ensure_fresh_token(self) -> None:
        """Proactively refresh token if it expires in <5 minutes."""
        now = int(time.time())
        if now >= (self._token_expires_on - 300):
            fncPrintMessage("Refreshing access token (nearing expiry)...", "debug")
            self._set_token(self._acquire_token())

    def _auth_headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.token}",
            "Accept": "application/json",
            "Content-Type": "application/json",
            "ConsistencyLevel": "eventual",
        }

    # ---------- HTTP handling ----------

    def _resend(self, response: requests.Response) -> requests.Response:
        req = response.request
        return requests.request(method=req.method, url=req.url, headers=self._auth_headers(),
                                data=req.body, timeout=self.timeout)

    def _handle_response(self, response: requests.Response, throttled: int = 0) -> Dict[str, Any]:
        status = response.status_code

        if status == 200:
            return response.json()

        # Throttled or briefly unavailable; parallel passes make this common
        if status in THROTTLE_STATUSES and throttled < MAX_THROTTLE_RETRIES:
            try:
                wait = int(response.headers.get("Retry-After", 0))
            except ValueError:
                wait = 0
            wait = min(max(wait, 2 ** throttled), MAX_RETRY_AFTER)
            fncPrintMessage(f"Graph returned {status}. Backing off {wait}s ({throttled + 1}/{MAX_THROTTLE_RETRIES})...", "warn")
            time.sleep(wait)
            return self._handle_response(self._resend(response), throttled + 1)

        # Unauthorized (refresh and retry once)
        if status == 401:
            try:
                body = response.json()
            except ValueError:
                body = {}
            err = (body.get("error") or {})
            code = err.get("code") or ""
            msg = err.get("message") or ""
            if "InvalidAuthenticationToken" in code or "expired" in str(msg).lower():
                fncPrintMessage("Access token expired, Attempting Refresh.", "warn")
                self._set_token(self._acquire_token())
                resp = self._resend(response)
                if resp.status_code == 200:
                    return resp.json()
            fncPrintMessage(f"Unauthorized (401): {response.text}", "error")
            raise GraphError("Graph API request failed with status 401", 401)

        # Not found is routine for principal lookups; keep it quiet
        if status == 404:
            fncPrintMessage(f"Graph API 404 -> {response.url}", "debug")
            raise GraphError("Graph API request failed with status 404", 404)

        # Other client/server errors
        if status >= 400:
            fncPrintMessage(f"Graph API Error [{status}] -> {response.text}", "error")
            raise GraphError(f"Graph API request failed with status {status}: {response.text}", status)

        # Fallback
        try:
            return response.json()
        except ValueError:
            return {"status": status, "text": response.text}

    def _request(self, method: str, url: str, params: Optional[Dict[str, Any]] = None,
                 json_body: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Single HTTP request with proactive token refresh and 401 auto-refresh retry."""
        self._ensure_fresh_token()
        resp = requests.request(method, url, headers=self._auth_headers(), params=params,
                                json=json_body, timeout=self.timeout)
        return self._handle_response(resp)

    def _url(self, endpoint: str, beta: bool = False) -> str:
        root = GRAPH_BETA_ROOT if beta else GRAPH_ROOT
        return f"{root}/{endpoint.strip().lstrip('/')}"

    # ---------- Public API ----------

    def get(self, endpoint: str, params: Optional[Dict[str, Any]] = None, beta: bool = False,
            retry: bool = True) -> Dict[str, Any]:
        """
        Perform a GET request to a Graph endpoint (single page).
        Use get_all for paginated resources. retry=False for lookups
        where a 404 is an expected answer.
        """
        url = self._url(endpoint, beta)
        fncPrintMessage(f"GET {url}", "debug")
        if not retry:
            return self._request("GET", url, params=params)
        return fncRetry(lambda: self._request("GET", url, params=params), give_up=_give_up)

    def post(self, endpoint: str, body: Dict[str, Any], beta: bool = False) -> Dict[str, Any]:
        """POST for read-style actions only (e.g. directoryObjects/getByIds)."""
        url = self._url(endpoint, beta)
        fncPrintMessage(f"POST {url}", "debug")
        return fncRetry(lambda: self._request("POST", url, json_body=body), give_up=_give_up)

    def get_all(self, endpoint: str, params: Optional[Dict[str, Any]] = None, beta: bool = False) -> List[Dict[str, Any]]:
        """
        Retrieve all items from a paginated Graph endpoint.
        Returns a flat list of items (value) for list endpoints.
        Example: client.get_all("roleManagement/directory/roleDefinitions?$select=id,displayName")
        """
        url = self._url(endpoint, beta)
        fncPrintMessage(f"GET (all pages) {url}", "debug")

        data = fncRetry(lambda: self._request("GET", url, params=params), give_up=_give_up)
        items: List[Dict[str, Any]] = []

        if isinstance(data, dict) and "value" not in data:
            return [data]

        if isinstance(data, dict) and "value" in data:
            items.extend(data.get("value", []))
            next_link = data.get("@odata.nextLink")
        else:
            return items

        while next_link:
            fncPrintMessage(f"Following nextLink -> {next_link}", "debug")
            link = next_link
            page = fncRetry(lambda: self._request("GET", link), give_up=_give_up)
            if isinstance(page, dict):
                items.extend(page.get("value", []))
                next_link = page.get("@odata.nextLink")
            else:
                break

        return items
