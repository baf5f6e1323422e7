"""
Microsoft Graph client for Entra ID accounts and group memberships
"""

import os
import logging
from typing import Any, Dict, Iterator, List, Optional
from urllib.parse import quote

import msal
import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry


logger = logging.getLogger(__name__)

GRAPH_API_URL = "https://graph.microsoft.com/v1.0"
APP_SCOPES = ["https://graph.microsoft.com/.default"]
DELEGATED_SCOPES = ["User.Read.All", "GroupMember.ReadWrite.All"]

GROUP_TYPE = "#microsoft.graph.group"
USER_TYPE = "#microsoft.graph.user"


class DirectoryError(Exception):
    """Base class for directory failures."""


class AuthError(DirectoryError):
    """Authentication to the directory failed."""


class NotFoundError(DirectoryError):
    """An account or group could not be resolved."""


class ApiError(DirectoryError):
    """A Graph API call returned an error."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class MembershipRetry(Retry):
    """
    Retry reads on throttling and transient server errors.
    Writes are only retried when throttled, since a 5xx may follow a
    change the server already committed.
    """

    def is_retry(self, method, status_code, has_retry_after=False):
        if method.upper() != "GET" and status_code != 429:
            return False
        return super().is_retry(method, status_code, has_retry_after)


def _build_http_session() -> requests.Session:
    session = requests.Session()
    # Retry throttled and transient failures, honouring Retry-After
    retry = MembershipRetry(
        total=3,
        backoff_factor=1,
        status_forcelist=[429, 500, 502, 503, 504],
        allowed_methods=["GET", "POST", "DELETE"],
        respect_retry_after_header=True,
        raise_on_status=False,
    )
    adapter = HTTPAdapter(max_retries=retry)
    session.mount("https://", adapter)
    session.mount("http://", adapter)
    return session


def _error_message(response) -> str:
    """Pull the Graph error message out of a failed response."""
    message = None
    try:
        body = response.json()
    except ValueError:
        body = None
    # Gateways sometimes answer with a plain string or a list instead of a Graph error object
    error = body.get("error") if isinstance(body, dict) else None
    if isinstance(error, dict):
        message = error.get("message")
    elif error:
        message = str(error)
    return f"HTTP {response.status_code}: {message or response.text or response.reason}"


def _odata_escape(value: str) -> str:
    # OData single quotes are escaped by doubling them
    return value.replace("'", "''")


class GraphSession:
    """
    Authenticated handle to Microsoft Graph.
    Acquired once per run and passed into every directory call.
    """

    def __init__(self, access_token: str, api_url: Optional[str] = None,
                 timeout: Optional[float] = None, http=None):
        self.api_url = (api_url or os.getenv("GRAPH_API_URL", GRAPH_API_URL)).rstrip("/")
        self.timeout = timeout or float(os.getenv("GRAPH_TIMEOUT", "30"))
        self.http = http if http is not None else _build_http_session()
        self.http.headers.update({
            "Authorization": f"Bearer {access_token}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        })

    def request(self, method: str, path: str, params: Optional[Dict[str, Any]] = None,
                json: Optional[Dict[str, Any]] = None):
        """Send one request; raise ApiError for transport failures and 4xx/5xx replies."""
        url = path if path.startswith(("https://", "http://")) else f"{self.api_url}{path}"
        logger.debug(f"Graph {method} {url} params={params}")

        try:
            response = self.http.request(method, url, params=params, json=json, timeout=self.timeout)
        except requests.RequestException as e:
            raise ApiError(f"{method} {url} failed: {e}") from e

        if response.status_code >= 400:
            raise ApiError(_error_message(response), status_code=response.status_code)
        return response

    def paged(self, path: str, params: Optional[Dict[str, Any]] = None) -> Iterator[Dict[str, Any]]:
        """Yield every item of a collection, following @odata.nextLink."""
        url = path
        page = 0
        while url:
            data = self.request("GET", url, params=params).json()
            page += 1
            yield from data.get("value", [])

            url = data.get("@odata.nextLink")
            # The next link already carries the query string
            params = None
            if url:
                logger.debug(f"Fetching page {page + 1} of {path}")

    def close(self):
        self.http.close()


def default_scopes(app_only: bool) -> List[str]:
    configured = os.getenv("GRAPH_SCOPES", "")
    if configured:
        return [s.strip() for s in configured.split(",") if s.strip()]
    return APP_SCOPES if app_only else DELEGATED_SCOPES


def authenticate(scopes: Optional[List[str]] = None, tenant_id: Optional[str] = None,
                 client_id: Optional[str] = None, client_secret: Optional[str] = None) -> GraphSession:
    """
    Acquire a Graph access token with MSAL.

    Uses the client credential flow when a client secret is configured,
    otherwise the device code flow for a signed-in administrator.
    """
    tenant_id = tenant_id or os.getenv("AZURE_TENANT_ID")
    client_id = client_id or os.getenv("AZURE_CLIENT_ID")
    client_secret = client_secret or os.getenv("AZURE_CLIENT_SECRET")
    scopes = scopes or default_scopes(app_only=bool(client_secret))
    authority = f"https://login.microsoftonline.com/{tenant_id}"

    logger.info(f"Authenticating to Entra ID tenant: {tenant_id}")

    try:
        if client_secret:
            app = msal.ConfidentialClientApplication(
                client_id=client_id,
                client_credential=client_secret,
                authority=authority,
            )
            result = app.acquire_token_for_client(scopes=scopes)
        else:
            app = msal.PublicClientApplication(client_id=client_id, authority=authority)
            flow = app.initiate_device_flow(scopes=scopes)
            if "user_code" not in flow:
                raise AuthError(f"Could not start device flow: {flow.get('error_description', flow)}")
            print(flow["message"])
            result = app.acquire_token_by_device_flow(flow)
    except (ValueError, requests.RequestException) as e:
        raise AuthError(str(e)) from e

    if not result or "access_token" not in result:
        detail = (result or {}).get("error_description") or (result or {}).get("error") or "no token returned"
        raise AuthError(detail)

    logger.info("Successfully authenticated to Microsoft Graph")
    return GraphSession(result["access_token"])


def find_account(session: GraphSession, identifier: str) -> Dict[str, Any]:
    """
    Resolve a user by object id or principal name.
    Falls back to a search on principal name, mail and display name and
    takes the first match.
    """
    select = "id,displayName,userPrincipalName,mail"

    try:
        return session.request(
            "GET", f"/users/{quote(identifier, safe='@.')}", params={"$select": select}
        ).json()
    except ApiError as e:
        if e.status_code not in (400, 404):
            raise
        logger.debug(f"No exact match for '{identifier}', searching instead")

    escaped = _odata_escape(identifier)
    params = {
        "$filter": (
            f"userPrincipalName eq '{escaped}' or mail eq '{escaped}' "
            f"or startswith(displayName,'{escaped}')"
        ),
        "$select": select,
        "$top": "1",
    }
    matches = session.request("GET", "/users", params=params).json().get("value", [])
    if not matches:
        raise NotFoundError(f"Account not found: {identifier}")
    return matches[0]


def find_group(session: GraphSession, identifier: str) -> Dict[str, Any]:
    """Resolve a group by object id, then by exact display name."""
    select = "id,displayName"

    try:
        return session.request(
            "GET", f"/groups/{quote(identifier, safe='')}", params={"$select": select}
        ).json()
    except ApiError as e:
        if e.status_code not in (400, 404):
            raise

    params = {
        "$filter": f"displayName eq '{_odata_escape(identifier)}'",
        "$select": select,
    }
    matches = list(session.paged("/groups", params=params))
    if not matches:
        raise NotFoundError(f"Group not found: {identifier}")
    if len(matches) > 1:
        ids = ", ".join(g["id"] for g in matches)
        raise NotFoundError(f"Multiple groups named '{identifier}', use an object id. Candidates: {ids}")
    return matches[0]


def list_group_memberships(session: GraphSession, account_id: str) -> List[Dict[str, Any]]:
    """Return every group the account is a direct member of, across all pages."""
    params = {"$select": "id,displayName", "$top": "999"}
    groups = []
    skipped = 0

    for entry in session.paged(f"/users/{account_id}/memberOf", params=params):
        # memberOf also lists directory roles and administrative units
        if entry.get("@odata.type") != GROUP_TYPE:
            skipped += 1
            continue
        groups.append(entry)

    if skipped:
        logger.debug(f"Skipped {skipped} non-group memberships of {account_id}")
    return groups


def list_user_members(session: GraphSession, group_id: str) -> List[Dict[str, Any]]:
    """Return every user that is a direct member of the group."""
    params = {"$select": "id,displayName,userPrincipalName", "$top": "999"}
    return [
        entry for entry in session.paged(f"/groups/{group_id}/members", params=params)
        if entry.get("@odata.type") == USER_TYPE
    ]


def add_member(session: GraphSession, group_id: str, account_id: str) -> None:
    body = {"@odata.id": f"{session.api_url}/directoryObjects/{account_id}"}
    session.request("POST", f"/groups/{group_id}/members/$ref", json=body)


def remove_member(session: GraphSession, group_id: str, account_id: str) -> None:
    session.request("DELETE", f"/groups/{group_id}/members/{account_id}/$ref")
