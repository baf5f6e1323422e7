"""
Shared test fixtures: an in-memory stand-in for the Microsoft Graph HTTP API
"""

import json
import re
from urllib.parse import parse_qs, unquote, urlsplit

import pytest

from graph_client import GraphSession, GROUP_TYPE, USER_TYPE


API_URL = "https://graph.test/v1.0"


class FakeResponse:
    def __init__(self, status_code=200, payload=None):
        self.status_code = status_code
        self._payload = payload
        self.text = json.dumps(payload) if payload is not None else ""
        self.reason = "OK" if status_code < 400 else "Error"

    def json(self):
        if self._payload is None:
            raise ValueError("No JSON body")
        return self._payload


def _error(status_code, message):
    return FakeResponse(status_code, {"error": {"code": "Request_Error", "message": message}})


class FakeGraph:
    """
    Routes Graph requests to in-memory users and groups.
    Collections are served in small pages so paging is always exercised.
    """

    def __init__(self, page_size=2):
        self.headers = {}
        self.page_size = page_size
        self.users = {}
        self.groups = {}
        self.members = {}
        self.other_memberships = {}
        self.failures = {}
        self.calls = []
        self.closed = False

    def add_user(self, user_id, upn=None, display_name=None, mail=None):
        self.users[user_id] = {
            "id": user_id,
            "userPrincipalName": upn or f"{user_id}@example.com",
            "displayName": display_name or user_id.title(),
            "mail": mail,
        }

    def add_group(self, group_id, display_name=None, members=()):
        self.groups[group_id] = {"id": group_id, "displayName": display_name or group_id}
        self.members[group_id] = list(members)

    def fail(self, method, group_id, member_id=None, response=None):
        """Make calls of this method against the group (or one member of it) return an error."""
        self.failures[(method, group_id, member_id)] = response or _error(
            403, "Insufficient privileges to complete the operation."
        )

    def _failing(self, method, group_id, member_id):
        return self.failures.get((method, group_id, member_id)) or self.failures.get((method, group_id, None))

    def groups_of(self, user_id):
        return {gid for gid, members in self.members.items() if user_id in members}

    @property
    def mutations(self):
        return [(method, path) for method, path in self.calls if method in ("POST", "DELETE")]

    def close(self):
        self.closed = True

    def request(self, method, url, params=None, json=None, timeout=None):
        parts = urlsplit(url)
        path = unquote(parts.path[len(urlsplit(API_URL).path):])
        query = {k: v[0] for k, v in parse_qs(parts.query).items()}
        query.update(params or {})
        self.calls.append((method, path))

        match = re.fullmatch(r"/groups/([^/]+)/members/\$ref", path)
        if match and method == "POST":
            return self._add(match.group(1), json["@odata.id"].rsplit("/", 1)[1])

        match = re.fullmatch(r"/groups/([^/]+)/members/([^/]+)/\$ref", path)
        if match and method == "DELETE":
            return self._remove(match.group(1), match.group(2))

        match = re.fullmatch(r"/users/([^/]+)/memberOf", path)
        if match:
            user_id = match.group(1)
            entries = [
                dict(self.groups[gid], **{"@odata.type": GROUP_TYPE})
                for gid in sorted(self.groups_of(user_id))
            ] + self.other_memberships.get(user_id, [])
            return self._page(path, entries, query)

        match = re.fullmatch(r"/groups/([^/]+)/members", path)
        if match:
            entries = []
            for member_id in self.members.get(match.group(1), []):
                if member_id in self.users:
                    entries.append(dict(self.users[member_id], **{"@odata.type": USER_TYPE}))
                elif member_id in self.groups:
                    entries.append(dict(self.groups[member_id], **{"@odata.type": GROUP_TYPE}))
            return self._page(path, entries, query)

        match = re.fullmatch(r"/users/([^/]+)", path)
        if match:
            key = match.group(1)
            for user in self.users.values():
                if key in (user["id"], user["userPrincipalName"]):
                    return FakeResponse(200, user)
            return _error(404, f"Resource '{key}' does not exist")

        if path == "/users":
            value = self._filter_value(query)
            found = [
                u for u in self.users.values()
                if value is None or value in (u["userPrincipalName"], u["mail"])
                or u["displayName"].startswith(value)
            ]
            return FakeResponse(200, {"value": found[:int(query.get("$top", len(found) or 1))]})

        match = re.fullmatch(r"/groups/([^/]+)", path)
        if match:
            group = self.groups.get(match.group(1))
            if group:
                return FakeResponse(200, group)
            return _error(404, f"Resource '{match.group(1)}' does not exist")

        if path == "/groups":
            value = self._filter_value(query)
            found = [g for g in self.groups.values() if g["displayName"] == value]
            return self._page(path, found, query)

        return _error(400, f"Unsupported request {method} {path}")

    @staticmethod
    def _filter_value(query):
        match = re.search(r"'((?:[^']|'')*)'", query.get("$filter", ""))
        return match.group(1).replace("''", "'") if match else None

    def _page(self, path, entries, query):
        skip = int(query.get("$skiptoken", 0))
        payload = {"value": entries[skip:skip + self.page_size]}
        if skip + self.page_size < len(entries):
            payload["@odata.nextLink"] = f"{API_URL}{path}?$skiptoken={skip + self.page_size}"
        return FakeResponse(200, payload)

    def _add(self, group_id, member_id):
        failure = self._failing("POST", group_id, member_id)
        if failure:
            return failure
        if group_id not in self.groups:
            return _error(404, f"Resource '{group_id}' does not exist")
        if member_id in self.members[group_id]:
            return _error(400, "One or more added object references already exist")
        self.members[group_id].append(member_id)
        return FakeResponse(204)

    def _remove(self, group_id, member_id):
        failure = self._failing("DELETE", group_id, member_id)
        if failure:
            return failure
        if member_id not in self.members.get(group_id, []):
            return _error(404, f"Resource '{member_id}' does not exist")
        self.members[group_id].remove(member_id)
        return FakeResponse(204)


@pytest.fixture
def graph():
    return FakeGraph()


@pytest.fixture
def session(graph):
    return GraphSession("test-token", api_url=API_URL, timeout=5, http=graph)


@pytest.fixture
def directory(graph):
    """
    Source alice is in G1, G2, G3; target bob is in G2, G4.
    """
    graph.add_user("alice", display_name="Alice Source", mail="alice@corp.example")
    graph.add_user("bob", display_name="Bob Target")
    graph.add_group("G1", "Engineering", members=["alice"])
    graph.add_group("G2", "All Staff", members=["alice", "bob"])
    graph.add_group("G3", "VPN Users", members=["alice"])
    graph.add_group("G4", "Contractors", members=["bob"])
    return graph


@pytest.fixture(autouse=True)
def azure_env(monkeypatch):
    monkeypatch.setenv("AZURE_TENANT_ID", "tenant")
    monkeypatch.setenv("AZURE_CLIENT_ID", "client")
    monkeypatch.delenv("AZURE_CLIENT_SECRET", raising=False)
    monkeypatch.delenv("SYNC_DRY_RUN", raising=False)
    monkeypatch.delenv("GRAPH_SCOPES", raising=False)
