"""Pytest configuration and fixtures."""

import copy
import itertools

import pytest
from unittest.mock import AsyncMock, MagicMock

import config
from errors import NotFoundError
from plugins.registry import (
    PluginRegistry,
    register_builtin_plugins,
    get_registry,
    reset_registry,
)
from provider import ProviderSession
from state import StateStore


@pytest.fixture(autouse=True)
def reset_globals():
    """Reset the config and registry singletons around every test."""
    config.reset_config()
    reset_registry()
    yield
    config.reset_config()
    reset_registry()


@pytest.fixture
def mock_provider():
    """A configured provider session whose request() is an AsyncMock."""
    provider = ProviderSession(api_url="https://zero.example.com/api/v0")
    provider.token = "bearer-token"
    provider.organization_id = "org-1"
    provider.request = AsyncMock()
    return provider


@pytest.fixture
def registry(mock_provider) -> PluginRegistry:
    """The built-in plugins, wired to the mock provider."""
    register_builtin_plugins()
    reg = get_registry()
    reg.configure(mock_provider)
    return reg


@pytest.fixture
def state_store(tmp_path) -> StateStore:
    store = StateStore(str(tmp_path / "state.json"))
    store.load()
    return store


def make_http_session(responses):
    """
    Build a mock aiohttp.ClientSession that answers request() calls with
    (status, body) pairs, in order.
    """
    session = AsyncMock()
    contexts = []
    for status, body in responses:
        resp = AsyncMock()
        resp.status = status
        resp.text = AsyncMock(return_value=body)
        contexts.append(
            AsyncMock(
                __aenter__=AsyncMock(return_value=resp),
                __aexit__=AsyncMock(return_value=False),
            )
        )
    session.request = MagicMock(side_effect=contexts)

    return AsyncMock(
        __aenter__=AsyncMock(return_value=session),
        __aexit__=AsyncMock(return_value=False),
    ), session


@pytest.fixture
def sample_route_config():
    return {
        "name": "grafana",
        "namespace_id": "ns-1",
        "from": "https://grafana.example.com",
        "to": ["http://grafana.internal:3000"],
    }


@pytest.fixture
def sample_route_response():
    return {
        "id": "route-1",
        "name": "grafana",
        "namespaceId": "ns-1",
        "from": "https://grafana.example.com",
        "to": ["http://grafana.internal:3000"],
        "allowSpdy": False,
        "allowWebsockets": False,
        "enableGoogleCloudServerlessAuthentication": False,
        "preserveHostHeader": False,
        "showErrorDetails": True,
        "tlsSkipVerify": False,
        "tlsUpstreamAllowRenegotiation": False,
        "policyIds": ["policy-1"],
    }


@pytest.fixture
def sample_policy_config():
    return {
        "name": "engineers",
        "description": "Engineering team",
        "enforced": False,
        "explanation": "Only engineers",
        "namespace_id": "ns-1",
        "ppl": '{"allow":{"or":[{"email":{"ends_with":"@example.com"}}]}}',
        "remediation": "Ask in #access",
    }


class FakeZeroAPI:
    """In-memory stand-in for the organization-scoped API endpoints."""

    def __init__(self):
        self.clusters = [{"id": "cluster-1", "name": "production", "namespaceId": "ns-1"}]
        self.routes = {}
        self.policies = {}
        # Settings documents by cluster ID; the API never echoes codecType
        self.settings = {}
        self.calls = []
        self.fail = {}
        self._ids = itertools.count(1)

    def _collection(self, path):
        return self.routes if path.startswith("/routes") else self.policies

    def _settings(self, method, cluster_id, body):
        if method == "POST":
            document = {k: v for k, v in body.items() if k != "codecType"}
            self.settings[cluster_id] = dict(document, id=f"settings-{next(self._ids)}")
            return None
        if cluster_id not in self.settings:
            raise NotFoundError(f"settings for {cluster_id} not found")
        if method == "GET":
            return copy.deepcopy(self.settings[cluster_id])
        if method == "PUT":
            document = {k: v for k, v in body.items() if k != "codecType"}
            self.settings[cluster_id] = dict(document, id=self.settings[cluster_id]["id"])
            return copy.deepcopy(self.settings[cluster_id])
        del self.settings[cluster_id]
        return None

    async def handle(self, method, path, expected_status, json_body=None, params=None):
        self.calls.append((method, path))
        if (method, path) in self.fail:
            raise self.fail[(method, path)]

        if path == "/clusters":
            return self.clusters

        parts = path.strip("/").split("/")
        if parts[0] == "clusters" and parts[-1] == "settings":
            return self._settings(method, parts[1], copy.deepcopy(json_body))

        collection = self._collection(path)
        prefix = "route" if collection is self.routes else "policy"

        if method == "GET" and len(parts) == 1:
            return list(collection.values())
        if method == "POST":
            doc = dict(copy.deepcopy(json_body), id=f"{prefix}-{next(self._ids)}")
            collection[doc["id"]] = doc
            return doc

        item_id = parts[1]
        if item_id not in collection:
            raise NotFoundError(f"{prefix} {item_id} not found")
        if method == "GET":
            return copy.deepcopy(collection[item_id])
        if method == "PUT":
            collection[item_id] = dict(copy.deepcopy(json_body), id=item_id)
            return copy.deepcopy(collection[item_id])
        if method == "DELETE":
            del collection[item_id]
            return None
        raise AssertionError(f"unexpected call {method} {path}")
