"""Unit tests for the pzctl command line interface."""

import json
from unittest.mock import AsyncMock, patch

import pytest
import yaml
from click.testing import CliRunner

from cli import PzctlCLI, cli
from conftest import FakeZeroAPI
from config import Config
from errors import AuthenticationError
from main import Application
from state import ResourceState, StateStore

MANIFEST = {
    "data": [
        {"type": "pomeriumzero_cluster", "name": "main", "config": {"name": "production"}}
    ],
    "resources": [
        {
            "type": "pomeriumzero_policy",
            "name": "engineers",
            "config": {
                "name": "engineers",
                "description": "",
                "enforced": False,
                "explanation": "",
                "namespace_id": "${data.pomeriumzero_cluster.main.namespace_id}",
                "ppl": {"allow": {"or": [{"email": {"ends_with": "@example.com"}}]}},
                "remediation": "",
            },
        },
        {
            "type": "pomeriumzero_route",
            "name": "grafana",
            "config": {
                "name": "grafana",
                "namespace_id": "${data.pomeriumzero_cluster.main.namespace_id}",
                "from": "https://grafana.example.com",
                "to": ["http://grafana.internal:3000"],
                "policy_ids": ["${pomeriumzero_policy.engineers.id}"],
            },
        },
    ],
}


@pytest.fixture
def app(tmp_path):
    cfg = Config.default()
    cfg.provider.api_token = "api-token"
    cfg.state.path = str(tmp_path / "state.json")
    return Application(cfg)


@pytest.fixture
def manifest_file(tmp_path):
    path = tmp_path / "manifest.yaml"
    path.write_text(yaml.safe_dump(MANIFEST))
    return str(path)


@pytest.fixture
def fake_api():
    fake = FakeZeroAPI()
    with patch("provider.ProviderSession.configure", new_callable=AsyncMock), patch(
        "provider.ProviderSession.request", new_callable=AsyncMock
    ) as mock_request:
        mock_request.side_effect = fake.handle
        yield fake


def invoke(app, args, **kwargs):
    return CliRunner().invoke(cli, args, obj=PzctlCLI(app), **kwargs)


class TestValidateCommand:
    def test_valid(self, app, manifest_file):
        result = invoke(app, ["validate", manifest_file])
        assert result.exit_code == 0
        assert "The manifest is valid." in result.output

    def test_invalid(self, app, tmp_path):
        document = {
            "resources": [
                {"type": "pomeriumzero_route", "name": "r", "config": {"name": "r"}}
            ]
        }
        path = tmp_path / "bad.yaml"
        path.write_text(yaml.safe_dump(document))

        result = invoke(app, ["validate", str(path)])

        assert result.exit_code == 1
        assert "Error: pomeriumzero_route.r:" in result.output

    def test_unknown_type(self, app, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text(yaml.safe_dump({"resources": [{"type": "nope", "name": "r"}]}))

        result = invoke(app, ["validate", str(path)])

        assert result.exit_code == 1
        assert "unknown resource type nope" in result.output


class TestPlanAndApply:
    def test_plan(self, app, manifest_file, fake_api):
        result = invoke(app, ["plan", manifest_file])

        assert result.exit_code == 0, result.output
        assert "+ pomeriumzero_policy.engineers" in result.output
        assert "+ pomeriumzero_route.grafana" in result.output
        assert 'policy_ids: ["(known after apply)"]' in result.output
        assert "Plan: 2 to add, 0 to change, 0 to destroy." in result.output

    def test_apply_auto_approve(self, app, manifest_file, fake_api, tmp_path):
        result = invoke(app, ["apply", manifest_file, "--auto-approve"])

        assert result.exit_code == 0, result.output
        assert "Apply complete! Resources: 2 added, 0 changed, 0 destroyed." in result.output
        assert "pomeriumzero_route.grafana: created" in result.output

        with open(tmp_path / "state.json") as f:
            document = json.load(f)
        assert sorted(document["resources"]) == [
            "pomeriumzero_policy.engineers",
            "pomeriumzero_route.grafana",
        ]

    def test_apply_declined(self, app, manifest_file, fake_api):
        result = invoke(app, ["apply", manifest_file], input="n\n")

        assert result.exit_code == 1
        assert ("POST", "/routes") not in fake_api.calls

    def test_apply_no_changes(self, app, manifest_file, fake_api):
        invoke(app, ["apply", manifest_file, "--auto-approve"])
        result = invoke(app, ["apply", manifest_file, "--auto-approve"])

        assert result.exit_code == 0
        assert "No changes." in result.output

    def test_apply_failure(self, app, manifest_file, fake_api):
        from errors import APIError

        fake_api.fail[("POST", "/routes")] = APIError(500, "boom")

        result = invoke(app, ["apply", manifest_file, "--auto-approve"])

        assert result.exit_code == 1
        assert "Error: pomeriumzero_route.grafana: unexpected status code: 500" in result.output

    def test_authentication_failure(self, app, manifest_file):
        with patch(
            "provider.ProviderSession.configure",
            new_callable=AsyncMock,
            side_effect=AuthenticationError("unexpected status code: 401"),
        ):
            result = invoke(app, ["plan", manifest_file])

        assert result.exit_code == 1
        assert "Error: unexpected status code: 401" in result.output

    def test_destroy(self, app, manifest_file, fake_api):
        invoke(app, ["apply", manifest_file, "--auto-approve"])

        result = invoke(app, ["destroy", manifest_file, "--auto-approve"])

        assert result.exit_code == 0, result.output
        assert "0 added, 0 changed, 2 destroyed" in result.output
        assert fake_api.routes == {}
        assert fake_api.policies == {}


class TestStateCommands:
    @pytest.fixture
    def seeded_app(self, app):
        store = StateStore(app.config.state.path)
        store.load()
        store.put(
            ResourceState(
                type="pomeriumzero_route",
                name="grafana",
                id="route-1",
                attributes={
                    "id": "route-1",
                    "name": "grafana",
                    "kubernetes_service_account_token": "very-secret",
                },
            )
        )
        store.save()
        return app

    def test_list(self, seeded_app):
        result = invoke(seeded_app, ["state", "list"])
        assert result.exit_code == 0
        assert "pomeriumzero_route.grafana" in result.output
        assert "route-1" in result.output

    def test_list_empty(self, app):
        result = invoke(app, ["state", "list"])
        assert "No resources in state." in result.output

    def test_show_masks_sensitive(self, seeded_app):
        result = invoke(seeded_app, ["state", "show", "pomeriumzero_route.grafana"])

        assert result.exit_code == 0
        data = json.loads(result.output)
        assert data["id"] == "route-1"
        assert data["attributes"]["kubernetes_service_account_token"] == "(sensitive)"
        assert "very-secret" not in result.output

    def test_show_yaml(self, seeded_app):
        result = invoke(
            seeded_app, ["state", "show", "pomeriumzero_route.grafana", "-o", "yaml"]
        )
        assert yaml.safe_load(result.output)["name"] == "grafana"

    def test_show_missing(self, app):
        result = invoke(app, ["state", "show", "pomeriumzero_route.nope"])
        assert result.exit_code == 1

    def test_rm(self, seeded_app):
        result = invoke(seeded_app, ["state", "rm", "pomeriumzero_route.grafana"])

        assert result.exit_code == 0
        store = StateStore(seeded_app.config.state.path)
        store.load()
        assert store.addresses() == []

    def test_rm_missing(self, app):
        result = invoke(app, ["state", "rm", "pomeriumzero_route.nope"])
        assert result.exit_code == 1
        assert "No resource in state" in result.output


class TestApiCommands:
    def test_refresh(self, app, manifest_file, fake_api):
        invoke(app, ["apply", manifest_file, "--auto-approve"])
        fake_api.routes.clear()

        result = invoke(app, ["refresh"])

        assert result.exit_code == 0
        assert "pomeriumzero_route.grafana: no longer exists" in result.output
        assert "Refreshed 1 resources." in result.output

    def test_import(self, app, fake_api):
        fake_api.policies["policy-7"] = {"id": "policy-7", "name": "admins"}

        result = invoke(app, ["import", "pomeriumzero_policy.admins", "policy-7"])

        assert result.exit_code == 0, result.output
        assert "Imported pomeriumzero_policy.admins [id=policy-7]" in result.output

    def test_lookup_cluster(self, app, fake_api):
        result = invoke(app, ["lookup", "cluster", "production"])
        assert result.exit_code == 0, result.output
        assert "cluster-1" in result.output

    def test_lookup_cluster_missing(self, app, fake_api):
        result = invoke(app, ["lookup", "cluster", "dev"])
        assert result.exit_code == 1
        assert "No cluster found with name: dev" in result.output

    def test_lookup_policy(self, app, fake_api):
        fake_api.policies["policy-3"] = {"id": "policy-3", "name": "admins"}
        result = invoke(app, ["lookup", "policy", "admins", "ns-1"])
        assert result.exit_code == 0, result.output
        assert "policy-3" in result.output

    def test_policies(self, app, fake_api):
        fake_api.policies["policy-3"] = {"id": "policy-3", "name": "admins", "enforced": True}
        result = invoke(app, ["policies"])
        assert result.exit_code == 0, result.output
        assert "admins" in result.output


class TestEventsAndTypes:
    def test_apply_writes_events_file(self, app, manifest_file, fake_api, tmp_path):
        events_file = tmp_path / "events.jsonl"

        result = invoke(
            app, ["apply", manifest_file, "--auto-approve", "--events-file", str(events_file)]
        )

        assert result.exit_code == 0, result.output
        events = [json.loads(line) for line in events_file.read_text().splitlines()]
        assert [(e["event_type"], e["address"]) for e in events] == [
            ("CREATED", "pomeriumzero_policy.engineers"),
            ("CREATED", "pomeriumzero_route.grafana"),
        ]
        assert app.event_bus.subscriber_count() == 0

    def test_destroy_appends_events(self, app, manifest_file, fake_api, tmp_path):
        events_file = tmp_path / "events.jsonl"
        invoke(app, ["apply", manifest_file, "--auto-approve", "--events-file", str(events_file)])

        invoke(
            app, ["destroy", manifest_file, "--auto-approve", "--events-file", str(events_file)]
        )

        types = [json.loads(line)["event_type"] for line in events_file.read_text().splitlines()]
        assert types == ["CREATED", "CREATED", "DELETED", "DELETED"]

    def test_types(self, app):
        result = invoke(app, ["types"])

        assert result.exit_code == 0
        assert "pomeriumzero_cluster_settings" in result.output
        assert "Look up a Pomerium Zero policy by name." in result.output

    def test_refresh_with_unregistered_type(self, app, fake_api):
        store = StateStore(app.config.state.path)
        store.load()
        store.put(ResourceState(type="removed_type", name="x", id="x-1", attributes={}))
        store.save()

        result = invoke(app, ["refresh"])

        assert result.exit_code == 1
        assert "Error: removed_type.x: resource type removed_type is not registered" in (
            result.output
        )
