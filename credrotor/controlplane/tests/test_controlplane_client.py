"""Tests for the control-plane JSON:API client."""

from __future__ import annotations

import json

import httpx
import pytest

from credrotor.config import ControlPlaneConfig
from credrotor.controlplane.client import ControlPlaneClient, build_client
from credrotor.errors import ControlPlaneError, NotFound, Timeout


@pytest.fixture
def client(tfc):
    with ControlPlaneClient("tok-123", "acme", transport=tfc.transport) as c:
        yield c


class TestRequests:
    def test_headers(self, client, tfc):
        client.list_variable_sets()
        request = tfc.requests[0]
        assert request.headers["Authorization"] == "Bearer tok-123"
        assert request.headers["Content-Type"] == "application/vnd.api+json"
        assert str(request.url) == "https://app.terraform.io/api/v2/organizations/acme/varsets"

    def test_non_2xx_raises_with_status_and_body(self, client, tfc):
        tfc.fail[("GET", "organizations/acme/varsets")] = (502, "bad gateway")
        with pytest.raises(ControlPlaneError) as exc:
            client.list_variable_sets()
        assert exc.value.status == 502
        assert exc.value.body == "bad gateway"
        assert "502" in str(exc.value)

    def test_timeout_translated(self):
        def handler(request):
            raise httpx.ReadTimeout("slow", request=request)

        with ControlPlaneClient("t", "acme", transport=httpx.MockTransport(handler)) as c:
            with pytest.raises(Timeout):
                c.list_variable_sets()

    def test_custom_base_url(self, tfc):
        seen = []

        def handler(request):
            seen.append(str(request.url))
            return httpx.Response(200, json={"data": []})

        with ControlPlaneClient(
            "t", "acme", base_url="https://tfe.internal/api/v2", transport=httpx.MockTransport(handler)
        ) as c:
            c.list_variable_sets()
        assert seen == ["https://tfe.internal/api/v2/organizations/acme/varsets"]


class TestVariableSets:
    def test_find_by_name(self, client):
        assert client.find_variable_set("rotated-credentials")["id"] == "varset-abc123"

    def test_missing_name_raises_not_found(self, client):
        with pytest.raises(NotFound):
            client.find_variable_set("nope")

    def test_create_variable_set(self, client, tfc):
        created = client.create_variable_set("ci-secrets", "rotated by credrotor")
        assert created["id"] in tfc.varsets
        body = json.loads(tfc.requests[-1].content)
        assert body["data"]["attributes"] == {
            "name": "ci-secrets",
            "description": "rotated by credrotor",
            "global": True,
        }
        assert client.find_variable_set("ci-secrets")["id"] == created["id"]


class TestVariables:
    def test_upsert_creates_when_absent(self, client, tfc):
        var_id, created = client.upsert_variable(
            "varset-abc123", "ldap_manager_password", "s3cret", "Rotated credential: ldap"
        )
        assert created is True
        attrs = tfc.varsets["varset-abc123"]["vars"][var_id]
        assert attrs == {
            "key": "ldap_manager_password",
            "value": "s3cret",
            "sensitive": True,
            "category": "terraform",
            "description": "Rotated credential: ldap",
        }

    def test_upsert_updates_in_place(self, client, tfc):
        tfc.varsets["varset-abc123"]["vars"]["var-existing"] = {
            "key": "artifactory_access_token",
            "value": "old",
            "sensitive": True,
            "category": "terraform",
        }
        var_id, created = client.upsert_variable("varset-abc123", "artifactory_access_token", "new")

        assert (var_id, created) == ("var-existing", False)
        assert tfc.varsets["varset-abc123"]["vars"]["var-existing"]["value"] == "new"
        assert len(tfc.varsets["varset-abc123"]["vars"]) == 1
        patch = tfc.requests[-1]
        assert patch.method == "PATCH"
        assert patch.url.path.endswith("/varsets/varset-abc123/relationships/vars/var-existing")
        assert json.loads(patch.content)["data"]["attributes"]["sensitive"] is True

    def test_upsert_unknown_varset_raises(self, client):
        with pytest.raises(ControlPlaneError) as exc:
            client.upsert_variable("varset-missing", "k", "v")
        assert exc.value.status == 404


class TestRuns:
    def test_list_workspaces(self, client):
        names = {ws["attributes"]["name"]: ws["id"] for ws in client.list_workspaces()}
        assert names == {"network": "ws-net", "identity": "ws-idp"}

    def test_get_workspace_404_is_not_found(self, client):
        with pytest.raises(NotFound):
            client.get_workspace("ghost")

    def test_create_run_payload(self, client, tfc):
        run_id = client.create_run("ws-net")
        assert run_id.startswith("run-")
        run = tfc.runs[0]
        assert run["relationships"]["workspace"]["data"] == {"type": "workspaces", "id": "ws-net"}
        assert run["attributes"]["message"] == "Automated credential rotation trigger"

    def test_trigger_runs_collects_failures(self, client, tfc):
        run_ids, failures = client.trigger_runs(["network", "ghost", "identity"])

        assert len(run_ids) == 2
        assert [f["workspace"] for f in failures] == ["ghost"]
        assert "not found" in failures[0]["error"]
        assert len(tfc.runs) == 2


class TestBuildClient:
    def test_uses_config(self, tfc):
        cfg = ControlPlaneConfig(api_token="tok-9", organization="acme", variable_set="x")
        with build_client(cfg, transport=tfc.transport) as c:
            c.list_variable_sets()
        assert tfc.requests[0].headers["Authorization"] == "Bearer tok-9"
