"""Fake Terraform Cloud JSON:API served through httpx.MockTransport."""

from __future__ import annotations

import json

import httpx
import pytest


class FakeControlPlane:
    """Minimal in-memory control plane: one org, variable sets, workspaces, runs."""

    def __init__(self, organization: str = "acme"):
        self.organization = organization
        self.varsets = {"varset-abc123": {"name": "rotated-credentials", "vars": {}}}
        self.workspaces = {"network": "ws-net", "identity": "ws-idp"}
        self.runs: list[dict] = []
        self.requests: list[httpx.Request] = []
        self.fail: dict[tuple[str, str], tuple[int, str]] = {}
        self._next_id = 0

    def _id(self, prefix: str) -> str:
        self._next_id += 1
        return f"{prefix}-{self._next_id}"

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path.removeprefix("/api/v2/")
        forced = self.fail.get((request.method, path))
        if forced is not None:
            return httpx.Response(forced[0], text=forced[1])

        parts = path.split("/")
        body = json.loads(request.content) if request.content else None

        if parts == ["organizations", self.organization, "varsets"] and request.method == "GET":
            data = [
                {"id": vid, "type": "varsets", "attributes": {"name": vs["name"]}}
                for vid, vs in self.varsets.items()
            ]
            return httpx.Response(200, json={"data": data})

        if parts == ["organizations", self.organization, "varsets"] and request.method == "POST":
            varset_id = self._id("varset")
            attrs = body["data"]["attributes"]
            self.varsets[varset_id] = {"name": attrs["name"], "vars": {}, "attributes": attrs}
            return httpx.Response(
                201, json={"data": {"id": varset_id, "type": "varsets", "attributes": attrs}}
            )

        if parts == ["organizations", self.organization, "workspaces"]:
            data = [
                {"id": ws_id, "type": "workspaces", "attributes": {"name": name}}
                for name, ws_id in self.workspaces.items()
            ]
            return httpx.Response(200, json={"data": data})

        if parts[:1] == ["varsets"] and parts[2:4] == ["relationships", "vars"]:
            varset = self.varsets.get(parts[1])
            if varset is None:
                return httpx.Response(404, json={"errors": [{"status": "404"}]})
            if request.method == "GET":
                data = [
                    {"id": var_id, "type": "vars", "attributes": attrs}
                    for var_id, attrs in varset["vars"].items()
                ]
                return httpx.Response(200, json={"data": data})
            if request.method == "POST":
                var_id = self._id("var")
                varset["vars"][var_id] = body["data"]["attributes"]
                return httpx.Response(
                    201, json={"data": {"id": var_id, "type": "vars", **body["data"]}}
                )
            if request.method == "PATCH":
                var_id = parts[4]
                varset["vars"][var_id].update(body["data"]["attributes"])
                return httpx.Response(200, json={"data": {"id": var_id, "type": "vars"}})

        if parts[:3] == ["organizations", self.organization, "workspaces"] and len(parts) == 4:
            ws_id = self.workspaces.get(parts[3])
            if ws_id is None:
                return httpx.Response(404, json={"errors": [{"status": "404"}]})
            return httpx.Response(200, json={"data": {"id": ws_id, "type": "workspaces"}})

        if parts == ["runs"] and request.method == "POST":
            run_id = self._id("run")
            self.runs.append({"id": run_id, **body["data"]})
            return httpx.Response(201, json={"data": {"id": run_id, "type": "runs"}})

        return httpx.Response(404, json={"errors": [{"status": "404", "title": "not found"}]})

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


@pytest.fixture
def tfc():
    return FakeControlPlane()
