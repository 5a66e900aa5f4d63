"""
Control-plane API client — variable sets, variables, workspaces, runs.

Speaks the Terraform Cloud v2 JSON:API. Every request carries the bearer
token and the application/vnd.api+json content type; every request has a
bounded timeout. Non-2xx responses raise ControlPlaneError(status, body),
timeouts raise Timeout.

Usage:
    from credrotor.controlplane.client import ControlPlaneClient

    with ControlPlaneClient(token, "acme") as tfc:
        varset = tfc.find_variable_set("rotated-credentials")
        var_id, created = tfc.upsert_variable(varset["id"], "ldap_manager_password", value)
"""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING

import httpx

from credrotor.errors import ControlPlaneError, NotFound, Timeout

if TYPE_CHECKING:
    from credrotor.config import ControlPlaneConfig

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://app.terraform.io/api/v2"
JSONAPI_CONTENT_TYPE = "application/vnd.api+json"
RUN_MESSAGE = "Automated credential rotation trigger"


class ControlPlaneClient:
    """Synchronous JSON:API client. Use as a context manager or call close()."""

    def __init__(
        self,
        token: str,
        organization: str,
        *,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = 30.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.organization = organization
        self._http = httpx.Client(
            base_url=base_url.rstrip("/") + "/",
            headers={
                "Authorization": f"Bearer {token}",
                "Content-Type": JSONAPI_CONTENT_TYPE,
            },
            timeout=timeout,
            transport=transport,
        )

    def __enter__(self) -> ControlPlaneClient:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    def close(self) -> None:
        self._http.close()

    def _request(self, method: str, endpoint: str, payload: dict | None = None) -> dict:
        content = json.dumps(payload) if payload is not None else None
        try:
            response = self._http.request(method, endpoint.lstrip("/"), content=content)
        except httpx.TimeoutException as e:
            raise Timeout(f"Control plane {method} {endpoint} timed out: {e}") from e

        if not response.is_success:
            raise ControlPlaneError(response.status_code, response.text)
        if not response.content:
            return {}
        return response.json()

    # ─── Variable sets ────────────────────────────────────────────────

    def list_variable_sets(self) -> list[dict]:
        return self._request("GET", f"organizations/{self.organization}/varsets").get("data", [])

    def find_variable_set(self, name: str) -> dict:
        """Locate a variable set by name. Raises NotFound."""
        for varset in self.list_variable_sets():
            if varset.get("attributes", {}).get("name") == name:
                return varset
        raise NotFound(f"Variable set {name!r} not found in organization {self.organization}")

    def create_variable_set(self, name: str, description: str = "", global_: bool = True) -> dict:
        payload = {
            "data": {
                "type": "varsets",
                "attributes": {"name": name, "description": description, "global": global_},
            }
        }
        return self._request("POST", f"organizations/{self.organization}/varsets", payload)["data"]

    # ─── Variables ────────────────────────────────────────────────────

    def list_variables(self, varset_id: str) -> list[dict]:
        return self._request("GET", f"varsets/{varset_id}/relationships/vars").get("data", [])

    def create_variable(
        self, varset_id: str, key: str, value: str, description: str = ""
    ) -> dict:
        payload = {
            "data": {
                "type": "vars",
                "attributes": {
                    "key": key,
                    "value": value,
                    "sensitive": True,
                    "category": "terraform",
                    "description": description,
                },
            }
        }
        return self._request("POST", f"varsets/{varset_id}/relationships/vars", payload)["data"]

    def update_variable(self, varset_id: str, var_id: str, key: str, value: str) -> dict:
        payload = {
            "data": {
                "type": "vars",
                "id": var_id,
                "attributes": {
                    "key": key,
                    "value": value,
                    "sensitive": True,
                    "category": "terraform",
                },
            }
        }
        resp = self._request("PATCH", f"varsets/{varset_id}/relationships/vars/{var_id}", payload)
        return resp.get("data", {"id": var_id})

    def upsert_variable(
        self, varset_id: str, key: str, value: str, description: str = ""
    ) -> tuple[str, bool]:
        """Update the variable in place if the key exists, else create it.

        Returns (variable_id, created).
        """
        existing = next(
            (v for v in self.list_variables(varset_id) if v.get("attributes", {}).get("key") == key),
            None,
        )
        if existing is not None:
            logger.info("Updating control-plane variable %s in %s", key, varset_id)
            self.update_variable(varset_id, existing["id"], key, value)
            return existing["id"], False

        logger.info("Creating control-plane variable %s in %s", key, varset_id)
        created = self.create_variable(varset_id, key, value, description)
        return created["id"], True

    # ─── Workspaces & runs ────────────────────────────────────────────

    def get_workspace(self, name: str) -> dict:
        """Fetch a workspace by name. Raises NotFound on 404."""
        try:
            return self._request("GET", f"organizations/{self.organization}/workspaces/{name}")[
                "data"
            ]
        except ControlPlaneError as e:
            if e.status == 404:
                raise NotFound(f"Workspace {name!r} not found") from e
            raise

    def list_workspaces(self) -> list[dict]:
        return self._request("GET", f"organizations/{self.organization}/workspaces").get("data", [])

    def create_run(self, workspace_id: str, message: str = RUN_MESSAGE) -> str:
        payload = {
            "data": {
                "type": "runs",
                "attributes": {"message": message, "is-destroy": False, "auto-apply": False},
                "relationships": {
                    "workspace": {"data": {"type": "workspaces", "id": workspace_id}}
                },
            }
        }
        return self._request("POST", "runs", payload)["data"]["id"]

    def trigger_runs(
        self, workspace_names: list[str] | tuple[str, ...], message: str = RUN_MESSAGE
    ) -> tuple[list[str], list[dict[str, str]]]:
        """Queue one run per workspace. Failures are collected, not raised.

        Returns (run_ids, failures) where failures are {"workspace", "error"} dicts.
        """
        run_ids: list[str] = []
        failures: list[dict[str, str]] = []
        for name in workspace_names:
            try:
                workspace = self.get_workspace(name)
                run_id = self.create_run(workspace["id"], message)
                run_ids.append(run_id)
                logger.info("Triggered run %s for workspace %s", run_id, name)
            except Exception as e:
                logger.error("Failed to trigger run for workspace %s: %s", name, e)
                failures.append({"workspace": name, "error": str(e)})
        return run_ids, failures


def build_client(cfg: ControlPlaneConfig, transport: httpx.BaseTransport | None = None) -> ControlPlaneClient:
    """Create a client from a ControlPlaneConfig."""
    return ControlPlaneClient(
        cfg.api_token,
        cfg.organization,
        base_url=cfg.base_url,
        timeout=cfg.timeout_seconds,
        transport=transport,
    )
