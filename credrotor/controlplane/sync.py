"""
Control-Plane Variable Sync — push a rotated value into the variable set
that the next infrastructure apply reads, then optionally queue runs.

Upsert failures propagate (the rotation attempt records them as failed);
an unmapped credential type and per-workspace run failures do not.
"""

from __future__ import annotations

import logging
from collections.abc import Callable

import httpx

from credrotor.config import ControlPlaneConfig
from credrotor.controlplane.client import ControlPlaneClient, build_client
from credrotor.errors import UnmappedType
from credrotor.models import Credential, CredentialType, SyncResult

logger = logging.getLogger(__name__)

VARIABLE_KEYS: dict[CredentialType, str] = {
    CredentialType.ACCESS_TOKEN: "artifactory_access_token",
    CredentialType.SERVICE_ACCOUNT_PASSWORD: 'service_user_passwords["{name}"]',
    CredentialType.DIRECTORY_BIND_PASSWORD: "ldap_manager_password",
    CredentialType.CERTIFICATE: "client_cert_path",
}


def variable_key_for(
    credential: Credential,
    mapping: dict[CredentialType, str] | None = None,
) -> str:
    """Control-plane variable key for a credential. Raises UnmappedType.

    credential.metadata["variable_key"] overrides the per-type default.
    """
    override = credential.metadata.get("variable_key")
    if override:
        return str(override)
    table = VARIABLE_KEYS if mapping is None else mapping
    template = table.get(credential.type)
    if template is None:
        raise UnmappedType(f"No control-plane variable mapping for type {credential.type.value}")
    return template.format(name=credential.name)


class ControlPlaneSync:
    """Upserts a credential's variable and triggers workspace runs."""

    def __init__(
        self,
        config: ControlPlaneConfig,
        *,
        mapping: dict[CredentialType, str] | None = None,
        client_factory: Callable[[], ControlPlaneClient] | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.config = config
        self.mapping = mapping
        self._client_factory = client_factory or (lambda: build_client(config, transport))
        self._varset_id: str | None = None

    @property
    def enabled(self) -> bool:
        return self.config.enabled

    def _resolve_variable_set(self, client: ControlPlaneClient) -> str:
        if self._varset_id is None:
            ident = self.config.variable_set
            if ident.startswith("varset-"):
                self._varset_id = ident
            else:
                self._varset_id = client.find_variable_set(ident)["id"]
                logger.info("Resolved variable set %r to %s", ident, self._varset_id)
        return self._varset_id

    def sync(self, credential: Credential, value: str) -> SyncResult:
        """Upsert the mapped variable with value, then trigger configured runs."""
        try:
            key = variable_key_for(credential, self.mapping)
        except UnmappedType as e:
            logger.warning("Skipping control-plane sync for %s: %s", credential.name, e)
            return SyncResult(skipped_reason=str(e))

        with self._client_factory() as client:
            varset_id = self._resolve_variable_set(client)
            var_id, created = client.upsert_variable(
                varset_id,
                key,
                value,
                description=f"Rotated credential: {credential.name}",
            )
            result = SyncResult(variable_key=key, variable_id=var_id, created=created)
            logger.info(
                "%s control-plane variable %s for %s",
                "Created" if created else "Updated",
                key,
                credential.name,
            )

            if self.config.workspaces:
                run_ids, failures = client.trigger_runs(self.config.workspaces)
                result.run_ids = run_ids
                result.run_failures = failures
                logger.info(
                    "Triggered %d/%d workspace runs", len(run_ids), len(self.config.workspaces)
                )
        return result
