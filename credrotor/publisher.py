"""
Secret Store Publisher — fan-out of a rotated secret to every active secret manager.

Each registration type has a writer exposing the same call:

    writer.write(path, value, registration)   # raises on failure

Writers are looked up in a table keyed by SecretManagerType. Vendor SDKs are
imported lazily so a deployment only needs the SDKs for the stores it uses:

    cloud_secrets_service    → AWS Secrets Manager (boto3)
    key_value_secret_engine  → HashiCorp Vault KV v2 (hvac)
    cloud_key_vault          → Azure Key Vault (azure-keyvault-secrets)

Publishing is best-effort: one store failing is logged and recorded in the
returned PublishResult list, and the remaining stores are still written.
"""

from __future__ import annotations

import logging
import os
import re
from collections.abc import Callable, Iterable, Mapping
from typing import Any, Protocol

from credrotor.errors import StoreWriteFailure
from credrotor.models import PublishResult, SecretManagerRegistration, SecretManagerType

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0

ClientFactory = Callable[[SecretManagerRegistration], Any]


class SecretStoreWriter(Protocol):
    def write(self, path: str, value: str, registration: SecretManagerRegistration) -> None: ...


class AwsSecretsManagerWriter:
    """Writes to AWS Secrets Manager; creates the secret on first rotation."""

    def __init__(self, client_factory: ClientFactory | None = None, timeout: float = DEFAULT_TIMEOUT):
        self._client_factory = client_factory
        self.timeout = timeout

    def _client(self, registration: SecretManagerRegistration) -> Any:
        if self._client_factory is not None:
            return self._client_factory(registration)

        import boto3
        from botocore.config import Config as BotoConfig

        return boto3.client(
            "secretsmanager",
            region_name=registration.region,
            endpoint_url=registration.endpoint_url or None,
            config=BotoConfig(
                connect_timeout=self.timeout,
                read_timeout=self.timeout,
                retries={"max_attempts": 2},
            ),
        )

    def write(self, path: str, value: str, registration: SecretManagerRegistration) -> None:
        client = self._client(registration)
        try:
            client.put_secret_value(SecretId=path, SecretString=value)
        except client.exceptions.ResourceNotFoundException:
            logger.info("Secret %s not found in %s, creating", path, registration.name)
            client.create_secret(Name=path, SecretString=value)


class VaultKvWriter:
    """Writes to a HashiCorp Vault KV v2 mount as {"value": <secret>}."""

    def __init__(self, client_factory: ClientFactory | None = None, timeout: float = DEFAULT_TIMEOUT):
        self._client_factory = client_factory
        self.timeout = timeout

    def _client(self, registration: SecretManagerRegistration) -> Any:
        if self._client_factory is not None:
            return self._client_factory(registration)

        import hvac

        if not registration.endpoint_url:
            raise StoreWriteFailure(registration.name, "endpoint_url is required for Vault")
        token_env = registration.configuration.get("token_env", "VAULT_TOKEN")
        token = os.environ.get(token_env)
        if not token:
            raise StoreWriteFailure(registration.name, f"{token_env} is not set")
        return hvac.Client(
            url=registration.endpoint_url,
            token=token,
            namespace=registration.configuration.get("namespace"),
            timeout=self.timeout,
        )

    def write(self, path: str, value: str, registration: SecretManagerRegistration) -> None:
        client = self._client(registration)
        mount_point = registration.configuration.get("mount_path", "secret")
        client.secrets.kv.v2.create_or_update_secret(
            path=path,
            secret={"value": value},
            mount_point=mount_point,
        )


def key_vault_secret_name(path: str) -> str:
    """Key Vault names allow only alphanumerics and dashes: secrets/ssl/cert → secrets-ssl-cert."""
    name = re.sub(r"[^0-9A-Za-z-]+", "-", path)
    return re.sub(r"-{2,}", "-", name).strip("-")


class AzureKeyVaultWriter:
    """Writes to Azure Key Vault using DefaultAzureCredential."""

    def __init__(self, client_factory: ClientFactory | None = None, timeout: float = DEFAULT_TIMEOUT):
        self._client_factory = client_factory
        self.timeout = timeout

    def _client(self, registration: SecretManagerRegistration) -> Any:
        if self._client_factory is not None:
            return self._client_factory(registration)

        from azure.identity import DefaultAzureCredential
        from azure.keyvault.secrets import SecretClient

        if not registration.endpoint_url:
            raise StoreWriteFailure(registration.name, "endpoint_url is required for Key Vault")
        return SecretClient(
            vault_url=registration.endpoint_url,
            credential=DefaultAzureCredential(),
            connection_timeout=self.timeout,
            read_timeout=self.timeout,
        )

    def write(self, path: str, value: str, registration: SecretManagerRegistration) -> None:
        client = self._client(registration)
        client.set_secret(key_vault_secret_name(path), value)


def default_writers(timeout: float = DEFAULT_TIMEOUT) -> dict[SecretManagerType, SecretStoreWriter]:
    return {
        SecretManagerType.CLOUD_SECRETS_SERVICE: AwsSecretsManagerWriter(timeout=timeout),
        SecretManagerType.KEY_VALUE_SECRET_ENGINE: VaultKvWriter(timeout=timeout),
        SecretManagerType.CLOUD_KEY_VAULT: AzureKeyVaultWriter(timeout=timeout),
    }


class SecretStorePublisher:
    """Best-effort fan-out of one secret value to many secret managers."""

    def __init__(
        self,
        writers: Mapping[SecretManagerType, SecretStoreWriter] | None = None,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        self.writers = dict(writers) if writers is not None else default_writers(timeout)

    def publish(
        self,
        path: str,
        value: str,
        registrations: Iterable[SecretManagerRegistration],
    ) -> list[PublishResult]:
        """Write value at path to every registration. Never raises."""
        results: list[PublishResult] = []
        for registration in registrations:
            if not registration.is_active:
                continue
            logger.info(
                "Storing secret in %s (%s) at path: %s",
                registration.name,
                registration.type.value,
                path,
            )
            writer = self.writers.get(registration.type)
            if writer is None:
                msg = f"No writer registered for store type {registration.type.value}"
                logger.warning("%s (%s)", msg, registration.name)
                results.append(PublishResult(registration.name, False, msg))
                continue
            try:
                writer.write(path, value, registration)
                results.append(PublishResult(registration.name, True))
            except Exception as e:
                failure = e if isinstance(e, StoreWriteFailure) else StoreWriteFailure(
                    registration.name, str(e)
                )
                logger.warning("Secret store write failed (non-fatal): %s", failure)
                results.append(PublishResult(registration.name, False, str(failure)))

        if not results:
            logger.info("No active secret managers registered; nothing published for %s", path)
        return results
