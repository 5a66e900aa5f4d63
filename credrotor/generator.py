"""
Secret value generation — one strategy per credential type.

Pure and stateless; randomness comes from the `secrets` CSPRNG so two
generations never reproduce each other.

Usage:
    from credrotor.generator import generate_secret, hash_secret

    value = generate_secret(CredentialType.ACCESS_TOKEN)
    digest = hash_secret(value)
"""

from __future__ import annotations

import hashlib
import secrets
import string
from collections.abc import Callable, Mapping

from credrotor.errors import UnsupportedType
from credrotor.models import CredentialType

TOKEN_ALPHABET = string.ascii_letters + string.digits
PASSWORD_ALPHABET = TOKEN_ALPHABET + "!@#$%^&*"

TOKEN_LENGTH = 32
PASSWORD_LENGTH = 16
FINGERPRINT_BYTES = 20

SecretGenerator = Callable[[], str]


def _random_string(alphabet: str, length: int) -> str:
    return "".join(secrets.choice(alphabet) for _ in range(length))


def generate_token() -> str:
    """Alphanumeric access token, fixed length."""
    return _random_string(TOKEN_ALPHABET, TOKEN_LENGTH)


def generate_password() -> str:
    """Alphanumeric + symbol password, fixed length."""
    return _random_string(PASSWORD_ALPHABET, PASSWORD_LENGTH)


def generate_fingerprint() -> str:
    """Certificate-style identifier: colon-delimited uppercase hex byte pairs."""
    return ":".join(f"{b:02X}" for b in secrets.token_bytes(FINGERPRINT_BYTES))


GENERATORS: dict[CredentialType, SecretGenerator] = {
    CredentialType.ACCESS_TOKEN: generate_token,
    CredentialType.SERVICE_ACCOUNT_PASSWORD: generate_password,
    CredentialType.DIRECTORY_BIND_PASSWORD: generate_password,
    CredentialType.CERTIFICATE: generate_fingerprint,
}


def generate_secret(
    credential_type: CredentialType | str,
    strategies: Mapping[CredentialType, SecretGenerator] | None = None,
) -> str:
    """Generate a new secret for the given type. Raises UnsupportedType if none registered."""
    table = GENERATORS if strategies is None else strategies
    try:
        strategy = table[CredentialType(credential_type)]
    except (KeyError, ValueError):
        raise UnsupportedType(f"Unsupported credential type: {credential_type}") from None
    return strategy()


def hash_secret(value: str) -> str:
    """SHA-256 hex digest, used for audit only."""
    return hashlib.sha256(value.encode("utf-8")).hexdigest()
