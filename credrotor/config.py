"""
Environment-driven settings for credrotor.

Everything is read once from the process environment into frozen dataclasses.
Database settings use the CREDROTOR_DB_* prefix. Control-plane settings keep
the TFC_* names the rotation jobs have always been deployed with, and sync
stays off until the token, organization and variable set are all present.

Usage:
    from credrotor.config import get_config
    cfg = get_config()
    cfg.db.connect_kwargs          # psycopg2.connect(**...)
    cfg.control_plane.enabled      # False unless TFC_* are set
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field

TFC_API_URL = "https://app.terraform.io/api/v2"


@dataclass(frozen=True)
class DatabaseConfig:
    """PostgreSQL connection parameters and pool sizing."""

    host: str = ""  # empty means the local Unix socket
    port: int = 5432
    name: str = "credrotor"
    user: str = "credrotor"
    password: str = ""
    sslmode: str = ""
    connect_timeout: int = 5
    pool_min: int = 1
    pool_max: int = 10

    @property
    def connect_kwargs(self) -> dict[str, str | int]:
        """Keyword arguments accepted by psycopg2.connect() and the pool."""
        kwargs: dict[str, str | int] = {
            "dbname": self.name,
            "port": self.port,
            "connect_timeout": self.connect_timeout,
        }
        for key in ("host", "user", "password", "sslmode"):
            value = getattr(self, key)
            if value:
                kwargs[key] = value
        return kwargs

    @property
    def dsn(self) -> str:
        return " ".join(f"{k}={v}" for k, v in self.connect_kwargs.items())

    def describe(self) -> str:
        """Password-free location string for log and CLI output."""
        return f"{self.user}@{self.host or 'localhost'}:{self.port}/{self.name}"


@dataclass(frozen=True)
class ControlPlaneConfig:
    """Terraform Cloud (or compatible) control-plane parameters."""

    api_token: str = ""
    organization: str = ""
    variable_set: str = ""  # "varset-..." id, or a variable-set name to look up
    workspaces: tuple[str, ...] = ()
    base_url: str = TFC_API_URL
    timeout_seconds: float = 30.0

    @property
    def enabled(self) -> bool:
        return bool(self.api_token and self.organization and self.variable_set)


@dataclass(frozen=True)
class RotationConfig:
    request_timeout_seconds: float = 30.0
    stale_after_minutes: int = 30


@dataclass(frozen=True)
class Config:
    db: DatabaseConfig = field(default_factory=DatabaseConfig)
    control_plane: ControlPlaneConfig = field(default_factory=ControlPlaneConfig)
    rotation: RotationConfig = field(default_factory=RotationConfig)
    api_port: int = 9120


_config: Config | None = None


def get_config() -> Config:
    """Return the process-wide config, loading it from the environment on first use."""
    global _config
    if _config is None:
        _config = _load_from_env()
    return _config


def reset_config() -> None:
    """Drop the cached config so the next get_config() re-reads the environment."""
    global _config
    _config = None


def _env(key: str, default: str = "") -> str:
    return os.environ.get(key, default)


def _split_list(raw: str) -> tuple[str, ...]:
    return tuple(item.strip() for item in raw.split(",") if item.strip())


def _load_from_env() -> Config:
    timeout = float(_env("CREDROTOR_REQUEST_TIMEOUT", "30"))

    db = DatabaseConfig(
        host=_env("CREDROTOR_DB_HOST"),
        port=int(_env("CREDROTOR_DB_PORT", "5432")),
        name=_env("CREDROTOR_DB_NAME", "credrotor"),
        user=_env("CREDROTOR_DB_USER", _env("USER", "credrotor")),
        password=_env("CREDROTOR_DB_PASSWORD"),
        sslmode=_env("CREDROTOR_DB_SSLMODE"),
        pool_min=int(_env("CREDROTOR_DB_POOL_MIN", "1")),
        pool_max=int(_env("CREDROTOR_DB_POOL_MAX", "10")),
    )
    control_plane = ControlPlaneConfig(
        api_token=_env("TFC_API_TOKEN"),
        organization=_env("TFC_ORGANIZATION"),
        variable_set=_env("TFC_VARIABLE_SET_ID"),
        workspaces=_split_list(_env("TFC_WORKSPACES")),
        base_url=_env("TFC_BASE_URL", TFC_API_URL),
        timeout_seconds=timeout,
    )
    rotation = RotationConfig(
        request_timeout_seconds=timeout,
        stale_after_minutes=int(_env("CREDROTOR_STALE_AFTER_MINUTES", "30")),
    )
    return Config(
        db=db,
        control_plane=control_plane,
        rotation=rotation,
        api_port=int(_env("CREDROTOR_API_PORT", "9120")),
    )
