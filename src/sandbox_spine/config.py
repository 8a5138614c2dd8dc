"""Configuration models for sandbox-spine.

Pydantic v2 models describing one sandbox run: which database image and
credentials to use, which service image to start and how to recognise its
readiness, where the schema lives, and how teardown recognises resources
that are already gone. Every model has a ``from_env()`` factory so CI can
override images and timeouts without touching code.

Key Concepts:
    DatabaseSandboxConfig: Database image, credentials, alias, readiness marker.
    ServiceSandboxConfig: Service image, internal port, readiness marker,
        injected secrets and extra environment.
    SandboxConfig: Top-level run configuration composed of the two above plus
        schema source, host alias, labels and conflict patterns.

Architecture Decisions:
    - Explicit ``from_env()`` rather than pydantic-settings, keeping the
      dependency surface small.
    - Override precedence: kwargs > env vars > field defaults.
    - ``conflict_patterns`` is data, not code: the "already stopped" status a
      container runtime reports differs per platform.

Tags:
    config, settings, pydantic, sandbox, environment
"""

from __future__ import annotations

import os
import uuid
from enum import Enum
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, model_validator

SECRET_MASK = "****"


class SchemaApplierKind(str, Enum):
    """How the schema file is executed against the database sandbox."""

    PSQL = "psql"  # External psql command-line client
    DRIVER = "driver"  # In-process psycopg2 connection


class DatabaseSandboxConfig(BaseModel):
    """Database sandbox settings.

    Example::

        db = DatabaseSandboxConfig(image="postgres:17-alpine", database="orders")
    """

    image: str = Field(default="postgres:18-alpine", description="Database image reference")
    user: str = Field(default="testuser", description="Database user")
    password: str = Field(default="testpass", description="Database password")
    database: str = Field(default="testdb", description="Database name")
    internal_port: int = Field(default=5432, description="Fixed port inside the container")
    network_alias: str = Field(
        default="postgres-db",
        description="Name other sandboxes on the fabric use to reach the database",
    )
    ready_pattern: str = Field(
        default="database system is ready to accept connections",
        description="Regular expression that marks the database as ready",
    )
    ready_occurrences: int = Field(
        default=2,
        ge=1,
        description="Marker occurrences required (PostgreSQL logs it for the init server too)",
    )
    startup_timeout_seconds: int = Field(default=60, description="Startup timeout")
    sslmode: str = Field(default="disable", description="libpq sslmode for connection URLs")


def _default_secrets() -> dict[str, str]:
    return {"ENCRYPTION_KEY_1": "test-encryption-key-12345"}


class ServiceSandboxConfig(BaseModel):
    """Service-under-test sandbox settings."""

    image: str = Field(default="source-person-service:latest", description="Service image reference")
    internal_port: int = Field(default=3000, description="Port the service listens on inside the container")
    ready_pattern: str = Field(
        default=r"INFO: Server starting on port",
        description="Regular expression the service prints once it accepts connections",
    )
    ready_occurrences: int = Field(default=1, ge=1)
    startup_timeout_seconds: int = Field(
        default=100,
        description="Readiness timeout (services retry their database connection at boot)",
    )
    database_url_env: str = Field(
        default="DATABASE_URL",
        description="Environment variable receiving the resolved connection string",
    )
    secrets: dict[str, str] = Field(
        default_factory=_default_secrets,
        description="Secret material injected as environment variables",
    )
    extra_env: dict[str, str] = Field(default_factory=dict, description="Additional environment")
    add_host_gateway: bool = Field(
        default=True,
        description="Map the host alias to the host gateway inside the service container",
    )


class SandboxConfig(BaseModel):
    """Configuration for one sandbox orchestrator run.

    Example::

        config = SandboxConfig.from_env(schema_path="db/schema.sql")
        with SandboxOrchestrator(config) as env:
            requests.get(env.get_service_url() + "/health")
    """

    database: DatabaseSandboxConfig = Field(default_factory=DatabaseSandboxConfig)
    service: ServiceSandboxConfig = Field(default_factory=ServiceSandboxConfig)

    # Schema
    schema_path: Path = Field(default=Path("schema.sql"), description="Declarative schema file")
    schema_applier: SchemaApplierKind = Field(default=SchemaApplierKind.PSQL)
    psql_binary: str = Field(default="psql", description="psql executable name or path")

    # Addressing
    host_alias: str = Field(
        default="host.docker.internal",
        description="Fixed alias used when the fabric gateway cannot be resolved",
    )

    # Docker
    network_prefix: str = Field(default="sandbox-spine", description="Prefix for fabric names")
    label_prefix: str = Field(default="sandbox.spine", description="Prefix for resource labels")
    stop_timeout_seconds: int = Field(default=10, description="Grace period for docker stop")
    docker_command_timeout_seconds: int = Field(
        default=60,
        description="Timeout for individual docker CLI calls (image pulls excluded)",
    )
    conflict_patterns: list[str] = Field(
        default_factory=lambda: [
            r"\b409\b",
            r"(?i)\bconflict\b",
            r"is not running",
            r"(?i)no such container",
            r"(?i)no such network",
            r"(?i)network \S+ not found",
        ],
        description="Regexes recognised as 'resource already stopped' during teardown",
    )

    # Internal
    run_id: str = Field(default="", description="Unique run identifier (auto-generated)")
    verbose: bool = Field(default=False, description="Enable verbose output")

    @model_validator(mode="after")
    def _set_defaults(self) -> SandboxConfig:
        if not self.run_id:
            self.run_id = uuid.uuid4().hex[:12]
        return self

    @classmethod
    def from_env(cls, **overrides: Any) -> SandboxConfig:
        """Create config from SANDBOX_* environment variables."""
        env_map = {
            ("database", "image"): "SANDBOX_DB_IMAGE",
            ("database", "startup_timeout_seconds"): "SANDBOX_DB_TIMEOUT_SECONDS",
            ("service", "image"): "SANDBOX_SERVICE_IMAGE",
            ("service", "internal_port"): "SANDBOX_SERVICE_PORT",
            ("service", "ready_pattern"): "SANDBOX_SERVICE_READY_PATTERN",
            ("service", "startup_timeout_seconds"): "SANDBOX_SERVICE_TIMEOUT_SECONDS",
            (None, "schema_path"): "SANDBOX_SCHEMA_PATH",
            (None, "schema_applier"): "SANDBOX_SCHEMA_APPLIER",
            (None, "host_alias"): "SANDBOX_HOST_ALIAS",
            (None, "network_prefix"): "SANDBOX_NETWORK_PREFIX",
            (None, "verbose"): "SANDBOX_VERBOSE",
        }
        int_fields = {"startup_timeout_seconds", "internal_port"}

        values: dict[str, Any] = {}
        nested: dict[str, dict[str, Any]] = {"database": {}, "service": {}}
        for (section, field_name), env_var in env_map.items():
            env_val = os.environ.get(env_var)
            if env_val is None:
                continue
            if field_name in int_fields:
                parsed: Any = int(env_val)
            elif field_name == "verbose":
                parsed = env_val.lower() in ("true", "1", "yes")
            else:
                parsed = env_val
            if section is None:
                values[field_name] = parsed
            else:
                nested[section][field_name] = parsed

        for section, section_values in nested.items():
            if section_values and section not in overrides:
                values[section] = section_values
        values.update(overrides)
        return cls(**values)

    def masked_dump(self) -> dict[str, Any]:
        """Serialise for display with passwords and secrets masked."""
        data = self.model_dump(mode="json")
        data["database"]["password"] = SECRET_MASK
        data["service"]["secrets"] = {k: SECRET_MASK for k in data["service"]["secrets"]}
        return data


__all__ = [
    "SECRET_MASK",
    "SchemaApplierKind",
    "DatabaseSandboxConfig",
    "ServiceSandboxConfig",
    "SandboxConfig",
]
