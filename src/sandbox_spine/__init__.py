"""sandbox-spine — Ephemeral Docker environments for service integration tests.

sandbox-spine stands up a throwaway PostgreSQL database and the service
under test on an isolated bridge network, applies the declarative schema,
wires the service to the database, and hands test code a base URL and a
connection. When the run ends, everything it created is torn down in
reverse order, even after a partial start.

Key Concepts:
    SandboxConfig: Pydantic model for one run (images, credentials,
        readiness markers, schema path, host alias, conflict patterns).
    SandboxOrchestrator: initialize/cleanup lifecycle; the only object test
        code needs.
    NetworkFabric: Per-run bridge network.
    DatabaseSandbox / ServiceSandbox: One container each, with engine-assigned
        host ports and log-marker readiness.
    SchemaApplier: Runs the schema file through ``psql`` or psycopg2.
    AddressResolver: Gateway first, host alias second.
    DiagnosticCollector: Best-effort container logs when the service fails.

Architecture Decisions:
    - subprocess-only: the ``docker`` CLI, not ``docker-py``.
    - No module-level environment: the pytest plugin's session fixture owns
      the orchestrator.

Tags:
    sandbox, docker, postgresql, integration-testing, orchestration
"""

from sandbox_spine.address import AddressResolver, AddressStrategy, ResolvedAddress
from sandbox_spine.config import (
    DatabaseSandboxConfig,
    SandboxConfig,
    SchemaApplierKind,
    ServiceSandboxConfig,
)
from sandbox_spine.database import ConnectionInfo, DatabaseCredentials, DatabaseSandbox
from sandbox_spine.diagnostics import (
    NONE_FOUND,
    DiagnosticCollector,
    DiagnosticRecord,
    ResolutionStrategy,
)
from sandbox_spine.docker import DockerCLI
from sandbox_spine.errors import (
    CleanupWarning,
    DatabaseStartError,
    DockerCommandError,
    DockerNotFoundError,
    MigrationError,
    NetworkCreationError,
    SandboxError,
    SandboxStateError,
    ServiceStartError,
)
from sandbox_spine.network import Fabric, NetworkFabric
from sandbox_spine.orchestrator import OrchestratorState, SandboxOrchestrator
from sandbox_spine.sandbox import Sandbox, SandboxState
from sandbox_spine.schema import (
    DriverSchemaApplier,
    PsqlSchemaApplier,
    SchemaApplier,
    make_schema_applier,
)
from sandbox_spine.service import ServiceSandbox, ServiceStartConfig

__version__ = "0.1.0"

__all__ = [
    # Config
    "SandboxConfig",
    "DatabaseSandboxConfig",
    "ServiceSandboxConfig",
    "SchemaApplierKind",
    # Orchestration
    "SandboxOrchestrator",
    "OrchestratorState",
    # Components
    "DockerCLI",
    "Fabric",
    "NetworkFabric",
    "Sandbox",
    "SandboxState",
    "DatabaseSandbox",
    "DatabaseCredentials",
    "ConnectionInfo",
    "SchemaApplier",
    "PsqlSchemaApplier",
    "DriverSchemaApplier",
    "make_schema_applier",
    "AddressResolver",
    "AddressStrategy",
    "ResolvedAddress",
    "ServiceSandbox",
    "ServiceStartConfig",
    "DiagnosticCollector",
    "DiagnosticRecord",
    "ResolutionStrategy",
    "NONE_FOUND",
    # Errors
    "SandboxError",
    "DockerNotFoundError",
    "DockerCommandError",
    "NetworkCreationError",
    "DatabaseStartError",
    "MigrationError",
    "ServiceStartError",
    "SandboxStateError",
    "CleanupWarning",
    "__version__",
]
