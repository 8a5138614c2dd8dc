"""SandboxOrchestrator: one initialize/cleanup lifecycle for a test run.

Sequences the sandbox components into a single environment and is the only
object test code talks to:

    initialize()
        NetworkFabric.create          → NETWORK_READY
        DatabaseSandbox.start/connect → DB_READY
        SchemaApplier.apply           → MIGRATED
        AddressResolver.resolve
        ServiceSandbox.start          → READY

    cleanup()  (reverse acquisition order, every step independent)
        close ConnectionHandle → stop service → stop database → destroy fabric

State machine::

    UNINITIALIZED ─▶ NETWORK_READY ─▶ DB_READY ─▶ MIGRATED ─▶ READY
          │                │              │           │          │
          └──── FAILED ◀───┴──────────────┴───────────┘          │
                  │                                              │
                  └──────────────▶ TERMINATED ◀──── cleanup() ───┘

Any stage failure marks the run FAILED, runs a full ``cleanup()`` and
re-raises the original error, so a caller never sees a half-provisioned
environment without teardown having been attempted. Teardown failures are
degraded to ``CleanupWarning`` entries; a recognised "already stopped"
conflict is dropped silently.

Residual risk: if the platform itself fails during teardown, containers or
the network may outlive the run. They carry ``<label_prefix>.run_id``
labels; remove them with
``docker ps -aq --filter label=<label_prefix>.run_id=<run_id> | xargs docker rm -f``.

Example::

    config = SandboxConfig.from_env(schema_path="db/schema.sql")
    with SandboxOrchestrator(config) as env:
        httpx.get(env.get_service_url() + "/health")

Tags:
    orchestrator, lifecycle, sandbox, teardown, testing
"""

from __future__ import annotations

import uuid
from collections.abc import Callable, Iterable
from enum import Enum
from typing import Any

from psycopg2 import sql
from rich.console import Console

from sandbox_spine.address import AddressResolver, ResolvedAddress
from sandbox_spine.config import SandboxConfig
from sandbox_spine.database import DatabaseCredentials, DatabaseSandbox, mask_url
from sandbox_spine.diagnostics import DiagnosticCollector
from sandbox_spine.docker import DockerCLI, is_conflict
from sandbox_spine.errors import CleanupWarning, SandboxStateError
from sandbox_spine.logging import LogContext, get_logger
from sandbox_spine.network import Fabric, NetworkFabric
from sandbox_spine.schema import SchemaApplier, make_schema_applier
from sandbox_spine.service import ServiceSandbox, ServiceStartConfig

logger = get_logger(__name__)


class OrchestratorState(str, Enum):
    UNINITIALIZED = "uninitialized"
    NETWORK_READY = "network_ready"
    DB_READY = "db_ready"
    MIGRATED = "migrated"
    READY = "ready"
    FAILED = "failed"
    TERMINATED = "terminated"


_STARTABLE = frozenset({OrchestratorState.UNINITIALIZED, OrchestratorState.TERMINATED})


class SandboxOrchestrator:
    """Owns the fabric, both sandboxes and the database connection for one run.

    Parameters
    ----------
    config
        Run configuration. Defaults to ``SandboxConfig.from_env()``.
    docker
        Docker CLI wrapper; created on first ``initialize()`` if omitted.
    schema_applier
        Overrides the applier selected by ``config.schema_applier``.
    console
        Where diagnostics are printed. Defaults to stderr.
    """

    def __init__(
        self,
        config: SandboxConfig | None = None,
        *,
        docker: DockerCLI | None = None,
        schema_applier: SchemaApplier | None = None,
        console: Console | None = None,
    ) -> None:
        self.config = config or SandboxConfig.from_env()
        self.run_id = self.config.run_id
        self.state = OrchestratorState.UNINITIALIZED
        self.cleanup_warnings: list[CleanupWarning] = []

        self._docker = docker
        self._schema_applier_override = schema_applier
        self._console = console
        self._runs = 0

        self.network: NetworkFabric | None = None
        self.database: DatabaseSandbox | None = None
        self.schema_applier: SchemaApplier | None = None
        self.resolver: AddressResolver | None = None
        self.collector: DiagnosticCollector | None = None
        self.service: ServiceSandbox | None = None

        self._fabric: Fabric | None = None
        self._db_client: Any = None
        self._database_url: str | None = None
        self._address: ResolvedAddress | None = None
        self._service_url: str | None = None

    # ------------------------------------------------------------------
    # Context manager
    # ------------------------------------------------------------------

    def __enter__(self) -> SandboxOrchestrator:
        self.initialize()
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.cleanup()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def _build_components(self) -> None:
        cfg = self.config
        if self._docker is None:
            self._docker = DockerCLI(command_timeout=cfg.docker_command_timeout_seconds)
        docker = self._docker

        self.network = NetworkFabric(docker, prefix=cfg.network_prefix, label_prefix=cfg.label_prefix)
        self.database = DatabaseSandbox(
            docker,
            cfg.database,
            self.run_id,
            label_prefix=cfg.label_prefix,
            stop_timeout=cfg.stop_timeout_seconds,
        )
        self.schema_applier = self._schema_applier_override or make_schema_applier(
            cfg.schema_applier, cfg.psql_binary
        )
        self.resolver = AddressResolver(self.network, host_alias=cfg.host_alias)
        self.collector = DiagnosticCollector(docker, console=self._console)
        self.service = ServiceSandbox(
            docker,
            cfg.service,
            self.run_id,
            self.collector,
            label_prefix=cfg.label_prefix,
            stop_timeout=cfg.stop_timeout_seconds,
            host_alias=cfg.host_alias,
        )

    def initialize(self) -> None:
        """Provision fabric, database, schema and service, in that order.

        On the first failing stage the run is cleaned up and the original
        error is re-raised.
        """
        if self.state not in _STARTABLE:
            raise SandboxStateError(
                f"initialize() called in state {self.state.value}; call cleanup() first"
            )
        if self._runs:
            self.run_id = uuid.uuid4().hex[:12]
        self._runs += 1
        self.cleanup_warnings = []

        with LogContext(run_id=self.run_id, stage="network") as log_context:
            try:
                self._build_components()
                self._fabric = self.network.create(self.run_id)
                self.state = OrchestratorState.NETWORK_READY

                log_context.update(stage="database")
                self._start_database()
                self.state = OrchestratorState.DB_READY

                log_context.update(stage="schema")
                self.schema_applier.apply(self.database.connection_info, self.config.schema_path)
                self.state = OrchestratorState.MIGRATED

                log_context.update(stage="address")
                self._address = self.resolver.resolve(self._fabric, self.database.connection_info.port)

                log_context.update(stage="service")
                self._start_service(self._address)
                self.state = OrchestratorState.READY
            except BaseException as exc:
                self.state = OrchestratorState.FAILED
                logger.error("environment.failed", error=str(exc))
                self.cleanup()
                raise

            logger.info(
                "environment.ready",
                service_url=self._service_url,
                database_url=mask_url(self._database_url or ""),
            )

    def _start_database(self) -> None:
        db_cfg = self.config.database
        self.database.start(db_cfg.image, DatabaseCredentials.from_config(db_cfg), self._fabric)
        self._database_url = self.database.connection_info.url()
        self._db_client = self.database.connect()

    def _start_service(self, address: ResolvedAddress) -> None:
        svc_cfg = self.config.service
        database_url = self.database.connection_info.url(host=address.host, port=address.port)
        start_config = ServiceStartConfig(
            database_address=address,
            database_url=database_url,
            internal_port=svc_cfg.internal_port,
            secrets=dict(svc_cfg.secrets),
            extra_env=dict(svc_cfg.extra_env),
            masked_database_url=mask_url(database_url),
        )
        self.service.start(svc_cfg.image, self._fabric, start_config)
        self._service_url = self.service.base_url

    def cleanup(self) -> None:
        """Tear down everything this run owns. Idempotent and never raises.

        Callable from any state, including before ``initialize()``.
        """
        steps: list[tuple[str, Callable[[], None]]] = [
            ("db_client", self._close_db_client),
            ("service", self._stop_service),
            ("database", self._stop_database),
            ("network", self._destroy_network),
        ]
        with LogContext(run_id=self.run_id, stage="cleanup"):
            for step, action in steps:
                try:
                    action()
                except Exception as exc:
                    if is_conflict(exc, self.config.conflict_patterns):
                        continue
                    warning = CleanupWarning(step, exc)
                    self.cleanup_warnings.append(warning)
                    logger.warning("cleanup.step_failed", step=step, error=str(exc))

            self._address = None
            self._database_url = None
            if self.state is not OrchestratorState.UNINITIALIZED:
                logger.info("environment.cleaned_up", warnings=len(self.cleanup_warnings))
            self.state = OrchestratorState.TERMINATED

    def _close_db_client(self) -> None:
        client, self._db_client = self._db_client, None
        if client is not None:
            client.close()

    def _stop_service(self) -> None:
        self._service_url = None
        if self.service is not None:
            self.service.stop()

    def _stop_database(self) -> None:
        if self.database is not None:
            self.database.stop()

    def _destroy_network(self) -> None:
        fabric, self._fabric = self._fabric, None
        if fabric is not None and self.network is not None:
            self.network.destroy(fabric)

    # ------------------------------------------------------------------
    # Accessors (meaningful once READY)
    # ------------------------------------------------------------------

    def get_service_url(self) -> str | None:
        """Host-reachable base URL of the service, ``http://localhost:<port>``."""
        return self._service_url

    def get_db_client(self) -> Any:
        """The ConnectionHandle: an autocommit psycopg2 connection."""
        return self._db_client

    def get_database_url(self) -> str | None:
        """Host-reachable connection string of the database sandbox."""
        return self._database_url

    @property
    def resolved_address(self) -> ResolvedAddress | None:
        return self._address

    @property
    def fabric(self) -> Fabric | None:
        return self._fabric

    @property
    def is_ready(self) -> bool:
        return self.state is OrchestratorState.READY

    def reset_database(self, tables: Iterable[str]) -> None:
        """Truncate ``tables`` (RESTART IDENTITY CASCADE) for scenario isolation."""
        names = [t for t in tables if t]
        if not names or not self.is_ready or self._db_client is None:
            return
        statement = sql.SQL("TRUNCATE TABLE {} RESTART IDENTITY CASCADE").format(
            sql.SQL(", ").join(sql.Identifier(*name.split(".")) for name in names)
        )
        with self._db_client.cursor() as cur:
            cur.execute(statement)
        logger.debug("database.reset", tables=names)

    def describe(self) -> dict[str, Any]:
        """JSON-serialisable summary of the run, secrets masked."""
        db = self.database.sandbox if self.database is not None else None
        svc = self.service.sandbox if self.service is not None else None
        address = self._address
        return {
            "run_id": self.run_id,
            "state": self.state.value,
            "service_url": self._service_url,
            "database_url": mask_url(self._database_url) if self._database_url else None,
            "network": self._fabric.name if self._fabric else None,
            "resolved_address": (
                {"host": address.host, "port": address.port, "strategy": address.strategy.value}
                if address
                else None
            ),
            "containers": {
                "database": db.short_id if db else None,
                "service": svc.short_id if svc else None,
            },
            "cleanup_warnings": [str(w) for w in self.cleanup_warnings],
        }


__all__ = ["OrchestratorState", "SandboxOrchestrator"]
