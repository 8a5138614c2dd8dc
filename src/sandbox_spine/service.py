"""ServiceSandbox: the service-under-test container.

The service is launched on the fabric with its internal port published on
an engine-assigned host port and the resolved database URL plus secret
material injected as environment variables. It counts as ready only once
its documented readiness marker appears in its output; there is no HTTP
health polling. Until then ``base_url`` stays ``None``.

A failed launch or readiness wait is never returned half-initialised:
diagnostics are collected and printed first, then ``ServiceStartError``
is raised with the captured log text attached.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field

from sandbox_spine.address import ResolvedAddress
from sandbox_spine.config import ServiceSandboxConfig
from sandbox_spine.diagnostics import DiagnosticCollector, troubleshooting_hints
from sandbox_spine.docker import DockerCLI, remove_leftover
from sandbox_spine.errors import DockerCommandError, ServiceStartError
from sandbox_spine.logging import get_logger
from sandbox_spine.network import Fabric
from sandbox_spine.sandbox import Sandbox

logger = get_logger(__name__)


@dataclass(frozen=True)
class ServiceStartConfig:
    """Per-run inputs for starting the service sandbox."""

    database_address: ResolvedAddress
    database_url: str
    internal_port: int
    secrets: Mapping[str, str] = field(default_factory=dict)
    extra_env: Mapping[str, str] = field(default_factory=dict)
    masked_database_url: str | None = None


class ServiceSandbox:
    """Starts and stops the service-under-test container.

    Parameters
    ----------
    docker
        Docker CLI wrapper.
    config
        Readiness marker, timeout and environment naming.
    run_id
        Run identifier used for the container name and labels.
    collector
        Diagnostic collector consulted when start fails.
    host_alias
        Alias mapped to the host gateway when ``add_host_gateway`` is set.
    """

    def __init__(
        self,
        docker: DockerCLI,
        config: ServiceSandboxConfig,
        run_id: str,
        collector: DiagnosticCollector,
        label_prefix: str = "sandbox.spine",
        stop_timeout: int = 10,
        host_alias: str = "host.docker.internal",
    ) -> None:
        self.docker = docker
        self.config = config
        self.run_id = run_id
        self.collector = collector
        self.label_prefix = label_prefix
        self.stop_timeout = stop_timeout
        self.host_alias = host_alias
        self.sandbox: Sandbox | None = None
        self.base_url: str | None = None
        self.database_address: ResolvedAddress | None = None

    def build_env(self, start_config: ServiceStartConfig) -> dict[str, str]:
        return {
            self.config.database_url_env: start_config.database_url,
            **start_config.secrets,
            **start_config.extra_env,
        }

    def start(self, image: str, fabric: Fabric, config: ServiceStartConfig) -> Sandbox:
        """Launch the service and block until its readiness marker is observed.

        Raises
        ------
        ServiceStartError
            If the launch fails or the marker does not appear in time. The
            error carries the diagnostic log text.
        """
        internal_port = config.internal_port
        sandbox = Sandbox(
            role="service",
            image=image,
            name=f"sandbox-svc-{self.run_id}",
            internal_ports=(internal_port,),
            env=self.build_env(config),
        )
        self.sandbox = sandbox
        self.database_address = config.database_address

        extra_hosts = [f"{self.host_alias}:host-gateway"] if self.config.add_host_gateway else []
        logger.info(
            "service.starting",
            image=image,
            database=config.masked_database_url or str(config.database_address),
        )

        try:
            container_id = self.docker.run_container(
                image,
                name=sandbox.name,
                network=fabric.id,
                publish=sandbox.internal_ports,
                env=sandbox.env,
                labels={
                    f"{self.label_prefix}.run_id": self.run_id,
                    f"{self.label_prefix}.role": sandbox.role,
                },
                extra_hosts=extra_hosts,
            )
            sandbox.mark_starting(container_id)
            self.docker.wait_for_log(
                container_id,
                self.config.ready_pattern,
                timeout=self.config.startup_timeout_seconds,
                occurrences=self.config.ready_occurrences,
            )
            mapped = self.docker.mapped_port(container_id, internal_port)
        except DockerCommandError as exc:
            sandbox.mark_failed()
            logger.error("service.start_failed", image=image, error=exc.message)
            record = self.collector.collect(
                exc,
                image=image,
                sandbox=sandbox if sandbox.container_id else None,
            )
            self.collector.emit(record, troubleshooting_hints(image, config.masked_database_url))
            raise ServiceStartError(
                f"Service sandbox {image} failed to start: {exc.message}",
                diagnostics=record.text,
                record=record,
                cause=exc,
            ).with_context(
                stage="service",
                image=image,
                container=sandbox.short_id or None,
                strategy=record.strategy.value,
            ) from exc

        sandbox.mark_running({internal_port: mapped})
        self.base_url = f"http://localhost:{mapped}"
        logger.info("service.ready", container=sandbox.short_id, url=self.base_url)
        return sandbox

    def stop(self) -> None:
        """Stop and remove the container, if one was launched.

        A launch that failed before returning an id is cleaned up by name.
        """
        sandbox = self.sandbox
        if sandbox is None:
            return
        self.sandbox = None
        self.base_url = None
        self.database_address = None
        try:
            if sandbox.container_id:
                try:
                    self.docker.stop_container(sandbox.container_id, timeout=self.stop_timeout)
                finally:
                    self.docker.remove_container(sandbox.container_id)
            else:
                remove_leftover(self.docker, sandbox.name)
        finally:
            sandbox.mark_stopped()
        logger.info("service.stopped", container=sandbox.short_id)


__all__ = ["ServiceStartConfig", "ServiceSandbox"]
