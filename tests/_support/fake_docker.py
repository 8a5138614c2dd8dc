"""
In-memory stand-in for ``sandbox_spine.docker.DockerCLI``.

Simulates networks and containers so sandbox components and the
orchestrator can be exercised without a Docker engine. Every call is
recorded, and any method can be made to fail.

Usage in test code::

    from tests._support.fake_docker import FakeDocker

    docker = FakeDocker()
    docker.image_logs["svc:latest"] = "INFO: Server starting on port 3000\\n"
    docker.fail("create_network", stderr="permission denied")
    docker.fail_image("svc:latest", status="exited")
    docker.fail_after_create("svc:latest", stderr="port is already allocated")
"""

from __future__ import annotations

import re
import uuid
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field

from sandbox_spine.errors import DockerCommandError

DB_READY_LOGS = (
    "database system is ready to accept connections\n"
    "database system is shut down\n"
    "database system is ready to accept connections\n"
)
SERVICE_READY_LOGS = "INFO: Server starting on port 3000\n"


@dataclass
class FakeContainer:
    id: str
    name: str
    image: str
    network: str
    publish: tuple[int, ...]
    env: dict[str, str]
    labels: dict[str, str]
    network_alias: str | None
    extra_hosts: list[str]
    logs: str = ""
    status: str = "running"
    host_ports: dict[int, int] = field(default_factory=dict)


class FakeDocker:
    """Records calls and simulates the subset of Docker the sandboxes use."""

    def __init__(self, gateway: str = "172.18.0.1") -> None:
        self.gateway = gateway
        self.calls: list[tuple[str, tuple]] = []
        self.networks: dict[str, dict[str, str]] = {}
        self.network_names: dict[str, str] = {}
        self.containers: dict[str, FakeContainer] = {}
        self.image_logs: dict[str, str] = {}
        self.image_status: dict[str, str] = {}
        self.stray_containers: dict[str, list[str]] = {}
        self.stray_logs: dict[str, str] = {}
        self.removed_networks: list[str] = []
        self.removed_containers: list[str] = []
        self.stopped_containers: list[str] = []
        self._failures: dict[str, DockerCommandError | Exception] = {}
        self._run_errors: dict[str, DockerCommandError] = {}
        self._next_port = 32768

    # ------------------------------------------------------------------
    # Failure injection
    # ------------------------------------------------------------------

    def fail(
        self,
        method: str,
        message: str | None = None,
        *,
        stderr: str = "",
        exc: Exception | None = None,
    ) -> None:
        """Make every later call to ``method`` raise."""
        self._failures[method] = exc or DockerCommandError(
            message or f"Docker command failed (exit 1): {method}\n{stderr}".rstrip(),
            args=[method],
            returncode=1,
            stderr=stderr,
        )

    def fail_image(self, image: str, *, status: str = "exited", logs: str = "") -> None:
        """Containers from ``image`` start but never become ready."""
        self.image_status[image] = status
        self.image_logs[image] = logs

    def fail_after_create(self, image: str, stderr: str) -> None:
        """``docker run`` for ``image`` creates the container, then exits 125."""
        self._run_errors[image] = DockerCommandError(
            f"Docker command failed (exit 125): run {image}\n{stderr}",
            args=["run", image],
            returncode=125,
            stderr=stderr,
        )

    def _record(self, method: str, *args) -> None:
        self.calls.append((method, args))
        failure = self._failures.get(method)
        if failure is not None:
            raise failure

    def call_names(self) -> list[str]:
        return [name for name, _ in self.calls]

    # ------------------------------------------------------------------
    # Networks
    # ------------------------------------------------------------------

    def create_network(self, name: str, labels: Mapping[str, str] | None = None) -> str:
        self._record("create_network", name)
        network_id = uuid.uuid4().hex + uuid.uuid4().hex
        self.networks[network_id] = dict(labels or {})
        self.network_names[network_id] = name
        return network_id

    def remove_network(self, network: str) -> None:
        self._record("remove_network", network)
        if network not in self.networks:
            raise DockerCommandError(
                f"Docker command failed (exit 1): network rm {network}\n"
                f"Error response from daemon: network {network} not found",
                args=["network", "rm", network],
                returncode=1,
                stderr=f"Error response from daemon: network {network} not found",
            )
        del self.networks[network]
        self.removed_networks.append(network)

    def network_gateway(self, network: str) -> str:
        self._record("network_gateway", network)
        return self.gateway

    # ------------------------------------------------------------------
    # Containers
    # ------------------------------------------------------------------

    def run_container(
        self,
        image: str,
        *,
        name: str,
        network: str,
        publish: Iterable[int] = (),
        env: Mapping[str, str] | None = None,
        labels: Mapping[str, str] | None = None,
        network_alias: str | None = None,
        extra_hosts: Iterable[str] = (),
    ) -> str:
        self._record("run_container", image)
        container_id = uuid.uuid4().hex + uuid.uuid4().hex
        ports = tuple(publish)
        host_ports = {}
        for port in ports:
            host_ports[port] = self._next_port
            self._next_port += 1
        self.containers[container_id] = FakeContainer(
            id=container_id,
            name=name,
            image=image,
            network=network,
            publish=ports,
            env=dict(env or {}),
            labels=dict(labels or {}),
            network_alias=network_alias,
            extra_hosts=list(extra_hosts),
            logs=self.image_logs.get(image, ""),
            status=self.image_status.get(image, "running"),
            host_ports=host_ports,
        )
        if image in self._run_errors:
            raise self._run_errors[image]
        return container_id

    def container(self, role: str) -> FakeContainer:
        """The container launched with ``<prefix>.role == role``."""
        for c in self.containers.values():
            if any(k.endswith(".role") and v == role for k, v in c.labels.items()):
                return c
        raise KeyError(role)

    def _get(self, container: str) -> FakeContainer:
        """Look a container up by id or by name, as the engine does."""
        if container in self.containers:
            return self.containers[container]
        for c in self.containers.values():
            if c.name == container:
                return c
        raise DockerCommandError(
            f"Docker command failed (exit 1): Error: No such container: {container}",
            args=["inspect", container],
            returncode=1,
            stderr=f"Error: No such container: {container}",
        )

    def mapped_port(self, container: str, internal_port: int) -> int:
        self._record("mapped_port", container, internal_port)
        return self._get(container).host_ports[internal_port]

    def logs(self, container: str, tail: int | None = None) -> str:
        self._record("logs", container)
        if container in self.stray_logs:
            return self.stray_logs[container]
        return self._get(container).logs

    def container_status(self, container: str) -> str:
        self._record("container_status", container)
        c = self.containers.get(container)
        return c.status if c else "not_found"

    def stop_container(self, container: str, timeout: int = 10) -> None:
        self._record("stop_container", container)
        self._get(container).status = "exited"
        self.stopped_containers.append(container)

    def remove_container(self, container: str) -> None:
        self._record("remove_container", container)
        del self.containers[self._get(container).id]
        self.removed_containers.append(container)

    def list_containers(self, ancestor: str) -> list[str]:
        self._record("list_containers", ancestor)
        own = [c.id for c in self.containers.values() if c.image == ancestor]
        return list(reversed(own)) + list(self.stray_containers.get(ancestor, []))

    def wait_for_log(
        self,
        container: str,
        pattern: str,
        timeout: float,
        occurrences: int = 1,
    ) -> None:
        self._record("wait_for_log", container, pattern)
        c = self._get(container)
        seen = len(re.findall(pattern, c.logs))
        if seen >= occurrences:
            return
        if c.status != "running":
            raise DockerCommandError(
                f"container {container} is {c.status} before logging {pattern!r}",
                args=["logs", container],
            )
        raise DockerCommandError(
            f"container {container} did not log {pattern!r} "
            f"({seen}/{occurrences} occurrences) within {timeout}s",
            args=["logs", container],
        )


__all__ = ["FakeDocker", "FakeContainer", "DB_READY_LOGS", "SERVICE_READY_LOGS"]
