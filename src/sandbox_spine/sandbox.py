"""Sandbox entity: one externally visible container process."""

from __future__ import annotations

import time
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType


class SandboxState(str, Enum):
    """Lifecycle of a single sandbox."""

    PENDING = "pending"  # Declared, not launched
    STARTING = "starting"  # Container launched, readiness not observed
    RUNNING = "running"  # Ready; host ports known
    FAILED = "failed"  # Launch or readiness failed
    STOPPED = "stopped"  # Torn down


@dataclass
class Sandbox:
    """Runtime record of a database or service sandbox.

    ``host_ports`` is defined if and only if ``state`` is RUNNING; use
    ``mark_running()`` / ``mark_failed()`` / ``mark_stopped()`` rather than
    assigning fields directly.
    """

    role: str
    image: str
    name: str
    internal_ports: tuple[int, ...]
    env: Mapping[str, str] = field(default_factory=dict, repr=False)
    network_alias: str | None = None
    container_id: str | None = None
    state: SandboxState = SandboxState.PENDING
    started_at: float = 0.0
    _host_ports: Mapping[int, int] | None = field(default=None, repr=False)

    @property
    def host_ports(self) -> Mapping[int, int] | None:
        """Internal port → engine-assigned host port, only while RUNNING."""
        return self._host_ports

    def mapped_port(self, internal_port: int) -> int:
        if self._host_ports is None:
            raise LookupError(f"{self.role} sandbox is {self.state.value}, no host ports")
        return self._host_ports[internal_port]

    def mark_starting(self, container_id: str) -> None:
        self.container_id = container_id
        self.state = SandboxState.STARTING
        self.started_at = time.time()

    def mark_running(self, host_ports: Mapping[int, int]) -> None:
        missing = set(self.internal_ports) - set(host_ports)
        if missing:
            raise ValueError(f"no host port for internal port(s) {sorted(missing)}")
        self._host_ports = MappingProxyType(dict(host_ports))
        self.state = SandboxState.RUNNING

    def mark_failed(self) -> None:
        self._host_ports = None
        self.state = SandboxState.FAILED

    def mark_stopped(self) -> None:
        self._host_ports = None
        self.state = SandboxState.STOPPED

    @property
    def short_id(self) -> str:
        return (self.container_id or "")[:12]

    @property
    def uptime_seconds(self) -> float:
        return time.time() - self.started_at if self.started_at else 0.0


__all__ = ["Sandbox", "SandboxState"]
