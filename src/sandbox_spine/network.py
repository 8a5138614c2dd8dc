"""NetworkFabric: the isolated bridge network a sandbox run's containers join."""

from __future__ import annotations

import re
from collections.abc import Iterable
from dataclasses import dataclass

from sandbox_spine.docker import DockerCLI
from sandbox_spine.errors import DockerCommandError, NetworkCreationError
from sandbox_spine.logging import get_logger

logger = get_logger(__name__)

_GONE_PATTERNS = (r"(?i)not found", r"(?i)no such network")


@dataclass(frozen=True)
class Fabric:
    """Opaque handle to a created network."""

    id: str
    name: str


class NetworkFabric:
    """Creates and destroys per-run bridge networks.

    Parameters
    ----------
    docker
        Docker CLI wrapper.
    prefix
        Network name prefix; the run id is appended.
    label_prefix
        Prefix for the ``run_id`` / ``role`` labels.
    """

    def __init__(
        self,
        docker: DockerCLI,
        prefix: str = "sandbox-spine",
        label_prefix: str = "sandbox.spine",
        gone_patterns: Iterable[str] = _GONE_PATTERNS,
    ) -> None:
        self.docker = docker
        self.prefix = prefix
        self.label_prefix = label_prefix
        self.gone_patterns = tuple(gone_patterns)

    def create(self, run_id: str) -> Fabric:
        name = f"{self.prefix}-{run_id}"
        labels = {
            f"{self.label_prefix}.run_id": run_id,
            f"{self.label_prefix}.role": "fabric",
        }
        try:
            network_id = self.docker.create_network(name, labels=labels)
        except DockerCommandError as exc:
            raise NetworkCreationError(
                f"Could not create network {name}: {exc.message}", cause=exc
            ).with_context(stage="network") from exc
        fabric = Fabric(id=network_id or name, name=name)
        logger.info("network.created", network=name, network_id=fabric.id[:12])
        return fabric

    def destroy(self, fabric: Fabric) -> None:
        """Remove the network. A network that is already gone is not an error."""
        try:
            self.docker.remove_network(fabric.id)
        except DockerCommandError as exc:
            text = f"{exc.message}\n{exc.stderr}"
            if any(re.search(p, text) for p in self.gone_patterns):
                logger.debug("network.already_removed", network=fabric.name)
                return
            raise
        logger.info("network.removed", network=fabric.name)

    def gateway(self, fabric: Fabric) -> str:
        """Address by which containers on the fabric reach the host ('' if unknown)."""
        return self.docker.network_gateway(fabric.id)


__all__ = ["Fabric", "NetworkFabric"]
