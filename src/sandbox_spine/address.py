"""AddressResolver: how the service container reaches the database.

The database's mapped port is bound in the host's network namespace while
the service container lives inside the fabric, so the service must dial
the host. Two ways to name the host from inside a container, in order:

    1. the fabric's gateway address (reliable on Linux engines)
    2. a fixed host alias such as ``host.docker.internal`` (Docker Desktop,
       or Linux with ``--add-host <alias>:host-gateway``)

The first one that yields a non-empty host wins, paired with the
database's mapped host port.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from sandbox_spine.errors import DockerCommandError
from sandbox_spine.logging import get_logger
from sandbox_spine.network import Fabric, NetworkFabric

logger = get_logger(__name__)


class AddressStrategy(str, Enum):
    GATEWAY = "gateway"
    HOST_ALIAS = "host_alias"


@dataclass(frozen=True)
class ResolvedAddress:
    """Immutable (host, port) computed once per run."""

    host: str
    port: int
    strategy: AddressStrategy

    def __str__(self) -> str:
        return f"{self.host}:{self.port}"


class AddressResolver:
    def __init__(self, network: NetworkFabric, host_alias: str = "host.docker.internal") -> None:
        if not host_alias:
            raise ValueError("host_alias must be non-empty")
        self.network = network
        self.host_alias = host_alias

    def resolve(self, fabric: Fabric, database_port: int) -> ResolvedAddress:
        gateway = ""
        try:
            gateway = self.network.gateway(fabric).strip()
        except (DockerCommandError, OSError) as exc:
            logger.info("address.gateway_unavailable", network=fabric.name, error=str(exc))

        if gateway:
            address = ResolvedAddress(gateway, database_port, AddressStrategy.GATEWAY)
        else:
            address = ResolvedAddress(self.host_alias, database_port, AddressStrategy.HOST_ALIAS)
        logger.info(
            "address.resolved",
            strategy=address.strategy.value,
            host=address.host,
            port=address.port,
        )
        return address


__all__ = ["AddressStrategy", "ResolvedAddress", "AddressResolver"]
