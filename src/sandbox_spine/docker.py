"""Docker CLI access for sandbox-spine.

Every platform interaction goes through ``DockerCLI``, a thin wrapper over
the ``docker`` command line invoked via subprocess. No docker SDK: the CLI
works the same against Docker Desktop, Podman, Colima and CI runners.

Key Concepts:
    DockerCLI: ``run()`` plus the handful of typed helpers the sandboxes
        need (networks, containers, mapped ports, logs, listing).
    wait_for_log: Blocks until a regular expression has appeared N times in
        a container's output, the container exits, or the timeout elapses.
    remove_leftover: Force-removes a container by name when its id was never
        recorded (``docker run`` created it, then failed).
    is_conflict: Matches a ``DockerCommandError`` against configured
        "already stopped / already gone" patterns.

Architecture Decisions:
    - subprocess, not docker-py: no native wheels, no API version pinning.
    - Label-based tracking: every resource carries ``<prefix>.run_id`` and
      ``<prefix>.role`` labels.
    - Ephemeral host ports: containers publish internal ports with no host
      port, so the engine assigns one and concurrent runs never collide.
    - Readiness by log polling with exponential backoff (0.25s doubling to
      2s), failing fast when the container exits.

Tags:
    docker, subprocess, containers, network, logs
"""

from __future__ import annotations

import re
import shutil
import subprocess
import time
from collections.abc import Iterable, Mapping

from sandbox_spine.errors import DockerCommandError, DockerNotFoundError
from sandbox_spine.logging import get_logger

logger = get_logger(__name__)

_EXITED_STATES = frozenset({"exited", "dead", "not_found"})
NO_SUCH_CONTAINER = r"(?i)no such container"


def is_conflict(exc: BaseException, patterns: Iterable[str]) -> bool:
    """Return True when ``exc`` reports a resource that is already stopped or gone."""
    if not isinstance(exc, DockerCommandError):
        return False
    haystack = f"{exc.message}\n{exc.stderr}"
    if exc.status_code is not None:
        haystack += f"\nstatus {exc.status_code}"
    return any(re.search(pattern, haystack) for pattern in patterns)


def remove_leftover(docker: DockerCLI, name: str) -> bool:
    """Force-remove the container called ``name`` if it exists.

    Used when ``docker run`` failed after creating the container, so no id
    was ever returned. Returns True when a container was removed.
    """
    try:
        docker.remove_container(name)
    except DockerCommandError as exc:
        if is_conflict(exc, (NO_SUCH_CONTAINER,)):
            return False
        raise
    logger.info("container.leftover_removed", name=name)
    return True


class DockerCLI:
    """Runs ``docker`` commands and parses their output.

    Parameters
    ----------
    command_timeout
        Default timeout in seconds for a single CLI call.
    pull_timeout
        Timeout for ``docker run``, which may pull the image first.
    """

    def __init__(self, command_timeout: int = 60, pull_timeout: int = 600) -> None:
        self.command_timeout = command_timeout
        self.pull_timeout = pull_timeout
        self._docker_cmd = self._find_docker()

    @staticmethod
    def _find_docker() -> str:
        docker = shutil.which("docker")
        if docker is None:
            raise DockerNotFoundError(
                "Docker CLI not found on PATH. Install Docker or add it to PATH.\n"
                "  - Linux:   https://docs.docker.com/engine/install/\n"
                "  - macOS:   https://docs.docker.com/desktop/install/mac-install/\n"
                "  - Windows: https://docs.docker.com/desktop/install/windows-install/"
            )
        return docker

    @staticmethod
    def is_docker_available() -> bool:
        """Check if Docker is installed and the daemon is running."""
        docker = shutil.which("docker")
        if docker is None:
            return False
        try:
            result = subprocess.run([docker, "info"], capture_output=True, timeout=10)
            return result.returncode == 0
        except (subprocess.TimeoutExpired, OSError):
            return False

    # ------------------------------------------------------------------
    # Raw execution
    # ------------------------------------------------------------------

    def run(
        self,
        args: list[str],
        check: bool = True,
        timeout: int | None = None,
    ) -> subprocess.CompletedProcess[str]:
        """Run a docker CLI command."""
        timeout = timeout or self.command_timeout
        cmd = [self._docker_cmd, *args]
        logger.debug("docker.exec", cmd=" ".join(args))
        try:
            result = subprocess.run(cmd, capture_output=True, text=True, timeout=timeout)
        except subprocess.TimeoutExpired as exc:
            raise DockerCommandError(
                f"Docker command timed out after {timeout}s: {' '.join(args)}",
                args=args,
                cause=exc,
            ) from exc
        if check and result.returncode != 0:
            raise DockerCommandError(
                f"Docker command failed (exit {result.returncode}): "
                f"{' '.join(args)}\n{result.stderr.strip()}",
                args=args,
                returncode=result.returncode,
                stderr=result.stderr,
            )
        return result

    # ------------------------------------------------------------------
    # Networks
    # ------------------------------------------------------------------

    def create_network(self, name: str, labels: Mapping[str, str] | None = None) -> str:
        """Create a bridge network and return its id."""
        cmd = ["network", "create", "--driver", "bridge"]
        for key, value in (labels or {}).items():
            cmd.extend(["--label", f"{key}={value}"])
        cmd.append(name)
        return self.run(cmd).stdout.strip()

    def remove_network(self, network: str) -> None:
        self.run(["network", "rm", network])

    def network_gateway(self, network: str) -> str:
        """Return the gateway address of a network's IPAM config ('' if none)."""
        result = self.run(
            ["network", "inspect", network, "--format", "{{range .IPAM.Config}}{{.Gateway}}{{end}}"]
        )
        return result.stdout.strip()

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
        """Start a detached container and return its full id.

        Each port in ``publish`` is exposed on an engine-assigned host port.
        """
        cmd = ["run", "--detach", "--name", name, "--network", network]
        if network_alias:
            cmd.extend(["--network-alias", network_alias])
        for port in publish:
            cmd.extend(["--publish", str(port)])
        for key, value in (env or {}).items():
            cmd.extend(["--env", f"{key}={value}"])
        for key, value in (labels or {}).items():
            cmd.extend(["--label", f"{key}={value}"])
        for host in extra_hosts:
            cmd.extend(["--add-host", host])
        cmd.append(image)
        return self.run(cmd, timeout=self.pull_timeout).stdout.strip()

    def mapped_port(self, container: str, internal_port: int) -> int:
        """Get the host port the engine assigned to ``internal_port``."""
        result = self.run(["port", container, f"{internal_port}/tcp"])
        # One line per binding: "0.0.0.0:32768" / "[::]:32768"
        for line in result.stdout.strip().splitlines():
            port_str = line.strip().rsplit(":", 1)[-1]
            if port_str.isdigit():
                return int(port_str)
        raise DockerCommandError(
            f"container {container} has no host binding for port {internal_port}",
            args=["port", container, str(internal_port)],
        )

    def logs(self, container: str, tail: int | None = None) -> str:
        cmd = ["logs"]
        if tail is not None:
            cmd.extend(["--tail", str(tail)])
        cmd.append(container)
        result = self.run(cmd)
        return result.stdout + result.stderr

    def container_status(self, container: str) -> str:
        """Return the container state (running, exited, ...) or 'not_found'."""
        result = self.run(
            ["inspect", "--format", "{{.State.Status}}", container],
            check=False,
        )
        return result.stdout.strip() if result.returncode == 0 else "not_found"

    def stop_container(self, container: str, timeout: int = 10) -> None:
        self.run(["stop", "--time", str(timeout), container], timeout=timeout + self.command_timeout)

    def remove_container(self, container: str) -> None:
        self.run(["rm", "--force", "--volumes", container])

    def list_containers(self, ancestor: str) -> list[str]:
        """Ids of all containers created from ``ancestor``, newest first."""
        result = self.run(
            ["ps", "--all", "--no-trunc", "--filter", f"ancestor={ancestor}", "--format", "{{.ID}}"]
        )
        return [line.strip() for line in result.stdout.splitlines() if line.strip()]

    # ------------------------------------------------------------------
    # Readiness
    # ------------------------------------------------------------------

    def wait_for_log(
        self,
        container: str,
        pattern: str,
        timeout: float,
        occurrences: int = 1,
    ) -> None:
        """Block until ``pattern`` appears ``occurrences`` times in the container output.

        Raises
        ------
        DockerCommandError
            If the container exits first or the timeout elapses.
        """
        regex = re.compile(pattern)
        deadline = time.monotonic() + timeout
        delay = 0.25
        max_delay = 2.0

        while True:
            seen = len(regex.findall(self.logs(container)))
            if seen >= occurrences:
                logger.debug("docker.log_matched", container=container[:12], occurrences=seen)
                return
            status = self.container_status(container)
            if status in _EXITED_STATES:
                raise DockerCommandError(
                    f"container {container} is {status} before logging {pattern!r}",
                    args=["logs", container],
                )
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise DockerCommandError(
                    f"container {container} did not log {pattern!r} "
                    f"({seen}/{occurrences} occurrences) within {timeout}s",
                    args=["logs", container],
                )
            time.sleep(min(delay, remaining))
            delay = min(delay * 2, max_delay)


__all__ = ["DockerCLI", "is_conflict", "remove_leftover", "NO_SUCH_CONTAINER"]
