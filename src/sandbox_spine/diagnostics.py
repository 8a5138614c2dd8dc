"""DiagnosticCollector: best-effort container logs for a failed sandbox start.

When a sandbox fails to start or crashes, the most useful artefact is its
own output. Finding *which* container produced it is not always possible
from a structured handle, so the collector walks an ordered chain of
resolution strategies and the first one that produces log text wins:

    ┌──────────────────┬──────────────────────────────────────────────────┐
    │ EXPLICIT_ID      │ container id embedded in the error message       │
    │ LIVE_REFERENCE   │ id held by the live ``Sandbox`` record           │
    │ IMAGE_NEWEST     │ newest container created from the expected image │
    │ IMAGE_OLDEST     │ oldest listed container from that image          │
    └──────────────────┴──────────────────────────────────────────────────┘

If every strategy comes up empty the record says so explicitly
(``NONE_FOUND``). Collection never raises: each strategy's failure is
logged at debug level and the next one is tried, so diagnostics can never
mask the error that triggered them.

EXPLICIT_ID is a string-matching heuristic over platform error text. It
is kept isolated in ``extract_container_id`` so it can be replaced once
errors carry structured identifiers.

Tags:
    diagnostics, logs, troubleshooting, docker
"""

from __future__ import annotations

import re
from collections.abc import Callable, Iterator
from dataclasses import dataclass
from enum import Enum

from rich.console import Console

from sandbox_spine.docker import DockerCLI
from sandbox_spine.logging import get_logger
from sandbox_spine.sandbox import Sandbox

logger = get_logger(__name__)

NONE_FOUND = "<no container logs found>"

_CONTAINER_ID_RE = re.compile(r"\bcontainer ([a-f0-9]{64}|[a-f0-9]{12})\b")


class ResolutionStrategy(str, Enum):
    EXPLICIT_ID = "explicit_id"
    LIVE_REFERENCE = "live_reference"
    IMAGE_NEWEST = "image_newest"
    IMAGE_OLDEST = "image_oldest"
    NONE = "none"


@dataclass(frozen=True)
class DiagnosticRecord:
    """Captured log text and the strategy that located the container."""

    strategy: ResolutionStrategy
    text: str = NONE_FOUND
    container_id: str | None = None

    @property
    def found(self) -> bool:
        return self.strategy is not ResolutionStrategy.NONE


@dataclass
class DiagnosticRequest:
    error: BaseException | None
    image: str
    sandbox: Sandbox | None = None


def _error_chain(error: BaseException | None) -> Iterator[BaseException]:
    seen: set[int] = set()
    while error is not None and id(error) not in seen:
        seen.add(id(error))
        yield error
        error = error.__cause__ or error.__context__


def extract_container_id(error: BaseException | None) -> str | None:
    """Find a ``container <hex id>`` mention anywhere in the error chain."""
    for exc in _error_chain(error):
        texts = [str(exc), getattr(exc, "stderr", "") or ""]
        for text in texts:
            match = _CONTAINER_ID_RE.search(text)
            if match:
                return match.group(1)
    return None


class DiagnosticCollector:
    """Resolves a container for a failed sandbox and fetches its logs.

    Parameters
    ----------
    docker
        Docker CLI wrapper.
    console
        Where ``emit()`` prints. Defaults to stderr.
    """

    def __init__(self, docker: DockerCLI, console: Console | None = None) -> None:
        self.docker = docker
        self.console = console or Console(stderr=True)
        self.strategies: list[tuple[ResolutionStrategy, Callable[[DiagnosticRequest], str | None]]] = [
            (ResolutionStrategy.EXPLICIT_ID, self._explicit_id),
            (ResolutionStrategy.LIVE_REFERENCE, self._live_reference),
            (ResolutionStrategy.IMAGE_NEWEST, self._image_newest),
            (ResolutionStrategy.IMAGE_OLDEST, self._image_oldest),
        ]

    # ------------------------------------------------------------------
    # Strategies
    # ------------------------------------------------------------------

    @staticmethod
    def _explicit_id(request: DiagnosticRequest) -> str | None:
        return extract_container_id(request.error)

    @staticmethod
    def _live_reference(request: DiagnosticRequest) -> str | None:
        return request.sandbox.container_id if request.sandbox is not None else None

    def _image_newest(self, request: DiagnosticRequest) -> str | None:
        ids = self.docker.list_containers(request.image)
        return ids[0] if ids else None

    def _image_oldest(self, request: DiagnosticRequest) -> str | None:
        ids = self.docker.list_containers(request.image)
        return ids[-1] if ids else None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def collect(
        self,
        error: BaseException | None,
        image: str,
        sandbox: Sandbox | None = None,
    ) -> DiagnosticRecord:
        """Run the strategy chain; the first non-empty log wins."""
        request = DiagnosticRequest(error=error, image=image, sandbox=sandbox)
        for strategy, resolve in self.strategies:
            try:
                container_id = resolve(request)
                if not container_id:
                    continue
                text = self.docker.logs(container_id).strip()
            except Exception as exc:
                logger.debug("diagnostics.strategy_failed", strategy=strategy.value, error=str(exc))
                continue
            if text:
                logger.info(
                    "diagnostics.resolved",
                    strategy=strategy.value,
                    container=container_id[:12],
                )
                return DiagnosticRecord(strategy=strategy, text=text, container_id=container_id)

        logger.info("diagnostics.not_found", image=image)
        return DiagnosticRecord(strategy=ResolutionStrategy.NONE)

    def emit(self, record: DiagnosticRecord, hints: list[str] | None = None) -> None:
        """Print a record (and optional troubleshooting hints). Never raises."""
        try:
            if record.found:
                self.console.print(
                    f"\n  [bold]Container logs[/] ({record.strategy.value}, "
                    f"{(record.container_id or '')[:12]}):",
                    highlight=False,
                )
                for line in record.text.splitlines():
                    if line.strip():
                        self.console.print(f"  {line}", markup=False, highlight=False)
            else:
                self.console.print(f"\n  {NONE_FOUND}", markup=False, highlight=False)
            if hints:
                self.console.print("\n  [bold]Troubleshooting:[/]")
                for i, hint in enumerate(hints, 1):
                    self.console.print(f"  {i}. {hint}", markup=False, highlight=False)
        except Exception as exc:
            logger.debug("diagnostics.emit_failed", error=str(exc))


def troubleshooting_hints(image: str, database_url: str | None = None) -> list[str]:
    """Standard next steps for a service image that would not start."""
    name, sep, tag = image.rpartition(":")
    repo = name if sep and "/" not in tag else image
    hints = [f"Verify image exists: docker images | grep {repo}"]
    if database_url:
        hints.append(f'Test image manually: docker run --rm -e DATABASE_URL="{database_url}" {image}')
    else:
        hints.append(f"Test image manually: docker run --rm {image}")
    hints.append(f"Inspect stopped containers: docker ps -a --filter ancestor={image}")
    return hints


__all__ = [
    "NONE_FOUND",
    "ResolutionStrategy",
    "DiagnosticRecord",
    "DiagnosticCollector",
    "extract_container_id",
    "troubleshooting_hints",
]
