"""
Shared pytest fixtures for sandbox-spine tests.

This module provides:
- A ``FakeDocker`` pre-loaded with readiness output for the test images
- A run configuration pointing at a temporary schema file
- A patched ``psycopg2.connect`` so no database server is needed
- A recording schema applier
- An orchestrator wired to all of the above

Usage:
    Fixtures are auto-discovered by pytest; request them by name.

    def test_something(orchestrator, fake_docker):
        orchestrator.initialize()
        assert fake_docker.containers
"""

import io
import sys
from pathlib import Path
from typing import Generator
from unittest.mock import MagicMock, patch

import pytest
from rich.console import Console

# Ensure sandbox_spine is importable without installation
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from sandbox_spine.config import SandboxConfig
from sandbox_spine.database import ConnectionInfo
from sandbox_spine.orchestrator import SandboxOrchestrator
from sandbox_spine.schema import SchemaApplier
from tests._support.fake_docker import DB_READY_LOGS, SERVICE_READY_LOGS, FakeDocker

DB_IMAGE = "postgres:test"
SERVICE_IMAGE = "person-service:test"


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Mark every test without an explicit marker as a unit test."""
    for item in items:
        markers = {mark.name for mark in item.iter_markers()}
        if not markers.intersection({"unit", "integration"}):
            item.add_marker(pytest.mark.unit)


class RecordingSchemaApplier(SchemaApplier):
    """Schema applier that records calls instead of running psql."""

    def __init__(self, error: Exception | None = None) -> None:
        self.applied: list[tuple[ConnectionInfo, Path]] = []
        self.error = error

    def _apply(self, connection_info: ConnectionInfo, path: Path) -> None:
        if self.error is not None:
            raise self.error
        self.applied.append((connection_info, path))


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def fake_docker() -> FakeDocker:
    docker = FakeDocker()
    docker.image_logs[DB_IMAGE] = DB_READY_LOGS
    docker.image_logs[SERVICE_IMAGE] = SERVICE_READY_LOGS
    return docker


@pytest.fixture
def schema_file(tmp_path: Path) -> Path:
    path = tmp_path / "schema.sql"
    path.write_text(
        "CREATE TABLE IF NOT EXISTS person (id SERIAL PRIMARY KEY, name TEXT);\n",
        encoding="utf-8",
    )
    return path


@pytest.fixture
def run_config(schema_file: Path) -> SandboxConfig:
    return SandboxConfig(
        run_id="abc123def456",
        schema_path=schema_file,
        database={"image": DB_IMAGE},
        service={"image": SERVICE_IMAGE},
    )


@pytest.fixture
def mock_connect() -> Generator[MagicMock, None, None]:
    """Patch psycopg2.connect; the returned connection is a MagicMock."""
    with patch("sandbox_spine.database.psycopg2.connect") as connect:
        yield connect


@pytest.fixture
def schema_applier() -> RecordingSchemaApplier:
    return RecordingSchemaApplier()


@pytest.fixture
def console_output() -> io.StringIO:
    return io.StringIO()


@pytest.fixture
def orchestrator(
    run_config: SandboxConfig,
    fake_docker: FakeDocker,
    schema_applier: RecordingSchemaApplier,
    mock_connect: MagicMock,
    console_output: io.StringIO,
) -> SandboxOrchestrator:
    return SandboxOrchestrator(
        run_config,
        docker=fake_docker,
        schema_applier=schema_applier,
        console=Console(file=console_output, width=200),
    )
