"""pytest fixtures that own a sandbox environment for a test session.

Enable in a ``conftest.py``::

    pytest_plugins = ["sandbox_spine.pytest_plugin"]

and configure through ``SANDBOX_*`` environment variables or ini options::

    [tool.pytest.ini_options]
    sandbox_schema_path = "db/schema.sql"
    sandbox_reset_tables = ["person_attributes", "person", "key_value"]

The session fixture is the single owner of the orchestrator; tests receive
it by injection instead of reaching for a module-level global.
"""

from __future__ import annotations

from collections.abc import Iterator
from typing import Any

import pytest

from sandbox_spine.config import SandboxConfig
from sandbox_spine.orchestrator import SandboxOrchestrator


def pytest_addoption(parser: pytest.Parser) -> None:
    parser.addini("sandbox_schema_path", "Schema file applied to the database sandbox", default=None)
    parser.addini(
        "sandbox_reset_tables",
        "Tables truncated before each test using sandbox_db",
        type="linelist",
        default=[],
    )


@pytest.fixture(scope="session")
def sandbox_config(pytestconfig: pytest.Config) -> SandboxConfig:
    """Effective configuration: environment, then the ini schema path."""
    overrides: dict[str, Any] = {}
    schema_path = pytestconfig.getini("sandbox_schema_path")
    if schema_path:
        overrides["schema_path"] = pytestconfig.rootpath / schema_path
    return SandboxConfig.from_env(**overrides)


@pytest.fixture(scope="session")
def sandbox_environment(sandbox_config: SandboxConfig) -> Iterator[SandboxOrchestrator]:
    """An initialised orchestrator, cleaned up when the session ends."""
    env = SandboxOrchestrator(sandbox_config)
    try:
        env.initialize()
        yield env
    finally:
        env.cleanup()


@pytest.fixture
def sandbox_db(sandbox_environment: SandboxOrchestrator, pytestconfig: pytest.Config) -> Any:
    """The database connection, with ``sandbox_reset_tables`` truncated first."""
    sandbox_environment.reset_database(pytestconfig.getini("sandbox_reset_tables"))
    return sandbox_environment.get_db_client()


@pytest.fixture
def sandbox_service_url(sandbox_environment: SandboxOrchestrator) -> str | None:
    return sandbox_environment.get_service_url()
