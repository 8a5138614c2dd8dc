"""SchemaApplier: run the declarative schema file against the database sandbox.

Two interchangeable strategies apply the file verbatim, synchronously and
exactly once:

    PsqlSchemaApplier   — shells out to ``psql -v ON_ERROR_STOP=1 -f <file>``
    DriverSchemaApplier — executes the file through a psycopg2 connection

Advisory server output (``NOTICE: relation ... already exists, skipping``)
is logged and never fails the call. Anything else that goes wrong raises
``MigrationError``. There are no retries: a failing schema is a broken
artifact, not a transient condition.

Tags:
    schema, migration, psql, psycopg2
"""

from __future__ import annotations

import os
import re
import subprocess
from abc import ABC, abstractmethod
from pathlib import Path

import psycopg2

from sandbox_spine.config import SchemaApplierKind
from sandbox_spine.database import ConnectionInfo
from sandbox_spine.errors import MigrationError
from sandbox_spine.logging import get_logger

logger = get_logger(__name__)

ADVISORY_RE = re.compile(r"\b(NOTICE|INFO|DEBUG\d?|LOG)\b")


def split_advisories(output: str) -> tuple[list[str], list[str]]:
    """Split server output into (advisory lines, other lines)."""
    advisory: list[str] = []
    other: list[str] = []
    for line in output.splitlines():
        if not line.strip():
            continue
        (advisory if ADVISORY_RE.search(line) else other).append(line.strip())
    return advisory, other


class SchemaApplier(ABC):
    """Applies one schema file to a running database sandbox."""

    def apply(self, connection_info: ConnectionInfo, schema_source: str | Path) -> None:
        path = Path(schema_source)
        if not path.is_file():
            raise MigrationError(f"Schema file not found: {path}").with_context(
                stage="schema", schema=str(path)
            )
        self._apply(connection_info, path)
        logger.info("schema.applied", schema=str(path), applier=type(self).__name__)

    @abstractmethod
    def _apply(self, connection_info: ConnectionInfo, path: Path) -> None: ...


class PsqlSchemaApplier(SchemaApplier):
    """Executes the schema with the ``psql`` command-line client."""

    def __init__(self, psql_binary: str = "psql") -> None:
        self.psql_binary = psql_binary

    def build_command(self, info: ConnectionInfo, path: Path) -> list[str]:
        return [
            self.psql_binary,
            "-h", info.host,
            "-p", str(info.port),
            "-U", info.credentials.user,
            "-d", info.credentials.database,
            "-v", "ON_ERROR_STOP=1",
            "-f", str(path),
        ]

    def _apply(self, connection_info: ConnectionInfo, path: Path) -> None:
        cmd = self.build_command(connection_info, path)
        env = {**os.environ, "PGPASSWORD": connection_info.credentials.password}
        try:
            proc = subprocess.run(cmd, capture_output=True, text=True, env=env)
        except OSError as exc:
            raise MigrationError(
                f"Could not run {self.psql_binary}: {exc}", cause=exc
            ).with_context(stage="schema", schema=str(path)) from exc

        advisory, other = split_advisories(proc.stderr)
        if proc.stdout.strip():
            logger.debug("schema.output", output=proc.stdout.strip())
        if advisory:
            logger.info("schema.notices", count=len(advisory), notices=advisory)

        if proc.returncode != 0:
            detail = "\n".join(other) or proc.stderr.strip()
            raise MigrationError(
                f"psql exited with code {proc.returncode} applying {path}: {detail}"
            ).with_context(stage="schema", schema=str(path), returncode=proc.returncode)
        if other:
            logger.warning("schema.warnings", warnings=other)


class DriverSchemaApplier(SchemaApplier):
    """Executes the schema through a dedicated psycopg2 connection."""

    def _apply(self, connection_info: ConnectionInfo, path: Path) -> None:
        try:
            sql = path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            raise MigrationError(
                f"Could not read schema {path}: {exc}", cause=exc
            ).with_context(stage="schema", schema=str(path)) from exc
        info = connection_info
        conn = None
        try:
            conn = psycopg2.connect(
                host=info.host,
                port=info.port,
                user=info.credentials.user,
                password=info.credentials.password,
                dbname=info.credentials.database,
                sslmode=info.sslmode,
            )
            conn.autocommit = True
            with conn.cursor() as cur:
                cur.execute(sql)
            if conn.notices:
                logger.info(
                    "schema.notices",
                    count=len(conn.notices),
                    notices=[n.strip() for n in conn.notices],
                )
        except psycopg2.Error as exc:
            raise MigrationError(
                f"Applying {path} failed: {exc}", cause=exc
            ).with_context(stage="schema", schema=str(path)) from exc
        finally:
            if conn is not None:
                conn.close()


def make_schema_applier(kind: SchemaApplierKind | str, psql_binary: str = "psql") -> SchemaApplier:
    """Build the applier selected by configuration."""
    kind = SchemaApplierKind(kind)
    if kind is SchemaApplierKind.DRIVER:
        return DriverSchemaApplier()
    return PsqlSchemaApplier(psql_binary)


__all__ = [
    "SchemaApplier",
    "PsqlSchemaApplier",
    "DriverSchemaApplier",
    "make_schema_applier",
    "split_advisories",
]
