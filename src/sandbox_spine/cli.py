"""
CLI: ``sandbox-spine`` — bring a sandbox environment up by hand.

Usage::

    sandbox-spine up --schema db/schema.sql            # provision, wait for Enter, tear down
    sandbox-spine up --schema db/schema.sql --json     # print the run summary as JSON
    sandbox-spine check                                # docker + psql availability
    sandbox-spine logs source-person-service:latest    # diagnostics for an image
    sandbox-spine config                               # effective configuration
"""

from __future__ import annotations

import json
import shutil
from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from sandbox_spine.config import SandboxConfig
from sandbox_spine.errors import SandboxError

app = typer.Typer(
    name="sandbox-spine",
    help="sandbox-spine — ephemeral Docker environments for service tests.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)
console = Console()
err_console = Console(stderr=True)


def _version_callback(value: bool) -> None:
    if value:
        from importlib.metadata import version as pkg_version

        try:
            v = pkg_version("sandbox-spine")
        except Exception:
            v = "0.1.0"
        typer.echo(f"sandbox-spine {v}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool | None = typer.Option(  # noqa: UP007
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
    log_level: str = typer.Option("INFO", "--log-level", "-l", help="Log level."),
    json_logs: bool | None = typer.Option(None, "--json-logs/--console-logs", help="Log format."),
) -> None:
    """sandbox-spine CLI — provision and inspect sandbox environments."""
    from sandbox_spine.logging import configure_logging

    configure_logging(level=log_level, json_format=json_logs)


def _build_config(
    schema: Path | None,
    db_image: str | None,
    service_image: str | None,
) -> SandboxConfig:
    config = SandboxConfig.from_env()
    if schema is not None:
        config.schema_path = schema
    if db_image:
        config.database.image = db_image
    if service_image:
        config.service.image = service_image
    return config


# ── up ───────────────────────────────────────────────────────────────────


@app.command()
def up(
    schema: Path | None = typer.Option(None, "--schema", "-s", help="Schema file to apply."),
    db_image: str | None = typer.Option(None, "--db-image", help="Database image."),
    service_image: str | None = typer.Option(None, "--service-image", help="Service image."),
    wait: bool = typer.Option(True, "--wait/--no-wait", help="Keep running until Enter is pressed."),
    json_out: bool = typer.Option(False, "--json", help="Print the run summary as JSON."),
) -> None:
    """Provision network, database, schema and service, then tear down."""
    from sandbox_spine.orchestrator import SandboxOrchestrator

    config = _build_config(schema, db_image, service_image)
    env = SandboxOrchestrator(config, console=err_console)
    try:
        env.initialize()
    except SandboxError as exc:
        err_console.print(f"[red]✗ {type(exc).__name__}:[/] {exc.message}")
        raise typer.Exit(code=1)

    try:
        if json_out:
            typer.echo(json.dumps(env.describe(), indent=2))
        else:
            console.print("[bold green]✓ Sandbox environment ready[/]")
            console.print(f"  run_id:   {env.run_id}")
            console.print(f"  service:  {env.get_service_url()}")
            console.print(f"  database: {env.describe()['database_url']}")
        if wait:
            typer.prompt("Press Enter to tear down", default="", show_default=False)
    finally:
        env.cleanup()
        for warning in env.cleanup_warnings:
            err_console.print(f"[yellow]! {warning}[/]")
        console.print("✓ Sandbox environment cleaned up")


# ── check ────────────────────────────────────────────────────────────────


@app.command()
def check() -> None:
    """Report whether the tools a sandbox run needs are available."""
    from sandbox_spine.docker import DockerCLI

    config = SandboxConfig.from_env()
    docker_ok = DockerCLI.is_docker_available()
    psql_path = shutil.which(config.psql_binary)

    table = Table(title="Sandbox prerequisites")
    table.add_column("Tool", style="cyan")
    table.add_column("Status")
    table.add_column("Detail")
    table.add_row("docker", "[green]ok[/]" if docker_ok else "[red]missing[/]", "daemon reachable" if docker_ok else "")
    table.add_row(
        "psql",
        "[green]ok[/]" if psql_path else "[yellow]missing[/]",
        psql_path or "only needed with schema_applier=psql",
    )
    console.print(table)

    if not docker_ok:
        raise typer.Exit(code=1)


# ── logs ─────────────────────────────────────────────────────────────────


@app.command()
def logs(
    image: str = typer.Argument(..., help="Image whose containers to inspect."),
    container: str | None = typer.Option(None, "--container", "-c", help="Explicit container id."),
) -> None:
    """Run the diagnostic lookup for an image and print what it finds."""
    from sandbox_spine.diagnostics import DiagnosticCollector
    from sandbox_spine.docker import DockerCLI
    from sandbox_spine.sandbox import Sandbox

    try:
        docker = DockerCLI()
    except SandboxError as exc:
        err_console.print(f"[red]✗[/] {exc.message}")
        raise typer.Exit(code=1)

    live = (
        Sandbox(role="service", image=image, name=container, internal_ports=(), container_id=container)
        if container
        else None
    )
    collector = DiagnosticCollector(docker, console=console)
    record = collector.collect(None, image=image, sandbox=live)
    console.print(f"[bold]strategy:[/] {record.strategy.value}")
    collector.emit(record)
    if not record.found:
        raise typer.Exit(code=1)


# ── config ───────────────────────────────────────────────────────────────


@app.command("config")
def show_config() -> None:
    """Print the effective configuration (secrets masked)."""
    typer.echo(json.dumps(SandboxConfig.from_env().masked_dump(), indent=2))


__all__ = ["app"]
