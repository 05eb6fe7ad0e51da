"""Typer CLI — one-shot probes from the command line."""

from __future__ import annotations

import asyncio
import logging

import typer
from prometheus_client import CollectorRegistry, generate_latest
from pydantic import ValidationError
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from sslprobe import __version__

app = typer.Typer(
    name="sslprobe",
    help="sslprobe — TLS certificate prober for TCP and STARTTLS endpoints",
    no_args_is_help=True,
)
console = Console()


def _setup_logging(verbose: bool = False, config_level: str | None = None) -> None:
    if verbose:
        level = logging.DEBUG
    elif config_level:
        level = getattr(logging, config_level.upper(), logging.INFO)
    else:
        level = logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


def _load_settings(config: str | None):
    from sslprobe.config import Settings

    try:
        return Settings.load(config)
    except (ValidationError, OSError) as e:
        console.print(f"[red]Invalid configuration:[/] {escape(str(e))}")
        raise typer.Exit(2) from e


def _facts_table(outcome) -> Table:
    table = Table(title=f"Certificates presented by {outcome.target}")
    table.add_column("#", style="dim")
    table.add_column("Subject CN")
    table.add_column("Issuer CN")
    table.add_column("Serial", style="dim")
    table.add_column("Not Before")
    table.add_column("Not After")
    table.add_column("SANs")
    for i, info in enumerate(outcome.facts.chain):
        table.add_row(
            str(i),
            info.common_name,
            info.issuer_common_name,
            info.serial_number,
            info.not_before.isoformat(),
            info.not_after.isoformat(),
            ", ".join(info.dns_names + info.ip_addresses),
        )
    return table


@app.command()
def probe(
    target: str = typer.Argument(help="Target address, host:port"),
    module: str = typer.Option("tcp", "--module", "-m", help="Module name from the config"),
    config: str | None = typer.Option(None, help="Path to config YAML"),
    timeout: float | None = typer.Option(None, help="Probe timeout in seconds"),
    format: str = typer.Option("table", help="Output format: table,prometheus"),  # noqa: A002
    verbose: bool = typer.Option(False, "-v", "--verbose"),
):
    """Probe a target once and report its certificate."""
    from sslprobe.core.prober import probe as run_probe
    from sslprobe.utils.deadline import Deadline

    settings = _load_settings(config)
    _setup_logging(verbose, config_level=settings.log_level)

    if format not in ("table", "prometheus"):
        console.print(f"[red]Unknown format: {format}[/]")
        raise typer.Exit(2)
    try:
        mod = settings.module(module)
    except KeyError:
        console.print(f"[red]Unknown module: {module}[/]")
        raise typer.Exit(2) from None

    registry = CollectorRegistry()

    async def _run():
        deadline = Deadline(timeout or settings.timeout_for(mod))
        return await run_probe(deadline, target, mod, registry)

    outcome = asyncio.run(_run())

    if format == "prometheus":
        typer.echo(generate_latest(registry).decode("utf-8"), nl=False)
    else:
        if outcome.facts is not None:
            console.print(_facts_table(outcome))
            console.print(
                f"  TLS: {outcome.facts.tls_version or '?'} {outcome.facts.cipher}  "
                f"verified: {'yes' if outcome.facts.verified else 'no'}"
            )
        if outcome.success:
            console.print(f"[bold green]OK[/] {target} ({outcome.duration:.2f}s)")
        else:
            console.print(
                f"[bold red]FAILED[/] {target}: [yellow]{outcome.failure.value}[/] "
                f"{escape(str(outcome.error))}"
            )

    if not outcome.success:
        raise typer.Exit(1)


@app.command()
def modules(
    config: str | None = typer.Option(None, help="Path to config YAML"),
):
    """List configured probe modules."""
    from sslprobe.starttls import supported_protocols

    settings = _load_settings(config)
    table = Table(title="sslprobe modules")
    table.add_column("Name", style="cyan")
    table.add_column("Prober")
    table.add_column("STARTTLS")
    table.add_column("Timeout")
    table.add_column("Skip verify")
    table.add_column("Server name")
    for name, mod in sorted(settings.modules.items()):
        table.add_row(
            name,
            mod.prober,
            mod.tcp.starttls.value or "-",
            f"{settings.timeout_for(mod):g}s",
            "yes" if mod.tls_config.insecure_skip_verify else "no",
            mod.tls_config.server_name or "-",
        )
    console.print(table)
    console.print(
        "  STARTTLS protocols: "
        + ", ".join(p.value for p in supported_protocols())
    )


@app.command()
def version():
    """Show version."""
    console.print(f"sslprobe v{__version__}")


def main() -> None:
    app()
