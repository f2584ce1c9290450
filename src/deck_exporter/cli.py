"""
Steam Deck Node Exporter CLI - Install and manage node_exporter on a Steam Deck
"""

import sys
from pathlib import Path

import click
import yaml
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from . import __version__
from .compose import write_stack
from .config import InstallerConfig
from .exporters import check_metrics_endpoint, installed_binary, list_backups
from .logging_setup import configure_logging
from .provisioner import run_install
from .service import ServiceManager

console = Console()


def load_config() -> InstallerConfig:
    """Load the installer config, exiting with a readable error if it is broken."""
    try:
        return InstallerConfig.load()
    except (ValueError, TypeError, yaml.YAMLError) as e:
        console.print(f"[red]Error:[/red] Invalid configuration: {e}")
        sys.exit(1)


@click.group(invoke_without_command=True)
@click.version_option(version=__version__, prog_name="deck-exporter")
@click.pass_context
def main(ctx: click.Context):
    """
    Steam Deck Node Exporter - Prometheus metrics for your Steam Deck

    Running without a command performs the install.

    \b
    QUICK START:

        deck-exporter                    # Install and start node_exporter
        deck-exporter status             # Check service status
        deck-exporter generate-compose   # Prometheus + Grafana stack files

    \b
    Settings can be overridden with a YAML file named by $DECK_EXPORTER_CONFIG.
    """
    if ctx.invoked_subcommand is None:
        ctx.invoke(install)


@click.command()
def install():
    """
    Download, verify and install node_exporter, then start its user service.

    Takes no options: paths, version and limits come from the configuration.
    Any previous installation is kept as <target>_backup_<timestamp>.
    """
    config = load_config()
    configure_logging(config.log_file)

    console.print(Panel.fit(
        f"[bold cyan]Installing Prometheus Node Exporter {config.node_exporter_version}[/bold cyan]",
        border_style="cyan"
    ))

    exit_code = run_install(config)
    if exit_code != 0:
        sys.exit(exit_code)


@click.command()
def status():
    """
    Show node_exporter service status and installation details.
    """
    config = load_config()
    service = ServiceManager(config)

    console.print(Panel.fit(
        "[bold cyan]Steam Deck Node Exporter Status[/bold cyan]",
        border_style="cyan"
    ))

    table = Table(show_header=False, box=None)
    table.add_column("Key", style="dim")
    table.add_column("Value")

    table.add_row("Version", config.node_exporter_version)
    table.add_row("Install Dir", config.target_dir)
    table.add_row("Binary", "✓" if installed_binary(config) else "✗")
    table.add_row("Backups", str(len(list_backups(config))))
    table.add_row("Unit File", "✓" if service.installed_unit.exists() else "✗")

    state = service.state()
    if state == "active":
        state_str = "[green]✓ Running[/green]"
    elif state == "inactive":
        state_str = "[yellow]○ Stopped[/yellow]"
    else:
        state_str = f"[dim]{state}[/dim]"
    table.add_row("Service", f"{service.unit_name} {state_str}")

    endpoint = check_metrics_endpoint(config)
    if endpoint["running"]:
        table.add_row("Metrics", f"[green]{endpoint['url']}[/green]")
    else:
        table.add_row("Metrics", f"[red]not responding[/red] [dim]{endpoint['url']}[/dim]")

    console.print(table)


@click.command()
def uninstall():
    """
    Stop and disable the user service and remove its unit file.

    The install directory and any backups are left in place.
    """
    config = load_config()
    service = ServiceManager(config)

    warnings = service.uninstall()
    if warnings:
        for warning in warnings:
            console.print(f"[yellow]⚠[/yellow] {warning}")
        console.print(f"[red]Error:[/red] {service.unit_name} was not fully removed")
        sys.exit(1)

    console.print(f"[green]✓[/green] Removed {service.unit_name}")
    console.print(f"  Files kept in: [cyan]{config.target_dir}[/cyan]")


@click.command("generate-compose")
@click.option("--output-dir", "-o", default=".", type=click.Path(file_okay=False), help="Output directory")
@click.option("--target", "-t", "targets", multiple=True, help="node_exporter scrape target (host:port), repeatable")
@click.option("--grafana-user", default="admin", help="Grafana admin user")
@click.option("--grafana-password", default="grafana", help="Grafana admin password")
def generate_compose(output_dir: str, targets, grafana_user: str, grafana_password: str):
    """
    Generate docker-compose.yml and prometheus.yml for a monitoring host.

    \b
    EXAMPLE:
        deck-exporter generate-compose -o monitoring -t steamdeck.local:9100
    """
    try:
        written = write_stack(
            Path(output_dir),
            targets=list(targets) or None,
            grafana_user=grafana_user,
            grafana_password=grafana_password,
        )
    except ValueError as e:
        console.print(f"[red]Error:[/red] {e}")
        sys.exit(1)

    for path in written:
        console.print(f"[green]✓[/green] Generated: {path}")
    console.print(f"  Start with: [cyan]docker compose -f {written[0]} up -d[/cyan]")


# Register commands
main.add_command(install)
main.add_command(status)
main.add_command(uninstall)
main.add_command(generate_compose)


if __name__ == "__main__":
    main()
