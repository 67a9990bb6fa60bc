"""wpstack CLI - install and operate a Docker Compose WordPress deployment."""

import sys
from datetime import datetime

import click
from rich.panel import Panel
from rich.table import Table

from . import __version__
from .env import DEFAULT_ENV_FILE, load_config
from .errors import DeployError
from .logging_setup import console, setup_logging
from .monitor import Monitor
from .orchestrator import Orchestrator, Stage, restart as restart_deployment
from .provision import check_root
from .services import ContainerSupervisor, ServiceHealth
from .ssl import CertificateManager, CertificateStatus

STAGE_LABELS = {
    Stage.PREFLIGHT: "Performing pre-flight checks",
    Stage.DIRECTORIES_READY: "Directories created",
    Stage.CONFIG_MATERIALIZED: "Configuration files written",
    Stage.DEPENDENCIES_INSTALLED: "Docker and required packages installed",
    Stage.FIREWALL_CONFIGURED: "Firewall configured",
    Stage.CONTAINERS_UP: "Containers are running",
    Stage.CERTIFICATE_READY: "Certificate stage complete",
    Stage.SERVICES_REGISTERED: "Systemd service and aliases registered",
}

HEALTH_STYLES = {
    ServiceHealth.RUNNING: "[green]✓ Running[/green]",
    ServiceHealth.STARTING: "[yellow]⚠ Starting[/yellow]",
    ServiceHealth.FAILED: "[red]✗ Failed[/red]",
    ServiceHealth.UNKNOWN: "[red]✗ Stopped[/red]",
}


def fail(error: DeployError):
    """Print a timestamped error and exit with the error's status."""
    stamp = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
    console.print(f"[dim][{stamp}][/dim] [red]Error:[/red] {error}")
    sys.exit(error.exit_code)


def _load(ctx):
    config = load_config(ctx.obj["env_file"], min_free_bytes=0)
    setup_logging(config.log_file)
    return config


def _print_stage(stage: Stage):
    label = STAGE_LABELS.get(stage)
    if stage == Stage.PREFLIGHT:
        console.print(f"[bold]{label}...[/bold]")
    elif label:
        console.print(f"[green]✓[/green] {label}")


@click.group()
@click.version_option(version=__version__, prog_name="wpstack")
@click.option("--env-file", default=DEFAULT_ENV_FILE, show_default=True,
              help="Env file, searched in the current directory and its parents")
@click.option("--verbose", "-v", is_flag=True, help="Debug logging")
@click.pass_context
def main(ctx, env_file, verbose):
    """wpstack - WordPress with Docker Compose, Nginx and Let's Encrypt."""
    ctx.ensure_object(dict)
    ctx.obj["env_file"] = env_file
    setup_logging(verbose=verbose)


@main.command()
@click.pass_context
def install(ctx):
    """Provision the host and start the deployment."""
    console.print(Panel(
        "[bold cyan]WordPress Docker Installation[/bold cyan]\n\n"
        "Docker Compose, Nginx reverse proxy and Let's Encrypt.\n\n"
        "[dim]Press Ctrl+C to cancel at any time.[/dim]",
        border_style="cyan"
    ))

    orchestrator = Orchestrator(ctx.obj["env_file"], callback=_print_stage)
    try:
        config = orchestrator.run()
    except DeployError as e:
        fail(e)

    scheme = "https" if config.use_ssl else "http"
    console.print()
    console.print(Panel("[bold green]✓ Installation Complete![/bold green]", border_style="green"))
    console.print(f"\n[bold]WordPress:[/bold] {scheme}://{config.domain}/")
    console.print(f"[bold]App Directory:[/bold] {config.app_path}")
    if config.use_ssl:
        console.print("[dim]SSL certificates renew automatically on the 1st and 15th of each month.[/dim]")
    console.print("[dim]Use 'wp-monitor' to check the installation and 'wp-restart' to restart it.[/dim]")


@main.command()
@click.pass_context
def restart(ctx):
    """Restart the containers with the configured profiles."""
    try:
        check_root()
        config = _load(ctx)
        restart_deployment(config)
    except DeployError as e:
        fail(e)
    console.print("[green]✓[/green] Application is ready")


@main.command()
@click.pass_context
def monitor(ctx):
    """Interactive monitor menu."""
    try:
        config = _load(ctx)
    except DeployError as e:
        fail(e)
    Monitor(config).run()


@main.command()
@click.pass_context
def renew(ctx):
    """Renew certificates (run from cron; failures are retried next schedule)."""
    try:
        config = _load(ctx)
    except DeployError as e:
        fail(e)
    if not config.use_ssl:
        console.print("[yellow]SSL is disabled (USE_SSL=false), nothing to renew[/yellow]")
        return
    manager = CertificateManager(config, ContainerSupervisor(config))
    if manager.renew():
        console.print("[green]✓[/green] Certificates renewed")
    else:
        console.print("[yellow]⚠[/yellow] Renewal failed; it will be retried on the next schedule")


@main.command()
@click.pass_context
def status(ctx):
    """Show container and certificate status."""
    try:
        config = _load(ctx)
        supervisor = ContainerSupervisor(config)

        table = Table(title=f"WordPress Status - {config.domain}")
        table.add_column("Service")
        table.add_column("State")
        for name in supervisor.list_services():
            if name == "certbot":
                continue
            table.add_row(name, HEALTH_STYLES[supervisor.service_state(name)])
        console.print(table)

        if config.use_ssl:
            state = CertificateManager(config, supervisor).state()
            if state.status == CertificateStatus.NOT_ISSUED:
                console.print("  🔒 Certificate: [red]not issued[/red]")
            else:
                colour = "green" if state.status == CertificateStatus.ISSUED else "yellow"
                expiry = state.expires_at.strftime("%Y-%m-%d") if state.expires_at else "unknown"
                console.print(f"  🔒 Certificate: [{colour}]{state.status.value}[/{colour}] (expires {expiry})")
    except DeployError as e:
        fail(e)


if __name__ == "__main__":
    main()
