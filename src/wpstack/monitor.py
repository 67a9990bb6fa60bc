"""Interactive monitor menu for a running deployment."""

import logging
import subprocess
from pathlib import Path
from typing import Callable, List, Optional, Tuple

import questionary
from rich.panel import Panel

from .logging_setup import FILE_ONLY, console
from .registrar import ServiceRegistrar
from .services import ContainerSupervisor
from .ssl import CertificateManager, CertificateStatus

logger = logging.getLogger(__name__)

custom_style = questionary.Style([
    ('qmark', 'fg:cyan bold'),
    ('question', 'bold'),
    ('answer', 'fg:cyan bold'),
    ('pointer', 'fg:cyan bold'),
    ('highlighted', 'fg:cyan bold'),
    ('selected', 'fg:cyan'),
])

LOG_TAIL = 50
CONTAINER_LOG_TAIL = 100


def _output(cmd: List[str]) -> Tuple[int, str]:
    try:
        result = subprocess.run(cmd, capture_output=True, text=True)
    except FileNotFoundError as e:
        return 127, str(e)
    return result.returncode, (result.stdout + result.stderr).rstrip()


class Monitor:
    """Status views over the deployment's containers, proxy, certificates and schedules."""

    def __init__(self, config, supervisor: Optional[ContainerSupervisor] = None):
        self.config = config
        self.supervisor = supervisor or ContainerSupervisor(config)
        self.certificates = CertificateManager(config, self.supervisor)
        self.registrar = ServiceRegistrar(config)

    @property
    def actions(self) -> List[Tuple[str, Optional[Callable[[], None]]]]:
        return [
            ("Container status", self.container_status),
            ("Container logs", self.container_logs),
            ("Resource usage", self.resource_usage),
            ("Nginx status", self.nginx_status),
            ("Scheduled tasks (crontab)", self.scheduled_tasks),
            ("SSL certificates status", self.certificate_status),
            ("System logs", self.system_logs),
            ("Systemd service status", self.systemd_status),
            ("Exit", None),
        ]

    def _heading(self, title: str):
        logger.info("=== %s ===", title, extra=FILE_ONLY)
        console.print(f"\n[bold blue]=== {title} ===[/bold blue]")

    def container_status(self):
        self._heading("Containers Status")
        _, out = _output(self.supervisor.compose_command("ps", "-a", profiles=self.config.profiles))
        console.print(out)
        _, ids = _output(self.supervisor.compose_command("ps", "-q", profiles=self.config.profiles))
        active = len(ids.split()) if ids else 0
        logger.info("Active containers: %d", active, extra=FILE_ONLY)
        console.print(f"\n[bold blue]=== Active Containers: {active} ===[/bold blue]")

    def container_logs(self, service: Optional[str] = None):
        services = self.supervisor.list_services()
        if service is None:
            if not services:
                console.print("[yellow]No services defined[/yellow]")
                return
            service = questionary.select(
                "Select a container to view its logs:",
                choices=services,
                style=custom_style
            ).ask()
            if service is None:
                return
        self._heading(f"Logs for container {service}")
        _, out = _output(self.supervisor.compose_command(
            "logs", "--tail", str(CONTAINER_LOG_TAIL), service, profiles=self.config.profiles
        ))
        console.print(out, markup=False)

    def resource_usage(self):
        self._heading("Resource Usage by Container")
        _, out = _output([
            "docker", "stats", "--no-stream",
            "--format", "table {{.Name}}\t{{.CPUPerc}}\t{{.MemUsage}}\t{{.MemPerc}}",
        ])
        console.print(out, markup=False)

    def nginx_status(self) -> bool:
        self._heading("Webserver Status (Nginx)")
        if not self.config.use_webserver:
            console.print("[yellow]Webserver is disabled (USE_WEBSERVER=false)[/yellow]")
            return False
        code, out = _output(self.supervisor.compose_command(
            "exec", "-T", "webserver", "nginx", "-t", profiles=self.config.profiles
        ))
        if code == 0:
            logger.info("Nginx is configured correctly", extra=FILE_ONLY)
            console.print("[green]✓[/green] Nginx is configured correctly")
            return True
        logger.error("Error in Nginx configuration", extra=FILE_ONLY)
        console.print("[red]✗[/red] Error in Nginx configuration")
        console.print(out, markup=False)
        return False

    def scheduled_tasks(self):
        self._heading("Scheduled Tasks (Crontab)")
        code, out = _output(["crontab", "-l"])
        if code != 0 or not out.strip():
            logger.warning("No cron tasks configured", extra=FILE_ONLY)
            console.print("[yellow]No cron tasks configured[/yellow]")
            return
        console.print(out, markup=False)

    def certificate_status(self):
        self._heading("SSL Certificates Status")
        state = self.certificates.state()
        if state.status == CertificateStatus.NOT_ISSUED:
            logger.warning("No SSL certificates found", extra=FILE_ONLY)
            console.print("[yellow]No SSL certificates found[/yellow]")
            return state

        expiry = state.expires_at.strftime("%Y-%m-%d %H:%M:%S %Z") if state.expires_at else "unknown"
        logger.info("Domain: %s, expiration date: %s", state.domain, expiry, extra=FILE_ONLY)
        colour = "green" if state.status == CertificateStatus.ISSUED else "yellow"
        console.print(f"Domain: {state.domain}")
        console.print(f"Expiration date: [{colour}]{expiry}[/{colour}] ({state.status.value})")
        scheduled = self.certificates.renewal_scheduled()
        console.print(f"Auto-renewal: {'[green]scheduled[/green]' if scheduled else '[red]not scheduled[/red]'}")
        return state

    def system_logs(self, choice: Optional[str] = None):
        self._heading("Latest System Logs")
        choices = {
            "WordPress logs": "wordpress",
            "MySQL logs": "db",
            "Nginx logs": "webserver",
            "SSL renewal logs": None,
        }
        if choice is None:
            choice = questionary.select(
                "Select log type:", choices=list(choices), style=custom_style
            ).ask()
            if choice is None:
                return
        if choice not in choices:
            console.print("[red]Invalid option[/red]")
            return

        service = choices[choice]
        if service is not None:
            _, out = _output(self.supervisor.compose_command(
                "logs", "--tail", str(LOG_TAIL), service, profiles=self.config.profiles
            ))
            console.print(out, markup=False)
            return

        renew_log = Path(self.config.renew_log_file)
        if not renew_log.exists():
            logger.warning("SSL renewal log file not found", extra=FILE_ONLY)
            console.print("[yellow]SSL renewal log file not found[/yellow]")
            return
        lines = renew_log.read_text().splitlines()[-LOG_TAIL:]
        console.print("\n".join(lines), markup=False)

    def systemd_status(self):
        self._heading("Systemd Service Status")
        console.print(self.registrar.service_status(), markup=False)

    def run(self):
        """Main loop: show the menu until Exit or Ctrl+C."""
        labels = [f"{i}) {label}" for i, (label, _) in enumerate(self.actions, start=1)]
        handlers = dict(zip(labels, (action for _, action in self.actions)))

        while True:
            console.clear()
            console.print(Panel("[bold cyan]WordPress Docker Monitor[/bold cyan]", border_style="cyan"))
            selection = questionary.select(
                "Select an option:", choices=labels, style=custom_style
            ).ask()

            handler = handlers.get(selection)
            if handler is None:
                console.print("[green]Goodbye![/green]")
                return

            handler()
            questionary.press_any_key_to_continue("Press any key to continue...").ask()
