"""Host provisioning: privileges, packages, Docker, firewall."""

import logging
import os
import subprocess
from typing import Dict, List, Optional

from rich.progress import Progress, SpinnerColumn, TextColumn

from .errors import DependencyInstallError, InsufficientPrivileges, describe_command
from .logging_setup import console

logger = logging.getLogger(__name__)

APT_PACKAGES = ["ca-certificates", "curl", "ufw"]
DOCKER_INSTALLER_URL = "https://get.docker.com"
DOCKER_INSTALLER_PATH = "/tmp/get-docker.sh"
CONFLICTING_SERVICES = ("apache2", "nginx")


def check_root():
    """Ensure running as root."""
    if os.geteuid() != 0:
        raise InsufficientPrivileges()


def check_docker_installed() -> bool:
    """Check if Docker is installed and running."""
    try:
        result = subprocess.run(["docker", "--version"], capture_output=True, text=True)
        if result.returncode != 0:
            return False
        result = subprocess.run(["docker", "info"], capture_output=True, text=True)
        return result.returncode == 0
    except FileNotFoundError:
        return False


def _apt_env() -> Dict[str, str]:
    env = dict(os.environ)
    env["DEBIAN_FRONTEND"] = "noninteractive"
    return env


def _run_step(step: str, cmd: List[str], env: Optional[Dict[str, str]] = None) -> subprocess.CompletedProcess:
    try:
        result = subprocess.run(cmd, capture_output=True, text=True, env=env)
    except FileNotFoundError as e:
        raise DependencyInstallError(step, 127, str(e)) from e
    if result.returncode != 0:
        raise DependencyInstallError(step, result.returncode, describe_command(cmd, result.stderr))
    return result


def install_docker():
    """Install Docker using the official convenience script."""
    with Progress(SpinnerColumn(), TextColumn("Downloading Docker installer..."), console=console) as progress:
        progress.add_task("", total=None)
        _run_step("download docker installer",
                  ["curl", "-fsSL", DOCKER_INSTALLER_URL, "-o", DOCKER_INSTALLER_PATH])

    with Progress(SpinnerColumn(), TextColumn("Installing Docker..."), console=console) as progress:
        progress.add_task("", total=None)
        _run_step("install docker", ["sh", DOCKER_INSTALLER_PATH])

    logger.info("Docker installed successfully")


def install_dependencies():
    """Install system packages and Docker, then verify the compose plugin."""
    env = _apt_env()

    with Progress(SpinnerColumn(), TextColumn("Updating package lists..."), console=console) as progress:
        progress.add_task("", total=None)
        _run_step("apt-get update", ["apt-get", "update", "-qq"], env=env)

    with Progress(SpinnerColumn(), TextColumn("Installing system packages..."), console=console) as progress:
        progress.add_task("", total=None)
        _run_step("apt-get install", ["apt-get", "install", "-y", "-qq", *APT_PACKAGES], env=env)
    logger.info("System packages installed: %s", ", ".join(APT_PACKAGES))

    if check_docker_installed():
        logger.info("Docker is installed")
    else:
        install_docker()

    _run_step("enable docker", ["systemctl", "enable", "--now", "docker"])
    result = _run_step("verify docker compose", ["docker", "compose", "version"])
    logger.info("Docker service started (%s)", result.stdout.strip())


def configure_firewall(config):
    """Open HTTP (and HTTPS with SSL) in ufw; SSH stays reachable."""
    if not config.use_webserver:
        logger.info("Skipping firewall configuration because USE_WEBSERVER is false")
        return

    rules = ["OpenSSH", "80/tcp"]
    if config.use_ssl:
        rules.append("443/tcp")
    for rule in rules:
        _run_step(f"ufw allow {rule}", ["ufw", "allow", rule])
    _run_step("ufw enable", ["ufw", "--force", "enable"])
    logger.info("Firewall configured (%s)", ", ".join(rules))


def stop_conflicting_services(config) -> List[str]:
    """Stop host web servers holding port 80/443. Returns the stopped units."""
    if not config.use_webserver:
        return []
    if not config.stop_conflicting_services:
        logger.info("Leaving host web servers untouched (STOP_CONFLICTING_SERVICES=false)")
        return []

    stopped = []
    for service in CONFLICTING_SERVICES:
        try:
            active = subprocess.run(
                ["systemctl", "is-active", "--quiet", service], capture_output=True
            ).returncode == 0
        except FileNotFoundError:
            logger.debug("systemctl not available, cannot check %s", service)
            return stopped
        if not active:
            continue
        logger.warning("Stopping host service %s to free ports 80/443", service)
        result = subprocess.run(["systemctl", "stop", service], capture_output=True, text=True)
        if result.returncode != 0:
            logger.warning("Could not stop %s: %s", service, result.stderr.strip())
            continue
        stopped.append(service)

    if stopped:
        logger.info("Conflicting services stopped: %s", ", ".join(stopped))
    return stopped
