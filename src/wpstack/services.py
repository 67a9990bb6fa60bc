"""Container supervision for the WordPress compose project."""

import enum
import logging
import subprocess
import time
from typing import Iterable, List, Optional, Sequence, Tuple

import yaml

from .errors import LaunchError, LaunchTimeout, RuntimeUnreachable, describe_command

logger = logging.getLogger(__name__)

COMPOSE_PROJECT = "wordpress"

# Bounded health poll: 12 attempts x 5 seconds
HEALTH_ATTEMPTS = 12
HEALTH_INTERVAL = 5


class ContainerProfile(str, enum.Enum):
    CORE = "core"
    WEBSERVER = "webserver"
    SSL = "ssl"


class ServiceHealth(str, enum.Enum):
    UNKNOWN = "unknown"
    STARTING = "starting"
    RUNNING = "running"
    FAILED = "failed"


ALL_PROFILES = tuple(ContainerProfile)

# docker inspect .State.Status -> ServiceHealth
_STATUS_MAP = {
    "running": ServiceHealth.RUNNING,
    "created": ServiceHealth.STARTING,
    "restarting": ServiceHealth.STARTING,
    "paused": ServiceHealth.STARTING,
    "exited": ServiceHealth.FAILED,
    "dead": ServiceHealth.FAILED,
}


def profiles_for(config) -> Tuple[ContainerProfile, ...]:
    """Profiles activated by the deployment's feature flags."""
    profiles = [ContainerProfile.CORE]
    if config.use_webserver:
        profiles.append(ContainerProfile.WEBSERVER)
        if config.use_ssl:
            profiles.append(ContainerProfile.SSL)
    return tuple(profiles)


def _advance(current: ServiceHealth, observed: ServiceHealth) -> ServiceHealth:
    """Apply an observation without moving backwards within a poll session.

    ``failed`` can still become ``running``: the restart policy brings an
    exited container back, and the poll keeps going for exactly that case.
    """
    if current in (ServiceHealth.RUNNING, ServiceHealth.FAILED) and observed != ServiceHealth.RUNNING:
        return current
    if current == ServiceHealth.STARTING and observed == ServiceHealth.UNKNOWN:
        return current
    return observed


class ContainerSupervisor:
    """Drive ``docker compose`` for one deployment."""

    def __init__(self, config):
        self.config = config

    def compose_command(self, *args: str, profiles: Optional[Iterable[ContainerProfile]] = None) -> List[str]:
        cmd = [
            "docker", "compose",
            "-p", COMPOSE_PROJECT,
            "-f", str(self.config.compose_file),
            "--env-file", str(self.config.env_copy_path),
        ]
        for profile in profiles or ():
            cmd += ["--profile", ContainerProfile(profile).value]
        cmd += list(args)
        return cmd

    def _compose(self, *args: str, profiles=None, timeout: Optional[int] = None) -> subprocess.CompletedProcess:
        cmd = self.compose_command(*args, profiles=profiles)
        logger.debug("Running %s", " ".join(cmd))
        try:
            return subprocess.run(
                cmd,
                capture_output=True, text=True,
                cwd=str(self.config.app_path),
                timeout=timeout,
            )
        except FileNotFoundError as e:
            raise RuntimeUnreachable(str(e)) from e

    def down(self) -> None:
        """Stop and remove every container of the project. Never raises."""
        if not self.config.compose_file.exists():
            logger.debug("No compose file at %s, nothing to stop", self.config.compose_file)
            return
        try:
            result = self._compose("down", "--remove-orphans", profiles=ALL_PROFILES)
        except (LaunchError, subprocess.TimeoutExpired, OSError) as e:
            logger.warning("Teardown skipped: %s", e)
            return
        if result.returncode != 0:
            logger.warning("docker compose down exited with %d: %s",
                           result.returncode, result.stderr.strip()[-200:])
        else:
            logger.info("Containers stopped")

    def up(self, profiles: Sequence[ContainerProfile]) -> None:
        """Restart the project from a clean slate with the given profiles."""
        self.down()
        names = ", ".join(ContainerProfile(p).value for p in profiles)
        logger.info("Starting containers (profiles: %s)", names)
        result = self._compose("up", "-d", profiles=profiles)
        if result.returncode != 0:
            raise LaunchError(
                "docker compose up failed: "
                + describe_command(["docker", "compose", "up", "-d"], result.stderr),
                exit_code=result.returncode,
            )

    def restart_service(self, name: str) -> None:
        result = self._compose("restart", name, profiles=self.config.profiles)
        if result.returncode != 0:
            raise LaunchError(
                f"Failed to restart {name}: {result.stderr.strip()[-200:]}",
                exit_code=result.returncode,
            )
        logger.info("Restarted %s", name)

    def run_oneshot(self, name: str, *args: str, timeout: Optional[int] = None) -> subprocess.CompletedProcess:
        """``compose run --rm`` a service that is not long-running (certbot)."""
        return self._compose("run", "--rm", name, *args, profiles=self.config.profiles, timeout=timeout)

    def container_id(self, name: str) -> Optional[str]:
        result = self._compose("ps", "-a", "-q", name, profiles=ALL_PROFILES)
        if result.returncode != 0:
            return None
        ids = result.stdout.split()
        return ids[0] if ids else None

    def service_state(self, name: str) -> ServiceHealth:
        """Runtime-reported state of a compose service."""
        container = self.container_id(name)
        if not container:
            return ServiceHealth.UNKNOWN
        try:
            result = subprocess.run(
                ["docker", "inspect", "--format", "{{.State.Status}}", container],
                capture_output=True, text=True
            )
        except FileNotFoundError as e:
            raise RuntimeUnreachable(str(e)) from e
        if result.returncode != 0:
            return ServiceHealth.UNKNOWN
        return _STATUS_MAP.get(result.stdout.strip(), ServiceHealth.UNKNOWN)

    def is_running(self, name: str) -> bool:
        return self.service_state(name) == ServiceHealth.RUNNING

    def wait_healthy(
        self,
        name: str,
        attempts: int = HEALTH_ATTEMPTS,
        interval: float = HEALTH_INTERVAL,
    ) -> ServiceHealth:
        """Poll until ``name`` is running.

        Args:
            name: compose service name
            attempts: number of state checks before giving up
            interval: seconds slept between checks

        Returns:
            ServiceHealth.RUNNING

        Raises:
            LaunchTimeout: the service was not running after ``attempts`` checks
        """
        health = ServiceHealth.UNKNOWN
        for attempt in range(1, attempts + 1):
            health = _advance(health, self.service_state(name))
            if health == ServiceHealth.RUNNING:
                logger.info("%s container is running", name)
                return health
            if attempt < attempts:
                logger.info("Waiting for %s container (%s) [%d/%d]", name, health.value, attempt, attempts)
                time.sleep(interval)

        raise LaunchTimeout(name, attempts, health)

    def list_services(self) -> List[str]:
        """Services from the rendered compose file active under the current profiles."""
        if not self.config.compose_file.exists():
            return []
        with open(self.config.compose_file) as f:
            data = yaml.safe_load(f) or {}
        active = {p.value for p in self.config.profiles}
        services = []
        for name, spec in (data.get("services") or {}).items():
            if set((spec or {}).get("profiles", [])) & active:
                services.append(name)
        return services
