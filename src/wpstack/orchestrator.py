"""Installation sequence for a WordPress deployment.

Stages run strictly in order::

    preflight -> directories_ready -> config_materialized -> dependencies_installed
    -> firewall_configured -> containers_up -> certificate_ready
    -> services_registered -> done

Any failure moves to ``failed``, tears the containers down (best effort) and
re-raises it as a ``DeployError``. There is no resume: re-running from preflight
is the recovery path, and every stage is safe to repeat.
"""

import enum
import errno
import fcntl
import logging
import os
from contextlib import ExitStack, contextmanager
from pathlib import Path
from typing import Callable, List, Optional

from .config import (
    CONTROL_COMMANDS,
    render_compose_file,
    render_control_script,
    render_env_file,
    write_file,
    write_proxy_config,
    write_renewal_script,
)
from .env import DEFAULT_ENV_FILE, DEFAULT_MIN_FREE_BYTES, DeploymentConfig, load_config
from .errors import ConcurrentRunError, DeployError, UnexpectedError
from .logging_setup import FILE_ONLY, setup_logging
from .provision import check_root, configure_firewall, install_dependencies, stop_conflicting_services
from .registrar import ServiceRegistrar
from .services import ContainerSupervisor
from .ssl import CertificateManager

logger = logging.getLogger(__name__)

LOCK_PATH = Path("/run/lock/wpstack.lock")


class Stage(str, enum.Enum):
    PREFLIGHT = "preflight"
    DIRECTORIES_READY = "directories_ready"
    CONFIG_MATERIALIZED = "config_materialized"
    DEPENDENCIES_INSTALLED = "dependencies_installed"
    FIREWALL_CONFIGURED = "firewall_configured"
    CONTAINERS_UP = "containers_up"
    CERTIFICATE_READY = "certificate_ready"
    SERVICES_REGISTERED = "services_registered"
    DONE = "done"
    FAILED = "failed"


@contextmanager
def run_lock(path: Optional[Path] = None):
    """Exclusive, non-blocking lock held for the duration of a run."""
    path = Path(path or LOCK_PATH)
    path.parent.mkdir(parents=True, exist_ok=True)
    fd = os.open(str(path), os.O_RDWR | os.O_CREAT, 0o600)
    try:
        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except OSError as e:
            if e.errno in (errno.EAGAIN, errno.EACCES):
                raise ConcurrentRunError(path) from e
            raise
        os.ftruncate(fd, 0)
        os.write(fd, str(os.getpid()).encode())
        try:
            yield path
        finally:
            fcntl.flock(fd, fcntl.LOCK_UN)
    finally:
        os.close(fd)


def create_directories(config: DeploymentConfig) -> None:
    """Create the persisted layout under APP_PATH."""
    config.app_path.mkdir(parents=True, exist_ok=True)
    os.chmod(config.app_path, 0o755)
    for directory in (config.nginx_dir, config.wp_data_dir, config.certbot_conf_dir, config.certbot_www_dir):
        directory.mkdir(parents=True, exist_ok=True)
        os.chmod(directory, 0o755)
    os.chmod(config.certbot_conf_dir.parent, 0o755)
    config.db_data_dir.mkdir(parents=True, exist_ok=True)
    os.chmod(config.db_data_dir, 0o700)


def materialize_config(config: DeploymentConfig) -> None:
    """Write the env copy, compose file, proxy config and control scripts."""
    write_file(config.env_copy_path, render_env_file(config), 0o600)
    write_file(config.compose_file, render_compose_file(config), 0o644)
    if config.use_webserver:
        # HTTP-only until a certificate exists
        write_proxy_config(config, tls_enabled=False)
    if config.use_ssl:
        write_renewal_script(config)
    for command in CONTROL_COMMANDS:
        write_file(config.control_script_path(command), render_control_script(config, command), 0o700)


def restart(config: DeploymentConfig, supervisor: Optional[ContainerSupervisor] = None) -> None:
    """Bring the deployment back up with its configured profiles."""
    supervisor = supervisor or ContainerSupervisor(config)
    stop_conflicting_services(config)
    supervisor.up(config.profiles)
    if config.use_webserver:
        supervisor.wait_healthy("webserver")
    logger.info("Containers are ready")


class Orchestrator:
    """Run the full installation for the deployment described by ``env_file``."""

    def __init__(
        self,
        env_file: str = DEFAULT_ENV_FILE,
        min_free_bytes: int = DEFAULT_MIN_FREE_BYTES,
        callback: Optional[Callable[[Stage], None]] = None,
    ):
        self.env_file = env_file
        self.min_free_bytes = min_free_bytes
        self.callback = callback
        self.stage: Optional[Stage] = None
        self.history: List[Stage] = []
        self.config: Optional[DeploymentConfig] = None
        self.supervisor: Optional[ContainerSupervisor] = None

    def _enter(self, stage: Stage) -> None:
        self.stage = stage
        self.history.append(stage)
        if self.callback:
            self.callback(stage)

    def run(self) -> DeploymentConfig:
        """Run every stage; any failure ends in ``failed`` as a DeployError.

        The lock is taken after the privilege check and released only after
        the teardown.
        """
        with ExitStack() as stack:
            try:
                self._run_stages(stack)
            except DeployError as e:
                self._fail(e)
                raise
            except Exception as e:
                failed_at = self._fail(e)
                raise UnexpectedError(failed_at, e) from e
        return self.config

    def _fail(self, error: Exception) -> str:
        failed_at = self.stage.value if self.stage else "startup"
        self._enter(Stage.FAILED)
        # cli prints the error itself
        logger.error("Error occurred during %s: %s", failed_at, error, extra=FILE_ONLY)
        self.cleanup()
        return failed_at

    def _run_stages(self, stack: ExitStack) -> None:
        self._enter(Stage.PREFLIGHT)
        check_root()
        stack.enter_context(run_lock())
        self.config = load_config(self.env_file, self.min_free_bytes)
        config = self.config
        setup_logging(config.log_file)
        self.supervisor = ContainerSupervisor(config)
        logger.info("Pre-flight checks passed for %s", config.domain)

        create_directories(config)
        self._enter(Stage.DIRECTORIES_READY)
        logger.info("Directories created under %s", config.app_path)

        materialize_config(config)
        self._enter(Stage.CONFIG_MATERIALIZED)
        logger.info("Configuration files written")

        install_dependencies()
        self._enter(Stage.DEPENDENCIES_INSTALLED)

        configure_firewall(config)
        stop_conflicting_services(config)
        self._enter(Stage.FIREWALL_CONFIGURED)

        self.supervisor.up(config.profiles)
        if config.use_webserver:
            self.supervisor.wait_healthy("webserver")
        self._enter(Stage.CONTAINERS_UP)

        if config.use_ssl:
            certificates = CertificateManager(config, self.supervisor)
            certificates.issue()
            certificates.schedule_renewal()
        else:
            logger.info("Skipping SSL configuration because USE_SSL is false")
        self._enter(Stage.CERTIFICATE_READY)

        registrar = ServiceRegistrar(config)
        registrar.register_persistent_service()
        registrar.register_aliases()
        self._enter(Stage.SERVICES_REGISTERED)

        self._enter(Stage.DONE)
        logger.info("Installation completed successfully")

    def cleanup(self) -> None:
        """Best-effort teardown after a failure."""
        if self.supervisor is None:
            return
        logger.info("Cleaning up containers...")
        self.supervisor.down()
