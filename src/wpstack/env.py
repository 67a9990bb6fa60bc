"""Deployment configuration loaded from a ``KEY=VALUE`` env file."""

import logging
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional, Tuple

from .errors import (
    ConfigError,
    EnvFileNotFound,
    InsufficientDiskSpace,
    InvalidVariable,
    MissingRequiredVariable,
)
from .services import profiles_for

logger = logging.getLogger(__name__)

DEFAULT_ENV_FILE = ".env"
DEFAULT_MIN_FREE_BYTES = 5 * 1024 ** 3

REQUIRED_VARIABLES = (
    "APP_PATH",
    "DOMAIN",
    "USE_WEBSERVER",
    "USE_SSL",
    "MYSQL_ROOT_PASSWORD",
    "MYSQL_DATABASE",
    "MYSQL_USER",
    "MYSQL_PASSWORD",
    "LOG_FILE",
)

_TRUE = {"true", "yes", "1", "on"}
_FALSE = {"false", "no", "0", "off"}

# Paths as seen from inside the webserver/certbot containers
LETSENCRYPT_DIR = "/etc/letsencrypt"
CHALLENGE_WEBROOT = "/var/www/certbot"


@dataclass(frozen=True)
class DeploymentConfig:
    """Immutable settings for one WordPress deployment."""
    app_path: Path
    domain: str
    use_webserver: bool
    use_ssl: bool
    mysql_root_password: str
    mysql_database: str
    mysql_user: str
    mysql_password: str
    log_file: Path
    letsencrypt_email: str = ""
    renew_log_file: Path = Path("/var/log/le-renew.log")
    mysql_image: str = "mysql:5.7"
    wordpress_image: str = "wordpress:latest"
    stop_conflicting_services: bool = True
    source: Optional[Path] = None

    # Persisted layout

    @property
    def nginx_dir(self) -> Path:
        return self.app_path / "nginx"

    @property
    def proxy_config_path(self) -> Path:
        return self.nginx_dir / "default.conf"

    @property
    def db_data_dir(self) -> Path:
        return self.app_path / "db_data"

    @property
    def wp_data_dir(self) -> Path:
        return self.app_path / "wp_data"

    @property
    def certbot_conf_dir(self) -> Path:
        return self.app_path / "certbot" / "conf"

    @property
    def certbot_www_dir(self) -> Path:
        return self.app_path / "certbot" / "www"

    @property
    def renewal_script_path(self) -> Path:
        return self.app_path / "ssl-renew.sh"

    @property
    def compose_file(self) -> Path:
        return self.app_path / "docker-compose.yml"

    @property
    def env_copy_path(self) -> Path:
        return self.app_path / ".env"

    def control_script_path(self, command: str) -> Path:
        return self.app_path / f"{command}.sh"

    # Certificates

    @property
    def certificate_path(self) -> str:
        return f"{LETSENCRYPT_DIR}/live/{self.domain}/fullchain.pem"

    @property
    def certificate_key_path(self) -> str:
        return f"{LETSENCRYPT_DIR}/live/{self.domain}/privkey.pem"

    @property
    def host_certificate_path(self) -> Path:
        return self.certbot_conf_dir / "live" / self.domain / "fullchain.pem"

    @property
    def host_certificate_key_path(self) -> Path:
        return self.certbot_conf_dir / "live" / self.domain / "privkey.pem"

    @property
    def profiles(self) -> Tuple:
        return profiles_for(self)

    def to_env(self) -> Dict[str, str]:
        """Key/value pairs written to the deployment's own .env copy."""
        return {
            "APP_PATH": str(self.app_path),
            "DOMAIN": self.domain,
            "USE_WEBSERVER": _format_bool(self.use_webserver),
            "USE_SSL": _format_bool(self.use_ssl),
            "MYSQL_ROOT_PASSWORD": self.mysql_root_password,
            "MYSQL_DATABASE": self.mysql_database,
            "MYSQL_USER": self.mysql_user,
            "MYSQL_PASSWORD": self.mysql_password,
            "LOG_FILE": str(self.log_file),
            "LETSENCRYPT_EMAIL": self.letsencrypt_email,
            "RENEW_LOG_FILE": str(self.renew_log_file),
            "MYSQL_IMAGE": self.mysql_image,
            "WORDPRESS_IMAGE": self.wordpress_image,
            "STOP_CONFLICTING_SERVICES": _format_bool(self.stop_conflicting_services),
        }


def _format_bool(value: bool) -> str:
    return "true" if value else "false"


def parse_bool(name: str, value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in _TRUE:
        return True
    if lowered in _FALSE:
        return False
    raise InvalidVariable(name, value, "expected true or false")


def find_env_file(name: str = DEFAULT_ENV_FILE, start: Optional[Path] = None) -> Path:
    """Find ``name`` in ``start`` or the closest parent directory containing it."""
    candidate = Path(name)
    if candidate.is_absolute():
        if candidate.is_file():
            return candidate
        raise EnvFileNotFound(name, candidate.parent)

    origin = Path(start or Path.cwd()).resolve()
    for directory in (origin, *origin.parents):
        path = directory / candidate
        if path.is_file():
            return path
    raise EnvFileNotFound(name, origin)


def parse_env_file(path: Path) -> Dict[str, str]:
    """Parse ``KEY=VALUE`` lines, skipping blanks and ``#`` comments."""
    values = {}
    with open(path, encoding="utf-8") as f:
        for lineno, raw in enumerate(f, start=1):
            line = raw.strip()
            if not line or line.startswith("#"):
                continue
            if "=" not in line:
                logger.debug("Skipping malformed line %d in %s", lineno, path)
                continue
            key, value = line.split("=", 1)
            key = key.strip()
            if key.startswith("export "):
                key = key[len("export "):].strip()
            value = value.strip()
            if len(value) >= 2 and value[0] == value[-1] and value[0] in ("'", '"'):
                value = value[1:-1]
            values[key] = value
    return values


def _existing_ancestor(path: Path) -> Path:
    for candidate in (path, *path.parents):
        if candidate.exists():
            return candidate
    return Path(path.anchor or "/")


def check_disk_space(app_path: Path, min_free_bytes: int = DEFAULT_MIN_FREE_BYTES) -> int:
    """Ensure the filesystem holding ``app_path`` has enough free space."""
    target = _existing_ancestor(app_path.parent)
    free = shutil.disk_usage(str(target)).free
    if free < min_free_bytes:
        raise InsufficientDiskSpace(target, free, min_free_bytes)
    return free


def config_from_mapping(values: Dict[str, str], source: Optional[Path] = None) -> DeploymentConfig:
    """Validate parsed values and build a DeploymentConfig."""
    for name in REQUIRED_VARIABLES:
        if not values.get(name, "").strip():
            raise MissingRequiredVariable(name)

    use_webserver = parse_bool("USE_WEBSERVER", values["USE_WEBSERVER"])
    use_ssl = parse_bool("USE_SSL", values["USE_SSL"])
    if use_ssl and not use_webserver:
        raise InvalidVariable("USE_SSL", values["USE_SSL"], "SSL requires USE_WEBSERVER=true")

    app_path = Path(values["APP_PATH"])
    if not app_path.is_absolute():
        raise InvalidVariable("APP_PATH", values["APP_PATH"], "must be an absolute path")

    domain = values["DOMAIN"].strip()
    if "/" in domain or " " in domain:
        raise InvalidVariable("DOMAIN", domain, "must be a bare host name")

    optional = {}
    if values.get("LETSENCRYPT_EMAIL"):
        optional["letsencrypt_email"] = values["LETSENCRYPT_EMAIL"]
    if values.get("RENEW_LOG_FILE"):
        optional["renew_log_file"] = Path(values["RENEW_LOG_FILE"])
    if values.get("MYSQL_IMAGE"):
        optional["mysql_image"] = values["MYSQL_IMAGE"]
    if values.get("WORDPRESS_IMAGE"):
        optional["wordpress_image"] = values["WORDPRESS_IMAGE"]
    if values.get("STOP_CONFLICTING_SERVICES"):
        optional["stop_conflicting_services"] = parse_bool(
            "STOP_CONFLICTING_SERVICES", values["STOP_CONFLICTING_SERVICES"]
        )

    config = DeploymentConfig(
        app_path=app_path,
        domain=domain,
        use_webserver=use_webserver,
        use_ssl=use_ssl,
        mysql_root_password=values["MYSQL_ROOT_PASSWORD"],
        mysql_database=values["MYSQL_DATABASE"],
        mysql_user=values["MYSQL_USER"],
        mysql_password=values["MYSQL_PASSWORD"],
        log_file=Path(values["LOG_FILE"]),
        source=source,
        **optional,
    )

    # the .env copy single-quotes every value
    for name, value in config.to_env().items():
        if "'" in value:
            shown = "<hidden>" if "PASSWORD" in name else value
            raise InvalidVariable(name, shown, "single quotes are not supported")
    return config


def load_config(
    path: str = DEFAULT_ENV_FILE,
    min_free_bytes: int = DEFAULT_MIN_FREE_BYTES,
    start: Optional[Path] = None,
) -> DeploymentConfig:
    """Locate, parse and validate the env file.

    Raises:
        EnvFileNotFound: no file named ``path`` in the current directory or its parents
        ConfigError: the file cannot be read or decoded
        MissingRequiredVariable: a required key is absent or empty
        InvalidVariable: a flag or path has an unusable value
        InsufficientDiskSpace: less than ``min_free_bytes`` free below APP_PATH
    """
    env_path = find_env_file(path, start)
    logger.debug("Loading configuration from %s", env_path)
    try:
        values = parse_env_file(env_path)
    except (OSError, UnicodeDecodeError) as e:
        raise ConfigError(f"Cannot read {env_path}: {e}") from e
    config = config_from_mapping(values, source=env_path)
    check_disk_space(config.app_path, min_free_bytes)
    return config
