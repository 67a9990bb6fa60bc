"""Rendering of the files materialized under APP_PATH."""

import logging
import os
import sys
from pathlib import Path

from jinja2 import Environment, PackageLoader, StrictUndefined

from .env import CHALLENGE_WEBROOT, LETSENCRYPT_DIR
from .services import ALL_PROFILES, COMPOSE_PROJECT, ContainerProfile

logger = logging.getLogger(__name__)

SYSTEMD_UNIT_NAME = "wordpress-restart.service"
CONTROL_COMMANDS = ("restart", "monitor")


def get_jinja_env():
    """Get Jinja2 environment for templates."""
    return Environment(
        loader=PackageLoader("wpstack", "templates"),
        undefined=StrictUndefined,
        keep_trailing_newline=True,
        trim_blocks=True,
        lstrip_blocks=True,
    )


def _render(template_name: str, **context) -> str:
    return get_jinja_env().get_template(template_name).render(**context)


def _compose_args(config, profiles=ALL_PROFILES) -> str:
    args = [
        "-p", COMPOSE_PROJECT,
        "-f", str(config.compose_file),
        "--env-file", str(config.env_copy_path),
    ]
    for profile in profiles:
        args += ["--profile", ContainerProfile(profile).value]
    return " ".join(args)


def render_proxy_config(config, tls_enabled: bool) -> str:
    """nginx ``default.conf`` for the webserver container.

    The ACME challenge location is always served over plain HTTP; with TLS the
    redirect only applies to ``location /`` so renewals keep working.
    """
    return _render(
        "default.conf.j2",
        domain=config.domain,
        tls=tls_enabled,
        challenge_root=CHALLENGE_WEBROOT,
        certificate=config.certificate_path,
        certificate_key=config.certificate_key_path,
        upstream="http://wordpress:80",
    )


def render_renewal_script(config) -> str:
    """Shell script run by cron to renew certificates and reload the proxy."""
    return _render(
        "ssl-renew.sh.j2",
        app_path=config.app_path,
        compose_args=_compose_args(config),
        challenge_root=CHALLENGE_WEBROOT,
    )


def render_compose_file(config) -> str:
    return _render(
        "docker-compose.yml.j2",
        mysql_image=config.mysql_image,
        wordpress_image=config.wordpress_image,
        challenge_root=CHALLENGE_WEBROOT,
        letsencrypt_dir=LETSENCRYPT_DIR,
    )


def render_systemd_unit(config) -> str:
    return _render(
        "wordpress-restart.service.j2",
        app_path=config.app_path,
        restart_script=config.control_script_path("restart"),
    )


def render_control_script(config, command: str) -> str:
    if command not in CONTROL_COMMANDS:
        raise ValueError(f"Unknown control command: {command}")
    return _render(
        "control.sh.j2",
        command=command,
        python=sys.executable,
        env_file=config.env_copy_path,
    )


def render_env_file(config) -> str:
    """The deployment's own env file, read by docker compose and by wpstack.

    Values are single-quoted so compose does not interpolate ``$`` in them.
    """
    lines = ["# Generated by wpstack"]
    lines += [f"{key}='{value}'" for key, value in config.to_env().items()]
    return "\n".join(lines) + "\n"


def write_file(path: Path, content: str, mode: int = 0o644) -> Path:
    """Write ``content`` to ``path`` and apply ``mode``."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content)
    os.chmod(path, mode)
    logger.debug("Wrote %s (mode %o)", path, mode)
    return path


def write_proxy_config(config, tls_enabled: bool) -> Path:
    return write_file(config.proxy_config_path, render_proxy_config(config, tls_enabled), 0o644)


def write_renewal_script(config) -> Path:
    return write_file(config.renewal_script_path, render_renewal_script(config), 0o700)
