"""Host-level persistence: systemd restart unit and shell aliases."""

import logging
import subprocess
from pathlib import Path

from .config import SYSTEMD_UNIT_NAME, render_systemd_unit, write_file
from .errors import ServiceRegistrationError, describe_command

logger = logging.getLogger(__name__)

SYSTEMD_DIR = Path("/etc/systemd/system")
BASHRC_PATH = Path("/etc/bash.bashrc")

ALIAS_BLOCK_BEGIN = "# >>> wpstack aliases >>>"
ALIAS_BLOCK_END = "# <<< wpstack aliases <<<"


def _systemctl(*args: str) -> subprocess.CompletedProcess:
    cmd = ["systemctl", *args]
    try:
        result = subprocess.run(cmd, capture_output=True, text=True)
    except FileNotFoundError as e:
        raise ServiceRegistrationError(f"systemctl is not available: {e}") from e
    if result.returncode != 0:
        raise ServiceRegistrationError(
            describe_command(cmd, result.stderr), exit_code=result.returncode
        )
    return result


class ServiceRegistrar:
    """Install the start-on-boot unit and the wp-monitor / wp-restart aliases."""

    def __init__(self, config):
        self.config = config

    @property
    def unit_path(self) -> Path:
        return SYSTEMD_DIR / SYSTEMD_UNIT_NAME

    def register_persistent_service(self) -> Path:
        write_file(self.unit_path, render_systemd_unit(self.config), 0o644)
        logger.info("Systemd unit written to %s", self.unit_path)

        _systemctl("daemon-reload")
        _systemctl("enable", SYSTEMD_UNIT_NAME)
        _systemctl("start", SYSTEMD_UNIT_NAME)
        logger.info("Systemd %s enabled and started", SYSTEMD_UNIT_NAME)
        return self.unit_path

    def alias_block(self) -> str:
        return "\n".join([
            ALIAS_BLOCK_BEGIN,
            f"alias wp-monitor='{self.config.control_script_path('monitor')}'",
            f"alias wp-restart='{self.config.control_script_path('restart')}'",
            ALIAS_BLOCK_END,
        ])

    def register_aliases(self) -> Path:
        """Replace (or append) the alias block in the system-wide bashrc."""
        existing = BASHRC_PATH.read_text() if BASHRC_PATH.exists() else ""

        kept, skipping = [], False
        for line in existing.splitlines():
            if line.strip() == ALIAS_BLOCK_BEGIN:
                skipping = True
                continue
            if line.strip() == ALIAS_BLOCK_END:
                skipping = False
                continue
            if not skipping:
                kept.append(line)

        while kept and not kept[-1].strip():
            kept.pop()
        if kept:
            kept.append("")
        kept.append(self.alias_block())

        BASHRC_PATH.parent.mkdir(parents=True, exist_ok=True)
        BASHRC_PATH.write_text("\n".join(kept) + "\n")
        logger.info("Aliases wp-monitor and wp-restart registered in %s", BASHRC_PATH)
        return BASHRC_PATH

    def service_status(self) -> str:
        result = subprocess.run(
            ["systemctl", "status", "--no-pager", SYSTEMD_UNIT_NAME],
            capture_output=True, text=True
        )
        return result.stdout or result.stderr
