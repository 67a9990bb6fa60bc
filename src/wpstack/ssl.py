"""Let's Encrypt certificate lifecycle for the WordPress proxy."""

import enum
import logging
import subprocess
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from .config import write_proxy_config, write_renewal_script
from .env import CHALLENGE_WEBROOT
from .errors import CertError, LaunchError
from .services import ServiceHealth

logger = logging.getLogger(__name__)

RENEWAL_SCHEDULE = "0 12 1,15 * *"
RENEWAL_WINDOW = timedelta(days=30)
CERTBOT_TIMEOUT = 300


class CertificateStatus(str, enum.Enum):
    NOT_ISSUED = "not_issued"
    ISSUED = "issued"
    RENEWAL_DUE = "renewal_due"


@dataclass(frozen=True)
class CertificateState:
    domain: str
    status: CertificateStatus
    expires_at: Optional[datetime] = None


def parse_openssl_enddate(output: str) -> datetime:
    """Parse ``notAfter=Jan  1 00:00:00 2027 GMT`` into an aware datetime."""
    value = output.strip().split("=", 1)[-1].strip()
    parsed = datetime.strptime(value, "%b %d %H:%M:%S %Y %Z")
    return parsed.replace(tzinfo=timezone.utc)


class CertificateManager:
    """Issue, renew and schedule renewal of the domain's certificate."""

    def __init__(self, config, supervisor):
        self.config = config
        self.supervisor = supervisor

    @property
    def cron_line(self) -> str:
        return (
            f"{RENEWAL_SCHEDULE} {self.config.renewal_script_path} "
            f">> {self.config.renew_log_file} 2>&1"
        )

    def certificate_exists(self) -> bool:
        return (self.config.host_certificate_path.exists()
                and self.config.host_certificate_key_path.exists())

    def state(self, now: Optional[datetime] = None) -> CertificateState:
        """Current certificate state read from the host certificate store."""
        domain = self.config.domain
        if not self.config.host_certificate_path.exists():
            return CertificateState(domain, CertificateStatus.NOT_ISSUED)

        result = subprocess.run(
            ["openssl", "x509", "-enddate", "-noout", "-in", str(self.config.host_certificate_path)],
            capture_output=True, text=True
        )
        if result.returncode != 0:
            logger.warning("Could not read %s: %s", self.config.host_certificate_path, result.stderr.strip())
            return CertificateState(domain, CertificateStatus.RENEWAL_DUE)

        try:
            expires_at = parse_openssl_enddate(result.stdout)
        except ValueError:
            logger.warning("Unexpected openssl output: %r", result.stdout)
            return CertificateState(domain, CertificateStatus.RENEWAL_DUE)

        now = now or datetime.now(timezone.utc)
        if expires_at - now <= RENEWAL_WINDOW:
            return CertificateState(domain, CertificateStatus.RENEWAL_DUE, expires_at)
        return CertificateState(domain, CertificateStatus.ISSUED, expires_at)

    def _certbot_args(self) -> List[str]:
        args = [
            "certonly",
            "--webroot", "-w", CHALLENGE_WEBROOT,
            "-d", self.config.domain,
            "--agree-tos",
            "--non-interactive",
            "--keep-until-expiring",
        ]
        if self.config.letsencrypt_email:
            args += ["--email", self.config.letsencrypt_email, "--no-eff-email"]
        else:
            args += ["--register-unsafely-without-email"]
        return args

    def issue(self) -> CertificateState:
        """Obtain a certificate over HTTP-01 and switch the proxy to TLS.

        The webserver must already serve the HTTP-only config. The TLS config
        is written only once the certificate files exist on disk.
        """
        try:
            health = self.supervisor.wait_healthy("webserver")
        except LaunchError as e:
            raise CertError(f"Webserver is not reachable for the ACME challenge: {e}") from e
        if health != ServiceHealth.RUNNING:
            raise CertError("Webserver is not running; cannot request certificate")

        logger.info("Requesting certificate for %s", self.config.domain)
        try:
            result = self.supervisor.run_oneshot("certbot", *self._certbot_args(), timeout=CERTBOT_TIMEOUT)
        except subprocess.TimeoutExpired as e:
            raise CertError(f"certbot timed out after {e.timeout}s") from e
        except LaunchError as e:
            raise CertError(str(e)) from e

        if result.returncode != 0:
            raise CertError(
                f"certbot failed for {self.config.domain}: {result.stderr.strip()[-300:]}",
                exit_code=result.returncode,
            )

        if not self.certificate_exists():
            raise CertError(
                f"certbot reported success but {self.config.host_certificate_path} is missing"
            )
        logger.info("SSL certificate obtained")

        write_proxy_config(self.config, tls_enabled=True)
        logger.info("Nginx SSL configuration created")

        try:
            self.supervisor.restart_service("webserver")
            self.supervisor.wait_healthy("webserver")
        except LaunchError as e:
            raise CertError(f"Webserver failed to start with TLS configuration: {e}") from e

        return self.state()

    def renew(self) -> bool:
        """Renew certificates; failures are logged and retried on the next schedule."""
        logger.info("Renewing certificates for %s", self.config.domain)
        try:
            result = self.supervisor.run_oneshot(
                "certbot", "renew", "--webroot", "-w", CHALLENGE_WEBROOT, "--non-interactive",
                timeout=CERTBOT_TIMEOUT,
            )
            if result.returncode != 0:
                logger.error("Certificate renewal failed: %s", result.stderr.strip()[-300:])
                return False
            self.supervisor.restart_service("webserver")
        except (LaunchError, subprocess.TimeoutExpired) as e:
            logger.error("Certificate renewal failed: %s", e)
            return False

        logger.info("Certificate renewal finished")
        return True

    def _read_crontab(self) -> List[str]:
        try:
            result = subprocess.run(["crontab", "-l"], capture_output=True, text=True)
        except FileNotFoundError as e:
            raise CertError(f"crontab is not available: {e}") from e
        if result.returncode != 0:
            if "no crontab" in result.stderr.lower():
                return []
            raise CertError(f"Could not read crontab: {result.stderr.strip()}")
        return result.stdout.splitlines()

    def renewal_scheduled(self) -> bool:
        try:
            return self.cron_line in self._read_crontab()
        except CertError:
            return False

    def schedule_renewal(self) -> None:
        """Write ssl-renew.sh and install its crontab entry (1st and 15th, 12:00)."""
        write_renewal_script(self.config)

        script = str(self.config.renewal_script_path)
        lines = [line for line in self._read_crontab() if script not in line]
        lines.append(self.cron_line)

        result = subprocess.run(
            ["crontab", "-"],
            input="\n".join(lines) + "\n",
            capture_output=True, text=True
        )
        if result.returncode != 0:
            raise CertError(f"Could not install crontab: {result.stderr.strip()}")
        logger.info("SSL auto-renewal configured")
