"""Error types raised by wpstack.

Every fatal condition is a ``DeployError`` carrying the exit status the CLI
reports. Best-effort paths (teardown during cleanup, scheduled renewal) log
their failures instead of raising.
"""

from pathlib import Path
from typing import Optional, Sequence


class DeployError(Exception):
    """Base class for all wpstack failures."""

    exit_code = 1

    def __init__(self, message: str, exit_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        if exit_code is not None:
            self.exit_code = exit_code

    def __str__(self):
        return self.message


def describe_command(cmd: Sequence[str], stderr: str = "", limit: int = 200) -> str:
    """Short description of a failed command for error messages."""
    text = " ".join(str(part) for part in cmd)
    tail = (stderr or "").strip()[-limit:]
    return f"{text}: {tail}" if tail else text


# =============================================================================
# CONFIGURATION
# =============================================================================

class ConfigError(DeployError):
    exit_code = 2


class EnvFileNotFound(ConfigError):
    def __init__(self, name: str, start: Path):
        super().__init__(f"file {name} not found in {start} or any parent directory")
        self.name = name
        self.start = start


class MissingRequiredVariable(ConfigError):
    def __init__(self, name: str):
        super().__init__(f"Required environment variable {name} is not set")
        self.name = name


class InvalidVariable(ConfigError):
    def __init__(self, name: str, value: str, reason: str = ""):
        message = f"Invalid value for {name}: {value!r}"
        if reason:
            message += f" ({reason})"
        super().__init__(message)
        self.name = name
        self.value = value


class InsufficientDiskSpace(ConfigError):
    def __init__(self, path: Path, free: int, required: int):
        super().__init__(
            f"At least {required // 1024 ** 3}GB of free space is required at {path} "
            f"({free // 1024 ** 2}MB available)"
        )
        self.path = path
        self.free = free
        self.required = required


# =============================================================================
# HOST
# =============================================================================

class InsufficientPrivileges(DeployError):
    exit_code = 77

    def __init__(self):
        super().__init__("This command must be run as root (sudo)")


class ConcurrentRunError(DeployError):
    exit_code = 75

    def __init__(self, lock_path: Path):
        super().__init__(f"Another wpstack run holds {lock_path}")
        self.lock_path = lock_path


class DependencyInstallError(DeployError):
    def __init__(self, step: str, returncode: int = 1, detail: str = ""):
        message = f"Dependency installation failed at '{step}'"
        if detail:
            message += f": {detail}"
        super().__init__(message, exit_code=returncode or 1)
        self.step = step


class ServiceRegistrationError(DeployError):
    pass


# =============================================================================
# CONTAINERS AND CERTIFICATES
# =============================================================================

class LaunchError(DeployError):
    pass


class RuntimeUnreachable(LaunchError):
    def __init__(self, detail: str = ""):
        super().__init__(f"Container runtime is unreachable{': ' + detail if detail else ''}")


class LaunchTimeout(LaunchError):
    def __init__(self, service: str, attempts: int, last_health=None):
        super().__init__(
            f"{service} container failed to start after {attempts} attempts"
            + (f" (last state: {last_health.value})" if last_health is not None else "")
        )
        self.service = service
        self.attempts = attempts
        self.last_health = last_health


class CertError(DeployError):
    pass


class UnexpectedError(DeployError):
    """A stage failed with an error outside the hierarchy above (I/O, encoding)."""

    def __init__(self, stage: str, error: BaseException):
        super().__init__(f"Unexpected error during {stage}: {error}")
        self.stage = stage
        self.error = error
