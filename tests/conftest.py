"""Pytest configuration and fixtures."""

import logging
import subprocess
from collections import namedtuple
from pathlib import Path

import pytest

from wpstack import orchestrator, registrar
from wpstack.env import config_from_mapping

DiskUsage = namedtuple("DiskUsage", "total used free")

PROFILE_SERVICES = {
    "core": ["db", "wordpress"],
    "webserver": ["webserver"],
    # certbot is only ever run on demand
    "ssl": [],
}


def contains(cmd, fragment):
    """True when ``fragment`` appears as a contiguous run of ``cmd``."""
    n = len(fragment)
    return any(list(cmd[i:i + n]) == list(fragment) for i in range(len(cmd) - n + 1))


def completed(cmd, returncode=0, stdout="", stderr=""):
    return subprocess.CompletedProcess(cmd, returncode, stdout, stderr)


class FakeRunner:
    """Stand-in for subprocess.run that records every command."""

    def __init__(self):
        self.calls = []
        self.inputs = []
        self.handlers = []

    def on(self, *fragment, returncode=0, stdout="", stderr="", raises=None):
        """Scripted result for commands containing ``fragment``; newest rule wins."""
        def handler(cmd, kwargs):
            if not contains(cmd, fragment):
                return None
            if raises is not None:
                raise raises
            return completed(cmd, returncode, stdout, stderr)
        self.handlers.insert(0, handler)
        return self

    def add_handler(self, handler):
        self.handlers.append(handler)

    def __call__(self, cmd, *args, **kwargs):
        cmd = list(cmd)
        self.calls.append(cmd)
        if "input" in kwargs:
            self.inputs.append((cmd, kwargs["input"]))
        for handler in self.handlers:
            result = handler(cmd, kwargs)
            if result is not None:
                return result
        return completed(cmd)

    def matching(self, *fragment):
        return [cmd for cmd in self.calls if contains(cmd, fragment)]

    def index(self, *fragment):
        for i, cmd in enumerate(self.calls):
            if contains(cmd, fragment):
                return i
        raise AssertionError(f"{fragment} was never run")


def split_compose(cmd):
    """Return (profiles, subcommand args) for a ``docker compose`` argv."""
    profiles, i = [], 2
    while i < len(cmd) and cmd[i] in ("-p", "-f", "--env-file", "--profile"):
        if cmd[i] == "--profile":
            profiles.append(cmd[i + 1])
        i += 2
    return profiles, cmd[i:]


class FakeDockerHost:
    """Simulated compose project, certbot, openssl and crontab."""

    def __init__(self, runner, up_status="running", cert_expiry="Jan  1 12:00:00 2099 GMT"):
        self.runner = runner
        self.up_status = up_status
        self.cert_expiry = cert_expiry
        self.containers = {}
        self.crontab = ""
        self.certbot_creates_files = True
        self.certbot_returncode = 0
        self.config = None
        runner.add_handler(self.handle)

    def handle(self, cmd, kwargs):
        if cmd[:2] == ["docker", "compose"] and len(cmd) > 2 and cmd[2] != "version":
            return self.compose(cmd)
        if cmd[:2] == ["docker", "inspect"]:
            name = cmd[-1][:-len("-id")]
            status = self.containers.get(name)
            if status is None:
                return completed(cmd, 1, "", "No such object")
            return completed(cmd, 0, status + "\n")
        if cmd[:2] == ["openssl", "x509"]:
            return completed(cmd, 0, f"notAfter={self.cert_expiry}\n")
        if cmd == ["crontab", "-l"]:
            if not self.crontab:
                return completed(cmd, 1, "", "no crontab for root")
            return completed(cmd, 0, self.crontab)
        if cmd == ["crontab", "-"]:
            self.crontab = kwargs.get("input", "")
            return completed(cmd)
        return None

    def compose(self, cmd):
        profiles, rest = split_compose(cmd)
        sub = rest[0] if rest else ""
        if sub == "down":
            self.containers.clear()
        elif sub == "up":
            for profile in profiles:
                for name in PROFILE_SERVICES[profile]:
                    self.containers[name] = self.up_status
        elif sub == "ps" and "-q" in rest:
            name = rest[-1] if rest[-1] != "-q" else None
            if name is None:
                ids = [f"{n}-id" for n, s in self.containers.items() if s == "running"]
                return completed(cmd, 0, "\n".join(ids))
            return completed(cmd, 0, f"{name}-id\n" if name in self.containers else "")
        elif sub == "run" and "certonly" in rest:
            if self.certbot_returncode != 0:
                return completed(cmd, self.certbot_returncode, "", "Challenge failed for domain")
            if self.certbot_creates_files and self.config is not None:
                live = self.config.host_certificate_path.parent
                live.mkdir(parents=True, exist_ok=True)
                self.config.host_certificate_path.write_text("CERT")
                self.config.host_certificate_key_path.write_text("KEY")
        return completed(cmd)


@pytest.fixture
def runner(monkeypatch):
    fake = FakeRunner()
    monkeypatch.setattr(subprocess, "run", fake)
    return fake


@pytest.fixture
def sleeps(monkeypatch):
    recorded = []
    monkeypatch.setattr("wpstack.services.time.sleep", recorded.append)
    return recorded


@pytest.fixture
def docker_host(runner, sleeps):
    return FakeDockerHost(runner)


@pytest.fixture(autouse=True)
def reset_wpstack_logger():
    """Drop handlers added by setup_logging between tests."""
    yield
    logger = logging.getLogger("wpstack")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    logger.setLevel(logging.NOTSET)
    logger.propagate = True


@pytest.fixture
def env_values(tmp_path):
    return {
        "APP_PATH": str(tmp_path / "srv" / "wordpress"),
        "DOMAIN": "example.com",
        "USE_WEBSERVER": "true",
        "USE_SSL": "true",
        "MYSQL_ROOT_PASSWORD": "rootpw",
        "MYSQL_DATABASE": "wordpress",
        "MYSQL_USER": "wp",
        "MYSQL_PASSWORD": "wppw",
        "LOG_FILE": str(tmp_path / "log" / "wpstack.log"),
        "RENEW_LOG_FILE": str(tmp_path / "log" / "le-renew.log"),
    }


@pytest.fixture
def make_config(env_values):
    def factory(**overrides):
        values = dict(env_values)
        values.update({k.upper(): v for k, v in overrides.items()})
        return config_from_mapping(values)
    return factory


@pytest.fixture
def config(make_config):
    return make_config()


@pytest.fixture
def write_env(tmp_path, env_values):
    """Write an env file and return its path."""
    def factory(directory=None, drop=(), **overrides):
        values = dict(env_values)
        values.update({k.upper(): v for k, v in overrides.items()})
        for key in drop:
            values.pop(key, None)
        target = Path(directory or tmp_path / "deploy")
        target.mkdir(parents=True, exist_ok=True)
        path = target / ".env"
        lines = ["# WordPress deployment", ""]
        lines += [f"{key}={value}" for key, value in values.items()]
        path.write_text("\n".join(lines) + "\n")
        return path
    return factory


@pytest.fixture
def free_space(monkeypatch):
    """Control the free space reported for APP_PATH's filesystem."""
    state = {"free": 50 * 1024 ** 3}

    def fake_disk_usage(path):
        return DiskUsage(100 * 1024 ** 3, 0, state["free"])

    monkeypatch.setattr("wpstack.env.shutil.disk_usage", fake_disk_usage)
    return state


@pytest.fixture
def host(tmp_path, monkeypatch, free_space):
    """Root privileges, plus systemd, bashrc and lock paths under tmp_path."""
    root = tmp_path / "host"
    monkeypatch.setattr("wpstack.provision.os.geteuid", lambda: 0)
    monkeypatch.setattr(registrar, "SYSTEMD_DIR", root / "etc" / "systemd" / "system")
    monkeypatch.setattr(registrar, "BASHRC_PATH", root / "etc" / "bash.bashrc")
    monkeypatch.setattr(orchestrator, "LOCK_PATH", root / "run" / "lock" / "wpstack.lock")
    return root
