"""Tests for host provisioning steps."""

import pytest

from wpstack.errors import DependencyInstallError, InsufficientPrivileges
from wpstack.provision import (
    check_docker_installed,
    check_root,
    configure_firewall,
    install_dependencies,
    stop_conflicting_services,
)


def test_check_root(monkeypatch):
    monkeypatch.setattr("wpstack.provision.os.geteuid", lambda: 1000)
    with pytest.raises(InsufficientPrivileges) as exc:
        check_root()
    assert exc.value.exit_code == 77


def test_check_root_as_root(monkeypatch):
    monkeypatch.setattr("wpstack.provision.os.geteuid", lambda: 0)
    check_root()


class TestDependencies:

    def test_docker_detection(self, runner):
        assert check_docker_installed()
        runner.on("docker", "info", returncode=1)
        assert not check_docker_installed()

    def test_docker_missing_binary(self, runner):
        runner.on("docker", "--version", raises=FileNotFoundError("docker"))
        assert not check_docker_installed()

    def test_skips_docker_install_when_present(self, runner):
        install_dependencies()
        assert runner.matching("apt-get", "update")
        assert runner.matching("apt-get", "install")
        assert not runner.matching("sh", "/tmp/get-docker.sh")
        assert not runner.matching("curl", "-fsSL")
        assert runner.matching("docker", "compose", "version")

    def test_installs_docker_when_missing(self, runner):
        runner.on("docker", "info", returncode=1, stderr="Cannot connect")
        install_dependencies()
        assert runner.index("curl", "-fsSL") < runner.index("sh", "/tmp/get-docker.sh")
        assert runner.matching("systemctl", "enable", "--now", "docker")

    def test_apt_failure(self, runner):
        runner.on("apt-get", "install", returncode=100, stderr="E: Unable to locate package")
        with pytest.raises(DependencyInstallError) as exc:
            install_dependencies()
        assert exc.value.step == "apt-get install"
        assert exc.value.exit_code == 100
        assert not runner.matching("docker", "compose", "version")

    def test_apt_runs_noninteractive(self, runner, monkeypatch):
        seen = {}

        def capture(cmd, kwargs):
            if cmd[0] == "apt-get":
                seen[cmd[1]] = kwargs.get("env", {}).get("DEBIAN_FRONTEND")
            return None

        runner.handlers.insert(0, capture)
        install_dependencies()
        assert seen == {"update": "noninteractive", "install": "noninteractive"}

    def test_compose_plugin_missing(self, runner):
        runner.on("docker", "compose", "version", returncode=1, stderr="'compose' is not a docker command")
        with pytest.raises(DependencyInstallError):
            install_dependencies()


class TestFirewall:

    def test_http_and_https(self, config, runner):
        configure_firewall(config)
        assert runner.calls == [
            ["ufw", "allow", "OpenSSH"],
            ["ufw", "allow", "80/tcp"],
            ["ufw", "allow", "443/tcp"],
            ["ufw", "--force", "enable"],
        ]

    def test_http_only(self, make_config, runner):
        configure_firewall(make_config(use_ssl="false"))
        assert ["ufw", "allow", "443/tcp"] not in runner.calls
        assert ["ufw", "allow", "80/tcp"] in runner.calls

    def test_no_webserver(self, make_config, runner):
        configure_firewall(make_config(use_ssl="false", use_webserver="false"))
        assert runner.calls == []

    def test_failure(self, config, runner):
        runner.on("ufw", "--force", "enable", returncode=1, stderr="ERROR: problem running iptables")
        with pytest.raises(DependencyInstallError):
            configure_firewall(config)


class TestConflictingServices:

    def test_stops_only_active_services(self, config, runner):
        runner.on("is-active", "--quiet", "apache2", returncode=3)
        assert stop_conflicting_services(config) == ["nginx"]
        assert ["systemctl", "stop", "nginx"] in runner.calls
        assert ["systemctl", "stop", "apache2"] not in runner.calls

    def test_disabled_by_config(self, make_config, runner):
        assert stop_conflicting_services(make_config(stop_conflicting_services="false")) == []
        assert runner.calls == []

    def test_stop_failure_is_logged(self, config, runner):
        runner.on("systemctl", "stop", "apache2", returncode=5, stderr="Access denied")
        assert stop_conflicting_services(config) == ["nginx"]
