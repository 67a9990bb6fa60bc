"""Tests for the monitor views."""

import pytest

from wpstack.config import render_compose_file, write_file
from wpstack.logging_setup import setup_logging
from wpstack.monitor import Monitor
from wpstack.ssl import CertificateStatus


@pytest.fixture
def monitor(config, docker_host):
    write_file(config.compose_file, render_compose_file(config))
    docker_host.config = config
    return Monitor(config)


def test_menu_ends_with_exit(monitor):
    labels = [label for label, _ in monitor.actions]
    assert len(labels) == 9
    assert labels[-1] == "Exit"
    assert monitor.actions[-1][1] is None


def test_container_status_counts_running(monitor, docker_host, capsys):
    docker_host.containers.update({"db": "running", "wordpress": "running", "webserver": "exited"})
    monitor.container_status()
    assert "Active Containers: 2" in capsys.readouterr().out


def test_container_logs_for_service(monitor, runner):
    monitor.container_logs(service="wordpress")
    cmd = runner.matching("logs", "--tail")[0]
    assert cmd[-3:] == ["--tail", "100", "wordpress"]


class TestNginxStatus:

    def test_valid_config(self, monitor, runner):
        assert monitor.nginx_status() is True
        assert runner.matching("exec", "-T", "webserver", "nginx", "-t")

    def test_invalid_config(self, monitor, runner, capsys):
        runner.on("nginx", "-t", returncode=1, stderr="nginx: [emerg] unknown directive")
        assert monitor.nginx_status() is False
        out = capsys.readouterr().out
        assert "Error in Nginx configuration" in out
        assert "unknown directive" in out

    def test_webserver_disabled(self, make_config, docker_host, runner):
        config = make_config(use_ssl="false", use_webserver="false")
        assert Monitor(config).nginx_status() is False
        assert not runner.matching("nginx")


class TestCertificateStatus:

    def test_no_certificate(self, monitor, capsys):
        state = monitor.certificate_status()
        assert state.status == CertificateStatus.NOT_ISSUED
        assert "No SSL certificates found" in capsys.readouterr().out

    def test_issued_certificate(self, monitor, config, docker_host, capsys):
        config.host_certificate_path.parent.mkdir(parents=True)
        config.host_certificate_path.write_text("CERT")
        docker_host.crontab = ""
        state = monitor.certificate_status()
        assert state.status == CertificateStatus.ISSUED
        out = capsys.readouterr().out
        assert "2099-01-01" in out
        assert "not scheduled" in out


class TestSystemLogs:

    def test_service_logs(self, monitor, runner):
        monitor.system_logs("MySQL logs")
        cmd = runner.matching("logs", "--tail")[0]
        assert cmd[-3:] == ["--tail", "50", "db"]

    def test_missing_renewal_log(self, monitor, config, capsys):
        setup_logging(config.log_file)
        monitor.system_logs("SSL renewal logs")
        out = capsys.readouterr().out
        assert out.count("SSL renewal log file not found") == 1
        assert out.count("Latest System Logs") == 1
        assert "SSL renewal log file not found" in config.log_file.read_text()

    def test_renewal_log_tail(self, monitor, config, capsys):
        config.renew_log_file.parent.mkdir(parents=True, exist_ok=True)
        config.renew_log_file.write_text("\n".join(f"line {i}" for i in range(80)) + "\n")
        monitor.system_logs("SSL renewal logs")
        out = capsys.readouterr().out
        assert "line 79" in out
        assert "line 29" not in out

    def test_invalid_option(self, monitor, runner, capsys):
        monitor.system_logs("Apache logs")
        assert "Invalid option" in capsys.readouterr().out
        assert not runner.matching("logs")


def test_systemd_status(monitor, runner, capsys):
    runner.on("systemctl", "status", stdout="wordpress-restart.service - WordPress restart\n   Active: active")
    monitor.systemd_status()
    assert "Active: active" in capsys.readouterr().out
