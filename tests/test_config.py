"""Tests for configuration loading."""

import textwrap
from pathlib import Path

import pytest

from rollerhoops.config import WorkerConfig, load_config


def _write(tmp_path, content):
    path = tmp_path / "rollerhoops.toml"
    path.write_text(textwrap.dedent(content))
    return path


class TestLoadConfig:
    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "nope.toml")

    def test_empty_file_uses_defaults(self, tmp_path):
        config = load_config(_write(tmp_path, ""))
        assert config.database.url == ""
        assert config.cache.directory == Path(".cache")
        assert config.worker == WorkerConfig()
        assert not config.worker.snmp.enabled
        assert not config.worker.topology.enabled

    def test_full_file(self, tmp_path):
        config = load_config(_write(tmp_path, """\
            [database]
            url = "postgresql://discovery@localhost/rollerhoops"

            [cache]
            directory = "/var/cache/rollerhoops"

            [worker]
            poll_interval = 1.5
            run_delay = 0.2
            max_runtime = 60
            arp_table_path = "/tmp/arp"
            max_targets = 512
            name_resolution = false

            [snmp]
            enabled = true
            community = "  "
            version = "1"
            timeout = 2.0
            retries = -3

            [topology]
            lldp = true
            allowlist = ["10.0.0.0/8", " "]
        """))
        assert config.database.url.startswith("postgresql://")
        assert config.cache.directory == Path("/var/cache/rollerhoops")
        worker = config.worker
        assert worker.poll_interval == 1.5
        assert worker.run_delay == 0.2
        assert worker.max_runtime == 60
        assert worker.arp_table_path == Path("/tmp/arp")
        assert worker.max_targets == 512
        assert worker.ping_workers == 16
        assert worker.name_resolution is False
        assert worker.snmp.enabled
        assert worker.snmp.community == "public"
        assert worker.snmp.version == "1"
        assert worker.snmp.timeout == 2.0
        assert worker.snmp.retries == 0
        assert worker.topology.lldp
        assert not worker.topology.cdp
        assert worker.topology.enabled
        assert worker.topology.allowlist == ["10.0.0.0/8"]

    @pytest.mark.parametrize("content", [
        "[worker]\nmax_targets = 0\n",
        "[worker]\nping_timeout = -1\n",
        "[worker]\npoll_interval = \"fast\"\n",
        "[snmp]\nport = 0\n",
        "[port_scan]\nworkers = 0\n",
    ])
    def test_non_positive_rejected(self, tmp_path, content):
        with pytest.raises(ValueError, match="must be a positive number"):
            load_config(_write(tmp_path, content))

    def test_negative_run_delay_rejected(self, tmp_path):
        with pytest.raises(ValueError, match="run_delay"):
            load_config(_write(tmp_path, "[worker]\nrun_delay = -1\n"))

    def test_default_path(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        _write(tmp_path, "[database]\nurl = \"postgresql:///x\"\n")
        assert load_config().database.url == "postgresql:///x"

    def test_port_scan_section(self, tmp_path):
        config = load_config(_write(tmp_path, """\
            [port_scan]
            enabled = true
            allowlist = ["192.168.1.0/24", ""]
            ports = [443, 22, 9100, 22]
            timeout = 1.5
        """))
        port_scan = config.worker.port_scan
        assert port_scan.enabled
        assert port_scan.allowlist == ["192.168.1.0/24"]
        assert port_scan.ports == [22, 443, 9100]
        assert port_scan.timeout == 1.5
        assert port_scan.workers == 4
        assert port_scan.max_targets == 24

    def test_port_scan_defaults(self, tmp_path):
        port_scan = load_config(_write(tmp_path, "")).worker.port_scan
        assert not port_scan.enabled
        assert port_scan.ports == [22, 80, 443]

    @pytest.mark.parametrize("ports", ["[0]", "[65536]", "[\"ssh\"]"])
    def test_port_scan_bad_port(self, tmp_path, ports):
        with pytest.raises(ValueError, match="between 1 and 65535"):
            load_config(_write(tmp_path, f"[port_scan]\nports = {ports}\n"))
