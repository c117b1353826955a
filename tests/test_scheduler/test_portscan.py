"""Tests for the nmap port scan stage."""

import threading
from unittest.mock import patch

import nmap
import pytest

from rollerhoops.config import PortScanConfig
from rollerhoops.models.discovery import ServiceRecord
from rollerhoops.scheduler.portscan import (
    nmap_arguments,
    parse_scan_result,
    run_port_scan,
    scan_host,
    select_scan_targets,
    valid_ports,
)
from rollerhoops.scheduler.scope import EnrichmentTarget

TARGETS = [
    EnrichmentTarget("aa:bb:cc:00:00:01", "192.168.1.1"),
    EnrichmentTarget("aa:bb:cc:00:00:01", "192.168.1.2"),
    EnrichmentTarget("aa:bb:cc:00:00:14", "192.168.1.20"),
    EnrichmentTarget("aa:bb:cc:00:00:05", "10.0.0.5"),
]


def _config(**overrides):
    base = dict(enabled=True, allowlist=["192.168.1.0/24"], ports=[22, 80, 443])
    base.update(overrides)
    return PortScanConfig(**base)


class FakeScanner:
    def __init__(self, open_ports=None, fail=()):
        self.open_ports = open_ports or {}
        self.fail = set(fail)
        self.calls = []
        self.lock = threading.Lock()

    def __call__(self, address, ports, timeout):
        with self.lock:
            self.calls.append((address, tuple(ports), timeout))
        if address in self.fail:
            raise nmap.PortScannerError(f"scan of {address} failed")
        return [ServiceRecord("tcp", p) for p in self.open_ports.get(address, [])]


class TestHelpers:
    def test_valid_ports(self):
        assert valid_ports([443, 22, 0, -1, 70000, 22]) == [22, 443]

    def test_nmap_arguments(self):
        assert nmap_arguments(3.0) == "-Pn -sT --host-timeout 3s --max-retries 1 --open"
        assert "--host-timeout 1s" in nmap_arguments(0.2)

    def test_select_targets_dedups_and_caps(self):
        selected = select_scan_targets(TARGETS, ["192.168.1.0/24"], 24)
        assert [t.address for t in selected] == ["192.168.1.1", "192.168.1.20"]
        assert len(select_scan_targets(TARGETS, ["0.0.0.0/0"], 1)) == 1

    def test_parse_scan_result(self):
        result = {"scan": {"10.0.0.5": {"tcp": {
            443: {"state": "open", "name": "https"},
            22: {"state": "open", "name": ""},
            80: {"state": "filtered", "name": "http"},
        }}}}
        assert parse_scan_result("10.0.0.5", result) == [
            ServiceRecord("tcp", 22, None),
            ServiceRecord("tcp", 443, "https"),
        ]
        assert parse_scan_result("10.0.0.6", result) == []
        assert parse_scan_result("10.0.0.5", {}) == []


class TestScanHost:
    @patch("nmap.PortScanner")
    def test_invokes_nmap(self, mock_scanner_cls):
        scanner = mock_scanner_cls.return_value
        scanner.scan.return_value = {"scan": {"10.0.0.5": {"tcp": {22: {"state": "open", "name": "ssh"}}}}}
        assert scan_host("10.0.0.5", [22, 80], 3.0) == [ServiceRecord("tcp", 22, "ssh")]
        scanner.scan.assert_called_once_with(
            hosts="10.0.0.5",
            ports="22,80",
            arguments="-Pn -sT --host-timeout 3s --max-retries 1 --open",
            timeout=8,
        )


class TestRunPortScan:
    def test_scans_allowlisted_targets(self):
        scanner = FakeScanner(open_ports={"192.168.1.20": [80, 443]})
        result = run_port_scan(TARGETS, _config(), scanner=scanner)
        assert sorted(c[0] for c in scanner.calls) == ["192.168.1.1", "192.168.1.20"]
        assert result.services == {
            "aa:bb:cc:00:00:14": [ServiceRecord("tcp", 80), ServiceRecord("tcp", 443)],
        }
        assert result.as_dict() == {
            "enabled": True,
            "available": True,
            "targets": 2,
            "attempted": 2,
            "succeeded": 2,
            "services_written": 2,
            "ports": [22, 80, 443],
            "timeout": 3.0,
        }

    @pytest.mark.parametrize("overrides", [{"allowlist": []}, {"ports": [0, 70000]}])
    def test_skipped_without_allowlist_or_ports(self, overrides):
        scanner = FakeScanner()
        result = run_port_scan(TARGETS, _config(**overrides), scanner=scanner)
        assert result.as_dict() == {
            "enabled": True,
            "available": False,
            "reason": "no_allowlist_or_ports",
        }
        assert scanner.calls == []

    @patch("nmap.PortScanner", side_effect=nmap.PortScannerError("nmap program was not found in path"))
    def test_skipped_without_nmap(self, _mock_scanner_cls):
        result = run_port_scan(TARGETS, _config())
        assert result.as_dict()["reason"] == "nmap_not_found"

    def test_host_failure_is_reported(self):
        errors = []
        scanner = FakeScanner(fail={"192.168.1.1"})
        result = run_port_scan(
            TARGETS, _config(), scanner=scanner,
            on_error=lambda address, e: errors.append(address),
        )
        assert result.attempted == 2
        assert result.succeeded == 1
        assert errors == ["192.168.1.1"]

    def test_stop_skips_remaining_targets(self):
        scanner = FakeScanner()
        result = run_port_scan(TARGETS, _config(), should_stop=lambda: True, scanner=scanner)
        assert scanner.calls == []
        assert result.attempted == 0
        assert result.as_dict()["canceled"] is True
