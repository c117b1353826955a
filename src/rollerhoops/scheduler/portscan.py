"""TCP connect scan of enrichment targets with nmap.

Scans run one host per nmap invocation, in parallel threads, and only
for targets inside the port scan allowlist. A missing nmap binary or an
empty allowlist/port list skips the stage without failing the run.
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Callable

from rollerhoops.models.discovery import ServiceRecord
from rollerhoops.scheduler.enrichment import allowed_by_allowlist

if TYPE_CHECKING:
    from rollerhoops.config import PortScanConfig
    from rollerhoops.scheduler.scope import EnrichmentTarget

SKIP_NO_ALLOWLIST = "no_allowlist_or_ports"
SKIP_NMAP_NOT_FOUND = "nmap_not_found"


@dataclass
class PortScanResult:
    """Outcome of the port scan stage for one run."""

    enabled: bool = True
    available: bool = False
    skipped_reason: str | None = None
    targets: int = 0
    attempted: int = 0
    succeeded: int = 0
    ports: list[int] = field(default_factory=list)
    timeout: float = 0.0
    canceled: bool = False
    services: dict[str, list[ServiceRecord]] = field(default_factory=dict)

    @property
    def services_written(self) -> int:
        return sum(len(s) for s in self.services.values())

    def as_dict(self) -> dict:
        if self.skipped_reason is not None:
            return {
                "enabled": self.enabled,
                "available": False,
                "reason": self.skipped_reason,
            }
        stats = {
            "enabled": self.enabled,
            "available": self.available,
            "targets": self.targets,
            "attempted": self.attempted,
            "succeeded": self.succeeded,
            "services_written": self.services_written,
            "ports": list(self.ports),
            "timeout": self.timeout,
        }
        if self.canceled:
            stats["canceled"] = True
        return stats


def valid_ports(ports: list[int]) -> list[int]:
    """Sorted unique ports in 1-65535.

    >>> valid_ports([443, 22, 0, 70000, 22])
    [22, 443]
    """
    return sorted({p for p in ports if isinstance(p, int) and 0 < p < 65536})


def select_scan_targets(
    targets: list[EnrichmentTarget],
    allowlist: list[str],
    max_targets: int,
) -> list[EnrichmentTarget]:
    """Allowlisted targets, one per device ID, at most max_targets."""
    selected = []
    seen: set[str] = set()
    for target in targets:
        if target.device_id in seen:
            continue
        if not allowed_by_allowlist(target.address, allowlist):
            continue
        seen.add(target.device_id)
        selected.append(target)
        if len(selected) >= max_targets:
            break
    return selected


def nmap_arguments(timeout: float) -> str:
    """nmap flags for a single-host TCP connect scan.

    >>> nmap_arguments(3.0)
    '-Pn -sT --host-timeout 3s --max-retries 1 --open'
    """
    return f"-Pn -sT --host-timeout {max(1, int(timeout))}s --max-retries 1 --open"


def parse_scan_result(address: str, result: dict) -> list[ServiceRecord]:
    """Extract open TCP ports for address from a PortScanner.scan() result."""
    host = result.get("scan", {}).get(address)
    if not host:
        return []
    services = []
    for port, info in sorted(host.get("tcp", {}).items()):
        if info.get("state") != "open":
            continue
        services.append(ServiceRecord(
            protocol="tcp",
            port=int(port),
            name=info.get("name") or None,
        ))
    return services


def scan_host(address: str, ports: list[int], timeout: float) -> list[ServiceRecord]:
    """Scan one host and return its open TCP ports.

    Raises:
        nmap.PortScannerError: If nmap fails or is not installed.
        nmap.PortScannerTimeout: If nmap overruns the timeout.
    """
    import nmap

    scanner = nmap.PortScanner()
    result = scanner.scan(
        hosts=address,
        ports=",".join(str(p) for p in ports),
        arguments=nmap_arguments(timeout),
        # Grace period for nmap startup on top of the host timeout.
        timeout=int(timeout) + 5,
    )
    return parse_scan_result(address, result)


def nmap_available() -> bool:
    import nmap

    try:
        nmap.PortScanner()
    except nmap.PortScannerError:
        return False
    return True


def run_port_scan(
    targets: list[EnrichmentTarget],
    config: PortScanConfig,
    should_stop: Callable[[], bool] | None = None,
    scanner: Callable[[str, list[int], float], list[ServiceRecord]] = scan_host,
    on_error: Callable[[str, Exception], None] | None = None,
) -> PortScanResult:
    """Scan allowlisted targets in parallel.

    Once should_stop returns True, targets not yet handed to a worker
    are skipped and the result is marked canceled. A failing host is
    reported through on_error and counted as attempted but not succeeded.
    """
    ports = valid_ports(config.ports)
    if not config.allowlist or not ports:
        return PortScanResult(enabled=config.enabled, skipped_reason=SKIP_NO_ALLOWLIST)
    if scanner is scan_host and not nmap_available():
        return PortScanResult(enabled=config.enabled, skipped_reason=SKIP_NMAP_NOT_FOUND)

    selected = select_scan_targets(targets, config.allowlist, config.max_targets)
    result = PortScanResult(
        enabled=config.enabled,
        available=True,
        targets=len(selected),
        ports=ports,
        timeout=config.timeout,
    )

    def scan_one(target: EnrichmentTarget):
        if should_stop is not None and should_stop():
            return None
        try:
            return scanner(target.address, ports, config.timeout)
        except Exception as e:
            if on_error is not None:
                on_error(target.address, e)
            return e

    with ThreadPoolExecutor(max_workers=config.workers, thread_name_prefix="portscan") as pool:
        outcomes = list(pool.map(scan_one, selected))

    for target, outcome in zip(selected, outcomes):
        if outcome is None:
            result.canceled = True
            continue
        result.attempted += 1
        if isinstance(outcome, Exception):
            continue
        result.succeeded += 1
        if outcome:
            result.services[target.device_id] = outcome
    return result
