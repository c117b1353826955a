"""Run scope handling: parse the scope, sweep it with ICMP, read the ARP cache.

A run's scope is an optional CIDR prefix or single IP. The ping sweep
only exists to populate the kernel neighbour table; the ARP scrape that
follows is what turns reachable addresses into enrichment targets.
"""

from __future__ import annotations

import ipaddress
import shutil
import subprocess
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import Callable

IPNetwork = ipaddress.IPv4Network | ipaddress.IPv6Network

_ZERO_MAC = "00:00:00:00:00:00"

# /proc/net/arp flag: entry is complete (ATF_COM).
ATF_COMPLETE = 0x2


@dataclass(frozen=True)
class ARPEntry:
    """A complete IPv4 neighbour from the kernel ARP table."""

    ip: str
    mac: str


@dataclass(frozen=True)
class EnrichmentTarget:
    """A device address queued for enrichment.

    device_id is the MAC address when one is known, else the IP.
    """

    device_id: str
    address: str
    mac: str | None = None


@dataclass(frozen=True)
class PingSweepResult:
    attempted: int = 0
    succeeded: int = 0
    available: bool = False


def parse_scope(scope: str | None) -> IPNetwork | None:
    """Parse a run scope.

    Returns None for a missing or blank scope, the network for a CIDR
    prefix (host bits are masked off), and a /32 or /128 for a single IP.

    Raises:
        ValueError: If the scope is neither a prefix nor an address.

    >>> parse_scope("192.168.1.7/24")
    IPv4Network('192.168.1.0/24')
    >>> parse_scope("10.0.0.5")
    IPv4Network('10.0.0.5/32')
    """
    if scope is None or not scope.strip():
        return None
    text = scope.strip()
    try:
        return ipaddress.ip_network(text, strict=False)
    except ValueError:
        pass
    msg = f"scope must be a CIDR prefix or a single IP (got {text!r})"
    raise ValueError(msg)


def count_scope_targets(network: IPNetwork, max_targets: int) -> int:
    """Return the number of addresses a sweep of network would touch.

    Raises:
        ValueError: If the scope exceeds max_targets, is an IPv4 /0 or /1,
            or is an IPv6 prefix wider than a single address.
    """
    if network.version == 4:
        host_bits = 32 - network.prefixlen
        if host_bits >= 31:
            msg = f"scope too large (/{network.prefixlen}); max targets is {max_targets}"
            raise ValueError(msg)
        count = 1 << host_bits
        if count > max_targets:
            msg = f"scope too large ({count} targets); max targets is {max_targets}"
            raise ValueError(msg)
        return count

    if network.prefixlen < 128:
        msg = "ipv6 scope must be a single IP (/128) for now"
        raise ValueError(msg)
    return 1


def parse_proc_net_arp(content: str) -> list[ARPEntry]:
    """Parse /proc/net/arp, keeping complete entries with a real MAC.

    The first line is the column header and is skipped.
    """
    entries = []
    for line in content.splitlines()[1:]:
        fields = line.split()
        if len(fields) < 6:
            continue
        ip_str, _hw_type, flags_str, mac = fields[0], fields[1], fields[2], fields[3].lower()
        try:
            flags = int(flags_str, 0)
        except ValueError:
            continue
        if not flags & ATF_COMPLETE:
            continue
        if mac == _ZERO_MAC or not _is_mac(mac):
            continue
        try:
            ip = ipaddress.ip_address(ip_str)
        except ValueError:
            continue
        entries.append(ARPEntry(ip=str(ip), mac=mac))
    return entries


def _is_mac(value: str) -> bool:
    parts = value.split(":")
    if len(parts) != 6:
        return False
    try:
        return all(len(p) == 2 and 0 <= int(p, 16) <= 0xFF for p in parts)
    except ValueError:
        return False


def scrape_arp(
    arp_table_path: Path,
    network: IPNetwork | None,
) -> tuple[int, list[EnrichmentTarget]]:
    """Read the ARP table and return in-scope entries as targets.

    A missing table yields no entries.

    Returns:
        (number of in-scope ARP entries, deduplicated targets)
    """
    try:
        content = Path(arp_table_path).read_text()
    except FileNotFoundError:
        return 0, []

    in_scope = 0
    seen: set[tuple[str, str]] = set()
    targets: list[EnrichmentTarget] = []
    for entry in parse_proc_net_arp(content):
        if network is not None and ipaddress.ip_address(entry.ip) not in network:
            continue
        in_scope += 1
        key = (entry.mac, entry.ip)
        if key in seen:
            continue
        seen.add(key)
        targets.append(EnrichmentTarget(device_id=entry.mac, address=entry.ip, mac=entry.mac))
    return in_scope, targets


def ping_once(ping_path: str, ip: str, timeout: float) -> bool:
    """Send one echo request; True if the host answered within timeout."""
    try:
        result = subprocess.run(
            [ping_path, "-c", "1", "-W", "1", ip],
            capture_output=True,
            timeout=timeout,
        )
    except (subprocess.TimeoutExpired, OSError):
        return False
    return result.returncode == 0


def ping_sweep(
    network: IPNetwork,
    max_targets: int,
    timeout: float,
    workers: int,
    should_stop: Callable[[], bool] | None = None,
) -> PingSweepResult:
    """Ping every address of an IPv4 scope in parallel.

    Returns available=False without pinging when no ping binary exists.
    IPv6 scopes are not swept. Once should_stop returns True, addresses
    not yet handed to a worker are skipped.

    Raises:
        ValueError: If the scope is too large (see count_scope_targets).
    """
    ping_path = shutil.which("ping")
    if ping_path is None:
        return PingSweepResult(available=False)

    count_scope_targets(network, max_targets)
    if network.version != 4:
        return PingSweepResult(available=True)

    attempted = 0
    succeeded = 0
    with ThreadPoolExecutor(max_workers=workers) as pool:
        futures = []
        for ip in network:
            futures.append(pool.submit(_ping_unless_stopped, ping_path, str(ip), timeout, should_stop))
        for future in futures:
            outcome = future.result()
            if outcome is None:
                continue
            attempted += 1
            if outcome:
                succeeded += 1
    return PingSweepResult(attempted=attempted, succeeded=succeeded, available=True)


def _ping_unless_stopped(
    ping_path: str,
    ip: str,
    timeout: float,
    should_stop: Callable[[], bool] | None,
) -> bool | None:
    """ping_once, or None without pinging once should_stop is True."""
    if should_stop is not None and should_stop():
        return None
    return ping_once(ping_path, ip, timeout)
