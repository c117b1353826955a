"""Load discovery configuration from rollerhoops.toml."""

from __future__ import annotations

import tomllib
from dataclasses import dataclass, field
from pathlib import Path


@dataclass
class DatabaseConfig:
    """Connection settings for the run store.

    An empty url selects the in-process memory store.
    """

    url: str = ""


@dataclass
class CacheConfig:
    """Configuration for the local JSON fact cache."""

    directory: Path = field(default_factory=lambda: Path(".cache"))


@dataclass
class SNMPConfig:
    """SNMP client settings (SNMPv1/v2c community auth only)."""

    enabled: bool = False
    community: str = "public"
    version: str = "2c"
    port: int = 161
    timeout: float = 0.9
    retries: int = 0
    max_repetitions: int = 10


@dataclass
class TopologyConfig:
    """LLDP/CDP neighbor collection.

    Neighbor tables are only walked on devices whose address falls in
    one of the allowlist CIDRs.
    """

    lldp: bool = False
    cdp: bool = False
    allowlist: list[str] = field(default_factory=list)

    @property
    def enabled(self) -> bool:
        return self.lldp or self.cdp


@dataclass
class PortScanConfig:
    """TCP connect scan of discovered devices, via nmap.

    Only devices whose address falls in one of the allowlist CIDRs are
    scanned.
    """

    enabled: bool = False
    allowlist: list[str] = field(default_factory=list)
    ports: list[int] = field(default_factory=lambda: [22, 80, 443])
    workers: int = 4
    timeout: float = 3.0
    max_targets: int = 24


@dataclass
class WorkerConfig:
    """Discovery worker loop and per-run limits.

    Durations are in seconds.
    """

    poll_interval: float = 0.4
    run_delay: float = 0.0
    max_runtime: float = 30.0
    arp_table_path: Path = field(default_factory=lambda: Path("/proc/net/arp"))
    max_targets: int = 1024
    ping_timeout: float = 0.8
    ping_workers: int = 16
    enrich_max_targets: int = 64
    enrich_workers: int = 8
    name_resolution: bool = True
    name_timeout: float = 0.25
    snmp: SNMPConfig = field(default_factory=SNMPConfig)
    topology: TopologyConfig = field(default_factory=TopologyConfig)
    port_scan: PortScanConfig = field(default_factory=PortScanConfig)


@dataclass
class DiscoveryConfig:
    """Full configuration loaded from rollerhoops.toml."""

    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    worker: WorkerConfig = field(default_factory=WorkerConfig)


def _positive(section: str, key: str, value, default):
    """Return value if it is a positive number, else raise ValueError."""
    if value is None:
        return default
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
        msg = f"[{section}] {key} must be a positive number, got {value!r}"
        raise ValueError(msg)
    return value


def _build_snmp(data: dict) -> SNMPConfig:
    """Build SNMP config from parsed TOML data."""
    section = data.get("snmp", {})
    if not section:
        return SNMPConfig()
    defaults = SNMPConfig()
    retries = section.get("retries", defaults.retries)
    if retries < 0:
        retries = 0
    return SNMPConfig(
        enabled=section.get("enabled", defaults.enabled),
        community=section.get("community", "").strip() or defaults.community,
        version=str(section.get("version", defaults.version)),
        port=_positive("snmp", "port", section.get("port"), defaults.port),
        timeout=_positive("snmp", "timeout", section.get("timeout"), defaults.timeout),
        retries=retries,
        max_repetitions=_positive(
            "snmp", "max_repetitions", section.get("max_repetitions"),
            defaults.max_repetitions,
        ),
    )


def _build_topology(data: dict) -> TopologyConfig:
    """Build topology config from parsed TOML data."""
    section = data.get("topology", {})
    if not section:
        return TopologyConfig()
    return TopologyConfig(
        lldp=section.get("lldp", False),
        cdp=section.get("cdp", False),
        allowlist=[c.strip() for c in section.get("allowlist", []) if c.strip()],
    )


def _build_port_scan(data: dict) -> PortScanConfig:
    """Build port scan config from parsed TOML data."""
    section = data.get("port_scan", {})
    if not section:
        return PortScanConfig()
    defaults = PortScanConfig()
    ports = section.get("ports", defaults.ports)
    for port in ports:
        if isinstance(port, bool) or not isinstance(port, int) or not 0 < port < 65536:
            msg = f"[port_scan] ports must be between 1 and 65535, got {port!r}"
            raise ValueError(msg)
    return PortScanConfig(
        enabled=section.get("enabled", defaults.enabled),
        allowlist=[c.strip() for c in section.get("allowlist", []) if c.strip()],
        ports=sorted(set(ports)),
        workers=_positive("port_scan", "workers", section.get("workers"), defaults.workers),
        timeout=_positive("port_scan", "timeout", section.get("timeout"), defaults.timeout),
        max_targets=_positive(
            "port_scan", "max_targets", section.get("max_targets"), defaults.max_targets,
        ),
    )


def _build_worker(data: dict) -> WorkerConfig:
    """Build worker config from parsed TOML data.

    SNMP, topology and port scanning live in their own TOML sections but are carried
    on the worker config so scan presets can adjust them together.
    """
    section = data.get("worker", {})
    defaults = WorkerConfig()

    def positive(key: str):
        return _positive("worker", key, section.get(key), getattr(defaults, key))

    run_delay = section.get("run_delay", defaults.run_delay)
    if run_delay < 0:
        msg = f"[worker] run_delay must not be negative, got {run_delay!r}"
        raise ValueError(msg)

    return WorkerConfig(
        poll_interval=positive("poll_interval"),
        run_delay=run_delay,
        max_runtime=positive("max_runtime"),
        arp_table_path=Path(section.get("arp_table_path", defaults.arp_table_path)),
        max_targets=positive("max_targets"),
        ping_timeout=positive("ping_timeout"),
        ping_workers=positive("ping_workers"),
        enrich_max_targets=positive("enrich_max_targets"),
        enrich_workers=positive("enrich_workers"),
        name_resolution=section.get("name_resolution", defaults.name_resolution),
        name_timeout=positive("name_timeout"),
        snmp=_build_snmp(data),
        topology=_build_topology(data),
        port_scan=_build_port_scan(data),
    )


def load_config(config_path: Path | str | None = None) -> DiscoveryConfig:
    """Load discovery configuration from a TOML file.

    If config_path is None, looks for rollerhoops.toml in the current
    directory.

    Raises:
        FileNotFoundError: If the file does not exist.
        ValueError: If a numeric setting is out of range.
    """
    if config_path is None:
        config_path = Path("rollerhoops.toml")
    else:
        config_path = Path(config_path)

    with open(config_path, "rb") as f:
        data = tomllib.load(f)

    return DiscoveryConfig(
        database=DatabaseConfig(url=data.get("database", {}).get("url", "")),
        cache=CacheConfig(
            directory=Path(data.get("cache", {}).get("directory", ".cache")),
        ),
        worker=_build_worker(data),
    )
