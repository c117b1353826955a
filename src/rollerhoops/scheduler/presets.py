"""Scan presets and scan tags: per-run adjustments to the worker's limits.

A run may carry {"preset": "fast" | "normal" | "deep"} and
{"tags": [...]} in its stats. Neither ever mutates the configured
WorkerConfig; both return a copy.

  fast   -- tighter limits, SNMP, topology and port scan off
  normal -- configured values unchanged
  deep   -- wider limits, SNMP, LLDP/CDP and port scan on

Scan tags switch individual stages on after the preset is applied.
"""

from __future__ import annotations

from dataclasses import replace

from rollerhoops.config import WorkerConfig

SCAN_PRESET_FAST = "fast"
SCAN_PRESET_NORMAL = "normal"
SCAN_PRESET_DEEP = "deep"

SCAN_PRESETS = (SCAN_PRESET_FAST, SCAN_PRESET_NORMAL, SCAN_PRESET_DEEP)

SCAN_TAG_PORTS = "ports"
SCAN_TAG_SNMP = "snmp"
SCAN_TAG_TOPOLOGY = "topology"
SCAN_TAG_NAMES = "names"

SCAN_TAGS = (SCAN_TAG_NAMES, SCAN_TAG_PORTS, SCAN_TAG_SNMP, SCAN_TAG_TOPOLOGY)


def canonicalize_scan_preset(value) -> str:
    """Normalise a preset value; anything unknown means normal.

    >>> canonicalize_scan_preset(" Deep ")
    'deep'
    >>> canonicalize_scan_preset(3)
    'normal'
    """
    if not isinstance(value, str):
        return SCAN_PRESET_NORMAL
    preset = value.strip().lower()
    if preset in SCAN_PRESETS:
        return preset
    return SCAN_PRESET_NORMAL


def canonicalize_scan_tags(value) -> list[str]:
    """Normalise scan tags to a sorted list of known tags.

    Accepts a single string or a list; unknown tags are dropped.

    >>> canonicalize_scan_tags([" SNMP", "ports", "snmp", "bogus"])
    ['ports', 'snmp']
    >>> canonicalize_scan_tags("topology")
    ['topology']
    """
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, (list, tuple)):
        return []
    tags = set()
    for item in value:
        if not isinstance(item, str):
            continue
        tag = item.strip().lower()
        if tag in SCAN_TAGS:
            tags.add(tag)
    return sorted(tags)


def _lower(configured, cap):
    """The smaller of two limits, ignoring an unset (non-positive) one."""
    if configured <= 0:
        return cap
    return min(configured, cap)


def _higher(configured, floor):
    if configured <= 0:
        return floor
    return max(configured, floor)


def apply_scan_preset(config: WorkerConfig, preset: str) -> WorkerConfig:
    """Return config adjusted for preset."""
    if preset == SCAN_PRESET_FAST:
        return replace(
            config,
            max_runtime=_lower(config.max_runtime, 15.0),
            max_targets=_lower(config.max_targets, 256),
            ping_timeout=_lower(config.ping_timeout, 0.4),
            ping_workers=_lower(config.ping_workers, 16),
            enrich_max_targets=_lower(config.enrich_max_targets, 32),
            enrich_workers=_lower(config.enrich_workers, 4),
            snmp=replace(config.snmp, enabled=False),
            topology=replace(config.topology, lldp=False, cdp=False),
            port_scan=replace(config.port_scan, enabled=False),
        )
    if preset == SCAN_PRESET_DEEP:
        return replace(
            config,
            max_runtime=_higher(config.max_runtime, 120.0),
            max_targets=_higher(config.max_targets, 4096),
            ping_timeout=_higher(config.ping_timeout, 1.5),
            ping_workers=_higher(config.ping_workers, 32),
            enrich_max_targets=_higher(config.enrich_max_targets, 256),
            enrich_workers=_higher(config.enrich_workers, 16),
            snmp=replace(config.snmp, enabled=True),
            topology=replace(config.topology, lldp=True, cdp=True),
            port_scan=replace(
                config.port_scan,
                enabled=True,
                workers=_higher(config.port_scan.workers, 8),
                timeout=_higher(config.port_scan.timeout, 5.0),
                max_targets=_higher(config.port_scan.max_targets, 64),
            ),
        )
    return config


def apply_scan_tags(config: WorkerConfig, tags: list[str]) -> WorkerConfig:
    """Return config with the stages named by tags switched on."""
    if SCAN_TAG_PORTS in tags:
        config = replace(config, port_scan=replace(config.port_scan, enabled=True))
    if SCAN_TAG_SNMP in tags or SCAN_TAG_TOPOLOGY in tags:
        config = replace(config, snmp=replace(config.snmp, enabled=True))
    if SCAN_TAG_TOPOLOGY in tags:
        config = replace(config, topology=replace(config.topology, lldp=True, cdp=True))
    if SCAN_TAG_NAMES in tags:
        config = replace(config, name_resolution=True)
    return config
