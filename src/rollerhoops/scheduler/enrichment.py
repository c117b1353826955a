"""Per-target enrichment: names, SNMP system/interfaces, VLANs, neighbors, tags.

Targets are processed concurrently, at most enrich_workers at a time.
A failing step on one target is recorded in that target's facts and
never fails the run. Counters are kept on an EnrichmentStats object
owned by the caller, so they remain readable when the run is cut short.
"""

from __future__ import annotations

import asyncio
import ipaddress
import sys
from dataclasses import dataclass
from typing import TYPE_CHECKING

from rollerhoops.derivations.device_tags import (
    add_evidence,
    merge_suggestions,
    suggest_from_names,
    suggest_from_snmp,
)
from rollerhoops.derivations.display_name import (
    MIN_DISPLAY_SCORE,
    choose_best_display_name,
    normalize_candidate,
)
from rollerhoops.models.names import SOURCE_SNMP, NameCandidate
from rollerhoops.scheduler.facts import DeviceFacts, LinkRecord
from rollerhoops.supplements.bridge import VLANCollector
from rollerhoops.supplements.snmp_common import SNMPError

if TYPE_CHECKING:
    from rollerhoops.config import WorkerConfig
    from rollerhoops.models.snmp import Neighbor
    from rollerhoops.scheduler.scope import EnrichmentTarget
    from rollerhoops.supplements.names import NameResolver
    from rollerhoops.supplements.snmp import SNMPClient


@dataclass
class EnrichmentStats:
    targets: int = 0
    snmp_ok: int = 0
    names_written: int = 0
    vlans_written: int = 0
    links_written: int = 0
    canceled: bool = False

    def as_dict(self) -> dict:
        stats = {
            "targets": self.targets,
            "snmp_ok": self.snmp_ok,
            "names_written": self.names_written,
            "vlans_written": self.vlans_written,
            "links_written": self.links_written,
        }
        if self.canceled:
            stats["canceled"] = True
        return stats


def allowed_by_allowlist(address: str, allowlist: list[str]) -> bool:
    """True if address falls inside any allowlist CIDR.

    An empty allowlist allows nothing. Unparseable entries are ignored.
    """
    try:
        ip = ipaddress.ip_address(address)
    except ValueError:
        return False
    for cidr in allowlist:
        try:
            if ip in ipaddress.ip_network(cidr, strict=False):
                return True
        except ValueError:
            continue
    return False


def canonicalize_link_endpoints(
    a_device: str,
    a_interface: str | None,
    b_device: str,
    b_interface: str | None,
) -> tuple[str, str | None, str, str | None]:
    """Order two endpoints so the same link always reads the same way.

    The lower device ID comes first; for a self-link the lower interface
    (with None sorting as empty) does.
    """
    if a_device != b_device:
        if a_device < b_device:
            return a_device, a_interface, b_device, b_interface
        return b_device, b_interface, a_device, a_interface
    if (a_interface or "") <= (b_interface or ""):
        return a_device, a_interface, b_device, b_interface
    return b_device, b_interface, a_device, a_interface


def make_link_key(
    source: str,
    a_device: str,
    a_interface: str | None,
    b_device: str,
    b_interface: str | None,
) -> str:
    """Build the stable identity of a link; "-" marks a missing interface.

    >>> make_link_key("lldp", "dev-a", "ge-0/0/1", "dev-b", None)
    'lldp:dev-a:ge-0/0/1:dev-b:-'
    """
    a_key = (a_interface or "").strip() or "-"
    b_key = (b_interface or "").strip() or "-"
    return f"{source.strip()}:{a_device}:{a_key}:{b_device}:{b_key}"


def _remote_device_id(neighbor: Neighbor) -> str | None:
    """Identify the far end by chassis MAC, management IP, then name."""
    if neighbor.remote_chassis_mac:
        return neighbor.remote_chassis_mac
    if neighbor.remote_mgmt_ip:
        return neighbor.remote_mgmt_ip
    if neighbor.remote_device_name and neighbor.remote_device_name.strip():
        return neighbor.remote_device_name.strip().lower()
    return None


class Enricher:
    """Runs enrichment for a batch of targets under one WorkerConfig."""

    def __init__(
        self,
        config: WorkerConfig,
        resolver: NameResolver | None,
        snmp_client: SNMPClient | None,
        verbose: bool = False,
    ):
        self.config = config
        self.resolver = resolver
        self.snmp_client = snmp_client
        self.verbose = verbose

    @property
    def enabled(self) -> bool:
        names_on = self.config.name_resolution and self.resolver is not None
        snmp_on = self.config.snmp.enabled and self.snmp_client is not None
        return names_on or snmp_on

    async def enrich_targets(
        self,
        targets: list[EnrichmentTarget],
        stats: EnrichmentStats,
        facts: list[DeviceFacts],
    ) -> None:
        """Enrich targets, appending to facts and updating stats in place.

        Each device ID is enriched once even if it appears with several
        addresses. At most enrich_max_targets targets are processed.
        """
        unique: list[EnrichmentTarget] = []
        seen: set[str] = set()
        for target in targets:
            if target.device_id in seen:
                continue
            seen.add(target.device_id)
            unique.append(target)
        unique = unique[:self.config.enrich_max_targets]
        stats.targets = len(unique)

        semaphore = asyncio.Semaphore(self.config.enrich_workers)

        async def run_one(target: EnrichmentTarget) -> None:
            async with semaphore:
                device = DeviceFacts(
                    device_id=target.device_id,
                    address=target.address,
                    mac=target.mac,
                )
                facts.append(device)
                await self.enrich_target(device, stats)

        await asyncio.gather(*(run_one(t) for t in unique))

    async def _resolve_names(self, device: DeviceFacts, stats: EnrichmentStats) -> None:
        try:
            found = await self.resolver.lookup_addr(
                device.device_id, device.address, timeout=self.config.name_timeout,
            )
        except ExceptionGroup as eg:
            device.errors.append(f"names: {'; '.join(str(e) for e in eg.exceptions)}")
            return
        for candidate in found:
            try:
                normalized = normalize_candidate(candidate.source, candidate.name)
            except ValueError:
                continue
            if not normalized.accepted:
                continue
            device.candidates.append(NameCandidate(
                device_id=device.device_id,
                name=normalized.stored_name,
                address=device.address,
                source=candidate.source,
            ))
            stats.names_written += 1

    async def enrich_target(self, device: DeviceFacts, stats: EnrichmentStats) -> None:
        """Run every enabled enrichment step for one device."""
        if self.config.name_resolution and self.resolver is not None:
            await self._resolve_names(device, stats)

        system = None
        if self.config.snmp.enabled and self.snmp_client is not None:
            try:
                system = await self.snmp_client.get_system(device.address)
            except (SNMPError, ValueError) as e:
                device.errors.append(f"snmp: {e}")
            else:
                stats.snmp_ok += 1
                device.system = system
                if system.sys_name:
                    try:
                        normalized = normalize_candidate(SOURCE_SNMP, system.sys_name)
                    except ValueError:
                        normalized = None
                    if normalized is not None and normalized.accepted:
                        device.candidates.append(NameCandidate(
                            device_id=device.device_id,
                            name=normalized.stored_name,
                            address=device.address,
                            source=SOURCE_SNMP,
                        ))

        device.display_name = choose_best_display_name(device.candidates)
        device.tags = add_evidence(merge_suggestions(
            suggest_from_snmp(system.sys_descr if system is not None else None),
            suggest_from_names([c.name for c in device.candidates]),
        ), ip=device.address)
        if self.verbose:
            label = device.display_name or "(unnamed)"
            print(f"  {device.address:<16s} {label}", file=sys.stderr)

        if system is None:
            return
        await self._collect_interfaces(device, stats)

    async def _collect_interfaces(self, device: DeviceFacts, stats: EnrichmentStats) -> None:
        try:
            device.interfaces = await self.snmp_client.walk_interfaces(device.address)
        except SNMPError as e:
            device.errors.append(f"interfaces: {e}")
            return

        if device.interfaces:
            collector = VLANCollector(self.snmp_client)
            try:
                pvids = await collector.collect_pvid_by_if_index(device.address)
            except SNMPError as e:
                device.errors.append(f"vlans: {e}")
            else:
                for if_index, vlan in sorted(pvids.items()):
                    if if_index not in device.interfaces or vlan <= 0:
                        continue
                    device.pvids[if_index] = vlan
                    stats.vlans_written += 1

        topology = self.config.topology
        if topology.enabled and allowed_by_allowlist(device.address, topology.allowlist):
            await self._collect_neighbors(device, stats)

    async def _collect_neighbors(self, device: DeviceFacts, stats: EnrichmentStats) -> None:
        topology = self.config.topology
        if topology.lldp:
            try:
                device.neighbors.extend(await self.snmp_client.walk_lldp_neighbors(device.address))
            except SNMPError as e:
                device.errors.append(f"lldp: {e}")
        if topology.cdp:
            try:
                device.neighbors.extend(await self.snmp_client.walk_cdp_neighbors(device.address))
            except SNMPError as e:
                device.errors.append(f"cdp: {e}")

        for neighbor in device.neighbors:
            remote_id = _remote_device_id(neighbor)
            if remote_id is None or remote_id == device.device_id:
                continue

            if neighbor.remote_device_name and neighbor.remote_device_name.strip():
                try:
                    normalized = normalize_candidate(neighbor.source, neighbor.remote_device_name)
                except ValueError:
                    normalized = None
                if normalized is not None and normalized.score >= MIN_DISPLAY_SCORE:
                    device.remote_candidates.append(NameCandidate(
                        device_id=remote_id,
                        name=normalized.stored_name,
                        address=neighbor.remote_mgmt_ip,
                        source=neighbor.source,
                    ))

            local_interface = None
            local = device.interfaces.get(neighbor.local_if_index)
            if local is not None:
                local_interface = local.name or f"ifIndex:{local.if_index}"
            remote_interface = (neighbor.remote_port_name or "").strip() or None

            a_dev, a_if, b_dev, b_if = canonicalize_link_endpoints(
                device.device_id, local_interface, remote_id, remote_interface,
            )
            device.links.append(LinkRecord(
                link_key=make_link_key(neighbor.source, a_dev, a_if, b_dev, b_if),
                source=neighbor.source,
                a_device_id=a_dev,
                a_interface=a_if,
                b_device_id=b_dev,
                b_interface=b_if,
            ))
            stats.links_written += 1
