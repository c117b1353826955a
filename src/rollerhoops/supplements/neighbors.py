"""LLDP and CDP neighbor tables read over SNMP.

Both tables are indexed by two trailing arcs: the local port (or
ifIndex) and a per-port remote index. Each column is walked separately
and merged into one Neighbor per index pair. A failing column is
skipped so a partially supported MIB still yields neighbors.
"""

from __future__ import annotations

import ipaddress
from typing import TYPE_CHECKING

from rollerhoops.models.names import SOURCE_CDP, SOURCE_LLDP
from rollerhoops.models.snmp import Neighbor
from rollerhoops.supplements.snmp_common import (
    SNMPError,
    SNMPValue,
    ValueKind,
    format_octets,
    parse_oid_suffix,
)

if TYPE_CHECKING:
    from rollerhoops.supplements.snmp_common import SNMPSession

# LLDP-MIB lldpRemTable columns
LLDP_REM_CHASSIS_ID_OID = "1.0.8802.1.1.2.1.4.1.1.5"
LLDP_REM_PORT_ID_OID = "1.0.8802.1.1.2.1.4.1.1.7"
LLDP_REM_PORT_DESC_OID = "1.0.8802.1.1.2.1.4.1.1.8"
LLDP_REM_SYS_NAME_OID = "1.0.8802.1.1.2.1.4.1.1.9"

# CISCO-CDP-MIB cdpCacheTable columns
CDP_CACHE_ADDRESS_OID = "1.3.6.1.4.1.9.9.23.1.2.1.1.4"
CDP_CACHE_DEVICE_ID_OID = "1.3.6.1.4.1.9.9.23.1.2.1.1.6"
CDP_CACHE_DEVICE_PORT_OID = "1.3.6.1.4.1.9.9.23.1.2.1.1.7"

_TEXT_KINDS = (ValueKind.OCTETS, ValueKind.OID)


def parse_cdp_address(raw: bytes) -> str | None:
    """Decode cdpCacheAddress into an IP string.

    Agents send either the bare 4/16 address bytes or a small
    type/length/address record (type 1 = IPv4, type 2 = IPv6).

    >>> parse_cdp_address(bytes([10, 0, 0, 1]))
    '10.0.0.1'
    >>> parse_cdp_address(bytes([1, 4, 192, 168, 1, 1]))
    '192.168.1.1'
    """
    if len(raw) in (4, 16):
        return str(ipaddress.ip_address(raw))
    if len(raw) >= 6:
        addr_type, addr_len = raw[0], raw[1]
        if addr_len <= 0 or len(raw) < 2 + addr_len:
            return None
        addr = raw[2:2 + addr_len]
        if (addr_type, addr_len) in ((1, 4), (2, 16)):
            return str(ipaddress.ip_address(addr))
    return None


async def _walk_pairs(
    session: SNMPSession,
    base_oid: str,
) -> list[tuple[tuple[int, int], SNMPValue]]:
    """Walk a column keyed by its trailing two arcs; [] if the walk fails."""
    try:
        rows = await session.bulk_walk(base_oid)
    except SNMPError:
        return []
    keyed = []
    for oid, value in rows:
        key = parse_oid_suffix(oid, base_oid, 2)
        if key is not None:
            keyed.append((key, value))
    return keyed


def _set_remote_name(neighbor: Neighbor, value: SNMPValue) -> bool:
    if value.kind not in _TEXT_KINDS:
        return False
    neighbor.remote_device_name = value.as_string()
    return True


def _set_port_desc(neighbor: Neighbor, value: SNMPValue) -> bool:
    if value.kind not in _TEXT_KINDS:
        return False
    neighbor.remote_port_name = value.as_string()
    return True


def _set_port_id(neighbor: Neighbor, value: SNMPValue) -> bool:
    if value.kind not in _TEXT_KINDS:
        return False
    if (neighbor.remote_port_name or "").strip():
        return True
    if value.kind == ValueKind.OCTETS:
        neighbor.remote_port_name = format_octets(value.octets).strip() or None
    else:
        neighbor.remote_port_name = value.as_string()
    return True


def _set_chassis(neighbor: Neighbor, value: SNMPValue) -> bool:
    if value.kind not in _TEXT_KINDS or not value.octets:
        return False
    # Only MAC-address subtypes carry exactly six bytes.
    if len(value.octets) == 6:
        mac = value.as_mac()
        if mac is not None:
            neighbor.remote_chassis_mac = mac
    return True


LLDP_COLUMNS = [
    (LLDP_REM_SYS_NAME_OID, _set_remote_name),
    (LLDP_REM_PORT_DESC_OID, _set_port_desc),
    (LLDP_REM_PORT_ID_OID, _set_port_id),
    (LLDP_REM_CHASSIS_ID_OID, _set_chassis),
]


async def collect_lldp(session: SNMPSession) -> list[Neighbor]:
    """Read lldpRemTable into Neighbor records.

    Port description is preferred over port ID. Rows without any of a
    local index, remote name or chassis MAC are dropped.
    """
    rows: dict[tuple[int, int], Neighbor] = {}
    for base_oid, apply in LLDP_COLUMNS:
        for key, value in await _walk_pairs(session, base_oid):
            neighbor = rows.get(key) or Neighbor(source=SOURCE_LLDP)
            if not apply(neighbor, value):
                continue
            rows[key] = neighbor
            if neighbor.local_if_index is None:
                neighbor.local_if_index = key[0]

    return [
        n for _key, n in sorted(rows.items())
        if n.local_if_index is not None
        or n.remote_device_name is not None
        or n.remote_chassis_mac is not None
    ]


async def collect_cdp(session: SNMPSession) -> list[Neighbor]:
    """Read cdpCacheTable into Neighbor records.

    The first index arc is the local ifIndex. Rows with neither a
    device ID nor a decodable management address are dropped.
    """
    rows: dict[tuple[int, int], Neighbor] = {}

    def ensure(key: tuple[int, int]) -> Neighbor:
        if key not in rows:
            rows[key] = Neighbor(source=SOURCE_CDP, local_if_index=key[0])
        return rows[key]

    for key, value in await _walk_pairs(session, CDP_CACHE_DEVICE_ID_OID):
        if value.kind in _TEXT_KINDS:
            ensure(key).remote_device_name = value.as_string()
    for key, value in await _walk_pairs(session, CDP_CACHE_DEVICE_PORT_OID):
        if value.kind in _TEXT_KINDS:
            ensure(key).remote_port_name = value.as_string()
    for key, value in await _walk_pairs(session, CDP_CACHE_ADDRESS_OID):
        if value.kind != ValueKind.OCTETS or not value.octets:
            continue
        ip = parse_cdp_address(value.octets)
        if ip is not None:
            ensure(key).remote_mgmt_ip = ip

    return [
        n for _key, n in sorted(rows.items())
        if n.remote_device_name is not None or n.remote_mgmt_ip is not None
    ]
