"""SNMP enrichment client: system group and interface table.

Each public method opens one session against the target agent, issues
its requests and closes the session before returning.

Usage:
    client = SNMPClient(SNMPConfig(community="public"))
    info = asyncio.run(client.get_system("192.168.1.1"))
"""

from __future__ import annotations

import asyncio
from typing import Callable

from rollerhoops.config import SNMPConfig
from rollerhoops.models.snmp import InterfaceInfo, Neighbor, SystemInfo
from rollerhoops.supplements.snmp_common import (
    SNMPError,
    SNMPValue,
    open_session,
    parse_oid_suffix,
)

# System group scalars (SNMPv2-MIB)
SYSTEM_OIDS = {
    "sys_name": "1.3.6.1.2.1.1.5.0",
    "sys_descr": "1.3.6.1.2.1.1.1.0",
    "sys_object_id": "1.3.6.1.2.1.1.2.0",
    "sys_contact": "1.3.6.1.2.1.1.4.0",
    "sys_location": "1.3.6.1.2.1.1.6.0",
}

# Interface table columns (IF-MIB)
IF_NAME_OID = "1.3.6.1.2.1.31.1.1.1.1"
IF_DESCR_OID = "1.3.6.1.2.1.2.2.1.2"
IF_ALIAS_OID = "1.3.6.1.2.1.31.1.1.1.18"
IF_PHYS_ADDRESS_OID = "1.3.6.1.2.1.2.2.1.6"
IF_ADMIN_STATUS_OID = "1.3.6.1.2.1.2.2.1.7"
IF_OPER_STATUS_OID = "1.3.6.1.2.1.2.2.1.8"
IF_MTU_OID = "1.3.6.1.2.1.2.2.1.4"
IF_SPEED_OID = "1.3.6.1.2.1.2.2.1.5"
IF_HIGH_SPEED_OID = "1.3.6.1.2.1.31.1.1.1.15"


def _set_speed(info: InterfaceInfo, value: SNMPValue) -> None:
    speed = value.as_int()
    if speed is not None:
        info.speed_bps = speed


def _set_high_speed(info: InterfaceInfo, value: SNMPValue) -> None:
    # ifHighSpeed is in Mbps and supersedes the 32-bit ifSpeed.
    mbps = value.as_int()
    if mbps is not None:
        info.speed_bps = mbps * 1_000_000


def _setter(attr: str, convert: Callable[[SNMPValue], object]):
    def apply(info: InterfaceInfo, value: SNMPValue) -> None:
        converted = convert(value)
        if converted is not None:
            setattr(info, attr, converted)
    return apply


# Best-effort interface columns, merged in this order after ifName.
OPTIONAL_INTERFACE_COLUMNS: list[tuple[str, Callable[[InterfaceInfo, SNMPValue], None]]] = [
    (IF_DESCR_OID, _setter("descr", SNMPValue.as_string)),
    (IF_ALIAS_OID, _setter("alias", SNMPValue.as_string)),
    (IF_PHYS_ADDRESS_OID, _setter("mac", SNMPValue.as_mac)),
    (IF_ADMIN_STATUS_OID, _setter("admin_status", SNMPValue.as_int)),
    (IF_OPER_STATUS_OID, _setter("oper_status", SNMPValue.as_int)),
    (IF_MTU_OID, _setter("mtu", SNMPValue.as_int)),
    (IF_SPEED_OID, _set_speed),
    (IF_HIGH_SPEED_OID, _set_high_speed),
]


def index_rows(
    rows: list[tuple[str, SNMPValue]],
    base_oid: str,
) -> list[tuple[int, SNMPValue]]:
    """Key walk rows by the last OID arc, dropping unparseable OIDs."""
    indexed = []
    for oid, value in rows:
        suffix = parse_oid_suffix(oid, base_oid, 1)
        if suffix is None:
            continue
        indexed.append((suffix[0], value))
    return indexed


def merge_interface_rows(
    interfaces: dict[int, InterfaceInfo],
    rows: list[tuple[int, SNMPValue]],
    apply: Callable[[InterfaceInfo, SNMPValue], None],
) -> None:
    """Merge one walked column into the interface map.

    Every row creates its interface entry even if the value is unusable.
    """
    for if_index, value in rows:
        info = interfaces.get(if_index)
        if info is None:
            info = InterfaceInfo(if_index=if_index)
            interfaces[if_index] = info
        apply(info, value)


class SNMPClient:
    """Async SNMPv1/v2c enrichment client.

    Args:
        config: SNMP settings; defaults are used when None.
        session_factory: Async context manager factory taking
            (config, address). Defaults to opening a real pysnmp session.
    """

    def __init__(self, config: SNMPConfig | None = None, session_factory=open_session):
        self.config = config or SNMPConfig()
        self._session_factory = session_factory

    def _session(self, address: str):
        return self._session_factory(self.config, address)

    async def get_system(self, address: str) -> SystemInfo:
        """Read the five system group scalars in a single GET.

        Raises:
            SNMPError: If the agent does not answer or returns an error.
            ValueError: If the configured version is unsupported.
        """
        async with self._session(address) as session:
            values = await session.get(list(SYSTEM_OIDS.values()))

        fields = {}
        for field_name, oid in SYSTEM_OIDS.items():
            value = values.get(oid)
            fields[field_name] = value.as_string() if value is not None else None
        return SystemInfo(**fields)

    async def walk_int_table(self, address: str, base_oid: str) -> dict[int, int]:
        """Walk an integer-valued table keyed by its last index arc.

        Rows with non-integer values are skipped. Values are wrapped to
        signed 32 bits, so an unsigned 0xFFFFFFFF reads as -1.

        Raises:
            SNMPError: If the walk fails.
        """
        async with self._session(address) as session:
            rows = await session.bulk_walk(base_oid)
        return _int_table(rows, base_oid)

    async def walk_interfaces(self, address: str) -> dict[int, InterfaceInfo]:
        """Walk the interface table.

        The ifName walk must succeed; the remaining columns are fetched
        concurrently and any that fail are skipped.

        Raises:
            SNMPError: If the ifName walk fails.
        """
        async with self._session(address) as session:
            name_rows = await session.bulk_walk(IF_NAME_OID)
            optional_results = await asyncio.gather(
                *(session.bulk_walk(oid) for oid, _apply in OPTIONAL_INTERFACE_COLUMNS),
                return_exceptions=True,
            )

        interfaces: dict[int, InterfaceInfo] = {}
        merge_interface_rows(
            interfaces,
            index_rows(name_rows, IF_NAME_OID),
            _setter("name", SNMPValue.as_string),
        )
        for (oid, apply), result in zip(OPTIONAL_INTERFACE_COLUMNS, optional_results):
            if isinstance(result, SNMPError):
                continue
            if isinstance(result, BaseException):
                raise result
            merge_interface_rows(interfaces, index_rows(result, oid), apply)
        return interfaces

    async def walk_lldp_neighbors(self, address: str) -> list[Neighbor]:
        """Read LLDP-MIB remote systems. See neighbors.collect_lldp."""
        from rollerhoops.supplements.neighbors import collect_lldp

        async with self._session(address) as session:
            return await collect_lldp(session)

    async def walk_cdp_neighbors(self, address: str) -> list[Neighbor]:
        """Read CISCO-CDP-MIB cache entries. See neighbors.collect_cdp."""
        from rollerhoops.supplements.neighbors import collect_cdp

        async with self._session(address) as session:
            return await collect_cdp(session)


def to_int32(value: int) -> int:
    """Wrap value into the signed 32-bit range, as an Integer32 column holds.

    >>> to_int32(4_294_967_295)
    -1
    >>> to_int32(-5)
    -5
    """
    return ((value + 2**31) % 2**32) - 2**31


def _int_table(rows: list[tuple[str, SNMPValue]], base_oid: str) -> dict[int, int]:
    table = {}
    for if_index, value in index_rows(rows, base_oid):
        number = value.as_int()
        if number is not None:
            table[if_index] = to_int32(number)
    return table

