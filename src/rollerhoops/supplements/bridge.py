"""Supplement: per-port VLAN (PVID) collection from managed switches.

Joins BRIDGE-MIB dot1dBasePortIfIndex (bridge port -> ifIndex) with
Q-BRIDGE-MIB dot1qPvid (bridge port -> VLAN) to get the untagged VLAN
of each interface.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from rollerhoops.models.snmp import PortMapping

if TYPE_CHECKING:
    from rollerhoops.supplements.snmp import SNMPClient

# BRIDGE-MIB: dot1dBasePortIfIndex -- bridge port -> ifIndex mapping
DOT1D_BASE_PORT_IF_INDEX = "1.3.6.1.2.1.17.1.4.1.2"

# Q-BRIDGE-MIB: dot1qPvid -- port native VLAN
DOT1Q_PVID = "1.3.6.1.2.1.17.7.1.4.5.1.1"


def join_port_pvids(
    base_port_to_if_index: dict[int, int],
    base_port_to_pvid: dict[int, int],
) -> dict[int, int]:
    """Map ifIndex -> PVID for bridge ports present in both tables.

    Ports without a PVID, or with a PVID of zero or below, are left out.

    >>> join_port_pvids({1: 10001, 2: 10002}, {1: 5, 2: 0})
    {10001: 5}
    """
    result: dict[int, int] = {}
    for base_port, if_index in base_port_to_if_index.items():
        pvid = base_port_to_pvid.get(base_port)
        if pvid is None or pvid <= 0:
            continue
        result[if_index] = pvid
    return result


class VLANCollector:
    """Reads PVID assignments from a switch through an SNMPClient."""

    def __init__(self, client: SNMPClient):
        self.client = client

    async def collect_pvid_by_if_index(self, address: str) -> dict[int, int]:
        """Return ifIndex -> PVID for the switch at address.

        Raises:
            SNMPError: If either table walk fails.
        """
        base_ports = await self.client.walk_int_table(address, DOT1D_BASE_PORT_IF_INDEX)
        pvids = await self.client.walk_int_table(address, DOT1Q_PVID)
        return join_port_pvids(base_ports, pvids)

    async def collect(self, switch_address: str) -> list[PortMapping]:
        """Return one PortMapping per interface with a PVID, ordered by ifIndex."""
        pvid_by_if_index = await self.collect_pvid_by_if_index(switch_address)
        return [
            PortMapping(switch=switch_address, port=f"ifIndex:{if_index}", vlan=vlan)
            for if_index, vlan in sorted(pvid_by_if_index.items())
        ]
