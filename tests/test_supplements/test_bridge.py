"""Tests for the PVID (port VLAN) supplement."""

import asyncio

import pytest

from rollerhoops.models.snmp import PortMapping
from rollerhoops.supplements.bridge import (
    DOT1D_BASE_PORT_IF_INDEX,
    DOT1Q_PVID,
    VLANCollector,
    join_port_pvids,
)
from rollerhoops.supplements.snmp_common import SNMPError


class TestJoinPortPVIDs:
    def test_joins_on_bridge_port(self):
        assert join_port_pvids({1: 10001, 2: 10002, 3: 10003}, {1: 5, 3: 20}) == {
            10001: 5,
            10003: 20,
        }

    def test_drops_non_positive_vlans(self):
        assert join_port_pvids({1: 10001, 2: 10002}, {1: 0, 2: -1}) == {}

    def test_empty(self):
        assert join_port_pvids({}, {1: 5}) == {}


def _bridge_tables(integer):
    return {
        DOT1D_BASE_PORT_IF_INDEX: [
            (f"{DOT1D_BASE_PORT_IF_INDEX}.1", integer(49)),
            (f"{DOT1D_BASE_PORT_IF_INDEX}.2", integer(3)),
            (f"{DOT1D_BASE_PORT_IF_INDEX}.3", integer(7)),
        ],
        DOT1Q_PVID: [
            (f"{DOT1Q_PVID}.1", integer(1)),
            (f"{DOT1Q_PVID}.2", integer(10)),
            (f"{DOT1Q_PVID}.3", integer(0)),
        ],
    }


class TestVLANCollector:
    def test_pvid_by_if_index(self, fake_snmp, snmp_values):
        _octets, integer = snmp_values
        client, _session = fake_snmp(tables=_bridge_tables(integer))
        result = asyncio.run(VLANCollector(client).collect_pvid_by_if_index("10.0.0.2"))
        assert result == {49: 1, 3: 10}

    def test_collect_orders_by_if_index(self, fake_snmp, snmp_values):
        _octets, integer = snmp_values
        client, _session = fake_snmp(tables=_bridge_tables(integer))
        mappings = asyncio.run(VLANCollector(client).collect("10.0.0.2"))
        assert mappings == [
            PortMapping(switch="10.0.0.2", port="ifIndex:3", vlan=10),
            PortMapping(switch="10.0.0.2", port="ifIndex:49", vlan=1),
        ]

    def test_walk_failure_raises(self, fake_snmp, snmp_values):
        _octets, integer = snmp_values
        tables = _bridge_tables(integer)
        tables[DOT1Q_PVID] = SNMPError("noSuchObject")
        client, _session = fake_snmp(tables=tables)
        with pytest.raises(SNMPError):
            asyncio.run(VLANCollector(client).collect("10.0.0.2"))
