"""Tests for LLDP and CDP neighbor collection."""

import asyncio

from rollerhoops.models.snmp import Neighbor
from rollerhoops.supplements.neighbors import (
    CDP_CACHE_ADDRESS_OID,
    CDP_CACHE_DEVICE_ID_OID,
    CDP_CACHE_DEVICE_PORT_OID,
    LLDP_REM_CHASSIS_ID_OID,
    LLDP_REM_PORT_DESC_OID,
    LLDP_REM_PORT_ID_OID,
    LLDP_REM_SYS_NAME_OID,
    parse_cdp_address,
)
from rollerhoops.supplements.snmp_common import SNMPError


class TestParseCDPAddress:
    def test_bare_ipv4(self):
        assert parse_cdp_address(bytes([10, 0, 0, 1])) == "10.0.0.1"

    def test_bare_ipv6(self):
        raw = bytes.fromhex("20010db8000000000000000000000001")
        assert parse_cdp_address(raw) == "2001:db8::1"

    def test_typed_ipv4(self):
        assert parse_cdp_address(bytes([1, 4, 192, 168, 1, 1])) == "192.168.1.1"

    def test_unknown_type(self):
        assert parse_cdp_address(bytes([9, 4, 192, 168, 1, 1])) is None

    def test_truncated(self):
        assert parse_cdp_address(bytes([1, 8, 192, 168, 1, 1])) is None
        assert parse_cdp_address(b"\x01\x02") is None


class TestCollectLLDP:
    def test_merges_columns(self, fake_snmp, snmp_values):
        octets, _integer = snmp_values
        client, _session = fake_snmp(tables={
            LLDP_REM_SYS_NAME_OID: [
                (f"{LLDP_REM_SYS_NAME_OID}.0.3.1", octets("access-sw2")),
                (f"{LLDP_REM_SYS_NAME_OID}.0.5.1", octets("ap-lobby")),
            ],
            LLDP_REM_PORT_DESC_OID: [
                (f"{LLDP_REM_PORT_DESC_OID}.0.3.1", octets("Uplink to core")),
            ],
            LLDP_REM_PORT_ID_OID: [
                (f"{LLDP_REM_PORT_ID_OID}.0.3.1", octets("Gi0/48")),
                (f"{LLDP_REM_PORT_ID_OID}.0.5.1", octets(b"\x00\x1b\x21\xaa\xbb\xcc")),
            ],
            LLDP_REM_CHASSIS_ID_OID: [
                (f"{LLDP_REM_CHASSIS_ID_OID}.0.3.1", octets(b"\x00\x1b\x21\x00\x00\x02")),
                (f"{LLDP_REM_CHASSIS_ID_OID}.0.5.1", octets("ap-lobby.example.com")),
            ],
        })
        neighbors = asyncio.run(client.walk_lldp_neighbors("10.0.0.1"))
        assert neighbors == [
            Neighbor(
                source="lldp",
                local_if_index=3,
                remote_device_name="access-sw2",
                remote_port_name="Uplink to core",
                remote_chassis_mac="00:1b:21:00:00:02",
            ),
            Neighbor(
                source="lldp",
                local_if_index=5,
                remote_device_name="ap-lobby",
                remote_port_name="00:1b:21:aa:bb:cc",
            ),
        ]

    def test_failing_column_skipped(self, fake_snmp, snmp_values):
        octets, _integer = snmp_values
        client, _session = fake_snmp(tables={
            LLDP_REM_SYS_NAME_OID: [(f"{LLDP_REM_SYS_NAME_OID}.0.7.2", octets("sw9"))],
            LLDP_REM_PORT_DESC_OID: SNMPError("noSuchObject"),
        })
        neighbors = asyncio.run(client.walk_lldp_neighbors("10.0.0.1"))
        assert neighbors == [Neighbor(source="lldp", local_if_index=7, remote_device_name="sw9")]

    def test_no_lldp(self, fake_snmp):
        client, _session = fake_snmp(tables={})
        assert asyncio.run(client.walk_lldp_neighbors("10.0.0.1")) == []


class TestCollectCDP:
    def test_merges_columns(self, fake_snmp, snmp_values):
        octets, _integer = snmp_values
        client, _session = fake_snmp(tables={
            CDP_CACHE_DEVICE_ID_OID: [
                (f"{CDP_CACHE_DEVICE_ID_OID}.10101.1", octets("router1.example.com")),
            ],
            CDP_CACHE_DEVICE_PORT_OID: [
                (f"{CDP_CACHE_DEVICE_PORT_OID}.10101.1", octets("GigabitEthernet0/1")),
                (f"{CDP_CACHE_DEVICE_PORT_OID}.10102.1", octets("Gi0/2")),
            ],
            CDP_CACHE_ADDRESS_OID: [
                (f"{CDP_CACHE_ADDRESS_OID}.10101.1", octets(bytes([10, 0, 0, 254]))),
                (f"{CDP_CACHE_ADDRESS_OID}.10103.1", octets(bytes([1, 4, 10, 0, 0, 9]))),
            ],
        })
        neighbors = asyncio.run(client.walk_cdp_neighbors("10.0.0.1"))
        assert neighbors == [
            Neighbor(
                source="cdp",
                local_if_index=10101,
                remote_device_name="router1.example.com",
                remote_port_name="GigabitEthernet0/1",
                remote_mgmt_ip="10.0.0.254",
            ),
            Neighbor(source="cdp", local_if_index=10103, remote_mgmt_ip="10.0.0.9"),
        ]
