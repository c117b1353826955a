"""Tests for the SNMP system and interface client."""

import asyncio

import pytest

from rollerhoops.models.snmp import InterfaceInfo, SystemInfo
from rollerhoops.supplements.snmp import (
    IF_ADMIN_STATUS_OID,
    IF_ALIAS_OID,
    IF_DESCR_OID,
    IF_HIGH_SPEED_OID,
    IF_MTU_OID,
    IF_NAME_OID,
    IF_OPER_STATUS_OID,
    IF_PHYS_ADDRESS_OID,
    IF_SPEED_OID,
    SYSTEM_OIDS,
    OPTIONAL_INTERFACE_COLUMNS,
    index_rows,
    merge_interface_rows,
    to_int32,
)
from rollerhoops.supplements.snmp_common import SNMPError, SNMPValue


class TestGetSystem:
    def test_reads_all_scalars(self, fake_snmp, snmp_values):
        octets, _integer = snmp_values
        client, session = fake_snmp(scalars={
            SYSTEM_OIDS["sys_name"]: octets(" core-sw1 "),
            SYSTEM_OIDS["sys_descr"]: octets("Cisco IOS"),
            SYSTEM_OIDS["sys_object_id"]: octets("1.3.6.1.4.1.9.1.516"),
            SYSTEM_OIDS["sys_contact"]: octets(""),
            SYSTEM_OIDS["sys_location"]: SNMPValue.absent(),
        })
        info = asyncio.run(client.get_system("10.0.0.1"))
        assert info == SystemInfo(
            sys_name="core-sw1",
            sys_descr="Cisco IOS",
            sys_object_id="1.3.6.1.4.1.9.1.516",
            sys_contact=None,
            sys_location=None,
        )
        assert session.addresses == ["10.0.0.1"]

    def test_missing_values_are_none(self, fake_snmp):
        client, _session = fake_snmp(scalars={})
        assert asyncio.run(client.get_system("10.0.0.1")) == SystemInfo()

    def test_error_propagates(self, fake_snmp):
        client, _session = fake_snmp(scalars=SNMPError("timeout"))
        with pytest.raises(SNMPError):
            asyncio.run(client.get_system("10.0.0.1"))


class TestWalkIntTable:
    def test_skips_non_integer_rows(self, fake_snmp, snmp_values):
        octets, integer = snmp_values
        base = "1.3.6.1.2.1.17.7.1.4.5.1.1"
        client, _session = fake_snmp(tables={base: [
            (f"{base}.1", integer(10)),
            (f"{base}.2", octets("x")),
            ("1.3.6.1.9.9", integer(3)),
        ]})
        assert asyncio.run(client.walk_int_table("10.0.0.1", base)) == {1: 10}

    def test_values_wrap_to_int32(self, fake_snmp, snmp_values):
        _octets, integer = snmp_values
        base = "1.3.6.1.2.1.17.7.1.4.5.1.1"
        client, _session = fake_snmp(tables={base: [
            (f"{base}.1", integer(4_294_967_295)),
            (f"{base}.2", integer(2_147_483_648)),
            (f"{base}.3", integer(2_147_483_647)),
            (f"{base}.4", integer(-7)),
        ]})
        assert asyncio.run(client.walk_int_table("10.0.0.1", base)) == {
            1: -1, 2: -2_147_483_648, 3: 2_147_483_647, 4: -7,
        }

    @pytest.mark.parametrize("value,expected", [
        (0, 0),
        (4_294_967_296, 0),
        (4_294_967_297, 1),
        (-2_147_483_649, 2_147_483_647),
    ])
    def test_to_int32(self, value, expected):
        assert to_int32(value) == expected


class TestIndexAndMerge:
    def test_index_rows(self, snmp_values):
        _octets, integer = snmp_values
        rows = [(f"{IF_MTU_OID}.3", integer(1500)), ("1.2.3", integer(1))]
        assert index_rows(rows, IF_MTU_OID) == [(3, integer(1500))]

    def test_merge_creates_rows_for_unusable_values(self):
        interfaces = {}
        merge_interface_rows(
            interfaces,
            [(4, SNMPValue.absent())],
            lambda info, value: setattr(info, "mtu", value.as_int()),
        )
        assert interfaces == {4: InterfaceInfo(if_index=4)}


class TestWalkInterfaces:
    def _tables(self, octets, integer):
        return {
            IF_NAME_OID: [
                (f"{IF_NAME_OID}.1", octets("ge-0/0/1")),
                (f"{IF_NAME_OID}.2", octets("ge-0/0/2")),
            ],
            IF_DESCR_OID: [(f"{IF_DESCR_OID}.1", octets("GigabitEthernet0/0/1"))],
            IF_ALIAS_OID: [(f"{IF_ALIAS_OID}.2", octets("uplink"))],
            IF_PHYS_ADDRESS_OID: [
                (f"{IF_PHYS_ADDRESS_OID}.1", octets(b"\x00\x1b\x21\xaa\xbb\x01")),
                (f"{IF_PHYS_ADDRESS_OID}.2", octets(b"\x00" * 6)),
            ],
            IF_ADMIN_STATUS_OID: [(f"{IF_ADMIN_STATUS_OID}.1", integer(1))],
            IF_OPER_STATUS_OID: [(f"{IF_OPER_STATUS_OID}.1", integer(2))],
            IF_MTU_OID: [(f"{IF_MTU_OID}.1", integer(1500))],
            IF_SPEED_OID: [
                (f"{IF_SPEED_OID}.1", integer(100_000_000)),
                (f"{IF_SPEED_OID}.2", integer(4_294_967_295)),
            ],
            IF_HIGH_SPEED_OID: [(f"{IF_HIGH_SPEED_OID}.2", integer(10_000))],
        }

    def test_merges_all_columns(self, fake_snmp, snmp_values):
        octets, integer = snmp_values
        client, _session = fake_snmp(tables=self._tables(octets, integer))
        interfaces = asyncio.run(client.walk_interfaces("10.0.0.1"))
        assert interfaces[1] == InterfaceInfo(
            if_index=1,
            name="ge-0/0/1",
            descr="GigabitEthernet0/0/1",
            mac="00:1b:21:aa:bb:01",
            admin_status=1,
            oper_status=2,
            mtu=1500,
            speed_bps=100_000_000,
        )
        assert interfaces[2].alias == "uplink"
        assert interfaces[2].mac is None
        assert interfaces[2].speed_bps == 10_000_000_000

    def test_optional_column_failure_skipped(self, fake_snmp, snmp_values):
        octets, integer = snmp_values
        tables = self._tables(octets, integer)
        tables[IF_ALIAS_OID] = SNMPError("noSuchName")
        tables[IF_HIGH_SPEED_OID] = SNMPError("noSuchName")
        client, _session = fake_snmp(tables=tables)
        interfaces = asyncio.run(client.walk_interfaces("10.0.0.1"))
        assert interfaces[2].alias is None
        assert interfaces[2].speed_bps == 4_294_967_295
        assert interfaces[1].mtu == 1500

    def test_only_name_walk_succeeds(self, fake_snmp, snmp_values):
        octets, _integer = snmp_values
        tables = {oid: SNMPError("noSuchObject") for oid, _apply in OPTIONAL_INTERFACE_COLUMNS}
        tables[IF_NAME_OID] = [
            (f"{IF_NAME_OID}.1", octets("ge-0/0/1")),
            (f"{IF_NAME_OID}.2", octets("ge-0/0/2")),
        ]
        client, _session = fake_snmp(tables=tables)
        interfaces = asyncio.run(client.walk_interfaces("10.0.0.1"))
        assert len(OPTIONAL_INTERFACE_COLUMNS) == 8
        assert interfaces == {
            1: InterfaceInfo(if_index=1, name="ge-0/0/1"),
            2: InterfaceInfo(if_index=2, name="ge-0/0/2"),
        }

    def test_name_walk_failure_raises(self, fake_snmp):
        client, _session = fake_snmp(tables={IF_NAME_OID: SNMPError("timeout")})
        with pytest.raises(SNMPError, match="timeout"):
            asyncio.run(client.walk_interfaces("10.0.0.1"))

    def test_unexpected_error_propagates(self, fake_snmp):
        client, _session = fake_snmp(tables={IF_MTU_OID: RuntimeError("boom")})
        with pytest.raises(RuntimeError):
            asyncio.run(client.walk_interfaces("10.0.0.1"))
