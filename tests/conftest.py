"""Shared test fixtures for rollerhoops."""

import textwrap
from contextlib import asynccontextmanager

import pytest

from rollerhoops.config import SNMPConfig
from rollerhoops.supplements.snmp import SNMPClient
from rollerhoops.supplements.snmp_common import SNMPValue, ValueKind

ARP_TABLE = textwrap.dedent("""\
    IP address       HW type     Flags       HW address            Mask     Device
    192.168.1.1      0x1         0x2         aa:bb:cc:00:00:01     *        eth0
    192.168.1.20     0x1         0x2         AA:BB:CC:00:00:14     *        eth0
    192.168.1.21     0x1         0x0         00:00:00:00:00:00     *        eth0
    192.168.1.22     0x1         0x2         00:00:00:00:00:00     *        eth0
    10.0.0.5         0x1         0x2         aa:bb:cc:00:00:05     *        eth1
""")


def octets(raw):
    if isinstance(raw, str):
        raw = raw.encode()
    return SNMPValue(ValueKind.OCTETS, octets=raw)


def integer(value):
    return SNMPValue(ValueKind.INTEGER, integer=value)


class FakeSNMPSession:
    """Stands in for SNMPSession with canned GET and walk results.

    scalars maps OID -> SNMPValue, or is an exception to raise on GET.
    tables maps base OID -> list of (oid, SNMPValue) rows, or an
    exception to raise when that table is walked.
    """

    def __init__(self, scalars=None, tables=None):
        self.scalars = scalars if scalars is not None else {}
        self.tables = tables or {}
        self.addresses = []
        self.walked = []

    async def get(self, oids):
        if isinstance(self.scalars, Exception):
            raise self.scalars
        return {oid: self.scalars[oid] for oid in oids if oid in self.scalars}

    async def bulk_walk(self, base_oid):
        self.walked.append(base_oid)
        rows = self.tables.get(base_oid, [])
        if isinstance(rows, Exception):
            raise rows
        return list(rows)


@pytest.fixture
def arp_table(tmp_path):
    """Write a /proc/net/arp style table and return its path."""
    path = tmp_path / "arp"
    path.write_text(ARP_TABLE)
    return path


@pytest.fixture
def snmp_values():
    """Return (octets, integer) helpers for building SNMPValues."""
    return octets, integer


@pytest.fixture
def fake_snmp():
    """Return a builder: (scalars, tables) -> (SNMPClient, FakeSNMPSession)."""
    def build(scalars=None, tables=None):
        session = FakeSNMPSession(scalars, tables)

        @asynccontextmanager
        async def factory(config, address):
            session.addresses.append(address)
            yield session

        client = SNMPClient(SNMPConfig(enabled=True), session_factory=factory)
        return client, session

    return build
