"""Data returned by SNMP enrichment of a single device."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class SystemInfo:
    """SNMPv2-MIB system group.

    Each field is None when the agent did not return it or returned
    an empty string after trimming.
    """

    sys_name: str | None = None
    sys_descr: str | None = None
    sys_object_id: str | None = None
    sys_contact: str | None = None
    sys_location: str | None = None


@dataclass
class InterfaceInfo:
    """One row of the interface table merged from several walks.

    Mutable while walks are merged; any field besides if_index may
    remain None when its walk failed or returned nothing for the row.
    """

    if_index: int
    name: str | None = None
    descr: str | None = None
    alias: str | None = None
    mac: str | None = None
    admin_status: int | None = None
    oper_status: int | None = None
    mtu: int | None = None
    speed_bps: int | None = None


@dataclass
class Neighbor:
    """A remote device seen over LLDP or CDP on a local interface."""

    source: str
    local_if_index: int | None = None
    remote_device_name: str | None = None
    remote_port_name: str | None = None
    remote_chassis_mac: str | None = None
    remote_mgmt_ip: str | None = None


@dataclass(frozen=True)
class PortMapping:
    """Port VLAN ID assignment for a bridge port.

    Attributes:
        switch: Address of the switch the mapping was read from.
        port: Port identifier, formatted "ifIndex:<n>".
        vlan: Untagged VLAN ID (always > 0).
        device_id: Device attached to the port, when known.
    """

    switch: str
    port: str
    vlan: int
    device_id: str | None = None
