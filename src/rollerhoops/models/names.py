"""Name candidates observed for a device."""

from __future__ import annotations

from dataclasses import dataclass

SOURCE_REVERSE_DNS = "reverse_dns"
SOURCE_MDNS = "mdns"
SOURCE_NETBIOS = "netbios"
SOURCE_MANUAL = "manual"
SOURCE_DHCP = "dhcp"
SOURCE_SNMP = "snmp"
SOURCE_LLDP = "lldp"
SOURCE_CDP = "cdp"

NAME_SOURCES = (
    SOURCE_REVERSE_DNS,
    SOURCE_MDNS,
    SOURCE_NETBIOS,
    SOURCE_MANUAL,
    SOURCE_DHCP,
    SOURCE_SNMP,
    SOURCE_LLDP,
    SOURCE_CDP,
)


@dataclass(frozen=True)
class NameCandidate:
    """A name observed for a device from one source.

    Attributes:
        device_id: Opaque identifier of the device the name belongs to.
        name: The name as observed (before normalization).
        address: IP the lookup was made against, if any.
        source: One of the SOURCE_* constants.
    """

    device_id: str
    name: str
    address: str | None
    source: str
