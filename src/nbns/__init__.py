"""NBNS (NetBIOS Name Service) node status, pure-Python implementation.

A small protocol library for asking Windows and Samba hosts for their
NetBIOS name table over UDP port 137 (RFC 1001/1002 NBSTAT).

This package has no external dependencies beyond the Python standard library.

Quick start:
    from nbns import NBNSClient

    with NBNSClient() as client:
        print(client.lookup_names("192.168.1.20"))
"""

from nbns.client import NBNSClient
from nbns.protocol import (
    NBNS_PORT,
    NameSuffix,
    RRType,
    build_node_status_request,
    encode_netbios_name,
    parse_node_status_response,
    select_host_names,
    skip_name,
)
from nbns.types import NodeStatusEntry

__all__ = [
    "NBNSClient",
    "NBNS_PORT",
    "NameSuffix",
    "NodeStatusEntry",
    "RRType",
    "build_node_status_request",
    "encode_netbios_name",
    "parse_node_status_response",
    "select_host_names",
    "skip_name",
]
