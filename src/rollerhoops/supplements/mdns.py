"""Multicast DNS reverse lookups (legacy unicast mode, RFC 6762 section 6.7).

A PTR query for the address's reverse name is sent from an ephemeral
port to the mDNS group; responders answer directly to that port with
the query's ID echoed. Only PTR and CNAME answers are used.

All multi-byte integers are big-endian (network byte order).
"""

from __future__ import annotations

import ipaddress
import secrets
import socket
import struct
import time

MDNS_PORT = 5353
MDNS_GROUP_V4 = "224.0.0.251"
MDNS_GROUP_V6 = "ff02::fb"
MDNS_TIMEOUT = 0.4

TYPE_CNAME = 5
TYPE_PTR = 12
CLASS_IN = 1

_MAX_POINTER_HOPS = 32


def encode_name(name: str) -> bytes:
    """Encode a dotted name as DNS labels.

    Raises:
        ValueError: If a label is empty or longer than 63 bytes.
    """
    out = bytearray()
    for label in name.rstrip(".").split("."):
        raw = label.encode("ascii")
        if not raw or len(raw) > 63:
            msg = f"mdns: invalid label in {name!r}"
            raise ValueError(msg)
        out.append(len(raw))
        out += raw
    out.append(0)
    return bytes(out)


def build_ptr_query(transaction_id: int, qname: str) -> bytes:
    """Build a single-question PTR query with recursion desired cleared."""
    header = struct.pack(">HHHHHH", transaction_id & 0xFFFF, 0, 1, 0, 0, 0)
    return header + encode_name(qname) + struct.pack(">HH", TYPE_PTR, CLASS_IN)


def read_name(data: bytes, offset: int) -> tuple[str, int]:
    """Decode a possibly compressed name.

    Returns:
        (dotted name without trailing dot, offset just past the name
        at its original position).

    Raises:
        ValueError: On truncation or a pointer loop.
    """
    labels: list[str] = []
    end_offset = None
    hops = 0
    while True:
        if offset >= len(data):
            msg = "mdns: name overflows packet"
            raise ValueError(msg)
        length = data[offset]
        if length & 0xC0 == 0xC0:
            if offset + 1 >= len(data):
                msg = "mdns: truncated name pointer"
                raise ValueError(msg)
            if end_offset is None:
                end_offset = offset + 2
            hops += 1
            if hops > _MAX_POINTER_HOPS:
                msg = "mdns: name pointer loop"
                raise ValueError(msg)
            offset = ((length & 0x3F) << 8) | data[offset + 1]
            continue
        offset += 1
        if length == 0:
            break
        if offset + length > len(data):
            msg = "mdns: name overflows packet"
            raise ValueError(msg)
        labels.append(data[offset:offset + length].decode("utf-8", errors="replace"))
        offset += length
    return ".".join(labels), end_offset if end_offset is not None else offset


def parse_response(data: bytes) -> tuple[int, list[str]]:
    """Decode a DNS response, returning its ID and PTR/CNAME targets.

    Targets are stripped of whitespace and the trailing dot; blank
    targets are dropped.

    Raises:
        ValueError: If the packet is malformed.
    """
    if len(data) < 12:
        msg = "mdns: short response"
        raise ValueError(msg)
    txid, _flags, qdcount, ancount, _nscount, _arcount = struct.unpack(">HHHHHH", data[:12])

    offset = 12
    for _ in range(qdcount):
        _name, offset = read_name(data, offset)
        offset += 4

    names = []
    for _ in range(ancount):
        _owner, offset = read_name(data, offset)
        if offset + 10 > len(data):
            msg = "mdns: truncated answer header"
            raise ValueError(msg)
        rtype, _rclass, _ttl, rdlength = struct.unpack(">HHIH", data[offset:offset + 10])
        offset += 10
        if offset + rdlength > len(data):
            msg = "mdns: truncated answer data"
            raise ValueError(msg)
        if rtype in (TYPE_PTR, TYPE_CNAME):
            target, _end = read_name(data, offset)
            target = target.strip().rstrip(".")
            if target:
                names.append(target)
        offset += rdlength
    return txid, names


def lookup_mdns(address: str, timeout: float = MDNS_TIMEOUT) -> list[str]:
    """Ask the local mDNS group for the names of address.

    Blocks for at most timeout seconds.

    Raises:
        ValueError: If address is not an IP address.
        LookupError: If no PTR/CNAME answer arrives.
        OSError: On socket errors.
    """
    ip = ipaddress.ip_address(address)
    if ip.version == 6:
        family, server = socket.AF_INET6, (MDNS_GROUP_V6, MDNS_PORT)
    else:
        family, server = socket.AF_INET, (MDNS_GROUP_V4, MDNS_PORT)

    transaction_id = secrets.randbits(16)
    query = build_ptr_query(transaction_id, ip.reverse_pointer)

    deadline = time.monotonic() + timeout
    with socket.socket(family, socket.SOCK_DGRAM) as sock:
        sock.sendto(query, server)
        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                break
            sock.settimeout(remaining)
            try:
                data, _addr = sock.recvfrom(9000)
            except socket.timeout:
                break
            try:
                txid, names = parse_response(data)
            except ValueError:
                continue
            if txid != transaction_id or not names:
                continue
            return names

    msg = f"mdns: no PTR/CNAME records for {address}"
    raise LookupError(msg)
