"""NetBIOS Name Service node status (NBSTAT) encoding and decoding.

Implements the RFC 1002 subset needed to ask a host for its NetBIOS
name table: a wildcard NBSTAT query and the matching response.

All multi-byte integers are big-endian (network byte order).
"""

from __future__ import annotations

import struct
from enum import IntEnum

from nbns.types import NodeStatusEntry

NBNS_PORT = 137

# Encoded NetBIOS names are always 16 raw bytes -> 32 half-ASCII bytes.
NETBIOS_NAME_LENGTH = 16
ENCODED_NAME_LENGTH = 32

# Each entry in the node status name table: 15-byte name, suffix, flags.
NAME_TABLE_ENTRY_SIZE = 18

# Trailing statistics block must at least hold the unit id (a MAC).
UNIT_ID_SIZE = 6

GROUP_NAME_FLAG = 0x8000


class RRType(IntEnum):
    """Resource record types used by NBSTAT."""

    NB = 0x0020
    NBSTAT = 0x0021


class NameSuffix(IntEnum):
    """The 16th byte of a NetBIOS name identifies the service."""

    WORKSTATION = 0x00
    FILE_SERVER = 0x20


def encode_netbios_name(name: str) -> bytes:
    """First-level encode a NetBIOS name (RFC 1001 section 14.1).

    The name is upper-cased, cut to 15 characters, space padded to 16 and each nibble
    is mapped to 'A' + nibble.
    """
    raw = name.upper().encode("ascii")[:NETBIOS_NAME_LENGTH - 1]
    raw = raw.ljust(NETBIOS_NAME_LENGTH, b" ")
    out = bytearray()
    for byte in raw:
        out.append(ord("A") + (byte >> 4))
        out.append(ord("A") + (byte & 0x0F))
    return bytes(out)


def build_node_status_request(transaction_id: int) -> bytes:
    """Build a 50-byte wildcard NBSTAT request.

    Header: transaction id, flags 0, one question, no other records.
    Question: the encoded "*" name, NBSTAT type, IN class.
    """
    header = struct.pack(">HHHHHH", transaction_id & 0xFFFF, 0, 1, 0, 0, 0)
    question = (
        bytes([ENCODED_NAME_LENGTH])
        + encode_netbios_name("*")
        + b"\x00"
        + struct.pack(">HH", RRType.NBSTAT, 1)
    )
    return header + question


def skip_name(data: bytes, offset: int) -> int:
    """Return the offset just past a DNS-style name starting at offset.

    Handles plain label chains and a trailing compression pointer.

    Raises:
        ValueError: If the name runs past the end of the buffer.
    """
    while True:
        if offset >= len(data):
            msg = "netbios: name overflows packet"
            raise ValueError(msg)
        length = data[offset]
        offset += 1
        if length == 0:
            return offset
        if length & 0xC0 == 0xC0:
            # Compression pointer: one more byte and the name ends.
            if offset >= len(data):
                msg = "netbios: truncated name pointer"
                raise ValueError(msg)
            return offset + 1
        offset += length
        if offset > len(data):
            msg = "netbios: name overflows packet"
            raise ValueError(msg)


def parse_name_table(rdata: bytes) -> list[NodeStatusEntry]:
    """Decode the name table carried in an NBSTAT answer.

    Raises:
        ValueError: If the record is shorter than its declared entries.
    """
    if not rdata:
        msg = "netbios: empty node status record"
        raise ValueError(msg)
    count = rdata[0]
    if 1 + count * NAME_TABLE_ENTRY_SIZE + UNIT_ID_SIZE > len(rdata):
        msg = "netbios: truncated name table"
        raise ValueError(msg)

    entries = []
    pos = 1
    for _ in range(count):
        chunk = rdata[pos:pos + NAME_TABLE_ENTRY_SIZE]
        pos += NAME_TABLE_ENTRY_SIZE
        name = chunk[:15].decode("ascii", errors="replace").rstrip("\x00").strip()
        suffix = chunk[15]
        (flags,) = struct.unpack(">H", chunk[16:18])
        entries.append(NodeStatusEntry(name=name, suffix=suffix, flags=flags))
    return entries


def parse_node_status_response(data: bytes, transaction_id: int) -> list[NodeStatusEntry]:
    """Decode an NBSTAT response and return its raw name table.

    Raises:
        ValueError: On a short packet, mismatched transaction id, missing
            answer, wrong record type or truncated record.
    """
    if len(data) < 12:
        msg = "netbios: short response"
        raise ValueError(msg)
    txid, _flags, qdcount, ancount = struct.unpack(">HHHH", data[:8])
    if txid != transaction_id & 0xFFFF:
        msg = "netbios: transaction id mismatch"
        raise ValueError(msg)
    if ancount == 0:
        msg = "netbios: no answers"
        raise ValueError(msg)

    # Echoed questions (name, type, class) precede the answer. Samba and
    # Windows send QDCOUNT=0 and start with the answer directly.
    offset = 12
    for _ in range(qdcount):
        offset = skip_name(data, offset) + 4
        if offset > len(data):
            msg = "netbios: truncated question"
            raise ValueError(msg)
    offset = skip_name(data, offset)

    if offset + 10 > len(data):
        msg = "netbios: truncated answer header"
        raise ValueError(msg)
    rtype, _rclass, _ttl, rdlength = struct.unpack(">HHIH", data[offset:offset + 10])
    offset += 10
    if offset + rdlength > len(data):
        msg = "netbios: truncated answer data"
        raise ValueError(msg)
    if rtype != RRType.NBSTAT:
        msg = f"netbios: unexpected record type 0x{rtype:04x}"
        raise ValueError(msg)

    return parse_name_table(data[offset:offset + rdlength])


def select_host_names(entries: list[NodeStatusEntry]) -> list[str]:
    """Pick host names out of a name table.

    Unique (non-group) names with the file server suffix come first,
    followed by workstation names. Other services and duplicates
    (case-insensitive) are dropped.
    """
    preferred: list[str] = []
    fallback: list[str] = []
    seen: set[str] = set()
    for entry in entries:
        if not entry.name:
            continue
        key = entry.name.lower()
        if key in seen:
            continue
        seen.add(key)
        if entry.is_group:
            continue
        if entry.suffix == NameSuffix.FILE_SERVER:
            preferred.append(entry.name)
        elif entry.suffix == NameSuffix.WORKSTATION:
            fallback.append(entry.name)
    return preferred + fallback
