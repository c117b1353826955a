"""Shared SNMP infrastructure for enrichment.

Provides pysnmp v7 session handling, GET and bulk walk, a typed view of
SNMP values, and JSON cache I/O. Used by snmp.py (system and interface
tables), bridge.py (PVIDs) and neighbors.py (LLDP/CDP).

pysnmp v7 is async-only. Individual SNMP operations use async/await,
wrapped in asyncio.run() from synchronous callers.

Every public operation opens exactly one engine against one agent and
closes its dispatcher on the way out. There is no pooling.
"""

from __future__ import annotations

import ipaddress
import json
import os
import tempfile
from contextlib import asynccontextmanager
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, AsyncIterator

if TYPE_CHECKING:
    from rollerhoops.config import SNMPConfig


class SNMPError(Exception):
    """An SNMP request failed (timeout, agent error, transport error)."""


class ValueKind(Enum):
    """Shape of a decoded SNMP value."""

    INTEGER = "integer"
    OCTETS = "octets"
    OID = "oid"
    ABSENT = "absent"


@dataclass(frozen=True)
class SNMPValue:
    """A decoded SNMP varbind value.

    Integer32, Counter32/64, Gauge32, TimeTicks and Unsigned32 all
    decode to INTEGER. OctetString, IpAddress and Opaque decode to
    OCTETS. noSuchObject, noSuchInstance, endOfMibView and anything
    unrecognised decode to ABSENT.
    """

    kind: ValueKind
    integer: int | None = None
    octets: bytes | None = None
    oid: str | None = None

    @classmethod
    def from_pysnmp(cls, value) -> SNMPValue:
        """Classify a pysnmp/pyasn1 value. Never raises."""
        from pyasn1.error import PyAsn1Error
        from pyasn1.type import univ

        try:
            if isinstance(value, univ.Integer):
                return cls(ValueKind.INTEGER, integer=int(value))
            if isinstance(value, univ.OctetString):
                return cls(ValueKind.OCTETS, octets=value.asOctets())
            if isinstance(value, univ.ObjectIdentifier):
                return cls(ValueKind.OID, oid=".".join(str(arc) for arc in value))
        except PyAsn1Error:
            # Uninitialised pyasn1 values raise on access.
            return cls(ValueKind.ABSENT)
        return cls(ValueKind.ABSENT)

    @classmethod
    def absent(cls) -> SNMPValue:
        return cls(ValueKind.ABSENT)

    def as_string(self) -> str | None:
        """Trimmed text form, or None when empty or not textual."""
        if self.kind == ValueKind.OCTETS:
            text = self.octets.decode("utf-8", errors="replace").strip()
        elif self.kind == ValueKind.OID:
            text = self.oid.strip()
        else:
            return None
        return text or None

    def as_int(self) -> int | None:
        if self.kind == ValueKind.INTEGER:
            return self.integer
        return None

    def as_mac(self) -> str | None:
        """Lower-case colon MAC from raw octets; None when all-zero."""
        if self.kind != ValueKind.OCTETS or not self.octets:
            return None
        if not any(self.octets):
            return None
        return ":".join(f"{b:02x}" for b in self.octets)


def format_octets(raw: bytes) -> str:
    """Render an OctetString: printable ASCII as text, otherwise colon hex.

    LLDP port IDs and CDP device ports are text on most agents but some
    encode MAC addresses or interface indices as raw bytes.
    """
    if raw and all(0x20 <= b <= 0x7E for b in raw):
        return raw.decode("ascii")
    return ":".join(f"{b:02x}" for b in raw)


def parse_oid_suffix(oid: str, base_oid: str, arcs: int) -> tuple[int, ...] | None:
    """Extract the trailing index arcs of an OID under base_oid.

    Returns None if the OID is not under base_oid or the index does not
    hold enough integer arcs.

    >>> parse_oid_suffix("1.3.6.1.2.1.31.1.1.1.1.7", "1.3.6.1.2.1.31.1.1.1.1", 1)
    (7,)
    """
    prefix = base_oid.strip(".") + "."
    oid = oid.strip(".")
    if not oid.startswith(prefix):
        return None
    parts = oid[len(prefix):].split(".")
    if len(parts) < arcs:
        return None
    try:
        return tuple(int(p) for p in parts[-arcs:])
    except ValueError:
        return None


def resolve_mp_model(version: str) -> int:
    """Map a configured SNMP version to a pysnmp message processing model.

    Raises:
        ValueError: For anything other than v1 or v2c.
    """
    normalized = version.strip().lower()
    if normalized in ("2c", "v2c", ""):
        return 1
    if normalized in ("1", "v1"):
        return 0
    msg = f"unsupported snmp version {version!r}"
    raise ValueError(msg)


class SNMPSession:
    """One pysnmp engine bound to a single agent."""

    def __init__(self, engine, auth, transport, mp_model: int, max_repetitions: int):
        self._engine = engine
        self._auth = auth
        self._transport = transport
        self._mp_model = mp_model
        self._max_repetitions = max_repetitions

    async def get(self, oids: list[str]) -> dict[str, SNMPValue]:
        """GET several scalar OIDs in one PDU.

        Raises:
            SNMPError: On an error indication or error status.
        """
        from pysnmp.hlapi.v3arch.asyncio import (
            ContextData,
            ObjectIdentity,
            ObjectType,
            get_cmd,
        )

        error_indication, error_status, _error_index, var_binds = await get_cmd(
            self._engine,
            self._auth,
            self._transport,
            ContextData(),
            *[ObjectType(ObjectIdentity(oid)) for oid in oids],
            lookupMib=False,
        )
        if error_indication:
            raise SNMPError(str(error_indication))
        if error_status:
            raise SNMPError(error_status.prettyPrint())

        return {
            str(name).strip("."): SNMPValue.from_pysnmp(value)
            for name, value in var_binds
        }

    async def bulk_walk(self, base_oid: str) -> list[tuple[str, SNMPValue]]:
        """Walk every row under base_oid.

        Uses GETBULK for v2c and GETNEXT for v1 agents.

        Raises:
            SNMPError: On an error indication or error status.
        """
        from pysnmp.hlapi.v3arch.asyncio import (
            ContextData,
            ObjectIdentity,
            ObjectType,
            bulk_walk_cmd,
            walk_cmd,
        )

        if self._mp_model == 0:
            iterator = walk_cmd(
                self._engine,
                self._auth,
                self._transport,
                ContextData(),
                ObjectType(ObjectIdentity(base_oid)),
                lexicographicMode=False,
                lookupMib=False,
            )
        else:
            iterator = bulk_walk_cmd(
                self._engine,
                self._auth,
                self._transport,
                ContextData(),
                0, self._max_repetitions,
                ObjectType(ObjectIdentity(base_oid)),
                lexicographicMode=False,
                lookupMib=False,
            )

        results = []
        async for error_indication, error_status, _error_index, var_binds in iterator:
            if error_indication:
                raise SNMPError(str(error_indication))
            if error_status:
                raise SNMPError(error_status.prettyPrint())
            for name, value in var_binds:
                results.append((str(name).strip("."), SNMPValue.from_pysnmp(value)))
        return results


@asynccontextmanager
async def open_session(config: SNMPConfig, address: str) -> AsyncIterator[SNMPSession]:
    """Open an SNMP session to address and close it on exit.

    Raises:
        ValueError: If config.version is not supported (before any I/O).
        SNMPError: If the transport cannot be set up.
    """
    mp_model = resolve_mp_model(config.version)

    from pysnmp.error import PySnmpError
    from pysnmp.hlapi.v3arch.asyncio import (
        CommunityData,
        SnmpEngine,
        Udp6TransportTarget,
        UdpTransportTarget,
    )

    transport_cls = UdpTransportTarget
    try:
        if ipaddress.ip_address(address).version == 6:
            transport_cls = Udp6TransportTarget
    except ValueError:
        pass  # hostname

    engine = SnmpEngine()
    try:
        try:
            transport = await transport_cls.create(
                (address, config.port),
                timeout=config.timeout,
                retries=config.retries,
            )
        except (OSError, PySnmpError) as e:
            raise SNMPError(f"snmp: cannot reach {address}: {e}") from e
        yield SNMPSession(
            engine,
            CommunityData(config.community, mpModel=mp_model),
            transport,
            mp_model,
            config.max_repetitions,
        )
    finally:
        engine.close_dispatcher()


def load_json_cache(cache_path: Path) -> dict[str, dict]:
    """Load cached JSON data from disk."""
    if not cache_path.exists():
        return {}
    with open(cache_path) as f:
        return json.load(f)


def save_json_cache(cache_path: Path, data: dict[str, dict]) -> None:
    """Save JSON data to disk cache.

    Written to a temporary file in the same directory and renamed into
    place, so readers never see a partial file.
    """
    cache_path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(
        dir=cache_path.parent, prefix=f".{cache_path.name}.", suffix=".tmp",
    )
    try:
        with os.fdopen(fd, "w") as f:
            json.dump(data, f, indent="  ", sort_keys=True)
        os.replace(tmp_name, cache_path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise
