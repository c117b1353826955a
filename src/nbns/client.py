"""NetBIOS node status UDP client.

Sends a single unicast NBSTAT query to UDP port 137 and waits for the
matching reply. Does not need elevated privileges: the client binds an
ephemeral source port.

Usage:
    with NBNSClient() as client:
        names = client.lookup_names("192.168.1.20", timeout=0.5)
"""

from __future__ import annotations

import secrets
import socket

from nbns.protocol import (
    NBNS_PORT,
    build_node_status_request,
    parse_node_status_response,
    select_host_names,
)
from nbns.types import NodeStatusEntry

DEFAULT_TIMEOUT = 0.5
RESPONSE_BUFFER_SIZE = 512


class NBNSClient:
    """UDP client for NetBIOS node status queries."""

    def __init__(self, port: int = NBNS_PORT) -> None:
        self._port = port
        self._sock: socket.socket | None = None

    def _get_socket(self) -> socket.socket:
        """Create or return the cached UDP socket."""
        if self._sock is None:
            self._sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        return self._sock

    def node_status(
        self,
        ip: str,
        timeout: float | None = None,
    ) -> list[NodeStatusEntry]:
        """Query a host's NetBIOS name table.

        Args:
            ip: IPv4 address of the host.
            timeout: Seconds to wait for the reply (default 0.5).

        Returns:
            The raw name table entries.

        Raises:
            TimeoutError: If no reply arrives in time.
            ValueError: If the reply cannot be decoded.
            OSError: On socket errors.
        """
        if timeout is None or timeout <= 0:
            timeout = DEFAULT_TIMEOUT
        transaction_id = secrets.randbits(16)

        sock = self._get_socket()
        sock.settimeout(timeout)
        sock.sendto(build_node_status_request(transaction_id), (ip, self._port))
        try:
            data, _addr = sock.recvfrom(RESPONSE_BUFFER_SIZE)
        except socket.timeout as e:
            msg = f"netbios: no reply from {ip}"
            raise TimeoutError(msg) from e
        return parse_node_status_response(data, transaction_id)

    def lookup_names(self, ip: str, timeout: float | None = None) -> list[str]:
        """Return the host names a machine announces over NetBIOS.

        Raises:
            LookupError: If the name table holds no usable host names.
        """
        names = select_host_names(self.node_status(ip, timeout))
        if not names:
            msg = "netbios: no names in response"
            raise LookupError(msg)
        return names

    def close(self) -> None:
        """Close the UDP socket."""
        if self._sock is not None:
            self._sock.close()
            self._sock = None

    def __enter__(self) -> NBNSClient:
        return self

    def __exit__(self, *_exc) -> None:
        self.close()
