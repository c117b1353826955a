"""Supplement: friendly-name candidates for an address.

Asks three sources in parallel (reverse DNS, mDNS, NetBIOS node status)
and merges their answers into NameCandidate records. Names are
deduplicated case-insensitively across sources, first seen wins, with
sources ranked reverse DNS, then mDNS, then NetBIOS.
"""

from __future__ import annotations

import asyncio
import ipaddress
import socket
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Callable

from nbns import NBNSClient
from rollerhoops.models.names import (
    SOURCE_MDNS,
    SOURCE_NETBIOS,
    SOURCE_REVERSE_DNS,
    NameCandidate,
)
from rollerhoops.supplements.mdns import MDNS_TIMEOUT, lookup_mdns

NETBIOS_TIMEOUT = 0.5
REVERSE_DNS_TIMEOUT = 1.0


def reverse_dns_lookup(address: str) -> list[str]:
    """Return the PTR names of address via the system resolver.

    Raises:
        OSError: socket.herror / socket.gaierror when nothing resolves.
    """
    hostname, aliases, _addresses = socket.gethostbyaddr(address)
    names = []
    for name in [hostname, *aliases]:
        name = name.strip()
        if name.endswith("."):
            name = name[:-1]
        names.append(name)
    return names


def lookup_netbios(address: str, timeout: float | None = None) -> list[str]:
    """Return host names from a NetBIOS node status query.

    Raises:
        ValueError: If address is not an IPv4 address, or the reply is
            malformed.
        LookupError: If the reply holds no usable names.
        OSError: On socket errors or timeout.
    """
    if ipaddress.ip_address(address).version != 4:
        msg = f"netbios: not an IPv4 address {address!r}"
        raise ValueError(msg)
    with NBNSClient() as client:
        return client.lookup_names(address, timeout=timeout or NETBIOS_TIMEOUT)


class NameResolver:
    """Resolve name candidates for a device address.

    Each lookup is blocking socket I/O, so it runs on the resolver's own
    thread pool and the three sources overlap in time. Lookups still
    blocking after their deadline are abandoned, not waited for; call
    shutdown() when done with the resolver.
    """

    def __init__(
        self,
        reverse_dns: Callable[[str], list[str]] = reverse_dns_lookup,
        mdns: Callable[[str, float], list[str]] = lookup_mdns,
        netbios: Callable[[str, float | None], list[str]] = lookup_netbios,
        max_workers: int = 24,
    ):
        self._reverse_dns = reverse_dns
        self._mdns = mdns
        self._netbios = netbios
        self._max_workers = max_workers
        self._executor: ThreadPoolExecutor | None = None
        self._lock = threading.Lock()

    def _get_executor(self) -> ThreadPoolExecutor:
        with self._lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(
                    max_workers=self._max_workers, thread_name_prefix="names",
                )
            return self._executor

    def shutdown(self, wait: bool = True) -> None:
        """Release the lookup threads; queued lookups are cancelled.

        With wait=False, lookups already blocked in the OS resolver are
        left to finish in the background. The resolver can be reused
        afterwards and starts a fresh pool.
        """
        with self._lock:
            executor, self._executor = self._executor, None
        if executor is not None:
            executor.shutdown(wait=wait, cancel_futures=True)

    async def _run(self, func, *args, timeout: float | None):
        loop = asyncio.get_running_loop()
        future = loop.run_in_executor(self._get_executor(), func, *args)
        if timeout is None:
            return await future
        return await asyncio.wait_for(future, timeout)

    async def lookup_addr(
        self,
        device_id: str,
        address: str,
        timeout: float | None = None,
    ) -> list[NameCandidate]:
        """Collect name candidates for address.

        Args:
            device_id: Device the candidates are attributed to.
            address: IPv4 or IPv6 address to look up.
            timeout: Overall deadline in seconds for each source. When
                None, each source uses its own default deadline.

        Returns:
            Candidates in source order. Empty when every source answered
            with nothing.

        Raises:
            ExceptionGroup: When no candidate was found and at least one
                source failed; holds every source's error.
        """
        mdns_timeout = MDNS_TIMEOUT if timeout is None else min(MDNS_TIMEOUT, timeout)
        # The system resolver has no timeout of its own; mDNS and NetBIOS
        # enforce theirs at the socket.
        reverse_timeout = REVERSE_DNS_TIMEOUT if timeout is None else timeout
        results = await asyncio.gather(
            self._run(self._reverse_dns, address, timeout=reverse_timeout),
            self._run(self._mdns, address, mdns_timeout, timeout=timeout),
            self._run(self._netbios, address, timeout, timeout=timeout),
            return_exceptions=True,
        )

        errors: list[Exception] = []
        seen: set[str] = set()
        candidates: list[NameCandidate] = []
        sources = (SOURCE_REVERSE_DNS, SOURCE_MDNS, SOURCE_NETBIOS)
        for source, result in zip(sources, results):
            if isinstance(result, Exception):
                errors.append(result)
                continue
            if isinstance(result, BaseException):
                raise result
            for name in result:
                if not name:
                    continue
                key = name.lower()
                if key in seen:
                    continue
                seen.add(key)
                candidates.append(NameCandidate(
                    device_id=device_id,
                    name=name,
                    address=address,
                    source=source,
                ))

        if not candidates and errors:
            raise ExceptionGroup(f"no names found for {address}", errors)
        return candidates
