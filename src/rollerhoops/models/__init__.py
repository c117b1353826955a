"""Data models for device discovery."""

from rollerhoops.models.discovery import (
    DiscoveryRun,
    DiscoveryRunLog,
    LogLevel,
    RunStatus,
)
from rollerhoops.models.names import NAME_SOURCES, NameCandidate
from rollerhoops.models.snmp import (
    InterfaceInfo,
    Neighbor,
    PortMapping,
    SystemInfo,
)

__all__ = [
    "DiscoveryRun",
    "DiscoveryRunLog",
    "InterfaceInfo",
    "LogLevel",
    "NAME_SOURCES",
    "NameCandidate",
    "Neighbor",
    "PortMapping",
    "RunStatus",
    "SystemInfo",
]
