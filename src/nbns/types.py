"""Data types for NetBIOS node status responses."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class NodeStatusEntry:
    """One row of a node status name table.

    Attributes:
        name: The 15-character NetBIOS name with padding removed.
        suffix: Service byte (0x00 workstation, 0x20 file server, ...).
        flags: Raw name flags; bit 15 marks a group name.
    """

    name: str
    suffix: int
    flags: int

    @property
    def is_group(self) -> bool:
        return bool(self.flags & 0x8000)
