"""Per-device facts gathered during a run and where they are recorded.

The worker hands every run's DeviceFacts to a FactSink. The default
sink merges them into a JSON cache keyed by device ID, in the same
cache directory layout the rest of the tooling uses.
"""

from __future__ import annotations

import sys
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Protocol

from rollerhoops.derivations.device_tags import TagSuggestion
from rollerhoops.models.discovery import ServiceRecord
from rollerhoops.models.names import NameCandidate
from rollerhoops.models.snmp import InterfaceInfo, Neighbor, SystemInfo
from rollerhoops.supplements.snmp_common import load_json_cache, save_json_cache


@dataclass(frozen=True)
class LinkRecord:
    """An undirected L2 adjacency with canonically ordered endpoints."""

    link_key: str
    source: str
    a_device_id: str
    a_interface: str | None
    b_device_id: str
    b_interface: str | None


@dataclass
class DeviceFacts:
    """Everything learned about one device in one run."""

    device_id: str
    address: str
    mac: str | None = None
    candidates: list[NameCandidate] = field(default_factory=list)
    display_name: str | None = None
    system: SystemInfo | None = None
    interfaces: dict[int, InterfaceInfo] = field(default_factory=dict)
    pvids: dict[int, int] = field(default_factory=dict)
    neighbors: list[Neighbor] = field(default_factory=list)
    remote_candidates: list[NameCandidate] = field(default_factory=list)
    links: list[LinkRecord] = field(default_factory=list)
    tags: list[TagSuggestion] = field(default_factory=list)
    services: list[ServiceRecord] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        data = asdict(self)
        # JSON object keys must be strings.
        data["interfaces"] = {str(k): v for k, v in data["interfaces"].items()}
        data["pvids"] = {str(k): v for k, v in data["pvids"].items()}
        return data


class FactSink(Protocol):
    def record_facts(self, run_id: str, facts: list[DeviceFacts]) -> None: ...


class JSONFactCache:
    """Merge device facts into <cache>/facts.json.

    A cache file that cannot be parsed is replaced by the next write.
    """

    def __init__(self, cache_path: Path):
        self.cache_path = Path(cache_path)

    def record_facts(self, run_id: str, facts: list[DeviceFacts]) -> None:
        if not facts:
            return
        data = self.load()
        observed_at = datetime.now(timezone.utc).isoformat()
        for device in facts:
            entry = device.to_dict()
            entry["run_id"] = run_id
            entry["observed_at"] = observed_at
            data[device.device_id] = entry
        save_json_cache(self.cache_path, data)

    def load(self) -> dict[str, dict]:
        try:
            data = load_json_cache(self.cache_path)
        except ValueError as e:
            print(f"Warning: ignoring unreadable fact cache {self.cache_path}: {e}",
                  file=sys.stderr)
            return {}
        if not isinstance(data, dict):
            print(f"Warning: ignoring malformed fact cache {self.cache_path}", file=sys.stderr)
            return {}
        return data
