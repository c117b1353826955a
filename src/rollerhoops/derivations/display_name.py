"""Display name derivation: normalize, score and rank name candidates.

Each candidate is reduced to a stored form (what to persist) and a
display form (the short label shown to operators), then scored from
its source's trust level minus penalties for non-hostname shapes.

Candidates scoring below MIN_DISPLAY_SCORE are never chosen as a
device's display name, though they are still kept and listed.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from rollerhoops.models.names import NameCandidate

MIN_DISPLAY_SCORE = 70

SOURCE_BASE_SCORES = {
    "dhcp": 95,
    "reverse_dns": 90,
    "snmp": 88,
    "lldp": 86,
    "cdp": 86,
    "mdns": 80,
    "netbios": 78,
    "manual": 70,
}
DEFAULT_BASE_SCORE = 50

# Sources whose names are DNS-derived and therefore case-insensitive.
_CASE_FOLDED_SOURCES = frozenset({"reverse_dns", "mdns"})

_GARBAGE_NAMES = frozenset({
    "workgroup", "mshome", "__msbrowse__", "localdomain", "localhost",
})

_HOSTNAME_LABEL_RE = re.compile(r"[A-Za-z0-9_-]+")


@dataclass(frozen=True)
class NormalizedCandidate:
    """A name candidate after normalization and scoring.

    Attributes:
        source: Lower-cased source identifier.
        stored_name: Trimmed name without its trailing dot; lower-cased
            for DNS-derived sources.
        display_name: First DNS label of stored_name when it looks like
            an FQDN, otherwise stored_name itself.
        score: Quality score; negative for names that are never useful.
    """

    source: str
    stored_name: str
    display_name: str
    score: int

    @property
    def accepted(self) -> bool:
        return self.score >= 0


def _has_whitespace(value: str) -> bool:
    return " " in value or "\t" in value


def _looks_garbage(normalized: str) -> bool:
    if not normalized:
        return True
    if "in-addr.arpa" in normalized or "ip6.arpa" in normalized:
        return True
    return normalized in _GARBAGE_NAMES


def score_candidate(source: str, stored: str, display: str) -> int:
    """Score a normalized candidate.

    >>> score_candidate('reverse_dns', 'nas01.lan', 'nas01')
    90
    >>> score_candidate('netbios', 'WORKGROUP', 'WORKGROUP')
    -1
    """
    normalized = stored.lower()
    if _looks_garbage(normalized):
        return -1

    score = SOURCE_BASE_SCORES.get(source, DEFAULT_BASE_SCORE)
    if len(display) < 2:
        score -= 50
    if _has_whitespace(display):
        score -= 25
    if not _HOSTNAME_LABEL_RE.fullmatch(display):
        score -= 20
    if normalized.endswith((".local", ".localdomain")):
        score -= 5
    return score


def normalize_candidate(source: str, raw_name: str) -> NormalizedCandidate:
    """Normalize and score one name observation.

    Raises:
        ValueError: If the name is empty after trimming whitespace and
            a single trailing dot.

    >>> normalize_candidate('mdns', 'Printer.local.').display_name
    'printer'
    """
    source = source.strip().lower()
    name = raw_name.strip()
    if name.endswith("."):
        name = name[:-1]
    if not name:
        msg = f"empty name from source {source!r}"
        raise ValueError(msg)

    stored = name.lower() if source in _CASE_FOLDED_SOURCES else name

    display = stored
    if "." in display and not _has_whitespace(display):
        first_label = display.split(".", 1)[0]
        if first_label:
            display = first_label

    return NormalizedCandidate(
        source=source,
        stored_name=stored,
        display_name=display,
        score=score_candidate(source, stored, display),
    )


def _try_normalize(candidate: NameCandidate) -> NormalizedCandidate | None:
    try:
        return normalize_candidate(candidate.source, candidate.name)
    except ValueError:
        return None


def choose_best_display_name(candidates: list[NameCandidate]) -> str | None:
    """Pick the display name to auto-assign to a device.

    Only accepted candidates scoring at least MIN_DISPLAY_SCORE are
    considered. Ties break towards the shorter display name, then
    lexicographically by display and stored names.

    Returns:
        The winning display name, or None when nothing qualifies.
    """
    best: NormalizedCandidate | None = None
    best_key = None
    for candidate in candidates:
        normalized = _try_normalize(candidate)
        if normalized is None or not normalized.accepted:
            continue
        if normalized.score < MIN_DISPLAY_SCORE:
            continue
        key = (
            -normalized.score,
            len(normalized.display_name),
            normalized.display_name,
            normalized.stored_name,
        )
        if best_key is None or key < best_key:
            best, best_key = normalized, key

    if best is None or not best.display_name.strip():
        return None
    return best.display_name


def sort_candidates_for_display(candidates: list[NameCandidate]) -> list[NameCandidate]:
    """Order candidates for presentation, best first.

    Accepted candidates come before rejected ones, then by score
    descending, display name and stored name. The sort is stable and
    the returned list holds the original candidate objects.
    """
    def sort_key(candidate: NameCandidate):
        normalized = _try_normalize(candidate)
        if normalized is None:
            return (1, 0, "", "")
        return (
            0 if normalized.accepted else 1,
            -normalized.score,
            normalized.display_name,
            normalized.stored_name,
        )

    return sorted(candidates, key=sort_key)
