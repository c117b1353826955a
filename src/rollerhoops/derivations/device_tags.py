"""Device role tags suggested from names, SNMP sysDescr and open ports.

Suggestions are automatic and carry a confidence (0-100) plus the
evidence that produced them. Only tags from the fixed taxonomy in
ALL_TAGS are ever suggested.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field

TAG_ROUTER = "router"
TAG_SWITCH = "switch"
TAG_ACCESS_POINT = "access_point"
TAG_FIREWALL = "firewall"
TAG_PRINTER = "printer"
TAG_SERVER = "server"
TAG_WORKSTATION = "workstation"
TAG_NAS = "nas"
TAG_CAMERA = "camera"
TAG_VM_HOST = "vm_host"
TAG_IOT = "iot"

ALL_TAGS = (
    TAG_ROUTER,
    TAG_SWITCH,
    TAG_ACCESS_POINT,
    TAG_FIREWALL,
    TAG_PRINTER,
    TAG_SERVER,
    TAG_WORKSTATION,
    TAG_NAS,
    TAG_CAMERA,
    TAG_VM_HOST,
    TAG_IOT,
)

NAME_CONFIDENCE = 70
SYS_DESCR_EVIDENCE_LIMIT = 240

# Name tokens per tag, tried in order; the first matching rule wins.
NAME_RULES: list[tuple[str, str, frozenset[str]]] = [
    (TAG_ACCESS_POINT, "ap", frozenset({"ap", "wap", "unifi", "eap", "wlan", "wireless"})),
    (TAG_SWITCH, "switch", frozenset({"sw", "switch"})),
    (TAG_ROUTER, "router", frozenset({"gw", "router", "gateway", "edge"})),
    (TAG_FIREWALL, "firewall", frozenset({
        "fw", "firewall", "pfsense", "opnsense", "fortigate", "fortinet",
        "paloalto", "panos", "asa",
    })),
    (TAG_PRINTER, "printer", frozenset({"printer", "hp", "brother", "epson", "canon"})),
    (TAG_NAS, "nas", frozenset({"nas", "synology", "qnap", "truenas", "freenas"})),
    (TAG_VM_HOST, "vm_host", frozenset({"esxi", "vmware", "proxmox", "pve", "hyperv", "xen"})),
    (TAG_CAMERA, "camera", frozenset({"cam", "camera", "nvr", "dvr"})),
    (TAG_IOT, "iot", frozenset({"iot"})),
]

_TOKEN_RE = re.compile(r"[a-z0-9]+")


@dataclass
class TagSuggestion:
    """An automatically suggested device tag."""

    tag: str
    confidence: int
    evidence: dict = field(default_factory=dict)


def normalize_tag(tag: str) -> str:
    return tag.strip().lower()


def is_valid_tag(tag: str) -> bool:
    """True if tag (after normalization) is in the taxonomy.

    >>> is_valid_tag(" Switch ")
    True
    >>> is_valid_tag("toaster")
    False
    """
    return normalize_tag(tag) in ALL_TAGS


def normalize_tag_list(tags: list[str]) -> list[str]:
    """Normalize, drop unknown tags and duplicates, and sort."""
    return sorted({normalize_tag(t) for t in tags if is_valid_tag(t)})


def merge_suggestions(*groups: list[TagSuggestion]) -> list[TagSuggestion]:
    """Merge suggestion lists into one suggestion per tag.

    The highest confidence wins. Evidence from lower-confidence
    suggestions for the same tag fills keys the winner lacks. Invalid
    tags and non-positive confidences are dropped. Result is ordered
    by confidence descending, then tag.
    """
    by_tag: dict[str, TagSuggestion] = {}
    for group in groups:
        for suggestion in group:
            tag = normalize_tag(suggestion.tag)
            if tag not in ALL_TAGS or suggestion.confidence <= 0:
                continue
            existing = by_tag.get(tag)
            if existing is None or suggestion.confidence > existing.confidence:
                by_tag[tag] = TagSuggestion(tag, suggestion.confidence, dict(suggestion.evidence))
                continue
            for key, value in suggestion.evidence.items():
                existing.evidence.setdefault(key, value)
    return sorted(by_tag.values(), key=lambda s: (-s.confidence, s.tag))


def suggest_from_names(names: list[str]) -> list[TagSuggestion]:
    """Suggest tags from device names, at most one per name.

    Names are split into lower-case alphanumeric tokens; a rule matches
    when any token equals one of its keywords.

    >>> [s.tag for s in suggest_from_names(["core-sw-01", "Office-AP"])]
    ['switch', 'access_point']
    """
    suggestions = []
    for raw in names:
        name = raw.strip().lower()
        if not name:
            continue
        tokens = set(_TOKEN_RE.findall(name))
        for tag, match, keywords in NAME_RULES:
            if tokens & keywords:
                suggestions.append(TagSuggestion(tag, NAME_CONFIDENCE, {
                    "signal": "name",
                    "name": raw,
                    "match": match,
                }))
                break
    return suggestions


def _truncate(value: str, limit: int) -> str:
    value = value.strip()
    if len(value) <= limit:
        return value
    return value[:limit - 1] + "…"


def suggest_from_snmp(sys_descr: str | None) -> list[TagSuggestion]:
    """Suggest tags from an SNMP sysDescr string.

    At most one of access point, switch or router is suggested; the
    firewall, VM host, NAS and printer checks are independent.
    """
    descr = (sys_descr or "").strip().lower()
    if not descr:
        return []

    def suggestion(tag: str, match: str, confidence: int) -> TagSuggestion:
        return TagSuggestion(tag, confidence, {
            "signal": "snmp",
            "match": match,
            "sys_descr": _truncate(sys_descr, SYS_DESCR_EVIDENCE_LIMIT),
        })

    def contains(*needles: str) -> bool:
        return any(n in descr for n in needles)

    suggestions = []
    if contains("access point", "wireless"):
        suggestions.append(suggestion(TAG_ACCESS_POINT, "access_point", 90))
    elif contains("switch"):
        suggestions.append(suggestion(TAG_SWITCH, "switch", 90))
    elif contains("router", "routing"):
        suggestions.append(suggestion(TAG_ROUTER, "router", 88))

    if contains("firewall", "pfsense", "opnsense", "fortigate", "pan-os", "palo alto"):
        suggestions.append(suggestion(TAG_FIREWALL, "firewall", 90))
    if contains("vmware esxi", "proxmox", "hyper-v"):
        suggestions.append(suggestion(TAG_VM_HOST, "vm_host", 88))
    if contains("synology", "qnap", "truenas", "freenas"):
        suggestions.append(suggestion(TAG_NAS, "nas", 86))
    if contains("printer"):
        suggestions.append(suggestion(TAG_PRINTER, "printer", 82))
    return suggestions


# (tag, confidence, evidence ports, predicate over the open port set)
PORT_RULES = [
    (TAG_PRINTER, 85, (515, 631, 9100), lambda p: bool(p & {9100, 515, 631})),
    (TAG_CAMERA, 82, (554, 8554), lambda p: bool(p & {554, 8554})),
    (TAG_ROUTER, 80, (53, 67, 68), lambda p: 53 in p and bool(p & {67, 68})),
    (TAG_NAS, 78, (2049, 3260), lambda p: bool(p & {2049, 3260})),
]


def suggest_from_open_ports(open_ports: list[int]) -> list[TagSuggestion]:
    """Suggest tags from the set of open ports seen on a device.

    >>> [(s.tag, s.evidence["ports"]) for s in suggest_from_open_ports([631, 9100, 22])]
    [('printer', [631, 9100])]
    """
    ports = set(open_ports)
    if not ports:
        return []
    suggestions = []
    for tag, confidence, evidence_ports, matches in PORT_RULES:
        if matches(ports):
            suggestions.append(TagSuggestion(tag, confidence, {
                "signal": "ports",
                "ports": sorted(p for p in evidence_ports if p in ports),
            }))
    return suggestions


def add_evidence(suggestions: list[TagSuggestion], **evidence) -> list[TagSuggestion]:
    """Add evidence keys to every suggestion, keeping existing values."""
    for suggestion in suggestions:
        for key, value in evidence.items():
            suggestion.evidence.setdefault(key, value)
    return suggestions
