"""Tests for display name normalization, scoring and ranking."""

import pytest

from rollerhoops.derivations.display_name import (
    DEFAULT_BASE_SCORE,
    MIN_DISPLAY_SCORE,
    choose_best_display_name,
    normalize_candidate,
    score_candidate,
    sort_candidates_for_display,
)
from rollerhoops.models.names import NameCandidate


def _candidate(source, name):
    return NameCandidate(device_id="dev", name=name, address="10.0.0.1", source=source)


class TestNormalizeCandidate:
    def test_reverse_dns_folds_case_and_strips_dot(self):
        n = normalize_candidate(" Reverse_DNS ", "NAS01.Example.COM.")
        assert n.source == "reverse_dns"
        assert n.stored_name == "nas01.example.com"
        assert n.display_name == "nas01"
        assert n.score == 90

    def test_mdns_local_penalty(self):
        n = normalize_candidate("mdns", "Printer.local.")
        assert n.stored_name == "printer.local"
        assert n.display_name == "printer"
        assert n.score == 75

    def test_netbios_keeps_case(self):
        n = normalize_candidate("netbios", "DESKTOP-7")
        assert n.stored_name == "DESKTOP-7"
        assert n.display_name == "DESKTOP-7"
        assert n.score == 78

    def test_whitespace_names_keep_dots(self):
        n = normalize_candidate("snmp", "Core Switch v1.2")
        assert n.display_name == "Core Switch v1.2"
        assert n.score == 88 - 25 - 20

    def test_unknown_source_gets_default_score(self):
        n = normalize_candidate("lldp-ext", "sw1")
        assert n.score == DEFAULT_BASE_SCORE

    def test_empty_raises(self):
        with pytest.raises(ValueError):
            normalize_candidate("mdns", "  . ")

    @pytest.mark.parametrize("name", [
        "WORKGROUP",
        "localhost",
        "__MSBROWSE__",
        "5.1.168.192.in-addr.arpa",
    ])
    def test_garbage_rejected(self, name):
        n = normalize_candidate("netbios", name)
        assert n.score == -1
        assert not n.accepted

    @pytest.mark.parametrize("source,name", [
        ("netbios", "MSHOME"),
        ("mdns", "mshome."),
        ("reverse_dns", "LocalDomain"),
        ("dhcp", "localdomain"),
        ("reverse_dns", "b.a.9.8.7.6.5.0.4.0.0.0.3.0.0.0.2.0.0.0.1.0.0.0.0.0.0.0.1.2.3.4.ip6.arpa."),
        ("snmp", "1.0.0.10.IN-ADDR.ARPA"),
        ("lldp", "__msbrowse__"),
    ])
    def test_garbage_rejected_from_any_source(self, source, name):
        n = normalize_candidate(source, name)
        assert n.score == -1
        assert not n.accepted


class TestScoreCandidate:
    def test_short_display_penalty(self):
        assert score_candidate("reverse_dns", "a", "a") == 40

    def test_non_hostname_characters(self):
        assert score_candidate("snmp", "sw/1", "sw/1") == 68


class TestChooseBestDisplayName:
    def test_highest_score_wins(self):
        candidates = [
            _candidate("netbios", "DESKTOP-7"),
            _candidate("reverse_dns", "desk7.example.com"),
            _candidate("mdns", "desk.local"),
        ]
        assert choose_best_display_name(candidates) == "desk7"

    def test_tie_prefers_shorter_display(self):
        candidates = [
            _candidate("lldp", "switch-long"),
            _candidate("cdp", "sw1"),
        ]
        assert choose_best_display_name(candidates) == "sw1"

    def test_below_threshold_never_chosen(self):
        candidates = [_candidate("manual-ish", "nas")]
        assert normalize_candidate("manual-ish", "nas").score < MIN_DISPLAY_SCORE
        assert choose_best_display_name(candidates) is None

    def test_snmp_beats_local_mdns(self):
        candidates = [
            _candidate("mdns", "router.local"),
            _candidate("snmp", "core-switch-1"),
        ]
        assert normalize_candidate("mdns", "router.local").score == 75
        assert normalize_candidate("snmp", "core-switch-1").score == 88
        assert choose_best_display_name(candidates) == "core-switch-1"

    def test_only_garbage_gives_none(self):
        candidates = [
            _candidate("reverse_dns", "20.1.168.192.in-addr.arpa"),
            _candidate("netbios", "__MSBROWSE__"),
        ]
        assert choose_best_display_name(candidates) is None

    def test_empty(self):
        assert choose_best_display_name([]) is None

    def test_empty_names_ignored(self):
        candidates = [_candidate("dhcp", " "), _candidate("netbios", "NAS01")]
        assert choose_best_display_name(candidates) == "NAS01"


class TestSortCandidatesForDisplay:
    def test_accepted_before_rejected(self):
        workgroup = _candidate("netbios", "WORKGROUP")
        nas = _candidate("netbios", "NAS01")
        dns = _candidate("reverse_dns", "nas01.lan")
        assert sort_candidates_for_display([workgroup, nas, dns]) == [dns, nas, workgroup]

    def test_returns_original_objects(self):
        c = _candidate("mdns", "Printer.local")
        assert sort_candidates_for_display([c])[0] is c
