"""Tests for severity aggregation and conservative action resolution."""

from __future__ import annotations

import itertools

import pytest

from nutrisafe.clinical_types import (
    EvidenceLevel,
    InteractionType,
    ProfileElementKind,
    RecordKind,
    Severity,
    action_sort_key,
)
from nutrisafe.matcher import Match, ProfileElement
from nutrisafe.resolver import Resolver

WARFARIN = ProfileElement(ProfileElementKind.MEDICATION, "warfarin", "warfarin")
LEVOTHYROXINE = ProfileElement(ProfileElementKind.MEDICATION, "levothyroxine", "Synthroid")


def make_match(
    rule_id: str = "r1",
    severity: Severity = Severity.MODERATE,
    action: InteractionType = InteractionType.MONITOR,
    evidence: EvidenceLevel = EvidenceLevel.A,
    item_id: str = "item",
    element: ProfileElement = WARFARIN,
    **kwargs,
) -> Match:
    return Match(
        rule_id=rule_id,
        record_version=kwargs.pop("record_version", 1),
        kind=kwargs.pop("kind", RecordKind.DRUG_FOOD_INTERACTION),
        item_id=item_id,
        matched_against=element,
        severity=severity,
        evidence_level=evidence,
        action=action,
        matched_ids=("vitamin_k",),
        citation=kwargs.pop("citation", f"citation for {rule_id}"),
        recommendation=kwargs.pop("recommendation", f"advice for {rule_id}"),
        **kwargs,
    )


class TestSeverity:
    """Tests for severity aggregation."""

    def test_no_matches(self) -> None:
        """Test an item without matches resolves to severity none."""
        finding = Resolver().resolve([], item_id="apple", item_name="Apple")

        assert finding.severity == Severity.NONE
        assert finding.action is None
        assert finding.flagged is False
        assert finding.item_name == "Apple"

    def test_max_severity(self) -> None:
        """Test finding severity is the maximum over matches."""
        finding = Resolver().resolve(
            [
                make_match("r1", Severity.MILD),
                make_match("r2", Severity.SEVERE),
                make_match("r3", Severity.MODERATE),
            ]
        )

        assert finding.severity == Severity.SEVERE
        assert finding.recommendations[0] == "advice for r2"
        assert finding.citations[0] == "citation for r2"

    @pytest.mark.parametrize("extra", list(Severity)[1:])
    def test_monotonic(self, extra: Severity) -> None:
        """Test adding a match never lowers severity."""
        base = [make_match("r1", Severity.MODERATE)]
        before = Resolver().resolve(base)
        after = Resolver().resolve([*base, make_match("r2", extra)])

        assert after.severity.rank >= before.severity.rank

    def test_duplicate_matches_collapsed(self) -> None:
        """Test the same rule matched twice is counted once."""
        finding = Resolver().resolve([make_match("r1"), make_match("r1")])
        assert len(finding.matches) == 1


class TestActionResolution:
    """Tests for conservative tie-breaking."""

    def test_avoid_beats_monitor(self) -> None:
        """Test the most conservative action wins and the conflict is recorded."""
        finding = Resolver().resolve(
            [
                make_match("r1", action=InteractionType.MONITOR),
                make_match("r2", action=InteractionType.AVOID, severity=Severity.SEVERE),
            ]
        )

        assert finding.action == InteractionType.AVOID
        (resolution,) = finding.resolutions
        assert resolution.conflicted is True
        assert resolution.candidates == (InteractionType.AVOID, InteractionType.MONITOR)
        assert resolution.rule_ids == ("r1", "r2")

    def test_timing_separation_wins_tie(self) -> None:
        """Test the fixed secondary order breaks the equal-rank tie."""
        finding = Resolver().resolve(
            [
                make_match("r1", action=InteractionType.DOSE_ADJUSTMENT, element=LEVOTHYROXINE),
                make_match("r2", action=InteractionType.TIMING_SEPARATION, element=LEVOTHYROXINE),
            ]
        )

        assert finding.action == InteractionType.TIMING_SEPARATION
        assert finding.resolutions[0].candidates == (
            InteractionType.TIMING_SEPARATION,
            InteractionType.DOSE_ADJUSTMENT,
        )

    @pytest.mark.parametrize(("first", "second"), list(itertools.permutations(InteractionType, 2)))
    def test_never_less_conservative(self, first: InteractionType, second: InteractionType) -> None:
        """Test the resolved action is at least as conservative as each input."""
        finding = Resolver().resolve([make_match("r1", action=first), make_match("r2", action=second)])

        assert action_sort_key(finding.action) >= action_sort_key(first)
        assert action_sort_key(finding.action) >= action_sort_key(second)

    def test_resolution_per_profile_element(self) -> None:
        """Test each medication gets its own resolution record."""
        finding = Resolver().resolve(
            [
                make_match("r1", action=InteractionType.MONITOR, element=WARFARIN),
                make_match("r2", action=InteractionType.TIMING_SEPARATION, element=LEVOTHYROXINE),
            ]
        )

        assert len(finding.resolutions) == 2
        assert not any(r.conflicted for r in finding.resolutions)
        assert finding.action == InteractionType.TIMING_SEPARATION


class TestLowConfidence:
    """Tests for evidence tagging."""

    def test_low_evidence_tagged_not_dropped(self) -> None:
        """Test D-level evidence is kept and tagged."""
        finding = Resolver().resolve([make_match("r1", Severity.MILD, evidence=EvidenceLevel.D)])

        assert finding.flagged is True
        assert finding.low_confidence is True
        assert finding.matches[0].low_confidence is True

    def test_configurable_levels(self) -> None:
        """Test the low-confidence set comes from configuration."""
        resolver = Resolver(low_confidence_levels=[EvidenceLevel.C])

        assert resolver.resolve([make_match(evidence=EvidenceLevel.C)]).low_confidence is True
        assert resolver.resolve([make_match(evidence=EvidenceLevel.D)]).low_confidence is False


class TestInputValidation:
    """Tests for resolver preconditions."""

    def test_mixed_items_rejected(self) -> None:
        """Test matches for different items cannot be resolved together."""
        with pytest.raises(ValueError):
            Resolver().resolve([make_match(item_id="a"), make_match(item_id="b")])

    def test_empty_without_item_rejected(self) -> None:
        """Test an empty input needs an item id."""
        with pytest.raises(ValueError):
            Resolver().resolve([])

    def test_resolve_all(self) -> None:
        """Test grouping by item, including items with no matches."""
        findings = Resolver().resolve_all(
            [make_match(item_id="b"), make_match(item_id="a", severity=Severity.SEVERE)],
            item_names={"a": "A", "b": "B", "c": "C"},
        )

        assert [f.item_id for f in findings] == ["a", "b", "c"]
        assert [f.severity for f in findings] == [Severity.SEVERE, Severity.MODERATE, Severity.NONE]
