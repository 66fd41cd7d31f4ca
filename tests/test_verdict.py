"""Tests for verdict building, serialization and traceability."""

from __future__ import annotations

import datetime
import json

import pytest

from nutrisafe.clinical_types import InteractionType, Severity
from nutrisafe.resolver import Finding, Resolver
from nutrisafe.verdict import (
    DEFAULT_FAIL_CLOSED_MESSAGE,
    EngineIssue,
    IssueCode,
    VerdictAction,
    VerdictBuilder,
    VerdictStatus,
)

from tests.test_resolver import make_match

NOW = datetime.datetime(2026, 10, 18, 12, 0, tzinfo=datetime.UTC)


@pytest.fixture
def builder() -> VerdictBuilder:
    return VerdictBuilder(clock=lambda: NOW)


def finding(item_id: str, *matches) -> Finding:
    return Resolver().resolve(list(matches), item_id=item_id)


class TestBuild:
    """Tests for aggregation rules."""

    def test_clean_verdict(self, builder: VerdictBuilder) -> None:
        """Test nothing flagged and nothing missing means proceed."""
        verdict = builder.build([finding("apple")], kb_version="kb.1", query_id="q1")

        assert verdict.overall_risk == Severity.NONE
        assert verdict.status == VerdictStatus.VERIFIED
        assert verdict.action_required == VerdictAction.PROCEED
        assert verdict.is_safe is True
        assert verdict.generated_at == NOW
        assert verdict.kb_version == "kb.1"

    def test_overall_risk_is_max(self, builder: VerdictBuilder) -> None:
        """Test overall risk is the maximum finding severity."""
        verdict = builder.build(
            [
                finding("a", make_match("r1", Severity.MILD, item_id="a")),
                finding("b", make_match("r2", Severity.MODERATE, item_id="b")),
            ],
            kb_version="kb.1",
        )

        assert verdict.overall_risk == Severity.MODERATE
        assert verdict.action_required == VerdictAction.WARN
        assert verdict.requires_clinical_review is False
        assert len(verdict.flagged_findings) == 2

    def test_critical_blocks(self, builder: VerdictBuilder) -> None:
        """Test a critical finding blocks regardless of action."""
        verdict = builder.build(
            [finding("a", make_match("r1", Severity.CRITICAL, InteractionType.MONITOR, item_id="a"))],
            kb_version="kb.1",
        )

        assert verdict.action_required == VerdictAction.BLOCK
        assert verdict.requires_clinical_review is True

    def test_severe_avoid_blocks(self, builder: VerdictBuilder) -> None:
        """Test severe findings block only when the action is avoid."""
        avoid = builder.build(
            [finding("a", make_match("r1", Severity.SEVERE, InteractionType.AVOID, item_id="a"))],
            kb_version="kb.1",
        )
        monitor = builder.build(
            [finding("a", make_match("r1", Severity.SEVERE, InteractionType.MONITOR, item_id="a"))],
            kb_version="kb.1",
        )

        assert avoid.action_required == VerdictAction.BLOCK
        assert monitor.action_required == VerdictAction.WARN
        assert monitor.requires_clinical_review is True

    def test_review_threshold(self) -> None:
        """Test many flagged items escalate to clinical review."""
        builder = VerdictBuilder(clock=lambda: NOW, review_threshold=2)
        verdict = builder.build(
            [finding(i, make_match("r1", Severity.MILD, item_id=i)) for i in ("a", "b")],
            kb_version="kb.1",
        )

        assert verdict.requires_clinical_review is True

    def test_blocking_issue_marks_incomplete(self, builder: VerdictBuilder) -> None:
        """Test an unresolved name downgrades the verdict."""
        issue = EngineIssue(IssueCode.NORMALIZATION_FAILURE, "Could not identify drug 'Tylenol'", subject="Tylenol")

        verdict = builder.build([finding("apple")], kb_version="kb.1", issues=[issue])

        assert verdict.incomplete is True
        assert verdict.status == VerdictStatus.NEEDS_CONFIRMATION
        assert verdict.action_required == VerdictAction.WARN
        assert verdict.is_safe is False

    def test_non_blocking_issue_keeps_verified(self, builder: VerdictBuilder) -> None:
        """Test warnings alone do not downgrade the verdict."""
        issue = EngineIssue(IssueCode.NORMALIZATION_FAILURE, "Ignored unrecognized nutrient", blocking=False)

        verdict = builder.build([finding("apple")], kb_version="kb.1", issues=[issue])

        assert verdict.status == VerdictStatus.VERIFIED
        assert verdict.incomplete is False

    def test_incomplete_profile(self, builder: VerdictBuilder) -> None:
        """Test a missing profile section always marks the verdict incomplete."""
        issue = EngineIssue(IssueCode.INCOMPLETE_PROFILE, "Profile section 'allergies' was not provided", blocking=False)

        verdict = builder.build([finding("apple")], kb_version="kb.1", issues=[issue])

        assert verdict.incomplete is True
        assert verdict.status == VerdictStatus.NEEDS_CONFIRMATION


class TestFailClosed:
    """Tests for the unable-to-verify verdict."""

    def test_fail_closed(self, builder: VerdictBuilder) -> None:
        """Test fail-closed verdicts report maximum risk and no findings."""
        issue = EngineIssue(IssueCode.ENGINE_INTERNAL_ERROR, "Internal error")

        verdict = builder.fail_closed(issue, kb_version="kb.1", query_id="q1")

        assert verdict.status == VerdictStatus.UNABLE_TO_VERIFY
        assert verdict.incomplete is True
        assert verdict.overall_risk == Severity.CRITICAL
        assert verdict.action_required == VerdictAction.BLOCK
        assert verdict.findings == ()
        assert verdict.message == DEFAULT_FAIL_CLOSED_MESSAGE
        assert verdict.issues_with(IssueCode.ENGINE_INTERNAL_ERROR) == [issue]


class TestSerialization:
    """Tests for JSON output, fingerprints and trace."""

    def test_fingerprint_ignores_volatile_fields(self) -> None:
        """Test timestamp and query id do not change the fingerprint."""
        findings = [finding("a", make_match("r1", item_id="a"))]
        first = VerdictBuilder(clock=lambda: NOW).build(findings, "kb.1", query_id="q1")
        later = VerdictBuilder(clock=lambda: NOW + datetime.timedelta(hours=1)).build(findings, "kb.1", query_id="q2")

        assert first.fingerprint() == later.fingerprint()
        assert first.to_json() != later.to_json()

    def test_fingerprint_changes_with_content(self, builder: VerdictBuilder) -> None:
        """Test different findings give different fingerprints."""
        a = builder.build([finding("a", make_match("r1", item_id="a"))], "kb.1")
        b = builder.build([finding("a", make_match("r2", item_id="a"))], "kb.1")

        assert a.fingerprint() != b.fingerprint()

    def test_fingerprint_without_kb_version(self, builder: VerdictBuilder) -> None:
        """Test the same content under two KB versions compares equal only without the version."""
        findings = [finding("a", make_match("r1", item_id="a"))]
        old = builder.build(findings, "kb.1")
        new = builder.build(findings, "kb.2")

        assert old.fingerprint() != new.fingerprint()
        assert old.fingerprint(include_kb_version=False) == new.fingerprint(include_kb_version=False)

    def test_to_json(self, builder: VerdictBuilder) -> None:
        """Test the JSON document carries findings and metadata."""
        verdict = builder.build([finding("a", make_match("r1", item_id="a"))], "kb.1", query_id="q1")

        data = json.loads(verdict.to_json())

        assert data["overall_risk"] == "moderate"
        assert data["query_id"] == "q1"
        assert data["findings"][0]["matches"][0]["rule_id"] == "r1"
        assert data["generated_at"] == NOW.isoformat()

    def test_trace(self, builder: VerdictBuilder) -> None:
        """Test trace links an item to its rules and citations."""
        verdict = builder.build(
            [finding("a", make_match("r1", item_id="a"), make_match("r2", Severity.SEVERE, item_id="a"))],
            "kb.1",
        )

        trace = verdict.trace("a")

        assert [t["rule_id"] for t in trace] == ["r1", "r2"]
        assert trace[0]["citation"] == "citation for r1"
        assert trace[1]["finding_severity"] == "severe"
        assert trace[0]["matched_against"] == "medication:warfarin"

    def test_trace_unknown_item(self, builder: VerdictBuilder) -> None:
        """Test tracing an unknown item raises KeyError."""
        verdict = builder.build([], "kb.1")

        with pytest.raises(KeyError):
            verdict.trace("missing")
