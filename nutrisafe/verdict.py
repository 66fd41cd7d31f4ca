"""Verdict building: findings + issues -> the SafetyVerdict returned to callers.

A verdict is never presented as complete when it is not. Blocking issues set
``incomplete`` and downgrade the status, and a fail-closed verdict (stale
knowledge base or internal error) reports maximum risk with no findings.
"""

from __future__ import annotations

import datetime
import hashlib
import json
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from nutrisafe.clinical_types import InteractionType, Severity, max_severity
from nutrisafe.resolver import Finding

DEFAULT_FAIL_CLOSED_MESSAGE = "Unable to verify safety; consult a healthcare professional"


class VerdictStatus(StrEnum):
    VERIFIED = "verified"
    NEEDS_CONFIRMATION = "needs_confirmation"
    UNABLE_TO_VERIFY = "unable_to_verify"


class VerdictAction(StrEnum):
    """What the presentation layer should do with the proposed food."""

    BLOCK = "block"
    WARN = "warn"
    PROCEED = "proceed"


class IssueCode(StrEnum):
    NORMALIZATION_FAILURE = "NORMALIZATION_FAILURE"
    UNCOVERED_ALLERGEN = "UNCOVERED_ALLERGEN"
    INCOMPLETE_PROFILE = "INCOMPLETE_PROFILE"
    STALE_KNOWLEDGE_BASE = "STALE_KNOWLEDGE_BASE"
    ENGINE_INTERNAL_ERROR = "ENGINE_INTERNAL_ERROR"


@dataclass(frozen=True)
class EngineIssue:
    """A structured error or warning returned instead of an exception."""

    code: IssueCode
    message: str
    subject: str | None = None
    blocking: bool = True
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "code": self.code.value,
            "message": self.message,
            "subject": self.subject,
            "blocking": self.blocking,
            "details": self.details,
        }


@dataclass(frozen=True)
class SafetyVerdict:
    """Full result of one safety query."""

    overall_risk: Severity
    findings: tuple[Finding, ...]
    generated_at: datetime.datetime
    kb_version: str | None
    status: VerdictStatus = VerdictStatus.VERIFIED
    incomplete: bool = False
    issues: tuple[EngineIssue, ...] = ()
    action_required: VerdictAction = VerdictAction.PROCEED
    requires_clinical_review: bool = False
    message: str = ""
    query_id: str | None = None

    @property
    def flagged_findings(self) -> list[Finding]:
        return [f for f in self.findings if f.flagged]

    @property
    def is_safe(self) -> bool:
        """True only for a complete, verified verdict with nothing flagged."""
        return self.status == VerdictStatus.VERIFIED and not self.incomplete and not self.flagged_findings

    def finding(self, item_id: str) -> Finding | None:
        for finding in self.findings:
            if finding.item_id == item_id:
                return finding
        return None

    def issues_with(self, code: IssueCode) -> list[EngineIssue]:
        return [i for i in self.issues if i.code == code]

    def trace(self, item_id: str) -> list[dict[str, Any]]:
        """Explain why an item was flagged: finding -> match -> record -> citation.

        Raises:
            KeyError: If the verdict has no finding for ``item_id``.
        """
        finding = self.finding(item_id)
        if finding is None:
            raise KeyError(item_id)
        return [
            {
                "item_id": finding.item_id,
                "finding_severity": finding.severity.value,
                "rule_id": m.rule_id,
                "record_version": m.record_version,
                "kind": m.kind.value,
                "matched_against": f"{m.matched_against.kind.value}:{m.matched_against.canonical_id}",
                "matched_ids": list(m.matched_ids),
                "severity": m.severity.value,
                "action": m.action.value,
                "evidence_level": m.evidence_level.value,
                "low_confidence": m.low_confidence,
                "citation": m.citation,
            }
            for m in finding.matches
        ]

    def to_dict(self, include_volatile: bool = True) -> dict[str, Any]:
        """Serialize the verdict. ``include_volatile=False`` drops timestamp and query id."""
        data: dict[str, Any] = {
            "overall_risk": self.overall_risk.value,
            "status": self.status.value,
            "incomplete": self.incomplete,
            "action_required": self.action_required.value,
            "requires_clinical_review": self.requires_clinical_review,
            "message": self.message,
            "kb_version": self.kb_version,
            "findings": [f.to_dict() for f in self.findings],
            "issues": [i.to_dict() for i in self.issues],
        }
        if include_volatile:
            data["query_id"] = self.query_id
            data["generated_at"] = self.generated_at.isoformat()
        return data

    def to_json(self, indent: int | None = 2) -> str:
        return json.dumps(self.to_dict(), indent=indent)

    def fingerprint(self, include_kb_version: bool = True) -> str:
        """Digest of everything except timestamp and query id.

        ``include_kb_version=False`` compares verdict content across knowledge base versions.
        """
        data = self.to_dict(include_volatile=False)
        if not include_kb_version:
            data.pop("kb_version")
        payload = json.dumps(data, sort_keys=True, separators=(",", ":"))
        return hashlib.sha256(payload.encode("utf-8")).hexdigest()


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(tz=datetime.UTC)


class VerdictBuilder:
    """Aggregates findings into a SafetyVerdict.

    Args:
        clock: Source of ``generated_at``; injectable for reproducible output.
        review_threshold: Number of flagged items that triggers clinical review.
        fail_closed_message: Message used for unable-to-verify verdicts.
    """

    def __init__(
        self,
        clock: Callable[[], datetime.datetime] | None = None,
        review_threshold: int = 3,
        fail_closed_message: str = DEFAULT_FAIL_CLOSED_MESSAGE,
    ) -> None:
        self.clock = clock or _utcnow
        self.review_threshold = review_threshold
        self.fail_closed_message = fail_closed_message

    def build(
        self,
        findings: Sequence[Finding],
        kb_version: str | None,
        issues: Iterable[EngineIssue] = (),
        query_id: str | None = None,
    ) -> SafetyVerdict:
        findings = tuple(findings)
        issues = tuple(issues)
        overall = max_severity(f.severity for f in findings)
        flagged = [f for f in findings if f.flagged]

        incomplete = any(i.blocking or i.code == IssueCode.INCOMPLETE_PROFILE for i in issues)
        status = VerdictStatus.NEEDS_CONFIRMATION if incomplete else VerdictStatus.VERIFIED

        return SafetyVerdict(
            overall_risk=overall,
            findings=findings,
            generated_at=self.clock(),
            kb_version=kb_version,
            status=status,
            incomplete=incomplete,
            issues=issues,
            action_required=self._action(flagged, incomplete),
            requires_clinical_review=(
                any(f.severity.rank >= Severity.SEVERE.rank for f in flagged) or len(flagged) >= self.review_threshold
            ),
            message=self._message(flagged, overall, incomplete),
            query_id=query_id,
        )

    @staticmethod
    def _action(flagged: list[Finding], incomplete: bool) -> VerdictAction:
        for finding in flagged:
            if finding.severity == Severity.CRITICAL:
                return VerdictAction.BLOCK
            if finding.severity == Severity.SEVERE and finding.action == InteractionType.AVOID:
                return VerdictAction.BLOCK
        if flagged or incomplete:
            return VerdictAction.WARN
        return VerdictAction.PROCEED

    @staticmethod
    def _message(flagged: list[Finding], overall: Severity, incomplete: bool) -> str:
        parts: list[str] = []
        if flagged:
            parts.append(f"{len(flagged)} item(s) flagged; highest risk is {overall.value}.")
        else:
            parts.append("No known interactions, allergens or contraindications found.")
        if incomplete:
            parts.append("Some information could not be verified; confirm it with a healthcare professional.")
        return " ".join(parts)

    def fail_closed(
        self,
        issue: EngineIssue,
        kb_version: str | None,
        query_id: str | None = None,
    ) -> SafetyVerdict:
        """Verdict used when the engine cannot produce a trustworthy answer."""
        return SafetyVerdict(
            overall_risk=Severity.CRITICAL,
            findings=(),
            generated_at=self.clock(),
            kb_version=kb_version,
            status=VerdictStatus.UNABLE_TO_VERIFY,
            incomplete=True,
            issues=(issue,),
            action_required=VerdictAction.BLOCK,
            requires_clinical_review=True,
            message=self.fail_closed_message,
            query_id=query_id,
        )


__all__ = [
    "DEFAULT_FAIL_CLOSED_MESSAGE",
    "VerdictStatus",
    "VerdictAction",
    "IssueCode",
    "EngineIssue",
    "SafetyVerdict",
    "VerdictBuilder",
]
