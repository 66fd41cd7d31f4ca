"""Evaluation harness: run the full pipeline over a regression corpus.

The harness measures; it does not judge. ``EvaluationReport.check`` applies a
``ThresholdPolicy`` supplied by the caller (normally from settings), and CI
decides what to do with the outcome.
"""

from __future__ import annotations

import datetime
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

from nutrisafe.clinical_types import RecordKind, max_severity, most_conservative
from nutrisafe.engine import SafetyEngine
from nutrisafe.evaluation.scenarios import ExpectedFinding, ExpectedIssue, Scenario, ScenarioCorpus
from nutrisafe.logging import get_logger
from nutrisafe.settings import ThresholdPolicy
from nutrisafe.verdict import IssueCode, SafetyVerdict, VerdictStatus

logger = get_logger(__name__)

# Codes carried by fail-closed verdicts.
FAIL_CLOSED_CODES = frozenset({IssueCode.STALE_KNOWLEDGE_BASE, IssueCode.ENGINE_INTERNAL_ERROR})


@dataclass
class ScenarioResult:
    """Outcome of one scenario."""

    scenario_id: str
    status: str
    overall_risk: str
    fingerprint: str
    expected: int
    matched: int
    expected_allergen: int = 0
    matched_allergen: int = 0
    missed: list[str] = field(default_factory=list)
    unexpected: list[str] = field(default_factory=list)
    unexpected_issues: list[str] = field(default_factory=list)
    negatives: int = 0
    unverified: bool = False

    @property
    def passed(self) -> bool:
        """True when nothing was missed or unexpected and the verdict was verified."""
        return not (self.missed or self.unexpected or self.unexpected_issues or self.unverified)

    def to_dict(self) -> dict[str, Any]:
        return {
            "scenario_id": self.scenario_id,
            "passed": self.passed,
            "status": self.status,
            "overall_risk": self.overall_risk,
            "fingerprint": self.fingerprint,
            "expected": self.expected,
            "matched": self.matched,
            "missed": self.missed,
            "unexpected": self.unexpected,
            "unexpected_issues": self.unexpected_issues,
            "unverified": self.unverified,
        }


@dataclass
class PolicyOutcome:
    """Result of applying a ThresholdPolicy to a report."""

    passed: bool
    failures: list[str]
    policy: ThresholdPolicy

    def to_dict(self) -> dict[str, Any]:
        return {"passed": self.passed, "failures": self.failures, "policy": self.policy.model_dump()}


@dataclass
class EvaluationReport:
    """Metrics over a scenario run.

    ``false_negatives`` is an absolute count; a single one is a reportable
    defect regardless of the rate.
    """

    kb_version: str | None
    corpus_version: str | None
    certified_kb_version: str | None
    generated_at: str
    scenario_results: list[ScenarioResult]
    expected_total: int
    true_positives: int
    false_negatives: int
    false_positives: int
    negatives_total: int
    allergen_expected: int
    allergen_matched: int
    unverified: int = 0
    unexpected_issues: int = 0
    missed: list[str] = field(default_factory=list)

    @property
    def accuracy(self) -> float:
        return self.true_positives / self.expected_total if self.expected_total else 1.0

    @property
    def false_negative_rate(self) -> float:
        return self.false_negatives / self.expected_total if self.expected_total else 0.0

    @property
    def false_positive_rate(self) -> float:
        return self.false_positives / self.negatives_total if self.negatives_total else 0.0

    @property
    def allergen_sensitivity(self) -> float:
        return self.allergen_matched / self.allergen_expected if self.allergen_expected else 1.0

    @property
    def certified(self) -> bool:
        """Whether the run used the KB version the corpus was certified against."""
        return self.certified_kb_version is None or self.certified_kb_version == self.kb_version

    @property
    def fingerprints(self) -> dict[str, str]:
        return {r.scenario_id: r.fingerprint for r in self.scenario_results}

    def check(self, policy: ThresholdPolicy) -> PolicyOutcome:
        failures: list[str] = []
        if self.accuracy < policy.min_accuracy:
            failures.append(f"accuracy {self.accuracy:.4f} < {policy.min_accuracy}")
        if self.false_negatives > policy.max_false_negatives:
            failures.append(f"false negatives {self.false_negatives} > {policy.max_false_negatives}")
        if self.false_negative_rate > policy.max_false_negative_rate:
            failures.append(f"false-negative rate {self.false_negative_rate:.4f} > {policy.max_false_negative_rate}")
        if self.allergen_sensitivity < policy.min_allergen_sensitivity:
            failures.append(
                f"allergen sensitivity {self.allergen_sensitivity:.4f} < {policy.min_allergen_sensitivity}"
            )
        if policy.max_false_positive_rate is not None and self.false_positive_rate > policy.max_false_positive_rate:
            failures.append(f"false-positive rate {self.false_positive_rate:.4f} > {policy.max_false_positive_rate}")
        if self.unverified > policy.max_unverified_scenarios:
            failures.append(f"unverified scenarios {self.unverified} > {policy.max_unverified_scenarios}")
        if self.unexpected_issues > policy.max_unexpected_issues:
            failures.append(f"unexpected blocking issues {self.unexpected_issues} > {policy.max_unexpected_issues}")
        return PolicyOutcome(passed=not failures, failures=failures, policy=policy)

    def to_dict(self) -> dict[str, Any]:
        return {
            "kb_version": self.kb_version,
            "corpus_version": self.corpus_version,
            "certified_kb_version": self.certified_kb_version,
            "certified": self.certified,
            "generated_at": self.generated_at,
            "metrics": {
                "expected_total": self.expected_total,
                "true_positives": self.true_positives,
                "false_negatives": self.false_negatives,
                "false_negative_rate": self.false_negative_rate,
                "false_positives": self.false_positives,
                "false_positive_rate": self.false_positive_rate,
                "accuracy": self.accuracy,
                "allergen_sensitivity": self.allergen_sensitivity,
                "unverified": self.unverified,
                "unexpected_issues": self.unexpected_issues,
            },
            "missed": self.missed,
            "fingerprints": self.fingerprints,
            "scenarios": [r.to_dict() for r in self.scenario_results],
        }


def _finding_satisfies(verdict: SafetyVerdict, expected: ExpectedFinding) -> bool:
    finding = verdict.finding(expected.item_id)
    if finding is None:
        return False
    matches = [m for m in finding.matches if m.kind == expected.kind]
    if expected.rule_id is not None:
        matches = [m for m in matches if m.rule_id == expected.rule_id]
    if not matches:
        return False
    if expected.severity is not None and max_severity(m.severity for m in matches) != expected.severity:
        return False
    if expected.action is not None and most_conservative(m.action for m in matches) != expected.action:
        return False
    if expected.cross_contamination is not None:
        if any(m.cross_contamination for m in matches) != expected.cross_contamination:
            return False
    return True


def _issue_satisfies(verdict: SafetyVerdict, expected: ExpectedIssue) -> bool:
    for issue in verdict.issues_with(expected.code):
        if expected.subject is None or (issue.subject or "").lower() == expected.subject.lower():
            return True
    return False


def score_scenario(scenario: Scenario, verdict: SafetyVerdict) -> ScenarioResult:
    """Compare one verdict with its scenario's expectations."""
    result = ScenarioResult(
        scenario_id=scenario.scenario_id,
        status=verdict.status.value,
        overall_risk=verdict.overall_risk.value,
        fingerprint=verdict.fingerprint(),
        expected=len(scenario.expected_findings) + len(scenario.expected_issues),
        matched=0,
    )

    for expected in scenario.expected_findings:
        is_allergen = expected.kind == RecordKind.ALLERGEN
        result.expected_allergen += is_allergen
        if _finding_satisfies(verdict, expected):
            result.matched += 1
            result.matched_allergen += is_allergen
        else:
            result.missed.append(f"{scenario.scenario_id}: {expected.item_id}/{expected.kind.value}")

    for expected in scenario.expected_issues:
        if _issue_satisfies(verdict, expected):
            result.matched += 1
        else:
            result.missed.append(f"{scenario.scenario_id}: issue {expected.code.value}:{expected.subject or '*'}")

    expected_pairs = {(f.item_id, f.kind) for f in scenario.expected_findings}
    for finding in verdict.flagged_findings:
        for kind in sorted(finding.kinds):
            if (finding.item_id, kind) not in expected_pairs:
                result.unexpected.append(f"{scenario.scenario_id}: {finding.item_id}/{kind.value}")
    result.negatives = len(scenario.items) * len(RecordKind) - len(expected_pairs)

    expected_codes = {i.code for i in scenario.expected_issues}
    result.unexpected_issues = [
        f"{i.code.value}:{i.subject}" for i in verdict.issues if i.blocking and i.code not in expected_codes
    ]
    result.unverified = verdict.status == VerdictStatus.UNABLE_TO_VERIFY and not (expected_codes & FAIL_CLOSED_CODES)
    return result


class EvaluationHarness:
    """Runs scenarios through a SafetyEngine and computes metrics."""

    def __init__(self, engine: SafetyEngine) -> None:
        self.engine = engine

    def run(
        self,
        scenarios: ScenarioCorpus | Sequence[Scenario],
        kb_version: str | None = None,
        max_workers: int | None = None,
    ) -> EvaluationReport:
        corpus_version = certified = None
        if isinstance(scenarios, ScenarioCorpus):
            corpus_version = scenarios.corpus_version
            certified = scenarios.certified_kb_version
            scenarios = scenarios.scenarios

        verdicts = self.engine.evaluate_many([s.to_query() for s in scenarios], max_workers, kb_version=kb_version)
        results = [score_scenario(s, v) for s, v in zip(scenarios, verdicts, strict=True)]
        used_version = kb_version or (verdicts[0].kb_version if verdicts else self.engine.kb_version)

        report = EvaluationReport(
            kb_version=used_version,
            corpus_version=corpus_version,
            certified_kb_version=certified,
            generated_at=datetime.datetime.now(tz=datetime.UTC).isoformat(),
            scenario_results=results,
            expected_total=sum(r.expected for r in results),
            true_positives=sum(r.matched for r in results),
            false_negatives=sum(len(r.missed) for r in results),
            false_positives=sum(len(r.unexpected) for r in results),
            negatives_total=sum(r.negatives for r in results),
            allergen_expected=sum(r.expected_allergen for r in results),
            allergen_matched=sum(r.matched_allergen for r in results),
            unverified=sum(r.unverified for r in results),
            unexpected_issues=sum(len(r.unexpected_issues) for r in results),
            missed=[m for r in results for m in r.missed],
        )
        logger.info(
            "Scenario run complete",
            kb_version=used_version,
            scenarios=len(results),
            accuracy=round(report.accuracy, 4),
            false_negatives=report.false_negatives,
            false_positives=report.false_positives,
            unverified=report.unverified,
        )
        if report.false_negatives:
            logger.warning("False negatives detected", missed=report.missed)
        if report.unverified:
            logger.warning(
                "Scenarios could not be verified",
                scenarios=[r.scenario_id for r in results if r.unverified],
            )
        return report


def run_scenarios(
    scenarios: ScenarioCorpus | Sequence[Scenario],
    engine: SafetyEngine,
    kb_version: str | None = None,
) -> EvaluationReport:
    """Run a corpus through ``engine`` and return the metrics report."""
    return EvaluationHarness(engine).run(scenarios, kb_version=kb_version)


__all__ = [
    "ScenarioResult",
    "PolicyOutcome",
    "EvaluationReport",
    "EvaluationHarness",
    "score_scenario",
    "run_scenarios",
]
