"""Knowledge base regression checks.

A KB update must not silently change the verdict of any certified scenario.
``compare_versions`` evaluates the corpus against a baseline and a candidate
and lists every scenario whose verdict fingerprint differs.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

from nutrisafe.engine import SafetyEngine
from nutrisafe.evaluation.scenarios import Scenario, ScenarioCorpus
from nutrisafe.logging import get_logger
from nutrisafe.verdict import SafetyVerdict

logger = get_logger(__name__)


def _rule_refs(verdict: SafetyVerdict) -> set[str]:
    return {f"{f.item_id}:{m.rule_id}@{m.record_version}" for f in verdict.findings for m in f.matches}


@dataclass
class VerdictChange:
    scenario_id: str
    baseline_fingerprint: str
    candidate_fingerprint: str
    baseline_risk: str
    candidate_risk: str
    baseline_status: str
    candidate_status: str
    added_rules: list[str] = field(default_factory=list)
    removed_rules: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "scenario_id": self.scenario_id,
            "baseline_fingerprint": self.baseline_fingerprint,
            "candidate_fingerprint": self.candidate_fingerprint,
            "baseline_risk": self.baseline_risk,
            "candidate_risk": self.candidate_risk,
            "baseline_status": self.baseline_status,
            "candidate_status": self.candidate_status,
            "added_rules": self.added_rules,
            "removed_rules": self.removed_rules,
        }


@dataclass
class RegressionReport:
    baseline_version: str | None
    candidate_version: str | None
    scenarios: int
    changes: list[VerdictChange] = field(default_factory=list)

    @property
    def passed(self) -> bool:
        return not self.changes

    def to_dict(self) -> dict[str, Any]:
        return {
            "baseline_version": self.baseline_version,
            "candidate_version": self.candidate_version,
            "scenarios": self.scenarios,
            "changed": len(self.changes),
            "passed": self.passed,
            "changes": [c.to_dict() for c in self.changes],
        }


def compare_versions(
    scenarios: ScenarioCorpus | Sequence[Scenario],
    baseline: SafetyEngine,
    candidate: SafetyEngine,
    *,
    baseline_version: str | None = None,
    candidate_version: str | None = None,
) -> RegressionReport:
    """Report every scenario whose verdict changed between two KB versions.

    ``baseline`` and ``candidate`` may be the same engine when both versions
    are retained in its store; pass the versions explicitly in that case.
    """
    if isinstance(scenarios, ScenarioCorpus):
        scenarios = scenarios.scenarios
    queries = [s.to_query() for s in scenarios]

    before = baseline.evaluate_many(queries, kb_version=baseline_version)
    after = candidate.evaluate_many(queries, kb_version=candidate_version)

    report = RegressionReport(
        baseline_version=baseline_version or baseline.kb_version,
        candidate_version=candidate_version or candidate.kb_version,
        scenarios=len(queries),
    )
    for scenario, old, new in zip(scenarios, before, after, strict=True):
        old_fingerprint = old.fingerprint(include_kb_version=False)
        new_fingerprint = new.fingerprint(include_kb_version=False)
        if old_fingerprint == new_fingerprint:
            continue
        old_refs, new_refs = _rule_refs(old), _rule_refs(new)
        report.changes.append(
            VerdictChange(
                scenario_id=scenario.scenario_id,
                baseline_fingerprint=old_fingerprint,
                candidate_fingerprint=new_fingerprint,
                baseline_risk=old.overall_risk.value,
                candidate_risk=new.overall_risk.value,
                baseline_status=old.status.value,
                candidate_status=new.status.value,
                added_rules=sorted(new_refs - old_refs),
                removed_rules=sorted(old_refs - new_refs),
            )
        )

    logger.info(
        "Regression comparison complete",
        baseline=report.baseline_version,
        candidate=report.candidate_version,
        changed=len(report.changes),
    )
    return report


__all__ = ["VerdictChange", "RegressionReport", "compare_versions"]
