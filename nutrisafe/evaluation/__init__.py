"""Evaluation harness and regression corpus for the safety engine."""

from .harness import EvaluationHarness, EvaluationReport, PolicyOutcome, ScenarioResult, run_scenarios
from .regression import RegressionReport, VerdictChange, compare_versions
from .scenarios import (
    ExpectedFinding,
    ExpectedIssue,
    Scenario,
    ScenarioCorpus,
    load_default_scenarios,
    load_scenarios,
)

__all__ = [
    "EvaluationHarness",
    "EvaluationReport",
    "PolicyOutcome",
    "ScenarioResult",
    "run_scenarios",
    "RegressionReport",
    "VerdictChange",
    "compare_versions",
    "ExpectedFinding",
    "ExpectedIssue",
    "Scenario",
    "ScenarioCorpus",
    "load_default_scenarios",
    "load_scenarios",
]
