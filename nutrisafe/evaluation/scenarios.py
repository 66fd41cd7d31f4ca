"""Regression scenario corpus: models and loading."""

from __future__ import annotations

from importlib import resources
from pathlib import Path
from typing import Annotated, Any, Self

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from nutrisafe.clinical_types import InteractionType, RecordKind, Severity
from nutrisafe.exceptions import ScenarioLoadError
from nutrisafe.logging import get_logger
from nutrisafe.profile import CandidateItem, ClinicalProfile, SafetyQuery
from nutrisafe.verdict import IssueCode

logger = get_logger(__name__)

DEFAULT_CORPUS = "regression_scenarios.yaml"


class ExpectedFinding(BaseModel):
    """A finding the engine must produce for an item.

    Only ``item_id`` and ``kind`` are required; every other field that is set
    must also agree with the produced finding.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    item_id: str
    kind: RecordKind
    severity: Severity | None = None
    action: InteractionType | None = None
    rule_id: str | None = None
    cross_contamination: bool | None = None


class ExpectedIssue(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    code: IssueCode
    subject: str | None = None


class Scenario(BaseModel):
    """A certified (profile, items) pair with its expected outcome."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    scenario_id: Annotated[str, Field(min_length=1)]
    description: str = ""
    profile: ClinicalProfile
    items: list[CandidateItem]
    expected_findings: list[ExpectedFinding] = Field(default_factory=list)
    expected_issues: list[ExpectedIssue] = Field(default_factory=list)

    @model_validator(mode="after")
    def expected_items_exist(self) -> Self:
        item_ids = {item.item_id for item in self.items}
        unknown = sorted({f.item_id for f in self.expected_findings} - item_ids)
        if unknown:
            msg = f"expected findings reference unknown items: {unknown}"
            raise ValueError(msg)
        return self

    def to_query(self) -> SafetyQuery:
        return SafetyQuery(query_id=self.scenario_id, profile=self.profile, items=self.items)


class ScenarioCorpus(BaseModel):
    """A versioned set of scenarios certified against one KB version."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    corpus_version: str
    certified_kb_version: str | None = None
    scenarios: list[Scenario]

    @model_validator(mode="after")
    def unique_ids(self) -> Self:
        ids = [s.scenario_id for s in self.scenarios]
        duplicates = sorted({i for i in ids if ids.count(i) > 1})
        if duplicates:
            msg = f"duplicate scenario_id values: {duplicates}"
            raise ValueError(msg)
        return self

    def get(self, scenario_id: str) -> Scenario:
        for scenario in self.scenarios:
            if scenario.scenario_id == scenario_id:
                return scenario
        raise KeyError(scenario_id)


def parse_corpus(data: dict[str, Any], source: str = "<memory>") -> ScenarioCorpus:
    try:
        return ScenarioCorpus.model_validate(data)
    except ValidationError as e:
        raise ScenarioLoadError(source, f"{e.error_count()} validation error(s): {e.errors()[0]['msg']}", cause=e) from e


def load_scenarios(path: str | Path) -> ScenarioCorpus:
    """Load a scenario corpus from a YAML file."""
    corpus_path = Path(path)
    if not corpus_path.exists():
        raise ScenarioLoadError(str(corpus_path), "file does not exist")
    try:
        with corpus_path.open("r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        raise ScenarioLoadError(str(corpus_path), str(e), cause=e) from e

    corpus = parse_corpus(data, source=str(corpus_path))
    logger.info(
        "Loaded scenario corpus",
        path=str(corpus_path),
        corpus_version=corpus.corpus_version,
        scenarios=len(corpus.scenarios),
    )
    return corpus


def load_default_scenarios() -> ScenarioCorpus:
    """Load the regression corpus packaged with ``nutrisafe``."""
    resource = resources.files("nutrisafe.evaluation") / "data" / DEFAULT_CORPUS
    with resources.as_file(resource) as path:
        return load_scenarios(path)


__all__ = [
    "ExpectedFinding",
    "ExpectedIssue",
    "Scenario",
    "ScenarioCorpus",
    "parse_corpus",
    "load_scenarios",
    "load_default_scenarios",
]
