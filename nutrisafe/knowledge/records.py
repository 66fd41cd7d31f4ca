"""Knowledge records: the curated, versioned rules the engine evaluates.

Three concrete record kinds share a common base and are distinguished by the
``kind`` field, so a snapshot file can hold a single mixed ``records`` list.
Records are frozen once loaded; an update is a new ``version`` of the same
``record_id``.
"""

from __future__ import annotations

from typing import Annotated, Literal, Self

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from nutrisafe.clinical_types import (
    DEFAULT_LOW_CONFIDENCE_LEVELS,
    EvidenceLevel,
    InteractionType,
    RecordKind,
    ReviewStatus,
    Severity,
)


def _canonical(value: str) -> str:
    return value.strip().lower().replace(" ", "_").replace("-", "_")


class RecordBase(BaseModel):
    """Fields every knowledge record carries."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    record_id: Annotated[str, Field(min_length=1)]
    version: Annotated[int, Field(ge=1)] = 1
    evidence_level: EvidenceLevel
    source_citation: Annotated[str, Field(min_length=1)]
    review_status: ReviewStatus = ReviewStatus.APPROVED
    active: bool = True
    supersedes: str | None = None

    @field_validator("source_citation")
    @classmethod
    def citation_not_blank(cls, v: str) -> str:
        if not v.strip():
            msg = "source_citation must not be blank"
            raise ValueError(msg)
        return v.strip()

    @property
    def record_kind(self) -> RecordKind:
        return RecordKind(getattr(self, "kind"))

    @property
    def servable(self) -> bool:
        """Whether the record may be served to queries."""
        return self.active and self.review_status == ReviewStatus.APPROVED

    def is_low_confidence(self, levels: frozenset[EvidenceLevel] = DEFAULT_LOW_CONFIDENCE_LEVELS) -> bool:
        return self.evidence_level in levels


class DrugFoodInteraction(RecordBase):
    """Interaction between a drug (or drug class) and foods or nutrients."""

    kind: Literal["drug_food_interaction"] = "drug_food_interaction"
    drug_id: str | None = None
    drug_class: str | None = None
    generic_name: str | None = None
    brand_names: list[str] = Field(default_factory=list)
    interacting_ids: Annotated[list[str], Field(min_length=1)]
    interaction_type: InteractionType
    severity: Severity
    mechanism: str = ""
    clinical_effect: str = ""
    recommendation: str = ""
    timing_instructions: str | None = None
    alternative_suggestions: str | None = None
    regulatory_source: str | None = None

    @field_validator("drug_id", "drug_class", mode="before")
    @classmethod
    def canonical_ids(cls, v: str | None) -> str | None:
        return _canonical(v) if isinstance(v, str) else v

    @field_validator("interacting_ids", mode="before")
    @classmethod
    def canonical_interacting(cls, v: list[str]) -> list[str]:
        return [_canonical(x) for x in v]

    @model_validator(mode="after")
    def drug_or_class(self) -> Self:
        if not self.drug_id and not self.drug_class:
            msg = "interaction needs a drug_id or a drug_class"
            raise ValueError(msg)
        if self.severity == Severity.NONE:
            msg = "interaction severity cannot be 'none'"
            raise ValueError(msg)
        return self

    @property
    def class_level(self) -> bool:
        return self.drug_id is None


class AllergenRule(RecordBase):
    """Ingredients that trigger an allergen, directly or through cross-contact."""

    kind: Literal["allergen"] = "allergen"
    allergen_id: str
    triggering_ids: Annotated[list[str], Field(min_length=1)]
    cross_contamination_ids: list[str] = Field(default_factory=list)
    severity: Severity
    symptoms: list[str] = Field(default_factory=list)
    treatment_protocol: str = ""
    emergency_medication: str | None = None
    avoidance_recommendations: list[str] = Field(default_factory=list)

    @field_validator("allergen_id", mode="before")
    @classmethod
    def canonical_allergen(cls, v: str) -> str:
        return _canonical(v)

    @field_validator("triggering_ids", "cross_contamination_ids", mode="before")
    @classmethod
    def canonical_lists(cls, v: list[str]) -> list[str]:
        return [_canonical(x) for x in v]

    @property
    def recommendation(self) -> str:
        if self.avoidance_recommendations:
            return " ".join(self.avoidance_recommendations)
        return f"Avoid foods containing {self.allergen_id.replace('_', ' ')}."


class NumericTarget(BaseModel):
    """Upper limit for a nutrient, e.g. sodium below 1500 mg per day."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    nutrient: str
    limit: Annotated[float, Field(gt=0)]
    unit: str = "mg"
    period: str = "day"

    @field_validator("nutrient", mode="before")
    @classmethod
    def canonical_nutrient(cls, v: str) -> str:
        return _canonical(v)


class PopulationApplicability(BaseModel):
    """Who a clinical recommendation applies to."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    age_min: Annotated[int, Field(ge=0)] | None = None
    age_max: Annotated[int, Field(ge=0)] | None = None
    includes: list[str] = Field(default_factory=list)
    excludes: list[str] = Field(default_factory=list)

    @field_validator("includes", "excludes", mode="before")
    @classmethod
    def canonical_lists(cls, v: list[str]) -> list[str]:
        return [_canonical(x) for x in v]

    @model_validator(mode="after")
    def validate_range(self) -> Self:
        if self.age_min is not None and self.age_max is not None and self.age_min > self.age_max:
            msg = "age_min must be <= age_max"
            raise ValueError(msg)
        return self

    def applies_to(
        self,
        age: int | None,
        conditions: frozenset[str],
        condition_id: str | None = None,
    ) -> bool:
        """Whether a patient of this age with these conditions is in the population.

        Unknown age is treated as in range. When ``includes`` is set the patient
        needs one of those conditions or ``condition_id``, the condition the
        recommendation is written for.
        """
        if age is not None:
            if self.age_min is not None and age < self.age_min:
                return False
            if self.age_max is not None and age > self.age_max:
                return False
        if conditions & set(self.excludes):
            return False
        if self.includes:
            qualifying = set(self.includes)
            if condition_id:
                qualifying.add(condition_id)
            return bool(conditions & qualifying)
        return True


class ClinicalRecommendation(RecordBase):
    """Evidence-graded dietary recommendation for a health condition."""

    kind: Literal["clinical_recommendation"] = "clinical_recommendation"
    condition_id: str
    recommendation_type: str
    recommendation_text: str = ""
    severity: Severity = Severity.MODERATE
    action: InteractionType = InteractionType.MONITOR
    numeric_targets: list[NumericTarget] = Field(default_factory=list)
    limited_tags: list[str] = Field(default_factory=list)
    population: PopulationApplicability = Field(default_factory=PopulationApplicability)
    contraindications: list[str] = Field(default_factory=list)
    guideline_organization: str | None = None

    @field_validator("condition_id", mode="before")
    @classmethod
    def canonical_condition(cls, v: str) -> str:
        return _canonical(v)

    @field_validator("limited_tags", "contraindications", mode="before")
    @classmethod
    def canonical_lists(cls, v: list[str]) -> list[str]:
        return [_canonical(x) for x in v]

    @model_validator(mode="after")
    def has_criteria(self) -> Self:
        if not self.numeric_targets and not self.limited_tags:
            msg = "recommendation needs numeric_targets or limited_tags to be matchable"
            raise ValueError(msg)
        return self

    def applies_to(self, age: int | None, conditions: frozenset[str]) -> bool:
        if conditions & set(self.contraindications):
            return False
        return self.population.applies_to(age, conditions, self.condition_id)

    @property
    def indexed_conditions(self) -> list[str]:
        """Condition ids the recommendation is looked up by."""
        return [self.condition_id, *(c for c in self.population.includes if c != self.condition_id)]


KnowledgeRecord = Annotated[
    DrugFoodInteraction | AllergenRule | ClinicalRecommendation,
    Field(discriminator="kind"),
]


__all__ = [
    "RecordBase",
    "DrugFoodInteraction",
    "AllergenRule",
    "NumericTarget",
    "PopulationApplicability",
    "ClinicalRecommendation",
    "KnowledgeRecord",
]
