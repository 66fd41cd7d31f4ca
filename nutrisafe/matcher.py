"""Rule matching: normalized profile x normalized item -> raw matches.

Every comparison is a set intersection on canonical ids. The Matcher returns
all applicable rules, including overlapping drug-level and class-level ones;
deduplication and prioritization belong to the Resolver.
"""

from __future__ import annotations

import math
from dataclasses import asdict, dataclass
from typing import Any

from nutrisafe.clinical_types import (
    EvidenceLevel,
    InteractionType,
    ProfileElementKind,
    RecordKind,
    Severity,
    max_severity,
)
from nutrisafe.knowledge.base import KnowledgeBase
from nutrisafe.knowledge.records import AllergenRule, ClinicalRecommendation, DrugFoodInteraction
from nutrisafe.normalizer import NormalizedItem, NormalizedProfile


@dataclass(frozen=True, slots=True)
class ProfileElement:
    """The part of the profile a rule matched against."""

    kind: ProfileElementKind
    canonical_id: str
    raw: str


@dataclass(frozen=True, slots=True)
class Match:
    """One knowledge record applying to one item for one profile element."""

    rule_id: str
    record_version: int
    kind: RecordKind
    item_id: str
    matched_against: ProfileElement
    severity: Severity
    evidence_level: EvidenceLevel
    action: InteractionType
    matched_ids: tuple[str, ...]
    citation: str
    recommendation: str = ""
    clinical_effect: str = ""
    cross_contamination: bool = False
    class_level: bool = False
    low_confidence: bool = False

    @property
    def pair(self) -> tuple[str, str, str]:
        """(element kind, element id, item id): the unit of action conflict resolution."""
        return (self.matched_against.kind.value, self.matched_against.canonical_id, self.item_id)

    def sort_key(self) -> tuple[str, str, str, int]:
        return (self.kind.value, self.matched_against.canonical_id, self.rule_id, self.record_version)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["matched_ids"] = list(self.matched_ids)
        return data


class Matcher:
    """Finds every knowledge record that applies to an item for a profile."""

    def match(self, profile: NormalizedProfile, item: NormalizedItem, kb: KnowledgeBase) -> list[Match]:
        matches = [
            *self._match_interactions(profile, item, kb),
            *self._match_allergens(profile, item, kb),
            *self._match_recommendations(profile, item, kb),
        ]
        return sorted(matches, key=Match.sort_key)

    def _match_interactions(self, profile: NormalizedProfile, item: NormalizedItem, kb: KnowledgeBase) -> list[Match]:
        found: list[Match] = []
        for drug_id, raw in profile.medications.items():
            element = ProfileElement(ProfileElementKind.MEDICATION, drug_id, raw)
            for record in kb.interactions_for_drug(drug_id):
                hits = item.tags & set(record.interacting_ids)
                if hits:
                    found.append(self._interaction_match(record, item, element, hits))
        return found

    @staticmethod
    def _interaction_match(
        record: DrugFoodInteraction,
        item: NormalizedItem,
        element: ProfileElement,
        hits: set[str],
    ) -> Match:
        recommendation = record.recommendation
        if record.timing_instructions and record.interaction_type == InteractionType.TIMING_SEPARATION:
            recommendation = f"{recommendation} {record.timing_instructions}".strip()
        return Match(
            rule_id=record.record_id,
            record_version=record.version,
            kind=RecordKind.DRUG_FOOD_INTERACTION,
            item_id=item.item_id,
            matched_against=element,
            severity=record.severity,
            evidence_level=record.evidence_level,
            action=record.interaction_type,
            matched_ids=tuple(sorted(hits)),
            citation=record.source_citation,
            recommendation=recommendation,
            clinical_effect=record.clinical_effect,
            class_level=record.class_level,
        )

    def _match_allergens(self, profile: NormalizedProfile, item: NormalizedItem, kb: KnowledgeBase) -> list[Match]:
        found: list[Match] = []
        for allergen_id, declared in profile.allergies.items():
            element = ProfileElement(ProfileElementKind.ALLERGY, allergen_id, allergen_id)
            for rule in kb.allergen_rules_for(allergen_id):
                if match := self._allergen_match(rule, item, element, declared):
                    found.append(match)
        return found

    @staticmethod
    def _allergen_match(
        rule: AllergenRule,
        item: NormalizedItem,
        element: ProfileElement,
        declared: Severity | None,
    ) -> Match | None:
        triggers = set(rule.triggering_ids)
        cross_ids = set(rule.cross_contamination_ids)
        direct = item.tags & triggers
        cross = (item.may_contain & (triggers | cross_ids)) | (item.tags & cross_ids)
        if not direct and not cross:
            return None

        severity = max_severity([rule.severity, declared or Severity.NONE])
        return Match(
            rule_id=rule.record_id,
            record_version=rule.version,
            kind=RecordKind.ALLERGEN,
            item_id=item.item_id,
            matched_against=element,
            severity=severity,
            evidence_level=rule.evidence_level,
            action=InteractionType.AVOID,
            matched_ids=tuple(sorted(direct | cross)),
            citation=rule.source_citation,
            recommendation=rule.recommendation,
            clinical_effect=", ".join(rule.symptoms),
            cross_contamination=bool(cross) and not direct,
        )

    def _match_recommendations(
        self,
        profile: NormalizedProfile,
        item: NormalizedItem,
        kb: KnowledgeBase,
    ) -> list[Match]:
        found: list[Match] = []
        seen: set[str] = set()
        conditions = profile.condition_ids
        for condition_id, raw in profile.conditions.items():
            element = ProfileElement(ProfileElementKind.CONDITION, condition_id, raw)
            for record in kb.recommendations_for_condition(condition_id):
                # A record indexed under several of the patient's conditions is matched once.
                if record.record_id in seen or not record.applies_to(profile.age, conditions):
                    continue
                seen.add(record.record_id)
                if match := self._recommendation_match(record, item, element, profile.nutrient_limits):
                    found.append(match)
        return found

    @staticmethod
    def _recommendation_match(
        record: ClinicalRecommendation,
        item: NormalizedItem,
        element: ProfileElement,
        limits: dict[str, float],
    ) -> Match | None:
        hits: set[str] = set()
        details: list[str] = []
        for target in record.numeric_targets:
            amount = item.nutrients.get(target.nutrient)
            limit = min(target.limit, limits.get(target.nutrient, math.inf))
            if amount is not None and amount > limit:
                hits.add(target.nutrient)
                details.append(
                    f"{target.nutrient} {amount:g} {target.unit} exceeds {limit:g} {target.unit}/{target.period}"
                )
        hits.update(item.tags & set(record.limited_tags))
        if not hits:
            return None

        recommendation = record.recommendation_text
        if details:
            recommendation = f"{recommendation} ({'; '.join(details)})".strip()
        return Match(
            rule_id=record.record_id,
            record_version=record.version,
            kind=RecordKind.CLINICAL_RECOMMENDATION,
            item_id=item.item_id,
            matched_against=element,
            severity=record.severity,
            evidence_level=record.evidence_level,
            action=record.action,
            matched_ids=tuple(sorted(hits)),
            citation=record.source_citation,
            recommendation=recommendation,
            clinical_effect=record.recommendation_type.replace("_", " "),
        )


__all__ = ["ProfileElement", "Match", "Matcher"]
