"""Knowledge base interface and the in-memory, indexed implementation.

A ``KnowledgeSnapshot`` is the published unit: a version string, publication
metadata, the vocabulary and every record (including superseded, inactive and
unapproved ones, kept for audit). ``InMemoryKnowledgeBase`` validates a
snapshot and indexes the records it is allowed to serve.
"""

from __future__ import annotations

import datetime
from abc import ABC, abstractmethod
from collections import defaultdict
from typing import Annotated, Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from nutrisafe.clinical_types import NameKind, RecordKind, ReviewStatus
from nutrisafe.exceptions import KnowledgeBaseValidationError, StaleKnowledgeBaseError
from nutrisafe.knowledge.records import (
    AllergenRule,
    ClinicalRecommendation,
    DrugFoodInteraction,
    KnowledgeRecord,
)
from nutrisafe.knowledge.vocabulary import Vocabulary, canonical_id
from nutrisafe.logging import get_logger

logger = get_logger(__name__)


def _utc(value: datetime.datetime) -> datetime.datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=datetime.UTC)
    return value.astimezone(datetime.UTC)


class KnowledgeSnapshot(BaseModel):
    """An immutable, versioned collection of knowledge records."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    version: Annotated[str, Field(min_length=1)]
    published_at: datetime.datetime
    expires_at: datetime.datetime | None = None
    description: str = ""
    vocabulary: Vocabulary = Field(default_factory=Vocabulary)
    records: list[KnowledgeRecord] = Field(default_factory=list)

    @field_validator("published_at", "expires_at")
    @classmethod
    def ensure_utc(cls, v: datetime.datetime | None) -> datetime.datetime | None:
        return _utc(v) if v is not None else None

    def is_expired(self, now: datetime.datetime | None = None) -> bool:
        if self.expires_at is None:
            return False
        return (now or datetime.datetime.now(tz=datetime.UTC)) >= self.expires_at

    def age_days(self, now: datetime.datetime | None = None) -> float:
        delta = (now or datetime.datetime.now(tz=datetime.UTC)) - self.published_at
        return delta.total_seconds() / 86400


class KnowledgeBase(ABC):
    """Read-only lookups the Matcher needs.

    Implementations are polymorphic over the backing store; every lookup
    takes and returns canonical ids only.
    """

    @property
    @abstractmethod
    def version(self) -> str: ...

    @property
    @abstractmethod
    def snapshot(self) -> KnowledgeSnapshot: ...

    @property
    @abstractmethod
    def vocabulary(self) -> Vocabulary: ...

    @abstractmethod
    def interactions_for_drug(self, drug_id: str) -> list[DrugFoodInteraction]:
        """Drug-level and class-level interactions that apply to a drug."""

    @abstractmethod
    def interactions_for_food(self, tag: str) -> list[DrugFoodInteraction]:
        """Interactions that reference a food, food tag or nutrient."""

    @abstractmethod
    def allergen_rules_for(self, allergen_id: str) -> list[AllergenRule]: ...

    @abstractmethod
    def recommendations_for_condition(self, condition_id: str) -> list[ClinicalRecommendation]: ...

    @abstractmethod
    def get_record(self, record_id: str) -> KnowledgeRecord | None: ...

    def close(self) -> None:
        """Release resources held by the snapshot."""


def _merge_record_synonyms(vocabulary: Vocabulary, records: list[Any]) -> Vocabulary:
    """Fold generic/brand names and drug classes from interaction records into the vocabulary."""
    drugs: dict[str, dict[str, list[str]]] = {
        cid: entry.model_dump(include={"synonyms", "classes", "tags"}) for cid, entry in vocabulary.drugs.items()
    }
    changed = False
    for record in records:
        if not isinstance(record, DrugFoodInteraction) or record.drug_id is None:
            continue
        entry = drugs.setdefault(record.drug_id, {"synonyms": [], "classes": [], "tags": []})
        for name in filter(None, [record.generic_name, *record.brand_names]):
            if name not in entry["synonyms"]:
                entry["synonyms"].append(name)
                changed = True
        if record.drug_class and record.drug_class not in entry["classes"]:
            entry["classes"].append(record.drug_class)
            changed = True
    if not changed:
        return vocabulary
    data = vocabulary.model_dump()
    data["drugs"] = drugs
    return Vocabulary.model_validate(data)


def validate_snapshot(snapshot: KnowledgeSnapshot, vocabulary: Vocabulary) -> list[str]:
    """Return every problem that must block publication of a snapshot."""
    errors: list[str] = list(vocabulary.collisions)
    seen: set[tuple[str, int]] = set()
    known_tags = vocabulary.known_tags()
    known_classes = vocabulary.known_classes()

    def unknown(ids: list[str]) -> list[str]:
        return sorted(set(ids) - known_tags)

    for record in snapshot.records:
        key = (record.record_id, record.version)
        if key in seen:
            errors.append(f"{record.record_id}: duplicate version {record.version}")
        seen.add(key)

        if isinstance(record, DrugFoodInteraction):
            if record.drug_id and not vocabulary.has_id(record.drug_id, NameKind.DRUG):
                errors.append(f"{record.record_id}: unknown drug_id {record.drug_id}")
            if record.class_level and record.drug_class not in known_classes:
                errors.append(f"{record.record_id}: no drug belongs to class {record.drug_class}")
            if missing := unknown(record.interacting_ids):
                errors.append(f"{record.record_id}: unknown interacting ids {missing}")
        elif isinstance(record, AllergenRule):
            if not vocabulary.has_id(record.allergen_id, NameKind.ALLERGEN):
                errors.append(f"{record.record_id}: unknown allergen_id {record.allergen_id}")
            if missing := unknown(record.triggering_ids + record.cross_contamination_ids):
                errors.append(f"{record.record_id}: unknown ingredient ids {missing}")
        elif isinstance(record, ClinicalRecommendation):
            if not vocabulary.has_id(record.condition_id, NameKind.CONDITION):
                errors.append(f"{record.record_id}: unknown condition_id {record.condition_id}")
            for target in record.numeric_targets:
                if not vocabulary.has_id(target.nutrient, NameKind.NUTRIENT):
                    errors.append(f"{record.record_id}: unknown nutrient {target.nutrient}")
            if missing := unknown(record.limited_tags):
                errors.append(f"{record.record_id}: unknown limited tags {missing}")
            population = record.population
            for section, ids in (
                ("population.includes", population.includes),
                ("population.excludes", population.excludes),
                ("contraindications", record.contraindications),
            ):
                if missing := sorted(c for c in set(ids) if not vocabulary.has_id(c, NameKind.CONDITION)):
                    errors.append(f"{record.record_id}: unknown condition ids in {section} {missing}")
    return errors


class InMemoryKnowledgeBase(KnowledgeBase):
    """Knowledge base held fully in memory and indexed by canonical id.

    Construction validates the snapshot and raises
    ``KnowledgeBaseValidationError`` instead of serving a partial index.
    """

    def __init__(self, snapshot: KnowledgeSnapshot) -> None:
        self._snapshot = snapshot
        self._vocabulary = _merge_record_synonyms(snapshot.vocabulary, snapshot.records)

        errors = validate_snapshot(snapshot, self._vocabulary)
        if errors:
            raise KnowledgeBaseValidationError(snapshot.version, errors)

        # The highest approved version of a record is in effect; an inactive one retires it.
        latest: dict[str, KnowledgeRecord] = {}
        in_effect: dict[str, KnowledgeRecord] = {}
        for record in snapshot.records:
            current = latest.get(record.record_id)
            if current is None or record.version > current.version:
                latest[record.record_id] = record
            if record.review_status != ReviewStatus.APPROVED:
                continue
            current = in_effect.get(record.record_id)
            if current is None or record.version > current.version:
                in_effect[record.record_id] = record
        self._records = dict(sorted({**latest, **in_effect}.items()))

        by_drug: dict[str, list[DrugFoodInteraction]] = defaultdict(list)
        by_class: dict[str, list[DrugFoodInteraction]] = defaultdict(list)
        by_food: dict[str, list[DrugFoodInteraction]] = defaultdict(list)
        by_allergen: dict[str, list[AllergenRule]] = defaultdict(list)
        by_condition: dict[str, list[ClinicalRecommendation]] = defaultdict(list)

        served = [r for _, r in sorted(in_effect.items()) if r.active]
        for record in served:
            if isinstance(record, DrugFoodInteraction):
                if record.drug_id:
                    by_drug[record.drug_id].append(record)
                else:
                    by_class[record.drug_class].append(record)
                for tag in record.interacting_ids:
                    by_food[tag].append(record)
            elif isinstance(record, AllergenRule):
                by_allergen[record.allergen_id].append(record)
            elif isinstance(record, ClinicalRecommendation):
                for condition_id in record.indexed_conditions:
                    by_condition[condition_id].append(record)

        self._by_drug = dict(by_drug)
        self._by_class = dict(by_class)
        self._by_food = dict(by_food)
        self._by_allergen = dict(by_allergen)
        self._by_condition = dict(by_condition)
        self._served = served
        self._closed = False

        logger.info(
            "Knowledge base indexed",
            kb_version=snapshot.version,
            records=len(snapshot.records),
            served=len(served),
        )

    @property
    def version(self) -> str:
        return self._snapshot.version

    @property
    def snapshot(self) -> KnowledgeSnapshot:
        return self._snapshot

    @property
    def vocabulary(self) -> Vocabulary:
        return self._vocabulary

    @property
    def closed(self) -> bool:
        return self._closed

    def _ensure_open(self) -> None:
        if self._closed:
            raise StaleKnowledgeBaseError(self.version, "version was released")

    def interactions_for_drug(self, drug_id: str) -> list[DrugFoodInteraction]:
        self._ensure_open()
        found = list(self._by_drug.get(drug_id, []))
        for drug_class in sorted(self._vocabulary.drug_classes(drug_id)):
            found.extend(self._by_class.get(drug_class, []))
        return found

    def interactions_for_food(self, tag: str) -> list[DrugFoodInteraction]:
        self._ensure_open()
        return list(self._by_food.get(canonical_id(tag), []))

    def allergen_rules_for(self, allergen_id: str) -> list[AllergenRule]:
        self._ensure_open()
        return list(self._by_allergen.get(allergen_id, []))

    def recommendations_for_condition(self, condition_id: str) -> list[ClinicalRecommendation]:
        self._ensure_open()
        return list(self._by_condition.get(condition_id, []))

    def get_record(self, record_id: str) -> KnowledgeRecord | None:
        self._ensure_open()
        return self._records.get(record_id)

    def stats(self) -> dict[str, Any]:
        kinds: dict[str, int] = defaultdict(int)
        for record in self._served:
            kinds[RecordKind(record.kind).value] += 1
        return {
            "version": self.version,
            "published_at": self._snapshot.published_at.isoformat(),
            "expires_at": self._snapshot.expires_at.isoformat() if self._snapshot.expires_at else None,
            "records_total": len(self._snapshot.records),
            "records_served": len(self._served),
            "by_kind": dict(kinds),
            "vocabulary": self._vocabulary.size(),
        }

    def close(self) -> None:
        """Drop the indexes. Later lookups raise ``StaleKnowledgeBaseError``."""
        self._by_drug = {}
        self._by_class = {}
        self._by_food = {}
        self._by_allergen = {}
        self._by_condition = {}
        self._closed = True
        logger.debug("Knowledge base released", kb_version=self.version)


__all__ = ["KnowledgeSnapshot", "KnowledgeBase", "InMemoryKnowledgeBase", "validate_snapshot"]
