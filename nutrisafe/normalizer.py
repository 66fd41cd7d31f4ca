"""Name normalization against the knowledge base vocabulary.

``Normalizer.normalize`` maps one free-text name to a canonical id or returns
``NotFound``. It tries, in order:

1. an exact synonym lookup on the normalized key,
2. for drugs, the name with dosage/formulation suffixes removed ("500mg", "XR"),
3. for foods and allergens, singular/plural variants of the last word.

There is no fuzzy or substring matching: an unknown name is reported, never
guessed. ``normalize_query`` applies the same rules to a whole query and
collects every failure so none can be dropped silently.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field

from nutrisafe.clinical_types import ConfirmationSource, NameKind, Severity, max_severity
from nutrisafe.knowledge.vocabulary import Vocabulary, canonical_id, normalize_key
from nutrisafe.logging import get_logger
from nutrisafe.profile import CandidateItem, ClinicalProfile, SafetyQuery

logger = get_logger(__name__)

_DOSAGE = re.compile(
    r"(?:\s*\d+(?:\.\d+)?\s*(?:mg|mcg|ug|g|ml|iu|units?|%)(?:\s*/\s*\d*\s*\w+)?\b)+$",
)
_FORMULATION = re.compile(r"\s+(?:tablets?|tabs?|capsules?|caps?|er|xr|sr|xl|cr|oral|solution)$")


@dataclass(frozen=True, slots=True)
class CanonicalId:
    """A successfully resolved name."""

    value: str
    kind: NameKind
    raw: str
    rule: str = "exact"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True, slots=True)
class NotFound:
    """A name that could not be resolved; carries the keys that were tried."""

    raw: str
    kind: NameKind
    attempted: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class NormalizationFailure:
    """An unresolved name located in the query.

    ``blocking`` failures mean a safety check could not be performed for that
    name; the verdict is then incomplete.
    """

    raw: str
    kind: NameKind
    location: str
    blocking: bool = True


@dataclass(frozen=True)
class NormalizedProfile:
    profile_id: str
    age: int | None
    medications: dict[str, str] = field(default_factory=dict)
    allergies: dict[str, Severity | None] = field(default_factory=dict)
    allergy_sources: dict[str, ConfirmationSource] = field(default_factory=dict)
    conditions: dict[str, str] = field(default_factory=dict)
    nutrient_limits: dict[str, float] = field(default_factory=dict)
    missing_sections: tuple[str, ...] = ()

    @property
    def condition_ids(self) -> frozenset[str]:
        return frozenset(self.conditions)


@dataclass(frozen=True)
class NormalizedItem:
    item_id: str
    name: str
    ingredient_ids: frozenset[str] = frozenset()
    tags: frozenset[str] = frozenset()
    may_contain: frozenset[str] = frozenset()
    nutrients: dict[str, float] = field(default_factory=dict)


@dataclass(frozen=True)
class NormalizedQuery:
    query_id: str
    profile: NormalizedProfile
    items: tuple[NormalizedItem, ...]
    failures: tuple[NormalizationFailure, ...] = ()


def strip_dosage(name: str) -> str:
    """Remove trailing dosage and formulation words: "Metformin 500 mg XR" -> "metformin"."""
    key = normalize_key(name)
    previous = None
    while previous != key:
        previous = key
        key = _FORMULATION.sub("", key)
        key = _DOSAGE.sub("", key).strip()
    return key


def number_variants(name: str) -> list[str]:
    """Singular and plural forms of the last word of a normalized name."""
    key = normalize_key(name)
    head, _, last = key.rpartition(" ")
    prefix = f"{head} " if head else ""
    forms: list[str] = []
    if last.endswith("ies") and len(last) > 3:
        forms.append(last[:-3] + "y")
    if last.endswith("oes") or last.endswith(("ches", "shes", "xes", "sses")):
        forms.append(last[:-2])
    if last.endswith("s") and not last.endswith("ss"):
        forms.append(last[:-1])
    if last.endswith("y") and len(last) > 1 and last[-2] not in "aeiou":
        forms.append(last[:-1] + "ies")
    forms.extend([last + "s", last + "es"])
    seen: list[str] = []
    for form in forms:
        candidate = prefix + form
        if candidate != key and candidate not in seen:
            seen.append(candidate)
    return seen


class Normalizer:
    """Resolves names to canonical ids using a vocabulary synonym table."""

    def __init__(self, vocabulary: Vocabulary) -> None:
        self.vocabulary = vocabulary

    def normalize(self, raw_name: str, kind: NameKind | str) -> CanonicalId | NotFound:
        """Map ``raw_name`` to a canonical id of ``kind``.

        Raises:
            ValueError: If ``raw_name`` is blank.
        """
        kind = NameKind(kind)
        if not raw_name or not raw_name.strip():
            msg = "raw_name must be a non-empty string"
            raise ValueError(msg)

        attempted: list[str] = []

        def attempt(key: str, rule: str) -> CanonicalId | None:
            if not key or key in attempted:
                return None
            attempted.append(key)
            found = self.vocabulary.lookup(key, kind)
            return CanonicalId(found, kind, raw_name, rule) if found else None

        key = normalize_key(raw_name)
        if result := attempt(key, "exact"):
            return result

        if kind == NameKind.DRUG:
            if result := attempt(strip_dosage(key), "dosage_stripped"):
                return result

        if kind in (NameKind.FOOD, NameKind.ALLERGEN):
            for variant in number_variants(key):
                if result := attempt(variant, "number_variant"):
                    return result

        return NotFound(raw_name, kind, tuple(attempted))

    def _resolve_ingredient(self, raw: str) -> CanonicalId | NotFound:
        result = self.normalize(raw, NameKind.FOOD)
        if isinstance(result, NotFound):
            as_allergen = self.normalize(raw, NameKind.ALLERGEN)
            if isinstance(as_allergen, CanonicalId):
                return as_allergen
        return result

    def _ingredient_tags(self, cid: CanonicalId) -> set[str]:
        tags = {cid.value}
        if cid.kind == NameKind.FOOD:
            tags.update(self.vocabulary.food_tags(cid.value))
        return tags

    def normalize_profile(self, profile: ClinicalProfile) -> tuple[NormalizedProfile, list[NormalizationFailure]]:
        failures: list[NormalizationFailure] = []

        medications: dict[str, str] = {}
        for medication in profile.active_medications:
            result = self.normalize(medication.name, NameKind.DRUG)
            if isinstance(result, NotFound):
                failures.append(NormalizationFailure(medication.name, NameKind.DRUG, "medications"))
            else:
                medications.setdefault(result.value, medication.name)

        allergies: dict[str, Severity | None] = {}
        sources: dict[str, ConfirmationSource] = {}
        for allergy in profile.allergies or []:
            result = self.normalize(allergy.allergen, NameKind.ALLERGEN)
            if isinstance(result, NotFound):
                failures.append(NormalizationFailure(allergy.allergen, NameKind.ALLERGEN, "allergies"))
                continue
            known = allergies.get(result.value)
            declared = [s for s in (known, allergy.severity) if s is not None]
            allergies[result.value] = max_severity(declared) if declared else None
            sources.setdefault(result.value, allergy.confirmation_source)

        conditions: dict[str, str] = {}
        for raw in profile.conditions or []:
            result = self.normalize(raw, NameKind.CONDITION)
            if isinstance(result, NotFound):
                failures.append(NormalizationFailure(raw, NameKind.CONDITION, "conditions"))
            else:
                conditions.setdefault(result.value, raw)

        limits: dict[str, float] = {}
        for raw, limit in profile.nutrient_limits.items():
            result = self.normalize(raw, NameKind.NUTRIENT)
            if isinstance(result, NotFound):
                failures.append(NormalizationFailure(raw, NameKind.NUTRIENT, "nutrient_limits"))
            else:
                limits[result.value] = min(limit, limits.get(result.value, limit))

        normalized = NormalizedProfile(
            profile_id=profile.profile_id,
            age=profile.age,
            medications=dict(sorted(medications.items())),
            allergies=dict(sorted(allergies.items())),
            allergy_sources=sources,
            conditions=dict(sorted(conditions.items())),
            nutrient_limits=limits,
            missing_sections=tuple(profile.missing_sections()),
        )
        return normalized, failures

    def normalize_item(self, item: CandidateItem) -> tuple[NormalizedItem, list[NormalizationFailure]]:
        failures: list[NormalizationFailure] = []
        location = f"items[{item.item_id}]"

        ingredient_ids: set[str] = set()
        tags: set[str] = set()
        for raw in item.ingredients:
            result = self._resolve_ingredient(raw)
            if isinstance(result, NotFound):
                failures.append(NormalizationFailure(raw, NameKind.FOOD, f"{location}.ingredients"))
                continue
            ingredient_ids.add(result.value)
            tags.update(self._ingredient_tags(result))

        may_contain: set[str] = set()
        for raw in item.may_contain:
            result = self._resolve_ingredient(raw)
            if isinstance(result, NotFound):
                failures.append(NormalizationFailure(raw, NameKind.FOOD, f"{location}.may_contain"))
                continue
            may_contain.update(self._ingredient_tags(result))

        known_tags = self.vocabulary.known_tags()
        for raw in item.nutrient_tags:
            result = self.normalize(raw, NameKind.NUTRIENT)
            if isinstance(result, CanonicalId):
                tags.add(result.value)
            elif canonical_id(raw) in known_tags:
                tags.add(canonical_id(raw))
            else:
                failures.append(
                    NormalizationFailure(raw, NameKind.NUTRIENT, f"{location}.nutrient_tags", blocking=False)
                )

        nutrients: dict[str, float] = {}
        for raw, amount in item.nutrients.items():
            result = self.normalize(raw, NameKind.NUTRIENT)
            if isinstance(result, NotFound):
                failures.append(NormalizationFailure(raw, NameKind.NUTRIENT, f"{location}.nutrients", blocking=False))
            else:
                nutrients[result.value] = max(amount, nutrients.get(result.value, amount))

        normalized = NormalizedItem(
            item_id=item.item_id,
            name=item.name or item.item_id,
            ingredient_ids=frozenset(ingredient_ids),
            tags=frozenset(tags),
            may_contain=frozenset(may_contain),
            nutrients=dict(sorted(nutrients.items())),
        )
        return normalized, failures

    def normalize_query(self, query: SafetyQuery) -> NormalizedQuery:
        """Normalize every name in a query, collecting all failures."""
        profile, failures = self.normalize_profile(query.profile)
        items: list[NormalizedItem] = []
        for item in query.items:
            normalized, item_failures = self.normalize_item(item)
            items.append(normalized)
            failures.extend(item_failures)

        if failures:
            logger.info(
                "Unresolved names in query",
                query_id=query.query_id,
                unresolved=len(failures),
                blocking=sum(1 for f in failures if f.blocking),
            )
        return NormalizedQuery(query.query_id, profile, tuple(items), tuple(failures))


__all__ = [
    "CanonicalId",
    "NotFound",
    "NormalizationFailure",
    "NormalizedProfile",
    "NormalizedItem",
    "NormalizedQuery",
    "Normalizer",
    "strip_dosage",
    "number_variants",
]
