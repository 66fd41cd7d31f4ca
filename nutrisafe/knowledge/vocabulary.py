"""Canonical vocabulary shipped with each knowledge base snapshot.

The vocabulary is the synonym table used by the Normalizer and the source of
drug classes and food tags used by the Matcher. Lookups are exact on a
normalized key; nothing here does fuzzy or substring matching.
"""

from __future__ import annotations

import re

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr, field_validator

from nutrisafe.clinical_types import NameKind

_WHITESPACE = re.compile(r"\s+")


def normalize_key(name: str) -> str:
    """Lowercase, unify separators and collapse whitespace."""
    key = name.strip().lower().replace("_", " ").replace("-", " ")
    return _WHITESPACE.sub(" ", key).strip()


def canonical_id(name: str) -> str:
    return normalize_key(name).replace(" ", "_")


class VocabularyEntry(BaseModel):
    """One canonical concept with its synonyms and attached classes/tags."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    synonyms: list[str] = Field(default_factory=list)
    classes: list[str] = Field(default_factory=list)
    tags: list[str] = Field(default_factory=list)

    @field_validator("classes", "tags", mode="before")
    @classmethod
    def canonical_lists(cls, v: list[str]) -> list[str]:
        return [canonical_id(x) for x in v]


class Vocabulary(BaseModel):
    """Canonical ids per namespace with a synonym index."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    drugs: dict[str, VocabularyEntry] = Field(default_factory=dict)
    foods: dict[str, VocabularyEntry] = Field(default_factory=dict)
    nutrients: dict[str, VocabularyEntry] = Field(default_factory=dict)
    allergens: dict[str, VocabularyEntry] = Field(default_factory=dict)
    conditions: dict[str, VocabularyEntry] = Field(default_factory=dict)

    _index: dict[NameKind, dict[str, str]] = PrivateAttr(default_factory=dict)
    _collisions: list[str] = PrivateAttr(default_factory=list)

    @field_validator("drugs", "foods", "nutrients", "allergens", "conditions", mode="before")
    @classmethod
    def canonical_keys(cls, v: dict[str, object] | None) -> dict[str, object]:
        if not v:
            return {}
        return {canonical_id(k): (entry if entry is not None else {}) for k, entry in v.items()}

    def model_post_init(self, __context: object) -> None:
        for kind in NameKind:
            table: dict[str, str] = {}
            for cid, entry in self.entries(kind).items():
                for key in {normalize_key(cid), *(normalize_key(s) for s in entry.synonyms)}:
                    existing = table.get(key)
                    if existing is not None and existing != cid:
                        self._collisions.append(f"{kind}: '{key}' maps to both {existing} and {cid}")
                        continue
                    table[key] = cid
            self._index[kind] = table

    def entries(self, kind: NameKind) -> dict[str, VocabularyEntry]:
        return {
            NameKind.DRUG: self.drugs,
            NameKind.FOOD: self.foods,
            NameKind.NUTRIENT: self.nutrients,
            NameKind.ALLERGEN: self.allergens,
            NameKind.CONDITION: self.conditions,
        }[kind]

    @property
    def collisions(self) -> list[str]:
        return list(self._collisions)

    def lookup(self, name: str, kind: NameKind) -> str | None:
        """Exact synonym lookup; ``None`` when the name is unknown."""
        return self._index[kind].get(normalize_key(name))

    def has_id(self, cid: str, kind: NameKind) -> bool:
        return cid in self.entries(kind)

    def drug_classes(self, drug_id: str) -> frozenset[str]:
        entry = self.drugs.get(drug_id)
        return frozenset(entry.classes) if entry else frozenset()

    def food_tags(self, food_id: str) -> frozenset[str]:
        entry = self.foods.get(food_id)
        return frozenset(entry.tags) if entry else frozenset()

    def known_tags(self) -> frozenset[str]:
        """Every id a rule may legitimately reference on the food side."""
        tags: set[str] = set(self.foods) | set(self.nutrients) | set(self.allergens)
        for entry in self.foods.values():
            tags.update(entry.tags)
        return frozenset(tags)

    def known_classes(self) -> frozenset[str]:
        classes: set[str] = set()
        for entry in self.drugs.values():
            classes.update(entry.classes)
        return frozenset(classes)

    def size(self) -> dict[str, int]:
        return {kind.value: len(self.entries(kind)) for kind in NameKind}


__all__ = ["Vocabulary", "VocabularyEntry", "normalize_key", "canonical_id"]
