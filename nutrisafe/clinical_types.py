"""Clinical vocabulary enums shared by the knowledge base and the pipeline.

Severity, recommended action and evidence level are ordered types. Every
comparison the Resolver and Verdict Builder make goes through the explicit
rank tables in this module rather than through declaration order.
"""

from __future__ import annotations

from collections.abc import Iterable
from enum import StrEnum


class Severity(StrEnum):
    """Clinical severity of a match, finding or verdict."""

    NONE = "none"
    MILD = "mild"
    MODERATE = "moderate"
    SEVERE = "severe"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]

    @classmethod
    def parse(cls, value: str | Severity) -> Severity:
        """Parse a severity, accepting the ``anaphylactic`` allergy alias."""
        if isinstance(value, Severity):
            return value
        key = str(value).strip().lower().replace("-", "_")
        if key in _SEVERITY_ALIASES:
            return _SEVERITY_ALIASES[key]
        return cls(key)


_SEVERITY_RANK = {
    Severity.NONE: 0,
    Severity.MILD: 1,
    Severity.MODERATE: 2,
    Severity.SEVERE: 3,
    Severity.CRITICAL: 4,
}

_SEVERITY_ALIASES = {
    "anaphylactic": Severity.CRITICAL,
    "life_threatening": Severity.CRITICAL,
    "minor": Severity.MILD,
    "major": Severity.SEVERE,
}


def max_severity(severities: Iterable[Severity]) -> Severity:
    """Return the highest severity, or ``Severity.NONE`` for an empty input."""
    result = Severity.NONE
    for severity in severities:
        if severity.rank > result.rank:
            result = severity
    return result


class InteractionType(StrEnum):
    """Recommended action attached to a rule.

    Conservativeness (most to least):
        avoid > timing_separation = dose_adjustment > monitor > supplement_recommended
    """

    AVOID = "avoid"
    TIMING_SEPARATION = "timing_separation"
    DOSE_ADJUSTMENT = "dose_adjustment"
    MONITOR = "monitor"
    SUPPLEMENT_RECOMMENDED = "supplement_recommended"

    @property
    def conservativeness(self) -> int:
        return ACTION_CONSERVATIVENESS[self]


# Primary key is clinical conservativeness. The second element only breaks the
# timing_separation/dose_adjustment tie so resolution stays deterministic.
ACTION_CONSERVATIVENESS: dict[InteractionType, int] = {
    InteractionType.AVOID: 4,
    InteractionType.TIMING_SEPARATION: 3,
    InteractionType.DOSE_ADJUSTMENT: 3,
    InteractionType.MONITOR: 2,
    InteractionType.SUPPLEMENT_RECOMMENDED: 1,
}

_ACTION_TIE_BREAK: dict[InteractionType, int] = {
    InteractionType.AVOID: 0,
    InteractionType.TIMING_SEPARATION: 1,
    InteractionType.DOSE_ADJUSTMENT: 0,
    InteractionType.MONITOR: 0,
    InteractionType.SUPPLEMENT_RECOMMENDED: 0,
}


def action_sort_key(action: InteractionType) -> tuple[int, int]:
    """Sort key where a larger key is the more conservative action."""
    return (ACTION_CONSERVATIVENESS[action], _ACTION_TIE_BREAK[action])


def most_conservative(actions: Iterable[InteractionType]) -> InteractionType | None:
    """Pick the most conservative action; ``None`` when there are no actions."""
    ordered = sorted(set(actions), key=action_sort_key, reverse=True)
    return ordered[0] if ordered else None


class EvidenceLevel(StrEnum):
    """Strength of the evidence behind a knowledge record."""

    A = "A"
    B = "B"
    C = "C"
    D = "D"
    EXPERT_CONSENSUS = "expert_consensus"

    @property
    def rank(self) -> int:
        return _EVIDENCE_RANK[self]


_EVIDENCE_RANK = {
    EvidenceLevel.A: 5,
    EvidenceLevel.B: 4,
    EvidenceLevel.C: 3,
    EvidenceLevel.D: 2,
    EvidenceLevel.EXPERT_CONSENSUS: 1,
}

DEFAULT_LOW_CONFIDENCE_LEVELS = frozenset({EvidenceLevel.D, EvidenceLevel.EXPERT_CONSENSUS})


class RecordKind(StrEnum):
    """Discriminator for knowledge records and the matches they produce."""

    DRUG_FOOD_INTERACTION = "drug_food_interaction"
    ALLERGEN = "allergen"
    CLINICAL_RECOMMENDATION = "clinical_recommendation"


class ReviewStatus(StrEnum):
    """Clinical-advisor review state of a record."""

    PENDING = "pending"
    IN_REVIEW = "in_review"
    APPROVED = "approved"
    REJECTED = "rejected"
    ESCALATED = "escalated"


class ProfileElementKind(StrEnum):
    """Which part of a clinical profile a match was made against."""

    MEDICATION = "medication"
    ALLERGY = "allergy"
    CONDITION = "condition"


class NameKind(StrEnum):
    """Namespaces of the canonical vocabulary."""

    DRUG = "drug"
    FOOD = "food"
    ALLERGEN = "allergen"
    CONDITION = "condition"
    NUTRIENT = "nutrient"


class ConfirmationSource(StrEnum):
    """How an allergy in a profile was confirmed."""

    CLINICIAN_DIAGNOSED = "clinician_diagnosed"
    LAB_TEST = "lab_test"
    SELF_REPORTED = "self_reported"
    UNKNOWN = "unknown"


__all__ = [
    "Severity",
    "max_severity",
    "InteractionType",
    "ACTION_CONSERVATIVENESS",
    "action_sort_key",
    "most_conservative",
    "EvidenceLevel",
    "DEFAULT_LOW_CONFIDENCE_LEVELS",
    "RecordKind",
    "ReviewStatus",
    "ProfileElementKind",
    "NameKind",
    "ConfirmationSource",
]
