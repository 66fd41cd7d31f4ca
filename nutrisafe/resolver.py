"""Severity and conflict resolution: many matches -> one Finding per item.

Resolution rules:
    * Severity is the maximum over all matches; nothing is averaged or dropped.
    * When matches for the same profile element and item disagree on the
      recommended action, the most conservative action wins using the explicit
      ranking in ``nutrisafe.clinical_types.ACTION_CONSERVATIVENESS``. Every
      such decision is recorded as an ``ActionResolution``.
    * Low-evidence matches are kept and tagged ``low_confidence``.
"""

from __future__ import annotations

import dataclasses
from collections import defaultdict
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

from nutrisafe.clinical_types import (
    DEFAULT_LOW_CONFIDENCE_LEVELS,
    EvidenceLevel,
    InteractionType,
    RecordKind,
    Severity,
    action_sort_key,
    max_severity,
    most_conservative,
)
from nutrisafe.matcher import Match, ProfileElement


@dataclass(frozen=True, slots=True)
class ActionResolution:
    """Audit record of how one profile element's actions for an item were combined."""

    subject: ProfileElement
    item_id: str
    candidates: tuple[InteractionType, ...]
    resolved: InteractionType
    rule_ids: tuple[str, ...]

    @property
    def conflicted(self) -> bool:
        return len(set(self.candidates)) > 1

    def to_dict(self) -> dict[str, Any]:
        return {
            "subject": dataclasses.asdict(self.subject),
            "item_id": self.item_id,
            "candidates": [c.value for c in self.candidates],
            "resolved": self.resolved.value,
            "rule_ids": list(self.rule_ids),
        }


@dataclass(frozen=True)
class Finding:
    """Aggregated safety result for one candidate item."""

    item_id: str
    item_name: str = ""
    severity: Severity = Severity.NONE
    action: InteractionType | None = None
    matches: tuple[Match, ...] = ()
    resolutions: tuple[ActionResolution, ...] = ()
    recommendations: tuple[str, ...] = ()
    citations: tuple[str, ...] = ()
    low_confidence: bool = False
    cross_contamination: bool = False
    kinds: frozenset[RecordKind] = field(default_factory=frozenset)

    @property
    def flagged(self) -> bool:
        return bool(self.matches)

    @property
    def rule_ids(self) -> tuple[str, ...]:
        return tuple(sorted({m.rule_id for m in self.matches}))

    def to_dict(self) -> dict[str, Any]:
        return {
            "item_id": self.item_id,
            "item_name": self.item_name,
            "severity": self.severity.value,
            "action": self.action.value if self.action else None,
            "kinds": sorted(k.value for k in self.kinds),
            "low_confidence": self.low_confidence,
            "cross_contamination": self.cross_contamination,
            "recommendations": list(self.recommendations),
            "citations": list(self.citations),
            "matches": [m.to_dict() for m in self.matches],
            "resolutions": [r.to_dict() for r in self.resolutions],
        }


def _unique(values: Iterable[str]) -> tuple[str, ...]:
    seen: dict[str, None] = {}
    for value in values:
        if value:
            seen.setdefault(value, None)
    return tuple(seen)


class Resolver:
    """Collapses the matches of one item into a single Finding.

    Args:
        low_confidence_levels: Evidence levels whose matches are tagged
            ``low_confidence``.
    """

    def __init__(self, low_confidence_levels: Iterable[EvidenceLevel] = DEFAULT_LOW_CONFIDENCE_LEVELS) -> None:
        self.low_confidence_levels = frozenset(low_confidence_levels)

    def resolve(self, matches: Iterable[Match], item_id: str | None = None, item_name: str = "") -> Finding:
        """Resolve the matches of a single item.

        Raises:
            ValueError: If matches belong to different items, or if there are
                no matches and no ``item_id``.
        """
        matches = list(matches)
        item_ids = {m.item_id for m in matches}
        if item_id is not None:
            item_ids.add(item_id)
        if len(item_ids) != 1:
            msg = f"resolve() needs matches for exactly one item, got {sorted(item_ids) or 'none'}"
            raise ValueError(msg)
        (target,) = item_ids

        deduped: dict[tuple[Any, ...], Match] = {}
        for match in matches:
            key = (match.rule_id, match.record_version, match.matched_against)
            existing = deduped.get(key)
            if existing is None or match.severity.rank > existing.severity.rank:
                deduped[key] = match

        tagged = sorted(
            (
                dataclasses.replace(m, low_confidence=m.evidence_level in self.low_confidence_levels)
                for m in deduped.values()
            ),
            key=Match.sort_key,
        )
        if not tagged:
            return Finding(item_id=target, item_name=item_name)

        resolutions = self._resolve_actions(tagged)
        ordered = sorted(tagged, key=lambda m: (-m.severity.rank, *m.sort_key()))
        return Finding(
            item_id=target,
            item_name=item_name,
            severity=max_severity(m.severity for m in tagged),
            action=most_conservative(r.resolved for r in resolutions),
            matches=tuple(tagged),
            resolutions=resolutions,
            recommendations=_unique(m.recommendation for m in ordered),
            citations=_unique(m.citation for m in ordered),
            low_confidence=any(m.low_confidence for m in tagged),
            cross_contamination=any(m.cross_contamination for m in tagged),
            kinds=frozenset(m.kind for m in tagged),
        )

    @staticmethod
    def _resolve_actions(matches: list[Match]) -> tuple[ActionResolution, ...]:
        by_pair: dict[tuple[str, str, str], list[Match]] = defaultdict(list)
        for match in matches:
            by_pair[match.pair].append(match)

        resolutions: list[ActionResolution] = []
        for pair in sorted(by_pair):
            group = by_pair[pair]
            candidates = tuple(sorted({m.action for m in group}, key=action_sort_key, reverse=True))
            resolutions.append(
                ActionResolution(
                    subject=group[0].matched_against,
                    item_id=group[0].item_id,
                    candidates=candidates,
                    resolved=candidates[0],
                    rule_ids=tuple(sorted({m.rule_id for m in group})),
                )
            )
        return tuple(resolutions)

    def resolve_all(self, matches: Iterable[Match], item_names: dict[str, str] | None = None) -> list[Finding]:
        """Group matches by item and resolve each group, in item id order."""
        names = item_names or {}
        grouped: dict[str, list[Match]] = defaultdict(list)
        for match in matches:
            grouped[match.item_id].append(match)
        for item_id in names:
            grouped.setdefault(item_id, [])
        return [self.resolve(grouped[i], item_id=i, item_name=names.get(i, "")) for i in sorted(grouped)]


__all__ = ["ActionResolution", "Finding", "Resolver"]
