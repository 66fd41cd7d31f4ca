"""Versioned clinical knowledge base: records, vocabulary, snapshots and store."""

from .base import InMemoryKnowledgeBase, KnowledgeBase, KnowledgeSnapshot
from .loader import load_default_snapshot, load_snapshot, parse_snapshot
from .records import (
    AllergenRule,
    ClinicalRecommendation,
    DrugFoodInteraction,
    KnowledgeRecord,
    NumericTarget,
    PopulationApplicability,
)
from .store import KnowledgeBaseStore
from .vocabulary import Vocabulary, VocabularyEntry

__all__ = [
    "AllergenRule",
    "ClinicalRecommendation",
    "DrugFoodInteraction",
    "InMemoryKnowledgeBase",
    "KnowledgeBase",
    "KnowledgeBaseStore",
    "KnowledgeRecord",
    "KnowledgeSnapshot",
    "NumericTarget",
    "PopulationApplicability",
    "Vocabulary",
    "VocabularyEntry",
    "load_default_snapshot",
    "load_snapshot",
    "parse_snapshot",
]
