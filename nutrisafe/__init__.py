"""NutriSafe: a clinical safety rule engine for food and nutrition.

Given a clinical profile (medications, conditions, allergies) and proposed
foods or recipes, the engine reports drug-food interactions, allergen and
cross-contamination risks and guideline contraindications, each traceable to
an evidence-graded, cited knowledge record.

Example:
    ```python
    from nutrisafe import SafetyEngine, SafetyQuery

    engine = SafetyEngine.from_settings()
    verdict = engine.evaluate(
        SafetyQuery.model_validate(
            {
                "profile": {"medications": ["warfarin"], "conditions": [], "allergies": []},
                "items": [{"item_id": "salad", "ingredients": ["kale", "olive oil"]}],
            }
        )
    )
    print(verdict.overall_risk, verdict.action_required)
    ```
"""

__version__ = "1.0.0"
__author__ = "NutriSafe Team"

from .clinical_types import EvidenceLevel, InteractionType, RecordKind, ReviewStatus, Severity
from .engine import SafetyEngine
from .exceptions import NutriSafeError, StaleKnowledgeBaseError
from .knowledge import InMemoryKnowledgeBase, KnowledgeBase, KnowledgeBaseStore, KnowledgeSnapshot
from .matcher import Match, Matcher
from .normalizer import CanonicalId, NormalizationFailure, Normalizer, NotFound
from .profile import Allergy, CandidateItem, ClinicalProfile, Medication, SafetyQuery
from .resolver import Finding, Resolver
from .settings import Settings, get_settings
from .verdict import EngineIssue, IssueCode, SafetyVerdict, VerdictAction, VerdictBuilder, VerdictStatus

__all__ = [
    "__version__",
    # Engine
    "SafetyEngine",
    "Settings",
    "get_settings",
    # Inputs
    "SafetyQuery",
    "ClinicalProfile",
    "Medication",
    "Allergy",
    "CandidateItem",
    # Pipeline
    "Normalizer",
    "CanonicalId",
    "NotFound",
    "NormalizationFailure",
    "Matcher",
    "Match",
    "Resolver",
    "Finding",
    "VerdictBuilder",
    "SafetyVerdict",
    "VerdictStatus",
    "VerdictAction",
    "EngineIssue",
    "IssueCode",
    # Knowledge base
    "KnowledgeBase",
    "InMemoryKnowledgeBase",
    "KnowledgeSnapshot",
    "KnowledgeBaseStore",
    # Types
    "Severity",
    "InteractionType",
    "EvidenceLevel",
    "RecordKind",
    "ReviewStatus",
    # Errors
    "NutriSafeError",
    "StaleKnowledgeBaseError",
]
