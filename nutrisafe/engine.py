"""SafetyEngine: the single entry point callers use.

``evaluate`` runs Normalizer -> Matcher -> Resolver -> VerdictBuilder over one
pinned knowledge base snapshot and always returns a ``SafetyVerdict``. No
exception crosses this boundary: a stale snapshot or any unexpected failure
produces a fail-closed "unable to verify" verdict instead.
"""

from __future__ import annotations

import datetime
from collections.abc import Callable, Sequence
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

from nutrisafe.exceptions import EngineInternalError, StaleKnowledgeBaseError
from nutrisafe.knowledge.base import KnowledgeBase, KnowledgeSnapshot
from nutrisafe.knowledge.loader import load_default_snapshot, load_snapshot
from nutrisafe.knowledge.store import KnowledgeBaseStore
from nutrisafe.logging import get_logger, log_context, log_exception, timed
from nutrisafe.matcher import Match, Matcher
from nutrisafe.normalizer import NormalizationFailure, NormalizedQuery, Normalizer
from nutrisafe.profile import SafetyQuery
from nutrisafe.resolver import Finding, Resolver
from nutrisafe.settings import Settings, get_settings
from nutrisafe.verdict import EngineIssue, IssueCode, SafetyVerdict, VerdictBuilder

logger = get_logger(__name__)


def _failure_issue(failure: NormalizationFailure) -> EngineIssue:
    if failure.blocking:
        message = f"Could not identify {failure.kind.value} '{failure.raw}'; confirm it before relying on this result"
    else:
        message = f"Ignored unrecognized {failure.kind.value} '{failure.raw}'"
    return EngineIssue(
        code=IssueCode.NORMALIZATION_FAILURE,
        message=message,
        subject=failure.raw,
        blocking=failure.blocking,
        details={"kind": failure.kind.value, "location": failure.location},
    )


class SafetyEngine:
    """Clinical safety rule engine over a versioned knowledge base store.

    Args:
        store: Store holding published knowledge bases.
        settings: Engine configuration; defaults to ``get_settings()``.
        clock: Time source for ``generated_at`` on verdicts.
    """

    def __init__(
        self,
        store: KnowledgeBaseStore,
        settings: Settings | None = None,
        clock: Callable[[], datetime.datetime] | None = None,
    ) -> None:
        self.store = store
        self.settings = settings or get_settings()
        engine_settings = self.settings.engine
        self.matcher = Matcher()
        self.resolver = Resolver(engine_settings.low_confidence_levels)
        self.builder = VerdictBuilder(
            clock=clock,
            review_threshold=engine_settings.review_threshold,
            fail_closed_message=engine_settings.fail_closed_message,
        )

    @classmethod
    def from_settings(
        cls,
        settings: Settings | None = None,
        snapshot_path: str | Path | None = None,
        clock: Callable[[], datetime.datetime] | None = None,
    ) -> SafetyEngine:
        """Build an engine and publish the configured (or packaged) snapshot."""
        settings = settings or get_settings()
        kb_settings = settings.knowledge_base
        store = KnowledgeBaseStore(
            retained_versions=kb_settings.retained_versions,
            max_age_days=kb_settings.max_age_days,
            clock=clock,
        )
        path = snapshot_path or kb_settings.path
        store.publish(load_snapshot(path) if path else load_default_snapshot())
        return cls(store, settings, clock=clock)

    @classmethod
    def from_snapshot(
        cls,
        snapshot: KnowledgeSnapshot,
        settings: Settings | None = None,
        clock: Callable[[], datetime.datetime] | None = None,
    ) -> SafetyEngine:
        settings = settings or get_settings()
        store = KnowledgeBaseStore(
            retained_versions=settings.knowledge_base.retained_versions,
            max_age_days=settings.knowledge_base.max_age_days,
            clock=clock,
        )
        store.publish(snapshot)
        return cls(store, settings, clock=clock)

    @property
    def kb_version(self) -> str | None:
        return self.store.current_version

    def normalizer(self, kb: KnowledgeBase) -> Normalizer:
        return Normalizer(kb.vocabulary)

    def evaluate(self, query: SafetyQuery, kb_version: str | None = None) -> SafetyVerdict:
        """Evaluate a query. Never raises."""
        with log_context(query_id=query.query_id):
            try:
                with self.store.acquire(kb_version) as kb:
                    with log_context(kb_version=kb.version):
                        return self._evaluate(query, kb)
            except StaleKnowledgeBaseError as e:
                logger.warning("Refusing to evaluate against stale knowledge base", reason=e.reason)
                issue = EngineIssue(
                    code=IssueCode.STALE_KNOWLEDGE_BASE,
                    message=e.message,
                    subject=e.version,
                    details={"reason": e.reason},
                )
                return self.builder.fail_closed(issue, e.version, query_id=query.query_id)
            except Exception as e:
                error = e if isinstance(e, EngineInternalError) else EngineInternalError("evaluate", str(e), cause=e)
                log_exception(logger, error, context={"stage": error.stage})
                issue = EngineIssue(
                    code=IssueCode.ENGINE_INTERNAL_ERROR,
                    message="Internal error while evaluating the query",
                    details={"stage": error.stage, "error_type": type(error.cause or error).__name__},
                )
                return self.builder.fail_closed(issue, kb_version or self.store.current_version, query.query_id)

    @timed("evaluate")
    def _evaluate(self, query: SafetyQuery, kb: KnowledgeBase) -> SafetyVerdict:
        normalized = self.normalizer(kb).normalize_query(query)
        issues = self._profile_issues(normalized, kb)
        issues.extend(_failure_issue(f) for f in normalized.failures)

        findings = self._findings(normalized, kb)
        verdict = self.builder.build(findings, kb.version, issues, query_id=query.query_id)
        logger.info(
            "Query evaluated",
            items=len(findings),
            flagged=len(verdict.flagged_findings),
            overall_risk=verdict.overall_risk.value,
            status=verdict.status.value,
        )
        return verdict

    def _findings(self, normalized: NormalizedQuery, kb: KnowledgeBase) -> list[Finding]:
        findings: list[Finding] = []
        for item in normalized.items:
            try:
                matches: list[Match] = self.matcher.match(normalized.profile, item, kb)
            except StaleKnowledgeBaseError:
                raise
            except Exception as e:
                raise EngineInternalError("match", f"item {item.item_id}: {e}", cause=e) from e
            try:
                findings.append(self.resolver.resolve(matches, item_id=item.item_id, item_name=item.name))
            except Exception as e:
                raise EngineInternalError("resolve", f"item {item.item_id}: {e}", cause=e) from e
        return findings

    @staticmethod
    def _profile_issues(normalized: NormalizedQuery, kb: KnowledgeBase) -> list[EngineIssue]:
        issues = [
            EngineIssue(
                code=IssueCode.INCOMPLETE_PROFILE,
                message=f"Profile section '{section}' was not provided; it was not checked",
                subject=section,
                blocking=False,
            )
            for section in normalized.profile.missing_sections
        ]
        for allergen_id in normalized.profile.allergies:
            if not kb.allergen_rules_for(allergen_id):
                issues.append(
                    EngineIssue(
                        code=IssueCode.UNCOVERED_ALLERGEN,
                        message=f"No approved allergen rule covers '{allergen_id}'",
                        subject=allergen_id,
                    )
                )
        return issues

    def evaluate_many(
        self,
        queries: Sequence[SafetyQuery],
        max_workers: int | None = None,
        kb_version: str | None = None,
    ) -> list[SafetyVerdict]:
        """Evaluate independent queries in parallel, preserving input order."""
        workers = max_workers or self.settings.engine.max_workers
        if workers <= 1 or len(queries) <= 1:
            return [self.evaluate(q, kb_version) for q in queries]
        with ThreadPoolExecutor(max_workers=workers) as executor:
            return list(executor.map(lambda q: self.evaluate(q, kb_version), queries))


__all__ = ["SafetyEngine"]
