"""Pytest configuration and fixtures for NutriSafe tests.

This module provides shared fixtures:
    - The packaged knowledge base snapshot (loaded once per session)
    - An engine with a fixed clock for reproducible verdicts
    - Factory fixtures for queries and small custom snapshots
    - Environment isolation for settings tests
"""

from __future__ import annotations

import datetime
import os
from collections.abc import Callable, Iterator
from typing import TYPE_CHECKING, Any

import pytest

if TYPE_CHECKING:
    from nutrisafe.engine import SafetyEngine
    from nutrisafe.knowledge import InMemoryKnowledgeBase, KnowledgeSnapshot
    from nutrisafe.normalizer import Normalizer
    from nutrisafe.profile import SafetyQuery
    from nutrisafe.settings import Settings


FIXED_NOW = datetime.datetime(2026, 10, 18, 12, 0, tzinfo=datetime.UTC)


# =============================================================================
# Pytest Configuration
# =============================================================================


def pytest_configure(config: pytest.Config) -> None:
    """Configure pytest with custom markers."""
    config.addinivalue_line("markers", "unit: Unit tests (fast, isolated)")
    config.addinivalue_line("markers", "integration: Integration tests over the packaged knowledge base")
    config.addinivalue_line("markers", "slow: Slow tests (>5s)")


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Automatically mark tests based on their location."""
    for item in items:
        if "test_engine" in str(item.fspath) or "test_harness" in str(item.fspath):
            item.add_marker(pytest.mark.integration)

        if "slow" in item.name.lower():
            item.add_marker(pytest.mark.slow)


# =============================================================================
# Session-Scoped Fixtures
# =============================================================================


@pytest.fixture(scope="session")
def fixed_now() -> datetime.datetime:
    return FIXED_NOW


@pytest.fixture(scope="session")
def default_snapshot() -> KnowledgeSnapshot:
    """The curated snapshot shipped with the package."""
    from nutrisafe.knowledge import load_default_snapshot

    return load_default_snapshot()


@pytest.fixture(scope="session")
def knowledge_base(default_snapshot: KnowledgeSnapshot) -> InMemoryKnowledgeBase:
    from nutrisafe.knowledge import InMemoryKnowledgeBase

    return InMemoryKnowledgeBase(default_snapshot)


# =============================================================================
# Function-Scoped Fixtures
# =============================================================================


@pytest.fixture
def settings() -> Settings:
    """Default settings, independent of any local config.yaml or environment."""
    from nutrisafe.settings import Settings

    return Settings()


@pytest.fixture
def clock(fixed_now: datetime.datetime) -> Callable[[], datetime.datetime]:
    return lambda: fixed_now


@pytest.fixture
def engine(default_snapshot: KnowledgeSnapshot, settings: Settings, clock) -> SafetyEngine:
    """Engine over the packaged snapshot with a fixed clock."""
    from nutrisafe.engine import SafetyEngine

    return SafetyEngine.from_snapshot(default_snapshot, settings=settings, clock=clock)


@pytest.fixture
def normalizer(knowledge_base: InMemoryKnowledgeBase) -> Normalizer:
    from nutrisafe.normalizer import Normalizer

    return Normalizer(knowledge_base.vocabulary)


# =============================================================================
# Factory Fixtures
# =============================================================================


@pytest.fixture
def query_factory() -> Callable[..., SafetyQuery]:
    """Factory for queries; profile sections default to "none" rather than missing."""
    from nutrisafe.profile import SafetyQuery

    def _create_query(
        items: list[dict[str, Any] | str],
        medications: list[Any] | None = None,
        conditions: list[str] | None = None,
        allergies: list[Any] | None = None,
        query_id: str = "q-test",
        **profile: Any,
    ) -> SafetyQuery:
        profile_data = {
            "medications": [] if medications is None else medications,
            "conditions": [] if conditions is None else conditions,
            "allergies": [] if allergies is None else allergies,
            **profile,
        }
        item_data = [{"name": i} if isinstance(i, str) else i for i in items]
        return SafetyQuery.model_validate({"query_id": query_id, "profile": profile_data, "items": item_data})

    return _create_query


@pytest.fixture
def snapshot_data() -> Callable[..., dict[str, Any]]:
    """Factory for small snapshot dictionaries with a tiny vocabulary."""

    def _create_snapshot(
        version: str = "test.1",
        records: list[dict[str, Any]] | None = None,
        published_at: str = "2026-10-01T00:00:00Z",
        expires_at: str | None = None,
    ) -> dict[str, Any]:
        return {
            "version": version,
            "published_at": published_at,
            "expires_at": expires_at,
            "vocabulary": {
                "drugs": {"warfarin": {"synonyms": ["Coumadin"], "classes": ["anticoagulant"]}},
                "foods": {"kale": {"tags": ["vitamin_k"]}, "apple": {}},
                "nutrients": {"vitamin_k": {}},
                "allergens": {"egg": {}},
                "conditions": {"pregnancy": {}},
            },
            "records": records
            if records is not None
            else [
                {
                    "kind": "drug_food_interaction",
                    "record_id": "dfi-test",
                    "drug_id": "warfarin",
                    "interacting_ids": ["vitamin_k"],
                    "interaction_type": "monitor",
                    "severity": "moderate",
                    "evidence_level": "A",
                    "source_citation": "Test citation",
                }
            ],
        }

    return _create_snapshot


# =============================================================================
# Environment Fixtures
# =============================================================================


@pytest.fixture
def clean_environment() -> Iterator[None]:
    """Remove NUTRISAFE_ variables and reset the settings cache."""
    from nutrisafe.settings import get_settings

    original_env = os.environ.copy()
    for key in list(os.environ):
        if key.startswith("NUTRISAFE_"):
            del os.environ[key]
    get_settings.cache_clear()

    yield

    os.environ.clear()
    os.environ.update(original_env)
    get_settings.cache_clear()


# =============================================================================
# Logging Fixtures
# =============================================================================


@pytest.fixture(autouse=True)
def configure_test_logging() -> None:
    """Configure logging for tests (disabled by default)."""
    import logging

    logging.disable(logging.CRITICAL)


@pytest.fixture
def enable_logging() -> Iterator[None]:
    """Enable logging for specific tests."""
    import logging

    logging.disable(logging.NOTSET)
    yield
    logging.disable(logging.CRITICAL)
