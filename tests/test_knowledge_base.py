"""Tests for knowledge base records, loading, indexing and the versioned store."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from nutrisafe.clinical_types import NameKind
from nutrisafe.exceptions import KnowledgeBaseLoadError, KnowledgeBaseValidationError, StaleKnowledgeBaseError
from nutrisafe.knowledge import InMemoryKnowledgeBase, KnowledgeBaseStore, load_snapshot, parse_snapshot
from nutrisafe.knowledge.records import PopulationApplicability


def _interaction(record_id: str = "dfi-x", **overrides) -> dict:
    record = {
        "kind": "drug_food_interaction",
        "record_id": record_id,
        "drug_id": "warfarin",
        "interacting_ids": ["vitamin_k"],
        "interaction_type": "monitor",
        "severity": "moderate",
        "evidence_level": "B",
        "source_citation": "Test citation",
    }
    record.update(overrides)
    return record


def _recommendation(record_id: str = "rec-x", **overrides) -> dict:
    record = {
        "kind": "clinical_recommendation",
        "record_id": record_id,
        "condition_id": "pregnancy",
        "recommendation_type": "vitamin_k_limit",
        "limited_tags": ["vitamin_k"],
        "evidence_level": "C",
        "source_citation": "Test guideline",
    }
    record.update(overrides)
    return record


class TestDefaultKnowledgeBase:
    """Tests for lookups over the packaged snapshot."""

    def test_version(self, knowledge_base) -> None:
        """Test the packaged snapshot version."""
        assert knowledge_base.version == "2026.10.1"

    def test_latest_version_served(self, knowledge_base) -> None:
        """Test only the highest version of a record is served."""
        record = knowledge_base.get_record("dfi-warfarin-vitamin-k")

        assert record.version == 2
        assert record.interaction_type.value == "monitor"

    def test_unapproved_records_not_served(self, knowledge_base) -> None:
        """Test pending records stay in the snapshot but are not indexed."""
        ids = {r.record_id for r in knowledge_base.interactions_for_drug("warfarin")}

        assert "dfi-warfarin-green-tea" not in ids
        assert {"dfi-warfarin-vitamin-k", "dfi-warfarin-cranberry", "dfi-warfarin-turmeric"} <= ids

    def test_class_level_lookup(self, knowledge_base) -> None:
        """Test class-level rules apply to every drug in the class."""
        for drug in ("phenelzine", "tranylcypromine", "selegiline"):
            ids = {r.record_id for r in knowledge_base.interactions_for_drug(drug)}
            assert "dfi-maoi-tyramine" in ids

    def test_drug_and_class_rules_both_returned(self, knowledge_base) -> None:
        """Test overlapping drug-level and class-level rules are both returned."""
        ids = {r.record_id for r in knowledge_base.interactions_for_drug("simvastatin")}
        assert ids == {"dfi-simvastatin-grapefruit", "dfi-statin-grapefruit"}

    def test_lookup_by_food(self, knowledge_base) -> None:
        """Test the food-side index."""
        ids = {r.record_id for r in knowledge_base.interactions_for_food("grapefruit")}
        assert ids == {"dfi-amlodipine-grapefruit", "dfi-statin-grapefruit", "dfi-simvastatin-grapefruit"}

    def test_lookup_by_condition_and_allergen(self, knowledge_base) -> None:
        """Test condition and allergen indexes."""
        assert [r.record_id for r in knowledge_base.recommendations_for_condition("celiac_disease")] == [
            "rec-celiac-gluten"
        ]
        assert [r.record_id for r in knowledge_base.allergen_rules_for("peanut")] == ["alg-peanut"]
        assert knowledge_base.allergen_rules_for("latex") == []

    def test_stats(self, knowledge_base) -> None:
        """Test summary statistics."""
        stats = knowledge_base.stats()

        assert stats["records_total"] == 31
        assert stats["records_served"] == 29
        assert stats["by_kind"] == {"drug_food_interaction": 14, "allergen": 9, "clinical_recommendation": 6}
        assert stats["vocabulary"]["allergen"] == 9


class TestSnapshotValidation:
    """Tests for snapshot parsing and publication checks."""

    def test_parse_valid(self, snapshot_data) -> None:
        """Test a valid snapshot parses and indexes."""
        kb = InMemoryKnowledgeBase(parse_snapshot(snapshot_data()))

        assert kb.version == "test.1"
        assert len(kb.interactions_for_drug("warfarin")) == 1

    def test_blank_citation_rejected(self, snapshot_data) -> None:
        """Test every record needs a citation."""
        data = snapshot_data(records=[_interaction(source_citation="   ")])

        with pytest.raises(KnowledgeBaseValidationError) as exc_info:
            parse_snapshot(data)

        assert any("source_citation" in e for e in exc_info.value.errors)

    def test_interaction_needs_drug_or_class(self, snapshot_data) -> None:
        """Test an interaction without drug_id or drug_class is rejected."""
        data = snapshot_data(records=[_interaction(drug_id=None)])

        with pytest.raises(KnowledgeBaseValidationError):
            parse_snapshot(data)

    def test_root_must_be_mapping(self) -> None:
        """Test non-mapping input is a load error."""
        with pytest.raises(KnowledgeBaseLoadError):
            parse_snapshot(["not", "a", "mapping"])  # type: ignore[arg-type]

    @pytest.mark.parametrize(
        ("record", "message"),
        [
            (_interaction(drug_id="unknown_drug"), "unknown drug_id"),
            (_interaction(interacting_ids=["durian"]), "unknown interacting ids"),
            (_interaction(drug_id=None, drug_class="beta_blocker"), "no drug belongs to class"),
        ],
    )
    def test_unknown_references_block_publication(self, snapshot_data, record: dict, message: str) -> None:
        """Test records referencing ids outside the vocabulary are rejected."""
        snapshot = parse_snapshot(snapshot_data(records=[record]))

        with pytest.raises(KnowledgeBaseValidationError) as exc_info:
            InMemoryKnowledgeBase(snapshot)

        assert any(message in e for e in exc_info.value.errors)

    @pytest.mark.parametrize(
        ("population", "contraindications", "message"),
        [
            ({"includes": ["gestational_diabetes"]}, [], "unknown condition ids in population.includes"),
            ({"excludes": ["type_1_diabetes"]}, [], "unknown condition ids in population.excludes"),
            ({}, ["eating_disorder"], "unknown condition ids in contraindications"),
        ],
    )
    def test_unknown_population_conditions(
        self, snapshot_data, population: dict, contraindications: list, message: str
    ) -> None:
        """Test population and contraindication ids must be vocabulary conditions."""
        snapshot = parse_snapshot(
            snapshot_data(records=[_recommendation(population=population, contraindications=contraindications)])
        )

        with pytest.raises(KnowledgeBaseValidationError) as exc_info:
            InMemoryKnowledgeBase(snapshot)

        assert any(message in e for e in exc_info.value.errors)

    def test_duplicate_version_rejected(self, snapshot_data) -> None:
        """Test the same record version may not appear twice."""
        snapshot = parse_snapshot(snapshot_data(records=[_interaction(), _interaction()]))

        with pytest.raises(KnowledgeBaseValidationError) as exc_info:
            InMemoryKnowledgeBase(snapshot)

        assert any("duplicate version" in e for e in exc_info.value.errors)

    def test_record_brand_names_join_vocabulary(self, snapshot_data) -> None:
        """Test generic and brand names on records become drug synonyms."""
        data = snapshot_data(records=[_interaction(generic_name="warfarin sodium", brand_names=["Jantoven"])])

        kb = InMemoryKnowledgeBase(parse_snapshot(data))

        assert kb.vocabulary.lookup("Jantoven", NameKind.DRUG) == "warfarin"
        assert kb.vocabulary.lookup("warfarin sodium", NameKind.DRUG) == "warfarin"


class TestRecordVersions:
    """Tests for which version of a record is served."""

    def test_pending_revision_keeps_approved_version(self, snapshot_data) -> None:
        """Test a newer unapproved revision does not take the approved version out of service."""
        records = [_interaction(version=1), _interaction(version=2, review_status="pending", severity="mild")]

        kb = InMemoryKnowledgeBase(parse_snapshot(snapshot_data(records=records)))

        (served,) = kb.interactions_for_drug("warfarin")
        assert served.version == 1
        assert served.severity.value == "moderate"
        assert kb.get_record("dfi-x").version == 1

    def test_inactive_approved_version_retires_record(self, snapshot_data) -> None:
        """Test an approved inactive version retires every older version."""
        records = [_interaction(version=1), _interaction(version=2, active=False)]

        kb = InMemoryKnowledgeBase(parse_snapshot(snapshot_data(records=records)))

        assert kb.interactions_for_drug("warfarin") == []
        assert kb.stats()["records_served"] == 0

    def test_pending_only_record_not_served(self, snapshot_data) -> None:
        """Test a record with no approved version is visible but not served."""
        kb = InMemoryKnowledgeBase(parse_snapshot(snapshot_data(records=[_interaction(review_status="in_review")])))

        assert kb.interactions_for_drug("warfarin") == []
        assert kb.get_record("dfi-x").review_status.value == "in_review"

    def test_recommendation_indexed_under_included_conditions(self, snapshot_data) -> None:
        """Test a recommendation is found by its own condition and by listed conditions."""
        data = snapshot_data(records=[_recommendation(population={"includes": ["lactation"]})])
        data["vocabulary"]["conditions"]["lactation"] = {}

        kb = InMemoryKnowledgeBase(parse_snapshot(data))

        assert [r.record_id for r in kb.recommendations_for_condition("pregnancy")] == ["rec-x"]
        assert [r.record_id for r in kb.recommendations_for_condition("lactation")] == ["rec-x"]

    def test_lookup_after_close_raises(self, snapshot_data) -> None:
        """Test a released knowledge base refuses lookups instead of answering empty."""
        kb = InMemoryKnowledgeBase(parse_snapshot(snapshot_data()))
        kb.close()

        with pytest.raises(StaleKnowledgeBaseError, match="released"):
            kb.interactions_for_drug("warfarin")
        with pytest.raises(StaleKnowledgeBaseError):
            kb.interactions_for_food("vitamin_k")
        with pytest.raises(StaleKnowledgeBaseError):
            kb.allergen_rules_for("egg")
        with pytest.raises(StaleKnowledgeBaseError):
            kb.recommendations_for_condition("pregnancy")


class TestPopulationApplicability:
    """Tests for recommendation population checks."""

    def test_includes_requires_listed_or_primary_condition(self) -> None:
        """Test a non-empty includes list restricts who the guideline applies to."""
        population = PopulationApplicability(includes=["prediabetes"])

        assert population.applies_to(40, frozenset({"prediabetes"})) is True
        assert population.applies_to(40, frozenset({"diabetes_type_2"}), "diabetes_type_2") is True
        assert population.applies_to(40, frozenset({"hypertension_stage_1"}), "diabetes_type_2") is False

    def test_no_includes_applies_to_everyone(self) -> None:
        """Test an empty includes list places no condition restriction."""
        assert PopulationApplicability().applies_to(None, frozenset()) is True

    def test_excludes_and_age(self) -> None:
        """Test exclusions and the age range are checked first."""
        population = PopulationApplicability(age_min=18, includes=["prediabetes"], excludes=["pregnancy"])

        assert population.applies_to(40, frozenset({"prediabetes", "pregnancy"})) is False
        assert population.applies_to(12, frozenset({"prediabetes"})) is False
        assert population.applies_to(None, frozenset({"prediabetes"})) is True


class TestLoader:
    """Tests for loading snapshot files."""

    def test_missing_file(self, tmp_path: Path) -> None:
        """Test a missing file raises a load error."""
        with pytest.raises(KnowledgeBaseLoadError):
            load_snapshot(tmp_path / "absent.yaml")

    def test_json_file(self, tmp_path: Path, snapshot_data) -> None:
        """Test JSON snapshots are supported."""
        path = tmp_path / "kb.json"
        path.write_text(json.dumps(snapshot_data(version="json.1")), encoding="utf-8")

        assert load_snapshot(path).version == "json.1"

    def test_malformed_yaml(self, tmp_path: Path) -> None:
        """Test malformed YAML is wrapped in a load error."""
        path = tmp_path / "kb.yaml"
        path.write_text("version: [unclosed\n", encoding="utf-8")

        with pytest.raises(KnowledgeBaseLoadError):
            load_snapshot(path)


class TestKnowledgeBaseStore:
    """Tests for publication, pinning and retirement."""

    def test_nothing_published(self) -> None:
        """Test acquiring from an empty store is refused."""
        store = KnowledgeBaseStore()

        with pytest.raises(StaleKnowledgeBaseError):
            with store.acquire():
                pass

    def test_publish_sets_current(self, snapshot_data, clock) -> None:
        """Test publish swaps the current pointer."""
        store = KnowledgeBaseStore(clock=clock)
        store.publish(parse_snapshot(snapshot_data(version="v1")))
        store.publish(parse_snapshot(snapshot_data(version="v2")))

        assert store.current_version == "v2"
        assert store.versions() == ["v1", "v2"]

    def test_invalid_publish_keeps_current(self, snapshot_data, clock) -> None:
        """Test a snapshot that fails validation never becomes current."""
        store = KnowledgeBaseStore(clock=clock)
        store.publish(parse_snapshot(snapshot_data(version="v1")))
        bad = parse_snapshot(snapshot_data(version="v2", records=[_interaction(drug_id="unknown_drug")]))

        with pytest.raises(KnowledgeBaseValidationError):
            store.publish(bad)

        assert store.current_version == "v1"

    def test_republish_with_different_content_refused(self, snapshot_data, clock) -> None:
        """Test a published version cannot be replaced by other content."""
        store = KnowledgeBaseStore(clock=clock)
        store.publish(parse_snapshot(snapshot_data(version="v1")))
        altered = parse_snapshot(snapshot_data(version="v1", records=[_interaction(severity="mild")]))

        with pytest.raises(KnowledgeBaseValidationError) as exc_info:
            store.publish(altered)

        assert "different content" in exc_info.value.errors[0]
        with store.acquire("v1") as kb:
            (served,) = kb.interactions_for_drug("warfarin")
            assert served.severity.value == "moderate"

    def test_republish_identical_content_is_idempotent(self, snapshot_data, clock) -> None:
        """Test publishing the same version and content again makes it current without replacing it."""
        store = KnowledgeBaseStore(clock=clock)
        first = store.publish(parse_snapshot(snapshot_data(version="v1")))
        store.publish(parse_snapshot(snapshot_data(version="v2")))

        again = store.publish(parse_snapshot(snapshot_data(version="v1")))

        assert again is first
        assert first.closed is False
        assert store.current_version == "v1"
        assert store.versions() == ["v2", "v1"]

    def test_released_version_cannot_be_republished(self, snapshot_data, clock) -> None:
        """Test a released version stays released."""
        store = KnowledgeBaseStore(retained_versions=0, clock=clock)
        store.publish(parse_snapshot(snapshot_data(version="v1")))
        store.publish(parse_snapshot(snapshot_data(version="v2")))

        with pytest.raises(KnowledgeBaseValidationError):
            store.publish(parse_snapshot(snapshot_data(version="v1")))

        assert store.current_version == "v2"

    def test_in_flight_query_keeps_its_snapshot(self, snapshot_data, clock) -> None:
        """Test a publish during a query does not change what the query sees."""
        store = KnowledgeBaseStore(clock=clock)
        store.publish(parse_snapshot(snapshot_data(version="v1")))

        with store.acquire() as pinned:
            store.publish(parse_snapshot(snapshot_data(version="v2")))
            assert pinned.version == "v1"
            assert store.in_flight("v1") == 1

        assert store.in_flight("v1") == 0
        assert store.current_version == "v2"

    def test_retired_version_released_after_last_reader(self, snapshot_data, clock) -> None:
        """Test a retired snapshot is closed only when no query holds it."""
        store = KnowledgeBaseStore(retained_versions=0, clock=clock)
        store.publish(parse_snapshot(snapshot_data(version="v1")))

        with store.acquire() as pinned:
            store.publish(parse_snapshot(snapshot_data(version="v2")))
            assert pinned.closed is False
            assert pinned.interactions_for_drug("warfarin")

        assert pinned.closed is True
        with pytest.raises(StaleKnowledgeBaseError):
            pinned.interactions_for_drug("warfarin")
        with pytest.raises(StaleKnowledgeBaseError) as exc_info:
            with store.acquire("v1"):
                pass
        assert exc_info.value.reason == "version was released"

    def test_retention_window(self, snapshot_data, clock) -> None:
        """Test older versions beyond the window are retired."""
        store = KnowledgeBaseStore(retained_versions=1, clock=clock)
        for version in ("v1", "v2", "v3"):
            store.publish(parse_snapshot(snapshot_data(version=version)))

        assert store.versions() == ["v2", "v3"]
        with store.acquire("v2") as kb:
            assert kb.version == "v2"

    def test_unknown_version(self, snapshot_data, clock) -> None:
        """Test an unknown version is refused."""
        store = KnowledgeBaseStore(clock=clock)
        store.publish(parse_snapshot(snapshot_data()))

        with pytest.raises(StaleKnowledgeBaseError) as exc_info:
            with store.acquire("never-published"):
                pass
        assert exc_info.value.reason == "unknown version"

    def test_deprecate(self, snapshot_data, clock) -> None:
        """Test a deprecated version is refused."""
        store = KnowledgeBaseStore(clock=clock)
        store.publish(parse_snapshot(snapshot_data(version="v1")))
        store.deprecate("v1")

        with pytest.raises(StaleKnowledgeBaseError, match="deprecated"):
            with store.acquire():
                pass

        with pytest.raises(StaleKnowledgeBaseError):
            store.deprecate("v9")

    def test_expired_snapshot(self, snapshot_data, clock) -> None:
        """Test a snapshot past expires_at is refused."""
        store = KnowledgeBaseStore(clock=clock)
        store.publish(parse_snapshot(snapshot_data(expires_at="2026-10-10T00:00:00Z")))

        with pytest.raises(StaleKnowledgeBaseError, match="expired"):
            with store.acquire():
                pass

    def test_max_age(self, snapshot_data, clock) -> None:
        """Test snapshots older than max_age_days are refused."""
        store = KnowledgeBaseStore(max_age_days=7, clock=clock)
        store.publish(parse_snapshot(snapshot_data(published_at="2026-10-01T00:00:00Z")))

        with pytest.raises(StaleKnowledgeBaseError, match="older than"):
            with store.acquire():
                pass
