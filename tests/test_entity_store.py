"""Tests for the SQLite entity cache."""

import sqlite3

import pytest

from conftest import make_entity
from plant_search.exceptions import StoreError
from plant_search.models.entity import MatchType, PlantDetails, PlantImage, Taxonomy, WikipediaRef
from plant_search.models.search import SearchFilters
from plant_search.store.entity_store import EntityStore, _like_escape
from plant_search.utils.access_token import decode_access_token


class TestUpsertEntity:
    """Test idempotent entity persistence."""

    def test_returns_stable_id(self, store):
        first = store.upsert_entity(make_entity())
        second = store.upsert_entity(make_entity())
        assert first == second
        assert store.count_entities() == 1

    def test_same_name_other_source_is_distinct(self, store):
        store.upsert_entity(make_entity(source="gbif"))
        store.upsert_entity(make_entity(source="inaturalist", provider_id="135264"))
        assert store.count_entities() == 2

    def test_existing_values_kept_nulls_filled(self, store, clock):
        entity_id = store.upsert_entity(make_entity(common_names=["Fiddle Leaf Fig"], thumbnail=None))
        clock.advance(hours=1)
        store.upsert_entity(
            make_entity(common_names=["Banjo Fig"], thumbnail="https://img.example/ficus.jpg")
        )

        stored = store.get_entity(entity_id)
        assert stored.common_names == ["Fiddle Leaf Fig"]
        assert stored.thumbnail == "https://img.example/ficus.jpg"

        with store.connect() as conn:
            row = conn.execute("SELECT created_at, updated_at FROM plant_entities WHERE id = ?", (entity_id,)).fetchone()
        assert row["created_at"] == "2025-06-15 12:00:00"
        assert row["updated_at"] == "2025-06-15 13:00:00"

    def test_details_round_trip(self, store):
        details = PlantDetails(
            taxonomy=Taxonomy(kingdom="Plantae", class_="Magnoliopsida", genus="Ficus"),
            characteristics={"indoor": True, "watering": "medium"},
            observations_count=1234,
            external_ids={"gbif_id": 2984084},
            images=[PlantImage(url="https://img.example/1.jpg", license="cc-by")],
            wikipedia=WikipediaRef(title="Ficus lyrata", url="https://en.wikipedia.org/wiki/Ficus_lyrata"),
        )
        entity_id = store.upsert_entity(make_entity(details=details))
        stored = store.get_entity(entity_id)

        assert stored.details.taxonomy.class_ == "Magnoliopsida"
        assert stored.details.characteristics == {"indoor": True, "watering": "medium"}
        assert stored.details.observations_count == 1234
        assert stored.details.external_ids == {"gbif_id": 2984084}
        assert stored.details.images[0].license == "cc-by"
        assert stored.details.wikipedia.title == "Ficus lyrata"

    def test_raw_payload_persisted(self, store):
        entity = make_entity().with_raw_payload({"key": 2984084, "rank": "SPECIES"})
        entity_id = store.upsert_entity(entity)
        assert store.get_entity(entity_id).raw_payload == {"key": 2984084, "rank": "SPECIES"}

    def test_explicit_payload_wins(self, store):
        entity = make_entity().with_raw_payload({"from": "entity"})
        entity_id = store.upsert_entity(entity, raw_payload={"from": "argument"})
        assert store.get_entity(entity_id).raw_payload == {"from": "argument"}


class TestLookups:
    """Test id and provider lookups."""

    def test_get_entity_issues_local_token(self, store):
        entity_id = store.upsert_entity(make_entity())
        stored = store.get_entity(entity_id)

        info = decode_access_token(stored.access_token)
        assert info.entity_id == entity_id
        assert info.provider_tag == "local"
        assert stored.provider_source == "gbif"
        assert stored.confidence == 1.0

    def test_get_missing_entity(self, store):
        assert store.get_entity(999) is None

    def test_find_by_provider(self, store):
        store.upsert_entity(make_entity())
        found = store.find_by_provider("gbif", "2984084")
        assert found is not None
        assert found.entity_name == "Ficus lyrata"
        assert store.find_by_provider("gbif", "1") is None

    def test_ping(self, store):
        assert store.ping() is True


class TestQueries:
    """Test query log and result links."""

    def test_repeat_query_increments(self, store):
        first = store.record_query("Ficus Lyrata")
        second = store.record_query("  ficus   lyrata!")
        assert first == second
        popular = store.popular_queries()
        assert popular[0]["count"] == 2
        assert popular[0]["normalized"] == "ficus lyrata"
        assert popular[0]["query"] == "Ficus Lyrata"

    def test_filters_make_distinct_queries(self, store):
        a = store.record_query("ficus")
        b = store.record_query("ficus", {"indoor": True})
        assert a != b

    def test_link_results_skips_unstored(self, store):
        store.upsert_entity(make_entity("Ficus lyrata"))
        query_id = store.record_query("ficus")
        written = store.link_results(
            query_id,
            [make_entity("Ficus lyrata"), make_entity("Ficus elastica", provider_id="5")],
            "gbif",
        )
        assert written == 1

        with store.connect() as conn:
            rows = conn.execute("SELECT * FROM search_results WHERE query_id = ?", (query_id,)).fetchall()
        assert len(rows) == 1
        assert rows[0]["provider_used"] == "gbif"
        assert rows[0]["result_position"] == 0
        assert rows[0]["matched_in_type"] == MatchType.ENTITY_NAME.value

    def test_popular_queries_ordered(self, store):
        for _ in range(3):
            store.record_query("monstera")
        store.record_query("ficus")
        popular = store.popular_queries(limit=1)
        assert [q["normalized"] for q in popular] == ["monstera"]

    def test_search_summary(self, store, stats):
        store.record_query("monstera")
        store.record_query("monstera")
        store.record_query("ficus")
        stats.record("local", True, 3, 2)
        stats.record("local", False, 3, 0)

        summary = store.search_summary(days=7)
        assert summary["total_searches"] == 3
        assert summary["unique_queries"] == 2
        assert summary["cached_hits"] == 1
        assert summary["popular_queries"][0]["normalized"] == "monstera"


class TestCleanup:
    """Test removal of stale single-use queries."""

    def test_removes_old_single_use_only(self, store, clock):
        store.upsert_entity(make_entity())
        old_once = store.record_query("ficus")
        store.link_results(old_once, [make_entity()], "gbif")
        store.record_query("monstera")
        store.record_query("monstera")

        clock.advance(days=100)
        store.record_query("aloe")

        removed = store.cleanup(days_to_keep=90)
        assert removed == {"removed_queries": 1, "removed_results": 1}

        remaining = {q["normalized"] for q in store.popular_queries(10)}
        assert remaining == {"monstera", "aloe"}
        assert store.count_entities() == 1


class TestSearchLocal:
    """Test two-phase cache lookup."""

    @pytest.fixture
    def seeded(self, store):
        store.upsert_entity(make_entity("Ficus lyrata", common_names=["Fiddle Leaf Fig"]))
        store.upsert_entity(make_entity("Ficus elastica", provider_id="5", common_names=["Rubber Plant"]))
        store.upsert_entity(make_entity("Ficus", provider_id="6", common_names=["Figs"]))
        store.upsert_entity(
            make_entity("Monstera deliciosa", provider_id="7", common_names=["Swiss Cheese Plant"])
        )
        return store

    def test_empty_query(self, seeded):
        assert seeded.search_local("") == []
        assert seeded.search_local("!!!") == []

    def test_exact_then_prefix(self, seeded):
        results = seeded.search_local("ficus", limit=10)
        names = [e.entity_name for e in results]
        assert names[0] == "Ficus"
        assert set(names[1:]) == {"Ficus lyrata", "Ficus elastica"}

    def test_respects_limit(self, seeded):
        assert len(seeded.search_local("ficus", limit=2)) == 2
        assert seeded.search_local("ficus", limit=0) == []

    def test_no_duplicates(self, seeded):
        results = seeded.search_local("plant", limit=10)
        ids = [decode_access_token(e.access_token).entity_id for e in results]
        assert len(ids) == len(set(ids))

    def test_common_name_match_context(self, seeded):
        results = seeded.search_local("swiss cheese")
        assert results[0].entity_name == "Monstera deliciosa"
        assert results[0].matched_in == "Swiss Cheese Plant"
        assert results[0].matched_in_type is MatchType.COMMON_NAME

    def test_full_text_tops_up(self, seeded):
        # "cheese monstera" is not a substring of anything; token search finds it
        results = seeded.search_local("cheese monstera")
        assert [e.entity_name for e in results] == ["Monstera deliciosa"]

    def test_like_wildcards_escaped(self):
        assert _like_escape("a_b%c\\") == "a\\_b\\%c\\\\"

    def test_filters(self, store):
        store.upsert_entity(
            make_entity(
                "Ficus lyrata",
                details=PlantDetails(characteristics={"indoor": True, "watering": "medium"}),
            )
        )
        store.upsert_entity(
            make_entity(
                "Ficus carica",
                provider_id="8",
                details=PlantDetails(characteristics={"indoor": False, "edible": True}),
            )
        )
        store.upsert_entity(make_entity("Ficus benjamina", provider_id="9", details=PlantDetails()))

        names = {e.entity_name for e in store.search_local("ficus", filters=SearchFilters(indoor=True))}
        # entities without characteristics pass
        assert names == {"Ficus lyrata", "Ficus benjamina"}

        names = {e.entity_name for e in store.search_local("ficus", filters=SearchFilters(edible=True, indoor=False))}
        assert names == {"Ficus carica", "Ficus benjamina"}

    def test_linked_results_answer_typo_query(self, store):
        # "fikus" matches no stored name; the upstream answer was linked to it
        store.upsert_entity(make_entity("Ficus lyrata", common_names=[]))
        query_id = store.record_query("fikus")
        store.link_results(query_id, [make_entity("Ficus lyrata", common_names=[], confidence=0.7)], "gbif")

        results = store.search_local("  Fikus!")
        assert [e.entity_name for e in results] == ["Ficus lyrata"]
        assert results[0].confidence == pytest.approx(0.7)
        assert results[0].matched_in_type is MatchType.ENTITY_NAME

    def test_linked_results_keep_upstream_order(self, store):
        store.upsert_entity(make_entity("Ficus lyrata", common_names=[]))
        store.upsert_entity(make_entity("Ficus elastica", provider_id="5", common_names=[]))
        query_id = store.record_query("fikus")
        store.link_results(
            query_id,
            [make_entity("Ficus elastica", provider_id="5", common_names=[]), make_entity("Ficus lyrata", common_names=[])],
            "gbif",
        )
        names = [e.entity_name for e in store.search_local("fikus")]
        assert names == ["Ficus elastica", "Ficus lyrata"]

    def test_linked_results_are_per_filter_set(self, store):
        store.upsert_entity(make_entity("Ficus lyrata", common_names=[]))
        query_id = store.record_query("fikus")
        store.link_results(query_id, [make_entity("Ficus lyrata", common_names=[])], "gbif")

        assert store.search_local("fikus", filters=SearchFilters(indoor=True)) == []

    def test_non_ascii_names_rank_exact_first(self, store):
        store.upsert_entity(make_entity("Échinacea purpurea", provider_id="11", common_names=[]))
        store.upsert_entity(make_entity("Rudbeckia hirta", provider_id="12", common_names=["Faux Échinacea"]))
        store.upsert_entity(make_entity("Échinacea", provider_id="13", common_names=[]))

        results = store.search_local("ÉCHINACEA")
        assert [e.entity_name for e in results] == ["Échinacea", "Échinacea purpurea", "Rudbeckia hirta"]
        assert results[2].matched_in == "Faux Échinacea"
        assert results[2].matched_in_type is MatchType.COMMON_NAME


class TestSchemaMigration:
    """Test caches written before the normalized name columns existed."""

    def test_missing_keys_backfilled_on_open(self, store, clock):
        store.upsert_entity(make_entity("Ficus lyrata", common_names=["Fiddle Leaf Fig"]))
        with store.connect() as conn:
            conn.execute("UPDATE plant_entities SET name_normalized = NULL, names_normalized = NULL")

        reopened = EntityStore(store.db_path, clock=clock)
        with reopened.connect() as conn:
            row = conn.execute("SELECT name_normalized, names_normalized FROM plant_entities").fetchone()
        assert row["name_normalized"] == "ficus lyrata"
        assert row["names_normalized"] == "ficus lyrata|fiddle leaf fig"

    def test_old_table_gains_columns(self, tmp_path, clock):
        path = tmp_path / "old.db"
        conn = sqlite3.connect(path)
        conn.execute(
            """
            CREATE TABLE plant_entities (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                entity_name TEXT NOT NULL,
                common_names TEXT,
                synonyms TEXT,
                provider_source TEXT NOT NULL,
                provider_id TEXT,
                provider_data TEXT,
                taxonomy_data TEXT,
                characteristics_data TEXT,
                images_data TEXT,
                external_ids_data TEXT,
                wikipedia_data TEXT,
                observations_count INTEGER,
                thumbnail_url TEXT,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
            """
        )
        conn.execute(
            "INSERT INTO plant_entities (entity_name, common_names, provider_source, provider_id, created_at, updated_at)"
            " VALUES ('Aloë vera', '[\"Medicinal Aloe\"]', 'gbif', '42', '2025-01-01 00:00:00', '2025-01-01 00:00:00')"
        )
        conn.commit()
        conn.close()

        migrated = EntityStore(path, clock=clock)
        results = migrated.search_local("aloë")
        assert [e.entity_name for e in results] == ["Aloë vera"]


class TestStoreErrors:
    """Test sqlite failures surface as StoreError."""

    def test_read_failure_raises(self, store):
        with store.connect() as conn:
            conn.execute("DROP TABLE plant_entities_fts")
            conn.execute("DROP TABLE search_results")
            conn.execute("DROP TABLE plant_entities")
        with pytest.raises(StoreError):
            store.search_local("ficus")

    def test_connect_wraps_sqlite_error(self, store):
        with pytest.raises(StoreError):
            with store.connect() as conn:
                conn.execute("SELECT * FROM no_such_table")

    def test_unopenable_path(self, tmp_path):
        target = tmp_path / "dir.db"
        target.mkdir()
        with pytest.raises((StoreError, sqlite3.Error)):
            EntityStore(target)
