"""SQLite entity cache with a full-text index over plant names.

Everything that must outlive a request lives here: cached entities, the
query log with per-query counters, query-to-result links used for ranking
analytics, and per-provider daily stats (written by ``StatsRecorder``).

Each operation opens its own connection, so one ``EntityStore`` handle can be
injected into many concurrent requests. SQLite's atomic upserts serialize
concurrent writers.
"""
from __future__ import annotations

import datetime as dt
import json
import re
import sqlite3
from collections.abc import Callable, Iterator, Sequence
from contextlib import contextmanager
from pathlib import Path
from typing import Any

import structlog

from plant_search.exceptions import StoreError
from plant_search.models.entity import MatchType, PlantDetails, PlantEntity, PlantImage, Taxonomy, WikipediaRef
from plant_search.models.search import SearchFilters
from plant_search.utils.access_token import encode_access_token
from plant_search.utils.matching import locate_match
from plant_search.utils.normalize import hash_query, normalize_query

logger = structlog.get_logger(__name__)

LOCAL_TAG = "local"
TIMESTAMP_FMT = "%Y-%m-%d %H:%M:%S"

_SCHEMA = """
CREATE TABLE IF NOT EXISTS plant_entities (
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
    name_normalized TEXT,
    names_normalized TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
CREATE UNIQUE INDEX IF NOT EXISTS idx_entities_name_source ON plant_entities(entity_name, provider_source);
CREATE INDEX IF NOT EXISTS idx_entities_provider_id ON plant_entities(provider_source, provider_id);

CREATE TABLE IF NOT EXISTS search_queries (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    query_original TEXT NOT NULL,
    query_normalized TEXT NOT NULL,
    query_hash TEXT NOT NULL UNIQUE,
    search_count INTEGER NOT NULL DEFAULT 1,
    last_searched_at TEXT NOT NULL,
    created_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_queries_normalized ON search_queries(query_normalized);
CREATE INDEX IF NOT EXISTS idx_queries_last_searched ON search_queries(last_searched_at);

CREATE TABLE IF NOT EXISTS search_results (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    query_id INTEGER NOT NULL REFERENCES search_queries(id),
    entity_id INTEGER NOT NULL REFERENCES plant_entities(id),
    matched_in TEXT NOT NULL,
    matched_in_type TEXT NOT NULL,
    match_position INTEGER NOT NULL,
    match_length INTEGER NOT NULL,
    confidence_score REAL,
    provider_used TEXT NOT NULL,
    result_position INTEGER NOT NULL,
    created_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_results_query ON search_results(query_id);
CREATE INDEX IF NOT EXISTS idx_results_entity ON search_results(entity_id);

CREATE TABLE IF NOT EXISTS provider_stats (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    provider_name TEXT NOT NULL,
    search_date TEXT NOT NULL,
    total_requests INTEGER NOT NULL DEFAULT 0,
    successful_requests INTEGER NOT NULL DEFAULT 0,
    failed_requests INTEGER NOT NULL DEFAULT 0,
    avg_response_time_ms REAL NOT NULL DEFAULT 0,
    avg_results_returned REAL NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    UNIQUE(provider_name, search_date)
);

-- rowid of the index row is the entity id
CREATE VIRTUAL TABLE IF NOT EXISTS plant_entities_fts USING fts5(
    entity_name,
    common_names,
    synonyms
);

CREATE TRIGGER IF NOT EXISTS plant_entities_fts_insert AFTER INSERT ON plant_entities BEGIN
    INSERT INTO plant_entities_fts(rowid, entity_name, common_names, synonyms)
    VALUES (new.id, new.entity_name, ifnull(new.common_names, ''), ifnull(new.synonyms, ''));
END;

CREATE TRIGGER IF NOT EXISTS plant_entities_fts_update AFTER UPDATE ON plant_entities BEGIN
    UPDATE plant_entities_fts SET
        entity_name = new.entity_name,
        common_names = ifnull(new.common_names, ''),
        synonyms = ifnull(new.synonyms, '')
    WHERE rowid = new.id;
END;

CREATE TRIGGER IF NOT EXISTS plant_entities_fts_delete AFTER DELETE ON plant_entities BEGIN
    DELETE FROM plant_entities_fts WHERE rowid = old.id;
END;
"""

_FTS_TOKEN = re.compile(r"\w+")

# Joins normalized names; normalize_query never emits it
NAME_SEPARATOR = "|"

# Columns added after the first release, backfilled on open
_ADDED_COLUMNS = {
    "name_normalized": "TEXT",
    "names_normalized": "TEXT",
}


def _utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


def _dumps(value: Any) -> str | None:
    if value is None or value == [] or value == {}:
        return None
    return json.dumps(value, ensure_ascii=False)


def _loads(value: str | None) -> Any:
    return json.loads(value) if value else None


def _like_escape(text: str) -> str:
    return text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _search_keys(entity_name: str, common_names: str | None, synonyms: str | None) -> tuple[str, str]:
    """Normalized entity name, and every normalized name joined by ``NAME_SEPARATOR``.

    SQLite's LOWER() only folds ASCII, so name matching runs against these
    Python-normalized columns instead of the raw names.
    """
    names = [entity_name, *(_loads(common_names) or []), *(_loads(synonyms) or [])]
    normalized = [n for n in (normalize_query(name) for name in names) if n]
    return normalize_query(entity_name), NAME_SEPARATOR.join(normalized)


class EntityStore:
    """Persistent cache of plant entities, queries and provider stats.

    Args:
        db_path: SQLite file; parent directories are created.
        clock: UTC time source, injectable for tests.
    """

    def __init__(self, db_path: str | Path, clock: Callable[[], dt.datetime] | None = None) -> None:
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._clock = clock or _utcnow
        self._init_schema()

    @contextmanager
    def connect(self) -> Iterator[sqlite3.Connection]:
        """One connection per operation; commits on success, wraps sqlite errors."""
        try:
            conn = sqlite3.connect(self.db_path)
        except sqlite3.Error as e:
            raise StoreError(f"Cannot open cache at {self.db_path}: {e}") from e
        conn.row_factory = sqlite3.Row
        try:
            conn.execute("PRAGMA foreign_keys=ON;")
            conn.execute("PRAGMA journal_mode=WAL;")
            conn.execute("PRAGMA busy_timeout=5000;")
            yield conn
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            raise StoreError(str(e)) from e
        finally:
            conn.close()

    def _init_schema(self) -> None:
        with self.connect() as conn:
            conn.executescript(_SCHEMA)
            self._migrate(conn)

    def _migrate(self, conn: sqlite3.Connection) -> None:
        """Add columns missing from caches created by older releases."""
        existing = {row["name"] for row in conn.execute("PRAGMA table_info(plant_entities)")}
        for column, decl in _ADDED_COLUMNS.items():
            if column not in existing:
                conn.execute(f"ALTER TABLE plant_entities ADD COLUMN {column} {decl}")
                logger.info("store.column_added", column=column)

        stale = conn.execute(
            "SELECT id, entity_name, common_names, synonyms FROM plant_entities WHERE names_normalized IS NULL"
        ).fetchall()
        for row in stale:
            self._write_search_keys(conn, row)
        if stale:
            logger.info("store.search_keys_backfilled", rows=len(stale))

    @staticmethod
    def _write_search_keys(conn: sqlite3.Connection, row: sqlite3.Row) -> None:
        name_key, names_key = _search_keys(row["entity_name"], row["common_names"], row["synonyms"])
        conn.execute(
            "UPDATE plant_entities SET name_normalized = ?, names_normalized = ? WHERE id = ?",
            (name_key, names_key, row["id"]),
        )

    def now(self) -> str:
        return self._clock().strftime(TIMESTAMP_FMT)

    def today(self) -> dt.date:
        return self._clock().date()

    def ping(self) -> bool:
        """Cheap liveness probe."""
        try:
            with self.connect() as conn:
                conn.execute("SELECT 1").fetchone()
            return True
        except StoreError:
            logger.warning("store.ping_failed", db_path=str(self.db_path))
            return False

    # --------------------------- Entities ---------------------------

    def upsert_entity(self, entity: PlantEntity, raw_payload: dict[str, Any] | None = None) -> int:
        """Store ``entity`` keyed by (entity_name, provider_source); returns its row id.

        Re-storing a known entity keeps the values already on file, fills in
        columns that were empty, and refreshes ``updated_at``.
        """
        details = entity.details
        payload = raw_payload if raw_payload is not None else entity.raw_payload
        now = self.now()
        with self.connect() as conn:
            conn.execute(
                """
                INSERT INTO plant_entities (
                    entity_name, common_names, synonyms, provider_source, provider_id,
                    provider_data, taxonomy_data, characteristics_data, images_data,
                    external_ids_data, wikipedia_data, observations_count, thumbnail_url,
                    created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(entity_name, provider_source) DO UPDATE SET
                    common_names = COALESCE(plant_entities.common_names, excluded.common_names),
                    synonyms = COALESCE(plant_entities.synonyms, excluded.synonyms),
                    provider_id = COALESCE(plant_entities.provider_id, excluded.provider_id),
                    provider_data = COALESCE(plant_entities.provider_data, excluded.provider_data),
                    taxonomy_data = COALESCE(plant_entities.taxonomy_data, excluded.taxonomy_data),
                    characteristics_data = COALESCE(plant_entities.characteristics_data, excluded.characteristics_data),
                    images_data = COALESCE(plant_entities.images_data, excluded.images_data),
                    external_ids_data = COALESCE(plant_entities.external_ids_data, excluded.external_ids_data),
                    wikipedia_data = COALESCE(plant_entities.wikipedia_data, excluded.wikipedia_data),
                    observations_count = COALESCE(plant_entities.observations_count, excluded.observations_count),
                    thumbnail_url = COALESCE(plant_entities.thumbnail_url, excluded.thumbnail_url),
                    updated_at = excluded.updated_at
                """,
                (
                    entity.entity_name,
                    _dumps(entity.common_names),
                    _dumps(entity.synonyms),
                    entity.provider_source,
                    entity.provider_id,
                    _dumps(payload),
                    details.taxonomy.model_dump_json(by_alias=True, exclude_none=True) if details.taxonomy else None,
                    _dumps(details.characteristics),
                    _dumps([img.model_dump(exclude_none=True) for img in details.images or []]),
                    _dumps(details.external_ids),
                    details.wikipedia.model_dump_json(exclude_none=True) if details.wikipedia else None,
                    details.observations_count,
                    entity.thumbnail,
                    now,
                    now,
                ),
            )
            # Keys come from the stored names, which the upsert may have kept
            row = conn.execute(
                """
                SELECT id, entity_name, common_names, synonyms FROM plant_entities
                WHERE entity_name = ? AND provider_source = ?
                """,
                (entity.entity_name, entity.provider_source),
            ).fetchone()
            self._write_search_keys(conn, row)
        return int(row["id"])

    def get_entity(self, entity_id: int) -> PlantEntity | None:
        """Cached entity by row id, with full-confidence match context."""
        with self.connect() as conn:
            row = conn.execute("SELECT * FROM plant_entities WHERE id = ?", (entity_id,)).fetchone()
        return self._row_to_detail(row) if row else None

    def find_by_provider(self, provider_source: str, provider_id: str) -> PlantEntity | None:
        """Cached entity by the originating source's native id."""
        with self.connect() as conn:
            row = conn.execute(
                """
                SELECT * FROM plant_entities
                WHERE provider_source = ? AND provider_id = ?
                ORDER BY id LIMIT 1
                """,
                (provider_source, provider_id),
            ).fetchone()
        return self._row_to_detail(row) if row else None

    def count_entities(self) -> int:
        with self.connect() as conn:
            return int(conn.execute("SELECT COUNT(*) FROM plant_entities").fetchone()[0])

    # --------------------------- Queries ----------------------------

    def record_query(self, raw_text: str, filters: dict[str, Any] | None = None) -> int:
        """Log a query; repeated identical queries bump a counter. Returns the query id."""
        normalized = normalize_query(raw_text)
        query_hash = hash_query(raw_text, filters)
        now = self.now()
        with self.connect() as conn:
            conn.execute(
                """
                INSERT INTO search_queries (
                    query_original, query_normalized, query_hash, search_count, last_searched_at, created_at
                ) VALUES (?, ?, ?, 1, ?, ?)
                ON CONFLICT(query_hash) DO UPDATE SET
                    search_count = search_count + 1,
                    last_searched_at = excluded.last_searched_at
                """,
                (raw_text, normalized, query_hash, now, now),
            )
            row = conn.execute("SELECT id FROM search_queries WHERE query_hash = ?", (query_hash,)).fetchone()
        return int(row["id"])

    def link_results(self, query_id: int, entities: Sequence[PlantEntity], provider_used: str) -> int:
        """Remember which entities answered a query, in order. Returns links written.

        Entities that were never stored are skipped.
        """
        now = self.now()
        written = 0
        with self.connect() as conn:
            for position, entity in enumerate(entities):
                row = conn.execute(
                    "SELECT id FROM plant_entities WHERE entity_name = ? AND provider_source = ?",
                    (entity.entity_name, entity.provider_source),
                ).fetchone()
                if row is None:
                    continue
                conn.execute(
                    """
                    INSERT INTO search_results (
                        query_id, entity_id, matched_in, matched_in_type, match_position,
                        match_length, confidence_score, provider_used, result_position, created_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        query_id,
                        row["id"],
                        entity.matched_in or entity.entity_name,
                        entity.matched_in_type.value,
                        entity.match_position,
                        entity.match_length,
                        entity.confidence,
                        provider_used,
                        position,
                        now,
                    ),
                )
                written += 1
        return written

    def popular_queries(self, limit: int = 10) -> list[dict[str, Any]]:
        with self.connect() as conn:
            rows = conn.execute(
                """
                SELECT query_original, query_normalized, search_count, last_searched_at
                FROM search_queries
                ORDER BY search_count DESC, last_searched_at DESC
                LIMIT ?
                """,
                (limit,),
            ).fetchall()
        return [
            {
                "query": r["query_original"],
                "normalized": r["query_normalized"],
                "count": r["search_count"],
                "last_searched_at": r["last_searched_at"],
            }
            for r in rows
        ]

    def search_summary(self, days: int = 7) -> dict[str, Any]:
        """Totals over the last ``days``: searches, distinct queries, cache hits."""
        since = (self._clock() - dt.timedelta(days=days)).strftime(TIMESTAMP_FMT)
        since_date = (self.today() - dt.timedelta(days=days)).isoformat()
        with self.connect() as conn:
            totals = conn.execute(
                """
                SELECT COALESCE(SUM(search_count), 0) AS total, COUNT(*) AS unique_queries
                FROM search_queries WHERE last_searched_at >= ?
                """,
                (since,),
            ).fetchone()
            hits = conn.execute(
                """
                SELECT COALESCE(SUM(successful_requests), 0) FROM provider_stats
                WHERE provider_name = ? AND search_date >= ?
                """,
                (LOCAL_TAG, since_date),
            ).fetchone()[0]
        return {
            "days": days,
            "total_searches": int(totals["total"]),
            "unique_queries": int(totals["unique_queries"]),
            "cached_hits": int(hits),
            "popular_queries": self.popular_queries(5),
        }

    def cleanup(self, days_to_keep: int = 90) -> dict[str, int]:
        """Drop single-use queries older than ``days_to_keep`` and their links.

        Entities are never deleted.
        """
        threshold = (self._clock() - dt.timedelta(days=days_to_keep)).strftime(TIMESTAMP_FMT)
        with self.connect() as conn:
            removed_results = conn.execute(
                """
                DELETE FROM search_results WHERE query_id IN (
                    SELECT id FROM search_queries WHERE last_searched_at < ? AND search_count = 1
                )
                """,
                (threshold,),
            ).rowcount
            removed_queries = conn.execute(
                "DELETE FROM search_queries WHERE last_searched_at < ? AND search_count = 1",
                (threshold,),
            ).rowcount
        logger.info(
            "store.cleanup",
            days_to_keep=days_to_keep,
            removed_queries=removed_queries,
            removed_results=removed_results,
        )
        return {"removed_queries": removed_queries, "removed_results": removed_results}

    # ------------------------- Local search -------------------------

    def search_local(
        self,
        raw_text: str,
        limit: int = 10,
        filters: SearchFilters | None = None,
    ) -> list[PlantEntity]:
        """Fuzzy lookup over cached entities.

        Entities an upstream source already returned for this exact query
        (same normalized text and filters) come first, in their original
        order, so a query only the upstream could resolve ("fikus") is still
        answered from the cache next time. Then a substring match on names,
        ranked exact name, then name prefix, then everything else. If that
        does not fill ``limit``, a full-text pass over name tokens tops it
        up. Never returns more than ``limit`` entities or the same entity
        twice.

        Raises:
            StoreError: the cache cannot be read.
        """
        normalized = normalize_query(raw_text)
        if not normalized or limit <= 0:
            return []

        active = filters.active() if filters else None
        filter_sql, filter_args = self._filter_clause(filters)
        contains = f"%{_like_escape(normalized)}%"
        prefix = f"{_like_escape(normalized)}%"

        found: list[PlantEntity] = []
        seen: set[int] = set()

        def keep(row: sqlite3.Row, entity: PlantEntity) -> None:
            if row["id"] not in seen and len(found) < limit:
                seen.add(row["id"])
                found.append(entity)

        with self.connect() as conn:
            linked = conn.execute(
                f"""
                SELECT e.*,
                       r.matched_in AS link_matched_in,
                       r.matched_in_type AS link_matched_in_type,
                       r.match_position AS link_match_position,
                       r.match_length AS link_match_length,
                       r.confidence_score AS link_confidence
                FROM search_results r
                JOIN search_queries q ON q.id = r.query_id
                JOIN plant_entities e ON e.id = r.entity_id
                WHERE q.query_hash = ?{filter_sql}
                ORDER BY r.result_position, r.id
                """,
                (hash_query(raw_text, active), *filter_args),
            ).fetchall()
            for r in linked:
                keep(r, self._row_to_linked(r))

            if len(found) < limit:
                rows = conn.execute(
                    f"""
                    SELECT * FROM plant_entities
                    WHERE names_normalized LIKE ? ESCAPE '\\'{filter_sql}
                    ORDER BY
                        CASE
                            WHEN name_normalized = ? THEN 1
                            WHEN name_normalized LIKE ? ESCAPE '\\' THEN 2
                            ELSE 3
                        END,
                        id
                    LIMIT ?
                    """,
                    (contains, *filter_args, normalized, prefix, limit + len(seen)),
                ).fetchall()
                for r in rows:
                    keep(r, self._row_to_match(r, raw_text))

            if len(found) < limit:
                match_expr = self._fts_expression(normalized)
                if match_expr:
                    fts_rows = conn.execute(
                        f"""
                        SELECT e.* FROM plant_entities_fts
                        JOIN plant_entities e ON e.id = plant_entities_fts.rowid
                        WHERE plant_entities_fts MATCH ?{filter_sql}
                        ORDER BY bm25(plant_entities_fts), e.id
                        LIMIT ?
                        """,
                        (match_expr, *filter_args, limit + len(seen)),
                    ).fetchall()
                    for r in fts_rows:
                        keep(r, self._row_to_match(r, raw_text))

        return found

    @staticmethod
    @staticmethod
    def _fts_expression(normalized: str) -> str:
        tokens = _FTS_TOKEN.findall(normalized)
        return " OR ".join(f'"{tok}"*' for tok in tokens)

    @staticmethod
    def _filter_clause(filters: SearchFilters | None) -> tuple[str, list[Any]]:
        """SQL predicates for active filters; rows without characteristics pass."""
        if filters is None:
            return "", []
        active = filters.active()
        if not active:
            return "", []
        parts = []
        args: list[Any] = []
        for key, wanted in active.items():
            parts.append(f"json_extract(characteristics_data, '$.{key}') = ?")
            args.append(int(wanted) if isinstance(wanted, bool) else wanted)
        clause = f" AND (characteristics_data IS NULL OR ({' AND '.join(parts)}))"
        return clause, args

    # --------------------------- Mapping ----------------------------

    def _row_to_details(self, row: sqlite3.Row) -> PlantDetails:
        taxonomy = _loads(row["taxonomy_data"])
        images = _loads(row["images_data"])
        wikipedia = _loads(row["wikipedia_data"])
        return PlantDetails(
            taxonomy=Taxonomy.model_validate(taxonomy) if taxonomy else None,
            characteristics=_loads(row["characteristics_data"]),
            observations_count=row["observations_count"],
            external_ids=_loads(row["external_ids_data"]) or {},
            images=[PlantImage.model_validate(i) for i in images] if images else None,
            wikipedia=WikipediaRef.model_validate(wikipedia) if wikipedia else None,
        )

    def _row_to_entity(self, row: sqlite3.Row, **match_fields: Any) -> PlantEntity:
        entity = PlantEntity(
            entity_name=row["entity_name"],
            provider_source=row["provider_source"],
            provider_id=row["provider_id"],
            common_names=_loads(row["common_names"]) or [],
            synonyms=_loads(row["synonyms"]) or [],
            access_token=encode_access_token(int(row["id"]), LOCAL_TAG),
            thumbnail=row["thumbnail_url"],
            details=self._row_to_details(row),
            **match_fields,
        )
        return entity.with_raw_payload(_loads(row["provider_data"]))

    def _row_to_match(self, row: sqlite3.Row, raw_text: str) -> PlantEntity:
        ctx = locate_match(
            raw_text,
            row["entity_name"],
            _loads(row["common_names"]) or [],
            _loads(row["synonyms"]) or [],
        )
        return self._row_to_entity(row, **ctx.as_fields(raw_text))

    def _row_to_linked(self, row: sqlite3.Row) -> PlantEntity:
        """Entity with the match context its source reported for this query."""
        return self._row_to_entity(
            row,
            matched_in=row["link_matched_in"],
            matched_in_type=MatchType(row["link_matched_in_type"]),
            match_position=row["link_match_position"],
            match_length=row["link_match_length"],
            confidence=row["link_confidence"] or 0.0,
        )

    def _row_to_detail(self, row: sqlite3.Row) -> PlantEntity:
        name = row["entity_name"]
        return self._row_to_entity(
            row,
            matched_in=name,
            match_position=0,
            match_length=len(name),
            confidence=1.0,
        )
