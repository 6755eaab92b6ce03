"""Data access repositories over the SQLite store.

Each repo takes a SQLiteDB instance via dependency injection.
Repositories are the single entry point for all persistence; the
pipeline components never issue SQL of their own.
"""

from __future__ import annotations

import json
import sqlite3
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Iterable

from casefile.crossref.sources import ReferenceSource
from casefile.db.models import ENTITY_TYPES, PendingDocument, ReferenceRecord
from casefile.db.sqlite import SQLiteDB
from casefile.errors import EntityConflict

if TYPE_CHECKING:
    from casefile.extraction.schema import DocumentAnalysis


def _now_iso() -> str:
    """Return the current UTC time as an ISO 8601 string (fixed-width, sortable)."""
    return datetime.now(timezone.utc).isoformat(timespec="microseconds")


def _json_list(values: Iterable[str] | None) -> str:
    return json.dumps(list(values) if values else [])


# Set union of a stored JSON list column and a JSON list parameter.
_MERGE_ALIASES_SQL = (
    "(SELECT json_group_array(value) FROM ("
    "SELECT value FROM json_each(entities.aliases) "
    "UNION SELECT value FROM json_each(:aliases)))"
)


class DocumentRepo:
    """Corpus documents and their analysis-status transitions.

    Status only moves forward: pending -> processing -> complete | failed.
    A row stuck in processing can be claimed again (processing -> processing)
    once its claim predates ``claimed_before``, the caller's lease cutoff.
    Every claim gets a fresh ``claimed_at`` stamp that the finishing writes
    check, so a worker whose claim was taken over cannot finish the row.
    """

    def __init__(self, db: SQLiteDB) -> None:
        self._db = db

    def insert(
        self,
        doc_id: str,
        dataset_id: int,
        full_text: str | None = None,
        file_path: str | None = None,
        page_count: int | None = None,
    ) -> int:
        """Insert a document, or refresh its text if the doc_id exists. Returns the row id."""
        now = _now_iso()
        row = self._db.execute_returning(
            "INSERT INTO documents "
            "(doc_id, dataset_id, file_path, full_text, page_count, created_at, updated_at) "
            "VALUES (?, ?, ?, ?, ?, ?, ?) "
            "ON CONFLICT(doc_id) DO UPDATE SET "
            "full_text = COALESCE(excluded.full_text, documents.full_text), "
            "updated_at = excluded.updated_at "
            "RETURNING id",
            (doc_id, dataset_id, file_path, full_text, page_count, now, now),
        )
        if row is None:
            raise RuntimeError(f"Document upsert for {doc_id} returned no row")
        return int(row["id"])

    def get(self, document_id: int) -> dict[str, Any] | None:
        return self._db.fetchone("SELECT * FROM documents WHERE id = ?", (document_id,))

    def get_by_doc_id(self, doc_id: str) -> dict[str, Any] | None:
        return self._db.fetchone("SELECT * FROM documents WHERE doc_id = ?", (doc_id,))

    def fetch_pending(
        self, limit: int, claimed_before: str | None = None,
    ) -> list[PendingDocument]:
        """Return up to ``limit`` documents with text that are ready to be claimed."""
        sql = (
            "SELECT id, doc_id, full_text FROM documents "
            "WHERE full_text IS NOT NULL AND full_text != '' "
        )
        params: list[Any] = []
        if claimed_before is None:
            sql += "AND analysis_status = 'pending' "
        else:
            sql += (
                "AND (analysis_status = 'pending' "
                "OR (analysis_status = 'processing' AND claimed_at < ?)) "
            )
            params.append(claimed_before)
        sql += "ORDER BY id LIMIT ?"
        params.append(limit)
        rows = self._db.fetchall(sql, params)
        return [
            PendingDocument(id=row["id"], doc_id=row["doc_id"], text=row["full_text"])
            for row in rows
        ]

    def claim(self, document_id: int, claimed_before: str | None = None) -> str | None:
        """Move a document to processing in one statement.

        Returns the ``claimed_at`` stamp that identifies this claim, or None
        if the row is not claimable (someone else holds a live claim, or
        the document is already finished). Pass the stamp to write_result()
        and mark_failed() so only the current holder can finish the row.
        """
        now = _now_iso()
        sql = (
            "UPDATE documents SET analysis_status = 'processing', claimed_at = ?, "
            "updated_at = ? WHERE id = ? AND (analysis_status = 'pending'"
        )
        params: list[Any] = [now, now, document_id]
        if claimed_before is not None:
            sql += " OR (analysis_status = 'processing' AND claimed_at < ?)"
            params.append(claimed_before)
        sql += ")"
        cursor = self._db.execute(sql, params)
        return now if cursor.rowcount == 1 else None

    def write_result(
        self,
        document_id: int,
        analysis: "DocumentAnalysis",
        claimed_at: str | None = None,
    ) -> bool:
        """Store the analysis fields and move processing -> complete.

        With ``claimed_at``, the update applies only while that claim is
        still the current one.
        """
        now = _now_iso()
        sql = (
            "UPDATE documents SET summary = ?, detailed_summary = ?, document_type = ?, "
            "date_earliest = ?, date_latest = ?, content_tags = ?, "
            "analysis_status = 'complete', error_message = NULL, "
            "analyzed_at = ?, updated_at = ? "
            "WHERE id = ? AND analysis_status = 'processing'"
        )
        params: list[Any] = [
            analysis.summary,
            analysis.detailed_summary,
            analysis.document_type,
            analysis.date_earliest.isoformat() if analysis.date_earliest else None,
            analysis.date_latest.isoformat() if analysis.date_latest else None,
            _json_list(analysis.content_tags),
            now,
            now,
            document_id,
        ]
        if claimed_at is not None:
            sql += " AND claimed_at = ?"
            params.append(claimed_at)
        cursor = self._db.execute(sql, params)
        return cursor.rowcount == 1

    def mark_failed(
        self, document_id: int, error_message: str, claimed_at: str | None = None,
    ) -> bool:
        """Move processing -> failed and keep the error text on the row."""
        sql = (
            "UPDATE documents SET analysis_status = 'failed', error_message = ?, "
            "updated_at = ? WHERE id = ? AND analysis_status = 'processing'"
        )
        params: list[Any] = [error_message, _now_iso(), document_id]
        if claimed_at is not None:
            sql += " AND claimed_at = ?"
            params.append(claimed_at)
        cursor = self._db.execute(sql, params)
        return cursor.rowcount == 1

    def status_counts(self) -> dict[str, int]:
        """Number of documents per analysis status."""
        rows = self._db.fetchall(
            "SELECT analysis_status, COUNT(*) AS n FROM documents GROUP BY analysis_status"
        )
        return {row["analysis_status"]: row["n"] for row in rows}


class EntityRepo:
    """Canonical entities, their document memberships and derived columns."""

    def __init__(self, db: SQLiteDB) -> None:
        self._db = db

    def upsert(
        self,
        canonical_name: str,
        entity_type: str,
        aliases: list[str] | None = None,
        description: str | None = None,
    ) -> int:
        """Insert-or-fetch by (canonical_name, entity_type) in a single statement.

        Aliases are merged into the stored set; existing aliases are never
        removed. Returns the entity id.
        """
        if entity_type not in ENTITY_TYPES:
            raise ValueError(f"Invalid entity type '{entity_type}'")
        now = _now_iso()
        try:
            row = self._db.execute_returning(
                "INSERT INTO entities "
                "(canonical_name, entity_type, aliases, description, created_at, updated_at) "
                "VALUES (:name, :type, :aliases, :description, :now, :now) "
                "ON CONFLICT(canonical_name, entity_type) DO UPDATE SET "
                f"aliases = {_MERGE_ALIASES_SQL}, "
                "description = COALESCE(entities.description, excluded.description), "
                "updated_at = excluded.updated_at "
                "RETURNING id",
                {
                    "name": canonical_name,
                    "type": entity_type,
                    "aliases": _json_list(aliases),
                    "description": description,
                    "now": now,
                },
            )
        except sqlite3.IntegrityError as exc:
            raise EntityConflict(
                f"Upsert of ({canonical_name!r}, {entity_type}) violated a constraint: {exc}"
            ) from exc
        if row is None:
            raise EntityConflict(
                f"Upsert of ({canonical_name!r}, {entity_type}) returned no row"
            )
        return int(row["id"])

    def merge_aliases(self, entity_id: int, aliases: list[str]) -> None:
        """Add aliases to an entity's alias set."""
        self._db.execute(
            f"UPDATE entities SET aliases = {_MERGE_ALIASES_SQL}, updated_at = :now "
            "WHERE id = :id",
            {"aliases": _json_list(aliases), "now": _now_iso(), "id": entity_id},
        )

    def seed_root(self, name: str, entity_type: str, aliases: list[str] | None = None) -> int:
        """Create (or fetch) the root entity and pin it to layer 0."""
        with self._db.transaction():
            entity_id = self.upsert(name, entity_type, aliases=aliases)
            self._db.execute(
                "UPDATE entities SET layer = 0 WHERE id = ?", (entity_id,)
            )
        return entity_id

    def get(self, entity_id: int) -> dict[str, Any] | None:
        return self._db.fetchone("SELECT * FROM entities WHERE id = ?", (entity_id,))

    def get_by_name(self, canonical_name: str, entity_type: str) -> dict[str, Any] | None:
        return self._db.fetchone(
            "SELECT * FROM entities WHERE canonical_name = ? AND entity_type = ?",
            (canonical_name, entity_type),
        )

    def count(self) -> int:
        row = self._db.fetchone("SELECT COUNT(*) AS n FROM entities")
        return int(row["n"]) if row else 0

    def list_by_types(self, entity_types: Iterable[str]) -> list[dict[str, Any]]:
        """All entities of the given types, ordered by id."""
        types = list(entity_types)
        placeholders = ", ".join("?" for _ in types)
        return self._db.fetchall(
            f"SELECT * FROM entities WHERE entity_type IN ({placeholders}) ORDER BY id",
            types,
        )

    def list_names(self, entity_type: str, limit: int | None = None) -> list[str]:
        """Canonical names of one type, most-mentioned first."""
        sql = (
            "SELECT canonical_name FROM entities WHERE entity_type = ? "
            "ORDER BY document_count DESC, id"
        )
        params: list[Any] = [entity_type]
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)
        return [row["canonical_name"] for row in self._db.fetchall(sql, params)]

    def all_ids(self) -> list[int]:
        return [row["id"] for row in self._db.fetchall("SELECT id FROM entities ORDER BY id")]

    # -- document membership --------------------------------------------------

    def link_document(
        self,
        entity_id: int,
        document_id: int,
        mention_delta: int = 1,
        context_snippet: str | None = None,
    ) -> None:
        """Insert the (document, entity) pair or add ``mention_delta`` to its count."""
        self._db.execute(
            "INSERT INTO document_entities "
            "(document_id, entity_id, mention_count, context_snippet) VALUES (?, ?, ?, ?) "
            "ON CONFLICT(document_id, entity_id) DO UPDATE SET "
            "mention_count = document_entities.mention_count + excluded.mention_count, "
            "context_snippet = COALESCE(document_entities.context_snippet, "
            "excluded.context_snippet)",
            (document_id, entity_id, mention_delta, context_snippet),
        )

    def document_memberships(self) -> list[tuple[int, int]]:
        """Every (document_id, entity_id) pair, ordered for deterministic grouping."""
        rows = self._db.fetchall(
            "SELECT document_id, entity_id FROM document_entities "
            "ORDER BY document_id, entity_id"
        )
        return [(row["document_id"], row["entity_id"]) for row in rows]

    def links_for_document(self, document_id: int) -> list[dict[str, Any]]:
        return self._db.fetchall(
            "SELECT * FROM document_entities WHERE document_id = ? ORDER BY entity_id",
            (document_id,),
        )

    # -- alias decisions ------------------------------------------------------

    def record_alias_decision(
        self,
        entity_id: int,
        original_name: str,
        confidence: float,
        source: str,
        status: str,
        reasoning: str,
    ) -> bool:
        """Record an alias decision. Returns False if one already exists for the pair."""
        cursor = self._db.execute(
            "INSERT INTO entity_aliases "
            "(entity_id, original_name, confidence, source, status, reasoning, created_at) "
            "VALUES (?, ?, ?, ?, ?, ?, ?) "
            "ON CONFLICT(entity_id, original_name) DO NOTHING",
            (entity_id, original_name, confidence, source, status, reasoning, _now_iso()),
        )
        return cursor.rowcount == 1

    def alias_decisions(self, entity_id: int) -> list[dict[str, Any]]:
        return self._db.fetchall(
            "SELECT * FROM entity_aliases WHERE entity_id = ? ORDER BY id", (entity_id,)
        )

    # -- derived columns ------------------------------------------------------

    def write_layers(self, layers: dict[int, int]) -> None:
        """Write computed layers in one transaction."""
        now = _now_iso()
        with self._db.transaction():
            self._db.executemany(
                "UPDATE entities SET layer = ?, updated_at = ? WHERE id = ?",
                [(layer, now, entity_id) for entity_id, layer in layers.items()],
            )

    def write_stats(self, stats: dict[int, tuple[int, int]]) -> None:
        """Write (document_count, connection_count) per entity."""
        with self._db.transaction():
            self._db.executemany(
                "UPDATE entities SET document_count = ?, connection_count = ? WHERE id = ?",
                [(docs, conns, entity_id) for entity_id, (docs, conns) in stats.items()],
            )

    def write_match_summaries(
        self, summary_column: str, summaries: dict[int, list[dict[str, Any]]],
    ) -> None:
        """Replace one match-summary column for every entity.

        Entities missing from ``summaries`` get an empty list.
        """
        if summary_column not in ("ppp_matches", "fec_matches", "grants_matches"):
            raise ValueError(f"Unknown summary column '{summary_column}'")
        now = _now_iso()
        with self._db.transaction():
            self._db.execute(
                f"UPDATE entities SET {summary_column} = '[]', updated_at = ? "
                f"WHERE {summary_column} != '[]'",
                (now,),
            )
            self._db.executemany(
                f"UPDATE entities SET {summary_column} = ?, updated_at = ? WHERE id = ?",
                [
                    (json.dumps(items), now, entity_id)
                    for entity_id, items in summaries.items()
                ],
            )


class TripleRepo:
    """Relationship triples extracted from documents."""

    def __init__(self, db: SQLiteDB) -> None:
        self._db = db

    def insert(
        self,
        document_id: int,
        subject_id: int,
        predicate: str,
        object_id: int,
        sequence_order: int,
        location_id: int | None = None,
        timestamp: str | None = None,
        explicit_topic: str | None = None,
        implicit_topic: str | None = None,
        tags: list[str] | None = None,
    ) -> int:
        """Insert a triple and return its id."""
        row = self._db.execute_returning(
            "INSERT INTO triples "
            "(document_id, subject_id, predicate, object_id, location_id, timestamp, "
            "explicit_topic, implicit_topic, tags, sequence_order, created_at) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?) RETURNING id",
            (
                document_id, subject_id, predicate, object_id, location_id, timestamp,
                explicit_topic, implicit_topic, _json_list(tags), sequence_order,
                _now_iso(),
            ),
        )
        if row is None:
            raise RuntimeError(f"Triple insert for document {document_id} returned no row")
        return int(row["id"])

    def for_document(self, document_id: int) -> list[dict[str, Any]]:
        """Triples of a document in extraction order."""
        return self._db.fetchall(
            "SELECT * FROM triples WHERE document_id = ? ORDER BY sequence_order",
            (document_id,),
        )

    def update_tags(self, triple_id: int, tags: list[str]) -> bool:
        """Correct a triple's tags, the only mutation triples allow."""
        cursor = self._db.execute(
            "UPDATE triples SET tags = ? WHERE id = ?", (_json_list(tags), triple_id)
        )
        return cursor.rowcount == 1


class ReferenceRepo:
    """Read-mostly access to the three reference tables."""

    def __init__(self, db: SQLiteDB) -> None:
        self._db = db

    def insert_rows(self, source: ReferenceSource, rows: list[dict[str, Any]]) -> int:
        """Bulk insert already-mapped rows. Returns the number of rows stored.

        Rows colliding with a unique key (a PPP loan number already loaded)
        are ignored.
        """
        if not rows:
            return 0
        columns = list(source.columns) + ["normalized_name"]
        placeholders = ", ".join("?" for _ in columns)
        cursor = self._db.executemany(
            f"INSERT OR IGNORE INTO {source.table} ({', '.join(columns)}) "
            f"VALUES ({placeholders})",
            [tuple(row.get(col) for col in columns) for row in rows],
        )
        return max(cursor.rowcount, 0)

    def count(self, source: ReferenceSource) -> int:
        row = self._db.fetchone(f"SELECT COUNT(*) AS n FROM {source.table}")
        return int(row["n"]) if row else 0

    def load_records(self, source: ReferenceSource) -> list[ReferenceRecord]:
        """Load every record of a source reduced to name, amount, date and display fields."""
        display_cols = [c for c in source.display_fields.values() if c != source.name_column]
        select = ["id", source.name_column, source.amount_column, source.date_column]
        select += [c for c in display_cols if c not in select]
        rows = self._db.fetchall(
            f"SELECT {', '.join(select)} FROM {source.table} ORDER BY id"
        )
        records: list[ReferenceRecord] = []
        for row in rows:
            records.append(ReferenceRecord(
                id=row["id"],
                source=source.kind,  # type: ignore[arg-type]
                name=row[source.name_column] or "",
                amount=row[source.amount_column],
                date=row[source.date_column],
                display={key: row[col] for key, col in source.display_fields.items()},
            ))
        return records


class CrossRefRepo:
    """Scored matches between entities and reference records."""

    def __init__(self, db: SQLiteDB) -> None:
        self._db = db

    def insert_matches(
        self, matches: list[tuple[int, str, int, float, str]],
    ) -> int:
        """Insert (entity_id, source, source_id, score, method) rows.

        Existing (entity, source, record) matches are left untouched.
        Returns the number of new rows.
        """
        if not matches:
            return 0
        now = _now_iso()
        cursor = self._db.executemany(
            "INSERT INTO entity_crossref_matches "
            "(entity_id, source, source_id, match_score, match_method, created_at) "
            "VALUES (?, ?, ?, ?, ?, ?) "
            "ON CONFLICT(entity_id, source, source_id) DO NOTHING",
            [(e, s, sid, score, method, now) for e, s, sid, score, method in matches],
        )
        return max(cursor.rowcount, 0)

    def active_matches(self, source: str) -> list[dict[str, Any]]:
        """All matches for a source that are not marked false positive."""
        return self._db.fetchall(
            "SELECT * FROM entity_crossref_matches "
            "WHERE source = ? AND false_positive = 0 "
            "ORDER BY entity_id, match_score DESC, source_id",
            (source,),
        )

    def for_entity(self, entity_id: int) -> list[dict[str, Any]]:
        return self._db.fetchall(
            "SELECT * FROM entity_crossref_matches WHERE entity_id = ? "
            "ORDER BY source, match_score DESC, source_id",
            (entity_id,),
        )

    def count(self, source: str | None = None) -> int:
        if source is None:
            row = self._db.fetchone("SELECT COUNT(*) AS n FROM entity_crossref_matches")
        else:
            row = self._db.fetchone(
                "SELECT COUNT(*) AS n FROM entity_crossref_matches WHERE source = ?",
                (source,),
            )
        return int(row["n"]) if row else 0

    def verify(
        self, match_id: int, verified_by: str, false_positive: bool = False,
    ) -> dict[str, Any] | None:
        """Record a reviewer's verdict on a match and return the updated row."""
        self._db.execute(
            "UPDATE entity_crossref_matches SET verified = 1, false_positive = ?, "
            "verified_at = ?, verified_by = ? WHERE id = ?",
            (1 if false_positive else 0, _now_iso(), verified_by, match_id),
        )
        return self._db.fetchone(
            "SELECT * FROM entity_crossref_matches WHERE id = ?", (match_id,)
        )
