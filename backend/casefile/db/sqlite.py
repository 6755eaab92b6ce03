"""SQLite database schema and connection manager for Casefile.

Provides the SQLiteDB class — the single entry point for all relational
persistence. Enables WAL mode and foreign keys on connect. Creates the
full schema (9 tables) on initialization.

The instance is passed explicitly to every repository; there is no
module-level connection.
"""

from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from typing import Any, Iterator, Sequence


# Full schema for all 9 tables.
_SCHEMA_SQL = """
-- OCR'd corpus documents
CREATE TABLE IF NOT EXISTS documents (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    doc_id TEXT NOT NULL UNIQUE,
    dataset_id INTEGER NOT NULL,
    file_path TEXT,
    full_text TEXT,
    page_count INTEGER,
    summary TEXT,
    detailed_summary TEXT,
    document_type TEXT,
    date_earliest TEXT,
    date_latest TEXT,
    content_tags TEXT NOT NULL DEFAULT '[]',
    analysis_status TEXT NOT NULL DEFAULT 'pending'
        CHECK(analysis_status IN ('pending','processing','complete','failed')),
    error_message TEXT,
    claimed_at TEXT,
    analyzed_at TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_documents_status ON documents(analysis_status);

-- Canonical entities
CREATE TABLE IF NOT EXISTS entities (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    canonical_name TEXT NOT NULL,
    entity_type TEXT NOT NULL
        CHECK(entity_type IN ('person','organization','location','date',
                              'reference','financial','unknown')),
    layer INTEGER,
    aliases TEXT NOT NULL DEFAULT '[]',
    attributes TEXT NOT NULL DEFAULT '{}',
    description TEXT,
    ppp_matches TEXT NOT NULL DEFAULT '[]',
    fec_matches TEXT NOT NULL DEFAULT '[]',
    grants_matches TEXT NOT NULL DEFAULT '[]',
    document_count INTEGER NOT NULL DEFAULT 0,
    connection_count INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    UNIQUE(canonical_name, entity_type)
);
CREATE INDEX IF NOT EXISTS idx_entities_layer ON entities(layer);

-- Alias decisions from the grouping pass
CREATE TABLE IF NOT EXISTS entity_aliases (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    entity_id INTEGER NOT NULL REFERENCES entities(id) ON DELETE CASCADE,
    original_name TEXT NOT NULL,
    confidence REAL NOT NULL DEFAULT 1.0,
    source TEXT NOT NULL DEFAULT 'extraction'
        CHECK(source IN ('extraction','llm_dedup','manual')),
    status TEXT NOT NULL DEFAULT 'applied' CHECK(status IN ('applied','proposed')),
    reasoning TEXT,
    created_at TEXT NOT NULL,
    UNIQUE(entity_id, original_name)
);

-- Document <-> entity membership
CREATE TABLE IF NOT EXISTS document_entities (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    document_id INTEGER NOT NULL REFERENCES documents(id) ON DELETE CASCADE,
    entity_id INTEGER NOT NULL REFERENCES entities(id) ON DELETE CASCADE,
    mention_count INTEGER NOT NULL DEFAULT 1,
    context_snippet TEXT,
    UNIQUE(document_id, entity_id)
);
CREATE INDEX IF NOT EXISTS idx_doc_entities_entity ON document_entities(entity_id);

-- Subject-predicate-object relationships
CREATE TABLE IF NOT EXISTS triples (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    document_id INTEGER NOT NULL REFERENCES documents(id) ON DELETE CASCADE,
    subject_id INTEGER NOT NULL REFERENCES entities(id) ON DELETE CASCADE,
    predicate TEXT NOT NULL,
    object_id INTEGER NOT NULL REFERENCES entities(id) ON DELETE CASCADE,
    location_id INTEGER REFERENCES entities(id) ON DELETE SET NULL,
    timestamp TEXT,
    explicit_topic TEXT,
    implicit_topic TEXT,
    tags TEXT NOT NULL DEFAULT '[]',
    sequence_order INTEGER NOT NULL,
    created_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_triples_document ON triples(document_id);

-- Reference dataset: PPP loans
CREATE TABLE IF NOT EXISTS ppp_loans (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    loan_number TEXT UNIQUE,
    borrower_name TEXT NOT NULL,
    borrower_address TEXT,
    borrower_city TEXT,
    borrower_state TEXT,
    borrower_zip TEXT,
    loan_amount REAL,
    loan_status TEXT,
    forgiveness_amount REAL,
    lender TEXT,
    naics_code TEXT,
    business_type TEXT,
    jobs_retained INTEGER,
    date_approved TEXT,
    normalized_name TEXT
);

-- Reference dataset: FEC contributions
CREATE TABLE IF NOT EXISTS fec_contributions (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    fec_id TEXT,
    contributor_name TEXT NOT NULL,
    contributor_city TEXT,
    contributor_state TEXT,
    contributor_zip TEXT,
    contributor_employer TEXT,
    contributor_occupation TEXT,
    committee_id TEXT,
    committee_name TEXT,
    candidate_id TEXT,
    candidate_name TEXT,
    amount REAL,
    contribution_date TEXT,
    contribution_type TEXT,
    normalized_name TEXT
);

-- Reference dataset: federal grants
CREATE TABLE IF NOT EXISTS federal_grants (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    award_id TEXT,
    recipient_name TEXT NOT NULL,
    recipient_city TEXT,
    recipient_state TEXT,
    recipient_zip TEXT,
    awarding_agency TEXT,
    funding_agency TEXT,
    award_amount REAL,
    award_date TEXT,
    description TEXT,
    cfda_number TEXT,
    cfda_title TEXT,
    normalized_name TEXT
);

-- Scored entity <-> reference record matches
CREATE TABLE IF NOT EXISTS entity_crossref_matches (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    entity_id INTEGER NOT NULL REFERENCES entities(id) ON DELETE CASCADE,
    source TEXT NOT NULL CHECK(source IN ('ppp','fec','grants')),
    source_id INTEGER NOT NULL,
    match_score REAL NOT NULL,
    match_method TEXT,
    verified INTEGER NOT NULL DEFAULT 0,
    false_positive INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL,
    verified_at TEXT,
    verified_by TEXT,
    UNIQUE(entity_id, source, source_id)
);
CREATE INDEX IF NOT EXISTS idx_crossref_source ON entity_crossref_matches(source, source_id);
"""


class SQLiteDB:
    """SQLite connection manager with schema auto-creation.

    Usage:
        db = SQLiteDB("/path/to/db.sqlite")
        db.execute("INSERT INTO ...", params)
        rows = db.fetchall("SELECT * FROM ...")

    Statements commit individually unless they run inside
    ``with db.transaction():``, which commits once on exit and rolls
    back on error.
    """

    def __init__(self, db_path: str, timeout: float = 30.0) -> None:
        self._db_path = db_path
        self._conn = sqlite3.connect(db_path, timeout=timeout)
        self._conn.row_factory = sqlite3.Row
        self._tx_depth = 0
        self._configure()
        self._create_schema()

    @property
    def path(self) -> str:
        return self._db_path

    def _configure(self) -> None:
        """Enable WAL mode and foreign keys."""
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA foreign_keys=ON")

    def _create_schema(self) -> None:
        """Create all tables if they don't exist."""
        self._conn.executescript(_SCHEMA_SQL)
        self._conn.commit()

    def _maybe_commit(self) -> None:
        if self._tx_depth == 0:
            self._conn.commit()

    @contextmanager
    def transaction(self) -> Iterator["SQLiteDB"]:
        """Group several statements into one commit. Nested blocks join the outer one."""
        self._tx_depth += 1
        try:
            yield self
        except BaseException:
            self._tx_depth -= 1
            if self._tx_depth == 0:
                self._conn.rollback()
            raise
        self._tx_depth -= 1
        if self._tx_depth == 0:
            self._conn.commit()

    def execute(self, sql: str, params: Sequence[Any] = ()) -> sqlite3.Cursor:
        """Execute a single SQL statement and commit."""
        cursor = self._conn.execute(sql, params)
        self._maybe_commit()
        return cursor

    def execute_returning(self, sql: str, params: Sequence[Any] = ()) -> dict[str, Any] | None:
        """Execute a write with a RETURNING clause; fetch the row before committing."""
        cursor = self._conn.execute(sql, params)
        row = cursor.fetchone()
        cursor.close()
        self._maybe_commit()
        if row is None:
            return None
        return dict(row)

    def executemany(self, sql: str, params_seq: Sequence[Sequence[Any]]) -> sqlite3.Cursor:
        """Execute a SQL statement for each set of params and commit."""
        cursor = self._conn.executemany(sql, params_seq)
        self._maybe_commit()
        return cursor

    def fetchone(self, sql: str, params: Sequence[Any] = ()) -> dict[str, Any] | None:
        """Execute a query and return the first row as a dict, or None."""
        cursor = self._conn.execute(sql, params)
        row = cursor.fetchone()
        if row is None:
            return None
        return dict(row)

    def fetchall(self, sql: str, params: Sequence[Any] = ()) -> list[dict[str, Any]]:
        """Execute a query and return all rows as a list of dicts."""
        cursor = self._conn.execute(sql, params)
        return [dict(row) for row in cursor.fetchall()]

    def close(self) -> None:
        """Close the database connection."""
        self._conn.close()

    def __enter__(self) -> "SQLiteDB":
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()
