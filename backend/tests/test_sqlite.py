"""Tests for casefile.db.sqlite — SQLite schema and connection manager."""

import sqlite3
from pathlib import Path

import pytest

from casefile.db.sqlite import SQLiteDB


@pytest.fixture
def tmp_db(tmp_path: Path) -> SQLiteDB:
    """Create a fresh SQLiteDB instance on a temp path."""
    db = SQLiteDB(str(tmp_path / "test.db"))
    yield db
    db.close()


def _insert_entity(db: SQLiteDB, name: str, entity_type: str = "person") -> None:
    db.execute(
        "INSERT INTO entities (canonical_name, entity_type, created_at, updated_at) "
        "VALUES (?, ?, '2024-01-01', '2024-01-01')",
        (name, entity_type),
    )


class TestSchemaCreation:
    """Schema creates all tables on fresh database."""

    def test_all_tables_exist(self, tmp_db: SQLiteDB):
        rows = tmp_db.fetchall(
            "SELECT name FROM sqlite_master WHERE type='table' "
            "AND name NOT LIKE 'sqlite_%' ORDER BY name"
        )
        assert sorted(row["name"] for row in rows) == sorted([
            "documents",
            "entities",
            "entity_aliases",
            "document_entities",
            "triples",
            "ppp_loans",
            "fec_contributions",
            "federal_grants",
            "entity_crossref_matches",
        ])

    def test_schema_creation_is_idempotent(self, tmp_path: Path):
        """Opening the same file twice does not fail or duplicate anything."""
        path = str(tmp_path / "again.db")
        SQLiteDB(path).close()
        db = SQLiteDB(path)
        assert db.fetchone("SELECT COUNT(*) AS n FROM entities")["n"] == 0
        db.close()


class TestPragmas:
    def test_wal_mode_enabled(self, tmp_db: SQLiteDB):
        assert tmp_db.fetchone("PRAGMA journal_mode")["journal_mode"] == "wal"

    def test_foreign_keys_enabled(self, tmp_db: SQLiteDB):
        assert tmp_db.fetchone("PRAGMA foreign_keys")["foreign_keys"] == 1


class TestConstraints:
    """UNIQUE and CHECK constraints guard the invariants."""

    def test_entity_name_type_unique(self, tmp_db: SQLiteDB):
        _insert_entity(tmp_db, "Acme")
        with pytest.raises(sqlite3.IntegrityError):
            _insert_entity(tmp_db, "Acme")

    def test_same_name_different_type_allowed(self, tmp_db: SQLiteDB):
        _insert_entity(tmp_db, "Palm Beach", "location")
        _insert_entity(tmp_db, "Palm Beach", "organization")
        assert tmp_db.fetchone("SELECT COUNT(*) AS n FROM entities")["n"] == 2

    def test_entity_type_checked(self, tmp_db: SQLiteDB):
        with pytest.raises(sqlite3.IntegrityError):
            _insert_entity(tmp_db, "Something", "vehicle")

    def test_analysis_status_checked(self, tmp_db: SQLiteDB):
        with pytest.raises(sqlite3.IntegrityError):
            tmp_db.execute(
                "INSERT INTO documents (doc_id, dataset_id, analysis_status, created_at, updated_at) "
                "VALUES ('EFTA00000001', 1, 'done', 'x', 'x')"
            )

    def test_match_source_checked(self, tmp_db: SQLiteDB):
        _insert_entity(tmp_db, "Acme", "organization")
        with pytest.raises(sqlite3.IntegrityError):
            tmp_db.execute(
                "INSERT INTO entity_crossref_matches "
                "(entity_id, source, source_id, match_score, created_at) "
                "VALUES (1, 'sec', 1, 0.9, 'x')"
            )


class TestTransactions:
    """Statements inside transaction() commit together or not at all."""

    def test_rollback_on_error(self, tmp_db: SQLiteDB):
        with pytest.raises(RuntimeError):
            with tmp_db.transaction():
                _insert_entity(tmp_db, "Rolled Back")
                raise RuntimeError("boom")
        assert tmp_db.fetchone("SELECT COUNT(*) AS n FROM entities")["n"] == 0

    def test_commit_on_exit(self, tmp_path: Path):
        path = str(tmp_path / "tx.db")
        db = SQLiteDB(path)
        with db.transaction():
            _insert_entity(db, "One")
            _insert_entity(db, "Two")
        other = SQLiteDB(path)
        assert other.fetchone("SELECT COUNT(*) AS n FROM entities")["n"] == 2
        other.close()
        db.close()

    def test_nested_block_joins_outer(self, tmp_db: SQLiteDB):
        """An error in the outer block also undoes what the inner block wrote."""
        with pytest.raises(RuntimeError):
            with tmp_db.transaction():
                with tmp_db.transaction():
                    _insert_entity(tmp_db, "Inner")
                raise RuntimeError("boom")
        assert tmp_db.fetchone("SELECT COUNT(*) AS n FROM entities")["n"] == 0


class TestHelpers:
    def test_execute_returning(self, tmp_db: SQLiteDB):
        row = tmp_db.execute_returning(
            "INSERT INTO entities (canonical_name, entity_type, created_at, updated_at) "
            "VALUES ('Acme', 'organization', 'x', 'x') RETURNING id, canonical_name"
        )
        assert row == {"id": 1, "canonical_name": "Acme"}

    def test_fetchone_none_when_empty(self, tmp_db: SQLiteDB):
        assert tmp_db.fetchone("SELECT * FROM entities") is None

    def test_context_manager_closes(self, tmp_path: Path):
        with SQLiteDB(str(tmp_path / "cm.db")) as db:
            db.fetchall("SELECT 1")
        with pytest.raises(sqlite3.ProgrammingError):
            db.fetchall("SELECT 1")
