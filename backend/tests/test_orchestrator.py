"""Tests for casefile.extraction.orchestrator — batch extraction runs.

A fake extractor replaces the model client; it returns scripted result
variants per document id.
"""

from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from casefile.config import Settings
from casefile.db.repositories import DocumentRepo, EntityRepo, TripleRepo
from casefile.db.sqlite import SQLiteDB
from casefile.entity.canonicalizer import EntityCanonicalizer
from casefile.errors import EntityConflict
from casefile.extraction.client import AnalysisOk, CallError, ExtractionResult, SchemaError
from casefile.extraction.orchestrator import ExtractionOrchestrator, ExtractionStats
from casefile.extraction.schema import DocumentAnalysis


def _analysis(entities: list[dict], triples: list[dict] | None = None) -> DocumentAnalysis:
    return DocumentAnalysis.model_validate({
        "summary": "s",
        "detailedSummary": "d",
        "documentType": "email",
        "dateEarliest": None,
        "dateLatest": None,
        "contentTags": [],
        "entities": entities,
        "triples": triples or [],
    })


class FakeExtractor:
    """Returns a scripted result per doc id (default: one shared entity)."""

    def __init__(self, results: dict[str, ExtractionResult] | None = None, delay: float = 0.0):
        self.results = results or {}
        self.delay = delay
        self.calls: list[str] = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def extract(self, doc_id: str, text: str) -> ExtractionResult:
        self.calls.append(doc_id)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(self.delay)
        finally:
            self.in_flight -= 1
        return self.results.get(
            doc_id,
            AnalysisOk(_analysis([{"name": "Jeffrey Epstein", "type": "person"}])),
        )


@pytest.fixture
def db(tmp_path: Path) -> SQLiteDB:
    return SQLiteDB(str(tmp_path / "test.db"))


@pytest.fixture
def documents(db: SQLiteDB) -> DocumentRepo:
    return DocumentRepo(db)


@pytest.fixture
def entities(db: SQLiteDB) -> EntityRepo:
    return EntityRepo(db)


@pytest.fixture
def canonicalizer(entities: EntityRepo, db: SQLiteDB) -> EntityCanonicalizer:
    return EntityCanonicalizer(entities, TripleRepo(db))


@pytest.fixture
def settings() -> Settings:
    return Settings(
        BATCH_SIZE=3, MAX_WORKERS=2, REQUESTS_PER_MINUTE=0, BATCH_PAUSE_SECONDS=0,
    )


def _orchestrator(db, documents, canonicalizer, extractor, settings) -> ExtractionOrchestrator:
    return ExtractionOrchestrator(db, documents, canonicalizer, extractor, settings)


def _load(documents: DocumentRepo, n: int) -> list[int]:
    return [documents.insert(f"EFTA{i:08d}", 1, full_text=f"text {i}") for i in range(1, n + 1)]


class TestRun:
    @pytest.mark.asyncio
    async def test_all_documents_completed(self, db, documents, canonicalizer, settings):
        ids = _load(documents, 7)
        extractor = FakeExtractor()
        stats = await _orchestrator(db, documents, canonicalizer, extractor, settings).run()
        assert stats == ExtractionStats(processed=7, failed=0, skipped=0, entities=7, triples=0)
        assert documents.status_counts() == {"complete": 7}
        assert sorted(extractor.calls) == [f"EFTA{i:08d}" for i in range(1, 8)]
        assert all(documents.get(i)["analyzed_at"] for i in ids)

    @pytest.mark.asyncio
    async def test_worker_count_bounds_in_flight_calls(self, db, documents, canonicalizer, settings):
        _load(documents, 6)
        extractor = FakeExtractor(delay=0.01)
        await _orchestrator(db, documents, canonicalizer, extractor, settings).run()
        assert 1 <= extractor.max_in_flight <= settings.MAX_WORKERS

    @pytest.mark.asyncio
    async def test_documents_without_text_ignored(self, db, documents, canonicalizer, settings):
        documents.insert("EFTA00000001", 1, full_text="")
        stats = await _orchestrator(db, documents, canonicalizer, FakeExtractor(), settings).run()
        assert stats.processed == 0
        assert documents.status_counts() == {"pending": 1}

    @pytest.mark.asyncio
    async def test_second_run_has_nothing_to_do(self, db, documents, canonicalizer, settings):
        _load(documents, 2)
        orchestrator = _orchestrator(db, documents, canonicalizer, FakeExtractor(), settings)
        await orchestrator.run()
        assert (await orchestrator.run()).processed == 0


class TestFailureIsolation:
    @pytest.mark.asyncio
    async def test_malformed_response_marks_failed(
        self, db, documents, entities, canonicalizer, settings,
    ):
        ids = _load(documents, 3)
        extractor = FakeExtractor({
            "EFTA00000002": SchemaError("Response does not match the analysis schema", "{}"),
        })
        stats = await _orchestrator(db, documents, canonicalizer, extractor, settings).run()
        assert stats.processed == 2
        assert stats.failed == 1
        failed = documents.get(ids[1])
        assert failed["analysis_status"] == "failed"
        assert "schema" in failed["error_message"]
        assert entities.links_for_document(ids[1]) == []

    @pytest.mark.asyncio
    async def test_call_error_marks_failed(self, db, documents, canonicalizer, settings):
        ids = _load(documents, 2)
        extractor = FakeExtractor({"EFTA00000001": CallError("Model call timed out after 120s")})
        await _orchestrator(db, documents, canonicalizer, extractor, settings).run()
        assert documents.get(ids[0])["analysis_status"] == "failed"
        assert "timed out" in documents.get(ids[0])["error_message"]
        assert documents.get(ids[1])["analysis_status"] == "complete"

    @pytest.mark.asyncio
    async def test_failed_documents_not_retried_in_later_runs(
        self, db, documents, canonicalizer, settings,
    ):
        _load(documents, 1)
        extractor = FakeExtractor({"EFTA00000001": CallError("down")})
        orchestrator = _orchestrator(db, documents, canonicalizer, extractor, settings)
        await orchestrator.run()
        await orchestrator.run()
        assert extractor.calls == ["EFTA00000001"]

    @pytest.mark.asyncio
    async def test_entity_conflict_aborts_run(self, db, documents, canonicalizer, settings, monkeypatch):
        _load(documents, 4)

        def broken_upsert(*args, **kwargs):
            raise EntityConflict("upsert returned no row")

        monkeypatch.setattr(canonicalizer._entities, "upsert", broken_upsert)
        orchestrator = _orchestrator(db, documents, canonicalizer, FakeExtractor(), settings)
        with pytest.raises(EntityConflict):
            await orchestrator.run()
        # Nothing half-written: the failing document's transaction rolled back.
        assert "complete" not in documents.status_counts()


class TestResolutionUnderConcurrency:
    @pytest.mark.asyncio
    async def test_same_name_in_many_documents_one_entity(
        self, db, documents, entities, canonicalizer, settings,
    ):
        """Concurrent workers extracting the same name resolve to a single row."""
        ids = _load(documents, 6)
        await _orchestrator(db, documents, canonicalizer, FakeExtractor(delay=0.001), settings).run()
        assert entities.count() == 1
        entity_id = entities.get_by_name("Jeffrey Epstein", "person")["id"]
        for doc_id in ids:
            [link] = entities.links_for_document(doc_id)
            assert link["entity_id"] == entity_id


class TestRestartAndStop:
    @pytest.mark.asyncio
    async def test_stale_processing_rows_reclaimed(self, db, documents, canonicalizer, settings):
        ids = _load(documents, 2)
        documents.claim(ids[0])
        db.execute(
            "UPDATE documents SET claimed_at = '2000-01-01T00:00:00.000000+00:00' WHERE id = ?",
            (ids[0],),
        )
        extractor = FakeExtractor()
        stats = await _orchestrator(db, documents, canonicalizer, extractor, settings).run()
        assert stats.processed == 2
        assert documents.get(ids[0])["analysis_status"] == "complete"

    @pytest.mark.asyncio
    async def test_stop_before_run_claims_nothing(self, db, documents, canonicalizer, settings):
        _load(documents, 3)
        orchestrator = _orchestrator(db, documents, canonicalizer, FakeExtractor(), settings)
        orchestrator.stop()
        stats = await orchestrator.run()
        assert stats.processed == 0
        assert documents.status_counts() == {"pending": 3}

    @pytest.mark.asyncio
    async def test_stop_mid_run_finishes_in_flight(self, db, documents, canonicalizer, settings):
        _load(documents, 9)
        extractor = FakeExtractor(delay=0.02)
        orchestrator = _orchestrator(db, documents, canonicalizer, extractor, settings)

        async def stop_soon() -> None:
            while not extractor.calls:
                await asyncio.sleep(0.001)
            orchestrator.stop()

        stats, _ = await asyncio.gather(orchestrator.run(), stop_soon())
        counts = documents.status_counts()
        assert counts.get("processing", 0) == 0
        assert counts.get("complete", 0) == stats.processed
        assert 1 <= stats.processed < 9
        assert counts["pending"] == 9 - stats.processed


class GatedExtractor(FakeExtractor):
    """Holds every call until ``release`` is set."""

    def __init__(self, results: dict[str, ExtractionResult] | None = None):
        super().__init__(results)
        self.release = asyncio.Event()

    async def extract(self, doc_id: str, text: str) -> ExtractionResult:
        self.calls.append(doc_id)
        await self.release.wait()
        return self.results.get(doc_id, AnalysisOk(_met_analysis()))


def _met_analysis() -> DocumentAnalysis:
    return _analysis(
        [
            {"name": "Jeffrey Epstein", "type": "person"},
            {"name": "Ghislaine Maxwell", "type": "person"},
        ],
        [{
            "subject": "Jeffrey Epstein", "subjectType": "person", "predicate": "met",
            "object": "Ghislaine Maxwell", "objectType": "person",
        }],
    )


class TestConcurrentRuns:
    """Two orchestrators with their own connections share one database file."""

    @pytest.fixture
    def second_db(self, tmp_path: Path, db: SQLiteDB) -> SQLiteDB:
        return SQLiteDB(str(tmp_path / "test.db"))

    def _second(self, second_db: SQLiteDB, extractor, settings: Settings) -> ExtractionOrchestrator:
        return ExtractionOrchestrator(
            second_db,
            DocumentRepo(second_db),
            EntityCanonicalizer(EntityRepo(second_db), TripleRepo(second_db)),
            extractor,
            settings,
        )

    @staticmethod
    async def _until_called(extractor: FakeExtractor) -> None:
        while not extractor.calls:
            await asyncio.sleep(0.001)

    @pytest.mark.asyncio
    async def test_live_claim_not_taken_by_later_run(
        self, db, documents, entities, canonicalizer, settings, second_db,
    ):
        [doc_id] = _load(documents, 1)
        first_extractor = GatedExtractor()
        first = _orchestrator(db, documents, canonicalizer, first_extractor, settings)
        first_run = asyncio.create_task(first.run())
        await self._until_called(first_extractor)

        second_extractor = FakeExtractor({"EFTA00000001": AnalysisOk(_met_analysis())})
        second_stats = await self._second(second_db, second_extractor, settings).run()
        assert second_extractor.calls == []
        assert second_stats.processed == 0

        first_extractor.release.set()
        first_stats = await first_run
        assert first_stats.processed == 1
        assert first_extractor.calls == ["EFTA00000001"]
        assert len(TripleRepo(db).for_document(doc_id)) == 1
        assert [link["mention_count"] for link in entities.links_for_document(doc_id)] == [1, 1]
        assert documents.get(doc_id)["analysis_status"] == "complete"

    @pytest.mark.asyncio
    async def test_expired_claim_taken_over_and_late_result_discarded(
        self, db, documents, entities, canonicalizer, settings, second_db,
    ):
        """A run whose lease expired mid-call loses the document to the next run."""
        [doc_id] = _load(documents, 1)
        first_extractor = GatedExtractor()
        first = _orchestrator(db, documents, canonicalizer, first_extractor, settings)
        first_run = asyncio.create_task(first.run())
        await self._until_called(first_extractor)

        expired = settings.model_copy(update={"CLAIM_LEASE_SECONDS": 0.0})
        second_extractor = FakeExtractor({"EFTA00000001": AnalysisOk(_met_analysis())})
        second_stats = await self._second(second_db, second_extractor, expired).run()
        assert second_stats.processed == 1

        first_extractor.release.set()
        first_stats = await first_run
        assert first_stats.processed == 0
        assert first_stats.skipped == 1

        assert len(TripleRepo(db).for_document(doc_id)) == 1
        assert [link["mention_count"] for link in entities.links_for_document(doc_id)] == [1, 1]
        assert documents.get(doc_id)["analysis_status"] == "complete"

    @pytest.mark.asyncio
    async def test_late_failure_does_not_overwrite_completed_row(
        self, db, documents, canonicalizer, settings, second_db,
    ):
        [doc_id] = _load(documents, 1)
        first_extractor = GatedExtractor({"EFTA00000001": CallError("Model call timed out after 120s")})
        first = _orchestrator(db, documents, canonicalizer, first_extractor, settings)
        first_run = asyncio.create_task(first.run())
        await self._until_called(first_extractor)

        expired = settings.model_copy(update={"CLAIM_LEASE_SECONDS": 0.0})
        await self._second(second_db, FakeExtractor(), expired).run()

        first_extractor.release.set()
        first_stats = await first_run
        assert first_stats.failed == 0
        assert first_stats.skipped == 1
        row = documents.get(doc_id)
        assert row["analysis_status"] == "complete"
        assert row["error_message"] is None
