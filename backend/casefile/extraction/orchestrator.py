"""Extraction orchestrator: pending documents -> analyses -> canonical entities.

Fetches documents in batches and feeds them through a bounded queue to a
fixed pool of worker tasks. Each worker claims a document, calls the
extractor, and either persists the analysis in one transaction or marks
the document failed. Per-document failures never abort the run; a broken
persistence invariant (EntityConflict) or a storage error does.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta, timezone
from typing import Protocol

from casefile.config import Settings
from casefile.db.models import PendingDocument
from casefile.db.repositories import DocumentRepo
from casefile.db.sqlite import SQLiteDB
from casefile.entity.canonicalizer import EntityCanonicalizer
from casefile.errors import ClaimLost
from casefile.extraction.client import AnalysisOk, CallError, ExtractionResult, SchemaError
from casefile.extraction.rate_limit import RateLimiter

logger = logging.getLogger(__name__)


class Extractor(Protocol):
    async def extract(self, doc_id: str, text: str) -> ExtractionResult: ...


@dataclass
class ExtractionStats:
    """Counters for one orchestrator run."""

    processed: int = 0
    failed: int = 0
    skipped: int = 0
    entities: int = 0
    triples: int = 0

    def to_dict(self) -> dict[str, int]:
        return asdict(self)


class ExtractionOrchestrator:
    """Runs extraction over every pending document.

    Parameters
    ----------
    db : SQLiteDB
        Storage; used for the per-document transaction.
    documents : DocumentRepo
        Corpus reader and status writer.
    canonicalizer : EntityCanonicalizer
        Persists entities, memberships and triples of an analysis.
    extractor : Extractor
        Anything with ``async extract(doc_id, text) -> ExtractionResult``.
    settings : Settings
        Batch size, worker count, rate and batch pause.
    """

    def __init__(
        self,
        db: SQLiteDB,
        documents: DocumentRepo,
        canonicalizer: EntityCanonicalizer,
        extractor: Extractor,
        settings: Settings,
        batch_size: int | None = None,
        max_workers: int | None = None,
    ) -> None:
        self._db = db
        self._documents = documents
        self._canonicalizer = canonicalizer
        self._extractor = extractor
        self._batch_size = batch_size or settings.BATCH_SIZE
        self._max_workers = max_workers or settings.MAX_WORKERS
        self._batch_pause = settings.BATCH_PAUSE_SECONDS
        self._limiter = RateLimiter(settings.REQUESTS_PER_MINUTE)
        self._stop = asyncio.Event()
        self._fatal: BaseException | None = None
        self._stats = ExtractionStats()
        self._lease = timedelta(seconds=settings.CLAIM_LEASE_SECONDS)

    def stop(self) -> None:
        """Stop claiming new documents; in-flight documents finish."""
        self._stop.set()

    @property
    def stopped(self) -> bool:
        return self._stop.is_set()

    async def run(self) -> ExtractionStats:
        """Process batches until no claimable documents remain or stop() is called."""
        self._stats = ExtractionStats()
        self._fatal = None
        seen: set[int] = set()

        while not self._stop.is_set():
            # Rows this run failed to claim may come back; widen the window past them.
            limit = self._batch_size + self._stats.skipped
            batch = [
                doc for doc in self._documents.fetch_pending(
                    limit, claimed_before=self._lease_cutoff(),
                )
                if doc.id not in seen
            ][: self._batch_size]
            if not batch:
                break
            seen.update(doc.id for doc in batch)
            await self._run_batch(batch)
            if self._fatal is not None:
                raise self._fatal
            if self._batch_pause > 0 and not self._stop.is_set():
                await asyncio.sleep(self._batch_pause)

        logger.info(
            "Extraction run finished: %d processed, %d failed, %d skipped, "
            "%d entities, %d triples",
            self._stats.processed, self._stats.failed, self._stats.skipped,
            self._stats.entities, self._stats.triples,
        )
        return self._stats

    async def _run_batch(self, batch: list[PendingDocument]) -> None:
        queue: asyncio.Queue[PendingDocument | None] = asyncio.Queue(
            maxsize=self._max_workers,
        )
        workers = [
            asyncio.create_task(self._worker(queue), name=f"extract-worker-{i}")
            for i in range(min(self._max_workers, len(batch)))
        ]
        try:
            for doc in batch:
                await queue.put(doc)
            for _ in workers:
                await queue.put(None)
            await asyncio.gather(*workers)
        finally:
            for task in workers:
                if not task.done():
                    task.cancel()

    async def _worker(self, queue: asyncio.Queue[PendingDocument | None]) -> None:
        while True:
            doc = await queue.get()
            try:
                if doc is None:
                    return
                if self._stop.is_set():
                    self._stats.skipped += 1
                    continue
                await self._process(doc)
            except Exception as exc:
                # Fatal to the run: stop claiming, let in-flight work finish.
                logger.error("Extraction run aborted on %s: %s", getattr(doc, "doc_id", "?"), exc)
                if self._fatal is None:
                    self._fatal = exc
                self._stop.set()
            finally:
                queue.task_done()

    def _lease_cutoff(self) -> str:
        """Claims stamped before this instant are expired and may be taken over."""
        cutoff = datetime.now(timezone.utc) - self._lease
        return cutoff.isoformat(timespec="microseconds")

    async def _process(self, doc: PendingDocument) -> None:
        token = self._documents.claim(doc.id, claimed_before=self._lease_cutoff())
        if token is None:
            logger.debug("Document %s already claimed, skipping", doc.doc_id)
            self._stats.skipped += 1
            return

        await self._limiter.acquire()
        result = await self._extractor.extract(doc.doc_id, doc.text)

        if isinstance(result, AnalysisOk):
            try:
                # No await inside: the transaction is never interleaved with another document.
                with self._db.transaction():
                    resolved = self._canonicalizer.resolve_analysis(doc.id, result.analysis)
                    if not self._documents.write_result(doc.id, result.analysis, claimed_at=token):
                        raise ClaimLost(f"Claim on {doc.doc_id} was taken over")
            except ClaimLost as exc:
                logger.warning("%s; result discarded", exc)
                self._stats.skipped += 1
                return
            self._stats.processed += 1
            self._stats.entities += resolved.entity_count
            self._stats.triples += len(resolved.triple_ids)
            logger.debug(
                "Extracted %s: %d entities, %d triples%s",
                doc.doc_id, resolved.entity_count, len(resolved.triple_ids),
                " (truncated)" if result.truncated else "",
            )
        elif isinstance(result, SchemaError):
            self._fail(doc, token, f"Invalid response: {result.message}")
        elif isinstance(result, CallError):
            self._fail(doc, token, f"Extraction failed: {result.message}")
        else:
            raise TypeError(f"Unexpected extraction result: {type(result).__name__}")

    def _fail(self, doc: PendingDocument, token: str, message: str) -> None:
        if not self._documents.mark_failed(doc.id, message, claimed_at=token):
            logger.warning("Claim on %s was taken over; failure not recorded", doc.doc_id)
            self._stats.skipped += 1
            return
        self._stats.failed += 1
        logger.warning("Document %s failed: %s", doc.doc_id, message)
