"""Cross-reference matching of canonical entities against reference datasets.

For each source, every entity of a matchable type is compared with every
reference record through a trigram index. The best candidates above the
threshold are stored as match rows (existing rows are left untouched),
then each entity's summary list for that source is rebuilt from all
matches not marked false positive.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import asdict, dataclass
from typing import Any

from casefile.config import Settings
from casefile.crossref.similarity import TrigramIndex, normalize_name
from casefile.crossref.sources import SOURCES, ReferenceSource, get_source
from casefile.db.models import ReferenceRecord
from casefile.db.repositories import CrossRefRepo, EntityRepo, ReferenceRepo

logger = logging.getLogger(__name__)

MATCH_METHOD = "fuzzy"


@dataclass
class SourceMatchStats:
    """Counters for one source in one matching pass."""

    records: int = 0
    entities_scanned: int = 0
    candidates: int = 0
    inserted: int = 0
    entities_with_matches: int = 0


class CrossReferenceMatcher:
    """Scores entities against the loan, contribution and grant tables.

    Parameters
    ----------
    entities : EntityRepo
    references : ReferenceRepo
    crossrefs : CrossRefRepo
    settings : Settings
        Supplies MATCH_THRESHOLD and MATCH_TOP_K.
    """

    def __init__(
        self,
        entities: EntityRepo,
        references: ReferenceRepo,
        crossrefs: CrossRefRepo,
        settings: Settings,
    ) -> None:
        self._entities = entities
        self._references = references
        self._crossrefs = crossrefs
        self._threshold = settings.MATCH_THRESHOLD
        self._top_k = settings.MATCH_TOP_K

    def run(self, sources: list[str] | None = None) -> dict[str, dict[str, int]]:
        """Match every source (or the named ones). Returns counters per source."""
        kinds = sources or list(SOURCES)
        return {kind: asdict(self.match_source(get_source(kind))) for kind in kinds}

    def match_source(self, source: ReferenceSource) -> SourceMatchStats:
        stats = SourceMatchStats()
        records = self._references.load_records(source)
        stats.records = len(records)
        by_id = {record.id: record for record in records}

        # Normalization depends on the entity type, so index once per type.
        indexes = {
            entity_type: TrigramIndex(
                (record.id, normalize_name(record.name, entity_type)) for record in records
            )
            for entity_type in source.entity_types
        }

        matches: list[tuple[int, str, int, float, str]] = []
        for entity in self._entities.list_by_types(source.entity_types):
            stats.entities_scanned += 1
            query = normalize_name(entity["canonical_name"], entity["entity_type"])
            hits = indexes[entity["entity_type"]].search(query, self._threshold, self._top_k)
            for record_id, score in hits:
                matches.append(
                    (entity["id"], source.kind, record_id, round(score, 4), MATCH_METHOD)
                )
        stats.candidates = len(matches)
        stats.inserted = self._crossrefs.insert_matches(matches)

        summaries = self._build_summaries(source, by_id)
        self._entities.write_match_summaries(source.summary_column, summaries)
        stats.entities_with_matches = len(summaries)

        logger.info(
            "Cross-reference %s: %d entities vs %d records, %d candidates, %d new matches",
            source.kind, stats.entities_scanned, stats.records, stats.candidates, stats.inserted,
        )
        return stats

    def _build_summaries(
        self, source: ReferenceSource, by_id: dict[int, ReferenceRecord],
    ) -> dict[int, list[dict[str, Any]]]:
        """Summary entries per entity from every active match, best first."""
        summaries: dict[int, list[dict[str, Any]]] = defaultdict(list)
        for match in self._crossrefs.active_matches(source.kind):
            record = by_id.get(match["source_id"])
            if record is None:
                continue
            entry: dict[str, Any] = {"id": record.id}
            entry.update(record.display)
            entry["amount"] = record.amount
            entry["score"] = match["match_score"]
            summaries[match["entity_id"]].append(entry)
        for entries in summaries.values():
            entries.sort(key=lambda e: (-e["score"], e["id"]))
        return dict(summaries)
