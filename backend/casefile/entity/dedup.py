"""Offline alias grouping pass.

Names of one entity type are pre-clustered with the pairwise resolver,
plausible clusters are sent to the language model for conservative
grouping, and the answer is applied as alias decisions. Distinct entity
rows are never merged: when the model groups two existing entities, the
decision is recorded as 'proposed' for a human to review.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Protocol

from casefile.config import Settings
from casefile.db.repositories import EntityRepo
from casefile.db.sqlite import SQLiteDB
from casefile.entity.batch import cluster_names
from casefile.entity.canonicalizer import clean_name
from casefile.entity.pairwise import compare_names

logger = logging.getLogger(__name__)

# Names sent to the model per call.
GROUPING_BATCH_NAMES = 100


class AliasGroupingClient(Protocol):
    async def group_aliases(
        self, names: list[str], entity_type: str,
    ) -> dict[str, list[str]]: ...


@dataclass
class AliasDecision:
    """Outcome for one (canonical, alias) pair."""

    canonical: str
    alias: str
    status: str  # applied | proposed | skipped
    confidence: float
    reasoning: str
    entity_id: int | None = None


class AliasGrouper:
    """LLM-assisted grouping of surface forms under canonical names."""

    def __init__(
        self,
        db: SQLiteDB,
        entities: EntityRepo,
        client: AliasGroupingClient,
        settings: Settings,
    ) -> None:
        self._db = db
        self._entities = entities
        self._client = client
        self._min_confidence = settings.DEDUP_MIN_CONFIDENCE

    async def group(self, names: list[str], entity_type: str) -> dict[str, list[str]]:
        """Group names into {canonical: [aliases]}.

        Raises
        ------
        ResponseShapeInvalid
            The model's answer is not a mapping of names to name lists.
        ExtractionCallFailure
            The model call failed.
        """
        clustered = cluster_names(names, entity_type, threshold=self._min_confidence)
        if not clustered.clusters:
            logger.info("No candidate clusters among %d %s names", len(names), entity_type)
            return {}

        batches: list[list[str]] = [[]]
        for cluster in clustered.clusters:
            # oversized clusters are split; the model sees each part separately
            for start in range(0, len(cluster), GROUPING_BATCH_NAMES):
                part = cluster[start:start + GROUPING_BATCH_NAMES]
                if batches[-1] and len(batches[-1]) + len(part) > GROUPING_BATCH_NAMES:
                    batches.append([])
                batches[-1].extend(part)

        groups: dict[str, list[str]] = {}
        for batch in batches:
            answer = await self._client.group_aliases(batch, entity_type)
            for canonical, aliases in answer.items():
                merged = groups.setdefault(canonical, [])
                merged.extend(a for a in aliases if a not in merged)
        logger.info(
            "Grouped %d %s names in %d clusters into %d groups",
            len(names), entity_type, len(clustered.clusters), len(groups),
        )
        return groups

    def apply(self, groups: dict[str, list[str]], entity_type: str) -> list[AliasDecision]:
        """Record alias decisions for a grouping answer. Returns every decision made."""
        canonicals = {clean_name(c) for c in groups}
        grouped_aliases = {
            clean_name(a) for c, aliases in groups.items() for a in aliases
            if clean_name(a) != clean_name(c)
        }
        decisions: list[AliasDecision] = []

        for raw_canonical, aliases in groups.items():
            canonical = clean_name(raw_canonical)
            row = self._entities.get_by_name(canonical, entity_type)
            if row is None:
                logger.warning("Skipping group: canonical %r is not a known %s", canonical, entity_type)
                continue
            if canonical in grouped_aliases:
                logger.warning("Skipping group: canonical %r is an alias elsewhere", canonical)
                continue

            with self._db.transaction():
                for raw_alias in aliases:
                    decision = self._decide(row["id"], canonical, clean_name(raw_alias),
                                            entity_type, canonicals)
                    if decision is not None:
                        decisions.append(decision)

        applied = sum(1 for d in decisions if d.status == "applied")
        proposed = sum(1 for d in decisions if d.status == "proposed")
        logger.info(
            "Alias grouping for %s: %d applied, %d proposed, %d skipped",
            entity_type, applied, proposed, len(decisions) - applied - proposed,
        )
        return decisions

    def _decide(
        self,
        entity_id: int,
        canonical: str,
        alias: str,
        entity_type: str,
        canonicals: set[str],
    ) -> AliasDecision | None:
        if not alias or alias == canonical:
            return None
        if alias in canonicals:
            logger.warning("Skipping alias %r of %r: it is a canonical elsewhere", alias, canonical)
            return AliasDecision(canonical, alias, "skipped", 0.0, "alias is a canonical name",
                                 entity_id)

        match = compare_names(alias, canonical, entity_type=entity_type)
        confidence = round(match.score, 4)
        reasoning = match.describe()
        if confidence < self._min_confidence:
            logger.warning("Skipping alias %r of %r: %s", alias, canonical, reasoning)
            return AliasDecision(canonical, alias, "skipped", confidence, reasoning, entity_id)

        existing = self._entities.get_by_name(alias, entity_type)
        if existing is not None and existing["id"] != entity_id:
            status = "proposed"
            reasoning = f"{reasoning}; '{alias}' is a separate entity (#{existing['id']})"
        else:
            status = "applied"
            self._entities.merge_aliases(entity_id, [alias])

        self._entities.record_alias_decision(
            entity_id, alias, confidence, "llm_dedup", status, reasoning,
        )
        return AliasDecision(canonical, alias, status, confidence, reasoning, entity_id)

    async def run(self, entity_type: str, limit: int | None = None) -> list[AliasDecision]:
        """Group and apply for the ``limit`` most-mentioned names of one type."""
        names = self._entities.list_names(entity_type, limit=limit)
        groups = await self.group(names, entity_type)
        return self.apply(groups, entity_type)
