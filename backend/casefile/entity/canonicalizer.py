"""Entity canonicalization: surface name + type -> canonical entity id.

Resolution is a single atomic upsert per name, so concurrent workers (or
separate processes sharing the database file) that see the same name
end up with the same row.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field

from casefile.db.models import ENTITY_TYPES
from casefile.db.repositories import EntityRepo, TripleRepo
from casefile.extraction.schema import DocumentAnalysis

logger = logging.getLogger(__name__)

_WHITESPACE_RE = re.compile(r"\s+")


def clean_name(name: str) -> str:
    """Trim and collapse internal whitespace."""
    return _WHITESPACE_RE.sub(" ", name).strip()


@dataclass
class ResolvedDocument:
    """What resolve_analysis() wrote for one document."""

    entity_ids: dict[str, int] = field(default_factory=dict)  # lower-cased name -> id
    triple_ids: list[int] = field(default_factory=list)

    @property
    def entity_count(self) -> int:
        return len(set(self.entity_ids.values()))


class EntityCanonicalizer:
    """Resolves raw names to canonical entities and links them to documents."""

    def __init__(self, entities: EntityRepo, triples: TripleRepo) -> None:
        self._entities = entities
        self._triples = triples

    def resolve(self, name: str, entity_type: str, alias: str | None = None) -> int:
        """Return the id of the canonical entity for (name, type), creating it if needed.

        Parameters
        ----------
        name : str
            Surface form as observed. Cleaned before lookup.
        entity_type : str
            One of the stored entity types.
        alias : str, optional
            Another name for the entity, merged into its alias set.

        Raises
        ------
        ValueError
            Empty name or unknown type.
        EntityConflict
            The upsert did not yield a row.
        """
        if entity_type not in ENTITY_TYPES:
            raise ValueError(f"Invalid entity type '{entity_type}'")
        canonical = clean_name(name or "")
        if not canonical:
            raise ValueError("Entity name must not be empty")

        aliases: list[str] = []
        if alias:
            cleaned_alias = clean_name(alias)
            if cleaned_alias and cleaned_alias != canonical:
                aliases.append(cleaned_alias)
        return self._entities.upsert(canonical, entity_type, aliases=aliases)

    def link(
        self,
        entity_id: int,
        document_id: int,
        mention_delta: int = 1,
        snippet: str | None = None,
    ) -> None:
        """Record that the entity appears in the document (increment if already linked)."""
        self._entities.link_document(entity_id, document_id, mention_delta, snippet)

    def resolve_analysis(self, document_id: int, analysis: DocumentAnalysis) -> ResolvedDocument:
        """Persist entities, memberships and triples of one analyzed document.

        Entity ids are cached per document by lower-cased surface name, so a
        triple endpoint that was listed among the entities reuses its id.
        Endpoints the model did not list are resolved and linked as well.
        The caller owns the transaction.
        """
        resolved = ResolvedDocument()

        for entity in analysis.entities:
            key = entity.name.strip().lower()
            if not key:
                continue
            entity_id = self.resolve(entity.name, entity.type)
            resolved.entity_ids[key] = entity_id
            self.link(entity_id, document_id, 1, entity.context)

        def endpoint(name: str, entity_type: str) -> int:
            key = name.strip().lower()
            if key in resolved.entity_ids:
                return resolved.entity_ids[key]
            entity_id = self.resolve(name, entity_type)
            resolved.entity_ids[key] = entity_id
            self.link(entity_id, document_id, 1, None)
            return entity_id

        for order, triple in enumerate(analysis.triples):
            subject_id = endpoint(triple.subject, triple.subject_type)
            object_id = endpoint(triple.object, triple.object_type)
            location_id = None
            if triple.location and triple.location.strip():
                location_id = endpoint(triple.location, "location")
            triple_id = self._triples.insert(
                document_id=document_id,
                subject_id=subject_id,
                predicate=triple.predicate,
                object_id=object_id,
                sequence_order=order,
                location_id=location_id,
                timestamp=triple.timestamp,
                explicit_topic=triple.explicit_topic,
                implicit_topic=triple.implicit_topic,
                tags=triple.tags,
            )
            resolved.triple_ids.append(triple_id)

        logger.debug(
            "Document %d: %d entities, %d triples",
            document_id, resolved.entity_count, len(resolved.triple_ids),
        )
        return resolved
