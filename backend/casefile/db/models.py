"""Pydantic models matching the SQLite table schemas.

Repositories return plain row dicts; these models are used where a pass
loads rows into memory and wants typed access (JSON columns decoded).
"""

import json
from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field

EntityType = Literal[
    "person", "organization", "location", "date", "reference", "financial", "unknown",
]
ENTITY_TYPES: frozenset[str] = frozenset(
    {"person", "organization", "location", "date", "reference", "financial", "unknown"}
)

AnalysisStatus = Literal["pending", "processing", "complete", "failed"]
MatchSource = Literal["ppp", "fec", "grants"]


def _decode_json(value: Any, default: Any) -> Any:
    if value is None:
        return default
    if isinstance(value, (list, dict)):
        return value
    try:
        return json.loads(value)
    except (json.JSONDecodeError, TypeError):
        return default


class PendingDocument(BaseModel):
    """A document row handed from the corpus reader to the orchestrator."""

    id: int
    doc_id: str
    text: str


class Document(BaseModel):
    """An OCR'd corpus document and its analysis state."""

    id: int
    doc_id: str
    dataset_id: int
    file_path: str | None = None
    full_text: str | None = None
    page_count: int | None = None
    summary: str | None = None
    detailed_summary: str | None = None
    document_type: str | None = None
    date_earliest: str | None = None
    date_latest: str | None = None
    content_tags: list[str] = Field(default_factory=list)
    analysis_status: AnalysisStatus = "pending"
    error_message: str | None = None
    claimed_at: datetime | None = None
    analyzed_at: datetime | None = None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "Document":
        data = dict(row)
        data["content_tags"] = _decode_json(row.get("content_tags"), [])
        return cls.model_validate(data)


class Entity(BaseModel):
    """A canonical entity."""

    id: int
    canonical_name: str
    entity_type: EntityType
    layer: int | None = None
    aliases: list[str] = Field(default_factory=list)
    attributes: dict[str, Any] = Field(default_factory=dict)
    description: str | None = None
    ppp_matches: list[dict[str, Any]] = Field(default_factory=list)
    fec_matches: list[dict[str, Any]] = Field(default_factory=list)
    grants_matches: list[dict[str, Any]] = Field(default_factory=list)
    document_count: int = 0
    connection_count: int = 0

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "Entity":
        data = dict(row)
        data["aliases"] = _decode_json(row.get("aliases"), [])
        data["attributes"] = _decode_json(row.get("attributes"), {})
        for column in ("ppp_matches", "fec_matches", "grants_matches"):
            data[column] = _decode_json(row.get(column), [])
        return cls.model_validate(data)


class DocumentEntity(BaseModel):
    """Membership of an entity in a document."""

    document_id: int
    entity_id: int
    mention_count: int = 1
    context_snippet: str | None = None


class Triple(BaseModel):
    """A subject-predicate-object relationship scoped to one document."""

    id: int
    document_id: int
    subject_id: int
    predicate: str
    object_id: int
    location_id: int | None = None
    timestamp: str | None = None
    explicit_topic: str | None = None
    implicit_topic: str | None = None
    tags: list[str] = Field(default_factory=list)
    sequence_order: int

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "Triple":
        data = dict(row)
        data["tags"] = _decode_json(row.get("tags"), [])
        return cls.model_validate(data)


class ReferenceRecord(BaseModel):
    """A row from one of the reference tables, reduced to what matching needs.

    ``display`` holds the source-specific summary fields (borrower,
    candidate, agency, ...).
    """

    id: int
    source: MatchSource
    name: str
    amount: float | None = None
    date: str | None = None
    display: dict[str, Any] = Field(default_factory=dict)


class CrossRefMatch(BaseModel):
    """A scored candidate match between an entity and a reference record."""

    id: int
    entity_id: int
    source: MatchSource
    source_id: int
    match_score: float
    match_method: str | None = None
    verified: bool = False
    false_positive: bool = False
    verified_at: datetime | None = None
    verified_by: str | None = None
