"""Pydantic models for the structured document analysis returned by the model.

Field aliases follow the camelCase keys the model is asked to produce;
models also accept the snake_case attribute names.
"""

from __future__ import annotations

import re
from datetime import date
from typing import Annotated, Any, Literal

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field

# Types the model may assign. 'unknown' exists only in storage.
ExtractedEntityType = Literal[
    "person", "organization", "location", "date", "reference", "financial",
]
SubjectType = Literal["person", "organization", "location"]

_ISO_DATE = re.compile(r"\d{4}-\d{2}-\d{2}")


def _iso_date_string(value: Any) -> Any:
    """Accept only null, a date, or a YYYY-MM-DD string; no epoch numbers."""
    if value is None or isinstance(value, date):
        return value
    if isinstance(value, str) and _ISO_DATE.fullmatch(value):
        return value
    raise ValueError(f"expected an ISO date (YYYY-MM-DD) or null, got {value!r}")


IsoDate = Annotated[date | None, BeforeValidator(_iso_date_string)]


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class ExtractedEntity(_CamelModel):
    """An entity mention as reported by the model."""

    name: str = Field(min_length=1)
    type: ExtractedEntityType
    context: str | None = None


class ExtractedTriple(_CamelModel):
    """A subject-predicate-object relationship as reported by the model."""

    subject: str = Field(min_length=1)
    subject_type: SubjectType = Field(alias="subjectType")
    predicate: str = Field(min_length=1)
    object: str = Field(min_length=1)
    object_type: ExtractedEntityType = Field(alias="objectType")
    location: str | None = None
    timestamp: str | None = None
    explicit_topic: str | None = Field(default=None, alias="explicitTopic")
    implicit_topic: str | None = Field(default=None, alias="implicitTopic")
    tags: list[str] = Field(default_factory=list)


class DocumentAnalysis(_CamelModel):
    """Full analysis of one document."""

    summary: str
    detailed_summary: str = Field(alias="detailedSummary")
    document_type: str = Field(alias="documentType")
    date_earliest: IsoDate = Field(alias="dateEarliest")
    date_latest: IsoDate = Field(alias="dateLatest")
    content_tags: list[str] = Field(alias="contentTags")
    entities: list[ExtractedEntity]
    triples: list[ExtractedTriple]


class AliasGroups(BaseModel):
    """Alias grouping answer: canonical name -> aliases."""

    groups: dict[str, list[str]]
