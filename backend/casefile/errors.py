"""Error kinds raised by the extraction and resolution pipeline."""

from __future__ import annotations

# Length of the raw-response excerpt kept on ResponseShapeInvalid.
RAW_EXCERPT_CHARS = 500


class CasefileError(Exception):
    """Base class for all pipeline errors."""


class ExtractionCallFailure(CasefileError):
    """The LLM call itself failed (network, timeout, provider error, no API key).

    Recorded on the document row; the document is not retried within the
    same run.
    """


class ResponseShapeInvalid(CasefileError):
    """The LLM answered, but not with JSON matching the expected shape.

    Carries a truncated excerpt of the raw response for diagnosis.
    """

    def __init__(self, message: str, raw: str = "") -> None:
        super().__init__(message)
        self.raw_excerpt = raw[:RAW_EXCERPT_CHARS]


class EntityConflict(CasefileError):
    """The atomic entity upsert did not yield exactly one row.

    Structurally impossible while the UNIQUE(canonical_name, entity_type)
    constraint and the upsert statement agree. Fatal to the run.
    """


class RootEntityMissing(CasefileError):
    """The layer pass ran before the root entity was seeded."""


class ClaimLost(CasefileError):
    """A document's claim was taken over by another worker before its result was written.

    The caller's transaction is rolled back; the current claim holder
    writes the result.
    """
