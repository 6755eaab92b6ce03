"""Language-model client for document extraction and alias grouping.

Wraps the Anthropic Messages API. The SDK client is created lazily on
first use, so a missing API key surfaces as an extraction failure of the
first document rather than a startup error. Tests inject a fake client
exposing ``messages.create``.
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
import time
from dataclasses import dataclass
from typing import Any, Union

import anthropic
from pydantic import ValidationError

from casefile.config import Settings
from casefile.errors import ExtractionCallFailure, ResponseShapeInvalid
from casefile.extraction.prompts import (
    DEDUP_SYSTEM_PROMPT,
    EXTRACTION_SYSTEM_PROMPT,
    build_dedup_prompt,
    build_extraction_prompt,
)
from casefile.extraction.schema import AliasGroups, DocumentAnalysis
from casefile.security import sanitize_log_entry

logger = logging.getLogger(__name__)

TRUNCATION_MARKER = "\n\n[TRUNCATED - document continues...]"
DEDUP_MAX_TOKENS = 4096

_JSON_OBJECT_RE = re.compile(r"\{[\s\S]*\}")


# -- Result variants ----------------------------------------------------------

@dataclass
class AnalysisOk:
    analysis: DocumentAnalysis
    truncated: bool = False


@dataclass
class SchemaError:
    message: str
    raw_excerpt: str = ""


@dataclass
class CallError:
    message: str


ExtractionResult = Union[AnalysisOk, SchemaError, CallError]


def truncate_text(text: str, max_chars: int) -> tuple[str, bool]:
    """Cut text to ``max_chars`` and append the marker. Returns (text, truncated)."""
    if len(text) <= max_chars:
        return text, False
    return text[:max_chars] + TRUNCATION_MARKER, True


def parse_json_object(raw: str) -> Any:
    """Extract the outermost JSON object from a response, tolerating markdown fences."""
    match = _JSON_OBJECT_RE.search(raw)
    if match is None:
        raise ResponseShapeInvalid("No JSON object found in response", raw=raw)
    try:
        return json.loads(match.group(0))
    except json.JSONDecodeError as exc:
        raise ResponseShapeInvalid(f"JSON parse error: {exc}", raw=raw) from exc


class ExtractionClient:
    """Turns document text into a validated DocumentAnalysis.

    Parameters
    ----------
    settings : Settings
        Provides the API key, model, token limit, timeout and text budget.
    client : object, optional
        An ``anthropic.AsyncAnthropic``-compatible client. Created from
        the settings on first use when omitted.
    """

    def __init__(self, settings: Settings, client: Any = None) -> None:
        self._settings = settings
        self._client = client

    def _get_client(self) -> Any:
        """Lazily initialize the anthropic client."""
        if self._client is None:
            if not self._settings.ANTHROPIC_API_KEY:
                raise ExtractionCallFailure("ANTHROPIC_API_KEY is not configured")
            self._client = anthropic.AsyncAnthropic(
                api_key=self._settings.ANTHROPIC_API_KEY,
            )
        return self._client

    async def _complete(
        self, operation: str, subject: str, system: str, prompt: str, max_tokens: int,
    ) -> str:
        """One Messages API call. Returns the text of the first content block."""
        client = self._get_client()
        started = time.monotonic()
        outcome = "FAIL"
        try:
            response = await asyncio.wait_for(
                client.messages.create(
                    model=self._settings.LLM_MODEL,
                    max_tokens=max_tokens,
                    system=system,
                    messages=[{"role": "user", "content": prompt}],
                ),
                timeout=self._settings.LLM_TIMEOUT_SECONDS,
            )
            outcome = "OK"
        except asyncio.TimeoutError as exc:
            outcome = "TIMEOUT"
            raise ExtractionCallFailure(
                f"Model call timed out after {self._settings.LLM_TIMEOUT_SECONDS:.0f}s"
            ) from exc
        except (anthropic.APIError, OSError) as exc:
            raise ExtractionCallFailure(f"Model call failed: {exc}") from exc
        finally:
            duration_ms = (time.monotonic() - started) * 1000
            logger.debug(sanitize_log_entry(operation, subject, duration_ms, outcome))

        if not response.content:
            raise ResponseShapeInvalid("Empty response content")
        block = response.content[0]
        if block.type != "text":
            raise ResponseShapeInvalid(f"Unexpected response block type: {block.type}")
        return block.text

    async def analyze(self, doc_id: str, text: str) -> DocumentAnalysis:
        """Analyze one document.

        Raises
        ------
        ExtractionCallFailure
            Transport, provider, timeout or configuration failure.
        ResponseShapeInvalid
            The response is not JSON or does not match DocumentAnalysis.
        """
        prompt_text, _ = truncate_text(text, self._settings.MAX_EXTRACTION_CHARS)
        raw = await self._complete(
            "extract", doc_id, EXTRACTION_SYSTEM_PROMPT,
            build_extraction_prompt(prompt_text), self._settings.LLM_MAX_TOKENS,
        )
        parsed = parse_json_object(raw)
        try:
            return DocumentAnalysis.model_validate(parsed)
        except ValidationError as exc:
            raise ResponseShapeInvalid(
                f"Response does not match the analysis schema: "
                f"{exc.error_count()} validation error(s)",
                raw=raw,
            ) from exc

    async def extract(self, doc_id: str, text: str) -> ExtractionResult:
        """Like analyze(), but returns a result variant instead of raising."""
        try:
            analysis = await self.analyze(doc_id, text)
        except ResponseShapeInvalid as exc:
            logger.debug("Response excerpt for %s: %r", doc_id, exc.raw_excerpt)
            return SchemaError(message=str(exc), raw_excerpt=exc.raw_excerpt)
        except ExtractionCallFailure as exc:
            return CallError(message=str(exc))
        return AnalysisOk(
            analysis=analysis,
            truncated=len(text) > self._settings.MAX_EXTRACTION_CHARS,
        )

    async def group_aliases(self, names: list[str], entity_type: str) -> dict[str, list[str]]:
        """Ask the model to group surface forms as {canonical: [aliases]}."""
        raw = await self._complete(
            "dedup", f"{entity_type}x{len(names)}", DEDUP_SYSTEM_PROMPT,
            build_dedup_prompt(names, entity_type), DEDUP_MAX_TOKENS,
        )
        parsed = parse_json_object(raw)
        try:
            return AliasGroups.model_validate({"groups": parsed}).groups
        except ValidationError as exc:
            raise ResponseShapeInvalid(
                "Alias grouping response is not a mapping of names to name lists",
                raw=raw,
            ) from exc
