"""Prompts for document extraction and alias grouping."""

EXTRACTION_SYSTEM_PROMPT = """\
You are an expert document analyst specializing in legal documents, financial
records, and correspondence. Your task is to extract structured information from
documents related to the Jeffrey Epstein case.

Extract the following:

1. Entities: all people, organizations, locations, dates, document references,
   and financial amounts mentioned.
2. Relationships (triples): subject-predicate-object relationships between entities.
3. Document analysis: summary, type classification, date range, and content tags.

Be thorough but precise. If information is unclear or partially redacted, note what
you can determine. Focus on factual extraction, not interpretation.

IMPORTANT:
- Normalize names where possible (e.g., "J. Epstein" -> "Jeffrey Epstein" if
  context confirms)
- Include context snippets for important entities
- Extract temporal information when available
- Tag relationships with relevant categories (legal, financial, travel, social, etc.)
"""

EXTRACTION_USER_TEMPLATE = """\
Analyze this document and extract structured information.

<document>
{text}
</document>

Respond with a JSON object matching this schema:
{{
  "summary": "One sentence summary of the document",
  "detailedSummary": "A paragraph explaining the document's content and significance",
  "documentType": "Type of document (e.g., deposition, email, financial record, flight log, etc.)",
  "dateEarliest": "YYYY-MM-DD or null if no dates",
  "dateLatest": "YYYY-MM-DD or null if no dates",
  "contentTags": ["tag1", "tag2", ...],
  "entities": [
    {{"name": "Full Name", "type": "person|organization|location|date|reference|financial", "context": "brief context"}}
  ],
  "triples": [
    {{
      "subject": "Entity Name",
      "subjectType": "person|organization|location",
      "predicate": "action/relationship verb",
      "object": "Entity Name",
      "objectType": "person|organization|location|date|reference|financial",
      "location": "where (optional)",
      "timestamp": "YYYY-MM-DD (optional)",
      "explicitTopic": "stated subject matter (optional)",
      "implicitTopic": "inferred subject matter (optional)",
      "tags": ["legal", "financial", "travel", etc.]
    }}
  ]
}}

Return ONLY valid JSON, no markdown or explanation."""

DEDUP_SYSTEM_PROMPT = """\
You are an expert at identifying when different name variations refer to the same
entity. Given a list of entity names, group them by the actual entity they refer to.

Consider:
- Name variations (J. Smith, John Smith, John Q. Smith)
- Nicknames and aliases
- Organizational name variations (LLC vs Inc)
- Typos and OCR errors

Be conservative - only merge entities when you're confident they're the same.
"""

DEDUP_USER_TEMPLATE = """\
Group these {entity_type} names by the actual entity they refer to. Return a JSON
object where keys are canonical names and values are arrays of aliases. Use a name
from the list as the canonical name.

Entities:
{names}

Return JSON like:
{{
  "Jeffrey Epstein": ["J. Epstein", "Epstein", "Jeffrey E. Epstein"],
  "Ghislaine Maxwell": ["G. Maxwell", "Maxwell"]
}}

Return ONLY valid JSON."""


def build_extraction_prompt(text: str) -> str:
    return EXTRACTION_USER_TEMPLATE.format(text=text)


def build_dedup_prompt(names: list[str], entity_type: str) -> str:
    listed = "\n".join(f"- {name}" for name in names)
    return DEDUP_USER_TEMPLATE.format(entity_type=entity_type, names=listed)
