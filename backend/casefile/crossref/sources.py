"""Reference dataset definitions: loans, contributions, grants.

Each source names its table, the columns matching and summaries read,
the entity types it is matched against, and the display fields that go
into an entity's denormalized match summary.
"""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True)
class ReferenceSource:
    """Schema-specific description of one reference table."""

    kind: str  # ppp | fec | grants
    table: str
    name_column: str
    amount_column: str
    date_column: str
    entity_types: tuple[str, ...]
    summary_column: str
    # summary key -> table column, in output order (name first)
    display_fields: dict[str, str] = field(default_factory=dict)
    columns: tuple[str, ...] = ()


PPP = ReferenceSource(
    kind="ppp",
    table="ppp_loans",
    name_column="borrower_name",
    amount_column="loan_amount",
    date_column="date_approved",
    entity_types=("person", "organization"),
    summary_column="ppp_matches",
    display_fields={"borrower": "borrower_name"},
    columns=(
        "loan_number", "borrower_name", "borrower_address", "borrower_city",
        "borrower_state", "borrower_zip", "loan_amount", "loan_status",
        "forgiveness_amount", "lender", "naics_code", "business_type",
        "jobs_retained", "date_approved",
    ),
)

FEC = ReferenceSource(
    kind="fec",
    table="fec_contributions",
    name_column="contributor_name",
    amount_column="amount",
    date_column="contribution_date",
    entity_types=("person",),
    summary_column="fec_matches",
    display_fields={"contributor": "contributor_name", "candidate": "candidate_name"},
    columns=(
        "fec_id", "contributor_name", "contributor_city", "contributor_state",
        "contributor_zip", "contributor_employer", "contributor_occupation",
        "committee_id", "committee_name", "candidate_id", "candidate_name",
        "amount", "contribution_date", "contribution_type",
    ),
)

GRANTS = ReferenceSource(
    kind="grants",
    table="federal_grants",
    name_column="recipient_name",
    amount_column="award_amount",
    date_column="award_date",
    entity_types=("person", "organization"),
    summary_column="grants_matches",
    display_fields={"recipient": "recipient_name", "agency": "awarding_agency"},
    columns=(
        "award_id", "recipient_name", "recipient_city", "recipient_state",
        "recipient_zip", "awarding_agency", "funding_agency", "award_amount",
        "award_date", "description", "cfda_number", "cfda_title",
    ),
)

SOURCES: dict[str, ReferenceSource] = {s.kind: s for s in (PPP, FEC, GRANTS)}


def get_source(kind: str) -> ReferenceSource:
    """Look up a reference source by kind. Raises ValueError for unknown kinds."""
    try:
        return SOURCES[kind]
    except KeyError:
        raise ValueError(
            f"Unknown reference source '{kind}'. "
            f"Must be one of: {', '.join(sorted(SOURCES))}"
        ) from None
