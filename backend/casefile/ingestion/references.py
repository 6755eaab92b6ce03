"""Loading of loan, contribution and grant files into the reference tables.

Source files come from public bulk downloads whose headers vary between
releases ("BorrowerName", "borrower_name", "NAME", ...). Each source has a
column map from table column to accepted header spellings; headers are
compared case- and punctuation-insensitively.
"""

from __future__ import annotations

import logging
import re
from dataclasses import asdict, dataclass, field
from datetime import date, datetime
from pathlib import Path
from typing import Any

from casefile.crossref.similarity import normalize_name
from casefile.crossref.sources import ReferenceSource
from casefile.db.repositories import ReferenceRepo
from casefile.db.sqlite import SQLiteDB
from casefile.ingestion.parsers import read_rows

logger = logging.getLogger(__name__)

INSERT_CHUNK_ROWS = 5000

# table column -> accepted header spellings (after _header_key)
COLUMN_ALIASES: dict[str, dict[str, tuple[str, ...]]] = {
    "ppp": {
        "loan_number": ("loannumber",),
        "borrower_name": ("borrowername", "borrower", "name"),
        "borrower_address": ("borroweraddress", "address"),
        "borrower_city": ("borrowercity", "city"),
        "borrower_state": ("borrowerstate", "state"),
        "borrower_zip": ("borrowerzip", "zip", "zipcode"),
        "loan_amount": ("currentapprovalamount", "initialapprovalamount", "loanamount", "amount"),
        "loan_status": ("loanstatus",),
        "forgiveness_amount": ("forgivenessamount",),
        "lender": ("originatinglender", "servicinglendername", "lender"),
        "naics_code": ("naicscode",),
        "business_type": ("businesstype",),
        "jobs_retained": ("jobsreported", "jobsretained"),
        "date_approved": ("dateapproved", "approvaldate"),
    },
    "fec": {
        "fec_id": ("subid", "tranid", "fecid"),
        "contributor_name": ("contributorname", "contbrnm", "name"),
        "contributor_city": ("contributorcity", "city"),
        "contributor_state": ("contributorstate", "state"),
        "contributor_zip": ("contributorzip", "zipcode", "zip"),
        "contributor_employer": ("contributoremployer", "employer"),
        "contributor_occupation": ("contributoroccupation", "occupation"),
        "committee_id": ("committeeid", "cmteid"),
        "committee_name": ("committeename", "cmtenm"),
        "candidate_id": ("candidateid", "candid"),
        "candidate_name": ("candidatename", "candnm"),
        "amount": ("contributionreceiptamount", "transactionamt", "amount"),
        "contribution_date": ("contributionreceiptdate", "transactiondt", "contributiondate", "date"),
        "contribution_type": ("contributiontype", "transactiontp", "receipttype"),
    },
    "grants": {
        "award_id": ("awardid", "awardidfain", "fain"),
        "recipient_name": ("recipientname", "recipient"),
        "recipient_city": ("recipientcity", "recipientcityname"),
        "recipient_state": ("recipientstate", "recipientstatecode"),
        "recipient_zip": ("recipientzip", "recipientzipcode", "recipientzip4code"),
        "awarding_agency": ("awardingagency", "awardingagencyname"),
        "funding_agency": ("fundingagency", "fundingagencyname"),
        "award_amount": ("awardamount", "totalobligatedamount", "federalactionobligation"),
        "award_date": ("awarddate", "startdate", "periodofperformancestartdate", "actiondate"),
        "description": ("description", "awarddescription", "transactiondescription"),
        "cfda_number": ("cfdanumber", "assistancelistingnumber"),
        "cfda_title": ("cfdatitle", "assistancelistingtitle"),
    },
}

_AMOUNT_COLUMNS = {"loan_amount", "forgiveness_amount", "amount", "award_amount"}
_INTEGER_COLUMNS = {"jobs_retained"}
_DATE_COLUMNS = {"date_approved", "contribution_date", "award_date"}

_DATE_FORMATS = ("%Y-%m-%d", "%m/%d/%Y", "%m/%d/%y", "%m%d%Y", "%Y%m%d", "%d-%b-%y", "%Y-%m-%dT%H:%M:%S")


@dataclass
class ReferenceLoadStats:
    rows_read: int = 0
    inserted: int = 0
    skipped: int = 0
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def _header_key(header: str) -> str:
    return re.sub(r"[^a-z0-9]", "", str(header).lower())


def resolve_columns(source: ReferenceSource, headers: list[str]) -> dict[str, str]:
    """Map each table column to the file header supplying it (first alias present)."""
    by_key: dict[str, str] = {}
    for header in headers:
        by_key.setdefault(_header_key(header), header)
    mapping: dict[str, str] = {}
    for column in source.columns:
        spellings = (_header_key(column),) + COLUMN_ALIASES[source.kind].get(column, ())
        for spelling in spellings:
            if spelling in by_key:
                mapping[column] = by_key[spelling]
                break
    return mapping


def parse_amount(value: Any) -> float | None:
    """'$1,234.50' -> 1234.5; blanks and junk -> None."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    text = str(value).strip().replace("$", "").replace(",", "")
    if text.startswith("(") and text.endswith(")"):
        text = "-" + text[1:-1]
    try:
        return float(text) if text else None
    except ValueError:
        return None


def parse_date(value: Any) -> str | None:
    """Coerce the date spellings seen in bulk files to ISO 'YYYY-MM-DD'."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    text = str(value).strip()
    if not text:
        return None
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).date().isoformat()
        except ValueError:
            continue
    return None


def _coerce(column: str, value: Any) -> Any:
    if column in _AMOUNT_COLUMNS:
        return parse_amount(value)
    if column in _DATE_COLUMNS:
        return parse_date(value)
    if column in _INTEGER_COLUMNS:
        amount = parse_amount(value)
        return int(amount) if amount is not None else None
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def map_row(source: ReferenceSource, mapping: dict[str, str], row: dict[str, Any]) -> dict[str, Any]:
    """Translate one file row to table columns, including normalized_name."""
    mapped = {column: _coerce(column, row.get(header)) for column, header in mapping.items()}
    name = mapped.get(source.name_column)
    mapped["normalized_name"] = normalize_name(name) if name else None
    return mapped


def load_reference_file(
    db: SQLiteDB,
    references: ReferenceRepo,
    source: ReferenceSource,
    path: Path,
    file_type: str | None = None,
) -> ReferenceLoadStats:
    """Load one reference file into the source's table.

    Raises
    ------
    ValueError
        The file has no column that maps to the source's name column.
    """
    stats = ReferenceLoadStats()
    stream = read_rows(path, file_type)
    mapping: dict[str, str] | None = None
    chunk: list[dict[str, Any]] = []

    def flush() -> None:
        with db.transaction():
            stats.inserted += references.insert_rows(source, chunk)
        chunk.clear()

    for row in stream:
        stats.rows_read += 1
        if mapping is None:
            mapping = resolve_columns(source, stream.column_names or list(row))
            if source.name_column not in mapping:
                raise ValueError(
                    f"{path.name}: no column maps to {source.name_column} "
                    f"(headers: {', '.join(stream.column_names or list(row))})"
                )
            logger.debug("Column mapping for %s: %s", path.name, mapping)
        mapped = map_row(source, mapping, row)
        if not mapped.get(source.name_column):
            stats.skipped += 1
            stream.warn(f"Row {stats.rows_read}: no {source.name_column}, skipped")
            continue
        chunk.append(mapped)
        if len(chunk) >= INSERT_CHUNK_ROWS:
            flush()
    if chunk:
        flush()

    stats.warnings = list(stream.warnings)
    if stream.warning_count:
        logger.warning(
            "%s: %d warning(s) while loading %s", path.name, stream.warning_count, source.table,
        )
    logger.info(
        "Loaded %s into %s: %d rows read, %d inserted, %d skipped",
        path.name, source.table, stats.rows_read, stats.inserted, stats.skipped,
    )
    return stats
