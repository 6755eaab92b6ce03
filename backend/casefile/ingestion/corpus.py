"""Splitting the combined OCR text dump into documents.

The dump is one text file in which a line consisting only of a document
identifier (``EFTA`` followed by eight digits) starts a new document.
Lines before the first identifier are ignored, blank lines are dropped,
and an identifier that appears again (the OCR repeats some pages) is
skipped along with its text.
"""

from __future__ import annotations

import logging
import re
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Iterator

from casefile.db.repositories import DocumentRepo
from casefile.db.sqlite import SQLiteDB

logger = logging.getLogger(__name__)

DOC_ID_RE = re.compile(r"^EFTA\d{8}$")
DEFAULT_CORPUS_FILE = Path(
    "combined-all-epstein-files", "COMBINED_ALL_EPSTEIN_FILES_djvu.txt",
)

# Upper bound (inclusive) of the numeric id range of datasets 1-4.
_DATASET_BOUNDS = (3158, 3857, 5586, 8320)


@dataclass
class CorpusDocument:
    doc_id: str
    text: str


@dataclass
class CorpusLoadStats:
    loaded: int = 0
    duplicates: int = 0
    empty: int = 0

    def to_dict(self) -> dict[str, int]:
        return asdict(self)


def dataset_for_doc_id(doc_id: str) -> int:
    """Dataset partition (1-5) of a document id such as 'EFTA00003200'."""
    if not DOC_ID_RE.match(doc_id):
        raise ValueError(f"Not a document id: {doc_id!r}")
    number = int(doc_id[4:])
    for dataset, upper in enumerate(_DATASET_BOUNDS, start=1):
        if number <= upper:
            return dataset
    return len(_DATASET_BOUNDS) + 1


def read_corpus(path: Path, stats: CorpusLoadStats | None = None) -> Iterator[CorpusDocument]:
    """Yield documents from the combined dump in file order.

    Pass ``stats`` to have duplicate and empty documents counted.
    """
    seen: set[str] = set()
    current_id: str | None = None
    lines: list[str] = []

    def finish() -> CorpusDocument | None:
        if current_id is None:
            return None
        if current_id in seen:
            if stats is not None:
                stats.duplicates += 1
            return None
        if not lines:
            if stats is not None:
                stats.empty += 1
            return None
        seen.add(current_id)
        return CorpusDocument(doc_id=current_id, text="\n".join(lines))

    with path.open("r", encoding="utf-8", errors="replace") as fh:
        for raw in fh:
            line = raw.rstrip("\r\n")
            stripped = line.strip()
            if DOC_ID_RE.match(stripped):
                doc = finish()
                if doc is not None:
                    yield doc
                current_id = stripped
                lines = []
            elif current_id is not None and stripped:
                lines.append(line)

    doc = finish()
    if doc is not None:
        yield doc


def load_corpus(
    db: SQLiteDB, documents: DocumentRepo, path: Path, chunk_size: int = 500,
) -> CorpusLoadStats:
    """Insert every document of the dump, keyed by doc_id. Re-running is safe."""
    if not path.exists():
        raise FileNotFoundError(f"Corpus file not found: {path}")

    stats = CorpusLoadStats()
    pending: list[CorpusDocument] = []

    def flush() -> None:
        with db.transaction():
            for doc in pending:
                documents.insert(
                    doc.doc_id, dataset_for_doc_id(doc.doc_id),
                    full_text=doc.text, file_path=str(path), page_count=1,
                )
        stats.loaded += len(pending)
        pending.clear()
        logger.debug("Loaded %d documents so far", stats.loaded)

    for doc in read_corpus(path, stats):
        pending.append(doc)
        if len(pending) >= chunk_size:
            flush()
    if pending:
        flush()

    logger.info(
        "Corpus loaded from %s: %d documents, %d duplicate ids, %d empty",
        path.name, stats.loaded, stats.duplicates, stats.empty,
    )
    return stats
