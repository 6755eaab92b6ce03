"""Casefile persistence layer — SQLite schema, row models and repositories."""

from casefile.db.models import (
    CrossRefMatch,
    Document,
    DocumentEntity,
    Entity,
    PendingDocument,
    ReferenceRecord,
    Triple,
)
from casefile.db.repositories import (
    CrossRefRepo,
    DocumentRepo,
    EntityRepo,
    ReferenceRepo,
    TripleRepo,
)
from casefile.db.sqlite import SQLiteDB

__all__ = [
    "SQLiteDB",
    "Document",
    "PendingDocument",
    "Entity",
    "DocumentEntity",
    "Triple",
    "ReferenceRecord",
    "CrossRefMatch",
    "DocumentRepo",
    "EntityRepo",
    "TripleRepo",
    "ReferenceRepo",
    "CrossRefRepo",
]
