"""Command-line entry point for the Casefile pipeline.

Wires together the persistence layer, the model client and the batch
passes. Each command prints a JSON summary on stdout:

    python -m casefile.main init
    python -m casefile.main load-corpus [PATH]
    python -m casefile.main load-references {ppp,fec,grants} PATH
    python -m casefile.main extract [--batch-size N] [--workers N]
    python -m casefile.main dedup --type person [--limit N]
    python -m casefile.main crossref [--source ppp]
    python -m casefile.main layers
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import signal
import sys
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Sequence

from casefile.config import Settings
from casefile.crossref.matcher import CrossReferenceMatcher
from casefile.crossref.sources import SOURCES, get_source
from casefile.db.repositories import (
    CrossRefRepo,
    DocumentRepo,
    EntityRepo,
    ReferenceRepo,
    TripleRepo,
)
from casefile.db.sqlite import SQLiteDB
from casefile.entity.canonicalizer import EntityCanonicalizer
from casefile.entity.dedup import AliasGrouper
from casefile.errors import CasefileError
from casefile.extraction.client import ExtractionClient
from casefile.extraction.orchestrator import ExtractionOrchestrator
from casefile.graph.cooccurrence import load_cooccurrence_graph, refresh_entity_stats
from casefile.graph.layers import LayerClassifier
from casefile.ingestion.corpus import DEFAULT_CORPUS_FILE, load_corpus
from casefile.ingestion.references import load_reference_file
from casefile.security import secure_directory, secure_file

logger = logging.getLogger(__name__)


@dataclass
class Repositories:
    """Container for all repository instances sharing one connection."""

    documents: DocumentRepo
    entities: EntityRepo
    triples: TripleRepo
    references: ReferenceRepo
    crossrefs: CrossRefRepo


def open_database(settings: Settings) -> SQLiteDB:
    """Open (and create if needed) the database inside a private data directory."""
    data_dir = Path(settings.DATABASE_DIR)
    secure_directory(data_dir)
    db = SQLiteDB(settings.database_path)
    secure_file(Path(settings.database_path))
    return db


def build_repositories(db: SQLiteDB) -> Repositories:
    return Repositories(
        documents=DocumentRepo(db),
        entities=EntityRepo(db),
        triples=TripleRepo(db),
        references=ReferenceRepo(db),
        crossrefs=CrossRefRepo(db),
    )


def seed_root(repos: Repositories, settings: Settings) -> int:
    return repos.entities.seed_root(
        settings.ROOT_ENTITY_NAME, settings.ROOT_ENTITY_TYPE, settings.ROOT_ENTITY_ALIASES,
    )


# -- Commands -----------------------------------------------------------------


def cmd_init(args: argparse.Namespace, settings: Settings, db: SQLiteDB, repos: Repositories) -> dict[str, Any]:
    root_id = seed_root(repos, settings)
    return {"database": db.path, "root_entity_id": root_id}


def cmd_load_corpus(args: argparse.Namespace, settings: Settings, db: SQLiteDB, repos: Repositories) -> dict[str, Any]:
    path = Path(args.path) if args.path else Path(settings.DATA_DIR) / DEFAULT_CORPUS_FILE
    stats = load_corpus(db, repos.documents, path)
    return {"path": str(path), **stats.to_dict(), "status": repos.documents.status_counts()}


def cmd_load_references(args: argparse.Namespace, settings: Settings, db: SQLiteDB, repos: Repositories) -> dict[str, Any]:
    source = get_source(args.source)
    stats = load_reference_file(db, repos.references, source, Path(args.path), args.file_type)
    result = stats.to_dict()
    result["warnings"] = result["warnings"][:10]
    return {"source": source.kind, **result, "total": repos.references.count(source)}


def cmd_extract(args: argparse.Namespace, settings: Settings, db: SQLiteDB, repos: Repositories) -> dict[str, Any]:
    canonicalizer = EntityCanonicalizer(repos.entities, repos.triples)
    orchestrator = ExtractionOrchestrator(
        db,
        repos.documents,
        canonicalizer,
        ExtractionClient(settings),
        settings,
        batch_size=args.batch_size,
        max_workers=args.workers,
    )

    async def run() -> dict[str, int]:
        loop = asyncio.get_running_loop()
        try:
            loop.add_signal_handler(signal.SIGINT, orchestrator.stop)
            loop.add_signal_handler(signal.SIGTERM, orchestrator.stop)
        except (NotImplementedError, RuntimeError):
            # Signal handlers are unavailable off the main thread and on Windows.
            pass
        stats = await orchestrator.run()
        return stats.to_dict()

    return {**asyncio.run(run()), "status": repos.documents.status_counts()}


def cmd_dedup(args: argparse.Namespace, settings: Settings, db: SQLiteDB, repos: Repositories) -> dict[str, Any]:
    grouper = AliasGrouper(db, repos.entities, ExtractionClient(settings), settings)
    decisions = asyncio.run(grouper.run(args.type, limit=args.limit))
    by_status: dict[str, int] = {}
    for decision in decisions:
        by_status[decision.status] = by_status.get(decision.status, 0) + 1
    return {
        "entity_type": args.type,
        "decisions": by_status,
        "proposed": [asdict(d) for d in decisions if d.status == "proposed"][:20],
    }


def cmd_crossref(args: argparse.Namespace, settings: Settings, db: SQLiteDB, repos: Repositories) -> dict[str, Any]:
    matcher = CrossReferenceMatcher(repos.entities, repos.references, repos.crossrefs, settings)
    return matcher.run([args.source] if args.source else None)


def cmd_layers(args: argparse.Namespace, settings: Settings, db: SQLiteDB, repos: Repositories) -> dict[str, Any]:
    graph = load_cooccurrence_graph(repos.entities)
    counts = LayerClassifier(repos.entities, settings).run(graph)
    refreshed = refresh_entity_stats(repos.entities, graph)
    return {
        "layers": {str(layer): n for layer, n in counts.items()},
        "entities": refreshed,
        "edges": graph.number_of_edges(),
    }


COMMANDS = {
    "init": cmd_init,
    "load-corpus": cmd_load_corpus,
    "load-references": cmd_load_references,
    "extract": cmd_extract,
    "dedup": cmd_dedup,
    "crossref": cmd_crossref,
    "layers": cmd_layers,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="casefile",
        description="Entity extraction, resolution and cross-referencing over an OCR corpus",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("init", help="create the schema and seed the root entity")

    corpus = sub.add_parser("load-corpus", help="load the combined OCR text dump")
    corpus.add_argument("path", nargs="?", help="defaults to the dump under DATA_DIR")

    refs = sub.add_parser("load-references", help="load a loan, contribution or grant file")
    refs.add_argument("source", choices=sorted(SOURCES))
    refs.add_argument("path")
    refs.add_argument("--file-type", choices=["csv", "json", "jsonl", "xlsx"])

    extract = sub.add_parser("extract", help="run model extraction over pending documents")
    extract.add_argument("--batch-size", type=int)
    extract.add_argument("--workers", type=int)

    dedup = sub.add_parser("dedup", help="group aliases of one entity type")
    dedup.add_argument("--type", required=True,
                       choices=["person", "organization", "location", "financial", "reference"])
    dedup.add_argument("--limit", type=int, default=500)

    crossref = sub.add_parser("crossref", help="match entities against reference tables")
    crossref.add_argument("--source", choices=sorted(SOURCES))

    sub.add_parser("layers", help="classify layers and refresh entity statistics")
    return parser


def main(argv: Sequence[str] | None = None, settings: Settings | None = None) -> int:
    args = build_parser().parse_args(argv)
    settings = settings or Settings()
    logging.basicConfig(
        level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    db = open_database(settings)
    try:
        repos = build_repositories(db)
        if args.command != "init":
            # The root must exist before anything can be layered against it.
            seed_root(repos, settings)
        result = COMMANDS[args.command](args, settings, db, repos)
    except (CasefileError, FileNotFoundError, ValueError) as exc:
        logger.error("%s failed: %s", args.command, exc)
        print(json.dumps({"command": args.command, "error": str(exc)}))
        return 1
    finally:
        db.close()

    print(json.dumps({"command": args.command, **result}, indent=2, default=str))
    return 0


if __name__ == "__main__":
    sys.exit(main())
