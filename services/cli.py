"""Command line interface for the standards catalog.

Every command prints JSON on stdout; logs go to stderr.

    gov-standards ingest pages.jsonl
    gov-standards search "api authentication" --category APIs
    gov-standards get guidance-gdsapitechnicalanddatastandards-1a2b3c4d
"""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any, Iterator, List, Optional

from pydantic import ValidationError

from config.settings import CatalogConfig
from indexer.document_store import DocumentStoreError
from indexer.hybrid import HybridOptions
from observability.logging import setup_logging
from services.catalog import StandardsCatalog
from services.shared.models import RawPage

logger = logging.getLogger(__name__)


def _emit(payload: Any):
    json.dump(payload, sys.stdout, indent=2, default=str)
    sys.stdout.write("\n")


def read_pages(path: Path) -> Iterator[RawPage]:
    """Yield crawler records from a JSON lines file, skipping invalid lines."""
    with open(path, 'r', encoding='utf-8') as f:
        for line_number, line in enumerate(f, start=1):
            if not line.strip():
                continue
            try:
                yield RawPage.model_validate_json(line)
            except ValidationError as e:
                logger.error(f"{path}:{line_number}: invalid page record: {e}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="gov-standards",
                                     description="UK government technology standards catalog")
    parser.add_argument("--db", help="SQLite database path (default: $STANDARDS_DB_PATH)")
    parser.add_argument("--no-semantic", action="store_true", help="Skip loading the embedding model")
    parser.add_argument("--log-level", help="Log level (default: $LOG_LEVEL)")

    subparsers = parser.add_subparsers(dest="command", required=True)

    ingest = subparsers.add_parser("ingest", help="Ingest crawler records from a JSON lines file")
    ingest.add_argument("path", type=Path)

    search = subparsers.add_parser("search", help="Search standards")
    search.add_argument("query")
    search.add_argument("--category")
    search.add_argument("--organisation")
    search.add_argument("--lexical", action="store_true", help="Lexical search only")
    search.add_argument("--semantic-weight", type=float)
    search.add_argument("--max-results", type=int)

    get = subparsers.add_parser("get", help="Show one standard")
    get.add_argument("id")

    subparsers.add_parser("categories", help="List categories with document counts")

    recent = subparsers.add_parser("recent", help="List recently updated standards")
    recent.add_argument("--days", type=int, default=30)

    applicable = subparsers.add_parser("applicable", help="Categories that apply to a piece of work")
    applicable.add_argument("--work-type", action="append", default=[], required=True)
    applicable.add_argument("--service-type", action="append", default=[], required=True)
    applicable.add_argument("--phase", action="append", default=[], required=True)

    subparsers.add_parser("stats", help="Catalog statistics")
    subparsers.add_parser("reindex-semantic", help="Re-embed every stored standard")
    subparsers.add_parser("rebuild-index", help="Rebuild the lexical index from stored standards")

    return parser


def _search_options(args: argparse.Namespace, defaults: HybridOptions) -> HybridOptions:
    updates = {}
    if args.semantic_weight is not None:
        updates['semantic_weight'] = args.semantic_weight
    if args.max_results is not None:
        updates['max_results'] = args.max_results
    return HybridOptions(**{**defaults.model_dump(), **updates})


async def run(args: argparse.Namespace, config: CatalogConfig) -> int:
    catalog = await StandardsCatalog.create(config)
    async with catalog:
        if args.command == "ingest":
            report = await catalog.ingest_batch(read_pages(args.path))
            _emit({
                'summary': report.summary(),
                'results': [
                    {'url': r.url, 'status': r.status.value,
                     'id': r.document.id if r.document else None, 'errors': r.errors}
                    for r in report.results
                ],
            })
            return 1 if report.failed else 0

        if args.command == "search":
            results = await catalog.search(
                args.query,
                category=args.category,
                organisation=args.organisation,
                options=_search_options(args, catalog.default_options),
                hybrid=not args.lexical,
            )
            _emit([result.model_dump(mode="json") for result in results])
            return 0

        if args.command == "get":
            document = await catalog.get(args.id)
            _emit(document.model_dump(mode="json") if document else None)
            return 0 if document else 1

        if args.command == "categories":
            _emit([category.model_dump(mode="json") for category in await catalog.categories()])
            return 0

        if args.command == "recent":
            documents = await catalog.recently_updated(args.days)
            _emit([document.model_dump(mode="json") for document in documents])
            return 0

        if args.command == "applicable":
            categories = catalog.applicable_categories(args.work_type, args.service_type, args.phase)
            _emit([category.model_dump(mode="json") for category in categories])
            return 0

        if args.command == "stats":
            _emit(await catalog.stats())
            return 0

        if args.command == "reindex-semantic":
            outcome = await catalog.reindex_semantic()
            if outcome.ok:
                _emit({'indexed': outcome.value})
                return 0
            _emit({'error': outcome.failure.value, 'detail': outcome.detail})
            return 1

        if args.command == "rebuild-index":
            await catalog.rebuild_lexical_index()
            _emit({'index_entry_count': await catalog.store.index_entry_count()})
            return 0

    raise ValueError(f"Unknown command: {args.command}")


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    config = CatalogConfig.from_env()
    updates = {}
    if args.db:
        updates['db_path'] = args.db
    if args.no_semantic:
        updates['enable_semantic'] = False
    if args.log_level:
        updates['log_level'] = args.log_level.upper()
    if updates:
        config = config.model_copy(update=updates)

    setup_logging(level=config.log_level, log_file=config.log_file, use_json=config.log_json)

    try:
        return asyncio.run(run(args, config))
    except DocumentStoreError as e:
        logger.error(f"{args.command} failed: {e}")
        return 2


if __name__ == "__main__":
    sys.exit(main())
