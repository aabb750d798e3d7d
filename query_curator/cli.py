"""
Command Line Interface for Query Curator

Works on a local JSON data file so datasets can be curated without the
hosted database:
- list categories, import CSV, export JSON/CSV
- generate queries for a category and answers for its queries
- serve the HTTP generation functions
Errors are printed to stderr as a machine-readable JSON summary.
"""

from __future__ import annotations
import argparse
import json
import sys
from pathlib import Path
from typing import Optional, List
import logging

from .backends import JsonFileBackend
from .config import AppConfig, load_config
from .exceptions import QueryCuratorError, ProviderError, CSVImportError
from .generation import QueryGenerator, AnswerGenerator, BatchProgress
from .providers import create_provider
from .settings import JsonFileSettingsRepository
from .stats import stats_table
from .store import QueryStore


def setup_logging(verbose: bool = False) -> None:
    """Setup logging configuration."""
    level = logging.DEBUG if verbose else logging.INFO

    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    # Reduce noise from some libraries
    logging.getLogger('openai').setLevel(logging.WARNING)
    logging.getLogger('httpx').setLevel(logging.WARNING)
    logging.getLogger('urllib3').setLevel(logging.WARNING)


def create_parser() -> argparse.ArgumentParser:
    """Create command line argument parser."""

    parser = argparse.ArgumentParser(
        prog="query-curator",
        description="Query Curator - organize, generate and answer test queries for a conversational agent",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  query-curator categories
  query-curator import queries.csv
  query-curator export --category weather --format csv
  query-curator generate-queries weather --count 10
  query-curator generate-answers weather
  query-curator serve
        """
    )
    parser.add_argument('--data', type=Path, help='Path to the JSON data file')
    parser.add_argument('--settings', type=Path, help='Path to the AI settings file')
    parser.add_argument('--verbose', '-v', action='store_true', help='Enable verbose logging')

    sub = parser.add_subparsers(dest='command', required=True)

    sub.add_parser('categories', help='List categories with active query counts')

    imp = sub.add_parser('import', help='Import queries from a CSV file')
    imp.add_argument('csv_file', type=Path)

    exp = sub.add_parser('export', help='Export queries as JSON or CSV')
    exp.add_argument('--category', help='Only export this category (id or default kind)')
    exp.add_argument('--format', choices=['json', 'csv'], default='json')
    exp.add_argument('--output-dir', type=Path, default=Path.cwd())

    gen = sub.add_parser('generate-queries', help='Generate new queries for a category')
    gen.add_argument('category', help='Category id or default kind (e.g. weather)')
    gen.add_argument('--count', type=int, help='Number of queries (1-20, default from settings)')

    ans = sub.add_parser('generate-answers', help='Generate answers for the active queries of a category')
    ans.add_argument('category', help='Category id or default kind (e.g. weather)')
    ans.add_argument('--missing-only', action='store_true', help='Skip queries that already have an answer')

    sub.add_parser('stats', help='Show per-engine generation statistics')
    sub.add_parser('serve', help='Serve the HTTP generation functions')

    return parser


def open_store(args: argparse.Namespace, config: AppConfig) -> QueryStore:
    path = args.data or Path(config.data_file)
    store = QueryStore(JsonFileBackend(path), limits=config.import_limits())
    store.seed_defaults()
    return store


def build_provider(args: argparse.Namespace, config: AppConfig):
    repo = JsonFileSettingsRepository(args.settings or Path(config.settings_file))
    settings = repo.load()
    provider = create_provider(settings.provider_settings(), config.gateway_api_key, config.gateway_url)
    return provider, settings


def cmd_categories(args, config) -> int:
    store = open_store(args, config)
    counts = store.query_counts()
    for category in store.categories:
        print(f"{category.id:<40} {category.kind or '-':<14} {category.name:<20} {counts.get(category.id, 0):>5} queries")
    return 0


def cmd_import(args, config) -> int:
    if not args.csv_file.exists():
        raise FileNotFoundError(f"CSV file not found: {args.csv_file}")
    store = open_store(args, config)
    result = store.import_queries_from_csv(args.csv_file.read_text(encoding='utf-8'))

    print(f"Imported {len(result.imported)} queries")
    for error in result.errors:
        print(f"  - {error}", file=sys.stderr)
    return 0 if result.imported or not result.errors else 2


def cmd_export(args, config) -> int:
    store = open_store(args, config)
    category_id = store.find_category(args.category).id if args.category else None
    export = store.export_queries(category_id, args.format)
    target = args.output_dir / export.filename
    target.write_text(export.content, encoding='utf-8')
    print(f"Exported to {target}")
    return 0


def cmd_generate_queries(args, config) -> int:
    store = open_store(args, config)
    provider, settings = build_provider(args, config)
    count = args.count if args.count is not None else settings.generate_count

    category = store.find_category(args.category)
    added = QueryGenerator(provider).generate_into_store(store, category.id, count)
    print(f"Added {len(added)} new queries to {category.name}")
    for query in added:
        print(f"  + {query.text}")
    return 0


def cmd_generate_answers(args, config) -> int:
    store = open_store(args, config)
    provider, _ = build_provider(args, config)

    queries = store.get_queries_by_category(store.find_category(args.category).id)
    if args.missing_only:
        queries = [q for q in queries if not q.answer]
    categories = {c.id: c for c in store.categories}

    def report(event: BatchProgress) -> None:
        status = "ok" if event.ok else f"failed: {event.error}"
        marker = " (duplicate)" if event.duplicate else ""
        print(f"[{event.completed}/{event.total}] {event.query_id} {status}{marker}")

    summary = AnswerGenerator(provider).run_batch(queries, categories, store=store, on_progress=report)
    print(f"Answered {summary.succeeded}/{summary.total} queries, {summary.failed} failed")
    return 0 if summary.failed == 0 else 1


def cmd_stats(args, config) -> int:
    store = open_store(args, config)
    print(json.dumps(stats_table(store.queries), indent=2))
    return 0


def cmd_serve(args, config) -> int:
    from .server import run
    run(config)
    return 0


COMMANDS = {
    'categories': cmd_categories,
    'import': cmd_import,
    'export': cmd_export,
    'generate-queries': cmd_generate_queries,
    'generate-answers': cmd_generate_answers,
    'stats': cmd_stats,
    'serve': cmd_serve,
}


def print_error_summary(error: Exception) -> None:
    """Print machine-readable error summary to stderr."""

    error_report = {
        "error_type": type(error).__name__,
        "message": getattr(error, 'user_message', None) or str(error),
    }
    if isinstance(error, CSVImportError):
        error_report["details"] = error.errors

    print(json.dumps(error_report, indent=2), file=sys.stderr)


def main(argv: Optional[List[str]] = None) -> int:
    """Main CLI entry point."""

    parser = create_parser()
    args = parser.parse_args(argv)

    setup_logging(args.verbose)
    logger = logging.getLogger(__name__)

    try:
        config = load_config()
        return COMMANDS[args.command](args, config)

    except ProviderError as e:
        logger.error(f"Generation failed: {e}")
        print_error_summary(e)
        return 1

    except (QueryCuratorError, ValueError, FileNotFoundError) as e:
        logger.error(f"Input validation failed: {e}")
        print_error_summary(e)
        return 2

    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return 130  # Standard Unix exit code for SIGINT

    except Exception as e:
        logger.exception("Unexpected error occurred")
        print_error_summary(e)
        return 3


if __name__ == '__main__':
    sys.exit(main())
