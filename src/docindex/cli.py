"""Command line interface for building and querying a docindex index."""

# ruff: noqa: T201  # CLI intentionally prints results

from __future__ import annotations

import argparse
from collections.abc import Iterator, Sequence
import logging
from pathlib import Path
import sys
from typing import Any

import orjson
from pydantic import ValidationError

from docindex.config import Settings
from docindex.extraction import TextFileExtractor
from docindex.models import DocumentRecord, SearchResult
from docindex.observability.context import bind_log_fields
from docindex.observability.logging import configure_logging
from docindex.observability.metrics import get_metrics
from docindex.observability.tracing import init_tracing
from docindex.search.analyzers import available_analyzers
from docindex.search.errors import DocIndexError, ExtractionError
from docindex.search.indexer import IndexWriter
from docindex.search.pages import clean_query_terms
from docindex.search.search_index import DocumentSearchIndex
from docindex.search.snippet import highlight_terms
from docindex.search.sqlite_storage import DB_FILENAME, IndexStore


logger = logging.getLogger(__name__)

DEFAULT_READ_LIMIT = 5000


def build_argument_parser(settings: Settings) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="docindex",
        description="Index local documents and search them with boolean, phrase and field queries",
    )
    parser.add_argument(
        "-i",
        "--index-dir",
        type=Path,
        default=settings.index_dir,
        help=f"Index directory (default: {settings.index_dir})",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable debug logging",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    index_parser = subparsers.add_parser("index", help="Index a file or every supported file in a directory")
    index_parser.add_argument("path", type=Path, help="File or directory to index")
    index_parser.add_argument(
        "--max-size",
        type=int,
        default=settings.max_file_size_mb,
        help=f"Skip files larger than this many MB (default: {settings.max_file_size_mb})",
    )
    index_parser.add_argument(
        "--tokenizer",
        choices=available_analyzers(),
        help=f"Tokenizer for a new index (default: {settings.tokenizer})",
    )
    index_parser.add_argument(
        "-r",
        "--recursive",
        action=argparse.BooleanOptionalAction,
        default=True,
        help="Descend into subdirectories (default: on)",
    )

    search_parser = subparsers.add_parser("search", help="Search the index")
    search_parser.add_argument("query", help="Query string, e.g. 'fileName:report AND revenue'")
    search_parser.add_argument(
        "-n",
        "--max-results",
        type=int,
        default=settings.search_max_results,
        help=f"Maximum results (default: {settings.search_max_results})",
    )
    search_parser.add_argument(
        "--min-score",
        type=float,
        default=settings.min_score,
        help="Drop results scoring below this value",
    )
    search_parser.add_argument("--json", action="store_true", help="Print results as JSON")

    list_parser = subparsers.add_parser("list", help="List indexed documents")
    list_parser.add_argument(
        "-n",
        "--max-results",
        type=int,
        default=settings.list_max_results,
        help=f"Maximum documents (default: {settings.list_max_results})",
    )
    list_parser.add_argument("--json", action="store_true", help="Print documents as JSON")

    stats_parser = subparsers.add_parser("stats", help="Show index statistics")
    stats_parser.add_argument("--json", action="store_true", help="Print statistics as JSON")

    clear_parser = subparsers.add_parser("clear", help="Delete every document from the index")
    clear_parser.add_argument("-y", "--yes", action="store_true", help="Do not ask for confirmation")

    subparsers.add_parser("optimize", help="Purge deleted documents and compact the database")

    read_parser = subparsers.add_parser("read", help="Extract a single file and print its text without indexing it")
    read_parser.add_argument("path", type=Path, help="File to read")
    read_parser.add_argument(
        "-l",
        "--limit",
        type=int,
        default=DEFAULT_READ_LIMIT,
        help=f"Print at most this many characters of content, 0 for all (default: {DEFAULT_READ_LIMIT})",
    )
    read_parser.add_argument("--json", action="store_true", help="Print the extracted document as JSON")

    subparsers.add_parser("metrics", help="Print index metrics in the Prometheus text format")
    return parser


def _open_store(index_dir: Path, *, tokenizer: str | None = None, create: bool = False) -> IndexStore:
    return IndexStore(index_dir, tokenizer=tokenizer, create=create)


def _dump_json(payload: Any) -> None:
    print(orjson.dumps(payload, option=orjson.OPT_INDENT_2).decode("utf-8"))


def _cmd_index(args: argparse.Namespace, settings: Settings) -> int:
    tokenizer = args.tokenizer
    if tokenizer is None and not (args.index_dir / DB_FILENAME).exists():
        tokenizer = settings.tokenizer
    store = _open_store(args.index_dir, tokenizer=tokenizer, create=True)
    extractor = TextFileExtractor(max_file_size_bytes=args.max_size * 1024 * 1024)
    skipped: list[Path] = []

    def records() -> Iterator[DocumentRecord]:
        for path in extractor.iter_files(args.path, recursive=args.recursive):
            try:
                yield extractor.extract(path)
            except ExtractionError as exc:
                logger.warning("Skipping %s: %s", path, exc)
                skipped.append(path)

    with IndexWriter(
        store,
        page_text_max_chars=settings.page_text_max_chars,
        store_content=settings.store_content,
    ) as writer:
        summary = writer.index_documents(records())

    failed = summary.failed + len(skipped)
    print(f"Indexed {summary.succeeded} documents into {store.index_dir} ({failed} failed)")
    for outcome in summary.failures:
        print(f"  failed: {outcome.document_id or '<unknown>'}: {outcome.reason}", file=sys.stderr)
    return 1 if failed and not summary.succeeded else 0


def _print_result(rank: int, result: SearchResult, terms: list[str], *, highlight: bool) -> None:
    print(f"{rank}. {result.file_name or result.document_id}  (score {result.score:.3f})")
    print(f"   {result.file_path}")
    print(f"   size: {result.formatted_file_size}  pages: {result.formatted_matched_pages}")
    if result.snippet:
        snippet = highlight_terms(result.snippet, terms, style="ansi") if highlight else result.snippet
        print(f"   {snippet}")


def _cmd_search(args: argparse.Namespace, settings: Settings) -> int:
    index = DocumentSearchIndex(_open_store(args.index_dir), snippet_chars=settings.snippet_length)
    results = index.search(args.query, args.max_results, min_score=args.min_score)
    if args.json:
        _dump_json([result.model_dump(by_alias=True, mode="json") for result in results])
        return 0
    if not results:
        print(f"No results for {args.query!r}")
        return 0
    terms = clean_query_terms(args.query)
    highlight = sys.stdout.isatty()
    for rank, result in enumerate(results, start=1):
        _print_result(rank, result, terms, highlight=highlight)
    return 0


def _cmd_list(args: argparse.Namespace, settings: Settings) -> int:
    documents = DocumentSearchIndex(_open_store(args.index_dir)).list_all_documents(args.max_results)
    if args.json:
        _dump_json([document.model_dump(by_alias=True, mode="json") for document in documents])
        return 0
    for document in documents:
        print(f"{document.document_id}  {document.file_name}  {document.formatted_file_size}  {document.file_path}")
    print(f"{len(documents)} documents")
    return 0


def _cmd_stats(args: argparse.Namespace, settings: Settings) -> int:
    stats = DocumentSearchIndex(_open_store(args.index_dir)).get_stats()
    if args.json:
        _dump_json(stats.model_dump(by_alias=True, mode="json"))
        return 0
    print(f"Index:             {args.index_dir}")
    print(f"Tokenizer:         {stats.tokenizer}")
    print(f"Documents:         {stats.total_documents}")
    print(f"Deleted documents: {stats.deleted_documents}")
    print(f"Max document:      {stats.max_document}")
    print(f"Generation:        {stats.generation}")
    return 0


def _cmd_clear(args: argparse.Namespace, settings: Settings) -> int:
    store = _open_store(args.index_dir)
    if not args.yes:
        answer = input(f"Delete every document in {store.index_dir}? [y/N] ").strip().lower()
        if answer not in ("y", "yes"):
            print("Aborted")
            return 1
    with IndexWriter(store) as writer:
        writer.clear_index()
    print(f"Cleared {store.index_dir}")
    return 0


def _cmd_optimize(args: argparse.Namespace, settings: Settings) -> int:
    store = _open_store(args.index_dir)
    with IndexWriter(store) as writer:
        purged = writer.purge_deleted()
    store.vacuum()
    print(f"Purged {purged} deleted documents")
    return 0


def _cmd_read(args: argparse.Namespace, settings: Settings) -> int:
    record = TextFileExtractor(max_file_size_bytes=settings.max_file_size_bytes).extract(args.path)
    content = record.content[: args.limit] if args.limit > 0 else record.content
    truncated = len(content) < len(record.content)
    if args.json:
        _dump_json(
            {
                "filePath": record.file_path,
                "fileName": record.file_name,
                "contentType": record.content_type,
                "fileSize": record.file_size,
                "pageCount": record.page_count,
                "content": content,
                "truncated": truncated,
                "metadata": record.metadata,
            }
        )
        return 0
    print(f"File: {record.file_name}")
    print(f"Path: {record.file_path}")
    print(f"Type: {record.content_type}")
    print(f"Size: {record.file_size} bytes")
    print("\n--- Content ---\n")
    print(content)
    if truncated:
        print(f"\n[truncated to {args.limit} of {len(record.content)} characters]")
    return 0


def _cmd_metrics(args: argparse.Namespace, settings: Settings) -> int:
    # refreshes the document gauge before rendering
    DocumentSearchIndex(_open_store(args.index_dir)).get_stats()
    sys.stdout.write(get_metrics().decode("utf-8"))
    return 0


_COMMANDS = {
    "index": _cmd_index,
    "search": _cmd_search,
    "list": _cmd_list,
    "stats": _cmd_stats,
    "clear": _cmd_clear,
    "optimize": _cmd_optimize,
    "read": _cmd_read,
    "metrics": _cmd_metrics,
}


def main(argv: Sequence[str] | None = None) -> int:
    try:
        settings = Settings()
    except ValidationError as exc:
        print(f"Invalid configuration: {exc}", file=sys.stderr)
        return 1

    args = build_argument_parser(settings).parse_args(argv)
    configure_logging("debug" if args.verbose else settings.log_level, settings.json_logs)
    if settings.trace_console:
        init_tracing(console_export=True)

    try:
        with bind_log_fields(command=args.command):
            return _COMMANDS[args.command](args, settings)
    except DocIndexError as exc:
        logger.error("%s failed: %s", args.command, exc)
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    except ValueError as exc:
        logger.error("%s failed: %s", args.command, exc)
        print(f"Error: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
