"""Command-line front end for ingesting documents and searching them.

Usage::

    knowledge-search ingest notes.md report.pdf
    knowledge-search search "machine learning" --limit 5 --min-score 0.4
    knowledge-search list
    knowledge-search delete 3f2c9a1e-...
    knowledge-search stats
    knowledge-search clear --yes

Results go to stdout; structured logs go to stderr.  Every command
exits with 0 on success and 1 on failure.
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path
from typing import Any

import pydantic

from knowledge_search.config.loader import load_settings
from knowledge_search.config.settings import Settings
from knowledge_search.models.documents import ProcessingStatus
from knowledge_search.models.search import SearchOptions
from knowledge_search.utils.errors import KnowledgeSearchError
from knowledge_search.utils.logging import configure_logging


def _print_progress(status: ProcessingStatus, details: str | None) -> None:
    if not status.stage:
        return
    suffix = f" ({details})" if details else ""
    print(f"  [{status.progress:5.1f}%] {status.stage}{suffix}")


# ------------------------------------------------------------------
# Command handlers
# ------------------------------------------------------------------


async def _handle_ingest(args: argparse.Namespace, service) -> int:  # noqa: ANN001
    """Ingest each file in turn; a failing file does not stop the rest."""
    if args.verbose:
        service.progress_tracker.register_listener(_print_progress)

    failures = 0
    for path in args.files:
        print(f"Ingesting: {path}")
        outcome = await service.process_file(Path(path))
        if not outcome.success:
            failures += 1
            print(f"  Failed: {outcome.error}")
            continue

        print(f"  Document ID:  {outcome.metadata.id}")
        print(f"  Chunks:       {len(outcome.chunks)}")
        print(f"  Embedded:     {len(outcome.embeddings)} ({outcome.success_rate:.0f}%)")
        if outcome.failed_chunk_ids:
            print(f"  Failed chunks: {len(outcome.failed_chunk_ids)}")
        print(f"  Time:         {outcome.processing_time_ms / 1000:.2f}s")

    total = len(args.files)
    print(f"\n{total - failures}/{total} files ingested.")
    return 1 if failures else 0


async def _handle_search(args: argparse.Namespace, service) -> int:  # noqa: ANN001
    # Unset flags fall back to the service's configured defaults.
    fields: dict[str, Any] = {"document_ids": args.document or None}
    if args.limit is not None:
        fields["limit"] = args.limit
    if args.min_score is not None:
        fields["min_score"] = args.min_score
    try:
        options = SearchOptions(**fields)
    except pydantic.ValidationError as exc:
        error = exc.errors()[0]
        flag = "--" + str(error["loc"][0]).replace("_", "-")
        print(f"Error: invalid {flag}: {error['msg']}", file=sys.stderr)
        return 1

    response = await service.search_safe(args.query, options)
    if not response.success:
        print(f"Error: {response.error}", file=sys.stderr)
        return 1

    if not response.results:
        print("No results.")
        return 0

    for rank, result in enumerate(response.results, start=1):
        print(f"{rank}. {result.document_filename} (chunk {result.chunk_index})")
        print(f"   Score: {result.score:.3f}  {result.relevance_reason}")
        print(f"   {result.snippet}")
        print()
    return 0


async def _handle_list(service) -> int:  # noqa: ANN001
    documents = await service.get_documents()
    if not documents:
        print("No documents indexed.")
        return 0

    print(f"{'DOCUMENT ID':<38} {'TYPE':<5} {'CHUNKS':>6}  {'CREATED':<26} FILENAME")
    for doc in documents:
        print(
            f"{doc.document_id:<38} {doc.file_type:<5} {doc.chunk_count:>6}  "
            f"{doc.created_at:<26} {doc.filename}"
        )
    return 0


async def _handle_delete(args: argparse.Namespace, service) -> int:  # noqa: ANN001
    deleted = await service.delete_document(args.document_id)
    if deleted == 0:
        print(f"No records found for document '{args.document_id}'.")
    else:
        print(f"Deleted {deleted} records for document '{args.document_id}'.")
    return 0


async def _handle_stats(service) -> int:  # noqa: ANN001
    stats = await service.get_stats()
    model = stats.embedding_model

    print("Knowledge Base Statistics")
    print("=" * 40)
    print(f"  Documents:        {stats.total_documents}")
    print(f"  Chunks:           {stats.total_chunks}")
    print(f"  Vectors:          {stats.total_vectors}")
    print(f"  Est. size:        {stats.database_size_kb} KB")
    print(f"  Last updated:     {stats.last_updated.isoformat()}")
    print(f"  Embedding model:  {model.model} ({model.dimensions} dims, {model.max_tokens} tokens)")
    return 0


async def _handle_clear(args: argparse.Namespace, service) -> int:  # noqa: ANN001
    if not args.yes:
        answer = input("Delete ALL indexed documents? [y/N] ").strip().lower()
        if answer not in ("y", "yes"):
            print("Aborted.")
            return 1
    await service.clear_all()
    print("All documents cleared.")
    return 0


async def _run(args: argparse.Namespace, app_settings: Settings) -> int:
    """Build the service, dispatch the command and always shut down."""
    from knowledge_search.main import build_knowledge_search_service

    service = build_knowledge_search_service(app_settings)
    try:
        if args.command == "ingest":
            return await _handle_ingest(args, service)
        if args.command == "search":
            return await _handle_search(args, service)
        if args.command == "list":
            return await _handle_list(service)
        if args.command == "delete":
            return await _handle_delete(args, service)
        if args.command == "stats":
            return await _handle_stats(service)
        if args.command == "clear":
            return await _handle_clear(args, service)
        return 1
    finally:
        await service.shutdown()


# ------------------------------------------------------------------
# Argument parsing
# ------------------------------------------------------------------


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="knowledge-search",
        description="Index local documents and search them by meaning.",
    )
    parser.add_argument(
        "--config",
        default="config/config.yaml",
        help="YAML config file; environment variables override it (default: %(default)s)",
    )
    subparsers = parser.add_subparsers(dest="command")

    ingest_parser = subparsers.add_parser("ingest", help="Index PDF, DOCX, TXT or MD files")
    ingest_parser.add_argument("files", nargs="+", help="Files to ingest")
    ingest_parser.add_argument(
        "-v", "--verbose", action="store_true", help="Print each processing stage"
    )

    search_parser = subparsers.add_parser("search", help="Semantic search over indexed text")
    search_parser.add_argument("query", help="Natural-language query")
    search_parser.add_argument("--limit", type=int, default=None, help="Maximum results")
    search_parser.add_argument(
        "--min-score", type=float, default=None, help="Minimum similarity (0.0 - 1.0)"
    )
    search_parser.add_argument(
        "--document",
        action="append",
        default=[],
        help="Restrict to a document ID (repeatable)",
    )

    subparsers.add_parser("list", help="List indexed documents")

    delete_parser = subparsers.add_parser("delete", help="Remove one document from the index")
    delete_parser.add_argument("document_id", help="Document ID as shown by 'list'")

    subparsers.add_parser("stats", help="Show index statistics")

    clear_parser = subparsers.add_parser("clear", help="Remove every indexed document")
    clear_parser.add_argument("--yes", action="store_true", help="Skip confirmation prompt")

    return parser


def main() -> None:
    """CLI entry point."""
    parser = _build_parser()
    args = parser.parse_args()

    if args.command is None:
        parser.print_help()
        sys.exit(1)

    try:
        app_settings = load_settings(args.config)
    except KnowledgeSearchError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        sys.exit(1)

    configure_logging(
        log_level=app_settings.log_level,
        json_output=(app_settings.app_env == "production"),
    )

    try:
        exit_code = asyncio.run(_run(args, app_settings))
    except KnowledgeSearchError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        exit_code = 1
    except KeyboardInterrupt:
        exit_code = 130

    sys.exit(exit_code)


if __name__ == "__main__":
    main()
