"""Command-line interface for RAG Reader.

Usage:
    python -m ragreader.cli ingest notes/ report.txt   # Add documents
    python -m ragreader.cli list                      # Show stored documents
    python -m ragreader.cli search "query" -k 3       # Similarity search
    python -m ragreader.cli ask "question"            # RAG answer
    python -m ragreader.cli delete <document-id>
    python -m ragreader.cli clear --yes
    python -m ragreader.cli stats
    python -m ragreader.cli reembed                   # After switching providers
"""
import argparse
import asyncio
import sys
from datetime import datetime
from pathlib import Path
from typing import List, Optional, TextIO

import structlog

from ragreader import config
from ragreader.errors import RagError
from ragreader.log_setup import configure_logging
from ragreader.rag.chunker import SentenceChunker
from ragreader.services import Services, build_services

logger = structlog.get_logger()


class ProgressReporter:
    """Progress bar and status line printer for long-running commands."""

    def __init__(self, verbose: bool = False, stream: TextIO = None):
        self.verbose = verbose
        self.stream = stream or sys.stdout
        self.start_time = None

    def _print(self, text: str = "", end: str = "\n") -> None:
        print(text, end=end, file=self.stream, flush=True)

    def start(self, message: str) -> None:
        self.start_time = datetime.now()
        self._print(f"\n{'=' * 60}")
        self._print(f"  {message}")
        self._print(f"{'=' * 60}\n")

    def status(self, message: str) -> None:
        if self.verbose:
            self._print(f"  {message}")

    def update(self, current: int, total: int, label: str = "") -> None:
        percentage = (current / total) * 100 if total > 0 else 0
        bar_length = 40
        filled = int(bar_length * current / total) if total > 0 else 0
        bar = "█" * filled + "░" * (bar_length - filled)
        self._print(
            f"\r  [{bar}] {percentage:5.1f}% ({current}/{total}) {label[:30]:<30}",
            end="",
        )
        if current == total:
            self._print()

    def finish(self, stats: dict) -> None:
        elapsed = (datetime.now() - self.start_time).total_seconds() if self.start_time else 0.0
        self._print(f"\n{'=' * 60}")
        self._print("  Ingest Complete!")
        self._print(f"{'=' * 60}\n")
        self._print(f"  Files processed:  {stats['files_processed']}")
        self._print(f"  Files failed:     {stats['files_failed']}")
        self._print(f"  Chunks created:   {stats['chunks_created']}")
        self._print(f"  Time elapsed:     {elapsed:.1f}s\n")
        if stats["files_failed"] > 0:
            self._print(f"Warning: {stats['files_failed']} file(s) failed to ingest. Check logs for details.\n")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ragreader",
        description="Local retrieval-augmented question answering over documents",
    )
    parser.add_argument(
        "--db",
        type=Path,
        default=None,
        help=f"SQLite database file (default: {config.DB_PATH})",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Show stage messages and debug logs")

    sub = parser.add_subparsers(dest="command", required=True)

    ingest = sub.add_parser("ingest", help="Add documents (files or directories)")
    ingest.add_argument("paths", nargs="+", type=Path)
    ingest.add_argument("--name", default=None, help="Display name (single file only)")
    ingest.add_argument("--chunk-size", type=int, default=None)
    ingest.add_argument("--chunk-overlap", type=int, default=None)

    sub.add_parser("list", help="List stored documents")
    sub.add_parser("stats", help="Show corpus counts")

    delete = sub.add_parser("delete", help="Delete a document and its chunks")
    delete.add_argument("document_id")

    clear = sub.add_parser("clear", help="Delete every document")
    clear.add_argument("--yes", action="store_true", help="Don't ask for confirmation")

    search = sub.add_parser("search", help="Similarity search without generation")
    search.add_argument("query")
    search.add_argument("-k", type=int, default=None)
    search.add_argument("--threshold", type=float, default=None)

    ask = sub.add_parser("ask", help="Answer a question from the stored documents")
    ask.add_argument("question")
    ask.add_argument("--no-rag", action="store_true", help="Skip document retrieval")

    sub.add_parser("reembed", help="Re-embed every document with the current provider")

    return parser


async def _ingest(services: Services, args, progress: ProgressReporter) -> int:
    if args.name and len(args.paths) == 1 and args.paths[0].is_file():
        progress.start("Ingesting Document")
        document = await services.ingest.ingest_file(
            args.paths[0],
            name=args.name,
            progress_callback=lambda c, t: progress.update(c, t, args.paths[0].name),
            status_callback=progress.status,
        )
        progress.finish({"files_processed": 1, "files_failed": 0, "chunks_created": len(document.chunks)})
        return 0

    progress.start("Ingesting Documents")
    stats = await services.ingest.ingest_paths(
        args.paths,
        progress_callback=lambda c, t, path: progress.update(c, t, path.name),
    )
    progress.finish(stats)
    return 1 if stats["files_failed"] > 0 else 0


async def run(args: argparse.Namespace, services: Services, out: TextIO = None) -> int:
    """Execute a parsed command and return the process exit code."""
    out = out or sys.stdout
    progress = ProgressReporter(verbose=args.verbose, stream=out)

    def emit(text: str = "") -> None:
        print(text, file=out)

    if args.command == "ingest":
        return await _ingest(services, args, progress)

    if args.command == "list":
        documents = await asyncio.to_thread(services.store.get_all)
        if not documents:
            emit("No documents stored.")
        for doc in documents:
            emit(f"{doc.id}  {doc.name}  ({len(doc.chunks)} chunks, {doc.created_at:%Y-%m-%d %H:%M})")
        return 0

    if args.command == "stats":
        stats = await asyncio.to_thread(services.store.get_stats)
        emit(f"Documents:           {stats['documents']}")
        emit(f"Chunks:              {stats['chunks']}")
        emit(f"Embedding dimension: {stats['embedding_dimension'] or '-'}")
        emit(f"Embedding provider:  {services.embedder.provider}")
        return 0

    if args.command == "delete":
        if await asyncio.to_thread(services.store.delete, args.document_id):
            emit(f"Deleted {args.document_id}")
            return 0
        emit(f"Document not found: {args.document_id}")
        return 1

    if args.command == "clear":
        if not args.yes:
            emit("Refusing to clear without --yes.")
            return 1
        count = await asyncio.to_thread(services.store.clear)
        emit(f"Deleted {count} document(s).")
        return 0

    if args.command == "search":
        results = await services.retriever.search(args.query, k=args.k, threshold=args.threshold)
        if not results:
            emit("No results.")
        for rank, result in enumerate(results, 1):
            emit(f"{rank}. [{result.relevance_percent:.1f}%] {result.document.name}")
            emit(f"   {result.chunk.content[:200]}")
        return 0

    if args.command == "ask":
        answer = await services.chat.ask(args.question, use_rag=not args.no_rag)
        emit(answer.content)
        if answer.sources:
            emit()
            emit("Sources:")
            for source in answer.sources:
                emit(f"  - {source.document.name} ({source.relevance_percent:.1f}%)")
        return 0

    if args.command == "reembed":
        progress.start(f"Re-embedding corpus with {services.embedder.provider}")
        stats = await services.ingest.reembed_all(
            progress_callback=lambda c, t: progress.update(c, t, "chunks"),
        )
        emit(f"Re-embedded {stats['chunks']} chunk(s) in {stats['documents']} document(s).")
        return 0

    raise ValueError(f"Unknown command: {args.command}")


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging("DEBUG" if args.verbose else "WARNING", json_output=False)

    try:
        chunker = None
        if args.command == "ingest" and (args.chunk_size or args.chunk_overlap is not None):
            chunker = SentenceChunker(chunk_size=args.chunk_size, chunk_overlap=args.chunk_overlap)

        services = build_services(db_path=args.db, chunker=chunker)
        return asyncio.run(run(args, services))

    except KeyboardInterrupt:
        print("\n\nCancelled by user.\n")
        return 1

    except (RagError, ValueError) as e:
        print(f"\nError: {e}\n", file=sys.stderr)
        logger.error("cli_command_failed", command=args.command, error=str(e), error_type=type(e).__name__)
        return 1


if __name__ == "__main__":
    sys.exit(main())
