"""Ingest pipeline for adding documents to the RAG store.

Orchestrates:
- Source validation and text extraction
- Sentence chunking
- Sequential embedding generation with progress reporting
- Atomic document storage
"""
import asyncio
import uuid
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional
import structlog

from ragreader.db import DocumentStore
from ragreader.errors import RagError, ValidationError
from ragreader.models import Document
from ragreader.rag.chunker import SentenceChunker
from ragreader.rag.embeddings import EmbeddingProvider, ProgressCallback
from ragreader.rag.extract import PlainTextExtractor, TextExtractor, validate_source

logger = structlog.get_logger()

StatusCallback = Callable[[str], None]


class IngestPipeline:
    """Pipeline for turning source documents into stored, embedded chunks."""

    def __init__(
        self,
        store: DocumentStore,
        embedder: EmbeddingProvider,
        chunker: Optional[SentenceChunker] = None,
        extractor: Optional[TextExtractor] = None,
    ):
        """Initialize the ingest pipeline.

        Args:
            store: Document store to write to
            embedder: Embedding provider for chunk vectors
            chunker: Chunker (default sizes from config)
            extractor: Text extractor (plain text files by default)
        """
        self.store = store
        self.embedder = embedder
        self.chunker = chunker or SentenceChunker()
        self.extractor = extractor or PlainTextExtractor()

        logger.info(
            "ingest_pipeline_initialized",
            chunk_size=self.chunker.chunk_size,
            chunk_overlap=self.chunker.chunk_overlap,
            embedding_provider=self.embedder.provider,
        )

    async def ingest_file(
        self,
        path: Path,
        name: Optional[str] = None,
        progress_callback: Optional[ProgressCallback] = None,
        status_callback: Optional[StatusCallback] = None,
    ) -> Document:
        """Validate, extract and ingest a single source document.

        Args:
            path: Path to the source document
            name: Display name (defaults to the file name)
            progress_callback: Optional callback(current, total), called per page
                during extraction and then per chunk during embedding
            status_callback: Optional callback(message) at each stage

        Returns:
            The stored Document

        Raises:
            ValidationError: If the file is missing, unreadable or has no text
            PersistenceError: If storing fails
        """
        status = status_callback or (lambda message: None)
        path = Path(path)

        try:
            status("Validating document...")
            path = validate_source(path)

            status("Extracting text...")
            extracted = await asyncio.to_thread(
                self.extractor.extract, path, progress_callback
            )
            if not extracted.text.strip():
                raise ValidationError(f"No text found in {path.name}")

        except RagError as e:
            status(f"Error adding document: {e}")
            logger.error("document_extraction_failed", path=str(path), error=str(e))
            raise

        return await self.ingest_text(
            name=name or path.name,
            path=str(path),
            content=extracted.text,
            progress_callback=progress_callback,
            status_callback=status_callback,
        )

    async def ingest_text(
        self,
        name: str,
        path: str,
        content: str,
        progress_callback: Optional[ProgressCallback] = None,
        status_callback: Optional[StatusCallback] = None,
    ) -> Document:
        """Chunk, embed and store already-extracted text.

        Nothing is written unless every step succeeds.

        Args:
            name: Display name of the document
            path: Reference to the underlying source
            content: Full document text
            progress_callback: Optional callback(current, total) during embedding
            status_callback: Optional callback(message) at each stage

        Returns:
            The stored Document
        """
        status = status_callback or (lambda message: None)
        document_id = uuid.uuid4().hex

        try:
            if not content or not content.strip():
                raise ValidationError(f"No text found in {name}")

            status("Creating document chunks...")
            chunks = self.chunker.chunk(document_id, content)
            if not chunks:
                raise ValidationError(f"No usable sentences found in {name}")

            status("Generating embeddings...")
            embeddings = await self.embedder.embed_batch(
                [chunk.content for chunk in chunks],
                progress_callback=progress_callback,
            )

            document = Document(
                id=document_id,
                name=name,
                path=path,
                content=content,
                chunks=[chunk.with_embedding(e) for chunk, e in zip(chunks, embeddings)],
            )

            status("Storing document...")
            await asyncio.to_thread(self.store.store, document)

        except RagError as e:
            status(f"Error adding document: {e}")
            logger.error(
                "document_ingest_failed",
                name=name,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise

        status("Document added successfully!")
        logger.info(
            "document_ingested",
            document_id=document.id,
            name=name,
            chunks_created=len(document.chunks),
        )
        return document

    def discover_files(self, directory: Path) -> List[Path]:
        """Find every file under a directory that the extractor can read.

        Raises:
            ValidationError: If the directory doesn't exist
        """
        directory = Path(directory)
        if not directory.is_dir():
            raise ValidationError(f"Directory not found: {directory}")

        suffixes = getattr(self.extractor, "suffixes", None)
        files = sorted(
            p for p in directory.rglob("*")
            if p.is_file() and (suffixes is None or p.suffix.lower() in suffixes)
        )

        logger.info("source_files_discovered", count=len(files), directory=str(directory))
        return files

    async def ingest_paths(
        self,
        paths: List[Path],
        progress_callback: Optional[Callable[[int, int, Path], None]] = None,
    ) -> Dict[str, Any]:
        """Ingest several files, directories expanded, continuing past failures.

        Args:
            paths: Files or directories to ingest
            progress_callback: Optional callback(current, total, file_path)

        Returns:
            Dictionary with ingestion statistics
        """
        files: List[Path] = []
        for path in map(Path, paths):
            files.extend(self.discover_files(path) if path.is_dir() else [path])

        stats = {
            "files_processed": 0,
            "files_failed": 0,
            "chunks_created": 0,
            "document_ids": [],
        }

        for index, file_path in enumerate(files, 1):
            if progress_callback:
                progress_callback(index, len(files), file_path)
            try:
                document = await self.ingest_file(file_path)
            except RagError as e:
                logger.error("file_ingestion_failed", path=str(file_path), error=str(e))
                stats["files_failed"] += 1
                continue

            stats["files_processed"] += 1
            stats["chunks_created"] += len(document.chunks)
            stats["document_ids"].append(document.id)

        logger.info(
            "ingest_paths_completed",
            files_processed=stats["files_processed"],
            files_failed=stats["files_failed"],
            chunks_created=stats["chunks_created"],
        )
        return stats

    async def reembed_all(
        self, progress_callback: Optional[ProgressCallback] = None
    ) -> Dict[str, int]:
        """Recompute every stored embedding with the current provider.

        Used after switching providers: the corpus is rewritten in one
        transaction, so a mixed-dimension corpus never exists.

        Args:
            progress_callback: Optional callback(current, total) over all chunks

        Returns:
            Dictionary with document and chunk counts
        """
        documents = await asyncio.to_thread(self.store.get_all)
        total = sum(len(doc.chunks) for doc in documents)
        done = 0

        def on_chunk(current: int, _total: int) -> None:
            if progress_callback:
                progress_callback(done + current, total)

        updated = []
        for document in documents:
            embeddings = await self.embedder.embed_batch(
                [chunk.content for chunk in document.chunks],
                progress_callback=on_chunk,
            )
            done += len(document.chunks)
            updated.append(
                document.with_chunks(
                    [c.with_embedding(e) for c, e in zip(document.chunks, embeddings)]
                )
            )

        await asyncio.to_thread(self.store.store_many, updated, True)

        logger.info(
            "corpus_reembedded",
            documents=len(updated),
            chunks=total,
            dimension=self.embedder.dimension,
        )
        return {"documents": len(updated), "chunks": total}
