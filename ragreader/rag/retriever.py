"""Retriever for similarity search over stored document chunks.

Handles:
- Query embedding generation
- Exhaustive cosine scan of every stored chunk
- Context formatting for the chat prompt

The scan costs O(chunks x dimension) per query, which is fine for a
single-device corpus of hundreds to a few thousand chunks.
"""
import asyncio
from typing import List, Optional
import structlog

from ragreader import config
from ragreader.db import DocumentStore
from ragreader.models import SearchResult
from ragreader.rag.embeddings import EmbeddingProvider
from ragreader.rag.similarity import rank

logger = structlog.get_logger()

NO_CONTEXT = "No relevant information found in the documents."
CONTEXT_SEPARATOR = "\n---\n"


def format_result(result: SearchResult) -> str:
    """Format one search hit as a context block."""
    return (
        f"Document: {result.document.name}\n"
        f"Relevance: {result.relevance_percent:.1f}%\n"
        f"Content: {result.chunk.content}\n"
    )


def build_context(results: List[SearchResult]) -> str:
    """Join search hits into the delimited context handed to the LLM."""
    if not results:
        return NO_CONTEXT
    return CONTEXT_SEPARATOR.join(format_result(r) for r in results)


class Retriever:
    """Similarity retriever for the RAG pipeline."""

    def __init__(
        self,
        store: DocumentStore,
        embedder: EmbeddingProvider,
        top_k: int = None,
        threshold: float = None,
    ):
        """Initialize the retriever.

        Args:
            store: Document store to search
            embedder: Provider used to embed queries
            top_k: Default number of results (default from config)
            threshold: Default minimum similarity (default from config)
        """
        self.store = store
        self.embedder = embedder
        self.top_k = config.RETRIEVAL_TOP_K if top_k is None else top_k
        self.threshold = config.SIMILARITY_THRESHOLD if threshold is None else threshold

    async def search(
        self,
        query: str,
        k: Optional[int] = None,
        threshold: Optional[float] = None,
    ) -> List[SearchResult]:
        """Find the stored chunks most similar to a query.

        Args:
            query: Query text
            k: Maximum number of results (overrides default)
            threshold: Minimum similarity to include (overrides default)

        Returns:
            SearchResult objects, best first; ties keep storage order

        Raises:
            DimensionMismatch: If the corpus was embedded at a different dimension
            PersistenceError: If stored chunks can't be read
        """
        k = self.top_k if k is None else k
        threshold = self.threshold if threshold is None else threshold

        if not query or not query.strip():
            logger.warning("empty_query_provided")
            return []

        logger.info("search_started", query_length=len(query), k=k, threshold=threshold)

        query_embedding = await self.embedder.embed(query)
        candidates = await asyncio.to_thread(self.store.iter_chunks)

        if not candidates:
            logger.info("empty_store_no_results")
            return []

        results = await rank(candidates, query_embedding, k=k, threshold=threshold)

        logger.info(
            "search_completed",
            chunks_scanned=len(candidates),
            results_returned=len(results),
            top_similarity=results[0].similarity if results else None,
        )
        return results

    async def retrieve_context(
        self,
        query: str,
        k: Optional[int] = None,
        threshold: Optional[float] = None,
    ) -> str:
        """Search and format the hits as prompt context."""
        results = await self.search(query, k=k, threshold=threshold)
        context = build_context(results)
        logger.debug("context_formatted", num_chunks=len(results), total_chars=len(context))
        return context
