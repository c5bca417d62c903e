"""Cosine similarity and top-k ranking over stored chunk embeddings."""
import asyncio
from typing import Iterable, List, Sequence, Tuple

import numpy as np

from ragreader.errors import DimensionMismatch
from ragreader.models import Chunk, Document, SearchResult


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine similarity of two vectors.

    Args:
        a: First vector
        b: Second vector

    Returns:
        Similarity in [-1, 1], or 0.0 when either vector has zero norm

    Raises:
        DimensionMismatch: If the vectors differ in length
    """
    if len(a) != len(b):
        raise DimensionMismatch(len(a), len(b))

    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)

    norm_a = np.linalg.norm(va)
    norm_b = np.linalg.norm(vb)
    if norm_a == 0.0 or norm_b == 0.0:
        return 0.0

    return float(np.clip(np.dot(va, vb) / (norm_a * norm_b), -1.0, 1.0))


async def rank(
    candidates: Iterable[Tuple[Chunk, Document]],
    query_embedding: Sequence[float],
    k: int,
    threshold: float,
) -> List[SearchResult]:
    """Score candidates against a query and keep the best k.

    Candidates must be supplied in storage order: equal scores keep that
    order. The loop yields to the event loop after every candidate so a
    cancelled search stops promptly.

    Args:
        candidates: (chunk, document snapshot) pairs in storage order
        query_embedding: Embedding of the query text
        k: Maximum number of results
        threshold: Minimum similarity to keep a result

    Returns:
        Results sorted by similarity, best first

    Raises:
        DimensionMismatch: If any stored embedding differs in length from the query
    """
    if k <= 0:
        return []

    results = []
    for chunk, document in candidates:
        score = cosine_similarity(query_embedding, chunk.embedding)
        if score >= threshold:
            results.append(SearchResult(chunk=chunk, document=document, similarity=score))
        await asyncio.sleep(0)

    # list.sort is stable, so ties stay in storage order
    results.sort(key=lambda r: r.similarity, reverse=True)
    return results[:k]
