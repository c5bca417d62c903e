"""Sentence-aware text chunking with overlap for the RAG pipeline.

Text is split on sentence punctuation and sentences are packed greedily into
character-bounded chunks. Sentences are never cut, so a single sentence longer
than the chunk size becomes a chunk of its own.
"""
import re
from typing import List, Tuple
import structlog

from ragreader import config
from ragreader.models import Chunk, chunk_id_for

logger = structlog.get_logger()

# Fragments at or below this length are treated as noise (page numbers, headers)
MIN_SENTENCE_LENGTH = 10

SENTENCE_PATTERN = re.compile(r"[^.!?]+")


def split_into_sentences(text: str) -> List[Tuple[str, int, int]]:
    """Split text into sentences with their source character spans.

    Args:
        text: Text to split

    Returns:
        List of (sentence, start, end) tuples, sentences stripped of
        surrounding whitespace and their terminal punctuation
    """
    sentences = []
    for match in SENTENCE_PATTERN.finditer(text):
        raw = match.group(0)
        sentence = raw.strip()
        if len(sentence) <= MIN_SENTENCE_LENGTH:
            continue
        start = match.start() + (len(raw) - len(raw.lstrip()))
        end = match.end() - (len(raw) - len(raw.rstrip()))
        sentences.append((sentence, start, end))
    return sentences


class SentenceChunker:
    """Greedy sentence packer with character overlap between chunks."""

    def __init__(
        self,
        chunk_size: int = None,
        chunk_overlap: int = None,
    ):
        """Initialize the chunker.

        Args:
            chunk_size: Target maximum chunk length in characters (default from config)
            chunk_overlap: Characters carried over from the previous chunk (default from config)
        """
        self.chunk_size = config.CHUNK_SIZE if chunk_size is None else chunk_size
        self.chunk_overlap = config.CHUNK_OVERLAP if chunk_overlap is None else chunk_overlap

        if self.chunk_size <= 0:
            raise ValueError(f"Chunk size must be positive, got {self.chunk_size}")
        if self.chunk_overlap < 0 or self.chunk_overlap >= self.chunk_size:
            raise ValueError(
                f"Overlap ({self.chunk_overlap}) must be non-negative and less than "
                f"chunk size ({self.chunk_size})"
            )

        logger.debug(
            "chunker_initialized",
            chunk_size=self.chunk_size,
            chunk_overlap=self.chunk_overlap,
        )

    def chunk(self, document_id: str, text: str) -> List[Chunk]:
        """Split text into ordered, overlapping chunks for a document.

        Args:
            document_id: Id of the owning document
            text: Full document text

        Returns:
            List of Chunk objects without embeddings
        """
        if not text:
            return []

        chunks: List[Chunk] = []
        buffer = ""
        buffer_start = 0
        buffer_end = 0

        def close(content: str, start: int, end: int) -> None:
            chunks.append(
                Chunk(
                    id=chunk_id_for(document_id, len(chunks)),
                    document_id=document_id,
                    content=content,
                    start_index=start,
                    end_index=max(start, end),
                )
            )

        for sentence, start, end in split_into_sentences(text):
            candidate = f"{buffer} {sentence}" if buffer else sentence

            if not buffer or len(candidate) <= self.chunk_size:
                if not buffer:
                    buffer_start = start
                buffer = candidate
                buffer_end = end
                continue

            closed = buffer.strip()
            close(closed, buffer_start, buffer_end)

            seeded = ""
            if self.chunk_overlap > 0 and len(closed) > self.chunk_overlap:
                seeded = f"{closed[-self.chunk_overlap:]} {sentence}".strip()
                # The seed must not push the chunk past the size limit
                if len(seeded) > self.chunk_size:
                    seeded = ""

            if seeded:
                buffer = seeded
                buffer_start = max(0, buffer_end - self.chunk_overlap)
            else:
                buffer = sentence
                buffer_start = start
            buffer_end = end

        if buffer.strip():
            close(buffer.strip(), buffer_start, buffer_end)

        if chunks:
            logger.info(
                "text_chunked",
                document_id=document_id,
                text_length=len(text),
                chunk_count=len(chunks),
                avg_chunk_size=sum(len(c.content) for c in chunks) // len(chunks),
            )
        else:
            logger.warning("no_sentences_found", document_id=document_id, text_length=len(text))

        return chunks

    def get_chunk_stats(self, chunks: List[Chunk]) -> dict:
        """Get statistics about a set of chunks.

        Args:
            chunks: List of Chunk objects

        Returns:
            Dictionary with chunk statistics
        """
        if not chunks:
            return {
                "chunk_count": 0,
                "total_chars": 0,
                "avg_chunk_size": 0,
                "min_chunk_size": 0,
                "max_chunk_size": 0,
                "overlap": self.chunk_overlap,
            }

        sizes = [len(c.content) for c in chunks]

        return {
            "chunk_count": len(chunks),
            "total_chars": sum(sizes),
            "avg_chunk_size": sum(sizes) // len(chunks),
            "min_chunk_size": min(sizes),
            "max_chunk_size": max(sizes),
            "overlap": self.chunk_overlap,
        }
