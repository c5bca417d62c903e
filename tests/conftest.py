"""Pytest configuration and shared fixtures."""
from datetime import datetime, timezone
from typing import List, Optional

import pytest

from ragreader.config import EmbeddingSettings, GenerationSettings
from ragreader.db import DocumentStore
from ragreader.errors import GenerationError
from ragreader.models import ChatMessage, Chunk, Document, chunk_id_for
from ragreader.rag.chunker import SentenceChunker
from ragreader.rag.embeddings import EmbeddingProvider
from ragreader.rag.ingest import IngestPipeline
from ragreader.rag.retriever import Retriever


class FakeGenerator:
    """Stand-in for GenerationClient that records the prompts it receives."""

    def __init__(self, reply: str = "This is a test answer.", error: Optional[str] = None):
        self.reply = reply
        self.error = error
        self.calls: List[List[ChatMessage]] = []

    async def chat(self, messages: List[ChatMessage]) -> str:
        self.calls.append(list(messages))
        if self.error:
            raise GenerationError(self.error)
        return self.reply


@pytest.fixture
def store(tmp_path):
    """Empty document store in a temporary directory."""
    return DocumentStore(tmp_path / "test.sqlite")


@pytest.fixture
def local_settings():
    """Local-only embedding settings without rate-limit delay."""
    return EmbeddingSettings(provider="local", batch_delay=0.0)


@pytest.fixture
def embedder(local_settings):
    return EmbeddingProvider(local_settings)


@pytest.fixture
def pipeline(store, embedder):
    return IngestPipeline(store, embedder, chunker=SentenceChunker(chunk_size=200, chunk_overlap=20))


@pytest.fixture
def retriever(store, embedder):
    return Retriever(store, embedder, top_k=5, threshold=-1.0)


@pytest.fixture
def fake_generator():
    return FakeGenerator()


@pytest.fixture
def generation_settings():
    return GenerationSettings(provider="groq", api_key="test-key", model="test-model")


@pytest.fixture
def make_document():
    """Factory for documents with hand-picked embeddings."""

    def _make(
        doc_id: str = "doc-1",
        name: str = "doc.txt",
        content: str = "Some document content for testing.",
        embeddings=((0.1, 0.2, 0.3),),
        created_at: Optional[datetime] = None,
    ) -> Document:
        chunks = [
            Chunk(
                id=chunk_id_for(doc_id, index),
                document_id=doc_id,
                content=f"chunk {index} of {doc_id}",
                start_index=index * 10,
                end_index=index * 10 + 9,
                embedding=list(embedding),
            )
            for index, embedding in enumerate(embeddings)
        ]
        return Document(
            id=doc_id,
            name=name,
            path=f"/docs/{name}",
            content=content,
            created_at=created_at or datetime.now(timezone.utc),
            chunks=chunks,
        )

    return _make


@pytest.fixture
def failing_generator():
    return FakeGenerator(error="LLM API Error (500): Service unavailable")
