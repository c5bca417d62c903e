"""Wiring of the pipeline components from explicit configuration."""
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import httpx
import structlog

from ragreader.config import EmbeddingSettings, GenerationSettings
from ragreader.db import DocumentStore
from ragreader.llm_client import GenerationClient
from ragreader.memory import ConversationManager
from ragreader.rag.chat import ChatPipeline
from ragreader.rag.chunker import SentenceChunker
from ragreader.rag.embeddings import EmbeddingProvider
from ragreader.rag.ingest import IngestPipeline
from ragreader.rag.retriever import Retriever

logger = structlog.get_logger()


@dataclass
class Services:
    store: DocumentStore
    embedder: EmbeddingProvider
    generator: GenerationClient
    ingest: IngestPipeline
    retriever: Retriever
    chat: ChatPipeline
    conversations: ConversationManager

    def reload(
        self,
        embedding_settings: Optional[EmbeddingSettings] = None,
        generation_settings: Optional[GenerationSettings] = None,
    ) -> None:
        """Swap in new provider configuration (from the environment if not given)."""
        self.embedder.reload(embedding_settings or EmbeddingSettings.from_env())
        self.generator.reload(generation_settings or GenerationSettings.from_env())


def build_services(
    db_path: Optional[Path] = None,
    embedding_settings: Optional[EmbeddingSettings] = None,
    generation_settings: Optional[GenerationSettings] = None,
    chunker: Optional[SentenceChunker] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> Services:
    """Build the full component graph.

    Args:
        db_path: SQLite database file (default from config)
        embedding_settings: Embedding provider configuration
        generation_settings: Generation provider configuration
        chunker: Chunker override
        transport: Optional httpx transport shared by both API clients
    """
    store = DocumentStore(db_path)
    embedder = EmbeddingProvider(embedding_settings, transport=transport)
    generator = GenerationClient(generation_settings, transport=transport)
    retriever = Retriever(store, embedder)
    chat = ChatPipeline(retriever, generator)

    logger.info(
        "services_built",
        db_path=str(store.db_path),
        embedding_provider=embedder.provider,
        generation_provider=generator.settings.provider,
    )

    return Services(
        store=store,
        embedder=embedder,
        generator=generator,
        ingest=IngestPipeline(store, embedder, chunker=chunker),
        retriever=retriever,
        chat=chat,
        conversations=ConversationManager(chat),
    )
