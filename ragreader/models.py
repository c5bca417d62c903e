"""Domain objects shared by the store, the pipeline and the API."""
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import List, Optional, Dict, Any


def chunk_id_for(document_id: str, index: int) -> str:
    """Build the chunk id for the given sequence index of a document."""
    return f"{document_id}_chunk_{index}"


@dataclass
class Chunk:
    """A contiguous, possibly overlapping span of a document's text."""

    id: str
    document_id: str
    content: str
    start_index: int
    end_index: int
    embedding: List[float] = field(default_factory=list)

    @property
    def has_embedding(self) -> bool:
        return len(self.embedding) > 0

    def with_embedding(self, embedding: List[float]) -> "Chunk":
        return replace(self, embedding=list(embedding))

    def to_dict(self, include_embedding: bool = False) -> Dict[str, Any]:
        data = {
            "id": self.id,
            "document_id": self.document_id,
            "content": self.content,
            "start_index": self.start_index,
            "end_index": self.end_index,
        }
        if include_embedding:
            data["embedding"] = self.embedding
        return data

    def __repr__(self) -> str:
        preview = self.content[:50]
        return f"Chunk(id={self.id!r}, document_id={self.document_id!r}, content={preview!r}...)"


@dataclass
class Document:
    """A stored document and the chunks it owns."""

    id: str
    name: str
    path: str
    content: str
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    chunks: List[Chunk] = field(default_factory=list)

    def snapshot(self) -> "Document":
        """Copy of the document without its chunk list."""
        return replace(self, chunks=[])

    def with_chunks(self, chunks: List[Chunk]) -> "Document":
        return replace(self, chunks=list(chunks))

    def to_dict(self, include_chunks: bool = False) -> Dict[str, Any]:
        data = {
            "id": self.id,
            "name": self.name,
            "path": self.path,
            "created_at": self.created_at.isoformat(),
            "chunk_count": len(self.chunks),
        }
        if include_chunks:
            data["content"] = self.content
            data["chunks"] = [c.to_dict() for c in self.chunks]
        return data

    def __repr__(self) -> str:
        return (
            f"Document(id={self.id!r}, name={self.name!r}, path={self.path!r}, "
            f"created_at={self.created_at.isoformat()}, chunks={len(self.chunks)})"
        )


@dataclass
class SearchResult:
    """A retrieved chunk with its document and query-time similarity."""

    chunk: Chunk
    document: Document
    similarity: float

    @property
    def relevance_percent(self) -> float:
        return self.similarity * 100

    def to_dict(self, preview_chars: int = 200) -> Dict[str, Any]:
        content = self.chunk.content
        if len(content) > preview_chars:
            content = content[:preview_chars] + "..."
        return {
            "document_id": self.document.id,
            "document_name": self.document.name,
            "chunk_id": self.chunk.id,
            "content_preview": content,
            "similarity": round(self.similarity, 4),
        }


@dataclass
class ChatMessage:
    """A single role-tagged conversation turn."""

    role: str
    content: str

    def to_dict(self) -> Dict[str, str]:
        return {"role": self.role, "content": self.content}


@dataclass
class ChatAnswer:
    """Completion text plus the retrieval that grounded it."""

    content: str
    sources: List[SearchResult] = field(default_factory=list)
    context: Optional[str] = None
