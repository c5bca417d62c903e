"""Exception hierarchy for the RAG pipeline."""


class RagError(Exception):
    """Base exception for all pipeline errors."""
    pass


class ValidationError(RagError):
    """Raised when a source document or its extracted text is invalid."""
    pass


class PersistenceError(RagError):
    """Raised when a store transaction fails or stored data is corrupt."""
    pass


class ProviderError(RagError):
    """Raised when an external embedding or generation API call fails."""
    pass


class GenerationError(ProviderError):
    """Raised when the chat-completion call fails."""
    pass


class DimensionMismatch(RagError, ValueError):
    """Raised when embeddings of different lengths are compared or mixed."""

    def __init__(self, expected: int, actual: int, message: str = None):
        self.expected = expected
        self.actual = actual
        super().__init__(
            message or f"Embedding dimension mismatch: expected {expected}, got {actual}"
        )
